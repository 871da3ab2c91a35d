"""
Process entrypoint for the relay broker and a headless chat client.

``python -m peerchat.main broker --host 0.0.0.0 --port 8080`` resolves the
profile, initialises logging and serves :func:`peerchat.api.server.create_app`
with uvicorn until SIGINT/SIGTERM.

``python -m peerchat.main client --user alice --partner bob --source desktop
--format x11grab`` joins the broker named by the profile and shares the
source with the partner until interrupted.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import signal
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Optional

from .api.server import create_app
from .api.state import BrokerState
from .client import ChatClient
from .config import PROFILE_ENV, ClientConfig, load_profile
from .media import PlayerCaptureSource
from .signaling.websocket_bus import WebSocketBus
from .utils.logging import configure_logging, parse_level

LOG = logging.getLogger(__name__)
LOG_LEVEL_ENV = "PEERCHAT_LOG_LEVEL"


async def serve(config: ClientConfig, host: str = "127.0.0.1", port: int = 8080) -> None:
    """
    Run the relay broker inside an asyncio loop.

    Parameters
    ----------
    config:
        Resolved client profile; only logged here, clients read it themselves.
    host, port:
        Bind address for the FastAPI/uvicorn server.
    """

    import uvicorn

    broker_state = BrokerState()

    @asynccontextmanager
    async def app_lifespan(_app) -> AsyncIterator[None]:
        LOG.info("Relay broker starting (profile %s)", config.profile)
        try:
            yield
        finally:
            LOG.info("Relay broker shutting down with %d open session(s)", broker_state.session_count)

    app = create_app(state=broker_state, lifespan=app_lifespan)
    server_config = uvicorn.Config(
        app=app,
        host=host,
        port=port,
        log_config=None,
        log_level="info",
        reload=False,
    )
    server = uvicorn.Server(config=server_config)

    def _handle_signal(signum: int, frame: Optional[object]) -> None:
        LOG.info("Received signal %s, shutting down server...", signum)
        server.should_exit = True

    for signame in ("SIGINT", "SIGTERM"):
        signal.signal(getattr(signal, signame), _handle_signal)

    await server.serve()


async def chat(
    config: ClientConfig,
    username: str,
    *,
    partner: Optional[str] = None,
    source: Optional[str] = None,
    media_format: Optional[str] = None,
    connect_timeout: float = 30.0,
    stop: Optional[asyncio.Event] = None,
    **bus_options: Any,
) -> Optional[ChatClient]:
    """
    Join the broker as ``username`` and stay online until ``stop`` is set.

    With no ``stop`` event one is created and set on SIGINT/SIGTERM.  When a
    ``partner`` and a capture ``source`` are given the share starts as soon as
    the client has joined.  Returns ``None`` if the broker never answered.
    """

    bus = WebSocketBus.from_config(config, username, **bus_options)
    client = ChatClient(username, bus, PlayerCaptureSource(source, media_format), config=config)

    if stop is None:
        stop = asyncio.Event()
        loop = asyncio.get_running_loop()

        def _handle_signal(signum: int, frame: Optional[object]) -> None:
            LOG.info("Received signal %s, leaving the chat...", signum)
            loop.call_soon_threadsafe(stop.set)

        for signame in ("SIGINT", "SIGTERM"):
            signal.signal(getattr(signal, signame), _handle_signal)

    await bus.start()
    try:
        try:
            await bus.wait_connected(timeout=connect_timeout)
        except asyncio.TimeoutError:
            LOG.error("Broker %s did not answer within %.0fs", bus.endpoint, connect_timeout)
            return None
        await client.connect()
        if partner:
            await client.select_partner(partner)
            if source and not await client.start_share():
                LOG.warning("Could not share %s with %s", source, partner)
        await stop.wait()
        return client
    finally:
        await client.close()
        await bus.close()


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="peerchat relay broker and client")
    parser.add_argument("command", nargs="?", default="broker", choices=["broker", "client"], help="what to run")
    parser.add_argument(
        "--profile",
        default=os.environ.get(PROFILE_ENV),
        help=f"client profile to load (default: ${PROFILE_ENV} or 'default')",
    )
    parser.add_argument("--host", default="127.0.0.1", help="bind host for the broker")
    parser.add_argument("--port", type=int, default=8080, help="bind port for the broker")
    parser.add_argument("--log-level", default=os.environ.get(LOG_LEVEL_ENV), help="logging level name")
    parser.add_argument("--user", help="username to join as (client)")
    parser.add_argument("--partner", help="user to chat and share with (client)")
    parser.add_argument("--source", help="capture source handed to MediaPlayer (client)")
    parser.add_argument("--format", dest="media_format", help="MediaPlayer input format, e.g. x11grab (client)")
    args = parser.parse_args(argv)
    if args.command == "client" and not (args.user or "").strip():
        parser.error("client requires --user")
    return args


def run(argv: Optional[list[str]] = None) -> None:
    args = parse_args(argv)
    configure_logging(level=parse_level(args.log_level))
    config = load_profile(args.profile)

    if args.command == "client":
        try:
            asyncio.run(
                chat(
                    config,
                    args.user.strip(),
                    partner=args.partner,
                    source=args.source,
                    media_format=args.media_format,
                )
            )
        except KeyboardInterrupt:
            LOG.info("Client interrupted by user.")
        return

    try:
        asyncio.run(serve(config=config, host=args.host, port=args.port))
    except KeyboardInterrupt:
        LOG.info("Broker interrupted by user.")


if __name__ == "__main__":
    run()
