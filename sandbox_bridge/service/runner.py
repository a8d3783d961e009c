"""Run one bridge instance: MCP over stdio plus discovery HTTP on the claimed port."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import signal

import uvicorn

from ..mcp.server import mcp, set_session
from ..session import BridgeSession
from ..types import BridgeConfig, HostConnectionError
from .app import create_app

logger = logging.getLogger(__name__)

SHUTDOWN_SIGNALS = (signal.SIGINT, signal.SIGTERM)


class BridgeHTTPServer(uvicorn.Server):
    """uvicorn server that leaves process signal handling to the runner.

    The port coordinator's SIGINT/SIGTERM handlers must stay installed so the
    advertisement file is removed before HTTP shutdown begins.
    """

    @contextlib.contextmanager
    def capture_signals(self):
        yield

    def install_signal_handlers(self) -> None:
        pass


def build_http_server(session: BridgeSession, label: str = "") -> BridgeHTTPServer:
    app = create_app(session, instance_label=label)
    config = uvicorn.Config(
        app,
        log_level="warning",
        timeout_graceful_shutdown=2,
    )
    return BridgeHTTPServer(config)


def _install_shutdown_handler(handler) -> dict:
    previous = {}
    for signum in SHUTDOWN_SIGNALS:
        try:
            previous[signum] = signal.signal(signum, handler)
        except ValueError:
            # Not the main thread; the caller owns signal handling.
            logger.debug("Cannot install shutdown handler for signal %d", signum)
    return previous


def _restore_handlers(previous: dict) -> None:
    for signum, handler in previous.items():
        signal.signal(signum, handler)


async def run_bridge(
    config: BridgeConfig,
    *,
    preferred_port: int | None = None,
    label: str = "",
    connect: bool = True,
) -> None:
    """Claim a port, advertise it, and serve until stdin closes or a signal arrives.

    On SIGINT/SIGTERM the advertisement is removed first, then the HTTP
    server drains and the host connection is closed.

    Args:
        config: Loaded bridge configuration.
        preferred_port: First port to try (defaults to ``config.ports.preferred_port``).
        label: Instance label reported by ``/health``.
        connect: Attach to the desktop app at startup instead of on first use.
    """
    session = BridgeSession(config)
    coordinator = session.coordinator
    loop = asyncio.get_running_loop()
    shutdown = asyncio.Event()

    stale = coordinator.cleanup_stale()
    if stale:
        logger.info("Removed %d stale advertisement(s) before startup", stale)
    advertisement = session.claim_and_advertise_port(preferred_port)
    server = build_http_server(session, label)

    def request_shutdown(signum, frame):
        logger.info("Received signal %d, shutting down", signum)
        server.should_exit = True
        loop.call_soon_threadsafe(shutdown.set)

    # The coordinator chains to request_shutdown after unadvertising.
    previous_handlers = _install_shutdown_handler(request_shutdown)
    coordinator.register_exit_cleanup()
    set_session(session)
    logger.info("Instance %d listening on %s:%d", advertisement.pid, advertisement.host, advertisement.port)

    http_task = None
    stdio_task = None
    shutdown_task = asyncio.create_task(shutdown.wait())
    try:
        if connect:
            try:
                await session.connect()
            except HostConnectionError as exc:
                # Tools connect lazily, so the app may be started later.
                logger.warning("Desktop app not reachable yet: %s", str(exc).splitlines()[0])

        http_task = asyncio.create_task(server.serve(sockets=[coordinator.socket]))
        stdio_task = asyncio.create_task(mcp.run_stdio_async())
        done, _ = await asyncio.wait(
            {stdio_task, http_task, shutdown_task},
            return_when=asyncio.FIRST_COMPLETED,
        )
        if stdio_task in done:
            stdio_task.result()
    finally:
        server.should_exit = True
        shutdown_task.cancel()
        if stdio_task is not None and not stdio_task.done():
            stdio_task.cancel()
            await asyncio.wait({stdio_task}, timeout=1.0)
        try:
            if http_task is not None:
                await http_task
            await session.close()
        finally:
            _restore_handlers(previous_handlers)
