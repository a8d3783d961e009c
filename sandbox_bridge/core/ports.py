"""PortCoordinator: port claiming and on-disk advertisements for sibling instances.

Each running instance binds the first free port in a small fixed range and
writes ``<prefix><port>.json`` into a shared directory (the platform temp
dir by default) so plugins and other tools can find it::

    {"port": 9224, "pid": 4711, "host": "localhost", "startedAt": "..."}

A file is only trusted while its owning process is alive; liveness is
re-checked on every read and dead owners' files are removed on sight.
"""

from __future__ import annotations

import atexit
import json
import logging
import os
import signal
import socket
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable

import psutil

from ..types import PortAdvertisement, PortConfig, PortRangeExhausted

logger = logging.getLogger(__name__)

DEFAULT_PORT = 9223
PORT_RANGE_SIZE = 10


# ---------------------------------------------------------------------------
# Pure helpers
# ---------------------------------------------------------------------------

def port_range(preferred: int = DEFAULT_PORT, size: int = PORT_RANGE_SIZE) -> list[int]:
    return [preferred + i for i in range(size)]


def advertisement_path(directory: str | Path, prefix: str, port: int) -> Path:
    return Path(directory) / f"{prefix}{port}.json"


def parse_advertisement(text: str) -> PortAdvertisement | None:
    """Parse an advertisement file's contents; ``None`` if it is not one."""
    try:
        raw = json.loads(text)
        if not isinstance(raw, dict):
            return None
        return PortAdvertisement.from_dict(raw)
    except (ValueError, KeyError, TypeError):
        return None


def is_process_alive(pid: int) -> bool:
    """Existence check that never signals the process (safe on Windows too)."""
    if pid <= 0:
        return False
    return psutil.pid_exists(pid)


def socket_options(platform: str = os.name) -> list[tuple[int, int]]:
    """Options set on a listening socket before bind, per ``os.name``."""
    if platform == "nt":
        # On Windows SO_REUSEADDR would let us bind a port another process listens on.
        exclusive = getattr(socket, "SO_EXCLUSIVEADDRUSE", ~socket.SO_REUSEADDR)
        return [(socket.SOL_SOCKET, exclusive)]
    return [(socket.SOL_SOCKET, socket.SO_REUSEADDR)]


def _try_bind(host: str, port: int) -> socket.socket | None:
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    for level, option in socket_options():
        sock.setsockopt(level, option, 1)
    try:
        sock.bind((host, port))
        sock.listen(128)
    except OSError as exc:
        sock.close()
        logger.debug("Port %d unavailable: %s", port, exc)
        return None
    return sock


# ---------------------------------------------------------------------------
# Coordinator
# ---------------------------------------------------------------------------

class PortCoordinator:
    """Owns this instance's listening socket and advertisement file."""

    def __init__(
        self,
        config: PortConfig,
        pid: int | None = None,
        is_alive: Callable[[int], bool] = is_process_alive,
    ) -> None:
        self.config = config
        self.pid = pid if pid is not None else os.getpid()
        self.is_alive = is_alive
        self.directory = Path(config.advertisement_dir or tempfile.gettempdir())
        self.socket: socket.socket | None = None
        self.port: int | None = None
        self.advertisement: PortAdvertisement | None = None
        self._exit_cleanup_registered = False

    def path_for(self, port: int) -> Path:
        return advertisement_path(self.directory, self.config.file_prefix, port)

    # -- claiming ------------------------------------------------------

    def claim_port(self, preferred: int | None = None) -> int:
        """Bind the first free port of the range and keep the socket open."""
        if self.socket is not None and self.port is not None:
            return self.port

        preferred = preferred or self.config.preferred_port
        for port in port_range(preferred, self.config.range_size):
            sock = _try_bind(self.config.host, port)
            if sock is None:
                continue
            self.socket = sock
            self.port = port
            if port != preferred:
                logger.info("Preferred port %d in use, fell back to %d", preferred, port)
            else:
                logger.info("Claimed port %d", port)
            return port

        raise PortRangeExhausted(preferred, self.config.range_size)

    # -- advertisement -------------------------------------------------

    def advertise(self, port: int | None = None, host: str | None = None) -> PortAdvertisement:
        port = port or self.port
        if port is None:
            raise ValueError("No port claimed; call claim_port() first or pass a port")

        advertisement = PortAdvertisement(
            port=port,
            pid=self.pid,
            host=host or self.config.host,
            started_at=datetime.now(timezone.utc).isoformat(),
        )
        path = self.path_for(port)
        self.directory.mkdir(parents=True, exist_ok=True)
        tmp = path.with_name(f".{path.name}.{self.pid}.tmp")
        tmp.write_text(json.dumps(advertisement.to_dict(), indent=2))
        os.replace(tmp, path)

        self.port = port
        self.advertisement = advertisement
        logger.info("Port %d advertised at %s", port, path)
        return advertisement

    def read_advertisement(self, port: int) -> PortAdvertisement | None:
        path = self.path_for(port)
        try:
            text = path.read_text()
        except FileNotFoundError:
            return None
        except OSError as exc:
            logger.debug("Cannot read %s: %s", path, exc)
            return None

        advertisement = parse_advertisement(text)
        if advertisement is None:
            return None
        if not self.is_alive(advertisement.pid):
            logger.debug("Stale advertisement for port %d (pid %d dead), removing", port, advertisement.pid)
            path.unlink(missing_ok=True)
            return None
        return advertisement

    def discover_instances(self, preferred: int | None = None) -> list[PortAdvertisement]:
        preferred = preferred or self.config.preferred_port
        found = []
        for port in port_range(preferred, self.config.range_size):
            advertisement = self.read_advertisement(port)
            if advertisement is not None:
                found.append(advertisement)
        return found

    def cleanup_stale(self) -> int:
        """Remove every advertisement in the directory whose owner is dead or whose file is corrupt."""
        cleaned = 0
        prefix = self.config.file_prefix
        try:
            candidates = [
                p for p in self.directory.iterdir()
                if p.name.startswith(prefix) and p.name.endswith(".json")
            ]
        except OSError as exc:
            logger.warning("Cannot scan %s: %s", self.directory, exc)
            return 0

        for path in candidates:
            try:
                advertisement = parse_advertisement(path.read_text())
            except OSError:
                continue
            if advertisement is not None and self.is_alive(advertisement.pid):
                continue
            try:
                path.unlink()
                cleaned += 1
                logger.debug("Removed stale advertisement %s", path.name)
            except FileNotFoundError:
                pass
        if cleaned:
            logger.info("Cleaned up %d stale advertisement file(s)", cleaned)
        return cleaned

    def unadvertise(self) -> None:
        if self.port is None:
            return
        path = self.path_for(self.port)
        try:
            advertisement = parse_advertisement(path.read_text())
        except OSError:
            return
        # Never remove a file another live instance rewrote for this port.
        if advertisement is not None and advertisement.pid != self.pid:
            return
        path.unlink(missing_ok=True)
        self.advertisement = None
        logger.debug("Port %d advertisement removed", self.port)

    def release(self) -> None:
        self.unadvertise()
        if self.socket is not None:
            self.socket.close()
            self.socket = None
        self.port = None

    # -- exit hooks ----------------------------------------------------

    def register_exit_cleanup(self) -> None:
        """Remove the advertisement on interpreter exit and on SIGINT/SIGTERM.

        The file is removed before the previously installed handler runs.
        """
        if self._exit_cleanup_registered:
            return
        self._exit_cleanup_registered = True
        atexit.register(self.unadvertise)

        for signum in (signal.SIGINT, signal.SIGTERM):
            try:
                previous = signal.getsignal(signum)
                signal.signal(signum, self._make_signal_handler(previous))
            except ValueError:
                # Not the main thread; atexit still covers normal exits.
                logger.debug("Cannot install handler for signal %d", signum)

    def _make_signal_handler(self, previous):
        def handler(signum, frame):
            self.unadvertise()
            if callable(previous):
                previous(signum, frame)
            elif previous == signal.SIG_IGN:
                return
            else:
                raise SystemExit(128 + signum)
        return handler
