"""ConsoleMonitor: bounded history of the host process's console output.

Captures the primary surface, its secondary frames, and the background
workers where plugin code runs. Worker and frame logs are not delivered
through the primary stream, so every sub-context gets its own subscription.

Protocol callbacks only enqueue typed event messages; one dispatcher task
drains the queue in arrival order and owns all buffer mutation.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from typing import Callable

from ..patterns import classify_source, normalize_base_url
from ..types import (
    LOG_LEVELS,
    ConsoleConfig,
    ConsoleEvent,
    ContextCreatedEvent,
    ContextDestroyedEvent,
    DebugTarget,
    ExecutionContext,
    LogEntry,
    MonitorEvent,
    NavigationEvent,
    PageErrorEvent,
    StackFrame,
)
from .truncation import truncate_string, truncate_value

logger = logging.getLogger(__name__)

NAVIGATION_MARKER = "[BRIDGE] Navigated to a different document: {url}. Console logs cleared."

_TARGET_EVENTS = ("console", "pageerror", "contextcreated", "contextdestroyed", "navigated")

# Protocol console types that have no level of their own map onto "log".
_LEVEL_ALIASES = {
    "warning": "warn",
    "verbose": "debug",
    "trace": "debug",
    "assert": "error",
}


def normalize_level(raw: str) -> str:
    level = _LEVEL_ALIASES.get(raw, raw)
    return level if level in LOG_LEVELS else "log"


def parse_stack(stack: str) -> list[StackFrame]:
    return [
        StackFrame(function_name=line.strip())
        for line in stack.splitlines()
        if line.strip()
    ]


class ConsoleMonitor:
    """Listen to a debug target and keep a FIFO buffer of ``LogEntry``."""

    def __init__(
        self,
        config: ConsoleConfig,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.config = config
        self._clock = clock
        self._logs: deque[LogEntry] = deque(maxlen=config.buffer_size)
        self._queue: asyncio.Queue[MonitorEvent] = asyncio.Queue()
        self._dispatcher: asyncio.Task | None = None
        self._target: DebugTarget | None = None
        self._context_subscriptions: dict[int, tuple[ExecutionContext, Callable[[], None]]] = {}
        self._last_url: str = ""

    @property
    def is_monitoring(self) -> bool:
        return self._target is not None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def attach(self, target: DebugTarget) -> None:
        """Start monitoring *target*. A second call with the same target is a no-op."""
        if self._target is target:
            logger.info("Already monitoring this target")
            return
        if self._target is not None:
            await self.stop()

        self._target = target
        self._dispatcher = asyncio.create_task(self._dispatch_loop())

        for event_name in _TARGET_EVENTS:
            target.on(event_name, self._post)

        workers = target.workers()
        main = target.main_frame()
        frames = [f for f in target.frames() if f is not main]
        for context in [*workers, *frames]:
            self._subscribe_context(context)

        self._last_url = main.url if main is not None else ""
        logger.info(
            "Console monitoring started: %d workers, %d frames, url=%s",
            len(workers), len(frames), self._last_url,
        )

    async def stop(self) -> None:
        """Detach every listener. Safe to call repeatedly."""
        target = self._target
        if target is None:
            return
        self._target = None

        for event_name in _TARGET_EVENTS:
            try:
                target.off(event_name, self._post)
            except Exception:
                logger.debug("Failed to remove %s listener", event_name, exc_info=True)
        for context, unsubscribe in self._context_subscriptions.values():
            try:
                unsubscribe()
            except Exception:
                logger.debug("Failed to unsubscribe from %s", context.url, exc_info=True)
        self._context_subscriptions.clear()
        self._last_url = ""

        if self._dispatcher is not None:
            self._dispatcher.cancel()
            try:
                await self._dispatcher
            except asyncio.CancelledError:
                pass
            self._dispatcher = None
        # Events still queued belong to the old target.
        self._queue = asyncio.Queue()
        logger.info("Console monitoring stopped")

    async def drain(self) -> None:
        """Wait until every queued event has been processed."""
        if self._dispatcher is None:
            return
        await self._queue.join()

    # ------------------------------------------------------------------
    # Event channel
    # ------------------------------------------------------------------

    def _post(self, event: MonitorEvent) -> None:
        self._queue.put_nowait(event)

    def _subscribe_context(self, context: ExecutionContext) -> None:
        key = id(context)
        if key in self._context_subscriptions or self._target is None:
            return

        def handler(event: ConsoleEvent, _context: ExecutionContext = context) -> None:
            if event.context is None:
                event.context = _context
            self._post(event)

        unsubscribe = self._target.on_context_console(context, handler)
        self._context_subscriptions[key] = (context, unsubscribe)
        logger.info("Subscribed to %s console: %s", context.kind, context.url)

    def _unsubscribe_context(self, context: ExecutionContext) -> None:
        entry = self._context_subscriptions.pop(id(context), None)
        if entry is None:
            return
        try:
            entry[1]()
        except Exception:
            logger.debug("Failed to unsubscribe from %s", context.url, exc_info=True)
        logger.info("%s destroyed: %s", context.kind.capitalize(), context.url)

    async def _dispatch_loop(self) -> None:
        while True:
            event = await self._queue.get()
            try:
                self.handle_event(event)
            except Exception:
                # One malformed payload must not end monitoring.
                logger.exception("Failed to process %s", type(event).__name__)
            finally:
                self._queue.task_done()

    def handle_event(self, event: MonitorEvent) -> None:
        if isinstance(event, ConsoleEvent):
            entry = self._entry_from_console(event)
            if entry is not None:
                self._append(entry)
        elif isinstance(event, PageErrorEvent):
            self._append(LogEntry(
                timestamp=self._clock(),
                level="error",
                message=truncate_string(event.message, self.config.truncation.max_string_length),
                source="host",
                stack_trace=parse_stack(event.stack) if event.stack else [],
            ))
        elif isinstance(event, ContextCreatedEvent):
            self._subscribe_context(event.context)
        elif isinstance(event, ContextDestroyedEvent):
            self._unsubscribe_context(event.context)
        elif isinstance(event, NavigationEvent):
            self._on_navigation(event)
        else:
            raise TypeError(f"Unknown monitor event: {event!r}")

    # ------------------------------------------------------------------
    # Processing
    # ------------------------------------------------------------------

    def _entry_from_console(self, event: ConsoleEvent) -> LogEntry | None:
        level = normalize_level(event.level)
        if self.config.filter_levels and level not in self.config.filter_levels:
            return None

        truncation = self.config.truncation
        context = event.context
        if context is not None and context.kind == "worker":
            source = "plugin"
        else:
            source = classify_source(
                event.url,
                self.config.plugin_url_markers,
                self.config.host_url_markers,
            )

        return LogEntry(
            timestamp=self._clock(),
            level=level,
            message=truncate_string(event.text, truncation.max_string_length),
            args=[truncate_value(arg, truncation) for arg in event.args],
            source=source,
            stack_trace=list(event.stack) if level == "error" and event.stack else None,
            context_url=context.url if context is not None else None,
        )

    def _on_navigation(self, event: NavigationEvent) -> None:
        if not event.is_main_frame:
            return
        current = normalize_base_url(event.url)
        previous = normalize_base_url(self._last_url) if self._last_url else ""
        if previous and current != previous:
            logger.info("Navigated from %s to %s; clearing console logs", previous, current)
            self._logs.clear()
            self._append(LogEntry(
                timestamp=self._clock(),
                level="info",
                message=NAVIGATION_MARKER.format(url=event.url),
                source="host",
            ))
        self._last_url = event.url

    def _append(self, entry: LogEntry) -> None:
        self._logs.append(entry)
        logger.debug("Log captured: level=%s source=%s", entry.level, entry.source)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_logs(
        self,
        count: int | None = None,
        level: str | None = None,
        since: float | None = None,
    ) -> list[LogEntry]:
        """Most recent entries, filtered by minimum timestamp and level."""
        logs = list(self._logs)
        if since is not None:
            logs = [e for e in logs if e.timestamp >= since]
        if level and level != "all":
            logs = [e for e in logs if e.level == level]
        if count is not None:
            logs = logs[-count:] if count > 0 else []
        return logs

    def clear(self) -> int:
        count = len(self._logs)
        self._logs.clear()
        logger.info("Console buffer cleared (%d entries)", count)
        return count

    def status(self) -> dict:
        return {
            "monitoring": self.is_monitoring,
            "log_count": len(self._logs),
            "buffer_size": self.config.buffer_size,
            "subscribed_contexts": len(self._context_subscriptions),
            "oldest_timestamp": self._logs[0].timestamp if self._logs else None,
            "newest_timestamp": self._logs[-1].timestamp if self._logs else None,
        }
