"""Adapt a Playwright ``Page`` (connected over CDP) to the DebugTarget protocol."""

from __future__ import annotations

import logging
from typing import Any, Callable

from playwright.async_api import ConsoleMessage, Frame, Page, Worker

from ..types import (
    ConsoleEvent,
    ContextCreatedEvent,
    ContextDestroyedEvent,
    EventHandler,
    ExecutionContext,
    NavigationEvent,
    PageErrorEvent,
    StackFrame,
)

logger = logging.getLogger(__name__)


class FrameContext:
    kind = "frame"

    def __init__(self, frame: Frame) -> None:
        self._frame = frame

    @property
    def url(self) -> str:
        return self._frame.url

    @property
    def name(self) -> str:
        return self._frame.name

    def is_detached(self) -> bool:
        return self._frame.is_detached()

    async def evaluate(self, expression: str) -> Any:
        return await self._frame.evaluate(expression)


class WorkerContext:
    kind = "worker"

    def __init__(self, worker: Worker) -> None:
        self._worker = worker
        self._closed = False
        worker.on("close", self._on_close)

    def _on_close(self, _worker: Worker) -> None:
        self._closed = True

    @property
    def url(self) -> str:
        return self._worker.url

    @property
    def name(self) -> str:
        return self._worker.url.rsplit("/", 1)[-1]

    def is_detached(self) -> bool:
        return self._closed

    async def evaluate(self, expression: str) -> Any:
        return await self._worker.evaluate(expression)


class PlaywrightTarget:
    """Translates Playwright page events into typed monitor events.

    Wrappers are cached per Playwright object so a frame or worker maps to
    the same ``ExecutionContext`` for as long as it lives.
    """

    def __init__(self, page: Page) -> None:
        self.page = page
        self._handlers: dict[str, list[EventHandler]] = {}
        self._frames: dict[Frame, FrameContext] = {}
        self._workers: dict[Worker, WorkerContext] = {}

        page.on("console", self._on_console)
        page.on("pageerror", self._on_page_error)
        page.on("worker", self._on_worker)
        page.on("frameattached", self._on_frame_attached)
        page.on("framedetached", self._on_frame_detached)
        page.on("framenavigated", self._on_frame_navigated)

    def close(self) -> None:
        self.page.remove_listener("console", self._on_console)
        self.page.remove_listener("pageerror", self._on_page_error)
        self.page.remove_listener("worker", self._on_worker)
        self.page.remove_listener("frameattached", self._on_frame_attached)
        self.page.remove_listener("framedetached", self._on_frame_detached)
        self.page.remove_listener("framenavigated", self._on_frame_navigated)
        for worker in list(self._workers):
            worker.remove_listener("close", self._on_worker_closed)
        self._handlers.clear()

    # -- DebugTarget ---------------------------------------------------

    def frames(self) -> list[ExecutionContext]:
        return [self._frame_context(f) for f in self.page.frames]

    def workers(self) -> list[ExecutionContext]:
        return [self._worker_context(w) for w in self.page.workers]

    def main_frame(self) -> ExecutionContext:
        return self._frame_context(self.page.main_frame)

    def on(self, event: str, handler: EventHandler) -> None:
        self._handlers.setdefault(event, []).append(handler)

    def off(self, event: str, handler: EventHandler) -> None:
        handlers = self._handlers.get(event, [])
        if handler in handlers:
            handlers.remove(handler)

    def on_context_console(
        self, context: ExecutionContext, handler: EventHandler,
    ) -> Callable[[], None]:
        # Playwright already routes worker and frame console output through
        # the page "console" event, so there is no per-context stream.
        return lambda: None

    # -- wrappers ------------------------------------------------------

    def _frame_context(self, frame: Frame) -> FrameContext:
        context = self._frames.get(frame)
        if context is None:
            context = self._frames[frame] = FrameContext(frame)
        return context

    def _worker_context(self, worker: Worker) -> WorkerContext:
        context = self._workers.get(worker)
        if context is None:
            context = self._workers[worker] = WorkerContext(worker)
            worker.on("close", self._on_worker_closed)
        return context

    def _emit(self, event: str, message: Any) -> None:
        for handler in list(self._handlers.get(event, [])):
            handler(message)

    # -- Playwright listeners ------------------------------------------

    async def _on_console(self, msg: ConsoleMessage) -> None:
        args = []
        for handle in msg.args:
            try:
                args.append(await handle.json_value())
            except Exception:
                # Handles to DOM nodes or detached contexts cannot be serialized.
                args.append(str(handle))

        location = msg.location or {}
        stack = None
        if location.get("url"):
            stack = [StackFrame(
                function_name="",
                url=location.get("url", ""),
                line_number=location.get("lineNumber", 0),
                column_number=location.get("columnNumber", 0),
            )]
        self._emit("console", ConsoleEvent(
            level=msg.type,
            text=msg.text,
            args=args,
            url=location.get("url"),
            stack=stack,
        ))

    def _on_page_error(self, error: Any) -> None:
        self._emit("pageerror", PageErrorEvent(
            message=getattr(error, "message", str(error)),
            stack=getattr(error, "stack", "") or "",
        ))

    def _on_worker(self, worker: Worker) -> None:
        context = self._worker_context(worker)
        self._emit("contextcreated", ContextCreatedEvent(context))

    def _on_worker_closed(self, worker: Worker) -> None:
        context = self._workers.pop(worker, None)
        if context is not None:
            self._emit("contextdestroyed", ContextDestroyedEvent(context))

    def _on_frame_attached(self, frame: Frame) -> None:
        self._emit("contextcreated", ContextCreatedEvent(self._frame_context(frame)))

    def _on_frame_detached(self, frame: Frame) -> None:
        context = self._frames.pop(frame, None)
        if context is not None:
            self._emit("contextdestroyed", ContextDestroyedEvent(context))

    def _on_frame_navigated(self, frame: Frame) -> None:
        self._emit("navigated", NavigationEvent(
            url=frame.url,
            is_main_frame=frame is self.page.main_frame,
        ))
