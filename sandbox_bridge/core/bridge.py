"""ExecutionBridge: run caller code inside the host application's plugin sandbox.

The sandbox is not reachable through ordinary context enumeration. Two
channels exist because the platform splits capabilities:

- worker channel (read path): the background worker where the plugin API
  is a global; code is evaluated there directly.
- UI channel (write path): the plugin's companion UI frame, which exposes a
  named entry point that forwards code into the sandbox with a timeout.

Contexts are re-enumerated on every attempt and never cached. A context
that detaches mid-call is discarded and the whole discovery is retried a
bounded number of times; every other failure goes straight to the caller.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Awaitable, Callable, TypeVar

from ..patterns import is_detachment_message
from ..types import (
    BridgeError,
    ContextDetached,
    DebugTarget,
    DiagnosticHook,
    EvaluationThrew,
    EvaluationTimeout,
    ExecutionConfig,
    ExecutionContext,
    ExecutionOutcome,
    NoExecutionContext,
    NoPluginUI,
)
from .probes import FrameProbe, WorkerProbe, find_qualifying

logger = logging.getLogger(__name__)

T = TypeVar("T")

NO_WORKER_MESSAGE = (
    "No plugin worker with the sandbox API was found. "
    "A plugin must be running in the desktop app before sandbox code can run."
)
NO_UI_MESSAGE = (
    "Desktop Bridge plugin UI not found. "
    "The Desktop Bridge plugin must be open in the desktop app for this operation."
)


def is_detachment_error(exc: BaseException) -> bool:
    if isinstance(exc, ContextDetached):
        return True
    return is_detachment_message(str(exc))


def outcome_from_reply(reply: Any, channel: str, context_url: str | None, attempts: int) -> ExecutionOutcome:
    """Turn the UI entry point's ``{success, result|error}`` reply into an outcome."""
    if isinstance(reply, dict) and "success" in reply:
        return ExecutionOutcome(
            success=bool(reply["success"]),
            result=reply.get("result"),
            error=reply.get("error"),
            channel=channel,
            context_url=context_url,
            attempts=attempts,
        )
    return ExecutionOutcome(
        success=True, result=reply, channel=channel,
        context_url=context_url, attempts=attempts,
    )


class ExecutionBridge:
    def __init__(
        self,
        target: DebugTarget,
        config: ExecutionConfig,
        on_diagnostic: DiagnosticHook | None = None,
    ) -> None:
        self.target = target
        self.config = config
        self.on_diagnostic = on_diagnostic
        self.worker_probe = WorkerProbe(config.worker_marker)
        self.frame_probe = FrameProbe(config.ui_entry_point)

    # ------------------------------------------------------------------
    # Channels
    # ------------------------------------------------------------------

    async def execute_in_worker(self, code: str, timeout_ms: int | None = None) -> Any:
        """Evaluate *code* (an expression) in the plugin worker and return its JSON value."""
        timeout_ms = timeout_ms or self.config.worker_timeout_ms
        logger.info("Executing in plugin worker (code length %d, timeout %dms)", len(code), timeout_ms)

        async def attempt() -> Any:
            context = await self.find_worker()
            if context is None:
                raise NoExecutionContext(NO_WORKER_MESSAGE, channel="worker")
            return await self._evaluate(context, f"({code})", timeout_ms)

        result, _ = await self._with_retry("worker", attempt)
        return result

    async def execute_via_ui(self, code: str, timeout_ms: int | None = None) -> ExecutionOutcome:
        """Forward *code* through the companion UI's entry point.

        The timeout travels with the call so the sandbox side can give up too;
        locally the wait is bounded by the same timeout plus a grace period.
        Timing out here does not guarantee the sandbox-side work stopped.
        """
        timeout_ms = timeout_ms or self.config.ui_timeout_ms
        logger.info("Executing via plugin UI (code length %d, timeout %dms)", len(code), timeout_ms)
        expression = f"window.{self.config.ui_entry_point}({json.dumps(code)}, {int(timeout_ms)})"

        async def attempt() -> tuple[str, Any]:
            context = await self.find_plugin_ui()
            if context is None:
                raise NoPluginUI(NO_UI_MESSAGE)
            url = context.url
            reply = await self._evaluate(
                context, expression, timeout_ms + self.config.timeout_grace_ms,
            )
            return url, reply

        (url, reply), attempts = await self._with_retry("ui", attempt)
        outcome = outcome_from_reply(reply, "ui", url, attempts)
        if outcome.success:
            logger.info("Code execution succeeded")
        else:
            logger.warning("Code execution returned error: %s", outcome.error)
        return outcome

    async def find_worker(self) -> ExecutionContext | None:
        return await find_qualifying(
            self.worker_probe, self.worker_probe.candidates(self.target), self.on_diagnostic,
        )

    async def find_plugin_ui(self) -> ExecutionContext | None:
        return await find_qualifying(
            self.frame_probe, self.frame_probe.candidates(self.target), self.on_diagnostic,
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _evaluate(self, context: ExecutionContext, expression: str, timeout_ms: int) -> Any:
        url = context.url
        if context.is_detached():
            raise ContextDetached("Context detached before evaluation", context_url=url)
        try:
            return await asyncio.wait_for(context.evaluate(expression), timeout_ms / 1000)
        except asyncio.TimeoutError as exc:
            raise EvaluationTimeout(
                f"Sandbox did not respond within {timeout_ms}ms", timeout_ms=timeout_ms,
            ) from exc
        except BridgeError:
            raise
        except Exception as exc:
            if is_detachment_error(exc):
                raise ContextDetached(str(exc), context_url=url) from exc
            raise EvaluationThrew(str(exc), context_url=url) from exc

    async def _with_retry(self, channel: str, attempt_fn: Callable[[], Awaitable[T]]) -> tuple[T, int]:
        max_attempts = max(1, self.config.max_attempts)
        last_error: ContextDetached | None = None

        for attempt in range(1, max_attempts + 1):
            try:
                return await attempt_fn(), attempt
            except ContextDetached as exc:
                last_error = exc
                logger.warning(
                    "%s context detached (attempt %d/%d), re-enumerating",
                    channel, attempt, max_attempts,
                )
                if self.on_diagnostic is not None:
                    try:
                        self.on_diagnostic("context_detached", {"channel": channel, "attempt": attempt})
                    except Exception:
                        logger.debug("Diagnostic hook failed", exc_info=True)
                if attempt < max_attempts:
                    await asyncio.sleep(self.config.retry_delay)

        message = f"{NO_UI_MESSAGE if channel == 'ui' else NO_WORKER_MESSAGE} (context detached on every attempt)"
        logger.error("%s channel exhausted %d attempts", channel, max_attempts)
        if channel == "ui":
            raise NoPluginUI(message, attempts=max_attempts) from last_error
        raise NoExecutionContext(message, channel=channel, attempts=max_attempts) from last_error
