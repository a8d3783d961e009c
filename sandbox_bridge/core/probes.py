"""Capability probes: find the one live context that can run sandbox code."""

from __future__ import annotations

import logging
from typing import Iterable, Protocol

from ..types import DebugTarget, DiagnosticHook, ExecutionContext

logger = logging.getLogger(__name__)


class CapabilityProbe(Protocol):
    """Enumerates candidate contexts and checks one for a capability."""
    channel: str

    def candidates(self, target: DebugTarget) -> list[ExecutionContext]: ...

    def probe_expression(self) -> str: ...


class WorkerProbe:
    """Background workers where the plugin sandbox API is a global."""
    channel = "worker"

    def __init__(self, marker_global: str) -> None:
        self.marker_global = marker_global

    def candidates(self, target: DebugTarget) -> list[ExecutionContext]:
        return list(target.workers())

    def probe_expression(self) -> str:
        return f'typeof {self.marker_global} !== "undefined"'


class FrameProbe:
    """Companion UI frames that register a named entry point once loaded."""
    channel = "ui"

    def __init__(self, entry_point: str) -> None:
        self.entry_point = entry_point

    def candidates(self, target: DebugTarget) -> list[ExecutionContext]:
        return list(target.frames())

    def probe_expression(self) -> str:
        return f'typeof window.{self.entry_point} === "function"'


async def find_qualifying(
    probe: CapabilityProbe,
    contexts: Iterable[ExecutionContext],
    on_diagnostic: DiagnosticHook | None = None,
) -> ExecutionContext | None:
    """Linear scan with early exit; the first context passing the probe wins.

    Detached contexts and contexts whose probe raises are skipped.
    """
    contexts = list(contexts)
    _emit(on_diagnostic, "contexts_found", {"channel": probe.channel, "count": len(contexts)})
    expression = probe.probe_expression()

    for context in contexts:
        if context.is_detached():
            logger.debug("Skipping detached %s context", probe.channel)
            continue
        try:
            url = context.url
            has_capability = await context.evaluate(expression)
        except Exception as exc:
            logger.debug("Probe failed on %s context: %s", probe.channel, exc)
            _emit(on_diagnostic, "probe_failed", {"channel": probe.channel, "error": str(exc)})
            continue

        if has_capability is True:
            logger.info("Found %s context with capability: %s", probe.channel, url)
            _emit(on_diagnostic, "context_matched", {"channel": probe.channel, "url": url})
            return context

    logger.info("No %s context among %d candidates passed the probe", probe.channel, len(contexts))
    return None


def _emit(hook: DiagnosticHook | None, event: str, details: dict) -> None:
    if hook is None:
        return
    try:
        hook(event, details)
    except Exception:
        logger.debug("Diagnostic hook failed for %s", event, exc_info=True)
