"""BridgeSession: the query interface used by the tool and service layers.

One session per process. It owns the console monitor, the response cache,
the port coordinator and (once a debug target is attached) the execution
bridge; nothing is kept in module globals.
"""

from __future__ import annotations

import logging
import time
from collections import deque
from typing import TYPE_CHECKING, Any, Callable

from .core.bridge import ExecutionBridge
from .core.cache import ResponseCache
from .core.console_monitor import ConsoleMonitor
from .core.ports import PortCoordinator
from .core.shaper import shape_response
from .types import (
    BridgeConfig,
    DebugTarget,
    EvaluationThrew,
    ExecutionOutcome,
    LogEntry,
    PortAdvertisement,
    ShapedResponse,
    ShapeFilters,
)

if TYPE_CHECKING:
    from .host.connection import HostConnection

logger = logging.getLogger(__name__)

# Runs in the plugin worker; collects local variables and collections.
VARIABLES_QUERY = """
(async () => {
  try {
    const variables = await figma.variables.getLocalVariablesAsync();
    const collections = await figma.variables.getLocalVariableCollectionsAsync();
    return {
      success: true,
      timestamp: Date.now(),
      fileMetadata: {
        fileName: figma.root.name,
        fileKey: figma.fileKey || null
      },
      variables: variables.map(v => ({
        id: v.id,
        name: v.name,
        key: v.key,
        resolvedType: v.resolvedType,
        valuesByMode: v.valuesByMode,
        variableCollectionId: v.variableCollectionId,
        scopes: v.scopes,
        description: v.description,
        hiddenFromPublishing: v.hiddenFromPublishing
      })),
      variableCollections: collections.map(c => ({
        id: c.id,
        name: c.name,
        key: c.key,
        modes: c.modes,
        defaultModeId: c.defaultModeId,
        variableIds: c.variableIds
      }))
    };
  } catch (error) {
    return { success: false, error: error.message };
  }
})()
"""


class BridgeSession:
    def __init__(
        self,
        config: BridgeConfig | None = None,
        connection: HostConnection | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.config = config or BridgeConfig()
        self.connection = connection
        self.monitor = ConsoleMonitor(self.config.console, clock=clock)
        self.cache = ResponseCache(
            ttl_seconds=self.config.cache.ttl_seconds,
            max_entries=self.config.cache.max_entries,
            clock=clock,
        )
        self.coordinator = PortCoordinator(self.config.ports)
        self.target: DebugTarget | None = None
        self.bridge: ExecutionBridge | None = None
        self.diagnostics: deque[dict] = deque(maxlen=50)

    # ------------------------------------------------------------------
    # Debug target
    # ------------------------------------------------------------------

    async def attach(self, target: DebugTarget) -> None:
        """Start monitoring *target* and route executions through it."""
        self.target = target
        self.bridge = ExecutionBridge(
            target, self.config.execution, on_diagnostic=self._record_diagnostic,
        )
        await self.monitor.attach(target)

    async def connect(self) -> DebugTarget:
        """Connect to the desktop app via its debug endpoint and attach to the best page."""
        if self.connection is None:
            from .host.connection import HostConnection
            self.connection = HostConnection(self.config.host)
        target = await self.connection.connect()
        if target is not self.target:
            await self.attach(target)
        return target

    def connection_lost(self) -> bool:
        """True when a target was attached but the app has since gone away."""
        return (
            self.connection is not None
            and self.target is not None
            and not self.connection.is_connected
        )

    async def reconnect(self) -> DebugTarget:
        """Drop the current connection and attach afresh."""
        if self.connection is not None:
            await self.connection.close()
        self.target = None
        self.bridge = None
        return await self.connect()

    async def _require_bridge(self) -> ExecutionBridge:
        if self.bridge is None or self.connection_lost():
            if self.bridge is not None:
                logger.warning("Connection to the desktop app was lost, reconnecting")
            await self.connect()
        return self.bridge

    def _record_diagnostic(self, event: str, details: dict) -> None:
        self.diagnostics.append({"event": event, "ts": time.time(), **details})

    # ------------------------------------------------------------------
    # Console
    # ------------------------------------------------------------------

    def get_logs(
        self,
        count: int | None = None,
        level: str | None = None,
        since: float | None = None,
    ) -> list[LogEntry]:
        return self.monitor.get_logs(count=count, level=level, since=since)

    def clear_logs(self) -> int:
        return self.monitor.clear()

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    async def run_in_sandbox(
        self,
        code: str,
        timeout_ms: int | None = None,
        channel: str = "ui",
    ) -> ExecutionOutcome:
        """Run *code* in the plugin sandbox.

        ``channel="ui"`` goes through the companion UI (full write access);
        ``channel="worker"`` evaluates directly in the plugin worker.
        """
        bridge = await self._require_bridge()
        if channel == "ui":
            return await bridge.execute_via_ui(code, timeout_ms=timeout_ms)
        if channel == "worker":
            result = await bridge.execute_in_worker(code, timeout_ms=timeout_ms)
            return ExecutionOutcome(success=True, result=result, channel="worker")
        raise ValueError(f"Unknown channel {channel!r}; expected 'ui' or 'worker'")

    # ------------------------------------------------------------------
    # Cache & shaping
    # ------------------------------------------------------------------

    def get_cached(self, key: str) -> Any | None:
        return self.cache.get(key)

    def put_cached(self, key: str, payload: Any) -> None:
        self.cache.put(key, payload)

    def shape_response(
        self,
        payload: Any,
        mode: str = "summary",
        filters: ShapeFilters | None = None,
    ) -> ShapedResponse:
        return shape_response(
            payload, mode, filters, token_budget=self.config.cache.token_budget,
        )

    async def get_variables(
        self,
        file_key: str,
        mode: str = "summary",
        filters: ShapeFilters | None = None,
        refresh: bool = False,
    ) -> dict:
        """Variables of the open document, served from cache when fresh."""
        key = f"variables:{file_key}"
        payload = None if refresh else self.cache.get(key)
        from_cache = payload is not None

        if payload is None:
            bridge = await self._require_bridge()
            payload = await bridge.execute_in_worker(VARIABLES_QUERY)
            if not isinstance(payload, dict) or not payload.get("success"):
                error = payload.get("error") if isinstance(payload, dict) else None
                raise EvaluationThrew(error or "Failed to get variables")
            self.cache.put(key, payload)
            logger.info(
                "Fetched %d variables in %d collections for %s",
                len(payload.get("variables", [])),
                len(payload.get("variableCollections", [])),
                file_key,
            )

        shaped = self.shape_response(payload, mode, filters)
        return {
            "fileKey": file_key,
            "source": "cache" if from_cache else "desktop_connection",
            "timestamp": payload.get("timestamp"),
            **shaped.to_dict(),
        }

    # ------------------------------------------------------------------
    # Ports
    # ------------------------------------------------------------------

    def claim_and_advertise_port(self, preferred: int | None = None) -> PortAdvertisement:
        port = self.coordinator.claim_port(preferred)
        return self.coordinator.advertise(port)

    def discover_instances(self, preferred: int | None = None) -> list[PortAdvertisement]:
        return self.coordinator.discover_instances(preferred)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def status(self) -> dict:
        advertisement = self.coordinator.advertisement
        return {
            "connected": self.target is not None,
            "console": self.monitor.status(),
            "cache": self.cache.stats(),
            "port": self.coordinator.port,
            "advertisement": advertisement.to_dict() if advertisement else None,
            "recent_diagnostics": list(self.diagnostics)[-10:],
        }

    async def close(self) -> None:
        await self.monitor.stop()
        if self.connection is not None:
            await self.connection.close()
        self.target = None
        self.bridge = None
        self.coordinator.release()
        logger.info("Bridge session closed")
