"""All dataclasses, Protocols, event messages and errors for sandbox-bridge."""

from __future__ import annotations

import time
from dataclasses import asdict, dataclass, field
from typing import Any, Callable, Literal, Protocol, runtime_checkable

from .patterns import DEFAULT_HOST_URL_MARKERS, DEFAULT_PLUGIN_URL_MARKERS


LogLevel = Literal["log", "info", "warn", "error", "debug"]
LogSource = Literal["host", "plugin", "unknown"]
ContextKind = Literal["worker", "frame"]
ResponseMode = Literal["summary", "filtered", "full"]

LOG_LEVELS: tuple[str, ...] = ("log", "info", "warn", "error", "debug")
RESPONSE_MODES: tuple[str, ...] = ("summary", "filtered", "full")


# ---------------------------------------------------------------------------
# Console log entries
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class StackFrame:
    function_name: str
    url: str = ""
    line_number: int = 0
    column_number: int = 0


@dataclass(frozen=True)
class LogEntry:
    """One captured console line. Immutable once appended to the buffer."""
    timestamp: float  # epoch seconds
    level: str
    message: str
    args: list = field(default_factory=list)
    source: str = "unknown"  # "host", "plugin", "unknown"
    stack_trace: list[StackFrame] | None = None
    context_url: str | None = None

    def to_dict(self) -> dict:
        data = asdict(self)
        if self.stack_trace is None:
            data.pop("stack_trace")
        if self.context_url is None:
            data.pop("context_url")
        return data


# ---------------------------------------------------------------------------
# Debug target (the externally supplied debugging connection)
# ---------------------------------------------------------------------------

@runtime_checkable
class ExecutionContext(Protocol):
    """A live surface that can evaluate code: a worker or an embedded frame.

    Lifetime is owned by the host process; a context may detach at any time,
    so callers never hold on to one beyond a single request.
    """
    kind: str  # "worker" or "frame"

    @property
    def url(self) -> str: ...

    @property
    def name(self) -> str: ...

    def is_detached(self) -> bool: ...

    async def evaluate(self, expression: str) -> Any: ...


EventHandler = Callable[[Any], None]


@runtime_checkable
class DebugTarget(Protocol):
    """The host process's primary surface as seen through the debug protocol.

    Events: "console", "pageerror", "contextcreated", "contextdestroyed",
    "navigated". Handlers receive the event messages defined below.
    """

    def frames(self) -> list[ExecutionContext]: ...

    def workers(self) -> list[ExecutionContext]: ...

    def main_frame(self) -> ExecutionContext: ...

    def on(self, event: str, handler: EventHandler) -> None: ...

    def off(self, event: str, handler: EventHandler) -> None: ...

    def on_context_console(
        self, context: ExecutionContext, handler: EventHandler,
    ) -> Callable[[], None]: ...


# ---------------------------------------------------------------------------
# Event messages (pushed onto the monitor's single ordered channel)
# ---------------------------------------------------------------------------

@dataclass
class ConsoleEvent:
    level: str  # raw protocol type, e.g. "log", "warning"
    text: str
    args: list = field(default_factory=list)
    url: str | None = None
    stack: list[StackFrame] | None = None
    context: ExecutionContext | None = None  # set for per-context subscriptions


@dataclass
class PageErrorEvent:
    message: str
    stack: str = ""


@dataclass
class ContextCreatedEvent:
    context: ExecutionContext


@dataclass
class ContextDestroyedEvent:
    context: ExecutionContext


@dataclass
class NavigationEvent:
    url: str
    is_main_frame: bool = True


MonitorEvent = (
    ConsoleEvent | PageErrorEvent | ContextCreatedEvent
    | ContextDestroyedEvent | NavigationEvent
)


# ---------------------------------------------------------------------------
# Execution results
# ---------------------------------------------------------------------------

@dataclass
class ExecutionOutcome:
    """Structured reply from a sandbox execution."""
    success: bool
    result: Any = None
    error: str | None = None
    channel: str = "ui"  # "ui" or "worker"
    context_url: str | None = None
    attempts: int = 1

    def to_dict(self) -> dict:
        data: dict[str, Any] = {"success": self.success}
        if self.success:
            data["result"] = self.result
        else:
            data["error"] = self.error
        data["channel"] = self.channel
        data["attempts"] = self.attempts
        return data


DiagnosticHook = Callable[[str, dict], None]


# ---------------------------------------------------------------------------
# Cache & shaping
# ---------------------------------------------------------------------------

@dataclass
class CacheEntry:
    key: str
    payload: Any
    timestamp: float

    def age(self, now: float | None = None) -> float:
        return (now if now is not None else time.time()) - self.timestamp


@dataclass
class ShapeFilters:
    """Predicates for the ``filtered`` response mode. All present ones are ANDed."""
    collection: str | None = None    # collection id or case-insensitive name substring
    name_pattern: str | None = None  # regex, or plain substring if it does not compile
    mode: str | None = None          # mode id or mode name

    def is_empty(self) -> bool:
        return not (self.collection or self.name_pattern or self.mode)

    def to_dict(self) -> dict:
        return {k: v for k, v in asdict(self).items() if v}


@dataclass
class ShapedResponse:
    mode: str
    requested_mode: str
    data: dict
    estimated_tokens: int
    downgraded: bool = False
    filters: ShapeFilters | None = None
    names_omitted: bool = False

    def to_dict(self) -> dict:
        out: dict[str, Any] = {
            "mode": self.mode,
            "estimated_tokens": self.estimated_tokens,
        }
        notices = []
        if self.downgraded:
            out["downgraded"] = True
            out["requested_mode"] = self.requested_mode
            notices.append(
                f"Response exceeded the size budget in '{self.requested_mode}' mode "
                "and was reduced to a summary."
            )
        if self.names_omitted:
            out["names_omitted"] = True
            notices.append("Variable names were omitted to stay within the size budget.")
        if notices:
            out["notice"] = " ".join(notices) + " Use filters to narrow the result."
        if self.filters is not None and not self.filters.is_empty():
            out["filters"] = self.filters.to_dict()
        out["data"] = self.data
        return out


# ---------------------------------------------------------------------------
# Port advertisement
# ---------------------------------------------------------------------------

@dataclass
class PortAdvertisement:
    port: int
    pid: int
    host: str
    started_at: str  # ISO-8601

    def to_dict(self) -> dict:
        return {
            "port": self.port,
            "pid": self.pid,
            "host": self.host,
            "startedAt": self.started_at,
        }

    @classmethod
    def from_dict(cls, raw: dict) -> PortAdvertisement:
        return cls(
            port=int(raw["port"]),
            pid=int(raw["pid"]),
            host=str(raw.get("host", "localhost")),
            started_at=str(raw.get("startedAt", "")),
        )


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------

class BridgeError(Exception):
    """Base class for everything the bridge surfaces to its callers."""
    hint: str = ""


class NoExecutionContext(BridgeError):
    hint = "Run a plugin in the desktop app so its sandbox is available, then retry."

    def __init__(self, message: str, channel: str = "worker", attempts: int = 1):
        super().__init__(message)
        self.channel = channel
        self.attempts = attempts


class NoPluginUI(NoExecutionContext):
    hint = "Open the Desktop Bridge plugin in the desktop app; write operations need its UI running."

    def __init__(self, message: str, attempts: int = 1):
        super().__init__(message, channel="ui", attempts=attempts)


class ContextDetached(BridgeError):
    """The context closed, reloaded or navigated between discovery and use."""

    def __init__(self, message: str, context_url: str | None = None):
        super().__init__(message)
        self.context_url = context_url


class EvaluationTimeout(BridgeError):
    hint = "The sandbox did not answer in time. Increase the timeout or simplify the code."

    def __init__(self, message: str, timeout_ms: int):
        super().__init__(message)
        self.timeout_ms = timeout_ms


class EvaluationThrew(BridgeError):
    hint = "The code raised inside the sandbox. Check the console logs for details."

    def __init__(self, message: str, context_url: str | None = None):
        super().__init__(message)
        self.context_url = context_url


class PortRangeExhausted(BridgeError):
    hint = "Stop an idle instance or choose a different preferred port."

    def __init__(self, preferred: int, size: int):
        super().__init__(
            f"All ports {preferred}-{preferred + size - 1} are in use; "
            "no slot left for another instance."
        )
        self.preferred = preferred
        self.size = size


class HostConnectionError(BridgeError):
    hint = "Start the desktop app with remote debugging enabled."


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

@dataclass
class TruncationConfig:
    max_string_length: int = 500
    max_array_length: int = 10
    max_object_depth: int = 3
    max_object_keys: int = 10


@dataclass
class ConsoleConfig:
    buffer_size: int = 1000
    filter_levels: list[str] = field(default_factory=lambda: list(LOG_LEVELS))
    truncation: TruncationConfig = field(default_factory=TruncationConfig)
    plugin_url_markers: list[str] = field(default_factory=lambda: list(DEFAULT_PLUGIN_URL_MARKERS))
    host_url_markers: list[str] = field(default_factory=lambda: list(DEFAULT_HOST_URL_MARKERS))


@dataclass
class ExecutionConfig:
    worker_marker: str = "figma"           # global that exists only inside the plugin sandbox
    ui_entry_point: str = "executeCode"    # function registered by the companion UI
    ui_timeout_ms: int = 5000
    worker_timeout_ms: int = 30_000
    timeout_grace_ms: int = 2000           # extra wait on top of the UI-side timeout
    max_attempts: int = 2
    retry_delay: float = 0.1


@dataclass
class CacheConfig:
    ttl_seconds: float = 300.0
    max_entries: int = 10
    token_budget: int = 25_000


@dataclass
class PortConfig:
    preferred_port: int = 9223
    range_size: int = 10
    host: str = "localhost"
    advertisement_dir: str | None = None  # None = platform temp dir
    file_prefix: str = "sandbox-bridge-"


@dataclass
class HostConfig:
    debug_endpoint: str = "http://localhost:9222"
    url_marker: str = "figma.com"
    connect_timeout: float = 5.0


@dataclass
class BridgeConfig:
    version: str = "1.0"
    log_level: str = "INFO"
    console: ConsoleConfig = field(default_factory=ConsoleConfig)
    execution: ExecutionConfig = field(default_factory=ExecutionConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    ports: PortConfig = field(default_factory=PortConfig)
    host: HostConfig = field(default_factory=HostConfig)
