"""sandbox-bridge: run code in a desktop app's plugin sandbox over its debug port."""

from .config import load_config
from .session import BridgeSession
from .types import (
    BridgeConfig,
    BridgeError,
    ExecutionOutcome,
    LogEntry,
    NoExecutionContext,
    NoPluginUI,
    PortAdvertisement,
    ShapedResponse,
    ShapeFilters,
)

__version__ = "0.1.0"

__all__ = [
    "BridgeSession",
    "load_config",
    "BridgeConfig",
    "BridgeError",
    "ExecutionOutcome",
    "LogEntry",
    "NoExecutionContext",
    "NoPluginUI",
    "PortAdvertisement",
    "ShapedResponse",
    "ShapeFilters",
]
