"""MCP server exposing the sandbox bridge as tools, resources, and prompts."""

from __future__ import annotations

import json
import logging
import os

from mcp.server.fastmcp import FastMCP

from ..types import BridgeError, ShapeFilters

logger = logging.getLogger(__name__)

mcp = FastMCP(
    "sandbox-bridge",
    instructions=(
        "Run code inside the desktop app's plugin sandbox, read its console "
        "output, and inspect document variables through the remote debugging port."
    ),
)

# Lazy session singleton
_session = None


def _get_session():
    """Get or create the session singleton."""
    global _session
    if _session is None:
        from ..config import load_config
        from ..session import BridgeSession
        config_path = os.environ.get("SANDBOX_BRIDGE_CONFIG")
        _session = BridgeSession(load_config(config_path))
    return _session


def set_session(session) -> None:
    """Install the session created by the service runner."""
    global _session
    _session = session


def _error_payload(exc: BridgeError) -> str:
    return json.dumps({
        "error": type(exc).__name__,
        "message": str(exc),
        "hint": exc.hint,
    })


# ---------------------------------------------------------------------------
# Tools
# ---------------------------------------------------------------------------

@mcp.tool()
async def get_console_logs(
    count: int = 100,
    level: str = "all",
    since: float | None = None,
) -> str:
    """Retrieve recent console output from the desktop app and its plugins.

    Connects to the app on first use, and again after it went away, so
    logging starts immediately.

    Args:
        count: Maximum number of entries to return (most recent last).
        level: One of log, info, warn, error, debug, or "all".
        since: Only entries at or after this epoch timestamp (seconds).

    Returns:
        JSON with the matching log entries and buffer status.
    """
    session = _get_session()
    try:
        if session.target is None or session.connection_lost():
            await session.connect()
    except BridgeError as exc:
        return _error_payload(exc)

    await session.monitor.drain()
    logs = session.get_logs(count=count, level=level, since=since)
    return json.dumps({
        "logs": [entry.to_dict() for entry in logs],
        "total_count": len(logs),
        "status": session.monitor.status(),
    }, default=str)


@mcp.tool()
def clear_console() -> str:
    """Clear the console log buffer.

    Returns:
        JSON with the number of entries removed.
    """
    session = _get_session()
    cleared = session.clear_logs()
    return json.dumps({"status": "cleared", "cleared_count": cleared})


@mcp.tool()
async def execute(code: str, timeout_ms: int = 5000, channel: str = "ui") -> str:
    """Execute JavaScript inside the plugin sandbox with full plugin API access.

    The "ui" channel goes through the Desktop Bridge plugin's UI and can
    modify the document; it needs that plugin to be open. The "worker"
    channel evaluates an expression directly in a running plugin's worker.

    Args:
        code: JavaScript to run. For "worker", an expression (may be an async IIFE).
        timeout_ms: Execution timeout in milliseconds.
        channel: "ui" (default) or "worker".

    Returns:
        JSON with success, the result or error, and the channel used.
    """
    session = _get_session()
    try:
        outcome = await session.run_in_sandbox(code, timeout_ms=timeout_ms, channel=channel)
    except BridgeError as exc:
        return _error_payload(exc)
    except ValueError as exc:
        return json.dumps({"error": "ValueError", "message": str(exc)})
    return json.dumps(outcome.to_dict(), default=str)


@mcp.tool()
async def get_variables(
    file_key: str,
    mode: str = "summary",
    collection: str | None = None,
    name_pattern: str | None = None,
    variable_mode: str | None = None,
    refresh: bool = False,
) -> str:
    """Get the open document's variables and collections.

    Responses are cached per file for a few minutes and kept under a size
    budget; oversized results come back as a summary with a notice.

    Args:
        file_key: Key of the open document, used as the cache key.
        mode: "summary" (counts and names), "filtered", or "full".
        collection: Filter: collection id or part of its name.
        name_pattern: Filter: regex (or plain text) matched against variable names.
        variable_mode: Filter: mode id or mode name, e.g. "Dark".
        refresh: Bypass the cache and query the sandbox again.

    Returns:
        JSON with the shaped dataset.
    """
    session = _get_session()
    filters = ShapeFilters(collection=collection, name_pattern=name_pattern, mode=variable_mode)
    try:
        result = await session.get_variables(
            file_key, mode=mode, filters=None if filters.is_empty() else filters, refresh=refresh,
        )
    except BridgeError as exc:
        return _error_payload(exc)
    except ValueError as exc:
        return json.dumps({"error": "ValueError", "message": str(exc)})
    return json.dumps(result, default=str)


@mcp.tool()
def list_instances(preferred_port: int | None = None) -> str:
    """List live sandbox-bridge instances on this machine.

    Args:
        preferred_port: First port of the range to scan (defaults to config).

    Returns:
        JSON list of advertisements of instances whose process is alive.
    """
    session = _get_session()
    instances = session.discover_instances(preferred_port)
    return json.dumps({
        "instances": [a.to_dict() for a in instances],
        "this_port": session.coordinator.port,
    })


@mcp.tool()
def bridge_status() -> str:
    """Connection, console buffer, cache and port status of this instance.

    Returns:
        JSON status summary.
    """
    session = _get_session()
    return json.dumps(session.status(), default=str)


@mcp.tool()
async def reconnect() -> str:
    """Drop the current desktop connection and attach again.

    Use after the app was restarted or the document was switched.

    Returns:
        JSON status after reconnecting, or an error with a launch hint.
    """
    session = _get_session()
    try:
        await session.reconnect()
    except BridgeError as exc:
        return _error_payload(exc)
    return json.dumps({"status": "reconnected", **session.status()}, default=str)


# ---------------------------------------------------------------------------
# Resources
# ---------------------------------------------------------------------------

@mcp.resource("sandbox-bridge://logs")
def recent_logs() -> str:
    """The 50 most recent console entries."""
    session = _get_session()
    return json.dumps([e.to_dict() for e in session.get_logs(count=50)], default=str)


@mcp.resource("sandbox-bridge://instances")
def instances_resource() -> str:
    """Live instances advertised on this machine."""
    session = _get_session()
    return json.dumps([a.to_dict() for a in session.discover_instances()])


# ---------------------------------------------------------------------------
# Prompts
# ---------------------------------------------------------------------------

@mcp.prompt()
def debug_plugin(symptom: str) -> str:
    """Walk through debugging a misbehaving plugin.

    Args:
        symptom: What the plugin does wrong.
    """
    return (
        f"A plugin in the desktop app misbehaves: {symptom}\n"
        "Clear the console, ask me to reproduce the problem, then read the "
        "console logs (errors first) and explain the likely cause."
    )


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

def serve():
    """Start the MCP server (stdio transport)."""
    mcp.run()


if __name__ == "__main__":
    serve()
