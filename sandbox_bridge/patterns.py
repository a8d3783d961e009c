"""URL markers used to classify where a console line came from.

Kept in a standalone module to avoid circular imports between types.py
and core/console_monitor.py.
"""

from __future__ import annotations

from urllib.parse import urlsplit

# Plugin code runs in blob: workers, sandboxed iframes, or dev-mode extension pages.
DEFAULT_PLUGIN_URL_MARKERS: list[str] = [
    "plugin",
    "iframe",
    "blob:",
    "chrome-extension:",
    "/plugin-",
]

DEFAULT_HOST_URL_MARKERS: list[str] = [
    "figma.com",
]

# Substrings of protocol error messages meaning the context went away mid-call.
DETACHMENT_MARKERS: list[str] = [
    "detached",
    "execution context was destroyed",
    "target closed",
    "has been closed",
    "cannot find context with specified id",
]


def classify_source(
    url: str | None,
    plugin_markers: list[str] | None = None,
    host_markers: list[str] | None = None,
) -> str:
    """Return "plugin", "host" or "unknown" for a console event's source URL."""
    if not url:
        return "unknown"
    plugin_markers = DEFAULT_PLUGIN_URL_MARKERS if plugin_markers is None else plugin_markers
    host_markers = DEFAULT_HOST_URL_MARKERS if host_markers is None else host_markers

    for marker in plugin_markers:
        if marker.endswith(":"):
            if url.startswith(marker):
                return "plugin"
        elif marker in url:
            return "plugin"

    if any(marker in url for marker in host_markers):
        return "host"
    return "unknown"


def normalize_base_url(url: str) -> str:
    """Scheme + host + path, without query or fragment.

    Two URLs with the same base point at the same document; the host app
    rewrites fragments and queries without reloading.
    """
    try:
        parts = urlsplit(url)
    except ValueError:
        return url
    if not parts.scheme:
        return url.split("#", 1)[0].split("?", 1)[0]
    return f"{parts.scheme}://{parts.netloc}{parts.path}"


def is_detachment_message(message: str) -> bool:
    lowered = message.lower()
    return any(marker in lowered for marker in DETACHMENT_MARKERS)
