"""HostConnection: attach to the desktop app's remote debugging endpoint.

The app has to be started with ``--remote-debugging-port``. The endpoint is
probed with a plain HTTP request first so a missing app produces a readable
error instead of a protocol timeout; the page is then driven via Playwright.
"""

from __future__ import annotations

import logging
from typing import Any, Sequence

import httpx
from playwright.async_api import Browser, Page, Playwright, async_playwright

from ..types import HostConfig, HostConnectionError
from .playwright_target import PlaywrightTarget

logger = logging.getLogger(__name__)


def launch_instructions(endpoint: str) -> str:
    port = endpoint.rsplit(":", 1)[-1].strip("/")
    return (
        f"Could not reach the desktop app's debug endpoint at {endpoint}.\n\n"
        "Make sure:\n"
        "1. The desktop app is running\n"
        f"2. It was launched with: --remote-debugging-port={port}\n"
        "3. \"Use Developer VM\" is enabled in Plugins > Development\n\n"
        "macOS launch command:\n"
        f"  open -a \"Figma\" --args --remote-debugging-port={port}"
    )


def select_best_page(pages: Sequence[Any], url_marker: str) -> Any | None:
    """Pick the page to monitor among *pages*.

    Candidates are pages whose URL contains *url_marker* and that are not
    devtools windows. Preference: most plugin workers, then a document page
    (``/design/`` or ``/file/``), then the first candidate.
    """
    candidates = [p for p in pages if url_marker in p.url and "devtools" not in p.url]
    if not candidates:
        return None

    with_workers = [p for p in candidates if len(p.workers) > 0]
    if with_workers:
        return max(with_workers, key=lambda p: len(p.workers))

    for page in candidates:
        if "/design/" in page.url or "/file/" in page.url:
            return page
    return candidates[0]


class HostConnection:
    """Owns the Playwright driver, the CDP browser handle and the chosen page."""

    def __init__(self, config: HostConfig) -> None:
        self.config = config
        self._playwright: Playwright | None = None
        self._browser: Browser | None = None
        self.page: Page | None = None
        self.target: PlaywrightTarget | None = None

    @property
    def is_connected(self) -> bool:
        return self._browser is not None and self._browser.is_connected()

    async def check_endpoint(self) -> dict:
        """``GET /json/version`` on the debug endpoint; raises HostConnectionError if unreachable."""
        url = self.config.debug_endpoint.rstrip("/") + "/json/version"
        try:
            async with httpx.AsyncClient(timeout=self.config.connect_timeout) as client:
                resp = await client.get(url)
                resp.raise_for_status()
                return resp.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise HostConnectionError(
                f"{launch_instructions(self.config.debug_endpoint)}\n\nError: {exc}"
            ) from exc

    async def connect(self) -> PlaywrightTarget:
        if self.target is not None and self.is_connected:
            logger.info("Host already connected, reusing page")
            return self.target

        if self._playwright is not None or self._browser is not None:
            logger.info("Previous connection is gone, releasing it before reconnecting")
            await self.close()

        version = await self.check_endpoint()
        logger.info(
            "Connecting to %s (%s)",
            self.config.debug_endpoint, version.get("Browser", "unknown browser"),
        )

        self._playwright = await async_playwright().start()
        try:
            self._browser = await self._playwright.chromium.connect_over_cdp(
                self.config.debug_endpoint,
                timeout=self.config.connect_timeout * 1000,
            )
        except Exception as exc:
            await self._playwright.stop()
            self._playwright = None
            raise HostConnectionError(
                f"{launch_instructions(self.config.debug_endpoint)}\n\nError: {exc}"
            ) from exc

        pages = [page for context in self._browser.contexts for page in context.pages]
        page = select_best_page(pages, self.config.url_marker)
        if page is None:
            await self.close()
            raise HostConnectionError(
                f"Connected to {self.config.debug_endpoint}, but no page matching "
                f"'{self.config.url_marker}' is open. Open a document in the desktop app."
            )

        logger.info("Selected page for monitoring: %s (%d workers)", page.url, len(page.workers))
        self.page = page
        self.target = PlaywrightTarget(page)
        return self.target

    async def close(self) -> None:
        """Disconnect without closing the desktop app."""
        if self.target is not None:
            self.target.close()
            self.target = None
        self.page = None
        if self._browser is not None:
            try:
                await self._browser.close()
            except Exception:
                logger.debug("Browser handle already closed", exc_info=True)
            self._browser = None
        if self._playwright is not None:
            await self._playwright.stop()
            self._playwright = None
        logger.info("Disconnected from host")
