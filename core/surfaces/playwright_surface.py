"""
Playwright-backed browsing surfaces.

Each surface wraps one Playwright page. Page events are translated into
delegate calls:
- 3xx main-frame navigation responses → on_server_redirect
- `load`                              → on_navigation_finished
- `popup`                             → on_new_window_requested
- page `close` not initiated by us    → on_close_requested
- failed navigations                  → on_navigation_failure
Custom-scheme links never reach the network stack; Chromium reports them
as failed navigation requests, which are routed through decide_policy so
the external opener gets them.
"""

import logging
from typing import Any, Dict, List, Optional
from urllib.parse import urljoin, urlsplit

from playwright.async_api import Browser, BrowserContext, Page, Playwright, Response, Request
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import async_playwright

from core.surface import (
    TOO_MANY_REDIRECTS,
    BrowsingSurface,
    CookieStoreUnavailable,
    NavigationError,
    NewWindowRequest,
    SurfaceFactory,
)

logger = logging.getLogger("session_tracker")

# Keys Playwright accepts in BrowserContext.add_cookies
COOKIE_KEYS = ("name", "value", "url", "domain", "path", "expires", "httpOnly", "secure", "sameSite")


class PlaywrightSurface(BrowsingSurface):
    def __init__(self, page: Page, context: BrowserContext, factory: "PlaywrightSurfaceFactory"):
        super().__init__()
        self.page = page
        self.context = context
        self.factory = factory
        self.history: List[str] = []
        self._closing = False

        page.on("response", self._on_response)
        page.on("load", self._on_load)
        page.on("popup", self._on_popup)
        page.on("close", self._on_close)
        page.on("requestfailed", self._on_request_failed)
        page.on("framenavigated", self._on_frame_navigated)

    # --- Page events ---

    async def _on_response(self, response: Response):
        request = response.request
        if not (request.is_navigation_request() and request.frame == self.page.main_frame):
            return
        if not 300 <= response.status < 400 or self.delegate is None:
            return
        location = await response.header_value("location")
        if not location:
            return
        # page.url is still about:blank during a first load, so the hop's origin is the response itself
        await self.delegate.on_server_redirect(self, response.url, urljoin(response.url, location))

    async def _on_load(self, page: Page):
        if self.delegate is not None:
            await self.delegate.on_navigation_finished(self, page.url)

    async def _on_popup(self, popup: Page):
        if self.delegate is None:
            await popup.close()
            return
        request = NewWindowRequest(url=popup.url, handle=popup)
        created = await self.delegate.on_new_window_requested(self, request)
        if created is None:
            await popup.close()

    async def _on_close(self, page: Page):
        if not self._closing and self.delegate is not None:
            await self.delegate.on_close_requested(self)

    async def _on_request_failed(self, request: Request):
        if not (request.is_navigation_request() and request.frame == self.page.main_frame):
            return
        if self.delegate is None:
            return
        if urlsplit(request.url).scheme.lower() not in ("http", "https"):
            await self.delegate.decide_policy(self, request.url)
            return
        failure = request.failure or ""
        code = TOO_MANY_REDIRECTS if "ERR_TOO_MANY_REDIRECTS" in failure else "load_failed"
        await self.delegate.on_navigation_failure(self, NavigationError(code, request.url, failure))

    def _on_frame_navigated(self, frame):
        if frame != self.page.main_frame:
            return
        if not self.history or self.history[-1] != frame.url:
            self.history.append(frame.url)

    # --- BrowsingSurface ---

    @property
    def current_url(self) -> Optional[str]:
        url = self.page.url
        return None if not url or url == "about:blank" else url

    @property
    def can_go_back(self) -> bool:
        return len(self.history) > 1

    async def load(self, url: str) -> None:
        try:
            await self.page.goto(url, wait_until="commit")
        except PlaywrightError as e:
            # Superseded navigations and failures are reported through requestfailed
            logger.debug(f"goto {url} did not commit: {e}")

    async def stop_loading(self) -> None:
        try:
            await self.page.evaluate("() => window.stop()")
        except PlaywrightError as e:
            logger.debug(f"window.stop() failed: {e}")

    async def go_back(self) -> None:
        if self.can_go_back:
            self.history.pop()
        await self.page.go_back(wait_until="commit")

    async def get_cookies(self) -> List[Dict[str, Any]]:
        try:
            return await self.context.cookies()
        except PlaywrightError as e:
            raise CookieStoreUnavailable(str(e)) from e

    async def set_cookie(self, cookie: Dict[str, Any]) -> None:
        clean = {key: cookie[key] for key in COOKIE_KEYS if key in cookie}
        if "url" not in clean:
            clean.setdefault("path", "/")
        try:
            await self.context.add_cookies([clean])
        except PlaywrightError as e:
            raise CookieStoreUnavailable(str(e)) from e

    async def attach_over(self, parent: BrowsingSurface) -> None:
        await self.page.bring_to_front()

    async def close(self) -> None:
        self._closing = True
        if not self.page.is_closed():
            await self.page.close()


class PlaywrightSurfaceFactory(SurfaceFactory):
    """Creates surfaces in one shared browser context, launching Chromium on first use."""

    def __init__(self, headless: bool = True):
        self.headless = headless
        self._playwright: Optional[Playwright] = None
        self._browser: Optional[Browser] = None
        self._context: Optional[BrowserContext] = None

    async def _ensure_context(self) -> BrowserContext:
        if self._context is None:
            self._playwright = await async_playwright().start()
            self._browser = await self._playwright.chromium.launch(headless=self.headless)
            self._context = await self._browser.new_context()
            logger.info("✅ Chromium launched for browsing sessions")
        return self._context

    async def create(
        self,
        parent: Optional[BrowsingSurface] = None,
        request: Optional[NewWindowRequest] = None,
    ) -> BrowsingSurface:
        context = await self._ensure_context()
        if request is not None and isinstance(request.handle, Page):
            page = request.handle
        else:
            page = await context.new_page()
        return PlaywrightSurface(page, context, self)

    async def aclose(self):
        if self._context is not None:
            await self._context.close()
        if self._browser is not None:
            await self._browser.close()
        if self._playwright is not None:
            await self._playwright.stop()
        self._context = self._browser = self._playwright = None
