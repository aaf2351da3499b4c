"""
Session Tracker

Owns one browsing session: the primary surface plus a LIFO stack of popups,
each with its own redirect guard. Acts as the delegate of every surface it
owns, so navigation policy, redirect accounting, cookie persistence and
popup lifecycle all funnel through here.
"""

import logging
from typing import Awaitable, Callable, Dict, List, Optional
from urllib.parse import urlsplit

from config.settings_loader import get_browsing_value
from core.cookies import CookiePersistence
from core.popups import PopupManager
from core.redirect_guard import RedirectGuard
from core.surface import (
    TOO_MANY_REDIRECTS,
    BrowsingSurface,
    NavigationError,
    NavigationPolicy,
    NewWindowRequest,
    SurfaceFactory,
)

logger = logging.getLogger("session_tracker")

ExternalOpener = Callable[[str], Awaitable[None]]
FailureHandler = Callable[[NavigationError], None]


class SessionTracker:
    def __init__(
        self,
        factory: SurfaceFactory,
        cookies: CookiePersistence,
        external_opener: Optional[ExternalOpener] = None,
        failure_handler: Optional[FailureHandler] = None,
        redirect_limit: Optional[int] = None,
    ):
        self.factory = factory
        self.cookies = cookies
        self.popups = PopupManager(factory)
        self.external_opener = external_opener
        self.failure_handler = failure_handler
        self.redirect_limit = redirect_limit if redirect_limit is not None else get_browsing_value("redirect_limit")
        self.allowed_schemes = {s.lower() for s in get_browsing_value("allowed_schemes")}

        self.primary: Optional[BrowsingSurface] = None
        self.secondaries: List[BrowsingSurface] = []
        self.guards: Dict[str, RedirectGuard] = {}
        self.closed = False

    # === LIFECYCLE ===

    async def open(self, url: str) -> BrowsingSurface:
        """Create the primary surface, restore cookies, then navigate."""
        self.primary = await self.factory.create()
        self._adopt(self.primary)
        await self.cookies.restore(self.primary)
        await self._load(self.primary, url)
        logger.info(f"✅ Session opened on {self.primary.surface_id} → {url}")
        return self.primary

    async def navigate(self, url: str):
        """New destination for the live session (fresh top-level load)."""
        if self.primary is None:
            await self.open(url)
            return
        await self._load(self.primary, url)

    async def close(self):
        while self.secondaries:
            await self.popups.destroy(self.secondaries.pop(), reason="session closed")
        if self.primary is not None:
            self.primary.delegate = None
            try:
                await self.primary.close()
            except Exception as e:
                logger.warning(f"⚠️ Failed to close primary surface: {e}")
            self.guards.pop(self.primary.surface_id, None)
        self.closed = True
        logger.info("🛑 Session closed")

    def _adopt(self, surface: BrowsingSurface):
        surface.delegate = self
        self.guards[surface.surface_id] = RedirectGuard(limit=self.redirect_limit)

    def guard_for(self, surface: BrowsingSurface) -> RedirectGuard:
        guard = self.guards.get(surface.surface_id)
        if guard is None:
            guard = self.guards[surface.surface_id] = RedirectGuard(limit=self.redirect_limit)
        return guard

    async def _load(self, surface: BrowsingSurface, url: str):
        self.guard_for(surface).begin_navigation(url)
        await surface.load(url)

    # === NAVIGATION POLICY ===

    async def decide_policy(self, surface: BrowsingSurface, url: str) -> NavigationPolicy:
        scheme = urlsplit(url).scheme.lower()
        if scheme in self.allowed_schemes:
            return NavigationPolicy.ALLOW

        logger.info(f"↗️ Handing {scheme}: link to the system: {url}")
        if self.external_opener is not None:
            try:
                await self.external_opener(url)
            except Exception as e:
                logger.warning(f"⚠️ External opener failed for {url}: {e}")
        return NavigationPolicy.CANCEL

    async def on_server_redirect(self, surface: BrowsingSurface, from_url: Optional[str], to_url: str):
        guard = self.guard_for(surface)
        exceeded = guard.on_server_redirect(from_url)

        # Snapshot cookies on every hop; the final page may never arrive
        await self.cookies.persist(surface)

        if exceeded:
            await self._recover(surface, guard)

    async def _recover(self, surface: BrowsingSurface, guard: RedirectGuard):
        await surface.stop_loading()
        target = guard.start_recovery()
        if target:
            logger.info(f"🔄 Reloading last valid page {target} on {surface.surface_id}")
            await self._load(surface, target)

    async def on_navigation_finished(self, surface: BrowsingSurface, url: Optional[str]):
        self.guard_for(surface).on_navigation_finished(url or surface.current_url)
        await self.cookies.persist(surface)

    async def on_navigation_failure(self, surface: BrowsingSurface, error: NavigationError):
        guard = self.guard_for(surface)
        if error.code == TOO_MANY_REDIRECTS and guard.last_valid_url:
            logger.warning(f"⚠️ Too many redirects on {surface.surface_id}, reloading {guard.last_valid_url}")
            guard.recovering = True
            await self._load(surface, guard.last_valid_url)
            return

        logger.warning(f"⚠️ Navigation failed on {surface.surface_id}: {error.code} ({error.url})")
        if self.failure_handler is not None:
            self.failure_handler(error)

    # === POPUPS ===

    async def on_new_window_requested(self, surface: BrowsingSurface, request: NewWindowRequest) -> Optional[BrowsingSurface]:
        if self.primary is None or self.closed:
            return None

        popup = await self.popups.spawn(surface, request)
        self._adopt(popup)
        self.secondaries.append(popup)
        await popup.attach_over(self.primary)

        async def back_gesture():
            await self._popup_back(popup)

        popup.set_back_gesture_handler(back_gesture)

        if request.url and request.handle is None:
            await self._load(popup, request.url)
        return popup

    async def _popup_back(self, popup: BrowsingSurface):
        if popup.can_go_back:
            await popup.go_back()
        else:
            await self._remove_secondary(popup, reason="back gesture")

    async def on_close_requested(self, surface: BrowsingSurface):
        if surface in self.secondaries:
            await self._remove_secondary(surface, reason="closed by page")

    async def _remove_secondary(self, popup: BrowsingSurface, reason: str):
        if popup in self.secondaries:
            self.secondaries.remove(popup)
        self.guards.pop(popup.surface_id, None)
        await self.popups.destroy(popup, reason=reason)

    async def close_secondary(self) -> bool:
        """Close the newest popup; with none open, step the primary back. Returns True if anything happened."""
        if self.secondaries:
            await self._remove_secondary(self.secondaries[-1], reason="closed by user")
            return True
        if self.primary is not None and self.primary.can_go_back:
            await self.primary.go_back()
            return True
        return False

    @property
    def has_open_popups(self) -> bool:
        return bool(self.secondaries)

    def status(self) -> dict:
        return {
            "primary": self.primary.surface_id if self.primary else None,
            "url": self.primary.current_url if self.primary else None,
            "popups": [s.surface_id for s in self.secondaries],
            "redirects": {sid: g.count for sid, g in self.guards.items()},
        }
