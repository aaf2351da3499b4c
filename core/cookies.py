"""
Cookie continuity across launches.

The whole jar is stored under one key as domain -> (name -> properties).
A later cookie with the same (domain, name) fully replaces the earlier one.
Persistence is best-effort: an unavailable cookie store never breaks a session.
"""

import logging
from typing import Any, Dict, List

from core.store import AppStateStore
from core.surface import BrowsingSurface, CookieStoreUnavailable

logger = logging.getLogger("cookies")

CookieMap = Dict[str, Dict[str, Dict[str, Any]]]


def group_cookies(cookies: List[Dict[str, Any]]) -> CookieMap:
    grouped: CookieMap = {}
    for cookie in cookies:
        domain = cookie.get("domain")
        name = cookie.get("name")
        if not domain or not name:
            continue
        grouped.setdefault(domain, {})[name] = dict(cookie)
    return grouped


def flatten_cookies(grouped: CookieMap) -> List[Dict[str, Any]]:
    cookies = []
    for domain, by_name in grouped.items():
        if not isinstance(by_name, dict):
            continue
        for name, properties in by_name.items():
            if not isinstance(properties, dict):
                continue
            cookie = dict(properties)
            cookie.setdefault("domain", domain)
            cookie.setdefault("name", name)
            cookies.append(cookie)
    return cookies


class CookiePersistence:
    def __init__(self, state: AppStateStore):
        self.state = state

    async def persist(self, surface: BrowsingSurface) -> bool:
        """Snapshot every cookie visible to `surface` into the store."""
        try:
            cookies = await surface.get_cookies()
        except CookieStoreUnavailable as e:
            logger.warning(f"⚠️ Cookie store unavailable on {surface.surface_id}, not persisting: {e}")
            return False

        grouped = group_cookies(cookies)
        self.state.set_session_cookies(grouped)
        logger.debug(f"🍪 Persisted {len(cookies)} cookie(s) across {len(grouped)} domain(s)")
        return True

    async def restore(self, surface: BrowsingSurface) -> int:
        """Install every stored cookie into `surface`. Returns how many were installed."""
        installed = 0
        for cookie in flatten_cookies(self.state.get_session_cookies()):
            try:
                await surface.set_cookie(cookie)
                installed += 1
            except CookieStoreUnavailable as e:
                logger.warning(f"⚠️ Cookie store unavailable on {surface.surface_id}, continuing without cookies: {e}")
                break
            except Exception as e:
                logger.warning(f"⚠️ Skipping cookie {cookie.get('name')}@{cookie.get('domain')}: {e}")
        if installed:
            logger.info(f"🍪 Restored {installed} cookie(s) into {surface.surface_id}")
        return installed
