"""
Redirect Guard

Per-browsing-context protection against server-driven redirect loops.

States:
- counting: redirects since the last fresh top-level load
- exceeded: count > limit, the context must stop and reload last_valid_url
- recovering: the forced reload is in flight; it does NOT reset the count
"""

import logging
from dataclasses import dataclass
from typing import Optional

logger = logging.getLogger("redirect_guard")

DEFAULT_REDIRECT_LIMIT = 70


@dataclass
class RedirectGuard:
    limit: int = DEFAULT_REDIRECT_LIMIT
    count: int = 0
    last_valid_url: Optional[str] = None
    recovering: bool = False

    def begin_navigation(self, url: str):
        """A top-level load that is not itself a redirect response."""
        if self.recovering:
            self.recovering = False
            return
        self.count = 0

    def on_server_redirect(self, from_url: Optional[str]) -> bool:
        """Count one redirect. Returns True when the limit is exceeded."""
        if self.count == 0 and from_url:
            # First hop of a chain: its origin is the last page that loaded
            self.last_valid_url = from_url
        self.count += 1
        return self.count > self.limit

    def on_navigation_finished(self, url: Optional[str]):
        if url:
            self.last_valid_url = url

    def start_recovery(self) -> Optional[str]:
        """Mark the forced reload and return the URL to load (if any)."""
        logger.warning(f"⚠️ Redirect limit {self.limit} exceeded after {self.count} hops")
        if self.last_valid_url:
            self.recovering = True
        return self.last_valid_url
