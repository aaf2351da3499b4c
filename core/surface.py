"""
Browsing Surface - the opaque rendering capability the session tracker drives.

The rendering engine itself is out of scope; a surface only exposes the
navigation, cookie and window operations the tracker needs, and reports
navigation activity back to its delegate.
"""

import itertools
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol

TOO_MANY_REDIRECTS = "too_many_redirects"

_surface_ids = itertools.count(1)


class NavigationPolicy(str, Enum):
    ALLOW = "allow"
    CANCEL = "cancel"


class NavigationError(Exception):
    def __init__(self, code: str, url: Optional[str] = None, message: str = ""):
        super().__init__(message or code)
        self.code = code
        self.url = url


class CookieStoreUnavailable(Exception):
    """The surface's cookie store cannot be read or written right now."""
    pass


@dataclass
class NewWindowRequest:
    url: Optional[str] = None
    # Engine-specific handle (e.g. an already-created popup page)
    handle: Any = None
    features: Dict[str, Any] = field(default_factory=dict)


class SurfaceDelegate(Protocol):
    async def decide_policy(self, surface: "BrowsingSurface", url: str) -> NavigationPolicy: ...
    async def on_server_redirect(self, surface: "BrowsingSurface", from_url: Optional[str], to_url: str) -> None: ...
    async def on_navigation_finished(self, surface: "BrowsingSurface", url: Optional[str]) -> None: ...
    async def on_navigation_failure(self, surface: "BrowsingSurface", error: NavigationError) -> None: ...
    async def on_new_window_requested(self, surface: "BrowsingSurface", request: NewWindowRequest) -> Optional["BrowsingSurface"]: ...
    async def on_close_requested(self, surface: "BrowsingSurface") -> None: ...


class BrowsingSurface(ABC):
    def __init__(self):
        self.surface_id = f"surface-{next(_surface_ids)}"
        self.delegate: Optional[SurfaceDelegate] = None
        self.back_gesture_handler: Optional[Callable[[], Awaitable[None]]] = None

    @property
    @abstractmethod
    def current_url(self) -> Optional[str]:
        ...

    @property
    @abstractmethod
    def can_go_back(self) -> bool:
        ...

    @abstractmethod
    async def load(self, url: str) -> None:
        ...

    @abstractmethod
    async def stop_loading(self) -> None:
        ...

    @abstractmethod
    async def go_back(self) -> None:
        ...

    @abstractmethod
    async def get_cookies(self) -> List[Dict[str, Any]]:
        """All cookies visible to this surface, each a property bag with name/domain/value."""
        ...

    @abstractmethod
    async def set_cookie(self, cookie: Dict[str, Any]) -> None:
        ...

    @abstractmethod
    async def close(self) -> None:
        ...

    async def attach_over(self, parent: "BrowsingSurface") -> None:
        """Lay this surface on top of `parent`'s bounds. No-op for headless engines."""
        return None

    def set_back_gesture_handler(self, handler: Optional[Callable[[], Awaitable[None]]]):
        self.back_gesture_handler = handler

    async def edge_swipe(self):
        """Called by the engine when the user swipes from the leading edge."""
        if self.back_gesture_handler is not None:
            await self.back_gesture_handler()

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.surface_id} url={self.current_url!r}>"


class SurfaceFactory(ABC):
    @abstractmethod
    async def create(
        self,
        parent: Optional[BrowsingSurface] = None,
        request: Optional[NewWindowRequest] = None,
    ) -> BrowsingSurface:
        """A primary surface when parent is None, otherwise a popup for `request`."""
        ...
