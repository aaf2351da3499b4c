"""
Launch Gate Models - Typed records shared by every core component.

- DisplayPhase: the single authoritative display mode
- RemoteConfig: last-known-good remote destination
- AttributionPayload: named fields the core branches on + free-form extras
- Events: everything that travels over the event bus
"""

from enum import Enum
from typing import Any, ClassVar, Dict, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field


class PhaseKind(str, Enum):
    INITIALIZING = "initializing"
    WEB_DISPLAY = "web_display"
    FALLBACK = "fallback"
    OFFLINE = "offline"


class DisplayPhase(BaseModel):
    """One of Initializing | WebDisplay(url) | Fallback | Offline."""
    model_config = ConfigDict(frozen=True)

    kind: PhaseKind
    url: Optional[str] = None

    @classmethod
    def initializing(cls) -> "DisplayPhase":
        return cls(kind=PhaseKind.INITIALIZING)

    @classmethod
    def web_display(cls, url: str) -> "DisplayPhase":
        return cls(kind=PhaseKind.WEB_DISPLAY, url=url)

    @classmethod
    def fallback(cls) -> "DisplayPhase":
        return cls(kind=PhaseKind.FALLBACK)

    @classmethod
    def offline(cls) -> "DisplayPhase":
        return cls(kind=PhaseKind.OFFLINE)

    def __str__(self) -> str:
        if self.url:
            return f"{self.kind.value}({self.url})"
        return self.kind.value


class RemoteConfig(BaseModel):
    url: str
    expires_at: float
    fetched_at: float


class ConnectivityState(str, Enum):
    SATISFIED = "satisfied"
    UNSATISFIED = "unsatisfied"


class AttributionPayload(BaseModel):
    """
    Attribution data delivered once per install.

    Only the fields the core branches on are named; everything else the
    attribution network sends is kept verbatim in `extras` so it still
    reaches the config endpoint.
    """
    af_status: Optional[str] = None
    is_first_launch: Optional[bool] = None
    media_source: Optional[str] = None
    campaign: Optional[str] = None
    deep_link_value: Optional[str] = None
    extras: Dict[str, Any] = Field(default_factory=dict)

    NAMED_FIELDS: ClassVar[Tuple[str, ...]] = ("af_status", "is_first_launch", "media_source", "campaign", "deep_link_value")

    @classmethod
    def from_raw(cls, raw: Optional[Dict[Any, Any]]) -> "AttributionPayload":
        """Permissive parse: unknown keys go to extras, odd types are coerced or dropped."""
        named: Dict[str, Any] = {}
        extras: Dict[str, Any] = {}
        for key, value in (raw or {}).items():
            key = str(key)
            if key not in cls.NAMED_FIELDS:
                extras[key] = value
                continue
            if key == "is_first_launch":
                named[key] = _coerce_bool(value)
            elif value is not None:
                named[key] = str(value)
        return cls(extras=extras, **named)

    @property
    def is_organic(self) -> bool:
        return (self.af_status or "").strip().lower() == "organic"

    def to_dict(self) -> Dict[str, Any]:
        data = dict(self.extras)
        for key in self.NAMED_FIELDS:
            value = getattr(self, key)
            if value is not None:
                data[key] = value
        return data

    def merged(self, other: "AttributionPayload") -> "AttributionPayload":
        """Overlay `other` on top of self (other wins per key)."""
        combined = self.to_dict()
        combined.update(other.to_dict())
        return AttributionPayload.from_raw(combined)


def _coerce_bool(value: Any) -> Optional[bool]:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return bool(value)
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in ("1", "true", "yes"):
            return True
        if lowered in ("0", "false", "no"):
            return False
    return None


# === EVENTS ===

class Event(BaseModel):
    """Base class for everything published on the event bus."""

    @property
    def name(self) -> str:
        return type(self).__name__


class AttributionReceived(Event):
    payload: AttributionPayload


class AttributionFailed(Event):
    pass


class ConnectivityChanged(Event):
    state: ConnectivityState


class PushTokenUpdated(Event):
    token: str


class RetryRequested(Event):
    pass


class NotificationReceived(Event):
    payload: Dict[str, Any] = Field(default_factory=dict)


class OpenUrlRequested(Event):
    url: str


class PermissionPromptRequested(Event):
    pass


class BackRequested(Event):
    pass


class PermissionResponded(Event):
    # None means "ask me later": nothing is recorded
    granted: Optional[bool] = None


class OrganicCheckCompleted(Event):
    payload: AttributionPayload
    verified: bool = False


class ConfigResolved(Event):
    config: RemoteConfig
    trigger: str
    generation: int


class ConfigFailed(Event):
    kind: str
    message: str
    trigger: str
    generation: int


class NavigationFailed(Event):
    code: str
    url: Optional[str] = None


class PhaseChanged(Event):
    previous: DisplayPhase
    current: DisplayPhase
