"""
Persistent key-value store shared by every core component.

Writes are whole-value replacements under a fixed set of keys, so
components never merge fields, they only race on last-writer-wins.
AppStateStore is the typed facade the rest of the core depends on.
"""

import json
import logging
import os
import time
import uuid
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, Optional

from core.models import PhaseKind, RemoteConfig

logger = logging.getLogger("store")


class KeyValueStore(ABC):
    @abstractmethod
    def get(self, key: str, default: Any = None) -> Any:
        ...

    @abstractmethod
    def set(self, key: str, value: Any) -> None:
        ...

    @abstractmethod
    def remove(self, key: str) -> None:
        ...

    def contains(self, key: str) -> bool:
        return self.get(key) is not None


class MemoryStore(KeyValueStore):
    """In-process store. Used by tests and as a scratch store."""

    def __init__(self, initial: Optional[Dict[str, Any]] = None):
        self.data: Dict[str, Any] = dict(initial or {})

    def get(self, key: str, default: Any = None) -> Any:
        return self.data.get(key, default)

    def set(self, key: str, value: Any) -> None:
        self.data[key] = value

    def remove(self, key: str) -> None:
        self.data.pop(key, None)


class JsonFileStore(KeyValueStore):
    """
    Key-value store persisted as one JSON document.

    Every mutation rewrites the file through a temp file + os.replace,
    so readers never observe a half-written document.
    """

    def __init__(self, path: Path):
        self.path = Path(path)
        self.data: Dict[str, Any] = self._load()

    def _load(self) -> Dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text())
            if isinstance(data, dict):
                return data
            logger.warning(f"⚠️ State file {self.path} is not a JSON object, starting empty")
        except Exception as e:
            logger.error(f"❌ Failed to load state file {self.path}: {e}")
        return {}

    def _flush(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp.write_text(json.dumps(self.data, indent=2, default=str))
        os.replace(tmp, self.path)

    def get(self, key: str, default: Any = None) -> Any:
        return self.data.get(key, default)

    def set(self, key: str, value: Any) -> None:
        self.data[key] = value
        self._flush()

    def remove(self, key: str) -> None:
        if key in self.data:
            del self.data[key]
            self._flush()


class AppStateStore:
    """Typed accessors over the persistent keys the launch gate uses."""

    SESSION_COOKIES = "session_cookies"
    PERSISTENT_URL = "persistent_url"
    URL_EXPIRES = "url_expires"
    URL_FETCHED_AT = "url_fetched_at"
    APP_MODE = "app_mode"
    HAS_LAUNCHED = "has_launched"
    NOTIFICATIONS_ALLOWED = "notifications_allowed"
    NOTIFICATIONS_DENIED = "notifications_denied"
    LAST_PROMPT_DATE = "last_prompt_date"
    TEMP_URL = "temp_url"
    PUSH_TOKEN = "push_token"
    FCM_TOKEN = "fcm_token"
    DEVICE_ID = "device_id"

    def __init__(self, backend: KeyValueStore):
        self.backend = backend

    # --- Cookies ---

    def get_session_cookies(self) -> Dict[str, Dict[str, Dict[str, Any]]]:
        value = self.backend.get(self.SESSION_COOKIES)
        return value if isinstance(value, dict) else {}

    def set_session_cookies(self, cookies: Dict[str, Dict[str, Dict[str, Any]]]) -> None:
        self.backend.set(self.SESSION_COOKIES, cookies)

    # --- Remote config ---

    def get_remote_config(self) -> Optional[RemoteConfig]:
        """Cached config. Presence is what matters; expiry is advisory."""
        url = self.backend.get(self.PERSISTENT_URL)
        if not url:
            return None
        expires = self.backend.get(self.URL_EXPIRES) or 0
        fetched = self.backend.get(self.URL_FETCHED_AT) or 0
        try:
            return RemoteConfig(url=url, expires_at=float(expires), fetched_at=float(fetched))
        except (TypeError, ValueError):
            return RemoteConfig(url=url, expires_at=0, fetched_at=0)

    def set_remote_config(self, config: RemoteConfig) -> None:
        self.backend.set(self.PERSISTENT_URL, config.url)
        self.backend.set(self.URL_EXPIRES, config.expires_at)
        self.backend.set(self.URL_FETCHED_AT, config.fetched_at)

    # --- Mode / launch flags ---

    def get_app_mode(self) -> Optional[PhaseKind]:
        raw = self.backend.get(self.APP_MODE)
        try:
            return PhaseKind(raw) if raw else None
        except ValueError:
            return None

    def set_app_mode(self, mode: PhaseKind) -> None:
        self.backend.set(self.APP_MODE, mode.value)

    def has_launched(self) -> bool:
        return bool(self.backend.get(self.HAS_LAUNCHED, False))

    def mark_launched(self) -> None:
        self.backend.set(self.HAS_LAUNCHED, True)

    # --- Notification permission ---

    def notifications_allowed(self) -> bool:
        return bool(self.backend.get(self.NOTIFICATIONS_ALLOWED, False))

    def notifications_denied(self) -> bool:
        return bool(self.backend.get(self.NOTIFICATIONS_DENIED, False))

    def record_permission(self, granted: bool) -> None:
        if granted:
            self.backend.set(self.NOTIFICATIONS_ALLOWED, True)
        else:
            self.backend.set(self.NOTIFICATIONS_DENIED, True)

    def get_last_prompt_date(self) -> Optional[float]:
        value = self.backend.get(self.LAST_PROMPT_DATE)
        return float(value) if value is not None else None

    def set_last_prompt_date(self, timestamp: float) -> None:
        self.backend.set(self.LAST_PROMPT_DATE, timestamp)

    # --- Deep link ---

    def get_temp_url(self) -> Optional[str]:
        return self.backend.get(self.TEMP_URL) or None

    def set_temp_url(self, url: str) -> None:
        self.backend.set(self.TEMP_URL, url)

    def pop_temp_url(self) -> Optional[str]:
        url = self.get_temp_url()
        if url:
            self.backend.remove(self.TEMP_URL)
        return url

    # --- Push / device ---

    def get_push_token(self) -> Optional[str]:
        return self.backend.get(self.PUSH_TOKEN) or None

    def set_push_token(self, token: str) -> None:
        self.backend.set(self.FCM_TOKEN, token)
        self.backend.set(self.PUSH_TOKEN, token)

    def get_device_id(self) -> str:
        """Stable per-install id, generated on first use."""
        device_id = self.backend.get(self.DEVICE_ID)
        if not device_id:
            device_id = f"{int(time.time() * 1000)}-{uuid.uuid4().hex[:16]}"
            self.backend.set(self.DEVICE_ID, device_id)
        return device_id
