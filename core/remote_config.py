"""
Remote Config Resolver

Fetches the remote display destination and the delayed organic attribution
re-check. Both calls are single-shot: retry policy belongs to the caller.
Every failure is raised as one of the ConfigFetchError subclasses so the
phase controller can apply its cached-config fallback uniformly.
"""

import logging
import time
from typing import Any, Callable, Dict, Optional

import httpx

from config.settings_loader import get_app_value, get_dev_key, get_endpoint, get_timing
from core.models import AttributionPayload, RemoteConfig
from core.store import AppStateStore

logger = logging.getLogger("remote_config")


class ConfigFetchError(Exception):
    """Base failure for remote config and attribution lookups."""
    kind = "unknown"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class FetchNetworkError(ConfigFetchError):
    kind = "network"


class FetchStatusError(ConfigFetchError):
    kind = "status"

    def __init__(self, status_code: int):
        super().__init__(f"Unexpected HTTP status {status_code}")
        self.status_code = status_code


class MalformedResponseError(ConfigFetchError):
    kind = "malformed"


class ServerDeclinedError(ConfigFetchError):
    kind = "declined"


class RemoteConfigResolver:
    def __init__(
        self,
        state: AppStateStore,
        client: Optional[httpx.AsyncClient] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.state = state
        self.client = client or httpx.AsyncClient()
        self.clock = clock

    async def aclose(self):
        await self.client.aclose()

    def build_payload(self, attribution: AttributionPayload) -> Dict[str, Any]:
        """Attribution fields plus the device/app identity the server expects."""
        app_id = get_app_value("app_id")
        payload = attribution.to_dict()
        payload.update({
            "af_id": self.state.get_device_id(),
            "bundle_id": get_app_value("bundle_id"),
            "os": get_app_value("platform"),
            "store_id": f"id{app_id}",
            "locale": get_app_value("locale"),
            "push_token": self.state.get_push_token() or "",
            "firebase_project_id": get_app_value("firebase_project_id"),
        })
        return payload

    async def fetch(self, attribution: AttributionPayload) -> RemoteConfig:
        """POST the payload to the config endpoint. One attempt, no retry."""
        url = get_endpoint("config_url")
        body = self.build_payload(attribution)
        logger.info(f"📡 Fetching remote config from {url}")

        try:
            response = await self.client.post(url, json=body, timeout=get_timing("config_timeout"))
        except httpx.HTTPError as e:
            raise FetchNetworkError(f"{type(e).__name__}: {e}") from e

        if not 200 <= response.status_code < 300:
            raise FetchStatusError(response.status_code)

        data = _json_object(response)
        if data.get("ok") is not True:
            raise ServerDeclinedError(f"Server declined: {data.get('ok')!r}")

        target = data.get("url")
        expires = data.get("expires")
        if not isinstance(target, str) or not target.strip():
            raise MalformedResponseError("Missing url in config response")
        if isinstance(expires, bool) or not isinstance(expires, (int, float)):
            raise MalformedResponseError("Missing or non-numeric expires in config response")

        config = RemoteConfig(url=target.strip(), expires_at=float(expires), fetched_at=self.clock())
        logger.info(f"✅ Remote config resolved: {config.url}")
        return config

    async def fetch_organic_attribution(self, device_id: str) -> Dict[str, Any]:
        """Ask the attribution network again for a late-arriving install record."""
        base = get_endpoint("attribution_base_url").rstrip("/")
        url = f"{base}/install_data/v4.0/id{get_app_value('app_id')}"
        params = {"devkey": get_dev_key(), "device_id": device_id}
        logger.info(f"📡 Re-checking organic attribution for {device_id}")

        try:
            response = await self.client.get(url, params=params, timeout=get_timing("config_timeout"))
        except httpx.HTTPError as e:
            raise FetchNetworkError(f"{type(e).__name__}: {e}") from e

        if response.status_code != 200:
            raise FetchStatusError(response.status_code)
        return _json_object(response)


def _json_object(response: httpx.Response) -> Dict[str, Any]:
    try:
        data = response.json()
    except ValueError as e:
        raise MalformedResponseError(f"Response is not JSON: {e}") from e
    if not isinstance(data, dict):
        raise MalformedResponseError(f"Expected a JSON object, got {type(data).__name__}")
    return data
