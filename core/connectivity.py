"""
Connectivity Monitor

Leaf component: probes reachability and publishes exactly one
ConnectivityChanged per genuine transition, never one per probe.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional

import httpx

from config.settings_loader import get_endpoint, get_timing
from core.event_bus import EventBus
from core.models import ConnectivityChanged, ConnectivityState

logger = logging.getLogger("connectivity")


class ConnectivityMonitor:
    def __init__(
        self,
        bus: EventBus,
        probe: Optional[Callable[[], Awaitable[bool]]] = None,
        interval: Optional[float] = None,
    ):
        self.bus = bus
        self.interval = interval if interval is not None else get_timing("connectivity_poll_interval")
        self.current: Optional[ConnectivityState] = None
        self._probe = probe
        self._client: Optional[httpx.AsyncClient] = None
        self._task: Optional[asyncio.Task] = None

    async def _default_probe(self) -> bool:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=get_timing("probe_timeout"))
        try:
            await self._client.get(get_endpoint("connectivity_probe_url"))
            return True
        except httpx.HTTPError:
            return False

    def observe(self, satisfied: bool) -> bool:
        """Record one probe result. Returns True when it was a transition."""
        state = ConnectivityState.SATISFIED if satisfied else ConnectivityState.UNSATISFIED
        if state == self.current:
            return False
        previous = self.current
        self.current = state
        logger.info(f"📡 Connectivity {previous.value if previous else 'unknown'} → {state.value}")
        self.bus.publish(ConnectivityChanged(state=state))
        return True

    async def _run(self):
        probe = self._probe or self._default_probe
        while True:
            try:
                self.observe(await probe())
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.warning(f"⚠️ Connectivity probe error: {e}")
                self.observe(False)
            await asyncio.sleep(self.interval)

    def start(self):
        if self._task is None:
            self._task = asyncio.create_task(self._run())
            logger.info("✅ Connectivity Monitor Started")

    async def stop(self):
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        if self._client is not None:
            await self._client.aclose()
            self._client = None
