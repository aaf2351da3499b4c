"""
Phase Controller

Single owner of the display phase. Every input (attribution, connectivity,
push token, retry, deep links, permission answers, fetch completions)
arrives as an event on the bus and is handled, one at a time, by the
controller's loop. Network work runs in background tasks whose outcome is
published back onto the bus, so nothing but this loop mutates the phase
or the browsing session.

Allowed edges:
- initializing → web_display | fallback
- web_display  → offline (connectivity loss) | web_display (new destination)
- offline      → web_display | fallback (explicit retry only)
- fallback     → web_display (push-token re-resolution only)
"""

import asyncio
import logging
import time
from typing import Callable, Dict, List, Optional, Set

from config.settings_loader import get_timing
from core.event_bus import EventBus, Subscription
from core.models import (
    AttributionFailed,
    AttributionPayload,
    AttributionReceived,
    BackRequested,
    ConfigFailed,
    ConfigResolved,
    ConnectivityChanged,
    ConnectivityState,
    DisplayPhase,
    Event,
    NavigationFailed,
    NotificationReceived,
    OpenUrlRequested,
    OrganicCheckCompleted,
    PermissionPromptRequested,
    PermissionResponded,
    PhaseChanged,
    PhaseKind,
    PushTokenUpdated,
    RetryRequested,
)
from core.notifications import DEEP_LINK_JOB, NotificationRouter
from core.remote_config import ConfigFetchError, RemoteConfigResolver
from core.scheduler import SchedulerService
from core.session_tracker import SessionTracker
from core.store import AppStateStore
from core.surface import NavigationError

logger = logging.getLogger("phase_controller")

ORGANIC_CHECK_JOB = "organic_attribution_check"

TRIGGER_ATTRIBUTION = "attribution"
TRIGGER_PUSH_TOKEN = "push_token"
TRIGGER_RETRY = "retry"
TRIGGER_PERMISSION = "permission"

ALLOWED_TRANSITIONS = {
    (PhaseKind.INITIALIZING, PhaseKind.WEB_DISPLAY),
    (PhaseKind.INITIALIZING, PhaseKind.FALLBACK),
    (PhaseKind.WEB_DISPLAY, PhaseKind.WEB_DISPLAY),
    (PhaseKind.WEB_DISPLAY, PhaseKind.OFFLINE),
    (PhaseKind.OFFLINE, PhaseKind.WEB_DISPLAY),
    (PhaseKind.OFFLINE, PhaseKind.FALLBACK),
    (PhaseKind.FALLBACK, PhaseKind.WEB_DISPLAY),
}

SessionFactory = Callable[[], SessionTracker]
PhaseListener = Callable[[DisplayPhase], None]


class PhaseController:
    def __init__(
        self,
        bus: EventBus,
        state: AppStateStore,
        resolver: RemoteConfigResolver,
        scheduler: SchedulerService,
        session_factory: Optional[SessionFactory] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.bus = bus
        self.state = state
        self.resolver = resolver
        self.scheduler = scheduler
        self.session_factory = session_factory
        self.clock = clock
        self.notifications = NotificationRouter(bus, state, scheduler)

        self.phase = DisplayPhase.initializing()
        self.session: Optional[SessionTracker] = None
        self.connectivity: Optional[ConnectivityState] = None
        self.attribution = AttributionPayload()
        self.awaiting_permission = False
        self.generation = 0

        self._pending_payload: Optional[AttributionPayload] = None
        self._listeners: List[PhaseListener] = []
        self._fetches: Set[asyncio.Task] = set()
        self._subscription: Optional[Subscription] = None
        self._loop_task: Optional[asyncio.Task] = None

        self._handlers: Dict[type, Callable] = {
            AttributionReceived: lambda e: self.on_attribution_result(e.payload),
            AttributionFailed: lambda e: self.on_attribution_failure(),
            OrganicCheckCompleted: self._on_organic_check_completed,
            ConnectivityChanged: lambda e: self.on_connectivity_change(e.state),
            PushTokenUpdated: lambda e: self.on_push_token_update(e.token),
            RetryRequested: lambda e: self.on_retry(),
            NotificationReceived: self._on_notification,
            OpenUrlRequested: lambda e: self.on_open_url(e.url),
            PermissionResponded: lambda e: self.on_permission_response(e.granted),
            BackRequested: lambda e: self.on_back(),
            ConfigResolved: self._on_config_resolved,
            ConfigFailed: self._on_config_failed,
        }

    # === LIFECYCLE ===

    def start(self):
        """Subscribe to the bus and begin serving events in phase Initializing."""
        if self._loop_task is not None:
            return
        self.phase = DisplayPhase.initializing()
        self._subscription = self.bus.subscribe("phase_controller")
        self._loop_task = asyncio.create_task(self._run())
        logger.info("✅ Phase Controller Started")

    async def stop(self):
        if self._loop_task is not None:
            self._loop_task.cancel()
            try:
                await self._loop_task
            except asyncio.CancelledError:
                pass
            self._loop_task = None
        if self._subscription is not None:
            self._subscription.close()
            self._subscription = None
        fetches = list(self._fetches)
        for task in fetches:
            task.cancel()
        if fetches:
            await asyncio.gather(*fetches, return_exceptions=True)
        self.scheduler.cancel(ORGANIC_CHECK_JOB)
        self.scheduler.cancel(DEEP_LINK_JOB)
        if self.session is not None:
            await self.session.close()
            self.session = None
        logger.info("🛑 Phase Controller Stopped")

    async def _run(self):
        while True:
            event = await self._subscription.get()
            try:
                await self.process(event)
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception(f"❌ Handler for {event.name} failed")

    async def process(self, event: Event):
        """Handle one event. Events without a handler (e.g. PhaseChanged) are ignored."""
        handler = self._handlers.get(type(event))
        if handler is None:
            return
        result = handler(event)
        if asyncio.iscoroutine(result):
            await result

    def add_listener(self, listener: PhaseListener):
        self._listeners.append(listener)

    # === ATTRIBUTION ===

    async def on_attribution_result(self, payload: AttributionPayload):
        self.attribution = payload

        if self.phase.kind != PhaseKind.INITIALIZING:
            logger.info(f"Attribution recorded while {self.phase}, launch flow already settled")
            return

        if self.state.get_app_mode() == PhaseKind.FALLBACK:
            logger.info("Persisted mode is fallback, skipping resolution")
            await self._transition(DisplayPhase.fallback())
            return

        first_launch = not self.state.has_launched()
        self.state.mark_launched()

        if first_launch and payload.is_organic:
            self._schedule_organic_check(payload)
            return

        await self._continue_launch(payload)

    async def on_attribution_failure(self):
        self.attribution = AttributionPayload()
        if self.phase.kind != PhaseKind.INITIALIZING:
            return

        if self.state.get_app_mode() == PhaseKind.FALLBACK:
            logger.info("Persisted mode is fallback, skipping resolution")
            await self._transition(DisplayPhase.fallback())
            return

        self.state.mark_launched()
        logger.warning("⚠️ Attribution failed, resolving with an empty payload")
        self.resolve_remote_config(self.attribution, TRIGGER_ATTRIBUTION)

    def _schedule_organic_check(self, payload: AttributionPayload):
        device_id = self.state.get_device_id()

        async def organic_check():
            verified = False
            merged = payload
            try:
                data = await self.resolver.fetch_organic_attribution(device_id)
                merged = payload.merged(AttributionPayload.from_raw(data))
                verified = True
            except ConfigFetchError as e:
                logger.warning(f"⚠️ Organic re-check failed ({e.kind}): {e.message}")
            self.bus.publish(OrganicCheckCompleted(payload=merged, verified=verified))

        delay = get_timing("organic_check_delay")
        logger.info(f"⏳ Organic first launch, re-checking attribution in {delay}s")
        self.scheduler.schedule_once(ORGANIC_CHECK_JOB, delay, organic_check)

    async def _on_organic_check_completed(self, event: OrganicCheckCompleted):
        self.attribution = event.payload
        if self.phase.kind != PhaseKind.INITIALIZING:
            return
        await self._continue_launch(event.payload)

    async def _continue_launch(self, payload: AttributionPayload):
        temp_url = self.state.pop_temp_url()
        if temp_url:
            logger.info(f"🔗 Pending deep link wins: {temp_url}")
            await self._transition(DisplayPhase.web_display(temp_url))
            return

        if self._should_prompt_for_notifications():
            self.state.set_last_prompt_date(self.clock())
            self.awaiting_permission = True
            self._pending_payload = payload
            logger.info("🔔 Asking for notification permission before resolving")
            self.bus.publish(PermissionPromptRequested())
            return

        self.resolve_remote_config(payload, TRIGGER_ATTRIBUTION)

    def _should_prompt_for_notifications(self) -> bool:
        if self.state.notifications_allowed() or self.state.notifications_denied():
            return False
        last = self.state.get_last_prompt_date()
        if last is None:
            return True
        interval = get_timing("prompt_interval_days") * 24 * 60 * 60
        return self.clock() - last > interval

    async def on_permission_response(self, granted: Optional[bool]):
        if granted is not None:
            self.state.record_permission(granted)
        if not self.awaiting_permission:
            return
        self.awaiting_permission = False
        payload = self._pending_payload or self.attribution
        self._pending_payload = None
        self.resolve_remote_config(payload, TRIGGER_PERMISSION)

    # === CONNECTIVITY / PUSH / RETRY / DEEP LINKS ===

    async def on_connectivity_change(self, state: ConnectivityState):
        self.connectivity = state
        if state == ConnectivityState.UNSATISFIED and self.phase.kind == PhaseKind.WEB_DISPLAY:
            await self._transition(DisplayPhase.offline())
        # Satisfied while offline: recovery waits for an explicit retry

    async def on_push_token_update(self, token: str):
        self.state.set_push_token(token)
        if self.phase.kind == PhaseKind.INITIALIZING:
            # The launch flow resolves later and reads the stored token
            logger.info("🔑 Push token stored, launch flow not settled yet")
            return
        logger.info("🔑 Push token updated, re-resolving remote config")
        self.resolve_remote_config(self.attribution, TRIGGER_PUSH_TOKEN)

    async def on_retry(self):
        if self.phase.kind != PhaseKind.OFFLINE:
            logger.info(f"Retry ignored while {self.phase}")
            return
        if self.connectivity == ConnectivityState.UNSATISFIED:
            logger.info("Retry ignored, still offline")
            return
        logger.info("🔄 Retry requested, re-resolving remote config")
        self.resolve_remote_config(self.attribution, TRIGGER_RETRY)

    async def _on_notification(self, event: NotificationReceived):
        self.notifications.handle(event.payload)

    async def on_open_url(self, url: str):
        persisted_fallback = (
            self.phase.kind == PhaseKind.INITIALIZING and self.state.get_app_mode() == PhaseKind.FALLBACK
        )
        if persisted_fallback or self.phase.kind not in (PhaseKind.INITIALIZING, PhaseKind.WEB_DISPLAY):
            self.state.set_temp_url(url)
            logger.info(f"Deep link kept pending while {self.phase}: {url}")
            return
        self.state.pop_temp_url()
        self.awaiting_permission = False
        self._pending_payload = None
        await self._transition(DisplayPhase.web_display(url))

    async def on_back(self) -> bool:
        if self.session is None:
            return False
        return await self.session.close_secondary()

    # === REMOTE CONFIG ===

    def resolve_remote_config(self, payload: AttributionPayload, trigger: str = TRIGGER_ATTRIBUTION) -> asyncio.Task:
        """Start a fetch in the background; its outcome comes back as an event."""
        self.generation += 1
        task = asyncio.create_task(self._fetch(payload, trigger, self.generation))
        self._fetches.add(task)
        task.add_done_callback(self._fetches.discard)
        return task

    async def _fetch(self, payload: AttributionPayload, trigger: str, generation: int):
        try:
            config = await self.resolver.fetch(payload)
        except ConfigFetchError as e:
            logger.warning(f"⚠️ Remote config fetch #{generation} failed ({e.kind}): {e.message}")
            self.bus.publish(ConfigFailed(kind=e.kind, message=e.message, trigger=trigger, generation=generation))
            return
        except Exception as e:
            logger.exception(f"❌ Remote config fetch #{generation} crashed")
            self.bus.publish(ConfigFailed(kind="unknown", message=str(e), trigger=trigger, generation=generation))
            return
        self.bus.publish(ConfigResolved(config=config, trigger=trigger, generation=generation))

    def _outcome_applies(self, trigger: str) -> bool:
        if self.phase.kind == PhaseKind.OFFLINE:
            return trigger == TRIGGER_RETRY
        if self.phase.kind == PhaseKind.FALLBACK:
            return trigger == TRIGGER_PUSH_TOKEN
        return True

    async def _on_config_resolved(self, event: ConfigResolved):
        self.state.set_remote_config(event.config)
        if not self._outcome_applies(event.trigger):
            logger.info(f"Fetch #{event.generation} ({event.trigger}) stored but not applied while {self.phase}")
            return
        target = DisplayPhase.web_display(event.config.url)
        if self._allowed(target):
            self.state.set_app_mode(PhaseKind.WEB_DISPLAY)
        await self._transition(target)

    async def _on_config_failed(self, event: ConfigFailed):
        if not self._outcome_applies(event.trigger):
            return

        cached = self.state.get_remote_config()
        if cached is not None:
            logger.info(f"🔄 Falling back to cached destination {cached.url}")
            await self._transition(DisplayPhase.web_display(cached.url))
            return

        target = DisplayPhase.fallback()
        if not self._allowed(target):
            logger.info(f"No cached destination, staying in {self.phase}")
            return
        self.state.set_app_mode(PhaseKind.FALLBACK)
        await self._transition(target)

    # === TRANSITIONS ===

    def _allowed(self, target: DisplayPhase) -> bool:
        return (self.phase.kind, target.kind) in ALLOWED_TRANSITIONS

    async def _transition(self, target: DisplayPhase) -> bool:
        previous = self.phase
        if target == previous:
            return True
        if not self._allowed(target):
            logger.warning(f"⚠️ Refusing phase change {previous} → {target}")
            return False

        self.phase = target
        logger.info(f"🔀 Phase {previous} → {target}")
        self.bus.publish(PhaseChanged(previous=previous, current=target))
        for listener in list(self._listeners):
            listener(target)

        await self._sync_session(previous, target)
        return True

    async def _sync_session(self, previous: DisplayPhase, current: DisplayPhase):
        if current.kind == PhaseKind.WEB_DISPLAY:
            if self.session is not None:
                await self.session.navigate(current.url)
                return
            if self.session_factory is None:
                return
            self.session = self.session_factory()
            if self.session.failure_handler is None:
                self.session.failure_handler = self._on_navigation_failed
            await self.session.open(current.url)
            return

        if previous.kind == PhaseKind.WEB_DISPLAY and self.session is not None:
            session, self.session = self.session, None
            await session.close()

    def _on_navigation_failed(self, error: NavigationError):
        # Surfaced as-is, the phase does not change
        self.bus.publish(NavigationFailed(code=error.code, url=error.url))

    def status(self) -> dict:
        return {
            "phase": self.phase.model_dump(mode="json"),
            "awaiting_permission": self.awaiting_permission,
            "connectivity": self.connectivity.value if self.connectivity else None,
            "generation": self.generation,
            "in_flight_fetches": len(self._fetches),
            "session": self.session.status() if self.session else None,
            "scheduled": self.scheduler.list_pending(),
        }
