import logging
from typing import Any, Dict, Optional

from config.settings_loader import get_timing
from core.event_bus import EventBus
from core.models import OpenUrlRequested
from core.scheduler import SchedulerService
from core.store import AppStateStore

logger = logging.getLogger("notifications")

DEEP_LINK_JOB = "deep_link_dispatch"


def extract_deep_link(payload: Dict[str, Any]) -> Optional[str]:
    """A notification's target URL: top-level `url`, else `data.url`."""
    link = payload.get("url")
    if isinstance(link, str) and link:
        return link
    data = payload.get("data")
    if isinstance(data, dict):
        link = data.get("url")
        if isinstance(link, str) and link:
            return link
    return None


class NotificationRouter:
    """
    Turns inbound push payloads into deep-link requests.

    The link is stored as the one-shot `temp_url` right away (so a cold start
    that has not resolved yet picks it up) and an OpenUrlRequested event follows
    after a short delay, once the launch flow has had time to settle.
    """

    def __init__(self, bus: EventBus, state: AppStateStore, scheduler: SchedulerService):
        self.bus = bus
        self.state = state
        self.scheduler = scheduler

    def handle(self, payload: Dict[str, Any]) -> Optional[str]:
        link = extract_deep_link(payload)
        if not link:
            return None

        self.state.set_temp_url(link)
        logger.info(f"🔔 Deep link received: {link}")

        async def dispatch():
            self.bus.publish(OpenUrlRequested(url=link))

        self.scheduler.schedule_once(DEEP_LINK_JOB, get_timing("deep_link_delay"), dispatch)
        return link
