import asyncio
import logging
from collections import deque
from datetime import datetime
from typing import Deque, Dict, List, Optional, Tuple

from core.models import Event

logger = logging.getLogger("event_bus")


class Subscription:
    """A subscriber's private queue. Owned by whoever called subscribe()."""

    def __init__(self, bus: "EventBus", name: str):
        self.bus = bus
        self.name = name
        # Unbounded: the bus never drops an event
        self.queue: "asyncio.Queue[Event]" = asyncio.Queue()
        self.closed = False

    async def get(self) -> Event:
        return await self.queue.get()

    def close(self):
        if not self.closed:
            self.closed = True
            self.bus.unsubscribe(self)


class EventBus:
    """
    Typed fan-out channel. Producers publish from any coroutine or callback
    running on the loop; each subscriber consumes its own queue in arrival order.
    """

    def __init__(self, history_size: int = 100):
        self._subscribers: List[Subscription] = []
        self._history: Deque[Tuple[str, Event]] = deque(maxlen=history_size)

    def publish(self, event: Event):
        self._history.append((datetime.now().isoformat(), event))
        logger.debug(f"📢 {event.name} -> {len(self._subscribers)} subscriber(s)")
        for sub in list(self._subscribers):
            sub.queue.put_nowait(event)

    def subscribe(self, name: str = "anonymous", replay: int = 0) -> Subscription:
        sub = Subscription(self, name)
        self._subscribers.append(sub)

        if replay:
            for _, event in list(self._history)[-replay:]:
                sub.queue.put_nowait(event)

        return sub

    def unsubscribe(self, sub: Subscription):
        if sub in self._subscribers:
            self._subscribers.remove(sub)
            logger.debug(f"Unsubscribed {sub.name}")

    def history(self, limit: Optional[int] = None) -> List[Dict]:
        items = list(self._history)
        if limit:
            items = items[-limit:]
        return [
            {"timestamp": ts, "type": event.name, "data": event.model_dump(mode="json")}
            for ts, event in items
        ]

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)
