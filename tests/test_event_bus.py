import asyncio

from core.event_bus import EventBus
from core.models import PushTokenUpdated, RetryRequested


def test_every_subscriber_sees_events_in_order():
    async def run():
        bus = EventBus()
        a = bus.subscribe("a")
        b = bus.subscribe("b")
        bus.publish(PushTokenUpdated(token="t1"))
        bus.publish(RetryRequested())
        return [await a.get(), await a.get()], [await b.get(), await b.get()]

    seen_a, seen_b = asyncio.run(run())
    assert [e.name for e in seen_a] == ["PushTokenUpdated", "RetryRequested"]
    assert seen_a == seen_b


def test_replay_delivers_recent_history_to_late_subscriber():
    bus = EventBus(history_size=2)
    bus.publish(PushTokenUpdated(token="t1"))
    bus.publish(PushTokenUpdated(token="t2"))
    bus.publish(PushTokenUpdated(token="t3"))

    late = bus.subscribe("late", replay=5)
    tokens = []
    while not late.queue.empty():
        tokens.append(late.queue.get_nowait().token)
    assert tokens == ["t2", "t3"]

    history = bus.history(limit=1)
    assert history[0]["type"] == "PushTokenUpdated"
    assert history[0]["data"] == {"token": "t3"}


def test_closed_subscription_stops_receiving():
    bus = EventBus()
    sub = bus.subscribe("sse")
    assert bus.subscriber_count == 1
    sub.close()
    sub.close()
    bus.publish(RetryRequested())
    assert bus.subscriber_count == 0
    assert sub.queue.empty()
