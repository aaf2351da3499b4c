import asyncio

from conftest import FakeFactory
from core.cookies import CookiePersistence, flatten_cookies, group_cookies
from core.session_tracker import SessionTracker
from core.surface import TOO_MANY_REDIRECTS, NavigationError, NavigationPolicy, NewWindowRequest


def _tracker(factory, state, **kwargs):
    return SessionTracker(factory, CookiePersistence(state), **kwargs)


def _redirect_chain(tracker, surface, hops, start):
    async def run():
        previous = start
        for i in range(1, hops + 1):
            await tracker.on_server_redirect(surface, previous, f"https://hop{i}")
            previous = f"https://hop{i}"
    return run()


# === Redirect protection ===

def test_redirect_loop_reloads_page_before_first_hop(factory, state):
    tracker = _tracker(factory, state)

    async def run():
        primary = await tracker.open("https://start")
        await tracker.on_navigation_finished(primary, "https://start")
        await _redirect_chain(tracker, primary, 71, "https://start")
        return primary

    primary = asyncio.run(run())
    assert primary.stopped == 1
    assert primary.loads == ["https://start", "https://start"]
    # The recovery load does not reset the count
    assert tracker.guard_for(primary).count == 71


def test_sixty_nine_redirects_do_not_trigger_recovery(factory, state):
    tracker = _tracker(factory, state)

    async def run():
        primary = await tracker.open("https://start")
        await _redirect_chain(tracker, primary, 69, "https://start")
        return primary

    primary = asyncio.run(run())
    assert primary.stopped == 0
    assert primary.loads == ["https://start"]


def test_engine_reported_redirect_loop_reloads_last_valid(factory, state):
    failures = []
    tracker = _tracker(factory, state, failure_handler=failures.append)

    async def run():
        primary = await tracker.open("https://start")
        await tracker.on_navigation_finished(primary, "https://start")
        await tracker.on_navigation_failure(primary, NavigationError(TOO_MANY_REDIRECTS, "https://loop"))
        await tracker.on_navigation_failure(primary, NavigationError("load_failed", "https://down"))
        return primary

    primary = asyncio.run(run())
    assert primary.loads == ["https://start", "https://start"]
    assert [f.code for f in failures] == ["load_failed"]


# === Cookies ===

def test_cookies_survive_a_new_session(state):
    first_factory = FakeFactory()
    first = _tracker(first_factory, state)

    async def first_launch():
        primary = await first.open("https://example.com")
        primary.cookies = [{"name": "sid", "domain": "example.com", "value": "abc", "path": "/"}]
        await first.on_navigation_finished(primary, "https://example.com")
        await first.close()

    asyncio.run(first_launch())
    assert state.get_session_cookies()["example.com"]["sid"]["value"] == "abc"

    second_factory = FakeFactory()
    second = _tracker(second_factory, state)
    surface = asyncio.run(second.open("https://example.com"))
    assert [(c["domain"], c["name"], c["value"]) for c in surface.cookies] == [("example.com", "sid", "abc")]


def test_later_cookie_replaces_same_domain_and_name():
    grouped = group_cookies([
        {"name": "sid", "domain": "example.com", "value": "old"},
        {"name": "sid", "domain": "example.com", "value": "new"},
        {"name": "theme", "domain": "example.com", "value": "dark"},
        {"name": "", "domain": "example.com", "value": "dropped"},
    ])
    assert grouped["example.com"]["sid"]["value"] == "new"
    assert len(flatten_cookies(grouped)) == 2


def test_unavailable_cookie_store_does_not_break_session(state):
    state.set_session_cookies({"example.com": {"sid": {"value": "abc"}}})
    factory = FakeFactory()
    factory.cookies_unavailable = True
    tracker = _tracker(factory, state)

    async def run():
        primary = await tracker.open("https://example.com")
        await tracker.on_navigation_finished(primary, "https://example.com")
        return primary

    primary = asyncio.run(run())
    assert primary.loads == ["https://example.com"]
    # Nothing was overwritten by the failed snapshot
    assert state.get_session_cookies() == {"example.com": {"sid": {"value": "abc"}}}


# === Navigation policy ===

def test_custom_schemes_go_to_external_opener(factory, state):
    opened = []

    async def opener(url):
        opened.append(url)

    tracker = _tracker(factory, state, external_opener=opener)

    async def run():
        primary = await tracker.open("https://start")
        return [
            await tracker.decide_policy(primary, "tg://resolve?domain=x"),
            await tracker.decide_policy(primary, "HTTPS://example.com"),
            await tracker.decide_policy(primary, "http://example.com"),
        ]

    policies = asyncio.run(run())
    assert policies == [NavigationPolicy.CANCEL, NavigationPolicy.ALLOW, NavigationPolicy.ALLOW]
    assert opened == ["tg://resolve?domain=x"]


def test_failing_external_opener_still_cancels(factory, state):
    async def opener(url):
        raise RuntimeError("no handler")

    tracker = _tracker(factory, state, external_opener=opener)

    async def run():
        primary = await tracker.open("https://start")
        return await tracker.decide_policy(primary, "mailto:a@b.c")

    assert asyncio.run(run()) == NavigationPolicy.CANCEL


# === Popups ===

def test_popups_close_newest_first_then_primary_goes_back(factory, state):
    tracker = _tracker(factory, state)

    async def run():
        primary = await tracker.open("https://start")
        await primary.load("https://start/page2")
        p1 = await tracker.on_new_window_requested(primary, NewWindowRequest(url="https://p1"))
        p2 = await tracker.on_new_window_requested(p1, NewWindowRequest(url="https://p2"))
        assert tracker.has_open_popups
        steps = []
        for _ in range(4):
            steps.append(await tracker.close_secondary())
        return primary, p1, p2, steps

    primary, p1, p2, steps = asyncio.run(run())
    assert p1.loads == ["https://p1"]
    assert p2.loads == ["https://p2"]
    assert p1.closed and p2.closed
    assert p2.delegate is None
    assert steps == [True, True, True, False]
    assert primary.current_url == "https://start"
    assert not tracker.has_open_popups


def test_back_gesture_navigates_popup_then_closes_it(factory, state):
    tracker = _tracker(factory, state)

    async def run():
        primary = await tracker.open("https://start")
        popup = await tracker.on_new_window_requested(primary, NewWindowRequest(url="https://p1"))
        await popup.load("https://p1/next")
        await popup.edge_swipe()
        back_url = popup.current_url
        still_open = tracker.has_open_popups
        await popup.edge_swipe()
        return popup, back_url, still_open

    popup, back_url, still_open = asyncio.run(run())
    assert back_url == "https://p1"
    assert still_open
    assert popup.closed
    assert popup.back_gesture_handler is None
    assert not tracker.has_open_popups


def test_page_initiated_close_removes_popup(factory, state):
    tracker = _tracker(factory, state)

    async def run():
        primary = await tracker.open("https://start")
        popup = await tracker.on_new_window_requested(primary, NewWindowRequest(url="https://p1"))
        await tracker.on_close_requested(popup)
        return popup

    popup = asyncio.run(run())
    assert popup.closed
    assert tracker.secondaries == []
    assert popup.surface_id not in tracker.guards


def test_no_popups_after_session_close(factory, state):
    tracker = _tracker(factory, state)

    async def run():
        primary = await tracker.open("https://start")
        await tracker.close()
        return primary, await tracker.on_new_window_requested(primary, NewWindowRequest(url="https://late"))

    primary, popup = asyncio.run(run())
    assert primary.closed
    assert popup is None
    assert len(factory.created) == 1
