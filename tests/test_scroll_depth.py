import pytest

from landing_analytics.navigation import NavigationContext
from landing_analytics.scroll_depth import MILESTONES, ScrollDepthTracker
from landing_analytics.scrolling import raw_scroll_percentage, scroll_percentage
from conftest import START


@pytest.mark.parametrize(
    "scroll_y, viewport, document, raw, clamped",
    [
        (0, 1000, 2300, 43, 43),
        (1300, 1000, 2300, 100, 100),
        (0, 200, 2300, 9, 9),
        (0, 100, 200, 50, 50),
        (0, 1, 200, 1, 1),           # 0.5 rounds up
        (0, 900, 600, 150, 100),     # page shorter than the viewport
        (0, 900, 0, 100, 100),
    ],
)
def test_scroll_percentage(scroll_y, viewport, document, raw, clamped):
    assert raw_scroll_percentage(scroll_y, viewport, document) == raw
    assert scroll_percentage(scroll_y, viewport, document) == clamped


@pytest.fixture
def tracker(emitter):
    return ScrollDepthTracker(
        emitter,
        navigation=NavigationContext(page_url="https://example.com/", page_path="/"),
        clock=lambda: START,
    )


def test_milestones_fire_once_in_ascending_order(tracker, sink):
    assert tracker.evaluate(60) == [25, 50]
    assert tracker.evaluate(40) == []
    assert tracker.evaluate(60) == []
    assert tracker.evaluate(130) == [75, 100]
    assert tracker.evaluate(100) == []

    events = sink.named("scroll_depth")
    assert [e.properties["depth"] for e in events] == [25, 50, 75, 100]
    assert [e.properties["scroll_percentage"] for e in events] == [60, 60, 100, 100]
    assert events[0].properties["page_path"] == "/"
    assert events[0].properties["timestamp"] == START.isoformat()
    assert tracker.reached == list(MILESTONES)


def test_below_first_milestone_fires_nothing(tracker, sink):
    assert tracker.evaluate(24) == []
    assert sink.events == []
    assert not tracker.is_reached(25)


def _short_viewport_page(make_page):
    # initial progress (0 + 200) / 2300 -> 9%
    return make_page(viewport_height=200.0)


def test_initial_check_waits_for_load(env, make_page, emitter, sink):
    page = make_page(viewport_height=1000.0, load_delay_s=0.5)
    tracker = ScrollDepthTracker.for_page(page, emitter)
    tracker.activate(page)

    env.run(until=0.3)
    assert sink.events == []          # checked at 0.1 but still loading

    env.run(until=1.0)
    assert [e.properties["depth"] for e in sink.events] == [25]


def test_jump_to_bottom_in_one_frame_fires_all_milestones(env, make_page, emitter, sink):
    page = _short_viewport_page(make_page)
    tracker = ScrollDepthTracker.for_page(page, emitter)
    tracker.activate(page)
    env.run(until=1.0)
    assert sink.events == []

    page.scroll_to(10_000)
    env.run(until=1.1)

    assert [e.properties["depth"] for e in sink.named("scroll_depth")] == [25, 50, 75, 100]
    assert {e.properties["scroll_percentage"] for e in sink.events} == {100}


def test_scroll_bursts_are_coalesced_per_frame(env, make_page, emitter, sink, monkeypatch):
    page = _short_viewport_page(make_page)
    tracker = ScrollDepthTracker.for_page(page, emitter)
    tracker.activate(page)
    env.run(until=1.0)

    evaluations = []
    evaluate = tracker.evaluate_page
    monkeypatch.setattr(tracker, "evaluate_page", lambda: evaluations.append(page.scroll_y) or evaluate())

    for y in (300, 600, 900):
        page.scroll_to(y)
    env.run(until=1.1)

    assert evaluations == [900]
    # (900 + 200) / 2300 -> 48%
    assert [e.properties["depth"] for e in sink.events] == [25]


def test_teardown_removes_listener_and_keeps_reached(env, make_page, emitter, sink):
    page = _short_viewport_page(make_page)
    tracker = ScrollDepthTracker.for_page(page, emitter)
    tracker.activate(page)
    env.run(until=1.0)

    page.scroll_to(1000)
    env.run(until=1.1)
    assert tracker.reached == [25, 50]

    page.scroll_to(1200)              # frame requested, then torn down before it runs
    tracker.teardown()
    page.scroll_to(10_000)
    env.run(until=2.0)

    assert tracker.reached == [25, 50]
    assert len(sink.events) == 2


def test_teardown_before_initial_check(env, make_page, emitter, sink):
    page = make_page()
    tracker = ScrollDepthTracker.for_page(page, emitter)
    tracker.activate(page)
    tracker.teardown()

    env.run(until=1.0)
    assert sink.events == []
