import pytest

from landing_analytics.browser import IntersectionEntry
from landing_analytics.navigation import NavigationContext
from landing_analytics.regions import discover
from landing_analytics.visibility import VisibilityTracker
from conftest import PAGE_HTML, START


@pytest.fixture
def regions():
    return discover(PAGE_HTML)


@pytest.fixture
def tracker(regions, emitter):
    return VisibilityTracker(
        regions,
        emitter,
        scroll_percentage=lambda: 37,
        navigation=NavigationContext(page_url="https://example.com/?utm_source=google", page_path="/"),
        clock=lambda: START,
    )


def _entry(region, ratio):
    return IntersectionEntry(target=region.element, intersection_ratio=ratio, is_intersecting=ratio > 0, time=0.0)


def test_region_becomes_seen_once(tracker, regions, sink):
    hero = regions["hero-section"]

    assert tracker.on_observation([_entry(hero, 0.7)]) == ["hero-section"]
    assert tracker.on_observation([_entry(hero, 0.9)]) == []
    assert tracker.on_observation([_entry(hero, 0.0), _entry(hero, 0.8)]) == []

    [event] = sink.named("section_viewed")
    assert event.properties == {
        "section_id": "hero-section",
        "section_name": "Hero Section",
        "scroll_percentage": 37,
        "timestamp": START.isoformat(),
        "page_url": "https://example.com/?utm_source=google",
        "page_path": "/",
    }
    assert tracker.is_seen("hero-section")


@pytest.mark.parametrize("ratio, seen", [(0.59, False), (0.6, True), (1.0, True), (0.0, False)])
def test_threshold(tracker, regions, ratio, seen):
    tracker.on_observation([_entry(regions["problem-section"], ratio)])
    assert tracker.is_seen("problem-section") is seen


def test_unknown_targets_are_ignored(tracker, sink):
    from bs4 import BeautifulSoup
    stranger = BeautifulSoup("<section id='x'></section>", "html.parser").section
    entry = IntersectionEntry(target=stranger, intersection_ratio=1.0, is_intersecting=True, time=0.0)

    assert tracker.on_observation([entry]) == []
    assert sink.events == []


def test_batch_fires_each_region_in_entry_order(tracker, regions, sink):
    tracker.on_observation([
        _entry(regions["application-form"], 1.0),
        _entry(regions["footer"], 0.3),
        _entry(regions["problem-section"], 0.61),
    ])
    assert [e.properties["section_id"] for e in sink.events] == ["application-form", "problem-section"]
    assert tracker.seen == {"application-form", "problem-section"}


def test_region_visible_at_load_fires_without_scrolling(env, make_page, emitter, sink):
    page = make_page()
    regions = discover(page.document)
    tracker = VisibilityTracker.for_page(page, regions, emitter)
    tracker.activate(page)

    env.run(until=1.0)

    views = sink.named("section_viewed")
    assert [e.properties["section_id"] for e in views] == ["hero-section"]
    # (0 + 1000) / 2300
    assert views[0].properties["scroll_percentage"] == 43


def test_initial_pass_runs_immediately_when_already_loaded(env, make_page, emitter, sink):
    page = make_page(load_delay_s=0.1)
    env.run(until=0.5)
    assert page.ready_state == "complete"

    tracker = VisibilityTracker.for_page(page, discover(page.document), emitter)
    tracker.activate(page)

    assert tracker.is_seen("hero-section")
    assert len(sink.named("section_viewed")) == 1


def test_scrolling_through_the_page(env, make_page, emitter, sink):
    page = make_page()
    tracker = VisibilityTracker.for_page(page, discover(page.document), emitter)
    tracker.activate(page)
    env.run(until=1.0)

    for y in (300, 600, 900, 1300, 0, 1300):
        page.scroll_to(y)
        env.run(until=env.now + 0.5)

    ids = [e.properties["section_id"] for e in sink.named("section_viewed")]
    assert ids == ["hero-section", "problem-section", "application-form"]
    # footer never reaches the middle band: at most 100 of its 300px
    assert not tracker.is_seen("footer")


def test_teardown_stops_observation_but_keeps_state(env, make_page, emitter, sink):
    page = make_page()
    tracker = VisibilityTracker.for_page(page, discover(page.document), emitter)
    tracker.activate(page)
    env.run(until=1.0)

    tracker.teardown()
    page.scroll_to(1300)
    env.run(until=2.0)

    assert tracker.seen == {"hero-section"}
    assert len(sink.events) == 1


def test_seen_regions_stop_being_observed(env, make_page, emitter, sink):
    page = make_page()
    regions = discover(page.document)
    tracker = VisibilityTracker.for_page(page, regions, emitter)
    tracker.activate(page)
    env.run(until=1.0)

    observed = [entry.target for entry in tracker._observer.take_records()]
    assert regions["hero-section"].element not in observed
    assert len(observed) == len(regions) - 1
