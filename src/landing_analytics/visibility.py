# src/landing_analytics/visibility.py
"""
Section-view tracking.

A region counts as viewed once at least 60% of it sits inside the middle
60% of the viewport (top and bottom 20% excluded). Each region produces
at most one section_viewed event per page view.
"""
from __future__ import annotations

from datetime import datetime
from typing import Callable, Dict, Iterable, List, Optional, Set

from landing_analytics.browser import BrowserPage, IntersectionEntry, IntersectionObserver
from landing_analytics.events import EventEmitter, SECTION_VIEWED
from landing_analytics.logging_utils import get_logger
from landing_analytics.navigation import NavigationContext
from landing_analytics.regions import TrackableRegion
from landing_analytics.scrolling import page_scroll_percentage

log = get_logger("visibility")

VISIBLE_THRESHOLD = 0.6
ROOT_MARGIN = 0.2


class VisibilityTracker:
    """
    on_observation() holds the whole state machine (unseen -> seen) and can
    be fed synthetic entries directly; activate() wires it to the page's
    IntersectionObserver.
    """

    def __init__(
        self,
        regions: Dict[str, TrackableRegion],
        emitter: EventEmitter,
        *,
        scroll_percentage: Callable[[], int],
        navigation: NavigationContext,
        clock: Callable[[], datetime],
    ):
        self.regions = regions
        self.emitter = emitter
        self._scroll_percentage = scroll_percentage
        self._navigation = navigation
        self._clock = clock
        self._seen: Set[str] = set()
        self._page: Optional[BrowserPage] = None
        self._observer: Optional[IntersectionObserver] = None
        self._on_load: Optional[Callable[[], None]] = None

    @classmethod
    def for_page(cls, page: BrowserPage, regions: Dict[str, TrackableRegion],
                 emitter: EventEmitter) -> "VisibilityTracker":
        return cls(
            regions,
            emitter,
            scroll_percentage=lambda: page_scroll_percentage(page),
            navigation=NavigationContext.from_page(page),
            clock=page.now,
        )

    # ----- State -----
    def is_seen(self, region_id: str) -> bool:
        return region_id in self._seen

    @property
    def seen(self) -> Set[str]:
        return set(self._seen)

    def _region_for(self, target) -> Optional[TrackableRegion]:
        for region in self.regions.values():
            if region.element is target:
                return region
        return None

    def on_observation(self, entries: Iterable[IntersectionEntry]) -> List[str]:
        """Apply a batch of notifications; returns the ids that became seen."""
        newly_seen: List[str] = []
        for entry in entries:
            if entry.intersection_ratio < VISIBLE_THRESHOLD:
                continue
            region = self._region_for(entry.target)
            if region is None or region.id in self._seen:
                continue
            self._seen.add(region.id)
            newly_seen.append(region.id)
            if self._observer is not None:
                self._observer.unobserve(region.element)  # seen is final
            self._emit_view(region)
        return newly_seen

    def _emit_view(self, region: TrackableRegion) -> None:
        try:
            props = {
                "section_id": region.id,
                "section_name": region.display_name,
                "scroll_percentage": self._scroll_percentage(),
                "timestamp": self._clock().isoformat(),
                **self._navigation.page_properties(),
            }
        except Exception:
            log.exception("section_view_props_failed", extra={"section_id": region.id})
            return
        self.emitter.emit(SECTION_VIEWED, props)
        log.debug("section_viewed", extra={"section_id": region.id, "section_name": region.display_name})

    # ----- Platform wiring -----
    def activate(self, page: BrowserPage) -> None:
        self._page = page
        self._observer = IntersectionObserver(page, self.on_observation,
                                              threshold=VISIBLE_THRESHOLD, root_margin=ROOT_MARGIN)
        for region in self.regions.values():
            try:
                self._observer.observe(region.element)
            except Exception:
                log.exception("section_observe_failed", extra={"section_id": region.id})

        # catch regions already in view before any scroll
        if page.ready_state == "complete":
            self.evaluate_now()
        else:
            self._on_load = self.evaluate_now
            page.add_load_listener(self._on_load)

    def evaluate_now(self) -> List[str]:
        if self._observer is None:
            return []
        return self.on_observation(self._observer.take_records())

    def teardown(self) -> None:
        if self._observer is not None:
            self._observer.disconnect()
            self._observer = None
        if self._page is not None and self._on_load is not None:
            self._page.remove_load_listener(self._on_load)
        self._on_load = None
