# src/landing_analytics/scroll_depth.py
"""
Scroll-depth milestones (25/50/75/100).

Raw scroll notifications are coalesced into one evaluation per animation
frame. Each milestone fires once per page view, in ascending order.
"""
from __future__ import annotations

from datetime import datetime
from typing import Callable, Dict, List, Optional, Tuple

from landing_analytics.browser import BrowserPage
from landing_analytics.events import EventEmitter, SCROLL_DEPTH
from landing_analytics.logging_utils import get_logger
from landing_analytics.navigation import NavigationContext
from landing_analytics.scrolling import clamp_percentage, raw_scroll_percentage

log = get_logger("scroll_depth")

MILESTONES: Tuple[int, ...] = (25, 50, 75, 100)
INITIAL_CHECK_DELAY_S = 0.1


class ScrollDepthTracker:
    def __init__(
        self,
        emitter: EventEmitter,
        *,
        navigation: NavigationContext,
        clock: Callable[[], datetime],
        milestones: Tuple[int, ...] = MILESTONES,
    ):
        self.emitter = emitter
        self._navigation = navigation
        self._clock = clock
        self._reached: Dict[int, bool] = {m: False for m in sorted(milestones)}
        self._page: Optional[BrowserPage] = None
        self._ticking = False
        self._frame_handle: Optional[int] = None
        self._timer_handle: Optional[int] = None
        self._load_listening = False

    @classmethod
    def for_page(cls, page: BrowserPage, emitter: EventEmitter) -> "ScrollDepthTracker":
        return cls(emitter, navigation=NavigationContext.from_page(page), clock=page.now)

    # ----- State -----
    def is_reached(self, milestone: int) -> bool:
        return self._reached.get(milestone, False)

    @property
    def reached(self) -> List[int]:
        return [m for m, hit in self._reached.items() if hit]

    def evaluate(self, progress: int) -> List[int]:
        """
        Fire every not-yet-reached milestone at or below `progress`, lowest
        first. Returns the milestones fired by this call.
        """
        fired: List[int] = []
        for milestone, hit in self._reached.items():
            if hit or progress < milestone:
                continue
            self._reached[milestone] = True
            fired.append(milestone)
            self.emitter.emit(SCROLL_DEPTH, {
                "depth": milestone,
                "scroll_percentage": clamp_percentage(progress),
                "timestamp": self._clock().isoformat(),
                **self._navigation.page_properties(),
            })
        if fired:
            log.debug("scroll_depth_reached", extra={"milestones": fired, "progress": progress})
        return fired

    # ----- Platform wiring -----
    def activate(self, page: BrowserPage) -> None:
        self._page = page
        page.add_scroll_listener(self._on_scroll)
        # let layout settle before the first check
        self._timer_handle = page.set_timeout(self._check_initial, INITIAL_CHECK_DELAY_S)

    def evaluate_page(self) -> List[int]:
        if self._page is None:
            return []
        try:
            progress = raw_scroll_percentage(self._page.scroll_y, self._page.viewport_height,
                                             self._page.document_height)
            return self.evaluate(progress)
        except Exception:
            log.exception("scroll_evaluation_failed")
            return []

    def _on_scroll(self) -> None:
        # at most one evaluation pending per frame
        if self._ticking or self._page is None:
            return
        self._ticking = True
        self._frame_handle = self._page.request_animation_frame(self._on_frame)

    def _on_frame(self, _ts: float) -> None:
        self._frame_handle = None
        self.evaluate_page()
        self._ticking = False

    def _check_initial(self) -> None:
        self._timer_handle = None
        if self._page is None:
            return
        if self._page.ready_state == "complete":
            self.evaluate_page()
        else:
            self._load_listening = True
            self._page.add_load_listener(self._on_load)

    def _on_load(self) -> None:
        self._load_listening = False
        self.evaluate_page()

    def teardown(self) -> None:
        page = self._page
        if page is None:
            return
        page.remove_scroll_listener(self._on_scroll)
        if self._frame_handle is not None:
            page.cancel_animation_frame(self._frame_handle)
            self._frame_handle = None
        if self._timer_handle is not None:
            page.clear_timeout(self._timer_handle)
            self._timer_handle = None
        if self._load_listening:
            page.remove_load_listener(self._on_load)
            self._load_listening = False
        self._ticking = False
        self._page = None
