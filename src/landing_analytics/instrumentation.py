# src/landing_analytics/instrumentation.py
from __future__ import annotations

from typing import Dict, Optional

from landing_analytics.attribution import (
    AttributionBackend, AttributionSnapshot, AttributionStore, SessionStorageBackend,
)
from landing_analytics.browser import BrowserPage
from landing_analytics.events import EventEmitter
from landing_analytics.logging_utils import get_logger
from landing_analytics.navigation import NavigationContext
from landing_analytics.regions import TrackableRegion, discover
from landing_analytics.scroll_depth import ScrollDepthTracker
from landing_analytics.visibility import VisibilityTracker

log = get_logger("instrumentation")


class PageInstrumentation:
    """
    Wires discovery, attribution and both trackers to one page view.
    Nothing here raises into the page: failures are logged and the
    affected observation is dropped.
    """

    def __init__(self, page: BrowserPage, emitter: EventEmitter, *,
                 attribution_backend: Optional[AttributionBackend] = None):
        self.page = page
        self.emitter = emitter
        self.navigation = NavigationContext.from_page(page)
        self.attribution = AttributionStore(
            attribution_backend or SessionStorageBackend(page.session_storage),
            location=page.location,
            emitter=emitter,
            navigation=self.navigation,
        )
        self.regions: Dict[str, TrackableRegion] = {}
        self.visibility: Optional[VisibilityTracker] = None
        self.scroll: Optional[ScrollDepthTracker] = None
        self.active = False
        self._torn_down = False

    def activate(self) -> AttributionSnapshot | None:
        """
        Once per page view. A second call, or a call after teardown(),
        does nothing: seen regions and reached milestones are never reset.
        """
        if self.active or self._torn_down:
            log.debug("instrumentation_already_activated", extra={"url": self.page.location.href})
            return None
        self.active = True

        snapshot = None
        try:
            snapshot = self.attribution.capture_and_persist()
        except Exception:
            log.exception("attribution_capture_failed", extra={"url": self.page.location.href})

        try:
            self.regions = discover(self.page.document)
        except Exception:
            log.exception("region_discovery_failed", extra={"url": self.page.location.href})
            self.regions = {}

        if not self.regions:
            log.warning("no_regions_to_track", extra={"url": self.page.location.href})
            return snapshot

        try:
            self.visibility = VisibilityTracker.for_page(self.page, self.regions, self.emitter)
            self.visibility.activate(self.page)
            self.scroll = ScrollDepthTracker.for_page(self.page, self.emitter)
            self.scroll.activate(self.page)
        except Exception:
            log.exception("tracker_activation_failed", extra={"url": self.page.location.href})
        return snapshot

    def teardown(self) -> None:
        """Stops future callbacks; recorded seen/reached state is kept."""
        if self.visibility is not None:
            self.visibility.teardown()
        if self.scroll is not None:
            self.scroll.teardown()
        self.active = False
        self._torn_down = True
