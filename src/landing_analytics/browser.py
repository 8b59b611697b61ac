# src/landing_analytics/browser.py
"""
Simulated browser tab for one page view.

Everything runs on a single simpy.Environment, so callbacks never overlap:
scroll listeners fire synchronously from scroll_to(), animation-frame
callbacks and intersection notifications fire at the next 60 Hz frame
boundary, and the load event fires after load_delay_s of simulated time.
"""
from __future__ import annotations

import math
import itertools
from dataclasses import dataclass
from datetime import datetime, timezone, timedelta
from typing import Any, Callable, Dict, List, Optional, Tuple
from urllib.parse import urlsplit, parse_qs

from bs4 import BeautifulSoup, Tag

from landing_analytics.logging_utils import get_logger

log = get_logger("browser")

FRAME_INTERVAL_S = 1.0 / 60.0
LANDMARK_TAGS = ("section", "header", "footer")


class StorageQuotaExceeded(Exception):
    """Raised when a session storage write would exceed the configured quota."""


class SessionStorage:
    """Per-tab string key/value store that lives as long as the browsing session."""

    def __init__(self, quota_bytes: Optional[int] = None):
        self.quota_bytes = quota_bytes
        self._items: Dict[str, str] = {}

    def get_item(self, key: str) -> Optional[str]:
        return self._items.get(key)

    def set_item(self, key: str, value: str) -> None:
        value = str(value)
        if self.quota_bytes is not None:
            used = sum(len(k.encode()) + len(v.encode()) for k, v in self._items.items() if k != key)
            if used + len(key.encode()) + len(value.encode()) > self.quota_bytes:
                raise StorageQuotaExceeded(f"session storage quota of {self.quota_bytes} bytes exceeded")
        self._items[key] = value

    def remove_item(self, key: str) -> None:
        self._items.pop(key, None)

    def clear(self) -> None:
        self._items.clear()

    def keys(self) -> List[str]:
        return list(self._items)

    def __len__(self) -> int:
        return len(self._items)


class Location:
    def __init__(self, url: str):
        parts = urlsplit(url)
        self.href = url
        self.pathname = parts.path or "/"
        self.search = f"?{parts.query}" if parts.query else ""
        self._params = parse_qs(parts.query, keep_blank_values=True)

    def param(self, name: str) -> Optional[str]:
        """First value of a query parameter, like URLSearchParams.get()."""
        values = self._params.get(name)
        return values[0] if values else None

    def __repr__(self) -> str:
        return f"Location({self.href!r})"


# ---------------------------------------------------------------------------
# Layout
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class Box:
    top: float
    height: float

    @property
    def bottom(self) -> float:
        return self.top + self.height


def intersection_ratio(box: Box, scroll_y: float, viewport_height: float, margin: float = 0.0) -> float:
    """
    Fraction of `box` inside the viewport band that remains after trimming
    `margin` * viewport_height off the top and the bottom.
    """
    if box.height <= 0:
        return 0.0
    root_top = scroll_y + margin * viewport_height
    root_bottom = scroll_y + viewport_height - margin * viewport_height
    visible = min(box.bottom, root_bottom) - max(box.top, root_top)
    if visible <= 0:
        return 0.0
    return min(1.0, visible / box.height)


def _declared_height(element: Tag, default: float) -> float:
    raw = element.get("data-height")
    try:
        return max(0.0, float(raw)) if raw is not None else default
    except (TypeError, ValueError):
        log.warning("layout_bad_height", extra={"value": raw, "tag": element.name})
        return default


class PageLayout:
    """
    Vertical stacking of the document's landmark elements in document order.
    Nested landmarks sit at the top of their enclosing landmark.
    """

    def __init__(self, boxes: List[Tuple[Tag, Box]]):
        self._boxes = boxes

    @classmethod
    def from_document(cls, document: BeautifulSoup, default_height: float = 800.0) -> "PageLayout":
        layout = cls([])
        top = 0.0
        for element in document.find_all(LANDMARK_TAGS):
            height = _declared_height(element, default_height)
            parent = element.find_parent(LANDMARK_TAGS)
            parent_box = layout.box_for(parent) if parent is not None else None
            if parent_box is not None:
                layout._boxes.append((element, Box(parent_box.top, min(height, parent_box.height))))
                continue
            layout._boxes.append((element, Box(top, height)))
            top += height
        return layout

    @property
    def document_height(self) -> float:
        return max((box.bottom for _, box in self._boxes), default=0.0)

    def box_for(self, element: Any) -> Optional[Box]:
        for el, box in self._boxes:
            if el is element:
                return box
        return None


# ---------------------------------------------------------------------------
# Intersection notifications
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class IntersectionEntry:
    target: Any
    intersection_ratio: float
    is_intersecting: bool
    time: float


class IntersectionObserver:
    """
    Delivers IntersectionEntry batches to `callback` at frame boundaries,
    for every target whose threshold state changed since its last delivery.
    The first evaluation after observe() always delivers.
    """

    def __init__(self, page: "BrowserPage", callback: Callable[[List[IntersectionEntry]], None],
                 *, threshold: float = 0.0, root_margin: float = 0.0):
        self._page = page
        self._callback = callback
        self.threshold = threshold
        self.root_margin = root_margin
        self._targets: List[list] = []  # [element, last_state]

    def observe(self, element: Any) -> None:
        if any(t is element for t, _ in self._targets):
            return
        self._targets.append([element, None])
        self._page._register_observer(self)
        self._page._schedule_rendering_update()

    def unobserve(self, element: Any) -> None:
        self._targets = [pair for pair in self._targets if pair[0] is not element]

    def disconnect(self) -> None:
        self._targets.clear()
        self._page._unregister_observer(self)

    def take_records(self) -> List[IntersectionEntry]:
        return [self._entry_for(element) for element, _ in self._targets]

    def _entry_for(self, element: Any) -> IntersectionEntry:
        box = self._page.layout.box_for(element)
        ratio = 0.0
        if box is not None:
            ratio = intersection_ratio(box, self._page.scroll_y, self._page.viewport_height, self.root_margin)
        return IntersectionEntry(target=element, intersection_ratio=ratio,
                                 is_intersecting=ratio > 0, time=float(self._page.env.now))

    def _state(self, entry: IntersectionEntry) -> bool:
        if self.threshold > 0:
            return entry.intersection_ratio >= self.threshold
        return entry.is_intersecting

    def _update(self) -> None:
        changed: List[IntersectionEntry] = []
        for pair in self._targets:
            entry = self._entry_for(pair[0])
            state = self._state(entry)
            if pair[1] is None or pair[1] != state:
                pair[1] = state
                changed.append(entry)
        if changed:
            self._page._invoke(self._callback, changed)


# ---------------------------------------------------------------------------
# Page view
# ---------------------------------------------------------------------------
class BrowserPage:
    """One page view in a browser tab, clocked by a simpy.Environment."""

    def __init__(
        self,
        env,
        document: BeautifulSoup | str,
        url: str,
        *,
        referrer: str = "",
        session_storage: Optional[SessionStorage] = None,
        viewport_height: float = 900.0,
        load_delay_s: float = 0.5,
        default_section_height: float = 800.0,
        start_dt: Optional[datetime] = None,
    ):
        self.env = env
        self.document = document if isinstance(document, BeautifulSoup) else BeautifulSoup(document, "html.parser")
        self.location = Location(url)
        self.referrer = referrer or ""
        self.session_storage = session_storage if session_storage is not None else SessionStorage()
        self.viewport_height = float(viewport_height)
        self.layout = PageLayout.from_document(self.document, default_section_height)
        self.scroll_y = 0.0
        self.ready_state = "loading"
        self.closed = False

        if start_dt is None:
            start_dt = datetime.now(timezone.utc)
        elif start_dt.tzinfo is None:
            start_dt = start_dt.replace(tzinfo=timezone.utc)
        self.start_dt = start_dt

        self._handles = itertools.count(1)
        self._scroll_listeners: List[Callable[[], None]] = []
        self._load_listeners: List[Callable[[], None]] = []
        self._observers: List[IntersectionObserver] = []
        self._frame_callbacks: Dict[int, Callable[[float], None]] = {}
        self._timers: Dict[int, Callable[[], None]] = {}
        self._frame_pending = False
        self._rendering_dirty = False

        env.process(self._load(load_delay_s))

    # ----- Time -----
    def now(self) -> datetime:
        return self.start_dt + timedelta(seconds=float(self.env.now))

    # ----- Geometry -----
    @property
    def document_height(self) -> float:
        return self.layout.document_height

    def scroll_to(self, y: float) -> None:
        if self.closed:
            return
        max_y = max(0.0, self.document_height - self.viewport_height)
        y = min(max(0.0, float(y)), max_y)
        if y == self.scroll_y:
            return
        self.scroll_y = y
        for cb in list(self._scroll_listeners):
            self._invoke(cb)
        self._schedule_rendering_update()

    def scroll_by(self, dy: float) -> None:
        self.scroll_to(self.scroll_y + dy)

    # ----- Listeners -----
    def add_scroll_listener(self, cb: Callable[[], None]) -> None:
        if cb not in self._scroll_listeners:
            self._scroll_listeners.append(cb)

    def remove_scroll_listener(self, cb: Callable[[], None]) -> None:
        if cb in self._scroll_listeners:
            self._scroll_listeners.remove(cb)

    def add_load_listener(self, cb: Callable[[], None]) -> None:
        """Once-only. Listeners added after the load event never fire."""
        if cb not in self._load_listeners:
            self._load_listeners.append(cb)

    def remove_load_listener(self, cb: Callable[[], None]) -> None:
        if cb in self._load_listeners:
            self._load_listeners.remove(cb)

    # ----- Scheduling -----
    def request_animation_frame(self, cb: Callable[[float], None]) -> int:
        handle = next(self._handles)
        if self.closed:
            return handle
        self._frame_callbacks[handle] = cb
        self._ensure_frame()
        return handle

    def cancel_animation_frame(self, handle: int) -> None:
        self._frame_callbacks.pop(handle, None)

    def set_timeout(self, cb: Callable[[], None], delay_s: float) -> int:
        handle = next(self._handles)
        if self.closed:
            return handle
        self._timers[handle] = cb
        self.env.process(self._timer(handle, max(0.0, float(delay_s))))
        return handle

    def clear_timeout(self, handle: int) -> None:
        self._timers.pop(handle, None)

    def close(self) -> None:
        """End the page view: nothing scheduled on this page fires afterwards."""
        self.closed = True
        self._scroll_listeners.clear()
        self._load_listeners.clear()
        self._frame_callbacks.clear()
        self._timers.clear()
        self._observers.clear()

    # ----- Internals -----
    def _invoke(self, cb: Callable, *args) -> None:
        try:
            cb(*args)
        except Exception:
            log.exception("page_callback_failed", extra={"url": self.location.href})

    def _register_observer(self, observer: IntersectionObserver) -> None:
        if not self.closed and observer not in self._observers:
            self._observers.append(observer)

    def _unregister_observer(self, observer: IntersectionObserver) -> None:
        if observer in self._observers:
            self._observers.remove(observer)

    def _schedule_rendering_update(self) -> None:
        if self.closed:
            return
        self._rendering_dirty = True
        self._ensure_frame()

    def _ensure_frame(self) -> None:
        if self._frame_pending:
            return
        self._frame_pending = True
        now = float(self.env.now)
        next_frame = (math.floor(now / FRAME_INTERVAL_S) + 1) * FRAME_INTERVAL_S
        self.env.process(self._frame(max(0.0, next_frame - now)))

    def _frame(self, delay: float):
        yield self.env.timeout(delay)
        self._frame_pending = False
        if self.closed:
            return
        # animation-frame callbacks first, then intersection updates
        callbacks, self._frame_callbacks = self._frame_callbacks, {}
        ts = float(self.env.now) * 1000.0
        for cb in callbacks.values():
            self._invoke(cb, ts)
        if self._rendering_dirty and not self.closed:
            self._rendering_dirty = False
            for observer in list(self._observers):
                observer._update()

    def _timer(self, handle: int, delay: float):
        yield self.env.timeout(delay)
        cb = self._timers.pop(handle, None)
        if cb is not None and not self.closed:
            self._invoke(cb)

    def _load(self, delay: float):
        yield self.env.timeout(max(0.0, float(delay)))
        if self.closed:
            return
        self.ready_state = "complete"
        listeners, self._load_listeners = self._load_listeners, []
        for cb in listeners:
            self._invoke(cb)
        self._schedule_rendering_update()
