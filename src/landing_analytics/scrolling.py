# src/landing_analytics/scrolling.py
"""Scroll-progress arithmetic shared by the section and scroll-depth trackers."""
import math


def _round_half_up(x: float) -> int:
    return int(math.floor(x + 0.5))


def raw_scroll_percentage(scroll_y: float, viewport_height: float, document_height: float) -> int:
    """
    round((scroll_y + viewport_height) / document_height * 100), unclamped.
    A zero-height document counts as fully scrolled.
    """
    if document_height <= 0:
        return 100
    return _round_half_up((scroll_y + viewport_height) / document_height * 100.0)


def clamp_percentage(value: float) -> int:
    return int(min(100, max(0, value)))


def scroll_percentage(scroll_y: float, viewport_height: float, document_height: float) -> int:
    return clamp_percentage(raw_scroll_percentage(scroll_y, viewport_height, document_height))


def page_scroll_percentage(page) -> int:
    return scroll_percentage(page.scroll_y, page.viewport_height, page.document_height)
