# src/landing_analytics/regions.py
"""
Region discovery.

Scans a rendered document for landmark elements (section, header, footer)
that carry an `id` and/or a `data-section-name`, and returns them keyed by
a stable identifier. Runs once per page view.
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Dict

from bs4 import BeautifulSoup

from landing_analytics.logging_utils import get_logger

log = get_logger("regions")

REGION_TAGS = ("section", "header", "footer")
NAME_ATTR = "data-section-name"
SEPARATOR = "-"

_CASE_BOUNDARY = re.compile(r"([a-z])([A-Z])")
_SPACING = re.compile(r"[\s_]+")


@dataclass(frozen=True)
class TrackableRegion:
    id: str
    display_name: str
    # borrowed from the page; never mutated by trackers
    element: Any = field(compare=False, repr=False)


def to_kebab_case(text: str) -> str:
    """
    "Hero Section" -> "hero-section", "ProblemSection" -> "problem-section",
    "faq_block" -> "faq-block". Empty input gives "".
    Only ASCII letters form a case boundary.
    """
    if not text:
        return ""
    out = _CASE_BOUNDARY.sub(r"\1-\2", text.strip())
    return _SPACING.sub(SEPARATOR, out).lower()


def id_from_name(name: str) -> str:
    if not name or not isinstance(name, str):
        return ""
    return to_kebab_case(name)


def name_from_id(region_id: str) -> str:
    """
    "hero-section" -> "Hero Section". Without a separator the id is a
    single segment ("footer" -> "Footer"). Empty input gives "".
    """
    if not region_id or not isinstance(region_id, str):
        return ""
    return " ".join(segment[:1].upper() + segment[1:] for segment in region_id.split(SEPARATOR))


def _is_candidate(tag) -> bool:
    return tag.name in REGION_TAGS and (tag.has_attr("id") or tag.has_attr(NAME_ATTR))


def discover(document: BeautifulSoup | str) -> Dict[str, TrackableRegion]:
    """
    Build the id -> TrackableRegion map for a document, in document order.
    A generated id is written back onto the element so later lookups by id
    resolve to the same element. Duplicates keep the first region.
    """
    if isinstance(document, str):
        document = BeautifulSoup(document, "html.parser")

    regions: Dict[str, TrackableRegion] = {}
    for element in document.find_all(_is_candidate):
        region_id = str(element.get("id") or "").strip()
        name = str(element.get(NAME_ATTR) or "").strip()

        if not region_id and name:
            region_id = id_from_name(name)
            if region_id:
                element["id"] = region_id

        if not name and region_id:
            name = name_from_id(region_id)

        if not region_id:
            log.warning("region_skipped_no_identifier", extra={"tag": element.name})
            continue

        if region_id in regions:
            log.warning("region_duplicate_id", extra={"region_id": region_id, "tag": element.name})
            continue

        regions[region_id] = TrackableRegion(id=region_id, display_name=name or region_id, element=element)

    log.info("regions_discovered", extra={"count": len(regions), "region_ids": list(regions)})
    return regions
