# src/landing_analytics/navigation.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional


@dataclass(frozen=True)
class NavigationContext:
    page_url: str
    page_path: str
    referrer: Optional[str] = None
    landing_page: str = ""

    @classmethod
    def from_page(cls, page) -> "NavigationContext":
        loc = page.location
        return cls(
            page_url=loc.href,
            page_path=loc.pathname,
            referrer=page.referrer or None,
            landing_page=loc.pathname + loc.search,
        )

    def page_properties(self) -> Dict[str, Any]:
        return {"page_url": self.page_url, "page_path": self.page_path}

    def landing_properties(self) -> Dict[str, Any]:
        return {
            **self.page_properties(),
            "referrer": self.referrer,
            "landing_page": self.landing_page,
        }
