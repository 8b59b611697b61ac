from __future__ import annotations

import uuid
import random
from typing import Optional, Dict, Any
from datetime import datetime, timezone
from faker import Faker

from landing_analytics.logging_utils import get_logger

log = get_logger("visitor")


def _utc_now() -> datetime:
    """Return timezone-aware UTC now()"""
    return datetime.now(timezone.utc)


class VisitorAgent:
    def __init__(
        self,
        *,
        channel: str = "Direct",
        visitor_id: Optional[str] = None,
        created_at: Optional[datetime] = None,
        rng: Optional[random.Random] = None,
        faker: Optional[Faker] = None,
    ):
        # stable anonymous ID (the analytics distinct_id)
        self.visitor_id = visitor_id or str(uuid.uuid4())
        self.created_at = created_at or _utc_now()
        self.channel = channel
        self._rng = rng or random.Random()
        self._faker = faker or Faker()

        # identity, only revealed through the form
        self.name: Optional[str] = self._faker.name()
        self.email: Optional[str] = self._faker.email()
        self.phone: Optional[str] = self._faker.phone_number()

        # funnel state
        self.marketing_funnel_stage = "Awareness"
        self.stage_last_updated_date: Optional[datetime] = None
        self.is_lead = False
        self.lead_timestamp: Optional[datetime] = None

    # ---------------------------------------------------------------------
    # Public actions
    # ---------------------------------------------------------------------
    def engage(self, ts: datetime) -> None:
        """First scroll on the page moves Awareness -> Engaged."""
        if self.marketing_funnel_stage != "Awareness":
            return
        self.marketing_funnel_stage = "Engaged"
        self.stage_last_updated_date = ts

    def form_fields(self) -> Dict[str, Any]:
        """What this visitor types into the application form; some skip the phone."""
        fields = {"name": self.name, "email": self.email, "phone": self.phone}
        if self._rng.random() < 0.15:
            fields["phone"] = ""
        return fields

    def become_lead(self, ts: Optional[datetime] = None) -> None:
        ts = ts or _utc_now()
        if ts.tzinfo is None:
            ts = ts.replace(tzinfo=timezone.utc)
        self.is_lead = True
        self.lead_timestamp = ts
        self.marketing_funnel_stage = "Lead"
        self.stage_last_updated_date = ts
        log.info("visitor_lead", extra={"visitor_id": self.visitor_id, "channel": self.channel, "ts": ts.isoformat()})

    # ---------------------------------------------------------------------
    # Utils
    # ---------------------------------------------------------------------
    def to_dict(self) -> Dict[str, Any]:
        return {
            "visitor_id": self.visitor_id,
            "created_at": self.created_at,
            "channel": self.channel,
            "marketing_funnel_stage": self.marketing_funnel_stage,
            "stage_last_updated_date": self.stage_last_updated_date,
            "is_lead": self.is_lead,
            "lead_timestamp": self.lead_timestamp,
        }
