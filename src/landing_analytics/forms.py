# src/landing_analytics/forms.py
"""
Application-form submission flow.

Tags its funnel events with the stored UTM snapshot and posts the form
fields to the intake endpoint. The intake response is not inspected
beyond the HTTP status.
"""
from __future__ import annotations

from dataclasses import dataclass, asdict
from typing import Any, Dict, Mapping, Optional

import requests

from landing_analytics.attribution import AttributionStore
from landing_analytics.events import (
    EventEmitter, FORM_SUBMISSION_STARTED, FORM_SUBMISSION_COMPLETED, FORM_SUBMISSION_FAILED,
)
from landing_analytics.logging_utils import get_logger
from landing_analytics.navigation import NavigationContext

log = get_logger("forms")


@dataclass(frozen=True)
class FormMetadata:
    form_id: str = "apply-form"
    form_name: str = "Application Form"
    form_type: str = "application_form"
    form_location: str = "landing_page"


class FormSubmitter:
    def __init__(
        self,
        emitter: EventEmitter,
        attribution: AttributionStore,
        navigation: NavigationContext,
        *,
        intake_url: Optional[str] = None,
        http_session: Optional[requests.Session] = None,
        timeout_s: float = 10.0,
        metadata: FormMetadata = FormMetadata(),
    ):
        self.emitter = emitter
        self.attribution = attribution
        self.navigation = navigation
        self.intake_url = intake_url
        self.http = http_session or requests.Session()
        self.timeout_s = timeout_s
        self.metadata = metadata

    def submit(self, fields: Mapping[str, Any]) -> bool:
        """Send one submission. Returns True on delivery; never raises."""
        utm = self.attribution.current_snapshot().to_properties()
        base = {**asdict(self.metadata), **self.navigation.page_properties()}

        self.emitter.emit(FORM_SUBMISSION_STARTED, {**base, **utm})
        try:
            self._post(dict(fields))
        except Exception as e:
            log.warning("form_submission_failed", extra={"form_id": self.metadata.form_id, "error": str(e)})
            self.emitter.emit(FORM_SUBMISSION_FAILED, {**base, "error": str(e) or type(e).__name__, **utm})
            return False

        self.emitter.emit(FORM_SUBMISSION_COMPLETED, {
            **base,
            "has_name": bool(fields.get("name")),
            "has_email": bool(fields.get("email")),
            "has_phone": bool(fields.get("phone")),
            **utm,
        })
        return True

    def _post(self, payload: Dict[str, Any]) -> None:
        if not self.intake_url:
            log.info("form_intake_dry_run", extra={"form_id": self.metadata.form_id, "fields": sorted(payload)})
            return
        resp = self.http.post(self.intake_url, json=payload, timeout=self.timeout_s)
        resp.raise_for_status()
        log.info("form_intake_delivered", extra={"form_id": self.metadata.form_id, "status": resp.status_code})
