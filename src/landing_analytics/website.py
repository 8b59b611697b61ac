# website.py
import random, uuid
from dataclasses import dataclass, field
from typing import Dict, List, Optional
from datetime import datetime, timezone, timedelta
from urllib.parse import urlencode, urlsplit, urlunsplit

import requests

from landing_analytics.browser import BrowserPage, SessionStorage
from landing_analytics.events import EventEmitter, EventSink
from landing_analytics.forms import FormMetadata, FormSubmitter
from landing_analytics.instrumentation import PageInstrumentation


@dataclass
class LandingPage:
    """Landing page config loaded from YAML."""
    url: str
    html: str
    viewport_height: float = 900.0
    load_delay_s: float = 0.5
    default_section_height: float = 800.0
    form_section: Optional[str] = "application-form"   # region that holds the form
    intake_url: Optional[str] = None
    form: FormMetadata = field(default_factory=FormMetadata)


@dataclass
class ChannelBehaviour:
    """How visitors from one acquisition channel arrive and read."""
    utm: Dict[str, str] = field(default_factory=dict)       # {"source": "newsletter", ...}
    referrer: str = ""
    scroll_step_px: float = 450.0
    dwell_s: float = 2.0
    dropoff_prob: float = 0.08        # per scroll step
    form_conversion_prob: float = 0.25
    return_prob: float = 0.1          # second page view in the same tab
    return_with_utm: bool = False


class Website:
    """
    Holds the landing page and provides a simulation clock.
    env.now is seconds since sim start.
    """
    def __init__(self, env, page: LandingPage, start_dt: datetime, http_session: Optional[requests.Session] = None):
        self.env = env
        self.http = http_session or requests.Session()  # shared by every form submission
        if start_dt.tzinfo is None:
            start_dt = start_dt.replace(tzinfo=timezone.utc)
        else:
            start_dt = start_dt.astimezone(timezone.utc)
        self.start_dt = start_dt
        self.page = page

    def close(self) -> None:
        self.http.close()

    # ----- Authoritative timestamps (UTC) -----
    def get_current_time(self) -> datetime:
        return self.start_dt + timedelta(seconds=float(self.env.now))

    # ----- Page helpers -----
    def landing_url(self, utm: Optional[Dict[str, str]] = None) -> str:
        parts = urlsplit(self.page.url)
        params = {f"utm_{k}": v for k, v in (utm or {}).items() if v}
        query = "&".join(q for q in (parts.query, urlencode(params)) if q)
        return urlunsplit((parts.scheme, parts.netloc, parts.path, query, parts.fragment))

    def open_page(self, url: str, *, session_storage: SessionStorage, referrer: str = "") -> BrowserPage:
        return BrowserPage(
            self.env,
            self.page.html,
            url,
            referrer=referrer,
            session_storage=session_storage,
            viewport_height=self.page.viewport_height,
            load_delay_s=self.page.load_delay_s,
            default_section_height=self.page.default_section_height,
            start_dt=self.start_dt,
        )


class Session:
    """
    Simulates one browsing session (one tab) on the landing page.
    Requires visitor obj with:
      - attributes: visitor_id (str), is_lead (bool)
      - methods: engage(ts), become_lead(ts), form_fields()
    """
    WHEEL_TICKS = 3          # raw scroll notifications per scroll step
    WHEEL_TICK_S = 0.004     # well inside one 60 Hz frame

    def __init__(self, env, website: Website, visitor, sink: EventSink, channel="Direct",
                 behaviour: Optional[ChannelBehaviour] = None, rng: Optional[random.Random] = None,
                 logger=None):
        self.env = env
        self.website = website
        self.visitor = visitor
        self.channel = channel
        self.behaviour = behaviour or ChannelBehaviour()
        self.rng = rng or random.Random()
        self.log = logger
        self.session_id = str(uuid.uuid4())
        self.storage = SessionStorage()
        self.emitter = EventEmitter(sink, distinct_id=visitor.visitor_id, session_id=self.session_id,
                                    clock=website.get_current_time)
        self.page_views = 0
        self.data: List[dict] = []

    # ----- Time & logging -----
    def _now(self) -> datetime:
        return self.website.get_current_time()

    def _log(self, payload: dict):
        row = {
            "timestamp": self._now(),
            "visitor_id": self.visitor.visitor_id,
            "session_id": self.session_id,
            "channel": self.channel,
            **payload,
        }
        self.data.append(row)
        if self.log:
            self.log.debug(payload.get("interaction", "interaction"), extra=row)
        return row

    # ----- Core step: one page view -----
    def view_page(self, url: str, referrer: str = ""):
        page = self.website.open_page(url, session_storage=self.storage, referrer=referrer)
        inst = PageInstrumentation(page, self.emitter)
        inst.activate()
        self.page_views += 1
        self._log({"interaction": "pageview", "page": page.location.pathname, "url": url})

        b = self.behaviour
        form_decided = False
        max_scroll = max(0.0, page.document_height - page.viewport_height)
        try:
            while True:
                yield self.env.timeout(b.dwell_s)

                if (not form_decided and inst.visibility is not None
                        and self.website.page.form_section
                        and inst.visibility.is_seen(self.website.page.form_section)):
                    form_decided = True
                    if self.rng.random() < b.form_conversion_prob:
                        yield from self._fill_form(inst)

                if self.rng.random() < max(0.0, min(1.0, b.dropoff_prob)):
                    self._log({"interaction": "dropoff", "page": page.location.pathname,
                               "scroll_y": page.scroll_y})
                    break
                if page.scroll_y >= max_scroll:
                    # let the last frame flush before leaving
                    yield self.env.timeout(b.dwell_s)
                    self._log({"interaction": "end_of_page", "page": page.location.pathname})
                    break

                self.visitor.engage(self._now())
                for _ in range(self.WHEEL_TICKS):
                    page.scroll_by(b.scroll_step_px / self.WHEEL_TICKS)
                    yield self.env.timeout(self.WHEEL_TICK_S)
        finally:
            inst.teardown()
            page.close()

    def _fill_form(self, inst: PageInstrumentation):
        yield self.env.timeout(self.rng.uniform(5.0, 20.0))  # typing
        submitter = FormSubmitter(
            self.emitter, inst.attribution, inst.navigation,
            intake_url=self.website.page.intake_url, http_session=self.website.http,
            metadata=self.website.page.form,
        )
        ok = submitter.submit(self.visitor.form_fields())
        self._log({"interaction": "form_submit", "element": self.website.page.form.form_id, "ok": ok})
        if ok:
            self.visitor.become_lead(self._now())

    # ----- Full session traversal -----
    def simulate_site_interactions(self):
        b = self.behaviour
        yield from self.view_page(self.website.landing_url(b.utm), referrer=b.referrer)

        if self.rng.random() < b.return_prob:
            yield self.env.timeout(self.rng.uniform(30.0, 600.0))
            url = self.website.landing_url(b.utm if b.return_with_utm else None)
            yield from self.view_page(url)
        return self.data
