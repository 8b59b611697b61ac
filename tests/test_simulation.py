from datetime import timedelta

import pytest
import requests

from conftest import START, PAGE_HTML
from landing_analytics.events import RecordingSink
from landing_analytics.simulation import run_simulation
from landing_analytics.visitor import VisitorAgent
from landing_analytics.website import ChannelBehaviour, LandingPage, Website


@pytest.fixture
def site(env):
    page = LandingPage(url="https://example.com/", html=PAGE_HTML, viewport_height=1000.0)
    return Website(env, page, START)


def _plan(**behaviour):
    b = ChannelBehaviour(utm={"source": "google", "medium": "cpc"}, dwell_s=1.0, dropoff_prob=0.0,
                         form_conversion_prob=1.0, return_prob=0.0)
    for k, v in behaviour.items():
        setattr(b, k, v)
    return {"Paid": {"visitors": 5, "mean_gap_s": 10.0, "behaviour": b}}


def test_every_visitor_reads_to_the_bottom_and_applies(site):
    sink = RecordingSink()
    summary = run_simulation(site=site, channel_plan=_plan(), sink=sink, seed=3,
                             end_dt=START + timedelta(hours=1), grace_period_s=600)

    assert summary["visitors"] == 5
    assert summary["page_views"] == 5
    assert summary["leads"] == 5
    assert summary["leads_by_channel"] == {"Paid": 5}

    counts = summary["event_counts"]
    assert counts["utm_parameters_detected"] == 5
    assert counts["scroll_depth"] == 20
    assert counts["section_viewed"] == 15
    assert counts["form_submission_started"] == 5
    assert counts["form_submission_completed"] == 5
    assert summary["events"] == len(sink.events)

    for e in sink.named("form_submission_completed"):
        assert e.properties["utm_source"] == "google"
        assert e.properties["form_id"] == "apply-form"


def test_each_session_reports_milestones_in_order(site):
    sink = RecordingSink()
    run_simulation(site=site, channel_plan=_plan(), sink=sink, seed=11,
                   end_dt=START + timedelta(hours=1))

    by_session = {}
    for e in sink.named("scroll_depth"):
        by_session.setdefault(e.session_id, []).append(e.properties["depth"])
    assert len(by_session) == 5
    assert all(depths == [25, 50, 75, 100] for depths in by_session.values())


def test_no_conversion_means_no_leads(site):
    summary = run_simulation(site=site, channel_plan=_plan(form_conversion_prob=0.0),
                             end_dt=START + timedelta(hours=1))
    assert summary["leads"] == 0
    assert "form_submission_started" not in summary["event_counts"]


def test_end_must_follow_start(site):
    with pytest.raises(ValueError):
        run_simulation(site=site, channel_plan=_plan(), end_dt=START)


def test_visitor_funnel_stages():
    v = VisitorAgent(channel="Paid")
    assert v.marketing_funnel_stage == "Awareness"
    v.engage(START)
    v.engage(START + timedelta(seconds=5))
    assert v.marketing_funnel_stage == "Engaged"
    assert v.stage_last_updated_date == START
    v.become_lead(START + timedelta(seconds=30))
    assert v.is_lead and v.marketing_funnel_stage == "Lead"
    assert set(v.form_fields()) == {"name", "email", "phone"}


class RecordingHTTP:
    def __init__(self):
        self.posts = []
        self.closed = False

    def post(self, url, json=None, timeout=None):
        self.posts.append(url)
        resp = requests.Response()
        resp.status_code = 202
        return resp

    def close(self):
        self.closed = True


def test_form_posts_share_one_http_session_closed_at_run_end(env):
    http = RecordingHTTP()
    page = LandingPage(url="https://example.com/", html=PAGE_HTML, viewport_height=1000.0,
                       intake_url="https://intake.example.com/hook")
    site = Website(env, page, START, http_session=http)

    summary = run_simulation(site=site, channel_plan=_plan(), end_dt=START + timedelta(hours=1))

    assert http.posts == ["https://intake.example.com/hook"] * 5
    assert http.closed
    assert summary["leads"] == 5


def test_summary_lists_lead_records(site):
    summary = run_simulation(site=site, channel_plan=_plan(), end_dt=START + timedelta(hours=1))

    records = summary["lead_records"]
    assert len(records) == 5
    assert all(r["is_lead"] and r["marketing_funnel_stage"] == "Lead" for r in records)
    assert {r["channel"] for r in records} == {"Paid"}
    assert all(r["lead_timestamp"] > START for r in records)
