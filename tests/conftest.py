from datetime import datetime, timezone

import pytest
import simpy
from sqlalchemy import create_engine

from landing_analytics.browser import BrowserPage, SessionStorage
from landing_analytics.events import EventEmitter, RecordingSink
from landing_analytics.models import metadata

START = datetime(2025, 3, 3, 9, 0, tzinfo=timezone.utc)

# hero [0,600]  problem [600,1500]  form [1500,2000]  footer [2000,2300]
PAGE_HTML = """
<html><body>
  <header id="hero-section" data-section-name="Hero Section" data-height="600"><h1>Hi</h1></header>
  <section id="problem-section" data-height="900"><p>Problem</p></section>
  <section data-section-name="Application Form" data-height="500"><form id="apply-form"></form></section>
  <footer id="footer" data-height="300"></footer>
</body></html>
"""
DOCUMENT_HEIGHT = 2300


@pytest.fixture
def env():
    return simpy.Environment()


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def emitter(sink):
    return EventEmitter(sink, distinct_id="visitor-1", session_id="session-1", clock=lambda: START)


@pytest.fixture
def make_page(env):
    def _make(url="https://example.com/", *, html=PAGE_HTML, viewport_height=1000.0,
              session_storage=None, referrer="", load_delay_s=0.5):
        return BrowserPage(
            env,
            html,
            url,
            referrer=referrer,
            session_storage=session_storage if session_storage is not None else SessionStorage(),
            viewport_height=viewport_height,
            load_delay_s=load_delay_s,
            start_dt=START,
        )
    return _make


@pytest.fixture
def engine():
    eng = create_engine("sqlite://", future=True)
    metadata.create_all(eng)
    yield eng
    eng.dispose()
