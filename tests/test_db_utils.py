from datetime import datetime, timezone

import pytest

from landing_analytics import db_utils
from landing_analytics.db_utils import _coerce_utc


def test_coerce_utc():
    assert _coerce_utc(None) is None
    assert _coerce_utc("2025-03-03T09:00:00Z") == datetime(2025, 3, 3, 9, tzinfo=timezone.utc)
    assert _coerce_utc(datetime(2025, 3, 3, 9)).tzinfo == timezone.utc


def test_write_and_count_events(engine):
    rows = [
        {"distinct_id": "v1", "session_id": "s1", "event": "section_viewed",
         "properties": {"section_id": "hero"}, "timestamp": "2025-03-03T09:00:00Z"},
        {"distinct_id": "v1", "session_id": "s1", "event": "scroll_depth",
         "properties": {"depth": 25}, "timestamp": None},
        {"distinct_id": "v1", "session_id": "s1", "event": "scroll_depth",
         "properties": {"depth": 50}, "timestamp": None},
    ]
    assert db_utils.write_events(rows, engine=engine) == 3
    assert db_utils.write_events([], engine=engine) == 0
    assert db_utils.count_events(engine) == {"section_viewed": 1, "scroll_depth": 2}


def test_attribution_upsert_and_delete(engine):
    assert db_utils.read_attribution("s1", engine=engine) is None

    db_utils.write_attribution("s1", '{"utm_source": "google"}', engine=engine)
    db_utils.write_attribution("s1", '{"utm_source": "newsletter"}', engine=engine)
    db_utils.write_attribution("s2", '{"utm_medium": "cpc"}', engine=engine)

    assert db_utils.read_attribution("s1", engine=engine) == '{"utm_source": "newsletter"}'
    db_utils.delete_attribution("s1", engine=engine)
    assert db_utils.read_attribution("s1", engine=engine) is None
    assert db_utils.read_attribution("s2", engine=engine) == '{"utm_medium": "cpc"}'


@pytest.mark.parametrize("mode", ["delete", "recreate"])
def test_reset_tables(engine, mode):
    db_utils.write_attribution("s1", "{}", engine=engine)
    db_utils.write_events([{"distinct_id": "v", "session_id": "s", "event": "e"}], engine=engine)

    db_utils.reset_tables(mode, engine=engine)

    assert db_utils.count_events(engine) == {}
    assert db_utils.read_attribution("s1", engine=engine) is None


def test_reset_tables_rejects_unknown_mode(engine):
    with pytest.raises(ValueError):
        db_utils.reset_tables("truncate", engine=engine)
