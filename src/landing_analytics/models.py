# models.py
import os
from sqlalchemy import (
    Table, Column, MetaData, Integer, String, Text, DateTime, JSON,
    Index, func,
)

SCHEMA = (os.getenv("DB_SCHEMA") or "").strip() or None
metadata = MetaData(schema=SCHEMA)

tracked_events = Table(
    "tracked_events", metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("distinct_id", String, nullable=False),     # visitor id
    Column("session_id", String, nullable=False),
    Column("event", String, nullable=False),            # section_viewed, scroll_depth, ...
    Column("properties", JSON, nullable=False),
    Column("timestamp", DateTime(timezone=True), nullable=False),
)
Index("ix_tracked_events_distinct_ts", tracked_events.c.distinct_id, tracked_events.c.timestamp)
Index("ix_tracked_events_event", tracked_events.c.event)

# Merged UTM snapshot per browsing session (the derived first_/last_ views are never stored)
attribution_snapshots = Table(
    "attribution_snapshots", metadata,
    Column("session_id", String, primary_key=True),
    Column("payload", Text, nullable=False),
    Column("updated_at", DateTime(timezone=True), nullable=False, server_default=func.now()),
)
