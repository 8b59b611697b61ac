from __future__ import annotations

import os
import time
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv
from sqlalchemy import create_engine, delete, insert, select, update
from sqlalchemy.engine import Engine

from landing_analytics.logging_utils import get_logger
from landing_analytics.models import metadata, tracked_events, attribution_snapshots, SCHEMA

log = get_logger("db")


# -----------------------------------------------------------------------------
# Engine & Schema
# -----------------------------------------------------------------------------
_ENGINE: Optional[Engine] = None


def database_url() -> str:
    load_dotenv()
    PG_USER = os.getenv("DB_USER", "postgres")
    PG_PASS = os.getenv("DB_PASSWORD", "postgres")
    PG_HOST = os.getenv("DB_HOST", "127.0.0.1")
    PG_PORT = os.getenv("DB_PORT", "5432")
    PG_DB   = os.getenv("DB_DATABASE", "postgres")
    return (
        os.getenv("DATABASE_URL")
        or os.getenv("POSTGRES_DSN")
        or f"postgresql+psycopg2://{PG_USER}:{PG_PASS}@{PG_HOST}:{PG_PORT}/{PG_DB}"
    )


def get_engine() -> Engine:
    """Process-wide engine, built lazily from the environment."""
    global _ENGINE
    if _ENGINE is None:
        url = database_url()
        connect_args = {}
        if url.startswith("postgresql"):
            connect_args["connect_timeout"] = int(os.getenv("DB_CONNECT_TIMEOUT", "5"))
        _ENGINE = create_engine(url, pool_pre_ping=True, future=True, connect_args=connect_args)
    return _ENGINE


def ensure_tables(engine: Engine | None = None) -> None:
    engine = engine or get_engine()
    metadata.create_all(engine, checkfirst=True)
    log.info("schema_ready", extra={"schema": SCHEMA or "default",
                                    "tables": sorted(t.name for t in metadata.sorted_tables)})


# -----------------------------------------------------------------------------
# Helpers
# -----------------------------------------------------------------------------
def _coerce_utc(dt: datetime | str | None) -> datetime | None:
    if dt is None:
        return None
    if isinstance(dt, str):
        dt = datetime.fromisoformat(dt.replace("Z", "+00:00"))
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


# -----------------------------------------------------------------------------
# Event writes
# -----------------------------------------------------------------------------
def write_events(rows: List[Dict[str, Any]], engine: Engine | None = None) -> int:
    """Bulk insert tracked events. Returns number of rows written."""
    if not rows:
        return 0

    norm = [
        {
            "distinct_id": str(r["distinct_id"]),
            "session_id": str(r["session_id"]),
            "event": r["event"],
            "properties": dict(r.get("properties") or {}),
            "timestamp": _coerce_utc(r.get("timestamp")) or datetime.now(timezone.utc),
        }
        for r in rows
    ]

    t0 = time.perf_counter()
    engine = engine or get_engine()
    with engine.begin() as conn:
        conn.execute(insert(tracked_events), norm)
    dt = time.perf_counter() - t0
    log.info("events_insert_done", extra={"rows": len(norm), "seconds": round(dt, 3)})
    return len(norm)


def count_events(engine: Engine | None = None) -> Dict[str, int]:
    engine = engine or get_engine()
    with engine.connect() as conn:
        rows = conn.execute(select(tracked_events.c.event)).scalars().all()
    counts: Dict[str, int] = {}
    for name in rows:
        counts[name] = counts.get(name, 0) + 1
    return counts


# -----------------------------------------------------------------------------
# Attribution snapshots (one row per browsing session)
# -----------------------------------------------------------------------------
def read_attribution(session_id: str, engine: Engine | None = None) -> Optional[str]:
    engine = engine or get_engine()
    with engine.connect() as conn:
        return conn.execute(
            select(attribution_snapshots.c.payload)
            .where(attribution_snapshots.c.session_id == str(session_id))
        ).scalar_one_or_none()


def write_attribution(session_id: str, payload: str, engine: Engine | None = None) -> None:
    """Overwrite the stored snapshot for a session (last writer wins)."""
    engine = engine or get_engine()
    now = datetime.now(timezone.utc)
    with engine.begin() as conn:
        updated = conn.execute(
            update(attribution_snapshots)
            .where(attribution_snapshots.c.session_id == str(session_id))
            .values(payload=payload, updated_at=now)
        ).rowcount
        if not updated:
            conn.execute(insert(attribution_snapshots).values(
                session_id=str(session_id), payload=payload, updated_at=now,
            ))


def delete_attribution(session_id: str, engine: Engine | None = None) -> None:
    engine = engine or get_engine()
    with engine.begin() as conn:
        conn.execute(
            delete(attribution_snapshots)
            .where(attribution_snapshots.c.session_id == str(session_id))
        )


# -----------------------------------------------------------------------------
# Reset tables
# -----------------------------------------------------------------------------
def reset_tables(mode: str = "delete", engine: Engine | None = None) -> None:
    """Dangerous: dev-only helper. Empties (or drops and recreates) our tables."""
    engine = engine or get_engine()
    if mode == "delete":
        with engine.begin() as conn:
            for table in reversed(metadata.sorted_tables):
                conn.execute(delete(table))
    elif mode == "recreate":
        metadata.drop_all(engine, checkfirst=True)
        metadata.create_all(engine)
    else:
        raise ValueError("reset_tables: mode must be 'delete' or 'recreate'")

    log.info("db_reset_done", extra={"mode": mode,
                                     "tables": [t.name for t in metadata.sorted_tables]})


__all__ = [
    "database_url",
    "get_engine",
    "ensure_tables",
    "write_events",
    "count_events",
    "read_attribution",
    "write_attribution",
    "delete_attribution",
    "reset_tables",
]
