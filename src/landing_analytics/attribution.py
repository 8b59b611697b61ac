# src/landing_analytics/attribution.py
"""
UTM attribution capture with first-touch / last-touch views.

The merged snapshot is persisted per browsing session through an injectable
backend. The derived first_utm_* / last_utm_* values are only emitted,
never stored.
"""
from __future__ import annotations

import json
from dataclasses import dataclass, fields, replace
from typing import Any, Dict, Mapping, Optional, Protocol

from sqlalchemy.engine import Engine

from landing_analytics import db_utils
from landing_analytics.browser import Location, SessionStorage
from landing_analytics.events import EventEmitter, UTM_PARAMETERS_DETECTED
from landing_analytics.logging_utils import get_logger
from landing_analytics.navigation import NavigationContext

log = get_logger("attribution")

STORAGE_KEY = "utm_params"
UTM_FIELDS = ("source", "medium", "campaign", "term", "content")


def normalize(value: Any) -> Optional[str]:
    """Trimmed string, or None for missing / blank / non-string values."""
    if not isinstance(value, str):
        return None
    value = value.strip()
    return value or None


@dataclass(frozen=True)
class AttributionSnapshot:
    source: Optional[str] = None
    medium: Optional[str] = None
    campaign: Optional[str] = None
    term: Optional[str] = None
    content: Optional[str] = None

    def __post_init__(self):
        for f in fields(self):
            object.__setattr__(self, f.name, normalize(getattr(self, f.name)))

    @classmethod
    def from_location(cls, location: Location) -> "AttributionSnapshot":
        return cls(**{name: location.param(f"utm_{name}") for name in UTM_FIELDS})

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "AttributionSnapshot":
        return cls(**{name: data.get(f"utm_{name}") for name in UTM_FIELDS})

    def get(self, name: str) -> Optional[str]:
        return getattr(self, name)

    @property
    def is_empty(self) -> bool:
        return all(self.get(name) is None for name in UTM_FIELDS)

    def merged_with(self, incoming: "AttributionSnapshot") -> "AttributionSnapshot":
        """Per field: the incoming value when present, else ours."""
        return replace(self, **{
            name: incoming.get(name) for name in UTM_FIELDS if incoming.get(name) is not None
        })

    def to_dict(self) -> Dict[str, str]:
        """utm_* keys for present fields only (the stored JSON shape)."""
        return {f"utm_{name}": self.get(name) for name in UTM_FIELDS if self.get(name) is not None}

    def to_properties(self) -> Dict[str, Optional[str]]:
        """All five utm_* keys; absent ones are None and get dropped at emit time."""
        return {f"utm_{name}": self.get(name) for name in UTM_FIELDS}

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), ensure_ascii=False)


EMPTY = AttributionSnapshot()


def touch_properties(previous: AttributionSnapshot, incoming: AttributionSnapshot) -> Dict[str, str]:
    """
    first_utm_<f>: only when nothing was known for <f> before this capture.
    last_utm_<f>: whenever the incoming URL carries <f>.
    """
    props: Dict[str, str] = {}
    for name in UTM_FIELDS:
        value = incoming.get(name)
        if value is None:
            continue
        if previous.get(name) is None:
            props[f"first_utm_{name}"] = value
        props[f"last_utm_{name}"] = value
    return props


# ---------------------------------------------------------------------------
# Persistence backends
# ---------------------------------------------------------------------------
class AttributionBackend(Protocol):
    def read(self) -> Optional[str]: ...
    def write(self, payload: str) -> None: ...
    def clear(self) -> None: ...


class MemoryBackend:
    def __init__(self, payload: Optional[str] = None):
        self.payload = payload

    def read(self) -> Optional[str]:
        return self.payload

    def write(self, payload: str) -> None:
        self.payload = payload

    def clear(self) -> None:
        self.payload = None


class SessionStorageBackend:
    def __init__(self, storage: SessionStorage, key: str = STORAGE_KEY):
        self.storage = storage
        self.key = key

    def read(self) -> Optional[str]:
        return self.storage.get_item(self.key)

    def write(self, payload: str) -> None:
        self.storage.set_item(self.key, payload)

    def clear(self) -> None:
        self.storage.remove_item(self.key)


class DatabaseBackend:
    """One attribution_snapshots row per browsing session."""

    def __init__(self, session_id: str, engine: Engine | None = None):
        self.session_id = session_id
        self._engine = engine

    def read(self) -> Optional[str]:
        return db_utils.read_attribution(self.session_id, engine=self._engine)

    def write(self, payload: str) -> None:
        db_utils.write_attribution(self.session_id, payload, engine=self._engine)

    def clear(self) -> None:
        db_utils.delete_attribution(self.session_id, engine=self._engine)


class CorruptSnapshot(ValueError):
    pass


def _parse(payload: Optional[str]) -> AttributionSnapshot:
    if payload is None:
        return EMPTY
    try:
        data = json.loads(payload)
    except (TypeError, ValueError) as e:
        raise CorruptSnapshot(str(e)) from e
    if not isinstance(data, dict):
        raise CorruptSnapshot(f"expected a JSON object, got {type(data).__name__}")
    return AttributionSnapshot.from_mapping(data)


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------
class AttributionStore:
    """Sole reader/writer of the persisted attribution for one browsing session."""

    def __init__(
        self,
        backend: AttributionBackend,
        *,
        location: Optional[Location] = None,
        emitter: Optional[EventEmitter] = None,
        navigation: Optional[NavigationContext] = None,
    ):
        self.backend = backend
        self.location = location
        self.emitter = emitter
        self.navigation = navigation

    def capture_and_persist(self) -> AttributionSnapshot:
        """
        Merge the URL's utm_* parameters into the stored snapshot and emit
        utm_parameters_detected. A URL without utm_* parameters is a no-op:
        storage is not touched and nothing is emitted.
        """
        incoming = AttributionSnapshot.from_location(self.location) if self.location else EMPTY
        if incoming.is_empty:
            return incoming

        previous = self._read_for_update()
        merged = previous.merged_with(incoming)
        try:
            self.backend.write(merged.to_json())
        except Exception:
            log.exception("attribution_write_failed", extra={"backend": type(self.backend).__name__})

        if self.emitter is not None:
            nav = self.navigation.landing_properties() if self.navigation else {}
            self.emitter.emit(UTM_PARAMETERS_DETECTED, {
                **merged.to_properties(),
                **touch_properties(previous, incoming),
                **nav,
            })
        log.info("attribution_captured", extra={"merged": merged.to_dict(), "had_previous": not previous.is_empty})
        return merged

    def current_snapshot(self) -> AttributionSnapshot:
        """Read-only view of the stored snapshot; never writes, never raises."""
        try:
            return _parse(self.backend.read())
        except CorruptSnapshot:
            log.warning("attribution_corrupt", extra={"backend": type(self.backend).__name__})
        except Exception:
            log.exception("attribution_read_failed", extra={"backend": type(self.backend).__name__})
        return EMPTY

    def _read_for_update(self) -> AttributionSnapshot:
        try:
            return _parse(self.backend.read())
        except CorruptSnapshot:
            log.warning("attribution_corrupt_discarded", extra={"backend": type(self.backend).__name__})
            try:
                self.backend.clear()
            except Exception:
                log.exception("attribution_clear_failed", extra={"backend": type(self.backend).__name__})
        except Exception:
            log.exception("attribution_read_failed", extra={"backend": type(self.backend).__name__})
        return EMPTY
