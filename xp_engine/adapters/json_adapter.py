"""JSON snapshot adapter for the in-memory store."""

from __future__ import annotations

import json
from dataclasses import asdict, fields
from datetime import date, datetime

from xp_engine.schema import (
    Capture,
    DailyCommitment,
    ParkingLotItem,
    Project,
    Session,
    UnlockedAchievement,
    XPLedgerEntry,
)
from xp_engine.store import ENTITY_KINDS, InMemoryStore

_ROW_TYPES = {
    "captures": Capture,
    "projects": Project,
    "sessions": Session,
    "ledger": XPLedgerEntry,
    "parking_lot": ParkingLotItem,
    "achievements": UnlockedAchievement,
    "commitments": DailyCommitment,
}

_DATETIME_FIELDS = {
    "created_at",
    "triaged_at",
    "parked_at",
    "completed_at",
    "started_at",
    "ended_at",
    "timestamp",
    "unlocked_at",
    "set_at",
}
_DATE_FIELDS = {"week_start", "due_date", "day"}


def _parse_item(kind: str, item: dict, index: int):
    row_type = _ROW_TYPES[kind]
    known = {f.name for f in fields(row_type)}

    unknown = sorted(set(item) - known)
    if unknown:
        raise ValueError(f"{kind} item {index}: unknown fields {unknown}")
    if not item.get("id") or not item.get("user_id"):
        raise ValueError(f"{kind} item {index}: missing id or user_id")

    values = dict(item)
    for name, raw in item.items():
        if raw is None:
            continue
        try:
            if name in _DATETIME_FIELDS:
                values[name] = datetime.fromisoformat(raw)
            elif name in _DATE_FIELDS:
                values[name] = date.fromisoformat(raw)
        except (TypeError, ValueError) as exc:
            raise ValueError(f"{kind} item {index}: malformed {name}") from exc

    try:
        return row_type(**values)
    except TypeError as exc:
        raise ValueError(f"{kind} item {index}: {exc}") from exc


def _encode(value):
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return value


def load(file_path: str) -> InMemoryStore:
    """Build a store from a JSON snapshot file."""

    with open(file_path, encoding="utf-8") as handle:
        payload = json.load(handle)

    if not isinstance(payload, dict):
        raise ValueError("JSON payload must be an object keyed by entity kind")
    unknown = sorted(set(payload) - set(ENTITY_KINDS))
    if unknown:
        raise ValueError(f"Unknown entity kinds {unknown}")

    store = InMemoryStore()
    with store.transaction():
        for kind in ENTITY_KINDS:
            items = payload.get(kind) or []
            if not isinstance(items, list):
                raise ValueError(f"'{kind}' must be a list of objects")
            for index, item in enumerate(items, start=1):
                store.add(kind, _parse_item(kind, item, index))
    return store


def dump(store: InMemoryStore, file_path: str) -> None:
    """Write every committed row of ``store`` to a JSON snapshot file."""

    snapshot = store.snapshot()
    payload = {
        kind: [{name: _encode(value) for name, value in asdict(row).items()} for row in rows]
        for kind, rows in snapshot.items()
    }
    with open(file_path, "w", encoding="utf-8") as handle:
        json.dump(payload, handle, indent=2)
