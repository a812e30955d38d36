"""CSV adapter for focus-session history."""

from __future__ import annotations

import csv
from datetime import datetime

from xp_engine.schema import SESSION_DURATIONS, WILLPOWER_LEVELS, Session

_REQUIRED_FIELDS = {"session_id", "user_id", "started_at", "willpower", "planned_duration"}
_TRUE_VALUES = {"1", "true", "yes", "y"}


def _parse_int(raw: str | None, name: str, row_number: int) -> int | None:
    if raw in (None, ""):
        return None
    try:
        return int(raw)
    except ValueError as exc:
        raise ValueError(f"Row {row_number}: invalid {name}") from exc


def _parse_row(row: dict, row_number: int) -> Session:
    missing = sorted(field for field in _REQUIRED_FIELDS if not row.get(field))
    if missing:
        raise ValueError(f"Row {row_number}: missing required fields {missing}")

    try:
        started_at = datetime.fromisoformat(row["started_at"])
    except ValueError as exc:
        raise ValueError(f"Row {row_number}: malformed started_at") from exc

    willpower = row["willpower"].strip()
    if willpower not in WILLPOWER_LEVELS:
        raise ValueError(f"Row {row_number}: invalid willpower '{willpower}'")

    planned = _parse_int(row["planned_duration"], "planned_duration", row_number)
    if planned not in SESSION_DURATIONS:
        raise ValueError(f"Row {row_number}: planned_duration must be one of {SESSION_DURATIONS}")

    actual = _parse_int(row.get("actual_duration"), "actual_duration", row_number)
    if actual is not None and actual < 0:
        raise ValueError(f"Row {row_number}: actual_duration cannot be negative")

    completed_raw = (row.get("completed") or "").strip().lower()
    completed = completed_raw in _TRUE_VALUES if completed_raw else actual is not None

    project_raw = row.get("project_id")
    return Session(
        id=row["session_id"].strip(),
        user_id=row["user_id"].strip(),
        willpower=willpower,
        planned_duration=planned,
        started_at=started_at,
        project_id=project_raw.strip() if project_raw and project_raw.strip() else None,
        actual_duration=actual,
        completed=completed,
    )


def parse(file_path: str) -> list[Session]:
    """Parse CSV file into a list of sessions."""

    with open(file_path, newline="", encoding="utf-8") as handle:
        reader = csv.DictReader(handle)
        if not reader.fieldnames:
            return []

        sessions: list[Session] = []
        for row_number, row in enumerate(reader, start=2):
            sessions.append(_parse_row(row, row_number))
        return sessions
