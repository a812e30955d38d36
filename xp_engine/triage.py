"""Capture triage state machine and pending-queue cursor."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Callable, Optional

from xp_engine.errors import InvalidStateError, ValidationError
from xp_engine.schema import (
    PROJECT_CATEGORIES,
    PROJECT_PRIORITIES,
    Capture,
    ParkingLotItem,
    Project,
)

TRIAGE_ACTIONS = ("track", "parking", "doing", "routing", "delete")

DEFAULT_PROJECT_FIELDS = {"category": "work", "priority": "should", "cost": 5, "benefit": 5}

_PROJECT_FIELD_NAMES = {"title", "category", "priority", "cost", "benefit", "due_date"}
_TITLE_LIMIT = 120


@dataclass(frozen=True)
class TriageOutcome:
    """Effect of one triage action; the caller persists it."""

    action: str
    capture: Optional[Capture]
    new_status: Optional[str]
    project: Optional[Project] = None
    parking_item: Optional[ParkingLotItem] = None
    routing_target: Optional[str] = None

    @property
    def deleted(self) -> bool:
        return self.capture is None


def _new_id() -> str:
    return uuid.uuid4().hex


def _seed_title(content: str) -> str:
    first_line = content.strip().splitlines()[0] if content.strip() else ""
    return first_line[:_TITLE_LIMIT]


def build_project_fields(project_fields: dict | None) -> dict:
    """Merge caller-supplied project fields over defaults and validate them."""

    supplied = {k: v for k, v in (project_fields or {}).items() if v is not None}
    unknown = sorted(set(supplied) - _PROJECT_FIELD_NAMES)
    if unknown:
        raise ValidationError(f"Unknown project fields {unknown}")

    fields = dict(DEFAULT_PROJECT_FIELDS)
    fields.update(supplied)

    if fields["category"] not in PROJECT_CATEGORIES:
        raise ValidationError(f"Invalid category '{fields['category']}'")
    if fields["priority"] not in PROJECT_PRIORITIES:
        raise ValidationError(f"Invalid priority '{fields['priority']}'")
    for name in ("cost", "benefit"):
        value = fields[name]
        if isinstance(value, bool) or not isinstance(value, int) or not 1 <= value <= 10:
            raise ValidationError(f"{name} must be an integer between 1 and 10")
    return fields


def _mark(capture: Capture, status: str, action: str, now: datetime) -> Capture:
    return replace(capture, status=status, decision=action, triaged_at=now)


def _track(capture, now, new_id, project_fields, routing_target) -> TriageOutcome:
    fields = build_project_fields(project_fields)
    title = fields.pop("title", None) or _seed_title(capture.content)
    project = Project(id=new_id(), user_id=capture.user_id, title=title, created_at=now, **fields)
    return TriageOutcome("track", _mark(capture, "tracked", "track", now), "tracked", project=project)


def _park(capture, now, new_id, project_fields, routing_target) -> TriageOutcome:
    item = ParkingLotItem(
        id=new_id(),
        user_id=capture.user_id,
        capture_id=capture.id,
        content=capture.content,
        parked_at=now,
    )
    return TriageOutcome("parking", _mark(capture, "parked", "parking", now), "parked", parking_item=item)


def _do_now(capture, now, new_id, project_fields, routing_target) -> TriageOutcome:
    return TriageOutcome("doing", _mark(capture, "dismissed", "doing", now), "dismissed")


def _route(capture, now, new_id, project_fields, routing_target) -> TriageOutcome:
    # Placeholder until external handoff exists: dismiss and carry the target along.
    return TriageOutcome(
        "routing",
        _mark(capture, "dismissed", "routing", now),
        "dismissed",
        routing_target=routing_target,
    )


def _delete(capture, now, new_id, project_fields, routing_target) -> TriageOutcome:
    return TriageOutcome("delete", None, None)


_HANDLERS = {
    "track": _track,
    "parking": _park,
    "doing": _do_now,
    "routing": _route,
    "delete": _delete,
}


def resolve(
    capture: Capture,
    action: str,
    now: datetime,
    project_fields: dict | None = None,
    routing_target: str | None = None,
    new_id: Callable[[], str] = _new_id,
) -> TriageOutcome:
    """Apply a triage action to a pending capture without touching storage."""

    handler = _HANDLERS.get(action)
    if handler is None:
        raise ValidationError(f"Unknown triage action '{action}'")
    if capture.status != "pending":
        raise InvalidStateError(f"Capture {capture.id} is already {capture.status}")
    return handler(capture, now, new_id, project_fields, routing_target)


def pending_order(captures: list[Capture]) -> list[Capture]:
    """Pending captures oldest first; same-instant captures keep creation order."""

    return sorted((c for c in captures if c.status == "pending"), key=lambda c: (c.created_at, c.sequence, c.id))


class PendingQueue:
    """Cursor over the pending captures of one user.

    The cursor is an index into the oldest-first pending list. Whenever the
    underlying captures change, call :meth:`refresh`; the cursor then follows
    the selected capture if it is still pending, otherwise it stays at the same
    position (clamped), which is the item that moved into the freed slot.
    """

    def __init__(self, captures: list[Capture]) -> None:
        self._items = pending_order(captures)
        self._index = 0

    def __len__(self) -> int:
        return len(self._items)

    @property
    def index(self) -> int:
        return self._index

    @property
    def items(self) -> list[Capture]:
        return list(self._items)

    def current(self) -> Optional[Capture]:
        if not self._items:
            return None
        return self._items[self._index]

    def select(self, index: int) -> Optional[Capture]:
        if not self._items:
            self._index = 0
            return None
        self._index = max(0, min(index, len(self._items) - 1))
        return self.current()

    def refresh(self, captures: list[Capture]) -> Optional[Capture]:
        selected = self.current()
        self._items = pending_order(captures)
        if selected is not None:
            for position, capture in enumerate(self._items):
                if capture.id == selected.id:
                    self._index = position
                    return capture
        return self.select(self._index)


def triage_stats(captures: list[Capture], sample: int = 10) -> dict:
    """Pending count, oldest pending timestamp and average minutes to triage."""

    pending = pending_order(captures)
    triaged = sorted(
        (c for c in captures if c.triaged_at is not None),
        key=lambda c: c.triaged_at,
        reverse=True,
    )[:sample]

    average = None
    if triaged:
        minutes = [(c.triaged_at - c.created_at).total_seconds() / 60.0 for c in triaged]
        average = sum(minutes) / len(minutes)

    return {
        "pending_count": len(pending),
        "oldest_pending": pending[0].created_at if pending else None,
        "average_triage_minutes": average,
    }
