"""Entity store interface and an in-memory implementation."""

from __future__ import annotations

import copy
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Any, Iterator, Optional

from xp_engine.errors import InvalidStateError, ValidationError

ENTITY_KINDS = ("captures", "projects", "sessions", "ledger", "parking_lot", "achievements", "commitments")


class EntityStore(ABC):
    """Read/write access to user-owned rows.

    Implementations must give read-your-writes consistency and commit all
    writes issued inside :meth:`transaction` atomically: if the block raises,
    none of them become visible.
    """

    @abstractmethod
    def get(self, kind: str, entity_id: str) -> Optional[Any]:
        """Return the row with ``entity_id`` or ``None``."""

    @abstractmethod
    def query(self, kind: str, user_id: str, **filters: Any) -> list:
        """Return rows owned by ``user_id`` whose attributes equal ``filters``."""

    @abstractmethod
    def add(self, kind: str, row: Any) -> Any:
        """Insert a new row."""

    @abstractmethod
    def update(self, kind: str, row: Any) -> Any:
        """Replace an existing row."""

    @abstractmethod
    def delete(self, kind: str, entity_id: str) -> None:
        """Remove a row."""

    @abstractmethod
    @contextmanager
    def transaction(self) -> Iterator["EntityStore"]:
        """All-or-nothing unit of work."""


def _check_kind(kind: str) -> None:
    if kind not in ENTITY_KINDS:
        raise ValidationError(f"Unknown entity kind '{kind}'")


_DELETED = object()


class InMemoryStore(EntityStore):
    """Dict-backed store; staged writes are private to the writing thread.

    A transaction records row-level writes and deletes and applies only those
    on commit, so concurrent transactions touching other rows never overwrite
    each other's committed work.
    """

    def __init__(self) -> None:
        self._tables: dict[str, dict[str, Any]] = {kind: {} for kind in ENTITY_KINDS}
        self._local = threading.local()
        self._commit_lock = threading.Lock()

    def _pending(self) -> Optional[dict[str, dict[str, Any]]]:
        return getattr(self._local, "pending", None)

    def _lookup(self, kind: str, entity_id: str) -> Optional[Any]:
        pending = self._pending()
        if pending is not None and entity_id in pending[kind]:
            row = pending[kind][entity_id]
            return None if row is _DELETED else row
        with self._commit_lock:
            return self._tables[kind].get(entity_id)

    def _rows(self, kind: str) -> list:
        with self._commit_lock:
            rows = dict(self._tables[kind])
        pending = self._pending()
        if pending is not None:
            for entity_id, row in pending[kind].items():
                if row is _DELETED:
                    rows.pop(entity_id, None)
                else:
                    rows[entity_id] = row
        return list(rows.values())

    def get(self, kind, entity_id):
        _check_kind(kind)
        row = self._lookup(kind, entity_id)
        return copy.copy(row) if row is not None else None

    def query(self, kind, user_id, **filters):
        _check_kind(kind)
        rows = []
        for row in self._rows(kind):
            if row.user_id != user_id:
                continue
            if all(getattr(row, name) == value for name, value in filters.items()):
                rows.append(copy.copy(row))
        return rows

    def add(self, kind, row):
        _check_kind(kind)
        with self._autocommit() as pending:
            if self._lookup(kind, row.id) is not None:
                raise InvalidStateError(f"{kind} row {row.id} already exists")
            pending[kind][row.id] = copy.copy(row)
        return row

    def update(self, kind, row):
        _check_kind(kind)
        if kind == "ledger":
            raise InvalidStateError("The XP ledger is append-only")
        with self._autocommit() as pending:
            if self._lookup(kind, row.id) is None:
                raise InvalidStateError(f"{kind} row {row.id} does not exist")
            pending[kind][row.id] = copy.copy(row)
        return row

    def delete(self, kind, entity_id):
        _check_kind(kind)
        if kind == "ledger":
            raise InvalidStateError("The XP ledger is append-only")
        with self._autocommit() as pending:
            pending[kind][entity_id] = _DELETED

    @contextmanager
    def _autocommit(self):
        with self.transaction():
            yield self._local.pending

    @contextmanager
    def transaction(self):
        if self._pending() is not None:
            # Nested blocks join the outer unit of work.
            yield self
            return

        self._local.pending = {kind: {} for kind in ENTITY_KINDS}
        try:
            yield self
            with self._commit_lock:
                for kind, writes in self._local.pending.items():
                    table = self._tables[kind]
                    for entity_id, row in writes.items():
                        if row is _DELETED:
                            table.pop(entity_id, None)
                        else:
                            table[entity_id] = row
        finally:
            self._local.pending = None

    def snapshot(self) -> dict[str, list]:
        """Copy of every committed row, grouped by kind."""

        with self._commit_lock:
            return {kind: [copy.copy(row) for row in rows.values()] for kind, rows in self._tables.items()}
