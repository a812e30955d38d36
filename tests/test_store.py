import threading
from datetime import date, datetime

import pytest

from xp_engine.errors import InvalidStateError, ValidationError
from xp_engine.schema import Capture, XPLedgerEntry
from xp_engine.store import InMemoryStore

NOW = datetime.fromisoformat("2026-10-14T09:00:00")


def test_add_get_query_by_owner_and_filters():
    store = InMemoryStore()
    store.add("captures", Capture("c1", "u1", "one", NOW))
    store.add("captures", Capture("c2", "u1", "two", NOW, status="parked"))
    store.add("captures", Capture("c3", "u2", "three", NOW))

    assert store.get("captures", "c1").content == "one"
    assert store.get("captures", "missing") is None
    assert {c.id for c in store.query("captures", "u1")} == {"c1", "c2"}
    assert [c.id for c in store.query("captures", "u1", status="pending")] == ["c1"]


def test_rows_are_copied_out():
    store = InMemoryStore()
    store.add("captures", Capture("c1", "u1", "one", NOW))
    row = store.get("captures", "c1")
    row.status = "dismissed"
    assert store.get("captures", "c1").status == "pending"


def test_transaction_is_all_or_nothing():
    store = InMemoryStore()
    with pytest.raises(RuntimeError):
        with store.transaction():
            store.add("captures", Capture("c1", "u1", "one", NOW))
            assert store.get("captures", "c1") is not None
            raise RuntimeError("boom")
    assert store.get("captures", "c1") is None


def test_ledger_is_append_only():
    store = InMemoryStore()
    entry = XPLedgerEntry("x1", "u1", "session", 40, date(2026, 10, 12), NOW)
    store.add("ledger", entry)
    with pytest.raises(InvalidStateError):
        store.update("ledger", entry)
    with pytest.raises(InvalidStateError):
        store.delete("ledger", "x1")
    with pytest.raises(InvalidStateError):
        store.add("ledger", entry)


def test_unknown_kind_and_missing_update():
    store = InMemoryStore()
    with pytest.raises(ValidationError):
        store.get("widgets", "w1")
    with pytest.raises(InvalidStateError):
        store.update("captures", Capture("c9", "u1", "nine", NOW))


def test_concurrent_transactions_keep_each_others_rows():
    store = InMemoryStore()
    staged = threading.Event()
    other_committed = threading.Event()
    errors = []

    def slow_writer():
        try:
            with store.transaction():
                store.add("captures", Capture("a1", "ua", "from a", NOW))
                staged.set()
                other_committed.wait(timeout=5)
        except Exception as exc:  # surfaced to the main thread below
            errors.append(exc)

    thread = threading.Thread(target=slow_writer)
    thread.start()
    assert staged.wait(timeout=5)

    store.add("captures", Capture("b1", "ub", "from b", NOW))
    assert store.get("captures", "a1") is None
    other_committed.set()
    thread.join(timeout=5)

    assert errors == []
    assert store.get("captures", "a1") is not None
    assert store.get("captures", "b1") is not None
    assert [c.id for c in store.query("captures", "ub")] == ["b1"]


def test_deletes_inside_transaction_apply_on_commit():
    store = InMemoryStore()
    store.add("captures", Capture("c1", "u1", "one", NOW))
    with store.transaction():
        store.delete("captures", "c1")
        assert store.get("captures", "c1") is None
        assert store.query("captures", "u1") == []
        store.add("captures", Capture("c2", "u1", "two", NOW))
    assert [c.id for c in store.query("captures", "u1")] == ["c2"]
