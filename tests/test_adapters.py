import json
from datetime import date, datetime

import pytest

from xp_engine.adapters.csv_adapter import parse as parse_csv
from xp_engine.adapters.json_adapter import dump, load
from xp_engine.schema import Capture, DailyCommitment, XPLedgerEntry
from xp_engine.store import InMemoryStore


def test_csv_parse_success(tmp_path):
    path = tmp_path / "sessions.csv"
    path.write_text(
        "session_id,user_id,project_id,started_at,willpower,planned_duration,actual_duration,completed\n"
        "s1,u1,p1,2026-10-12T09:00:00,high,60,55,true\n"
        "s2,u1,,2026-10-13T09:00:00,low,90,,\n",
        encoding="utf-8",
    )
    sessions = parse_csv(str(path))
    assert len(sessions) == 2
    assert sessions[0].project_id == "p1"
    assert sessions[0].actual_duration == 55
    assert sessions[0].completed
    assert sessions[1].project_id is None
    assert not sessions[1].completed


def test_csv_parse_invalid_row(tmp_path):
    path = tmp_path / "sessions.csv"
    path.write_text(
        "session_id,user_id,started_at,willpower,planned_duration\n"
        "s1,u1,2026-10-12T09:00:00,high,60\n"
        "s2,u1,2026-10-12T11:00:00,heroic,60\n",
        encoding="utf-8",
    )
    with pytest.raises(ValueError, match="Row 3"):
        parse_csv(str(path))


def test_csv_rejects_malformed_timestamp(tmp_path):
    path = tmp_path / "sessions.csv"
    path.write_text("session_id,user_id,started_at,willpower,planned_duration\ns1,u1,bad,high,60\n", encoding="utf-8")
    with pytest.raises(ValueError, match="started_at"):
        parse_csv(str(path))


def test_json_load_success(tmp_path):
    path = tmp_path / "store.json"
    payload = {
        "captures": [{"id": "c1", "user_id": "u1", "content": "idea", "created_at": "2026-10-14T09:00:00"}],
        "ledger": [
            {
                "id": "x1",
                "user_id": "u1",
                "source": "session",
                "amount": 40,
                "week_start": "2026-10-12",
                "timestamp": "2026-10-14T10:00:00",
            }
        ],
    }
    path.write_text(json.dumps(payload), encoding="utf-8")
    store = load(str(path))
    assert store.get("captures", "c1").status == "pending"
    assert store.get("ledger", "x1").week_start.isoformat() == "2026-10-12"


def test_json_load_malformed(tmp_path):
    path = tmp_path / "store.json"
    path.write_text(
        json.dumps({"captures": [{"id": "c1", "user_id": "u1", "content": "idea", "created_at": "bad"}]}),
        encoding="utf-8",
    )
    with pytest.raises(ValueError, match="captures item 1"):
        load(str(path))

    path.write_text(json.dumps({"widgets": []}), encoding="utf-8")
    with pytest.raises(ValueError):
        load(str(path))


def test_json_dump_then_load(tmp_path):
    path = tmp_path / "store.json"
    store = InMemoryStore()

    store.add("captures", Capture("c1", "u1", "idea", datetime(2026, 10, 14, 9)))
    store.add("ledger", XPLedgerEntry("x1", "u1", "project", 250, date(2026, 10, 12), datetime(2026, 10, 14, 10)))
    store.add("commitments", DailyCommitment("d1", "u1", date(2026, 10, 14), 3, datetime(2026, 10, 14, 8)))
    dump(store, str(path))

    restored = load(str(path))
    assert restored.snapshot() == store.snapshot()
