from datetime import date, datetime, timedelta, timezone
from itertools import count

import pytest

from xp_engine import cache_keys as keys
from xp_engine.config import EngineConfig
from xp_engine.errors import InvalidStateError, NotFoundError, ValidationError
from xp_engine.orchestrator import Engine
from xp_engine.store import InMemoryStore

START = datetime(2026, 10, 14, 12, 0, tzinfo=timezone.utc)


class Clock:
    def __init__(self, now=START):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, **delta):
        self.now += timedelta(**delta)


class FailingStore(InMemoryStore):
    """Store whose writes of one kind fail, like a dropped connection."""

    def __init__(self, failing_kind):
        super().__init__()
        self.failing_kind = failing_kind
        self.armed = False

    def add(self, kind, row):
        if self.armed and kind == self.failing_kind:
            raise ConnectionError("store unavailable")
        return super().add(kind, row)


def make_engine(store=None, rewards=None):
    counter = count(1)
    clock = Clock()
    config = EngineConfig(achievement_rewards={} if rewards is None else rewards)
    engine = Engine(store or InMemoryStore(), config=config, clock=clock, new_id=lambda: f"id{next(counter)}")
    return engine, clock


def add_captures(engine, clock, n, user="u1"):
    ids = []
    for i in range(n):
        ids.append(engine.create_capture(user, f"note {i}").entity_id)
        clock.advance(minutes=1)
    return ids


def test_triage_track_creates_project():
    engine, clock = make_engine()
    (capture_id,) = add_captures(engine, clock, 1)

    result = engine.triage("u1", capture_id, "track", project_fields={"cost": 2, "benefit": 9})
    assert result.new_status == "tracked"
    project = engine.store.get("projects", result.created_project_id)
    assert project.title == "note 0"
    assert (project.cost, project.benefit) == (2, 9)
    assert engine.store.get("captures", capture_id).status == "tracked"
    assert {keys.captures(), keys.pending_captures(), keys.projects()} <= result.invalidated


def test_triage_parking_and_delete():
    engine, clock = make_engine()
    first, second = add_captures(engine, clock, 2)

    parked = engine.triage("u1", first, "parking")
    assert parked.new_status == "parked"
    assert keys.parking_lot() in parked.invalidated
    assert [item.capture_id for item in engine.parking_lot("u1")] == [first]

    deleted = engine.triage("u1", second, "delete")
    assert deleted.new_status is None
    assert engine.store.get("captures", second) is None


def test_triage_requires_pending_capture_of_user():
    engine, clock = make_engine()
    (capture_id,) = add_captures(engine, clock, 1)

    with pytest.raises(NotFoundError):
        engine.triage("u2", capture_id, "doing")
    with pytest.raises(NotFoundError):
        engine.triage("u1", "missing", "doing")

    engine.triage("u1", capture_id, "doing")
    with pytest.raises(NotFoundError):
        engine.triage("u1", capture_id, "track")
    with pytest.raises(ValidationError):
        engine.triage("u1", capture_id, "archive")


def test_draining_queue_with_delete_terminates():
    engine, clock = make_engine()
    add_captures(engine, clock, 5)

    for _ in range(5):
        assert engine.triage_next("u1", "delete") is not None
    assert engine.current_pending("u1") is None
    assert engine.triage_next("u1", "delete") is None
    assert len(engine.pending_queue("u1")) == 0


def test_mixed_drain_processes_oldest_first_without_skips():
    engine, clock = make_engine()
    ids = add_captures(engine, clock, 4)

    seen = []
    for action in ("track", "delete", "track", "delete"):
        seen.append(engine.current_pending("u1").id)
        engine.triage_next("u1", action)
    assert seen == ids
    assert engine.triage_next("u1", "track") is None
    assert len(engine.store.query("projects", "u1")) == 2


def test_triage_failure_leaves_capture_pending():
    store = FailingStore("projects")
    engine, clock = make_engine(store)
    (capture_id,) = add_captures(engine, clock, 1)

    store.armed = True
    with pytest.raises(ConnectionError):
        engine.triage("u1", capture_id, "track")
    assert store.get("captures", capture_id).status == "pending"
    assert store.query("projects", "u1") == []


def test_complete_session_awards_xp_once():
    engine, clock = make_engine()
    started = engine.start_session("u1", "low", 90)
    assert started.difficulty == "Nightmare Deadline"
    clock.advance(minutes=90)

    done = engine.complete_session("u1", started.session_id, 90)
    assert done.xp_awarded == 110
    assert done.difficulty == "Nightmare Deadline"
    entry = engine.store.get("ledger", done.ledger_entry_id)
    assert (entry.source, entry.amount, entry.week_start) == ("session", 110, date(2026, 10, 12))
    assert engine.invalidation_set_for("session_completed", {"user_id": "u1"}) <= done.invalidated

    with pytest.raises(InvalidStateError):
        engine.complete_session("u1", started.session_id, 90)
    assert engine.ledger_total("u1") == 110


def test_complete_session_validation():
    engine, _ = make_engine()
    started = engine.start_session("u1", "high", 60)
    with pytest.raises(ValidationError):
        engine.complete_session("u1", started.session_id, -5)
    with pytest.raises(NotFoundError):
        engine.complete_session("u2", started.session_id, 30)
    assert engine.complete_session("u1", started.session_id, 0).xp_awarded == 10


def test_only_one_active_session():
    engine, _ = make_engine()
    started = engine.start_session("u1", "medium", 60)
    with pytest.raises(InvalidStateError):
        engine.start_session("u1", "high", 90)
    with pytest.raises(ValidationError):
        engine.start_session("u2", "high", 45)

    engine.interrupt_session("u1", started.session_id)
    with pytest.raises(InvalidStateError):
        engine.complete_session("u1", started.session_id, 30)
    assert engine.start_session("u1", "high", 90).session_id


def test_session_write_failure_has_no_effect():
    store = FailingStore("ledger")
    engine, _ = make_engine(store)
    started = engine.start_session("u1", "high", 60)

    store.armed = True
    with pytest.raises(ConnectionError):
        engine.complete_session("u1", started.session_id, 60)
    session = store.get("sessions", started.session_id)
    assert not session.completed
    assert session.actual_duration is None
    assert store.query("ledger", "u1") == []


def test_complete_project_and_double_completion():
    engine, _ = make_engine()
    project_id = engine.create_project("u1", "Launch", cost=3, benefit=8).entity_id

    done = engine.complete_project("u1", project_id, accuracy=3)
    assert done.xp_awarded == 240
    assert {keys.projects(), keys.project(project_id), keys.weekly_xp(), keys.achievements()} <= done.invalidated

    before = engine.ledger_total("u1")
    with pytest.raises(InvalidStateError):
        engine.complete_project("u1", project_id)
    assert engine.ledger_total("u1") == before == 240
    assert engine.store.get("projects", project_id).status == "completed"


def test_abandoned_project_cannot_complete():
    engine, _ = make_engine()
    project_id = engine.create_project("u1", "Side quest").entity_id
    engine.abandon_project("u1", project_id)
    with pytest.raises(InvalidStateError):
        engine.complete_project("u1", project_id)
    with pytest.raises(InvalidStateError):
        engine.abandon_project("u1", project_id)
    assert engine.ledger_total("u1") == 0


def test_boss_battle_doubles_project_xp():
    engine, _ = make_engine()
    first = engine.create_project("u1", "Boss one", cost=5, benefit=5).entity_id
    second = engine.create_project("u1", "Boss two", cost=5, benefit=5).entity_id

    engine.set_boss_battle("u1", first)
    engine.set_boss_battle("u1", second)
    assert not engine.store.get("projects", first).is_boss_battle
    assert engine.complete_project("u1", second).xp_awarded == 500
    assert engine.complete_project("u1", first).xp_awarded == 250


def test_project_xp_rule_is_injectable():
    engine = Engine(InMemoryStore(), config=EngineConfig(achievement_rewards={}), project_xp_rule=lambda cost, benefit, boss: 7)
    project_id = engine.create_project("u1", "Custom").entity_id
    assert engine.complete_project("u1", project_id).xp_awarded == 7


def test_complete_project_validation():
    engine, _ = make_engine()
    project_id = engine.create_project("u1", "Launch").entity_id
    with pytest.raises(ValidationError):
        engine.complete_project("u1", project_id, accuracy=6)
    with pytest.raises(NotFoundError):
        engine.complete_project("u2", project_id)
    with pytest.raises(ValidationError):
        engine.create_project("u1", "  ")


def test_record_correction_appends_compensating_entry():
    engine, clock = make_engine()
    started = engine.start_session("u1", "high", 60)
    done = engine.complete_session("u1", started.session_id, 60)

    clock.advance(days=7)
    fix = engine.record_correction("u1", done.ledger_entry_id, -15, "timer ran while away")
    correction = engine.store.get("ledger", fix.entity_id)
    assert correction.week_start == date(2026, 10, 12)
    assert correction.note == "timer ran while away"
    assert engine.ledger_total("u1") == 25
    assert engine.store.get("ledger", done.ledger_entry_id).amount == 40
    with pytest.raises(ValidationError):
        engine.record_correction("u1", done.ledger_entry_id, 0, "noop")


def test_promote_and_delete_parked_items():
    engine, clock = make_engine()
    first, second = add_captures(engine, clock, 2)
    keep = engine.triage("u1", first, "parking").parking_item_id
    drop = engine.triage("u1", second, "parking").parking_item_id

    promoted = engine.promote_parked("u1", keep, {"benefit": 7})
    assert engine.store.get("projects", promoted.entity_id).benefit == 7
    assert keys.parking_lot() in promoted.invalidated

    engine.delete_parked("u1", drop)
    assert engine.parking_lot("u1") == []
    with pytest.raises(NotFoundError):
        engine.delete_parked("u1", drop)


def test_analytics_reads():
    engine, clock = make_engine()
    for minutes in (60, 90):
        started = engine.start_session("u1", "high", 90)
        engine.complete_session("u1", started.session_id, minutes)
        clock.advance(hours=2)

    heatmap = engine.get_heatmap("u1", 14)
    assert len(heatmap) == 14
    assert [day.is_today for day in heatmap].count(True) == 1
    assert heatmap[-1].session_count == 2

    trend = engine.get_weekly_trend("u1", 3)
    assert engine.get_weekly_trend("u1", 3) == trend
    assert trend[-1].session_count == 2
    assert trend[-1].total_xp == 40 + 55
    assert len(engine.get_heatmap("u1")) == engine.config.heatmap_days
    assert engine.weekly_xp("u1")["session_xp"] == 95
    assert engine.get_hero_stats("u1")["current_week"]["sessions"] == 2


def test_users_are_isolated():
    engine, clock = make_engine()
    add_captures(engine, clock, 2, user="u1")
    add_captures(engine, clock, 1, user="u2")
    engine.triage_next("u2", "delete")
    assert len(engine.pending_queue("u1")) == 2
    assert engine.triage_next("u2", "delete") is None


def test_achievements_unlock_once_with_rewards():
    engine, clock = make_engine(rewards={"paths_are_made_by_walking": 10, "first_blood": 50})
    first = engine.create_capture("u1", "first thought")
    assert keys.achievements() in first.invalidated
    engine.create_capture("u1", "second thought")
    assert engine.ledger_total("u1") == 10

    project_id = engine.create_project("u1", "Tiny", cost=1, benefit=1).entity_id
    done = engine.complete_project("u1", project_id)
    assert done.unlocked == ("first_blood",)
    assert engine.ledger_total("u1") == 10 + 10 + 50

    progress = engine.achievement_progress("u1")
    assert progress["first_blood"]["unlocked"]
    assert progress["double_digits"]["current"] == 1
    assert progress["double_digits"]["percentage"] == 10.0
    assert engine.check_achievements("u1").unlocked == ()


def test_same_instant_captures_drain_in_creation_order():
    engine, _ = make_engine()
    ids = [engine.create_capture("u1", f"note {i}").entity_id for i in range(12)]

    drained = []
    while True:
        current = engine.current_pending("u1")
        if current is None:
            break
        drained.append(current.id)
        engine.triage_next("u1", "delete")
    assert drained == ids
    assert [c.id for c in engine.pending_queue("u1").items] == []


def test_sequence_continues_after_triage():
    engine, clock = make_engine()
    first, second = add_captures(engine, clock, 2)
    engine.triage("u1", second, "delete")
    third = engine.create_capture("u1", "later").entity_id
    sequences = {c.id: c.sequence for c in engine.store.query("captures", "u1")}
    assert sequences[first] < sequences[third]


def test_interrupted_session_earns_attempt_xp():
    engine, _ = make_engine()
    started = engine.start_session("u1", "medium", 120)

    stopped = engine.interrupt_session("u1", started.session_id)
    assert stopped.xp_awarded == 10
    entry = engine.store.get("ledger", stopped.ledger_entry_id)
    assert (entry.source, entry.amount, entry.source_id) == ("session", 10, started.session_id)
    assert engine.store.get("sessions", started.session_id).xp_earned == 10
    assert keys.sessions_all("u1") in stopped.invalidated
    assert keys.xp_all("u1") in stopped.invalidated
    assert engine.ledger_total("u1") == 10

    with pytest.raises(InvalidStateError):
        engine.interrupt_session("u1", started.session_id)
    assert engine.ledger_total("u1") == 10


def test_interrupt_award_is_configurable():
    engine = Engine(InMemoryStore(), config=EngineConfig(achievement_rewards={}, interrupt_xp=0), clock=Clock())
    started = engine.start_session("u1", "high", 60)
    stopped = engine.interrupt_session("u1", started.session_id)
    assert stopped.xp_awarded == 0
    assert stopped.ledger_entry_id is None
    assert not keys.is_covered(keys.xp_current("u1"), stopped.invalidated)
    assert engine.store.query("ledger", "u1") == []


def test_non_integer_minutes_rejected_by_accrual():
    engine, _ = make_engine()
    started = engine.start_session("u1", "high", 60)
    with pytest.raises(ValidationError):
        engine.complete_session("u1", started.session_id, 12.5)
    assert engine.store.get("sessions", started.session_id).is_active


def test_daily_commitment_and_progress():
    engine, clock = make_engine()
    assert engine.get_today_progress("u1")["progress"] == 0.0

    first = engine.set_daily_commitment("u1", 2)
    assert keys.is_covered(keys.sessions_commitment("u1", "2026-10-14"), first.invalidated)
    assert keys.sessions_today_progress("u1") in first.invalidated

    again = engine.set_daily_commitment("u1", 3)
    assert again.entity_id == first.entity_id
    assert engine.get_daily_commitment("u1").target_sessions == 3

    for _ in range(4):
        started = engine.start_session("u1", "high", 60)
        engine.complete_session("u1", started.session_id, 60)
        clock.advance(minutes=70)

    progress = engine.get_today_progress("u1")
    assert progress["completed"] == 4
    assert progress["target"] == 3
    assert progress["progress"] == 1.0

    with pytest.raises(ValidationError):
        engine.set_daily_commitment("u1", 0)
    assert engine.get_daily_commitment("u1", date(2026, 10, 15)) is None


def test_personal_records_and_performance_summary():
    engine, clock = make_engine()
    for _ in range(2):
        started = engine.start_session("u1", "high", 60)
        engine.complete_session("u1", started.session_id, 60)
        clock.advance(hours=2)

    records = engine.get_personal_records("u1")
    assert records["best_day_sessions"] == {"value": 2, "date": date(2026, 10, 14)}
    assert records["max_week_xp"] == {"value": 80, "week_start": date(2026, 10, 12)}
    assert records["longest_streak"]["value"] == 1

    summary = engine.get_performance_summary("u1")
    assert summary == {"today_sessions": 2, "week_sessions": 2, "current_streak": 1, "total_xp": 80}
