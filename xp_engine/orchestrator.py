"""Session orchestrator: validate, compute, commit, then report stale views.

Every mutating operation follows the same sequence:

1. validate the request against the latest committed entity state,
2. compute the effect with the accrual rules or the triage machine,
3. write all resulting rows inside one store transaction,
4. resolve the invalidation set and return it with the result.

Step 4 only runs after the transaction committed, so a failed write never
produces an invalidation signal.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field, replace
from datetime import date, datetime
from typing import Callable, Optional

from xp_engine import achievements, analytics, cache_keys
from xp_engine.accrual import difficulty_label, project_xp, session_breakdown
from xp_engine.config import EngineConfig
from xp_engine.errors import EngineError, InvalidStateError, NotFoundError, ValidationError
from xp_engine.logging_config import bind_user, get_logger
from xp_engine.schema import (
    SESSION_DURATIONS,
    WILLPOWER_LEVELS,
    Capture,
    DailyCommitment,
    Project,
    Session,
    UnlockedAchievement,
    XPLedgerEntry,
)
from xp_engine.store import EntityStore
from xp_engine.triage import (
    TRIAGE_ACTIONS,
    PendingQueue,
    build_project_fields,
    pending_order,
    resolve,
    triage_stats,
)

log = get_logger(__name__)


@dataclass(frozen=True)
class MutationResult:
    entity_id: Optional[str]
    invalidated: frozenset


@dataclass(frozen=True)
class TriageResult:
    new_status: Optional[str]
    created_project_id: Optional[str]
    parking_item_id: Optional[str]
    invalidated: frozenset


@dataclass(frozen=True)
class SessionStart:
    session_id: str
    difficulty: str
    invalidated: frozenset


@dataclass(frozen=True)
class SessionCompletion:
    xp_awarded: int
    ledger_entry_id: str
    difficulty: str
    invalidated: frozenset
    unlocked: tuple = ()


@dataclass(frozen=True)
class SessionInterruption:
    xp_awarded: int
    ledger_entry_id: Optional[str]
    invalidated: frozenset


@dataclass(frozen=True)
class ProjectCompletion:
    xp_awarded: int
    ledger_entry_id: str
    invalidated: frozenset
    unlocked: tuple = ()


@dataclass(frozen=True)
class AchievementCheck:
    unlocked: tuple = ()
    xp_awarded: int = 0
    invalidated: frozenset = field(default_factory=frozenset)


def _new_id() -> str:
    return uuid.uuid4().hex


class Engine:
    """Entry point for every core operation on behalf of an opaque user id."""

    def __init__(
        self,
        store: EntityStore,
        config: Optional[EngineConfig] = None,
        clock: Optional[Callable[[], datetime]] = None,
        project_xp_rule: Callable[[int, int, bool], int] = project_xp,
        new_id: Callable[[], str] = _new_id,
    ) -> None:
        self.store = store
        self.config = config or EngineConfig()
        self._clock = clock or (lambda: datetime.now(self.config.tz))
        self._project_xp_rule = project_xp_rule
        self._new_id = new_id

    # helpers

    def _now(self) -> datetime:
        return self._clock()

    def _owned(self, kind: str, user_id: str, entity_id: str, label: str):
        row = self.store.get(kind, entity_id)
        if row is None or row.user_id != user_id:
            raise NotFoundError(f"{label} {entity_id} not found")
        return row

    def _ledger_entry(
        self,
        user_id: str,
        source: str,
        amount: int,
        source_id: Optional[str],
        now: datetime,
        week: Optional[date] = None,
        note: Optional[str] = None,
    ) -> XPLedgerEntry:
        return XPLedgerEntry(
            id=self._new_id(),
            user_id=user_id,
            source=source,
            amount=amount,
            week_start=week or analytics.week_start(now, self.config.tz),
            timestamp=now,
            source_id=source_id,
            note=note,
        )

    # captures and triage

    @bind_user
    def create_capture(self, user_id: str, content: str) -> MutationResult:
        if not content or not content.strip():
            raise ValidationError("Content cannot be empty")

        with self.store.transaction():
            # Orders captures that share a timestamp.
            sequence = max((c.sequence for c in self.store.query("captures", user_id)), default=0) + 1
            capture = Capture(
                id=self._new_id(),
                user_id=user_id,
                content=content.strip(),
                created_at=self._now(),
                sequence=sequence,
            )
            self.store.add("captures", capture)

        invalidated = cache_keys.invalidation_set_for("capture_created", {"capture_id": capture.id})
        log.info("capture_created", capture_id=capture.id, length=len(capture.content))
        check = self._check_quietly(user_id, "capture_created")
        return MutationResult(capture.id, invalidated | check.invalidated)

    @bind_user
    def update_capture(self, user_id: str, capture_id: str, content: str) -> MutationResult:
        if not content or not content.strip():
            raise ValidationError("Content cannot be empty")
        capture = self._owned("captures", user_id, capture_id, "Capture")
        if capture.status != "pending":
            raise InvalidStateError(f"Capture {capture_id} was already triaged")

        with self.store.transaction():
            self.store.update("captures", replace(capture, content=content.strip()))
        return MutationResult(capture_id, cache_keys.invalidation_set_for("capture_updated", {"capture_id": capture_id}))

    def pending_queue(self, user_id: str) -> PendingQueue:
        return PendingQueue(self.store.query("captures", user_id))

    def current_pending(self, user_id: str) -> Optional[Capture]:
        pending = pending_order(self.store.query("captures", user_id))
        return pending[0] if pending else None

    @bind_user
    def triage(
        self,
        user_id: str,
        capture_id: str,
        action: str,
        project_fields: dict | None = None,
        routing_target: str | None = None,
    ) -> TriageResult:
        """Dispose of one pending capture."""

        if action not in TRIAGE_ACTIONS:
            raise ValidationError(f"Unknown triage action '{action}'")
        capture = self.store.get("captures", capture_id)
        if capture is None or capture.user_id != user_id or capture.status != "pending":
            raise NotFoundError(f"No pending capture {capture_id} for this user")

        seed = {**self.config.default_project, **(project_fields or {})}
        outcome = resolve(capture, action, self._now(), seed, routing_target, new_id=self._new_id)

        with self.store.transaction():
            if outcome.project is not None:
                self.store.add("projects", outcome.project)
            if outcome.parking_item is not None:
                self.store.add("parking_lot", outcome.parking_item)
            if outcome.deleted:
                self.store.delete("captures", capture_id)
            else:
                self.store.update("captures", outcome.capture)

        ids = {"capture_id": capture_id}
        mutations = [("capture_deleted" if outcome.deleted else "capture_triaged", ids)]
        if outcome.project is not None:
            mutations.append(("project_created", {"project_id": outcome.project.id}))
        if outcome.parking_item is not None:
            mutations.append(("capture_parked", ids))
        invalidated = cache_keys.union(*mutations)

        log.info(
            "capture_triaged",
            capture_id=capture_id,
            action=action,
            new_status=outcome.new_status,
            routing_target=outcome.routing_target,
        )
        return TriageResult(
            new_status=outcome.new_status,
            created_project_id=outcome.project.id if outcome.project else None,
            parking_item_id=outcome.parking_item.id if outcome.parking_item else None,
            invalidated=invalidated,
        )

    @bind_user
    def triage_next(self, user_id: str, action: str, **kwargs) -> Optional[TriageResult]:
        """Apply ``action`` to the oldest pending capture; ``None`` when the queue is empty."""

        current = self.current_pending(user_id)
        if current is None:
            log.debug("triage_queue_empty", action=action)
            return None
        return self.triage(user_id, current.id, action, **kwargs)

    def get_triage_stats(self, user_id: str) -> dict:
        return triage_stats(self.store.query("captures", user_id))

    # parking lot

    def parking_lot(self, user_id: str) -> list:
        return sorted(self.store.query("parking_lot", user_id), key=lambda item: (item.parked_at, item.id))

    @bind_user
    def promote_parked(self, user_id: str, item_id: str, project_fields: dict | None = None) -> MutationResult:
        item = self._owned("parking_lot", user_id, item_id, "Parking lot item")
        fields = build_project_fields({**self.config.default_project, **(project_fields or {})})
        title = fields.pop("title", None) or item.content.strip().splitlines()[0]
        project = Project(id=self._new_id(), user_id=user_id, title=title, created_at=self._now(), **fields)

        with self.store.transaction():
            self.store.add("projects", project)
            self.store.delete("parking_lot", item_id)

        log.info("parking_item_promoted", item_id=item_id, project_id=project.id)
        return MutationResult(
            project.id,
            cache_keys.invalidation_set_for("parking_lot_changed", {"project_id": project.id}),
        )

    @bind_user
    def delete_parked(self, user_id: str, item_id: str) -> MutationResult:
        self._owned("parking_lot", user_id, item_id, "Parking lot item")
        with self.store.transaction():
            self.store.delete("parking_lot", item_id)
        return MutationResult(item_id, cache_keys.invalidation_set_for("parking_lot_changed"))

    # projects

    @bind_user
    def create_project(self, user_id: str, title: str, **project_fields) -> MutationResult:
        if not title or not title.strip():
            raise ValidationError("Project title cannot be empty")
        fields = build_project_fields(project_fields)
        fields.pop("title", None)
        project = Project(id=self._new_id(), user_id=user_id, title=title.strip(), created_at=self._now(), **fields)

        with self.store.transaction():
            self.store.add("projects", project)

        log.info("project_created", project_id=project.id, cost=project.cost, benefit=project.benefit)
        return MutationResult(project.id, cache_keys.invalidation_set_for("project_created", {"project_id": project.id}))

    def _active_project(self, user_id: str, project_id: str) -> Project:
        project = self._owned("projects", user_id, project_id, "Project")
        if project.status != "active":
            raise InvalidStateError(f"Project {project_id} is already {project.status}")
        return project

    @bind_user
    def abandon_project(self, user_id: str, project_id: str) -> MutationResult:
        project = self._active_project(user_id, project_id)
        with self.store.transaction():
            self.store.update("projects", replace(project, status="abandoned", is_boss_battle=False))

        log.info("project_abandoned", project_id=project_id)
        return MutationResult(project_id, cache_keys.invalidation_set_for("project_abandoned", {"project_id": project_id}))

    @bind_user
    def set_boss_battle(self, user_id: str, project_id: str) -> MutationResult:
        """Flag one active project as the boss battle, clearing any other."""

        project = self._active_project(user_id, project_id)
        with self.store.transaction():
            for other in self.store.query("projects", user_id, status="active", is_boss_battle=True):
                if other.id != project_id:
                    self.store.update("projects", replace(other, is_boss_battle=False))
            self.store.update("projects", replace(project, is_boss_battle=True))

        return MutationResult(project_id, cache_keys.invalidation_set_for("project_updated", {}))

    @bind_user
    def clear_boss_battle(self, user_id: str) -> MutationResult:
        with self.store.transaction():
            for other in self.store.query("projects", user_id, status="active", is_boss_battle=True):
                self.store.update("projects", replace(other, is_boss_battle=False))
        return MutationResult(None, cache_keys.invalidation_set_for("project_updated", {}))

    @bind_user
    def complete_project(self, user_id: str, project_id: str, accuracy: int = 3) -> ProjectCompletion:
        """Complete an active project and append its XP.

        ``accuracy`` rates the original estimate: 1 much harder than expected,
        3 accurate, 5 much easier.
        """

        if isinstance(accuracy, bool) or not isinstance(accuracy, int) or not 1 <= accuracy <= 5:
            raise ValidationError("Accuracy must be an integer between 1 and 5")
        project = self._owned("projects", user_id, project_id, "Project")
        if project.status != "active":
            raise InvalidStateError(f"Project {project_id} is already {project.status}")

        xp = self._project_xp_rule(project.cost, project.benefit, project.is_boss_battle)
        now = self._now()
        entry = self._ledger_entry(user_id, "project", xp, project_id, now)

        with self.store.transaction():
            self.store.update("projects", replace(project, status="completed", completed_at=now, accuracy=accuracy))
            self.store.add("ledger", entry)

        invalidated = cache_keys.invalidation_set_for(
            "project_completed", {"project_id": project_id, "user_id": user_id}
        )
        log.info("project_completed", project_id=project_id, xp=xp, boss_battle=project.is_boss_battle)

        check = self._check_quietly(user_id, "project_completed")
        return ProjectCompletion(xp, entry.id, invalidated | check.invalidated, check.unlocked)

    # sessions

    @bind_user
    def start_session(
        self,
        user_id: str,
        willpower: str,
        planned_duration: int,
        project_id: str | None = None,
    ) -> SessionStart:
        if willpower not in WILLPOWER_LEVELS:
            raise ValidationError(f"Unknown willpower level '{willpower}'")
        if planned_duration not in SESSION_DURATIONS:
            raise ValidationError(f"Planned duration must be one of {SESSION_DURATIONS}")
        if project_id is not None:
            self._active_project(user_id, project_id)
        if any(s.is_active for s in self.store.query("sessions", user_id)):
            raise InvalidStateError(
                "A session is already running",
                suggestion="Complete or abandon the running session first.",
            )

        session = Session(
            id=self._new_id(),
            user_id=user_id,
            willpower=willpower,
            planned_duration=planned_duration,
            started_at=self._now(),
            project_id=project_id,
        )
        with self.store.transaction():
            self.store.add("sessions", session)

        label = difficulty_label(willpower, planned_duration)
        log.info("session_started", session_id=session.id, difficulty=label)
        return SessionStart(session.id, label, cache_keys.invalidation_set_for("session_started", {"user_id": user_id}))

    def _open_session(self, user_id: str, session_id: str) -> Session:
        session = self._owned("sessions", user_id, session_id, "Session")
        if session.completed:
            raise InvalidStateError(f"Session {session_id} is already completed")
        if session.interrupted:
            raise InvalidStateError(f"Session {session_id} was interrupted")
        return session

    @bind_user
    def complete_session(self, user_id: str, session_id: str, actual_minutes: int) -> SessionCompletion:
        """Finalize a running session and append its XP."""

        session = self._open_session(user_id, session_id)
        breakdown = session_breakdown(session.willpower, session.planned_duration, actual_minutes)

        now = self._now()
        entry = self._ledger_entry(user_id, "session", breakdown.final_points, session_id, now)
        finished = replace(
            session,
            actual_duration=actual_minutes,
            ended_at=now,
            completed=True,
            xp_earned=breakdown.final_points,
        )

        with self.store.transaction():
            self.store.update("sessions", finished)
            self.store.add("ledger", entry)

        invalidated = cache_keys.invalidation_set_for("session_completed", {"user_id": user_id})
        log.info(
            "session_completed",
            session_id=session_id,
            minutes=actual_minutes,
            xp=breakdown.final_points,
        )

        check = self._check_quietly(user_id, "session_completed")
        return SessionCompletion(
            xp_awarded=breakdown.final_points,
            ledger_entry_id=entry.id,
            difficulty=difficulty_label(session.willpower, session.planned_duration),
            invalidated=invalidated | check.invalidated,
            unlocked=check.unlocked,
        )

    @bind_user
    def interrupt_session(self, user_id: str, session_id: str) -> SessionInterruption:
        """Stop a running session early; the attempt still earns a fixed award."""

        session = self._open_session(user_id, session_id)
        xp = self.config.interrupt_xp
        now = self._now()
        entry = self._ledger_entry(user_id, "session", xp, session_id, now, note="interrupted") if xp else None

        with self.store.transaction():
            self.store.update("sessions", replace(session, interrupted=True, ended_at=now, xp_earned=xp))
            if entry is not None:
                self.store.add("ledger", entry)

        ids = {"user_id": user_id}
        mutations = [("session_interrupted", ids)]
        if entry is not None:
            mutations.append(("xp_recorded", ids))
        log.info("session_interrupted", session_id=session_id, xp=xp)
        return SessionInterruption(xp, entry.id if entry else None, cache_keys.union(*mutations))

    # daily commitment

    def _today(self) -> date:
        return analytics.local_date(self._now(), self.config.tz)

    @bind_user
    def set_daily_commitment(self, user_id: str, target_sessions: int, day: date | None = None) -> MutationResult:
        """Set the number of sessions the user commits to for ``day`` (today by default)."""

        if isinstance(target_sessions, bool) or not isinstance(target_sessions, int) or target_sessions < 1:
            raise ValidationError("Target sessions must be a positive integer")
        day = day or self._today()

        with self.store.transaction():
            existing = self.store.query("commitments", user_id, day=day)
            if existing:
                commitment = replace(existing[0], target_sessions=target_sessions, set_at=self._now())
                self.store.update("commitments", commitment)
            else:
                commitment = DailyCommitment(
                    id=self._new_id(),
                    user_id=user_id,
                    day=day,
                    target_sessions=target_sessions,
                    set_at=self._now(),
                )
                self.store.add("commitments", commitment)

        log.info("daily_commitment_set", day=day.isoformat(), target_sessions=target_sessions)
        return MutationResult(
            commitment.id,
            cache_keys.invalidation_set_for("commitment_set", {"user_id": user_id, "day": day.isoformat()}),
        )

    def get_daily_commitment(self, user_id: str, day: date | None = None) -> Optional[DailyCommitment]:
        rows = self.store.query("commitments", user_id, day=day or self._today())
        return rows[0] if rows else None

    def get_today_progress(self, user_id: str) -> dict:
        """Completed sessions today against the day's commitment, capped at 1.0."""

        today = self._today()
        commitment = self.get_daily_commitment(user_id, today)
        completed = sum(
            1
            for s in self.store.query("sessions", user_id, completed=True)
            if analytics.local_date(s.started_at, self.config.tz) == today
        )
        target = commitment.target_sessions if commitment else 0
        return {
            "day": today,
            "commitment": commitment,
            "completed": completed,
            "target": target,
            "progress": min(completed / target, 1.0) if target else 0.0,
        }

    # XP ledger

    @bind_user
    def record_correction(self, user_id: str, entry_id: str, amount: int, note: str) -> MutationResult:
        """Append a compensating entry against a past ledger row."""

        if isinstance(amount, bool) or not isinstance(amount, int) or amount == 0:
            raise ValidationError("Correction amount must be a non-zero integer")
        original = self._owned("ledger", user_id, entry_id, "Ledger entry")
        correction = self._ledger_entry(
            user_id,
            original.source,
            amount,
            original.source_id,
            self._now(),
            week=original.week_start,
            note=note,
        )
        with self.store.transaction():
            self.store.add("ledger", correction)

        log.info("xp_corrected", entry_id=entry_id, amount=amount)
        return MutationResult(correction.id, cache_keys.invalidation_set_for("xp_recorded", {"user_id": user_id}))

    def weekly_xp(self, user_id: str, week: date | None = None) -> dict:
        week = week or analytics.week_start(self._now(), self.config.tz)
        return analytics.weekly_xp_summary(self.store.query("ledger", user_id), week, self.config.tz)

    def ledger_total(self, user_id: str) -> int:
        return sum(entry.amount for entry in self.store.query("ledger", user_id))

    # achievements

    def _achievement_stats(self, user_id: str) -> dict:
        return achievements.collect_stats(
            len(self.store.query("captures", user_id)),
            self.store.query("projects", user_id),
            self.store.query("sessions", user_id),
            self._now(),
            self.config.tz,
        )

    @bind_user
    def check_achievements(self, user_id: str, event: str = "manual_check") -> AchievementCheck:
        """Unlock achievements relevant to ``event`` and award their XP once."""

        keys = achievements.relevant_achievements(event)
        already = {row.key for row in self.store.query("achievements", user_id)}
        unlocked = achievements.newly_unlocked(keys, self._achievement_stats(user_id), already)
        if not unlocked:
            return AchievementCheck()

        now = self._now()
        total = 0
        with self.store.transaction():
            for key in unlocked:
                reward = int(self.config.achievement_rewards.get(key, 0))
                row = UnlockedAchievement(id=self._new_id(), user_id=user_id, key=key, unlocked_at=now, xp_awarded=reward)
                self.store.add("achievements", row)
                if reward:
                    self.store.add("ledger", self._ledger_entry(user_id, "achievement", reward, key, now))
                total += reward

        log.info("achievements_unlocked", keys=unlocked, xp=total)
        return AchievementCheck(
            tuple(unlocked),
            total,
            cache_keys.invalidation_set_for("achievement_unlocked", {"user_id": user_id}),
        )

    def _check_quietly(self, user_id: str, event: str) -> AchievementCheck:
        # The primary mutation already committed; an achievement failure must not mask it.
        try:
            return self.check_achievements(user_id, event)
        except EngineError:
            log.warning("achievement_check_failed", event=event, exc_info=True)
            return AchievementCheck()

    def achievement_progress(self, user_id: str) -> dict:
        stats = self._achievement_stats(user_id)
        unlocked = {row.key: row for row in self.store.query("achievements", user_id)}
        return {
            key: {
                "unlocked": key in unlocked,
                "unlocked_at": unlocked[key].unlocked_at if key in unlocked else None,
                **achievements.progress(key, stats),
            }
            for key in achievements.ACHIEVEMENT_KEYS
        }

    # analytics

    def get_weekly_trend(self, user_id: str, weeks: int | None = None) -> list:
        weeks = self.config.trend_weeks if weeks is None else weeks
        return analytics.weekly_trend(
            self.store.query("sessions", user_id),
            self.store.query("ledger", user_id),
            weeks,
            self._now(),
            self.config.tz,
        )

    def get_heatmap(self, user_id: str, days: int | None = None) -> list:
        days = self.config.heatmap_days if days is None else days
        return analytics.session_heatmap(self.store.query("sessions", user_id), days, self._now(), self.config.tz)

    def get_hero_stats(self, user_id: str) -> dict:
        return analytics.hero_stats(
            self.store.query("sessions", user_id),
            self.store.query("projects", user_id),
            self.store.query("ledger", user_id),
            self._now(),
            self.config.tz,
        )

    def get_project_completions(self, user_id: str) -> list:
        return analytics.completions_by_position(self.store.query("projects", user_id))

    def get_personal_records(self, user_id: str) -> dict:
        return analytics.personal_records(
            self.store.query("sessions", user_id),
            self.store.query("ledger", user_id),
            self.config.tz,
        )

    def get_performance_summary(self, user_id: str) -> dict:
        return analytics.performance_summary(
            self.store.query("sessions", user_id),
            self.store.query("ledger", user_id),
            self._now(),
            self.config.tz,
        )

    @staticmethod
    def invalidation_set_for(kind: str, ids: dict | None = None) -> frozenset:
        return cache_keys.invalidation_set_for(kind, ids)
