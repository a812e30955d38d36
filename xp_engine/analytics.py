"""Weekly trend, heatmap and summary statistics over session history."""

from __future__ import annotations

from collections import Counter, defaultdict
from dataclasses import dataclass
from datetime import date, datetime, timedelta, tzinfo
from typing import Optional

import numpy as np

from xp_engine.errors import ValidationError
from xp_engine.schema import Project, Session, XPLedgerEntry

_STREAK_LIMIT_WEEKS = 52


@dataclass(frozen=True)
class WeeklyBucket:
    week_start: date
    session_count: int
    total_hours: float
    total_xp: int
    average_session_minutes: float


@dataclass(frozen=True)
class HeatmapDay:
    date: date
    session_count: int
    total_minutes: int
    intensity: str
    is_today: bool


def local_date(moment: datetime, tz: Optional[tzinfo] = None) -> date:
    """Calendar date of ``moment`` in ``tz``; naive datetimes are taken as local."""

    if tz is not None and moment.tzinfo is not None:
        moment = moment.astimezone(tz)
    return moment.date()


def week_start(moment: datetime | date, tz: Optional[tzinfo] = None) -> date:
    """Monday of the ISO week containing ``moment``."""

    day = local_date(moment, tz) if isinstance(moment, datetime) else moment
    return day - timedelta(days=day.weekday())


def intensity_for(count: int) -> str:
    if count >= 5:
        return "heavy"
    if count >= 3:
        return "medium"
    if count >= 1:
        return "light"
    return "none"


def _check_window(value: int, name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ValidationError(f"{name} must be a non-negative integer")
    return value


def _completed(sessions: list[Session]) -> list[Session]:
    return [s for s in sessions if s.completed]


def _minutes(session: Session) -> int:
    return session.actual_duration or 0


def weekly_trend(
    sessions: list[Session],
    ledger: list[XPLedgerEntry],
    weeks: int,
    now: datetime,
    tz: Optional[tzinfo] = None,
) -> list[WeeklyBucket]:
    """Per-week session count, hours and XP for the trailing ``weeks`` weeks."""

    _check_window(weeks, "weeks")
    if weeks == 0:
        return []

    current = week_start(now, tz)
    starts = [current - timedelta(weeks=weeks - 1 - i) for i in range(weeks)]

    counts = Counter()
    minutes = Counter()
    for session in _completed(sessions):
        bucket = week_start(session.started_at, tz)
        counts[bucket] += 1
        minutes[bucket] += _minutes(session)

    xp = Counter()
    for entry in ledger:
        xp[entry.week_start] += entry.amount

    return [
        WeeklyBucket(
            week_start=start,
            session_count=counts[start],
            total_hours=minutes[start] / 60.0,
            total_xp=xp[start],
            average_session_minutes=(minutes[start] / counts[start]) if counts[start] else 0.0,
        )
        for start in starts
    ]


def session_heatmap(
    sessions: list[Session],
    days: int,
    now: datetime,
    tz: Optional[tzinfo] = None,
) -> list[HeatmapDay]:
    """One entry per local calendar day for the trailing ``days`` days, today last."""

    _check_window(days, "days")
    if days == 0:
        return []

    today = local_date(now, tz)
    window = [today - timedelta(days=days - 1 - i) for i in range(days)]

    counts = Counter()
    minutes = Counter()
    for session in _completed(sessions):
        day = local_date(session.started_at, tz)
        counts[day] += 1
        minutes[day] += _minutes(session)

    return [
        HeatmapDay(
            date=day,
            session_count=counts[day],
            total_minutes=minutes[day],
            intensity=intensity_for(counts[day]),
            is_today=day == today,
        )
        for day in window
    ]


def session_streak(sessions: list[Session], now: datetime, tz: Optional[tzinfo] = None) -> tuple[int, Optional[date]]:
    """Consecutive weeks with a completed session, ending this week or last week."""

    active_weeks = {week_start(s.started_at, tz) for s in _completed(sessions)}
    cursor = week_start(now, tz)
    if cursor not in active_weeks:
        cursor -= timedelta(weeks=1)

    streak = 0
    first = None
    while cursor in active_weeks and streak < _STREAK_LIMIT_WEEKS:
        streak += 1
        first = cursor
        cursor -= timedelta(weeks=1)
    return streak, first


def xp_streak(ledger: list[XPLedgerEntry], now: datetime, tz: Optional[tzinfo] = None) -> int:
    """Consecutive weeks, starting with the current one, that earned XP."""

    totals = Counter()
    for entry in ledger:
        totals[entry.week_start] += entry.amount

    streak = 0
    cursor = week_start(now, tz)
    while streak < _STREAK_LIMIT_WEEKS and totals[cursor] > 0:
        streak += 1
        cursor -= timedelta(weeks=1)
    return streak


def hero_stats(
    sessions: list[Session],
    projects: list[Project],
    ledger: list[XPLedgerEntry],
    now: datetime,
    tz: Optional[tzinfo] = None,
) -> dict:
    """Dashboard headline numbers: this week, current streak and all-time totals."""

    current = week_start(now, tz)
    completed = _completed(sessions)
    this_week = [s for s in completed if week_start(s.started_at, tz) == current]
    streak, streak_start = session_streak(sessions, now, tz)

    return {
        "current_week": {
            "sessions": len(this_week),
            "hours": sum(_minutes(s) for s in this_week) / 60.0,
            "xp": sum(e.amount for e in ledger if e.week_start == current),
        },
        "current_streak": {"weeks": streak, "start_date": streak_start},
        "all_time": {
            "total_sessions": len(completed),
            "total_hours": sum(_minutes(s) for s in completed) / 60.0,
            "total_xp": sum(e.amount for e in ledger),
            "projects_completed": sum(1 for p in projects if p.status == "completed"),
        },
    }


def weekly_xp_summary(ledger: list[XPLedgerEntry], week: date, tz: Optional[tzinfo] = None) -> dict:
    """XP for one week bucket split by source and by day."""

    entries = [e for e in ledger if e.week_start == week]
    by_source = defaultdict(int)
    by_day = Counter()
    for entry in entries:
        by_source[entry.source] += entry.amount
        by_day[local_date(entry.timestamp, tz)] += entry.amount

    days = [week + timedelta(days=i) for i in range(7)]
    return {
        "week_start": week,
        "total_xp": sum(by_source.values()),
        "session_xp": by_source["session"],
        "project_xp": by_source["project"],
        "achievement_xp": by_source["achievement"],
        "xp_by_day": [{"date": day, "xp": by_day[day]} for day in days],
    }


def _first_best(totals: Counter) -> Optional[tuple[date, int]]:
    best = None
    for key in sorted(totals):
        if totals[key] > 0 and (best is None or totals[key] > best[1]):
            best = (key, totals[key])
    return best


def _longest_run(weeks: set[date]) -> Optional[tuple[date, int]]:
    best = None
    run = 0
    previous = None
    for week in sorted(weeks):
        run = run + 1 if previous is not None and week - previous == timedelta(weeks=1) else 1
        previous = week
        if best is None or run > best[1]:
            best = (week, run)
    return best


def personal_records(sessions: list[Session], ledger: list[XPLedgerEntry], tz: Optional[tzinfo] = None) -> dict:
    """All-time bests, each dated by when it was first reached.

    A record is ``None`` until there is data for it. The streak record is
    dated by the last week of the run.
    """

    completed = _completed(sessions)
    day_counts = Counter(local_date(s.started_at, tz) for s in completed)
    week_counts = Counter(week_start(s.started_at, tz) for s in completed)
    week_xp = Counter()
    for entry in ledger:
        week_xp[entry.week_start] += entry.amount

    best_day = _first_best(day_counts)
    best_week = _first_best(week_counts)
    best_xp = _first_best(week_xp)
    streak = _longest_run(set(week_counts))
    return {
        "best_day_sessions": {"value": best_day[1], "date": best_day[0]} if best_day else None,
        "best_week_sessions": {"value": best_week[1], "week_start": best_week[0]} if best_week else None,
        "max_week_xp": {"value": best_xp[1], "week_start": best_xp[0]} if best_xp else None,
        "longest_streak": {"value": streak[1], "end_week": streak[0]} if streak else None,
    }


def performance_summary(
    sessions: list[Session],
    ledger: list[XPLedgerEntry],
    now: datetime,
    tz: Optional[tzinfo] = None,
) -> dict:
    today = local_date(now, tz)
    current = week_start(now, tz)
    completed = _completed(sessions)
    return {
        "today_sessions": sum(1 for s in completed if local_date(s.started_at, tz) == today),
        "week_sessions": sum(1 for s in completed if week_start(s.started_at, tz) == current),
        "current_streak": session_streak(sessions, now, tz)[0],
        "total_xp": sum(e.amount for e in ledger),
    }


def completion_grid(projects: list[Project]) -> np.ndarray:
    """10x10 count matrix of completed projects indexed by (cost - 1, benefit - 1)."""

    grid = np.zeros((10, 10), dtype=int)
    for project in projects:
        if project.status == "completed":
            grid[project.cost - 1, project.benefit - 1] += 1
    return grid


def completions_by_position(projects: list[Project]) -> list[dict]:
    """Completed projects grouped by map position with their base XP."""

    grid = completion_grid(projects)
    positions = []
    for cost_index, benefit_index in np.argwhere(grid > 0):
        cost, benefit = int(cost_index) + 1, int(benefit_index) + 1
        count = int(grid[cost_index, benefit_index])
        positions.append({"cost": cost, "benefit": benefit, "count": count, "total_xp": count * cost * benefit * 10})
    return positions
