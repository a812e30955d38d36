"""Achievement triggers, unlock conditions and progress."""

from __future__ import annotations

from datetime import datetime, tzinfo
from typing import Optional

from xp_engine.analytics import local_date, session_streak
from xp_engine.errors import ValidationError
from xp_engine.schema import Capture, Project, Session

ACHIEVEMENT_KEYS = (
    "paths_are_made_by_walking",
    "first_blood",
    "double_digits",
    "giant_slayer",
    "dark_souls_mode",
    "frame_perfect",
    "dedicated",
    "the_grind",
    "the_estimator",
    "no_brainer_king",
)

ACHIEVEMENT_TRIGGERS = {
    "capture_created": ("paths_are_made_by_walking",),
    "project_completed": (
        "first_blood",
        "double_digits",
        "giant_slayer",
        "dark_souls_mode",
        "frame_perfect",
        "the_estimator",
        "no_brainer_king",
    ),
    "session_completed": ("the_grind", "dedicated"),
    "week_boundary": ("dedicated",),
    "manual_check": ACHIEVEMENT_KEYS,
}

# key -> (stat name, target)
_TARGETS = {
    "paths_are_made_by_walking": ("captures_count", 1),
    "first_blood": ("projects_completed", 1),
    "double_digits": ("projects_completed", 10),
    "giant_slayer": ("giant_slayer_count", 1),
    "dark_souls_mode": ("dark_souls_count", 1),
    "frame_perfect": ("frame_perfect_count", 1),
    "dedicated": ("week_streak", 4),
    "the_grind": ("today_minutes", 600),
    "the_estimator": ("estimator_count", 5),
    "no_brainer_king": ("no_brainer_count", 10),
}


def relevant_achievements(event: str) -> tuple[str, ...]:
    """Achievement keys worth checking after ``event``."""

    try:
        return ACHIEVEMENT_TRIGGERS[event]
    except KeyError:
        raise ValidationError(f"Unknown achievement trigger '{event}'") from None


def batch_achievement_checks(events: list[str]) -> list[str]:
    keys: list[str] = []
    for event in events:
        for key in relevant_achievements(event):
            if key not in keys:
                keys.append(key)
    return keys


def collect_stats(
    captures_count: int,
    projects: list[Project],
    sessions: list[Session],
    now: datetime,
    tz: Optional[tzinfo] = None,
) -> dict:
    """Counters the unlock conditions are evaluated against."""

    completed = [p for p in projects if p.status == "completed"]
    today = local_date(now, tz)
    streak, _ = session_streak(sessions, now, tz)

    return {
        "captures_count": captures_count,
        "projects_completed": len(completed),
        "giant_slayer_count": sum(1 for p in completed if p.cost == 10),
        "dark_souls_count": sum(1 for p in completed if p.is_boss_battle and p.accuracy == 1),
        "frame_perfect_count": sum(
            1
            for p in completed
            if p.due_date is not None and p.completed_at is not None and local_date(p.completed_at, tz) == p.due_date
        ),
        "week_streak": streak,
        "today_minutes": sum(
            s.actual_duration or 0 for s in sessions if s.completed and local_date(s.started_at, tz) == today
        ),
        "estimator_count": sum(1 for p in completed if p.accuracy == 3),
        "no_brainer_count": sum(1 for p in completed if p.cost <= 3 and p.benefit >= 8),
    }


def is_unlocked(key: str, stats: dict) -> bool:
    stat, target = _TARGETS[key]
    return stats.get(stat, 0) >= target


def progress(key: str, stats: dict) -> dict:
    """Current/target/percentage for one achievement."""

    stat, target = _TARGETS[key]
    current = stats.get(stat, 0)
    return {
        "current": current,
        "target": target,
        "percentage": min(100.0, current * 100.0 / target),
    }


def newly_unlocked(keys: tuple[str, ...] | list[str], stats: dict, already: set[str]) -> list[str]:
    return [key for key in keys if key not in already and is_unlocked(key, stats)]
