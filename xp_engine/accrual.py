"""Session and project XP accrual rules."""

from __future__ import annotations

from dataclasses import dataclass
from math import floor

from xp_engine.errors import ValidationError

SESSION_BASE_POINTS = 10
POINTS_PER_MINUTE = 0.5

# Lower willpower reserve earns more per minute.
WILLPOWER_MULTIPLIERS = {
    "high": 1.0,
    "medium": 1.5,
    "low": 2.0,
}

UNKNOWN_DIFFICULTY = "Unknown Difficulty"

_DIFFICULTY_LABELS = {
    ("high", 60): "I'm Too Young to Die",
    ("high", 90): "Bring It On",
    ("high", 120): "Crunch Time",
    ("medium", 60): "Hey, Not Too Rough",
    ("medium", 90): "Come Get Some",
    ("medium", 120): "Balls of Steel",
    ("low", 60): "Damn I'm Good",
    ("low", 90): "Nightmare Deadline",
    ("low", 120): "Hail to the King",
}


@dataclass(frozen=True)
class XPBreakdown:
    base_points: float
    multiplier: float
    final_points: int
    explanation: str


def _round_half_up(value: float) -> int:
    return int(floor(value + 0.5))


def _multiplier(willpower: str) -> float:
    try:
        return WILLPOWER_MULTIPLIERS[willpower]
    except KeyError:
        raise ValidationError(f"Unknown willpower level '{willpower}'") from None


def _check_minutes(actual_duration) -> int:
    if isinstance(actual_duration, bool) or not isinstance(actual_duration, int):
        raise ValidationError("Actual duration must be a whole number of minutes")
    if actual_duration < 0:
        raise ValidationError("Actual duration cannot be negative")
    return actual_duration


def difficulty_label(willpower: str, planned_duration: int) -> str:
    """Return the difficulty label for a willpower/duration pair."""

    return _DIFFICULTY_LABELS.get((willpower, planned_duration), UNKNOWN_DIFFICULTY)


def session_breakdown(willpower: str, planned_duration: int, actual_duration: int) -> XPBreakdown:
    """Compute session XP along with the intermediate terms."""

    minutes = _check_minutes(actual_duration)
    multiplier = _multiplier(willpower)
    base = SESSION_BASE_POINTS + minutes * POINTS_PER_MINUTE
    final = _round_half_up(base * multiplier)
    explanation = f"(10 + {minutes}x0.5) x {multiplier} = {base} x {multiplier} = {final} XP"
    return XPBreakdown(base_points=base, multiplier=multiplier, final_points=final, explanation=explanation)


def session_xp(willpower: str, planned_duration: int, actual_duration: int) -> int:
    """XP for a completed session; planned duration only affects the label."""

    return session_breakdown(willpower, planned_duration, actual_duration).final_points


def project_xp(cost: int, benefit: int, boss_battle: bool = False) -> int:
    """XP for a completed project: cost x benefit x 10, doubled for a boss battle."""

    if not (1 <= cost <= 10 and 1 <= benefit <= 10):
        raise ValidationError(f"Invalid cost/benefit values: cost={cost}, benefit={benefit}")
    points = cost * benefit * 10
    return points * 2 if boss_battle else points
