"""Core data schema for captures, projects, sessions and the XP ledger."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from typing import Optional

CAPTURE_STATUSES = ("pending", "tracked", "parked", "dismissed")
PROJECT_CATEGORIES = ("work", "learn", "build", "manage")
PROJECT_PRIORITIES = ("must", "should", "nice")
PROJECT_STATUSES = ("active", "completed", "abandoned")
WILLPOWER_LEVELS = ("high", "medium", "low")
SESSION_DURATIONS = (60, 90, 120)
XP_SOURCES = ("session", "project", "achievement")


@dataclass
class Capture:
    """Raw note awaiting triage."""

    id: str
    user_id: str
    content: str
    created_at: datetime
    status: str = "pending"
    decision: Optional[str] = None
    triaged_at: Optional[datetime] = None
    sequence: int = 0


@dataclass
class ParkingLotItem:
    """Deferred capture kept in the parking lot."""

    id: str
    user_id: str
    capture_id: Optional[str]
    content: str
    parked_at: datetime


@dataclass
class Project:
    """Tracked project placed on the cost/benefit map."""

    id: str
    user_id: str
    title: str
    category: str = "work"
    priority: str = "should"
    cost: int = 5
    benefit: int = 5
    status: str = "active"
    created_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    is_boss_battle: bool = False
    accuracy: Optional[int] = None
    due_date: Optional[date] = None


@dataclass
class Session:
    """Timed focus session, optionally attached to a project."""

    id: str
    user_id: str
    willpower: str
    planned_duration: int
    started_at: datetime
    project_id: Optional[str] = None
    actual_duration: Optional[int] = None
    ended_at: Optional[datetime] = None
    completed: bool = False
    interrupted: bool = False
    xp_earned: int = 0

    @property
    def is_active(self) -> bool:
        return not self.completed and not self.interrupted


@dataclass
class XPLedgerEntry:
    """Append-only XP accrual row."""

    id: str
    user_id: str
    source: str
    amount: int
    week_start: date
    timestamp: datetime
    source_id: Optional[str] = None
    note: Optional[str] = None


@dataclass
class UnlockedAchievement:
    """Achievement unlocked by a user; unique per (user_id, key)."""

    id: str
    user_id: str
    key: str
    unlocked_at: datetime
    xp_awarded: int = 0


@dataclass
class DailyCommitment:
    """Target number of completed sessions for one local day."""

    id: str
    user_id: str
    day: date
    target_sessions: int
    set_at: Optional[datetime] = None
