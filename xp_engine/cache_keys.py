"""Hierarchical view-key namespace and mutation invalidation sets.

Every cached view is identified by a tuple path rooted at :data:`ROOT`.
Invalidating a key invalidates every key it prefixes, so
``sessions_all("u1")`` covers ``sessions_today("u1")``,
``sessions_history("u1")`` and so on without listing them.

:func:`invalidation_set_for` maps a mutation kind to the minimal set of
prefixes a cache must drop. It never under-invalidates: every view derived
from the changed entity sits beneath at least one returned prefix.
"""

from __future__ import annotations

from typing import Callable, Iterable, Mapping

from xp_engine.errors import ValidationError

ViewKey = tuple

ROOT: ViewKey = ("production-rebellion",)


# Projects
def projects() -> ViewKey:
    return ROOT + ("projects",)


def project(project_id: str) -> ViewKey:
    return projects() + (project_id,)


def active_projects() -> ViewKey:
    return projects() + ("active",)


# Sessions
def sessions_all(user_id: str) -> ViewKey:
    return ROOT + ("sessions", user_id)


def sessions_today(user_id: str) -> ViewKey:
    return sessions_all(user_id) + ("today",)


def sessions_active(user_id: str) -> ViewKey:
    return sessions_all(user_id) + ("active",)


def sessions_history(user_id: str, options: str | None = None) -> ViewKey:
    key = sessions_all(user_id) + ("history",)
    return key + (options,) if options else key


def sessions_commitment(user_id: str, day: str) -> ViewKey:
    return sessions_all(user_id) + ("commitment", day)


def sessions_today_progress(user_id: str) -> ViewKey:
    return sessions_all(user_id) + ("today-progress",)


# Captures
def captures() -> ViewKey:
    return ROOT + ("captures",)


def capture(capture_id: str) -> ViewKey:
    return captures() + (capture_id,)


def pending_captures() -> ViewKey:
    return captures() + ("pending",)


def captures_by_status(status: str) -> ViewKey:
    return captures() + ("status", status)


def capture_stats() -> ViewKey:
    return captures() + ("stats",)


# Legacy weekly XP
def weekly_xp() -> ViewKey:
    return ROOT + ("weekly-xp",)


# XP
def xp_all(user_id: str) -> ViewKey:
    return ROOT + ("xp", user_id)


def xp_current(user_id: str) -> ViewKey:
    return xp_all(user_id) + ("current",)


def xp_current_week(user_id: str) -> ViewKey:
    return xp_all(user_id) + ("current-week",)


def xp_weekly(user_id: str, week: str) -> ViewKey:
    return xp_all(user_id) + ("weekly", week)


# Achievements
def achievements() -> ViewKey:
    return ROOT + ("achievements",)


def user_achievements() -> ViewKey:
    return achievements() + ("user",)


def achievement_definitions() -> ViewKey:
    return achievements() + ("definitions",)


# Analytics
def analytics_all(user_id: str) -> ViewKey:
    return ROOT + ("analytics", user_id)


def analytics_dashboard(user_id: str) -> ViewKey:
    return analytics_all(user_id) + ("dashboard",)


def analytics_hero_stats(user_id: str) -> ViewKey:
    return analytics_all(user_id) + ("hero-stats",)


def analytics_weekly_trend(user_id: str, weeks: int) -> ViewKey:
    return analytics_all(user_id) + ("weekly-trend", weeks)


def analytics_heatmap(user_id: str, days: int) -> ViewKey:
    return analytics_all(user_id) + ("heatmap", days)


def analytics_completions(user_id: str) -> ViewKey:
    return analytics_all(user_id) + ("completions",)


def analytics_records(user_id: str) -> ViewKey:
    return analytics_all(user_id) + ("records",)


def analytics_achievements(user_id: str) -> ViewKey:
    return analytics_all(user_id) + ("achievements",)


def analytics_performance(user_id: str) -> ViewKey:
    return analytics_all(user_id) + ("performance",)


# Parking lot
def parking_lot() -> ViewKey:
    return ROOT + ("parking-lot",)


def key_label(key: ViewKey) -> str:
    """Readable form without the root, e.g. ``projects:p1``."""

    return ":".join(str(part) for part in key[len(ROOT):])


def is_covered(key: ViewKey, invalidation_set: Iterable[ViewKey]) -> bool:
    """True if ``key`` equals or is nested beneath any member of the set."""

    key = tuple(key)
    return any(key[: len(prefix)] == tuple(prefix) for prefix in invalidation_set)


def stale_keys(cached: Iterable[ViewKey], invalidation_set: Iterable[ViewKey]) -> set[ViewKey]:
    """Subset of ``cached`` keys that an invalidation set marks stale."""

    prefixes = list(invalidation_set)
    return {tuple(key) for key in cached if is_covered(key, prefixes)}


def _require(ids: Mapping[str, str], name: str, kind: str) -> str:
    value = ids.get(name)
    if not value:
        raise ValidationError(f"Mutation '{kind}' requires '{name}'")
    return value


def _user_data(user_id: str) -> set[ViewKey]:
    return {
        projects(),
        sessions_all(user_id),
        captures(),
        xp_all(user_id),
        achievements(),
        analytics_all(user_id),
        parking_lot(),
    }


def _session_completed(ids):
    user_id = _require(ids, "user_id", "session_completed")
    return {sessions_all(user_id), xp_all(user_id), analytics_all(user_id), achievements()}


def _session_changed(kind):
    def rule(ids):
        return {sessions_all(_require(ids, "user_id", kind))}

    return rule


def _commitment_set(ids):
    user_id = _require(ids, "user_id", "commitment_set")
    keys = {sessions_today_progress(user_id), analytics_performance(user_id)}
    if ids.get("day"):
        keys.add(sessions_commitment(user_id, ids["day"]))
    return keys


def _project_completed(ids):
    project_id = _require(ids, "project_id", "project_completed")
    keys = {projects(), project(project_id), weekly_xp(), achievements()}
    user_id = ids.get("user_id")
    if user_id:
        keys |= {xp_all(user_id), analytics_all(user_id)}
    return keys


def _project_changed(ids):
    keys = {projects()}
    if ids.get("project_id"):
        keys.add(project(ids["project_id"]))
    return keys


def _capture_changed(ids):
    keys = {captures(), pending_captures()}
    if ids.get("capture_id"):
        keys.add(capture(ids["capture_id"]))
    return keys


def _capture_parked(ids):
    return _capture_changed(ids) | {parking_lot()}


def _parking_lot_changed(ids):
    keys = {parking_lot()}
    if ids.get("project_id"):
        keys |= {projects(), project(ids["project_id"])}
    return keys


def _xp_recorded(ids):
    user_id = _require(ids, "user_id", "xp_recorded")
    return {xp_all(user_id), analytics_all(user_id), weekly_xp()}


def _achievement_unlocked(ids):
    user_id = _require(ids, "user_id", "achievement_unlocked")
    return {achievements(), xp_all(user_id), analytics_all(user_id), weekly_xp()}


def _user_signed_out(ids):
    return _user_data(_require(ids, "user_id", "user_signed_out"))


_RULES: dict[str, Callable[[Mapping[str, str]], set]] = {
    "session_completed": _session_completed,
    "session_started": _session_changed("session_started"),
    "session_interrupted": _session_changed("session_interrupted"),
    "commitment_set": _commitment_set,
    "project_completed": _project_completed,
    "project_created": _project_changed,
    "project_updated": _project_changed,
    "project_abandoned": _project_changed,
    "project_deleted": _project_changed,
    "capture_created": _capture_changed,
    "capture_triaged": _capture_changed,
    "capture_updated": _capture_changed,
    "capture_deleted": _capture_changed,
    "capture_parked": _capture_parked,
    "parking_lot_changed": _parking_lot_changed,
    "xp_recorded": _xp_recorded,
    "achievement_unlocked": _achievement_unlocked,
    "user_signed_out": _user_signed_out,
}

MUTATION_KINDS = tuple(_RULES)


def normalize_kind(kind: str) -> str:
    """Accept ``"project completed"`` and ``"project-completed"`` spellings."""

    return str(kind).strip().lower().replace(" ", "_").replace("-", "_")


def invalidation_set_for(kind: str, ids: Mapping[str, str] | None = None) -> frozenset:
    """Return the view-key prefixes that must be recomputed after ``kind``."""

    rule = _RULES.get(normalize_kind(kind))
    if rule is None:
        raise ValidationError(f"Unknown mutation kind '{kind}'")
    return frozenset(rule(ids or {}))


def union(*kinds: tuple[str, Mapping[str, str]]) -> frozenset:
    """Merge the invalidation sets of several mutations applied together."""

    merged: set = set()
    for kind, ids in kinds:
        merged |= invalidation_set_for(kind, ids)
    return frozenset(merged)
