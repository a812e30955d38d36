"""Engine configuration loaded from YAML with environment overrides."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import yaml

from xp_engine.errors import ValidationError

PROJECT_ROOT = Path(__file__).resolve().parents[1]
CONFIG_PATH = PROJECT_ROOT / "config" / "xp_engine.yaml"

DEFAULT_ACHIEVEMENT_REWARDS = {
    "paths_are_made_by_walking": 10,
    "first_blood": 50,
    "double_digits": 200,
    "giant_slayer": 300,
    "dark_souls_mode": 500,
    "frame_perfect": 100,
    "dedicated": 250,
    "the_grind": 300,
    "the_estimator": 150,
    "no_brainer_king": 200,
}


@dataclass(frozen=True)
class EngineConfig:
    """Runtime settings for the engine."""

    timezone: str = "UTC"
    heatmap_days: int = 14
    trend_weeks: int = 8
    interrupt_xp: int = 10
    achievement_rewards: dict = field(default_factory=lambda: dict(DEFAULT_ACHIEVEMENT_REWARDS))
    default_project: dict = field(default_factory=dict)

    @property
    def tz(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)


def _positive_int(value: Any, name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ValidationError(f"Config '{name}' must be a non-negative integer")
    return value


def build_config(raw: dict[str, Any]) -> EngineConfig:
    """Validate a raw ``xp_engine`` mapping into an :class:`EngineConfig`."""

    timezone = str(raw.get("timezone", "UTC"))
    try:
        ZoneInfo(timezone)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ValidationError(f"Unknown timezone '{timezone}'") from exc

    rewards = dict(DEFAULT_ACHIEVEMENT_REWARDS)
    rewards.update(raw.get("achievement_rewards") or {})
    for key, value in rewards.items():
        _positive_int(value, f"achievement_rewards.{key}")

    return EngineConfig(
        timezone=timezone,
        heatmap_days=_positive_int(raw.get("heatmap_days", 14), "heatmap_days"),
        trend_weeks=_positive_int(raw.get("trend_weeks", 8), "trend_weeks"),
        interrupt_xp=_positive_int(raw.get("interrupt_xp", 10), "interrupt_xp"),
        achievement_rewards=rewards,
        default_project=dict(raw.get("default_project") or {}),
    )


def load_config(path: Optional[str | Path] = None) -> EngineConfig:
    """Load configuration from YAML; missing file means defaults."""

    config_path = Path(path or os.environ.get("XP_ENGINE_CONFIG") or CONFIG_PATH)
    raw: dict[str, Any] = {}
    if config_path.exists():
        with open(config_path, encoding="utf-8") as handle:
            payload = yaml.safe_load(handle) or {}
        if not isinstance(payload, dict):
            raise ValidationError(f"{config_path}: expected a mapping at the top level")
        raw = dict(payload.get("xp_engine") or {})

    if os.environ.get("XP_ENGINE_TIMEZONE"):
        raw["timezone"] = os.environ["XP_ENGINE_TIMEZONE"]

    return build_config(raw)
