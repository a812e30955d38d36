"""Demo script for xp-engine: capture, triage, focus, complete."""

import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from xp_engine import cache_keys
from xp_engine.logging_config import setup_logging
from xp_engine.orchestrator import Engine
from xp_engine.store import InMemoryStore


def main() -> None:
    setup_logging()
    engine = Engine(InMemoryStore())
    user = "demo-user"

    for note in ("Ship the invoice exporter", "Read the SRE book", "Call the bank"):
        engine.create_capture(user, note)

    tracked = engine.triage_next(user, "track", project_fields={"cost": 3, "benefit": 8})
    engine.triage_next(user, "parking")
    engine.triage_next(user, "doing")
    print("Empty queue is a no-op:", engine.triage_next(user, "delete"))

    started = engine.start_session(user, "low", 90, project_id=tracked.created_project_id)
    done = engine.complete_session(user, started.session_id, 85)
    print(f"Session '{done.difficulty}' earned {done.xp_awarded} XP")
    print("Stale views:", sorted(cache_keys.key_label(key) for key in done.invalidated))

    finished = engine.complete_project(user, tracked.created_project_id, accuracy=3)
    print(f"Project earned {finished.xp_awarded} XP, unlocked {list(finished.unlocked)}")

    print("Weekly trend:", engine.get_weekly_trend(user, 4))
    print("Today:", [day for day in engine.get_heatmap(user, 14) if day.is_today])


if __name__ == "__main__":
    main()
