"""Print weekly trend, heatmap and hero stats for one user."""

from __future__ import annotations

import argparse
import json
import sys
from dataclasses import asdict
from datetime import datetime
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from xp_engine.adapters import csv_adapter, json_adapter
from xp_engine.config import load_config
from xp_engine.logging_config import setup_logging
from xp_engine.orchestrator import Engine
from xp_engine.store import InMemoryStore


def _load_store(path: Path) -> InMemoryStore:
    suffix = path.suffix.lower()
    if suffix == ".json":
        return json_adapter.load(str(path))
    if suffix == ".csv":
        store = InMemoryStore()
        with store.transaction():
            for session in csv_adapter.parse(str(path)):
                store.add("sessions", session)
        return store
    raise ValueError("Unsupported input format, expected .csv or .json")


def main() -> None:
    parser = argparse.ArgumentParser(description="Run an xp-engine analytics report")
    parser.add_argument("--data", required=True, help="Path to a JSON snapshot or sessions CSV")
    parser.add_argument("--user", required=True, help="User id to report on")
    parser.add_argument("--weeks", type=int, default=None, help="Weekly trend window")
    parser.add_argument("--days", type=int, default=None, help="Heatmap window")
    parser.add_argument("--now", default=None, help="ISO timestamp to treat as the current time")
    parser.add_argument("--config", default=None, help="Path to xp_engine.yaml")
    args = parser.parse_args()

    setup_logging()
    config = load_config(args.config)
    now = datetime.fromisoformat(args.now) if args.now else None
    engine = Engine(_load_store(Path(args.data)), config=config, clock=(lambda: now) if now else None)

    report = {
        "weekly_trend": [asdict(bucket) for bucket in engine.get_weekly_trend(args.user, args.weeks)],
        "heatmap": [asdict(day) for day in engine.get_heatmap(args.user, args.days)],
        "hero_stats": engine.get_hero_stats(args.user),
        "completions": engine.get_project_completions(args.user),
        "personal_records": engine.get_personal_records(args.user),
        "performance": engine.get_performance_summary(args.user),
    }
    text = json.dumps(report, indent=2, default=str)
    print(text)

    outputs_dir = Path("outputs")
    outputs_dir.mkdir(parents=True, exist_ok=True)
    out_path = outputs_dir / f"report_{args.user}.json"
    out_path.write_text(text, encoding="utf-8")
    print(f"Saved report to {out_path}")


if __name__ == "__main__":
    main()
