"""Streamlit demo UI for xp-engine."""

from __future__ import annotations

import tempfile
from dataclasses import asdict
from pathlib import Path
from typing import Any

from xp_engine import cache_keys
from xp_engine.adapters import csv_adapter, json_adapter
from xp_engine.errors import EngineError
from xp_engine.orchestrator import Engine
from xp_engine.store import InMemoryStore
from xp_engine.triage import TRIAGE_ACTIONS

DEMO_DATASET = "examples/sample_sessions.csv"

ACTION_LABELS = {
    "track": "Track as project",
    "parking": "Parking lot",
    "doing": "Doing it now",
    "routing": "Route elsewhere",
    "delete": "Delete",
}


def _store_from_path(file_path: str) -> InMemoryStore:
    suffix = Path(file_path).suffix.lower()
    if suffix == ".json":
        return json_adapter.load(file_path)
    if suffix == ".csv":
        store = InMemoryStore()
        with store.transaction():
            for session in csv_adapter.parse(file_path):
                store.add("sessions", session)
        return store
    raise ValueError("Unsupported file type. Please use .csv or .json")


def _store_from_upload(uploaded_file) -> InMemoryStore:
    suffix = Path(uploaded_file.name).suffix.lower()
    with tempfile.NamedTemporaryFile(delete=False, suffix=suffix) as handle:
        handle.write(uploaded_file.getbuffer())
        temp_path = handle.name
    return _store_from_path(temp_path)


def build_dashboard(engine: Engine, user_id: str, weeks: int, days: int) -> dict[str, Any]:
    """Collect every view the page renders into one payload."""

    return {
        "hero": engine.get_hero_stats(user_id),
        "trend": [asdict(bucket) for bucket in engine.get_weekly_trend(user_id, weeks)],
        "heatmap": [asdict(day) for day in engine.get_heatmap(user_id, days)],
        "pending": engine.current_pending(user_id),
        "triage_stats": engine.get_triage_stats(user_id),
        "parking_lot": engine.parking_lot(user_id),
        "achievements": engine.achievement_progress(user_id),
        "today_progress": engine.get_today_progress(user_id),
        "records": engine.get_personal_records(user_id),
    }


def main() -> None:
    import streamlit as st

    st.set_page_config(page_title="XP Engine Demo", layout="wide")
    st.title("XP Engine — Streamlit Demo")

    if "engine" not in st.session_state:
        st.session_state.engine = Engine(InMemoryStore())
        st.session_state.last_invalidated = frozenset()
    engine: Engine = st.session_state.engine

    with st.sidebar:
        st.header("Controls")
        user_id = st.text_input("User id", value="alice")
        uploaded = st.file_uploader("Load snapshot or session log", type=["csv", "json"])
        if st.button("Load demo dataset"):
            st.session_state.engine = engine = Engine(_store_from_path(DEMO_DATASET))
        elif uploaded is not None and st.button("Load uploaded file"):
            st.session_state.engine = engine = Engine(_store_from_upload(uploaded))

        weeks = st.slider("Trend weeks", min_value=1, max_value=26, value=engine.config.trend_weeks)
        days = st.slider("Heatmap days", min_value=7, max_value=60, value=engine.config.heatmap_days)

        note = st.text_input("Capture")
        if st.button("Capture", type="primary") and note:
            try:
                st.session_state.last_invalidated = engine.create_capture(user_id, note).invalidated
            except EngineError as exc:
                st.error(f"{exc} {exc.suggestion}")

    view = build_dashboard(engine, user_id, weeks, days)

    st.subheader("A) This Week")
    hero = view["hero"]
    c1, c2, c3, c4 = st.columns(4)
    c1.metric("Sessions", hero["current_week"]["sessions"])
    c2.metric("Hours", f"{hero['current_week']['hours']:.1f}")
    c3.metric("XP", hero["current_week"]["xp"])
    c4.metric("Week streak", hero["current_streak"]["weeks"])

    today = view["today_progress"]
    st.progress(today["progress"], text=f"Today: {today['completed']} of {today['target'] or '?'} sessions")
    target = st.number_input("Daily commitment", min_value=1, max_value=12, value=today["target"] or 3)
    if st.button("Commit"):
        st.session_state.last_invalidated = engine.set_daily_commitment(user_id, int(target)).invalidated
        st.rerun()

    st.subheader("B) Triage")
    pending = view["pending"]
    if pending is None:
        st.info("Inbox zero. Nothing left to triage.")
    else:
        st.write(f"**{pending.content}** ({view['triage_stats']['pending_count']} pending)")
        columns = st.columns(len(TRIAGE_ACTIONS))
        for column, action in zip(columns, TRIAGE_ACTIONS):
            if column.button(ACTION_LABELS[action], key=f"triage-{action}"):
                try:
                    result = engine.triage(user_id, pending.id, action)
                    st.session_state.last_invalidated = result.invalidated
                    st.rerun()
                except EngineError as exc:
                    st.error(f"{exc} {exc.suggestion}")

    if view["parking_lot"]:
        st.table([{"content": item.content, "parked_at": item.parked_at} for item in view["parking_lot"]])

    st.subheader("C) Weekly Trend")
    st.bar_chart({str(row["week_start"]): row["total_xp"] for row in view["trend"]})
    st.table(view["trend"])

    st.subheader("D) Session Heatmap")
    st.table(
        [
            {"date": row["date"], "sessions": row["session_count"], "intensity": row["intensity"], "today": row["is_today"]}
            for row in view["heatmap"]
        ]
    )

    st.subheader("E) Achievements")
    st.table([{"key": key, **status} for key, status in view["achievements"].items()])

    st.subheader("F) Personal Records")
    st.table([{"record": name, **(record or {"value": None})} for name, record in view["records"].items()])

    st.subheader("G) Views invalidated by the last action")
    st.write(sorted(cache_keys.key_label(key) for key in st.session_state.last_invalidated) or "None")


if __name__ == "__main__":
    main()
