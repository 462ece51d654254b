from datetime import datetime, timedelta

import pandas as pd

from taskdash.backend import config
from taskdash.backend.validation import parse_ts

TASK_STATUSES = list(config.TASK_STATUSES)
INTERVENTION_STATUSES = list(config.INTERVENTION_STATUSES)


def _month_start(dt):
    return dt.replace(day=1, hour=0, minute=0, second=0, microsecond=0)


def resolve_time_range(token, now_dt):
    """Return (start, end) for a time-range token; (None, None) means all time."""
    today = now_dt.replace(hour=0, minute=0, second=0, microsecond=0)
    if token == "today":
        return today, today + timedelta(days=1)
    if token == "yesterday":
        return today - timedelta(days=1), today
    if token == "this-week":
        start = today - timedelta(days=today.weekday())
        return start, start + timedelta(days=7)
    if token == "this-month":
        start = _month_start(today)
        return start, _month_start(start + timedelta(days=32))
    if token == "last-month":
        end = _month_start(today)
        return _month_start(end - timedelta(days=1)), end
    if token == "this-year":
        start = today.replace(month=1, day=1)
        return start, start.replace(year=start.year + 1)
    return None, None


def apply_time_range(tasks, token, now_dt):
    """Keep tasks created inside the token's window. Tasks are normalised dicts."""
    start, end = resolve_time_range(token, now_dt)
    if start is None or not tasks:
        return list(tasks or [])
    created = pd.to_datetime(pd.Series([t.get("created_at") for t in tasks], dtype=object), errors="coerce")
    mask = created.notna() & (created >= start) & (created < end)
    return [t for t, keep in zip(tasks, mask.tolist()) if keep]


def tasks_per_project(tasks):
    """Per-project status counts for the bar chart, largest projects first."""
    if not tasks:
        return []
    frame = pd.DataFrame({
        "project": [t.get("project") for t in tasks],
        "status": [t.get("status") for t in tasks],
    })
    frame = frame[frame["project"].notna() & (frame["project"] != "")]
    if frame.empty:
        return []
    counts = pd.crosstab(frame["project"], frame["status"])
    counts = counts.reindex(columns=TASK_STATUSES, fill_value=0)
    counts["total"] = counts.sum(axis=1)
    counts = counts.reset_index().sort_values(["total", "project"], ascending=[False, True])
    return [
        {
            "project": row["project"],
            "pending": int(row["pending"]),
            "in_progress": int(row["in-progress"]),
            "completed": int(row["completed"]),
            "total": int(row["total"]),
        }
        for _, row in counts.iterrows()
    ]


def prepare_intervention_frame(df):
    """Clean a raw intervention log; schema problems are reported via attrs."""
    empty = pd.DataFrame(columns=config.INTERVENTION_COLUMNS + ["created_at_dt"])
    if df is None:
        empty.attrs["error"] = "missing intervention log"
        return empty
    missing = [c for c in ("project", "status") if c not in df.columns]
    if missing:
        empty.attrs["error"] = f"schema_mismatch: missing {missing}"
        return empty
    events = df.copy()
    if "created_at" not in events.columns:
        events["created_at"] = ""
    events["project"] = events["project"].fillna("").astype(str).str.strip()
    events["status"] = events["status"].fillna("").astype(str).str.strip().str.lower()
    # Same rule as task timestamps: mixed ISO layouts accepted, zones shifted to naive local
    events["created_at_dt"] = pd.to_datetime(events["created_at"].map(parse_ts), errors="coerce")
    events = events[events["project"] != ""].copy()
    events.attrs["error"] = None
    return events


def interventions_per_project(events, token="all", now_dt=None):
    """Aggregate a prepared intervention log into per-project summaries."""
    if events is None or events.empty:
        return []
    start, end = resolve_time_range(token, now_dt or datetime.now())
    if start is not None:
        ts = events["created_at_dt"]
        events = events[ts.notna() & (ts >= start) & (ts < end)]
        if events.empty:
            return []
    counts = pd.crosstab(events["project"], events["status"])
    counts = counts.reindex(columns=INTERVENTION_STATUSES, fill_value=0)
    totals = events.groupby("project").size()
    return [
        {
            "project": project,
            "interventions": int(totals[project]),
            "pending": int(counts.at[project, "pending"]),
            "approved": int(counts.at[project, "approved"]),
            "refused": int(counts.at[project, "refused"]),
        }
        for project in sorted(counts.index)
    ]
