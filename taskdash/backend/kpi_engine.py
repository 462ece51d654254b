"""Dashboard computations: filtering, metrics, intervention projection.

Every function here is pure and takes normalised input (see validation.py).
Results are always new lists/dicts; nothing is mutated in place.
"""

import logging
import math
from datetime import datetime, timedelta
from typing import Any

from . import config
from .filters import FilterState
from .validation import coerce_id

logger = logging.getLogger(__name__)

PENDING, IN_PROGRESS, COMPLETED = config.TASK_STATUSES

_STATUS_LABELS = {
    PENDING: "Pending",
    IN_PROGRESS: "In Progress",
    COMPLETED: "Completed",
}


# ─────────────────────────────────────────────
# Helpers
# ─────────────────────────────────────────────

def _pct(part: int, whole: int) -> float:
    return (part / whole) * 100 if whole > 0 else 0.0


def _contains(haystack, needle: str) -> bool:
    return isinstance(haystack, str) and needle in haystack.lower()


def _is_mine(task: dict, user_id) -> bool:
    return user_id is not None and task.get("assigned_user_id") == user_id


def to_number(val) -> int | float:
    """Coerce a count that may arrive as a string. Unparseable -> 0."""
    if isinstance(val, bool):
        return int(val)
    if isinstance(val, (int, float)):
        return val if math.isfinite(val) else 0
    if val is None:
        return 0
    s = str(val).strip()
    if not s:
        return 0
    try:
        num = float(s)
    except ValueError:
        logger.warning("Non-numeric intervention count %r, using 0", val)
        return 0
    if not math.isfinite(num):
        return 0
    return int(num) if num.is_integer() else num


# ─────────────────────────────────────────────
# Task filtering
# ─────────────────────────────────────────────

def matches_search(task: dict, search_term: str) -> bool:
    """Case-insensitive substring over name, project, description."""
    if not search_term:
        return True
    term = search_term.lower()
    return (
        _contains(task.get("name"), term)
        or _contains(task.get("project"), term)
        or _contains(task.get("description"), term)
    )


def matches(task: dict, state: FilterState) -> bool:
    if not matches_search(task, state.search_term):
        return False
    if state.status_filter != config.ALL and task.get("status") != state.status_filter:
        return False
    # No products / no project never matches a specific project
    if state.project_filter != config.ALL and task.get("project") != state.project_filter:
        return False
    return True


def filter_tasks(tasks: list[dict], state: FilterState) -> list[dict]:
    return [t for t in tasks if matches(t, state)]


def projects_of(tasks: list[dict]) -> list[str]:
    """Unique project names referenced by the tasks, ascending."""
    return sorted({t["project"] for t in tasks if t.get("project")})


# ─────────────────────────────────────────────
# Metrics
# ─────────────────────────────────────────────

def _empty_metrics() -> dict[str, Any]:
    return {
        "efficiency": 0.0,
        "productivity": 0.0,
        "workload": 0.0,
        "priority_rate": 0.0,
        "on_time_rate": 0.0,
        "total_tasks": 0,
        "completed_tasks": 0,
        "my_completed_tasks": 0,
        "my_active_tasks": 0,
        "pending_tasks": 0,
        "in_progress_tasks": 0,
    }


def _is_on_time(task: dict) -> bool:
    completed_at = task.get("completed_at")
    due_date = task.get("due_date")
    if task["status"] != COMPLETED or not completed_at or not due_date:
        return False
    return completed_at <= due_date


def compute_metrics(tasks: list[dict], current_user_id) -> dict[str, Any]:
    """Derived metrics over the filtered tasks.

    Never raises: on any failure the all-zero record is returned.
    """
    try:
        user_id = coerce_id(current_user_id)
        total = len(tasks)
        completed = sum(1 for t in tasks if t["status"] == COMPLETED)
        pending = sum(1 for t in tasks if t["status"] == PENDING)
        in_progress = sum(1 for t in tasks if t["status"] == IN_PROGRESS)
        my_completed = sum(1 for t in tasks if t["status"] == COMPLETED and _is_mine(t, user_id))
        my_active = sum(
            1 for t in tasks
            if t["status"] in config.ACTIVE_STATUSES and _is_mine(t, user_id)
        )
        high_priority = sum(1 for t in tasks if t.get("priority") == "high")
        on_time = sum(1 for t in tasks if _is_on_time(t))
    except Exception:
        logger.exception("Error calculating metrics")
        return _empty_metrics()

    return {
        "efficiency": _pct(completed, total),
        "productivity": _pct(my_completed, total),
        "workload": _pct(my_active, total),
        "priority_rate": _pct(high_priority, total),
        "on_time_rate": _pct(on_time, completed),
        "total_tasks": total,
        "completed_tasks": completed,
        "my_completed_tasks": my_completed,
        "my_active_tasks": my_active,
        "pending_tasks": pending,
        "in_progress_tasks": in_progress,
    }


def compute_stat_cards(tasks: list[dict], current_user_id) -> list[dict]:
    """Summary cards: bucket size plus the caller's share of it."""
    user_id = coerce_id(current_user_id)
    buckets = [
        ("total", "Total Tickets", tasks),
        ("pending", "Pending Tickets", [t for t in tasks if t["status"] == PENDING]),
        ("inProgress", "In Progress", [t for t in tasks if t["status"] == IN_PROGRESS]),
        ("completed", "Completed Tickets", [t for t in tasks if t["status"] == COMPLETED]),
    ]
    cards = []
    for key, title, bucket in buckets:
        mine = sum(1 for t in bucket if _is_mine(t, user_id))
        if bucket:
            change = f"{_pct(mine, len(bucket)):.1f}% mine"
        else:
            change = "0% mine"
        cards.append({
            "key": key,
            "title": title,
            "value": len(bucket),
            "change": change,
            "is_positive": True,
        })
    return cards


def project_status_breakdown(tasks: list[dict], state: FilterState) -> list[dict] | None:
    """Status counts for the selected project; None when no project is selected."""
    if state.project_filter == config.ALL:
        return None
    term = state.search_term.lower()
    project_tasks = [
        t for t in tasks
        if t.get("project") == state.project_filter
        and (not term or _contains(t.get("name"), term) or _contains(t.get("description"), term))
    ]
    return [
        {"status": status, "label": _STATUS_LABELS[status],
         "value": sum(1 for t in project_tasks if t["status"] == status)}
        for status in config.TASK_STATUSES
    ]


# ─────────────────────────────────────────────
# Interventions
# ─────────────────────────────────────────────

_INTERVENTION_STATUS_FIELD = {
    "approved": "approved",
    "rejected": "refused",
    "pending": "pending",
}


def filter_interventions(summaries: list[dict], search_term: str = "",
                         project_filter: str = config.ALL,
                         status_filter: str = config.ALL) -> list[dict]:
    """Filter per-project intervention summaries and project numeric counts."""
    term = (search_term or "").lower()
    status_field = _INTERVENTION_STATUS_FIELD.get(status_filter)
    if status_filter != config.ALL and status_field is None:
        logger.warning("Unknown intervention status filter %r, ignoring", status_filter)

    result = []
    for s in summaries:
        row = {
            "project": s["project"],
            "interventions": to_number(s.get("interventions")),
            "pending": to_number(s.get("pending")),
            "approved": to_number(s.get("approved")),
            "refused": to_number(s.get("refused")),
        }
        if term and term not in row["project"].lower():
            continue
        if project_filter != config.ALL and row["project"] != project_filter:
            continue
        if status_field and not row[status_field] > 0:
            continue
        result.append(row)
    return result


# ─────────────────────────────────────────────
# Table time window
# ─────────────────────────────────────────────

def start_of_window(now: datetime) -> datetime:
    """Local midnight of the previous day.

    The table's "last 24 hours" option has always meant "since yesterday
    00:00", so near the end of a day it spans almost 48 hours.
    """
    today = now.replace(hour=0, minute=0, second=0, microsecond=0)
    return today - timedelta(days=1)


def window_filter(tasks: list[dict], mode: str, now: datetime | None = None) -> list[dict]:
    if mode == config.ALL:
        return list(tasks)
    if mode != "today":
        logger.warning("Unknown table time filter %r, showing all tasks", mode)
        return list(tasks)
    start = start_of_window(now or datetime.now())
    return [t for t in tasks if t.get("created_at") and t["created_at"] >= start]


# ─────────────────────────────────────────────
# User dashboard
# ─────────────────────────────────────────────

def days_until_due(due_date: datetime | None, now: datetime) -> int | None:
    if not due_date:
        return None
    return math.ceil((due_date - now).total_seconds() / 86400)


def compute_user_dashboard(tasks: list[dict], current_user_id, search_query: str = "",
                           status_filter: str = config.ALL,
                           now: datetime | None = None) -> dict[str, Any]:
    """Payload for a regular user's own dashboard."""
    now = now or datetime.now()
    user_id = coerce_id(current_user_id)
    mine = [t for t in tasks if _is_mine(t, user_id)]

    counts = {
        status: sum(1 for t in mine if t["status"] == status)
        for status in config.TASK_STATUSES
    }

    query = (search_query or "").lower()
    visible = []
    for t in mine:
        if query and not _contains(t.get("name"), query):
            continue
        if status_filter != config.ALL and t["status"] != status_filter:
            continue
        visible.append({
            **t,
            "days_until_due": days_until_due(t.get("due_date"), now),
            "priority_label": (t.get("priority") or "low").title(),
        })

    return {
        "my_pending_tasks": counts[PENDING],
        "my_in_progress_tasks": counts[IN_PROGRESS],
        "my_completed_tasks": counts[COMPLETED],
        "chart_data": [
            {"name": _STATUS_LABELS[s], "value": counts[s]} for s in config.TASK_STATUSES
        ],
        "tasks": visible,
    }


def paginate(items: list, page: int = 1, per_page: int = config.DEFAULT_PER_PAGE) -> dict[str, Any]:
    """Slice *items* into a page envelope (``data`` plus paging fields)."""
    per_page = max(1, min(per_page, config.MAX_PER_PAGE))
    total = len(items)
    last_page = max(1, math.ceil(total / per_page))
    page = max(1, min(page, last_page))
    start = (page - 1) * per_page
    data = items[start:start + per_page]
    return {
        "data": data,
        "current_page": page,
        "last_page": last_page,
        "per_page": per_page,
        "total": total,
        "from": start + 1 if data else None,
        "to": start + len(data) if data else None,
    }


# ─────────────────────────────────────────────
# Main computation
# ─────────────────────────────────────────────

def compute_dashboard(tasks: list[dict], interventions: list[dict], state: FilterState,
                      current_user_id, now: datetime | None = None) -> dict[str, Any]:
    """Compute the admin dashboard payload from normalised inputs.

    *tasks* should already be narrowed to ``state.time_range`` by the loader.
    """
    now = now or datetime.now()
    filtered = filter_tasks(tasks, state)
    return {
        "projects": projects_of(tasks),
        "filtered_tasks": filtered,
        "metrics": compute_metrics(filtered, current_user_id),
        "stats": compute_stat_cards(filtered, current_user_id),
        "project_status": project_status_breakdown(filtered, state),
        "interventions": filter_interventions(
            interventions, state.search_term, state.project_filter,
            state.intervention_status_filter,
        ),
        "table_tasks": window_filter(filtered, state.table_time_filter, now),
        "filters": state.model_dump(),
        "last_updated": now.isoformat(),
    }
