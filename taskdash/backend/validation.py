"""Input boundary: validate task and intervention records once on entry.

Everything downstream of ``normalise_tasks`` / ``normalise_interventions``
assumes well-formed dicts. Malformed records are dropped here with a warning
and never reach the aggregators.
"""

import logging
from collections.abc import Mapping, Sequence
from datetime import date, datetime
from typing import Any

from . import config

logger = logging.getLogger(__name__)

_TS_FORMATS = (
    "%Y-%m-%dT%H:%M:%S.%f",
    "%Y-%m-%dT%H:%M:%S",
    "%Y-%m-%d %H:%M:%S",
    "%Y-%m-%d",
)


def parse_ts(val) -> datetime | None:
    """Parse a timestamp into a naive local datetime, or None."""
    if val is None:
        return None
    if isinstance(val, datetime):
        return val.astimezone().replace(tzinfo=None) if val.tzinfo else val
    if isinstance(val, date):
        return datetime(val.year, val.month, val.day)
    if not isinstance(val, str) or not val.strip():
        return None
    val = val.strip()
    for fmt in _TS_FORMATS:
        try:
            return datetime.strptime(val, fmt)
        except ValueError:
            continue
    # Zone-qualified ISO strings ("...Z", "+02:00") are shifted to local time
    try:
        parsed = datetime.fromisoformat(val.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo:
        parsed = parsed.astimezone().replace(tzinfo=None)
    return parsed


def coerce_id(val):
    """User/task ids arrive as ints from JSON and as strings from headers."""
    if isinstance(val, bool):
        return val
    if isinstance(val, str):
        s = val.strip()
        if s.lstrip("-").isdigit():
            return int(s)
        return s or None
    return val


def _normalise_products(raw) -> list[dict]:
    if not isinstance(raw, Sequence) or isinstance(raw, (str, bytes)):
        return []
    out = []
    for product in raw:
        if not isinstance(product, Mapping):
            continue
        project = product.get("project")
        name = None
        if isinstance(project, Mapping):
            name = project.get("name")
        elif isinstance(project, str):
            name = project
        out.append({
            **product,
            "project": {"name": name} if isinstance(name, str) and name else None,
        })
    return out


def first_project_name(task: Mapping) -> str | None:
    products = task.get("products") or []
    if not products:
        return None
    project = products[0].get("project") or {}
    return project.get("name") or None


def _optional_str(val) -> str | None:
    if val is None:
        return None
    return val if isinstance(val, str) else str(val)


def normalise_task(row) -> dict | None:
    """Validate one task record. Returns None (and logs) if unusable."""
    if not isinstance(row, Mapping):
        logger.warning("Skipping task record that is not an object: %r", type(row).__name__)
        return None

    task_id = coerce_id(row.get("id"))
    status = row.get("status")
    status = status.strip().lower() if isinstance(status, str) else ""

    if task_id is None:
        logger.warning("Skipping task record without an id: %r", row.get("name"))
        return None
    if status not in config.TASK_STATUSES:
        logger.warning("Skipping task %s with unknown status %r", task_id, row.get("status"))
        return None

    priority = row.get("priority")
    priority = priority.strip().lower() if isinstance(priority, str) else None
    if priority not in config.TASK_PRIORITIES:
        priority = None

    products = _normalise_products(row.get("products"))
    # Attributes not checked here (user, updated_at, ...) pass through untouched
    task = {
        **row,
        "id": task_id,
        "name": _optional_str(row.get("name")),
        "description": _optional_str(row.get("description")),
        "status": status,
        "priority": priority,
        "due_date": parse_ts(row.get("due_date")),
        "completed_at": parse_ts(row.get("completed_at")),
        "assigned_user_id": coerce_id(row.get("assigned_user_id")),
        "created_at": parse_ts(row.get("created_at")),
        "products": products,
    }
    task["project"] = first_project_name(task)
    return task


def unwrap_collection(raw) -> list | None:
    """Accept a flat sequence or a paginated ``{"data": [...]}`` envelope."""
    if isinstance(raw, Mapping):
        raw = raw.get("data")
    if isinstance(raw, Sequence) and not isinstance(raw, (str, bytes)):
        return list(raw)
    return None


def normalise_tasks(raw: Any) -> list[dict]:
    """Flatten the task source and validate every record."""
    if raw is None:
        return []
    rows = unwrap_collection(raw)
    if rows is None:
        logger.warning("Task source is not a sequence or envelope (%s); using empty list",
                       type(raw).__name__)
        return []
    tasks = []
    for row in rows:
        task = normalise_task(row)
        if task is not None:
            tasks.append(task)
    dropped = len(rows) - len(tasks)
    if dropped:
        logger.warning("Dropped %d malformed task record(s)", dropped)
    return tasks


def normalise_interventions(raw: Any) -> list[dict]:
    """Keep per-project summaries that are objects with a project name.

    Counts are left as given; the projector coerces them to numbers.
    """
    if raw is None:
        return []
    rows = unwrap_collection(raw)
    if rows is None:
        logger.warning("Intervention source is not a sequence (%s); using empty list",
                       type(raw).__name__)
        return []
    out = []
    for row in rows:
        if not isinstance(row, Mapping) or not isinstance(row.get("project"), str):
            logger.warning("Skipping malformed intervention summary: %r", row)
            continue
        out.append({
            "project": row["project"],
            "interventions": row.get("interventions", 0),
            "pending": row.get("pending", 0),
            "approved": row.get("approved", 0),
            "refused": row.get("refused", 0),
        })
    return out
