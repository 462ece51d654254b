"""JSON / CSV rendering of the filtered task list for download."""

import csv
import io
import json
import math
from datetime import date, datetime

from . import config

EXPORT_MEDIA_TYPES = {
    "json": "application/json",
    "csv": "text/csv",
}


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def export_stats(tasks: list[dict]) -> dict[str, int]:
    total = len(tasks)
    completed = sum(1 for t in tasks if t["status"] == "completed")
    return {
        "totalTasks": total,
        "pendingTasks": sum(1 for t in tasks if t["status"] == "pending"),
        "inProgressTasks": sum(1 for t in tasks if t["status"] == "in-progress"),
        "completedTasks": completed,
        "completionRate": _round_half_up(completed / (total or 1) * 100),
    }


def _json_default(obj):
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


def _to_json(tasks: list[dict], now: datetime) -> str:
    data = {
        "stats": export_stats(tasks),
        "tasks": tasks,
        "exportDate": now.astimezone().isoformat(),
    }
    return json.dumps(data, indent=2, default=_json_default, ensure_ascii=False)


def _to_csv(tasks: list[dict]) -> str:
    buf = io.StringIO()
    writer = csv.writer(buf, lineterminator="\n")
    writer.writerow(config.CSV_EXPORT_HEADER)
    for t in tasks:
        created = t.get("created_at")
        writer.writerow([
            t.get("name") or "",
            t.get("project") or "N/A",
            t["status"],
            t.get("priority") or "Normal",
            created.strftime("%x") if created else "",
        ])
    # No trailing newline: an empty export is exactly the header row
    return buf.getvalue()[:-1]


def serialize(tasks: list[dict], fmt: str, now: datetime | None = None) -> str:
    """Render *tasks* as ``json`` or ``csv`` text. Raises ValueError otherwise."""
    if fmt == "json":
        return _to_json(tasks, now or datetime.now())
    if fmt == "csv":
        return _to_csv(tasks)
    raise ValueError(f"Unsupported export format: {fmt}")


def export_filename(fmt: str, now: datetime | None = None) -> str:
    day = (now or datetime.now()).date().isoformat()
    return f"{config.EXPORT_FILENAME_PREFIX}-{day}.{fmt}"
