"""Paths and constants for the task dashboard."""

from pathlib import Path

# ── Base directory (parent of taskdash/) ──
BASE_DIR = Path(__file__).resolve().parent.parent.parent
DATA_DIR = BASE_DIR / "data"

# ── Data files (read-only) ──
TASKS_JSON = DATA_DIR / "tasks.json"
INTERVENTIONS_CSV = DATA_DIR / "interventions.csv"
INTERVENTIONS_SUMMARY_JSON = DATA_DIR / "interventions_per_project.json"

# ── Server ──
HOST = "0.0.0.0"
PORT = 3000

# ── Identity (stand-in for the session collaborator) ──
USER_ID_HEADER = "X-User-Id"
USER_ROLE_HEADER = "X-User-Role"
DEFAULT_USER_ID = 1
DEFAULT_USER_ROLE = "admin"
ROLES = frozenset(["admin", "user"])

# ── Task schema ──
TASK_STATUSES = ("pending", "in-progress", "completed")
TASK_PRIORITIES = ("low", "medium", "high")
ACTIVE_STATUSES = frozenset(["pending", "in-progress"])

# ── Intervention log schema ──
INTERVENTION_COLUMNS = ["project", "status", "created_at"]
INTERVENTION_STATUSES = ("pending", "approved", "refused")
INTERVENTION_STATUS_FILTERS = ("all", "approved", "rejected", "pending")

# ── Filters ──
ALL = "all"
TABLE_TIME_FILTERS = ("all", "today")
TIME_RANGES = ("all", "today", "yesterday", "this-week", "this-month", "last-month", "this-year")
DEFAULT_TABLE_TIME_FILTER = "today"

# ── Pagination ──
DEFAULT_PER_PAGE = 10
MAX_PER_PAGE = 100

# ── Export ──
EXPORT_FORMATS = ("json", "csv")
EXPORT_FILENAME_PREFIX = "dashboard-export"
CSV_EXPORT_HEADER = ["Task Title", "Project", "Status", "Priority", "Created Date"]
