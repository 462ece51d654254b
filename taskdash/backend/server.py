"""FastAPI app: dashboard endpoints, export download, static files."""

import logging
import sys
from datetime import datetime
from pathlib import Path

import uvicorn
from fastapi import FastAPI, Header, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from fastapi.staticfiles import StaticFiles
from pydantic import ValidationError

import taskdash_core

from . import config
from .data_reader import get_file_info, load_csv, load_json
from .export import EXPORT_MEDIA_TYPES, export_filename, serialize
from .filters import FilterState
from .kpi_engine import compute_dashboard, compute_user_dashboard, filter_tasks, paginate, projects_of
from .validation import coerce_id, normalise_interventions, normalise_tasks

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
)
logger = logging.getLogger(__name__)


# ── Collaborators: identity and data sources ──

def _resolve_identity(user_id: str | None, role: str | None) -> dict:
    uid = coerce_id(user_id) if user_id is not None else None
    if uid is None:
        uid = config.DEFAULT_USER_ID
    role = (role or config.DEFAULT_USER_ROLE).strip().lower()
    if role not in config.ROLES:
        raise HTTPException(status_code=400, detail=f"Unknown role: {role}")
    return {"id": uid, "role": role}


def _filter_state(**kwargs) -> FilterState:
    time_range = kwargs.get("time_range")
    if time_range and time_range not in config.TIME_RANGES:
        raise HTTPException(status_code=400, detail=f"Unknown time range: {time_range}")
    try:
        return FilterState(**kwargs)
    except ValidationError as e:
        msgs = "; ".join(err["msg"] for err in e.errors())
        raise HTTPException(status_code=400, detail=msgs)


def _load_tasks() -> tuple[list[dict], str | None]:
    raw, err = load_json(config.TASKS_JSON)
    return normalise_tasks(raw), err


def _load_interventions(time_range: str, now: datetime) -> tuple[list[dict], str | None]:
    """Pre-aggregated summaries win over the raw log when both exist."""
    if config.INTERVENTIONS_SUMMARY_JSON.exists():
        raw, err = load_json(config.INTERVENTIONS_SUMMARY_JSON)
        return normalise_interventions(raw), err

    frame, err = load_csv(config.INTERVENTIONS_CSV)
    events = taskdash_core.prepare_intervention_frame(frame)
    if frame is not None and events.attrs.get("error"):
        err = err or events.attrs["error"]
    summaries = taskdash_core.interventions_per_project(events, time_range, now)
    return normalise_interventions(summaries), err


def _with_warnings(payload: dict, *errors: str | None) -> dict:
    warnings = [e for e in errors if e]
    if warnings:
        payload["warning"] = "; ".join(warnings)
    return payload


app = FastAPI(title="Task Dashboard API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)


# Disable caching for all responses
@app.middleware("http")
async def disable_cache(request: Request, call_next):
    response = await call_next(request)
    response.headers["Cache-Control"] = "no-cache, no-store, must-revalidate"
    response.headers["Pragma"] = "no-cache"
    response.headers["Expires"] = "0"
    return response


# ── Global exception handler ──
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s", request.url)
    return JSONResponse(
        status_code=500,
        content={"error": str(exc), "detail": "Internal server error"},
    )


# ── Endpoints ──

@app.get("/api/dashboard")
async def dashboard_endpoint(time_range: str | None = None, search: str | None = None,
                             status: str | None = None, project: str | None = None,
                             intervention_status: str | None = None,
                             table_time: str | None = None,
                             x_user_id: str | None = Header(default=None),
                             x_user_role: str | None = Header(default=None)):
    """Admin dashboard: tasks, metrics, charts and interventions in one call.

    Query params:
        time_range:          today | yesterday | this-week | this-month |
                             last-month | this-year | all
        search:              substring over name / project / description
        status:              all | pending | in-progress | completed
        project:             all | exact project name
        intervention_status: all | approved | rejected | pending
        table_time:          all | today (table only)
    """
    identity = _resolve_identity(x_user_id, x_user_role)
    state = _filter_state(
        search_term=search, status_filter=status, project_filter=project,
        time_range=time_range, table_time_filter=table_time,
        intervention_status_filter=intervention_status,
    )
    now = datetime.now()

    tasks, tasks_err = _load_tasks()
    tasks = taskdash_core.apply_time_range(tasks, state.time_range, now)
    interventions, int_err = _load_interventions(state.time_range, now)

    payload = compute_dashboard(tasks, interventions, state, identity["id"], now=now)
    payload["tasks_per_project"] = taskdash_core.tasks_per_project(tasks)
    payload["user"] = identity
    return _with_warnings(payload, tasks_err, int_err)


@app.get("/api/user-dashboard")
async def user_dashboard_endpoint(search: str | None = None, status: str | None = None,
                                  page: int = 1, per_page: int = config.DEFAULT_PER_PAGE,
                                  x_user_id: str | None = Header(default=None),
                                  x_user_role: str | None = Header(default=None)):
    """The caller's own tasks, counts and a paginated task list."""
    identity = _resolve_identity(x_user_id, x_user_role)
    state = _filter_state(search_term=search, status_filter=status)

    tasks, tasks_err = _load_tasks()
    result = compute_user_dashboard(tasks, identity["id"], state.search_term, state.status_filter)
    payload = {
        "user": identity,
        "my_pending_tasks": result["my_pending_tasks"],
        "my_in_progress_tasks": result["my_in_progress_tasks"],
        "my_completed_tasks": result["my_completed_tasks"],
        "chart_data": result["chart_data"],
        "active_tasks": paginate(result["tasks"], page, per_page),
    }
    return _with_warnings(payload, tasks_err)


@app.get("/api/dashboard/export")
async def dashboard_export(format: str = "json", time_range: str | None = None,
                           search: str | None = None, status: str | None = None,
                           project: str | None = None):
    """Download the filtered task list as JSON or CSV."""
    fmt = (format or "").strip().lower()
    if fmt not in config.EXPORT_FORMATS:
        raise HTTPException(status_code=400, detail=f"Unsupported export format: {format}")

    state = _filter_state(search_term=search, status_filter=status,
                          project_filter=project, time_range=time_range)
    now = datetime.now()
    tasks, tasks_err = _load_tasks()
    if tasks_err and not tasks:
        raise HTTPException(status_code=404, detail="No data available")

    tasks = taskdash_core.apply_time_range(tasks, state.time_range, now)
    body = serialize(filter_tasks(tasks, state), fmt, now=now)
    filename = export_filename(fmt, now)
    logger.info("Exporting %s as %s", filename, fmt)

    return StreamingResponse(
        iter([body]),
        media_type=EXPORT_MEDIA_TYPES[fmt],
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@app.get("/api/projects")
async def get_projects():
    tasks, tasks_err = _load_tasks()
    return _with_warnings({"projects": projects_of(tasks)}, tasks_err)


@app.get("/api/health")
async def health():
    return {
        "status": "ok",
        "tasks_json": get_file_info(config.TASKS_JSON),
        "interventions_csv": get_file_info(config.INTERVENTIONS_CSV),
        "interventions_summary_json": get_file_info(config.INTERVENTIONS_SUMMARY_JSON),
    }


# ── Static files (frontend), mounted last so API routes take priority ──
FRONTEND_DIR = Path(__file__).resolve().parent.parent / "frontend"
if FRONTEND_DIR.is_dir():
    app.mount("/", StaticFiles(directory=str(FRONTEND_DIR), html=True), name="frontend")


def main():
    logger.info("Starting Task Dashboard on http://localhost:%s", config.PORT)
    logger.info("Tasks path: %s", config.TASKS_JSON)
    uvicorn.run(app, host=config.HOST, port=config.PORT, log_level="info")


if __name__ == "__main__":
    # Allow running as `python -m taskdash.backend.server` or directly
    sys.path.insert(0, str(Path(__file__).resolve().parent.parent.parent))
    main()
