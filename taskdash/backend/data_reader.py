"""Task / intervention source loading with mtime-based caching."""

import json
import logging
import os
from datetime import datetime
from pathlib import Path
from typing import Any

import pandas as pd

logger = logging.getLogger(__name__)

# ── mtime cache ──
_cache: dict[str, dict[str, Any]] = {}


def clear_cache() -> None:
    _cache.clear()


def _read_with_cache(path: Path, parser):
    """Return cached data if file mtime hasn't changed, else re-parse."""
    key = str(path)
    try:
        mtime = os.path.getmtime(path)
    except OSError:
        logger.warning("File not found: %s", path)
        return None, f"File not found: {path.name}"

    cached = _cache.get(key)
    if cached and cached["mtime"] == mtime:
        return cached["data"], None

    try:
        data = parser(path)
    except Exception as e:
        logger.exception("Error reading %s", path)
        # Return last cached data if available
        if cached:
            return cached["data"], f"Using stale cache: {e}"
        return None, str(e)

    _cache[key] = {"mtime": mtime, "data": data}
    return data, None


def load_json(path: Path) -> tuple[Any, str | None]:
    """Load a JSON document (list or object). Returns (data, error)."""
    def parser(p):
        with open(p, "r", encoding="utf-8") as f:
            return json.load(f)
    return _read_with_cache(path, parser)


def load_csv(path: Path) -> tuple[pd.DataFrame | None, str | None]:
    """Load a CSV as a string-typed DataFrame. Returns (frame, error)."""
    def parser(p):
        return pd.read_csv(p, encoding="utf-8-sig", dtype=str, keep_default_na=False)
    return _read_with_cache(path, parser)


def get_file_info(path: Path) -> dict:
    """Return mtime and existence info for health checks."""
    try:
        stat = os.stat(path)
        return {
            "exists": True,
            "mtime": datetime.fromtimestamp(stat.st_mtime).isoformat(),
            "size_bytes": stat.st_size,
        }
    except OSError:
        return {"exists": False, "mtime": None, "size_bytes": 0}
