"""
JSON exporter: pretty-printed, depth-bounded output of a single object.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from .. import __version__
from ..config import JSON_EXPORT_DEPTH
from .csv_export import ExportError


def limit_depth(value: Any, depth: int = JSON_EXPORT_DEPTH) -> Any:
    """
    Containers nested deeper than `depth` are replaced by their string form.
    The top-level object is depth 0.
    """
    def walk(obj: Any, level: int) -> Any:
        if isinstance(obj, dict):
            if level >= depth:
                return str(obj)
            return {str(k): walk(v, level + 1) for k, v in obj.items()}
        if isinstance(obj, (list, tuple, set)):
            if level >= depth:
                return str(list(obj))
            return [walk(v, level + 1) for v in obj]
        return obj

    return walk(value, 0)


def export_json(data: Any, path: Path, depth: int = JSON_EXPORT_DEPTH) -> Path:
    """
    Write one object to a JSON file.

    Returns:
        Path to the created JSON file.
    """
    path = Path(path)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w", encoding="utf-8") as fh:
            json.dump(limit_depth(data, depth), fh, indent=2, default=str, ensure_ascii=False)
    except OSError as e:
        raise ExportError(path, str(e)) from e
    return path


def export_run_summary(
    context,
    path: Path,
    guardian=None,
    client_stats: list[dict] | None = None,
    outcomes: list | None = None,
) -> Path:
    """Run report plus guard audit and client statistics."""
    payload = {
        "metadata": {
            "tool": "M365 Admin Toolkit",
            "version": __version__,
            "generated_utc": datetime.now(timezone.utc).isoformat(),
        },
        "tenant": vars(context.tenant) if context.tenant else None,
        "report": context.report.to_dict(),
        "client_stats": client_stats or [],
    }
    if guardian is not None:
        payload.update(guardian.get_audit_record())
    if outcomes:
        payload["outcomes"] = [o.to_dict() for o in outcomes]
    return export_json(payload, path)
