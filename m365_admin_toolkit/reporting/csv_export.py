"""
CSV exporter: writes a Result Set as one row per record.
"""

from __future__ import annotations

import csv
import re
from datetime import datetime
from pathlib import Path
from typing import Iterable, Optional

from ..config import LIST_JOIN_DELIMITER
from ..safety.preflight import SetupError

TIMESTAMP_STYLES = {
    "minute": "%Y%m%d-%H%M",
    "second": "%Y%m%d_%H%M%S",
}


class ExportError(Exception):
    """Output file could not be written; data would be lost."""
    def __init__(self, path, reason: str):
        self.path = str(path)
        super().__init__(f"Failed to write {path}: {reason}")


def _safe_label(value: str) -> str:
    return re.sub(r"[^A-Za-z0-9._-]+", "_", value).strip("_") or "Tenant"


def build_output_path(
    output_dir: Path,
    prefix: str,
    tenant_or_domain: str,
    style: str = "minute",
    extension: str = "csv",
    now: Optional[datetime] = None,
) -> Path:
    """<Prefix>_<TenantOrDomain>_<timestamp>.<extension>"""
    fmt = TIMESTAMP_STYLES.get(style)
    if fmt is None:
        raise ValueError(f"Unknown timestamp style: {style}")
    stamp = (now or datetime.now()).strftime(fmt)
    return Path(output_dir) / f"{prefix}_{_safe_label(tenant_or_domain)}_{stamp}.{extension}"


def collect_fieldnames(rows: Iterable[dict]) -> list[str]:
    """Union of keys in the order they are first encountered."""
    seen: dict[str, None] = {}
    for row in rows:
        for key in row:
            seen.setdefault(key, None)
    return list(seen)


def _flatten(value):
    if isinstance(value, (list, tuple, set)):
        return LIST_JOIN_DELIMITER.join(str(v) for v in value)
    if value is None:
        return ""
    return value


def export_records_csv(rows: list[dict], path: Path) -> Path:
    """
    Write rows to CSV. The header is every field name in first-seen order;
    list values are joined with ';'.

    Returns:
        Path to the created CSV file.
    """
    path = Path(path)
    fieldnames = collect_fieldnames(rows)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w", newline="", encoding="utf-8-sig") as fh:
            writer = csv.DictWriter(fh, fieldnames=fieldnames, restval="")
            writer.writeheader()
            for row in rows:
                writer.writerow({k: _flatten(v) for k, v in row.items()})
    except OSError as e:
        raise ExportError(path, str(e)) from e
    return path


def export_mutation_outcomes(outcomes: list, path: Path) -> Path:
    """Per-record outcomes of a bulk action."""
    return export_records_csv([o.to_row() for o in outcomes], path)


def read_user_list(path: Path) -> list[str]:
    """
    Read target UPNs from a CSV with a UserPrincipalName column, or a plain
    one-per-line list. Blank lines and duplicates are dropped, order kept.
    """
    path = Path(path)
    try:
        with open(path, "r", newline="", encoding="utf-8-sig") as fh:
            sample = fh.read()
    except OSError as e:
        raise SetupError(
            f"Cannot read input list {path}: {e}",
            remedy="Check the --input-csv path and its read permissions",
        ) from e

    lines = [line for line in sample.splitlines() if line.strip()]
    if not lines:
        return []

    header = [h.strip() for h in next(csv.reader([lines[0]]))]
    column = next(
        (h for h in header if h.lower() in ("userprincipalname", "upn")),
        None,
    )
    if column is not None:
        reader = csv.DictReader(lines[1:], fieldnames=header)
        values = [(row.get(column) or "").strip() for row in reader]
    else:
        values = [line.strip() for line in lines]

    return list(dict.fromkeys(v for v in values if v))
