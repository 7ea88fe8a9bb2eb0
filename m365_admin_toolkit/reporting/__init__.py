"""Reporting package: CSV and JSON export sinks."""

from .csv_export import (
    ExportError,
    build_output_path,
    export_mutation_outcomes,
    export_records_csv,
    read_user_list,
)
from .json_export import export_json, export_run_summary, limit_depth

__all__ = [
    "ExportError",
    "build_output_path",
    "export_mutation_outcomes",
    "export_records_csv",
    "read_user_list",
    "export_json",
    "export_run_summary",
    "limit_depth",
]
