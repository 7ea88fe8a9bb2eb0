"""
Base collector class: turns a QuerySpec into an ordered Result Set.
"""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from typing import Any, Optional

from ..graph.client import GraphClient
from ..graph.retry import PermanentApiError, RetryLimitExceeded
from ..models import RunContext
from ..query import QuerySpec

logger = logging.getLogger("m365_admin_toolkit.collectors")


class CollectorResult:
    """Result Set plus run metadata from one collector."""

    def __init__(self, collector_name: str):
        self.collector_name = collector_name
        self.records: list = []
        self.metadata: dict[str, Any] = {
            "collector": collector_name,
            "started_at": None,
            "completed_at": None,
            "duration_seconds": 0,
            "items_collected": 0,
            "errors": [],
            "warnings": [],
            "endpoints_queried": 0,
        }

    def extend(self, records: list):
        """Append-only: records keep page-delivery order."""
        self.records.extend(records)
        self.metadata["items_collected"] = len(self.records)

    def add_error(self, error: str):
        self.metadata["errors"].append(error)
        logger.error(f"[{self.collector_name}] {error}")

    def add_warning(self, warning: str):
        self.metadata["warnings"].append(warning)
        logger.warning(f"[{self.collector_name}] {warning}")

    def rows(self) -> list[dict]:
        return [r.to_row() for r in self.records]


class BaseCollector(ABC):
    """
    Abstract base class for all collectors.

    Subclasses implement collect() to page through the API. The base class
    provides timing, report counts and per-record error accounting. A
    failure of the discovery query itself propagates and aborts the run.
    """

    name: str = "base"
    description: str = "Base collector"
    output_prefix: str = "Export"

    def __init__(self, graph: GraphClient, query: QuerySpec):
        self.graph = graph
        self.query = query

    async def execute(self, context: RunContext) -> CollectorResult:
        """Execute the collector with timing and report bookkeeping."""
        result = CollectorResult(self.name)
        result.metadata["started_at"] = time.time()
        logger.info(f"[{self.name}] Starting collection...")

        await self.collect(result, context)

        report = context.report
        report.found = len(result.records)
        report.processed = len(result.records) - report.errored
        result.metadata["completed_at"] = time.time()
        result.metadata["duration_seconds"] = round(
            result.metadata["completed_at"] - result.metadata["started_at"], 2
        )
        logger.info(
            f"[{self.name}] Completed in {result.metadata['duration_seconds']}s: "
            f"{result.metadata['items_collected']} records"
            + (" (partial, cancelled)" if report.partial else "")
        )
        return result

    @abstractmethod
    async def collect(self, result: CollectorResult, context: RunContext):
        """
        Implement data collection logic.
        Add records via result.extend(records).
        """
        raise NotImplementedError

    async def page(self, endpoint: str, result: CollectorResult, context: RunContext,
                   **kwargs) -> list:
        """Page through a discovery endpoint; errors propagate."""
        result.metadata["endpoints_queried"] += 1
        return await self.graph.get_all_pages(endpoint, context=context, **kwargs)

    async def per_record(self, endpoint: str, result: CollectorResult, context: RunContext,
                         **kwargs) -> Optional[list]:
        """
        Per-record lookup. Permanent or exhausted-retry failures are logged
        and counted; the caller keeps the record and moves on.
        """
        try:
            result.metadata["endpoints_queried"] += 1
            return await self.graph.get_all_pages(endpoint, **kwargs)
        except (PermanentApiError, RetryLimitExceeded) as e:
            context.report.errored += 1
            result.add_error(f"Failed to query {endpoint}: {e}")
            return None
