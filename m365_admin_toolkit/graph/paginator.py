"""
Paginator: follows continuation tokens until the API runs out of pages.
"""

from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, Optional

from ..config import MAX_PAGES_PER_QUERY
from ..models import RunContext

logger = logging.getLogger("m365_admin_toolkit.graph.paginator")


class PaginationLoopSuspected(Exception):
    """Raised when a continuation repeats or the page cap is exceeded."""
    def __init__(self, operation: str, pages: int, reason: str = ""):
        self.operation = operation
        self.pages = pages
        super().__init__(
            f"Pagination loop suspected for {operation} after {pages} pages"
            + (f": {reason}" if reason else "")
        )


async def paginate(
    fetch_page: Callable[[Optional[Any]], Awaitable[Any]],
    *,
    extract_records: Callable[[Any], list],
    extract_continuation: Callable[[Any], Optional[Any]],
    name: str = "query",
    max_pages: int = MAX_PAGES_PER_QUERY,
    context: Optional[RunContext] = None,
    transform: Optional[Callable[[Any], Any]] = None,
) -> list:
    """
    Collect every record across all pages, in page-delivery order.

    fetch_page(None) returns the first page; fetch_page(token) the next.
    Records are never deduplicated. If `transform` is given it runs on
    each record before it is appended.
    """
    records: list = []
    continuation: Optional[Any] = None
    pages = 0

    while True:
        if context is not None and context.cancel_requested:
            logger.warning(
                f"Cancellation requested; stopping {name} after {pages} pages "
                f"({len(records)} records kept)"
            )
            context.mark_partial()
            break

        if pages >= max_pages:
            raise PaginationLoopSuspected(name, pages, f"page cap {max_pages} exceeded")

        page = await fetch_page(continuation)
        pages += 1

        for item in extract_records(page) or []:
            records.append(transform(item) if transform else item)

        next_continuation = extract_continuation(page)
        if not next_continuation:
            break
        if next_continuation == continuation:
            raise PaginationLoopSuspected(name, pages, "continuation token repeated")
        continuation = next_continuation

    logger.debug(f"{name}: {len(records)} records across {pages} pages")
    return records
