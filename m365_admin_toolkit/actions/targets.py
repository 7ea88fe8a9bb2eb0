"""
Target resolution for bulk actions: from a domain query or from a list of
UPNs read from a file.
"""

from __future__ import annotations

import logging
from urllib.parse import quote

from ..collectors.accounts import AccountsCollector, USER_SELECT_FIELDS
from ..collectors.base import CollectorResult
from ..graph.client import GraphClient
from ..graph.retry import PermanentApiError, RetryLimitExceeded
from ..models import RunContext, UserRecord
from ..query import QuerySpec

logger = logging.getLogger("m365_admin_toolkit.actions.targets")


async def targets_from_query(graph: GraphClient, query: QuerySpec,
                             context: RunContext) -> list[UserRecord]:
    """All accounts matching the query, in page order."""
    result = CollectorResult(AccountsCollector.name)
    await AccountsCollector(graph, query).collect(result, context)
    return result.records


async def targets_from_upns(graph: GraphClient, upns: list[str],
                            context: RunContext) -> tuple[list[UserRecord], list[str]]:
    """
    Look up each UPN. Accounts that cannot be resolved are logged, counted
    as errors and returned separately.
    """
    users: list[UserRecord] = []
    unresolved: list[str] = []
    for upn in upns:
        if context.cancel_requested:
            context.mark_partial()
            break
        try:
            item = await graph.get(
                f"users/{quote(upn, safe='@')}",
                params={"$select": USER_SELECT_FIELDS},
            )
        except (PermanentApiError, RetryLimitExceeded) as e:
            context.report.found += 1
            context.report.errored += 1
            unresolved.append(upn)
            logger.error(f"Could not resolve {upn}: {e}")
            continue
        users.append(UserRecord.from_api(item))
    logger.info(f"Resolved {len(users)}/{len(upns)} accounts from input list")
    return users, unresolved
