"""
Tenant Accounts Collector
Enumerates users (optionally by UPN domain) and labels each account with
its status before it enters the Result Set.
"""

from __future__ import annotations

import logging

from ..analyzers.account_status import classify_user, summarize_statuses
from ..models import RunContext, UserRecord
from ..query import users_filter
from .base import BaseCollector, CollectorResult

logger = logging.getLogger("m365_admin_toolkit.collectors.accounts")

USER_SELECT_FIELDS = (
    "id,displayName,userPrincipalName,mail,accountEnabled,"
    "assignedLicenses,givenName,surname,jobTitle,department,"
    "userType,createdDateTime,proxyAddresses"
)


class AccountsCollector(BaseCollector):
    name = "accounts"
    description = "Tenant accounts with license and status classification"
    output_prefix = "TenantAccounts"

    async def collect(self, result: CollectorResult, context: RunContext):
        params = {"$select": USER_SELECT_FIELDS}
        if self.query.domain:
            params["$filter"] = users_filter(self.query.domain)
            params["$count"] = "true"  # endsWith needs an advanced query

        users = await self.page(
            "users",
            result,
            context,
            params=params,
            top=self.query.page_size,
            transform=lambda item: classify_user(UserRecord.from_api(item)),
        )
        result.extend(users)

        counts = summarize_statuses(users)
        context.report.status_counts = counts
        logger.info(
            "[accounts] " + ", ".join(f"{k}: {v}" for k, v in counts.items())
        )
