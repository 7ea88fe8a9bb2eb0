"""
Teams Collector
Enumerates Microsoft 365 groups provisioned as Teams, with their owners.
"""

from __future__ import annotations

import logging

from ..models import RunContext, TeamRecord
from .base import BaseCollector, CollectorResult

logger = logging.getLogger("m365_admin_toolkit.collectors.teams")


class TeamsCollector(BaseCollector):
    name = "teams"
    description = "Teams inventory with owners"
    output_prefix = "TeamsInventory"

    async def collect(self, result: CollectorResult, context: RunContext):
        teams = await self.page(
            "groups",
            result,
            context,
            params={
                "$filter": "resourceProvisioningOptions/Any(x:x eq 'Team')",
                "$select": "id,displayName,mail,visibility,createdDateTime,description",
            },
            top=self.query.page_size,
            transform=TeamRecord.from_api,
        )

        # Owners are one call per team, one at a time
        for team in teams:
            if context.cancel_requested:
                context.mark_partial()
                logger.warning("[teams] Cancellation requested; owner lookup stopped")
                break
            owners = await self.per_record(
                f"groups/{team.id}/owners",
                result,
                context,
                params={"$select": "id,userPrincipalName,displayName"},
            )
            if owners is not None:
                team.owners = [
                    o.get("userPrincipalName") or o.get("displayName") or o.get("id")
                    for o in owners
                ]

        result.extend(teams)
