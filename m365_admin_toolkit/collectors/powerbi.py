"""
Power BI Workspaces Collector (Power BI REST surface).
"""

from __future__ import annotations

from ..models import RunContext, WorkspaceRecord
from .base import BaseCollector, CollectorResult


class PowerBIWorkspacesCollector(BaseCollector):
    name = "powerbi"
    description = "Power BI workspaces visible to the principal"
    output_prefix = "PowerBIWorkspaces"

    async def collect(self, result: CollectorResult, context: RunContext):
        if self.query.domain:
            result.add_warning("Workspaces have no domain; --domain is ignored")
        workspaces = await self.page(
            "groups",
            result,
            context,
            skip_top=True,  # A $top here truncates instead of paging
            transform=WorkspaceRecord.from_api,
        )
        result.extend(workspaces)
