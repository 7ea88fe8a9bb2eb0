"""
Role Assignments Collector
Directory role assignments (unified RBAC API) with principal and role
definition expanded.
"""

from __future__ import annotations

from ..models import RoleAssignmentRecord, RunContext
from .base import BaseCollector, CollectorResult


class RoleAssignmentsCollector(BaseCollector):
    name = "roles"
    description = "Directory role assignments"
    output_prefix = "RoleAssignments"

    async def collect(self, result: CollectorResult, context: RunContext):
        assignments = await self.page(
            "roleManagement/directory/roleAssignments",
            result,
            context,
            params={"$expand": "principal,roleDefinition"},
            skip_top=True,  # $top is not supported together with $expand here
            transform=RoleAssignmentRecord.from_api,
        )
        if self.query.domain:
            suffix = f"@{self.query.domain}"
            assignments = [
                a for a in assignments
                if not a.principal_upn or a.principal_upn.lower().endswith(suffix)
            ]
        result.extend(assignments)
