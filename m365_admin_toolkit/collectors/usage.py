"""
Usage Report Collector
Microsoft 365 active user detail for a reporting period (D7/D30/D90/D180).
The report endpoint is a function call: it takes no $top or $filter, so
the domain filter is applied to the returned rows.
"""

from __future__ import annotations

from ..models import RunContext, UsageRecord
from ..query import DEFAULT_REPORT_PERIOD
from .base import BaseCollector, CollectorResult


class UsageReportCollector(BaseCollector):
    name = "usage"
    description = "Microsoft 365 active user detail report"
    output_prefix = "UsageReport"

    async def collect(self, result: CollectorResult, context: RunContext):
        period = self.query.period or DEFAULT_REPORT_PERIOD
        # JSON output is only served by the beta endpoint
        rows = await self.page(
            f"reports/getOffice365ActiveUserDetail(period='{period}')",
            result,
            context,
            params={"$format": "application/json"},
            skip_top=True,
            transform=UsageRecord.from_api,
        )
        if self.query.domain:
            suffix = f"@{self.query.domain}"
            rows = [r for r in rows if r.user_principal_name.lower().endswith(suffix)]
        if rows and all("@" not in r.user_principal_name for r in rows):
            result.add_warning(
                "User names in the usage report look concealed; turn off "
                "'Display concealed user names' in the admin center reports settings"
            )
        result.extend(rows)
