"""
SharePoint Sites Collector
"""

from __future__ import annotations

from ..models import RunContext, SiteRecord
from .base import BaseCollector, CollectorResult


class SitesCollector(BaseCollector):
    name = "sites"
    description = "SharePoint site collections"
    output_prefix = "SharePointSites"

    async def collect(self, result: CollectorResult, context: RunContext):
        sites = await self.page(
            "sites/getAllSites",
            result,
            context,
            params={"$select": "id,displayName,name,webUrl,createdDateTime,lastModifiedDateTime"},
            top=self.query.page_size,
            transform=SiteRecord.from_api,
        )
        if self.query.domain:
            # Site URLs use the tenant's SharePoint host, not the mail domain;
            # filter on the leading label (contoso.com -> contoso.sharepoint.com)
            host_label = self.query.domain.split(".")[0]
            sites = [s for s in sites if f"//{host_label}." in s.web_url
                     or f"//{host_label}-my." in s.web_url]
        result.extend(sites)
