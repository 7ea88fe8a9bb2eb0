"""
Azure Subscriptions Collector (Resource Manager surface).
"""

from __future__ import annotations

from ..models import RunContext, SubscriptionRecord
from .base import BaseCollector, CollectorResult


class SubscriptionsCollector(BaseCollector):
    name = "subscriptions"
    description = "Azure subscriptions visible to the principal"
    output_prefix = "AzureSubscriptions"

    async def collect(self, result: CollectorResult, context: RunContext):
        subscriptions = await self.page(
            "subscriptions",
            result,
            context,
            transform=SubscriptionRecord.from_api,
        )
        result.extend(subscriptions)
