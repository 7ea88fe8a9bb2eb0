from ..config import AZURE_ARM, GRAPH, GRAPH_BETA, POWER_BI
from .base import BaseCollector, CollectorResult
from .accounts import AccountsCollector
from .teams import TeamsCollector
from .sites import SitesCollector
from .roles import RoleAssignmentsCollector
from .subscriptions import SubscriptionsCollector
from .usage import UsageReportCollector
from .powerbi import PowerBIWorkspacesCollector

# kind -> (collector class, API surface it talks to)
COLLECTORS = {
    "accounts": (AccountsCollector, GRAPH),
    "teams": (TeamsCollector, GRAPH),
    "sites": (SitesCollector, GRAPH),
    "roles": (RoleAssignmentsCollector, GRAPH),
    "subscriptions": (SubscriptionsCollector, AZURE_ARM),
    "usage": (UsageReportCollector, GRAPH_BETA),
    "powerbi": (PowerBIWorkspacesCollector, POWER_BI),
}

__all__ = [
    "BaseCollector",
    "CollectorResult",
    "AccountsCollector",
    "TeamsCollector",
    "SitesCollector",
    "RoleAssignmentsCollector",
    "SubscriptionsCollector",
    "UsageReportCollector",
    "PowerBIWorkspacesCollector",
    "COLLECTORS",
]
