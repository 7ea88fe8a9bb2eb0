"""
Record models: typed API resources decoded once at the boundary, plus the
run-scoped context and report objects.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field, asdict
from typing import Any, Optional

from .config import LIST_JOIN_DELIMITER


def join_values(values: Optional[list]) -> str:
    """Flatten a list of scalars for tabular export."""
    if not values:
        return ""
    return LIST_JOIN_DELIMITER.join(str(v) for v in values if v not in (None, ""))


def is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


# ─── API Records ────────────────────────────────────────────────────────────

@dataclass
class UserRecord:
    """Entra ID user, flattened for export."""
    id: str
    user_principal_name: str = ""
    display_name: str = ""
    mail: Optional[str] = None
    account_enabled: bool = True
    has_license: bool = False
    license_count: int = 0
    given_name: Optional[str] = None
    surname: Optional[str] = None
    job_title: Optional[str] = None
    department: Optional[str] = None
    user_type: str = "Member"
    created: Optional[str] = None
    aliases: list[str] = field(default_factory=list)
    status: str = ""

    @classmethod
    def from_api(cls, item: dict) -> "UserRecord":
        licenses = item.get("assignedLicenses") or []
        aliases = [
            p.split(":", 1)[1]
            for p in (item.get("proxyAddresses") or [])
            if p.lower().startswith("smtp:")
        ]
        return cls(
            id=item.get("id", ""),
            user_principal_name=item.get("userPrincipalName") or "",
            display_name=item.get("displayName") or "",
            mail=item.get("mail"),
            account_enabled=bool(item.get("accountEnabled", True)),
            has_license=bool(licenses),
            license_count=len(licenses),
            given_name=item.get("givenName"),
            surname=item.get("surname"),
            job_title=item.get("jobTitle"),
            department=item.get("department"),
            user_type=item.get("userType") or "Member",
            created=item.get("createdDateTime"),
            aliases=aliases,
        )

    def to_row(self) -> dict:
        return {
            "Id": self.id,
            "UserPrincipalName": self.user_principal_name,
            "DisplayName": self.display_name,
            "Mail": self.mail or "",
            "AccountEnabled": self.account_enabled,
            "HasLicense": self.has_license,
            "LicenseCount": self.license_count,
            "GivenName": self.given_name or "",
            "Surname": self.surname or "",
            "JobTitle": self.job_title or "",
            "Department": self.department or "",
            "UserType": self.user_type,
            "Created": self.created or "",
            "Aliases": join_values(self.aliases),
            "Status": self.status,
        }


@dataclass
class TeamRecord:
    """Microsoft 365 group provisioned as a Team."""
    id: str
    display_name: str = ""
    mail: Optional[str] = None
    visibility: Optional[str] = None
    created: Optional[str] = None
    description: Optional[str] = None
    owners: list[str] = field(default_factory=list)

    @classmethod
    def from_api(cls, item: dict) -> "TeamRecord":
        return cls(
            id=item.get("id", ""),
            display_name=item.get("displayName") or "",
            mail=item.get("mail"),
            visibility=item.get("visibility"),
            created=item.get("createdDateTime"),
            description=item.get("description"),
        )

    def to_row(self) -> dict:
        return {
            "Id": self.id,
            "DisplayName": self.display_name,
            "Mail": self.mail or "",
            "Visibility": self.visibility or "",
            "Created": self.created or "",
            "Description": self.description or "",
            "Owners": join_values(self.owners),
            "OwnerCount": len(self.owners),
        }


@dataclass
class SiteRecord:
    """SharePoint site collection."""
    id: str
    display_name: str = ""
    name: str = ""
    web_url: str = ""
    created: Optional[str] = None
    last_modified: Optional[str] = None
    is_personal: bool = False

    @classmethod
    def from_api(cls, item: dict) -> "SiteRecord":
        web_url = item.get("webUrl") or ""
        return cls(
            id=item.get("id", ""),
            display_name=item.get("displayName") or "",
            name=item.get("name") or "",
            web_url=web_url,
            created=item.get("createdDateTime"),
            last_modified=item.get("lastModifiedDateTime"),
            is_personal="-my.sharepoint.com/personal/" in web_url,
        )

    def to_row(self) -> dict:
        return {
            "Id": self.id,
            "DisplayName": self.display_name,
            "Name": self.name,
            "WebUrl": self.web_url,
            "Created": self.created or "",
            "LastModified": self.last_modified or "",
            "IsPersonal": self.is_personal,
        }


@dataclass
class RoleAssignmentRecord:
    """Directory role assignment with its resolved principal."""
    id: str
    role_definition_id: str = ""
    role_name: str = ""
    principal_id: str = ""
    principal_display_name: str = ""
    principal_upn: str = ""
    principal_type: str = ""
    scope: str = "/"

    @classmethod
    def from_api(cls, item: dict) -> "RoleAssignmentRecord":
        principal = item.get("principal") or {}
        role = item.get("roleDefinition") or {}
        return cls(
            id=item.get("id", ""),
            role_definition_id=item.get("roleDefinitionId") or "",
            role_name=role.get("displayName") or "",
            principal_id=item.get("principalId") or "",
            principal_display_name=principal.get("displayName") or "",
            principal_upn=principal.get("userPrincipalName") or "",
            principal_type=(principal.get("@odata.type") or "").split(".")[-1],
            scope=item.get("directoryScopeId") or "/",
        )

    def to_row(self) -> dict:
        return {
            "Id": self.id,
            "RoleDefinitionId": self.role_definition_id,
            "RoleName": self.role_name,
            "PrincipalId": self.principal_id,
            "PrincipalDisplayName": self.principal_display_name,
            "PrincipalUpn": self.principal_upn,
            "PrincipalType": self.principal_type,
            "Scope": self.scope,
        }


@dataclass
class SubscriptionRecord:
    """Azure subscription from Resource Manager."""
    subscription_id: str
    display_name: str = ""
    state: str = ""
    tenant_id: str = ""
    quota_id: str = ""
    spending_limit: str = ""

    @classmethod
    def from_api(cls, item: dict) -> "SubscriptionRecord":
        policies = item.get("subscriptionPolicies") or {}
        return cls(
            subscription_id=item.get("subscriptionId", ""),
            display_name=item.get("displayName") or "",
            state=item.get("state") or "",
            tenant_id=item.get("tenantId") or "",
            quota_id=policies.get("quotaId") or "",
            spending_limit=policies.get("spendingLimit") or "",
        )

    def to_row(self) -> dict:
        return {
            "SubscriptionId": self.subscription_id,
            "DisplayName": self.display_name,
            "State": self.state,
            "TenantId": self.tenant_id,
            "QuotaId": self.quota_id,
            "SpendingLimit": self.spending_limit,
        }


@dataclass
class UsageRecord:
    """Row of the Microsoft 365 active user detail report."""
    user_principal_name: str
    display_name: str = ""
    is_deleted: bool = False
    has_exchange_license: bool = False
    has_onedrive_license: bool = False
    has_sharepoint_license: bool = False
    has_teams_license: bool = False
    exchange_last_activity: Optional[str] = None
    onedrive_last_activity: Optional[str] = None
    sharepoint_last_activity: Optional[str] = None
    teams_last_activity: Optional[str] = None
    assigned_products: list[str] = field(default_factory=list)
    report_refresh_date: Optional[str] = None

    @classmethod
    def from_api(cls, item: dict) -> "UsageRecord":
        return cls(
            user_principal_name=item.get("userPrincipalName") or "",
            display_name=item.get("displayName") or "",
            is_deleted=bool(item.get("isDeleted", False)),
            has_exchange_license=bool(item.get("hasExchangeLicense", False)),
            has_onedrive_license=bool(item.get("hasOneDriveLicense", False)),
            has_sharepoint_license=bool(item.get("hasSharePointLicense", False)),
            has_teams_license=bool(item.get("hasTeamsLicense", False)),
            exchange_last_activity=item.get("exchangeLastActivityDate"),
            onedrive_last_activity=item.get("oneDriveLastActivityDate"),
            sharepoint_last_activity=item.get("sharePointLastActivityDate"),
            teams_last_activity=item.get("teamsLastActivityDate"),
            assigned_products=list(item.get("assignedProducts") or []),
            report_refresh_date=item.get("reportRefreshDate"),
        )

    @property
    def last_activity(self) -> str:
        """Most recent activity date across workloads (ISO dates sort lexically)."""
        dates = [
            d for d in (self.exchange_last_activity, self.onedrive_last_activity,
                        self.sharepoint_last_activity, self.teams_last_activity)
            if d
        ]
        return max(dates) if dates else ""

    def to_row(self) -> dict:
        return {
            "UserPrincipalName": self.user_principal_name,
            "DisplayName": self.display_name,
            "IsDeleted": self.is_deleted,
            "HasExchangeLicense": self.has_exchange_license,
            "HasOneDriveLicense": self.has_onedrive_license,
            "HasSharePointLicense": self.has_sharepoint_license,
            "HasTeamsLicense": self.has_teams_license,
            "ExchangeLastActivity": self.exchange_last_activity or "",
            "OneDriveLastActivity": self.onedrive_last_activity or "",
            "SharePointLastActivity": self.sharepoint_last_activity or "",
            "TeamsLastActivity": self.teams_last_activity or "",
            "LastActivity": self.last_activity,
            "AssignedProducts": join_values(self.assigned_products),
            "ReportRefreshDate": self.report_refresh_date or "",
        }


@dataclass
class WorkspaceRecord:
    """Power BI workspace."""
    id: str
    name: str = ""
    type: str = ""
    is_read_only: bool = False
    is_on_dedicated_capacity: bool = False
    capacity_id: str = ""

    @classmethod
    def from_api(cls, item: dict) -> "WorkspaceRecord":
        return cls(
            id=item.get("id", ""),
            name=item.get("name") or "",
            type=item.get("type") or "",
            is_read_only=bool(item.get("isReadOnly", False)),
            is_on_dedicated_capacity=bool(item.get("isOnDedicatedCapacity", False)),
            capacity_id=item.get("capacityId") or "",
        )

    def to_row(self) -> dict:
        return {
            "Id": self.id,
            "Name": self.name,
            "Type": self.type,
            "IsReadOnly": self.is_read_only,
            "IsOnDedicatedCapacity": self.is_on_dedicated_capacity,
            "CapacityId": self.capacity_id,
        }


# ─── Run State ──────────────────────────────────────────────────────────────

@dataclass
class TenantContext:
    """The directory being queried and the principal acting on it."""
    tenant_id: str
    principal: str = ""
    auth_mode: str = ""
    surfaces: list[str] = field(default_factory=list)


@dataclass
class RunReport:
    """Counts and timing for one run; finalized at the end."""
    operation: str = ""
    found: int = 0
    processed: int = 0
    skipped: int = 0
    errored: int = 0
    started_at: float = field(default_factory=time.time)
    completed_at: Optional[float] = None
    output_path: str = ""
    partial: bool = False
    status_counts: dict[str, int] = field(default_factory=dict)

    @property
    def elapsed_seconds(self) -> float:
        end = self.completed_at if self.completed_at is not None else time.time()
        return round(end - self.started_at, 2)

    def finalize(self, output_path: str = "") -> None:
        self.completed_at = time.time()
        if output_path:
            self.output_path = output_path

    def summary_line(self) -> str:
        line = f"Total: {self.found} | Processed: {self.processed} | Skipped: {self.skipped}"
        if self.errored:
            line += f" | Errors: {self.errored}"
        return line

    def to_dict(self) -> dict:
        data = asdict(self)
        data["elapsed_seconds"] = self.elapsed_seconds
        data["summary"] = self.summary_line()
        return data


class RunContext:
    """
    Explicit per-run state handed to every worker.

    Holds the cooperative cancellation flag (polled between pages and
    between records) and the report being built.
    """

    def __init__(self, operation: str = "", tenant: Optional[TenantContext] = None):
        self.report = RunReport(operation=operation)
        self.tenant = tenant
        self._cancel_requested = False

    @property
    def cancel_requested(self) -> bool:
        return self._cancel_requested

    def cancel(self) -> None:
        self._cancel_requested = True

    def mark_partial(self) -> None:
        self.report.partial = True
