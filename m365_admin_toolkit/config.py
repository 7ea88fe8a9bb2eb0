"""
Configuration module for the M365 Admin Toolkit.
Defines API surfaces, retry/pagination tuning, and operational settings.
"""

from __future__ import annotations

import os
import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional
from datetime import datetime


# ─── Tenant Authentication ───────────────────────────────────────────────────

@dataclass
class CertificateAuth:
    """Certificate-based app-only authentication configuration."""
    tenant_id: str
    client_id: str
    certificate_path: str          # Path to base64-encoded PFX
    certificate_password: str = "" # Will be prompted if empty


@dataclass
class SecretAuth:
    """Client-secret app-only authentication configuration."""
    tenant_id: str
    client_id: str
    client_secret: str = ""        # Falls back to M365_CLIENT_SECRET


@dataclass
class DelegatedAuth:
    """Delegated (device code) authentication configuration."""
    tenant_id: str
    client_id: str


@dataclass
class AuthConfig:
    """Authentication configuration: certificate, secret or delegated."""
    mode: str = "certificate"
    certificate: Optional[CertificateAuth] = None
    secret: Optional[SecretAuth] = None
    delegated: Optional[DelegatedAuth] = None

    @property
    def tenant_id(self) -> str:
        active = {
            "certificate": self.certificate,
            "secret": self.secret,
            "delegated": self.delegated,
        }.get(self.mode)
        return active.tenant_id if active else ""


AUTH_MODES = ("certificate", "secret", "delegated")


# ─── API Surfaces ────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class ApiSurface:
    """A REST surface with its own token audience and paging conventions."""
    name: str
    base_url: str
    scope: str
    version_prefix: str = ""       # Path prefix, e.g. "v1.0"
    records_key: str = "value"
    next_link_key: str = "@odata.nextLink"
    max_page_size: int = 999
    page_size_param: Optional[str] = "$top"
    api_version: str = ""          # Query parameter for ARM

    def build_url(self, endpoint: str) -> str:
        if endpoint.startswith("http"):
            return endpoint
        endpoint = endpoint.lstrip("/")
        if self.version_prefix:
            return f"{self.base_url}/{self.version_prefix}/{endpoint}"
        return f"{self.base_url}/{endpoint}"


GRAPH = ApiSurface(
    name="graph",
    base_url="https://graph.microsoft.com",
    scope="https://graph.microsoft.com/.default",
    version_prefix="v1.0",
)

GRAPH_BETA = ApiSurface(
    name="graph-beta",
    base_url="https://graph.microsoft.com",
    scope="https://graph.microsoft.com/.default",
    version_prefix="beta",
)

AZURE_ARM = ApiSurface(
    name="arm",
    base_url="https://management.azure.com",
    scope="https://management.azure.com/.default",
    next_link_key="nextLink",
    max_page_size=1000,
    page_size_param=None,           # ARM pages server-side
    api_version="2022-12-01",
)

POWER_BI = ApiSurface(
    name="powerbi",
    base_url="https://api.powerbi.com",
    scope="https://analysis.windows.net/powerbi/api/.default",
    version_prefix="v1.0/myorg",
    max_page_size=5000,
)


# Rate limiting / throttling
MAX_RETRIES = 5                   # Retries after the first attempt
BASE_BACKOFF_SECONDS = 10.0       # Wait = attempt * base, or Retry-After if larger
TRANSIENT_STATUS_CODES = (429, 503, 504)

# Pagination
DEFAULT_PAGE_SIZE = 999           # Maximum items per page ($top)
MAX_PAGES_PER_QUERY = 10000       # Safety cap on pagination loops

# Bulk mutation pacing (seconds)
MUTATION_DELAY_RANGE = (0.5, 0.8)

# Export
JSON_EXPORT_DEPTH = 6
LIST_JOIN_DELIMITER = ";"


# ─── Fetch Settings ─────────────────────────────────────────────────────────

@dataclass
class FetchConfig:
    """Controls for retrying and paging."""
    max_retries: int = MAX_RETRIES
    base_backoff_seconds: float = BASE_BACKOFF_SECONDS
    page_size: int = DEFAULT_PAGE_SIZE
    max_pages: int = MAX_PAGES_PER_QUERY
    timeout_seconds: float = 60.0


# ─── Output Configuration ───────────────────────────────────────────────────

@dataclass
class OutputConfig:
    """Output directory and file naming settings."""
    base_dir: str = ""
    timestamp_style: str = "minute"   # "minute" or "second"
    log_file: str = ""

    def __post_init__(self):
        if not self.base_dir:
            self.base_dir = os.path.join(os.getcwd(), "m365_admin_output")
        if not self.log_file:
            stamp = datetime.now().strftime("%Y%m%d")
            self.log_file = os.path.join(self.base_dir, f"m365_admin_{stamp}.log")

    @property
    def output_dir(self) -> Path:
        return Path(self.base_dir)


# ─── Master Configuration ───────────────────────────────────────────────────

@dataclass
class ToolkitConfig:
    """Top-level configuration for a toolkit run."""
    auth: AuthConfig = field(default_factory=AuthConfig)
    fetch: FetchConfig = field(default_factory=FetchConfig)
    output: OutputConfig = field(default_factory=OutputConfig)
    verbose: bool = False

    @classmethod
    def from_file(cls, path: str) -> "ToolkitConfig":
        """Load configuration from a JSON file."""
        with open(path, "r") as f:
            data = json.load(f)
        config = cls()
        if "auth" in data:
            auth_data = data["auth"]
            config.auth.mode = auth_data.get("mode", "certificate")
            if "certificate" in auth_data:
                c = auth_data["certificate"]
                config.auth.certificate = CertificateAuth(
                    tenant_id=c["tenant_id"],
                    client_id=c["client_id"],
                    certificate_path=c.get("certificate_path", "./base64.txt"),
                    certificate_password=c.get("certificate_password", ""),
                )
            if "secret" in auth_data:
                s = auth_data["secret"]
                config.auth.secret = SecretAuth(
                    tenant_id=s["tenant_id"],
                    client_id=s["client_id"],
                    client_secret=s.get("client_secret", ""),
                )
            if "delegated" in auth_data:
                d = auth_data["delegated"]
                config.auth.delegated = DelegatedAuth(
                    tenant_id=d["tenant_id"],
                    client_id=d["client_id"],
                )
        if "fetch" in data:
            for k, v in data["fetch"].items():
                if hasattr(config.fetch, k):
                    setattr(config.fetch, k, v)
        if "output" in data:
            for k, v in data["output"].items():
                if hasattr(config.output, k):
                    setattr(config.output, k, v)
        config.verbose = data.get("verbose", False)
        return config

    def apply_environment(self, environ: Optional[dict] = None) -> None:
        """Fill missing credentials from M365_* environment variables."""
        env = os.environ if environ is None else environ
        tenant_id = env.get("M365_TENANT_ID", "")
        client_id = env.get("M365_CLIENT_ID", "")
        if self.auth.mode == "secret":
            if not self.auth.secret and tenant_id and client_id:
                self.auth.secret = SecretAuth(tenant_id=tenant_id, client_id=client_id)
            if self.auth.secret and not self.auth.secret.client_secret:
                self.auth.secret.client_secret = env.get("M365_CLIENT_SECRET", "")
        elif self.auth.mode == "delegated":
            if not self.auth.delegated and tenant_id and client_id:
                self.auth.delegated = DelegatedAuth(tenant_id=tenant_id, client_id=client_id)
        else:
            if not self.auth.certificate and tenant_id and client_id:
                self.auth.certificate = CertificateAuth(
                    tenant_id=tenant_id,
                    client_id=client_id,
                    certificate_path=env.get("M365_CERT_PATH", "./base64.txt"),
                )
            if self.auth.certificate and not self.auth.certificate.certificate_password:
                self.auth.certificate.certificate_password = env.get("M365_CERT_PASSWORD", "")


# ─── Required Permissions (Least Privilege per task) ────────────────────────

REQUIRED_SCOPES = {
    "accounts": ["User.Read.All", "Directory.Read.All"],
    "teams": ["Group.Read.All", "TeamSettings.Read.All"],
    "sites": ["Sites.Read.All"],
    "roles": ["RoleManagement.Read.Directory", "Directory.Read.All"],
    "subscriptions": ["https://management.azure.com/user_impersonation"],
    "usage": ["Reports.Read.All"],
    "powerbi": ["https://analysis.windows.net/powerbi/api/Workspace.Read.All"],
    "disable": ["User.ReadWrite.All"],
    "delete": ["User.ReadWrite.All"],
    "revoke": ["User.RevokeSessions.All", "User.Read.All"],
}
