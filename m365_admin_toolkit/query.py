"""
Query definition: the operator's request, validated once before any
API call and immutable afterwards.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional

from .config import DEFAULT_PAGE_SIZE

COLLECTION_KINDS = ("accounts", "teams", "sites", "roles", "subscriptions", "usage", "powerbi")
MUTATION_ACTIONS = ("disable", "delete", "revoke")
REPORT_PERIODS = ("D7", "D30", "D90", "D180")
DEFAULT_REPORT_PERIOD = "D30"

# Kinds backed by a usage report that takes a period
PERIOD_KINDS = ("usage",)

_DOMAIN_RE = re.compile(
    r"^(?=.{1,253}$)([a-z0-9](?:[a-z0-9-]{0,61}[a-z0-9])?\.)+[a-z]{2,63}$",
    re.IGNORECASE,
)


class QueryValidationError(ValueError):
    """Operator input rejected before execution."""
    pass


@dataclass(frozen=True)
class QuerySpec:
    """What to fetch; built by build_query()."""
    kind: str
    domain: Optional[str] = None
    period: Optional[str] = None
    page_size: int = DEFAULT_PAGE_SIZE


def normalize_domain(domain: str) -> str:
    domain = domain.strip().lower().lstrip("@")
    if not _DOMAIN_RE.match(domain):
        raise QueryValidationError(f"Not a valid domain name: {domain!r}")
    return domain


def build_query(
    kind: str,
    domain: Optional[str] = None,
    period: Optional[str] = None,
    page_size: int = DEFAULT_PAGE_SIZE,
) -> QuerySpec:
    if kind not in COLLECTION_KINDS:
        raise QueryValidationError(
            f"Unknown collection kind {kind!r}; expected one of {', '.join(COLLECTION_KINDS)}"
        )
    if period is not None and kind not in PERIOD_KINDS:
        raise QueryValidationError(
            f"--period only applies to: {', '.join(PERIOD_KINDS)}"
        )
    if kind in PERIOD_KINDS:
        period = (period or DEFAULT_REPORT_PERIOD).upper()
        if period not in REPORT_PERIODS:
            raise QueryValidationError(
                f"Unknown period {period!r}; expected one of {', '.join(REPORT_PERIODS)}"
            )
    if not 1 <= page_size <= DEFAULT_PAGE_SIZE:
        raise QueryValidationError(f"Page size must be between 1 and {DEFAULT_PAGE_SIZE}")
    return QuerySpec(
        kind=kind,
        domain=normalize_domain(domain) if domain else None,
        period=period,
        page_size=page_size,
    )


def users_filter(domain: str) -> str:
    """OData filter for users whose UPN ends with @domain (advanced query)."""
    return f"endsWith(userPrincipalName,'@{domain}')"
