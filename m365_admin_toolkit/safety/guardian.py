"""
Safety Guardian: every outbound request is validated here.

The guardian starts read-only. Write requests are only allowed after the
operator has confirmed a bulk action, and then only against the endpoints
that action needs.
"""

from __future__ import annotations

import logging
import re
from datetime import datetime, timezone
from typing import Iterable, Optional

logger = logging.getLogger("m365_admin_toolkit.safety")

# ─── Method Classes ──────────────────────────────────────────────────────────

READ_METHODS = {"GET", "HEAD", "OPTIONS"}
WRITE_METHODS = {"POST", "PUT", "PATCH", "DELETE"}

_USER = r"/users/[^/?]+"

# Write endpoints permitted per bulk action once armed
ACTION_ENDPOINTS: dict[str, list[tuple[str, re.Pattern]]] = {
    "disable": [("PATCH", re.compile(_USER + r"$"))],
    "delete": [("DELETE", re.compile(_USER + r"$"))],
    "revoke": [("POST", re.compile(_USER + r"/revokeSignInSessions$", re.IGNORECASE))],
}


class SafetyViolation(Exception):
    """Raised when a write is attempted that the guardian has not allowed."""
    pass


class SafetyGuardian:
    """
    Validates every outbound HTTP request.
    Maintains an audit log of checks, allowed writes and violations.
    """

    def __init__(self):
        self.violations: list[dict] = []
        self.writes_allowed: int = 0
        self.checks_performed: int = 0
        self.armed_actions: set[str] = set()
        self.started_at: str = datetime.now(timezone.utc).isoformat()

    def arm(self, actions: Iterable[str]) -> None:
        """Permit the write endpoints of the given actions (after confirmation)."""
        for action in actions:
            if action not in ACTION_ENDPOINTS:
                raise ValueError(f"Unknown bulk action: {action}")
            self.armed_actions.add(action)
        logger.warning(f"Write access armed for: {', '.join(sorted(self.armed_actions))}")

    def disarm(self) -> None:
        self.armed_actions.clear()

    @property
    def mode(self) -> str:
        return "READ-WRITE" if self.armed_actions else "READ-ONLY"

    def validate_request(self, method: str, url: str, body: Optional[dict] = None) -> bool:
        """
        Validate a request.
        Returns True if allowed, raises SafetyViolation if not.
        """
        self.checks_performed += 1
        method_upper = method.upper()
        path = url.split("?", 1)[0]

        if method_upper in READ_METHODS:
            return True

        for action in self.armed_actions:
            for allowed_method, pattern in ACTION_ENDPOINTS[action]:
                if method_upper == allowed_method and pattern.search(path):
                    self.writes_allowed += 1
                    return True

        if method_upper in WRITE_METHODS:
            reason = (
                "Write method blocked (guardian not armed)"
                if not self.armed_actions
                else "Write endpoint outside armed actions"
            )
            self._record_violation(method_upper, url, reason)
            raise SafetyViolation(f"SAFETY VIOLATION: {reason}: {method_upper} {url}")

        self._record_violation(method_upper, url, "Unsupported HTTP method")
        raise SafetyViolation(f"SAFETY VIOLATION: Unsupported method: {method_upper} {url}")

    def _record_violation(self, method: str, url: str, reason: str):
        """Record a safety violation for audit."""
        violation = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "method": method,
            "url": url,
            "reason": reason,
        }
        self.violations.append(violation)
        logger.critical(f"SAFETY VIOLATION: {reason}: {method} {url}")

    def get_audit_record(self) -> dict:
        """Return the full safety audit record."""
        return {
            "safety_guardian": {
                "mode": self.mode,
                "armed_actions": sorted(self.armed_actions),
                "started_at": self.started_at,
                "checks_performed": self.checks_performed,
                "writes_allowed": self.writes_allowed,
                "violations_detected": len(self.violations),
                "violations": self.violations,
                "status": "CLEAN" if not self.violations else "VIOLATIONS_DETECTED",
            }
        }
