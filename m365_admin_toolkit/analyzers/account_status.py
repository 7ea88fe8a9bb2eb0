"""
Account Status Classifier
Labels a user account from its enabled flag, license presence and two
profile-completeness fields (givenName, surname).
"""

from __future__ import annotations

import logging
from collections import Counter
from enum import Enum
from typing import Iterable

from ..models import UserRecord, is_blank

logger = logging.getLogger("m365_admin_toolkit.analyzers.account_status")


class AccountStatus(str, Enum):
    ENABLED_UNLICENSED = "EnabledUnlicensed"
    ENABLED_USER = "EnabledUser"
    SHARED_MAILBOX_PROBABLE = "SharedMailboxProbable"
    DEACTIVATED_USER = "DeactivatedUser"


def classify_account(
    enabled: bool,
    has_license: bool,
    first_field_blank: bool,
    second_field_blank: bool,
) -> AccountStatus:
    """
    Heuristic account label. Pure: same inputs, same label.

    A disabled account is only called a probable shared mailbox when it is
    unlicensed AND both profile fields are blank.
    """
    if enabled:
        return AccountStatus.ENABLED_USER if has_license else AccountStatus.ENABLED_UNLICENSED
    if not has_license and first_field_blank and second_field_blank:
        return AccountStatus.SHARED_MAILBOX_PROBABLE
    return AccountStatus.DEACTIVATED_USER


def classify_user(user: UserRecord) -> UserRecord:
    """Set user.status in place and return the user."""
    user.status = classify_account(
        user.account_enabled,
        user.has_license,
        is_blank(user.given_name),
        is_blank(user.surname),
    ).value
    return user


def summarize_statuses(users: Iterable[UserRecord]) -> dict[str, int]:
    """Count labels, listing every status even when zero."""
    counts = Counter(u.status for u in users)
    return {status.value: counts.get(status.value, 0) for status in AccountStatus}
