from .account_status import (
    AccountStatus,
    classify_account,
    classify_user,
    summarize_statuses,
)

__all__ = [
    "AccountStatus",
    "classify_account",
    "classify_user",
    "summarize_statuses",
]
