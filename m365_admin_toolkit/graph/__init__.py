from .client import GraphClient, parse_retry_after
from .paginator import PaginationLoopSuspected, paginate
from .retry import (
    PermanentApiError,
    RetryLimitExceeded,
    TransientApiError,
    fetch_with_retry,
)

__all__ = [
    "GraphClient",
    "parse_retry_after",
    "PaginationLoopSuspected",
    "paginate",
    "PermanentApiError",
    "RetryLimitExceeded",
    "TransientApiError",
    "fetch_with_retry",
]
