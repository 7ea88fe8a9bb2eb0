"""
Bulk Mutation Executor
Applies disable / delete / revoke-sessions to a set of users, one request
at a time with a fixed random pause between requests. A failing record is
logged and counted; only an authentication failure stops the batch.
"""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass, asdict
from typing import Any, Awaitable, Callable, Optional

from ..config import MUTATION_DELAY_RANGE
from ..graph.client import GraphClient
from ..graph.retry import PermanentApiError, RetryLimitExceeded
from ..models import RunContext, UserRecord
from ..run_log import log_success

logger = logging.getLogger("m365_admin_toolkit.actions")

SUCCEEDED = "succeeded"
SKIPPED = "skipped"
FAILED = "failed"


@dataclass
class MutationOutcome:
    """Result of one record's mutation."""
    record_id: str
    user_principal_name: str
    action: str
    status: str
    detail: str = ""

    def to_row(self) -> dict:
        return {
            "Id": self.record_id,
            "UserPrincipalName": self.user_principal_name,
            "Action": self.action,
            "Status": self.status,
            "Detail": self.detail,
        }

    def to_dict(self) -> dict:
        return asdict(self)


async def _disable(graph: GraphClient, user: UserRecord) -> None:
    await graph.patch(f"users/{user.id}", {"accountEnabled": False})


async def _delete(graph: GraphClient, user: UserRecord) -> None:
    await graph.delete(f"users/{user.id}")


async def _revoke(graph: GraphClient, user: UserRecord) -> None:
    await graph.post(f"users/{user.id}/revokeSignInSessions")


ACTIONS: dict[str, Callable[[GraphClient, UserRecord], Awaitable[None]]] = {
    "disable": _disable,
    "delete": _delete,
    "revoke": _revoke,
}


class BulkMutationExecutor:
    """
    Sequential executor for one bulk action.

    skip_disabled only applies to the disable action: accounts that are
    already disabled are recorded as skipped and not sent.
    """

    def __init__(
        self,
        graph: GraphClient,
        action: str,
        skip_disabled: bool = False,
        delay_range: tuple[float, float] = MUTATION_DELAY_RANGE,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        rng: Optional[random.Random] = None,
    ):
        if action not in ACTIONS:
            raise ValueError(f"Unknown bulk action: {action}")
        self.graph = graph
        self.action = action
        self.skip_disabled = skip_disabled
        self.delay_range = delay_range
        self._sleep = sleep
        self._rng = rng or random.Random()
        self.outcomes: list[MutationOutcome] = []

    def _precondition_skip(self, user: UserRecord) -> Optional[str]:
        if self.action == "disable" and self.skip_disabled and not user.account_enabled:
            return "already disabled"
        return None

    async def run(self, users: list[UserRecord], context: RunContext) -> list[MutationOutcome]:
        report = context.report
        report.found += len(users)
        apply = ACTIONS[self.action]
        sent = 0

        logger.info(f"[{self.action}] Processing {len(users)} accounts...")

        for index, user in enumerate(users, start=1):
            if self._stop_requested(context, len(users) - index + 1):
                break

            label = user.user_principal_name or user.id
            reason = self._precondition_skip(user)
            if reason:
                report.skipped += 1
                self._record(user, SKIPPED, reason)
                logger.info(f"[{self.action}] {index}/{len(users)} Skipped {label}: {reason}")
                continue

            if sent:
                await self._sleep(self._rng.uniform(*self.delay_range))
                # Ctrl+C during the pause must not let one more write through
                if self._stop_requested(context, len(users) - index + 1):
                    break
            sent += 1

            try:
                await apply(self.graph, user)
            except (PermanentApiError, RetryLimitExceeded) as e:
                report.errored += 1
                self._record(user, FAILED, str(e))
                logger.error(f"[{self.action}] {index}/{len(users)} Failed {label}: {e}")
                continue

            report.processed += 1
            self._record(user, SUCCEEDED)
            log_success(logger, f"[{self.action}] {index}/{len(users)} {label}")

        return self.outcomes

    def _stop_requested(self, context: RunContext, remaining: int) -> bool:
        if not context.cancel_requested:
            return False
        context.mark_partial()
        logger.warning(
            f"[{self.action}] Cancellation requested; {remaining} accounts not attempted"
        )
        return True

    def _record(self, user: UserRecord, status: str, detail: str = "") -> None:
        self.outcomes.append(MutationOutcome(
            record_id=user.id,
            user_principal_name=user.user_principal_name,
            action=self.action,
            status=status,
            detail=detail,
        ))
