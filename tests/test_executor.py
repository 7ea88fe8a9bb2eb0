"""
Tests for the bulk mutation executor and target resolution.

Covers:
- Per-record failures do not stop the batch
- Pacing between sent records only
- skip_disabled preconditions
- Cancellation between records and during the pause
- Token expiry mid-batch refreshes once and carries on
- End-to-end: paged domain query feeding a disable run
"""
import asyncio
import json
import random
from unittest.mock import AsyncMock, Mock

import httpx
import pytest

from m365_admin_toolkit.actions import BulkMutationExecutor
from m365_admin_toolkit.actions.executor import FAILED, SKIPPED, SUCCEEDED
from m365_admin_toolkit.actions.targets import targets_from_query, targets_from_upns
from m365_admin_toolkit.graph.client import GraphClient
from m365_admin_toolkit.graph.retry import PermanentApiError, RetryLimitExceeded, TransientApiError
from m365_admin_toolkit.models import UserRecord
from m365_admin_toolkit.query import build_query
from m365_admin_toolkit.safety.guardian import SafetyGuardian


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def mock_graph():
    """Graph client double with async write methods."""
    graph = Mock()
    graph.patch = AsyncMock(return_value={})
    graph.delete = AsyncMock(return_value={})
    graph.post = AsyncMock(return_value={})
    return graph


def make_users(count, disabled=()):
    return [
        UserRecord(
            id=f"u{i}",
            user_principal_name=f"user{i}@contoso.com",
            account_enabled=i not in disabled,
        )
        for i in range(1, count + 1)
    ]


def run_executor(executor, users, context):
    return asyncio.run(executor.run(users, context))


# =============================================================================
# Executor
# =============================================================================

class TestBulkMutationExecutor:

    def test_unknown_action_rejected(self, mock_graph):
        with pytest.raises(ValueError):
            BulkMutationExecutor(mock_graph, "archive")

    def test_one_failure_does_not_stop_batch(self, mock_graph, run_context, sleeper):
        async def patch(endpoint, body):
            if endpoint == "users/u3":
                raise PermanentApiError(403, "Insufficient privileges", endpoint)
            return {}

        mock_graph.patch.side_effect = patch
        users = make_users(5)
        executor = BulkMutationExecutor(mock_graph, "disable", sleep=sleeper)
        outcomes = run_executor(executor, users, run_context)

        assert [o.status for o in outcomes] == [SUCCEEDED, SUCCEEDED, FAILED, SUCCEEDED, SUCCEEDED]
        assert "Insufficient privileges" in outcomes[2].detail
        report = run_context.report
        assert (report.found, report.processed, report.skipped, report.errored) == (5, 4, 0, 1)
        assert report.summary_line() == "Total: 5 | Processed: 4 | Skipped: 0 | Errors: 1"
        assert mock_graph.patch.await_count == 5

    def test_exhausted_retries_counted_as_error(self, mock_graph, run_context, sleeper):
        mock_graph.delete.side_effect = [
            {},
            RetryLimitExceeded("DELETE users/u2", 6, TransientApiError(429, "users/u2")),
            {},
        ]
        executor = BulkMutationExecutor(mock_graph, "delete", sleep=sleeper)
        outcomes = run_executor(executor, make_users(3), run_context)
        assert [o.status for o in outcomes] == [SUCCEEDED, FAILED, SUCCEEDED]
        assert run_context.report.errored == 1

    def test_pause_between_sent_records(self, mock_graph, run_context, sleeper):
        executor = BulkMutationExecutor(
            mock_graph, "revoke", sleep=sleeper, rng=random.Random(7),
        )
        run_executor(executor, make_users(4), run_context)
        assert len(sleeper.calls) == 3
        assert all(0.5 <= s <= 0.8 for s in sleeper.calls)
        mock_graph.post.assert_any_await("users/u1/revokeSignInSessions")

    def test_skip_disabled_only_for_disable(self, mock_graph, run_context, sleeper):
        users = make_users(4, disabled={2})
        executor = BulkMutationExecutor(mock_graph, "disable", skip_disabled=True, sleep=sleeper)
        outcomes = run_executor(executor, users, run_context)

        assert [o.status for o in outcomes] == [SUCCEEDED, SKIPPED, SUCCEEDED, SUCCEEDED]
        assert mock_graph.patch.await_count == 3
        assert len(sleeper.calls) == 2
        assert run_context.report.summary_line() == "Total: 4 | Processed: 3 | Skipped: 1"

    def test_skip_disabled_ignored_for_revoke(self, mock_graph, run_context, sleeper):
        users = make_users(2, disabled={1, 2})
        executor = BulkMutationExecutor(mock_graph, "revoke", skip_disabled=True, sleep=sleeper)
        run_executor(executor, users, run_context)
        assert mock_graph.post.await_count == 2
        assert run_context.report.skipped == 0

    def test_disabled_account_sent_without_skip_flag(self, mock_graph, run_context, sleeper):
        executor = BulkMutationExecutor(mock_graph, "disable", sleep=sleeper)
        run_executor(executor, make_users(2, disabled={1}), run_context)
        assert mock_graph.patch.await_count == 2

    def test_cancel_before_run_sends_nothing(self, mock_graph, run_context, sleeper):
        run_context.cancel()
        executor = BulkMutationExecutor(mock_graph, "disable", sleep=sleeper)
        outcomes = run_executor(executor, make_users(3), run_context)
        assert outcomes == []
        assert mock_graph.patch.await_count == 0
        assert run_context.report.partial is True

    def test_cancel_mid_run_stops_after_current_record(self, mock_graph, run_context, sleeper):
        async def patch(endpoint, body):
            if endpoint == "users/u2":
                run_context.cancel()
            return {}

        mock_graph.patch.side_effect = patch
        executor = BulkMutationExecutor(mock_graph, "disable", sleep=sleeper)
        outcomes = run_executor(executor, make_users(5), run_context)
        assert len(outcomes) == 2
        assert run_context.report.processed == 2
        assert run_context.report.found == 5
        assert run_context.report.partial is True

    def test_cancel_during_pause_sends_no_more(self, mock_graph, run_context):
        async def interrupted_pause(seconds):
            run_context.cancel()

        executor = BulkMutationExecutor(mock_graph, "revoke", sleep=interrupted_pause)
        outcomes = run_executor(executor, make_users(3), run_context)
        assert mock_graph.post.await_count == 1
        assert [o.status for o in outcomes] == [SUCCEEDED]
        assert run_context.report.partial is True

    def test_outcome_rows(self, mock_graph, run_context, sleeper):
        executor = BulkMutationExecutor(mock_graph, "delete", sleep=sleeper)
        outcomes = run_executor(executor, make_users(1), run_context)
        assert outcomes[0].to_row() == {
            "Id": "u1",
            "UserPrincipalName": "user1@contoso.com",
            "Action": "delete",
            "Status": SUCCEEDED,
            "Detail": "",
        }


# =============================================================================
# End to end over a mocked transport
# =============================================================================

class TestDisableByDomain:

    def test_two_pages_one_disabled(self, run_context, sleeper, make_user_item):
        next_link = "https://graph.microsoft.com/v1.0/users?$skiptoken=page2"
        pages = {
            None: {"value": [make_user_item("a"), make_user_item("b", enabled=False)],
                   "@odata.nextLink": next_link},
            "page2": {"value": [make_user_item("c"), make_user_item("d")]},
        }
        requests = []

        def handler(request):
            requests.append(request)
            if request.method == "GET":
                return httpx.Response(200, json=pages[request.url.params.get("$skiptoken")])
            return httpx.Response(204)

        guardian = SafetyGuardian()
        query = build_query("accounts", domain="contoso.com")

        async def scenario():
            async with GraphClient("tok", guardian, transport=httpx.MockTransport(handler)) as client:
                users = await targets_from_query(client, query, run_context)
                guardian.arm(["disable"])
                executor = BulkMutationExecutor(client, "disable", skip_disabled=True, sleep=sleeper)
                return users, await executor.run(users, run_context)

        users, outcomes = asyncio.run(scenario())

        assert [u.id for u in users] == ["a", "b", "c", "d"]
        assert users[1].status == "DeactivatedUser"
        assert run_context.report.summary_line() == "Total: 4 | Processed: 3 | Skipped: 1"

        first_get = requests[0]
        assert first_get.url.params["$filter"] == "endsWith(userPrincipalName,'@contoso.com')"
        assert first_get.url.params["$count"] == "true"
        patches = [r for r in requests if r.method == "PATCH"]
        assert [r.url.path for r in patches] == ["/v1.0/users/a", "/v1.0/users/c", "/v1.0/users/d"]
        assert all(json.loads(r.content) == {"accountEnabled": False} for r in patches)
        assert [o.status for o in outcomes] == [SUCCEEDED, SKIPPED, SUCCEEDED, SUCCEEDED]


class TestTokenExpiry:

    def test_expired_mid_batch_refreshes_once(self, run_context, sleeper):
        refreshes = []

        async def token_provider(surface, force_refresh=False):
            refreshes.append(force_refresh)
            return "new"

        requests = []

        def handler(request):
            requests.append(request)
            # The first token expires after two writes
            if request.headers["Authorization"] == "Bearer old" and len(requests) > 2:
                return httpx.Response(401, json={"error": {"code": "InvalidAuthenticationToken"}})
            return httpx.Response(204)

        guardian = SafetyGuardian()
        guardian.arm(["disable"])

        async def scenario():
            async with GraphClient("old", guardian, transport=httpx.MockTransport(handler),
                                   sleep=sleeper, token_provider=token_provider) as client:
                executor = BulkMutationExecutor(client, "disable", sleep=sleeper)
                return await executor.run(make_users(4), run_context)

        outcomes = asyncio.run(scenario())

        assert [o.status for o in outcomes] == [SUCCEEDED] * 4
        assert refreshes == [True]
        assert [r.headers["Authorization"] for r in requests] == [
            "Bearer old", "Bearer old", "Bearer old", "Bearer new", "Bearer new", "Bearer new",
        ]
        assert run_context.report.summary_line() == "Total: 4 | Processed: 4 | Skipped: 0"


class TestTargetsFromUpns:

    def test_unresolved_upns_are_counted(self, run_context, make_user_item):
        def handler(request):
            if request.url.path.endswith("ghost@contoso.com"):
                return httpx.Response(404, json={"error": {"message": "not found"}})
            upn = request.url.path.rsplit("/", 1)[-1]
            return httpx.Response(200, json=make_user_item(upn.split("@")[0], upn=upn))

        async def scenario():
            async with GraphClient("tok", SafetyGuardian(),
                                   transport=httpx.MockTransport(handler)) as client:
                return await targets_from_upns(
                    client, ["alice@contoso.com", "ghost@contoso.com", "bob@contoso.com"], run_context,
                )

        users, unresolved = asyncio.run(scenario())
        assert [u.user_principal_name for u in users] == ["alice@contoso.com", "bob@contoso.com"]
        assert unresolved == ["ghost@contoso.com"]
        assert run_context.report.found == 1
        assert run_context.report.errored == 1
