"""
Tests for the async REST client using httpx.MockTransport.

Covers:
- Throttling with Retry-After, timeouts and retry exhaustion
- nextLink paging, $top and ARM api-version handling
- Permanent error mapping
- Guardian enforcement before anything is sent
- One token refresh on 401, mid-page or mid-batch
"""
import asyncio
import json

import httpx
import pytest

from m365_admin_toolkit.config import AZURE_ARM, FetchConfig
from m365_admin_toolkit.graph.client import GraphClient, parse_retry_after
from m365_admin_toolkit.graph.retry import PermanentApiError, RetryLimitExceeded
from m365_admin_toolkit.safety.guardian import SafetyGuardian, SafetyViolation


# =============================================================================
# Helpers
# =============================================================================

def scripted_transport(responses):
    """Transport that replays `responses` in order and records each request."""
    requests = []
    queue = list(responses)

    def handler(request):
        requests.append(request)
        item = queue.pop(0)
        if isinstance(item, Exception):
            raise item
        if callable(item):
            return item(request)
        return item

    return httpx.MockTransport(handler), requests


class TokenSource:
    """Async token provider handing out numbered tokens."""

    def __init__(self):
        self.calls = []

    async def __call__(self, surface, force_refresh=False):
        self.calls.append((surface.name, force_refresh))
        return f"refreshed-{len(self.calls)}"


def bearer(request):
    return request.headers["Authorization"]


def run_with_client(transport, action, guardian=None, sleeper=None, **kwargs):
    async def scenario():
        async with GraphClient(
            "test-token",
            guardian or SafetyGuardian(),
            transport=transport,
            sleep=sleeper,
            **kwargs,
        ) as client:
            return await action(client), client.get_stats()

    return asyncio.run(scenario())


# =============================================================================
# Retry-After parsing
# =============================================================================

class TestParseRetryAfter:

    def test_seconds(self):
        assert parse_retry_after("5") == 5.0

    def test_missing(self):
        assert parse_retry_after(None) is None
        assert parse_retry_after("") is None

    def test_garbage(self):
        assert parse_retry_after("soon") is None

    def test_http_date_in_past_is_zero(self):
        assert parse_retry_after("Wed, 21 Oct 2015 07:28:00 GMT") == 0.0


# =============================================================================
# Single requests
# =============================================================================

class TestSingleRequests:

    def test_get_sends_bearer_token(self):
        transport, requests = scripted_transport([httpx.Response(200, json={"id": "1"})])
        result, _ = run_with_client(transport, lambda c: c.get("users/1"))
        assert result == {"id": "1"}
        assert requests[0].headers["Authorization"] == "Bearer test-token"
        assert str(requests[0].url) == "https://graph.microsoft.com/v1.0/users/1"

    def test_throttled_then_success(self, sleeper):
        transport, requests = scripted_transport([
            httpx.Response(429, headers={"Retry-After": "3"},
                           json={"error": {"code": "TooManyRequests", "message": "slow down"}}),
            httpx.Response(200, json={"id": "1"}),
        ])
        result, stats = run_with_client(
            transport, lambda c: c.get("users/1"),
            sleeper=sleeper, fetch=FetchConfig(base_backoff_seconds=1),
        )
        assert result == {"id": "1"}
        assert len(requests) == 2
        assert sleeper.calls == [3.0]
        assert stats["throttle_events"] == 1
        assert stats["total_requests"] == 2

    def test_timeout_is_retried(self, sleeper):
        transport, requests = scripted_transport([
            httpx.ConnectTimeout("timed out"),
            httpx.Response(200, json={"ok": True}),
        ])
        result, _ = run_with_client(transport, lambda c: c.get("organization"), sleeper=sleeper)
        assert result == {"ok": True}
        assert len(requests) == 2
        assert len(sleeper.calls) == 1

    def test_persistent_503_exhausts_retries(self, sleeper):
        transport, requests = scripted_transport([httpx.Response(503) for _ in range(3)])
        with pytest.raises(RetryLimitExceeded):
            run_with_client(
                transport, lambda c: c.get("users"),
                sleeper=sleeper, fetch=FetchConfig(max_retries=2, base_backoff_seconds=1),
            )
        assert len(requests) == 3
        assert sleeper.calls == [1, 2]

    def test_not_found_is_permanent(self, sleeper):
        transport, requests = scripted_transport([
            httpx.Response(404, json={"error": {"code": "Request_ResourceNotFound",
                                                "message": "Resource 'x' does not exist"}}),
        ])
        with pytest.raises(PermanentApiError) as exc_info:
            run_with_client(transport, lambda c: c.get("users/x"), sleeper=sleeper)
        assert exc_info.value.status_code == 404
        assert "does not exist" in exc_info.value.message
        assert len(requests) == 1
        assert sleeper.calls == []

    def test_no_content_returns_empty_dict(self):
        guardian = SafetyGuardian()
        guardian.arm(["disable"])
        transport, requests = scripted_transport([httpx.Response(204)])
        result, _ = run_with_client(
            transport, lambda c: c.patch("users/1", {"accountEnabled": False}), guardian=guardian,
        )
        assert result == {}
        assert requests[0].method == "PATCH"
        assert json.loads(requests[0].content) == {"accountEnabled": False}

    def test_unarmed_write_is_blocked_before_sending(self):
        guardian = SafetyGuardian()
        transport, requests = scripted_transport([httpx.Response(204)])
        with pytest.raises(SafetyViolation):
            run_with_client(
                transport, lambda c: c.patch("users/1", {"accountEnabled": False}), guardian=guardian,
            )
        assert requests == []
        assert len(guardian.violations) == 1

    def test_client_requires_context_manager(self):
        client = GraphClient("tok", SafetyGuardian())
        with pytest.raises(RuntimeError):
            asyncio.run(client.get("users"))


# =============================================================================
# Token refresh
# =============================================================================

class TestTokenRefresh:

    def test_401_refreshes_once_and_resends(self, sleeper):
        tokens = TokenSource()
        transport, requests = scripted_transport([
            httpx.Response(401, json={"error": {"code": "InvalidAuthenticationToken",
                                                "message": "Lifetime validation failed"}}),
            httpx.Response(200, json={"id": "1"}),
            httpx.Response(200, json={"id": "2"}),
        ])

        async def two_gets(client):
            return [await client.get("users/1"), await client.get("users/2")]

        (first, second), stats = run_with_client(transport, two_gets, sleeper=sleeper,
                                                 token_provider=tokens)
        assert (first, second) == ({"id": "1"}, {"id": "2"})
        assert tokens.calls == [("graph", True)]
        assert [bearer(r) for r in requests] == [
            "Bearer test-token", "Bearer refreshed-1", "Bearer refreshed-1",
        ]
        assert stats["token_refreshes"] == 1
        assert sleeper.calls == []

    def test_second_401_is_permanent(self, sleeper):
        tokens = TokenSource()
        transport, requests = scripted_transport([httpx.Response(401), httpx.Response(401)])
        with pytest.raises(PermanentApiError) as exc_info:
            run_with_client(transport, lambda c: c.get("users"), sleeper=sleeper,
                            token_provider=tokens)
        assert exc_info.value.status_code == 401
        assert len(tokens.calls) == 1
        assert len(requests) == 2

    def test_without_provider_401_is_permanent(self, sleeper):
        transport, requests = scripted_transport([httpx.Response(401)])
        with pytest.raises(PermanentApiError):
            run_with_client(transport, lambda c: c.get("users"), sleeper=sleeper)
        assert len(requests) == 1

    def test_expiry_between_pages(self):
        tokens = TokenSource()
        next_link = "https://graph.microsoft.com/v1.0/users?$skiptoken=abc"
        transport, requests = scripted_transport([
            httpx.Response(200, json={"value": [{"id": "1"}], "@odata.nextLink": next_link}),
            httpx.Response(401),
            httpx.Response(200, json={"value": [{"id": "2"}]}),
        ])
        records, _ = run_with_client(transport, lambda c: c.get_all_pages("users"),
                                     token_provider=tokens)
        assert records == [{"id": "1"}, {"id": "2"}]
        assert requests[2].url.params["$skiptoken"] == "abc"
        assert bearer(requests[2]) == "Bearer refreshed-1"


# =============================================================================
# Paging
# =============================================================================

class TestGetAllPages:

    def test_follows_next_link_without_resending_params(self):
        next_link = "https://graph.microsoft.com/v1.0/users?$skiptoken=abc"
        transport, requests = scripted_transport([
            httpx.Response(200, json={"value": [{"id": "1"}, {"id": "2"}],
                                      "@odata.nextLink": next_link}),
            httpx.Response(200, json={"value": [{"id": "3"}]}),
        ])
        records, _ = run_with_client(
            transport,
            lambda c: c.get_all_pages("users", params={"$select": "id"}),
        )
        assert [r["id"] for r in records] == ["1", "2", "3"]
        first, second = requests
        assert first.url.params["$select"] == "id"
        assert first.url.params["$top"] == "999"
        assert second.url.params.get("$select") is None
        assert second.url.params["$skiptoken"] == "abc"

    def test_top_is_bounded_by_surface_maximum(self):
        transport, requests = scripted_transport([httpx.Response(200, json={"value": []})])
        run_with_client(transport, lambda c: c.get_all_pages("users", top=5000))
        assert requests[0].url.params["$top"] == "999"

    def test_skip_top(self):
        transport, requests = scripted_transport([httpx.Response(200, json={"value": []})])
        run_with_client(transport, lambda c: c.get_all_pages("roleManagement/directory/roleAssignments",
                                                             skip_top=True))
        assert "$top" not in requests[0].url.params

    def test_arm_surface_uses_api_version_and_next_link(self):
        next_link = "https://management.azure.com/subscriptions?api-version=2022-12-01&$skiptoken=p2"
        transport, requests = scripted_transport([
            httpx.Response(200, json={"value": [{"subscriptionId": "s1"}], "nextLink": next_link}),
            httpx.Response(200, json={"value": [{"subscriptionId": "s2"}]}),
        ])
        records, stats = run_with_client(
            transport, lambda c: c.get_all_pages("subscriptions"), surface=AZURE_ARM,
        )
        assert [r["subscriptionId"] for r in records] == ["s1", "s2"]
        assert requests[0].url.host == "management.azure.com"
        assert requests[0].url.path == "/subscriptions"
        assert requests[0].url.params["api-version"] == "2022-12-01"
        assert "$top" not in requests[0].url.params
        assert requests[1].url.params["$skiptoken"] == "p2"
        assert requests[1].url.params["api-version"] == "2022-12-01"
        assert stats["surface"] == "arm"

    def test_transform_runs_per_record(self):
        transport, _ = scripted_transport([
            httpx.Response(200, json={"value": [{"id": "1"}, {"id": "2"}]}),
        ])
        records, _ = run_with_client(
            transport, lambda c: c.get_all_pages("users", transform=lambda item: item["id"]),
        )
        assert records == ["1", "2"]
