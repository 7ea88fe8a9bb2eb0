"""
Async REST client for Graph, Azure Resource Manager and Power BI.
Every call goes through the safety guardian, the retrying fetcher and,
for collections, the paginator.
"""

from __future__ import annotations

import logging
from email.utils import parsedate_to_datetime
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Optional

import httpx

from ..config import GRAPH, ApiSurface, FetchConfig, TRANSIENT_STATUS_CODES
from ..models import RunContext
from ..safety.guardian import SafetyGuardian, SafetyViolation
from .paginator import paginate
from .retry import PermanentApiError, TransientApiError, fetch_with_retry

logger = logging.getLogger("m365_admin_toolkit.graph")


def parse_retry_after(value: Optional[str]) -> Optional[float]:
    """Retry-After is either delta-seconds or an HTTP date."""
    if not value:
        return None
    value = value.strip()
    try:
        return max(0.0, float(value))
    except ValueError:
        pass
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    return max(0.0, (when - datetime.now(timezone.utc)).total_seconds())


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json() if response.content else {}
    except ValueError:
        return response.text[:200]
    error = body.get("error", {}) if isinstance(body, dict) else {}
    if isinstance(error, dict):
        return error.get("message") or error.get("code") or response.text[:200]
    return str(error)[:200]


class GraphClient:
    """
    Async client for one API surface.
    Features:
      - Guardian-validated requests (writes only when armed)
      - Retry with backoff on 429/503/504, timeouts and connection errors
      - Pagination over the surface's continuation link
      - One token refresh and resend on 401 when a token_provider is given
    """

    def __init__(
        self,
        access_token: str,
        guardian: SafetyGuardian,
        surface: ApiSurface = GRAPH,
        fetch: Optional[FetchConfig] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Optional[Callable[[float], Awaitable[Any]]] = None,
        token_provider: Optional[Callable[..., Awaitable[str]]] = None,
    ):
        self.access_token = access_token
        self._token_provider = token_provider
        self.guardian = guardian
        self.surface = surface
        self.fetch = fetch or FetchConfig()
        self._transport = transport
        self._sleep = sleep
        self._request_count = 0
        self._throttle_count = 0
        self._refresh_count = 0
        self._client: Optional[httpx.AsyncClient] = None

    async def __aenter__(self):
        self._client = httpx.AsyncClient(
            timeout=httpx.Timeout(self.fetch.timeout_seconds, connect=30.0),
            transport=self._transport,
            headers={
                "Authorization": f"Bearer {self.access_token}",
                "Content-Type": "application/json",
                "Accept": "application/json",
                "ConsistencyLevel": "eventual",  # Required for $count, endsWith
            },
        )
        return self

    async def __aexit__(self, *args):
        if self._client:
            await self._client.aclose()
            self._client = None

    def _build_url(self, endpoint: str) -> str:
        return self.surface.build_url(endpoint)

    def _with_api_version(self, params: Optional[dict]) -> Optional[dict]:
        if not self.surface.api_version:
            return params
        params = dict(params or {})
        params.setdefault("api-version", self.surface.api_version)
        return params

    async def _retrying(self, name: str, operation):
        kwargs = {}
        if self._sleep is not None:
            kwargs["sleep"] = self._sleep
        return await fetch_with_retry(
            operation,
            name=name,
            max_retries=self.fetch.max_retries,
            base_seconds=self.fetch.base_backoff_seconds,
            **kwargs,
        )

    # ── Single calls ────────────────────────────────────────────────────────

    async def get(self, endpoint: str, params: Optional[dict] = None) -> dict:
        """Execute a single GET with retry/throttle handling."""
        url = self._build_url(endpoint)
        params = self._with_api_version(params)
        return await self._retrying(
            f"GET {endpoint}",
            lambda: self._request("GET", url, params=params),
        )

    async def patch(self, endpoint: str, body: dict) -> dict:
        url = self._build_url(endpoint)
        return await self._retrying(
            f"PATCH {endpoint}",
            lambda: self._request("PATCH", url, json_body=body),
        )

    async def post(self, endpoint: str, body: Optional[dict] = None) -> dict:
        url = self._build_url(endpoint)
        return await self._retrying(
            f"POST {endpoint}",
            lambda: self._request("POST", url, json_body=body),
        )

    async def delete(self, endpoint: str) -> dict:
        url = self._build_url(endpoint)
        return await self._retrying(
            f"DELETE {endpoint}",
            lambda: self._request("DELETE", url),
        )

    # ── Pagination ──────────────────────────────────────────────────────────

    async def get_all_pages(
        self,
        endpoint: str,
        params: Optional[dict] = None,
        top: Optional[int] = None,
        skip_top: bool = False,
        context: Optional[RunContext] = None,
        transform: Optional[Callable[[dict], Any]] = None,
    ) -> list:
        """
        Fetch every page of a collection endpoint.
        The continuation link already carries the query, so params are only
        sent with the first request. Set skip_top=True for endpoints that
        reject $top.
        """
        params = dict(params or {})
        size_param = self.surface.page_size_param
        if size_param and not skip_top and size_param not in params:
            size = top or self.fetch.page_size
            params[size_param] = str(min(size, self.surface.max_page_size))
        params = self._with_api_version(params)
        first_url = self._build_url(endpoint)
        name = f"GET {endpoint}"

        async def fetch_page(next_link: Optional[str]) -> dict:
            if next_link is None:
                return await self._retrying(
                    name, lambda: self._request("GET", first_url, params=params)
                )
            return await self._retrying(
                name, lambda: self._request("GET", next_link)
            )

        return await paginate(
            fetch_page,
            extract_records=lambda page: page.get(self.surface.records_key, []),
            extract_continuation=lambda page: page.get(self.surface.next_link_key),
            name=name,
            max_pages=self.fetch.max_pages,
            context=context,
            transform=transform,
        )

    # ── Transport ───────────────────────────────────────────────────────────

    async def _request(
        self,
        method: str,
        url: str,
        params: Optional[dict] = None,
        json_body: Optional[dict] = None,
    ) -> dict:
        """Perform exactly one HTTP call and classify the outcome."""
        if not self._client:
            raise RuntimeError("GraphClient not initialized. Use 'async with' context.")

        self.guardian.validate_request(method, url, json_body)

        response = await self._send(method, url, params, json_body)
        if response.status_code == 401 and self._token_provider is not None:
            # Token expired mid-run: refresh once, then a 401 is permanent
            await self._refresh_token()
            response = await self._send(method, url, params, json_body)
        status = response.status_code

        if status in TRANSIENT_STATUS_CODES:
            self._throttle_count += 1
            raise TransientApiError(
                status,
                url,
                retry_after=parse_retry_after(response.headers.get("Retry-After")),
                message=_error_message(response),
            )

        if status >= 400:
            message = _error_message(response)
            if status == 403:
                logger.warning(f"403 Forbidden: {url}: {message}")
            else:
                logger.debug(f"{status} on {method} {url}: {message}")
            raise PermanentApiError(status, message, url)

        if status == 204 or not response.content or not response.content.strip():
            return {}
        try:
            return response.json()
        except ValueError:
            logger.debug(f"{status} response with non-JSON body from {url}")
            return {}

    async def _send(self, method: str, url: str, params: Optional[dict],
                    json_body: Optional[dict]) -> httpx.Response:
        try:
            response = await self._client.request(
                method, url, params=params, json=json_body
            )
        except httpx.TimeoutException as e:
            logger.warning(f"Timeout on {method} {url}")
            raise TransientApiError(0, url, message=f"timeout: {e}") from e
        except httpx.TransportError as e:
            logger.warning(f"Connection error on {method} {url}: {e}")
            raise TransientApiError(0, url, message=f"connection error: {e}") from e
        self._request_count += 1
        return response

    async def _refresh_token(self) -> None:
        logger.info(f"Access token rejected by {self.surface.name}; refreshing...")
        self.access_token = await self._token_provider(self.surface, force_refresh=True)
        self._client.headers["Authorization"] = f"Bearer {self.access_token}"
        self._refresh_count += 1

    def get_stats(self) -> dict:
        """Return client statistics."""
        return {
            "surface": self.surface.name,
            "total_requests": self._request_count,
            "throttle_events": self._throttle_count,
            "token_refreshes": self._refresh_count,
        }


__all__ = [
    "GraphClient",
    "PermanentApiError",
    "TransientApiError",
    "SafetyViolation",
    "parse_retry_after",
]
