"""
Rate-limited client for the storefront Admin REST API.

One client per tenant. It is the only place that knows the remote leaky
bucket state:
- Call-limit header ("<used>/<bucket>") parsed on every response
- Proactive throttling above the configured utilization threshold
- Since-id cursor pagination exposed as an async page producer
- HTTP 429 handled by sleeping and retrying the same page
"""

import asyncio
import inspect
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional, Tuple

import httpx

from core.config import settings
from core.exceptions import (
    APIClientError,
    AuthenticationError,
    IngestionError,
    NetworkError,
    RateLimitError,
    ResourceNotFoundError,
)
from core.logging import get_logger
from schemas.tenant import TenantCredential

CALL_LIMIT_HEADER = "X-Shopify-Shop-Api-Call-Limit"
ACCESS_TOKEN_HEADER = "X-Shopify-Access-Token"
DEFAULT_BUCKET_SIZE = 40


@dataclass
class RateLimitState:
    """Last known remote bucket state. Advisory only; the remote side is authoritative."""
    calls_made: int = 0
    bucket_size: int = DEFAULT_BUCKET_SIZE
    leak_rate: float = 2.0
    retry_after: Optional[float] = None
    updated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def utilization(self) -> float:
        if self.bucket_size <= 0:
            return 0.0
        return self.calls_made / self.bucket_size


def parse_call_limit(value: Optional[str]) -> Optional[Tuple[int, int]]:
    """Parse "32/40" into (32, 40). Returns None for a missing or malformed header."""
    if not value or "/" not in value:
        return None
    used, _, bucket = value.partition("/")
    try:
        return int(used.strip()), int(bucket.strip())
    except ValueError:
        return None


def parse_retry_after(value: Optional[str]) -> Optional[float]:
    if value is None:
        return None
    try:
        seconds = float(value)
    except ValueError:
        return None
    return max(seconds, 0.0)


class ShopifyClient:
    """
    Per-tenant API client.

    Attributes:
        credential: Tenant credential (shop domain, token, API version)
        rate_limit: Last parsed bucket state, None until the first response
        page_delay: Fixed pause between pages, in seconds
        max_rate_limit_retries: 429 retries allowed for a single page
    """

    def __init__(
        self,
        credential: TenantCredential,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Optional[Callable[[float], Awaitable[Any]]] = None,
        logger=None,
        timeout: Optional[float] = None,
        page_delay: Optional[float] = None,
        max_rate_limit_retries: Optional[int] = None,
    ):
        self.credential = credential
        self.tenant_id = credential.tenant_id
        self.log = logger or get_logger(__name__, tenant_id=credential.tenant_id)
        self._sleep = sleep or asyncio.sleep

        self.timeout = timeout if timeout is not None else settings.HTTP_TIMEOUT_SECONDS
        self.page_delay = page_delay if page_delay is not None else settings.PAGE_DELAY_SECONDS
        self.max_rate_limit_retries = (
            max_rate_limit_retries if max_rate_limit_retries is not None
            else settings.MAX_RATE_LIMIT_RETRIES
        )
        self.leak_rate = settings.RATE_LIMIT_LEAK_RATE
        self.threshold = settings.RATE_LIMIT_THRESHOLD
        self.target = settings.RATE_LIMIT_TARGET

        self.rate_limit: Optional[RateLimitState] = None
        self.requests_made = 0
        self.last_request_at: Optional[datetime] = None

        self._http = httpx.AsyncClient(
            base_url=credential.base_url,
            headers={
                ACCESS_TOKEN_HEADER: credential.access_token,
                "Content-Type": "application/json",
                "Accept": "application/json",
            },
            timeout=self.timeout,
            transport=transport,
        )

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.aclose()

    async def aclose(self):
        await self._http.aclose()

    # ------------------------------------------------------------------
    # Rate limit state
    # ------------------------------------------------------------------

    def _update_rate_limit(self, response: httpx.Response):
        parsed = parse_call_limit(response.headers.get(CALL_LIMIT_HEADER))
        retry_after = parse_retry_after(response.headers.get("Retry-After"))

        if parsed is None and retry_after is None and self.rate_limit is None:
            return

        state = self.rate_limit or RateLimitState(leak_rate=self.leak_rate)
        if parsed is not None:
            state.calls_made, state.bucket_size = parsed
        state.retry_after = retry_after
        state.updated_at = datetime.now(timezone.utc)
        self.rate_limit = state

    def is_throttled(self) -> bool:
        """True while the last reported utilization is above the threshold."""
        if self.rate_limit is None:
            return False
        return self.rate_limit.utilization > self.threshold

    def wait_time(self) -> float:
        """
        Seconds to wait before the next call.

        Retry-After is honoured verbatim; otherwise back off until the
        bucket has leaked down to the target utilization.
        """
        state = self.rate_limit
        if state is None:
            return 0.0
        if state.retry_after is not None:
            return state.retry_after
        if not self.is_throttled():
            return 0.0
        excess = state.calls_made - state.bucket_size * self.target
        return max(0.0, excess / state.leak_rate)

    def rate_limit_status(self) -> Dict[str, Any]:
        state = self.rate_limit or RateLimitState(leak_rate=self.leak_rate, bucket_size=0)
        return {
            "calls_made": state.calls_made,
            "bucket_size": state.bucket_size,
            "utilization": round(state.utilization, 3),
            "throttled": self.is_throttled(),
            "wait_seconds": self.wait_time(),
        }

    # ------------------------------------------------------------------
    # Requests
    # ------------------------------------------------------------------

    async def _request(self, path: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """
        Issue one GET and map failures onto the exception hierarchy.

        Raises:
            RateLimitError: HTTP 429 (retry_after set)
            AuthenticationError: HTTP 401/403
            ResourceNotFoundError: HTTP 404
            APIClientError: Any other 4xx/5xx or an unreadable body
            NetworkError: Timeouts, transport failures or a closed client
        """
        url = f"{self.credential.base_url}{path}"
        # replaced or removed tenants close their client under running imports
        if self._http.is_closed:
            raise NetworkError(
                f"Client closed before request to {path}",
                context={"url": url, "tenant_id": self.tenant_id},
            )
        try:
            response = await self._http.get(path, params=params)
        except httpx.TimeoutException as e:
            raise NetworkError(
                f"Request timeout for {path}",
                context={"url": url, "timeout": self.timeout, "tenant_id": self.tenant_id},
                original_exception=e
            )
        except (httpx.HTTPError, RuntimeError) as e:
            # RuntimeError: the client was closed while the request was pending
            raise NetworkError(
                f"Network error for {path}",
                context={"url": url, "tenant_id": self.tenant_id},
                original_exception=e
            )

        self.requests_made += 1
        self.last_request_at = datetime.now(timezone.utc)
        self._update_rate_limit(response)

        status = response.status_code
        context = {"url": url, "tenant_id": self.tenant_id}

        if status == 429:
            retry_after = self.rate_limit.retry_after if self.rate_limit else None
            if retry_after is None:
                retry_after = settings.DEFAULT_RETRY_AFTER_SECONDS
            raise RateLimitError(f"Rate limited on {path}", context=context, retry_after=retry_after)

        if status in (401, 403):
            raise AuthenticationError(
                f"Authentication failed for {path}", context=context, status_code=status
            )

        if status == 404:
            raise ResourceNotFoundError(
                f"Resource not found: {path}", context=context, status_code=404
            )

        if status >= 400:
            context["response_body"] = response.text[:500]
            raise APIClientError(
                f"Request to {path} failed with status {status}", context=context, status_code=status
            )

        try:
            return response.json()
        except ValueError as e:
            context["response_body"] = response.text[:500]
            raise APIClientError(
                "Failed to parse JSON response", context=context,
                original_exception=e, status_code=status
            )

    async def fetch_page(
        self,
        resource: str,
        params: Optional[Dict[str, Any]] = None,
        cursor: Optional[str] = None,
    ) -> Tuple[List[Dict[str, Any]], Optional[str]]:
        """
        Fetch one page of a resource.

        Returns:
            (items, next_cursor) where next_cursor is the last item's id when
            the page was full and None when this was the last page.
        """
        params = dict(params or {})
        limit = int(params.get("limit") or settings.PAGE_SIZE)
        params["limit"] = limit
        if cursor is not None:
            params["since_id"] = cursor

        data = await self._request(f"/{resource}.json", params)
        items = data.get(resource, []) if isinstance(data, dict) else []
        if not isinstance(items, list):
            items = []

        next_cursor = None
        if len(items) >= limit:
            ids = [
                item.get("id") for item in items
                if isinstance(item, dict) and item.get("id") is not None
            ]
            if ids:
                next_cursor = str(ids[-1])
            else:
                self.log.warning(f"Full {resource} page without ids, stopping pagination")
        return items, next_cursor

    async def fetch_one(self, resource: str, external_id: Any) -> Dict[str, Any]:
        """
        Fetch a single record, e.g. to re-sync one customer by hand.

        Raises:
            ResourceNotFoundError: The record does not exist
        """
        data = await self._request(f"/{resource}/{external_id}.json")
        # "customers" -> "customer"
        key = resource[:-1] if resource.endswith("s") else resource
        record = data.get(key) if isinstance(data, dict) else None
        if not isinstance(record, dict):
            raise APIClientError(
                f"Response for {resource}/{external_id} has no {key} object",
                context={"tenant_id": self.tenant_id, "resource": resource},
            )
        return record

    async def _fetch_page_with_backoff(self, resource, params, cursor):
        attempt = 0
        while True:
            try:
                return await self.fetch_page(resource, params, cursor)
            except RateLimitError as e:
                if attempt >= self.max_rate_limit_retries:
                    raise
                attempt += 1
                wait = e.retry_after if e.retry_after is not None else settings.DEFAULT_RETRY_AFTER_SECONDS
                self.log.warning(
                    f"Rate limited fetching {resource} (since_id={cursor}). "
                    f"Retrying same page in {wait}s ({attempt}/{self.max_rate_limit_retries})"
                )
                await self._sleep(wait)

    async def iter_pages(
        self,
        resource: str,
        params: Optional[Dict[str, Any]] = None,
    ) -> AsyncIterator[List[Dict[str, Any]]]:
        """
        Yield every page of a resource using since-id cursoring.

        The throttle is consulted before each page and a fixed delay is
        inserted between pages.
        """
        params = dict(params or {})
        params.setdefault("limit", settings.PAGE_SIZE)
        cursor: Optional[str] = None
        page = 0

        while True:
            if self.is_throttled():
                wait = self.wait_time()
                self.log.info(f"Throttled before {resource} page {page + 1}, waiting {wait:.2f}s")
                await self._sleep(wait)

            items, next_cursor = await self._fetch_page_with_backoff(resource, params, cursor)
            page += 1
            self.log.debug(f"Fetched {len(items)} {resource} on page {page}")

            if items:
                yield items

            if next_cursor is None:
                break
            cursor = next_cursor
            await self._sleep(self.page_delay)

    async def fetch_all(
        self,
        resource: str,
        params: Optional[Dict[str, Any]] = None,
        on_batch: Optional[Callable[[List[Dict[str, Any]]], Any]] = None,
        collect: bool = True,
    ) -> List[Dict[str, Any]]:
        """
        Drive iter_pages to completion.

        Args:
            on_batch: Called with each page (sync or async) for stream processing
            collect: Keep every item in the returned list; pass False to
                     stream-only large resources
        """
        collected: List[Dict[str, Any]] = []
        async for items in self.iter_pages(resource, params):
            if on_batch is not None:
                result = on_batch(items)
                if inspect.isawaitable(result):
                    await result
            if collect:
                collected.extend(items)
        self.log.info(f"Fetched all {resource}: {len(collected) if collect else 'streamed'}")
        return collected

    async def get_shop_info(self) -> Dict[str, Any]:
        data = await self._request("/shop.json")
        return data.get("shop", {}) if isinstance(data, dict) else {}

    async def health_check(self) -> bool:
        """Single lightweight call; never raises."""
        try:
            await self.get_shop_info()
            return True
        except (IngestionError, httpx.HTTPError) as e:
            self.log.warning(f"Health check failed: {e}")
            return False


class ClientManager:
    """Registry of per-tenant clients."""

    def __init__(self, logger=None):
        self._clients: Dict[str, ShopifyClient] = {}
        self.log = logger or get_logger(__name__)

    async def add(self, tenant_id: str, client: ShopifyClient) -> ShopifyClient:
        previous = self._clients.get(tenant_id)
        self._clients[tenant_id] = client
        if previous is not None and previous is not client:
            await previous.aclose()
        self.log.info(f"Registered client for tenant {tenant_id}")
        return client

    def get(self, tenant_id: str) -> Optional[ShopifyClient]:
        return self._clients.get(tenant_id)

    async def remove(self, tenant_id: str) -> bool:
        client = self._clients.pop(tenant_id, None)
        if client is None:
            return False
        await client.aclose()
        self.log.info(f"Removed client for tenant {tenant_id}")
        return True

    def all(self) -> Dict[str, ShopifyClient]:
        return dict(self._clients)

    def __len__(self):
        return len(self._clients)

    def __contains__(self, tenant_id):
        return tenant_id in self._clients

    async def health_check_all(self) -> Dict[str, bool]:
        tenant_ids = list(self._clients)
        results = await asyncio.gather(*(self._clients[t].health_check() for t in tenant_ids))
        return dict(zip(tenant_ids, results))

    async def close_all(self):
        for tenant_id in list(self._clients):
            await self.remove(tenant_id)
