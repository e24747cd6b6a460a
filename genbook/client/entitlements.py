"""
Client for the GenBook API's entitlements endpoint.

EntitlementsClient caches the /api/v1/tenants/current payload for 30 seconds
so UI code can check features freely without a request per check. Every call
made through the client shares the same 402 handling: the server's reason is
remembered under ``upgrade_reason`` and the payment-required hook is invoked
with the billing page URL.
"""

import logging
import time
from typing import Any, Callable, Dict, MutableMapping, Optional, Tuple

import httpx

from genbook.client.cache import CacheEntry, EntitlementsCache, MemoryEntitlementsCache

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 30
ENTITLEMENTS_PATH = "/api/v1/tenants/current"
UPGRADE_REASON_KEY = "upgrade_reason"
DEFAULT_UPGRADE_REASON = "Plan required or usage limit reached."


class ApiError(Exception):
    """Non-2xx response from the API."""

    def __init__(self, message: str, status_code: int, body: Any = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.body = body


class PaymentRequiredApiError(ApiError):
    """402: the tenant's plan does not allow the request."""

    def __init__(self, reason: str, body: Any = None):
        super().__init__("Payment Required (402)", 402, body)
        self.reason = reason


def _json_or_none(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return None


def _message_from(body: Any) -> Optional[str]:
    if not isinstance(body, dict):
        return None
    for field in ("error", "message"):
        value = body.get(field)
        if isinstance(value, str) and value:
            return value
    return None


def is_entitled(entitlements: Optional[Dict[str, Any]], key: str) -> bool:
    """False for a missing snapshot or a key the snapshot does not list."""
    if not entitlements:
        return False
    features = entitlements.get("features") or {}
    return bool(features.get(str(getattr(key, "value", key))))


def usage_and_limit(entitlements: Optional[Dict[str, Any]], metric: str) -> Tuple[int, Optional[int]]:
    """(used, limit) for a metric; limit None means unlimited."""
    name = str(getattr(metric, "value", metric))
    if not entitlements:
        return 0, 0
    used = (entitlements.get("usage") or {}).get(name) or 0
    limits = entitlements.get("limits") or {}
    if name not in limits:
        return int(used), 0
    limit = limits[name]
    return int(used), None if limit is None else int(limit)


class EntitlementsClient:
    """
    Fetches and caches the caller's entitlements.

    Args:
        base_url: API origin, e.g. "https://app.genbook.ai"
        token: Supabase access token sent as a bearer credential
        cache: EntitlementsCache; in-memory by default
        cache_key: cache slot; use a per-user key when the cache is shared
        ttl_seconds: freshness window for cached entitlements
        clock: seconds-returning callable used for cache age
        http: preconfigured httpx.Client (tests pass a MockTransport client)
        reason_store: mapping that receives the last upgrade reason
        on_payment_required: called with the billing URL after a 402
        billing_url: defaults to "<base_url>/#/billing"
    """

    def __init__(
        self,
        base_url: str,
        token: Optional[str] = None,
        cache: Optional[EntitlementsCache] = None,
        cache_key: str = "current",
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.time,
        http: Optional[httpx.Client] = None,
        reason_store: Optional[MutableMapping[str, str]] = None,
        on_payment_required: Optional[Callable[[str], None]] = None,
        billing_url: Optional[str] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.cache = cache if cache is not None else MemoryEntitlementsCache()
        self.cache_key = cache_key
        self.ttl_seconds = ttl_seconds
        self.clock = clock
        self._http = http if http is not None else httpx.Client(timeout=10.0)
        self.reason_store = reason_store if reason_store is not None else {}
        self.on_payment_required = on_payment_required
        self.billing_url = billing_url or f"{self.base_url}/#/billing"

    def close(self) -> None:
        self._http.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    @property
    def upgrade_reason(self) -> Optional[str]:
        return self.reason_store.get(UPGRADE_REASON_KEY)

    def request(self, method: str, path: str, **kwargs) -> httpx.Response:
        """
        Send a request to the API.

        Raises:
            PaymentRequiredApiError: on 402, after recording the reason and
                calling on_payment_required
            ApiError: on any other non-2xx status
            httpx.HTTPError: on transport failure (not retried)
        """
        headers = {"Content-Type": "application/json", **kwargs.pop("headers", {})}
        if self.token:
            headers.setdefault("Authorization", f"Bearer {self.token}")
        url = path if path.startswith("http") else f"{self.base_url}{path}"

        response = self._http.request(method, url, headers=headers, **kwargs)

        if response.status_code == 402:
            body = _json_or_none(response)
            reason = _message_from(body) or DEFAULT_UPGRADE_REASON
            self.reason_store[UPGRADE_REASON_KEY] = reason
            logger.info("Payment required", extra={"path": path, "reason": reason})
            if self.on_payment_required is not None:
                self.on_payment_required(self.billing_url)
            raise PaymentRequiredApiError(reason, body)

        if not response.is_success:
            body = _json_or_none(response)
            message = _message_from(body) or f"Request failed ({response.status_code})"
            raise ApiError(message, response.status_code, body)

        return response

    def request_json(self, method: str, path: str, **kwargs) -> Any:
        return self.request(method, path, **kwargs).json()

    def fetch_entitlements(self, force: bool = False) -> Dict[str, Any]:
        """Cached entitlements if younger than the TTL, else a fresh fetch."""
        now = self.clock()
        if not force:
            entry = self.cache.get(self.cache_key)
            if entry is not None and now - entry.fetched_at < self.ttl_seconds:
                return entry.data

        data = self.request_json("GET", ENTITLEMENTS_PATH)
        self.cache.set(self.cache_key, CacheEntry(data=data, fetched_at=now))
        return data

    def invalidate(self) -> None:
        """Drop the cached snapshot, e.g. right after checkout completes."""
        self.cache.delete(self.cache_key)

    def is_entitled(self, key: str, force: bool = False) -> bool:
        return is_entitled(self.fetch_entitlements(force=force), key)

    def usage_and_limit(self, metric: str, force: bool = False) -> Tuple[int, Optional[int]]:
        return usage_and_limit(self.fetch_entitlements(force=force), metric)
