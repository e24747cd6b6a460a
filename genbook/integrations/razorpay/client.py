"""
Razorpay Subscriptions API client.

Uses Razorpay's REST API (https://api.razorpay.com/v1) with HTTP basic auth
(key_id:key_secret). Only the subscription calls the billing routes need are
implemented, plus the two signature checks Razorpay defines:

- webhooks:  hex HMAC-SHA256 of the raw request body with the webhook secret
- checkout:  hex HMAC-SHA256 of "<payment_id>|<subscription_id>" with the key secret
"""

import hashlib
import hmac
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import httpx

logger = logging.getLogger(__name__)

RAZORPAY_API_BASE = "https://api.razorpay.com/v1"


@dataclass
class RazorpaySubscription:
    """Subscription entity as returned by Razorpay."""
    subscription_id: str
    plan_id: str
    status: str
    short_url: Optional[str] = None
    current_start: Optional[datetime] = None
    current_end: Optional[datetime] = None
    notes: Optional[Dict[str, Any]] = None

    @classmethod
    def from_entity(cls, entity: Dict[str, Any]) -> "RazorpaySubscription":
        return cls(
            subscription_id=entity["id"],
            plan_id=entity.get("plan_id") or "",
            status=entity.get("status") or "created",
            short_url=entity.get("short_url"),
            current_start=from_epoch(entity.get("current_start")),
            current_end=from_epoch(entity.get("current_end")),
            notes=entity.get("notes") or {},
        )


class RazorpayError(Exception):
    """Error from the Razorpay API."""

    def __init__(self, message: str, code: Optional[str] = None, details: Optional[Dict] = None):
        super().__init__(message)
        self.code = code
        self.details = details or {}


def from_epoch(value: Any) -> Optional[datetime]:
    """Razorpay timestamps are unix seconds; None/0 mean unset."""
    if value in (None, "", 0):
        return None
    try:
        return datetime.fromtimestamp(int(value), tz=timezone.utc)
    except (TypeError, ValueError, OverflowError):
        return None


def _hex_hmac(secret: str, message: bytes) -> str:
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()


def verify_webhook_signature(payload: bytes, signature: Optional[str], secret: Optional[str]) -> bool:
    """
    Verify X-Razorpay-Signature over the raw body.

    Must run before the body is parsed or trusted.
    """
    if not secret or not signature:
        return False
    expected = _hex_hmac(secret, payload)
    return hmac.compare_digest(expected, signature.strip().lower())


def verify_checkout_signature(
    payment_id: str,
    subscription_id: str,
    signature: Optional[str],
    key_secret: Optional[str],
) -> bool:
    """Verify the razorpay_signature returned by Checkout for a subscription payment."""
    if not key_secret or not signature or not payment_id or not subscription_id:
        return False
    expected = _hex_hmac(key_secret, f"{payment_id}|{subscription_id}".encode("utf-8"))
    return hmac.compare_digest(expected, signature.strip().lower())


class RazorpayClient:
    """
    Async client for the Razorpay Subscriptions API.

    Handles:
    - Creating subscriptions (returns the hosted checkout short_url)
    - Fetching subscription state
    - Cancelling subscriptions
    """

    def __init__(
        self,
        key_id: str,
        key_secret: str,
        base_url: str = RAZORPAY_API_BASE,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: float = 30.0,
    ):
        if not key_id or not key_secret:
            raise ValueError("Razorpay key_id and key_secret are required")
        self._client = httpx.AsyncClient(
            base_url=base_url,
            auth=(key_id, key_secret),
            headers={"Content-Type": "application/json"},
            timeout=timeout,
            transport=transport,
        )

    async def close(self):
        """Close the HTTP client."""
        await self._client.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def _request(self, method: str, path: str, json: Optional[Dict] = None) -> Dict[str, Any]:
        try:
            response = await self._client.request(method, path, json=json)
            response.raise_for_status()
            return response.json()
        except httpx.HTTPStatusError as e:
            description = None
            try:
                description = e.response.json().get("error", {}).get("description")
            except ValueError:
                pass
            logger.error("Razorpay API HTTP error", extra={
                "path": path,
                "status_code": e.response.status_code,
                "response": e.response.text[:500],
            })
            raise RazorpayError(
                description or f"Razorpay API error: {e.response.status_code}",
                code=str(e.response.status_code),
            )
        except httpx.RequestError as e:
            logger.error("Razorpay API request error", extra={"path": path, "error": str(e)})
            raise RazorpayError(f"Request failed: {str(e)}")

    async def create_subscription(
        self,
        provider_plan_id: str,
        tenant_id: str,
        total_count: int = 12,
        customer_email: Optional[str] = None,
    ) -> RazorpaySubscription:
        """
        Create a subscription; the tenant id travels in notes so webhooks can
        attribute later events.
        """
        body: Dict[str, Any] = {
            "plan_id": provider_plan_id,
            "total_count": total_count,
            "customer_notify": 1,
            "notes": {"tenant_id": tenant_id},
        }
        if customer_email:
            body["notes"]["email"] = customer_email
            body["notify_info"] = {"notify_email": customer_email}

        entity = await self._request("POST", "/subscriptions", json=body)
        subscription = RazorpaySubscription.from_entity(entity)
        logger.info("Razorpay subscription created", extra={
            "tenant_id": tenant_id,
            "subscription_id": subscription.subscription_id,
            "plan_id": provider_plan_id,
        })
        return subscription

    async def get_subscription(self, subscription_id: str) -> RazorpaySubscription:
        entity = await self._request("GET", f"/subscriptions/{subscription_id}")
        return RazorpaySubscription.from_entity(entity)

    async def cancel_subscription(
        self,
        subscription_id: str,
        cancel_at_cycle_end: bool = True,
    ) -> RazorpaySubscription:
        """Cancel; a subscription already cancelled or completed is returned as-is."""
        current = await self.get_subscription(subscription_id)
        if current.status in ("cancelled", "completed"):
            return current

        entity = await self._request(
            "POST",
            f"/subscriptions/{subscription_id}/cancel",
            json={"cancel_at_cycle_end": 1 if cancel_at_cycle_end else 0},
        )
        logger.info("Razorpay subscription cancelled", extra={
            "subscription_id": subscription_id,
            "cancel_at_cycle_end": cancel_at_cycle_end,
        })
        return RazorpaySubscription.from_entity(entity)
