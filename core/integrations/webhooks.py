"""
Webhook Client: Outbound Event Delivery.

Posts events to a single webhook endpoint with:
- HMAC-SHA256 payload signing
- Delivery tracking and history
- Errors raised to the caller (retry policy lives in CircuitBreaker)
"""
from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any
import hashlib
import hmac
import json
import time
import uuid

import httpx

from core.models.base import utcnow


@dataclass
class WebhookDelivery:
    """Record of a webhook delivery attempt."""
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    event: str = ""
    url: str = ""
    status_code: int = 0
    latency_ms: float = 0.0
    success: bool = False
    delivered_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "event": self.event,
            "url": self.url,
            "status_code": self.status_code,
            "latency_ms": round(self.latency_ms, 1),
            "success": self.success,
            "delivered_at": self.delivered_at.isoformat(),
        }


def sign_payload(payload: str, secret: str) -> str:
    """Generate HMAC-SHA256 signature for a payload."""
    return hmac.new(
        secret.encode("utf-8"),
        payload.encode("utf-8"),
        hashlib.sha256,
    ).hexdigest()


def verify_signature(payload: str, secret: str, header_value: str) -> bool:
    """Check an `X-Circulation-Signature: sha256=<hex>` header."""
    expected = f"sha256={sign_payload(payload, secret)}"
    return hmac.compare_digest(expected, header_value)


class WebhookClient:
    """Delivers signed JSON events to one endpoint."""

    def __init__(
        self,
        url: str,
        secret: str = "",
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
        history_size: int = 200,
    ):
        self.url = url
        self.secret = secret
        self.timeout = timeout
        self._client = client
        self._history: list[WebhookDelivery] = []
        self._history_size = history_size

    async def post(self, event: str, payload: dict[str, Any]) -> WebhookDelivery:
        """Deliver one event. Raises httpx.HTTPError on transport or HTTP failure."""
        body = json.dumps(payload, default=str, sort_keys=True)
        headers = {
            "Content-Type": "application/json",
            "X-Circulation-Event": event,
            "X-Circulation-Delivery": str(uuid.uuid4()),
        }
        if self.secret:
            headers["X-Circulation-Signature"] = f"sha256={sign_payload(body, self.secret)}"

        start = time.time()
        if self._client is not None:
            resp = await self._client.post(self.url, content=body, headers=headers, timeout=self.timeout)
        else:
            async with httpx.AsyncClient() as client:
                resp = await client.post(self.url, content=body, headers=headers, timeout=self.timeout)
        latency = (time.time() - start) * 1000

        delivery = WebhookDelivery(
            event=event,
            url=self.url,
            status_code=resp.status_code,
            latency_ms=latency,
            success=200 <= resp.status_code < 300,
        )
        self._record(delivery)
        resp.raise_for_status()
        return delivery

    def _record(self, delivery: WebhookDelivery) -> None:
        self._history.append(delivery)
        if len(self._history) > self._history_size:
            del self._history[: len(self._history) - self._history_size]

    def get_deliveries(self, event: str | None = None, limit: int = 50) -> list[WebhookDelivery]:
        """Query delivery history, newest first."""
        results = list(self._history)
        if event:
            results = [d for d in results if d.event == event]
        return sorted(results, key=lambda d: d.delivered_at, reverse=True)[:limit]
