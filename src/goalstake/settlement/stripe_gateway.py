"""
Stripe Payment Gateway
======================
``PaymentGateway`` over Stripe's REST API using aiohttp.

Requests are form-encoded with Stripe's bracket notation for nested fields
(``metadata[userId]=...``, ``line_items[0][quantity]=1``). Webhook deliveries
are authenticated with the ``Stripe-Signature`` header:

    Stripe-Signature: t=<timestamp>,v1=<hex hmac_sha256(secret, "<t>.<payload>")>
"""

from __future__ import annotations

import asyncio
import hashlib
import hmac
import json
import time
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

import aiohttp
from loguru import logger

from goalstake.core.config import StripeConfig
from goalstake.core.exceptions import (
    ConfigurationError,
    GatewayError,
    ValidationError,
    wrap_gateway_exception,
)
from goalstake.settlement.gateway import (
    PAYMENT_COMPLETED,
    CheckoutSession,
    PaymentEvent,
    PaymentGateway,
    RefundReceipt,
    SessionMetadata,
    SessionStatus,
)


class StripeSignature:
    """HMAC-SHA256 signing and verification of Stripe webhook payloads."""

    HEADER = "Stripe-Signature"
    VERSION_PREFIX = "v1"

    @classmethod
    def compute(cls, payload: Union[bytes, str], secret: str, timestamp: int) -> str:
        if isinstance(payload, str):
            payload = payload.encode()
        message = f"{timestamp}.".encode() + payload
        return hmac.new(secret.encode(), message, hashlib.sha256).hexdigest()

    @classmethod
    def sign(cls, payload: Union[bytes, str], secret: str, timestamp: Optional[int] = None) -> str:
        """Header value for ``payload``: "t=<timestamp>,v1=<signature>"."""
        if timestamp is None:
            timestamp = int(time.time())
        return f"t={timestamp},{cls.VERSION_PREFIX}={cls.compute(payload, secret, timestamp)}"

    @classmethod
    def verify(
        cls,
        payload: Union[bytes, str],
        secret: str,
        signature_header: str,
        tolerance_seconds: int = 300,
        now: Optional[float] = None,
    ) -> bool:
        timestamp = None
        signatures: List[str] = []
        try:
            for part in signature_header.split(","):
                key, value = part.strip().split("=", 1)
                if key == "t":
                    timestamp = int(value)
                elif key == cls.VERSION_PREFIX:
                    signatures.append(value)
        except (ValueError, AttributeError) as e:
            logger.warning(f"[StripeSignature] Unparseable header: {e}")
            return False

        if timestamp is None or not signatures:
            return False

        current = int(now if now is not None else time.time())
        if abs(current - timestamp) > tolerance_seconds:
            logger.warning(f"[StripeSignature] Timestamp outside tolerance: {timestamp} vs {current}")
            return False

        expected = cls.compute(payload, secret, timestamp)
        return any(hmac.compare_digest(expected, candidate) for candidate in signatures)


def encode_form(params: Dict[str, Any], prefix: str = "") -> List[Tuple[str, str]]:
    """Flatten nested dicts/lists into Stripe's bracketed form fields."""
    fields: List[Tuple[str, str]] = []
    for key, value in params.items():
        name = f"{prefix}[{key}]" if prefix else str(key)
        if value is None:
            continue
        if isinstance(value, dict):
            fields.extend(encode_form(value, name))
        elif isinstance(value, (list, tuple)):
            fields.extend(encode_form({str(i): item for i, item in enumerate(value)}, name))
        elif isinstance(value, bool):
            fields.append((name, "true" if value else "false"))
        else:
            fields.append((name, str(value)))
    return fields


def _object_id(value: Any) -> Optional[str]:
    """Stripe returns either an id or an expanded object with an ``id``."""
    if isinstance(value, dict):
        return value.get("id")
    return value


class StripeGateway(PaymentGateway):
    name = "stripe"

    def __init__(
        self,
        config: StripeConfig,
        http_session: Optional[aiohttp.ClientSession] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.config = config
        self._session = http_session
        self._owns_session = http_session is None
        self._clock = clock

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    def _headers(self) -> Dict[str, str]:
        if not self.config.api_key:
            raise ConfigurationError("stripe.api_key", "Stripe API key is not configured")
        return {
            "Authorization": f"Bearer {self.config.api_key}",
            "Content-Type": "application/x-www-form-urlencoded",
        }

    async def _request(
        self,
        method: str,
        path: str,
        operation: str,
        form: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        headers = self._headers()
        if self._session is None:
            self._session = aiohttp.ClientSession()
        url = f"{self.config.api_base.rstrip('/')}{path}"

        try:
            async with self._session.request(
                method,
                url,
                data=encode_form(form) if form else None,
                headers=headers,
                timeout=aiohttp.ClientTimeout(total=self.config.timeout_seconds),
            ) as response:
                body = await response.json(content_type=None)
                if response.status >= 400:
                    error = (body or {}).get("error") or {}
                    raise GatewayError(
                        self.name,
                        operation,
                        error.get("message") or f"HTTP {response.status}",
                        {"status": response.status, "type": error.get("type")},
                    )
                return body or {}
        except GatewayError:
            raise
        except asyncio.TimeoutError as e:
            raise GatewayError(self.name, operation, "request timed out") from e
        except (aiohttp.ClientError, ValueError) as e:
            raise wrap_gateway_exception(self.name, operation, e) from e

    async def close(self) -> None:
        if self._session is not None and self._owns_session:
            await self._session.close()
            self._session = None

    # ------------------------------------------------------------------
    # PaymentGateway
    # ------------------------------------------------------------------

    async def create_session(
        self,
        metadata: SessionMetadata,
        amount: int,
        currency: str,
        success_url: str,
        cancel_url: str,
        description: Optional[str] = None,
    ) -> CheckoutSession:
        form = {
            "payment_method_types": ["card"],
            "line_items": [{
                "price_data": {
                    "currency": currency,
                    "product_data": {
                        "name": f"Goal stake: {description}" if description else "Goal stake",
                    },
                    "unit_amount": amount,
                },
                "quantity": 1,
            }],
            "mode": "payment",
            "success_url": success_url,
            "cancel_url": cancel_url,
            "metadata": metadata.to_wire(),
        }
        body = await self._request("POST", "/v1/checkout/sessions", "create_session", form)
        logger.info(f"[stripe] Checkout session created: {body.get('id')} ({amount} {currency})")
        return CheckoutSession(session_id=body["id"], url=body.get("url", ""))

    async def verify_session(self, session_id: str) -> SessionStatus:
        body = await self._request("GET", f"/v1/checkout/sessions/{session_id}", "verify_session")
        return SessionStatus(
            session_id=body.get("id", session_id),
            paid=body.get("payment_status") == "paid",
            charge_reference=_object_id(body.get("payment_intent")),
            metadata=SessionMetadata.from_wire(body.get("metadata")),
        )

    async def refund_partial(
        self,
        charge_reference: str,
        amount: int,
        metadata: Optional[Dict[str, str]] = None,
    ) -> RefundReceipt:
        form = {
            "payment_intent": charge_reference,
            "amount": amount,
            "reason": "requested_by_customer",
            "metadata": metadata or {},
        }
        body = await self._request("POST", "/v1/refunds", "refund_partial", form)
        return RefundReceipt(refund_id=body.get("id", ""), amount=int(body.get("amount", amount)),
                             metadata=dict(metadata or {}))

    def parse_event(self, payload: bytes, signature_header: Optional[str]) -> Optional[PaymentEvent]:
        secret = self.config.webhook_secret
        if not secret:
            raise ConfigurationError("stripe.webhook_secret", "Stripe webhook secret is not configured")
        if not signature_header:
            raise ValidationError(StripeSignature.HEADER, "missing signature header")
        if not StripeSignature.verify(
            payload, secret, signature_header,
            tolerance_seconds=self.config.signature_tolerance_seconds,
            now=self._clock(),
        ):
            raise ValidationError(StripeSignature.HEADER, "signature verification failed")

        try:
            event = json.loads(payload)
        except (TypeError, ValueError) as e:
            raise ValidationError("payload", f"invalid JSON: {e}")

        event_type = event.get("type")
        if event_type != PAYMENT_COMPLETED:
            logger.debug(f"[stripe] Ignoring event type {event_type}")
            return None

        session = (event.get("data") or {}).get("object") or {}
        if not session.get("id"):
            raise ValidationError("data.object.id", "missing checkout session id")
        return PaymentEvent(
            event_type=event_type,
            session_id=session["id"],
            charge_reference=_object_id(session.get("payment_intent")),
            metadata=SessionMetadata.from_wire(session.get("metadata")),
        )
