"""Gateway client interface and canonical gateway models."""

import os
import re
import hmac
import json
import time
import hashlib
import logging
from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Optional, Dict, Any

from pydantic import BaseModel, Field

from ..exceptions import SignatureInvalidError, ValidationError

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "x-webhook-signature"
TIMESTAMP_HEADER = "x-webhook-timestamp"
DEFAULT_WEBHOOK_MAX_AGE_SECONDS = 300
HEX_SHA256 = re.compile(r"[0-9a-f]{64}")


# Canonical models
class CustomerDetails(BaseModel):
    customer_id: str = Field(..., max_length=50)
    customer_name: str = "Student"
    customer_email: str
    customer_phone: str = "9999999999"


class GatewayOrder(BaseModel):
    """Order-creation request in the gateway's wire shape."""
    order_id: str
    order_amount: Decimal
    order_currency: str = "INR"
    customer_details: CustomerDetails
    order_meta: Dict[str, Any] = Field(default_factory=dict)
    order_note: Optional[str] = None
    order_tags: Dict[str, str] = Field(default_factory=dict)


class GatewayOrderResponse(BaseModel):
    order_id: str
    order_status: str = "ACTIVE"
    payment_session_id: Optional[str] = None
    payment_link: Optional[str] = None
    raw_response: Optional[Dict[str, Any]] = None


class GatewayOrderStatus(BaseModel):
    """Current state of a remote order as reported by the gateway."""
    order_id: str
    order_status: str
    payment_id: Optional[str] = None
    settlement_reference: Optional[str] = None
    order_amount: Optional[Decimal] = None
    raw_response: Optional[Dict[str, Any]] = None


class WebhookEvent(BaseModel):
    """Verified and canonicalized gateway callback."""
    order_id: str
    status: str
    payment_id: Optional[str] = None
    settlement_reference: Optional[str] = None
    timestamp: Optional[str] = None
    payload: Dict[str, Any] = Field(default_factory=dict)


def extract_webhook_fields(payload: Dict[str, Any]) -> Dict[str, Optional[str]]:
    """Pull order id, status and payment references out of a callback body.

    Accepts the flat shape (``order_id``, ``order_status``, ``payment_id``) and
    the nested shape (``data.order``/``data.payment``).
    """
    data = payload.get("data") if isinstance(payload.get("data"), dict) else {}
    order = data.get("order") or {}
    payment = data.get("payment") or {}

    order_id = payload.get("order_id") or order.get("order_id")
    status = (
        payload.get("order_status")
        or payload.get("payment_status")
        or payment.get("payment_status")
        or order.get("order_status")
    )
    payment_id = (
        payload.get("payment_id")
        or payload.get("cf_payment_id")
        or payment.get("cf_payment_id")
    )
    settlement_reference = (
        payload.get("settlement_reference")
        or payload.get("bank_reference")
        or payment.get("bank_reference")
    )
    return {
        "order_id": str(order_id) if order_id is not None else None,
        "status": str(status) if status is not None else None,
        "payment_id": str(payment_id) if payment_id is not None else None,
        "settlement_reference": str(settlement_reference) if settlement_reference is not None else None,
    }


class GatewayBase(ABC):
    """
    Minimal gateway interface. Outbound methods make network calls; webhook
    verification is local and shared by every implementation.
    """

    def __init__(self, webhook_secret: Optional[str] = None, max_age_seconds: Optional[int] = None):
        self.webhook_secret = webhook_secret
        if max_age_seconds is None:
            max_age_seconds = int(os.getenv("WEBHOOK_MAX_AGE_SECONDS", str(DEFAULT_WEBHOOK_MAX_AGE_SECONDS)))
        self.max_age_seconds = max_age_seconds

    @abstractmethod
    def is_configured(self) -> bool:
        raise NotImplementedError

    @abstractmethod
    async def create_order(self, order: GatewayOrder) -> GatewayOrderResponse:
        """
        Create a hosted-payment order. Raises GatewayUnavailableError on failure.
        """
        raise NotImplementedError

    @abstractmethod
    async def fetch_order_status(self, order_id: str) -> GatewayOrderStatus:
        """
        Re-query the current status of an order. Raises GatewayUnavailableError on failure.
        """
        raise NotImplementedError

    @abstractmethod
    async def terminate_order(self, order_id: str) -> bool:
        """
        Ask the gateway to stop accepting payment for an order.
        """
        raise NotImplementedError

    def sign(self, payload: bytes, timestamp: str) -> str:
        """Hex HMAC-SHA256 over ``payload + timestamp``."""
        if not self.webhook_secret:
            raise SignatureInvalidError("Webhook secret is not configured")
        message = payload + timestamp.encode("utf-8")
        return hmac.new(self.webhook_secret.encode("utf-8"), message, hashlib.sha256).hexdigest()

    def verify_signature(self, payload: bytes, signature: Optional[str], timestamp: Optional[str]) -> bool:
        """
        Recompute the callback signature and compare in constant time.

        Fails closed: a missing secret, signature or timestamp is a mismatch.
        """
        if not self.webhook_secret:
            logger.warning("Webhook secret not configured; rejecting callback")
            return False
        if not signature or not timestamp:
            return False
        presented = signature.strip().lower()
        if not HEX_SHA256.fullmatch(presented):
            return False
        expected = self.sign(payload, timestamp)
        return hmac.compare_digest(expected.encode("ascii"), presented.encode("ascii"))

    def _is_fresh(self, timestamp: str) -> bool:
        try:
            value = float(timestamp)
        except ValueError:
            return False
        # Millisecond timestamps
        if value > 1e11:
            value = value / 1000.0
        return abs(time.time() - value) <= self.max_age_seconds

    def parse_webhook(self, headers: Dict[str, str], body: bytes) -> WebhookEvent:
        """
        Validate and canonicalize a gateway callback.

        Raises:
            SignatureInvalidError: signature missing or wrong, or timestamp stale.
            ValidationError: body is not JSON or lacks an order id / status.
        """
        lowered = {k.lower(): v for k, v in headers.items()}
        signature = lowered.get(SIGNATURE_HEADER)
        timestamp = lowered.get(TIMESTAMP_HEADER)

        if not self.verify_signature(body, signature, timestamp):
            logger.warning("Rejected callback with missing or invalid signature")
            raise SignatureInvalidError()
        if not self._is_fresh(timestamp):
            logger.warning(f"Rejected stale callback (timestamp={timestamp})")
            raise SignatureInvalidError("Webhook timestamp outside the accepted window")

        try:
            payload = json.loads(body)
        except json.JSONDecodeError:
            raise ValidationError("Invalid webhook payload")
        if not isinstance(payload, dict):
            raise ValidationError("Invalid webhook payload")

        fields = extract_webhook_fields(payload)
        if not fields["order_id"] or not fields["status"]:
            raise ValidationError("Webhook payload is missing order id or status")

        return WebhookEvent(
            order_id=fields["order_id"],
            status=fields["status"],
            payment_id=fields["payment_id"],
            settlement_reference=fields["settlement_reference"],
            timestamp=timestamp,
            payload=payload,
        )

    def health_check(self) -> Dict[str, Any]:
        return {"ok": True, "configured": self.is_configured()}
