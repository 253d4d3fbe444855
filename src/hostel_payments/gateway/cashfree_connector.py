"""Cashfree payment gateway client."""

import os
import logging
from decimal import Decimal
from typing import Optional, Dict, Any

import httpx
from fastapi import status

from .base import (
    GatewayBase,
    GatewayOrder,
    GatewayOrderResponse,
    GatewayOrderStatus,
)
from ..exceptions import GatewayUnavailableError, GatewayNotConfiguredError

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "https://sandbox.cashfree.com/pg"
DEFAULT_API_VERSION = "2023-08-01"
TIMEOUT_SECONDS = 30.0


class CashfreeConnector(GatewayBase):
    """
    Gateway client for the Cashfree PG orders API.

    Credentials default to the CASHFREE_* environment variables. The webhook
    secret falls back to the client secret; with neither set every callback
    is rejected.
    """

    def __init__(
        self,
        client_id: Optional[str] = None,
        client_secret: Optional[str] = None,
        webhook_secret: Optional[str] = None,
        api_url: Optional[str] = None,
        api_version: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: float = TIMEOUT_SECONDS,
        max_age_seconds: Optional[int] = None,
    ):
        self.client_id = client_id or os.getenv("CASHFREE_CLIENT_ID")
        self.client_secret = client_secret or os.getenv("CASHFREE_CLIENT_SECRET")
        secret = webhook_secret or os.getenv("CASHFREE_WEBHOOK_SECRET") or self.client_secret
        super().__init__(webhook_secret=secret, max_age_seconds=max_age_seconds)

        self.api_url = (api_url or os.getenv("CASHFREE_API_URL", DEFAULT_API_URL)).rstrip("/")
        self.api_version = api_version or os.getenv("CASHFREE_API_VERSION", DEFAULT_API_VERSION)
        self.timeout = timeout
        self._transport = transport

        if not self.is_configured():
            logger.warning("Cashfree credentials not configured; payment initiation is disabled")

    def is_configured(self) -> bool:
        return bool(self.client_id and self.client_secret)

    def _headers(self) -> Dict[str, str]:
        return {
            "x-client-id": self.client_id or "",
            "x-client-secret": self.client_secret or "",
            "x-api-version": self.api_version,
            "Content-Type": "application/json",
        }

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.api_url,
            headers=self._headers(),
            timeout=self.timeout,
            transport=self._transport,
        )

    def _require_configured(self) -> None:
        if not self.is_configured():
            raise GatewayNotConfiguredError()

    @staticmethod
    def _error_message(exc: httpx.HTTPStatusError) -> str:
        code = exc.response.status_code
        if code == 401:
            return "Authentication failed - Please check your Cashfree credentials"
        if code == 403:
            return "Access denied - Please check your Cashfree account permissions"
        try:
            body = exc.response.json()
            return body.get("message") or f"Gateway returned HTTP {code}"
        except ValueError:
            return f"Gateway returned HTTP {code}"

    async def _request(self, method: str, path: str, json_body: Optional[Dict[str, Any]] = None) -> Any:
        self._require_configured()
        try:
            async with self._client() as client:
                response = await client.request(method, path, json=json_body)
                response.raise_for_status()
                return response.json()
        except httpx.TimeoutException as e:
            logger.error(f"Cashfree {method} {path} timed out")
            raise GatewayUnavailableError("Request timeout - Please try again") from e
        except httpx.HTTPStatusError as e:
            message = self._error_message(e)
            logger.error(f"Cashfree {method} {path} failed: HTTP {e.response.status_code} {message}")
            raise GatewayUnavailableError(message, status.HTTP_502_BAD_GATEWAY) from e
        except httpx.HTTPError as e:
            logger.error(f"Cashfree {method} {path} failed: {e}")
            raise GatewayUnavailableError("Payment gateway is unreachable") from e

    async def create_order(self, order: GatewayOrder) -> GatewayOrderResponse:
        body = order.model_dump(mode="json", exclude_none=True)
        # Gateway expects a JSON number for the amount
        body["order_amount"] = float(order.order_amount)
        data = await self._request("POST", "/orders", body)
        logger.info(f"Cashfree order created: {data.get('order_id')}")
        return GatewayOrderResponse(
            order_id=data.get("order_id", order.order_id),
            order_status=data.get("order_status", "ACTIVE"),
            payment_session_id=data.get("payment_session_id"),
            payment_link=data.get("payment_link"),
            raw_response=data,
        )

    async def fetch_order_status(self, order_id: str) -> GatewayOrderStatus:
        data = await self._request("GET", f"/orders/{order_id}")
        order_status = data.get("order_status", "ACTIVE")
        payment_id = None
        settlement_reference = None
        if order_status == "PAID":
            payment_id, settlement_reference = await self._latest_successful_payment(order_id)
        amount = data.get("order_amount")
        return GatewayOrderStatus(
            order_id=data.get("order_id", order_id),
            order_status=order_status,
            payment_id=payment_id,
            settlement_reference=settlement_reference,
            order_amount=Decimal(str(amount)) if amount is not None else None,
            raw_response=data,
        )

    async def _latest_successful_payment(self, order_id: str):
        """Look up the successful payment attempt of a paid order, if listed."""
        try:
            data = await self._request("GET", f"/orders/{order_id}/payments")
        except GatewayUnavailableError:
            logger.warning(f"Could not list payments for paid order {order_id}")
            return None, None
        payments = data if isinstance(data, list) else data.get("payments", [])
        for payment in payments:
            if payment.get("payment_status") == "SUCCESS":
                payment_id = payment.get("cf_payment_id")
                return (
                    str(payment_id) if payment_id is not None else None,
                    payment.get("bank_reference"),
                )
        return None, None

    async def terminate_order(self, order_id: str) -> bool:
        try:
            data = await self._request("PATCH", f"/orders/{order_id}", {"order_status": "TERMINATED"})
        except GatewayUnavailableError as e:
            logger.warning(f"Could not terminate order {order_id}: {e.message}")
            return False
        logger.info(f"Cashfree order {order_id} terminated ({data.get('order_status')})")
        return True
