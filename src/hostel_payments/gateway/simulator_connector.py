"""Simulator gateway for exercising payment flows without real gateway calls."""

import json
import time
import uuid
import random
import logging
from typing import Dict, Any, Optional, Tuple
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum

from fastapi import status

from .base import (
    GatewayBase,
    GatewayOrder,
    GatewayOrderResponse,
    GatewayOrderStatus,
    SIGNATURE_HEADER,
    TIMESTAMP_HEADER,
)
from ..exceptions import GatewayUnavailableError, GatewayNotConfiguredError

logger = logging.getLogger(__name__)

SIMULATOR_WEBHOOK_SECRET = "sim_webhook_secret"


class SimulatorScenario(str, Enum):
    """Predefined outcomes for simulated orders."""
    PAID = "PAID"
    ACTIVE = "ACTIVE"
    EXPIRED = "EXPIRED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"
    TERMINATED = "TERMINATED"


@dataclass
class SimulatedOrder:
    """In-memory representation of a simulated gateway order."""
    order_id: str
    amount: Decimal
    currency: str
    status: str = SimulatorScenario.ACTIVE.value
    payment_session_id: str = ""
    payment_id: Optional[str] = None
    settlement_reference: Optional[str] = None
    created_at: datetime = field(default_factory=datetime.utcnow)
    tags: Dict[str, str] = field(default_factory=dict)


@dataclass
class SimulatorConfig:
    """Configuration for simulator behavior."""
    configured: bool = True
    fail_create: bool = False  # create_order raises as if the gateway rejected it
    unreachable: bool = False  # every outbound call raises as if the network failed
    auto_status: Optional[str] = None  # status applied to new orders immediately
    seed: Optional[int] = None  # Random seed for reproducibility


class SimulatorConnector(GatewayBase):
    """
    Simulator gateway for tests and local development.

    Features:
    - In-memory order storage
    - Scripted order outcomes via set_order_status()
    - Correctly signed callbacks via build_webhook()
    - Failure injection for order creation and connectivity
    """

    def __init__(
        self,
        config: Optional[SimulatorConfig] = None,
        webhook_secret: str = SIMULATOR_WEBHOOK_SECRET,
        max_age_seconds: Optional[int] = None,
    ):
        """Initialize the simulator with optional configuration."""
        super().__init__(webhook_secret=webhook_secret, max_age_seconds=max_age_seconds)
        self.config = config or SimulatorConfig()
        self._orders: Dict[str, SimulatedOrder] = {}
        self._rng = random.Random(self.config.seed)
        self.terminated: list = []
        logger.info("SimulatorConnector initialized")

    def _generate_id(self, prefix: str) -> str:
        return f"{prefix}_{uuid.UUID(int=self._rng.getrandbits(128)).hex[:24]}"

    def _check_reachable(self) -> None:
        if not self.config.configured:
            raise GatewayNotConfiguredError()
        if self.config.unreachable:
            raise GatewayUnavailableError("Payment gateway is unreachable")

    def is_configured(self) -> bool:
        return self.config.configured

    async def create_order(self, order: GatewayOrder) -> GatewayOrderResponse:
        """Create a simulated hosted-payment order."""
        self._check_reachable()
        if self.config.fail_create:
            raise GatewayUnavailableError("Failed to create payment order", status.HTTP_502_BAD_GATEWAY)
        if order.order_id in self._orders:
            raise GatewayUnavailableError("order_id already exists", status.HTTP_502_BAD_GATEWAY)

        sim = SimulatedOrder(
            order_id=order.order_id,
            amount=order.order_amount,
            currency=order.order_currency,
            payment_session_id=self._generate_id("session"),
            tags=dict(order.order_tags),
        )
        self._orders[order.order_id] = sim
        if self.config.auto_status:
            self.set_order_status(order.order_id, self.config.auto_status)

        return GatewayOrderResponse(
            order_id=sim.order_id,
            order_status=SimulatorScenario.ACTIVE.value,
            payment_session_id=sim.payment_session_id,
            payment_link=f"https://simulator.local/pay/{sim.payment_session_id}",
            raw_response={"simulator": True},
        )

    async def fetch_order_status(self, order_id: str) -> GatewayOrderStatus:
        """Return the scripted status of a simulated order."""
        self._check_reachable()
        sim = self._orders.get(order_id)
        if not sim:
            raise GatewayUnavailableError(f"Order {order_id} not found", status.HTTP_502_BAD_GATEWAY)
        return GatewayOrderStatus(
            order_id=sim.order_id,
            order_status=sim.status,
            payment_id=sim.payment_id,
            settlement_reference=sim.settlement_reference,
            order_amount=sim.amount,
            raw_response={"simulator": True},
        )

    async def terminate_order(self, order_id: str) -> bool:
        self.terminated.append(order_id)
        sim = self._orders.get(order_id)
        if not sim or sim.status == SimulatorScenario.PAID.value:
            return False
        sim.status = SimulatorScenario.TERMINATED.value
        return True

    def set_order_status(
        self,
        order_id: str,
        order_status: str,
        payment_id: Optional[str] = None,
        settlement_reference: Optional[str] = None,
    ) -> SimulatedOrder:
        """Script the outcome of an order (simulator-specific method)."""
        sim = self._orders[order_id]
        sim.status = order_status
        if order_status == SimulatorScenario.PAID.value:
            sim.payment_id = payment_id or self._generate_id("cf_pay")
            sim.settlement_reference = settlement_reference or self._generate_id("bank")
        return sim

    def build_webhook(
        self,
        order_id: str,
        order_status: str,
        payment_id: Optional[str] = None,
        settlement_reference: Optional[str] = None,
        timestamp: Optional[str] = None,
        nested: bool = False,
    ) -> Tuple[Dict[str, str], bytes]:
        """Build a correctly signed callback (headers, raw body) for an order."""
        if nested:
            payment_status = "SUCCESS" if order_status == SimulatorScenario.PAID.value else order_status
            payload: Dict[str, Any] = {
                "type": "PAYMENT_SUCCESS_WEBHOOK" if payment_status == "SUCCESS" else "PAYMENT_FAILED_WEBHOOK",
                "data": {
                    "order": {"order_id": order_id},
                    "payment": {
                        "payment_status": payment_status,
                        "cf_payment_id": payment_id,
                        "bank_reference": settlement_reference,
                    },
                },
            }
        else:
            payload = {
                "order_id": order_id,
                "order_status": order_status,
                "payment_id": payment_id,
                "settlement_reference": settlement_reference,
            }
        body = json.dumps(payload).encode("utf-8")
        ts = timestamp or str(int(time.time()))
        headers = {
            SIGNATURE_HEADER: self.sign(body, ts),
            TIMESTAMP_HEADER: ts,
            "content-type": "application/json",
        }
        return headers, body

    def get_order(self, order_id: str) -> Optional[SimulatedOrder]:
        """Get an order from in-memory storage (for testing)."""
        return self._orders.get(order_id)

    def get_all_orders(self) -> Dict[str, SimulatedOrder]:
        """Get all orders (for testing)."""
        return dict(self._orders)

    def clear_orders(self) -> None:
        """Clear all stored orders (for test cleanup)."""
        self._orders.clear()
        self.terminated.clear()

    def health_check(self) -> Dict[str, Any]:
        """Return health status of the simulator."""
        return {
            "ok": True,
            "provider": "simulator",
            "configured": self.config.configured,
            "order_count": len(self._orders),
        }
