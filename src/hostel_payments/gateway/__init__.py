"""Payment gateway clients."""

import os
from typing import Optional

from .base import (
    GatewayBase,
    GatewayOrder,
    GatewayOrderResponse,
    GatewayOrderStatus,
    CustomerDetails,
    WebhookEvent,
    SIGNATURE_HEADER,
    TIMESTAMP_HEADER,
    extract_webhook_fields,
)
from .orders import build_order, customer_id_for
from .cashfree_connector import CashfreeConnector
from .simulator_connector import (
    SimulatorConnector,
    SimulatorConfig,
    SimulatorScenario,
    SimulatedOrder,
)

_gateway: Optional[GatewayBase] = None


def get_gateway() -> GatewayBase:
    """
    FastAPI dependency returning the process gateway client.

    ``PAYMENT_GATEWAY=simulator`` selects the in-memory simulator; anything
    else uses Cashfree.
    """
    global _gateway
    if _gateway is None:
        if os.getenv("PAYMENT_GATEWAY", "cashfree").lower() == "simulator":
            _gateway = SimulatorConnector()
        else:
            _gateway = CashfreeConnector()
    return _gateway


__all__ = [
    # Base classes and models
    "GatewayBase",
    "GatewayOrder",
    "GatewayOrderResponse",
    "GatewayOrderStatus",
    "CustomerDetails",
    "WebhookEvent",
    "SIGNATURE_HEADER",
    "TIMESTAMP_HEADER",
    "extract_webhook_fields",
    # Order payloads
    "build_order",
    "customer_id_for",
    # Connectors
    "CashfreeConnector",
    "SimulatorConnector",
    "SimulatorConfig",
    "SimulatorScenario",
    "SimulatedOrder",
    "get_gateway",
]
