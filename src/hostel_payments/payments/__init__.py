"""Payment reconciliation core: initiation, callbacks, allocation and expiry."""

from .models import (
    ProcessingOutcome,
    NotificationResult,
    InitiatePaymentRequest,
    InitiatePaymentResponse,
    RecordHostelFeeRequest,
    CreateBillRequest,
    RateUpdateRequest,
    SweepResult,
    map_gateway_status,
)
from .allocator import (
    LedgerAllocator,
    TermBalance,
    Allocation,
    WaterfallPlan,
    AllocationResult,
    plan_waterfall,
    outstanding_total,
)
from .bills import BillService, split_share
from .intents import PendingIntentTracker, INITIATION_COOLDOWN, INTENT_EXPIRY
from .initiator import OrderInitiator
from .processor import NotificationProcessor
from .verification import PaymentVerifier
from .sweeper import ExpirySweeper
from .hostel_fee import HostelFeeService
from .reports import PaymentReports

__all__ = [
    # Models
    "ProcessingOutcome",
    "NotificationResult",
    "InitiatePaymentRequest",
    "InitiatePaymentResponse",
    "RecordHostelFeeRequest",
    "CreateBillRequest",
    "RateUpdateRequest",
    "SweepResult",
    "map_gateway_status",
    # Allocation
    "LedgerAllocator",
    "TermBalance",
    "Allocation",
    "WaterfallPlan",
    "AllocationResult",
    "plan_waterfall",
    "outstanding_total",
    # Services
    "BillService",
    "split_share",
    "PendingIntentTracker",
    "INITIATION_COOLDOWN",
    "INTENT_EXPIRY",
    "OrderInitiator",
    "NotificationProcessor",
    "PaymentVerifier",
    "ExpirySweeper",
    "HostelFeeService",
    "PaymentReports",
]
