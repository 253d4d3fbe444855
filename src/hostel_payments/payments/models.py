"""Request, response and outcome models for the payment core."""

import enum
from decimal import Decimal
from typing import Optional, List, Dict, Any, Tuple

from pydantic import BaseModel, ConfigDict, Field

from ..database.models import LedgerStatus


class ProcessingOutcome(str, enum.Enum):
    """What a callback or verification did to local state."""
    PROCESSED = "processed"  # ledger rows written
    RELEASED = "released"  # intent cleared after failure/cancellation
    PENDING = "pending"  # non-terminal status, nothing changed
    IGNORED = "ignored"  # no open intent for the order
    DUPLICATE = "duplicate"  # a concurrent delivery already recorded it
    ALLOCATION_FAILED = "allocation_failed"


# Gateway status code -> (ledger status, failure reason)
GATEWAY_STATUS_MAP: Dict[str, Tuple[str, Optional[str]]] = {
    "PAID": (LedgerStatus.SUCCESS.value, None),
    "SUCCESS": (LedgerStatus.SUCCESS.value, None),
    "EXPIRED": (LedgerStatus.CANCELLED.value, "Payment expired"),
    "FAILED": (LedgerStatus.FAILED.value, None),
    "CANCELLED": (LedgerStatus.CANCELLED.value, None),
}


def map_gateway_status(code: Optional[str]) -> Tuple[str, Optional[str]]:
    """Map an external status code to a ledger status and failure reason.

    Unknown codes (``ACTIVE``, ``PENDING``, ``USER_DROPPED``...) map to pending.
    """
    if not code:
        return LedgerStatus.PENDING.value, None
    return GATEWAY_STATUS_MAP.get(code.strip().upper(), (LedgerStatus.PENDING.value, None))


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class InitiatePaymentRequest(_CamelModel):
    """Either ``billId`` (electricity) or ``amount`` + ``academicYear`` (hostel fee)."""
    bill_id: Optional[str] = Field(None, alias="billId")
    room_id: Optional[str] = Field(None, alias="roomId")
    amount: Optional[Decimal] = None
    academic_year: Optional[str] = Field(None, alias="academicYear")


class InitiatePaymentResponse(_CamelModel):
    order_id: str = Field(..., alias="orderId")
    payment_type: str = Field(..., alias="paymentType")
    amount: Decimal
    payment_url: Optional[str] = Field(None, alias="paymentUrl")
    payment_session_id: Optional[str] = Field(None, alias="paymentSessionId")
    order_status: str = Field(..., alias="orderStatus")


class NotificationResult(BaseModel):
    """Result of applying a gateway status to an order."""
    order_id: str
    outcome: ProcessingOutcome
    status: str
    entry_ids: List[str] = Field(default_factory=list)
    overpayment: Optional[Decimal] = None
    message: Optional[str] = None


class RecordHostelFeeRequest(_CamelModel):
    student_id: str = Field(..., alias="studentId")
    amount: Decimal
    academic_year: str = Field(..., alias="academicYear")
    payment_method: str = Field("Cash", alias="paymentMethod")
    term: Optional[str] = None
    notes: Optional[str] = None
    collected_by_name: Optional[str] = Field(None, alias="collectedByName")
    receipt_number: Optional[str] = Field(None, alias="receiptNumber")
    transaction_id: Optional[str] = Field(None, alias="transactionId")


class CreateBillRequest(_CamelModel):
    month: str
    start_units: Decimal = Field(..., alias="startUnits")
    end_units: Decimal = Field(..., alias="endUnits")
    rate: Optional[Decimal] = None


class RateUpdateRequest(_CamelModel):
    rate: Decimal
    effective_from: Optional[str] = Field(None, alias="effectiveFrom")


class SweepResult(BaseModel):
    intents_removed: int = 0
    ledger_rows_removed: int = 0
    bills_reset: int = 0
    order_ids: List[str] = Field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump()
