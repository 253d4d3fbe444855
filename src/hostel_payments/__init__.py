# hostel_payments package
__version__ = "0.1.0"

from .database import (
    LedgerEntry,
    PendingIntent,
    RoomBill,
    StudentBill,
    PaymentType,
    LedgerStatus,
    init_db,
    close_db,
    get_db,
)
from .exceptions import (
    PaymentError,
    ValidationError,
    NotFoundError,
    AlreadyPaidError,
    DuplicateInFlightError,
    SignatureInvalidError,
    GatewayUnavailableError,
    GatewayNotConfiguredError,
    AllocationError,
)

# Payment core exports
from .payments import (
    OrderInitiator,
    NotificationProcessor,
    LedgerAllocator,
    PaymentVerifier,
    ExpirySweeper,
    plan_waterfall,
)
