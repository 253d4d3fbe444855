"""Database module for ledger, intent and bill persistence."""

from .models import (
    Base,
    Room,
    Student,
    FeeStructure,
    ElectricityRateSetting,
    RoomBill,
    StudentBill,
    LedgerEntry,
    PendingIntent,
    PaymentType,
    LedgerStatus,
    BillStatus,
    PaymentMethod,
    Term,
    TERMS,
)
from .session import (
    get_db,
    get_database_url,
    init_db,
    close_db,
    create_async_engine,
    get_async_session_factory,
    create_tables,
    standalone_session,
)
from .repository import (
    StudentRepository,
    RoomBillRepository,
    FeeStructureRepository,
    ElectricityRateRepository,
    LedgerRepository,
    PendingIntentRepository,
)

__all__ = [
    # Models
    "Base",
    "Room",
    "Student",
    "FeeStructure",
    "ElectricityRateSetting",
    "RoomBill",
    "StudentBill",
    "LedgerEntry",
    "PendingIntent",
    "PaymentType",
    "LedgerStatus",
    "BillStatus",
    "PaymentMethod",
    "Term",
    "TERMS",
    # Session management
    "get_db",
    "get_database_url",
    "init_db",
    "close_db",
    "create_async_engine",
    "get_async_session_factory",
    "create_tables",
    "standalone_session",
    # Repositories
    "StudentRepository",
    "RoomBillRepository",
    "FeeStructureRepository",
    "ElectricityRateRepository",
    "LedgerRepository",
    "PendingIntentRepository",
]
