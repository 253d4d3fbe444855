"""SQLAlchemy models for the payment ledger and its collaborators."""

import uuid
import json
from datetime import datetime
from decimal import Decimal
from typing import Optional, Dict, Any, List

from sqlalchemy import (
    String,
    Integer,
    Numeric,
    Boolean,
    DateTime,
    ForeignKey,
    Text,
    Index,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import DeclarativeBase, relationship, Mapped, mapped_column
import enum


SUPPORTED_CURRENCY = "INR"


def _uuid() -> str:
    return str(uuid.uuid4())


class Base(DeclarativeBase):
    """Base class for all models."""
    pass


class PaymentType(str, enum.Enum):
    """Ledger domain discriminator."""
    ELECTRICITY = "electricity"
    HOSTEL_FEE = "hostel_fee"
    CAUTION_DEPOSIT = "caution_deposit"
    ADDITIONAL_FEE = "additional_fee"


class LedgerStatus(str, enum.Enum):
    """Ledger entry statuses. Only ``pending`` is non-terminal."""
    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"
    CANCELLED = "cancelled"


class BillStatus(str, enum.Enum):
    """Denormalized payment status kept on room bills and sub-bills."""
    UNPAID = "unpaid"
    PENDING = "pending"
    PAID = "paid"


class Term(str, enum.Enum):
    """Hostel fee installments, in allocation order."""
    TERM1 = "term1"
    TERM2 = "term2"
    TERM3 = "term3"


TERMS = [Term.TERM1.value, Term.TERM2.value, Term.TERM3.value]

# Bucket name used for single-allocation (non-term) ledger rows
BILL_BUCKET = "bill"


class PaymentMethod(str, enum.Enum):
    CASH = "Cash"
    ONLINE = "Online"
    CARD = "card"
    UPI = "upi"
    NETBANKING = "netbanking"
    WALLET = "wallet"
    OTHER = "other"


class Room(Base):
    """Hostel room. Owned by the room directory; read by the payment core."""
    __tablename__ = "rooms"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    room_number: Mapped[str] = mapped_column(String(10), nullable=False, unique=True)
    category: Mapped[Optional[str]] = mapped_column(String(5), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)

    students: Mapped[List["Student"]] = relationship("Student", back_populates="room")
    bills: Mapped[List["RoomBill"]] = relationship(
        "RoomBill",
        back_populates="room",
        cascade="all, delete-orphan",
        order_by="RoomBill.month.desc()",
    )


class Student(Base):
    """Student directory record. Owned by the student directory."""
    __tablename__ = "students"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    roll_number: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    phone: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    course: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    year_of_study: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    category: Mapped[Optional[str]] = mapped_column(String(5), nullable=True)
    hostel_status: Mapped[str] = mapped_column(String(20), nullable=False, default="Active")
    room_id: Mapped[Optional[str]] = mapped_column(String(36), ForeignKey("rooms.id"), nullable=True, index=True)

    room: Mapped[Optional["Room"]] = relationship("Room", back_populates="students")

    @property
    def is_active(self) -> bool:
        return self.hostel_status == "Active"


class FeeStructure(Base):
    """Configured per-term hostel fee for an academic year and student profile.

    ``course`` and ``year_of_study`` may be NULL, in which case the row applies
    to every course/year within the category.
    """
    __tablename__ = "fee_structures"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    academic_year: Mapped[str] = mapped_column(String(9), nullable=False)
    course: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    year_of_study: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    category: Mapped[str] = mapped_column(String(5), nullable=False)
    term1_fee: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=0)
    term2_fee: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=0)
    term3_fee: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=0)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint("academic_year", "course", "year_of_study", "category", name="uq_fee_structure_profile"),
        Index("ix_fee_structures_academic_year", "academic_year", "is_active"),
    )

    def term_fee(self, term: str) -> Decimal:
        return Decimal(str(getattr(self, f"{term}_fee") or 0))

    @property
    def total_fee(self) -> Decimal:
        return sum((self.term_fee(t) for t in TERMS), Decimal("0"))


class ElectricityRateSetting(Base):
    """One version of the room-wide default electricity rate.

    Rows are append-only; the current rate is the newest row whose
    ``effective_from`` is not in the future.
    """
    __tablename__ = "electricity_rate_settings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    rate: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    effective_from: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow, index=True)
    set_by: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)


class RoomBill(Base):
    """Monthly electricity bill for a room."""
    __tablename__ = "room_bills"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    room_id: Mapped[str] = mapped_column(String(36), ForeignKey("rooms.id"), nullable=False, index=True)
    month: Mapped[str] = mapped_column(String(7), nullable=False)
    start_units: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=0)
    end_units: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=0)
    consumption: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    rate: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    total: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    payment_status: Mapped[str] = mapped_column(String(20), nullable=False, default=BillStatus.UNPAID.value)
    gateway_order_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    paid_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)

    room: Mapped["Room"] = relationship("Room", back_populates="bills")
    student_bills: Mapped[List["StudentBill"]] = relationship(
        "StudentBill",
        back_populates="bill",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    __table_args__ = (
        UniqueConstraint("room_id", "month", name="uq_room_bills_room_month"),
    )

    @property
    def is_split(self) -> bool:
        return bool(self.student_bills)

    def share_for(self, student_id: str) -> Optional["StudentBill"]:
        for sub_bill in self.student_bills:
            if sub_bill.student_id == student_id:
                return sub_bill
        return None

    def snapshot(self) -> Dict[str, Any]:
        """Consumption/rate/total snapshot recorded on ledger rows for audit."""
        return {
            "month": self.month,
            "start_units": str(self.start_units),
            "end_units": str(self.end_units),
            "consumption": str(self.consumption),
            "rate": str(self.rate),
            "total": str(self.total),
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "room_id": self.room_id,
            "month": self.month,
            "consumption": str(self.consumption),
            "rate": str(self.rate),
            "total": str(self.total),
            "payment_status": self.payment_status,
            "paid_at": self.paid_at.isoformat() if self.paid_at else None,
            "student_bills": [s.to_dict() for s in self.student_bills],
        }


class StudentBill(Base):
    """One student's share of a room electricity bill (sub-bill)."""
    __tablename__ = "student_bills"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    bill_id: Mapped[str] = mapped_column(String(36), ForeignKey("room_bills.id"), nullable=False, index=True)
    student_id: Mapped[str] = mapped_column(String(36), ForeignKey("students.id"), nullable=False, index=True)
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    payment_status: Mapped[str] = mapped_column(String(20), nullable=False, default=BillStatus.UNPAID.value)
    gateway_order_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    paid_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    bill: Mapped["RoomBill"] = relationship("RoomBill", back_populates="student_bills")

    __table_args__ = (
        UniqueConstraint("bill_id", "student_id", name="uq_student_bills_bill_student"),
    )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "student_id": self.student_id,
            "amount": str(self.amount),
            "payment_status": self.payment_status,
            "paid_at": self.paid_at.isoformat() if self.paid_at else None,
        }


class LedgerEntry(Base):
    """One recorded payment or allocation row; the system of record.

    ``allocation_bucket`` is ``"bill"`` for single-allocation rows and the term
    for hostel fee rows, so one gateway order can fund up to three rows while
    each (order, bucket) pair is still recorded at most once.
    """
    __tablename__ = "ledger_entries"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    payment_type: Mapped[str] = mapped_column(String(30), nullable=False)
    allocation_bucket: Mapped[str] = mapped_column(String(10), nullable=False, default=BILL_BUCKET)
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default=SUPPORTED_CURRENCY)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=LedgerStatus.SUCCESS.value)
    payment_method: Mapped[str] = mapped_column(String(20), nullable=False, default=PaymentMethod.ONLINE.value)
    student_id: Mapped[str] = mapped_column(String(36), ForeignKey("students.id"), nullable=False)

    # Gateway correlation
    gateway_order_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    gateway_payment_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    settlement_reference: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)

    # Electricity
    bill_id: Mapped[Optional[str]] = mapped_column(String(36), ForeignKey("room_bills.id"), nullable=True)
    student_bill_id: Mapped[Optional[str]] = mapped_column(String(36), ForeignKey("student_bills.id"), nullable=True)
    room_id: Mapped[Optional[str]] = mapped_column(String(36), ForeignKey("rooms.id"), nullable=True)
    bill_month: Mapped[Optional[str]] = mapped_column(String(7), nullable=True)
    bill_snapshot_json: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Hostel fee
    term: Mapped[Optional[str]] = mapped_column(String(10), nullable=True)
    academic_year: Mapped[Optional[str]] = mapped_column(String(9), nullable=True)
    receipt_number: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, unique=True)
    transaction_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, unique=True)

    # Collector metadata
    collected_by: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    collected_by_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    notes: Mapped[str] = mapped_column(Text, nullable=False, default="")

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)
    paid_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    __table_args__ = (
        UniqueConstraint("gateway_order_id", "allocation_bucket", name="uq_ledger_order_bucket"),
        UniqueConstraint("gateway_payment_id", "allocation_bucket", name="uq_ledger_gateway_payment_bucket"),
        Index(
            "uq_ledger_electricity_success",
            "student_id",
            "bill_id",
            unique=True,
            sqlite_where=text("payment_type = 'electricity' AND status = 'success'"),
            postgresql_where=text("payment_type = 'electricity' AND status = 'success'"),
        ),
        Index("ix_ledger_entries_student_status", "student_id", "status"),
        Index("ix_ledger_entries_student_type", "student_id", "payment_type"),
        Index("ix_ledger_entries_term_year", "term", "academic_year"),
        Index("ix_ledger_entries_bill_month", "room_id", "bill_month"),
        Index("ix_ledger_entries_created_at", "created_at"),
    )

    @property
    def bill_snapshot(self) -> Optional[Dict[str, Any]]:
        """Get the bill snapshot as dictionary."""
        if self.bill_snapshot_json:
            return json.loads(self.bill_snapshot_json)
        return None

    @bill_snapshot.setter
    def bill_snapshot(self, value: Optional[Dict[str, Any]]) -> None:
        if value is not None:
            self.bill_snapshot_json = json.dumps(value)
        else:
            self.bill_snapshot_json = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert ledger entry to dictionary representation."""
        return {
            "id": self.id,
            "payment_type": self.payment_type,
            "amount": str(self.amount),
            "currency": self.currency,
            "status": self.status,
            "payment_method": self.payment_method,
            "student_id": self.student_id,
            "gateway_order_id": self.gateway_order_id,
            "gateway_payment_id": self.gateway_payment_id,
            "settlement_reference": self.settlement_reference,
            "bill_id": self.bill_id,
            "student_bill_id": self.student_bill_id,
            "room_id": self.room_id,
            "bill_month": self.bill_month,
            "bill_snapshot": self.bill_snapshot,
            "term": self.term,
            "academic_year": self.academic_year,
            "receipt_number": self.receipt_number,
            "transaction_id": self.transaction_id,
            "collected_by": self.collected_by,
            "collected_by_name": self.collected_by_name,
            "notes": self.notes,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "paid_at": self.paid_at.isoformat() if self.paid_at else None,
        }


class PendingIntent(Base):
    """Not-yet-ledgered record of an initiated gateway payment.

    At most one open intent exists per (student, payment type, target); the
    row is deleted on any terminal outcome.
    """
    __tablename__ = "pending_intents"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    order_id: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    student_id: Mapped[str] = mapped_column(String(36), ForeignKey("students.id"), nullable=False, index=True)
    payment_type: Mapped[str] = mapped_column(String(30), nullable=False)
    target_key: Mapped[str] = mapped_column(String(64), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)

    bill_id: Mapped[Optional[str]] = mapped_column(String(36), ForeignKey("room_bills.id"), nullable=True)
    student_bill_id: Mapped[Optional[str]] = mapped_column(String(36), ForeignKey("student_bills.id"), nullable=True)
    room_id: Mapped[Optional[str]] = mapped_column(String(36), ForeignKey("rooms.id"), nullable=True)
    academic_year: Mapped[Optional[str]] = mapped_column(String(9), nullable=True)

    payment_session_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    payment_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint("student_id", "payment_type", "target_key", name="uq_pending_intents_open_target"),
        Index("ix_pending_intents_created_at", "created_at"),
    )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "student_id": self.student_id,
            "payment_type": self.payment_type,
            "target_key": self.target_key,
            "amount": str(self.amount),
            "status": LedgerStatus.PENDING.value,
            "bill_id": self.bill_id,
            "student_bill_id": self.student_bill_id,
            "academic_year": self.academic_year,
            "payment_url": self.payment_url,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
