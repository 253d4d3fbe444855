"""Room electricity bills: creation, per-student split and status denormalization."""

import logging
from datetime import datetime
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from ..database.models import RoomBill, StudentBill, ElectricityRateSetting, BillStatus
from ..database.repository import (
    RoomBillRepository,
    StudentRepository,
    ElectricityRateRepository,
    LedgerRepository,
    PendingIntentRepository,
)
from ..exceptions import ValidationError, NotFoundError
from .identifiers import CENT, MAX_AMOUNT, validate_bill_month, validate_rate

logger = logging.getLogger(__name__)


def split_share(total: Decimal, occupants: int) -> Decimal:
    """Per-occupant share of a room bill, rounded to whole rupees (half up)."""
    if occupants <= 0:
        raise ValidationError("No active students found in this room")
    return (Decimal(total) / occupants).quantize(Decimal("1"), rounding=ROUND_HALF_UP)


def _reading(value) -> Decimal:
    try:
        value = Decimal(str(value))
    except InvalidOperation as e:
        raise ValidationError("Meter readings must be numbers") from e
    if not value.is_finite() or abs(value) > MAX_AMOUNT:
        raise ValidationError("Meter reading is out of range")
    return value


class BillService:
    """Service for room bills and the versioned default electricity rate."""

    def __init__(self, session: AsyncSession):
        self.session = session
        self.bill_repo = RoomBillRepository(session)
        self.student_repo = StudentRepository(session)
        self.rate_repo = ElectricityRateRepository(session)
        self.ledger_repo = LedgerRepository(session)
        self.intent_repo = PendingIntentRepository(session)

    async def current_rate(self) -> Optional[ElectricityRateSetting]:
        return await self.rate_repo.current()

    async def set_rate(
        self,
        rate: Decimal,
        set_by: Optional[str] = None,
        effective_from: Optional[datetime] = None,
    ) -> ElectricityRateSetting:
        """Record a new version of the default rate. Earlier versions are kept."""
        rate = validate_rate(rate)
        return await self.rate_repo.add(rate, set_by=set_by, effective_from=effective_from)

    async def create_bill(
        self,
        room_id: str,
        month: str,
        start_units: Decimal,
        end_units: Decimal,
        rate: Optional[Decimal] = None,
    ) -> RoomBill:
        """
        Create (or replace an untouched) monthly bill for a room.

        The rate defaults to the current versioned default rate. When the room
        has active occupants the total is split into one sub-bill each.

        Raises:
            NotFoundError: Room does not exist.
            ValidationError: Bad month or readings, no rate available, or the
                existing bill for the month already has payment activity.
        """
        room = await self.bill_repo.get_room(room_id)
        if not room:
            raise NotFoundError("Room not found")
        validate_bill_month(month)

        start_units = _reading(start_units)
        end_units = _reading(end_units)
        if start_units < 0 or end_units < start_units:
            raise ValidationError("End reading must be greater than or equal to start reading")

        if rate is None:
            setting = await self.rate_repo.current()
            if not setting:
                raise ValidationError("No default electricity rate configured")
            rate = Decimal(str(setting.rate))
        else:
            rate = validate_rate(rate)

        consumption = end_units - start_units
        total = (consumption * rate).quantize(CENT, rounding=ROUND_HALF_UP)
        if total > MAX_AMOUNT:
            raise ValidationError(f"Bill total {total} is too large")

        existing = await self.bill_repo.get_bill_for_month(room_id, month)
        if existing:
            await self._ensure_replaceable(existing)
            await self.bill_repo.delete_bill(existing)
            logger.info(f"Replacing unpaid bill for room {room.room_number} month {month}")

        occupants = await self.student_repo.list_active_in_room(room_id)
        student_bills = []
        if occupants:
            share = split_share(total, len(occupants))
            student_bills = [StudentBill(student_id=s.id, amount=share) for s in occupants]

        bill = RoomBill(
            room_id=room_id,
            month=month,
            start_units=start_units,
            end_units=end_units,
            consumption=consumption,
            rate=rate,
            total=total,
            payment_status=BillStatus.UNPAID.value,
            student_bills=student_bills,
        )
        return await self.bill_repo.add_bill(bill)

    async def _ensure_replaceable(self, bill: RoomBill) -> None:
        touched = bill.payment_status != BillStatus.UNPAID.value or any(
            sb.payment_status != BillStatus.UNPAID.value for sb in bill.student_bills
        )
        if touched or await self.ledger_repo.electricity_payers(bill.id) or await self.intent_repo.count_open_for_bill(bill.id):
            raise ValidationError(f"Bill for {bill.month} already has payments and cannot be replaced")

    async def mark_pending(self, bill: RoomBill, sub_bill: Optional[StudentBill], order_id: str) -> None:
        if sub_bill is not None:
            sub_bill.payment_status = BillStatus.PENDING.value
            sub_bill.gateway_order_id = order_id
        bill.gateway_order_id = order_id
        await self.refresh_status(bill)

    async def mark_paid(self, bill: RoomBill, sub_bill: Optional[StudentBill], paid_at: datetime) -> None:
        if sub_bill is not None:
            sub_bill.payment_status = BillStatus.PAID.value
            sub_bill.paid_at = paid_at
        await self.refresh_status(bill, paid_at=paid_at)

    async def release(self, bill_id: Optional[str], student_bill_id: Optional[str], order_id: str) -> Optional[RoomBill]:
        """Return a bill/sub-bill that was pending on ``order_id`` to unpaid."""
        if not bill_id:
            return None
        bill = await self.bill_repo.get_bill(bill_id)
        if not bill:
            logger.warning(f"Bill {bill_id} for order {order_id} no longer exists")
            return None

        sub_bill = None
        if student_bill_id:
            sub_bill = await self.bill_repo.get_student_bill(student_bill_id)
        if sub_bill is not None and sub_bill.payment_status != BillStatus.PAID.value:
            sub_bill.payment_status = BillStatus.UNPAID.value
            if sub_bill.gateway_order_id == order_id:
                sub_bill.gateway_order_id = None
        if bill.gateway_order_id == order_id:
            bill.gateway_order_id = None
        await self.refresh_status(bill)
        return bill

    async def refresh_status(self, bill: RoomBill, paid_at: Optional[datetime] = None) -> str:
        """
        Recompute the room-bill status from its sub-bills (split) or from the
        ledger and open intents (legacy unsplit).
        """
        previous = bill.payment_status
        if bill.is_split:
            statuses = [sb.payment_status for sb in bill.student_bills]
            if all(s == BillStatus.PAID.value for s in statuses):
                new_status = BillStatus.PAID.value
            elif any(s == BillStatus.PENDING.value for s in statuses):
                new_status = BillStatus.PENDING.value
            else:
                new_status = BillStatus.UNPAID.value
        else:
            payers = set(await self.ledger_repo.electricity_payers(bill.id))
            occupants = await self.student_repo.list_active_in_room(bill.room_id)
            if occupants and all(s.id in payers for s in occupants):
                new_status = BillStatus.PAID.value
            elif await self.intent_repo.count_open_for_bill(bill.id):
                new_status = BillStatus.PENDING.value
            else:
                new_status = BillStatus.UNPAID.value

        bill.payment_status = new_status
        if new_status == BillStatus.PAID.value:
            bill.paid_at = bill.paid_at or paid_at or datetime.utcnow()
        await self.session.flush()
        if new_status != previous:
            logger.info(f"Bill {bill.id} ({bill.month}) status {previous} -> {new_status}")
        return new_status
