"""Repository layer for ledger, intent and directory persistence operations."""

import logging
from datetime import datetime
from decimal import Decimal
from typing import Optional, Dict, Any, List, Tuple

from sqlalchemy import select, and_, func, delete
from sqlalchemy.ext.asyncio import AsyncSession

from .models import (
    Student,
    Room,
    RoomBill,
    StudentBill,
    FeeStructure,
    ElectricityRateSetting,
    LedgerEntry,
    PendingIntent,
    LedgerStatus,
    PaymentType,
    TERMS,
)

logger = logging.getLogger(__name__)


def to_decimal(value: Any) -> Decimal:
    """Normalize a DB numeric (Decimal, float, int or None) to Decimal."""
    if value is None:
        return Decimal("0")
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


class StudentRepository:
    """Read access to the student directory."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_id(self, student_id: str) -> Optional[Student]:
        result = await self.session.execute(
            select(Student).where(Student.id == student_id)
        )
        return result.scalar_one_or_none()

    async def get_by_roll_number(self, roll_number: str) -> Optional[Student]:
        result = await self.session.execute(
            select(Student).where(Student.roll_number == roll_number.strip().upper())
        )
        return result.scalar_one_or_none()

    async def list_active_in_room(self, room_id: str) -> List[Student]:
        """List students currently active in a room, ordered by roll number."""
        result = await self.session.execute(
            select(Student)
            .where(and_(Student.room_id == room_id, Student.hostel_status == "Active"))
            .order_by(Student.roll_number)
        )
        return list(result.scalars().all())

    async def count_active_in_room(self, room_id: str) -> int:
        result = await self.session.execute(
            select(func.count(Student.id)).where(
                and_(Student.room_id == room_id, Student.hostel_status == "Active")
            )
        )
        return int(result.scalar_one())


class RoomBillRepository:
    """Repository for rooms, room bills and per-student sub-bills."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_room(self, room_id: str) -> Optional[Room]:
        result = await self.session.execute(select(Room).where(Room.id == room_id))
        return result.scalar_one_or_none()

    async def get_bill(self, bill_id: str) -> Optional[RoomBill]:
        result = await self.session.execute(
            select(RoomBill).where(RoomBill.id == bill_id)
        )
        return result.scalar_one_or_none()

    async def get_bill_for_month(self, room_id: str, month: str) -> Optional[RoomBill]:
        result = await self.session.execute(
            select(RoomBill).where(and_(RoomBill.room_id == room_id, RoomBill.month == month))
        )
        return result.scalar_one_or_none()

    async def get_student_bill(self, student_bill_id: str) -> Optional[StudentBill]:
        result = await self.session.execute(
            select(StudentBill).where(StudentBill.id == student_bill_id)
        )
        return result.scalar_one_or_none()

    async def add_bill(self, bill: RoomBill) -> RoomBill:
        self.session.add(bill)
        await self.session.flush()
        logger.info(f"Created bill {bill.id} for room {bill.room_id} month {bill.month}")
        return bill

    async def delete_bill(self, bill: RoomBill) -> None:
        await self.session.delete(bill)
        await self.session.flush()


class FeeStructureRepository:
    """Fee schedule lookup."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_fee_structure(
        self,
        academic_year: str,
        category: Optional[str],
        course: Optional[str] = None,
        year_of_study: Optional[int] = None,
    ) -> Optional[FeeStructure]:
        """Find the most specific active fee structure for a student profile.

        A row naming the student's course and year wins over a course-only row,
        which wins over a category-wide row (course and year NULL).
        """
        result = await self.session.execute(
            select(FeeStructure).where(
                and_(
                    FeeStructure.academic_year == academic_year,
                    FeeStructure.category == category,
                    FeeStructure.is_active.is_(True),
                )
            )
        )
        best: Optional[FeeStructure] = None
        best_score = -1
        for fs in result.scalars().all():
            if fs.course is not None and fs.course != course:
                continue
            if fs.year_of_study is not None and fs.year_of_study != year_of_study:
                continue
            score = (2 if fs.course is not None else 0) + (1 if fs.year_of_study is not None else 0)
            if score > best_score:
                best, best_score = fs, score
        return best


class ElectricityRateRepository:
    """Append-only versions of the default electricity rate."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def current(self, at: Optional[datetime] = None) -> Optional[ElectricityRateSetting]:
        at = at or datetime.utcnow()
        result = await self.session.execute(
            select(ElectricityRateSetting)
            .where(ElectricityRateSetting.effective_from <= at)
            .order_by(ElectricityRateSetting.effective_from.desc(), ElectricityRateSetting.id.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def add(
        self,
        rate: Decimal,
        set_by: Optional[str] = None,
        effective_from: Optional[datetime] = None,
    ) -> ElectricityRateSetting:
        setting = ElectricityRateSetting(
            rate=rate,
            set_by=set_by,
            effective_from=effective_from or datetime.utcnow(),
        )
        self.session.add(setting)
        await self.session.flush()
        logger.info(f"Default electricity rate set to {rate} (version {setting.id})")
        return setting

    async def history(self, limit: int = 20) -> List[ElectricityRateSetting]:
        result = await self.session.execute(
            select(ElectricityRateSetting)
            .order_by(ElectricityRateSetting.effective_from.desc(), ElectricityRateSetting.id.desc())
            .limit(limit)
        )
        return list(result.scalars().all())


class LedgerRepository:
    """Repository for LedgerEntry persistence operations."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def add_all(self, entries: List[LedgerEntry]) -> List[LedgerEntry]:
        """Persist a fully computed set of entries in a single flush."""
        self.session.add_all(entries)
        await self.session.flush()
        return entries

    async def get_by_id(self, entry_id: str) -> Optional[LedgerEntry]:
        result = await self.session.execute(
            select(LedgerEntry).where(LedgerEntry.id == entry_id)
        )
        return result.scalar_one_or_none()

    async def list_by_order_id(self, order_id: str) -> List[LedgerEntry]:
        result = await self.session.execute(
            select(LedgerEntry)
            .where(LedgerEntry.gateway_order_id == order_id)
            .order_by(LedgerEntry.term)
        )
        return list(result.scalars().all())

    async def receipt_number_exists(self, receipt_number: str) -> bool:
        result = await self.session.execute(
            select(LedgerEntry.id).where(LedgerEntry.receipt_number == receipt_number)
        )
        return result.first() is not None

    async def transaction_id_exists(self, transaction_id: str) -> bool:
        result = await self.session.execute(
            select(LedgerEntry.id).where(LedgerEntry.transaction_id == transaction_id)
        )
        return result.first() is not None

    async def paid_by_term(self, student_id: str, academic_year: str) -> Dict[str, Decimal]:
        """Sum of successful hostel fee amounts per term."""
        result = await self.session.execute(
            select(LedgerEntry.term, func.sum(LedgerEntry.amount))
            .where(
                and_(
                    LedgerEntry.student_id == student_id,
                    LedgerEntry.academic_year == academic_year,
                    LedgerEntry.payment_type == PaymentType.HOSTEL_FEE.value,
                    LedgerEntry.status == LedgerStatus.SUCCESS.value,
                )
            )
            .group_by(LedgerEntry.term)
        )
        paid = {term: Decimal("0") for term in TERMS}
        for term, total in result.all():
            if term in paid:
                paid[term] = to_decimal(total)
        return paid

    async def get_electricity_success(self, student_id: str, bill_id: str) -> Optional[LedgerEntry]:
        result = await self.session.execute(
            select(LedgerEntry).where(
                and_(
                    LedgerEntry.student_id == student_id,
                    LedgerEntry.bill_id == bill_id,
                    LedgerEntry.payment_type == PaymentType.ELECTRICITY.value,
                    LedgerEntry.status == LedgerStatus.SUCCESS.value,
                )
            )
        )
        return result.scalars().first()

    async def electricity_payers(self, bill_id: str) -> List[str]:
        """Distinct students with a successful payment against a bill."""
        result = await self.session.execute(
            select(LedgerEntry.student_id)
            .where(
                and_(
                    LedgerEntry.bill_id == bill_id,
                    LedgerEntry.payment_type == PaymentType.ELECTRICITY.value,
                    LedgerEntry.status == LedgerStatus.SUCCESS.value,
                )
            )
            .distinct()
        )
        return list(result.scalars().all())

    async def list_by_student(
        self,
        student_id: str,
        payment_type: Optional[str] = None,
        academic_year: Optional[str] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> Tuple[List[LedgerEntry], int]:
        """List a student's ledger entries, newest first, with the total count."""
        conditions = [LedgerEntry.student_id == student_id]
        if payment_type:
            conditions.append(LedgerEntry.payment_type == payment_type)
        if academic_year:
            conditions.append(LedgerEntry.academic_year == academic_year)

        total = await self.session.execute(
            select(func.count(LedgerEntry.id)).where(and_(*conditions))
        )
        result = await self.session.execute(
            select(LedgerEntry)
            .where(and_(*conditions))
            .order_by(LedgerEntry.created_at.desc())
            .limit(limit)
            .offset(offset)
        )
        return list(result.scalars().all()), int(total.scalar_one())

    async def delete_stale_pending(self, cutoff: datetime) -> int:
        """Delete non-terminal ledger rows created before the cutoff."""
        result = await self.session.execute(
            delete(LedgerEntry).where(
                and_(
                    LedgerEntry.status == LedgerStatus.PENDING.value,
                    LedgerEntry.created_at < cutoff,
                )
            )
        )
        await self.session.flush()
        return result.rowcount or 0

    async def electricity_stats(self, month: str) -> List[Dict[str, Any]]:
        result = await self.session.execute(
            select(LedgerEntry.status, func.count(LedgerEntry.id), func.sum(LedgerEntry.amount))
            .where(
                and_(
                    LedgerEntry.payment_type == PaymentType.ELECTRICITY.value,
                    LedgerEntry.bill_month == month,
                )
            )
            .group_by(LedgerEntry.status)
        )
        return [
            {"status": status, "count": count, "total_amount": str(to_decimal(total))}
            for status, count, total in result.all()
        ]

    async def hostel_fee_stats(
        self,
        academic_year: Optional[str] = None,
        term: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        conditions = [
            LedgerEntry.payment_type == PaymentType.HOSTEL_FEE.value,
            LedgerEntry.status == LedgerStatus.SUCCESS.value,
        ]
        if academic_year:
            conditions.append(LedgerEntry.academic_year == academic_year)
        if term:
            conditions.append(LedgerEntry.term == term)

        result = await self.session.execute(
            select(
                LedgerEntry.academic_year,
                LedgerEntry.term,
                func.count(LedgerEntry.id),
                func.sum(LedgerEntry.amount),
            )
            .where(and_(*conditions))
            .group_by(LedgerEntry.academic_year, LedgerEntry.term)
            .order_by(LedgerEntry.academic_year.desc(), LedgerEntry.term)
        )
        return [
            {
                "academic_year": year,
                "term": t,
                "total_payments": count,
                "total_amount": str(to_decimal(total)),
            }
            for year, t, count, total in result.all()
        ]


class PendingIntentRepository:
    """Repository for PendingIntent persistence operations."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def add(self, intent: PendingIntent) -> PendingIntent:
        """Insert an intent. Raises IntegrityError if the target already has one open."""
        self.session.add(intent)
        await self.session.flush()
        logger.debug(f"Created pending intent {intent.order_id}")
        return intent

    async def get_by_order_id(self, order_id: str, for_update: bool = False) -> Optional[PendingIntent]:
        stmt = select(PendingIntent).where(PendingIntent.order_id == order_id)
        if for_update:
            stmt = stmt.with_for_update()
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def find_open(
        self,
        student_id: str,
        payment_type: str,
        target_key: str,
    ) -> Optional[PendingIntent]:
        result = await self.session.execute(
            select(PendingIntent).where(
                and_(
                    PendingIntent.student_id == student_id,
                    PendingIntent.payment_type == payment_type,
                    PendingIntent.target_key == target_key,
                )
            )
        )
        return result.scalar_one_or_none()

    async def list_for_student(self, student_id: str) -> List[PendingIntent]:
        result = await self.session.execute(
            select(PendingIntent)
            .where(PendingIntent.student_id == student_id)
            .order_by(PendingIntent.created_at.desc())
        )
        return list(result.scalars().all())

    async def count_open_for_bill(self, bill_id: str) -> int:
        result = await self.session.execute(
            select(func.count(PendingIntent.id)).where(PendingIntent.bill_id == bill_id)
        )
        return int(result.scalar_one())

    async def list_created_before(self, cutoff: datetime) -> List[PendingIntent]:
        result = await self.session.execute(
            select(PendingIntent)
            .where(PendingIntent.created_at < cutoff)
            .order_by(PendingIntent.created_at)
        )
        return list(result.scalars().all())

    async def delete(self, intent: PendingIntent) -> None:
        await self.session.delete(intent)
        await self.session.flush()
