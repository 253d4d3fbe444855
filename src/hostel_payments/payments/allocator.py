"""Ledger allocation: single-bucket electricity and term waterfall for hostel fees."""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Optional, Dict, List

from sqlalchemy.ext.asyncio import AsyncSession

from ..database.models import (
    LedgerEntry,
    RoomBill,
    StudentBill,
    Student,
    PaymentType,
    LedgerStatus,
    PaymentMethod,
    SUPPORTED_CURRENCY,
    BILL_BUCKET,
    TERMS,
)
from ..database.repository import (
    LedgerRepository,
    FeeStructureRepository,
    StudentRepository,
)
from ..exceptions import AllocationError, ValidationError
from .bills import BillService
from .identifiers import generate_receipt_number, generate_transaction_id

logger = logging.getLogger(__name__)

ZERO = Decimal("0")


@dataclass
class TermBalance:
    """Derived per-term position; never persisted."""
    term: str
    fee: Decimal
    paid: Decimal

    @property
    def balance(self) -> Decimal:
        return self.fee - self.paid

    def to_dict(self) -> Dict[str, str]:
        return {
            "term": self.term,
            "fee": str(self.fee),
            "paid": str(self.paid),
            "balance": str(self.balance),
        }


@dataclass
class Allocation:
    term: str
    amount: Decimal


@dataclass
class WaterfallPlan:
    allocations: List[Allocation] = field(default_factory=list)
    remaining: Decimal = ZERO

    @property
    def allocated(self) -> Decimal:
        return sum((a.amount for a in self.allocations), ZERO)


@dataclass
class AllocationResult:
    entries: List[LedgerEntry]
    remaining: Decimal = ZERO

    @property
    def entry_ids(self) -> List[str]:
        return [e.id for e in self.entries]


def plan_waterfall(amount: Decimal, balances: Dict[str, Decimal]) -> WaterfallPlan:
    """
    Fill term balances strictly in order term1 -> term2 -> term3.

    Terms with a balance of zero or less are skipped. Whatever is left after
    term3 is returned as ``remaining`` and is not attributed to any term.
    """
    plan = WaterfallPlan(remaining=Decimal(amount))
    for term in TERMS:
        if plan.remaining <= 0:
            break
        balance = balances.get(term, ZERO)
        if balance <= 0:
            continue
        allocated = min(plan.remaining, balance)
        plan.allocations.append(Allocation(term=term, amount=allocated))
        plan.remaining -= allocated
    return plan


def outstanding_total(balances: Dict[str, TermBalance]) -> Decimal:
    """Sum of positive term balances."""
    return sum((b.balance for b in balances.values() if b.balance > 0), ZERO)


class LedgerAllocator:
    """Turns a confirmed payment into ledger rows.

    Shared by the gateway callback path and the administrator cash path, so
    term filling is identical regardless of collection channel. Every split
    is fully computed before anything is added to the session.
    """

    def __init__(self, session: AsyncSession):
        self.session = session
        self.ledger_repo = LedgerRepository(session)
        self.fee_repo = FeeStructureRepository(session)
        self.student_repo = StudentRepository(session)
        self.bills = BillService(session)

    async def term_balances(self, student: Student, academic_year: str) -> Dict[str, TermBalance]:
        """
        Compute fee, paid and balance per term for a student.

        Raises:
            AllocationError: No fee structure configured for the student's profile.
        """
        fee_structure = await self.fee_repo.get_fee_structure(
            academic_year=academic_year,
            category=student.category,
            course=student.course,
            year_of_study=student.year_of_study,
        )
        if not fee_structure:
            raise AllocationError(
                f"Fee structure not found for academic year {academic_year} "
                f"and category {student.category}"
            )
        paid = await self.ledger_repo.paid_by_term(student.id, academic_year)
        return {
            term: TermBalance(term=term, fee=fee_structure.term_fee(term), paid=paid[term])
            for term in TERMS
        }

    async def allocate_hostel_fee(
        self,
        student_id: str,
        academic_year: str,
        amount: Decimal,
        term: Optional[str] = None,
        order_id: Optional[str] = None,
        payment_id: Optional[str] = None,
        settlement_reference: Optional[str] = None,
        payment_method: str = PaymentMethod.ONLINE.value,
        collected_by: Optional[str] = None,
        collected_by_name: Optional[str] = None,
        notes: str = "",
        receipt_number: Optional[str] = None,
        transaction_id: Optional[str] = None,
    ) -> AllocationResult:
        """
        Record a hostel fee payment across term buckets.

        With ``term`` given only that term is funded and the amount must fit its
        balance; otherwise the waterfall runs. Caller-supplied receipt number
        and transaction id go on the first row only.

        Raises:
            AllocationError: Student or fee structure missing, nothing left to
                allocate, or the amount exceeds the named term's balance.
        """
        student = await self.student_repo.get_by_id(student_id)
        if not student:
            raise AllocationError(f"Student {student_id} not found for allocation")

        balances = await self.term_balances(student, academic_year)
        amount = Decimal(amount)

        if term:
            if term not in TERMS:
                raise ValidationError(f"Invalid term: {term}")
            balance = balances[term].balance
            if balance <= 0:
                raise AllocationError(f"{term} is already fully paid for {academic_year}")
            if amount > balance:
                raise AllocationError(
                    f"Amount ₹{amount} exceeds remaining balance ₹{balance} for {term}"
                )
            plan = WaterfallPlan(allocations=[Allocation(term=term, amount=amount)], remaining=ZERO)
        else:
            plan = plan_waterfall(amount, {t: b.balance for t, b in balances.items()})

        if not plan.allocations:
            raise AllocationError(f"No outstanding hostel fee balance for {academic_year}")

        now = datetime.utcnow()
        entries = []
        for index, allocation in enumerate(plan.allocations):
            entries.append(
                LedgerEntry(
                    payment_type=PaymentType.HOSTEL_FEE.value,
                    allocation_bucket=allocation.term,
                    amount=allocation.amount,
                    currency=SUPPORTED_CURRENCY,
                    status=LedgerStatus.SUCCESS.value,
                    payment_method=payment_method,
                    student_id=student.id,
                    gateway_order_id=order_id,
                    gateway_payment_id=payment_id,
                    settlement_reference=settlement_reference,
                    term=allocation.term,
                    academic_year=academic_year,
                    receipt_number=(receipt_number if index == 0 and receipt_number else generate_receipt_number()),
                    transaction_id=(transaction_id if index == 0 and transaction_id else generate_transaction_id()),
                    collected_by=collected_by,
                    collected_by_name=collected_by_name,
                    notes=notes or "",
                    paid_at=now,
                )
            )

        await self.ledger_repo.add_all(entries)
        split = ", ".join(f"{a.term}={a.amount}" for a in plan.allocations)
        logger.info(f"Hostel fee {amount} for student {student.roll_number} ({academic_year}) allocated: {split}")
        if plan.remaining > 0:
            logger.warning(
                f"Overpayment of ₹{plan.remaining} by student {student.roll_number} for {academic_year} "
                f"not attributed to any term (order {order_id})"
            )
        return AllocationResult(entries=entries, remaining=plan.remaining)

    async def allocate_electricity(
        self,
        student_id: str,
        bill: RoomBill,
        sub_bill: Optional[StudentBill],
        amount: Decimal,
        order_id: Optional[str] = None,
        payment_id: Optional[str] = None,
        settlement_reference: Optional[str] = None,
        payment_method: str = PaymentMethod.ONLINE.value,
        collected_by: Optional[str] = None,
        notes: str = "",
    ) -> AllocationResult:
        """
        Record one electricity payment against a bill and mark it paid.

        Raises:
            AllocationError: The student already has a successful payment for
                this bill.
        """
        existing = await self.ledger_repo.get_electricity_success(student_id, bill.id)
        if existing:
            raise AllocationError(
                f"Student {student_id} already has a successful payment {existing.id} for bill {bill.id}"
            )

        now = datetime.utcnow()
        entry = LedgerEntry(
            payment_type=PaymentType.ELECTRICITY.value,
            allocation_bucket=BILL_BUCKET,
            amount=Decimal(amount),
            currency=SUPPORTED_CURRENCY,
            status=LedgerStatus.SUCCESS.value,
            payment_method=payment_method,
            student_id=student_id,
            gateway_order_id=order_id,
            gateway_payment_id=payment_id,
            settlement_reference=settlement_reference,
            bill_id=bill.id,
            student_bill_id=sub_bill.id if sub_bill is not None else None,
            room_id=bill.room_id,
            bill_month=bill.month,
            collected_by=collected_by,
            notes=notes or "",
            paid_at=now,
        )
        entry.bill_snapshot = bill.snapshot()

        await self.ledger_repo.add_all([entry])
        await self.bills.mark_paid(bill, sub_bill, now)
        logger.info(f"Electricity payment {amount} recorded for student {student_id} bill {bill.id} ({bill.month})")
        return AllocationResult(entries=[entry])
