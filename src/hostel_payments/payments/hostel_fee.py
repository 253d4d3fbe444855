"""Hostel fee balances and administrator-recorded payments."""

import logging
from decimal import Decimal
from typing import Optional, Dict, Any, List

from sqlalchemy.ext.asyncio import AsyncSession

from ..database.models import PaymentMethod, PaymentType
from ..database.repository import StudentRepository, LedgerRepository
from ..exceptions import ValidationError, NotFoundError, AlreadyPaidError
from .allocator import LedgerAllocator, outstanding_total
from .identifiers import validate_academic_year, validate_amount
from .models import RecordHostelFeeRequest

logger = logging.getLogger(__name__)

MINIMUM_CASH_PAYMENT = Decimal("100")
ALLOWED_METHODS = {m.value for m in PaymentMethod}


class HostelFeeService:
    """Service for hostel fee positions and manual collection."""

    def __init__(self, session: AsyncSession):
        self.session = session
        self.student_repo = StudentRepository(session)
        self.ledger_repo = LedgerRepository(session)
        self.allocator = LedgerAllocator(session)

    async def balances(self, student_id: str, academic_year: str) -> Dict[str, Any]:
        """Fee, paid and balance per term plus totals for a student."""
        academic_year = validate_academic_year(academic_year)
        student = await self.student_repo.get_by_id(student_id)
        if not student:
            raise NotFoundError("Student not found")

        balances = await self.allocator.term_balances(student, academic_year)
        total_fee = sum((b.fee for b in balances.values()), Decimal("0"))
        total_paid = sum((b.paid for b in balances.values()), Decimal("0"))
        return {
            "student_id": student.id,
            "academic_year": academic_year,
            "terms": {term: b.to_dict() for term, b in balances.items()},
            "total_fee": str(total_fee),
            "total_paid": str(total_paid),
            "total_outstanding": str(outstanding_total(balances)),
        }

    async def list_entries(self, student_id: str, academic_year: Optional[str] = None) -> List[Dict[str, Any]]:
        if academic_year:
            academic_year = validate_academic_year(academic_year)
        if not await self.student_repo.get_by_id(student_id):
            raise NotFoundError("Student not found")
        entries, _ = await self.ledger_repo.list_by_student(
            student_id,
            payment_type=PaymentType.HOSTEL_FEE.value,
            academic_year=academic_year,
            limit=500,
        )
        return [e.to_dict() for e in entries]

    async def record_payment(
        self,
        request: RecordHostelFeeRequest,
        collected_by: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Record a cash or manual hostel fee payment directly as success.

        Raises:
            ValidationError: Bad amount, year, method or term; inactive
                student; duplicate receipt number or transaction id; amount
                above the outstanding balance.
            NotFoundError: Student does not exist.
            AlreadyPaidError: Nothing left to pay for the year (or term).
            AllocationError: No fee structure for the student's profile.
        """
        academic_year = validate_academic_year(request.academic_year)
        amount = validate_amount(request.amount, minimum=MINIMUM_CASH_PAYMENT)
        if request.payment_method not in ALLOWED_METHODS:
            raise ValidationError(f"Invalid payment method: {request.payment_method}")

        student = await self.student_repo.get_by_id(request.student_id)
        if not student:
            raise NotFoundError("Student not found")
        if not student.is_active:
            raise ValidationError("Cannot record payment for inactive student")

        if request.receipt_number and await self.ledger_repo.receipt_number_exists(request.receipt_number):
            raise ValidationError("Receipt number already exists")
        if request.transaction_id and await self.ledger_repo.transaction_id_exists(request.transaction_id):
            raise ValidationError("Transaction ID already exists")

        balances = await self.allocator.term_balances(student, academic_year)
        if request.term:
            if request.term not in balances:
                raise ValidationError(f"Invalid term: {request.term}")
            term_balance = balances[request.term].balance
            if term_balance <= 0:
                raise AlreadyPaidError(f"{request.term} is already fully paid")
            if amount > term_balance:
                raise ValidationError(
                    f"Payment amount (₹{amount}) exceeds remaining balance (₹{term_balance}) for {request.term}"
                )
        else:
            outstanding = outstanding_total(balances)
            if outstanding <= 0:
                raise AlreadyPaidError(f"Hostel fee for {academic_year} is already fully paid")
            if amount > outstanding:
                raise ValidationError(
                    f"Payment amount (₹{amount}) exceeds remaining balance (₹{outstanding})"
                )

        result = await self.allocator.allocate_hostel_fee(
            student_id=student.id,
            academic_year=academic_year,
            amount=amount,
            term=request.term,
            payment_method=request.payment_method,
            collected_by=collected_by,
            collected_by_name=request.collected_by_name,
            notes=request.notes or "",
            receipt_number=request.receipt_number,
            transaction_id=request.transaction_id,
        )
        logger.info(
            f"{request.payment_method} hostel fee of ₹{amount} recorded for {student.roll_number} "
            f"by {collected_by or 'unknown'}"
        )
        return {
            "entries": [e.to_dict() for e in result.entries],
            "remaining": str(result.remaining),
        }
