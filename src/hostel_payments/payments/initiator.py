"""Order initiation for student self-service payments."""

import logging
from decimal import Decimal
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from ..database.models import PaymentType, BillStatus, PendingIntent
from ..database.repository import StudentRepository, RoomBillRepository, LedgerRepository
from ..exceptions import (
    ValidationError,
    NotFoundError,
    AlreadyPaidError,
    DuplicateInFlightError,
    GatewayNotConfiguredError,
    GatewayUnavailableError,
)
from ..gateway.base import GatewayBase, GatewayOrder
from ..gateway.orders import build_order
from ..notifier import PaymentNotifier
from .allocator import LedgerAllocator, outstanding_total
from .bills import BillService, split_share
from .identifiers import generate_order_id, validate_academic_year, validate_amount
from .intents import PendingIntentTracker, target_key_for
from .models import InitiatePaymentRequest, InitiatePaymentResponse, ProcessingOutcome
from .processor import NotificationProcessor

logger = logging.getLogger(__name__)


class OrderInitiator:
    """Computes what a student owes right now and opens a gateway order for it."""

    def __init__(
        self,
        session: AsyncSession,
        gateway: GatewayBase,
        notifier: Optional[PaymentNotifier] = None,
    ):
        self.session = session
        self.gateway = gateway
        self.student_repo = StudentRepository(session)
        self.bill_repo = RoomBillRepository(session)
        self.ledger_repo = LedgerRepository(session)
        self.intents = PendingIntentTracker(session)
        self.allocator = LedgerAllocator(session)
        self.bills = BillService(session)
        self.processor = NotificationProcessor(session, gateway, notifier)

    async def initiate(self, student_id: str, request: InitiatePaymentRequest) -> InitiatePaymentResponse:
        """Dispatch on the request shape: ``billId`` or ``amount`` + ``academicYear``."""
        if request.bill_id:
            return await self.initiate_electricity(student_id, request.bill_id, request.room_id)
        if request.amount is not None or request.academic_year:
            return await self.initiate_hostel_fee(student_id, request.amount, request.academic_year)
        raise ValidationError("Either billId, or amount and academicYear, are required")

    def _require_gateway(self) -> None:
        if not self.gateway.is_configured():
            raise GatewayNotConfiguredError()

    async def initiate_electricity(
        self,
        student_id: str,
        bill_id: str,
        room_id: Optional[str] = None,
    ) -> InitiatePaymentResponse:
        """
        Open an order for the student's share of a room electricity bill.

        Raises:
            NotFoundError: Student or bill missing, or the bill is not in ``room_id``.
            ValidationError: Student has no share in the bill, or the room is empty.
            AlreadyPaidError: The student's share is already paid.
            DuplicateInFlightError: A live order already exists for this share.
            GatewayUnavailableError: The gateway could not create the order.
        """
        self._require_gateway()
        student = await self.student_repo.get_by_id(student_id)
        if not student:
            raise NotFoundError("Student not found")
        bill = await self.bill_repo.get_bill(bill_id)
        if not bill or (room_id and bill.room_id != room_id):
            raise NotFoundError("Bill not found")
        room = await self.bill_repo.get_room(bill.room_id)

        sub_bill = bill.share_for(student.id)
        if bill.is_split:
            if sub_bill is None:
                raise ValidationError("You do not have a share in this bill")
            if sub_bill.payment_status == BillStatus.PAID.value:
                raise AlreadyPaidError()
        else:
            if student.room_id != bill.room_id:
                raise ValidationError("This bill does not belong to your room")
            if bill.payment_status == BillStatus.PAID.value:
                raise AlreadyPaidError()
        if await self.ledger_repo.get_electricity_success(student.id, bill.id):
            raise AlreadyPaidError()

        target_key = target_key_for(PaymentType.ELECTRICITY.value, bill.id, sub_bill.id if sub_bill else None)
        await self._guard_in_flight(student.id, PaymentType.ELECTRICITY.value, target_key)

        if sub_bill is not None:
            amount = Decimal(sub_bill.amount)
        else:
            amount = split_share(bill.total, await self.student_repo.count_active_in_room(bill.room_id))

        order_id = generate_order_id(PaymentType.ELECTRICITY.value)
        room_number = room.room_number if room else "N/A"
        order = build_order(
            order_id=order_id,
            amount=amount,
            student_id=student.id,
            student_name=student.name,
            student_email=student.email,
            student_phone=student.phone,
            return_path=f"/student/payment-status/{bill.id}?order_id={{order_id}}",
            order_note=f"Electricity bill payment for Room {room_number} - {bill.month}",
            order_tags={
                "room_number": room_number,
                "bill_month": bill.month,
                "bill_id": bill.id,
                "payment_type": "electricity_bill",
            },
        )

        intent = await self.intents.open(
            order_id=order_id,
            student_id=student.id,
            payment_type=PaymentType.ELECTRICITY.value,
            target_key=target_key,
            amount=amount,
            bill_id=bill.id,
            student_bill_id=sub_bill.id if sub_bill else None,
            room_id=bill.room_id,
        )
        response = await self._create_remote(order, intent)
        await self.bills.mark_pending(bill, sub_bill, order_id)
        return response

    async def initiate_hostel_fee(
        self,
        student_id: str,
        amount: Optional[Decimal],
        academic_year: Optional[str],
    ) -> InitiatePaymentResponse:
        """
        Open an order for a hostel fee payment of ``amount`` for an academic year.

        The amount may not exceed the sum of the positive term balances.
        """
        self._require_gateway()
        academic_year = validate_academic_year(academic_year)
        amount = validate_amount(amount)

        student = await self.student_repo.get_by_id(student_id)
        if not student:
            raise NotFoundError("Student not found")

        balances = await self.allocator.term_balances(student, academic_year)
        outstanding = outstanding_total(balances)
        if outstanding <= 0:
            raise AlreadyPaidError(f"Hostel fee for {academic_year} is already fully paid")
        if amount > outstanding:
            raise ValidationError(
                f"Payment amount (₹{amount}) exceeds remaining balance (₹{outstanding})"
            )

        target_key = target_key_for(PaymentType.HOSTEL_FEE.value, academic_year=academic_year)
        await self._guard_in_flight(student.id, PaymentType.HOSTEL_FEE.value, target_key)

        order_id = generate_order_id(PaymentType.HOSTEL_FEE.value)
        order = build_order(
            order_id=order_id,
            amount=amount,
            student_id=student.id,
            student_name=student.name,
            student_email=student.email,
            student_phone=student.phone,
            return_path="/student/hostel-fee?payment_success=true&order_id={order_id}",
            order_note=f"Hostel fee payment for Academic Year {academic_year}",
            order_tags={
                "student_id": student.id,
                "academic_year": academic_year,
                "payment_type": PaymentType.HOSTEL_FEE.value,
            },
        )

        intent = await self.intents.open(
            order_id=order_id,
            student_id=student.id,
            payment_type=PaymentType.HOSTEL_FEE.value,
            target_key=target_key,
            amount=amount,
            academic_year=academic_year,
        )
        return await self._create_remote(order, intent)

    async def _guard_in_flight(self, student_id: str, payment_type: str, target_key: str) -> None:
        """
        Reject while a live order holds the slot; retire it once the cooldown passed.

        Whatever the retirement did locally is committed before the new order
        is created, since the gateway has already closed the old one. A
        retired order that turns out to be paid is rejected as already paid.
        """
        existing = await self.intents.find_open(student_id, payment_type, target_key)
        if existing is None:
            return
        if self.intents.within_cooldown(existing):
            raise DuplicateInFlightError()

        logger.warning(f"Superseding stale intent {existing.order_id} for student {student_id}")
        result = await self.processor.retire_intent(existing, reason="Superseded by a new payment attempt")
        if result.outcome == ProcessingOutcome.DUPLICATE:
            raise DuplicateInFlightError()
        await self.session.commit()
        if result.outcome == ProcessingOutcome.PROCESSED:
            raise AlreadyPaidError()

    async def _create_remote(self, order: GatewayOrder, intent: PendingIntent) -> InitiatePaymentResponse:
        try:
            response = await self.gateway.create_order(order)
        except GatewayUnavailableError as e:
            logger.error(f"Gateway order creation failed for {order.order_id}: {e.message}")
            await self.intents.consume(intent)
            raise

        await self.intents.attach_checkout(intent, response.payment_session_id, response.payment_link)
        logger.info(f"Order {order.order_id} created for {intent.payment_type} amount {order.order_amount}")
        return InitiatePaymentResponse(
            order_id=response.order_id,
            payment_type=intent.payment_type,
            amount=order.order_amount,
            payment_url=response.payment_link,
            payment_session_id=response.payment_session_id,
            order_status=response.order_status,
        )
