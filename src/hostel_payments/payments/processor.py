"""Notification state machine for asynchronous gateway callbacks."""

import logging
from decimal import Decimal
from typing import Optional, Dict

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..database.models import PendingIntent, PaymentType, LedgerStatus
from ..database.repository import RoomBillRepository
from ..exceptions import AllocationError
from ..gateway.base import GatewayBase
from ..notifier import PaymentNotifier
from .allocator import LedgerAllocator, AllocationResult
from .bills import BillService
from .identifiers import CENT
from .intents import PendingIntentTracker
from .models import NotificationResult, ProcessingOutcome, map_gateway_status

logger = logging.getLogger(__name__)


class NotificationProcessor:
    """
    Applies gateway order outcomes to local state.

    Processing is idempotent per order id: the pending intent is the token
    that allows an outcome to be applied, and it is consumed by the first
    terminal outcome. Later deliveries find no intent and are no-ops.
    """

    def __init__(
        self,
        session: AsyncSession,
        gateway: GatewayBase,
        notifier: Optional[PaymentNotifier] = None,
    ):
        self.session = session
        self.gateway = gateway
        self.notifier = notifier
        self.intents = PendingIntentTracker(session)
        self.allocator = LedgerAllocator(session)
        self.bills = BillService(session)
        self.bill_repo = RoomBillRepository(session)

    async def handle_webhook(self, headers: Dict[str, str], body: bytes) -> NotificationResult:
        """
        Verify and apply a raw gateway callback.

        Raises:
            SignatureInvalidError: Before any database access when the
                signature or timestamp does not check out.
            ValidationError: Body lacks an order id or status.
        """
        event = self.gateway.parse_webhook(headers, body)
        logger.info(f"Callback received for order {event.order_id}: {event.status}")
        return await self.apply_status(
            event.order_id,
            event.status,
            payment_id=event.payment_id,
            settlement_reference=event.settlement_reference,
        )

    async def apply_status(
        self,
        order_id: str,
        status_code: str,
        payment_id: Optional[str] = None,
        settlement_reference: Optional[str] = None,
    ) -> NotificationResult:
        """Classify an external status code and apply it to the order's intent."""
        status, reason = map_gateway_status(status_code)
        if status == LedgerStatus.PENDING.value:
            logger.info(f"Order {order_id} still pending at gateway ({status_code}); nothing to do")
            return NotificationResult(order_id=order_id, outcome=ProcessingOutcome.PENDING, status=status)

        intent = await self.intents.get(order_id, for_update=True)
        if intent is None:
            logger.warning(f"No open intent for order {order_id} ({status_code}); already processed or unknown")
            return NotificationResult(
                order_id=order_id,
                outcome=ProcessingOutcome.IGNORED,
                status=status,
                message="No pending payment for this order",
            )

        if status == LedgerStatus.SUCCESS.value:
            return await self._settle(intent, payment_id, settlement_reference)
        return await self._release(intent, status, reason)

    async def retire_intent(self, intent: PendingIntent, reason: str) -> NotificationResult:
        """
        Close an intent on request (stale re-initiation or user cancellation).

        The gateway is asked for the order's real state first: a paid order is
        settled instead of cancelled.
        """
        order_id = intent.order_id
        remote = await self.gateway.fetch_order_status(order_id)
        status, _ = map_gateway_status(remote.order_status)
        if status == LedgerStatus.SUCCESS.value:
            logger.info(f"Order {order_id} was paid at the gateway; settling instead of retiring")
            return await self._settle(intent, remote.payment_id, remote.settlement_reference)

        if not await self.gateway.terminate_order(order_id):
            remote = await self.gateway.fetch_order_status(order_id)
            status, _ = map_gateway_status(remote.order_status)
            if status == LedgerStatus.SUCCESS.value:
                return await self._settle(intent, remote.payment_id, remote.settlement_reference)

        return await self._release(intent, LedgerStatus.CANCELLED.value, reason)

    async def _settle(
        self,
        intent: PendingIntent,
        payment_id: Optional[str],
        settlement_reference: Optional[str],
    ) -> NotificationResult:
        order_id = intent.order_id
        student_id = intent.student_id
        payment_type = intent.payment_type
        amount = Decimal(intent.amount).quantize(CENT)

        try:
            result = await self._allocate(intent, payment_id, settlement_reference)
        except AllocationError as e:
            logger.error(f"Allocation failed for order {order_id}: {e.message}")
            bill_id, student_bill_id = intent.bill_id, intent.student_bill_id
            await self.intents.consume(intent)
            await self.bills.release(bill_id, student_bill_id, order_id)
            return NotificationResult(
                order_id=order_id,
                outcome=ProcessingOutcome.ALLOCATION_FAILED,
                status=LedgerStatus.SUCCESS.value,
                message=e.message,
            )
        except IntegrityError:
            await self.session.rollback()
            logger.warning(f"Order {order_id} was recorded by a concurrent delivery")
            return NotificationResult(
                order_id=order_id,
                outcome=ProcessingOutcome.DUPLICATE,
                status=LedgerStatus.SUCCESS.value,
            )

        await self.intents.consume(intent)
        logger.info(f"Order {order_id} settled: {len(result.entries)} ledger row(s) for student {student_id}")

        if self.notifier is not None:
            try:
                await self.notifier.notify_payment_success(
                    student_id=student_id,
                    payment_type=payment_type,
                    amount=str(amount),
                    order_id=order_id,
                    entry_ids=result.entry_ids,
                )
            except Exception:
                logger.exception(f"Payment success notification failed for order {order_id}")

        return NotificationResult(
            order_id=order_id,
            outcome=ProcessingOutcome.PROCESSED,
            status=LedgerStatus.SUCCESS.value,
            entry_ids=result.entry_ids,
            overpayment=result.remaining.quantize(CENT) if result.remaining > 0 else None,
        )

    async def _allocate(
        self,
        intent: PendingIntent,
        payment_id: Optional[str],
        settlement_reference: Optional[str],
    ) -> AllocationResult:
        if intent.payment_type == PaymentType.ELECTRICITY.value:
            bill = await self.bill_repo.get_bill(intent.bill_id) if intent.bill_id else None
            if not bill:
                raise AllocationError(f"Bill {intent.bill_id} for order {intent.order_id} not found")
            sub_bill = None
            if intent.student_bill_id:
                sub_bill = await self.bill_repo.get_student_bill(intent.student_bill_id)
                if not sub_bill:
                    raise AllocationError(f"Sub-bill {intent.student_bill_id} for order {intent.order_id} not found")
            return await self.allocator.allocate_electricity(
                student_id=intent.student_id,
                bill=bill,
                sub_bill=sub_bill,
                amount=Decimal(intent.amount),
                order_id=intent.order_id,
                payment_id=payment_id,
                settlement_reference=settlement_reference,
            )

        if intent.payment_type == PaymentType.HOSTEL_FEE.value:
            return await self.allocator.allocate_hostel_fee(
                student_id=intent.student_id,
                academic_year=intent.academic_year,
                amount=Decimal(intent.amount),
                order_id=intent.order_id,
                payment_id=payment_id,
                settlement_reference=settlement_reference,
                notes=f"Online payment via gateway (order {intent.order_id})",
            )

        raise AllocationError(f"Unsupported payment type {intent.payment_type} for order {intent.order_id}")

    async def _release(self, intent: PendingIntent, status: str, reason: Optional[str]) -> NotificationResult:
        order_id = intent.order_id
        bill_id, student_bill_id = intent.bill_id, intent.student_bill_id
        await self.intents.consume(intent)
        await self.bills.release(bill_id, student_bill_id, order_id)
        logger.info(f"Order {order_id} closed as {status}" + (f" ({reason})" if reason else ""))
        return NotificationResult(
            order_id=order_id,
            outcome=ProcessingOutcome.RELEASED,
            status=status,
            message=reason,
        )
