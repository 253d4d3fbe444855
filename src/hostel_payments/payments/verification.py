"""On-demand verification and cancellation against the gateway."""

import logging
from typing import Optional, Dict, Any, List

from sqlalchemy.ext.asyncio import AsyncSession

from ..database.models import PendingIntent, LedgerStatus
from ..database.repository import (
    LedgerRepository,
    PendingIntentRepository,
    RoomBillRepository,
)
from ..exceptions import NotFoundError, AlreadyPaidError, GatewayUnavailableError
from ..gateway.base import GatewayBase
from ..notifier import PaymentNotifier
from .models import NotificationResult
from .processor import NotificationProcessor

logger = logging.getLogger(__name__)


class PaymentVerifier:
    """
    Repairs missed callbacks by re-querying the gateway.

    A reference may be a gateway order id, a ledger entry id or a pending
    intent id.
    """

    def __init__(
        self,
        session: AsyncSession,
        gateway: GatewayBase,
        notifier: Optional[PaymentNotifier] = None,
    ):
        self.session = session
        self.gateway = gateway
        self.processor = NotificationProcessor(session, gateway, notifier)
        self.ledger_repo = LedgerRepository(session)
        self.intent_repo = PendingIntentRepository(session)
        self.bill_repo = RoomBillRepository(session)

    async def _resolve_order_id(self, reference: str) -> str:
        intent = await self.intent_repo.get_by_order_id(reference)
        if intent:
            return intent.order_id
        entry = await self.ledger_repo.get_by_id(reference)
        if entry and entry.gateway_order_id:
            return entry.gateway_order_id
        if entry:
            raise NotFoundError("Ledger entry has no gateway order to verify")
        if await self.ledger_repo.list_by_order_id(reference):
            return reference
        intent = await self.session.get(PendingIntent, reference)
        if intent:
            return intent.order_id
        raise NotFoundError("Payment not found")

    async def _check_owner(self, order_id: str, student_id: Optional[str]) -> None:
        if student_id is None:
            return
        intent = await self.intent_repo.get_by_order_id(order_id)
        owners = {intent.student_id} if intent else {e.student_id for e in await self.ledger_repo.list_by_order_id(order_id)}
        if student_id not in owners:
            raise NotFoundError("Payment not found")

    async def verify(self, reference: str, student_id: Optional[str] = None) -> Dict[str, Any]:
        """
        Re-query the gateway for an order and apply its current status.

        Args:
            reference: Order id, ledger entry id or intent id.
            student_id: When given, the payment must belong to this student.

        Returns:
            Dict with the gateway status, the processing result and the
            order's ledger entries.
        """
        order_id = await self._resolve_order_id(reference)
        await self._check_owner(order_id, student_id)

        remote = await self.gateway.fetch_order_status(order_id)
        result = await self.processor.apply_status(
            order_id,
            remote.order_status,
            payment_id=remote.payment_id,
            settlement_reference=remote.settlement_reference,
        )
        logger.info(f"Verified order {order_id}: gateway={remote.order_status} outcome={result.outcome.value}")
        return await self._report(order_id, remote.order_status, result)

    async def cancel(self, reference: str, student_id: Optional[str] = None) -> Dict[str, Any]:
        """
        Cancel a still-open payment.

        The gateway is checked first; an order found paid is recorded rather
        than cancelled, and the report says so.

        Raises:
            AlreadyPaidError: The payment already completed.
            NotFoundError: No open payment matches the reference.
        """
        order_id = await self._resolve_order_id(reference)
        await self._check_owner(order_id, student_id)

        intent = await self.intent_repo.get_by_order_id(order_id, for_update=True)
        if intent is None:
            entries = await self.ledger_repo.list_by_order_id(order_id)
            if any(e.status == LedgerStatus.SUCCESS.value for e in entries):
                raise AlreadyPaidError("Payment already completed and cannot be cancelled")
            raise NotFoundError("No pending payment found for this order")

        result = await self.processor.retire_intent(intent, reason="Cancelled by user")
        return await self._report(order_id, None, result)

    async def bill_status(self, bill_id: str, student_id: str) -> Dict[str, Any]:
        """
        Caller's view of a bill. An open intent is re-verified first; if the
        gateway cannot be reached the local state is returned as is.
        """
        if not await self.bill_repo.get_bill(bill_id):
            raise NotFoundError("Bill not found")

        open_intents = [
            i for i in await self.intent_repo.list_for_student(student_id)
            if i.bill_id == bill_id
        ]
        for intent in open_intents:
            try:
                await self.verify(intent.order_id)
            except GatewayUnavailableError as e:
                logger.warning(f"Could not re-verify order {intent.order_id}: {e.message}")

        # Reload; a concurrent-duplicate rollback during verification expires instances
        bill = await self.bill_repo.get_bill(bill_id)
        sub_bill = bill.share_for(student_id)

        success = await self.ledger_repo.get_electricity_success(student_id, bill_id)
        still_open = [
            i.order_id for i in await self.intent_repo.list_for_student(student_id)
            if i.bill_id == bill_id
        ]
        return {
            "bill_id": bill.id,
            "month": bill.month,
            "bill_status": bill.payment_status,
            "total": str(bill.total),
            "share": str(sub_bill.amount) if sub_bill else None,
            "share_status": sub_bill.payment_status if sub_bill else None,
            "pending_order_id": still_open[0] if still_open else None,
            "payment": success.to_dict() if success else None,
        }

    async def _report(self, order_id: str, gateway_status: Optional[str], result: NotificationResult) -> Dict[str, Any]:
        entries: List[Dict[str, Any]] = [
            e.to_dict() for e in await self.ledger_repo.list_by_order_id(order_id)
        ]
        return {
            "order_id": order_id,
            "gateway_status": gateway_status,
            "outcome": result.outcome.value,
            "status": result.status,
            "message": result.message,
            "entries": entries,
        }
