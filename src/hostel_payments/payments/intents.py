"""Pending-intent tracking for initiated, unconfirmed gateway payments."""

import logging
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Optional, List

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..database.models import PendingIntent, PaymentType
from ..database.repository import PendingIntentRepository
from ..exceptions import DuplicateInFlightError, ValidationError

logger = logging.getLogger(__name__)

INITIATION_COOLDOWN = timedelta(minutes=5)
INTENT_EXPIRY = timedelta(minutes=30)


def target_key_for(
    payment_type: str,
    bill_id: Optional[str] = None,
    student_bill_id: Optional[str] = None,
    academic_year: Optional[str] = None,
) -> str:
    """The slot an intent occupies: sub-bill (or bill) for electricity, academic year for fees."""
    if payment_type == PaymentType.ELECTRICITY.value:
        key = student_bill_id or bill_id
    else:
        key = academic_year
    if not key:
        raise ValidationError(f"Missing payment target for {payment_type}")
    return key


class PendingIntentTracker:
    """
    Holds at most one open intent per (student, payment type, target).

    The slot is enforced by a unique constraint; the cooldown only decides
    whether an existing intent is still considered live.
    """

    def __init__(self, session: AsyncSession):
        self.session = session
        self.repo = PendingIntentRepository(session)

    async def get(self, order_id: str, for_update: bool = False) -> Optional[PendingIntent]:
        return await self.repo.get_by_order_id(order_id, for_update=for_update)

    async def find_open(self, student_id: str, payment_type: str, target_key: str) -> Optional[PendingIntent]:
        return await self.repo.find_open(student_id, payment_type, target_key)

    async def list_for_student(self, student_id: str) -> List[PendingIntent]:
        return await self.repo.list_for_student(student_id)

    @staticmethod
    def within_cooldown(intent: PendingIntent, now: Optional[datetime] = None) -> bool:
        now = now or datetime.utcnow()
        return now - intent.created_at < INITIATION_COOLDOWN

    async def open(
        self,
        order_id: str,
        student_id: str,
        payment_type: str,
        target_key: str,
        amount: Decimal,
        bill_id: Optional[str] = None,
        student_bill_id: Optional[str] = None,
        room_id: Optional[str] = None,
        academic_year: Optional[str] = None,
    ) -> PendingIntent:
        """
        Claim the slot for a new order.

        Raises:
            DuplicateInFlightError: Another intent already holds the slot. The
                session is rolled back.
        """
        intent = PendingIntent(
            order_id=order_id,
            student_id=student_id,
            payment_type=payment_type,
            target_key=target_key,
            amount=amount,
            bill_id=bill_id,
            student_bill_id=student_bill_id,
            room_id=room_id,
            academic_year=academic_year,
        )
        try:
            await self.repo.add(intent)
        except IntegrityError as e:
            await self.session.rollback()
            logger.warning(f"Concurrent initiation for student {student_id} target {target_key} rejected")
            raise DuplicateInFlightError() from e
        logger.info(f"Pending intent {order_id} opened for student {student_id} ({payment_type} {amount})")
        return intent

    async def attach_checkout(
        self,
        intent: PendingIntent,
        payment_session_id: Optional[str],
        payment_url: Optional[str],
    ) -> None:
        intent.payment_session_id = payment_session_id
        intent.payment_url = payment_url
        await self.session.flush()

    async def consume(self, intent: PendingIntent) -> None:
        """Delete an intent once its order reached a terminal outcome."""
        order_id = intent.order_id
        await self.repo.delete(intent)
        logger.debug(f"Pending intent {order_id} cleared")

    async def list_created_before(self, cutoff: datetime) -> List[PendingIntent]:
        return await self.repo.list_created_before(cutoff)
