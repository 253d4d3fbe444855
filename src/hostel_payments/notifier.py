"""Payment-success notification collaborator."""

import logging
from abc import ABC, abstractmethod
from typing import List

logger = logging.getLogger(__name__)


class PaymentNotifier(ABC):
    """Delivers "payment succeeded" notices. Delivery channels live elsewhere."""

    @abstractmethod
    async def notify_payment_success(
        self,
        student_id: str,
        payment_type: str,
        amount: str,
        order_id: str,
        entry_ids: List[str],
    ) -> None:
        raise NotImplementedError


class LoggingNotifier(PaymentNotifier):
    """Default notifier: writes the notice to the log and keeps nothing."""

    async def notify_payment_success(
        self,
        student_id: str,
        payment_type: str,
        amount: str,
        order_id: str,
        entry_ids: List[str],
    ) -> None:
        logger.info(f"Payment success notice: {payment_type} {amount} for student {student_id} (order {order_id})")


_notifier: PaymentNotifier = LoggingNotifier()


def get_notifier() -> PaymentNotifier:
    """FastAPI dependency returning the process notifier."""
    return _notifier
