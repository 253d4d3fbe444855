"""Expiry sweeper for abandoned gateway payments."""

import logging
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from ..database.repository import LedgerRepository
from .bills import BillService
from .intents import PendingIntentTracker, INTENT_EXPIRY
from .models import SweepResult

logger = logging.getLogger(__name__)


class ExpirySweeper:
    """
    Deletes pending intents and non-terminal ledger rows older than the
    timeout and returns their bills to unpaid. A late callback for a swept
    order finds no intent and is ignored.
    """

    def __init__(self, session: AsyncSession, timeout: timedelta = INTENT_EXPIRY):
        self.session = session
        self.timeout = timeout
        self.intents = PendingIntentTracker(session)
        self.ledger_repo = LedgerRepository(session)
        self.bills = BillService(session)

    async def sweep(self, now: Optional[datetime] = None) -> SweepResult:
        cutoff = (now or datetime.utcnow()) - self.timeout
        result = SweepResult()

        for intent in await self.intents.list_created_before(cutoff):
            order_id = intent.order_id
            bill_id, student_bill_id = intent.bill_id, intent.student_bill_id
            await self.intents.consume(intent)
            result.intents_removed += 1
            result.order_ids.append(order_id)
            if await self.bills.release(bill_id, student_bill_id, order_id):
                result.bills_reset += 1

        result.ledger_rows_removed = await self.ledger_repo.delete_stale_pending(cutoff)

        if result.intents_removed or result.ledger_rows_removed:
            logger.info(
                f"Expired {result.intents_removed} pending intent(s) and "
                f"{result.ledger_rows_removed} pending ledger row(s) older than {self.timeout}"
            )
        return result
