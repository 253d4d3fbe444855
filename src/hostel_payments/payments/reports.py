"""Read-only payment history and aggregate statistics."""

import math
from typing import Optional, Dict, Any

from sqlalchemy.ext.asyncio import AsyncSession

from ..database.repository import LedgerRepository, PendingIntentRepository
from ..exceptions import ValidationError
from .identifiers import validate_academic_year, validate_bill_month

MAX_PAGE_SIZE = 100


class PaymentReports:
    def __init__(self, session: AsyncSession):
        self.session = session
        self.ledger_repo = LedgerRepository(session)
        self.intent_repo = PendingIntentRepository(session)

    async def history(self, student_id: str, page: int = 1, limit: int = 10) -> Dict[str, Any]:
        """A student's ledger entries, newest first, plus any open intents."""
        if page < 1 or limit < 1 or limit > MAX_PAGE_SIZE:
            raise ValidationError(f"page must be >= 1 and limit between 1 and {MAX_PAGE_SIZE}")
        entries, total = await self.ledger_repo.list_by_student(
            student_id, limit=limit, offset=(page - 1) * limit
        )
        pending = await self.intent_repo.list_for_student(student_id)
        return {
            "payments": [e.to_dict() for e in entries],
            "pending": [i.to_dict() for i in pending],
            "pagination": {
                "total": total,
                "page": page,
                "pages": math.ceil(total / limit) if total else 0,
            },
        }

    async def electricity_stats(self, month: str) -> Dict[str, Any]:
        month = validate_bill_month(month)
        return {"month": month, "by_status": await self.ledger_repo.electricity_stats(month)}

    async def hostel_fee_stats(
        self,
        academic_year: Optional[str] = None,
        term: Optional[str] = None,
    ) -> Dict[str, Any]:
        if academic_year:
            academic_year = validate_academic_year(academic_year)
        rows = await self.ledger_repo.hostel_fee_stats(academic_year, term)
        return {"academic_year": academic_year, "term": term, "stats": rows}
