"""Tests for database models and repository layer."""

import pytest
from datetime import datetime, timedelta
from decimal import Decimal

from sqlalchemy.exc import IntegrityError

from hostel_payments.database import (
    LedgerEntry,
    PendingIntent,
    FeeStructure,
    PaymentType,
    LedgerStatus,
)
from hostel_payments.database.models import RoomBill, BILL_BUCKET
from hostel_payments.database.repository import (
    FeeStructureRepository,
    ElectricityRateRepository,
    LedgerRepository,
    PendingIntentRepository,
    StudentRepository,
    to_decimal,
)

from conftest import ACADEMIC_YEAR


def _fee_entry(student_id, term, amount, **kwargs):
    return LedgerEntry(
        payment_type=PaymentType.HOSTEL_FEE.value,
        allocation_bucket=term,
        amount=Decimal(amount),
        status=kwargs.pop("status", LedgerStatus.SUCCESS.value),
        student_id=student_id,
        term=term,
        academic_year=ACADEMIC_YEAR,
        **kwargs,
    )


class TestLedgerConstraints:
    """Storage-level guarantees on ledger rows."""

    async def test_order_bucket_recorded_once(self, db_session, hostel):
        student = hostel.students[0]
        db_session.add(_fee_entry(student.id, "term1", "100", gateway_order_id="HF_1_abc"))
        await db_session.flush()

        db_session.add(_fee_entry(student.id, "term1", "100", gateway_order_id="HF_1_abc"))
        with pytest.raises(IntegrityError):
            await db_session.flush()

    async def test_same_order_different_buckets_allowed(self, db_session, hostel):
        student = hostel.students[0]
        db_session.add_all([
            _fee_entry(student.id, "term1", "300", gateway_order_id="HF_2_abc", gateway_payment_id="pay_1"),
            _fee_entry(student.id, "term2", "400", gateway_order_id="HF_2_abc", gateway_payment_id="pay_1"),
        ])
        await db_session.flush()

        rows = await LedgerRepository(db_session).list_by_order_id("HF_2_abc")
        assert [r.term for r in rows] == ["term1", "term2"]

    async def test_one_successful_electricity_row_per_student_and_bill(self, db_session, hostel):
        student = hostel.students[0]
        bill = RoomBill(
            room_id=hostel.room.id,
            month="2024-06",
            consumption=Decimal("100"),
            rate=Decimal("9"),
            total=Decimal("900"),
        )
        db_session.add(bill)
        await db_session.flush()

        def entry(order_id, status):
            return LedgerEntry(
                payment_type=PaymentType.ELECTRICITY.value,
                allocation_bucket=BILL_BUCKET,
                amount=Decimal("300"),
                status=status,
                student_id=student.id,
                bill_id=bill.id,
                gateway_order_id=order_id,
            )

        db_session.add_all([entry("ELEC_1", LedgerStatus.SUCCESS.value), entry("ELEC_2", LedgerStatus.FAILED.value)])
        await db_session.flush()

        db_session.add(entry("ELEC_3", LedgerStatus.SUCCESS.value))
        with pytest.raises(IntegrityError):
            await db_session.flush()

    async def test_bill_snapshot_round_trips_through_json(self, db_session, hostel):
        entry = LedgerEntry(
            payment_type=PaymentType.ELECTRICITY.value,
            amount=Decimal("300"),
            student_id=hostel.students[0].id,
        )
        entry.bill_snapshot = {"month": "2024-06", "total": "900.00"}
        db_session.add(entry)
        await db_session.flush()

        fetched = await LedgerRepository(db_session).get_by_id(entry.id)
        assert fetched.bill_snapshot == {"month": "2024-06", "total": "900.00"}
        assert fetched.to_dict()["currency"] == "INR"
        assert "failure_reason" not in fetched.to_dict()
        assert "failure_reason" not in LedgerEntry.__table__.c


class TestPendingIntentConstraints:
    """One open intent per (student, payment type, target)."""

    def _intent(self, student_id, order_id, target="2024-2025"):
        return PendingIntent(
            order_id=order_id,
            student_id=student_id,
            payment_type=PaymentType.HOSTEL_FEE.value,
            target_key=target,
            amount=Decimal("500"),
            academic_year=target,
        )

    def test_intent_is_pending_while_it_exists(self):
        # Open intents are deleted on every terminal outcome
        assert "status" not in PendingIntent.__table__.c
        assert self._intent("student-1", "HF_1").to_dict()["status"] == LedgerStatus.PENDING.value

    async def test_second_intent_for_same_target_rejected(self, db_session, hostel):
        repo = PendingIntentRepository(db_session)
        student = hostel.students[0]
        await repo.add(self._intent(student.id, "HF_1"))

        with pytest.raises(IntegrityError):
            await repo.add(self._intent(student.id, "HF_2"))

    async def test_other_targets_and_students_independent(self, db_session, hostel):
        repo = PendingIntentRepository(db_session)
        first, second = hostel.students[0], hostel.students[1]
        await repo.add(self._intent(first.id, "HF_1"))
        await repo.add(self._intent(first.id, "HF_2", target="2025-2026"))
        await repo.add(self._intent(second.id, "HF_3"))

        assert len(await repo.list_for_student(first.id)) == 2
        assert (await repo.find_open(second.id, PaymentType.HOSTEL_FEE.value, "2024-2025")).order_id == "HF_3"

    async def test_list_created_before(self, db_session, hostel):
        repo = PendingIntentRepository(db_session)
        student = hostel.students[0]
        old = await repo.add(self._intent(student.id, "HF_old"))
        await repo.add(self._intent(student.id, "HF_new", target="2025-2026"))
        old.created_at = datetime.utcnow() - timedelta(hours=1)
        await db_session.flush()

        stale = await repo.list_created_before(datetime.utcnow() - timedelta(minutes=30))
        assert [i.order_id for i in stale] == ["HF_old"]


class TestFeeStructureRepository:
    """Most specific fee structure wins."""

    async def test_category_wide_row(self, db_session, hostel):
        fs = await FeeStructureRepository(db_session).get_fee_structure(
            ACADEMIC_YEAR, "A", course="BTech", year_of_study=2
        )
        assert fs.id == hostel.fee.id
        assert fs.total_fee == Decimal("1000")

    async def test_course_and_year_row_preferred(self, db_session, hostel):
        specific = FeeStructure(
            academic_year=ACADEMIC_YEAR,
            category="A",
            course="BTech",
            year_of_study=2,
            term1_fee=Decimal("400"),
            term2_fee=Decimal("400"),
            term3_fee=Decimal("400"),
        )
        other_course = FeeStructure(
            academic_year=ACADEMIC_YEAR,
            category="A",
            course="MTech",
            term1_fee=Decimal("1"),
        )
        db_session.add_all([specific, other_course])
        await db_session.flush()

        repo = FeeStructureRepository(db_session)
        assert (await repo.get_fee_structure(ACADEMIC_YEAR, "A", "BTech", 2)).id == specific.id
        assert (await repo.get_fee_structure(ACADEMIC_YEAR, "A", "BTech", 3)).id == hostel.fee.id

    async def test_inactive_or_missing(self, db_session, hostel):
        hostel.fee.is_active = False
        await db_session.flush()
        repo = FeeStructureRepository(db_session)
        assert await repo.get_fee_structure(ACADEMIC_YEAR, "A") is None
        assert await repo.get_fee_structure("2030-2031", "A") is None


class TestElectricityRateRepository:
    """Versioned default rate."""

    async def test_current_ignores_future_versions(self, db_session, hostel):
        repo = ElectricityRateRepository(db_session)
        await repo.add(Decimal("12.50"), set_by="admin", effective_from=datetime.utcnow() + timedelta(days=1))

        current = await repo.current()
        assert current.rate == Decimal("9.00")

        later = await repo.current(at=datetime.utcnow() + timedelta(days=2))
        assert later.rate == Decimal("12.50")

    async def test_history_keeps_every_version(self, db_session, hostel):
        repo = ElectricityRateRepository(db_session)
        await repo.add(Decimal("10"), set_by="admin")
        history = await repo.history()
        assert [s.rate for s in history][:2] == [Decimal("10"), Decimal("9")]


class TestLedgerRepository:
    """Aggregates and lookups."""

    async def test_paid_by_term_counts_success_only(self, db_session, hostel):
        student = hostel.students[0]
        db_session.add_all([
            _fee_entry(student.id, "term1", "300"),
            _fee_entry(student.id, "term2", "150"),
            _fee_entry(student.id, "term2", "50", status=LedgerStatus.FAILED.value),
        ])
        await db_session.flush()

        paid = await LedgerRepository(db_session).paid_by_term(student.id, ACADEMIC_YEAR)
        assert paid == {"term1": Decimal("300"), "term2": Decimal("150"), "term3": Decimal("0")}

    async def test_delete_stale_pending(self, db_session, hostel):
        student = hostel.students[0]
        stale = _fee_entry(student.id, "term1", "100", status=LedgerStatus.PENDING.value)
        fresh = _fee_entry(student.id, "term2", "100", status=LedgerStatus.PENDING.value)
        done = _fee_entry(student.id, "term3", "100")
        db_session.add_all([stale, fresh, done])
        await db_session.flush()
        stale.created_at = datetime.utcnow() - timedelta(hours=2)
        done.created_at = datetime.utcnow() - timedelta(hours=2)
        await db_session.flush()

        removed = await LedgerRepository(db_session).delete_stale_pending(datetime.utcnow() - timedelta(minutes=30))
        assert removed == 1

    async def test_list_by_student_paginates(self, db_session, hostel):
        student = hostel.students[0]
        db_session.add_all([_fee_entry(student.id, "term1", "10") for _ in range(3)])
        await db_session.flush()

        entries, total = await LedgerRepository(db_session).list_by_student(student.id, limit=2)
        assert total == 3
        assert len(entries) == 2


class TestStudentRepository:
    async def test_active_occupants_only(self, db_session, hostel):
        hostel.students[2].hostel_status = "Inactive"
        await db_session.flush()

        repo = StudentRepository(db_session)
        assert await repo.count_active_in_room(hostel.room.id) == 2
        assert await repo.get_by_roll_number("r10101") is not None


def test_to_decimal():
    assert to_decimal(None) == Decimal("0")
    assert to_decimal(12.5) == Decimal("12.5")
    assert to_decimal(Decimal("3")) == Decimal("3")
