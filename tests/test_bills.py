"""Tests for room bills, the per-student split and the versioned rate."""

import pytest
from datetime import datetime, timedelta
from decimal import Decimal

from hostel_payments.database import (
    Room,
    RoomBill,
    BillStatus,
    PaymentType,
    RoomBillRepository,
)
from hostel_payments.exceptions import ValidationError, NotFoundError
from hostel_payments.payments import BillService, LedgerAllocator, PendingIntentTracker, split_share

D = Decimal


class TestSplitShare:
    """Per-occupant rounding."""

    @pytest.mark.parametrize(
        "total,occupants,expected",
        [
            (D("900"), 3, D("300")),
            (D("1000"), 3, D("333")),
            (D("1001"), 2, D("501")),
            (D("100.49"), 1, D("100")),
        ],
    )
    def test_rounds_half_up_to_rupees(self, total, occupants, expected):
        assert split_share(total, occupants) == expected

    def test_empty_room(self):
        with pytest.raises(ValidationError):
            split_share(D("900"), 0)


class TestCreateBill:
    """Monthly bill creation."""

    async def test_split_across_active_occupants(self, db_session, hostel):
        bill = await BillService(db_session).create_bill(hostel.room.id, "2024-06", D("1200"), D("1300"))

        assert bill.consumption == D("100")
        assert bill.rate == D("9.00")
        assert bill.total == D("900.00")
        assert bill.payment_status == BillStatus.UNPAID.value
        assert sorted(sb.student_id for sb in bill.student_bills) == sorted(s.id for s in hostel.students)
        assert all(sb.amount == D("300") for sb in bill.student_bills)

    async def test_inactive_students_get_no_share(self, db_session, hostel):
        hostel.students[2].hostel_status = "Checked Out"
        await db_session.flush()

        bill = await BillService(db_session).create_bill(hostel.room.id, "2024-06", D("0"), D("100"))

        assert len(bill.student_bills) == 2
        assert all(sb.amount == D("450") for sb in bill.student_bills)

    async def test_explicit_rate(self, db_session, hostel):
        bill = await BillService(db_session).create_bill(hostel.room.id, "2024-06", D("0"), D("100"), rate=D("10"))

        assert bill.total == D("1000.00")
        assert [sb.amount for sb in bill.student_bills] == [D("333")] * 3

    async def test_empty_room_gets_unsplit_bill(self, db_session, hostel):
        empty = Room(room_number="102", category="A")
        db_session.add(empty)
        await db_session.flush()

        bill = await BillService(db_session).create_bill(empty.id, "2024-06", D("0"), D("10"))

        assert bill.is_split is False
        assert bill.total == D("90.00")

    async def test_replaces_untouched_bill(self, db_session, hostel):
        service = BillService(db_session)
        first = await service.create_bill(hostel.room.id, "2024-06", D("0"), D("100"))
        first_id = first.id

        second = await service.create_bill(hostel.room.id, "2024-06", D("0"), D("120"))

        assert second.id != first_id
        assert second.total == D("1080.00")
        assert await RoomBillRepository(db_session).get_bill(first_id) is None

    async def test_bill_with_open_order_not_replaced(self, db_session, hostel):
        service = BillService(db_session)
        bill = await service.create_bill(hostel.room.id, "2024-06", D("0"), D("100"))
        student = hostel.students[0]
        sub_bill = bill.share_for(student.id)
        await PendingIntentTracker(db_session).open(
            "ELEC_1", student.id, PaymentType.ELECTRICITY.value, sub_bill.id, sub_bill.amount,
            bill_id=bill.id, student_bill_id=sub_bill.id, room_id=bill.room_id,
        )
        await service.mark_pending(bill, sub_bill, "ELEC_1")

        with pytest.raises(ValidationError):
            await service.create_bill(hostel.room.id, "2024-06", D("0"), D("120"))

    async def test_bill_with_payment_not_replaced(self, db_session, hostel):
        service = BillService(db_session)
        bill = await service.create_bill(hostel.room.id, "2024-06", D("0"), D("100"))
        student = hostel.students[0]
        sub_bill = bill.share_for(student.id)
        await LedgerAllocator(db_session).allocate_electricity(student.id, bill, sub_bill, sub_bill.amount)

        with pytest.raises(ValidationError):
            await service.create_bill(hostel.room.id, "2024-06", D("0"), D("120"))

    @pytest.mark.parametrize(
        "month,start,end",
        [
            ("2024-13", D("0"), D("10")),
            ("June", D("0"), D("10")),
            ("2024-06", D("20"), D("10")),
            ("2024-06", D("-1"), D("10")),
            ("2024-06", D("0"), D("1E+30")),
            ("2024-06", D("0"), D("9000000000")),
        ],
    )
    async def test_invalid_input(self, db_session, hostel, month, start, end):
        with pytest.raises(ValidationError):
            await BillService(db_session).create_bill(hostel.room.id, month, start, end)

    @pytest.mark.parametrize("rate", [D("1E+30"), D("0"), D("2.555")])
    async def test_invalid_explicit_rate(self, db_session, hostel, rate):
        with pytest.raises(ValidationError):
            await BillService(db_session).create_bill(hostel.room.id, "2024-06", D("0"), D("10"), rate=rate)

    async def test_unknown_room(self, db_session, hostel):
        with pytest.raises(NotFoundError):
            await BillService(db_session).create_bill("missing", "2024-06", D("0"), D("10"))

    async def test_no_rate_configured(self, db_session):
        room = Room(room_number="201")
        db_session.add(room)
        await db_session.flush()

        with pytest.raises(ValidationError):
            await BillService(db_session).create_bill(room.id, "2024-06", D("0"), D("10"))


class TestElectricityRate:
    """Versioned default rate."""

    async def test_new_version_applies_to_later_bills_only(self, db_session, hostel):
        service = BillService(db_session)
        june = await service.create_bill(hostel.room.id, "2024-06", D("0"), D("100"))

        setting = await service.set_rate(D("12.5"), set_by="warden")
        july = await service.create_bill(hostel.room.id, "2024-07", D("100"), D("200"))

        assert setting.set_by == "warden"
        assert (await service.current_rate()).rate == D("12.50")
        assert june.rate == D("9.00")
        assert june.total == D("900.00")
        assert july.rate == D("12.50")
        assert july.total == D("1250.00")

    async def test_scheduled_version_not_yet_current(self, db_session, hostel):
        service = BillService(db_session)
        await service.set_rate(D("15"), effective_from=datetime.utcnow() + timedelta(days=30))

        bill = await service.create_bill(hostel.room.id, "2024-06", D("0"), D("10"))

        assert bill.rate == D("9.00")

    @pytest.mark.parametrize("rate", [D("0"), D("-2"), D("7.125"), D("1E+30"), D("Infinity")])
    async def test_invalid_rate(self, db_session, hostel, rate):
        with pytest.raises(ValidationError):
            await BillService(db_session).set_rate(rate)


class TestLegacyBillStatus:
    """Status of bills created before per-student shares existed."""

    async def test_paid_once_every_occupant_paid(self, db_session, hostel):
        legacy = RoomBill(
            room_id=hostel.room.id,
            month="2023-12",
            consumption=D("100"),
            rate=D("9"),
            total=D("900"),
            student_bills=[],
        )
        db_session.add(legacy)
        await db_session.flush()
        allocator = LedgerAllocator(db_session)

        for student in hostel.students[:2]:
            await allocator.allocate_electricity(student.id, legacy, None, D("300"))
        assert legacy.payment_status == BillStatus.UNPAID.value

        await allocator.allocate_electricity(hostel.students[2].id, legacy, None, D("300"))
        assert legacy.payment_status == BillStatus.PAID.value
        assert legacy.paid_at is not None
