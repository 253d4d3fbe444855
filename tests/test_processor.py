"""Tests for the gateway callback state machine."""

import logging
import pytest
from unittest.mock import AsyncMock
from decimal import Decimal

from hostel_payments.database import (
    LedgerEntry,
    PaymentType,
    LedgerStatus,
    BillStatus,
    LedgerRepository,
    PendingIntentRepository,
)
from hostel_payments.exceptions import SignatureInvalidError
from hostel_payments.notifier import LoggingNotifier, PaymentNotifier
from hostel_payments.payments import (
    OrderInitiator,
    NotificationProcessor,
    BillService,
    LedgerAllocator,
    InitiatePaymentRequest,
    ProcessingOutcome,
)

from conftest import ACADEMIC_YEAR

D = Decimal


@pytest.fixture
async def bill(db_session, hostel):
    return await BillService(db_session).create_bill(hostel.room.id, "2024-06", D("0"), D("100"))


async def initiate(session, gateway, student_id, **body):
    return await OrderInitiator(session, gateway).initiate(student_id, InitiatePaymentRequest(**body))


async def deliver(session, gateway, notifier, order_id, status, **kwargs):
    headers, body = gateway.build_webhook(order_id, status, **kwargs)
    return await NotificationProcessor(session, gateway, notifier).handle_webhook(headers, body)


class TestElectricityCallbacks:
    """Callbacks for electricity share orders."""

    async def test_paid_callback_records_payment(self, db_session, hostel, bill, gateway, notifier):
        student = hostel.students[0]
        order = await initiate(db_session, gateway, student.id, billId=bill.id)

        result = await deliver(db_session, gateway, notifier, order.order_id, "PAID", payment_id="cf_1", settlement_reference="UTR1")

        assert result.outcome == ProcessingOutcome.PROCESSED
        entries = await LedgerRepository(db_session).list_by_order_id(order.order_id)
        assert len(entries) == 1
        entry = entries[0]
        assert entry.status == LedgerStatus.SUCCESS.value
        assert entry.amount == D("300")
        assert entry.gateway_payment_id == "cf_1"
        assert entry.settlement_reference == "UTR1"
        assert entry.student_bill_id == bill.share_for(student.id).id
        assert result.entry_ids == [entry.id]
        assert await PendingIntentRepository(db_session).get_by_order_id(order.order_id) is None
        assert bill.share_for(student.id).payment_status == BillStatus.PAID.value
        assert notifier.sent[0]["order_id"] == order.order_id
        assert notifier.sent[0]["amount"] == "300.00"

    async def test_redelivery_is_a_no_op(self, db_session, hostel, bill, gateway, notifier):
        order = await initiate(db_session, gateway, hostel.students[0].id, billId=bill.id)
        await deliver(db_session, gateway, notifier, order.order_id, "PAID", payment_id="cf_1")

        again = await deliver(db_session, gateway, notifier, order.order_id, "PAID", payment_id="cf_1")

        assert again.outcome == ProcessingOutcome.IGNORED
        assert len(await LedgerRepository(db_session).list_by_order_id(order.order_id)) == 1
        assert len(notifier.sent) == 1

    async def test_late_failure_after_success_is_ignored(self, db_session, hostel, bill, gateway, notifier):
        student = hostel.students[0]
        order = await initiate(db_session, gateway, student.id, billId=bill.id)
        await deliver(db_session, gateway, notifier, order.order_id, "PAID", payment_id="cf_1")

        late = await deliver(db_session, gateway, notifier, order.order_id, "FAILED")

        assert late.outcome == ProcessingOutcome.IGNORED
        assert bill.share_for(student.id).payment_status == BillStatus.PAID.value

    async def test_tampered_callback_changes_nothing(self, db_session, hostel, bill, gateway, notifier):
        student = hostel.students[0]
        order = await initiate(db_session, gateway, student.id, billId=bill.id)
        headers, body = gateway.build_webhook(order.order_id, "FAILED")
        forged = body.replace(b"FAILED", b"PAID")

        with pytest.raises(SignatureInvalidError):
            await NotificationProcessor(db_session, gateway, notifier).handle_webhook(headers, forged)

        assert await LedgerRepository(db_session).list_by_order_id(order.order_id) == []
        intent = await PendingIntentRepository(db_session).get_by_order_id(order.order_id)
        assert intent is not None
        assert bill.share_for(student.id).payment_status == BillStatus.PENDING.value

    async def test_failed_callback_releases_share(self, db_session, hostel, bill, gateway, notifier):
        student = hostel.students[0]
        order = await initiate(db_session, gateway, student.id, billId=bill.id)

        result = await deliver(db_session, gateway, notifier, order.order_id, "FAILED")

        assert result.outcome == ProcessingOutcome.RELEASED
        assert result.status == LedgerStatus.FAILED.value
        assert await LedgerRepository(db_session).list_by_order_id(order.order_id) == []
        assert await PendingIntentRepository(db_session).get_by_order_id(order.order_id) is None
        sub_bill = bill.share_for(student.id)
        assert sub_bill.payment_status == BillStatus.UNPAID.value
        assert sub_bill.gateway_order_id is None
        assert bill.payment_status == BillStatus.UNPAID.value
        assert notifier.sent == []

    async def test_expired_callback_is_a_cancellation(self, db_session, hostel, bill, gateway, notifier):
        order = await initiate(db_session, gateway, hostel.students[0].id, billId=bill.id)

        result = await deliver(db_session, gateway, notifier, order.order_id, "EXPIRED")

        assert result.status == LedgerStatus.CANCELLED.value
        assert result.message == "Payment expired"

    async def test_non_terminal_status_keeps_intent(self, db_session, hostel, bill, gateway, notifier):
        order = await initiate(db_session, gateway, hostel.students[0].id, billId=bill.id)

        result = await deliver(db_session, gateway, notifier, order.order_id, "ACTIVE")

        assert result.outcome == ProcessingOutcome.PENDING
        assert await PendingIntentRepository(db_session).get_by_order_id(order.order_id) is not None

    async def test_unknown_order_acknowledged(self, db_session, hostel, gateway, notifier):
        result = await deliver(db_session, gateway, notifier, "ELEC_0_unknown", "PAID")

        assert result.outcome == ProcessingOutcome.IGNORED

    async def test_notifier_failure_does_not_undo_payment(self, db_session, hostel, bill, gateway):
        order = await initiate(db_session, gateway, hostel.students[0].id, billId=bill.id)

        failing = AsyncMock(spec=PaymentNotifier)
        failing.notify_payment_success.side_effect = RuntimeError("mail server down")

        result = await deliver(db_session, gateway, failing, order.order_id, "PAID", payment_id="cf_1")

        assert result.outcome == ProcessingOutcome.PROCESSED
        failing.notify_payment_success.assert_awaited_once()
        assert len(await LedgerRepository(db_session).list_by_order_id(order.order_id)) == 1

    async def test_room_bill_paid_only_after_every_share(self, db_session, hostel, bill, gateway, notifier):
        assert bill.total == D("900.00")
        assert [sb.amount for sb in bill.student_bills] == [D("300")] * 3

        for index, student in enumerate(hostel.students):
            order = await initiate(db_session, gateway, student.id, billId=bill.id)
            await deliver(db_session, gateway, notifier, order.order_id, "PAID", payment_id=f"cf_{index}")

            assert bill.share_for(student.id).payment_status == BillStatus.PAID.value
            if index < 2:
                assert bill.payment_status != BillStatus.PAID.value
                assert bill.paid_at is None

        assert bill.payment_status == BillStatus.PAID.value
        assert bill.paid_at is not None
        assert len(await LedgerRepository(db_session).electricity_payers(bill.id)) == 3

    async def test_room_bill_pending_while_a_share_is_in_flight(self, db_session, hostel, bill, gateway, notifier):
        first = await initiate(db_session, gateway, hostel.students[0].id, billId=bill.id)
        await initiate(db_session, gateway, hostel.students[1].id, billId=bill.id)

        await deliver(db_session, gateway, notifier, first.order_id, "PAID", payment_id="cf_1")

        assert bill.payment_status == BillStatus.PENDING.value

    async def test_share_paid_by_another_channel(self, db_session, hostel, bill, gateway, notifier):
        student = hostel.students[0]
        order = await initiate(db_session, gateway, student.id, billId=bill.id)
        sub_bill = bill.share_for(student.id)
        await LedgerAllocator(db_session).allocate_electricity(
            student.id, bill, sub_bill, sub_bill.amount, payment_method="Cash"
        )

        result = await deliver(db_session, gateway, notifier, order.order_id, "PAID", payment_id="cf_1")

        assert result.outcome == ProcessingOutcome.ALLOCATION_FAILED
        assert await PendingIntentRepository(db_session).get_by_order_id(order.order_id) is None
        assert await LedgerRepository(db_session).list_by_order_id(order.order_id) == []
        assert sub_bill.payment_status == BillStatus.PAID.value


class TestHostelFeeCallbacks:
    """Callbacks for hostel fee orders."""

    async def test_waterfall_on_success(self, db_session, hostel, gateway, notifier):
        student = hostel.students[0]
        order = await initiate(db_session, gateway, student.id, amount=D("700"), academicYear=ACADEMIC_YEAR)

        result = await deliver(db_session, gateway, notifier, order.order_id, "PAID", payment_id="cf_7", nested=True)

        assert result.outcome == ProcessingOutcome.PROCESSED
        entries = await LedgerRepository(db_session).list_by_order_id(order.order_id)
        assert [(e.term, e.amount) for e in entries] == [("term1", D("300")), ("term2", D("400"))]
        assert all(e.gateway_payment_id == "cf_7" for e in entries)
        assert all(e.payment_type == PaymentType.HOSTEL_FEE.value for e in entries)
        assert result.overpayment is None
        assert len(notifier.sent) == 1
        assert len(notifier.sent[0]["entry_ids"]) == 2

    async def test_overpayment_reported(self, db_session, hostel, gateway, notifier):
        student = hostel.students[0]
        order = await initiate(db_session, gateway, student.id, amount=D("1000"), academicYear=ACADEMIC_YEAR)
        # cash collected at the office while the online order was open
        await LedgerAllocator(db_session).allocate_hostel_fee(student.id, ACADEMIC_YEAR, D("300"), payment_method="Cash")

        result = await deliver(db_session, gateway, notifier, order.order_id, "PAID", payment_id="cf_8")

        assert result.outcome == ProcessingOutcome.PROCESSED
        assert result.overpayment == D("300")
        entries = await LedgerRepository(db_session).list_by_order_id(order.order_id)
        assert sum(e.amount for e in entries) == D("700")

    async def test_missing_fee_structure_clears_intent(self, db_session, hostel, gateway, notifier):
        student = hostel.students[0]
        order = await initiate(db_session, gateway, student.id, amount=D("500"), academicYear=ACADEMIC_YEAR)
        hostel.fee.is_active = False
        await db_session.flush()

        result = await deliver(db_session, gateway, notifier, order.order_id, "PAID", payment_id="cf_9")

        assert result.outcome == ProcessingOutcome.ALLOCATION_FAILED
        assert "Fee structure not found" in result.message
        assert await PendingIntentRepository(db_session).get_by_order_id(order.order_id) is None
        assert await LedgerRepository(db_session).list_by_order_id(order.order_id) == []
        assert notifier.sent == []

    async def test_concurrent_delivery_detected_by_storage(self, db_session, hostel, gateway, notifier):
        student = hostel.students[0]
        order = await initiate(db_session, gateway, student.id, amount=D("700"), academicYear=ACADEMIC_YEAR)
        await db_session.commit()
        # row written by a parallel worker for the same order and bucket
        db_session.add(LedgerEntry(
            payment_type=PaymentType.HOSTEL_FEE.value,
            allocation_bucket="term2",
            amount=D("400"),
            status=LedgerStatus.FAILED.value,
            student_id=student.id,
            gateway_order_id=order.order_id,
            term="term2",
            academic_year=ACADEMIC_YEAR,
        ))
        await db_session.commit()

        result = await deliver(db_session, gateway, notifier, order.order_id, "PAID", payment_id="cf_10")

        assert result.outcome == ProcessingOutcome.DUPLICATE
        entries = await LedgerRepository(db_session).list_by_order_id(order.order_id)
        assert [e.term for e in entries] == ["term2"]
        assert notifier.sent == []


class TestLoggingNotifier:
    """Default notifier used outside tests."""

    async def test_logs_without_keeping_notices(self, caplog):
        default = LoggingNotifier()

        with caplog.at_level(logging.INFO, logger="hostel_payments.notifier"):
            for i in range(3):
                await default.notify_payment_success("student-1", "electricity", "300.00", f"ELEC_{i}", [f"entry-{i}"])

        assert "ELEC_2" in caplog.text
        assert vars(default) == {}
