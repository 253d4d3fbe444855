"""API endpoints for payment initiation, callbacks, verification and reads."""

import logging
from datetime import datetime, timedelta
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from ..auth import (
    verify_api_key,
    limiter,
    get_student_id,
    get_admin_id,
    get_caller_student_id,
)
from ..database import get_db
from ..exceptions import PaymentError, NotFoundError, ValidationError
from ..gateway import GatewayBase, get_gateway
from ..notifier import PaymentNotifier, get_notifier
from .bills import BillService
from .hostel_fee import HostelFeeService
from .initiator import OrderInitiator
from .models import (
    InitiatePaymentRequest,
    RecordHostelFeeRequest,
    CreateBillRequest,
    RateUpdateRequest,
)
from .processor import NotificationProcessor
from .reports import PaymentReports
from .sweeper import ExpirySweeper
from .verification import PaymentVerifier

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/payments", tags=["payments"])


@router.post("/initiate")
@limiter.limit("10/minute")
async def initiate_payment(
    request: Request,
    body: InitiatePaymentRequest,
    student_id: str = Depends(get_student_id),
    db: AsyncSession = Depends(get_db),
    gateway: GatewayBase = Depends(get_gateway),
    notifier: PaymentNotifier = Depends(get_notifier),
    api_key: str = Depends(verify_api_key),
):
    """
    Start a gateway payment for an electricity bill share (``billId``) or a
    hostel fee amount (``amount`` + ``academicYear``).

    Returns the order id and the hosted payment link.
    """
    initiator = OrderInitiator(db, gateway, notifier)
    response = await initiator.initiate(student_id, body)
    await db.commit()
    return response.model_dump(by_alias=True, mode="json")


@router.post("/webhook")
async def payment_webhook(
    request: Request,
    db: AsyncSession = Depends(get_db),
    gateway: GatewayBase = Depends(get_gateway),
    notifier: PaymentNotifier = Depends(get_notifier),
):
    """
    Gateway callback. Authenticated only by its signature.

    Answers 200 once the outcome is persisted (including redeliveries, which
    are no-ops) and 401 for a bad signature. Unexpected failures answer 500
    so the gateway retries.
    """
    body = await request.body()
    headers = {k.lower(): v for k, v in request.headers.items()}
    processor = NotificationProcessor(db, gateway, notifier)
    try:
        result = await processor.handle_webhook(headers, body)
        await db.commit()
    except PaymentError:
        raise
    except Exception as e:
        logger.exception("Webhook processing failed")
        raise HTTPException(status_code=500, detail="Webhook processing failed") from e
    return {"accepted": True, "outcome": result.outcome.value, "order_id": result.order_id}


@router.post("/verify/{reference}")
async def verify_payment(
    reference: str,
    caller_student_id: Optional[str] = Depends(get_caller_student_id),
    db: AsyncSession = Depends(get_db),
    gateway: GatewayBase = Depends(get_gateway),
    notifier: PaymentNotifier = Depends(get_notifier),
    api_key: str = Depends(verify_api_key),
):
    """Re-query the gateway for a payment and apply its current status."""
    verifier = PaymentVerifier(db, gateway, notifier)
    report = await verifier.verify(reference, student_id=caller_student_id)
    await db.commit()
    return report


@router.delete("/cancel/{reference}")
async def cancel_payment(
    reference: str,
    caller_student_id: Optional[str] = Depends(get_caller_student_id),
    db: AsyncSession = Depends(get_db),
    gateway: GatewayBase = Depends(get_gateway),
    notifier: PaymentNotifier = Depends(get_notifier),
    api_key: str = Depends(verify_api_key),
):
    """Cancel a still-pending payment."""
    verifier = PaymentVerifier(db, gateway, notifier)
    report = await verifier.cancel(reference, student_id=caller_student_id)
    await db.commit()
    return report


@router.get("/history")
async def payment_history(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    student_id: str = Depends(get_student_id),
    db: AsyncSession = Depends(get_db),
    api_key: str = Depends(verify_api_key),
):
    return await PaymentReports(db).history(student_id, page=page, limit=limit)


@router.get("/status/{bill_id}")
async def bill_payment_status(
    bill_id: str,
    student_id: str = Depends(get_student_id),
    db: AsyncSession = Depends(get_db),
    gateway: GatewayBase = Depends(get_gateway),
    notifier: PaymentNotifier = Depends(get_notifier),
    api_key: str = Depends(verify_api_key),
):
    """Caller's view of a bill; any open order is re-verified first."""
    verifier = PaymentVerifier(db, gateway, notifier)
    status = await verifier.bill_status(bill_id, student_id)
    await db.commit()
    return status


@router.post("/cleanup-expired")
async def cleanup_expired(
    timeout_minutes: int = Query(30, ge=1),
    admin_id: str = Depends(get_admin_id),
    db: AsyncSession = Depends(get_db),
    api_key: str = Depends(verify_api_key),
):
    """Run the expiry sweeper."""
    result = await ExpirySweeper(db, timeout=timedelta(minutes=timeout_minutes)).sweep()
    await db.commit()
    logger.info(f"Expired payment cleanup triggered by {admin_id}: {result.intents_removed} intent(s)")
    return result.to_dict()


@router.post("/hostel-fee/record")
async def record_hostel_fee(
    body: RecordHostelFeeRequest,
    admin_id: str = Depends(get_admin_id),
    db: AsyncSession = Depends(get_db),
    api_key: str = Depends(verify_api_key),
):
    """Record a cash or manual hostel fee payment."""
    result = await HostelFeeService(db).record_payment(body, collected_by=admin_id)
    await db.commit()
    return result


@router.get("/hostel-fee/{student_id}/balances")
async def hostel_fee_balances(
    student_id: str,
    academic_year: str = Query(..., alias="academicYear"),
    caller_student_id: Optional[str] = Depends(get_caller_student_id),
    db: AsyncSession = Depends(get_db),
    api_key: str = Depends(verify_api_key),
):
    if caller_student_id is not None and caller_student_id != student_id:
        raise NotFoundError("Student not found")
    return await HostelFeeService(db).balances(student_id, academic_year)


@router.get("/hostel-fee/{student_id}")
async def hostel_fee_entries(
    student_id: str,
    academic_year: Optional[str] = Query(None, alias="academicYear"),
    caller_student_id: Optional[str] = Depends(get_caller_student_id),
    db: AsyncSession = Depends(get_db),
    api_key: str = Depends(verify_api_key),
):
    if caller_student_id is not None and caller_student_id != student_id:
        raise NotFoundError("Student not found")
    entries = await HostelFeeService(db).list_entries(student_id, academic_year)
    return {"student_id": student_id, "academic_year": academic_year, "payments": entries}


@router.post("/rooms/{room_id}/bills")
async def create_room_bill(
    room_id: str,
    body: CreateBillRequest,
    admin_id: str = Depends(get_admin_id),
    db: AsyncSession = Depends(get_db),
    api_key: str = Depends(verify_api_key),
):
    """Create a monthly bill; split across active occupants when there are any."""
    bill = await BillService(db).create_bill(
        room_id,
        body.month,
        body.start_units,
        body.end_units,
        rate=body.rate,
    )
    data = bill.to_dict()
    await db.commit()
    return data


@router.get("/settings/electricity-rate")
async def get_electricity_rate(
    db: AsyncSession = Depends(get_db),
    api_key: str = Depends(verify_api_key),
):
    setting = await BillService(db).current_rate()
    if not setting:
        return {"rate": None, "effective_from": None, "set_by": None}
    return {
        "rate": str(setting.rate),
        "effective_from": setting.effective_from.isoformat(),
        "set_by": setting.set_by,
    }


@router.put("/settings/electricity-rate")
async def set_electricity_rate(
    body: RateUpdateRequest,
    admin_id: str = Depends(get_admin_id),
    db: AsyncSession = Depends(get_db),
    api_key: str = Depends(verify_api_key),
):
    """Publish a new version of the default rate; bills created later use it."""
    effective_from = None
    if body.effective_from:
        try:
            effective_from = datetime.fromisoformat(body.effective_from)
        except ValueError as e:
            raise ValidationError("effectiveFrom must be an ISO-8601 timestamp") from e
    setting = await BillService(db).set_rate(body.rate, set_by=admin_id, effective_from=effective_from)
    data = {
        "rate": str(setting.rate),
        "effective_from": setting.effective_from.isoformat(),
        "set_by": setting.set_by,
        "version": setting.id,
    }
    await db.commit()
    return data


@router.get("/stats/electricity")
async def electricity_stats(
    month: str = Query(...),
    admin_id: str = Depends(get_admin_id),
    db: AsyncSession = Depends(get_db),
    api_key: str = Depends(verify_api_key),
):
    return await PaymentReports(db).electricity_stats(month)


@router.get("/stats/hostel-fee")
async def hostel_fee_stats(
    academic_year: Optional[str] = Query(None, alias="academicYear"),
    term: Optional[str] = Query(None),
    admin_id: str = Depends(get_admin_id),
    db: AsyncSession = Depends(get_db),
    api_key: str = Depends(verify_api_key),
):
    return await PaymentReports(db).hostel_fee_stats(academic_year, term)
