"""Builders for gateway order payloads."""

import os
import re
import time
from decimal import Decimal
from typing import Optional, Dict

from .base import GatewayOrder, CustomerDetails

PAYMENT_METHODS = "cc,dc,upi,nb,app"
FALLBACK_PHONE = "9999999999"
MAX_CUSTOMER_ID_LENGTH = 50


def _clean_url(url: str) -> str:
    return url.rstrip("/")


def frontend_url() -> str:
    return _clean_url(os.getenv("FRONTEND_URL", "http://localhost:3000"))


def backend_url() -> str:
    return _clean_url(os.getenv("BACKEND_URL", "http://localhost:5000"))


def customer_id_for(
    email: Optional[str],
    name: Optional[str],
    phone: Optional[str],
    student_id: Optional[str],
) -> str:
    """
    Build a gateway-safe customer id: ``cust_<prefix>_<last 6 digits of ms time>``.

    The prefix comes from the email local part, else the sanitized name, else
    the phone digits, else the student id.
    """
    prefix = "student"
    if email and "@" in email:
        prefix = email.split("@")[0]
    elif name:
        prefix = re.sub(r"[^a-zA-Z0-9]", "", name).lower()[:20]
    elif phone:
        prefix = f"phone_{re.sub(r'[^0-9]', '', phone)[:10]}"
    elif student_id:
        prefix = f"id_{str(student_id)[:15]}"

    # Gateway accepts alphanumerics, underscores and hyphens only
    prefix = re.sub(r"[^a-zA-Z0-9_-]", "_", prefix) or "student"
    short_ts = str(int(time.time() * 1000))[-6:]
    return f"cust_{prefix}_{short_ts}"[:MAX_CUSTOMER_ID_LENGTH]


def build_order(
    order_id: str,
    amount: Decimal,
    student_id: str,
    student_name: Optional[str],
    student_email: Optional[str],
    student_phone: Optional[str],
    return_path: str,
    order_note: str,
    order_tags: Dict[str, str],
) -> GatewayOrder:
    """
    Build the order-creation body for a student payment.

    Args:
        order_id: Correlation id generated by the initiator.
        amount: Payable amount in rupees.
        return_path: Frontend path the hosted page redirects to; may contain
            the gateway's ``{order_id}`` placeholder.
        order_note: Human-readable description shown on the hosted page.
        order_tags: Flat string tags echoed back by the gateway.

    Returns:
        GatewayOrder ready to hand to a gateway client.
    """
    customer_id = customer_id_for(student_email, student_name, student_phone, student_id)
    return GatewayOrder(
        order_id=order_id,
        order_amount=amount,
        customer_details=CustomerDetails(
            customer_id=customer_id,
            customer_name=student_name or "Student",
            customer_email=student_email or f"{customer_id}@hostel.local",
            customer_phone=student_phone or FALLBACK_PHONE,
        ),
        order_meta={
            "return_url": f"{frontend_url()}{return_path}",
            "notify_url": f"{backend_url()}/api/payments/webhook",
            "payment_methods": PAYMENT_METHODS,
        },
        order_note=order_note,
        order_tags={k: str(v) for k, v in order_tags.items() if v is not None},
    )
