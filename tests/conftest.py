"""Shared test fixtures and configuration."""

import os
from datetime import datetime, timedelta
from decimal import Decimal
from types import SimpleNamespace

import pytest
from unittest.mock import patch

# Set up test environment variables before importing modules
os.environ.setdefault("API_KEY", "test_api_key_12345")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("PAYMENT_GATEWAY", "simulator")
os.environ.setdefault("WEBHOOK_MAX_AGE_SECONDS", "300")

from hostel_payments.database import create_async_engine, create_tables, get_async_session_factory
from hostel_payments.database.models import (
    Room,
    Student,
    FeeStructure,
    ElectricityRateSetting,
)
from hostel_payments.gateway import SimulatorConnector
from hostel_payments.notifier import PaymentNotifier

ACADEMIC_YEAR = "2024-2025"


@pytest.fixture
def mock_api_key():
    """Set up mock API key for authentication."""
    with patch.dict(os.environ, {"API_KEY": "test_api_key_12345"}):
        yield "test_api_key_12345"


@pytest.fixture
def auth_headers(mock_api_key):
    """Bearer authorization header for API requests."""
    return {"Authorization": f"Bearer {mock_api_key}"}


@pytest.fixture
async def db_engine():
    """Create an in-memory SQLite engine with all tables."""
    engine = create_async_engine(database_url="sqlite+aiosqlite:///:memory:")
    await create_tables(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
async def db_session(db_engine):
    """Create a database session for testing."""
    session_factory = get_async_session_factory(db_engine)
    async with session_factory() as session:
        yield session


@pytest.fixture
def gateway():
    """Simulator gateway with a known webhook secret."""
    return SimulatorConnector()


class RecordingNotifier(PaymentNotifier):
    """Keeps every success notice so tests can inspect them."""

    def __init__(self):
        self.sent = []

    async def notify_payment_success(self, student_id, payment_type, amount, order_id, entry_ids):
        self.sent.append({
            "student_id": student_id,
            "payment_type": payment_type,
            "amount": amount,
            "order_id": order_id,
            "entry_ids": list(entry_ids),
        })


@pytest.fixture
def notifier():
    return RecordingNotifier()


def make_hostel(occupants: int = 3, room_number: str = "101"):
    """Unsaved room, students, fee structure and default rate."""
    room = Room(room_number=room_number, category="A")
    students = [
        Student(
            name=f"Student {i}",
            roll_number=f"R{room_number}{i:02d}",
            email=f"student{room_number}{i}@example.edu",
            phone="9876543210",
            course="BTech",
            year_of_study=2,
            category="A",
            room=room,
        )
        for i in range(1, occupants + 1)
    ]
    fee = FeeStructure(
        academic_year=ACADEMIC_YEAR,
        category="A",
        term1_fee=Decimal("300"),
        term2_fee=Decimal("500"),
        term3_fee=Decimal("200"),
    )
    rate = ElectricityRateSetting(
        rate=Decimal("9.00"),
        effective_from=datetime.utcnow() - timedelta(days=1),
        set_by="admin-seed",
    )
    return SimpleNamespace(room=room, students=students, fee=fee, rate=rate)


@pytest.fixture
async def hostel(db_session):
    """Room 101 with three active students, a 300/500/200 fee structure and a ₹9/unit rate."""
    data = make_hostel()
    db_session.add_all([data.room, *data.students, data.fee, data.rate])
    await db_session.flush()
    return data


async def backdate(session, obj, minutes: int) -> None:
    """Move an object's creation time into the past."""
    obj.created_at = datetime.utcnow() - timedelta(minutes=minutes)
    await session.flush()
