"""Initial migration - create directory, bill, ledger and pending intent tables

Revision ID: 001_initial
Revises:
Create Date: 2026-10-19

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '001_initial'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

ELECTRICITY_SUCCESS = "payment_type = 'electricity' AND status = 'success'"


def upgrade() -> None:
    # Directory tables
    op.create_table(
        'rooms',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('room_number', sa.String(10), nullable=False, unique=True),
        sa.Column('category', sa.String(5), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(), nullable=False),
    )

    op.create_table(
        'students',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('roll_number', sa.String(50), nullable=False, unique=True),
        sa.Column('email', sa.String(255), nullable=True),
        sa.Column('phone', sa.String(20), nullable=True),
        sa.Column('course', sa.String(100), nullable=True),
        sa.Column('year_of_study', sa.Integer(), nullable=True),
        sa.Column('category', sa.String(5), nullable=True),
        sa.Column('hostel_status', sa.String(20), nullable=False, server_default='Active'),
        sa.Column('room_id', sa.String(36), sa.ForeignKey('rooms.id'), nullable=True),
    )
    op.create_index('ix_students_room_id', 'students', ['room_id'])

    op.create_table(
        'fee_structures',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('academic_year', sa.String(9), nullable=False),
        sa.Column('course', sa.String(100), nullable=True),
        sa.Column('year_of_study', sa.Integer(), nullable=True),
        sa.Column('category', sa.String(5), nullable=False),
        sa.Column('term1_fee', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('term2_fee', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('term3_fee', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.UniqueConstraint('academic_year', 'course', 'year_of_study', 'category', name='uq_fee_structure_profile'),
    )
    op.create_index('ix_fee_structures_academic_year', 'fee_structures', ['academic_year', 'is_active'])

    op.create_table(
        'electricity_rate_settings',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('rate', sa.Numeric(10, 2), nullable=False),
        sa.Column('effective_from', sa.DateTime(), nullable=False),
        sa.Column('set_by', sa.String(255), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_electricity_rate_settings_effective_from', 'electricity_rate_settings', ['effective_from'])

    # Bills
    op.create_table(
        'room_bills',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('room_id', sa.String(36), sa.ForeignKey('rooms.id'), nullable=False),
        sa.Column('month', sa.String(7), nullable=False),
        sa.Column('start_units', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('end_units', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('consumption', sa.Numeric(12, 2), nullable=False),
        sa.Column('rate', sa.Numeric(10, 2), nullable=False),
        sa.Column('total', sa.Numeric(12, 2), nullable=False),
        sa.Column('payment_status', sa.String(20), nullable=False, server_default='unpaid'),
        sa.Column('gateway_order_id', sa.String(64), nullable=True),
        sa.Column('paid_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.UniqueConstraint('room_id', 'month', name='uq_room_bills_room_month'),
    )
    op.create_index('ix_room_bills_room_id', 'room_bills', ['room_id'])

    op.create_table(
        'student_bills',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('bill_id', sa.String(36), sa.ForeignKey('room_bills.id'), nullable=False),
        sa.Column('student_id', sa.String(36), sa.ForeignKey('students.id'), nullable=False),
        sa.Column('amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('payment_status', sa.String(20), nullable=False, server_default='unpaid'),
        sa.Column('gateway_order_id', sa.String(64), nullable=True),
        sa.Column('paid_at', sa.DateTime(), nullable=True),
        sa.UniqueConstraint('bill_id', 'student_id', name='uq_student_bills_bill_student'),
    )
    op.create_index('ix_student_bills_bill_id', 'student_bills', ['bill_id'])
    op.create_index('ix_student_bills_student_id', 'student_bills', ['student_id'])

    # Ledger
    op.create_table(
        'ledger_entries',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('payment_type', sa.String(30), nullable=False),
        sa.Column('allocation_bucket', sa.String(10), nullable=False, server_default='bill'),
        sa.Column('amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('currency', sa.String(3), nullable=False, server_default='INR'),
        sa.Column('status', sa.String(20), nullable=False, server_default='success'),
        sa.Column('payment_method', sa.String(20), nullable=False, server_default='Online'),
        sa.Column('student_id', sa.String(36), sa.ForeignKey('students.id'), nullable=False),
        sa.Column('gateway_order_id', sa.String(64), nullable=True),
        sa.Column('gateway_payment_id', sa.String(64), nullable=True),
        sa.Column('settlement_reference', sa.String(128), nullable=True),
        sa.Column('bill_id', sa.String(36), sa.ForeignKey('room_bills.id'), nullable=True),
        sa.Column('student_bill_id', sa.String(36), sa.ForeignKey('student_bills.id'), nullable=True),
        sa.Column('room_id', sa.String(36), sa.ForeignKey('rooms.id'), nullable=True),
        sa.Column('bill_month', sa.String(7), nullable=True),
        sa.Column('bill_snapshot_json', sa.Text(), nullable=True),
        sa.Column('term', sa.String(10), nullable=True),
        sa.Column('academic_year', sa.String(9), nullable=True),
        sa.Column('receipt_number', sa.String(64), nullable=True, unique=True),
        sa.Column('transaction_id', sa.String(64), nullable=True, unique=True),
        sa.Column('collected_by', sa.String(36), nullable=True),
        sa.Column('collected_by_name', sa.String(255), nullable=True),
        sa.Column('notes', sa.Text(), nullable=False, server_default=''),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('paid_at', sa.DateTime(), nullable=True),
        sa.UniqueConstraint('gateway_order_id', 'allocation_bucket', name='uq_ledger_order_bucket'),
        sa.UniqueConstraint('gateway_payment_id', 'allocation_bucket', name='uq_ledger_gateway_payment_bucket'),
    )

    # At most one successful electricity row per (student, bill)
    op.create_index(
        'uq_ledger_electricity_success',
        'ledger_entries',
        ['student_id', 'bill_id'],
        unique=True,
        sqlite_where=sa.text(ELECTRICITY_SUCCESS),
        postgresql_where=sa.text(ELECTRICITY_SUCCESS),
    )
    op.create_index('ix_ledger_entries_student_status', 'ledger_entries', ['student_id', 'status'])
    op.create_index('ix_ledger_entries_student_type', 'ledger_entries', ['student_id', 'payment_type'])
    op.create_index('ix_ledger_entries_term_year', 'ledger_entries', ['term', 'academic_year'])
    op.create_index('ix_ledger_entries_bill_month', 'ledger_entries', ['room_id', 'bill_month'])
    op.create_index('ix_ledger_entries_created_at', 'ledger_entries', ['created_at'])

    # Pending intents
    op.create_table(
        'pending_intents',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('order_id', sa.String(64), nullable=False, unique=True),
        sa.Column('student_id', sa.String(36), sa.ForeignKey('students.id'), nullable=False),
        sa.Column('payment_type', sa.String(30), nullable=False),
        sa.Column('target_key', sa.String(64), nullable=False),
        sa.Column('amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('bill_id', sa.String(36), sa.ForeignKey('room_bills.id'), nullable=True),
        sa.Column('student_bill_id', sa.String(36), sa.ForeignKey('student_bills.id'), nullable=True),
        sa.Column('room_id', sa.String(36), sa.ForeignKey('rooms.id'), nullable=True),
        sa.Column('academic_year', sa.String(9), nullable=True),
        sa.Column('payment_session_id', sa.String(255), nullable=True),
        sa.Column('payment_url', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.UniqueConstraint('student_id', 'payment_type', 'target_key', name='uq_pending_intents_open_target'),
    )
    op.create_index('ix_pending_intents_student_id', 'pending_intents', ['student_id'])
    op.create_index('ix_pending_intents_created_at', 'pending_intents', ['created_at'])


def downgrade() -> None:
    op.drop_index('ix_pending_intents_created_at', table_name='pending_intents')
    op.drop_index('ix_pending_intents_student_id', table_name='pending_intents')
    op.drop_table('pending_intents')

    op.drop_index('ix_ledger_entries_created_at', table_name='ledger_entries')
    op.drop_index('ix_ledger_entries_bill_month', table_name='ledger_entries')
    op.drop_index('ix_ledger_entries_term_year', table_name='ledger_entries')
    op.drop_index('ix_ledger_entries_student_type', table_name='ledger_entries')
    op.drop_index('ix_ledger_entries_student_status', table_name='ledger_entries')
    op.drop_index('uq_ledger_electricity_success', table_name='ledger_entries')
    op.drop_table('ledger_entries')

    op.drop_index('ix_student_bills_student_id', table_name='student_bills')
    op.drop_index('ix_student_bills_bill_id', table_name='student_bills')
    op.drop_table('student_bills')

    op.drop_index('ix_room_bills_room_id', table_name='room_bills')
    op.drop_table('room_bills')

    op.drop_index('ix_electricity_rate_settings_effective_from', table_name='electricity_rate_settings')
    op.drop_table('electricity_rate_settings')

    op.drop_index('ix_fee_structures_academic_year', table_name='fee_structures')
    op.drop_table('fee_structures')

    op.drop_index('ix_students_room_id', table_name='students')
    op.drop_table('students')
    op.drop_table('rooms')
