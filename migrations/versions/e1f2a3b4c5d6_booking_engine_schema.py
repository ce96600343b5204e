"""booking engine schema

Revision ID: e1f2a3b4c5d6
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = 'e1f2a3b4c5d6'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        'users',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('full_name', sa.String(length=120), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_users_email', 'users', ['email'], unique=True)

    op.create_table(
        'roles',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('name', sa.String(length=50), nullable=False, unique=True),
    )
    op.create_table(
        'user_roles',
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id'), primary_key=True),
        sa.Column('role_id', sa.Integer(), sa.ForeignKey('roles.id'), primary_key=True),
    )

    op.create_table(
        'auth_sessions',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('token_hash', sa.String(length=128), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('expires_at', sa.DateTime(), nullable=False),
        sa.Column('revoked', sa.Boolean(), nullable=False),
    )
    op.create_index('ix_auth_sessions_user_id', 'auth_sessions', ['user_id'])
    op.create_index('ix_auth_sessions_token_hash', 'auth_sessions', ['token_hash'], unique=True)

    op.create_table(
        'audit_logs',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('user_id', sa.Integer(), nullable=True),
        sa.Column('action', sa.String(length=80), nullable=False),
        sa.Column('entity', sa.String(length=80), nullable=True),
        sa.Column('entity_id', sa.String(length=80), nullable=True),
        sa.Column('ip', sa.String(length=64), nullable=True),
        sa.Column('user_agent', sa.String(length=255), nullable=True),
        sa.Column('metadata_json', sa.Text(), nullable=True),
        sa.Column('timestamp', sa.DateTime(), nullable=False),
    )

    op.create_table(
        'time_slots',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('provider_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('date', sa.Date(), nullable=False),
        sa.Column('start_time', sa.Time(), nullable=False),
        sa.Column('end_time', sa.Time(), nullable=False),
        sa.Column('capacity', sa.Integer(), nullable=False),
        sa.Column('booked_count', sa.Integer(), nullable=False),
        sa.Column('base_rate', sa.Numeric(10, 2), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('version', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.UniqueConstraint('provider_id', 'date', 'start_time', 'end_time', name='uq_provider_timeslot'),
        sa.CheckConstraint('booked_count >= 0 AND booked_count <= capacity', name='ck_slot_booked_count'),
        sa.CheckConstraint('capacity >= 1', name='ck_slot_capacity'),
    )
    op.create_index('ix_time_slots_provider_id', 'time_slots', ['provider_id'])
    op.create_index('ix_time_slots_date', 'time_slots', ['date'])
    op.create_index('ix_time_slots_status', 'time_slots', ['status'])

    op.create_table(
        'courses',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('provider_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('title', sa.String(length=160), nullable=False),
        sa.Column('base_rate', sa.Numeric(10, 2), nullable=False),
        sa.Column('duration_minutes', sa.Integer(), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_courses_provider_id', 'courses', ['provider_id'])

    op.create_table(
        'booking_requests',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('requester_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('provider_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('slot_id', sa.Integer(), sa.ForeignKey('time_slots.id'), nullable=True),
        sa.Column('course_id', sa.Integer(), sa.ForeignKey('courses.id'), nullable=True),
        sa.Column('proposed_title', sa.String(length=160), nullable=False),
        sa.Column('request_message', sa.Text(), nullable=True),
        sa.Column('proposed_start', sa.DateTime(), nullable=True),
        sa.Column('proposed_duration', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(length=32), nullable=False),
        sa.Column('payment_status', sa.String(length=16), nullable=False),
        sa.Column('base_rate', sa.Numeric(10, 2), nullable=False),
        sa.Column('amount_charged', sa.Numeric(10, 2), nullable=False),
        sa.Column('payee_amount', sa.Numeric(10, 2), nullable=False),
        sa.Column('slot_reserved', sa.Boolean(), nullable=False),
        sa.Column('rejection_reason', sa.String(length=255), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.Column('submitted_at', sa.DateTime(), nullable=True),
        sa.Column('decided_at', sa.DateTime(), nullable=True),
        sa.CheckConstraint('(slot_id IS NULL) != (course_id IS NULL)', name='ck_booking_request_target'),
    )
    op.create_index('ix_booking_requests_requester_id', 'booking_requests', ['requester_id'])
    op.create_index('ix_booking_requests_provider_id', 'booking_requests', ['provider_id'])
    op.create_index('ix_booking_requests_slot_id', 'booking_requests', ['slot_id'])
    op.create_index('ix_booking_requests_course_id', 'booking_requests', ['course_id'])
    op.create_index('ix_booking_requests_status', 'booking_requests', ['status'])

    op.create_table(
        'payment_records',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('booking_request_id', sa.Integer(), sa.ForeignKey('booking_requests.id'), nullable=False),
        sa.Column('provider', sa.String(length=20), nullable=False),
        sa.Column('amount', sa.Numeric(10, 2), nullable=False),
        sa.Column('currency', sa.String(length=10), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('gateway_order_id', sa.String(length=255), nullable=False),
        sa.Column('session_token', sa.Text(), nullable=True),
        sa.Column('last_gateway_status', sa.String(length=40), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.Column('paid_at', sa.DateTime(), nullable=True),
    )
    op.create_index('ix_payment_records_booking_request_id', 'payment_records', ['booking_request_id'])
    op.create_index('ix_payment_records_gateway_order_id', 'payment_records', ['gateway_order_id'], unique=True)

    op.create_table(
        'tutoring_sessions',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('booking_request_id', sa.Integer(), sa.ForeignKey('booking_requests.id'),
                  nullable=False, unique=True),
        sa.Column('provider_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('title', sa.String(length=160), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('start_time', sa.DateTime(), nullable=False),
        sa.Column('end_time', sa.DateTime(), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('meeting_link', sa.String(length=255), nullable=True),
        sa.Column('base_rate', sa.Numeric(10, 2), nullable=False),
        sa.Column('amount_charged', sa.Numeric(10, 2), nullable=False),
        sa.Column('payee_amount', sa.Numeric(10, 2), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('started_at', sa.DateTime(), nullable=True),
        sa.Column('ended_at', sa.DateTime(), nullable=True),
    )
    op.create_index('ix_tutoring_sessions_provider_id', 'tutoring_sessions', ['provider_id'])
    op.create_index('ix_tutoring_sessions_start_time', 'tutoring_sessions', ['start_time'])
    op.create_index('ix_tutoring_sessions_status', 'tutoring_sessions', ['status'])

    op.create_table(
        'session_attendance',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('session_id', sa.Integer(), sa.ForeignKey('tutoring_sessions.id'), nullable=False),
        sa.Column('requester_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('joined_at', sa.DateTime(), nullable=True),
        sa.UniqueConstraint('session_id', 'requester_id', name='uq_attendance_once'),
    )
    op.create_index('ix_session_attendance_session_id', 'session_attendance', ['session_id'])
    op.create_index('ix_session_attendance_requester_id', 'session_attendance', ['requester_id'])

    op.create_table(
        'earning_records',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('provider_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('session_id', sa.Integer(), sa.ForeignKey('tutoring_sessions.id'),
                  nullable=False, unique=True),
        sa.Column('amount', sa.Numeric(10, 2), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('release_date', sa.Date(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_earning_records_provider_id', 'earning_records', ['provider_id'])


def downgrade():
    op.drop_table('earning_records')
    op.drop_table('session_attendance')
    op.drop_table('tutoring_sessions')
    op.drop_table('payment_records')
    op.drop_table('booking_requests')
    op.drop_table('courses')
    op.drop_table('time_slots')
    op.drop_table('audit_logs')
    op.drop_table('auth_sessions')
    op.drop_table('user_roles')
    op.drop_table('roles')
    op.drop_table('users')
