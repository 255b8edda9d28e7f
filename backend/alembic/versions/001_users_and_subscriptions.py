"""Users, subscription ledger, audit trail and webhook deliveries.

Revision ID: 001
Revises:
Create Date: 2026-01-03 07:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = '001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'users',
        sa.Column('id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('phone', sa.String(20), nullable=False),
        sa.Column('phone_formatted', sa.String(20), nullable=False),
        sa.Column('name', sa.String(100), nullable=True),
        sa.Column('email', sa.String(100), nullable=True),
        sa.Column('subscription_status', sa.String(20), nullable=False, server_default='inactive'),
        sa.Column('subscription_plan', sa.String(20), nullable=True),
        sa.Column('subscription_end_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('daily_streak', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('last_workout_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('total_workouts', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_minutes', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('gender_preference', sa.String(10), nullable=False, server_default='both'),
        sa.Column('fitness_level', sa.String(20), nullable=False, server_default='beginner'),
        sa.Column('equipment_available', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('has_completed_welcome_video', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('timezone', sa.String(50), nullable=True, server_default='Africa/Lagos'),
        sa.Column('metadata', sa.JSON(), nullable=False, server_default='{}'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('email'),
    )
    op.create_index('ix_users_phone_formatted', 'users', ['phone_formatted'], unique=True)
    op.create_index('ix_users_subscription_status', 'users', ['subscription_status'])
    op.create_index('ix_users_subscription_end_date', 'users', ['subscription_end_date'])

    op.create_table(
        'subscriptions',
        sa.Column('id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('user_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('aggregator_product_id', sa.String(50), nullable=True),
        sa.Column('aggregator_transaction_id', sa.String(100), nullable=True),
        sa.Column('telco_ref', sa.String(100), nullable=True),
        sa.Column('plan_type', sa.String(20), nullable=False),
        sa.Column('amount', sa.Integer(), nullable=False),
        sa.Column('channel', sa.String(10), nullable=False, server_default='SMS'),
        sa.Column('telco', sa.String(20), nullable=False, server_default='MTN'),
        sa.Column('phone', sa.String(20), nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='pending'),
        sa.Column('start_date', sa.DateTime(timezone=True), nullable=False),
        sa.Column('end_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('auto_renewal', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('renewal_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('cancelled_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('cancellation_reason', sa.Text(), nullable=True),
        sa.Column('telco_status_code', sa.String(10), nullable=True),
        sa.Column('telco_status_message', sa.Text(), nullable=True),
        sa.Column('aggregator_response', sa.JSON(), nullable=False, server_default='{}'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('phone', 'aggregator_transaction_id', name='uq_subscriptions_phone_transaction'),
    )
    op.create_index('ix_subscriptions_user_id', 'subscriptions', ['user_id'])
    op.create_index('ix_subscriptions_user_status', 'subscriptions', ['user_id', 'status'])
    op.create_index('ix_subscriptions_status', 'subscriptions', ['status'])
    op.create_index('ix_subscriptions_phone', 'subscriptions', ['phone'])
    op.create_index('ix_subscriptions_aggregator_transaction_id', 'subscriptions', ['aggregator_transaction_id'])
    op.create_index('ix_subscriptions_telco_ref', 'subscriptions', ['telco_ref'])

    op.create_table(
        'subscription_events',
        sa.Column('id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('subscription_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('user_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('event_type', sa.String(50), nullable=False),
        sa.Column('transaction_id', sa.String(100), nullable=True),
        sa.Column('status_before', sa.String(20), nullable=True),
        sa.Column('status_after', sa.String(20), nullable=False),
        sa.Column('note', sa.Text(), nullable=True),
        sa.Column('payload', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(['subscription_id'], ['subscriptions.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_subscription_events_subscription_id', 'subscription_events', ['subscription_id'])
    op.create_index('ix_subscription_events_user_id', 'subscription_events', ['user_id'])
    op.create_index('ix_subscription_events_created_at', 'subscription_events', ['created_at'])

    op.create_table(
        'telco_webhook_deliveries',
        sa.Column('id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('phone', sa.String(20), nullable=False),
        sa.Column('event_type', sa.String(50), nullable=False),
        sa.Column('transaction_id', sa.String(100), nullable=False),
        sa.Column('payload', sa.JSON(), nullable=True),
        sa.Column('received_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('phone', 'event_type', 'transaction_id', name='uq_webhook_deliveries_key'),
    )


def downgrade() -> None:
    op.drop_table('telco_webhook_deliveries')

    op.drop_index('ix_subscription_events_created_at', table_name='subscription_events')
    op.drop_index('ix_subscription_events_user_id', table_name='subscription_events')
    op.drop_index('ix_subscription_events_subscription_id', table_name='subscription_events')
    op.drop_table('subscription_events')

    op.drop_index('ix_subscriptions_telco_ref', table_name='subscriptions')
    op.drop_index('ix_subscriptions_aggregator_transaction_id', table_name='subscriptions')
    op.drop_index('ix_subscriptions_phone', table_name='subscriptions')
    op.drop_index('ix_subscriptions_status', table_name='subscriptions')
    op.drop_index('ix_subscriptions_user_status', table_name='subscriptions')
    op.drop_index('ix_subscriptions_user_id', table_name='subscriptions')
    op.drop_table('subscriptions')

    op.drop_index('ix_users_subscription_end_date', table_name='users')
    op.drop_index('ix_users_subscription_status', table_name='users')
    op.drop_index('ix_users_phone_formatted', table_name='users')
    op.drop_table('users')
