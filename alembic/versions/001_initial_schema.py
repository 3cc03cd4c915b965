"""Initial billing schema

Revision ID: 001
Revises:
Create Date: 2026-10-19 00:00:00.000000

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = '001'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # Users table (owned by the main API; billing only reads it)
    op.create_table(
        'users',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('email', sa.String(), nullable=False),
        sa.Column('first_name', sa.String(), nullable=True),
        sa.Column('last_name', sa.String(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_users_email', 'users', ['email'], unique=True)

    # Cooperatives table
    op.create_table(
        'cooperatives',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
    )

    # Members table
    op.create_table(
        'members',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('cooperative_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('user_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('role', sa.String(), nullable=False, server_default='member'),
        sa.Column('status', sa.String(), nullable=False, server_default='pending'),
        sa.Column('joined_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['cooperative_id'], ['cooperatives.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='SET NULL'),
    )
    op.create_index('ix_members_cooperative_id', 'members', ['cooperative_id'])
    op.create_index('ix_members_user_id', 'members', ['user_id'])
    op.create_index('ix_members_status', 'members', ['status'])

    # Contribution plans table
    op.create_table(
        'contribution_plans',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('cooperative_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='true'),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['cooperative_id'], ['cooperatives.id'], ondelete='CASCADE'),
    )
    op.create_index('ix_contribution_plans_cooperative_id', 'contribution_plans', ['cooperative_id'])
    op.create_index('ix_contribution_plans_is_active', 'contribution_plans', ['is_active'])

    # Group buys table
    op.create_table(
        'group_buys',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('cooperative_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('title', sa.String(), nullable=False),
        sa.Column('status', sa.String(), nullable=False, server_default='draft'),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['cooperative_id'], ['cooperatives.id'], ondelete='CASCADE'),
    )
    op.create_index('ix_group_buys_cooperative_id', 'group_buys', ['cooperative_id'])
    op.create_index('ix_group_buys_status', 'group_buys', ['status'])

    # Loans table
    op.create_table(
        'loans',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('cooperative_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('member_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('amount', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(), nullable=False, server_default='pending'),
        sa.Column('requested_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['cooperative_id'], ['cooperatives.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['member_id'], ['members.id'], ondelete='CASCADE'),
    )
    op.create_index('ix_loans_cooperative_id', 'loans', ['cooperative_id'])
    op.create_index('ix_loans_member_id', 'loans', ['member_id'])
    op.create_index('ix_loans_requested_at', 'loans', ['requested_at'])

    # Subscription plans table
    op.create_table(
        'subscription_plans',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('display_name', sa.String(), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('monthly_price', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('yearly_price', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('max_members', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('max_contribution_plans', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('max_loans_per_month', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('max_group_buys', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('features', postgresql.JSON(astext_type=sa.Text()), nullable=True),
        sa.Column('paystack_plan_code', sa.String(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='true'),
        sa.Column('is_popular', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('sort_order', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_subscription_plans_name', 'subscription_plans', ['name'], unique=True)
    op.create_index('ix_subscription_plans_is_active', 'subscription_plans', ['is_active'])

    # Subscriptions table (one per cooperative)
    op.create_table(
        'subscriptions',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('cooperative_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('plan_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('previous_plan_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('status', sa.String(length=9), nullable=False, server_default='pending'),
        sa.Column('billing_cycle', sa.String(length=7), nullable=False, server_default='monthly'),
        sa.Column('current_period_start', sa.DateTime(), nullable=False),
        sa.Column('current_period_end', sa.DateTime(), nullable=False),
        sa.Column('cancel_at_period_end', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('cancelled_at', sa.DateTime(), nullable=True),
        sa.Column('cancel_reason', sa.Text(), nullable=True),
        sa.Column('external_customer_code', sa.String(), nullable=True),
        sa.Column('external_subscription_code', sa.String(), nullable=True),
        sa.Column('external_email_token', sa.String(), nullable=True),
        sa.Column('created_by', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['cooperative_id'], ['cooperatives.id']),
        sa.ForeignKeyConstraint(['plan_id'], ['subscription_plans.id']),
        sa.ForeignKeyConstraint(['previous_plan_id'], ['subscription_plans.id']),
        sa.ForeignKeyConstraint(['created_by'], ['users.id'], ondelete='SET NULL'),
    )
    op.create_index('ix_subscriptions_cooperative_id', 'subscriptions', ['cooperative_id'], unique=True)
    op.create_index('ix_subscriptions_plan_id', 'subscriptions', ['plan_id'])
    op.create_index('ix_subscriptions_status', 'subscriptions', ['status'])
    op.create_index('ix_subscriptions_current_period_end', 'subscriptions', ['current_period_end'])
    op.create_index('ix_subscriptions_external_customer_code', 'subscriptions', ['external_customer_code'])
    op.create_index('ix_subscriptions_external_subscription_code', 'subscriptions', ['external_subscription_code'])

    # Subscription payments table
    op.create_table(
        'subscription_payments',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('subscription_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('amount', sa.Integer(), nullable=False),
        sa.Column('external_reference', sa.String(), nullable=False),
        sa.Column('status', sa.String(length=8), nullable=False, server_default='pending'),
        sa.Column('transaction_type', sa.String(length=12), nullable=False, server_default='subscription'),
        sa.Column('target_plan_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('billing_cycle', sa.String(), nullable=True),
        sa.Column('period_start', sa.DateTime(), nullable=False),
        sa.Column('period_end', sa.DateTime(), nullable=False),
        sa.Column('external_transaction_id', sa.String(), nullable=True),
        sa.Column('paid_at', sa.DateTime(), nullable=True),
        sa.Column('channel', sa.String(), nullable=True),
        sa.Column('card_last4', sa.String(length=4), nullable=True),
        sa.Column('card_brand', sa.String(), nullable=True),
        sa.Column('card_exp_month', sa.String(length=2), nullable=True),
        sa.Column('card_exp_year', sa.String(length=4), nullable=True),
        sa.Column('failure_reason', sa.Text(), nullable=True),
        sa.Column('payment_metadata', postgresql.JSON(astext_type=sa.Text()), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['subscription_id'], ['subscriptions.id']),
        sa.ForeignKeyConstraint(['target_plan_id'], ['subscription_plans.id']),
    )
    op.create_index('ix_subscription_payments_subscription_id', 'subscription_payments', ['subscription_id'])
    op.create_index('ix_subscription_payments_external_reference', 'subscription_payments', ['external_reference'], unique=True)
    op.create_index('ix_subscription_payments_status', 'subscription_payments', ['status'])
    op.create_index('ix_subscription_payments_created_at', 'subscription_payments', ['created_at'])

    # Paystack webhook events table
    op.create_table(
        'paystack_webhook_events',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('external_event_id', sa.String(), nullable=False),
        sa.Column('event_type', sa.String(), nullable=False),
        sa.Column('payload', postgresql.JSON(astext_type=sa.Text()), nullable=False),
        sa.Column('processed', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('error', sa.Text(), nullable=True),
        sa.Column('received_at', sa.DateTime(), nullable=False),
        sa.Column('processed_at', sa.DateTime(), nullable=True),
    )
    op.create_index('ix_paystack_webhook_events_external_event_id', 'paystack_webhook_events', ['external_event_id'], unique=True)
    op.create_index('ix_paystack_webhook_events_event_type', 'paystack_webhook_events', ['event_type'])
    op.create_index('ix_paystack_webhook_events_processed', 'paystack_webhook_events', ['processed'])
    op.create_index('ix_paystack_webhook_events_received_at', 'paystack_webhook_events', ['received_at'])

    # Notifications table
    op.create_table(
        'notifications',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('user_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('cooperative_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('type', sa.String(), nullable=False),
        sa.Column('title', sa.String(), nullable=False),
        sa.Column('body', sa.Text(), nullable=False),
        sa.Column('data', postgresql.JSON(astext_type=sa.Text()), nullable=True),
        sa.Column('is_read', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['cooperative_id'], ['cooperatives.id'], ondelete='CASCADE'),
    )
    op.create_index('ix_notifications_user_id', 'notifications', ['user_id'])
    op.create_index('ix_notifications_cooperative_id', 'notifications', ['cooperative_id'])
    op.create_index('ix_notifications_created_at', 'notifications', ['created_at'])

    # Activities table
    op.create_table(
        'activities',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('user_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('cooperative_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('action', sa.String(), nullable=False),
        sa.Column('description', sa.Text(), nullable=False),
        sa.Column('metadata', postgresql.JSON(astext_type=sa.Text()), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='SET NULL'),
        sa.ForeignKeyConstraint(['cooperative_id'], ['cooperatives.id'], ondelete='CASCADE'),
    )
    op.create_index('ix_activities_user_id', 'activities', ['user_id'])
    op.create_index('ix_activities_cooperative_id', 'activities', ['cooperative_id'])
    op.create_index('ix_activities_action', 'activities', ['action'])
    op.create_index('ix_activities_created_at', 'activities', ['created_at'])


def downgrade() -> None:
    op.drop_table('activities')
    op.drop_table('notifications')
    op.drop_table('paystack_webhook_events')
    op.drop_table('subscription_payments')
    op.drop_table('subscriptions')
    op.drop_table('subscription_plans')
    op.drop_table('loans')
    op.drop_table('group_buys')
    op.drop_table('contribution_plans')
    op.drop_table('members')
    op.drop_table('cooperatives')
    op.drop_table('users')
