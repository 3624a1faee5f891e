"""create billing ledger tables

Revision ID: b7c1d2e3f4a5
Revises:
Create Date: 2026-03-02
"""
from alembic import op
import sqlalchemy as sa


revision = 'b7c1d2e3f4a5'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        'categories',
        sa.Column('id', sa.Integer(), autoincrement=True, primary_key=True),
        sa.Column('value', sa.String(64), nullable=False),
        sa.Column('label', sa.String(128), nullable=False),
    )
    op.create_unique_constraint('uq_categories_value', 'categories', ['value'])

    op.create_table(
        'payment_methods',
        sa.Column('id', sa.Integer(), autoincrement=True, primary_key=True),
        sa.Column('value', sa.String(64), nullable=False),
        sa.Column('label', sa.String(128), nullable=False),
    )
    op.create_unique_constraint('uq_payment_methods_value', 'payment_methods', ['value'])

    op.create_table(
        'subscriptions',
        sa.Column('id', sa.Integer(), autoincrement=True, primary_key=True),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('plan', sa.String(255), nullable=True),
        sa.Column('billing_cycle', sa.String(16), nullable=False),
        sa.Column('next_billing_date', sa.Date(), nullable=True),
        sa.Column('last_billing_date', sa.Date(), nullable=True),
        sa.Column('amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('currency', sa.String(3), nullable=False, server_default='CNY'),
        sa.Column('payment_method_id', sa.Integer(), nullable=True),
        sa.Column('start_date', sa.Date(), nullable=False),
        sa.Column('status', sa.String(16), nullable=False, server_default='active'),
        sa.Column('category_id', sa.Integer(), nullable=True),
        sa.Column('renewal_type', sa.String(16), nullable=False, server_default='manual'),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('website', sa.String(512), nullable=True),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.TIMESTAMP(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index('ix_subscriptions_status_renewal', 'subscriptions', ['status', 'renewal_type'])

    op.create_table(
        'payment_history',
        sa.Column('id', sa.Integer(), autoincrement=True, primary_key=True),
        sa.Column('subscription_id', sa.Integer(),
                  sa.ForeignKey('subscriptions.id', ondelete='CASCADE'), nullable=False),
        sa.Column('payment_date', sa.Date(), nullable=False),
        sa.Column('amount_paid', sa.Numeric(12, 2), nullable=False),
        sa.Column('currency', sa.String(3), nullable=False),
        sa.Column('billing_period_start', sa.Date(), nullable=False),
        sa.Column('billing_period_end', sa.Date(), nullable=False),
        sa.Column('status', sa.String(16), nullable=False, server_default='succeeded'),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index('ix_payment_history_subscription_id', 'payment_history', ['subscription_id'])
    op.create_index('ix_payment_history_payment_date', 'payment_history', ['payment_date'])

    op.create_table(
        'monthly_category_summary',
        sa.Column('year', sa.Integer(), nullable=False),
        sa.Column('month', sa.Integer(), nullable=False),
        sa.Column('category_id', sa.Integer(), nullable=False),
        sa.Column('total_amount_in_base_currency', sa.Numeric(14, 2), nullable=False, server_default='0'),
        sa.Column('base_currency', sa.String(3), nullable=False),
        sa.Column('transactions_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('updated_at', sa.TIMESTAMP(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint('year', 'month', 'category_id'),
    )

    op.create_table(
        'exchange_rates',
        sa.Column('id', sa.Integer(), autoincrement=True, primary_key=True),
        sa.Column('from_currency', sa.String(3), nullable=False),
        sa.Column('to_currency', sa.String(3), nullable=False),
        sa.Column('rate', sa.Numeric(20, 8), nullable=False),
        sa.Column('updated_at', sa.TIMESTAMP(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_unique_constraint('uq_exchange_rate_pair', 'exchange_rates', ['from_currency', 'to_currency'])


def downgrade():
    op.drop_table('exchange_rates')
    op.drop_table('monthly_category_summary')
    op.drop_table('payment_history')
    op.drop_table('subscriptions')
    op.drop_table('payment_methods')
    op.drop_table('categories')
