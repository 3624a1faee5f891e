"""create notification and scheduler tables

Revision ID: c8d2e3f4a5b6
Revises: b7c1d2e3f4a5
Create Date: 2026-03-09
"""
from alembic import op
import sqlalchemy as sa


revision = 'c8d2e3f4a5b6'
down_revision = 'b7c1d2e3f4a5'
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        'notification_settings',
        sa.Column('id', sa.Integer(), autoincrement=True, primary_key=True),
        sa.Column('notification_type', sa.String(32), nullable=False),
        sa.Column('is_enabled', sa.Boolean(), nullable=False, server_default='true'),
        sa.Column('advance_days', sa.Integer(), nullable=False, server_default='7'),
        sa.Column('repeat_notification', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('notification_channels', sa.JSON(), nullable=False),
    )
    op.create_unique_constraint('uq_notification_settings_type', 'notification_settings', ['notification_type'])

    op.create_table(
        'notification_channels',
        sa.Column('id', sa.Integer(), autoincrement=True, primary_key=True),
        sa.Column('channel_type', sa.String(32), nullable=False),
        sa.Column('channel_config', sa.JSON(), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('last_used_at', sa.TIMESTAMP(timezone=True), nullable=True),
    )
    op.create_unique_constraint('uq_notification_channels_type', 'notification_channels', ['channel_type'])

    op.create_table(
        'notification_history',
        sa.Column('id', sa.Integer(), autoincrement=True, primary_key=True),
        sa.Column('subscription_id', sa.Integer(), nullable=False),
        sa.Column('notification_type', sa.String(32), nullable=False),
        sa.Column('channel_type', sa.String(32), nullable=False),
        sa.Column('status', sa.String(16), nullable=False),
        sa.Column('recipient', sa.String(255), nullable=True),
        sa.Column('message_content', sa.Text(), nullable=False),
        sa.Column('sent_at', sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index('ix_notification_history_subscription_id', 'notification_history', ['subscription_id'])
    op.create_index(
        'ix_notification_history_dedup', 'notification_history',
        ['subscription_id', 'notification_type', 'status'],
    )

    op.create_table(
        'scheduler_settings',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('notification_check_time', sa.String(5), nullable=False, server_default='09:00'),
        sa.Column('timezone', sa.String(64), nullable=False, server_default='Asia/Shanghai'),
        sa.Column('is_enabled', sa.Boolean(), nullable=False, server_default='true'),
        sa.Column('updated_at', sa.TIMESTAMP(timezone=True), server_default=sa.func.now(), nullable=False),
    )


def downgrade():
    op.drop_table('scheduler_settings')
    op.drop_table('notification_history')
    op.drop_table('notification_channels')
    op.drop_table('notification_settings')
