"""create_pump_room_core

Revision ID: 4b1e7c9d2a10
Revises:
Create Date: 2026-10-18 12:00:00.000000

Sites, responsibles, minute samples, alarm rules and alarm records.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


revision: str = '4b1e7c9d2a10'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

alarm_severity = sa.Enum('low', 'medium', 'high', 'critical', name='alarmseverity')
alarm_status = sa.Enum('active', 'acknowledged', 'cleared', name='alarmstatus')


def upgrade() -> None:
    # --- sites ---
    op.create_table(
        'sites',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('code', sa.String(50), nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('is_enabled', sa.Boolean(), nullable=False),
        sa.Column('internal_camera_ip', sa.String(45), nullable=True),
        sa.Column('internal_camera_username', sa.String(100), nullable=True),
        sa.Column('internal_camera_password', sa.String(255), nullable=True),
        sa.Column('global_camera_ip', sa.String(45), nullable=True),
        sa.Column('global_camera_username', sa.String(100), nullable=True),
        sa.Column('global_camera_password', sa.String(255), nullable=True),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint('code', name='uq_sites_code'),
    )

    # --- users / site_users ---
    op.create_table(
        'users',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('username', sa.String(100), nullable=False),
        sa.Column('email', sa.String(255), nullable=True),
        sa.Column('phone', sa.String(20), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint('username', name='uq_users_username'),
    )
    op.create_table(
        'site_users',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('site_id', sa.Integer(), sa.ForeignKey('sites.id', ondelete='CASCADE'), nullable=False),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.UniqueConstraint('site_id', 'user_id', name='uq_site_users_site_user'),
    )

    # --- metric_samples ---
    op.create_table(
        'metric_samples',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('site_id', sa.Integer(), sa.ForeignKey('sites.id', ondelete='CASCADE'), nullable=False),
        sa.Column('metric_type', sa.String(50), nullable=False),
        sa.Column('timestamp', sa.DateTime(), nullable=False),
        sa.Column('value', sa.Float(), nullable=False),
        sa.Column('status', sa.String(20), nullable=False),
        sa.Column('quality', sa.SmallInteger(), nullable=False),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint('site_id', 'metric_type', 'timestamp', name='uq_metric_samples_site_metric_ts'),
    )
    op.create_index('ix_metric_samples_metric_ts', 'metric_samples', ['metric_type', 'timestamp'])

    # --- alarm_rules ---
    op.create_table(
        'alarm_rules',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('site_id', sa.Integer(), sa.ForeignKey('sites.id', ondelete='CASCADE'), nullable=True),
        sa.Column('code', sa.String(50), nullable=False),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('message', sa.Text(), nullable=False),
        sa.Column('category', sa.String(50), nullable=False),
        sa.Column('severity', sa.String(20), nullable=False),
        sa.Column('trigger_variable', sa.String(200), nullable=True),
        sa.Column('trigger_bit', sa.Integer(), nullable=True),
        sa.Column('auto_clear', sa.Boolean(), nullable=False),
        sa.Column('require_confirmation', sa.Boolean(), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint('site_id', 'code', name='uq_alarm_rules_site_code'),
    )
    # Global rules (site_id NULL) are unique by code too
    op.create_index(
        'uq_alarm_rules_global_code', 'alarm_rules', ['code'],
        unique=True, postgresql_where=sa.text('site_id IS NULL'),
    )

    # --- alarm_records ---
    op.create_table(
        'alarm_records',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('site_id', sa.Integer(), sa.ForeignKey('sites.id', ondelete='CASCADE'), nullable=False),
        sa.Column('rule_id', sa.Integer(), sa.ForeignKey('alarm_rules.id', ondelete='SET NULL'), nullable=True),
        sa.Column('alarm_name', sa.String(200), nullable=False),
        sa.Column('alarm_description', sa.Text(), nullable=True),
        sa.Column('node_id', sa.String(200), nullable=False),
        sa.Column('node_name', sa.String(200), nullable=False),
        sa.Column('severity', alarm_severity, nullable=False),
        sa.Column('status', alarm_status, nullable=False),
        sa.Column('current_value', sa.String(100), nullable=True),
        sa.Column('alarm_value', sa.String(100), nullable=True),
        sa.Column('unit', sa.String(20), nullable=True),
        sa.Column('start_time', sa.DateTime(), nullable=False),
        sa.Column('end_time', sa.DateTime(), nullable=True),
        sa.Column('acknowledged_time', sa.DateTime(), nullable=True),
        sa.Column('acknowledged_by', sa.String(100), nullable=True),
        sa.Column('remarks', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
    )
    op.create_index('ix_alarm_records_site_status', 'alarm_records', ['site_id', 'status'])
    op.create_index('ix_alarm_records_start', 'alarm_records', ['start_time'])


def downgrade() -> None:
    op.drop_index('ix_alarm_records_start', 'alarm_records')
    op.drop_index('ix_alarm_records_site_status', 'alarm_records')
    op.drop_table('alarm_records')
    op.drop_index('uq_alarm_rules_global_code', 'alarm_rules')
    op.drop_table('alarm_rules')
    op.drop_index('ix_metric_samples_metric_ts', 'metric_samples')
    op.drop_table('metric_samples')
    op.drop_table('site_users')
    op.drop_table('users')
    op.drop_table('sites')
    alarm_status.drop(op.get_bind(), checkfirst=True)
    alarm_severity.drop(op.get_bind(), checkfirst=True)
