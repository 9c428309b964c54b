"""initial schema: users, provider connections, unified metrics, workouts, webhook journal

Revision ID: 001
Revises:
Create Date: 2026-10-17 00:00:00.000000

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
        'app_user',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('email', sa.Text(), nullable=True),
        sa.Column('display_name', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
    )
    op.create_index('ix_app_user_email', 'app_user', ['email'], unique=True)

    op.create_table(
        'provider_connection',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('user_id', sa.Uuid(), sa.ForeignKey('app_user.id'), nullable=False),
        sa.Column('provider', sa.Text(), nullable=False),
        sa.Column('external_user_id', sa.Text(), nullable=False),
        sa.Column('device_provider', sa.Text(), nullable=True),
        sa.Column('access_token', sa.Text(), nullable=True),
        sa.Column('refresh_token', sa.Text(), nullable=True),
        sa.Column('token_expires_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('is_active', sa.Boolean(), server_default=sa.true(), nullable=False),
        sa.Column('last_sync_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.UniqueConstraint('user_id', 'provider', name='uq_provider_connection_user_provider'),
    )
    op.create_index('ix_provider_connection_user_id', 'provider_connection', ['user_id'])
    op.create_index(
        'ix_provider_connection_lookup',
        'provider_connection',
        ['external_user_id', 'provider', 'is_active'],
    )

    op.create_table(
        'unified_metric',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('user_id', sa.Uuid(), sa.ForeignKey('app_user.id'), nullable=False),
        sa.Column('metric_name', sa.Text(), nullable=False),
        sa.Column('value', sa.Float(), nullable=False),
        sa.Column('unit', sa.Text(), nullable=True),
        sa.Column('metric_category', sa.Text(), nullable=False),
        sa.Column('source', sa.Text(), nullable=False),
        sa.Column('measurement_date', sa.Date(), nullable=False),
        sa.Column('external_id', sa.Text(), nullable=True),
        sa.Column('priority', sa.Integer(), nullable=False),
        sa.Column('confidence_score', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.UniqueConstraint(
            'user_id', 'metric_name', 'measurement_date', 'source',
            name='uq_unified_metric_user_metric_date_source',
        ),
    )
    op.create_index('ix_unified_metric_user_id', 'unified_metric', ['user_id'])
    op.create_index('ix_unified_metric_user_date', 'unified_metric', ['user_id', 'measurement_date'])

    op.create_table(
        'workout',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('user_id', sa.Uuid(), sa.ForeignKey('app_user.id'), nullable=False),
        sa.Column('external_id', sa.Text(), nullable=False),
        sa.Column('source', sa.Text(), nullable=False),
        sa.Column('workout_type', sa.Text(), nullable=False),
        sa.Column('start_time', sa.DateTime(timezone=True), nullable=True),
        sa.Column('end_time', sa.DateTime(timezone=True), nullable=True),
        sa.Column('duration_minutes', sa.Integer(), nullable=True),
        sa.Column('calories', sa.Float(), nullable=True),
        sa.Column('average_heart_rate', sa.Float(), nullable=True),
        sa.Column('max_heart_rate', sa.Float(), nullable=True),
        sa.Column('strain', sa.Float(), nullable=True),
        sa.Column('distance_meters', sa.Float(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.UniqueConstraint('user_id', 'external_id', name='uq_workout_user_external_id'),
    )
    op.create_index('ix_workout_user_id', 'workout', ['user_id'])

    op.create_table(
        'webhook_event',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('provider', sa.Text(), nullable=False),
        sa.Column('event_type', sa.Text(), nullable=True),
        sa.Column('external_user_id', sa.Text(), nullable=True),
        sa.Column('delivery_id', sa.Text(), nullable=True),
        sa.Column('payload', postgresql.JSONB(), nullable=False),
        sa.Column('status', sa.Text(), server_default='received', nullable=False),
        sa.Column('attempts', sa.Integer(), server_default='0', nullable=False),
        sa.Column('processed_count', sa.Integer(), server_default='0', nullable=False),
        sa.Column('last_error', sa.Text(), nullable=True),
        sa.Column('next_retry_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
    )
    op.create_index('ix_webhook_event_status_retry', 'webhook_event', ['status', 'next_retry_at'])


def downgrade() -> None:
    op.drop_index('ix_webhook_event_status_retry', table_name='webhook_event')
    op.drop_table('webhook_event')
    op.drop_index('ix_workout_user_id', table_name='workout')
    op.drop_table('workout')
    op.drop_index('ix_unified_metric_user_date', table_name='unified_metric')
    op.drop_index('ix_unified_metric_user_id', table_name='unified_metric')
    op.drop_table('unified_metric')
    op.drop_index('ix_provider_connection_lookup', table_name='provider_connection')
    op.drop_index('ix_provider_connection_user_id', table_name='provider_connection')
    op.drop_table('provider_connection')
    op.drop_index('ix_app_user_email', table_name='app_user')
    op.drop_table('app_user')
