"""key provider connections on the underlying device

Terra issues one user id per connected wearable, so a user can hold one
TERRA connection per device. Direct connections use the provider name as
their device.

Revision ID: 002
Revises: 001
Create Date: 2026-10-17 12:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '002'
down_revision: Union[str, None] = '001'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.execute(
        "UPDATE provider_connection SET device_provider = provider "
        "WHERE device_provider IS NULL OR device_provider = ''"
    )
    op.alter_column('provider_connection', 'device_provider', existing_type=sa.Text(), nullable=False)
    op.drop_constraint('uq_provider_connection_user_provider', 'provider_connection', type_='unique')
    op.create_unique_constraint(
        'uq_provider_connection_user_provider_device',
        'provider_connection',
        ['user_id', 'provider', 'device_provider'],
    )


def downgrade() -> None:
    # Only the most recently updated connection per (user, provider) survives
    op.execute(
        "DELETE FROM provider_connection a USING provider_connection b "
        "WHERE a.user_id = b.user_id AND a.provider = b.provider "
        "AND (a.updated_at, a.id) < (b.updated_at, b.id)"
    )
    op.drop_constraint('uq_provider_connection_user_provider_device', 'provider_connection', type_='unique')
    op.create_unique_constraint(
        'uq_provider_connection_user_provider',
        'provider_connection',
        ['user_id', 'provider'],
    )
    op.alter_column('provider_connection', 'device_provider', existing_type=sa.Text(), nullable=True)
