"""create quota tables

Revision ID: 001_create_quota_tables
Revises: 
Create Date: 2026-10-17 10:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '001_create_quota_tables'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column('created_at', sa.DateTime(timezone=False), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=False), nullable=False, server_default=sa.func.now()),
    ]


def upgrade() -> None:
    """Create per-day usage counters and the attempt log."""

    op.create_table(
        'user_usage',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('user_id', sa.String(64), nullable=False),
        sa.Column('date', sa.Date(), nullable=False),
        sa.Column('generations_used', sa.Integer(), nullable=False, server_default='0'),
        *_timestamps(),
        sa.UniqueConstraint('user_id', 'date', name='uq_user_usage_user_date'),
        sa.CheckConstraint('generations_used >= 0', name='ck_user_usage_non_negative'),
    )

    op.create_table(
        'anonymous_usage',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('anonymous_id', sa.String(64), nullable=False),
        sa.Column('ip_address', sa.String(64), nullable=False),
        sa.Column('fingerprint', sa.String(500), nullable=False),
        sa.Column('date', sa.Date(), nullable=False),
        sa.Column('generations_used', sa.Integer(), nullable=False, server_default='0'),
        *_timestamps(),
        sa.UniqueConstraint('anonymous_id', 'date', name='uq_anonymous_usage_id_date'),
        sa.CheckConstraint('generations_used >= 0', name='ck_anonymous_usage_non_negative'),
    )
    op.create_index('ix_anonymous_usage_ip_date', 'anonymous_usage', ['ip_address', 'date'])
    op.create_index('ix_anonymous_usage_ip_fingerprint', 'anonymous_usage', ['ip_address', 'fingerprint'])

    op.create_table(
        'attempt_log',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('user_id', sa.String(64), nullable=True),
        sa.Column('anonymous_id', sa.String(64), nullable=True),
        sa.Column('ip_address', sa.String(64), nullable=False),
        sa.Column('fingerprint', sa.String(500), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=False), nullable=False, server_default=sa.func.now()),
        sa.Column('success', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('limit_type', sa.String(16), nullable=False),
        sa.Column('generations_before', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('generations_after', sa.Integer(), nullable=False, server_default='0'),
    )
    for column in ('user_id', 'anonymous_id', 'ip_address', 'created_at', 'limit_type'):
        op.create_index(f'ix_attempt_log_{column}', 'attempt_log', [column])


def downgrade() -> None:
    """Drop quota tables."""

    for column in ('user_id', 'anonymous_id', 'ip_address', 'created_at', 'limit_type'):
        op.drop_index(f'ix_attempt_log_{column}', table_name='attempt_log')
    op.drop_table('attempt_log')

    op.drop_index('ix_anonymous_usage_ip_fingerprint', table_name='anonymous_usage')
    op.drop_index('ix_anonymous_usage_ip_date', table_name='anonymous_usage')
    op.drop_table('anonymous_usage')

    op.drop_table('user_usage')
