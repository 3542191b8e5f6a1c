"""Create attendances and notifications tables

Revision ID: 20261019_0004
Revises: 20261019_0003
Create Date: 2026-10-19 00:04:00.000000

"""
from collections.abc import Sequence

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision: str = '20261019_0004'
down_revision: str | None = '20261019_0003'
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    """Create attendances and notifications tables."""
    op.create_table(
        'attendances',
        sa.Column('id', sa.Integer, primary_key=True, autoincrement=True),
        sa.Column('user_id', sa.Integer, sa.ForeignKey('users.id'), nullable=False),
        sa.Column('date', sa.Date, nullable=False),
        sa.Column('visit_report', sa.Text, nullable=False),
        sa.Column('timeline_url', sa.String(500), nullable=True),
        sa.Column('photo_url', sa.String(500), nullable=True),
        sa.Column('status', sa.String(20), nullable=False, server_default='SUBMITTED'),
        sa.Column('latitude', sa.Float, nullable=True),
        sa.Column('longitude', sa.Float, nullable=True),
        sa.Column('accuracy', sa.Float, nullable=True),
        sa.Column('address', sa.Text, nullable=True),
        sa.Column('city', sa.String(100), nullable=True),
        sa.Column('state', sa.String(100), nullable=True),
        sa.Column('country', sa.String(100), nullable=True),
        sa.Column('device_fingerprint', sa.String(64), nullable=True),
        sa.Column('record_hash', sa.String(64), nullable=True),
        sa.Column('submitted_at', sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column('reviewer_id', sa.Integer, sa.ForeignKey('users.id'), nullable=True),
        sa.Column('reviewed_at', sa.DateTime, nullable=True),
        sa.Column('review_notes', sa.Text, nullable=True),
        sa.Column('approved_at', sa.DateTime, nullable=True),
        sa.Column('created_at', sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint(
            "status IN ('SUBMITTED', 'APPROVED', 'REJECTED', 'AUTO_FLAGGED', 'AMENDED')",
            name='attendances_status_check',
        ),
    )

    # One submission per user per day
    op.create_index('idx_attendance_user_date', 'attendances', ['user_id', 'date'], unique=True)
    op.create_index('idx_attendance_submitted', 'attendances', ['submitted_at'])

    op.create_table(
        'notifications',
        sa.Column('id', sa.Integer, primary_key=True, autoincrement=True),
        sa.Column('title', sa.String(255), nullable=False),
        sa.Column('message', sa.Text, nullable=False),
        sa.Column('type', sa.String(30), nullable=False, server_default='info'),
        sa.Column('url', sa.String(500), nullable=True),
        sa.Column('is_read', sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column('user_id', sa.Integer, sa.ForeignKey('users.id'), nullable=False),
        sa.Column('sender_id', sa.Integer, sa.ForeignKey('users.id'), nullable=True),
        sa.Column('created_at', sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime, nullable=False, server_default=sa.func.now()),
    )

    op.create_index('idx_user_notifications', 'notifications', ['user_id', 'created_at'])


def downgrade() -> None:
    """Drop attendances and notifications tables."""
    op.drop_index('idx_user_notifications', table_name='notifications')
    op.drop_table('notifications')
    op.drop_index('idx_attendance_submitted', table_name='attendances')
    op.drop_index('idx_attendance_user_date', table_name='attendances')
    op.drop_table('attendances')
