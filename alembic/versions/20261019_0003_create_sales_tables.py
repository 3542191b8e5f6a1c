"""Create projects, immediate_sales, pipelines, pending_quotations and follow-up tables

Revision ID: 20261019_0003
Revises: 20261019_0002
Create Date: 2026-10-19 00:03:00.000000

"""
from collections.abc import Sequence

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision: str = '20261019_0003'
down_revision: str | None = '20261019_0002'
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    """Create sales tables."""
    op.create_table(
        'projects',
        sa.Column('id', sa.Integer, primary_key=True, autoincrement=True),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('province', sa.String(100), nullable=False),
        sa.Column('funding', sa.String(255), nullable=True),
        sa.Column('consultant', sa.String(255), nullable=True),
        sa.Column('contractor', sa.String(255), nullable=True),
        sa.Column('competitors', sa.Text, nullable=True),
        sa.Column('size_class', sa.String(100), nullable=True),
        sa.Column('unit_of_measurement', sa.String(50), nullable=True),
        sa.Column('approx_mt', sa.Float, nullable=True),
        sa.Column('status', sa.String(30), nullable=False, server_default='ONGOING'),
        sa.Column('month_of_quote', sa.String(50), nullable=True),
        sa.Column('date_of_start_procurement', sa.DateTime, nullable=True),
        sa.Column('pic', sa.String(255), nullable=True),
        sa.Column('owner_id', sa.Integer, sa.ForeignKey('users.id'), nullable=False),
        sa.Column('assigned_admin_id', sa.Integer, sa.ForeignKey('users.id'), nullable=True),
        sa.Column('created_at', sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime, nullable=False, server_default=sa.func.now()),
    )
    op.create_index('ix_projects_owner_id', 'projects', ['owner_id'])

    op.create_table(
        'immediate_sales',
        sa.Column('id', sa.Integer, primary_key=True, autoincrement=True),
        sa.Column('project_id', sa.Integer, sa.ForeignKey('projects.id'), nullable=True),
        sa.Column('owner_id', sa.Integer, sa.ForeignKey('users.id'), nullable=False),
        sa.Column('contractor', sa.String(255), nullable=True),
        sa.Column('size_class', sa.String(100), nullable=True),
        sa.Column('km', sa.Float, nullable=True),
        sa.Column('mt', sa.Float, nullable=True),
        sa.Column('value_of_order', sa.Float, nullable=True),
        sa.Column('quotation_date', sa.DateTime, nullable=True),
        sa.Column('status', sa.String(20), nullable=False, server_default='ONGOING'),
        sa.Column('pic', sa.String(255), nullable=True),
        sa.Column('deal_category', sa.String(20), nullable=True),
        sa.Column('urgency_level', sa.String(20), nullable=True),
        sa.Column('created_at', sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint(
            "status IN ('ONGOING', 'BIDDING', 'AWARDED', 'LOST')",
            name='immediate_sales_status_check',
        ),
    )
    op.create_index('ix_immediate_sales_owner_id', 'immediate_sales', ['owner_id'])

    op.create_table(
        'pipelines',
        sa.Column('id', sa.Integer, primary_key=True, autoincrement=True),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('status', sa.String(30), nullable=False, server_default='ORDER_RECEIVED'),
        sa.Column('order_value', sa.Float, nullable=True),
        sa.Column('progress_percentage', sa.Float, nullable=True),
        sa.Column('order_date', sa.DateTime, nullable=True),
        sa.Column('expected_delivery_date', sa.DateTime, nullable=True),
        sa.Column('actual_delivery_date', sa.DateTime, nullable=True),
        sa.Column('actual_install_date', sa.DateTime, nullable=True),
        sa.Column('payment_date', sa.DateTime, nullable=True),
        sa.Column('diameter', sa.String(50), nullable=True),
        sa.Column('quantity', sa.Float, nullable=True),
        sa.Column('specification', sa.Text, nullable=True),
        sa.Column('challenges', sa.Text, nullable=True),
        sa.Column('notes', sa.Text, nullable=True),
        sa.Column('owner_id', sa.Integer, sa.ForeignKey('users.id'), nullable=True),
        sa.Column('company_id', sa.Integer, sa.ForeignKey('companies.id'), nullable=True),
        sa.Column('opportunity_id', sa.Integer, sa.ForeignKey('opportunities.id'), nullable=True),
        sa.Column('created_at', sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime, nullable=False, server_default=sa.func.now()),
    )
    op.create_index('ix_pipelines_owner_id', 'pipelines', ['owner_id'])
    op.create_index('idx_pipeline_owner_order', 'pipelines', ['owner_id', 'order_date'])

    op.create_table(
        'pending_quotations',
        sa.Column('id', sa.Integer, primary_key=True, autoincrement=True),
        sa.Column('project_or_client_name', sa.String(255), nullable=False),
        sa.Column('quotation_pending_since', sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column('quotation_deadline', sa.DateTime, nullable=True),
        sa.Column('order_value', sa.Float, nullable=True),
        sa.Column('total_qty', sa.Float, nullable=True),
        sa.Column('contact_person', sa.String(255), nullable=True),
        sa.Column('contact_email', sa.String(255), nullable=True),
        sa.Column('quotation_document', sa.String(500), nullable=True),
        sa.Column('status', sa.String(20), nullable=False, server_default='PENDING'),
        sa.Column('notes', sa.Text, nullable=True),
        sa.Column('urgency_level', sa.String(20), nullable=True),
        sa.Column('reminder_count', sa.Integer, nullable=False, server_default='0'),
        sa.Column('last_reminder_sent', sa.DateTime, nullable=True),
        sa.Column('opportunity_id', sa.Integer, sa.ForeignKey('opportunities.id'), nullable=True),
        sa.Column('company_id', sa.Integer, sa.ForeignKey('companies.id'), nullable=True),
        sa.Column('created_by_id', sa.Integer, sa.ForeignKey('users.id'), nullable=False),
        sa.Column('created_at', sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint(
            "status IN ('PENDING', 'SENT', 'ACCEPTED', 'REJECTED', 'EXPIRED', 'REQUOTATION', 'DONE')",
            name='pending_quotations_status_check',
        ),
    )
    op.create_index('ix_pending_quotations_opportunity_id', 'pending_quotations', ['opportunity_id'])
    op.create_index('ix_pending_quotations_created_by_id', 'pending_quotations', ['created_by_id'])

    op.create_table(
        'daily_follow_ups',
        sa.Column('id', sa.Integer, primary_key=True, autoincrement=True),
        sa.Column('assigned_to', sa.String(255), nullable=False),
        sa.Column('action_type', sa.String(30), nullable=False),
        sa.Column('action_description', sa.Text, nullable=False),
        sa.Column('status', sa.String(30), nullable=False, server_default='SCHEDULED'),
        sa.Column('follow_up_date', sa.DateTime, nullable=False),
        sa.Column('notes', sa.Text, nullable=True),
        sa.Column('timezone', sa.String(50), nullable=True),
        sa.Column('urgency_level', sa.String(20), nullable=True),
        sa.Column('response_received', sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column('response_quality', sa.String(20), nullable=True),
        sa.Column('completion_quality', sa.String(20), nullable=True),
        sa.Column('effectiveness_score', sa.Float, nullable=True),
        sa.Column('next_action_date', sa.DateTime, nullable=True),
        sa.Column('next_action_notes', sa.Text, nullable=True),
        sa.Column('overdue_reason', sa.Text, nullable=True),
        sa.Column('overdue_acknowledged_at', sa.DateTime, nullable=True),
        sa.Column('overdue_acknowledged_by', sa.Integer, sa.ForeignKey('users.id'), nullable=True),
        sa.Column('created_by_id', sa.Integer, sa.ForeignKey('users.id'), nullable=False),
        sa.Column('lead_id', sa.Integer, sa.ForeignKey('leads.id'), nullable=True),
        sa.Column('opportunity_id', sa.Integer, sa.ForeignKey('opportunities.id'), nullable=True),
        sa.Column('project_id', sa.Integer, sa.ForeignKey('projects.id'), nullable=True),
        sa.Column('immediate_sale_id', sa.Integer, sa.ForeignKey('immediate_sales.id'), nullable=True),
        sa.Column('company_id', sa.Integer, sa.ForeignKey('companies.id'), nullable=True),
        sa.Column('created_at', sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint(
            "status IN ('SCHEDULED', 'COMPLETED', 'OVERDUE', 'CANCELLED', 'POSTPONED')",
            name='daily_follow_ups_status_check',
        ),
    )
    op.create_index('ix_daily_follow_ups_created_by_id', 'daily_follow_ups', ['created_by_id'])
    op.create_index('idx_follow_up_status_date', 'daily_follow_ups', ['status', 'follow_up_date'])

    op.create_table(
        'ml_customer_segments',
        sa.Column('id', sa.Integer, primary_key=True, autoincrement=True),
        sa.Column('segment_name', sa.String(100), nullable=False),
        sa.Column('company_id', sa.Integer, sa.ForeignKey('companies.id'), nullable=True),
        sa.Column('created_at', sa.DateTime, nullable=False, server_default=sa.func.now()),
    )


def downgrade() -> None:
    """Drop sales tables."""
    op.drop_table('ml_customer_segments')
    op.drop_index('idx_follow_up_status_date', table_name='daily_follow_ups')
    op.drop_index('ix_daily_follow_ups_created_by_id', table_name='daily_follow_ups')
    op.drop_table('daily_follow_ups')
    op.drop_index('ix_pending_quotations_created_by_id', table_name='pending_quotations')
    op.drop_index('ix_pending_quotations_opportunity_id', table_name='pending_quotations')
    op.drop_table('pending_quotations')
    op.drop_index('idx_pipeline_owner_order', table_name='pipelines')
    op.drop_index('ix_pipelines_owner_id', table_name='pipelines')
    op.drop_table('pipelines')
    op.drop_index('ix_immediate_sales_owner_id', table_name='immediate_sales')
    op.drop_table('immediate_sales')
    op.drop_index('ix_projects_owner_id', table_name='projects')
    op.drop_table('projects')
