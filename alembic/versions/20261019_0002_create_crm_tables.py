"""Create companies, contacts, leads, activities and opportunities tables

Revision ID: 20261019_0002
Revises: 20261019_0001
Create Date: 2026-10-19 00:02:00.000000

"""
from collections.abc import Sequence

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision: str = '20261019_0002'
down_revision: str | None = '20261019_0001'
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    """Create CRM tables."""
    op.create_table(
        'companies',
        sa.Column('id', sa.Integer, primary_key=True, autoincrement=True),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('region', sa.String(100), nullable=True),
        sa.Column('type', sa.String(100), nullable=True),
        sa.Column('address', sa.Text, nullable=True),
        sa.Column('website', sa.String(255), nullable=True),
        sa.Column('owner_id', sa.Integer, sa.ForeignKey('users.id'), nullable=True),
        sa.Column('total_opportunities', sa.Integer, nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime, nullable=False, server_default=sa.func.now()),
    )
    op.create_index('ix_companies_owner_id', 'companies', ['owner_id'])

    op.create_table(
        'contacts',
        sa.Column('id', sa.Integer, primary_key=True, autoincrement=True),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('email', sa.String(255), nullable=True),
        sa.Column('role', sa.String(100), nullable=True),
        sa.Column('company_id', sa.Integer, sa.ForeignKey('companies.id'), nullable=False),
        sa.Column('created_at', sa.DateTime, nullable=False, server_default=sa.func.now()),
    )
    op.create_index('ix_contacts_company_id', 'contacts', ['company_id'])

    op.create_table(
        'leads',
        sa.Column('id', sa.Integer, primary_key=True, autoincrement=True),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('email', sa.String(255), nullable=True),
        sa.Column('phone', sa.String(50), nullable=True),
        sa.Column('source', sa.String(100), nullable=True),
        sa.Column('status', sa.String(50), nullable=False, server_default='NEW'),
        sa.Column('value', sa.Float, nullable=True),
        sa.Column('probability', sa.Float, nullable=True),
        sa.Column('next_follow_up_date', sa.DateTime, nullable=True),
        sa.Column('owner_id', sa.Integer, sa.ForeignKey('users.id'), nullable=True),
        sa.Column('company_id', sa.Integer, sa.ForeignKey('companies.id'), nullable=True),
        sa.Column('created_at', sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime, nullable=False, server_default=sa.func.now()),
    )
    op.create_index('ix_leads_owner_id', 'leads', ['owner_id'])

    op.create_table(
        'activities',
        sa.Column('id', sa.Integer, primary_key=True, autoincrement=True),
        sa.Column('type', sa.String(50), nullable=False),
        sa.Column('subject', sa.String(255), nullable=False),
        sa.Column('description', sa.Text, nullable=True),
        sa.Column('duration', sa.Integer, nullable=True),
        sa.Column('evidence_url', sa.String(500), nullable=True),
        sa.Column('lead_id', sa.Integer, sa.ForeignKey('leads.id'), nullable=True),
        sa.Column('user_id', sa.Integer, sa.ForeignKey('users.id'), nullable=True),
        sa.Column('occurred_at', sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column('created_at', sa.DateTime, nullable=False, server_default=sa.func.now()),
    )
    op.create_index('ix_activities_lead_id', 'activities', ['lead_id'])

    op.create_table(
        'opportunities',
        sa.Column('id', sa.Integer, primary_key=True, autoincrement=True),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('stage', sa.String(30), nullable=False, server_default='PROSPECTING'),
        sa.Column('deal_size', sa.Float, nullable=True),
        sa.Column('probability', sa.Float, nullable=True),
        sa.Column('expected_close_date', sa.DateTime, nullable=True),
        sa.Column('next_followup_date', sa.DateTime, nullable=True),
        sa.Column('classification', sa.String(50), nullable=True),
        sa.Column('is_frozen', sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column('frozen_reason', sa.String(255), nullable=True),
        sa.Column('company_id', sa.Integer, sa.ForeignKey('companies.id'), nullable=True),
        sa.Column('lead_id', sa.Integer, sa.ForeignKey('leads.id'), nullable=True),
        sa.Column('owner_id', sa.Integer, sa.ForeignKey('users.id'), nullable=True),
        sa.Column('created_at', sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint(
            "stage IN ('PROSPECTING', 'QUALIFICATION', 'PROPOSAL', 'NEGOTIATION', 'CLOSED_WON', 'CLOSED_LOST')",
            name='opportunities_stage_check',
        ),
    )
    op.create_index('ix_opportunities_company_id', 'opportunities', ['company_id'])
    op.create_index('ix_opportunities_owner_id', 'opportunities', ['owner_id'])


def downgrade() -> None:
    """Drop CRM tables."""
    op.drop_index('ix_opportunities_owner_id', table_name='opportunities')
    op.drop_index('ix_opportunities_company_id', table_name='opportunities')
    op.drop_table('opportunities')
    op.drop_index('ix_activities_lead_id', table_name='activities')
    op.drop_table('activities')
    op.drop_index('ix_leads_owner_id', table_name='leads')
    op.drop_table('leads')
    op.drop_index('ix_contacts_company_id', table_name='contacts')
    op.drop_table('contacts')
    op.drop_index('ix_companies_owner_id', table_name='companies')
    op.drop_table('companies')
