"""create webhook_deliveries ledger

Revision ID: 001
Revises: 
Create Date: 2026-10-19 09:00:00.000000

"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # One live row per (lead_id, partner_id); attempts are upserted in place
    op.create_table(
        'webhook_deliveries',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('lead_id', sa.String(64), nullable=False),
        sa.Column('partner_id', sa.String(64), nullable=False),
        sa.Column('webhook_url', sa.Text(), nullable=False),
        sa.Column('payload', sa.JSON(), nullable=True),
        sa.Column('response_code', sa.Integer(), nullable=True),
        sa.Column('response_status', sa.String(100), nullable=True),
        sa.Column('response_body', sa.Text(), nullable=True),
        sa.Column('response_time_ms', sa.Integer(), nullable=True),
        sa.Column('status', sa.String(20), nullable=False, server_default='failed'),
        sa.Column('delivered_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('attempts', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.UniqueConstraint('lead_id', 'partner_id', name='uq_webhook_deliveries_lead_partner'),
    )
    op.create_index('ix_webhook_deliveries_lead_id', 'webhook_deliveries', ['lead_id'])
    op.create_index('ix_webhook_deliveries_partner_id', 'webhook_deliveries', ['partner_id'])
    op.create_index('ix_webhook_deliveries_status', 'webhook_deliveries', ['status'])


def downgrade() -> None:
    op.drop_index('ix_webhook_deliveries_status', table_name='webhook_deliveries')
    op.drop_index('ix_webhook_deliveries_partner_id', table_name='webhook_deliveries')
    op.drop_index('ix_webhook_deliveries_lead_id', table_name='webhook_deliveries')
    op.drop_table('webhook_deliveries')
