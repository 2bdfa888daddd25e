"""initial_workflow_schema

Revision ID: 3f1c0a9b7d21
Revises:
Create Date: 2026-10-05 09:12:40.118204

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '3f1c0a9b7d21'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
    ]


def _stage_columns() -> list[sa.Column]:
    cols = [
        sa.Column('status', sa.String(length=30), nullable=False, server_default='Pending'),
        sa.Column('requires_three_approvals', sa.Boolean(), nullable=False, server_default=sa.false()),
    ]
    for stage in ('finance', 'admin', 'admin1', 'admin2'):
        cols += [
            sa.Column(f'{stage}_approved', sa.Boolean(), nullable=True),
            sa.Column(f'{stage}_approved_at', sa.DateTime(timezone=True), nullable=True),
            sa.Column(f'{stage}_approved_by', sa.String(length=255), nullable=True),
        ]
    cols += [
        sa.Column('rejection_reason', sa.Text(), nullable=True),
        sa.Column('rejected_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('rejected_by', sa.String(length=255), nullable=True),
        sa.Column('rejected_stage', sa.String(length=20), nullable=True),
        sa.Column('effect_applied_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('effect_error', sa.Text(), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
    ]
    return cols


def upgrade() -> None:
    # Ledger
    op.create_table('balance_accounts',
        sa.Column('id', sa.UUID(), server_default=sa.text('gen_random_uuid()'), nullable=False),
        sa.Column('kind', sa.String(length=30), nullable=False),
        sa.Column('owner_name', sa.String(length=255), nullable=False),
        sa.Column('owner_ref', sa.String(length=255), nullable=True),
        sa.Column('opening_amount', sa.Numeric(precision=18, scale=2), nullable=False),
        sa.Column('current_outstanding', sa.Numeric(precision=18, scale=2), nullable=False),
        sa.Column('minimum_payment', sa.Numeric(precision=18, scale=2), nullable=True),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='Active'),
        sa.Column('issued_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('issued_by', sa.String(length=255), nullable=True),
        sa.Column('cleared_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('source_request_id', sa.UUID(), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('source_request_id'),
        sa.CheckConstraint('current_outstanding >= 0', name='ck_balance_accounts_non_negative'),
    )
    op.create_index(op.f('ix_balance_accounts_kind'), 'balance_accounts', ['kind'], unique=False)
    op.create_index(op.f('ix_balance_accounts_owner_ref'), 'balance_accounts', ['owner_ref'], unique=False)
    op.create_index(op.f('ix_balance_accounts_status'), 'balance_accounts', ['status'], unique=False)

    op.create_table('ledger_events',
        sa.Column('id', sa.UUID(), server_default=sa.text('gen_random_uuid()'), nullable=False),
        sa.Column('account_id', sa.UUID(), nullable=False),
        sa.Column('amount', sa.Numeric(precision=18, scale=2), nullable=False),
        sa.Column('method', sa.String(length=50), nullable=False),
        sa.Column('applied_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('applied_by', sa.String(length=255), nullable=False),
        sa.Column('previous_balance', sa.Numeric(precision=18, scale=2), nullable=False),
        sa.Column('new_balance', sa.Numeric(precision=18, scale=2), nullable=False),
        sa.Column('idempotency_key', sa.String(length=255), nullable=False),
        sa.Column('notes', sa.Text(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['account_id'], ['balance_accounts.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('idempotency_key'),
    )
    op.create_index(op.f('ix_ledger_events_account_id'), 'ledger_events', ['account_id'], unique=False)

    # Requests
    op.create_table('approval_requests',
        sa.Column('id', sa.UUID(), server_default=sa.text('gen_random_uuid()'), nullable=False),
        sa.Column('type', sa.String(length=50), nullable=False),
        sa.Column('title', sa.String(length=255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('department', sa.String(length=100), nullable=True),
        sa.Column('amount', sa.Numeric(precision=18, scale=2), nullable=False, server_default='0'),
        sa.Column('requested_by', sa.String(length=255), nullable=False),
        sa.Column('requested_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('priority', sa.String(length=20), nullable=False, server_default='Medium'),
        sa.Column('details', sa.JSON(), nullable=False),
        sa.Column('resubmitted_from_id', sa.UUID(), nullable=True),
        *_stage_columns(),
        *_timestamps(),
        sa.ForeignKeyConstraint(['resubmitted_from_id'], ['approval_requests.id'], ),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_approval_requests_type'), 'approval_requests', ['type'], unique=False)
    op.create_index(op.f('ix_approval_requests_status'), 'approval_requests', ['status'], unique=False)
    op.create_index(op.f('ix_approval_requests_requested_by'), 'approval_requests', ['requested_by'], unique=False)

    op.create_table('money_requests',
        sa.Column('id', sa.UUID(), server_default=sa.text('gen_random_uuid()'), nullable=False),
        sa.Column('request_type', sa.String(length=50), nullable=False),
        sa.Column('reason', sa.Text(), nullable=False),
        sa.Column('amount', sa.Numeric(precision=18, scale=2), nullable=False),
        sa.Column('requested_by', sa.String(length=255), nullable=False),
        sa.Column('requested_at', sa.DateTime(timezone=True), nullable=False),
        *_stage_columns(),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_money_requests_status'), 'money_requests', ['status'], unique=False)
    op.create_index(op.f('ix_money_requests_requested_by'), 'money_requests', ['requested_by'], unique=False)

    op.create_table('withdrawal_requests',
        sa.Column('id', sa.UUID(), server_default=sa.text('gen_random_uuid()'), nullable=False),
        sa.Column('account_id', sa.UUID(), nullable=False),
        sa.Column('amount', sa.Numeric(precision=18, scale=2), nullable=False),
        sa.Column('phone_number', sa.String(length=30), nullable=True),
        sa.Column('channel', sa.String(length=30), nullable=False, server_default='mobile_money'),
        sa.Column('request_ref', sa.String(length=100), nullable=False),
        sa.Column('requested_by', sa.String(length=255), nullable=False),
        sa.Column('requested_at', sa.DateTime(timezone=True), nullable=False),
        *_stage_columns(),
        *_timestamps(),
        sa.ForeignKeyConstraint(['account_id'], ['balance_accounts.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('request_ref'),
    )
    op.create_index(op.f('ix_withdrawal_requests_account_id'), 'withdrawal_requests', ['account_id'], unique=False)
    op.create_index(op.f('ix_withdrawal_requests_status'), 'withdrawal_requests', ['status'], unique=False)
    op.create_index(op.f('ix_withdrawal_requests_requested_by'), 'withdrawal_requests', ['requested_by'], unique=False)

    # Inventory
    op.create_table('inventory_batches',
        sa.Column('id', sa.UUID(), server_default=sa.text('gen_random_uuid()'), nullable=False),
        sa.Column('batch_code', sa.String(length=30), nullable=False),
        sa.Column('commodity_type', sa.String(length=50), nullable=False),
        sa.Column('target_capacity', sa.Numeric(precision=12, scale=2), nullable=False),
        sa.Column('total_kilograms', sa.Numeric(precision=12, scale=2), nullable=False, server_default='0'),
        sa.Column('remaining_kilograms', sa.Numeric(precision=12, scale=2), nullable=False, server_default='0'),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='filling'),
        sa.Column('batch_date', sa.Date(), nullable=False),
        sa.Column('sold_out_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('batch_code'),
        sa.CheckConstraint('remaining_kilograms >= 0', name='ck_inventory_batches_non_negative'),
    )
    op.create_index(op.f('ix_inventory_batches_commodity_type'), 'inventory_batches', ['commodity_type'], unique=False)
    op.create_index(op.f('ix_inventory_batches_status'), 'inventory_batches', ['status'], unique=False)

    op.create_table('batch_sources',
        sa.Column('id', sa.UUID(), server_default=sa.text('gen_random_uuid()'), nullable=False),
        sa.Column('batch_id', sa.UUID(), nullable=False),
        sa.Column('source_record_id', sa.String(length=100), nullable=False),
        sa.Column('kilograms', sa.Numeric(precision=12, scale=2), nullable=False),
        sa.Column('supplier_name', sa.String(length=255), nullable=True),
        sa.Column('purchase_date', sa.Date(), nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(['batch_id'], ['inventory_batches.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('source_record_id'),
    )
    op.create_index(op.f('ix_batch_sources_batch_id'), 'batch_sources', ['batch_id'], unique=False)

    op.create_table('batch_sales',
        sa.Column('id', sa.UUID(), server_default=sa.text('gen_random_uuid()'), nullable=False),
        sa.Column('batch_id', sa.UUID(), nullable=False),
        sa.Column('allocation_ref', sa.String(length=100), nullable=False),
        sa.Column('kilograms_deducted', sa.Numeric(precision=12, scale=2), nullable=False),
        sa.Column('counterparty_name', sa.String(length=255), nullable=False),
        sa.Column('sale_date', sa.Date(), nullable=False),
        sa.Column('allocated_by', sa.String(length=255), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['batch_id'], ['inventory_batches.id'], ),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_batch_sales_batch_id'), 'batch_sales', ['batch_id'], unique=False)
    op.create_index(op.f('ix_batch_sales_allocation_ref'), 'batch_sales', ['allocation_ref'], unique=False)

    # People, audit, outbox
    op.create_table('employees',
        sa.Column('id', sa.UUID(), server_default=sa.text('gen_random_uuid()'), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('phone', sa.String(length=30), nullable=True),
        sa.Column('department', sa.String(length=100), nullable=True),
        sa.Column('position', sa.String(length=100), nullable=True),
        sa.Column('role', sa.String(length=30), nullable=False, server_default='User'),
        sa.Column('permissions', sa.JSON(), nullable=False),
        sa.Column('salary', sa.Numeric(precision=18, scale=2), nullable=False, server_default='0'),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='Active'),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_employees_email'), 'employees', ['email'], unique=True)

    op.create_table('audit_logs',
        sa.Column('id', sa.UUID(), server_default=sa.text('gen_random_uuid()'), nullable=False),
        sa.Column('actor', sa.String(length=255), nullable=True),
        sa.Column('action', sa.String(length=100), nullable=False),
        sa.Column('entity_type', sa.String(length=100), nullable=False),
        sa.Column('entity_id', sa.UUID(), nullable=True),
        sa.Column('before_state', sa.Text(), nullable=True),
        sa.Column('after_state', sa.Text(), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_audit_logs_actor'), 'audit_logs', ['actor'], unique=False)
    op.create_index(op.f('ix_audit_logs_action'), 'audit_logs', ['action'], unique=False)
    op.create_index(op.f('ix_audit_logs_entity_type'), 'audit_logs', ['entity_type'], unique=False)
    op.create_index(op.f('ix_audit_logs_entity_id'), 'audit_logs', ['entity_id'], unique=False)

    op.create_table('document_outbox',
        sa.Column('id', sa.UUID(), server_default=sa.text('gen_random_uuid()'), nullable=False),
        sa.Column('collection', sa.String(length=100), nullable=False),
        sa.Column('doc_id', sa.String(length=255), nullable=False),
        sa.Column('payload', sa.Text(), nullable=False),
        sa.Column('attempts', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('last_error', sa.Text(), nullable=True),
        sa.Column('delivered_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
    )


def downgrade() -> None:
    op.drop_table('document_outbox')
    op.drop_index(op.f('ix_audit_logs_entity_id'), table_name='audit_logs')
    op.drop_index(op.f('ix_audit_logs_entity_type'), table_name='audit_logs')
    op.drop_index(op.f('ix_audit_logs_action'), table_name='audit_logs')
    op.drop_index(op.f('ix_audit_logs_actor'), table_name='audit_logs')
    op.drop_table('audit_logs')
    op.drop_index(op.f('ix_employees_email'), table_name='employees')
    op.drop_table('employees')
    op.drop_index(op.f('ix_batch_sales_allocation_ref'), table_name='batch_sales')
    op.drop_index(op.f('ix_batch_sales_batch_id'), table_name='batch_sales')
    op.drop_table('batch_sales')
    op.drop_index(op.f('ix_batch_sources_batch_id'), table_name='batch_sources')
    op.drop_table('batch_sources')
    op.drop_index(op.f('ix_inventory_batches_status'), table_name='inventory_batches')
    op.drop_index(op.f('ix_inventory_batches_commodity_type'), table_name='inventory_batches')
    op.drop_table('inventory_batches')
    op.drop_index(op.f('ix_withdrawal_requests_requested_by'), table_name='withdrawal_requests')
    op.drop_index(op.f('ix_withdrawal_requests_status'), table_name='withdrawal_requests')
    op.drop_index(op.f('ix_withdrawal_requests_account_id'), table_name='withdrawal_requests')
    op.drop_table('withdrawal_requests')
    op.drop_index(op.f('ix_money_requests_requested_by'), table_name='money_requests')
    op.drop_index(op.f('ix_money_requests_status'), table_name='money_requests')
    op.drop_table('money_requests')
    op.drop_index(op.f('ix_approval_requests_requested_by'), table_name='approval_requests')
    op.drop_index(op.f('ix_approval_requests_status'), table_name='approval_requests')
    op.drop_index(op.f('ix_approval_requests_type'), table_name='approval_requests')
    op.drop_table('approval_requests')
    op.drop_index(op.f('ix_ledger_events_account_id'), table_name='ledger_events')
    op.drop_table('ledger_events')
    op.drop_index(op.f('ix_balance_accounts_status'), table_name='balance_accounts')
    op.drop_index(op.f('ix_balance_accounts_owner_ref'), table_name='balance_accounts')
    op.drop_index(op.f('ix_balance_accounts_kind'), table_name='balance_accounts')
    op.drop_table('balance_accounts')
