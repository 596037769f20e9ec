"""Create billing engine schema

Revision ID: 001_billing_engine
Revises:
Create Date: 2026-10-17

Tables:
- projects
- project_billing_rules, master_billing_rules
- price_lists, price_list_entries
- invoices, invoice_items
- deliveries, labor_logs
- billing_sequences
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID, JSONB

# revision identifiers
revision = '001_billing_engine'
down_revision = None
branch_labels = None
depends_on = None


def _timestamps(updated: bool = True):
    columns = [
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('NOW()'), nullable=False),
    ]
    if updated:
        columns.append(
            sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('NOW()'), nullable=False)
        )
    return columns


def upgrade():
    """Create billing engine tables"""

    # ====================
    # PROJECTS TABLE
    # ====================
    op.create_table(
        'projects',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('code', sa.String(30), unique=True, nullable=False),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('customer_id', UUID(as_uuid=True), nullable=True),
        sa.Column('customer_name', sa.String(200), nullable=True),
        sa.Column('po_number', sa.String(50), nullable=True),
        sa.Column('currency', sa.String(3), server_default='USD', nullable=False),
        sa.Column('currency_precision', sa.Integer, nullable=True),
        sa.Column('tax_rate', sa.Numeric(6, 4), nullable=True),
        sa.Column('payment_terms_days', sa.Integer, server_default='30', nullable=False),
        sa.Column('is_active', sa.Boolean, server_default='true', nullable=False),
        *_timestamps(),
    )

    op.create_index('ix_projects_code', 'projects', ['code'])
    op.create_index('ix_projects_customer_id', 'projects', ['customer_id'])

    # ====================
    # BILLING RULES
    # ====================
    op.create_table(
        'project_billing_rules',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('project_id', UUID(as_uuid=True), sa.ForeignKey('projects.id', ondelete='CASCADE'), nullable=False),
        sa.Column('rule_name', sa.String(200), nullable=False),
        sa.Column('description', sa.Text, nullable=True),
        sa.Column('rule_type', sa.String(20), nullable=False),
        sa.Column('unit_basis', sa.String(20), nullable=False),
        sa.Column('price_source', sa.String(30), nullable=False),
        sa.Column('grouping_key', sa.String(20), nullable=False),
        sa.Column('config', JSONB, server_default='{}', nullable=False),
        sa.Column('priority', sa.Integer, server_default='0', nullable=False),
        sa.Column('creation_seq', sa.Integer, unique=True, nullable=False),
        sa.Column('is_active', sa.Boolean, server_default='true', nullable=False),
        sa.Column('effective_from', sa.Date, nullable=True),
        sa.Column('effective_to', sa.Date, nullable=True),
        *_timestamps(),
    )

    op.create_index('ix_project_billing_rules_project_id', 'project_billing_rules', ['project_id'])
    op.create_index(
        'ix_project_billing_rules_active', 'project_billing_rules', ['project_id', 'is_active', 'priority']
    )

    op.create_table(
        'master_billing_rules',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('project_id', UUID(as_uuid=True), sa.ForeignKey('projects.id', ondelete='CASCADE'), nullable=False),
        sa.Column('description', sa.Text, nullable=True),
        sa.Column('items', JSONB, server_default='[]', nullable=False),
        sa.Column('is_active', sa.Boolean, server_default='true', nullable=False),
        *_timestamps(),
    )

    op.create_index('ix_master_billing_rules_project_id', 'master_billing_rules', ['project_id'])
    op.create_index('ix_master_billing_rules_active', 'master_billing_rules', ['project_id', 'is_active'])

    # ====================
    # PRICE LISTS
    # ====================
    op.create_table(
        'price_lists',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('code', sa.String(30), unique=True, nullable=False),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('project_id', UUID(as_uuid=True), sa.ForeignKey('projects.id', ondelete='CASCADE'), nullable=True),
        sa.Column('is_active', sa.Boolean, server_default='true', nullable=False),
        *_timestamps(updated=False),
    )

    op.create_index('ix_price_lists_project_id', 'price_lists', ['project_id'])

    op.create_table(
        'price_list_entries',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column(
            'price_list_id', UUID(as_uuid=True),
            sa.ForeignKey('price_lists.id', ondelete='CASCADE'), nullable=False
        ),
        sa.Column('item_key', sa.String(100), nullable=False),
        sa.Column('description', sa.String(200), nullable=True),
        sa.Column('unit_price', sa.Numeric(14, 4), nullable=True),
        sa.Column('prices', JSONB, nullable=True),
        sa.UniqueConstraint('price_list_id', 'item_key', name='uq_price_list_entry_key'),
    )

    op.create_index('ix_price_list_entries_price_list_id', 'price_list_entries', ['price_list_id'])

    # ====================
    # INVOICES
    # ====================
    op.create_table(
        'invoices',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('invoice_number', sa.String(40), unique=True, nullable=False),
        sa.Column('sequence_number', sa.Integer, nullable=False),
        sa.Column('status', sa.String(20), server_default='draft', nullable=False),
        sa.Column('project_id', UUID(as_uuid=True), sa.ForeignKey('projects.id', ondelete='CASCADE'), nullable=False),
        sa.Column('customer_id', UUID(as_uuid=True), nullable=True),
        sa.Column('customer_name', sa.String(200), nullable=True),
        sa.Column('po_number', sa.String(50), nullable=True),
        sa.Column('period_month', sa.String(7), nullable=False),
        sa.Column('period_start', sa.Date, nullable=False),
        sa.Column('period_end', sa.Date, nullable=False),
        sa.Column('active_period_key', sa.String(40), nullable=True),
        sa.Column('invoice_date', sa.Date, nullable=False),
        sa.Column('due_date', sa.Date, nullable=False),
        sa.Column('paid_date', sa.Date, nullable=True),
        sa.Column('subtotal', sa.Numeric(14, 2), nullable=False),
        sa.Column('tax_rate', sa.Numeric(6, 4), nullable=False),
        sa.Column('tax', sa.Numeric(14, 2), nullable=False),
        sa.Column('total_amount', sa.Numeric(14, 2), nullable=False),
        sa.Column('currency', sa.String(3), server_default='USD', nullable=False),
        sa.Column('currency_precision', sa.Integer, server_default='2', nullable=False),
        sa.Column('generated_from', sa.String(10), server_default='auto', nullable=False),
        sa.Column('notes', sa.Text, nullable=True),
        sa.Column('approved_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('sent_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('cancelled_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('cancel_reason', sa.Text, nullable=True),
        *_timestamps(),
        sa.UniqueConstraint('project_id', 'active_period_key', name='uq_invoice_active_period'),
        sa.UniqueConstraint('project_id', 'sequence_number', name='uq_invoice_project_sequence'),
    )

    op.create_index('ix_invoices_invoice_number', 'invoices', ['invoice_number'])
    op.create_index('ix_invoices_project_id', 'invoices', ['project_id'])
    op.create_index('ix_invoices_project_period', 'invoices', ['project_id', 'period_month'])
    op.create_index('ix_invoices_status', 'invoices', ['status'])

    op.create_table(
        'invoice_items',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('invoice_id', UUID(as_uuid=True), sa.ForeignKey('invoices.id', ondelete='CASCADE'), nullable=False),
        sa.Column('line_number', sa.Integer, nullable=False),
        sa.Column(
            'rule_id', UUID(as_uuid=True),
            sa.ForeignKey('project_billing_rules.id', ondelete='SET NULL'), nullable=True
        ),
        sa.Column('rule_type', sa.String(20), nullable=True),
        sa.Column('description', sa.String(300), nullable=False),
        sa.Column('quantity', sa.Numeric(14, 4), nullable=False),
        sa.Column('unit', sa.String(20), nullable=False),
        sa.Column('unit_price', sa.Numeric(14, 4), nullable=False),
        sa.Column('amount', sa.Numeric(14, 2), nullable=False),
        sa.Column('grouping_key', sa.String(20), nullable=True),
        sa.Column('grouping_value', sa.String(200), nullable=True),
        sa.Column('source_type', sa.String(20), nullable=True),
        sa.Column('source_ids', JSONB, nullable=True),
        *_timestamps(updated=False),
        sa.UniqueConstraint('invoice_id', 'line_number', name='uq_invoice_item_line'),
    )

    op.create_index('ix_invoice_items_invoice_id', 'invoice_items', ['invoice_id'])

    # ====================
    # PERFORMANCE RECORDS
    # ====================
    op.create_table(
        'deliveries',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('delivery_number', sa.String(50), unique=True, nullable=False),
        sa.Column('project_id', UUID(as_uuid=True), sa.ForeignKey('projects.id', ondelete='CASCADE'), nullable=False),
        sa.Column('delivery_date', sa.Date, nullable=False),
        sa.Column('part_no', sa.String(50), nullable=True),
        sa.Column('part_name', sa.String(200), nullable=True),
        sa.Column('quantity', sa.Numeric(14, 4), server_default='0', nullable=False),
        sa.Column('unit', sa.String(20), server_default='EA', nullable=False),
        sa.Column('pallet_no', sa.String(50), nullable=True),
        sa.Column('pallet_type', sa.String(50), nullable=True),
        sa.Column('pallet_count', sa.Numeric(14, 4), nullable=True),
        sa.Column('container_no', sa.String(50), nullable=True),
        sa.Column('container_type', sa.String(50), nullable=True),
        sa.Column('weight', sa.Numeric(14, 4), nullable=True),
        sa.Column('volume', sa.Numeric(14, 4), nullable=True),
        sa.Column('po_number', sa.String(50), nullable=True),
        sa.Column('so_number', sa.String(50), nullable=True),
        sa.Column('status', sa.String(20), server_default='pending', nullable=False),
        sa.Column('invoice_id', UUID(as_uuid=True), sa.ForeignKey('invoices.id', ondelete='SET NULL'), nullable=True),
        sa.Column('notes', sa.Text, nullable=True),
        *_timestamps(updated=False),
    )

    op.create_index('ix_deliveries_project_id', 'deliveries', ['project_id'])
    op.create_index('ix_deliveries_project_date', 'deliveries', ['project_id', 'delivery_date'])
    op.create_index('ix_deliveries_part_no', 'deliveries', ['part_no'])
    op.create_index('ix_deliveries_invoice_id', 'deliveries', ['invoice_id'])

    op.create_table(
        'labor_logs',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('log_number', sa.String(50), unique=True, nullable=False),
        sa.Column('project_id', UUID(as_uuid=True), sa.ForeignKey('projects.id', ondelete='CASCADE'), nullable=False),
        sa.Column('work_date', sa.Date, nullable=False),
        sa.Column('work_type', sa.String(50), nullable=False),
        sa.Column('work_description', sa.Text, nullable=True),
        sa.Column('hours', sa.Numeric(8, 2), nullable=False),
        sa.Column('labor_rate', sa.Numeric(14, 4), nullable=True),
        sa.Column('quantity', sa.Numeric(14, 4), nullable=True),
        sa.Column('quantity_unit', sa.String(20), nullable=True),
        sa.Column('worker_name', sa.String(100), nullable=True),
        sa.Column('po_number', sa.String(50), nullable=True),
        sa.Column('status', sa.String(20), server_default='completed', nullable=False),
        sa.Column('invoice_id', UUID(as_uuid=True), sa.ForeignKey('invoices.id', ondelete='SET NULL'), nullable=True),
        sa.Column('notes', sa.Text, nullable=True),
        *_timestamps(updated=False),
    )

    op.create_index('ix_labor_logs_project_id', 'labor_logs', ['project_id'])
    op.create_index('ix_labor_logs_project_date', 'labor_logs', ['project_id', 'work_date'])
    op.create_index('ix_labor_logs_invoice_id', 'labor_logs', ['invoice_id'])

    # ====================
    # SEQUENCES
    # ====================
    op.create_table(
        'billing_sequences',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('scope', sa.String(20), nullable=False),
        sa.Column('key', sa.String(64), nullable=False),
        sa.Column('current_number', sa.Integer, server_default='0', nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('NOW()'), nullable=False),
        sa.UniqueConstraint('scope', 'key', name='uq_billing_sequence_scope_key'),
    )


def downgrade():
    """Drop billing engine tables"""
    op.drop_table('billing_sequences')
    op.drop_table('labor_logs')
    op.drop_table('deliveries')
    op.drop_table('invoice_items')
    op.drop_table('invoices')
    op.drop_table('price_list_entries')
    op.drop_table('price_lists')
    op.drop_table('master_billing_rules')
    op.drop_table('project_billing_rules')
    op.drop_table('projects')
