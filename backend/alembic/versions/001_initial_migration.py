"""Initial migration

Revision ID: 001_initial
Revises:
Create Date: 2026-10-19 00:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '001_initial'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=True),
    ]


def upgrade() -> None:
    # Create companies table
    op.create_table(
        'companies',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('slug', sa.String(), nullable=False),
        sa.Column('fa_company_url', sa.String(), nullable=True),
        sa.Column('fa_company_name', sa.String(), nullable=True),
        sa.Column('fa_default_currency', sa.String(3), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_companies_id'), 'companies', ['id'], unique=False)
    op.create_index(op.f('ix_companies_slug'), 'companies', ['slug'], unique=True)

    # Create company_users table
    op.create_table(
        'company_users',
        sa.Column('company_id', sa.Uuid(), nullable=False),
        sa.Column('user_id', sa.String(), nullable=False),
        sa.Column('role', sa.String(), nullable=False, server_default='member'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=True),
        sa.ForeignKeyConstraint(['company_id'], ['companies.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('company_id', 'user_id')
    )
    op.create_index(op.f('ix_company_users_user_id'), 'company_users', ['user_id'], unique=False)

    # Create company_details table
    op.create_table(
        'company_details',
        sa.Column('company_id', sa.Uuid(), nullable=False),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('address', sa.Text(), nullable=True),
        sa.Column('registration_number', sa.String(), nullable=True),
        sa.Column('sales_tax_registration_number', sa.String(), nullable=True),
        sa.Column('logo_storage_path', sa.String(), nullable=True),
        sa.Column('last_synced_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=True),
        sa.ForeignKeyConstraint(['company_id'], ['companies.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('company_id')
    )

    # Create purchase_orders table
    op.create_table(
        'purchase_orders',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('company_id', sa.Uuid(), nullable=False),
        sa.Column('po_number', sa.String(), nullable=False),
        sa.Column('supplier_name', sa.String(), nullable=False),
        sa.Column('supplier_email', sa.String(), nullable=True),
        sa.Column('freeagent_contact_url', sa.String(), nullable=True),
        sa.Column('freeagent_project_url', sa.String(), nullable=True),
        sa.Column('currency', sa.String(3), nullable=False),
        sa.Column('amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('issue_date', sa.Date(), nullable=False),
        sa.Column('delivery_date', sa.Date(), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('status', sa.String(), nullable=False, server_default='Draft'),
        sa.Column('pending_transition', sa.String(), nullable=True),
        sa.Column('supplier_portal_token', sa.String(), nullable=False),
        sa.Column('freeagent_bill_url', sa.String(), nullable=True),
        sa.Column('created_by', sa.String(), nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(['company_id'], ['companies.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('company_id', 'po_number', name='uq_purchase_orders_company_po_number')
    )
    op.create_index(op.f('ix_purchase_orders_id'), 'purchase_orders', ['id'], unique=False)
    op.create_index(op.f('ix_purchase_orders_company_id'), 'purchase_orders', ['company_id'], unique=False)
    op.create_index(op.f('ix_purchase_orders_po_number'), 'purchase_orders', ['po_number'], unique=False)
    op.create_index(op.f('ix_purchase_orders_status'), 'purchase_orders', ['status'], unique=False)
    op.create_index(op.f('ix_purchase_orders_supplier_portal_token'), 'purchase_orders', ['supplier_portal_token'], unique=True)

    # Create po_lines table
    op.create_table(
        'po_lines',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('purchase_order_id', sa.Uuid(), nullable=False),
        sa.Column('company_id', sa.Uuid(), nullable=False),
        sa.Column('line_no', sa.Integer(), nullable=False),
        sa.Column('description', sa.String(), nullable=False),
        sa.Column('quantity', sa.Numeric(10, 2), nullable=False),
        sa.Column('unit_price', sa.Numeric(10, 2), nullable=False),
        sa.Column('line_total', sa.Numeric(12, 2), nullable=False),
        sa.Column('freeagent_category_url', sa.String(), nullable=True),
        sa.ForeignKeyConstraint(['purchase_order_id'], ['purchase_orders.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['company_id'], ['companies.id'], ),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_po_lines_id'), 'po_lines', ['id'], unique=False)
    op.create_index(op.f('ix_po_lines_purchase_order_id'), 'po_lines', ['purchase_order_id'], unique=False)

    # Create uploaded_invoices table
    op.create_table(
        'uploaded_invoices',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('purchase_order_id', sa.Uuid(), nullable=False),
        sa.Column('company_id', sa.Uuid(), nullable=False),
        sa.Column('storage_path', sa.String(), nullable=False),
        sa.Column('filename', sa.String(), nullable=False),
        sa.Column('content_type', sa.String(), nullable=False),
        sa.Column('size_bytes', sa.Integer(), nullable=False),
        sa.Column('supplier_invoice_number', sa.String(), nullable=False),
        sa.Column('supplier_invoice_amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('status', sa.String(), nullable=False, server_default='PendingApproval'),
        sa.Column('uploaded_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=True),
        sa.Column('approved_or_rejected_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('approved_or_rejected_by', sa.String(), nullable=True),
        sa.ForeignKeyConstraint(['purchase_order_id'], ['purchase_orders.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['company_id'], ['companies.id'], ),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_uploaded_invoices_id'), 'uploaded_invoices', ['id'], unique=False)
    op.create_index(op.f('ix_uploaded_invoices_purchase_order_id'), 'uploaded_invoices', ['purchase_order_id'], unique=False)
    op.create_index(op.f('ix_uploaded_invoices_company_id'), 'uploaded_invoices', ['company_id'], unique=False)
    op.create_index(op.f('ix_uploaded_invoices_status'), 'uploaded_invoices', ['status'], unique=False)

    # Create freeagent_credentials table
    op.create_table(
        'freeagent_credentials',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('company_id', sa.Uuid(), nullable=False),
        sa.Column('access_token', sa.Text(), nullable=False),
        sa.Column('refresh_token', sa.Text(), nullable=False),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(['company_id'], ['companies.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_freeagent_credentials_id'), 'freeagent_credentials', ['id'], unique=False)
    op.create_index(op.f('ix_freeagent_credentials_company_id'), 'freeagent_credentials', ['company_id'], unique=True)

    # Create cached_contacts table
    op.create_table(
        'cached_contacts',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('company_id', sa.Uuid(), nullable=False),
        sa.Column('freeagent_url', sa.String(), nullable=False),
        sa.Column('name', sa.String(), nullable=True),
        sa.Column('first_name', sa.String(), nullable=True),
        sa.Column('last_name', sa.String(), nullable=True),
        sa.Column('email', sa.String(), nullable=True),
        sa.Column('billing_email', sa.String(), nullable=True),
        sa.Column('is_supplier', sa.Boolean(), nullable=True),
        sa.Column('is_customer', sa.Boolean(), nullable=True),
        sa.Column('raw_data', sa.JSON(), nullable=True),
        sa.Column('synced_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['company_id'], ['companies.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('company_id', 'freeagent_url', name='uq_cached_contacts_company_url')
    )
    op.create_index(op.f('ix_cached_contacts_id'), 'cached_contacts', ['id'], unique=False)
    op.create_index(op.f('ix_cached_contacts_company_id'), 'cached_contacts', ['company_id'], unique=False)

    # Create cached_projects table
    op.create_table(
        'cached_projects',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('company_id', sa.Uuid(), nullable=False),
        sa.Column('freeagent_url', sa.String(), nullable=True),
        sa.Column('name', sa.String(), nullable=True),
        sa.Column('status', sa.String(), nullable=True),
        sa.Column('budget_units', sa.String(), nullable=True),
        sa.Column('is_ir35', sa.Boolean(), nullable=True),
        sa.Column('freeagent_contact_url', sa.String(), nullable=True),
        sa.Column('currency', sa.String(3), nullable=True),
        sa.Column('initial_invoicing_amount', sa.Numeric(12, 2), nullable=True),
        sa.Column('sync_error', sa.String(), nullable=True),
        sa.Column('created_by', sa.String(), nullable=True),
        sa.Column('raw_data', sa.JSON(), nullable=True),
        sa.Column('synced_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['company_id'], ['companies.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('company_id', 'freeagent_url', name='uq_cached_projects_company_url')
    )
    op.create_index(op.f('ix_cached_projects_id'), 'cached_projects', ['id'], unique=False)
    op.create_index(op.f('ix_cached_projects_company_id'), 'cached_projects', ['company_id'], unique=False)

    # Create cached_categories table
    op.create_table(
        'cached_categories',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('company_id', sa.Uuid(), nullable=False),
        sa.Column('freeagent_url', sa.String(), nullable=False),
        sa.Column('nominal_code', sa.String(), nullable=True),
        sa.Column('description', sa.String(), nullable=True),
        sa.Column('category_type', sa.String(), nullable=True),
        sa.Column('allowable_for_tax', sa.Boolean(), nullable=True),
        sa.Column('raw_data', sa.JSON(), nullable=True),
        sa.Column('synced_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['company_id'], ['companies.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('company_id', 'freeagent_url', name='uq_cached_categories_company_url')
    )
    op.create_index(op.f('ix_cached_categories_id'), 'cached_categories', ['id'], unique=False)
    op.create_index(op.f('ix_cached_categories_company_id'), 'cached_categories', ['company_id'], unique=False)

    # Create email_log table
    op.create_table(
        'email_log',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('purchase_order_id', sa.Uuid(), nullable=False),
        sa.Column('company_id', sa.Uuid(), nullable=False),
        sa.Column('to_addresses', sa.JSON(), nullable=False),
        sa.Column('subject', sa.String(), nullable=False),
        sa.Column('body_html', sa.Text(), nullable=True),
        sa.Column('status', sa.String(), nullable=True, server_default='sent'),
        sa.Column('gmail_message_id', sa.String(), nullable=True),
        sa.Column('gmail_thread_id', sa.String(), nullable=True),
        sa.Column('sent_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('sent_by', sa.String(), nullable=True),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=True),
        sa.ForeignKeyConstraint(['purchase_order_id'], ['purchase_orders.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['company_id'], ['companies.id'], ),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_email_log_id'), 'email_log', ['id'], unique=False)
    op.create_index(op.f('ix_email_log_purchase_order_id'), 'email_log', ['purchase_order_id'], unique=False)
    op.create_index(op.f('ix_email_log_status'), 'email_log', ['status'], unique=False)


def downgrade() -> None:
    op.drop_table('email_log')
    op.drop_table('cached_categories')
    op.drop_table('cached_projects')
    op.drop_table('cached_contacts')
    op.drop_table('freeagent_credentials')
    op.drop_table('uploaded_invoices')
    op.drop_table('po_lines')
    op.drop_table('purchase_orders')
    op.drop_table('company_details')
    op.drop_table('company_users')
    op.drop_table('companies')
