"""Discount and referral benefit engine schema

Revision ID: 20261019_0900
Revises:
Create Date: 2026-10-19 09:00:00.000000

This migration adds:
- packages, customers, invoices: the billing records the engine reads and adjusts
- billing_discounts / billing_discount_applications: discount catalog and
  per-invoice audit rows (one row per discount per invoice)
- referral_codes / referral_transactions / marketing_referrals: referral ledger
  - usage_count <= max_uses check
  - one active referral code per customer (partial unique index)
  - referrer and referred customer must differ
- accounting_categories / accounting_transactions: referral expense ledger
- system_settings: runtime overrides for the referral programme
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic
revision = '20261019_0900'
down_revision = None
branch_labels = None
depends_on = None


customer_status_enum = postgresql.ENUM(
    'active', 'inactive', 'suspended', 'pending',
    name='customerstatus', create_type=False,
)
invoice_status_enum = postgresql.ENUM(
    'unpaid', 'paid', 'cancelled',
    name='invoicestatus', create_type=False,
)
discount_type_enum = postgresql.ENUM(
    'percentage', 'fixed',
    name='discounttype', create_type=False,
)
discount_target_type_enum = postgresql.ENUM(
    'all', 'area', 'package', 'customer',
    name='discounttargettype', create_type=False,
)
discount_status_enum = postgresql.ENUM(
    'draft', 'active', 'retired',
    name='discountstatus', create_type=False,
)
benefit_type_enum = postgresql.ENUM(
    'cash', 'discount',
    name='referralbenefittype', create_type=False,
)
referral_transaction_status_enum = postgresql.ENUM(
    'pending', 'applied',
    name='referraltransactionstatus', create_type=False,
)
marketing_referral_status_enum = postgresql.ENUM(
    'unpaid', 'paid',
    name='marketingreferralstatus', create_type=False,
)
entry_type_enum = postgresql.ENUM(
    'income', 'expense',
    name='accountingentrytype', create_type=False,
)
reference_type_enum = postgresql.ENUM(
    'referral_transaction', 'marketing_referral', 'customer',
    name='ledgerreferencetype', create_type=False,
)

ALL_ENUMS = [
    customer_status_enum,
    invoice_status_enum,
    discount_type_enum,
    discount_target_type_enum,
    discount_status_enum,
    benefit_type_enum,
    referral_transaction_status_enum,
    marketing_referral_status_enum,
    entry_type_enum,
    reference_type_enum,
]


def _base_columns():
    return [
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=False),
    ]


def upgrade() -> None:
    # Create ENUM types first
    for enum in ALL_ENUMS:
        enum.create(op.get_bind(), checkfirst=True)

    op.create_table(
        'packages',
        *_base_columns(),
        sa.Column('name', sa.String(100), nullable=False),
        sa.Column('price', sa.Numeric(15, 2), nullable=False, server_default='0'),
    )

    op.create_table(
        'customers',
        *_base_columns(),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('phone', sa.String(20), nullable=True),
        sa.Column('email', sa.String(255), nullable=True),
        sa.Column('address', sa.Text(), nullable=True),
        sa.Column('package_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('packages.id', ondelete='SET NULL'), nullable=True, index=True),
        sa.Column('status', customer_status_enum, nullable=False, server_default='pending', index=True),
        sa.Column('referral_code_used', sa.String(20), nullable=True),
        sa.Column('referred_by_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('customers.id', ondelete='SET NULL'), nullable=True),
    )

    op.create_table(
        'invoices',
        *_base_columns(),
        sa.Column('invoice_number', sa.String(50), nullable=False, unique=True, index=True),
        sa.Column('customer_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('customers.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('package_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('packages.id', ondelete='SET NULL'), nullable=True),
        sa.Column('due_date', sa.Date(), nullable=False, index=True),
        sa.Column('amount', sa.Numeric(15, 2), nullable=False, server_default='0'),
        sa.Column('discount_amount', sa.Numeric(15, 2), nullable=False, server_default='0'),
        sa.Column('final_amount', sa.Numeric(15, 2), nullable=False, server_default='0'),
        sa.Column('discount_notes', sa.Text(), nullable=True),
        sa.Column('status', invoice_status_enum, nullable=False, server_default='unpaid', index=True),
        sa.Column('notes', sa.Text(), nullable=True),
    )

    # Discount catalog
    op.create_table(
        'billing_discounts',
        *_base_columns(),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('discount_type', discount_type_enum, nullable=False),
        sa.Column('discount_value', sa.Numeric(15, 2), nullable=False, comment='Percentage (0-100] or fixed currency amount'),
        sa.Column('max_discount_amount', sa.Numeric(15, 2), nullable=True, comment='Cap on percentage discounts; null = uncapped'),
        sa.Column('target_type', discount_target_type_enum, nullable=False, server_default='all'),
        sa.Column('target_ids', sa.JSON(), nullable=False, server_default=sa.text("'[]'::json")),
        sa.Column('compensation_reason', sa.Text(), nullable=True),
        sa.Column('start_date', sa.Date(), nullable=False),
        sa.Column('end_date', sa.Date(), nullable=False),
        sa.Column('status', discount_status_enum, nullable=False, server_default='active', index=True),
        sa.Column('apply_to_existing_invoices', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('created_by_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('updated_by_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.CheckConstraint('start_date <= end_date', name='ck_billing_discounts_valid_window'),
    )

    op.create_table(
        'billing_discount_applications',
        *_base_columns(),
        sa.Column('discount_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('billing_discounts.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('customer_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('customers.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('invoice_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('invoices.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('original_amount', sa.Numeric(15, 2), nullable=False),
        sa.Column('discount_amount', sa.Numeric(15, 2), nullable=False),
        sa.Column('final_amount', sa.Numeric(15, 2), nullable=False),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('applied_at', sa.DateTime(timezone=True), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=False),
        sa.UniqueConstraint('discount_id', 'invoice_id', name='uq_billing_discount_applications_discount_invoice'),
    )

    # Referral ledger
    op.create_table(
        'referral_codes',
        *_base_columns(),
        sa.Column('customer_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('customers.id', ondelete='CASCADE'), nullable=True, index=True, comment='Null for fixed marketing codes'),
        sa.Column('code', sa.String(20), nullable=False, unique=True, index=True),
        sa.Column('max_uses', sa.Integer(), nullable=False, server_default='50'),
        sa.Column('usage_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true(), index=True),
        sa.CheckConstraint('usage_count <= max_uses', name='ck_referral_codes_usage_within_cap'),
    )
    op.create_index(
        'uq_referral_codes_active_customer',
        'referral_codes',
        ['customer_id'],
        unique=True,
        postgresql_where=sa.text('is_active = true'),
    )

    op.create_table(
        'referral_transactions',
        *_base_columns(),
        sa.Column('referrer_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('customers.id', ondelete='SET NULL'), nullable=True, index=True),
        sa.Column('referred_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('customers.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('referral_code_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('referral_codes.id', ondelete='SET NULL'), nullable=True),
        sa.Column('benefit_type', benefit_type_enum, nullable=False),
        sa.Column('benefit_amount', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('status', referral_transaction_status_enum, nullable=False, server_default='pending', index=True),
        sa.Column('applied_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('applied_invoice_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('invoices.id', ondelete='SET NULL'), nullable=True, index=True),
        sa.CheckConstraint('referrer_id IS NULL OR referrer_id <> referred_id', name='ck_referral_transactions_no_self_referral'),
    )

    op.create_table(
        'marketing_referrals',
        *_base_columns(),
        sa.Column('marketer_name', sa.String(255), nullable=False),
        sa.Column('marketer_phone', sa.String(20), nullable=True),
        sa.Column('marketer_email', sa.String(255), nullable=True),
        sa.Column('referral_code', sa.String(20), nullable=False, unique=True, index=True),
        sa.Column('customer_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('customers.id', ondelete='SET NULL'), nullable=True, index=True),
        sa.Column('fee_amount', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('status', marketing_referral_status_enum, nullable=False, server_default='unpaid', index=True),
        sa.Column('paid_date', sa.DateTime(timezone=True), nullable=True),
    )

    # Accounting ledger
    op.create_table(
        'accounting_categories',
        *_base_columns(),
        sa.Column('name', sa.String(100), nullable=False, unique=True),
        sa.Column('type', entry_type_enum, nullable=False, server_default='expense'),
        sa.Column('description', sa.Text(), nullable=True),
    )

    op.create_table(
        'accounting_transactions',
        *_base_columns(),
        sa.Column('category_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('accounting_categories.id', ondelete='RESTRICT'), nullable=False, index=True),
        sa.Column('type', entry_type_enum, nullable=False),
        sa.Column('amount', sa.Numeric(15, 2), nullable=False),
        sa.Column('description', sa.String(500), nullable=False),
        sa.Column('reference_type', reference_type_enum, nullable=True, index=True),
        sa.Column('reference_id', postgresql.UUID(as_uuid=True), nullable=True, index=True),
        sa.Column('transaction_date', sa.Date(), nullable=False, index=True),
        sa.Column('notes', sa.Text(), nullable=True),
    )

    op.create_table(
        'system_settings',
        *_base_columns(),
        sa.Column('setting_key', sa.String(100), nullable=False, unique=True, index=True),
        sa.Column('setting_value', sa.Text(), nullable=True),
        sa.Column('description', sa.Text(), nullable=True),
    )


def downgrade() -> None:
    op.drop_table('system_settings')
    op.drop_table('accounting_transactions')
    op.drop_table('accounting_categories')
    op.drop_table('marketing_referrals')
    op.drop_table('referral_transactions')
    op.drop_index('uq_referral_codes_active_customer', table_name='referral_codes')
    op.drop_table('referral_codes')
    op.drop_table('billing_discount_applications')
    op.drop_table('billing_discounts')
    op.drop_table('invoices')
    op.drop_table('customers')
    op.drop_table('packages')

    for enum in reversed(ALL_ENUMS):
        enum.drop(op.get_bind(), checkfirst=True)
