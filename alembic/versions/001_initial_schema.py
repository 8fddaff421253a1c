"""initial schema - orders and webhook delivery tables

Revision ID: 001
Revises: 
Create Date: 2026-10-18 09:00:00.000000

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
    # Create customers table
    op.create_table(
        'customers',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('email', sa.String(255), nullable=False, index=True),
        sa.Column('first_name', sa.String(255), nullable=True),
        sa.Column('last_name', sa.String(255), nullable=True),
        sa.Column('phone', sa.String(50), nullable=True),
        sa.Column('provider_customer_id', sa.String(255), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.text("(now() at time zone 'utc')")),
        sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=sa.text("(now() at time zone 'utc')")),
    )

    # Create orders table (order_items as JSON, written by checkout)
    op.create_table(
        'orders',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('order_number', sa.String(50), nullable=False, unique=True, index=True),
        sa.Column('status', sa.String(30), nullable=False, server_default='pending'),
        sa.Column('payment_status', sa.String(30), nullable=True),
        sa.Column('customer_id', sa.String(36), sa.ForeignKey('customers.id', ondelete='SET NULL'), nullable=True, index=True),
        sa.Column('customer_email', sa.String(255), nullable=True),
        sa.Column('customer_name', sa.String(255), nullable=True),
        sa.Column('customer_phone', sa.String(50), nullable=True),
        sa.Column('order_items', sa.JSON(), nullable=True),
        sa.Column('total_amount', sa.Float(), nullable=True),
        sa.Column('tax_amount', sa.Float(), nullable=True),
        sa.Column('shipping_cost', sa.Float(), nullable=True),
        sa.Column('shipping_address', sa.Text(), nullable=True),
        sa.Column('shipping_city', sa.String(100), nullable=True),
        sa.Column('shipping_state', sa.String(50), nullable=True),
        sa.Column('shipping_zip', sa.String(20), nullable=True),
        sa.Column('payment_link_url', sa.Text(), nullable=True),
        sa.Column('payment_link_created_at', sa.DateTime(), nullable=True),
        sa.Column('payment_method', sa.String(50), nullable=True),
        sa.Column('amount_paid', sa.Float(), nullable=True),
        sa.Column('provider_payment_id', sa.String(255), nullable=True),
        sa.Column('provider_invoice_id', sa.String(255), nullable=True),
        sa.Column('paid_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.text("(now() at time zone 'utc')")),
        sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=sa.text("(now() at time zone 'utc')")),
    )

    # Create products table
    op.create_table(
        'products',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('weight', sa.Float(), nullable=False, index=True),
        sa.Column('title', sa.String(255), nullable=False),
        sa.Column('selling_price', sa.Float(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.text("(now() at time zone 'utc')")),
        sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=sa.text("(now() at time zone 'utc')")),
    )

    # Create webhook_settings table (singleton row id=1)
    op.create_table(
        'webhook_settings',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('enabled', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('destination_url', sa.Text(), nullable=True),
        sa.Column('signing_secret', sa.String(255), nullable=True),
        sa.Column('timeout_seconds', sa.Integer(), nullable=False, server_default='30'),
        sa.Column('retry_attempts', sa.Integer(), nullable=False, server_default='3'),
        sa.Column('retry_delay_seconds', sa.Integer(), nullable=False, server_default='5'),
        sa.Column('include_customer_data', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('include_order_items', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('include_pricing_data', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('include_shipping_data', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
    )

    # Create webhook_queue table (status as VARCHAR, not enum)
    op.create_table(
        'webhook_queue',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('order_id', sa.String(36), nullable=False, index=True),
        sa.Column('destination_url', sa.Text(), nullable=False),
        sa.Column('payload', sa.JSON(), nullable=False),
        sa.Column('event_type', sa.String(40), nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='pending', index=True),
        sa.Column('attempts', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('max_attempts', sa.Integer(), nullable=False, server_default='3'),
        sa.Column('next_retry_at', sa.DateTime(), nullable=True),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True, index=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
    )

    # Create webhook_logs table
    op.create_table(
        'webhook_logs',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('order_id', sa.String(36), nullable=False, index=True),
        sa.Column('queue_entry_id', sa.String(36), nullable=True, index=True),
        sa.Column('destination_url', sa.Text(), nullable=False),
        sa.Column('event_type', sa.String(40), nullable=False),
        sa.Column('payload', sa.JSON(), nullable=True),
        sa.Column('response_status', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('response_body', sa.Text(), nullable=True),
        sa.Column('response_time_ms', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('success', sa.Boolean(), nullable=False),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('retry_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(), nullable=True, index=True),
    )

    # Provision the settings row, disabled until an admin configures it
    op.execute("INSERT INTO webhook_settings (id, enabled) VALUES (1, false)")


def downgrade() -> None:
    op.drop_table('webhook_logs')
    op.drop_table('webhook_queue')
    op.drop_table('webhook_settings')
    op.drop_table('products')
    op.drop_table('orders')
    op.drop_table('customers')
