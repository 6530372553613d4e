"""Initial inventory ledger schema

Revision ID: 3f2a9c1d7e54
Revises:
Create Date: 2026-10-19 10:12:31.418203

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# Revision identifiers used by Alembic
revision: str = '3f2a9c1d7e54'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

MOVEMENT_TYPES = (
    'purchase', 'sale', 'return_in', 'return_out', 'adjustment_in', 'adjustment_out',
    'transfer_in', 'transfer_out', 'damage', 'expiry', 'theft', 'production',
    'consumption', 'initial_stock',
)
MOVEMENT_STATUSES = ('pending', 'completed', 'cancelled', 'reversed')


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table(
        'users',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('email', sa.String(), nullable=False),
        sa.Column('password_hash', sa.String(), nullable=True),
        sa.Column('role', sa.String(), nullable=False),
        sa.Column('first_name', sa.String(), nullable=True),
        sa.Column('last_name', sa.String(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_users_id'), 'users', ['id'], unique=False)
    op.create_index(op.f('ix_users_email'), 'users', ['email'], unique=True)

    op.create_table(
        'products',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('code', sa.String(), nullable=False),
        sa.Column('description', sa.String(), nullable=True),
        sa.Column('category', sa.String(), nullable=True),
        sa.Column('supplier', sa.String(), nullable=True),
        sa.Column('buy_price', sa.Float(), sa.CheckConstraint('buy_price >= 0'), nullable=False),
        sa.Column('sell_price_net', sa.Float(), sa.CheckConstraint('sell_price_net >= 0'), nullable=False),
        sa.Column('location', sa.String(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_products_id'), 'products', ['id'], unique=False)
    op.create_index(op.f('ix_products_name'), 'products', ['name'], unique=False)
    op.create_index(op.f('ix_products_code'), 'products', ['code'], unique=True)

    op.create_table(
        'inventories',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('current_stock', sa.Float(), sa.CheckConstraint('current_stock >= 0'), nullable=False),
        sa.Column('reserved_stock', sa.Float(), sa.CheckConstraint('reserved_stock >= 0'), nullable=False),
        sa.Column('available_stock', sa.Float(), sa.CheckConstraint('available_stock >= 0'), nullable=False),
        sa.Column('reorder_point', sa.Float(), sa.CheckConstraint('reorder_point >= 0'), nullable=False),
        sa.Column('reorder_quantity', sa.Float(), sa.CheckConstraint('reorder_quantity >= 1'), nullable=False),
        sa.Column('stock_value', sa.Float(), nullable=False),
        sa.Column('version', sa.Integer(), nullable=False),
        sa.Column('last_updated', sa.DateTime(), nullable=False),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=True),
        sa.ForeignKeyConstraint(['product_id'], ['products.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_inventories_id'), 'inventories', ['id'], unique=False)
    op.create_index(op.f('ix_inventories_product_id'), 'inventories', ['product_id'], unique=True)

    op.create_table(
        'stock_reservations',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('inventory_id', sa.Integer(), nullable=False),
        sa.Column('reservation_id', sa.String(length=64), nullable=False),
        sa.Column('quantity', sa.Float(), sa.CheckConstraint('quantity > 0'), nullable=False),
        sa.Column('expires_at', sa.DateTime(), nullable=False),
        sa.Column('reserved_by_id', sa.Integer(), nullable=True),
        sa.Column('reference_type', sa.String(length=32), nullable=False),
        sa.Column('reference_id', sa.String(length=64), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['inventory_id'], ['inventories.id']),
        sa.ForeignKeyConstraint(['reserved_by_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_stock_reservations_id'), 'stock_reservations', ['id'], unique=False)
    op.create_index(op.f('ix_stock_reservations_inventory_id'), 'stock_reservations', ['inventory_id'], unique=False)
    op.create_index(op.f('ix_stock_reservations_reservation_id'), 'stock_reservations', ['reservation_id'], unique=True)
    op.create_index(op.f('ix_stock_reservations_expires_at'), 'stock_reservations', ['expires_at'], unique=False)

    op.create_table(
        'stock_movements',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('product_name', sa.String(), nullable=False),
        sa.Column('product_sku', sa.String(), nullable=True),
        sa.Column('movement_type', sa.Enum(*MOVEMENT_TYPES, name='movementtype', native_enum=False, length=32), nullable=False),
        sa.Column('quantity', sa.Float(), sa.CheckConstraint('quantity >= 0'), nullable=False),
        sa.Column('unit_cost', sa.Float(), sa.CheckConstraint('unit_cost >= 0'), nullable=False),
        sa.Column('total_value', sa.Float(), sa.CheckConstraint('total_value >= 0'), nullable=False),
        sa.Column('previous_stock', sa.Float(), sa.CheckConstraint('previous_stock >= 0'), nullable=False),
        sa.Column('new_stock', sa.Float(), sa.CheckConstraint('new_stock >= 0'), nullable=False),
        sa.Column('inventory_applied', sa.Boolean(), nullable=False),
        sa.Column('reference_type', sa.String(length=32), nullable=False),
        sa.Column('reference_id', sa.String(length=64), nullable=True),
        sa.Column('reference_number', sa.String(length=64), nullable=True),
        sa.Column('location', sa.String(), nullable=False),
        sa.Column('from_location', sa.String(), nullable=True),
        sa.Column('to_location', sa.String(), nullable=True),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('user_name', sa.String(), nullable=False),
        sa.Column('reason', sa.String(length=500), nullable=True),
        sa.Column('notes', sa.String(length=1000), nullable=True),
        sa.Column('batch_number', sa.String(), nullable=True),
        sa.Column('expiry_date', sa.DateTime(), nullable=True),
        sa.Column('supplier', sa.String(), nullable=True),
        sa.Column('customer', sa.String(), nullable=True),
        sa.Column('status', sa.Enum(*MOVEMENT_STATUSES, name='movementstatus', native_enum=False, length=16), nullable=False),
        sa.Column('is_reversal', sa.Boolean(), nullable=False),
        sa.Column('original_movement_id', sa.Integer(), nullable=True),
        sa.Column('reversal_movement_id', sa.Integer(), nullable=True),
        sa.Column('reversed_by_id', sa.Integer(), nullable=True),
        sa.Column('reversed_at', sa.DateTime(), nullable=True),
        sa.Column('system_generated', sa.Boolean(), nullable=False),
        sa.ForeignKeyConstraint(['product_id'], ['products.id']),
        sa.ForeignKeyConstraint(['user_id'], ['users.id']),
        sa.ForeignKeyConstraint(['original_movement_id'], ['stock_movements.id']),
        sa.ForeignKeyConstraint(['reversal_movement_id'], ['stock_movements.id']),
        sa.ForeignKeyConstraint(['reversed_by_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_stock_movements_id'), 'stock_movements', ['id'], unique=False)
    op.create_index(op.f('ix_stock_movements_created_at'), 'stock_movements', ['created_at'], unique=False)
    op.create_index(op.f('ix_stock_movements_product_id'), 'stock_movements', ['product_id'], unique=False)
    op.create_index(op.f('ix_stock_movements_movement_type'), 'stock_movements', ['movement_type'], unique=False)
    op.create_index(op.f('ix_stock_movements_reference_id'), 'stock_movements', ['reference_id'], unique=False)
    op.create_index(op.f('ix_stock_movements_reference_number'), 'stock_movements', ['reference_number'], unique=False)
    op.create_index(op.f('ix_stock_movements_status'), 'stock_movements', ['status'], unique=False)
    op.create_index('ix_stock_movements_product_created', 'stock_movements', ['product_id', 'created_at'], unique=False)
    op.create_index('ix_stock_movements_reference', 'stock_movements', ['reference_type', 'reference_id'], unique=False)

    op.create_table(
        'logs',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('ts', sa.DateTime(), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=True),
        sa.Column('user_id', sa.Integer(), nullable=True),
        sa.Column('action', sa.String(length=50), nullable=True),
        sa.Column('resource', sa.String(length=50), nullable=True),
        sa.Column('status', sa.String(length=20), nullable=True),
        sa.Column('ip', sa.String(length=64), nullable=True),
        sa.Column('meta', sa.JSON(), nullable=True),
        sa.ForeignKeyConstraint(['user_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_logs_id'), 'logs', ['id'], unique=False)
    op.create_index(op.f('ix_logs_ts'), 'logs', ['ts'], unique=False)
    op.create_index(op.f('ix_logs_action'), 'logs', ['action'], unique=False)
    op.create_index(op.f('ix_logs_resource'), 'logs', ['resource'], unique=False)
    op.create_index(op.f('ix_logs_status'), 'logs', ['status'], unique=False)


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_table('logs')
    op.drop_table('stock_movements')
    op.drop_table('stock_reservations')
    op.drop_table('inventories')
    op.drop_table('products')
    op.drop_table('users')
