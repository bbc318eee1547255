"""boq_schema

Revision ID: 001_boq_schema
Revises:
Create Date: 2026-10-18

Creates the estimating schema:
- tenders (with usd_rate / eur_rate / cny_rate)
- tender_markup_percentages
- client_positions
- boq_items (base_quantity, currency_rate snapshot, generation counter)
- work_material_links (one link per material, XOR checks on both refs)

Each table is created only when missing so the migration is safe to run after
Base.metadata.create_all() already built the schema.
"""
import logging
from alembic import op
import sqlalchemy as sa
from sqlalchemy import text

revision = '001_boq_schema'
down_revision = None
branch_labels = None
depends_on = None

logger = logging.getLogger("alembic.001")

_UUID = sa.String(36)
_MARKUP_COLUMNS = [
    'works_16_markup', 'mechanization_service', 'mbp_gsm', 'warranty_period',
    'works_cost_growth', 'materials_cost_growth', 'subcontract_works_cost_growth',
    'subcontract_materials_cost_growth', 'contingency_costs', 'overhead_own_forces',
    'overhead_subcontract', 'general_costs_without_subcontract', 'profit_own_forces',
    'profit_subcontract',
]


def _table_exists(conn, table_name: str) -> bool:
    result = conn.execute(
        text(
            "SELECT EXISTS("
            "  SELECT 1 FROM information_schema.tables"
            "  WHERE table_name = :tname"
            ")"
        ),
        {"tname": table_name},
    )
    return bool(result.scalar())


def upgrade() -> None:
    conn = op.get_bind()

    # ── tenders ───────────────────────────────────────────────────────────────
    if not _table_exists(conn, 'tenders'):
        op.create_table(
            'tenders',
            sa.Column('id', _UUID, primary_key=True),
            sa.Column('title', sa.String(255), nullable=False),
            sa.Column('client_name', sa.String(255), nullable=True),
            sa.Column('tender_number', sa.String(100), nullable=True),
            sa.Column('usd_rate', sa.Numeric(12, 4), nullable=True),
            sa.Column('eur_rate', sa.Numeric(12, 4), nullable=True),
            sa.Column('cny_rate', sa.Numeric(12, 4), nullable=True),
            sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
            sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        )
        logger.info("Created table: tenders")
    else:
        logger.info("Table tenders already exists, skipping create")

    # ── tender_markup_percentages ─────────────────────────────────────────────
    if not _table_exists(conn, 'tender_markup_percentages'):
        op.create_table(
            'tender_markup_percentages',
            sa.Column('id', _UUID, primary_key=True),
            sa.Column('tender_id', _UUID, sa.ForeignKey('tenders.id', ondelete='CASCADE'),
                      nullable=False, unique=True),
            *[
                sa.Column(name, sa.Numeric(8, 4), nullable=False, server_default='0')
                for name in _MARKUP_COLUMNS
            ],
            sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        )
        logger.info("Created table: tender_markup_percentages")

    # ── client_positions ──────────────────────────────────────────────────────
    if not _table_exists(conn, 'client_positions'):
        op.create_table(
            'client_positions',
            sa.Column('id', _UUID, primary_key=True),
            sa.Column('tender_id', _UUID, sa.ForeignKey('tenders.id', ondelete='CASCADE'),
                      nullable=False, index=True),
            sa.Column('position_number', sa.Integer, nullable=True),
            sa.Column('title', sa.Text, server_default=''),
            sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        )
        logger.info("Created table: client_positions")

    # ── boq_items ─────────────────────────────────────────────────────────────
    if not _table_exists(conn, 'boq_items'):
        op.create_table(
            'boq_items',
            sa.Column('id', _UUID, primary_key=True),
            sa.Column('client_position_id', _UUID,
                      sa.ForeignKey('client_positions.id', ondelete='CASCADE'),
                      nullable=False, index=True),
            sa.Column('boq_item_type', sa.String(20), nullable=False),
            sa.Column('description', sa.Text, server_default=''),
            sa.Column('unit', sa.String(50), server_default=''),
            sa.Column('quantity', sa.Numeric(12, 4), nullable=False, server_default='0'),
            sa.Column('base_quantity', sa.Numeric(12, 4), nullable=True),
            sa.Column('unit_rate', sa.Numeric(15, 4), nullable=False, server_default='0'),
            sa.Column('currency_type', sa.String(3), nullable=False, server_default='RUB'),
            sa.Column('currency_rate', sa.Numeric(12, 4), nullable=True),
            sa.Column('consumption_coefficient', sa.Numeric(12, 4), server_default='1'),
            sa.Column('conversion_coefficient', sa.Numeric(12, 4), server_default='1'),
            sa.Column('delivery_price_type', sa.String(20), server_default='included'),
            sa.Column('delivery_amount', sa.Numeric(15, 4), nullable=True),
            sa.Column('material_type', sa.String(20), server_default='main'),
            sa.Column('work_id', _UUID, nullable=True),
            sa.Column('sub_work_id', _UUID, nullable=True),
            sa.Column('material_id', _UUID, nullable=True),
            sa.Column('sub_material_id', _UUID, nullable=True),
            sa.Column('total_amount', sa.Numeric(18, 4), server_default='0'),
            sa.Column('commercial_cost', sa.Numeric(18, 4), nullable=True),
            sa.Column('commercial_markup_coefficient', sa.Numeric(12, 6), nullable=True),
            sa.Column('generation', sa.Integer, nullable=False, server_default='0'),
            sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
            sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
            sa.CheckConstraint(
                "boq_item_type IN ('work', 'sub_work', 'material', 'sub_material')",
                name='ck_boq_item_type',
            ),
            sa.CheckConstraint(
                "currency_type IN ('RUB', 'USD', 'EUR', 'CNY')", name='ck_boq_currency_type',
            ),
        )
        logger.info("Created table: boq_items")

    # ── work_material_links ───────────────────────────────────────────────────
    if not _table_exists(conn, 'work_material_links'):
        op.create_table(
            'work_material_links',
            sa.Column('id', _UUID, primary_key=True),
            sa.Column('client_position_id', _UUID,
                      sa.ForeignKey('client_positions.id', ondelete='CASCADE'),
                      nullable=False, index=True),
            sa.Column('work_boq_item_id', _UUID,
                      sa.ForeignKey('boq_items.id', ondelete='CASCADE'), nullable=True),
            sa.Column('sub_work_boq_item_id', _UUID,
                      sa.ForeignKey('boq_items.id', ondelete='CASCADE'), nullable=True),
            sa.Column('material_boq_item_id', _UUID,
                      sa.ForeignKey('boq_items.id', ondelete='CASCADE'), nullable=True),
            sa.Column('sub_material_boq_item_id', _UUID,
                      sa.ForeignKey('boq_items.id', ondelete='CASCADE'), nullable=True),
            sa.Column('material_quantity_per_work', sa.Numeric(12, 4), server_default='1'),
            sa.Column('usage_coefficient', sa.Numeric(12, 4), server_default='1'),
            sa.Column('notes', sa.Text, nullable=True),
            sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
            sa.UniqueConstraint('material_boq_item_id', name='uq_link_material'),
            sa.UniqueConstraint('sub_material_boq_item_id', name='uq_link_sub_material'),
            sa.CheckConstraint(
                "(work_boq_item_id IS NULL) <> (sub_work_boq_item_id IS NULL)",
                name='ck_link_work_ref',
            ),
            sa.CheckConstraint(
                "(material_boq_item_id IS NULL) <> (sub_material_boq_item_id IS NULL)",
                name='ck_link_material_ref',
            ),
        )
        logger.info("Created table: work_material_links")


def downgrade() -> None:
    conn = op.get_bind()

    for table in ['work_material_links', 'boq_items', 'client_positions',
                  'tender_markup_percentages', 'tenders']:
        if _table_exists(conn, table):
            op.drop_table(table)
