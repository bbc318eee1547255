"""ORM Models for the tender estimator — SQLAlchemy 2.0"""
from datetime import datetime
from decimal import Decimal
from typing import Optional
from sqlalchemy import (
    String, Text, Integer, Numeric, DateTime,
    ForeignKey, UniqueConstraint, CheckConstraint, Index
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.sql import func
from tender_estimator.db import Base
from tender_estimator.services.boq_store import gen_uuid


# ── TENDERS ───────────────────────────────────────────────────────────────────
class Tender(Base):
    __tablename__ = "tenders"
    id: Mapped[str] = mapped_column(UUID(as_uuid=False), primary_key=True, default=gen_uuid)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    client_name: Mapped[Optional[str]] = mapped_column(String(255))
    tender_number: Mapped[Optional[str]] = mapped_column(String(100))
    # Rate to RUB per foreign currency; null until the estimator sets it
    usd_rate: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 4))
    eur_rate: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 4))
    cny_rate: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 4))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )
    positions: Mapped[list["ClientPosition"]] = relationship("ClientPosition", back_populates="tender")
    markup: Mapped[Optional["TenderMarkupPercentages"]] = relationship(
        "TenderMarkupPercentages", back_populates="tender", uselist=False
    )


class TenderMarkupPercentages(Base):
    __tablename__ = "tender_markup_percentages"
    id: Mapped[str] = mapped_column(UUID(as_uuid=False), primary_key=True, default=gen_uuid)
    tender_id: Mapped[str] = mapped_column(
        UUID(as_uuid=False), ForeignKey("tenders.id", ondelete="CASCADE"), unique=True, nullable=False
    )
    works_16_markup: Mapped[Decimal] = mapped_column(Numeric(8, 4), default=0)
    mechanization_service: Mapped[Decimal] = mapped_column(Numeric(8, 4), default=0)
    mbp_gsm: Mapped[Decimal] = mapped_column(Numeric(8, 4), default=0)
    warranty_period: Mapped[Decimal] = mapped_column(Numeric(8, 4), default=0)
    works_cost_growth: Mapped[Decimal] = mapped_column(Numeric(8, 4), default=0)
    materials_cost_growth: Mapped[Decimal] = mapped_column(Numeric(8, 4), default=0)
    subcontract_works_cost_growth: Mapped[Decimal] = mapped_column(Numeric(8, 4), default=0)
    subcontract_materials_cost_growth: Mapped[Decimal] = mapped_column(Numeric(8, 4), default=0)
    contingency_costs: Mapped[Decimal] = mapped_column(Numeric(8, 4), default=0)
    overhead_own_forces: Mapped[Decimal] = mapped_column(Numeric(8, 4), default=0)
    overhead_subcontract: Mapped[Decimal] = mapped_column(Numeric(8, 4), default=0)
    general_costs_without_subcontract: Mapped[Decimal] = mapped_column(Numeric(8, 4), default=0)
    profit_own_forces: Mapped[Decimal] = mapped_column(Numeric(8, 4), default=0)
    profit_subcontract: Mapped[Decimal] = mapped_column(Numeric(8, 4), default=0)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )
    tender: Mapped["Tender"] = relationship("Tender", back_populates="markup")


# ── POSITIONS ─────────────────────────────────────────────────────────────────
class ClientPosition(Base):
    __tablename__ = "client_positions"
    id: Mapped[str] = mapped_column(UUID(as_uuid=False), primary_key=True, default=gen_uuid)
    tender_id: Mapped[str] = mapped_column(
        UUID(as_uuid=False), ForeignKey("tenders.id", ondelete="CASCADE"), nullable=False
    )
    position_number: Mapped[Optional[int]] = mapped_column(Integer)
    title: Mapped[str] = mapped_column(Text, default="")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    tender: Mapped["Tender"] = relationship("Tender", back_populates="positions")
    __table_args__ = (Index("ix_client_positions_tender", "tender_id"),)


# ── BOQ ITEMS ─────────────────────────────────────────────────────────────────
class BOQItemRow(Base):
    __tablename__ = "boq_items"
    id: Mapped[str] = mapped_column(UUID(as_uuid=False), primary_key=True, default=gen_uuid)
    client_position_id: Mapped[str] = mapped_column(
        UUID(as_uuid=False), ForeignKey("client_positions.id", ondelete="CASCADE"), nullable=False
    )
    boq_item_type: Mapped[str] = mapped_column(String(20), nullable=False)
    description: Mapped[str] = mapped_column(Text, default="")
    unit: Mapped[str] = mapped_column(String(50), default="")
    quantity: Mapped[Decimal] = mapped_column(Numeric(12, 4), default=0)
    # Raw user quantity of an unlinked material; null while linked
    base_quantity: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 4))
    unit_rate: Mapped[Decimal] = mapped_column(Numeric(15, 4), default=0)
    currency_type: Mapped[str] = mapped_column(String(3), default="RUB")
    currency_rate: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 4))
    consumption_coefficient: Mapped[Decimal] = mapped_column(Numeric(12, 4), default=1)
    conversion_coefficient: Mapped[Decimal] = mapped_column(Numeric(12, 4), default=1)
    delivery_price_type: Mapped[str] = mapped_column(String(20), default="included")
    delivery_amount: Mapped[Optional[Decimal]] = mapped_column(Numeric(15, 4))
    material_type: Mapped[str] = mapped_column(String(20), default="main")
    work_id: Mapped[Optional[str]] = mapped_column(UUID(as_uuid=False))
    sub_work_id: Mapped[Optional[str]] = mapped_column(UUID(as_uuid=False))
    material_id: Mapped[Optional[str]] = mapped_column(UUID(as_uuid=False))
    sub_material_id: Mapped[Optional[str]] = mapped_column(UUID(as_uuid=False))
    total_amount: Mapped[Decimal] = mapped_column(Numeric(18, 4), default=0)
    commercial_cost: Mapped[Optional[Decimal]] = mapped_column(Numeric(18, 4))
    commercial_markup_coefficient: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 6))
    generation: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )
    __table_args__ = (
        CheckConstraint(
            "boq_item_type IN ('work', 'sub_work', 'material', 'sub_material')",
            name="ck_boq_item_type",
        ),
        CheckConstraint(
            "currency_type IN ('RUB', 'USD', 'EUR', 'CNY')", name="ck_boq_currency_type",
        ),
        Index("ix_boq_items_position", "client_position_id"),
    )


# ── WORK ↔ MATERIAL LINKS ─────────────────────────────────────────────────────
class WorkMaterialLinkRow(Base):
    __tablename__ = "work_material_links"
    id: Mapped[str] = mapped_column(UUID(as_uuid=False), primary_key=True, default=gen_uuid)
    client_position_id: Mapped[str] = mapped_column(
        UUID(as_uuid=False), ForeignKey("client_positions.id", ondelete="CASCADE"), nullable=False
    )
    work_boq_item_id: Mapped[Optional[str]] = mapped_column(
        UUID(as_uuid=False), ForeignKey("boq_items.id", ondelete="CASCADE")
    )
    sub_work_boq_item_id: Mapped[Optional[str]] = mapped_column(
        UUID(as_uuid=False), ForeignKey("boq_items.id", ondelete="CASCADE")
    )
    material_boq_item_id: Mapped[Optional[str]] = mapped_column(
        UUID(as_uuid=False), ForeignKey("boq_items.id", ondelete="CASCADE")
    )
    sub_material_boq_item_id: Mapped[Optional[str]] = mapped_column(
        UUID(as_uuid=False), ForeignKey("boq_items.id", ondelete="CASCADE")
    )
    material_quantity_per_work: Mapped[Decimal] = mapped_column(Numeric(12, 4), default=1)
    usage_coefficient: Mapped[Decimal] = mapped_column(Numeric(12, 4), default=1)
    notes: Mapped[Optional[str]] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    __table_args__ = (
        # One link per material, whichever column holds it
        UniqueConstraint("material_boq_item_id", name="uq_link_material"),
        UniqueConstraint("sub_material_boq_item_id", name="uq_link_sub_material"),
        CheckConstraint(
            "(work_boq_item_id IS NULL) <> (sub_work_boq_item_id IS NULL)",
            name="ck_link_work_ref",
        ),
        CheckConstraint(
            "(material_boq_item_id IS NULL) <> (sub_material_boq_item_id IS NULL)",
            name="ck_link_material_ref",
        ),
        Index("ix_work_material_links_position", "client_position_id"),
    )
