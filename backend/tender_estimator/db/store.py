"""
SqlAlchemyBOQStore — BOQStore over the async SQLAlchemy session.

Rows are mapped to the engine's dataclasses on the way out; Numeric columns
come back as Decimal and are converted to float. The store flushes but never
commits: the request (or Celery task) owns the transaction.
"""
import logging
from dataclasses import fields
from decimal import Decimal
from typing import Any, List, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from tender_estimator.models.boq_models import (
    BOQItem,
    MarkupPercentages,
    Position,
    WorkMaterialLink,
)
from tender_estimator.models.orm_models import (
    BOQItemRow,
    ClientPosition,
    Tender,
    TenderMarkupPercentages,
    WorkMaterialLinkRow,
)
from tender_estimator.services.currency import CurrencyRateTable
from tender_estimator.services.errors import ItemNotFoundError, LinkExistsError

logger = logging.getLogger("tender-db")

# dataclass field → column, where the names differ
_ITEM_COLUMNS = {"position_id": "client_position_id", "kind": "boq_item_type"}
_LINK_COLUMNS = {"position_id": "client_position_id"}


def _num(value):
    if isinstance(value, Decimal):
        return float(value)
    return value


def _row_to_item(row: BOQItemRow) -> BOQItem:
    data = {}
    for f in fields(BOQItem):
        data[f.name] = _num(getattr(row, _ITEM_COLUMNS.get(f.name, f.name)))
    data["generation"] = row.generation or 0
    return BOQItem(**data)


def _row_to_link(row: WorkMaterialLinkRow) -> WorkMaterialLink:
    data = {}
    for f in fields(WorkMaterialLink):
        data[f.name] = _num(getattr(row, _LINK_COLUMNS.get(f.name, f.name)))
    return WorkMaterialLink(**data)


def _item_columns(**item_fields: Any) -> dict:
    return {_ITEM_COLUMNS.get(k, k): v for k, v in item_fields.items()}


def _link_columns(**link_fields: Any) -> dict:
    return {_LINK_COLUMNS.get(k, k): v for k, v in link_fields.items()}


class SqlAlchemyBOQStore:
    def __init__(self, db: AsyncSession):
        self.db = db

    # ── Positions ──────────────────────────────────────────────────────────────

    async def _load_position(self, row: ClientPosition) -> Position:
        return Position(
            id=row.id,
            tender_id=row.tender_id,
            title=row.title or "",
            position_number=row.position_number,
            items=await self.list_items(row.id),
            links=await self.list_links(row.id),
        )

    async def get_position(self, position_id: str) -> Optional[Position]:
        row = await self.db.get(ClientPosition, position_id)
        if row is None:
            return None
        return await self._load_position(row)

    async def list_positions(self, tender_id: str) -> List[Position]:
        result = await self.db.execute(
            select(ClientPosition)
            .where(ClientPosition.tender_id == tender_id)
            .order_by(ClientPosition.position_number)
        )
        return [await self._load_position(row) for row in result.scalars().all()]

    # ── Items ──────────────────────────────────────────────────────────────────

    async def list_items(self, position_id: str) -> List[BOQItem]:
        result = await self.db.execute(
            select(BOQItemRow)
            .where(BOQItemRow.client_position_id == position_id)
            .order_by(BOQItemRow.created_at)
        )
        return [_row_to_item(row) for row in result.scalars().all()]

    async def get_item(self, item_id: str) -> Optional[BOQItem]:
        row = await self.db.get(BOQItemRow, item_id, populate_existing=True)
        return _row_to_item(row) if row is not None else None

    async def create_item(self, item: BOQItem) -> BOQItem:
        values = {f.name: getattr(item, f.name) for f in fields(BOQItem)}
        row = BOQItemRow(**_item_columns(**values))
        self.db.add(row)
        await self.db.flush()
        return _row_to_item(row)

    async def update_item(self, item_id: str, **item_fields: Any) -> BOQItem:
        row = await self.db.get(BOQItemRow, item_id)
        if row is None:
            raise ItemNotFoundError("BOQ item", item_id)
        for column, value in _item_columns(**item_fields).items():
            setattr(row, column, value)
        await self.db.flush()
        return _row_to_item(row)

    # ── Links ──────────────────────────────────────────────────────────────────

    async def list_links(self, position_id: str) -> List[WorkMaterialLink]:
        result = await self.db.execute(
            select(WorkMaterialLinkRow)
            .where(WorkMaterialLinkRow.client_position_id == position_id)
            .order_by(WorkMaterialLinkRow.created_at)
        )
        return [_row_to_link(row) for row in result.scalars().all()]

    async def get_link(self, link_id: str) -> Optional[WorkMaterialLink]:
        row = await self.db.get(WorkMaterialLinkRow, link_id)
        return _row_to_link(row) if row is not None else None

    async def create_link(self, link: WorkMaterialLink) -> WorkMaterialLink:
        values = {f.name: getattr(link, f.name) for f in fields(WorkMaterialLink)}
        row = WorkMaterialLinkRow(**_link_columns(**values))
        try:
            # Savepoint so a lost race leaves the outer transaction usable
            async with self.db.begin_nested():
                self.db.add(row)
        except IntegrityError as e:
            logger.warning(
                "Link insert for material %s rejected: %s", link.material_item_id, e.orig,
                extra={"item_id": link.material_item_id, "position_id": link.position_id},
            )
            raise LinkExistsError(link.material_item_id) from e
        return _row_to_link(row)

    async def update_link(self, link_id: str, **link_fields: Any) -> WorkMaterialLink:
        row = await self.db.get(WorkMaterialLinkRow, link_id)
        if row is None:
            raise ItemNotFoundError("Link", link_id)
        for column, value in _link_columns(**link_fields).items():
            setattr(row, column, value)
        await self.db.flush()
        return _row_to_link(row)

    async def delete_link(self, link_id: str) -> None:
        row = await self.db.get(WorkMaterialLinkRow, link_id)
        if row is None:
            return
        await self.db.delete(row)
        await self.db.flush()

    # ── Tender settings ────────────────────────────────────────────────────────

    async def get_rate_table(self, tender_id: str) -> CurrencyRateTable:
        tender = await self.db.get(Tender, tender_id)
        if tender is None:
            raise ItemNotFoundError("Tender", tender_id)
        return CurrencyRateTable.from_tender(tender)

    async def get_markup_percentages(self, tender_id: str) -> Optional[MarkupPercentages]:
        result = await self.db.execute(
            select(TenderMarkupPercentages).where(TenderMarkupPercentages.tender_id == tender_id)
        )
        row = result.scalar_one_or_none()
        if row is None:
            return None
        return MarkupPercentages.from_mapping({
            f.name: getattr(row, f.name) for f in fields(MarkupPercentages)
        })
