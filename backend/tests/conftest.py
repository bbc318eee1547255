"""
conftest.py — Shared pytest fixtures for the tender estimator test suite.

No database or broker is needed: service tests run against InMemoryBOQStore,
a dict-backed BOQStore that enforces the same one-link-per-material rule as
the work_material_links unique constraints. Async operations are driven with
``asyncio.run``.

Import-path bootstrapping:
    The ``backend/`` directory is inserted into sys.path so that all
    ``tender_estimator.*`` imports resolve regardless of where pytest is invoked.
"""

import sys
import os
from dataclasses import fields
from typing import Any, Dict, List, Optional

import pytest

# ---------------------------------------------------------------------------
# Ensure ``backend/`` is on the import path before any package imports occur.
# ---------------------------------------------------------------------------
_BACKEND_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if _BACKEND_DIR not in sys.path:
    sys.path.insert(0, _BACKEND_DIR)

from tender_estimator.models.boq_models import (  # noqa: E402
    BOQItem,
    MarkupPercentages,
    Position,
    WorkMaterialLink,
)
from tender_estimator.services.currency import CurrencyRateTable  # noqa: E402
from tender_estimator.services.errors import ItemNotFoundError, LinkExistsError  # noqa: E402
from tender_estimator.services.link_graph import build_link  # noqa: E402


# ---------------------------------------------------------------------------
# In-memory store
# ---------------------------------------------------------------------------

class InMemoryBOQStore:
    """Dict-backed BOQStore. Every read returns a copy, as a real store would."""

    def __init__(self):
        self.tenders: Dict[str, Dict[str, Any]] = {}
        self.positions: Dict[str, Position] = {}
        self.items: Dict[str, BOQItem] = {}
        self.links: Dict[str, WorkMaterialLink] = {}
        self.markups: Dict[str, MarkupPercentages] = {}
        self.writes: List[str] = []

    # Arrange helpers (sync)

    def add_tender(self, tender_id: str, usd_rate=None, eur_rate=None, cny_rate=None):
        self.tenders[tender_id] = {
            "id": tender_id, "usd_rate": usd_rate, "eur_rate": eur_rate, "cny_rate": cny_rate,
        }

    def add_position(self, position_id: str, tender_id: str, title: str = "", number: int = None):
        self.positions[position_id] = Position(
            id=position_id, tender_id=tender_id, title=title,
            position_number=number if number is not None else len(self.positions) + 1,
        )

    def seed(self, *records):
        for record in records:
            if isinstance(record, WorkMaterialLink):
                self.links[record.id] = record.copy()
            else:
                self.items[record.id] = record.copy()

    def item(self, item_id: str) -> BOQItem:
        return self.items[item_id]

    # BOQStore

    async def get_position(self, position_id: str) -> Optional[Position]:
        position = self.positions.get(position_id)
        if position is None:
            return None
        return Position(
            id=position.id,
            tender_id=position.tender_id,
            title=position.title,
            position_number=position.position_number,
            items=await self.list_items(position_id),
            links=await self.list_links(position_id),
        )

    async def list_positions(self, tender_id: str) -> List[Position]:
        ordered = sorted(
            (p for p in self.positions.values() if p.tender_id == tender_id),
            key=lambda p: p.position_number or 0,
        )
        return [await self.get_position(p.id) for p in ordered]

    async def list_items(self, position_id: str) -> List[BOQItem]:
        return [i.copy() for i in self.items.values() if i.position_id == position_id]

    async def get_item(self, item_id: str) -> Optional[BOQItem]:
        item = self.items.get(item_id)
        return item.copy() if item is not None else None

    async def create_item(self, item: BOQItem) -> BOQItem:
        self.items[item.id] = item.copy()
        self.writes.append(f"create_item:{item.id}")
        return item.copy()

    async def update_item(self, item_id: str, **item_fields: Any) -> BOQItem:
        if item_id not in self.items:
            raise ItemNotFoundError("BOQ item", item_id)
        names = {f.name for f in fields(BOQItem)}
        unknown = set(item_fields) - names
        assert not unknown, f"unknown BOQItem fields {unknown}"
        self.items[item_id] = self.items[item_id].copy(**item_fields)
        self.writes.append(f"update_item:{item_id}")
        return self.items[item_id].copy()

    async def list_links(self, position_id: str) -> List[WorkMaterialLink]:
        return [l.copy() for l in self.links.values() if l.position_id == position_id]

    async def get_link(self, link_id: str) -> Optional[WorkMaterialLink]:
        link = self.links.get(link_id)
        return link.copy() if link is not None else None

    async def create_link(self, link: WorkMaterialLink) -> WorkMaterialLink:
        for existing in self.links.values():
            if existing.material_item_id == link.material_item_id:
                raise LinkExistsError(link.material_item_id, existing.id)
        self.links[link.id] = link.copy()
        self.writes.append(f"create_link:{link.id}")
        return link.copy()

    async def update_link(self, link_id: str, **link_fields: Any) -> WorkMaterialLink:
        if link_id not in self.links:
            raise ItemNotFoundError("Link", link_id)
        self.links[link_id] = self.links[link_id].copy(**link_fields)
        self.writes.append(f"update_link:{link_id}")
        return self.links[link_id].copy()

    async def delete_link(self, link_id: str) -> None:
        self.links.pop(link_id, None)
        self.writes.append(f"delete_link:{link_id}")

    async def get_rate_table(self, tender_id: str) -> CurrencyRateTable:
        tender = self.tenders.get(tender_id)
        if tender is None:
            raise ItemNotFoundError("Tender", tender_id)
        return CurrencyRateTable.from_tender(tender)

    async def get_markup_percentages(self, tender_id: str) -> Optional[MarkupPercentages]:
        return self.markups.get(tender_id)


class RecordingScheduler:
    """ReconciliationScheduler that records instead of queueing."""

    def __init__(self):
        self.scheduled = []
        self.cancelled = []

    def schedule(self, request):
        self.scheduled.append(request)
        return f"task-{len(self.scheduled)}"

    def cancel(self, task_id):
        self.cancelled.append(task_id)


class FakeSession:
    """Stands in for the AsyncSession the routes commit on."""

    def __init__(self):
        self.commits = 0

    async def commit(self):
        self.commits += 1

    async def rollback(self):
        pass


# ---------------------------------------------------------------------------
# Store fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def store():
    """
    Tender T1 with USD = 90 and EUR = 100 (no CNY rate), positions P1 and P2.
    """
    s = InMemoryBOQStore()
    s.add_tender("T1", usd_rate=90.0, eur_rate=100.0)
    s.add_position("P1", "T1", title="Foundations", number=1)
    s.add_position("P2", "T1", title="Walls", number=2)
    return s


@pytest.fixture
def scheduler():
    return RecordingScheduler()


# ---------------------------------------------------------------------------
# Record factories
# ---------------------------------------------------------------------------

@pytest.fixture
def make_work():
    def _make(item_id="W1", quantity=10.0, unit_rate=100.0, kind="work", position_id="P1", **kw):
        ref = "work_id" if kind == "work" else "sub_work_id"
        kw.setdefault(ref, f"lib-{item_id}")
        return BOQItem(
            id=item_id, position_id=position_id, kind=kind,
            quantity=quantity, unit_rate=unit_rate, **kw,
        )
    return _make


@pytest.fixture
def make_material():
    def _make(
        item_id="M1", base_quantity=5.0, unit_rate=10.0, kind="material", position_id="P1",
        consumption=1.0, conversion=1.0, **kw,
    ):
        ref = "material_id" if kind == "material" else "sub_material_id"
        kw.setdefault(ref, f"lib-{item_id}")
        kw.setdefault("quantity", (base_quantity or 0.0) * consumption)
        return BOQItem(
            id=item_id, position_id=position_id, kind=kind,
            base_quantity=base_quantity, unit_rate=unit_rate,
            consumption_coefficient=consumption, conversion_coefficient=conversion, **kw,
        )
    return _make


@pytest.fixture
def make_link():
    def _make(work, material, consumption=None, conversion=None, link_id=None):
        return build_link(
            work, material,
            consumption if consumption is not None else material.consumption_coefficient,
            conversion if conversion is not None else material.conversion_coefficient,
            link_id=link_id or f"L-{material.id}",
        )
    return _make


@pytest.fixture
def sample_percentages():
    """A non-trivial markup record for commercial-cost tests."""
    return MarkupPercentages(
        works_16_markup=60.0,
        mechanization_service=5.0,
        mbp_gsm=5.0,
        warranty_period=5.0,
        works_cost_growth=10.0,
        materials_cost_growth=10.0,
        subcontract_works_cost_growth=10.0,
        subcontract_materials_cost_growth=10.0,
        contingency_costs=3.0,
        overhead_own_forces=10.0,
        overhead_subcontract=10.0,
        general_costs_without_subcontract=20.0,
        profit_own_forces=10.0,
        profit_subcontract=16.0,
    )
