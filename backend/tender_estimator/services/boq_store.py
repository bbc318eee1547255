"""
Persistence boundary consumed by the engine.

The engine only ever talks to a BOQStore; SqlAlchemyBOQStore
(tender_estimator.db.store) is the production implementation.
"""
import uuid
from typing import Any, List, Optional, Protocol

from tender_estimator.models.boq_models import (
    BOQItem,
    MarkupPercentages,
    Position,
    WorkMaterialLink,
)
from tender_estimator.services.currency import CurrencyRateTable


def gen_uuid() -> str:
    return str(uuid.uuid4())


class BOQStore(Protocol):
    async def get_position(self, position_id: str) -> Optional[Position]: ...

    async def list_positions(self, tender_id: str) -> List[Position]: ...

    async def list_items(self, position_id: str) -> List[BOQItem]: ...

    async def get_item(self, item_id: str) -> Optional[BOQItem]: ...

    async def create_item(self, item: BOQItem) -> BOQItem: ...

    async def update_item(self, item_id: str, **fields: Any) -> BOQItem: ...

    async def list_links(self, position_id: str) -> List[WorkMaterialLink]: ...

    async def get_link(self, link_id: str) -> Optional[WorkMaterialLink]: ...

    async def create_link(self, link: WorkMaterialLink) -> WorkMaterialLink:
        """Insert a link; raises LinkExistsError if the material is already linked."""
        ...

    async def update_link(self, link_id: str, **fields: Any) -> WorkMaterialLink: ...

    async def delete_link(self, link_id: str) -> None: ...

    async def get_rate_table(self, tender_id: str) -> CurrencyRateTable: ...

    async def get_markup_percentages(self, tender_id: str) -> Optional[MarkupPercentages]: ...
