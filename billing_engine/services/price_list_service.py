"""
Price List Service.
"""
import logging
import uuid
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from billing_engine.core.exceptions import BillingValidationError
from billing_engine.models.price_list import PriceList, PriceListEntry
from billing_engine.schemas.price_list import PriceListCreate, PriceListEntryCreate


logger = logging.getLogger(__name__)


class PriceListService:

    def __init__(self, db: AsyncSession):
        self.db = db

    @staticmethod
    def _entry(data: PriceListEntryCreate) -> PriceListEntry:
        return PriceListEntry(
            item_key=data.item_key,
            description=data.description,
            unit_price=data.unit_price,
            prices={k: str(v) for k, v in data.prices.items()} if data.prices else None,
        )

    async def create_price_list(self, data: PriceListCreate) -> PriceList:
        """Create a price list with its entries."""
        if await self.db.scalar(select(PriceList.id).where(PriceList.code == data.code)):
            raise BillingValidationError(f"Price list code {data.code} already exists")
        keys = [entry.item_key for entry in data.entries]
        if len(keys) != len(set(keys)):
            raise BillingValidationError("Price list entries must have unique item keys")

        price_list = PriceList(
            code=data.code,
            name=data.name,
            project_id=data.project_id,
            entries=[self._entry(entry) for entry in data.entries],
        )
        self.db.add(price_list)
        await self.db.commit()

        logger.info(f"Created price list {price_list.code} with {len(keys)} entries")
        return await self.get_price_list(price_list.id)

    async def get_price_list(self, price_list_id: uuid.UUID) -> Optional[PriceList]:
        result = await self.db.execute(
            select(PriceList)
            .options(selectinload(PriceList.entries))
            .where(PriceList.id == price_list_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def list_price_lists(self, project_id: Optional[uuid.UUID] = None) -> List[PriceList]:
        query = select(PriceList).options(selectinload(PriceList.entries))
        if project_id:
            query = query.where(PriceList.project_id == project_id)
        result = await self.db.execute(query.order_by(PriceList.code))
        return list(result.scalars().all())

    async def add_entry(self, price_list_id: uuid.UUID, data: PriceListEntryCreate) -> Optional[PriceList]:
        """Add or replace the entry for an item key."""
        price_list = await self.get_price_list(price_list_id)
        if not price_list:
            return None

        price_list.entries = [e for e in price_list.entries if e.item_key != data.item_key]
        await self.db.flush()
        price_list.entries.append(self._entry(data))
        await self.db.commit()
        return await self.get_price_list(price_list_id)
