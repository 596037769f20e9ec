"""
Billing Sequence Service.

Hands out gap-free, never-reused numbers:
    INVOICE / <project id>  → invoice numbers per project
    RULE / global           → billing rule creation sequence

Invoice counters are created together with their project. The counter row
is read with SELECT FOR UPDATE, so two transactions asking for the next
number of the same counter serialize on the row lock.
"""
import logging
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from billing_engine.core.exceptions import PersistenceError
from billing_engine.models.billing_sequence import BillingSequence, SequenceScope


logger = logging.getLogger(__name__)

GLOBAL_KEY = "global"


class BillingSequenceService:
    """Row-locked counters."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def _find_sequence(self, scope: SequenceScope, key: str) -> Optional[BillingSequence]:
        result = await self.db.execute(
            select(BillingSequence)
            .where(
                BillingSequence.scope == scope.value,
                BillingSequence.key == key
            )
            .with_for_update()
        )
        return result.scalar_one_or_none()

    async def create_sequence(self, scope: SequenceScope, key: str = GLOBAL_KEY) -> BillingSequence:
        """
        Insert a counter row at zero.

        Raises:
            PersistenceError: another transaction created the same counter first
        """
        sequence = BillingSequence(scope=scope.value, key=key, current_number=0)
        self.db.add(sequence)
        try:
            await self.db.flush()
        except IntegrityError as e:
            raise PersistenceError(
                f"Billing sequence {scope.value}/{key} was created concurrently",
                {"scope": scope.value, "key": key}
            ) from e
        logger.info(f"Created billing sequence {scope.value}/{key}")
        return sequence

    async def _get_or_create_sequence(self, scope: SequenceScope, key: str) -> BillingSequence:
        sequence = await self._find_sequence(scope, key)
        if not sequence:
            sequence = await self.create_sequence(scope, key)
        return sequence

    async def next_number(self, scope: SequenceScope, key: str = GLOBAL_KEY) -> int:
        """
        Take the next number of a counter.

        NOTE: does NOT commit; the number is only consumed if the caller's
        transaction commits.
        """
        sequence = await self._get_or_create_sequence(scope, key)
        number = sequence.take_next()
        await self.db.flush()
        return number
