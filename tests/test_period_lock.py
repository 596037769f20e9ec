"""Tests for the per-period generation lock."""
import asyncio
import uuid
from datetime import date

import pytest

from billing_engine.services.period_lock import PeriodLockRegistry


JAN = (date(2024, 1, 1), date(2024, 1, 31))
FEB = (date(2024, 2, 1), date(2024, 2, 29))


async def test_same_period_is_serialized():
    registry = PeriodLockRegistry()
    project_id = uuid.uuid4()
    order = []

    async def generate(name):
        async with registry.hold(project_id, *JAN):
            order.append(f"{name}:start")
            await asyncio.sleep(0.01)
            order.append(f"{name}:end")

    await asyncio.gather(generate("a"), generate("b"))

    assert order == ["a:start", "a:end", "b:start", "b:end"]


async def test_other_periods_and_projects_are_independent():
    registry = PeriodLockRegistry()
    project_id = uuid.uuid4()

    async with registry.hold(project_id, *JAN):
        assert registry.is_locked(project_id, *JAN)
        assert not registry.is_locked(project_id, *FEB)
        assert not registry.is_locked(uuid.uuid4(), *JAN)

        async with registry.hold(project_id, *FEB):
            assert registry.is_locked(project_id, *FEB)


async def test_lock_is_released_after_error():
    registry = PeriodLockRegistry()
    project_id = uuid.uuid4()

    with pytest.raises(RuntimeError):
        async with registry.hold(project_id, *JAN):
            raise RuntimeError("generation failed")

    assert not registry.is_locked(project_id, *JAN)
    assert registry._locks == {}
