"""
Pytest fixtures for the billing engine test suite.

Provides:
- An in-memory SQLite database per test (schema created from the models)
- An httpx AsyncClient bound to the FastAPI app with get_db overridden
- Factories that create projects, rules and performance records over the API
"""
import os

os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"

from typing import Any, Dict

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from billing_engine import models  # noqa: F401 registers every table
from billing_engine.database import Base, custom_json_dumps, get_db
from billing_engine.main import app


TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@pytest_asyncio.fixture
async def engine():
    engine = create_async_engine(
        TEST_DATABASE_URL,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
        json_serializer=custom_json_dumps,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(engine):
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def client(session_factory):
    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        yield c
    app.dependency_overrides.clear()


# ============================================================================
# API FACTORIES
# ============================================================================

@pytest.fixture
def create_project(client):
    counter = {"n": 0}

    async def _create(**overrides) -> Dict[str, Any]:
        counter["n"] += 1
        payload = {
            "code": f"PRJ{counter['n']:03d}",
            "name": f"Project {counter['n']}",
            "customerName": "Acme Logistics",
            "currency": "USD",
            "taxRate": "0.10",
            "paymentTermsDays": 30,
        }
        payload.update(overrides)
        response = await client.post("/api/v1/projects", json=payload)
        assert response.status_code == 201, response.text
        return response.json()

    return _create


@pytest.fixture
def create_rule(client):
    async def _create(project_id: str, **overrides) -> Dict[str, Any]:
        payload = {
            "projectId": project_id,
            "ruleName": "Rule",
            "ruleType": "EA",
            "unitBasis": "EA",
            "priceSource": "fixed_price",
            "groupingKey": "none",
            "priority": 0,
            "config": {},
        }
        payload.update(overrides)
        response = await client.post("/api/v1/project-billing-rules", json=payload)
        assert response.status_code == 201, response.text
        return response.json()

    return _create


@pytest.fixture
def create_master(client):
    async def _create(project_id: str, items) -> Dict[str, Any]:
        response = await client.post(
            "/api/v1/master-billing-rules",
            json={"projectId": project_id, "items": items},
        )
        assert response.status_code == 201, response.text
        return response.json()

    return _create


@pytest.fixture
def create_delivery(client):
    counter = {"n": 0}

    async def _create(project_id: str, delivery_date: str, **overrides) -> Dict[str, Any]:
        counter["n"] += 1
        payload = {
            "projectId": project_id,
            "deliveryNumber": f"DLV-{counter['n']:05d}",
            "deliveryDate": delivery_date,
        }
        payload.update(overrides)
        response = await client.post("/api/v1/deliveries", json=payload)
        assert response.status_code == 201, response.text
        return response.json()

    return _create


@pytest.fixture
def create_labor_log(client):
    counter = {"n": 0}

    async def _create(project_id: str, work_date: str, **overrides) -> Dict[str, Any]:
        counter["n"] += 1
        payload = {
            "projectId": project_id,
            "logNumber": f"LAB-{counter['n']:05d}",
            "workDate": work_date,
            "workType": "Picking",
            "hours": "1",
        }
        payload.update(overrides)
        response = await client.post("/api/v1/labor-logs", json=payload)
        assert response.status_code == 201, response.text
        return response.json()

    return _create


@pytest.fixture
def create_price_list(client):
    async def _create(code: str, entries, project_id: str = None) -> Dict[str, Any]:
        response = await client.post(
            "/api/v1/price-lists",
            json={"code": code, "name": f"{code} prices", "projectId": project_id, "entries": entries},
        )
        assert response.status_code == 201, response.text
        return response.json()

    return _create
