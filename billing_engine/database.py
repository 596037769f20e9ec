import json
import logging
from decimal import Decimal
from datetime import datetime, date
from typing import Any, AsyncGenerator, Dict
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.orm import DeclarativeBase

from billing_engine.config import settings


logger = logging.getLogger(__name__)


def _json_default(obj: Any) -> Any:
    # Decimals keep their exact text; rule configs and price maps are re-read as Decimal
    if isinstance(obj, (Decimal, UUID)):
        return str(obj)
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


def custom_json_dumps(obj) -> str:
    """JSON dumps for JSON columns holding rule configs, templates and line sources."""
    return json.dumps(obj, default=_json_default)


_ASYNC_DRIVERS = {
    "postgresql+asyncpg://": "postgresql+psycopg://",
    "postgresql://": "postgresql+psycopg://",
    "sqlite://": "sqlite+aiosqlite://",
}


def to_async_url(url: str) -> str:
    """Point a plain database URL at the async driver the engine runs on."""
    for prefix, async_prefix in _ASYNC_DRIVERS.items():
        if url.startswith(prefix):
            return async_prefix + url[len(prefix):]
    return url


def _engine_options(url: str) -> Dict[str, Any]:
    options: Dict[str, Any] = {
        "echo": settings.DEBUG,
        "json_serializer": custom_json_dumps,
    }
    if url.startswith("sqlite"):
        options["connect_args"] = {"check_same_thread": False}
        return options

    # psycopg adapts JSON parameters itself, outside the engine serializer
    from psycopg.types.json import set_json_dumps
    set_json_dumps(custom_json_dumps)

    options.update(
        pool_pre_ping=True,
        pool_size=settings.DB_POOL_SIZE,
        max_overflow=settings.DB_MAX_OVERFLOW,
        pool_timeout=settings.DB_POOL_TIMEOUT,
        pool_recycle=settings.DB_POOL_RECYCLE,
    )
    return options


database_url = to_async_url(settings.DATABASE_URL)

engine = create_async_engine(database_url, **_engine_options(database_url))

async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)


class Base(DeclarativeBase):
    """Base class for billing engine tables."""
    pass


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Request-scoped session: committed when the endpoint returns, rolled back if it raises."""
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def init_db() -> None:
    """Create any missing tables. Migrations remain the source of truth in production."""
    from billing_engine import models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info(f"Database ready ({len(Base.metadata.tables)} tables) at {engine.url.render_as_string()}")
