import json
import logging
from contextlib import asynccontextmanager
from decimal import Decimal
from datetime import datetime, date
from typing import AsyncGenerator
from uuid import UUID

from fastapi import Request
from sqlalchemy import text, inspect
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.orm import DeclarativeBase
from psycopg.types.json import set_json_dumps

from atelier.config import settings

logger = logging.getLogger(__name__)


class CustomJSONEncoder(json.JSONEncoder):
    """JSON encoder that handles Decimal, datetime and UUID values stored in JSON columns."""
    def default(self, obj):
        if isinstance(obj, Decimal):
            return float(obj)
        if isinstance(obj, (datetime, date)):
            return obj.isoformat()
        if isinstance(obj, UUID):
            return str(obj)
        return super().default(obj)


def custom_json_dumps(obj):
    return json.dumps(obj, cls=CustomJSONEncoder)


set_json_dumps(custom_json_dumps)


# Tables that live in the public schema; everything else is created per tenant.
PUBLIC_TABLES = {"tenants"}

database_url = settings.DATABASE_URL
if database_url.startswith("postgresql+asyncpg://"):
    database_url = database_url.replace("postgresql+asyncpg://", "postgresql+psycopg://")
elif database_url.startswith("postgresql://"):
    database_url = database_url.replace("postgresql://", "postgresql+psycopg://")

if settings.is_sqlite:
    engine = create_async_engine(
        database_url,
        echo=settings.DEBUG,
        json_serializer=custom_json_dumps,
        connect_args={"check_same_thread": False},
    )
else:
    engine = create_async_engine(
        database_url,
        echo=settings.DEBUG,
        json_serializer=custom_json_dumps,
        pool_pre_ping=True,
        pool_size=settings.DB_POOL_SIZE,
        max_overflow=settings.DB_MAX_OVERFLOW,
        pool_timeout=settings.DB_POOL_TIMEOUT,
        pool_recycle=settings.DB_POOL_RECYCLE,
        connect_args={"connect_timeout": 30},
    )

async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)

# Alias for public schema session
async_session_maker = async_session_factory


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""
    pass


async def ensure_loaded(session: AsyncSession, obj, *attributes: str) -> None:
    """Load relationships that are not loaded yet; async sessions cannot lazy-load."""
    unloaded = inspect(obj).unloaded
    missing = [name for name in attributes if name in unloaded]
    if missing:
        await session.refresh(obj, attribute_names=missing)


def tenant_tables():
    """Tables created inside each tenant schema."""
    return [t for t in Base.metadata.sorted_tables if t.name not in PUBLIC_TABLES]


def public_tables():
    return [t for t in Base.metadata.sorted_tables if t.name in PUBLIC_TABLES]


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Dependency to get a public schema session."""
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def _bind_schema(session: AsyncSession, schema: str) -> None:
    # SQLite has a single schema; tenant isolation relies on search_path on PostgreSQL.
    if settings.is_sqlite:
        return
    await session.execute(text(f'SET search_path TO "{schema}", public'))


@asynccontextmanager
async def get_tenant_session(schema: str):
    """
    Context manager yielding a session bound to a tenant schema.

    Used by background jobs and by the request dependency below.
    """
    async with async_session_factory() as session:
        await _bind_schema(session, schema)
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def get_db_with_tenant(request: Request) -> AsyncGenerator[AsyncSession, None]:
    """
    Dependency to get a database session for the current tenant.

    The tenant schema is placed on request.state by the tenant middleware.
    """
    if not hasattr(request.state, "schema"):
        raise ValueError("Tenant schema not found in request. Is tenant middleware enabled?")

    async with get_tenant_session(request.state.schema) as session:
        yield session


async def create_tenant_schema(schema: str) -> None:
    """Create the schema of a tenant and all of its tables."""
    from atelier import models  # noqa: F401

    async with engine.begin() as conn:
        if settings.is_sqlite:
            await conn.run_sync(Base.metadata.create_all, tables=tenant_tables())
            return
        await conn.execute(text(f'CREATE SCHEMA IF NOT EXISTS "{schema}"'))
        scoped = await conn.execution_options(schema_translate_map={None: schema})
        await scoped.run_sync(Base.metadata.create_all, tables=tenant_tables())
    logger.info(f"Provisioned tenant schema {schema} ({len(tenant_tables())} tables)")


async def init_db() -> None:
    """Create the public schema tables."""
    from atelier import models  # noqa: F401

    async with engine.begin() as conn:
        if settings.is_sqlite:
            await conn.run_sync(Base.metadata.create_all)
        else:
            await conn.run_sync(Base.metadata.create_all, tables=public_tables())
    logger.info(f"Registered {len(Base.metadata.tables)} tables")
