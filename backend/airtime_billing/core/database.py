"""Async database engine, session factory and declarative base."""

from typing import AsyncGenerator

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from airtime_billing.core.config import settings

DATABASE_URL = settings.DATABASE_URL

engine_kwargs: dict = {"echo": settings.DATABASE_ECHO, "pool_pre_ping": True}
if DATABASE_URL.startswith("postgresql"):
    engine_kwargs.update({"pool_size": 10, "max_overflow": 20})

engine = create_async_engine(DATABASE_URL, **engine_kwargs)

async_session_maker = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)


class Base(DeclarativeBase):
    """Declarative base for all ORM models."""


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency yielding a request-scoped session."""
    async with async_session_maker() as session:
        try:
            yield session
        finally:
            await session.close()


# Older routers depend on get_db
get_db = get_session


async def create_all() -> None:
    """Create tables for local development (migrations are used elsewhere)."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
