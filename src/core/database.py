"""SQLAlchemy async engine, session factory and connectivity check.

The user store, the delivery log and the operator API all share one
engine. Each batch work item holds a session only while it reads
favorites or writes a delivery record, so the pool is sized from the
batch concurrency rather than a fixed request load.
"""

from __future__ import annotations

import logging

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from src.core.config import Settings

logger = logging.getLogger(__name__)

# Connections beyond batch_concurrency for the API and the delivery log.
POOL_HEADROOM = 2


class Base(DeclarativeBase):
    """Declarative base for the FlowWatch tables."""


def create_engine(settings: Settings) -> tuple[AsyncEngine, async_sessionmaker[AsyncSession]]:
    """Build the engine and a session factory that keeps objects usable after commit."""
    engine = create_async_engine(
        settings.database_url or "",
        echo=settings.debug,
        pool_size=settings.batch_concurrency + POOL_HEADROOM,
        max_overflow=4,
        pool_pre_ping=True,
        pool_recycle=300,
    )
    session_factory = async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)
    return engine, session_factory


async def verify_database_connectivity(session_factory: async_sessionmaker[AsyncSession]) -> bool:
    """Return True if PostgreSQL answers ``SELECT 1``."""
    try:
        async with session_factory() as session:
            result = await session.execute(text("SELECT 1"))
            result.scalar()
    except (SQLAlchemyError, ConnectionError, OSError) as exc:
        logger.warning("PostgreSQL health check failed: %s", exc)
        return False
    return True
