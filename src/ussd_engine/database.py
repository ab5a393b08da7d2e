"""Database connection and session management."""

from __future__ import annotations

from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, AsyncGenerator, Generic, TypeVar

from sqlalchemy import func, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from ussd_engine.config import get_settings

if TYPE_CHECKING:
    from sqlalchemy import Insert, Select
    from sqlalchemy.ext.asyncio import AsyncEngine

T = TypeVar("T")


def get_engine(url: str | None = None) -> AsyncEngine:
    """Create async database engine."""
    settings = get_settings()
    url = url or settings.database_url
    if url.startswith("sqlite"):
        return create_async_engine(url, echo=False)
    return create_async_engine(
        url,
        echo=False,
        pool_pre_ping=True,
        pool_size=10,
        max_overflow=20,
    )


# Global engine and session factory
_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def init_db(
    engine: AsyncEngine | None = None,
) -> tuple[AsyncEngine, async_sessionmaker[AsyncSession]]:
    """Initialize database engine and session factory.

    Passing an engine replaces the global one (used by tests).
    """
    global _engine, _session_factory
    if engine is not None or _engine is None:
        _engine = engine or get_engine()
        _session_factory = async_sessionmaker(
            _engine,
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )
    assert _session_factory is not None
    return _engine, _session_factory


def session_factory() -> async_sessionmaker[AsyncSession]:
    """Return the global session factory, initialising it on first use."""
    _, factory = init_db()
    return factory


@asynccontextmanager
async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """Get a database session."""
    _, factory = init_db()
    async with factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def create_all(engine: AsyncEngine | None = None) -> None:
    """Create all tables (development and tests)."""
    from ussd_engine.models import Base

    engine = engine or init_db()[0]
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


def insert_ignore(
    session: AsyncSession, model: type, index_elements: list[str], **values: Any
) -> Insert:
    """INSERT ... ON CONFLICT DO NOTHING for the session's backend."""
    dialect = session.bind.dialect.name
    if dialect == "postgresql":
        stmt = postgresql.insert(model)
    elif dialect == "sqlite":
        stmt = sqlite.insert(model)
    else:
        raise NotImplementedError(f"insert_ignore is not supported on {dialect}")
    return stmt.values(**values).on_conflict_do_nothing(index_elements=index_elements)


@dataclass
class Page(Generic[T]):
    """One page of a listing plus the counts needed to walk the rest."""

    items: list[T]
    total: int
    page: int
    page_size: int

    @property
    def pages(self) -> int:
        return -(-self.total // self.page_size)

    @property
    def has_next(self) -> bool:
        return self.page * self.page_size < self.total

    @property
    def has_prev(self) -> bool:
        return self.page > 1


async def paginate(session: AsyncSession, query: Select, page: int, page_size: int) -> Page:
    """Count the filtered query, then fetch one page of it.

    The query must already carry its ORDER BY.
    """
    if page < 1 or page_size < 1:
        raise ValueError("page and page_size must be at least 1")
    total = await session.scalar(select(func.count()).select_from(query.order_by(None).subquery()))
    result = await session.execute(query.offset((page - 1) * page_size).limit(page_size))
    return Page(list(result.scalars().all()), total or 0, page, page_size)
