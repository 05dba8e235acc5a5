"""Database — one-shot Primary bootstrap plus per-worker async session manager.

Invariants:
    - DatabaseBootstrap.connect() dials at most once per instance; later calls return cached ConnectionInfo
    - is_ready flips False → True exactly once, on the first successful dial; never reset
    - A failed dial raises BootstrapError and leaves is_ready False — no retry, no backoff
    - Every session auto-rolls-back on exception (no partial commits leak)
    - All SQLAlchemy exceptions mapped to DatabaseError (core/errors.py)

Design Decisions:
    - Bootstrap owned by the PrimaryCoordinator instance, never a module singleton
    - Each worker builds its own DatabaseSessionManager in the app lifespan: pooled
      connections are not shared across processes
    - The dial function is injectable so the once-only contract is testable without a server
    - expire_on_commit=False: prevents lazy-load issues in async context
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import AsyncGenerator

from fastapi import Request
from sqlalchemy import text
from sqlalchemy.exc import (
    IntegrityError, OperationalError, DBAPIError, SQLAlchemyError,
)
from sqlalchemy.ext.asyncio import (
    AsyncEngine, AsyncSession, create_async_engine, async_sessionmaker,
)

from vidhub.core.errors import BootstrapError, DatabaseError, ConflictError

logger = logging.getLogger(__name__)


# ─── Bootstrap (Primary) ─────────────────────────────────────────

@dataclass(frozen=True)
class ConnectionInfo:
    """What the Primary learned from the successful dial."""
    dialect: str
    host: str | None
    database: str | None
    connected_at: datetime = field(
        default_factory=lambda: datetime.now(timezone.utc),
    )


async def dial_database(database_url: str) -> AsyncEngine:
    """Create an engine and prove it can reach the server."""
    engine = create_async_engine(database_url, pool_pre_ping=True)
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except Exception:
        await engine.dispose()
        raise
    return engine


class DatabaseBootstrap:
    """Idempotent connection to the shared database, run once in the Primary."""

    def __init__(
        self,
        database_url: str,
        dial: Callable[[str], Awaitable[AsyncEngine]] = dial_database,
    ):
        self._database_url = database_url
        self._dial = dial
        self._engine: AsyncEngine | None = None
        self._info: ConnectionInfo | None = None
        self._lock = asyncio.Lock()

    @property
    def is_ready(self) -> bool:
        return self._info is not None

    @property
    def info(self) -> ConnectionInfo | None:
        return self._info

    async def connect(self) -> ConnectionInfo:
        """Dial once. Raises BootstrapError on failure."""
        if self._info is not None:
            logger.info("Already connected to database", extra={"service": "bootstrap"})
            return self._info
        async with self._lock:
            if self._info is not None:
                return self._info
            try:
                engine = await self._dial(self._database_url)
            except Exception as e:
                logger.error(
                    f"Database connection error: {e}",
                    extra={"service": "bootstrap"},
                )
                raise BootstrapError(str(e)) from e
            self._engine = engine
            self._info = ConnectionInfo(
                dialect=engine.url.get_backend_name(),
                host=engine.url.host,
                database=engine.url.database,
            )
        logger.info(
            f"Database connected (host={self._info.host}, database={self._info.database})",
            extra={"service": "bootstrap"},
        )
        return self._info

    async def dispose(self) -> None:
        """Release the engine. Readiness stays True: there is no re-bootstrap path."""
        if self._engine is not None:
            await self._engine.dispose()
            self._engine = None


# ─── Session Manager (Worker) ────────────────────────────────────

class DatabaseSessionManager:
    """Manages async database sessions with pooling, rollback, and health checks."""

    def __init__(
        self, database_url: str, pool_size: int = 20, max_overflow: int = 10,
    ):
        engine_kwargs: dict = {"pool_pre_ping": True}
        if not database_url.startswith("sqlite"):
            engine_kwargs.update(
                pool_size=pool_size, max_overflow=max_overflow, pool_recycle=3600,
            )
        self.engine = create_async_engine(database_url, **engine_kwargs)
        self._session_factory = async_sessionmaker(
            self.engine,
            class_=AsyncSession,
            expire_on_commit=False,
        )

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[AsyncSession, None]:
        """Provide session with auto-rollback on exception."""
        session = self._session_factory()
        try:
            yield session
        except IntegrityError as e:
            await session.rollback()
            logger.error(f"DB integrity error: {e}")
            raise ConflictError("Resource already exists")
        except OperationalError as e:
            await session.rollback()
            logger.error(f"DB operational error: {e}")
            raise DatabaseError("Connection or operational error", "execute")
        except DBAPIError as e:
            await session.rollback()
            logger.error(f"DB driver error: {e}")
            raise DatabaseError("Database driver error", "query")
        except SQLAlchemyError as e:
            await session.rollback()
            logger.error(f"SQLAlchemy error: {e}")
            raise DatabaseError("Database operation failed", "unknown")
        finally:
            await session.close()

    async def health_check(self) -> bool:
        """Check database connectivity (for readiness probes)."""
        try:
            async with self.session() as db:
                await db.execute(text("SELECT 1"))
            return True
        except Exception as e:
            logger.error(f"DB health check failed: {e}")
            return False

    async def close(self) -> None:
        await self.engine.dispose()


async def get_db(request: Request) -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency for database sessions."""
    manager: DatabaseSessionManager | None = getattr(request.app.state, "db", None)
    if manager is None:
        raise RuntimeError("Database not initialized")
    async with manager.session() as session:
        yield session
