"""Async engine, session dependency and transaction helpers."""

from contextlib import asynccontextmanager
from typing import AsyncIterator

from sqlalchemy.exc import ResourceClosedError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from crm.core.config import settings

engine = create_async_engine(
    settings.DATABASE_URL,
    pool_pre_ping=True,
    pool_size=settings.DB_POOL_SIZE,
    max_overflow=settings.DB_MAX_OVERFLOW,
    pool_timeout=settings.DB_POOL_TIMEOUT,
    pool_recycle=settings.DB_POOL_RECYCLE,
    isolation_level=settings.DB_ISOLATION_LEVEL,
    echo=settings.DEBUG,
)

SessionLocal = async_sessionmaker(bind=engine, expire_on_commit=False)


async def get_session() -> AsyncIterator[AsyncSession]:
    """FastAPI dependency yielding one session per request."""

    async with SessionLocal() as session:
        yield session


@asynccontextmanager
async def repeatable_read_transaction(session: AsyncSession) -> AsyncIterator[AsyncSession]:
    """Run the block in a single transaction at REPEATABLE READ.

    Campaign updates lock the row, compare ``expected_updated_at`` and write
    inside this block, so the check and the write see one snapshot. On MySQL
    the InnoDB lock wait is also shortened for the block. Other backends get
    a plain transaction.
    """

    if session.in_transaction():
        await session.rollback()

    if session.bind.dialect.name != "mysql":
        async with session.begin():
            yield session
        return

    async with session.begin():
        # Isolation applies to the connection checked out for this transaction
        # and is reset when it returns to the pool.
        conn = await session.connection(execution_options={"isolation_level": "REPEATABLE READ"})
        prev_lock_wait = (
            await conn.exec_driver_sql("SELECT @@SESSION.innodb_lock_wait_timeout")
        ).scalar_one()
        await conn.exec_driver_sql(
            f"SET SESSION innodb_lock_wait_timeout = {settings.INNODB_LOCK_WAIT_TIMEOUT_SEC}"
        )
        try:
            yield session
        finally:
            try:
                await conn.exec_driver_sql(
                    f"SET SESSION innodb_lock_wait_timeout = {int(prev_lock_wait)}"
                )
            except ResourceClosedError:
                pass
