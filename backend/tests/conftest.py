import os
import sys
from contextlib import asynccontextmanager
from datetime import datetime, timedelta
from pathlib import Path

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session
from sqlalchemy.pool import StaticPool

# Ensure required environment variables are present before settings import
os.environ.setdefault("SECRET_KEY", "test-secret")
os.environ.setdefault("DEBUG", "false")

# Add the backend directory so `crm` package imports resolve during tests
BACKEND_DIR = Path(__file__).resolve().parents[1]
if str(BACKEND_DIR) not in sys.path:
    sys.path.append(str(BACKEND_DIR))

from crm.models import Base, Customer  # noqa: E402

NOW = datetime.now().replace(microsecond=0)

# (name, email, phone, address, total_spend, total_visits, days since last activity)
CUSTOMER_ROWS = [
    ("Acme Inc", "acme@example.com", "555-0100", "1 Main St", 12000, 30, 10),
    ("Bob Smith", "bob@example.com", "555-0101", "22 Oak Ave", 4000, 5, 200),
    ("Globex Inc", "globex@example.com", None, "9 Elm Rd", 3000, 2, 365),
    ("Dana Reyes", "dana@example.com", "555-0103", None, 8000, 12, 250),
    ("Eve Walker", None, "555-0104", "5 Pine Ct", 6000, 3, None),
    ("Frank Ltd", "frank@example.com", "555-0105", "77 Bay St", 5000, 7, 181),
]


class AsyncSessionAdapter:
    """Exposes the awaitable ``AsyncSession`` surface the routes use over a sync SQLite session."""

    def __init__(self, session: Session):
        self._session = session

    async def execute(self, statement, *args, **kwargs):
        return self._session.execute(statement, *args, **kwargs)

    async def scalar(self, statement, *args, **kwargs):
        return self._session.scalar(statement, *args, **kwargs)

    def add(self, obj) -> None:
        self._session.add(obj)

    async def delete(self, obj) -> None:
        self._session.delete(obj)

    async def commit(self) -> None:
        self._session.commit()

    async def rollback(self) -> None:
        self._session.rollback()

    async def refresh(self, obj) -> None:
        self._session.refresh(obj)

    def expunge(self, obj) -> None:
        self._session.expunge(obj)

    @property
    def bind(self):
        return self._session.get_bind()

    def in_transaction(self) -> bool:
        return self._session.in_transaction()

    @asynccontextmanager
    async def begin(self):
        with self._session.begin():
            yield self


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def db_session():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    with Session(engine, expire_on_commit=False) as session:
        yield session
    engine.dispose()


@pytest.fixture
def customers(db_session: Session) -> list[Customer]:
    rows = []
    for name, email, phone, address, spend, visits, idle_days in CUSTOMER_ROWS:
        rows.append(
            Customer(
                name=name,
                email=email,
                phone=phone,
                address=address,
                total_spend=spend,
                total_visits=visits,
                last_activity=None if idle_days is None else NOW - timedelta(days=idle_days),
            )
        )
    db_session.add_all(rows)
    db_session.commit()
    return rows


@pytest.fixture
def async_session(db_session: Session, customers) -> AsyncSessionAdapter:
    return AsyncSessionAdapter(db_session)
