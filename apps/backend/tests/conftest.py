import itertools
import os
import sys
from datetime import datetime, timedelta
from decimal import Decimal

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlmodel import SQLModel

# Keep the app's default engine off any real database during tests
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./bonus_engine_unused.db")
os.environ.setdefault("LOG_FORMAT", "text")

# Add parent directory to path to allow importing models and main
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from database import build_engine, build_session_factory, get_session
from dependencies import get_draft_autosaver
from main import app
from models import Customer, Purchase, PurchaseLine
from services.draft_autosave import DraftAutosaver


@pytest_asyncio.fixture(name="engine", scope="function")
async def engine_fixture(tmp_path):
    # TEST_DATABASE_URL points at a throwaway Postgres; otherwise one SQLite file per test
    url = os.environ.get("TEST_DATABASE_URL") or f"sqlite+aiosqlite:///{tmp_path / 'bonus_engine_test.db'}"
    test_engine = build_engine(url, echo=False, null_pool=True)
    async with test_engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.drop_all)
        await conn.run_sync(SQLModel.metadata.create_all)
    yield test_engine
    await test_engine.dispose()


@pytest_asyncio.fixture(name="session_factory")
async def session_factory_fixture(engine):
    return build_session_factory(engine)


@pytest_asyncio.fixture(name="session")
async def session_fixture(session_factory):
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture(name="autosaver")
async def autosaver_fixture(session_factory):
    saver = DraftAutosaver(session_factory, delay=0.05)
    yield saver
    await saver.drain()


@pytest_asyncio.fixture(name="client")
async def client_fixture(session_factory, autosaver):
    async def get_session_override():
        async with session_factory() as request_session:
            yield request_session

    app.dependency_overrides[get_session] = get_session_override
    app.dependency_overrides[get_draft_autosaver] = lambda: autosaver

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


@pytest.fixture
def make_customer(session):
    async def _make(name: str = "Ada Lovelace", **kwargs) -> Customer:
        customer = Customer(name=name, **kwargs)
        session.add(customer)
        await session.commit()
        await session.refresh(customer)
        return customer

    return _make


@pytest.fixture
def make_purchase(session):
    """
    Create a purchase with lines given as (subtotal, discount_eligible) pairs.
    Each new purchase is one hour newer than the previous one.
    """
    clock = itertools.count()

    async def _make(customer: Customer, lines=((100, True),), purchased_at=None) -> Purchase:
        when = purchased_at or datetime(2024, 1, 1, 9, 0) + timedelta(hours=next(clock))
        amounts = [Decimal(str(amount)) for amount, _ in lines]
        purchase = Purchase(
            customer_id=customer.id,
            purchased_at=when,
            amount_total=sum(amounts, Decimal("0")),
            pos_reference=f"POS/{customer.id}/{when:%Y%m%d%H%M}",
        )
        session.add(purchase)
        await session.flush()
        for i, (amount, (_, eligible)) in enumerate(zip(amounts, lines)):
            session.add(
                PurchaseLine(
                    purchase_id=purchase.id,
                    product_name=f"Item {i + 1}",
                    quantity=1,
                    price_unit=amount,
                    subtotal=amount,
                    discount_eligible=eligible,
                )
            )
        await session.commit()
        await session.refresh(purchase)
        return purchase

    return _make
