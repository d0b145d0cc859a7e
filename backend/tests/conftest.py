"""
conftest.py — Shared pytest fixtures for the Budgeteer backend test suite.

Pure engine tests (tier resolver, price selection, rounding) need no
fixtures. Persistence-backed tests get a fresh in-memory SQLite database
per test (aiosqlite + StaticPool so every connection sees the same memory
database) and a seeded account.

Import-path bootstrapping:
    The ``backend/`` directory is inserted into sys.path so that all
    ``budgeteer.*`` imports resolve correctly regardless of where pytest is
    invoked.
"""

import sys
import os
from decimal import Decimal
from types import SimpleNamespace

import pytest

# ---------------------------------------------------------------------------
# Ensure ``backend/`` is on the import path before any budgeteer imports occur.
# ---------------------------------------------------------------------------
_BACKEND_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if _BACKEND_DIR not in sys.path:
    sys.path.insert(0, _BACKEND_DIR)

# Module-level engine in budgeteer.db must not point at Postgres during tests
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("LOG_FORMAT", "text")

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402


# ---------------------------------------------------------------------------
# Database fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
async def engine():
    from budgeteer.db import Base
    from budgeteer.models import orm_models  # noqa: F401

    test_engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield test_engine
    await test_engine.dispose()


@pytest.fixture
async def db(engine):
    session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with session_factory() as session:
        yield session


@pytest.fixture
async def account_id(db):
    from budgeteer.models.orm_models import Account

    account = Account(external_user_id="user-a", email="a@example.com")
    db.add(account)
    await db.flush()
    return account.id


@pytest.fixture
async def other_account_id(db):
    from budgeteer.models.orm_models import Account

    account = Account(external_user_id="user-b", email="b@example.com")
    db.add(account)
    await db.flush()
    return account.id


# ---------------------------------------------------------------------------
# Catalog seed
# ---------------------------------------------------------------------------

@pytest.fixture
async def paint_catalog(db, account_id):
    """
    The "Paint" scenario: one product sold by the litre, three suppliers.

      Acme  P1=30  P2=32  P3=35   M1=20  M2=22  M3=25
      Brush P1=28        P3=40   M1=21
      Coat  (no material prices) M2=18

    A project with an empty estimate is created as well.
    """
    from budgeteer.models.orm_models import (
        Client, Estimate, Offer, Product, Project, Supplier, Unit,
    )

    unit = Unit(account_id=account_id, symbol="L", name="Litre")
    db.add(unit)
    await db.flush()
    product = Product(account_id=account_id, name="Paint", category="Finishes", unit_id=unit.id)
    acme = Supplier(account_id=account_id, name="Acme")
    brush = Supplier(account_id=account_id, name="Brush")
    coat = Supplier(account_id=account_id, name="Coat")
    client = Client(account_id=account_id, name="Jane Client")
    db.add_all([product, acme, brush, coat, client])
    await db.flush()

    db.add_all([
        Offer(
            account_id=account_id, supplier_id=acme.id, product_id=product.id,
            material_p1=Decimal("30.00"), material_p2=Decimal("32.00"), material_p3=Decimal("35.00"),
            labor_m1=Decimal("20.00"), labor_m2=Decimal("22.00"), labor_m3=Decimal("25.00"),
        ),
        Offer(
            account_id=account_id, supplier_id=brush.id, product_id=product.id,
            material_p1=Decimal("28.00"), material_p3=Decimal("40.00"),
            labor_m1=Decimal("21.00"),
        ),
        Offer(
            account_id=account_id, supplier_id=coat.id, product_id=product.id,
            labor_m2=Decimal("18.00"),
        ),
    ])
    project = Project(account_id=account_id, name="House", client_id=client.id)
    db.add(project)
    await db.flush()
    estimate = Estimate(account_id=account_id, project_id=project.id, name="Estimate 1")
    db.add(estimate)
    await db.flush()

    return SimpleNamespace(
        unit_id=unit.id,
        product_id=product.id,
        acme_id=acme.id,
        brush_id=brush.id,
        coat_id=coat.id,
        client_id=client.id,
        project_id=project.id,
        estimate_id=estimate.id,
    )
