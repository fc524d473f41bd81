"""
Pytest fixtures for the pickup order backend.

Provides an in-memory database per test, seeded users and listings, and an
httpx client bound to the FastAPI app with the database dependency swapped.
"""

from datetime import date, timedelta

import pytest
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from app import models  # noqa: F401
from app.core.security import create_access_token
from app.database import Base, get_db
from app.main import app
from app.models.product import Product, ProductStatus
from app.models.user import User, UserRoleType


@pytest.fixture
async def engine():
    """Fresh in-memory database; StaticPool keeps every session on one connection."""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest.fixture
async def db_session(session_factory):
    async with session_factory() as session:
        yield session


async def _add_user(session: AsyncSession, **kwargs) -> User:
    user = User(**kwargs)
    session.add(user)
    await session.commit()
    return user


@pytest.fixture
async def seller(db_session):
    return await _add_user(
        db_session,
        email="kitchen@example.com",
        full_name="Mama Put Kitchen",
        role=UserRoleType.SELLER.value,
        pickup_address="12 Allen Avenue",
        pickup_city="Ikeja",
    )


@pytest.fixture
async def other_seller(db_session):
    return await _add_user(
        db_session,
        email="bakery@example.com",
        full_name="Corner Bakery",
        role=UserRoleType.SELLER.value,
    )


@pytest.fixture
async def buyer(db_session):
    return await _add_user(
        db_session,
        email="ada@example.com",
        full_name="Ada Obi",
        role=UserRoleType.BUYER.value,
    )


@pytest.fixture
async def other_buyer(db_session):
    return await _add_user(
        db_session,
        email="tunde@example.com",
        full_name="Tunde Bello",
        role=UserRoleType.BUYER.value,
    )


@pytest.fixture
async def admin(db_session):
    return await _add_user(
        db_session,
        email="admin@example.com",
        full_name="Site Admin",
        role=UserRoleType.ADMIN.value,
    )


@pytest.fixture
def make_product(db_session):
    """Factory for listings; defaults to an active retail listing with 10 in stock."""

    async def _make_product(seller: User, **overrides) -> Product:
        values = {
            "seller_id": seller.id,
            "name": "Jollof Rice Tray",
            "status": ProductStatus.ACTIVE.value,
            "retail_price": 1000,
            "retail_unit": "kg",
            "retail_min_quantity": 1,
            "available_stock": 10,
            "unit": "kg",
            "expiry_date": date.today() + timedelta(days=3),
        }
        values.update(overrides)
        product = Product(**values)
        db_session.add(product)
        await db_session.commit()
        return product

    return _make_product


def auth_headers(user: User) -> dict:
    return {"Authorization": f"Bearer {create_access_token(user.id)}"}


@pytest.fixture
async def client(session_factory):
    """HTTP client against the app; each request gets its own session like get_db."""

    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


@pytest.fixture
def headers_for():
    return auth_headers
