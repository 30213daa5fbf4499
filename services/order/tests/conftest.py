import os
from decimal import Decimal

import pytest
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import NullPool

# main.py は import 時に環境変数を読む
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("ACCOUNT_SERVICE_URL", "http://account-service")
os.environ.setdefault("CATALOG_SERVICE_URL", "http://catalog-service")

from order_service.errors import AccountNotFoundError  # noqa: E402
from order_service.gateways import Account, Product  # noqa: E402
from order_service.service import OrderService  # noqa: E402
from order_service.store import OrderStore, create_schema  # noqa: E402


class FakeAccountGateway:
    def __init__(self, *account_ids: str) -> None:
        self.account_ids = set(account_ids)
        self.calls: list[str] = []

    async def get_account(self, account_id: str) -> Account:
        self.calls.append(account_id)
        if account_id not in self.account_ids:
            raise AccountNotFoundError(account_id)
        return Account(id=account_id, name=f"name-{account_id}")


class FakeCatalogGateway:
    def __init__(self, *products: Product) -> None:
        self.products = {p.id: p for p in products}
        self.calls: list[list[str] | None] = []
        self.error: Exception | None = None

    async def get_products(self, ids=None, query="", skip=0, take=0):
        self.calls.append(ids)
        if self.error is not None:
            raise self.error
        if ids:
            return [self.products[i] for i in ids if i in self.products]
        return list(self.products.values())

    def set_price(self, product_id: str, price: Decimal) -> None:
        old = self.products[product_id]
        self.products[product_id] = Product(old.id, old.name, old.description, price)


class FakeRedis:
    def __init__(self) -> None:
        self.published: list[tuple[str, str]] = []

    async def publish(self, channel: str, message: str) -> int:
        self.published.append((channel, message))
        return 1


def make_product(product_id: str, price: str) -> Product:
    return Product(
        id=product_id,
        name=f"Product {product_id}",
        description=f"Description of {product_id}",
        price=Decimal(price),
    )


async def count_rows(engine, table: str) -> int:
    async with engine.connect() as conn:
        result = await conn.execute(text(f"SELECT COUNT(*) FROM {table}"))
        return result.scalar_one()


@pytest.fixture
async def engine(tmp_path):
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'orders.db'}", poolclass=NullPool
    )
    await create_schema(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def store(engine):
    return OrderStore(sessionmaker(engine, class_=AsyncSession, expire_on_commit=False))


@pytest.fixture
def accounts():
    return FakeAccountGateway("acc1", "acc2")


@pytest.fixture
def catalog():
    return FakeCatalogGateway(
        make_product("p1", "10.0"),
        make_product("p2", "2.50"),
        make_product("p3", "0.99"),
    )


@pytest.fixture
def redis():
    return FakeRedis()


@pytest.fixture
def service(store, accounts, catalog, redis):
    return OrderService(store, accounts, catalog, redis)
