import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("CREATE_SCHEMA", "false")

import pytest
import pytest_asyncio
from sqlalchemy import event, text
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import NullPool

from order_service import schema
from order_service.inventory_store import InventoryStore
from order_service.orchestrator import OrderPlacementOrchestrator
from order_service.reservation import build_committer
from support import RecordingRedis


@pytest_asyncio.fixture
async def engine(tmp_path):
    # ファイル DB + BEGIN IMMEDIATE で、接続をまたいだ書き込みを直列化する
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'orders.db'}",
        poolclass=NullPool,
        connect_args={"timeout": 30},
    )

    @event.listens_for(engine.sync_engine, "connect")
    def _connect(dbapi_connection, _record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    await schema.create_all(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
def redis():
    return RecordingRedis()


@pytest.fixture
def seed(session_factory):
    async def _seed(**quantities: int) -> None:
        async with session_factory() as session:
            for product_id, quantity in quantities.items():
                await session.execute(
                    text("""
                        INSERT INTO products (id, product_name, price, quantity)
                        VALUES (:id, :name, :price, :qty)
                    """),
                    {
                        "id": product_id,
                        "name": f"Product {product_id}",
                        "price": 9.5,
                        "qty": quantity,
                    },
                )
            await session.commit()

    return _seed


@pytest.fixture
def stock_of(session_factory):
    async def _stock_of(product_id: str) -> int | None:
        async with session_factory() as session:
            return await InventoryStore().get_quantity(session, product_id)

    return _stock_of


@pytest.fixture(params=["transaction", "compensation"])
def strategy(request):
    return request.param


@pytest.fixture
def make_orchestrator(session_factory, redis, strategy):
    def _make(store: InventoryStore | None = None, timeout: float = 10.0, factory=None):
        factory = factory or session_factory
        store = store or InventoryStore()
        return OrderPlacementOrchestrator(
            factory,
            redis,
            committer=build_committer(strategy, factory, store),
            store=store,
            timeout=timeout,
        )

    return _make


@pytest.fixture
def orchestrator(make_orchestrator):
    return make_orchestrator()
