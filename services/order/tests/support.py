"""テスト用の代役 (Redis・在庫ストア・セッションファクトリ)"""
import asyncio
import json

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import sessionmaker

from order_service.inventory_store import InventoryStore

ADDRESS = {"street": "1 Harbour Road", "city": "Kobe", "postal_code": "650-0042"}


class RecordingRedis:
    """Redis の publish だけを記録する"""

    def __init__(self) -> None:
        self.published: list[tuple[str, dict]] = []

    async def publish(self, channel: str, message: str) -> int:
        self.published.append((channel, json.loads(message)))
        return 1

    def event_types(self) -> list[str]:
        return [m["event_type"] for _, m in self.published]


class CountingSessionFactory:
    def __init__(self, factory: sessionmaker) -> None:
        self.factory = factory
        self.calls = 0

    def __call__(self):
        self.calls += 1
        return self.factory()


def store_error(statement: str = "UPDATE products") -> OperationalError:
    return OperationalError(statement, {}, ConnectionError("connection reset by peer"))


class FlakyStore(InventoryStore):
    """指定した商品で障害を起こす在庫ストア"""

    def __init__(
        self,
        fail_decrement_on: str | None = None,
        fail_read_on: str | None = None,
        fail_increment: bool = False,
        decrement_delay: float = 0.0,
        slow_on: str | None = None,
        read_delay: float = 0.0,
    ) -> None:
        self.fail_decrement_on = fail_decrement_on
        self.fail_read_on = fail_read_on
        self.fail_increment = fail_increment
        self.decrement_delay = decrement_delay
        self.slow_on = slow_on
        self.read_delay = read_delay
        self.cancelled: list[str] = []

    async def get_quantity(self, session, product_id):
        if product_id == self.fail_read_on:
            raise store_error("SELECT quantity FROM products")
        if self.read_delay:
            try:
                await asyncio.sleep(self.read_delay)
            except asyncio.CancelledError:
                self.cancelled.append(product_id)
                raise
        return await super().get_quantity(session, product_id)

    async def conditional_decrement(self, session, product_id, quantity):
        if self.decrement_delay and self.slow_on in (None, product_id):
            await asyncio.sleep(self.decrement_delay)
        if product_id == self.fail_decrement_on:
            raise store_error()
        return await super().conditional_decrement(session, product_id, quantity)

    async def increment(self, session, product_id, quantity):
        if self.fail_increment:
            raise store_error()
        return await super().increment(session, product_id, quantity)
