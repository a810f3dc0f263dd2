"""
Order Service — 在庫確認 (Availability Checker)

読み取り専用の事前チェック。明細ごとに別セッションで並列に読む。
結果は助言的なもので、確定時には reservation.py が条件付き UPDATE で
必ず再確認する。
"""

import asyncio
import logging
from collections.abc import Sequence

from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from .errors import StoreUnavailableError
from .inventory_store import InventoryStore
from .models import LineItem
from .results import Shortage

logger = logging.getLogger(__name__)


class ItemAvailability(BaseModel):
    product_id: str
    requested: int
    available: int | None
    sufficient: bool

    def to_shortage(self) -> Shortage:
        return Shortage(
            product_id=self.product_id,
            requested=self.requested,
            available=self.available,
        )


class AvailabilityChecker:
    def __init__(self, session_factory: sessionmaker, store: InventoryStore) -> None:
        self.session_factory = session_factory
        self.store = store

    async def check(self, items: Sequence[LineItem]) -> list[ItemAvailability]:
        """
        各明細の在庫を確認する（入力と同じ順序で返す）。

        存在しない商品は在庫不足として扱う。
        """
        tasks = [asyncio.ensure_future(self._check_one(item)) for item in items]
        try:
            return list(await asyncio.gather(*tasks))
        except BaseException:
            # 1 件でも失敗したら残りの読み取りも止める
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

    async def _check_one(self, item: LineItem) -> ItemAvailability:
        try:
            async with self.session_factory() as session:
                available = await self.store.get_quantity(session, item.product_id)
        except (SQLAlchemyError, OSError) as e:
            raise StoreUnavailableError(f"Availability read failed for {item.product_id}") from e

        sufficient = available is not None and available >= item.quantity
        if not sufficient:
            logger.debug(
                "Insufficient stock for %s: requested=%d available=%s",
                item.product_id,
                item.quantity,
                available,
            )
        return ItemAvailability(
            product_id=item.product_id,
            requested=item.quantity,
            available=available,
            sufficient=sufficient,
        )
