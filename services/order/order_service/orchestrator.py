"""
Order Service — 注文受付オーケストレーター

注文受付の唯一の入口。各ステップを順に実行し、結果を
Accepted / Rejected / Failed のいずれかにまとめて返す。

  フロー:
  ┌──────────────────────────────────────────────────────────┐
  │  Received  → Validated  形式チェック（ストアにアクセスしない）│
  │  Validated → Checked    在庫の事前確認（並列・読み取りのみ）  │
  │  Checked   → Reserved   条件付き減算で引き当て                │
  │  Reserved  → Recorded   注文レコードを記録 → Accepted        │
  │                                                              │
  │  形式不正・在庫不足       → Rejected                          │
  │  ストア障害・タイムアウト → Failed                            │
  └──────────────────────────────────────────────────────────┘

インフラの例外はここより外に出さない。
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any
from uuid import uuid4

import redis.asyncio as aioredis
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from . import commands, queries
from .availability import AvailabilityChecker
from .errors import DuplicatePlacementError, InvalidPlacementRequest, StoreUnavailableError
from .events import OrderPlacementRejected
from .inventory_store import InventoryStore
from .models import LineItem, Order
from .reservation import STORE_UNAVAILABLE, ReservationCommitter, TransactionalCommitter
from .results import Accepted, Failed, PlacementResult, Rejected
from .validation import validate_placement

logger = logging.getLogger(__name__)

STORE_TIMED_OUT = "inventory store timed out"


class OrderPlacementOrchestrator:
    """注文受付のオーケストレーター"""

    def __init__(
        self,
        session_factory: sessionmaker,
        redis: aioredis.Redis | None,
        committer: ReservationCommitter | None = None,
        store: InventoryStore | None = None,
        timeout: float = 10.0,
    ):
        self.session_factory = session_factory
        self.redis = redis
        self.store = store or InventoryStore()
        self.checker = AvailabilityChecker(session_factory, self.store)
        self.committer = committer or TransactionalCommitter(session_factory, self.store)
        self.timeout = timeout

    async def place_order(
        self,
        delivery_address: Any,
        line_items: Any,
        request_id: str | None = None,
    ) -> PlacementResult:
        """
        注文を受け付ける。

        request_id（冪等キー）が指定され、既にその注文があれば
        在庫を再度引き当てずに同じ注文を返す。
        """
        ref = request_id or "-"
        logger.debug("Placement %s: Received", ref)

        # ── Validated ──────────────────────────────
        try:
            address, items = validate_placement(delivery_address, line_items)
        except InvalidPlacementRequest as e:
            logger.info("Placement %s rejected: %s", ref, e)
            return Rejected.invalid(str(e))
        logger.debug("Placement %s: Validated (%d items)", ref, len(items))

        try:
            if request_id is not None:
                existing = await self._find_existing(request_id)
                if existing is not None:
                    logger.info("Placement %s replayed as order %s", ref, existing.id)
                    return Accepted(order=existing)

            # ── Checked ────────────────────────────
            availability = await asyncio.wait_for(
                self.checker.check(items), self.timeout
            )
            shortages = [a.to_shortage() for a in availability if not a.sufficient]
            if shortages:
                result = Rejected.out_of_stock(shortages)
            else:
                logger.debug("Placement %s: Checked", ref)

                # ── Reserved → Recorded ────────────
                order = Order(
                    id=str(uuid4()),
                    delivery_address=address,
                    items=tuple(items),
                    created_at=datetime.now(timezone.utc).isoformat(),
                    request_id=request_id,
                )
                result = await self._commit(order)

            # 同じ request_id の再試行が並行して確定していれば、その注文を返す
            if request_id is not None and (result is None or isinstance(result, Rejected)):
                existing = await self._find_existing(request_id)
                if existing is not None:
                    logger.info("Placement %s raced, returning order %s", ref, existing.id)
                    return Accepted(order=existing)
            if result is None:
                logger.error("Order for request %s vanished after a key clash", ref)
                return Failed(cause=STORE_UNAVAILABLE)
        except (asyncio.TimeoutError, TimeoutError):
            logger.error("Placement %s timed out waiting on the inventory store", ref)
            return Failed(cause=STORE_TIMED_OUT)
        except (StoreUnavailableError, SQLAlchemyError, OSError):
            logger.exception("Placement %s failed", ref)
            return Failed(cause=STORE_UNAVAILABLE)

        if isinstance(result, Accepted):
            logger.info(
                "Order %s placed: %s",
                result.order.id,
                ", ".join(f"{i.product_id}x{i.quantity}" for i in result.order.items),
            )
        elif isinstance(result, Rejected):
            logger.info(
                "Placement %s rejected: insufficient stock for %s",
                ref,
                ", ".join(s.product_id for s in result.shortages),
            )
        await self._publish(result, request_id)
        return result

    async def _commit(self, order: Order) -> PlacementResult | None:
        """None は同じ request_id の注文が先に記録されたことを表す"""
        try:
            return await asyncio.wait_for(self.committer.commit(order), self.timeout)
        except DuplicatePlacementError:
            logger.debug("Order %s lost the race for request %s", order.id, order.request_id)
            return None

    async def _find_existing(self, request_id: str) -> Order | None:
        found = await asyncio.wait_for(
            self._load_by_request_id(request_id), self.timeout
        )
        if found is None:
            return None
        return Order(
            id=found["order_id"],
            delivery_address=found["delivery_address"],
            items=tuple(LineItem(**i) for i in found["items"]),
            created_at=found["created_at"],
            request_id=found["request_id"],
        )

    async def _load_by_request_id(self, request_id: str) -> dict | None:
        async with self.session_factory() as session:
            return await queries.get_order_by_request_id(session, request_id)

    async def _publish(
        self,
        result: PlacementResult,
        request_id: str | None,
    ) -> None:
        if isinstance(result, Accepted):
            await commands.publish_event(
                self.redis, "OrderPlaced", commands.order_placed_data(result.order)
            )
        elif isinstance(result, Rejected):
            event = OrderPlacementRejected(
                request_id=request_id,
                shortages=[s.model_dump() for s in result.shortages],
                timestamp=datetime.now(timezone.utc).isoformat(),
            )
            await commands.publish_event(
                self.redis, "OrderPlacementRejected", event.model_dump()
            )
