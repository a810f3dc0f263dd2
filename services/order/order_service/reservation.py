"""
Order Service — 在庫引き当ての確定 (Reservation Committer)

全明細を引き当てるか、1 つも引き当てないか (all-or-nothing)。
各明細は条件付き減算で引き当てるため、同時に走る注文と競合しても
在庫がマイナスになることはない。

  TransactionalCommitter (既定)
    全明細の条件付き減算と注文記録を 1 トランザクションで実行する。
    1 つでも在庫不足ならロールバックするので部分的な減算は残らない。

  CompensatingCommitter
    明細ごとに条件付き減算を commit し、在庫不足・障害・注文記録の失敗時は
    減算済みの明細を逆順に戻す（補償トランザクション）。
    戻せなかった場合は在庫の整合性違反として CRITICAL で記録する。

どちらも商品 ID の昇順で減算する（同じ商品を含む注文同士のデッドロック回避）。
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from collections.abc import Iterable

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import sessionmaker

from . import commands
from .errors import DuplicatePlacementError, InventoryIntegrityError
from .inventory_store import InventoryStore
from .models import LineItem, Order
from .results import Accepted, Failed, PlacementResult, Rejected, Shortage

logger = logging.getLogger(__name__)

STORE_UNAVAILABLE = "inventory store unavailable"
COMPENSATION_INCOMPLETE = "inventory compensation incomplete"


def commit_order(items: Iterable[LineItem]) -> list[LineItem]:
    return sorted(items, key=lambda i: i.product_id)


def in_request_order(order: Order, shortages: list[Shortage]) -> list[Shortage]:
    by_product = {s.product_id: s for s in shortages}
    return [by_product[i.product_id] for i in order.items if i.product_id in by_product]


class ReservationCommitter(ABC):
    def __init__(self, session_factory: sessionmaker, store: InventoryStore) -> None:
        self.session_factory = session_factory
        self.store = store

    @abstractmethod
    async def commit(self, order: Order) -> PlacementResult:
        """注文の全明細を引き当てて記録する。例外は結果に変換して返す"""

    async def _shortage(self, session: AsyncSession, item: LineItem) -> Shortage:
        available = await self.store.get_quantity(session, item.product_id)
        return Shortage(
            product_id=item.product_id,
            requested=item.quantity,
            available=available,
        )


class TransactionalCommitter(ReservationCommitter):
    async def commit(self, order: Order) -> PlacementResult:
        try:
            async with self.session_factory() as session:
                shortages: list[Shortage] = []
                for item in commit_order(order.items):
                    reserved = await self.store.conditional_decrement(
                        session, item.product_id, item.quantity
                    )
                    if not reserved:
                        shortages.append(await self._shortage(session, item))

                if shortages:
                    await session.rollback()
                    return Rejected.out_of_stock(in_request_order(order, shortages))

                await commands.record_order(session, order)
                await session.commit()
        except IntegrityError as e:
            if order.request_id is not None:
                raise DuplicatePlacementError(order.request_id) from e
            logger.exception("Order %s could not be recorded", order.id)
            return Failed(cause=STORE_UNAVAILABLE)
        except (SQLAlchemyError, OSError):
            logger.exception("Reservation transaction for order %s aborted", order.id)
            return Failed(cause=STORE_UNAVAILABLE)

        return Accepted(order=order)


class CompensatingCommitter(ReservationCommitter):
    async def commit(self, order: Order) -> PlacementResult:
        try:
            return await self._commit(order, [])
        except InventoryIntegrityError as e:
            logger.critical(
                "INVENTORY INTEGRITY VIOLATION for order %s: %s", order.id, e
            )
            return Failed(cause=COMPENSATION_INCOMPLETE, integrity_violation=True)

    async def _commit(
        self, order: Order, reserved: list[LineItem]
    ) -> PlacementResult:
        try:
            shortages = await self._reserve_each(order, reserved)
            if shortages:
                await self._release(order, reserved)
                return Rejected.out_of_stock(in_request_order(order, shortages))
            await self._record(order)
        except DuplicatePlacementError:
            await self._release(order, reserved)
            raise
        except (SQLAlchemyError, OSError):
            logger.exception("Reservation for order %s failed, compensating", order.id)
            await self._release(order, reserved)
            return Failed(cause=STORE_UNAVAILABLE)
        except asyncio.CancelledError:
            logger.warning("Reservation for order %s cancelled, compensating", order.id)
            await self._release(order, reserved)
            raise

        return Accepted(order=order)

    async def _reserve_each(
        self, order: Order, reserved: list[LineItem]
    ) -> list[Shortage]:
        """
        昇順に 1 明細ずつ減算して commit する。
        最初の不足以降は減算せず、読み取りだけで不足の全体像を集める。
        """
        shortages: list[Shortage] = []
        for item in commit_order(order.items):
            async with self.session_factory() as session:
                if shortages:
                    shortage = await self._shortage(session, item)
                    if shortage.available is None or shortage.available < item.quantity:
                        shortages.append(shortage)
                    continue

                ok = await self.store.conditional_decrement(
                    session, item.product_id, item.quantity
                )
                if ok:
                    await session.commit()
                    reserved.append(item)
                else:
                    shortages.append(await self._shortage(session, item))
        return shortages

    async def _record(self, order: Order) -> None:
        try:
            async with self.session_factory() as session:
                await commands.record_order(session, order)
                await session.commit()
        except IntegrityError as e:
            if order.request_id is not None:
                raise DuplicatePlacementError(order.request_id) from e
            raise

    async def _release(self, order: Order, reserved: list[LineItem]) -> None:
        """補償トランザクション: 減算済みの明細を逆順に戻す"""
        unreleased: list[tuple[str, int]] = []
        for item in reversed(reserved):
            try:
                async with self.session_factory() as session:
                    restored = await self.store.increment(
                        session, item.product_id, item.quantity
                    )
                    await session.commit()
            except (SQLAlchemyError, OSError):
                logger.exception(
                    "Compensation failed for %s x%d (order %s)",
                    item.product_id,
                    item.quantity,
                    order.id,
                )
                unreleased.append((item.product_id, item.quantity))
                continue
            if not restored:
                logger.error(
                    "Stock for %s x%d was not restored (order %s)",
                    item.product_id,
                    item.quantity,
                    order.id,
                )
                unreleased.append((item.product_id, item.quantity))
        reserved.clear()
        if unreleased:
            raise InventoryIntegrityError(unreleased)


STRATEGIES = {
    "transaction": TransactionalCommitter,
    "compensation": CompensatingCommitter,
}


def build_committer(
    strategy: str,
    session_factory: sessionmaker,
    store: InventoryStore,
) -> ReservationCommitter:
    try:
        committer_cls = STRATEGIES[strategy]
    except KeyError:
        raise ValueError(f"Unknown reservation strategy: {strategy}") from None
    return committer_cls(session_factory, store)
