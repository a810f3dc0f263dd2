"""
Order Service — コマンドハンドラ (CQRS の Write 側)

注文レコードの作成・配送先変更・削除。
どのコマンドも在庫には触れない（在庫の変更は reservation.py のみ）。
"""

import json
import logging
from collections.abc import Mapping
from datetime import datetime, timezone
from typing import Any

import redis.asyncio as aioredis
from redis.exceptions import RedisError
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from . import event_store
from .aggregate import OrderAggregate
from .errors import InvalidPlacementRequest
from .events import OrderDeleted, OrderDeliveryAddressUpdated, OrderItemData, OrderPlaced
from .models import Order
from .validation import validate_address

logger = logging.getLogger(__name__)

ORDER_EVENTS_CHANNEL = "order_events"


async def record_order(session: AsyncSession, order: Order) -> int:
    """
    注文レコードを書き込む（commit は呼び出し側）。

    1. OrderPlaced イベントをバージョン 1 で追記
    2. リードモデル (orders_read_model / order_items) を INSERT
    """
    event_data = order_placed_data(order)
    version = await event_store.append_event(
        session, order.id, "Order", "OrderPlaced", event_data, 0
    )

    await session.execute(
        text("""
            INSERT INTO orders_read_model
                (id, request_id, delivery_address, created_at, updated_at)
            VALUES
                (:id, :request_id, :address, :now, :now)
        """),
        {
            "id": order.id,
            "request_id": order.request_id,
            "address": json.dumps(order.delivery_address),
            "now": order.created_at,
        },
    )
    for line_no, item in enumerate(order.items, start=1):
        await session.execute(
            text("""
                INSERT INTO order_items (order_id, line_no, product_id, quantity)
                VALUES (:order_id, :line_no, :product_id, :quantity)
            """),
            {
                "order_id": order.id,
                "line_no": line_no,
                "product_id": item.product_id,
                "quantity": item.quantity,
            },
        )
    return version


def order_placed_data(order: Order) -> dict:
    return OrderPlaced(
        order_id=order.id,
        request_id=order.request_id,
        delivery_address=dict(order.delivery_address),
        items=[
            OrderItemData(product_id=i.product_id, quantity=i.quantity)
            for i in order.items
        ],
        timestamp=order.created_at,
    ).model_dump()


async def update_delivery_address(
    session: AsyncSession,
    redis: aioredis.Redis | None,
    order_id: str,
    address_patch: Any,
) -> OrderAggregate | None:
    """
    配送先の変更コマンド

    既存の配送先に patch を浅くマージする。明細は変更しない。
    注文が存在しなければ None。
    """
    events = await event_store.load_events(session, order_id)
    agg = OrderAggregate.from_events(events)
    if not agg.exists:
        return None

    if not address_patch or not isinstance(address_patch, Mapping):
        raise InvalidPlacementRequest("Please provide a valid delivery address")
    merged = validate_address({**agg.delivery_address, **address_patch})

    now = datetime.now(timezone.utc).isoformat()
    event_data = OrderDeliveryAddressUpdated(
        order_id=order_id, delivery_address=merged, timestamp=now
    ).model_dump()
    version = await event_store.append_event(
        session, order_id, "Order", "OrderDeliveryAddressUpdated", event_data, agg.version
    )

    await session.execute(
        text("""
            UPDATE orders_read_model
            SET delivery_address = :address, updated_at = :now
            WHERE id = :id
        """),
        {"address": json.dumps(merged), "now": now, "id": order_id},
    )
    await session.commit()

    await publish_event(redis, "OrderDeliveryAddressUpdated", event_data)

    agg.apply_delivery_address_updated(event_data)
    agg.version = version
    return agg


async def delete_order(
    session: AsyncSession,
    redis: aioredis.Redis | None,
    order_id: str,
) -> bool:
    """
    注文削除コマンド

    リードモデルから取り除き OrderDeleted を記録する。在庫は戻さない。
    """
    events = await event_store.load_events(session, order_id)
    agg = OrderAggregate.from_events(events)
    if not agg.exists:
        return False

    now = datetime.now(timezone.utc).isoformat()
    event_data = OrderDeleted(order_id=order_id, timestamp=now).model_dump()
    await event_store.append_event(
        session, order_id, "Order", "OrderDeleted", event_data, agg.version
    )
    await session.execute(
        text("DELETE FROM order_items WHERE order_id = :id"), {"id": order_id}
    )
    await session.execute(
        text("DELETE FROM orders_read_model WHERE id = :id"), {"id": order_id}
    )
    await session.commit()

    await publish_event(redis, "OrderDeleted", event_data)
    return True


async def publish_event(
    redis: aioredis.Redis | None,
    event_type: str,
    data: dict,
) -> None:
    """
    Redis Pub/Sub でイベントを発行する。

    発行は状態の確定後に行うため、失敗してもコマンドの結果は変えない。
    """
    if redis is None:
        return
    try:
        await redis.publish(
            ORDER_EVENTS_CHANNEL,
            json.dumps({"event_type": event_type, "data": data}, default=str),
        )
    except RedisError:
        logger.warning("Failed to publish %s", event_type, exc_info=True)
