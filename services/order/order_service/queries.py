"""
Order Service — クエリハンドラ (CQRS の Read 側)

注文・商品のリードモデルから読み取る。どれも状態を変更しない。
"""

import json

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession


async def _order_items(session: AsyncSession, order_id: str) -> list[dict]:
    result = await session.execute(
        text("""
            SELECT product_id, quantity FROM order_items
            WHERE order_id = :id
            ORDER BY line_no ASC
        """),
        {"id": order_id},
    )
    return [
        {"product_id": row.product_id, "quantity": row.quantity}
        for row in result.fetchall()
    ]


async def _order_to_dict(session: AsyncSession, row) -> dict:
    return {
        "order_id": row.id,
        "request_id": row.request_id,
        "delivery_address": json.loads(row.delivery_address)
        if isinstance(row.delivery_address, str)
        else row.delivery_address,
        "items": await _order_items(session, row.id),
        "created_at": row.created_at,
        "updated_at": row.updated_at,
    }


async def get_order(session: AsyncSession, order_id: str) -> dict | None:
    result = await session.execute(
        text("SELECT * FROM orders_read_model WHERE id = :id"),
        {"id": order_id},
    )
    row = result.fetchone()
    if not row:
        return None
    return await _order_to_dict(session, row)


async def get_order_by_request_id(session: AsyncSession, request_id: str) -> dict | None:
    """冪等キー (request_id) で既存の注文を探す。"""
    result = await session.execute(
        text("SELECT * FROM orders_read_model WHERE request_id = :rid"),
        {"rid": request_id},
    )
    row = result.fetchone()
    if not row:
        return None
    return await _order_to_dict(session, row)


async def list_orders(session: AsyncSession) -> list[dict]:
    """全注文一覧（新しい順）"""
    result = await session.execute(
        text("SELECT * FROM orders_read_model ORDER BY created_at DESC"),
    )
    return [await _order_to_dict(session, row) for row in result.fetchall()]


def _product_to_dict(row) -> dict:
    return {
        "id": row.id,
        "product_name": row.product_name,
        "quantity": row.quantity,
        "price": float(row.price),
        "updated_at": row.updated_at,
    }


async def get_product(session: AsyncSession, product_id: str) -> dict | None:
    result = await session.execute(
        text("SELECT * FROM products WHERE id = :id"),
        {"id": product_id},
    )
    row = result.fetchone()
    if not row:
        return None
    return _product_to_dict(row)


async def list_products(session: AsyncSession) -> list[dict]:
    result = await session.execute(
        text("SELECT * FROM products ORDER BY product_name, id"),
    )
    return [_product_to_dict(row) for row in result.fetchall()]
