"""
Order Service — 在庫ストア (Inventory Store)

在庫数を変更する唯一の入口。
アプリケーション側ではロックを持たず、条件付き UPDATE の行ロックを
商品ごとの線形化点として使う:

    UPDATE products SET quantity = quantity - :qty
    WHERE id = :id AND quantity >= :qty

更新行数が 1 なら引き当て成功、0 なら在庫不足（何も変わらない）。
トランザクションの境界は呼び出し側が持つ（ここでは commit しない）。
"""

from datetime import datetime, timezone

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession


class InventoryStore:
    async def get_quantity(self, session: AsyncSession, product_id: str) -> int | None:
        result = await session.execute(
            text("SELECT quantity FROM products WHERE id = :id"),
            {"id": product_id},
        )
        row = result.fetchone()
        return None if row is None else row.quantity

    async def conditional_decrement(
        self,
        session: AsyncSession,
        product_id: str,
        quantity: int,
    ) -> bool:
        result = await session.execute(
            text("""
                UPDATE products
                SET quantity = quantity - :qty, updated_at = :now
                WHERE id = :id AND quantity >= :qty
            """),
            {"qty": quantity, "id": product_id, "now": _now()},
        )
        return result.rowcount == 1

    async def increment(
        self,
        session: AsyncSession,
        product_id: str,
        quantity: int,
    ) -> bool:
        """
        補償トランザクション: 引き当て済みの数量を戻す。
        商品行が無く戻せなかった場合は False。
        """
        result = await session.execute(
            text("""
                UPDATE products
                SET quantity = quantity + :qty, updated_at = :now
                WHERE id = :id
            """),
            {"qty": quantity, "id": product_id, "now": _now()},
        )
        return result.rowcount == 1


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()
