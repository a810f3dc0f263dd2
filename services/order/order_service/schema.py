"""
Order Service — テーブル定義

PostgreSQL と SQLite の両方で動く DDL のみを使う。
時刻は UTC の ISO-8601 文字列で保存する。
"""

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine

TABLES = [
    """
    CREATE TABLE IF NOT EXISTS products (
        id VARCHAR(64) PRIMARY KEY,
        product_name VARCHAR(255) NOT NULL DEFAULT '',
        price NUMERIC(12, 2) NOT NULL DEFAULT 0,
        quantity INTEGER NOT NULL CHECK (quantity >= 0),
        updated_at VARCHAR(40)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS orders_read_model (
        id VARCHAR(36) PRIMARY KEY,
        request_id VARCHAR(128) UNIQUE,
        delivery_address TEXT NOT NULL,
        created_at VARCHAR(40) NOT NULL,
        updated_at VARCHAR(40) NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS order_items (
        order_id VARCHAR(36) NOT NULL,
        line_no INTEGER NOT NULL,
        product_id VARCHAR(64) NOT NULL,
        quantity INTEGER NOT NULL CHECK (quantity > 0),
        PRIMARY KEY (order_id, line_no)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS event_store (
        aggregate_id VARCHAR(64) NOT NULL,
        aggregate_type VARCHAR(32) NOT NULL,
        event_type VARCHAR(64) NOT NULL,
        event_data TEXT NOT NULL,
        version INTEGER NOT NULL,
        created_at VARCHAR(40) NOT NULL,
        PRIMARY KEY (aggregate_id, version)
    )
    """,
]


async def create_all(engine: AsyncEngine) -> None:
    async with engine.begin() as conn:
        for ddl in TABLES:
            await conn.execute(text(ddl))
