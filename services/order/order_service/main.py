"""
Order Service — FastAPI エントリーポイント

CQRS パターンに従い、Command (POST/PATCH/DELETE) と Query (GET) の
エンドポイントを分離する。注文受付は在庫の引き当てと同時に確定する。
"""

import logging
from contextlib import asynccontextmanager
from typing import Any
from uuid import UUID

import redis.asyncio as aioredis
from fastapi import Depends, FastAPI, HTTPException
from pydantic import AliasChoices, BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker

from . import commands, config, event_store, queries, schema
from .errors import InvalidPlacementRequest
from .inventory_store import InventoryStore
from .orchestrator import OrderPlacementOrchestrator
from .reservation import build_committer
from .results import Accepted, Rejected

logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

engine = create_async_engine(config.DATABASE_URL, echo=False)
async_session = sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
redis_pool: aioredis.Redis | None = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    global redis_pool
    if config.CREATE_SCHEMA:
        await schema.create_all(engine)
    redis_pool = aioredis.from_url(config.REDIS_URL, decode_responses=True)
    logger.info("Order service started (strategy=%s)", config.RESERVATION_STRATEGY)
    yield
    await redis_pool.aclose()
    await engine.dispose()


app = FastAPI(title="Order Service", lifespan=lifespan)


# ── Dependencies ─────────────────────────────────


def get_session_factory() -> sessionmaker:
    return async_session


def get_redis() -> aioredis.Redis | None:
    return redis_pool


def get_orchestrator(
    session_factory: sessionmaker = Depends(get_session_factory),
    redis: aioredis.Redis | None = Depends(get_redis),
) -> OrderPlacementOrchestrator:
    store = InventoryStore()
    return OrderPlacementOrchestrator(
        session_factory,
        redis,
        committer=build_committer(config.RESERVATION_STRATEGY, session_factory, store),
        store=store,
        timeout=config.STORE_TIMEOUT_SECONDS,
    )


# ── Request Models ───────────────────────────────


class LineItemRequest(BaseModel):
    product_id: Any = Field(
        default=None, validation_alias=AliasChoices("product_id", "productId")
    )
    quantity: Any = None


class PlaceOrderRequest(BaseModel):
    delivery_address: Any = Field(
        default=None,
        validation_alias=AliasChoices("delivery_address", "deliveryAddress"),
    )
    line_items: list[LineItemRequest] | None = Field(
        default=None, validation_alias=AliasChoices("line_items", "products")
    )
    request_id: str | None = Field(
        default=None, validation_alias=AliasChoices("request_id", "requestId")
    )


class UpdateOrderRequest(BaseModel):
    delivery_address: Any = Field(
        default=None,
        validation_alias=AliasChoices("delivery_address", "deliveryAddress"),
    )


# ── Command Endpoints (Write 側) ─────────────────


@app.post("/commands/orders", status_code=201)
async def cmd_place_order(
    req: PlaceOrderRequest,
    orchestrator: OrderPlacementOrchestrator = Depends(get_orchestrator),
):
    """注文受付コマンド（在庫の引き当てと注文記録）"""
    items = (
        [item.model_dump() for item in req.line_items]
        if req.line_items is not None
        else None
    )
    result = await orchestrator.place_order(req.delivery_address, items, req.request_id)

    if isinstance(result, Accepted):
        return result.order.to_dict()
    if isinstance(result, Rejected):
        if result.reason == "invalid_request":
            raise HTTPException(status_code=400, detail={"message": result.message})
        raise HTTPException(
            status_code=409,
            detail={
                "message": result.message,
                "errors": [s.model_dump() for s in result.shortages],
            },
        )
    raise HTTPException(
        status_code=503,
        detail={"message": "Failed to create a new order", "cause": result.cause},
    )


@app.patch("/commands/orders/{order_id}")
async def cmd_update_order(
    order_id: UUID,
    req: UpdateOrderRequest,
    session_factory: sessionmaker = Depends(get_session_factory),
    redis: aioredis.Redis | None = Depends(get_redis),
):
    """配送先の変更コマンド（明細・在庫は変更しない）"""
    async with session_factory() as session:
        try:
            agg = await commands.update_delivery_address(
                session, redis, str(order_id), req.delivery_address
            )
        except InvalidPlacementRequest as e:
            raise HTTPException(status_code=400, detail={"message": str(e)})
        if agg is None:
            raise HTTPException(404, "Order not found")
        return await queries.get_order(session, str(order_id))


@app.delete("/commands/orders/{order_id}")
async def cmd_delete_order(
    order_id: UUID,
    session_factory: sessionmaker = Depends(get_session_factory),
    redis: aioredis.Redis | None = Depends(get_redis),
):
    """注文削除コマンド（在庫は戻さない）"""
    async with session_factory() as session:
        if not await commands.delete_order(session, redis, str(order_id)):
            raise HTTPException(404, "Order not found")
    return {"order_id": str(order_id), "deleted": True}


# ── Query Endpoints (Read 側) ────────────────────


@app.get("/queries/orders")
async def query_list_orders(session_factory: sessionmaker = Depends(get_session_factory)):
    """全注文をリードモデルから取得（新しい順）"""
    async with session_factory() as session:
        return await queries.list_orders(session)


@app.get("/queries/orders/{order_id}")
async def query_get_order(
    order_id: UUID,
    session_factory: sessionmaker = Depends(get_session_factory),
):
    async with session_factory() as session:
        order = await queries.get_order(session, str(order_id))
        if not order:
            raise HTTPException(404, "Order not found")
        return order


@app.get("/queries/products")
async def query_list_products(session_factory: sessionmaker = Depends(get_session_factory)):
    async with session_factory() as session:
        return await queries.list_products(session)


@app.get("/queries/products/{product_id}")
async def query_get_product(
    product_id: str,
    session_factory: sessionmaker = Depends(get_session_factory),
):
    async with session_factory() as session:
        product = await queries.get_product(session, product_id)
        if not product:
            raise HTTPException(404, "Product not found")
        return product


# ── Event Store (デバッグ用) ─────────────────────


@app.get("/events")
async def get_all_events(session_factory: sessionmaker = Depends(get_session_factory)):
    async with session_factory() as session:
        return await event_store.load_all_events(session)


@app.get("/events/{aggregate_id}")
async def get_aggregate_events(
    aggregate_id: str,
    session_factory: sessionmaker = Depends(get_session_factory),
):
    async with session_factory() as session:
        return await event_store.load_events(session, aggregate_id)


@app.get("/health")
async def health():
    return {"status": "ok", "service": "order-service"}
