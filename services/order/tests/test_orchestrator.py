"""注文受付オーケストレーター（競合・ロールバック・冪等性）"""
import asyncio

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError
from sqlalchemy import text

from order_service import queries
from order_service.results import Accepted, Failed, Rejected
from support import ADDRESS, CountingSessionFactory, FlakyStore


def items(**quantities: int) -> list[dict]:
    return [{"product_id": p, "quantity": q} for p, q in quantities.items()]


@pytest.mark.asyncio
async def test_scenario_single_item_accepted(orchestrator, seed, stock_of):
    await seed(A=5)

    result = await orchestrator.place_order(ADDRESS, items(A=3))

    assert isinstance(result, Accepted)
    assert [(i.product_id, i.quantity) for i in result.order.items] == [("A", 3)]
    assert result.order.delivery_address == ADDRESS
    assert await stock_of("A") == 2


@pytest.mark.asyncio
async def test_scenario_single_item_short(orchestrator, seed, stock_of):
    await seed(A=2)

    result = await orchestrator.place_order(ADDRESS, items(A=3))

    assert isinstance(result, Rejected)
    assert [s.product_id for s in result.shortages] == ["A"]
    assert result.shortages[0].reason == "insufficient stock"
    assert await stock_of("A") == 2


@pytest.mark.asyncio
async def test_scenario_partial_shortage_reserves_nothing(orchestrator, seed, stock_of):
    await seed(A=5, B=1)

    result = await orchestrator.place_order(ADDRESS, items(A=2, B=2))

    assert isinstance(result, Rejected)
    assert [s.product_id for s in result.shortages] == ["B"]
    assert await stock_of("A") == 5
    assert await stock_of("B") == 1


@pytest.mark.asyncio
async def test_scenario_two_concurrent_orders(orchestrator, seed, stock_of):
    await seed(A=5)

    results = await asyncio.gather(
        orchestrator.place_order(ADDRESS, items(A=3)),
        orchestrator.place_order(ADDRESS, items(A=3)),
    )

    accepted = [r for r in results if isinstance(r, Accepted)]
    rejected = [r for r in results if isinstance(r, Rejected)]
    assert len(accepted) == 1
    assert len(rejected) == 1
    assert rejected[0].reason == "insufficient_stock"
    assert [s.product_id for s in rejected[0].shortages] == ["A"]
    assert await stock_of("A") == 2


@pytest.mark.asyncio
async def test_scenario_missing_address_touches_no_store(
    make_orchestrator, session_factory, seed, stock_of, redis
):
    await seed(A=5)
    counting = CountingSessionFactory(session_factory)
    orchestrator = make_orchestrator(factory=counting)

    result = await orchestrator.place_order(None, items(A=3))

    assert isinstance(result, Rejected)
    assert result.reason == "invalid_request"
    assert "delivery address" in result.message
    assert counting.calls == 0
    assert await stock_of("A") == 5
    assert redis.published == []


@pytest.mark.asyncio
async def test_no_overselling_under_contention(orchestrator, seed, stock_of):
    await seed(A=10)

    results = await asyncio.gather(
        *(orchestrator.place_order(ADDRESS, items(A=3)) for _ in range(8))
    )

    accepted = [r for r in results if isinstance(r, Accepted)]
    assert len(accepted) == 3
    assert all(isinstance(r, Rejected) for r in results if r not in accepted)
    assert await stock_of("A") == 10 - 3 * len(accepted)


@pytest.mark.asyncio
async def test_shared_products_in_opposite_order(orchestrator, seed, stock_of):
    await seed(A=3, B=3)
    requests = [
        [{"product_id": "A", "quantity": 1}, {"product_id": "B", "quantity": 1}],
        [{"product_id": "B", "quantity": 1}, {"product_id": "A", "quantity": 1}],
    ] * 3

    results = await asyncio.gather(
        *(orchestrator.place_order(ADDRESS, r) for r in requests)
    )

    assert sum(isinstance(r, Accepted) for r in results) == 3
    assert (await stock_of("A"), await stock_of("B")) == (0, 0)


@pytest.mark.asyncio
async def test_order_keeps_committed_quantities(orchestrator, session_factory, seed):
    await seed(A=5, B=5)
    result = await orchestrator.place_order(ADDRESS, items(A=2, B=1))

    # 注文後の入荷でリードモデルの明細が変わらないこと
    async with session_factory() as session:
        await session.execute(text("UPDATE products SET quantity = quantity + 100"))
        await session.commit()
        stored = await queries.get_order(session, result.order.id)

    assert stored["items"] == [
        {"product_id": "A", "quantity": 2},
        {"product_id": "B", "quantity": 1},
    ]
    assert stored["delivery_address"] == ADDRESS


@pytest.mark.asyncio
async def test_request_id_makes_placement_idempotent(orchestrator, seed, stock_of, redis):
    await seed(A=5)

    first = await orchestrator.place_order(ADDRESS, items(A=2), request_id="req-42")
    again = await orchestrator.place_order(ADDRESS, items(A=2), request_id="req-42")

    assert isinstance(again, Accepted)
    assert again.order == first.order
    assert await stock_of("A") == 3
    assert redis.event_types() == ["OrderPlaced"]


@pytest.mark.asyncio
async def test_concurrent_retries_reserve_once(orchestrator, strategy, seed, stock_of):
    await seed(A=5)

    results = await asyncio.gather(
        *(orchestrator.place_order(ADDRESS, items(A=2), request_id="req-7") for _ in range(3))
    )

    accepted = [r for r in results if isinstance(r, Accepted)]
    assert len({r.order.id for r in accepted}) == 1
    assert await stock_of("A") == 3
    if strategy == "transaction":
        assert len(accepted) == 3
    else:
        # 補償方式では、他の再試行の一時的な減算を見て不足と判定されることがある
        assert all(isinstance(r, (Accepted, Rejected)) for r in results)


@pytest.mark.asyncio
async def test_store_outage_is_a_failure_not_a_shortage(make_orchestrator, seed, stock_of):
    await seed(A=5)
    orchestrator = make_orchestrator(store=FlakyStore(fail_read_on="A"))

    result = await orchestrator.place_order(ADDRESS, items(A=1))

    assert result == Failed(cause="inventory store unavailable")
    assert await stock_of("A") == 5


@pytest.mark.asyncio
async def test_timeout_is_reported_as_failure(make_orchestrator, seed, stock_of):
    await seed(A=5)
    orchestrator = make_orchestrator(store=FlakyStore(decrement_delay=2.0), timeout=0.2)

    result = await orchestrator.place_order(ADDRESS, items(A=1))

    assert result == Failed(cause="inventory store timed out")
    assert await stock_of("A") == 5


@pytest.mark.asyncio
async def test_timeout_releases_items_already_reserved(make_orchestrator, seed, stock_of):
    await seed(A=5, B=5)
    store = FlakyStore(decrement_delay=2.0, slow_on="B")
    orchestrator = make_orchestrator(store=store, timeout=0.3)

    result = await orchestrator.place_order(ADDRESS, items(A=2, B=1))

    assert result == Failed(cause="inventory store timed out")
    assert (await stock_of("A"), await stock_of("B")) == (5, 5)


@pytest.mark.asyncio
async def test_request_id_lookup_is_bounded_by_timeout(
    make_orchestrator, seed, stock_of, monkeypatch
):
    await seed(A=5)

    async def hanging_lookup(session, request_id):
        await asyncio.sleep(3.0)

    monkeypatch.setattr(queries, "get_order_by_request_id", hanging_lookup)
    orchestrator = make_orchestrator(timeout=0.2)

    result = await asyncio.wait_for(
        orchestrator.place_order(ADDRESS, items(A=1), request_id="r1"), 1.0
    )

    assert result == Failed(cause="inventory store timed out")
    assert await stock_of("A") == 5


@pytest.mark.asyncio
async def test_outcome_events_are_published(orchestrator, seed, redis):
    await seed(A=1)

    accepted = await orchestrator.place_order(ADDRESS, items(A=1))
    await orchestrator.place_order(ADDRESS, items(A=1))

    assert redis.event_types() == ["OrderPlaced", "OrderPlacementRejected"]
    channel, placed = redis.published[0]
    assert channel == "order_events"
    assert placed["data"]["order_id"] == accepted.order.id
    assert placed["data"]["items"] == [{"product_id": "A", "quantity": 1}]
    assert redis.published[1][1]["data"]["shortages"][0]["product_id"] == "A"


@pytest.mark.asyncio
async def test_publish_failure_does_not_change_outcome(make_orchestrator, seed, stock_of):
    class BrokenRedis:
        async def publish(self, channel, message):
            raise RedisConnectionError("redis is down")

    await seed(A=5)
    orchestrator = make_orchestrator()
    orchestrator.redis = BrokenRedis()

    result = await orchestrator.place_order(ADDRESS, items(A=1))

    assert isinstance(result, Accepted)
    assert await stock_of("A") == 4
