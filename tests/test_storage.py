import pytest
import pytest_asyncio

from dca_service import storage as st
from dca_service.config import get_settings
from dca_service.order_models import Order, OrderEvent, OrderEventType
from dca_service.order_store import OrderStore, StoreSnapshot
from dca_service.paper_custody import derive_address

from paper_world import BASE_PRICE, DAY, USDC_UNIT, WETH

pytestmark = pytest.mark.asyncio

OWNER = derive_address("storage-owner")


@pytest_asyncio.fixture(scope="function")
async def db(tmp_path):
    engine, sessionmaker = await st.create_engine_and_sessionmaker(
        f"sqlite+aiosqlite:///{tmp_path / 'dca.db'}"
    )
    await st.init_models(engine)
    yield sessionmaker
    await engine.dispose()


def _order(**overrides):
    fields = dict(
        owner=OWNER,
        registry=derive_address("storage-registry"),
        resource=derive_address("storage-resource"),
        output_asset=WETH,
        budget=1000 * USDC_UNIT,
        interval=DAY,
        amount_per_interval=100 * USDC_UNIT,
        last_price=BASE_PRICE,
    )
    fields.update(overrides)
    return Order(**fields)


async def test_empty_database_loads_empty_snapshot(db):
    snap = await st.load_state(db)
    assert snap.orders == {}
    assert snap.nonces == {}
    assert snap.next_order_id == 0


async def test_save_and_load_round_trip(db):
    # uint256-sized values survive the string columns
    big = _order(budget=2 ** 255, last_price=2 ** 200)
    snap = StoreSnapshot(
        orders={0: _order(), 3: big},
        nonces={OWNER: 5},
        next_order_id=4,
    )
    await st.save_state(db, snap)
    loaded = await st.load_state(db)
    assert loaded.orders == snap.orders
    assert loaded.nonces == {OWNER: 5}
    assert loaded.next_order_id == 4


async def test_save_replaces_previous_state(db):
    await st.save_state(db, StoreSnapshot(orders={0: _order(), 1: _order()}, next_order_id=2))
    await st.save_state(db, StoreSnapshot(orders={1: _order(total_spend=100 * USDC_UNIT)}, next_order_id=2))
    loaded = await st.load_state(db)
    assert list(loaded.orders) == [1]
    assert loaded.orders[1].total_spend == 100 * USDC_UNIT


async def test_store_restored_from_database(db):
    store = OrderStore()
    with store.transaction() as uow:
        uow.put(uow.allocate_id(), _order())
        uow.put(uow.allocate_id(), _order(interval=2 * DAY))
        uow.consume_nonce(OWNER)
    with store.transaction() as uow:
        uow.clear(0)

    await st.save_state(db, store.snapshot())
    restored = OrderStore(await st.load_state(db))
    assert restored.get(0) is None
    assert restored.get(1) == _order(interval=2 * DAY)
    assert restored.next_order_id == 2
    assert restored.nonces.current(OWNER) == 1


async def test_insert_and_query_order_events(db):
    created = OrderEvent(OrderEventType.ORDER_CREATED, 0, OWNER)
    purchase = OrderEvent(
        OrderEventType.PURCHASE_COMPLETED, 0, OWNER,
        {"amount_in": 100 * USDC_UNIT, "amount_out": 5 * 10 ** 16},
    )
    other = OrderEvent(OrderEventType.ORDER_CREATED, 1, OWNER)
    for event in (created, purchase, other):
        event_id = await st.insert_order_event(db, event)
        assert event_id == event.event_id

    rows = await st.get_order_events(db, order_id=0)
    assert [r["event_type"] for r in rows] == ["order_created", "purchase_completed"]
    assert rows[1]["data"] == {"amount_in": str(100 * USDC_UNIT), "amount_out": str(5 * 10 ** 16)}

    created_rows = await st.get_order_events(db, event_type="order_created")
    assert {r["order_id"] for r in created_rows} == {0, 1}

    assert len(await st.get_order_events(db, limit=1)) == 1


async def test_engine_notifications_persisted(db, engine, make_order, owner_account, executor):
    oid = engine.submit_order(make_order(), owner_account.address)
    engine.execute_order(oid, executor)
    for event in engine.events_for(oid):
        await st.insert_order_event(db, event)

    rows = await st.get_order_events(db, order_id=oid)
    assert [r["event_type"] for r in rows] == ["order_created", "purchase_completed"]
    assert rows[-1]["actor"] == executor

    await st.save_state(db, engine.store.snapshot())
    loaded = await st.load_state(db)
    assert loaded.orders[oid] == engine.get_order(oid)


async def test_same_timestamp_events_keep_insertion_order(db):
    purchase = OrderEvent(OrderEventType.PURCHASE_COMPLETED, 0, OWNER, {"amount_in": 1})
    completed = OrderEvent(
        OrderEventType.ORDER_COMPLETED, 0, OWNER, {"total_spend": 1},
        timestamp=purchase.timestamp,
    )
    reset = OrderEvent(OrderEventType.ORDER_RESET, 0, OWNER, timestamp=purchase.timestamp)
    for event in (completed, purchase, reset):
        await st.insert_order_event(db, event)

    rows = await st.get_order_events(db, order_id=0)
    assert [r["event_type"] for r in rows] == ["order_completed", "purchase_completed", "order_reset"]
    assert [r["seq"] for r in rows] == sorted(r["seq"] for r in rows)


async def test_database_url_read_from_settings(tmp_path, monkeypatch):
    path = tmp_path / "from_env.db"
    monkeypatch.setenv("DCA_DATABASE_URL", f"sqlite+aiosqlite:///{path}")
    get_settings.cache_clear()
    try:
        engine, sessionmaker = await st.create_engine_and_sessionmaker()
        assert engine.url.database == str(path)
        await st.init_models(engine)
        await st.save_state(sessionmaker, StoreSnapshot(orders={0: _order()}, next_order_id=1))
        await engine.dispose()
    finally:
        get_settings.cache_clear()
    assert path.exists()
