from typing import List, Optional
import logging

from sqlalchemy import Column, DateTime, Integer, JSON, String, delete
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.future import select
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.sql import func

from dca_service.config import get_settings
from dca_service.order_models import Order, OrderEvent
from dca_service.order_store import StoreSnapshot

logger = logging.getLogger(__name__)

Base = declarative_base()

# uint256 amounts do not fit SQLite INTEGER; they are stored as decimal strings.
_AMOUNT_FIELDS = (
    "budget",
    "interval",
    "amount_per_interval",
    "total_spend",
    "last_price",
    "last_purchase_time",
    "deadline",
)

NEXT_ORDER_ID_KEY = "next_order_id"


class OrderRecord(Base):
    __tablename__ = "dca_orders"
    order_id = Column(Integer, primary_key=True)
    owner = Column(String, nullable=False, index=True)
    registry = Column(String, nullable=False)
    resource = Column(String, nullable=False)
    output_asset = Column(String, nullable=False)
    budget = Column(String, nullable=False)
    interval = Column(String, nullable=False)
    amount_per_interval = Column(String, nullable=False)
    total_spend = Column(String, nullable=False)
    last_price = Column(String, nullable=False)
    last_purchase_time = Column(String, nullable=False)
    deadline = Column(String, nullable=False)
    updated_at = Column(DateTime, default=func.now())


class NonceRecord(Base):
    __tablename__ = "dca_nonces"
    signer = Column(String, primary_key=True)
    value = Column(String, nullable=False)


class EngineStateRecord(Base):
    __tablename__ = "dca_engine_state"
    key = Column(String, primary_key=True)
    value = Column(String, nullable=False)


class OrderEventRecord(Base):
    """
    Persisted lifecycle notification.

    event_type is one of order_created, order_cancelled, purchase_completed,
    order_completed, order_reset. data holds the event-specific amounts as
    strings. seq preserves insertion order for events emitted in
    the same commit.
    """
    __tablename__ = "dca_order_events"
    seq = Column(Integer, primary_key=True, autoincrement=True)
    id = Column(String, nullable=False, unique=True)
    order_id = Column(Integer, nullable=False, index=True)
    event_type = Column(String, nullable=False, index=True)
    actor = Column(String, nullable=False)
    data = Column(JSON, nullable=True)
    emitted_at = Column(DateTime, nullable=False)
    created_at = Column(DateTime, default=func.now(), index=True)


async def create_engine_and_sessionmaker(dsn=None):
    dsn = dsn or get_settings().DATABASE_URL
    engine = create_async_engine(dsn, echo=False, future=True)
    async_session = sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)
    return engine, async_session


async def init_models(engine):
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


def _order_to_record(order_id: int, order: Order) -> OrderRecord:
    values = {name: str(getattr(order, name)) for name in _AMOUNT_FIELDS}
    return OrderRecord(
        order_id=order_id,
        owner=order.owner,
        registry=order.registry,
        resource=order.resource,
        output_asset=order.output_asset,
        **values,
    )


def _record_to_order(rec: OrderRecord) -> Order:
    values = {name: int(getattr(rec, name)) for name in _AMOUNT_FIELDS}
    return Order(
        owner=rec.owner,
        registry=rec.registry,
        resource=rec.resource,
        output_asset=rec.output_asset,
        **values,
    )


async def save_state(sessionmaker, snapshot: StoreSnapshot) -> None:
    """
    Replace the persisted engine state with `snapshot`.

    Orders, nonces and the id counter are written in one transaction, so a
    reader never sees a mix of old and new state.
    """
    async with sessionmaker() as session:
        async with session.begin():
            await session.execute(delete(OrderRecord))
            await session.execute(delete(NonceRecord))
            await session.execute(delete(EngineStateRecord))
            for order_id, order in sorted(snapshot.orders.items()):
                session.add(_order_to_record(order_id, order))
            for signer, value in sorted(snapshot.nonces.items()):
                session.add(NonceRecord(signer=signer, value=str(value)))
            session.add(EngineStateRecord(key=NEXT_ORDER_ID_KEY, value=str(snapshot.next_order_id)))
    logger.info(
        "Saved engine state: orders=%d nonces=%d next_order_id=%d",
        len(snapshot.orders), len(snapshot.nonces), snapshot.next_order_id,
    )


async def load_state(sessionmaker) -> StoreSnapshot:
    """
    Load the persisted engine state.

    Returns:
        StoreSnapshot (empty if nothing was saved)
    """
    async with sessionmaker() as session:
        orders = (await session.execute(select(OrderRecord))).scalars().all()
        nonces = (await session.execute(select(NonceRecord))).scalars().all()
        counter = (
            await session.execute(
                select(EngineStateRecord).where(EngineStateRecord.key == NEXT_ORDER_ID_KEY)
            )
        ).scalar_one_or_none()
        return StoreSnapshot(
            orders={rec.order_id: _record_to_order(rec) for rec in orders},
            nonces={rec.signer: int(rec.value) for rec in nonces},
            next_order_id=int(counter.value) if counter else 0,
        )


async def insert_order_event(sessionmaker, event: OrderEvent) -> str:
    """Persist one committed notification. Returns the event id."""
    async with sessionmaker() as session:
        rec = OrderEventRecord(
            id=event.event_id,
            order_id=event.order_id,
            event_type=event.event_type.value,
            actor=event.actor,
            data={k: str(v) for k, v in event.data.items()},
            emitted_at=event.timestamp.replace(tzinfo=None),
        )
        session.add(rec)
        await session.commit()
        return rec.id


async def get_order_events(
    sessionmaker,
    order_id: Optional[int] = None,
    event_type: Optional[str] = None,
    limit: int = 100,
) -> List[dict]:
    """
    Retrieve persisted notifications, oldest first.

    Events sharing a timestamp come back in insertion order.

    Args:
        order_id: Optional order filter
        event_type: Optional event type filter (e.g. "order_completed")
        limit: Max number of events
    """
    async with sessionmaker() as session:
        query = select(OrderEventRecord)
        if order_id is not None:
            query = query.where(OrderEventRecord.order_id == order_id)
        if event_type:
            query = query.where(OrderEventRecord.event_type == event_type)
        query = query.order_by(
            OrderEventRecord.emitted_at.asc(), OrderEventRecord.seq.asc()
        ).limit(limit)
        result = await session.execute(query)
        return [
            {c.name: getattr(rec, c.name) for c in OrderEventRecord.__table__.columns}
            for rec in result.scalars().all()
        ]
