"""
Order Store

The sole durable state of the engine:
- orders keyed by a sequential integer id (never reused)
- the id counter (starts at 0)
- per-signer nonce counters (NonceLedger)

ALL-OR-NOTHING WRITES:
Public operations never write to the store directly. They open a
transaction(), stage every mutation on the yielded UnitOfWork, and the
unit of work is applied in one step only if the block exits cleanly.
Any exception discards the staged orders, id allocation, nonce
consumption and notifications together.
"""

from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterator, List, Optional
import logging
import threading

from dca_service.errors import IncorrectSignatureNonce
from dca_service.nonce_ledger import NonceLedger
from dca_service.order_models import Order, OrderEvent, normalize_address


logger = logging.getLogger(__name__)

_CLEARED = object()


@dataclass
class StoreSnapshot:
    """Plain copy of committed state, used for persistence."""
    orders: Dict[int, Order] = field(default_factory=dict)
    nonces: Dict[str, int] = field(default_factory=dict)
    next_order_id: int = 0


class UnitOfWork:
    """
    Scratch layer over the committed store.

    Reads see staged values first. Nothing is visible to other operations
    until OrderStore commits this unit of work.
    """

    def __init__(self, store: "OrderStore"):
        self._store = store
        self._orders: Dict[int, object] = {}
        self._nonces: Dict[str, int] = {}
        self._allocated = 0
        self.events: List[OrderEvent] = []

    # --- orders -----------------------------------------------------------

    def get(self, order_id: int) -> Optional[Order]:
        """Return the live order for `order_id`, or None if absent/cleared."""
        if order_id in self._orders:
            staged = self._orders[order_id]
            return None if staged is _CLEARED else staged
        order = self._store._orders.get(order_id)
        if order is None or not order.is_live:
            return None
        return order

    def put(self, order_id: int, order: Order) -> None:
        self._orders[order_id] = order

    def clear(self, order_id: int) -> None:
        self._orders[order_id] = _CLEARED

    def allocate_id(self) -> int:
        order_id = self._store._next_order_id + self._allocated
        self._allocated += 1
        return order_id

    # --- nonces -----------------------------------------------------------

    def nonce_of(self, signer: str) -> int:
        key = normalize_address(signer)
        if key in self._nonces:
            return self._nonces[key]
        return self._store.nonces.current(key)

    def consume_nonce(self, signer: str, supplied: Optional[int] = None) -> int:
        """
        Consume the signer's current nonce.

        If `supplied` is given it must equal the current counter.

        Raises:
            IncorrectSignatureNonce: supplied nonce does not match
        """
        key = normalize_address(signer)
        current = self.nonce_of(key)
        if supplied is not None and supplied != current:
            raise IncorrectSignatureNonce(key, current, supplied)
        self._nonces[key] = current + 1
        return current

    # --- notifications ----------------------------------------------------

    def emit(self, event: OrderEvent) -> None:
        self.events.append(event)


class OrderStore:
    """Committed orders, id counter and nonce ledger."""

    def __init__(self, snapshot: Optional[StoreSnapshot] = None):
        self._orders: Dict[int, Order] = {}
        self._next_order_id = 0
        self.nonces = NonceLedger()
        self._lock = threading.RLock()
        self._publishers: List[Callable[[OrderEvent], None]] = []
        if snapshot is not None:
            self.restore(snapshot)

    def add_publisher(self, publisher: Callable[[OrderEvent], None]) -> None:
        """Register a callable that receives every committed notification."""
        self._publishers.append(publisher)

    @contextmanager
    def transaction(self) -> Iterator[UnitOfWork]:
        """
        Stage mutations and commit them atomically on clean exit.

        Notifications are published after the state is applied. A failing
        publisher is logged and skipped; it never undoes the commit.
        """
        with self._lock:
            uow = UnitOfWork(self)
            yield uow
            self._commit(uow)
        for event in uow.events:
            for publish in self._publishers:
                try:
                    publish(event)
                except Exception as e:
                    logger.error(
                        "Publisher failed after commit: event=%s order_id=%s error=%s",
                        event.event_type.value, event.order_id, e,
                    )

    def _commit(self, uow: UnitOfWork) -> None:
        for order_id, staged in uow._orders.items():
            if staged is _CLEARED:
                self._orders.pop(order_id, None)
            else:
                self._orders[order_id] = staged
        for signer, value in uow._nonces.items():
            self.nonces.advance_to(signer, value)
        self._next_order_id += uow._allocated
        if uow._orders or uow._nonces or uow._allocated:
            logger.debug(
                "Committed unit of work: orders=%s nonces=%s allocated=%d",
                sorted(uow._orders), sorted(uow._nonces), uow._allocated,
            )

    # --- read-only views --------------------------------------------------

    def get(self, order_id: int) -> Optional[Order]:
        order = self._orders.get(order_id)
        if order is None or not order.is_live:
            return None
        return order

    def live_orders(self) -> Dict[int, Order]:
        with self._lock:
            return {oid: o for oid, o in self._orders.items() if o.is_live}

    @property
    def next_order_id(self) -> int:
        return self._next_order_id

    # --- persistence ------------------------------------------------------

    def snapshot(self) -> StoreSnapshot:
        with self._lock:
            return StoreSnapshot(
                orders=self.live_orders(),
                nonces=dict(self.nonces.items()),
                next_order_id=self._next_order_id,
            )

    def restore(self, snapshot: StoreSnapshot) -> None:
        with self._lock:
            self._orders = {oid: o for oid, o in snapshot.orders.items() if o.is_live}
            self._next_order_id = snapshot.next_order_id
            self.nonces = NonceLedger(snapshot.nonces)
