"""
DCA Order Service

Recurring, budget-capped purchase orders that an owner pre-authorizes against
a custodial resource it controls, and that any executor can trigger later
without the owner being online.

ARCHITECTURE:
- order_models.py: Order, ExecutionPlan, PurchaseResult, OrderEvent
- nonce_ledger.py: per-signer replay counters
- typed_signatures.py: stateless domain-separated signing and recovery
- authorization.py: direct and signed authorization paths
- order_store.py: order mapping, id counter, staged unit of work
- validation_engine.py: pre-execution check sequence
- execution_engine.py: DCAOrderEngine (submit, cancel, execute, reset)
- notifications.py: append-only lifecycle notification log
- storage.py: async SQLAlchemy persistence
- collaborators.py: custodian registry, oracle, entrypoint, venue interfaces
- paper_custody.py: deterministic in-memory collaborators

The resource is never custodied by the engine. Every public operation is
all-or-nothing.
"""

from dca_service.errors import (
    DCAOrderError,
    AuthorizationError,
    CallerNotBorrower,
    InvalidSignature,
    IncorrectSignatureNonce,
    OrderValidationError,
    InvalidOrder,
    OrderIsCancelled,
    CreditAccountBorrowerChanged,
    Expired,
    IntervalNotPassed,
    PriceSwingTooLarge,
)
from dca_service.order_models import (
    ZERO_ADDRESS,
    Order,
    ExecutionPlan,
    PurchaseResult,
    OrderEvent,
    OrderEventType,
)
from dca_service.execution_engine import DCAOrderEngine
from dca_service.notifications import OrderEventLog
from dca_service.order_store import OrderStore, StoreSnapshot

__all__ = [
    "DCAOrderError",
    "AuthorizationError",
    "CallerNotBorrower",
    "InvalidSignature",
    "IncorrectSignatureNonce",
    "OrderValidationError",
    "InvalidOrder",
    "OrderIsCancelled",
    "CreditAccountBorrowerChanged",
    "Expired",
    "IntervalNotPassed",
    "PriceSwingTooLarge",
    "ZERO_ADDRESS",
    "Order",
    "ExecutionPlan",
    "PurchaseResult",
    "OrderEvent",
    "OrderEventType",
    "DCAOrderEngine",
    "OrderEventLog",
    "OrderStore",
    "StoreSnapshot",
]
