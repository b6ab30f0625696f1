"""
DCA Order Engine: Data Models

This module defines the data contracts shared by every layer of the engine:
- Order: the stored recurring purchase authorization (immutable record)
- ExecutionPlan: what the validation engine hands to the execution engine
- OrderEvent: lifecycle notifications emitted on commit

Amounts and prices are integers in the smallest unit of their asset.
Timestamps are unix seconds. Addresses are EIP-55 checksum strings.

NO LOGIC beyond normalization and liveness. Validation lives in
validation_engine.py, authorization in authorization.py.
"""

from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Any, Dict, List
from datetime import datetime, timezone
from uuid import uuid4

from eth_utils import is_address, to_checksum_address


ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"
UINT256_MAX = 2 ** 256 - 1

AMOUNT_FIELDS = (
    "budget",
    "interval",
    "amount_per_interval",
    "total_spend",
    "last_price",
    "last_purchase_time",
    "deadline",
)


def normalize_address(value: str) -> str:
    """Return the checksum form of an address; empty values map to ZERO_ADDRESS."""
    if not value:
        return ZERO_ADDRESS
    if not is_address(value):
        raise ValueError(f"Invalid address: {value!r}")
    return to_checksum_address(value)


def same_address(a: str, b: str) -> bool:
    return normalize_address(a) == normalize_address(b)


# ============================================================================
# ORDER
# ============================================================================

@dataclass(frozen=True)
class Order:
    """
    Recurring, budget-capped purchase authorization.

    frozen=True: every mutation goes through dataclasses.replace, so staged
    copies can be thrown away when an operation fails.

    Fields:
    - owner: principal allowed to submit/cancel/reset
    - registry: custodian registry governing the resource
    - resource: custodial resource the order spends from (ZERO = cleared)
    - output_asset: asset accumulated by each purchase
    - budget: max cumulative quote spend (0 = unlimited)
    - interval: minimum seconds between executions
    - amount_per_interval: nominal quote spend per execution
    - total_spend: cumulative quote spent so far
    - last_price: circuit-breaker baseline (quote -> output rate)
    - last_purchase_time: unix time of last execution (0 = never)
    - deadline: unix time after which execution is refused (0 = none)
    """
    owner: str
    registry: str
    resource: str
    output_asset: str
    budget: int = 0
    interval: int = 0
    amount_per_interval: int = 0
    total_spend: int = 0
    last_price: int = 0
    last_purchase_time: int = 0
    deadline: int = 0

    def __post_init__(self):
        for name in ("owner", "registry", "resource", "output_asset"):
            object.__setattr__(self, name, normalize_address(getattr(self, name)))
        for name in AMOUNT_FIELDS:
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int):
                raise TypeError(f"{name} must be an int, got {type(value).__name__}")
            if value < 0:
                raise ValueError(f"{name} must be non-negative")

    def oversized_fields(self) -> List[str]:
        """Amount fields that do not fit in a uint256 word."""
        return [name for name in AMOUNT_FIELDS if getattr(self, name) > UINT256_MAX]

    @property
    def is_live(self) -> bool:
        """A cleared resource reference marks a cancelled/completed order."""
        return self.resource != ZERO_ADDRESS

    @property
    def remaining_budget(self) -> int:
        """Quote amount still spendable; -1 when the budget is unlimited."""
        if self.budget == 0:
            return -1
        return max(self.budget - self.total_spend, 0)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class ExecutionPlan:
    """Validated inputs for a single purchase."""
    effective_amount: int
    min_amount_out: int
    current_price: int


@dataclass(frozen=True)
class PurchaseResult:
    """Outcome of one successful execution."""
    order_id: int
    executor: str
    amount_in: int
    amount_out: int
    total_spend: int
    price: int
    completed: bool = False


# ============================================================================
# NOTIFICATIONS
# ============================================================================

class OrderEventType(Enum):
    """Lifecycle notifications emitted by the engine."""
    ORDER_CREATED = "order_created"
    ORDER_CANCELLED = "order_cancelled"
    PURCHASE_COMPLETED = "purchase_completed"
    ORDER_COMPLETED = "order_completed"
    ORDER_RESET = "order_reset"


@dataclass
class OrderEvent:
    """
    Notification emitted when an operation commits.

    actor is the owner for created/cancelled/reset and the executor for
    purchase/order completion. data carries the event-specific fields
    (amount_out, amount_purchased, total_spend).
    """
    event_type: OrderEventType
    order_id: int
    actor: str
    data: Dict[str, Any] = field(default_factory=dict)
    event_id: str = field(default_factory=lambda: str(uuid4()))
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event_id": self.event_id,
            "event_type": self.event_type.value,
            "order_id": self.order_id,
            "actor": self.actor,
            "data": dict(self.data),
            "timestamp": self.timestamp.isoformat(),
        }
