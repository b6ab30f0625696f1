"""
Validation Engine

Side-effect-free check sequence run at the start of every execution attempt.
It reads the order, the custodian registry and the price oracle, and either
raises a named validation error or returns an ExecutionPlan.

CHECK ORDER (first failure wins):
1. Existence            -> OrderIsCancelled
2. Ownership            -> CreditAccountBorrowerChanged
3. Deadline             -> Expired
4. Interval gating      -> IntervalNotPassed
5. Price-swing breaker  -> PriceSwingTooLarge
6. Budget clamp         (effective spend, stored order untouched)
7. Slippage bound       (minimum acceptable output)

Guards fail CLOSED: nothing is written here.
"""

from typing import Optional
import logging

from dca_service.collaborators import CustodianRegistry, ResourceNotFound
from dca_service.errors import (
    CreditAccountBorrowerChanged,
    Expired,
    IntervalNotPassed,
    OrderIsCancelled,
    PriceSwingTooLarge,
)
from dca_service.order_models import ExecutionPlan, Order, normalize_address
from dca_service.price_snapshot import get_current_price, min_amount_out, price_swing_pct


logger = logging.getLogger(__name__)


class ValidationEngine:
    """
    Pre-execution gate.

    Individual checks are exposed as static methods so they can be exercised
    without a registry or oracle.
    """

    def __init__(
        self,
        quote_asset: str,
        quote_decimals: int,
        max_price_swing_pct: int = 10,
        slippage_numerator: int = 9900,
        slippage_denominator: int = 10000,
    ):
        self.quote_asset = normalize_address(quote_asset)
        self.quote_decimals = quote_decimals
        self.max_price_swing_pct = max_price_swing_pct
        self.slippage_numerator = slippage_numerator
        self.slippage_denominator = slippage_denominator

    def validate(
        self,
        order_id: int,
        order: Optional[Order],
        registry: CustodianRegistry,
        now: int,
    ) -> ExecutionPlan:
        """
        Run every check against `order` at time `now`.

        Returns:
            ExecutionPlan with effective spend, minimum output and the price used

        Raises:
            OrderValidationError subclass naming the first failed check
        """
        self.check_exists(order_id, order)
        self.check_controller(order_id, order, registry)
        self.check_deadline(order_id, order, now)
        self.check_interval(order_id, order, now)

        oracle = registry.oracle_of(order.resource)
        current_price = get_current_price(
            oracle, self.quote_asset, self.quote_decimals, order.output_asset
        )
        self.check_price_swing(order_id, order, current_price, self.max_price_swing_pct)

        effective = self.effective_amount(order)
        min_out = min_amount_out(
            effective,
            current_price,
            self.quote_decimals,
            self.slippage_numerator,
            self.slippage_denominator,
        )
        return ExecutionPlan(
            effective_amount=effective,
            min_amount_out=min_out,
            current_price=current_price,
        )

    @staticmethod
    def check_exists(order_id: int, order: Optional[Order]) -> None:
        if order is None or not order.is_live:
            raise OrderIsCancelled(f"Order {order_id} does not exist", order_id=order_id)

    @staticmethod
    def check_controller(order_id: int, order: Order, registry: CustodianRegistry) -> None:
        """Control of the resource can change out-of-band after submission."""
        try:
            controller = normalize_address(registry.controller_of(order.resource))
        except ResourceNotFound as e:
            raise CreditAccountBorrowerChanged(
                f"Resource {order.resource} no longer exists", order_id=order_id
            ) from e
        if controller != order.owner:
            raise CreditAccountBorrowerChanged(
                f"Resource {order.resource} now controlled by {controller}, "
                f"order owner is {order.owner}",
                order_id=order_id,
            )

    @staticmethod
    def check_deadline(order_id: int, order: Order, now: int) -> None:
        if order.deadline > 0 and now > order.deadline:
            raise Expired(
                f"Order {order_id} expired at {order.deadline} (now {now})",
                order_id=order_id,
            )

    @staticmethod
    def check_interval(order_id: int, order: Order, now: int) -> None:
        # First execution is never gated
        if order.last_purchase_time == 0:
            return
        next_allowed = order.last_purchase_time + order.interval
        if now < next_allowed:
            raise IntervalNotPassed(
                f"Order {order_id} next executable at {next_allowed} (now {now})",
                order_id=order_id,
            )

    @staticmethod
    def check_price_swing(order_id: int, order: Order, current_price: int, max_pct: int) -> None:
        # A zero baseline means the breaker is not armed yet
        if order.last_price == 0:
            logger.info("Order %s has no price baseline; circuit breaker not armed", order_id)
            return
        swing = price_swing_pct(current_price, order.last_price)
        if swing > max_pct:
            raise PriceSwingTooLarge(swing, max_pct, order_id=order_id)

    @staticmethod
    def effective_amount(order: Order) -> int:
        """Spend for this execution, clamped to what is left of the budget."""
        if order.budget > 0 and order.total_spend + order.amount_per_interval > order.budget:
            return order.budget - order.total_spend
        return order.amount_per_interval
