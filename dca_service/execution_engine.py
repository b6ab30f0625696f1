"""
DCA Order Engine

Turns a stored, possibly stale order into one safe, bounded,
replay-protected purchase, and lets owners create/cancel/reset orders either
directly or through a domain-separated signature.

PUBLIC OPERATIONS:
- submit_order / submit_order_with_signature
- cancel_order / cancel_order_with_signature
- execute_order (any executor)
- reset_order (owner only, direct path)
- get_current_price, domain_separator

ATOMICITY:
Each public operation runs under the engine lock inside one OrderStore
transaction. Registry checks, oracle reads and the venue call happen while
the unit of work is open; the store is written and notifications are
published only if every step succeeds. A failed attempt leaves no trace and
may be retried by anyone later.

NO RETRIES, NO STRATEGY LOGIC, NO CUSTODY. The resource stays with its owner.
"""

from contextlib import contextmanager
from dataclasses import replace
from typing import Callable, Dict, Iterable, Iterator, List, Optional
import logging
import threading
import time

from dca_service.authorization import OrderAuthorizer
from dca_service.collaborators import (
    CollaboratorError,
    CustodianRegistry,
    ExactInputSingleParams,
    ExecutionReceipt,
    PriceOracle,
    VenueAdapter,
)
from dca_service.config import Settings, get_settings
from dca_service.errors import DCAOrderError, InvalidOrder, OrderIsCancelled
from dca_service.notifications import OrderEventLog
from dca_service.order_models import (
    ExecutionPlan,
    Order,
    OrderEvent,
    OrderEventType,
    PurchaseResult,
    normalize_address,
)
from dca_service.order_store import OrderStore, UnitOfWork
from dca_service.price_snapshot import get_current_price
from dca_service.typed_signatures import SignatureLike, SigningDomain, domain_separator
from dca_service.validation_engine import ValidationEngine


logger = logging.getLogger(__name__)


class DCAOrderEngine:
    """
    Main orchestrator for recurring budget-capped purchases.

    Constructor arguments override Settings; Settings only supply defaults.
    """

    def __init__(
        self,
        registries: Iterable[CustodianRegistry],
        venue: VenueAdapter,
        address: Optional[str] = None,
        quote_asset: Optional[str] = None,
        quote_decimals: Optional[int] = None,
        settings: Optional[Settings] = None,
        clock: Optional[Callable[[], int]] = None,
        store: Optional[OrderStore] = None,
        event_log: Optional[OrderEventLog] = None,
    ):
        self.settings = settings or get_settings()
        self.address = normalize_address(address or self.settings.VERIFYING_CONTRACT)
        self.quote_asset = normalize_address(quote_asset or self.settings.QUOTE_ASSET)
        self.quote_decimals = (
            quote_decimals if quote_decimals is not None else self.settings.QUOTE_DECIMALS
        )
        self.venue = venue
        self.clock = clock or (lambda: int(time.time()))
        self.fee_tier = self.settings.SWAP_FEE_TIER
        self.swap_deadline_buffer = self.settings.SWAP_DEADLINE_BUFFER_SECONDS

        self._registries: Dict[str, CustodianRegistry] = {}
        for registry in registries:
            self.register_registry(registry)

        self.domain = SigningDomain(
            name=self.settings.DOMAIN_NAME,
            version=self.settings.DOMAIN_VERSION,
            chain_id=self.settings.CHAIN_ID,
            verifying_contract=self.address,
        )
        self.authorizer = OrderAuthorizer(self.domain)
        self.validator = ValidationEngine(
            quote_asset=self.quote_asset,
            quote_decimals=self.quote_decimals,
            max_price_swing_pct=self.settings.MAX_PRICE_SWING_PCT,
            slippage_numerator=self.settings.SLIPPAGE_NUMERATOR,
            slippage_denominator=self.settings.SLIPPAGE_DENOMINATOR,
        )

        self.store = store or OrderStore()
        self.event_log = event_log or OrderEventLog(self.settings.EVENT_LOG_FILE or None)
        self.store.add_publisher(self.event_log.publish)
        self._lock = threading.RLock()

    def register_registry(self, registry: CustodianRegistry) -> None:
        self._registries[normalize_address(registry.address)] = registry

    def _registry(self, address: str) -> Optional[CustodianRegistry]:
        return self._registries.get(normalize_address(address))

    @contextmanager
    def _operation(self, name: str, order_id: Optional[int] = None) -> Iterator[UnitOfWork]:
        """Serialize, stage, and log rejections of one public operation."""
        with self._lock:
            try:
                with self.store.transaction() as uow:
                    yield uow
            except DCAOrderError as e:
                logger.warning(
                    "%s rejected: order_id=%s reason=%s message=%s",
                    name, order_id, e.reason, e.message,
                )
                raise
            except CollaboratorError as e:
                logger.error("%s failed in collaborator: order_id=%s error=%s", name, order_id, e)
                raise

    # ========================================================================
    # SUBMISSION
    # ========================================================================

    def submit_order(self, order: Order, caller: str) -> int:
        """
        Create an order on behalf of its owner (direct path).

        Returns:
            The new order id

        Raises:
            CallerNotBorrower: caller is not the owner, or owner does not control the resource
            InvalidOrder: malformed order parameters
        """
        with self._operation("submit_order") as uow:
            registry = self._registry(order.registry)
            self.authorizer.authorize_direct(caller, order, registry)
            return self._create(order, registry, uow)

    def submit_order_with_signature(
        self,
        order: Order,
        nonce: int,
        signature: SignatureLike,
    ) -> int:
        """
        Create an order from an owner signature; anyone may relay it.

        The signer's nonce is consumed only if the whole submission commits.

        Raises:
            CallerNotBorrower / InvalidSignature: signer is not the owner
            IncorrectSignatureNonce: nonce is stale or ahead
            InvalidOrder: malformed order parameters
        """
        with self._operation("submit_order_with_signature") as uow:
            registry = self._registry(order.registry)
            self.authorizer.authorize_signed_order(order, nonce, signature, registry, uow)
            return self._create(order, registry, uow)

    def _create(self, order: Order, registry: CustodianRegistry, uow: UnitOfWork) -> int:
        self._check_order_params(order)
        order_id = uow.allocate_id()
        price = self.get_current_price(registry.oracle_of(order.resource), order.output_asset)
        uow.put(order_id, replace(order, last_price=price))
        uow.emit(OrderEvent(OrderEventType.ORDER_CREATED, order_id, order.owner))
        logger.info(
            "Order created: order_id=%s owner=%s resource=%s output=%s budget=%s "
            "amount_per_interval=%s interval=%s baseline_price=%s",
            order_id, order.owner, order.resource, order.output_asset, order.budget,
            order.amount_per_interval, order.interval, price,
        )
        return order_id

    def _check_order_params(self, order: Order) -> None:
        if order.output_asset == self.quote_asset:
            raise InvalidOrder("Output asset must differ from the quote asset")
        if order.amount_per_interval == 0:
            raise InvalidOrder("amount_per_interval must be positive")
        if order.interval == 0:
            raise InvalidOrder("interval must be positive")
        if order.total_spend != 0:
            raise InvalidOrder("total_spend must be zero at submission")
        oversized = order.oversized_fields()
        if oversized:
            raise InvalidOrder(f"Fields out of uint256 range: {', '.join(oversized)}")

    # ========================================================================
    # CANCELLATION
    # ========================================================================

    def cancel_order(self, order_id: int, caller: str) -> None:
        """
        Cancel a live order (direct path).

        Raises:
            OrderIsCancelled: order does not exist or is already terminal
            CallerNotBorrower: caller is not the stored owner
        """
        with self._operation("cancel_order", order_id) as uow:
            order = self._live(uow, order_id)
            self.authorizer.authorize_direct(caller, order, self._registry(order.registry), order_id)
            self._clear(uow, order_id, order)

    def cancel_order_with_signature(self, order_id: int, signature: SignatureLike) -> None:
        """Cancel a live order from an owner signature over its id."""
        with self._operation("cancel_order_with_signature", order_id) as uow:
            order = self._live(uow, order_id)
            self.authorizer.authorize_signed_cancel(order_id, order, signature, uow)
            self._clear(uow, order_id, order)

    def _clear(self, uow: UnitOfWork, order_id: int, order: Order) -> None:
        uow.clear(order_id)
        uow.emit(OrderEvent(OrderEventType.ORDER_CANCELLED, order_id, order.owner))
        logger.info("Order cancelled: order_id=%s owner=%s", order_id, order.owner)

    # ========================================================================
    # EXECUTION
    # ========================================================================

    def execute_order(self, order_id: int, caller: str) -> PurchaseResult:
        """
        Run one purchase for `order_id`. Any executor may call this.

        FLOW:
        1. Validate (existence, ownership, deadline, interval, price swing)
        2. Clamp spend to the remaining budget, bound output by slippage
        3. Approve + swap through the resource's execution entrypoint
        4. Update totals/baseline; retire the order if the budget is spent

        Raises:
            OrderValidationError subclass from the validation engine
            CollaboratorError: the entrypoint or venue rejected the batch
        """
        with self._operation("execute_order", order_id) as uow:
            now = self.clock()
            order = uow.get(order_id)
            registry = None
            if order is not None:
                registry = self._registry(order.registry)
                if registry is None:
                    raise InvalidOrder(f"Unknown registry {order.registry}", order_id=order_id)
            plan = self.validator.validate(order_id, order, registry, now)

            receipt = self._swap(order, plan, registry, now)
            amount_out = receipt.amount_out if receipt.amount_out is not None else plan.min_amount_out

            updated = replace(
                order,
                last_purchase_time=now,
                total_spend=order.total_spend + plan.effective_amount,
                last_price=plan.current_price,
            )
            uow.emit(OrderEvent(
                OrderEventType.PURCHASE_COMPLETED,
                order_id,
                normalize_address(caller),
                {"amount_in": plan.effective_amount, "amount_out": amount_out},
            ))
            logger.info(
                "Purchase completed: order_id=%s executor=%s amount_in=%s amount_out=%s "
                "min_out=%s price=%s total_spend=%s",
                order_id, caller, plan.effective_amount, amount_out,
                plan.min_amount_out, plan.current_price, updated.total_spend,
            )

            completed = updated.budget > 0 and updated.total_spend >= updated.budget
            if completed:
                uow.clear(order_id)
                uow.emit(OrderEvent(
                    OrderEventType.ORDER_COMPLETED,
                    order_id,
                    normalize_address(caller),
                    {"amount_purchased": amount_out, "total_spend": updated.total_spend},
                ))
                logger.info(
                    "Order completed: order_id=%s total_spend=%s budget=%s",
                    order_id, updated.total_spend, updated.budget,
                )
            else:
                uow.put(order_id, updated)

            return PurchaseResult(
                order_id=order_id,
                executor=normalize_address(caller),
                amount_in=plan.effective_amount,
                amount_out=amount_out,
                total_spend=updated.total_spend,
                price=plan.current_price,
                completed=completed,
            )

    def _swap(
        self,
        order: Order,
        plan: ExecutionPlan,
        registry: CustodianRegistry,
        now: int,
    ) -> ExecutionReceipt:
        """Submit approve + bounded exact-input swap as one batch on the resource."""
        params = ExactInputSingleParams(
            token_in=self.quote_asset,
            token_out=order.output_asset,
            fee=self.fee_tier,
            recipient=order.resource,
            deadline=now + self.swap_deadline_buffer,
            amount_in=plan.effective_amount,
            amount_out_minimum=plan.min_amount_out,
        )
        instructions = [
            self.venue.approve(self.quote_asset, plan.effective_amount),
            self.venue.exact_input_single(params),
        ]
        entrypoint = registry.execution_entrypoint_of(order.resource)
        return entrypoint.multicall(self.address, order.resource, instructions)

    # ========================================================================
    # RESET
    # ========================================================================

    def reset_order(self, order_id: int, caller: str) -> int:
        """
        Re-arm the circuit breaker with the current oracle price.

        Only lastPrice changes. Direct owner path only.

        Returns:
            The new baseline price
        """
        with self._operation("reset_order", order_id) as uow:
            order = self._live(uow, order_id)
            registry = self._registry(order.registry)
            self.authorizer.authorize_direct(caller, order, registry, order_id)
            price = self.get_current_price(registry.oracle_of(order.resource), order.output_asset)
            uow.put(order_id, replace(order, last_price=price))
            uow.emit(OrderEvent(OrderEventType.ORDER_RESET, order_id, order.owner))
            logger.info(
                "Order reset: order_id=%s owner=%s old_price=%s new_price=%s",
                order_id, order.owner, order.last_price, price,
            )
            return price

    # ========================================================================
    # READS
    # ========================================================================

    def get_current_price(self, oracle: PriceOracle, output_asset: str) -> int:
        """One whole unit of the quote asset expressed in `output_asset` units."""
        return get_current_price(oracle, self.quote_asset, self.quote_decimals, output_asset)

    def domain_separator(self) -> bytes:
        return domain_separator(self.domain)

    def get_order(self, order_id: int) -> Optional[Order]:
        return self.store.get(order_id)

    def list_orders(self, owner: Optional[str] = None) -> Dict[int, Order]:
        orders = self.store.live_orders()
        if owner is None:
            return orders
        key = normalize_address(owner)
        return {oid: o for oid, o in orders.items() if o.owner == key}

    def nonce_of(self, signer: str) -> int:
        return self.store.nonces.current(signer)

    @property
    def next_order_id(self) -> int:
        return self.store.next_order_id

    def events_for(self, order_id: int) -> List[OrderEvent]:
        return self.event_log.events_for(order_id)

    @staticmethod
    def _live(uow: UnitOfWork, order_id: int) -> Order:
        order = uow.get(order_id)
        if order is None:
            raise OrderIsCancelled(f"Order {order_id} does not exist", order_id=order_id)
        return order
