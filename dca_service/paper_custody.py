"""
Paper Custody - Deterministic Custodian Simulation

SCOPE:
- In-memory custodian registry with per-resource balances and controllers
- Oracle priced from fixed USD quotes (no randomness)
- Single-pool swap venue filling at the oracle price less a fixed slippage
- Permission registry holding (engine, registry, resource) grants
- Execution entrypoint that runs an instruction batch all-or-nothing

PURPOSE:
Dry-run the engine end to end without a chain: balances move, allowances
are enforced, permission bits are checked and minimum-output bounds are
honoured exactly as a real venue would.

Account transfer and closure are exposed so stale-order behavior can be
exercised.
"""

from dataclasses import asdict
from typing import Callable, Dict, List, Optional, Set, Tuple
from logging import getLogger
import time

from eth_utils import keccak, to_checksum_address

from dca_service.collaborators import (
    EXTERNAL_CALL_PERMISSION,
    CustodianRegistry,
    ExactInputSingleParams,
    ExecutionEntrypoint,
    ExecutionReceipt,
    Instruction,
    PermissionDenied,
    PermissionRegistry,
    PriceOracle,
    ResourceNotFound,
    SwapFailed,
    VenueAdapter,
)
from dca_service.order_models import ZERO_ADDRESS, normalize_address

logger = getLogger(__name__)

PRICE_DECIMALS = 8


def derive_address(label: str) -> str:
    """Deterministic checksum address for simulation entities."""
    return to_checksum_address(keccak(text=label)[-20:])


class PaperPriceOracle(PriceOracle):
    """
    Converts through USD quotes with PRICE_DECIMALS precision.

    convert(a, X, Y) = a * usd(X) * 10**dec(Y) / (usd(Y) * 10**dec(X))
    """

    def __init__(self, address: Optional[str] = None):
        self.address = address or derive_address("paper-oracle")
        self._usd: Dict[str, int] = {}
        self._decimals: Dict[str, int] = {}

    def add_asset(self, asset: str, decimals: int, usd_price: int) -> None:
        key = normalize_address(asset)
        self._decimals[key] = decimals
        self._usd[key] = usd_price

    def set_price(self, asset: str, usd_price: int) -> None:
        key = normalize_address(asset)
        if key not in self._usd:
            raise KeyError(f"Unknown asset {asset}")
        self._usd[key] = usd_price
        logger.info("Paper oracle price set: asset=%s usd=%s", key, usd_price)

    def decimals_of(self, asset: str) -> int:
        return self._decimals[normalize_address(asset)]

    def convert(self, amount: int, from_asset: str, to_asset: str) -> int:
        src, dst = normalize_address(from_asset), normalize_address(to_asset)
        if src not in self._usd or dst not in self._usd:
            raise KeyError(f"No price for {src} -> {dst}")
        return (
            amount * self._usd[src] * 10 ** self._decimals[dst]
            // (self._usd[dst] * 10 ** self._decimals[src])
        )


class PaperPermissionRegistry(PermissionRegistry):
    def __init__(self):
        self._grants: Set[Tuple[str, str, str, int]] = set()

    def grant(self, engine: str, registry: str, resource: str,
              permission: int = EXTERNAL_CALL_PERMISSION) -> None:
        self._grants.add((
            normalize_address(engine),
            normalize_address(registry),
            normalize_address(resource),
            permission,
        ))

    def revoke(self, engine: str, registry: str, resource: str,
               permission: int = EXTERNAL_CALL_PERMISSION) -> None:
        self._grants.discard((
            normalize_address(engine),
            normalize_address(registry),
            normalize_address(resource),
            permission,
        ))

    def has_permission(self, engine: str, registry: str, resource: str, permission: int) -> bool:
        return (
            normalize_address(engine),
            normalize_address(registry),
            normalize_address(resource),
            permission,
        ) in self._grants


class PaperSwapVenue(VenueAdapter):
    """Fills exact-input swaps at the oracle price less `slippage_bps`."""

    def __init__(
        self,
        oracle: PaperPriceOracle,
        slippage_bps: int = 0,
        fee_tiers: Tuple[int, ...] = (100, 500, 3000, 10000),
        address: Optional[str] = None,
    ):
        self.address = address or derive_address("paper-venue")
        self.oracle = oracle
        self.slippage_bps = slippage_bps
        self.fee_tiers = fee_tiers

    def exact_input_single(self, params: ExactInputSingleParams) -> Instruction:
        return Instruction(target=self.address, action="exactInputSingle", params=asdict(params))

    def quote(self, amount_in: int, token_in: str, token_out: str) -> int:
        gross = self.oracle.convert(amount_in, token_in, token_out)
        return gross * (10000 - self.slippage_bps) // 10000


class PaperExecutionEntrypoint(ExecutionEntrypoint):
    """Runs instruction batches on resources of one PaperCustodianRegistry."""

    def __init__(self, registry: "PaperCustodianRegistry"):
        self.registry = registry
        self.address = derive_address(f"paper-entrypoint:{registry.address}")
        self.batches: List[Tuple[str, str, List[Instruction]]] = []

    def multicall(self, caller: str, resource: str, instructions: List[Instruction]) -> ExecutionReceipt:
        resource = normalize_address(resource)
        registry = self.registry
        if not registry.permissions.has_permission(
            caller, registry.address, resource, EXTERNAL_CALL_PERMISSION
        ):
            raise PermissionDenied(f"{caller} lacks external call permission on {resource}")
        if resource not in registry._controllers:
            raise ResourceNotFound(f"Unknown resource {resource}")

        # Work on copies; apply only if the whole batch succeeds
        balances = dict(registry._balances.get(resource, {}))
        allowances: Dict[Tuple[str, str], int] = {}
        amount_out = None
        now = registry.clock()

        for ins in instructions:
            venue = registry.venues.get(normalize_address(ins.target))
            if venue is None:
                raise SwapFailed(f"Unknown target {ins.target}")
            if ins.action == "approve":
                allowances[(venue.address, normalize_address(ins.params["asset"]))] = ins.params["amount"]
            elif ins.action == "exactInputSingle":
                amount_out = self._swap(resource, venue, ins.params, balances, allowances, now)
            else:
                raise SwapFailed(f"Unsupported action {ins.action}")

        registry._balances[resource] = balances
        self.batches.append((normalize_address(caller), resource, list(instructions)))
        logger.info(
            "Paper batch executed: resource=%s caller=%s instructions=%d amount_out=%s",
            resource, caller, len(instructions), amount_out,
        )
        return ExecutionReceipt(resource=resource, amount_out=amount_out,
                                details={"instructions": len(instructions)})

    @staticmethod
    def _swap(resource, venue, params, balances, allowances, now) -> int:
        token_in = normalize_address(params["token_in"])
        token_out = normalize_address(params["token_out"])
        amount_in = params["amount_in"]
        if normalize_address(params["recipient"]) != resource:
            raise SwapFailed("Recipient must be the resource")
        if params["fee"] not in venue.fee_tiers:
            raise SwapFailed(f"Unsupported fee tier {params['fee']}")
        if params["deadline"] < now:
            raise SwapFailed("Transaction too old")
        if allowances.get((venue.address, token_in), 0) < amount_in:
            raise SwapFailed("Insufficient allowance")
        if balances.get(token_in, 0) < amount_in:
            raise SwapFailed("Insufficient balance")
        out = venue.quote(amount_in, token_in, token_out)
        if out < params["amount_out_minimum"]:
            raise SwapFailed(f"Too little received: {out} < {params['amount_out_minimum']}")
        balances[token_in] = balances.get(token_in, 0) - amount_in
        balances[token_out] = balances.get(token_out, 0) + out
        allowances[(venue.address, token_in)] -= amount_in
        return out


class PaperCustodianRegistry(CustodianRegistry):
    """Resources, their controllers and balances."""

    def __init__(
        self,
        oracle: PaperPriceOracle,
        permissions: Optional[PaperPermissionRegistry] = None,
        clock: Optional[Callable[[], int]] = None,
        address: Optional[str] = None,
    ):
        self.address = address or derive_address("paper-registry")
        self.oracle = oracle
        self.permissions = permissions or PaperPermissionRegistry()
        self.clock = clock or (lambda: int(time.time()))
        self.venues: Dict[str, PaperSwapVenue] = {}
        self.entrypoint = PaperExecutionEntrypoint(self)
        self._controllers: Dict[str, str] = {}
        self._balances: Dict[str, Dict[str, int]] = {}
        self._opened = 0

    def add_venue(self, venue: PaperSwapVenue) -> None:
        self.venues[normalize_address(venue.address)] = venue

    def open_account(self, controller: str, balances: Optional[Dict[str, int]] = None) -> str:
        self._opened += 1
        resource = derive_address(f"{self.address}:resource:{self._opened}")
        self._controllers[resource] = normalize_address(controller)
        self._balances[resource] = {
            normalize_address(asset): amount for asset, amount in (balances or {}).items()
        }
        logger.info("Paper account opened: resource=%s controller=%s", resource, controller)
        return resource

    def transfer_account(self, resource: str, new_controller: str) -> None:
        self._require(resource)
        self._controllers[normalize_address(resource)] = normalize_address(new_controller)

    def close_account(self, resource: str) -> None:
        key = self._require(resource)
        del self._controllers[key]
        self._balances.pop(key, None)

    def fund(self, resource: str, asset: str, amount: int) -> None:
        key = self._require(resource)
        asset = normalize_address(asset)
        self._balances[key][asset] = self._balances[key].get(asset, 0) + amount

    def balance_of(self, resource: str, asset: str) -> int:
        return self._balances.get(normalize_address(resource), {}).get(normalize_address(asset), 0)

    def _require(self, resource: str) -> str:
        key = normalize_address(resource)
        if key == ZERO_ADDRESS or key not in self._controllers:
            raise ResourceNotFound(f"Unknown resource {resource}")
        return key

    # --- CustodianRegistry -----------------------------------------------

    def controller_of(self, resource: str) -> str:
        return self._controllers[self._require(resource)]

    def oracle_of(self, resource: str) -> PriceOracle:
        self._require(resource)
        return self.oracle

    def execution_entrypoint_of(self, resource: str) -> ExecutionEntrypoint:
        self._require(resource)
        return self.entrypoint
