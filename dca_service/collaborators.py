"""
External collaborators (INTERFACES - STUBBED)

The engine never custodies funds, prices assets or trades itself. It talks
to four collaborators through the narrow contracts below:

- CustodianRegistry: who controls a resource, which oracle prices it,
  which entrypoint executes instructions on its behalf
- PriceOracle: convert an amount of one asset into another
- ExecutionEntrypoint: run a batch of instructions with the resource's
  own authority (permission-gated per engine/registry/resource)
- VenueAdapter: build the bounded exact-input swap instruction
- PermissionRegistry: consulted by operators/entrypoints, never by the engine

In production, implement with real chain clients. See paper_custody.py for
the deterministic in-memory implementation.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


# Permission bit an operator must grant before the engine can execute
EXTERNAL_CALL_PERMISSION = 1 << 16


class CollaboratorError(Exception):
    """Raised by collaborator implementations."""


class ResourceNotFound(CollaboratorError):
    pass


class PermissionDenied(CollaboratorError):
    pass


class SwapFailed(CollaboratorError):
    pass


# ============================================================================
# INSTRUCTIONS
# ============================================================================

@dataclass(frozen=True)
class ExactInputSingleParams:
    """Single-pool exact-input swap; recipient is always the resource itself."""
    token_in: str
    token_out: str
    fee: int
    recipient: str
    deadline: int
    amount_in: int
    amount_out_minimum: int
    sqrt_price_limit_x96: int = 0


@dataclass(frozen=True)
class Instruction:
    """One call inside a batch submitted to an execution entrypoint."""
    target: str
    action: str
    params: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ExecutionReceipt:
    """Result of a batch. amount_out is None when the venue does not report it."""
    resource: str
    amount_out: Optional[int] = None
    details: Dict[str, Any] = field(default_factory=dict)


# ============================================================================
# INTERFACES
# ============================================================================

class PriceOracle:
    address: str = ""

    def convert(self, amount: int, from_asset: str, to_asset: str) -> int:
        """
        Convert `amount` of `from_asset` (smallest units) into `to_asset`.

        Returns:
            Amount of to_asset in its smallest units.
        """
        raise NotImplementedError("Implement in subclass with real oracle")


class ExecutionEntrypoint:
    address: str = ""

    def multicall(
        self,
        caller: str,
        resource: str,
        instructions: List[Instruction],
    ) -> ExecutionReceipt:
        """
        Execute `instructions` against `resource` with its own authority.

        All instructions succeed together or the call raises and nothing
        happens. The entrypoint must reject callers lacking the external
        call permission for the resource.
        """
        raise NotImplementedError("Implement in subclass with real entrypoint")


class CustodianRegistry:
    address: str = ""

    def controller_of(self, resource: str) -> str:
        """
        Current controlling principal of `resource`.

        Raises:
            ResourceNotFound: resource unknown or closed
        """
        raise NotImplementedError("Implement in subclass with real registry")

    def oracle_of(self, resource: str) -> PriceOracle:
        raise NotImplementedError("Implement in subclass with real registry")

    def execution_entrypoint_of(self, resource: str) -> ExecutionEntrypoint:
        raise NotImplementedError("Implement in subclass with real registry")


class VenueAdapter:
    address: str = ""

    def approve(self, asset: str, amount: int) -> Instruction:
        """Allowance for the venue to pull `amount` of `asset` from the resource."""
        return Instruction(
            target=self.address,
            action="approve",
            params={"asset": asset, "amount": amount},
        )

    def exact_input_single(self, params: ExactInputSingleParams) -> Instruction:
        raise NotImplementedError("Implement in subclass with real venue adapter")


class PermissionRegistry:
    def has_permission(self, engine: str, registry: str, resource: str, permission: int) -> bool:
        raise NotImplementedError("Implement in subclass with real permission registry")
