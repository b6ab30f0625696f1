import sys
import os

# Ensure repository root is on sys.path for package imports
ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), '..'))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

import pytest
from eth_account import Account
from eth_utils import keccak

from dca_service.config import Settings
from dca_service.execution_engine import DCAOrderEngine
from dca_service.order_models import Order
from dca_service.paper_custody import (
    PaperCustodianRegistry,
    PaperPermissionRegistry,
    PaperPriceOracle,
    PaperSwapVenue,
    derive_address,
)

from paper_world import (
    DAY,
    ENGINE_ADDRESS,
    USD,
    USDC,
    USDC_UNIT,
    WETH,
    FakeClock,
)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def owner_account():
    return Account.from_key(keccak(text="dca-owner"))


@pytest.fixture
def other_account():
    return Account.from_key(keccak(text="dca-stranger"))


@pytest.fixture
def executor():
    return derive_address("keeper")


@pytest.fixture
def settings():
    return Settings(
        QUOTE_ASSET=USDC,
        QUOTE_DECIMALS=6,
        VERIFYING_CONTRACT=ENGINE_ADDRESS,
        CHAIN_ID=1,
        EVENT_LOG_FILE="",
    )


@pytest.fixture
def oracle():
    o = PaperPriceOracle()
    o.add_asset(USDC, 6, 1 * USD)
    o.add_asset(WETH, 18, 2000 * USD)
    return o


@pytest.fixture
def permissions():
    return PaperPermissionRegistry()


@pytest.fixture
def venue(oracle):
    return PaperSwapVenue(oracle)


@pytest.fixture
def registry(oracle, permissions, venue, clock):
    r = PaperCustodianRegistry(oracle, permissions=permissions, clock=clock)
    r.add_venue(venue)
    return r


@pytest.fixture
def resource(registry, permissions, owner_account):
    """Owner-controlled resource funded with 1000 USDC, engine permission granted."""
    res = registry.open_account(owner_account.address, {USDC: 1000 * USDC_UNIT})
    permissions.grant(ENGINE_ADDRESS, registry.address, res)
    return res


@pytest.fixture
def engine(registry, venue, settings, clock):
    return DCAOrderEngine([registry], venue, settings=settings, clock=clock)


@pytest.fixture
def make_order(owner_account, registry, resource):
    def _make(**overrides):
        fields = dict(
            owner=owner_account.address,
            registry=registry.address,
            resource=resource,
            output_asset=WETH,
            budget=1000 * USDC_UNIT,
            interval=DAY,
            amount_per_interval=100 * USDC_UNIT,
            deadline=0,
        )
        fields.update(overrides)
        return Order(**fields)
    return _make
