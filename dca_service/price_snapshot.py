"""
Price Snapshot Helper

Wraps the oracle call with the unit scaling the engine relies on: the price
is always "one whole unit of the quote asset, in output asset smallest units".
Used for the creation baseline, before every execution, and on reset.
"""

import logging

from dca_service.collaborators import PriceOracle


logger = logging.getLogger(__name__)


def get_current_price(
    oracle: PriceOracle,
    quote_asset: str,
    quote_decimals: int,
    output_asset: str,
) -> int:
    price = oracle.convert(10 ** quote_decimals, quote_asset, output_asset)
    logger.debug("Price snapshot %s -> %s: %s", quote_asset, output_asset, price)
    return int(price)


def price_swing_pct(current: int, last: int) -> int:
    """Absolute move from `last` to `current` in whole percent (floored)."""
    return abs(current - last) * 100 // last


def min_amount_out(
    amount_in: int,
    price: int,
    quote_decimals: int,
    numerator: int = 9900,
    denominator: int = 10000,
) -> int:
    """Oracle-implied output for `amount_in`, less the tolerated slippage."""
    return amount_in * price * numerator // (10 ** quote_decimals * denominator)
