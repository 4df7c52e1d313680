"""
Venue adapters, one per price-reading mode.

Each adapter module exposes the same functions:
    build_calls(pool, hint) -> [(target, calldata)]
    follow_up_calls(pool, results, hint) -> [(target, calldata)]
    decode(pool, results) -> (price, Depth)
    leg_output(pool, depth, amount_in, zero_for_one) -> Decimal

Dispatch goes through the ADAPTERS table keyed by PriceMode.
"""

from decimal import Decimal

from ..types import PriceMode, PriceSnapshot
from . import concentrated, constant_product, discrete_bin

ADAPTERS = {
    PriceMode.CONSTANT_PRODUCT: constant_product,
    PriceMode.CONCENTRATED: concentrated,
    PriceMode.DISCRETE_BIN: discrete_bin,
}


def adapter_for(mode: PriceMode):
    return ADAPTERS[mode]


def leg_output(snapshot: PriceSnapshot, amount_in: Decimal, zero_for_one: bool) -> Decimal:
    """Output of a swap against the snapshot's depth proxy, fee and impact included."""
    adapter = ADAPTERS[snapshot.pool.mode]
    return adapter.leg_output(snapshot.pool, snapshot.depth, amount_in, zero_for_one)


def spot_output(snapshot: PriceSnapshot, amount_in: Decimal, zero_for_one: bool) -> Decimal:
    """Output at the spot price after fees, with no price impact."""
    after_fee = amount_in * (Decimal(1) - snapshot.pool.fee_rate)
    if zero_for_one:
        return after_fee * snapshot.price
    return after_fee * snapshot.inverse_price


__all__ = [
    "ADAPTERS",
    "adapter_for",
    "leg_output",
    "spot_output",
    "concentrated",
    "constant_product",
    "discrete_bin",
]
