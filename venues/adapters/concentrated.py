"""
Concentrated-liquidity (Uniswap V3 style) pool adapter.

The price comes from slot0().sqrtPriceX96. The depth proxy is the pair of
virtual reserves implied by the in-range liquidity:

    x = L / sqrtP,   y = L * sqrtP

Within the current tick range the pool behaves exactly like a constant-product
pool on those virtual reserves, so the swap model reuses x*y=k. Trades that
would cross a tick boundary are overestimated; the evaluator's depth fraction
cap keeps sizes well inside the range.
"""

from decimal import Decimal
from typing import List, Optional, Sequence, Tuple

from eth_abi import decode as abi_decode

from flash_arbitrage.exceptions import DataError
from flash_arbitrage.utils import from_raw

from .. import abi
from ..types import Depth, PoolDescriptor
from .constant_product import swap_out

Q96 = Decimal(2) ** 96


def build_calls(pool: PoolDescriptor, hint: Optional[Depth] = None) -> List[Tuple[str, bytes]]:
    return [
        (pool.address, abi.selector(abi.V3_SLOT0)),
        (pool.address, abi.selector(abi.V3_LIQUIDITY)),
    ]


def follow_up_calls(
    pool: PoolDescriptor, results: Sequence[Optional[bytes]], hint: Optional[Depth] = None
) -> List[Tuple[str, bytes]]:
    return []


def price_from_sqrt_price(sqrt_price_x96: int, decimals0: int, decimals1: int) -> Decimal:
    """price = (sqrtPriceX96 / 2^96)^2 * 10^(d0 - d1)"""
    sqrt_price = Decimal(int(sqrt_price_x96)) / Q96
    return sqrt_price * sqrt_price * (Decimal(10) ** (decimals0 - decimals1))


def virtual_reserves(
    liquidity: int, sqrt_price_x96: int, decimals0: int, decimals1: int
) -> Tuple[Decimal, Decimal]:
    """Virtual (x, y) reserves in human units for the active range."""
    sqrt_price = Decimal(int(sqrt_price_x96)) / Q96
    liq = Decimal(int(liquidity))
    x_raw = liq / sqrt_price
    y_raw = liq * sqrt_price
    return (
        x_raw / (Decimal(10) ** decimals0),
        y_raw / (Decimal(10) ** decimals1),
    )


def decode(pool: PoolDescriptor, results: Sequence[Optional[bytes]]) -> Tuple[Decimal, Depth]:
    if len(results) < 2 or results[0] is None or results[1] is None:
        raise DataError("slot0()/liquidity() failed", source="concentrated", pool=pool.label)

    try:
        slot0 = abi_decode(abi.V3_SLOT0_OUTPUT, results[0])
        (liquidity,) = abi_decode(abi.V3_LIQUIDITY_OUTPUT, results[1])
    except Exception as e:
        raise DataError(
            f"Undecodable slot0()/liquidity() response: {e}",
            source="concentrated",
            pool=pool.label,
        ) from e

    sqrt_price_x96 = slot0[0]
    if sqrt_price_x96 == 0:
        raise DataError("Pool is not initialized", source="concentrated", pool=pool.label)
    if liquidity == 0:
        raise DataError("No in-range liquidity", source="concentrated", pool=pool.label)

    price = price_from_sqrt_price(sqrt_price_x96, pool.decimals0, pool.decimals1)
    reserve0, reserve1 = virtual_reserves(
        liquidity, sqrt_price_x96, pool.decimals0, pool.decimals1
    )
    return price, Depth(reserve0=reserve0, reserve1=reserve1)


def leg_output(
    pool: PoolDescriptor, depth: Depth, amount_in: Decimal, zero_for_one: bool
) -> Decimal:
    if zero_for_one:
        return swap_out(amount_in, depth.reserve0, depth.reserve1, pool.fee_rate)
    return swap_out(amount_in, depth.reserve1, depth.reserve0, pool.fee_rate)
