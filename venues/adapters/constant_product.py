"""
Constant-product (Uniswap V2 style) pool adapter.

Builds the getReserves() read, decodes it into a decimal-normalized price and
a reserve depth proxy, and simulates swaps with the x*y=k formula with the fee
embedded on the input.
"""

from decimal import Decimal
from typing import List, Optional, Sequence, Tuple

from eth_abi import decode as abi_decode

from flash_arbitrage.exceptions import DataError
from flash_arbitrage.utils import from_raw

from .. import abi
from ..types import Depth, PoolDescriptor


def build_calls(pool: PoolDescriptor, hint: Optional[Depth] = None) -> List[Tuple[str, bytes]]:
    return [(pool.address, abi.selector(abi.V2_GET_RESERVES))]


def follow_up_calls(
    pool: PoolDescriptor, results: Sequence[Optional[bytes]], hint: Optional[Depth] = None
) -> List[Tuple[str, bytes]]:
    return []


def price_from_reserves(
    reserve0: int, reserve1: int, decimals0: int, decimals1: int
) -> Decimal:
    """
    price = (reserve1 / 10^d1) / (reserve0 / 10^d0)

    Returns 0 for an empty pool so the monitor can skip it.
    """
    r0 = from_raw(reserve0, decimals0)
    r1 = from_raw(reserve1, decimals1)
    if r0 == 0:
        return Decimal(0)
    return r1 / r0


def decode(pool: PoolDescriptor, results: Sequence[Optional[bytes]]) -> Tuple[Decimal, Depth]:
    """
    Decode getReserves() into (price, depth).

    Raises:
        DataError: If the call failed or the pool is empty
    """
    if not results or results[0] is None:
        raise DataError("getReserves() failed", source="constant_product", pool=pool.label)

    try:
        reserve0, reserve1, _ = abi_decode(abi.V2_GET_RESERVES_OUTPUT, results[0])
    except Exception as e:
        raise DataError(
            f"Undecodable getReserves() response: {e}",
            source="constant_product",
            pool=pool.label,
        ) from e

    if reserve0 == 0 or reserve1 == 0:
        raise DataError("Pool has zero reserves", source="constant_product", pool=pool.label)

    price = price_from_reserves(reserve0, reserve1, pool.decimals0, pool.decimals1)
    depth = Depth(
        reserve0=from_raw(reserve0, pool.decimals0),
        reserve1=from_raw(reserve1, pool.decimals1),
    )
    return price, depth


def swap_out(
    amount_in: Decimal, reserve_in: Decimal, reserve_out: Decimal, fee: Decimal
) -> Decimal:
    """
    Calculate output amount for a swap using the constant-product formula.

    Formula (with fee embedded):
        amountInWithFee = amountIn * (1 - fee)
        amountOut = (amountInWithFee * reserveOut) / (reserveIn + amountInWithFee)

    Args:
        amount_in: Input token amount
        reserve_in: Reserve of input token
        reserve_out: Reserve of output token
        fee: Fee as decimal (e.g., 0.003 for 30 bps)

    Returns:
        Output token amount

    Raises:
        ValueError: If inputs are invalid (negative, zero reserves, etc.)
    """
    if amount_in < 0:
        raise ValueError(f"amount_in must be non-negative: {amount_in}")
    if reserve_in <= 0 or reserve_out <= 0:
        raise ValueError(
            f"Reserves must be positive: in={reserve_in}, out={reserve_out}"
        )
    if fee < 0 or fee >= 1:
        raise ValueError(f"Fee must be in [0, 1): {fee}")

    if amount_in == 0:
        return Decimal(0)

    amount_in_with_fee = amount_in * (Decimal(1) - fee)

    numerator = amount_in_with_fee * reserve_out
    denominator = reserve_in + amount_in_with_fee

    return numerator / denominator


def leg_output(
    pool: PoolDescriptor, depth: Depth, amount_in: Decimal, zero_for_one: bool
) -> Decimal:
    """Output of one leg against the depth proxy, fee and impact included."""
    if zero_for_one:
        return swap_out(amount_in, depth.reserve0, depth.reserve1, pool.fee_rate)
    return swap_out(amount_in, depth.reserve1, depth.reserve0, pool.fee_rate)
