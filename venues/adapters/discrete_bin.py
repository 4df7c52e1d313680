"""
Discrete-bin (Trader Joe Liquidity Book) pool adapter.

Liquidity sits in bins of constant price. The active bin's price is

    price = (1 + binStep / 10_000) ^ (activeId - 2^23) * 10^(d0 - d1)

A swap drains the active bin at that fixed price, then moves one bin at a
time, each bin one binStep worse. The depth proxy carries the active bin's
reserves; neighbouring bins are assumed to hold the same value as the active
bin, which keeps the output curve piecewise linear and concave.
"""

from decimal import Decimal
from typing import List, Optional, Sequence, Tuple

from eth_abi import decode as abi_decode
from eth_abi import encode as abi_encode
from eth_abi.exceptions import DecodingError

from flash_arbitrage.exceptions import DataError
from flash_arbitrage.utils import from_raw

from .. import abi
from ..types import Depth, PoolDescriptor
from .constant_product import swap_out

REAL_ID_SHIFT = 2**23
MAX_BIN_WALK = 50


def build_calls(pool: PoolDescriptor, hint: Optional[Depth] = None) -> List[Tuple[str, bytes]]:
    calls = [
        (pool.address, abi.selector(abi.LB_GET_ACTIVE_ID)),
        (pool.address, abi.selector(abi.LB_GET_BIN_STEP)),
        (pool.address, abi.selector(abi.LB_GET_RESERVES)),
    ]
    # Speculatively read last cycle's active bin; usually it has not moved
    if hint is not None and hint.active_id is not None:
        calls.append((pool.address, _get_bin_calldata(hint.active_id)))
    return calls


def _get_bin_calldata(active_id: int) -> bytes:
    return abi.selector(abi.LB_GET_BIN) + abi_encode(["uint24"], [active_id])


def _decode_active_id(results: Sequence[Optional[bytes]], pool: PoolDescriptor) -> int:
    if not results or results[0] is None:
        raise DataError("getActiveId() failed", source="discrete_bin", pool=pool.label)
    try:
        (active_id,) = abi_decode(abi.LB_UINT24_OUTPUT, results[0])
    except DecodingError as e:
        raise DataError(
            f"Undecodable getActiveId() response: {e}", source="discrete_bin", pool=pool.label
        ) from e
    return active_id


def follow_up_calls(
    pool: PoolDescriptor, results: Sequence[Optional[bytes]], hint: Optional[Depth] = None
) -> List[Tuple[str, bytes]]:
    """A second read is needed only when the active bin moved since the last poll."""
    active_id = _decode_active_id(results, pool)
    if len(results) >= 4 and hint is not None and hint.active_id == active_id:
        return []
    return [(pool.address, _get_bin_calldata(active_id))]


def price_from_active_id(
    active_id: int, bin_step: int, decimals0: int, decimals1: int
) -> Decimal:
    base = Decimal(1) + Decimal(bin_step) / Decimal(10_000)
    return (base ** (active_id - REAL_ID_SHIFT)) * (Decimal(10) ** (decimals0 - decimals1))


def decode(pool: PoolDescriptor, results: Sequence[Optional[bytes]]) -> Tuple[Decimal, Depth]:
    """
    Decode [activeId, binStep, reserves, getBin(activeId)] into (price, depth).

    The monitor guarantees the fourth result belongs to the decoded active id.
    """
    if len(results) < 4 or any(r is None for r in results[:4]):
        raise DataError("Liquidity Book reads failed", source="discrete_bin", pool=pool.label)

    try:
        active_id = _decode_active_id(results, pool)
        (bin_step,) = abi_decode(abi.LB_UINT16_OUTPUT, results[1])
        reserve_x, reserve_y = abi_decode(abi.LB_RESERVES_OUTPUT, results[2])
        bin_x, bin_y = abi_decode(abi.LB_RESERVES_OUTPUT, results[3])
    except DataError:
        raise
    except Exception as e:
        raise DataError(
            f"Undecodable Liquidity Book response: {e}",
            source="discrete_bin",
            pool=pool.label,
        ) from e

    if pool.bin_step is not None and bin_step != pool.bin_step:
        raise DataError(
            f"On-chain bin step {bin_step} differs from configured {pool.bin_step}",
            source="discrete_bin",
            pool=pool.label,
        )
    if bin_x == 0 and bin_y == 0:
        raise DataError("Active bin is empty", source="discrete_bin", pool=pool.label)

    price = price_from_active_id(active_id, bin_step, pool.decimals0, pool.decimals1)
    depth = Depth(
        reserve0=from_raw(reserve_x, pool.decimals0),
        reserve1=from_raw(reserve_y, pool.decimals1),
        active_id=active_id,
        bin_reserve0=from_raw(bin_x, pool.decimals0),
        bin_reserve1=from_raw(bin_y, pool.decimals1),
    )
    return price, depth


def bin_walk_out(
    amount_in: Decimal,
    price: Decimal,
    bin_step: int,
    active_out: Decimal,
    neighbour_out: Decimal,
    zero_for_one: bool,
) -> Decimal:
    """
    Walk bins from the active one outward until the input is consumed.

    Args:
        amount_in: Input after fees
        price: Active bin price (token1 per token0)
        bin_step: Bin step in bps
        active_out: Output-token reserve of the active bin
        neighbour_out: Output-token capacity assumed for every further bin
        zero_for_one: True when selling token0 for token1

    Returns:
        Output amount; input beyond MAX_BIN_WALK bins earns nothing
    """
    step = Decimal(1) + Decimal(bin_step) / Decimal(10_000)
    remaining = amount_in
    out = Decimal(0)

    for k in range(MAX_BIN_WALK):
        if zero_for_one:
            # Selling X walks down to cheaper bins
            rate = price / (step**k)
        else:
            rate = Decimal(1) / (price * (step**k))
        capacity = active_out if k == 0 else neighbour_out
        if capacity <= 0:
            continue
        in_needed = capacity / rate
        if remaining <= in_needed:
            return out + remaining * rate
        out += capacity
        remaining -= in_needed

    return out


def leg_output(
    pool: PoolDescriptor, depth: Depth, amount_in: Decimal, zero_for_one: bool
) -> Decimal:
    if amount_in <= 0:
        return Decimal(0)

    fee = pool.fee_rate
    after_fee = amount_in * (Decimal(1) - fee)

    if depth.active_id is None or depth.bin_reserve0 is None or depth.bin_reserve1 is None:
        # Without bin data fall back to the constant-product view of total reserves
        reserve_in, reserve_out = (
            (depth.reserve0, depth.reserve1) if zero_for_one else (depth.reserve1, depth.reserve0)
        )
        return swap_out(amount_in, reserve_in, reserve_out, fee)

    bin_step = pool.bin_step or 1
    price = price_from_active_id(depth.active_id, bin_step, pool.decimals0, pool.decimals1)
    if zero_for_one:
        active_out = depth.bin_reserve1
        neighbour_out = depth.bin_reserve1 + depth.bin_reserve0 * price
    else:
        active_out = depth.bin_reserve0
        neighbour_out = depth.bin_reserve0 + depth.bin_reserve1 / price

    return bin_walk_out(after_fee, price, bin_step, active_out, neighbour_out, zero_for_one)
