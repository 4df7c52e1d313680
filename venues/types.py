"""
Core data types for cross-venue flash arbitrage.

Everything here is immutable: descriptors are created once at configuration
load, snapshots are replaced wholesale by the price monitor, and deltas and
opportunities live for a single evaluation cycle.
"""

import time
from dataclasses import dataclass, field
from decimal import Decimal, getcontext
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from flash_arbitrage.exceptions import ValidationError

getcontext().prec = 50

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"

# Discrete-bin pools charge a variable fee on top of the base fee
LB_FEE_BUFFER = Decimal("1.5")


class PriceMode(str, Enum):
    """How a pool's raw on-chain state turns into a price and a depth proxy."""

    CONSTANT_PRODUCT = "constant_product"
    CONCENTRATED = "concentrated"
    DISCRETE_BIN = "discrete_bin"


@dataclass(frozen=True)
class PoolDescriptor:
    """
    Static description of a tradable pool.

    Attributes:
        label: Human-readable name (e.g., "WETH/USDC UniV3 (0.05%)")
        venue: Venue key used to resolve the settlement adapter (e.g., "uniswap_v3")
        address: Pool contract address
        token0: Address of token0 (price is quoted as token1 per token0)
        token1: Address of token1
        decimals0: Decimals of token0
        decimals1: Decimals of token1
        mode: Price-reading mode
        fee_bps: Swap fee in bps (constant-product pools)
        fee_tier: Fee tier in hundredths of a bip (concentrated pools, 500 = 0.05%)
        bin_step: Bin step in bps (discrete-bin pools)
        base_symbol: Display symbol of token0
        quote_symbol: Display symbol of token1
    """

    label: str
    venue: str
    address: str
    token0: str
    token1: str
    decimals0: int
    decimals1: int
    mode: PriceMode
    fee_bps: Optional[int] = None
    fee_tier: Optional[int] = None
    bin_step: Optional[int] = None
    base_symbol: str = ""
    quote_symbol: str = ""

    @property
    def key(self) -> str:
        return self.address.lower()

    @property
    def pair_key(self) -> str:
        """Canonical key for the token pair regardless of token order."""
        a, b = sorted([self.token0.lower(), self.token1.lower()])
        return f"{a}/{b}"

    @property
    def pair_name(self) -> str:
        if self.base_symbol and self.quote_symbol:
            return f"{self.base_symbol}/{self.quote_symbol}"
        return self.pair_key

    @property
    def fee_rate(self) -> Decimal:
        """Swap fee as a decimal fraction (0.003 = 0.3%)."""
        if self.mode == PriceMode.CONCENTRATED:
            return Decimal(self.fee_tier) / Decimal(1_000_000)
        if self.mode == PriceMode.DISCRETE_BIN:
            return Decimal(self.bin_step) / Decimal(10_000) * LB_FEE_BUFFER
        fee_bps = 30 if self.fee_bps is None else self.fee_bps
        return Decimal(fee_bps) / Decimal(10_000)

    @property
    def fee_param(self) -> Optional[int]:
        """Leg parameter the settlement adapter needs (fee tier, bin step or none)."""
        if self.mode == PriceMode.CONCENTRATED:
            return self.fee_tier
        if self.mode == PriceMode.DISCRETE_BIN:
            return self.bin_step
        return None


@dataclass(frozen=True)
class Depth:
    """
    Depth proxy used to estimate price impact without a full liquidity curve.

    reserve0/reserve1 are (virtual) reserves in human units. Discrete-bin pools
    also carry the active bin id and that bin's reserves.
    """

    reserve0: Decimal
    reserve1: Decimal
    active_id: Optional[int] = None
    bin_reserve0: Optional[Decimal] = None
    bin_reserve1: Optional[Decimal] = None


@dataclass(frozen=True)
class PriceSnapshot:
    """Last observed state of one pool. Replaced wholesale on every poll."""

    pool: PoolDescriptor
    price: Decimal
    depth: Depth
    block_number: int
    cycle: int
    timestamp: float = field(default_factory=time.time)

    @property
    def inverse_price(self) -> Decimal:
        if self.price == 0:
            return Decimal(0)
        return Decimal(1) / self.price

    def age_cycles(self, current_cycle: int) -> int:
        return current_cycle - self.cycle


@dataclass(frozen=True)
class PriceDelta:
    """Two pools of the same pair whose prices diverge beyond the threshold."""

    pair_key: str
    buy: PriceSnapshot
    sell: PriceSnapshot
    delta_pct: Decimal
    cycle: int
    timestamp: float = field(default_factory=time.time)

    def __post_init__(self):
        if self.buy.price >= self.sell.price:
            raise ValidationError(
                "Buy leg must be cheaper than sell leg",
                {"buy": str(self.buy.price), "sell": str(self.sell.price)},
            )


@dataclass(frozen=True)
class TradeLeg:
    """One swap of the two-leg path. Amounts are in human units."""

    pool: PoolDescriptor
    token_in: str
    token_out: str
    decimals_in: int
    decimals_out: int
    amount_in: Decimal
    expected_out: Decimal

    @property
    def fee_rate(self) -> Decimal:
        return self.pool.fee_rate


@dataclass(frozen=True)
class CostBreakdown:
    """
    Full cost stack of an opportunity, all values in quote-token units.

    gross_revenue already has fees and impact embedded; the fee and impact
    fields attribute how much each one took.
    """

    gross_revenue: Decimal
    borrow_fee: Decimal
    leg1_fee: Decimal
    leg2_fee: Decimal
    impact_cost: Decimal
    execution_cost: Decimal
    safety_margin: Decimal
    net_profit: Decimal

    def to_dict(self) -> Dict[str, float]:
        """Convert to dictionary for JSON serialization."""
        return {
            "gross_revenue": float(self.gross_revenue),
            "borrow_fee": float(self.borrow_fee),
            "leg1_fee": float(self.leg1_fee),
            "leg2_fee": float(self.leg2_fee),
            "impact_cost": float(self.impact_cost),
            "execution_cost": float(self.execution_cost),
            "safety_margin": float(self.safety_margin),
            "net_profit": float(self.net_profit),
        }

    def format_log(self) -> str:
        return (
            f"gross={self.gross_revenue:.6f} borrow_fee={self.borrow_fee:.6f} "
            f"leg1_fee={self.leg1_fee:.6f} leg2_fee={self.leg2_fee:.6f} "
            f"impact={self.impact_cost:.6f} exec={self.execution_cost:.6f} "
            f"margin={self.safety_margin:.6f} net={self.net_profit:.6f}"
        )


@dataclass(frozen=True)
class SearchResult:
    """Outcome of the input-size search."""

    amount: Decimal
    value: Decimal
    iterations: int
    converged: bool
    fallback_reason: Optional[str] = None
    duration_ms: float = 0.0


@dataclass(frozen=True)
class ArbitrageOpportunity:
    """
    A sized, costed two-leg trade ready for composition.

    Invariant: costs.net_profit >= min_profit at creation time. That is a
    point-in-time claim against the snapshot, not a guarantee.
    """

    pair_key: str
    borrow_token: str
    borrow_decimals: int
    borrow_amount: Decimal
    input_size: Decimal
    legs: Tuple[TradeLeg, TradeLeg]
    flash_provider: str
    costs: CostBreakdown
    min_profit: Decimal
    cycle: int
    block_number: int
    native_price_quote: Decimal
    search: Optional[SearchResult] = None
    created_at: float = field(default_factory=time.time)

    def __post_init__(self):
        if self.costs.net_profit < self.min_profit:
            raise ValidationError(
                "Opportunity net profit below floor",
                {
                    "net_profit": str(self.costs.net_profit),
                    "min_profit": str(self.min_profit),
                },
            )

    @property
    def net_profit(self) -> Decimal:
        return self.costs.net_profit

    @property
    def pool_addresses(self) -> Tuple[str, ...]:
        return tuple(leg.pool.key for leg in self.legs)

    @property
    def path_label(self) -> str:
        return " -> ".join(f"{leg.pool.venue}:{leg.pool.label}" for leg in self.legs)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "pair": self.pair_key,
            "path": self.path_label,
            "borrow_token": self.borrow_token,
            "borrow_amount": str(self.borrow_amount),
            "input_size": str(self.input_size),
            "flash_provider": self.flash_provider,
            "cycle": self.cycle,
            "block_number": self.block_number,
            "costs": self.costs.to_dict(),
        }
