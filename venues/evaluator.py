"""
Opportunity evaluator: sizes a price delta and prices its full cost stack.

Units: the trade size x is in base (token0) units. The flash loan borrows the
quote token (token1): B = x * p_buy. Leg 1 turns B into base on the cheap
pool, leg 2 sells that base for quote on the rich pool, and every cost below
is expressed in quote units.
"""

from collections import Counter
from decimal import Decimal
from typing import Iterable, Optional, Tuple

from flash_arbitrage.utils import basis_points_to_decimal, get_logger

from .adapters import leg_output, spot_output
from .optimizer import ternary_search
from .types import (
    ArbitrageOpportunity,
    CostBreakdown,
    PriceDelta,
    PriceSnapshot,
    TradeLeg,
)

logger = get_logger(__name__)

# Used when no provider is configured (observe mode): Aave V3 charges 5 bps
DEFAULT_PROVIDER = ("aave_v3", Decimal("5"))

N_SWAPS = 2


class OpportunityEvaluator:
    """
    Turns a PriceDelta into an ArbitrageOpportunity or rejects it.

    Args:
        config: EvaluatorConfig
        flash_providers: Configured providers; the cheapest enabled one is used
        max_snapshot_age_cycles: Snapshots older than this are rejected
        monitor: Optional PriceMonitor, consulted for pools marked stale
        gas_estimator: Optional estimator used when no static execution cost is set
        metrics: Optional EngineMetrics
        require_native_price: Reject opportunities whose gas cannot be priced in
            quote units; set whenever outcomes will carry real gas costs
    """

    def __init__(
        self,
        config,
        flash_providers: Iterable = (),
        max_snapshot_age_cycles: int = 2,
        monitor=None,
        gas_estimator=None,
        metrics=None,
        require_native_price: bool = False,
    ):
        self.config = config
        self.require_native_price = require_native_price
        self.max_snapshot_age_cycles = max_snapshot_age_cycles
        self.monitor = monitor
        self.gas_estimator = gas_estimator
        self.metrics = metrics
        self.rejections: Counter = Counter()

        enabled = [p for p in flash_providers if p.enabled]
        if enabled:
            cheapest = min(enabled, key=lambda p: Decimal(p.fee_bps))
            self.provider_name = cheapest.name
            self.borrow_fee_rate = basis_points_to_decimal(cheapest.fee_bps)
        else:
            self.provider_name = DEFAULT_PROVIDER[0]
            self.borrow_fee_rate = basis_points_to_decimal(DEFAULT_PROVIDER[1])

        if config.execution_cost is None and gas_estimator is None:
            logger.warning("No execution cost or gas estimator configured; execution is priced at 0")

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _reject(self, delta: PriceDelta, reason: str) -> None:
        self.rejections[reason] += 1
        if self.metrics:
            self.metrics.record_rejection(reason)
        logger.debug(
            f"Rejected {delta.buy.pool.pair_name} "
            f"{delta.buy.pool.label} -> {delta.sell.pool.label}: {reason}"
        )
        return None

    def _floor(self, buy: PriceSnapshot, sell: PriceSnapshot) -> Decimal:
        multipliers = self.config.venue_threshold_multipliers
        multiplier = max(
            Decimal(multipliers.get(buy.pool.venue, 1)),
            Decimal(multipliers.get(sell.pool.venue, 1)),
        )
        return Decimal(self.config.min_profit) * multiplier

    def _native_price(self, buy: PriceSnapshot) -> Optional[Decimal]:
        """Quote units per native gas token for this pair, if known."""
        native = self.config.native_token
        if native and buy.pool.token0.lower() == native.lower():
            return buy.price
        if self.config.native_price_quote is not None:
            return Decimal(self.config.native_price_quote)
        return None

    def _execution_cost(self, native_price: Optional[Decimal]) -> Optional[Decimal]:
        if self.config.execution_cost is not None:
            return Decimal(self.config.execution_cost)
        if self.gas_estimator is None:
            return Decimal(0)
        if native_price is None:
            return None
        return self.gas_estimator.cost_native(N_SWAPS) * native_price

    def interval(self, buy: PriceSnapshot, sell: PriceSnapshot) -> Tuple[Decimal, Decimal]:
        """
        Search interval in base units.

        hi is capped per venue and by max_depth_fraction of the thinner
        base-side depth. A cap below min_input collapses the interval to
        the cap rather than rejecting.
        """
        lo = Decimal(self.config.min_input)
        hi = Decimal(self.config.max_input)

        caps = self.config.max_input_by_venue
        for venue in (buy.pool.venue, sell.pool.venue):
            if venue in caps:
                hi = min(hi, Decimal(caps[venue]))

        depth_cap = Decimal(self.config.max_depth_fraction) * min(
            buy.depth.reserve0, sell.depth.reserve0
        )
        hi = min(hi, depth_cap)
        if hi < lo:
            lo = hi
        return lo, hi

    def simulate(self, buy: PriceSnapshot, sell: PriceSnapshot, size: Decimal) -> Tuple[Decimal, Decimal, Decimal]:
        """(borrow amount, base received on leg 1, quote received on leg 2) for a base size."""
        borrow = size * buy.price
        base_out = leg_output(buy, borrow, zero_for_one=False)
        quote_out = leg_output(sell, base_out, zero_for_one=True)
        return borrow, base_out, quote_out

    def cost_breakdown(
        self,
        buy: PriceSnapshot,
        sell: PriceSnapshot,
        size: Decimal,
        execution_cost: Decimal,
    ) -> Tuple[CostBreakdown, Decimal, Decimal, Decimal]:
        """Full cost stack at one size; also returns (borrow, base_out, quote_out)."""
        borrow, base_out, quote_out = self.simulate(buy, sell, size)
        gross = quote_out - borrow

        leg1_fee = borrow * buy.pool.fee_rate
        leg2_fee = base_out * sell.pool.fee_rate * sell.price

        spot_base = spot_output(buy, borrow, zero_for_one=False)
        spot_quote = spot_output(sell, base_out, zero_for_one=True)
        impact = (spot_base - base_out) * sell.price + (spot_quote - quote_out)

        borrow_fee = borrow * self.borrow_fee_rate
        margin = Decimal(self.config.safety_margin) + (
            Decimal(self.config.safety_margin_pct) / Decimal(100) * borrow
        )
        net = gross - borrow_fee - execution_cost - margin

        costs = CostBreakdown(
            gross_revenue=gross,
            borrow_fee=borrow_fee,
            leg1_fee=leg1_fee,
            leg2_fee=leg2_fee,
            impact_cost=impact,
            execution_cost=execution_cost,
            safety_margin=margin,
            net_profit=net,
        )
        return costs, borrow, base_out, quote_out

    # ------------------------------------------------------------------
    # Evaluation
    # ------------------------------------------------------------------

    def evaluate(self, delta: PriceDelta, current_cycle: int) -> Optional[ArbitrageOpportunity]:
        """
        Size and cost a delta.

        Returns:
            ArbitrageOpportunity whose net profit clears the floor, or None
        """
        buy, sell = delta.buy, delta.sell

        for snapshot in (buy, sell):
            if snapshot is None:
                return self._reject(delta, "missing_snapshot")
            if snapshot.age_cycles(current_cycle) > self.max_snapshot_age_cycles:
                return self._reject(delta, "stale_snapshot")
            if self.monitor is not None and self.monitor.is_stale(snapshot.pool.address):
                return self._reject(delta, "stale_pool")

        if buy.price >= sell.price:
            return self._reject(delta, "no_spread")

        native_price = self._native_price(buy)
        execution_cost = self._execution_cost(native_price)
        if execution_cost is None or (native_price is None and self.require_native_price):
            return self._reject(delta, "no_native_price")

        lo, hi = self.interval(buy, sell)
        if hi <= 0:
            return self._reject(delta, "no_depth")

        def objective(size: Decimal) -> Decimal:
            costs, _, _, _ = self.cost_breakdown(buy, sell, size, execution_cost)
            return costs.net_profit

        try:
            search = ternary_search(objective, lo, hi, self.config.search_iterations)
            costs, borrow, base_out, quote_out = self.cost_breakdown(
                buy, sell, search.amount, execution_cost
            )
        except ValueError as e:
            return self._reject(delta, f"model_error:{e}")

        floor = self._floor(buy, sell)
        if search.fallback_reason or costs.net_profit < floor:
            return self._reject(delta, search.fallback_reason or "below_floor")

        pool_buy, pool_sell = buy.pool, sell.pool
        legs = (
            TradeLeg(
                pool=pool_buy,
                token_in=pool_buy.token1,
                token_out=pool_buy.token0,
                decimals_in=pool_buy.decimals1,
                decimals_out=pool_buy.decimals0,
                amount_in=borrow,
                expected_out=base_out,
            ),
            TradeLeg(
                pool=pool_sell,
                token_in=pool_sell.token0,
                token_out=pool_sell.token1,
                decimals_in=pool_sell.decimals0,
                decimals_out=pool_sell.decimals1,
                amount_in=base_out,
                expected_out=quote_out,
            ),
        )

        opportunity = ArbitrageOpportunity(
            pair_key=delta.pair_key,
            borrow_token=pool_buy.token1,
            borrow_decimals=pool_buy.decimals1,
            borrow_amount=borrow,
            input_size=search.amount,
            legs=legs,
            flash_provider=self.provider_name,
            costs=costs,
            min_profit=floor,
            cycle=delta.cycle,
            block_number=min(buy.block_number, sell.block_number),
            native_price_quote=native_price or Decimal(0),
            search=search,
        )

        if self.metrics:
            self.metrics.record_opportunity(pool_buy.pair_name, float(costs.net_profit))
        logger.info(
            f"Opportunity {pool_buy.pair_name} {opportunity.path_label} "
            f"size={search.amount:.6f} borrow={borrow:.6f} | {costs.format_log()}"
        )
        return opportunity
