"""
Price monitor: batched pool reads, snapshot table and delta detection.

One poll is one Multicall3 round trip for every pool (plus a second, smaller
batch when a discrete-bin pool's active bin moved). Snapshots are replaced
wholesale, so a reader holding a copy of the table never sees a torn state.
"""

import asyncio
import time
from collections import defaultdict
from decimal import Decimal
from itertools import combinations
from typing import Callable, Dict, Iterable, List, Optional, Set, Tuple

from flash_arbitrage.exceptions import DataError, NetworkError
from flash_arbitrage.utils import get_logger

from .adapters import adapter_for
from .registry import PoolRegistry
from .types import PoolDescriptor, PriceDelta, PriceMode, PriceSnapshot

logger = get_logger(__name__)

DeltaHandler = Callable[[PriceDelta], None]


class PriceMonitor:
    """
    Polls every registered pool and emits price deltas between venues.

    Args:
        registry: Pools to watch
        multicall: Object with an async aggregate(calls) -> (block, results)
        config: MonitorConfig (thresholds, retry policy, staleness)
        metrics: Optional EngineMetrics
    """

    def __init__(self, registry: PoolRegistry, multicall, config, metrics=None):
        self.registry = registry
        self.multicall = multicall
        self.config = config
        self.metrics = metrics

        self.cycle = 0
        self.block_number = 0
        self.liveness_alarm = False

        self._snapshots: Dict[str, PriceSnapshot] = {}
        self._errors: Dict[str, int] = defaultdict(int)
        self._stale: Set[str] = set()
        self._handlers: List[DeltaHandler] = []

        # key -> (active_id, cycles unchanged)
        self._bin_tracking: Dict[str, Tuple[int, int]] = {}
        self._stale_bin_warned: Set[str] = set()
        self._orientation_warned: Set[Tuple[str, str]] = set()

    # ------------------------------------------------------------------
    # Snapshot table
    # ------------------------------------------------------------------

    def snapshot_table(self) -> Dict[str, PriceSnapshot]:
        """Shallow copy of the current table; safe to read across awaits."""
        return dict(self._snapshots)

    def get_snapshot(self, address: str) -> Optional[PriceSnapshot]:
        return self._snapshots.get(address.lower())

    def is_stale(self, address: str) -> bool:
        return address.lower() in self._stale

    def is_fresh(self, snapshot: Optional[PriceSnapshot], current_cycle: Optional[int] = None) -> bool:
        if snapshot is None or snapshot.pool.key in self._stale:
            return False
        cycle = self.cycle if current_cycle is None else current_cycle
        return snapshot.age_cycles(cycle) <= self.config.max_snapshot_age_cycles

    def invalidate(self, addresses: Iterable[str]) -> None:
        """Drop snapshots of pools whose state a confirmed trade just changed."""
        for address in addresses:
            if self._snapshots.pop(address.lower(), None) is not None:
                logger.debug(f"Invalidated snapshot for {address}")

    def on_delta(self, handler: DeltaHandler) -> None:
        self._handlers.append(handler)

    # ------------------------------------------------------------------
    # Polling
    # ------------------------------------------------------------------

    async def _aggregate_with_retry(self, calls):
        """Run one batch with exponential backoff; None once retries are exhausted."""
        attempts = self.config.max_batch_retries
        for attempt in range(attempts):
            try:
                return await self.multicall.aggregate(calls)
            except NetworkError as e:
                if attempt == attempts - 1:
                    logger.error(f"Batch read failed after {attempts} attempts: {e}")
                    return None
                delay = self.config.backoff_base_sec * (2**attempt)
                logger.warning(
                    f"Batch read failed (attempt {attempt + 1}/{attempts}), "
                    f"retrying in {delay:.1f}s: {e}"
                )
                await asyncio.sleep(delay)
        return None

    def _record_error(self, pool: PoolDescriptor, error: Exception) -> None:
        self._errors[pool.key] += 1
        count = self._errors[pool.key]
        if self.metrics:
            self.metrics.record_poll_error(pool.venue)

        if count >= self.config.max_pool_errors and pool.key not in self._stale:
            self._stale.add(pool.key)
            logger.warning(
                f"{pool.venue}/{pool.label} marked stale after {count} consecutive errors: {error}"
            )
        else:
            logger.debug(f"{pool.venue}/{pool.label} read failed ({count}): {error}")

    def _record_success(self, pool: PoolDescriptor) -> None:
        if pool.key in self._stale:
            logger.info(f"{pool.venue}/{pool.label} recovered")
        self._errors[pool.key] = 0
        self._stale.discard(pool.key)

    def _track_active_bin(self, snapshot: PriceSnapshot) -> None:
        key = snapshot.pool.key
        active_id = snapshot.depth.active_id
        previous = self._bin_tracking.get(key)
        if previous is None or previous[0] != active_id:
            self._bin_tracking[key] = (active_id, 0)
            self._stale_bin_warned.discard(key)
            return

        unchanged = previous[1] + 1
        self._bin_tracking[key] = (active_id, unchanged)
        if unchanged >= self.config.stale_bin_cycles and key not in self._stale_bin_warned:
            self._stale_bin_warned.add(key)
            logger.warning(
                f"{snapshot.pool.label}: active bin {active_id} unchanged for "
                f"{unchanged} polls, pool may be inactive"
            )

    async def poll(self) -> List[PriceSnapshot]:
        """
        Read every pool in one batch and replace their snapshots.

        Returns:
            Fresh snapshots from this cycle; empty if the batch transport failed
        """
        started = time.time()
        pools = self.registry.pools

        calls = []
        slices: Dict[str, Tuple[int, int]] = {}
        for pool in pools:
            previous = self._snapshots.get(pool.key)
            hint = previous.depth if previous else None
            pool_calls = adapter_for(pool.mode).build_calls(pool, hint)
            slices[pool.key] = (len(calls), len(calls) + len(pool_calls))
            calls.extend(pool_calls)

        response = await self._aggregate_with_retry(calls)
        if response is None:
            if not self.liveness_alarm:
                logger.error("Liveness alarm: price reads are failing, no fresh prices")
            self.liveness_alarm = True
            if self.metrics:
                self.metrics.record_liveness_alarm()
            return []

        if self.liveness_alarm:
            logger.info("Liveness restored")
        self.liveness_alarm = False

        block_number, results = response
        per_pool = {}
        for pool in pools:
            start, end = slices[pool.key]
            per_pool[pool.key] = list(results[start:end])

        await self._resolve_follow_ups(pools, per_pool)

        self.cycle += 1
        self.block_number = block_number
        fresh: List[PriceSnapshot] = []
        failed = 0

        for pool in pools:
            pool_results = per_pool.get(pool.key)
            if pool_results is None:
                failed += 1
                continue
            try:
                price, depth = adapter_for(pool.mode).decode(pool, pool_results)
            except DataError as e:
                self._record_error(pool, e)
                failed += 1
                continue

            snapshot = PriceSnapshot(
                pool=pool,
                price=price,
                depth=depth,
                block_number=block_number,
                cycle=self.cycle,
            )
            self._snapshots[pool.key] = snapshot
            self._record_success(pool)
            if pool.mode == PriceMode.DISCRETE_BIN:
                self._track_active_bin(snapshot)
            fresh.append(snapshot)

        duration = time.time() - started
        if self.metrics:
            self.metrics.record_poll(duration, len(fresh), failed)
        logger.debug(
            f"Cycle {self.cycle} @ block {block_number}: "
            f"{len(fresh)}/{len(pools)} pools in {duration * 1000:.0f}ms"
        )
        return fresh

    async def _resolve_follow_ups(self, pools: List[PoolDescriptor], per_pool: Dict) -> None:
        """
        Issue the second batch for pools whose first read was not enough.

        Pools whose follow-up cannot be built or fetched are removed from
        per_pool after their error is recorded.
        """
        follow_calls = []
        owners: List[Tuple[PoolDescriptor, int, int]] = []
        for pool in pools:
            previous = self._snapshots.get(pool.key)
            hint = previous.depth if previous else None
            try:
                extra = adapter_for(pool.mode).follow_up_calls(pool, per_pool[pool.key], hint)
            except DataError as e:
                self._record_error(pool, e)
                per_pool.pop(pool.key)
                continue
            if extra:
                owners.append((pool, len(follow_calls), len(follow_calls) + len(extra)))
                follow_calls.extend(extra)

        if not follow_calls:
            return

        response = await self._aggregate_with_retry(follow_calls)
        for pool, start, end in owners:
            if response is None:
                self._record_error(pool, NetworkError("follow-up batch failed"))
                per_pool.pop(pool.key)
                continue
            _, results = response
            # The follow-up result replaces the speculative read, if any
            first_read = len(adapter_for(pool.mode).build_calls(pool))
            per_pool[pool.key] = per_pool[pool.key][:first_read] + list(results[start:end])

    # ------------------------------------------------------------------
    # Delta detection
    # ------------------------------------------------------------------

    def _same_orientation(self, a: PriceSnapshot, b: PriceSnapshot) -> bool:
        if a.pool.token0.lower() == b.pool.token0.lower():
            return True
        pair = tuple(sorted([a.pool.key, b.pool.key]))
        if pair not in self._orientation_warned:
            self._orientation_warned.add(pair)
            logger.warning(
                f"{a.pool.label} and {b.pool.label} quote the pair in opposite "
                f"token order; not compared"
            )
        return False

    def detect_deltas(self, table: Optional[Dict[str, PriceSnapshot]] = None) -> List[PriceDelta]:
        """Compare every pair of fresh pools quoting the same pair."""
        table = self.snapshot_table() if table is None else table
        threshold = Decimal(self.config.delta_threshold_pct)
        deltas: List[PriceDelta] = []

        for pair_key, pools in self.registry.cross_venue_pairs().items():
            fresh = [
                table[p.key] for p in pools if p.key in table and self.is_fresh(table[p.key])
            ]
            for a, b in combinations(fresh, 2):
                if a.price <= 0 or b.price <= 0:
                    continue
                if not self._same_orientation(a, b):
                    continue
                lo, hi = (a, b) if a.price < b.price else (b, a)
                if hi.price == lo.price:
                    continue
                delta_pct = (hi.price - lo.price) / lo.price * Decimal(100)
                if delta_pct < threshold:
                    continue
                deltas.append(
                    PriceDelta(
                        pair_key=pair_key,
                        buy=lo,
                        sell=hi,
                        delta_pct=delta_pct,
                        cycle=self.cycle,
                    )
                )

        deltas.sort(key=lambda d: d.delta_pct, reverse=True)
        if self.metrics:
            for delta in deltas:
                self.metrics.record_delta(delta.buy.pool.pair_name)
        return deltas

    async def poll_and_detect(self) -> List[PriceDelta]:
        """Poll, detect, and dispatch each delta to the subscribed handlers."""
        await self.poll()
        if self.liveness_alarm:
            return []

        deltas = self.detect_deltas()
        for delta in deltas:
            logger.info(
                f"Delta {delta.buy.pool.pair_name}: buy {delta.buy.pool.label} @ "
                f"{delta.buy.price:.6f}, sell {delta.sell.pool.label} @ "
                f"{delta.sell.price:.6f} ({delta.delta_pct:.3f}%)"
            )
            for handler in self._handlers:
                try:
                    handler(delta)
                except Exception as e:
                    logger.error(f"Delta handler failed: {e}", exc_info=True)
        return deltas
