"""
Venue registry: the static set of pools the engine watches.

Parses pool entries from the loaded configuration into immutable
PoolDescriptor instances and groups them by token pair. No I/O happens here.
"""

from collections import defaultdict
from typing import Any, Dict, Iterable, List, Optional

from web3 import Web3

from flash_arbitrage.exceptions import ConfigurationError
from flash_arbitrage.utils import get_logger

from .types import ZERO_ADDRESS, PoolDescriptor, PriceMode

logger = get_logger(__name__)

# Fee tiers the concentrated-liquidity venues actually deploy
KNOWN_FEE_TIERS = {100, 500, 2500, 3000, 10000}


def _require(entry: Dict[str, Any], key: str, index: int) -> Any:
    """Get required pool field or fail loudly."""
    value = entry.get(key)
    if value is None or value == "":
        raise ConfigurationError(
            f"Pool config {index} missing '{key}'", {"pool": entry.get("label")}
        )
    return value


def _checksum(address: str, field_name: str, label: str) -> str:
    if not isinstance(address, str) or not Web3.is_address(address):
        raise ConfigurationError(
            f"Pool '{label}' has invalid {field_name}: {address}",
            {"field": field_name},
        )
    if address.lower() == ZERO_ADDRESS:
        raise ConfigurationError(
            f"Pool '{label}' has zero {field_name}", {"field": field_name}
        )
    return Web3.to_checksum_address(address)


def _integer(value: Any, field_name: str, label: str) -> Optional[int]:
    if value is None:
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ConfigurationError(
            f"Pool '{label}' has non-integer {field_name}: {value!r}", {"field": field_name}
        ) from None


def parse_pool(entry: Dict[str, Any], index: int = 0) -> PoolDescriptor:
    """
    Validate one pool entry and build its descriptor.

    Args:
        entry: Pool mapping from the config file
        index: Position in the pool list (for error messages)

    Returns:
        PoolDescriptor

    Raises:
        ConfigurationError: If the entry is malformed
    """
    if not isinstance(entry, dict):
        raise ConfigurationError(f"Pool config {index} must be a dict")

    label = _require(entry, "label", index)
    venue = _require(entry, "venue", index)

    mode_raw = _require(entry, "mode", index)
    try:
        mode = PriceMode(mode_raw)
    except ValueError:
        valid = ", ".join(m.value for m in PriceMode)
        raise ConfigurationError(
            f"Pool '{label}' has invalid mode '{mode_raw}' (must be one of {valid})"
        )

    address = _checksum(_require(entry, "address", index), "address", label)
    token0 = _checksum(_require(entry, "token0", index), "token0", label)
    token1 = _checksum(_require(entry, "token1", index), "token1", label)
    if token0 == token1:
        raise ConfigurationError(f"Pool '{label}' has identical tokens")

    decimals0 = _integer(_require(entry, "decimals0", index), "decimals0", label)
    decimals1 = _integer(_require(entry, "decimals1", index), "decimals1", label)
    if not (0 <= decimals0 <= 36 and 0 <= decimals1 <= 36):
        raise ConfigurationError(f"Pool '{label}' has out-of-range decimals")

    fee_bps = _integer(entry.get("fee_bps"), "fee_bps", label)
    fee_tier = _integer(entry.get("fee_tier"), "fee_tier", label)
    bin_step = _integer(entry.get("bin_step"), "bin_step", label)

    if mode == PriceMode.CONCENTRATED:
        if fee_tier is None:
            raise ConfigurationError(f"Pool '{label}' (concentrated) missing 'fee_tier'")
        if fee_tier not in KNOWN_FEE_TIERS:
            logger.warning(f"Pool '{label}' uses non-standard fee tier {fee_tier}")
    elif mode == PriceMode.DISCRETE_BIN:
        if bin_step is None or bin_step <= 0:
            raise ConfigurationError(f"Pool '{label}' (discrete_bin) missing 'bin_step'")
    elif fee_bps is not None and not (0 <= fee_bps < 10_000):
        raise ConfigurationError(f"Pool '{label}' fee_bps out of range: {fee_bps}")

    return PoolDescriptor(
        label=label,
        venue=venue,
        address=address,
        token0=token0,
        token1=token1,
        decimals0=decimals0,
        decimals1=decimals1,
        mode=mode,
        fee_bps=fee_bps,
        fee_tier=fee_tier,
        bin_step=bin_step,
        base_symbol=entry.get("base_symbol", ""),
        quote_symbol=entry.get("quote_symbol", ""),
    )


class PoolRegistry:
    """Immutable set of pool descriptors indexed by address and by pair."""

    def __init__(self, pools: Iterable[PoolDescriptor]):
        self._pools: Dict[str, PoolDescriptor] = {}
        for pool in pools:
            if pool.key in self._pools:
                raise ConfigurationError(
                    f"Duplicate pool address: {pool.address}",
                    {"labels": [self._pools[pool.key].label, pool.label]},
                )
            self._pools[pool.key] = pool

        self._by_pair: Dict[str, List[PoolDescriptor]] = defaultdict(list)
        for pool in self._pools.values():
            self._by_pair[pool.pair_key].append(pool)

    @classmethod
    def from_config(cls, entries: List[Dict[str, Any]]) -> "PoolRegistry":
        """Build a registry from the `pools` list of the config file."""
        if not isinstance(entries, list):
            raise ConfigurationError("pools must be a list")
        registry = cls(parse_pool(entry, i) for i, entry in enumerate(entries))
        logger.info(
            f"Registry loaded: {len(registry)} pools, "
            f"{len(registry.cross_venue_pairs())} cross-venue pairs"
        )
        return registry

    def __len__(self) -> int:
        return len(self._pools)

    def __iter__(self):
        return iter(self._pools.values())

    @property
    def pools(self) -> List[PoolDescriptor]:
        return list(self._pools.values())

    def get(self, address: str) -> Optional[PoolDescriptor]:
        return self._pools.get(address.lower())

    def pairs(self) -> Dict[str, List[PoolDescriptor]]:
        return {k: list(v) for k, v in self._by_pair.items()}

    def cross_venue_pairs(self) -> Dict[str, List[PoolDescriptor]]:
        """Only the pairs quoted by two or more pools (the ones that can diverge)."""
        return {k: list(v) for k, v in self._by_pair.items() if len(v) >= 2}

    def venues(self) -> List[str]:
        return sorted({pool.venue for pool in self._pools.values()})
