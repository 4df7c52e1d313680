"""
Gas bidding and execution-cost estimation.

FeeBid is the EIP-1559 bid the coordinator attaches to a submission. The
estimators value a settlement transaction in native gas token so the
evaluator can price execution without touching the network; they refresh
their cached inputs once per cycle.
"""

import asyncio
from dataclasses import dataclass
from decimal import ROUND_CEILING, Decimal
from typing import Optional, Tuple

from eth_abi import decode as abi_decode
from eth_abi import encode as abi_encode
from web3 import Web3

from flash_arbitrage.utils import get_logger

from . import abi
from .types import ZERO_ADDRESS

logger = get_logger(__name__)

WEI_PER_GWEI = Decimal(10**9)
WEI_PER_NATIVE = Decimal(10**18)
DEFAULT_BUMP = Decimal("1.125")


def gwei_to_wei(gwei) -> int:
    return int(Decimal(str(gwei)) * WEI_PER_GWEI)


def wei_to_native(wei: int) -> Decimal:
    return Decimal(int(wei)) / WEI_PER_NATIVE


@dataclass(frozen=True)
class FeeBid:
    """EIP-1559 fee bid in wei."""

    max_fee_per_gas: int
    max_priority_fee_per_gas: int

    @classmethod
    def from_base_fee(cls, base_fee: int, priority_fee: int) -> "FeeBid":
        """maxFee = 2 * baseFee + priority."""
        return cls(
            max_fee_per_gas=2 * int(base_fee) + int(priority_fee),
            max_priority_fee_per_gas=int(priority_fee),
        )

    def bump(self, multiplier: Decimal = DEFAULT_BUMP) -> "FeeBid":
        """Replacement bid; nodes require at least +10% on both fields."""

        def _scale(value: int) -> int:
            scaled = int((Decimal(value) * multiplier).to_integral_value(rounding=ROUND_CEILING))
            return max(scaled, value + 1)

        return FeeBid(
            max_fee_per_gas=_scale(self.max_fee_per_gas),
            max_priority_fee_per_gas=_scale(self.max_priority_fee_per_gas),
        )

    @property
    def max_fee_gwei(self) -> Decimal:
        return Decimal(self.max_fee_per_gas) / WEI_PER_GWEI


class StaticGasEstimator:
    """
    Gas units from a fixed per-swap model, priced at the node's gas price.

    Without a web3 instance the configured gas price is used as-is.
    """

    def __init__(self, base_gas: int, gas_per_swap: int, gas_price_gwei, web3: Optional[Web3] = None):
        self.base_gas = base_gas
        self.gas_per_swap = gas_per_swap
        self.gas_price_wei = gwei_to_wei(gas_price_gwei)
        self.web3 = web3

    def gas_units(self, n_swaps: int) -> int:
        return self.base_gas + self.gas_per_swap * n_swaps

    async def refresh(self) -> None:
        if self.web3 is None:
            return
        loop = asyncio.get_running_loop()
        try:
            self.gas_price_wei = await loop.run_in_executor(None, lambda: self.web3.eth.gas_price)
        except Exception as e:
            logger.warning(f"Gas price refresh failed, keeping {self.gas_price_wei} wei: {e}")

    def split_native(self, n_swaps: int) -> Tuple[Decimal, Decimal]:
        """(execution gas, data fee) in native units; no separate data fee here."""
        return wei_to_native(self.gas_units(n_swaps) * self.gas_price_wei), Decimal(0)

    def cost_native(self, n_swaps: int) -> Decimal:
        l2, l1 = self.split_native(n_swaps)
        return l2 + l1


class ArbitrumGasEstimator(StaticGasEstimator):
    """
    Arbitrum cost model: L2 execution gas plus the L1 data component.

    NodeInterface.gasEstimateComponents returns the total gas, the part that
    pays for L1 calldata, and the L2 base fee. When the precompile is not
    reachable the estimator falls back to static per-swap native costs.
    """

    STATIC_L2_PER_SWAP = Decimal("0.00002")
    STATIC_L1_PER_SWAP = Decimal("0.00018")

    # Settlement calldata is roughly 740 bytes for two legs
    SAMPLE_CALLDATA = abi.selector(abi.EXECUTE_ARBITRAGE) + b"\xff" * 736

    def __init__(
        self,
        web3: Web3,
        base_gas: int,
        gas_per_swap: int,
        gas_price_gwei=Decimal("0.1"),
        target: Optional[str] = None,
    ):
        super().__init__(base_gas, gas_per_swap, gas_price_gwei, web3)
        self.target = Web3.to_checksum_address(target or ZERO_ADDRESS)
        self.l1_gas: Optional[int] = None
        self.base_fee_wei: Optional[int] = None

    def _components(self, to: str, data: bytes) -> Tuple[int, int, int, int]:
        calldata = abi.selector(abi.NODE_INTERFACE_GAS_COMPONENTS) + abi_encode(
            ["address", "bool", "bytes"], [to, False, data]
        )
        raw = self.web3.eth.call(
            {"to": Web3.to_checksum_address(abi.NODE_INTERFACE_ADDRESS), "data": calldata}
        )
        return abi_decode(abi.NODE_INTERFACE_GAS_COMPONENTS_OUTPUT, bytes(raw))

    async def estimate_components(self, to: str, data: bytes) -> Optional[Tuple[int, int, int, int]]:
        """(gasEstimate, gasEstimateForL1, baseFee, l1BaseFeeEstimate) or None on failure."""
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(None, self._components, to, data)
        except Exception as e:
            logger.debug(f"gasEstimateComponents failed: {e}")
            return None

    async def refresh(self) -> None:
        components = await self.estimate_components(self.target, self.SAMPLE_CALLDATA)
        if components is None:
            if self.l1_gas is not None:
                logger.warning("NodeInterface unavailable, using static gas costs")
            self.l1_gas = None
            self.base_fee_wei = None
            return
        _, l1_gas, base_fee, _ = components
        self.l1_gas = int(l1_gas)
        self.base_fee_wei = int(base_fee)

    def split_native(self, n_swaps: int) -> Tuple[Decimal, Decimal]:
        if self.l1_gas is None or self.base_fee_wei is None:
            return self.STATIC_L2_PER_SWAP * n_swaps, self.STATIC_L1_PER_SWAP * n_swaps
        l2 = wei_to_native(self.gas_units(n_swaps) * self.base_fee_wei)
        l1 = wei_to_native(self.l1_gas * self.base_fee_wei)
        return l2, l1
