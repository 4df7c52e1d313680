"""
Transaction composer: encodes an opportunity into the settlement call.

Pure function of the opportunity plus two static tables (venue -> adapter
address and provider name -> provider address). Nonce and fees are attached
later by the execution coordinator via PreparedTransaction.with_bid().
"""

from dataclasses import dataclass, replace
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from eth_abi import encode as abi_encode
from web3 import Web3

from flash_arbitrage.exceptions import ConfigurationError, ValidationError
from flash_arbitrage.utils import get_logger, to_raw

from . import abi
from .types import ZERO_ADDRESS, ArbitrageOpportunity, PriceMode, TradeLeg

logger = get_logger(__name__)


@dataclass(frozen=True)
class PreparedTransaction:
    """Encoded settlement call; immutable, re-bid by creating a new instance."""

    to: str
    data: bytes
    value: int
    gas_limit: int
    chain_id: int
    opportunity: ArbitrageOpportunity
    min_profit_raw: int
    nonce: Optional[int] = None
    max_fee_per_gas: Optional[int] = None
    max_priority_fee_per_gas: Optional[int] = None

    def with_bid(self, nonce: int, max_fee: int, priority_fee: int) -> "PreparedTransaction":
        return replace(
            self,
            nonce=nonce,
            max_fee_per_gas=max_fee,
            max_priority_fee_per_gas=priority_fee,
        )

    def call_params(self, sender: str) -> Dict[str, Any]:
        """eth_call parameters for simulation."""
        return {"from": sender, "to": self.to, "data": self.data, "value": self.value}

    def to_tx_params(self) -> Dict[str, Any]:
        """EIP-1559 transaction dict for signing."""
        if self.nonce is None or self.max_fee_per_gas is None:
            raise ValidationError("Transaction has no nonce or fee bid attached")
        return {
            "type": 2,
            "chainId": self.chain_id,
            "to": self.to,
            "data": self.data,
            "value": self.value,
            "gas": self.gas_limit,
            "nonce": self.nonce,
            "maxFeePerGas": self.max_fee_per_gas,
            "maxPriorityFeePerGas": self.max_priority_fee_per_gas,
        }


def leg_extra_data(leg: TradeLeg) -> bytes:
    """Per-venue parameter the adapter needs: fee tier, bin step or nothing."""
    if leg.pool.mode == PriceMode.CONSTANT_PRODUCT:
        return b""
    return abi_encode(["uint24"], [leg.pool.fee_param])


class TransactionComposer:
    """
    Args:
        executor_address: Settlement contract
        adapters: Venue key -> adapter contract address
        providers: Flash provider name -> provider address
        chain_id: EIP-155 chain id
        leg_slippage_tolerance: Per-leg minAmountOut discount (0.005 = 0.5%)
        base_gas: Fixed gas overhead
        gas_per_swap: Gas per leg
        gas_limit_buffer: Multiplier on the gas estimate
    """

    def __init__(
        self,
        executor_address: str,
        adapters: Dict[str, str],
        providers: Dict[str, str],
        chain_id: int,
        leg_slippage_tolerance: Decimal = Decimal("0.005"),
        base_gas: int = 21_000,
        gas_per_swap: int = 150_000,
        gas_limit_buffer: Decimal = Decimal("1.2"),
    ):
        if not executor_address or not Web3.is_address(executor_address):
            raise ConfigurationError(f"Invalid executor address: {executor_address}")
        self.executor_address = Web3.to_checksum_address(executor_address)
        self.adapters = {venue: addr for venue, addr in adapters.items()}
        self.providers = {name: addr for name, addr in providers.items()}
        self.chain_id = chain_id
        self.leg_slippage_tolerance = Decimal(leg_slippage_tolerance)
        self.base_gas = base_gas
        self.gas_per_swap = gas_per_swap
        self.gas_limit_buffer = Decimal(gas_limit_buffer)

    def _adapter(self, venue: str) -> str:
        address = self.adapters.get(venue)
        if not address or not Web3.is_address(address) or address.lower() == ZERO_ADDRESS:
            raise ConfigurationError(
                f"No settlement adapter for venue '{venue}'", {"venue": venue}
            )
        return Web3.to_checksum_address(address)

    def _provider(self, name: str) -> str:
        address = self.providers.get(name)
        if not address or not Web3.is_address(address) or address.lower() == ZERO_ADDRESS:
            raise ConfigurationError(
                f"Unknown flash provider '{name}'", {"provider": name}
            )
        return Web3.to_checksum_address(address)

    def gas_limit(self, n_legs: int) -> int:
        estimate = Decimal(self.base_gas + self.gas_per_swap * n_legs)
        return int(estimate * self.gas_limit_buffer)

    def build_steps(self, opportunity: ArbitrageOpportunity, loan_raw: int) -> List[Tuple]:
        steps = []
        for i, leg in enumerate(opportunity.legs):
            expected_raw = to_raw(leg.expected_out, leg.decimals_out)
            min_out = to_raw(
                leg.expected_out * (Decimal(1) - self.leg_slippage_tolerance),
                leg.decimals_out,
            )
            if expected_raw <= 0:
                raise ValidationError(
                    f"Leg {i + 1} expects zero output", {"pool": leg.pool.label}
                )
            steps.append(
                (
                    self._adapter(leg.pool.venue),
                    Web3.to_checksum_address(leg.token_in),
                    Web3.to_checksum_address(leg.token_out),
                    # Later steps spend the whole balance received
                    loan_raw if i == 0 else 0,
                    min_out,
                    leg_extra_data(leg),
                )
            )
        return steps

    def compose(self, opportunity: ArbitrageOpportunity) -> PreparedTransaction:
        """
        Encode executeArbitrage for an opportunity.

        Raises:
            ConfigurationError: Unknown venue, zero adapter or unknown provider
            ValidationError: Zero loan amount or zero expected leg output
        """
        provider = self._provider(opportunity.flash_provider)
        loan_raw = to_raw(opportunity.borrow_amount, opportunity.borrow_decimals)
        if loan_raw <= 0:
            raise ValidationError(
                "Flash loan amount rounds to zero",
                {"borrow_amount": str(opportunity.borrow_amount)},
            )

        steps = self.build_steps(opportunity, loan_raw)
        min_profit_raw = to_raw(opportunity.min_profit, opportunity.borrow_decimals)

        data = abi.selector(abi.EXECUTE_ARBITRAGE) + abi_encode(
            abi.EXECUTE_ARBITRAGE_INPUT,
            [
                provider,
                Web3.to_checksum_address(opportunity.borrow_token),
                loan_raw,
                steps,
                min_profit_raw,
            ],
        )

        prepared = PreparedTransaction(
            to=self.executor_address,
            data=data,
            value=0,
            gas_limit=self.gas_limit(len(opportunity.legs)),
            chain_id=self.chain_id,
            opportunity=opportunity,
            min_profit_raw=min_profit_raw,
        )
        logger.debug(
            f"Composed {opportunity.path_label}: loan={loan_raw} "
            f"minProfit={min_profit_raw} gas={prepared.gas_limit} ({len(data)} bytes)"
        )
        return prepared
