"""
Type definitions for the execution stage.
Contains enums and dataclasses shared by the coordinator, circuit breaker and ledger.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional

from .utils import get_current_timestamp


class CoordinatorState(Enum):
    """
    Progression of one settlement submission.

    Values:
        IDLE: No submission in flight
        SIMULATING: eth_call of the payload in progress
        SUBMITTED: Broadcast done, waiting for a receipt
        CONFIRMED: Receipt with status 1
        REVERTED: Receipt with status 0
        FAILED: Transport failure, rejection or timeout
        SKIPPED: Not broadcast (gate, mode, simulation revert)
    """

    IDLE = "idle"
    SIMULATING = "simulating"
    SUBMITTED = "submitted"
    CONFIRMED = "confirmed"
    REVERTED = "reverted"
    FAILED = "failed"
    SKIPPED = "skipped"


class OutcomeStatus(str, Enum):
    CONFIRMED = "Confirmed"
    REVERTED = "Reverted"
    FAILED = "Failed"
    SKIPPED = "Skipped"


# Skips that still say something about the health of the strategy
COUNTED_SKIP_PREFIXES = ("simulation_revert",)


@dataclass(frozen=True)
class ExecutionOutcome:
    """
    Terminal result of one execution attempt.

    Amounts are in human units: realized_profit in the borrowed token,
    gas_cost_native and l1_fee_native in the chain's native token.
    """

    status: OutcomeStatus
    reason: str = ""
    tx_hash: Optional[str] = None
    nonce: Optional[int] = None
    realized_profit: Decimal = Decimal(0)
    gas_cost_native: Decimal = Decimal(0)
    l1_fee_native: Decimal = Decimal(0)
    block_number: Optional[int] = None
    timestamp: float = field(default_factory=get_current_timestamp)

    @property
    def counts_toward_circuit(self) -> bool:
        if self.status in (OutcomeStatus.REVERTED, OutcomeStatus.FAILED):
            return True
        if self.status == OutcomeStatus.SKIPPED:
            return self.reason.startswith(COUNTED_SKIP_PREFIXES)
        return False

    @property
    def total_gas_native(self) -> Decimal:
        return self.gas_cost_native + self.l1_fee_native

    @classmethod
    def skipped(cls, reason: str, **kwargs) -> "ExecutionOutcome":
        return cls(status=OutcomeStatus.SKIPPED, reason=reason, **kwargs)

    @classmethod
    def failed(cls, reason: str, **kwargs) -> "ExecutionOutcome":
        return cls(status=OutcomeStatus.FAILED, reason=reason, **kwargs)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "reason": self.reason,
            "tx_hash": self.tx_hash,
            "nonce": self.nonce,
            "realized_profit": str(self.realized_profit),
            "gas_cost_native": str(self.gas_cost_native),
            "l1_fee_native": str(self.l1_fee_native),
            "block_number": self.block_number,
            "counts_toward_circuit": self.counts_toward_circuit,
        }
