"""
Append-only P&L ledger.

One JSON line per execution attempt, flushed and fsynced before record()
returns. All money fields are quote-token units; gas paid in the native
token is converted with the opportunity's native price at the time.
"""

import json
import os
from dataclasses import asdict, dataclass, field
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Dict, List, Optional

from venues.types import ArbitrageOpportunity

from .exceptions import ReconciliationError
from .execution_types import ExecutionOutcome, OutcomeStatus
from .utils import ensure_path_exists, get_current_timestamp, get_logger, safe_json_dump

logger = get_logger(__name__)

DECIMAL_FIELDS = (
    "input_size",
    "borrow_amount",
    "expected_net",
    "gross_profit",
    "gas_cost",
    "l1_fee",
    "revert_cost",
    "net_profit",
    "native_price_quote",
)


@dataclass(frozen=True)
class LedgerRecord:
    timestamp: float
    cycle: int
    status: str
    reason: str
    tx_hash: Optional[str]
    nonce: Optional[int]
    pair: str
    path: str
    input_size: Decimal
    borrow_amount: Decimal
    expected_net: Decimal
    gross_profit: Decimal
    gas_cost: Decimal
    l1_fee: Decimal
    revert_cost: Decimal
    net_profit: Decimal
    native_price_quote: Decimal

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        for name in DECIMAL_FIELDS:
            data[name] = str(data[name])
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LedgerRecord":
        values = {name: data.get(name) for name in cls.__dataclass_fields__}
        if values["status"] not in {s.value for s in OutcomeStatus}:
            raise ValueError(f"unknown status {values['status']!r}")
        values["reason"] = values["reason"] or ""
        values["cycle"] = int(values["cycle"] or 0)
        values["timestamp"] = float(values["timestamp"] or 0)
        for name in DECIMAL_FIELDS:
            values[name] = Decimal(str(values[name] if values[name] is not None else "0"))
        return cls(**values)


@dataclass
class LedgerSummary:
    counts: Dict[str, int] = field(default_factory=dict)
    attempts: int = 0
    win_rate: float = 0.0
    total_gross: Decimal = Decimal(0)
    total_gas: Decimal = Decimal(0)
    total_l1: Decimal = Decimal(0)
    total_revert_cost: Decimal = Decimal(0)
    total_net: Decimal = Decimal(0)
    simulation_reverts: int = 0
    cycles: int = 0


@dataclass(frozen=True)
class ReconciliationResult:
    expected: Decimal
    observed: Decimal
    difference: Decimal
    within_tolerance: bool


class Ledger:
    """
    Args:
        path: JSONL file; created on first write
    """

    def __init__(self, path: str):
        self.path = Path(path)
        self.records: List[LedgerRecord] = []
        self.load()

    def load(self) -> int:
        """Rebuild records from disk; corrupted lines are skipped."""
        self.records = []
        if not self.path.exists():
            return 0

        skipped = 0
        with open(self.path, "r") as f:
            for line_no, line in enumerate(f, 1):
                line = line.strip()
                if not line:
                    continue
                try:
                    self.records.append(LedgerRecord.from_dict(json.loads(line)))
                except (json.JSONDecodeError, TypeError, InvalidOperation, ValueError) as e:
                    skipped += 1
                    logger.warning(f"Skipping corrupted ledger line {line_no}: {e}")

        logger.info(f"Ledger loaded: {len(self.records)} records ({skipped} skipped) from {self.path}")
        return len(self.records)

    def _append(self, record: LedgerRecord) -> None:
        ensure_path_exists(self.path, is_file=True)
        with open(self.path, "a") as f:
            f.write(safe_json_dump(record.to_dict()) + "\n")
            f.flush()
            os.fsync(f.fileno())

    def record(self, outcome: ExecutionOutcome, opportunity: ArbitrageOpportunity) -> LedgerRecord:
        """Bucket an outcome, append it durably, and return the record."""
        native_price = opportunity.native_price_quote
        gas = outcome.gas_cost_native * native_price
        l1 = outcome.l1_fee_native * native_price

        gross = Decimal(0)
        revert_cost = Decimal(0)
        if outcome.status == OutcomeStatus.CONFIRMED:
            gross = outcome.realized_profit
            net = gross - gas - l1
        elif outcome.status == OutcomeStatus.REVERTED:
            revert_cost = gas + l1
            net = -revert_cost
        elif outcome.status == OutcomeStatus.FAILED:
            # Only a mined cancel or replacement costs anything here
            net = -(gas + l1)
        else:
            gas = l1 = Decimal(0)
            net = Decimal(0)

        entry = LedgerRecord(
            timestamp=get_current_timestamp(),
            cycle=opportunity.cycle,
            status=outcome.status.value,
            reason=outcome.reason,
            tx_hash=outcome.tx_hash,
            nonce=outcome.nonce,
            pair=opportunity.pair_key,
            path=opportunity.path_label,
            input_size=opportunity.input_size,
            borrow_amount=opportunity.borrow_amount,
            expected_net=opportunity.net_profit,
            gross_profit=gross,
            gas_cost=gas,
            l1_fee=l1,
            revert_cost=revert_cost,
            net_profit=net,
            native_price_quote=native_price,
        )
        self._append(entry)
        self.records.append(entry)
        return entry

    def summary(self) -> LedgerSummary:
        summary = LedgerSummary(counts={s.value: 0 for s in OutcomeStatus})
        cycles = set()
        for r in self.records:
            summary.counts[r.status] = summary.counts.get(r.status, 0) + 1
            summary.total_gross += r.gross_profit
            summary.total_gas += r.gas_cost
            summary.total_l1 += r.l1_fee
            summary.total_revert_cost += r.revert_cost
            summary.total_net += r.net_profit
            if r.reason.startswith("simulation_revert"):
                summary.simulation_reverts += 1
            if r.status != OutcomeStatus.SKIPPED.value:
                cycles.add(r.cycle)

        summary.attempts = len(self.records)
        summary.cycles = len(cycles)
        decided = (
            summary.counts[OutcomeStatus.CONFIRMED.value]
            + summary.counts[OutcomeStatus.REVERTED.value]
            + summary.counts[OutcomeStatus.FAILED.value]
        )
        if decided:
            summary.win_rate = summary.counts[OutcomeStatus.CONFIRMED.value] / decided
        return summary

    def reconcile(
        self, observed_delta: Decimal, tolerance: Decimal = Decimal("0.01"), strict: bool = False
    ) -> ReconciliationResult:
        """
        Compare ledger net P&L against an observed balance change.

        Raises:
            ReconciliationError: With strict=True, when outside tolerance
        """
        expected = self.summary().total_net
        observed = Decimal(str(observed_delta))
        difference = observed - expected
        result = ReconciliationResult(
            expected=expected,
            observed=observed,
            difference=difference,
            within_tolerance=abs(difference) <= Decimal(str(tolerance)),
        )
        if not result.within_tolerance:
            logger.warning(
                f"Ledger reconciliation off by {difference} "
                f"(expected {expected}, observed {observed}, tolerance {tolerance})"
            )
            if strict:
                raise ReconciliationError(
                    "Ledger does not reconcile with observed balance",
                    expected=expected,
                    actual=observed,
                )
        return result
