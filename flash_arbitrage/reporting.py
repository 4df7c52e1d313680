"""
Console reports for the P&L ledger.
"""

from decimal import Decimal
from typing import List, Optional

from tabulate import tabulate

from .execution_types import OutcomeStatus
from .ledger import Ledger, LedgerRecord, LedgerSummary, ReconciliationResult


def format_summary(summary: LedgerSummary) -> str:
    """Render the outcome counts and P&L buckets as grid tables."""
    counts = [[status.value, summary.counts.get(status.value, 0)] for status in OutcomeStatus]
    counts.append(["Total", summary.attempts])

    buckets = [
        ["Gross profit", f"{summary.total_gross:.6f}"],
        ["Gas", f"{-summary.total_gas:.6f}"],
        ["L1 data fee", f"{-summary.total_l1:.6f}"],
        ["Revert cost", f"{-summary.total_revert_cost:.6f}"],
        ["Net", f"{summary.total_net:.6f}"],
    ]

    lines = [
        tabulate(counts, headers=["Status", "Count"], tablefmt="grid"),
        "",
        tabulate(buckets, headers=["Bucket", "Quote"], tablefmt="grid"),
        "",
        f"Win rate: {summary.win_rate:.1%}   Cycles with attempts: {summary.cycles}   "
        f"Simulation reverts: {summary.simulation_reverts}",
    ]
    return "\n".join(lines)


def format_recent(records: List[LedgerRecord], limit: int = 20) -> str:
    rows = []
    for r in records[-limit:]:
        rows.append([
            r.cycle,
            r.status,
            r.reason or "-",
            r.path,
            f"{r.input_size:.4f}",
            f"{r.expected_net:.6f}",
            f"{r.net_profit:.6f}",
            (r.tx_hash[:12] + "...") if r.tx_hash else "-",
        ])
    return tabulate(
        rows,
        headers=["Cycle", "Status", "Reason", "Path", "Size", "Expected", "Net", "Tx"],
        tablefmt="grid",
    )


def format_reconciliation(result: ReconciliationResult, tolerance: Decimal) -> str:
    verdict = "OK" if result.within_tolerance else "MISMATCH"
    rows = [
        ["Ledger net", f"{result.expected:.6f}"],
        ["Observed balance change", f"{result.observed:.6f}"],
        ["Difference", f"{result.difference:.6f}"],
        ["Tolerance", f"{tolerance}"],
    ]
    return tabulate(rows, tablefmt="grid") + f"\nReconciliation: {verdict}"


def print_report(ledger: Ledger, limit: Optional[int] = 20) -> None:
    """Print the ledger summary and the most recent attempts."""
    print("=" * 60)
    print(f"LEDGER REPORT: {ledger.path}")
    print("=" * 60)
    print(format_summary(ledger.summary()))
    if limit and ledger.records:
        print(f"\nLast {min(limit, len(ledger.records))} attempts:")
        print(format_recent(ledger.records, limit))
