"""
Unit tests for ledger console reports
"""

from decimal import Decimal

from flash_arbitrage.execution_types import ExecutionOutcome, OutcomeStatus
from flash_arbitrage.ledger import Ledger, LedgerSummary, ReconciliationResult
from flash_arbitrage.reporting import format_reconciliation, format_recent, format_summary, print_report


def test_format_summary_lists_every_status():
    summary = LedgerSummary(
        counts={"Confirmed": 2, "Reverted": 1, "Failed": 0, "Skipped": 4},
        attempts=7,
        win_rate=2 / 3,
        total_gross=Decimal("1.5"),
        total_gas=Decimal("0.1"),
        total_net=Decimal("1.4"),
        cycles=3,
    )

    text = format_summary(summary)

    for status in OutcomeStatus:
        assert status.value in text
    assert "1.400000" in text
    assert "-0.100000" in text
    assert "66.7%" in text


def test_format_recent_truncates_hashes(tmp_path, opportunity):
    ledger = Ledger(str(tmp_path / "ledger.jsonl"))
    ledger.record(
        ExecutionOutcome(status=OutcomeStatus.CONFIRMED, reason="confirmed", tx_hash="0x" + "ab" * 32),
        opportunity,
    )
    ledger.record(ExecutionOutcome.skipped("observe_only"), opportunity)

    text = format_recent(ledger.records)

    assert "0xababababab..." in text
    assert "observe_only" in text
    assert opportunity.path_label in text


def test_format_reconciliation_verdict():
    ok = ReconciliationResult(Decimal("1"), Decimal("1.001"), Decimal("0.001"), True)
    bad = ReconciliationResult(Decimal("1"), Decimal("2"), Decimal("1"), False)

    assert format_reconciliation(ok, Decimal("0.01")).endswith("Reconciliation: OK")
    assert format_reconciliation(bad, Decimal("0.01")).endswith("Reconciliation: MISMATCH")


def test_print_report(tmp_path, opportunity, capsys):
    ledger = Ledger(str(tmp_path / "ledger.jsonl"))
    ledger.record(ExecutionOutcome.failed("timeout"), opportunity)

    print_report(ledger, limit=5)

    out = capsys.readouterr().out
    assert "LEDGER REPORT" in out
    assert "Last 1 attempts" in out
    assert "timeout" in out
