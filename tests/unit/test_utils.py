"""Tests for shared utilities."""

import json
import logging
from decimal import Decimal

import pytest
from hypothesis import given
from hypothesis import strategies as st

from flash_arbitrage.execution_types import ExecutionOutcome, OutcomeStatus
from flash_arbitrage.utils import (
    atomic_write_json,
    basis_points_to_decimal,
    ensure_path_exists,
    format_duration,
    from_raw,
    get_logger,
    safe_json_dump,
    timestamp_to_iso,
    to_raw,
)


class TestConversions:
    def test_basis_points(self):
        assert basis_points_to_decimal(5) == Decimal("0.0005")
        assert basis_points_to_decimal(Decimal("30")) == Decimal("0.003")

    def test_raw_units(self):
        assert from_raw(1_500_000, 6) == Decimal("1.5")
        assert to_raw(Decimal("1.5"), 6) == 1_500_000
        # Floors rather than rounds
        assert to_raw(Decimal("0.0000019"), 6) == 1

    @given(raw=st.integers(min_value=0, max_value=10**27), decimals=st.integers(min_value=0, max_value=24))
    def test_raw_conversion_is_lossless(self, raw, decimals):
        assert to_raw(from_raw(raw, decimals), decimals) == raw


class TestFormatting:
    @pytest.mark.parametrize(
        "seconds,expected", [(5, "5.00s"), (90, "1.5m"), (7200, "2.0h")]
    )
    def test_format_duration(self, seconds, expected):
        assert format_duration(seconds) == expected

    def test_timestamp_to_iso(self):
        assert timestamp_to_iso(0) == "1970-01-01T00:00:00+00:00"

    def test_safe_json_dump_handles_decimal_and_bytes(self):
        data = json.loads(safe_json_dump({"amount": Decimal("1.25"), "data": b"\x01\x02"}))
        assert data == {"amount": "1.25", "data": "0x0102"}

    def test_safe_json_dump_handles_enums_and_dataclasses(self):
        outcome = ExecutionOutcome.skipped("stale", timestamp=1.0)

        data = json.loads(safe_json_dump({"status": OutcomeStatus.REVERTED, "outcome": outcome}))

        assert data["status"] == "Reverted"
        assert data["outcome"]["reason"] == "stale"
        assert data["outcome"]["realized_profit"] == "0"

    def test_safe_json_dump_rejects_unknown_types(self):
        with pytest.raises(TypeError):
            safe_json_dump({"x": object()})


class TestFiles:
    def test_ensure_path_exists(self, tmp_path):
        target = tmp_path / "a" / "b" / "file.json"
        ensure_path_exists(target, is_file=True)
        assert target.parent.is_dir()
        assert not target.exists()

    def test_atomic_write_json(self, tmp_path):
        target = tmp_path / "state" / "circuit.json"

        atomic_write_json(target, {"paused": True})
        atomic_write_json(target, {"paused": False})

        assert json.loads(target.read_text()) == {"paused": False}
        assert [p.name for p in target.parent.iterdir()] == ["circuit.json"]


class TestLogging:
    def test_get_logger_structured(self):
        logger = get_logger(__name__ + ".structured")

        assert isinstance(logger, logging.Logger)
        assert logger.level == logging.INFO
        assert len(logger.handlers) == 1
        fmt = logger.handlers[0].formatter._fmt
        assert fmt == "%(asctime)s | %(levelname)-8s | %(name)s:%(lineno)d | %(message)s"

    def test_get_logger_reuses_handler(self):
        first = get_logger(__name__ + ".reuse")
        second = get_logger(__name__ + ".reuse", level=logging.DEBUG)

        assert first is second
        assert len(second.handlers) == 1
        assert second.level == logging.INFO

    def test_records_propagate(self, caplog):
        logger = get_logger(__name__ + ".propagate")
        with caplog.at_level(logging.INFO):
            logger.info("cycle 7 done")
        assert "cycle 7 done" in caplog.text
