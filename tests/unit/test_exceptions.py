"""Tests for the exceptions module."""

import pytest

from flash_arbitrage.exceptions import (
    ConfigurationError,
    DataError,
    ExecutionError,
    FlashArbitrageError,
    NetworkError,
    NonceError,
    ReconciliationError,
    ValidationError,
)


def test_base_exception():
    error = FlashArbitrageError("Test error")
    assert str(error) == "Test error"
    assert error.details == {}

    error_with_details = FlashArbitrageError("Test error", {"key": "value"})
    assert error_with_details.details == {"key": "value"}


def test_configuration_error():
    error = ConfigurationError("Config error", {"config_file": "test.yaml"})
    assert error.details["config_file"] == "test.yaml"
    assert isinstance(error, FlashArbitrageError)


def test_network_error():
    error = NetworkError("RPC down", endpoint="http://node", status_code=502)
    assert error.endpoint == "http://node"
    assert error.status_code == 502


def test_data_error():
    error = DataError("Undecodable slot0", source="uniswap_v3", pool="0xabc")
    assert error.source == "uniswap_v3"
    assert error.pool == "0xabc"


def test_nonce_error_is_execution_error():
    error = NonceError("Pending nonce unresolved", {"pending_nonces": [4]})
    assert isinstance(error, ExecutionError)
    assert error.stage == "nonce"
    assert error.details["pending_nonces"] == [4]


def test_reconciliation_error():
    error = ReconciliationError("Mismatch", expected=1, actual=2)
    assert (error.expected, error.actual) == (1, 2)


@pytest.mark.parametrize(
    "exc_class",
    [ConfigurationError, ValidationError, NetworkError, DataError, ExecutionError, NonceError, ReconciliationError],
)
def test_caught_as_base(exc_class):
    with pytest.raises(FlashArbitrageError):
        raise exc_class("boom")
