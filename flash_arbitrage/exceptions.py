"""
Exception hierarchy for the flash arbitrage engine.

Provides specific exception types for each error category so call sites can
tell a deployment defect (configuration) from a market condition (stale data)
or a transient transport problem.
"""

from typing import Any, Dict, Optional


class FlashArbitrageError(Exception):
    """Base exception for all flash arbitrage related errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.details = details or {}


class ConfigurationError(FlashArbitrageError):
    """Raised when there are configuration-related issues."""

    pass


class ValidationError(FlashArbitrageError):
    """Raised when validation of data or a trade parameter fails."""

    pass


class NetworkError(FlashArbitrageError):
    """Raised when network or connectivity issues occur."""

    def __init__(
        self,
        message: str,
        endpoint: Optional[str] = None,
        status_code: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, details)
        self.endpoint = endpoint
        self.status_code = status_code


class DataError(FlashArbitrageError):
    """Raised when a venue response cannot be decoded into a price."""

    def __init__(
        self,
        message: str,
        source: Optional[str] = None,
        pool: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, details)
        self.source = source
        self.pool = pool


class ExecutionError(FlashArbitrageError):
    """Raised when a settlement submission cannot proceed."""

    def __init__(
        self,
        message: str,
        stage: Optional[str] = None,
        tx_hash: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, details)
        self.stage = stage
        self.tx_hash = tx_hash


class NonceError(ExecutionError):
    """Raised when the nonce journal is not consistent with chain state."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, stage="nonce", details=details)


class ReconciliationError(FlashArbitrageError):
    """Raised when ledger totals diverge from the observed balance change."""

    def __init__(
        self,
        message: str,
        expected: Optional[Any] = None,
        actual: Optional[Any] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, details)
        self.expected = expected
        self.actual = actual
