"""
Transaction signing.

The coordinator only depends on the Signer protocol; LocalKeySigner is the
shipped implementation, keyed from the environment. Keys never come from
config files.
"""

import os
from dataclasses import dataclass
from typing import Any, Dict, Optional, Protocol

from eth_account import Account

from .exceptions import ConfigurationError

PRIVATE_KEY_ENV = "FLASH_ARB_PRIVATE_KEY"


@dataclass(frozen=True)
class SignedPayload:
    raw: bytes
    tx_hash: str


class Signer(Protocol):
    @property
    def address(self) -> str: ...

    def sign(self, tx_params: Dict[str, Any]) -> SignedPayload: ...


class LocalKeySigner:
    """Signs with a private key held in process memory."""

    def __init__(self, private_key: str):
        try:
            self._account = Account.from_key(private_key)
        except Exception as e:
            raise ConfigurationError(f"Invalid private key: {type(e).__name__}") from None

    @classmethod
    def from_env(cls, env_var: str = PRIVATE_KEY_ENV, environ: Optional[Dict[str, str]] = None) -> "LocalKeySigner":
        environ = os.environ if environ is None else environ
        key = environ.get(env_var)
        if not key:
            raise ConfigurationError(f"{env_var} not set; simulate and live modes need a signing key")
        return cls(key)

    @property
    def address(self) -> str:
        return self._account.address

    def sign(self, tx_params: Dict[str, Any]) -> SignedPayload:
        signed = self._account.sign_transaction(tx_params)
        return SignedPayload(raw=bytes(signed.raw_transaction), tx_hash="0x" + bytes(signed.hash).hex())
