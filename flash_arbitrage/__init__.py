"""
Flash Arbitrage Engine.

Detects price divergence for the same token pair across on-chain venues,
sizes a flash-loan-funded round trip, and submits it through a settlement
contract with durable nonce, circuit-breaker and P&L bookkeeping.

The venue-side modules import this package's exceptions and utils, so only
leaf modules are imported here; use flash_arbitrage.engine for the engine.
"""

from flash_arbitrage.version import __version__

PROJECT_NAME = "flash-arbitrage"
VERSION = __version__

__all__ = ["PROJECT_NAME", "VERSION", "__version__"]
