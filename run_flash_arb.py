#!/usr/bin/env python3
"""
Run the cross-venue flash-loan arbitrage engine.

MODES:
  1. Observe (default): Detect and evaluate opportunities, log them, never submit
  2. Simulate: Compose and eth_call every opportunity, never broadcast
  3. Live: Sign and broadcast settlement transactions (REQUIRES PRIVATE KEY)

SAFETY:
  - Observe mode is the default
  - The signing key is read only from FLASH_ARB_PRIVATE_KEY
  - Every submission is simulated first
  - The circuit breaker pauses execution after repeated failures

Usage:
  # Observe only
  python run_flash_arb.py --config configs/arbitrum_example.yaml

  # Simulate every opportunity for 10 cycles
  python run_flash_arb.py --config configs/arbitrum_example.yaml --simulate --max-cycles 10

  # Live execution
  export FLASH_ARB_PRIVATE_KEY="0x..."
  python run_flash_arb.py --config configs/arbitrum_example.yaml --live --log-file .data/engine.log

  # Operations
  python run_flash_arb.py --config configs/arbitrum_example.yaml --report
  python run_flash_arb.py --config configs/arbitrum_example.yaml --reconcile 12.5
  python run_flash_arb.py --config configs/arbitrum_example.yaml --reset-circuit

Environment Variables:
  FLASH_ARB_PRIVATE_KEY: Signing key (required for --simulate and --live)
  FLASH_ARB_RPC_URL: Overrides network.rpc_url
  FLASH_ARB_EXECUTOR: Overrides execution.executor_address
  FLASH_ARB_PRIVATE_RPC_URL: Broadcast-only endpoint (execution.private_rpc_url)
  FLASH_ARB_ADAPTER_<VENUE>: Sets the settlement adapter for a venue
"""

import argparse
import asyncio
import getpass
import sys
from decimal import Decimal, InvalidOperation
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent))

import logging_config  # noqa: E402
from flash_arbitrage.circuit_breaker import CircuitBreaker  # noqa: E402
from flash_arbitrage.config_loader import load_engine_config  # noqa: E402
from flash_arbitrage.engine import ArbitrageEngine  # noqa: E402
from flash_arbitrage.exceptions import FlashArbitrageError, ReconciliationError  # noqa: E402
from flash_arbitrage.ledger import Ledger  # noqa: E402
from flash_arbitrage.reporting import format_reconciliation, print_report  # noqa: E402
from flash_arbitrage.signer import LocalKeySigner  # noqa: E402
from flash_arbitrage.utils import get_logger  # noqa: E402

logger = get_logger(__name__)


def parse_args(argv=None):
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Cross-venue flash-loan arbitrage engine",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )

    parser.add_argument(
        "--config",
        type=str,
        required=True,
        help="Path to engine config YAML file",
    )

    # Execution mode
    mode_group = parser.add_mutually_exclusive_group()
    mode_group.add_argument(
        "--observe",
        action="store_true",
        help="Observe mode (detect and log only) [DEFAULT unless the config says otherwise]",
    )
    mode_group.add_argument(
        "--simulate",
        action="store_true",
        help="Simulate mode (eth_call only, nothing is broadcast)",
    )
    mode_group.add_argument(
        "--live",
        action="store_true",
        help="Live mode (broadcast real transactions - REQUIRES FLASH_ARB_PRIVATE_KEY)",
    )

    # Run length
    parser.add_argument("--once", action="store_true", help="Run a single cycle and exit")
    parser.add_argument("--max-cycles", type=int, default=None, help="Stop after N cycles")

    # Operations
    ops_group = parser.add_mutually_exclusive_group()
    ops_group.add_argument(
        "--reset-circuit",
        action="store_true",
        help="Reset a paused circuit breaker (writes the state file) and exit",
    )
    ops_group.add_argument(
        "--report",
        action="store_true",
        help="Print the ledger summary and exit",
    )
    ops_group.add_argument(
        "--reconcile",
        type=str,
        metavar="DELTA",
        help="Compare ledger net P&L with an observed balance change (quote units) and exit",
    )

    # Output
    verbosity = parser.add_mutually_exclusive_group()
    verbosity.add_argument("--debug", action="store_true", help="Verbose logging")
    verbosity.add_argument("--quiet", "-q", action="store_true", help="Warnings and errors only")
    parser.add_argument("--log-file", type=str, default=None, help="Also write a rotating log file at this path")

    return parser.parse_args(argv)


def selected_mode(args):
    if args.live:
        return "live"
    if args.simulate:
        return "simulate"
    if args.observe:
        return "observe"
    return None


def reset_circuit(config) -> int:
    breaker = CircuitBreaker(
        threshold=config.circuit_breaker.threshold,
        cooldown_sec=config.circuit_breaker.cooldown_sec,
        state_path=config.circuit_breaker.state_path,
    )
    if not breaker.is_paused:
        logger.info("Circuit breaker is not paused; nothing to reset")
        return 0
    breaker.reset(operator=getpass.getuser())
    logger.info(f"Circuit breaker reset; state written to {config.circuit_breaker.state_path}")
    return 0


def reconcile(config, delta: str) -> int:
    try:
        observed = Decimal(delta)
    except InvalidOperation:
        logger.error(f"Invalid balance delta: {delta}")
        return 2

    ledger = Ledger(config.storage.ledger_path)
    tolerance = config.health.reconcile_tolerance
    try:
        result = ledger.reconcile(observed, tolerance=tolerance, strict=True)
    except ReconciliationError as e:
        result = ledger.reconcile(observed, tolerance=tolerance)
        print(format_reconciliation(result, tolerance))
        logger.error(str(e))
        return 1
    print(format_reconciliation(result, tolerance))
    return 0


async def run_engine(config, args) -> int:
    signer = None
    if config.execution.mode != "observe":
        signer = LocalKeySigner.from_env()
        logger.info(f"Signer: {signer.address}")

    engine = ArbitrageEngine.from_config(config, signer=signer)
    max_cycles = 1 if args.once else args.max_cycles
    await engine.run(max_cycles=max_cycles)
    return 0


def main(argv=None) -> int:
    """Main entry point."""
    args = parse_args(argv)

    if args.debug:
        logging_config.setup_debug(log_file=args.log_file)
    elif args.quiet:
        logging_config.setup_minimal(log_file=args.log_file)
    else:
        logging_config.setup(log_file=args.log_file)

    try:
        logger.info(f"Loading config from {args.config}...")
        config = load_engine_config(args.config, mode=selected_mode(args))

        if args.reset_circuit:
            return reset_circuit(config)
        if args.report:
            print_report(Ledger(config.storage.ledger_path))
            return 0
        if args.reconcile is not None:
            return reconcile(config, args.reconcile)

        return asyncio.run(run_engine(config, args))

    except KeyboardInterrupt:
        logger.info("Shutdown requested by user")
        return 0

    except FlashArbitrageError as e:
        logger.error(f"{type(e).__name__}: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
