#!/usr/bin/env python3
"""
Configuration validation CLI tool

Loads engine configuration files the same way run_flash_arb.py does and
reports schema errors, the cross-venue pairs the engine would watch, and
settings that validate but are probably mistakes.
"""

import argparse
import json
import os
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

from tabulate import tabulate

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from flash_arbitrage.config_loader import load_engine_config  # noqa: E402
from flash_arbitrage.config_schema import EngineConfig  # noqa: E402
from flash_arbitrage.exceptions import ConfigurationError  # noqa: E402
from venues.registry import PoolRegistry  # noqa: E402

MODES = ("observe", "simulate", "live")


def collect_warnings(config: EngineConfig) -> List[str]:
    """Settings that validate but are probably not what the operator wants"""
    warnings = []
    evaluator = config.evaluator
    execution = config.execution

    if evaluator.min_profit == 0:
        warnings.append("evaluator.min_profit is 0 - any positive net opportunity will be executed")

    if (
        evaluator.execution_cost is None
        and evaluator.native_price_quote is None
        and evaluator.native_token is None
    ):
        warnings.append(
            "no execution_cost, native_price_quote or native_token - "
            "opportunities will be rejected with no_native_price"
        )

    if evaluator.leg_slippage_tolerance > 0.02:
        warnings.append(
            f"leg_slippage_tolerance {evaluator.leg_slippage_tolerance} is above 2% - "
            "per-leg minimum outputs give little protection"
        )

    if execution.mode == "live" and execution.max_gas_price_gwei > 10:
        warnings.append(
            f"max_gas_price_gwei {execution.max_gas_price_gwei} is high for an L2 - check the ceiling"
        )

    if execution.mode != "observe" and not execution.cancel_on_timeout:
        warnings.append("cancel_on_timeout is off - a stuck transaction blocks its nonce until resolved")

    venues = {pool.venue for pool in config.pools}
    if len(venues) < 2:
        warnings.append("all pools are on one venue - no cross-venue pair can be compared")

    return warnings


def watched_pairs(config: EngineConfig) -> Dict[str, List[str]]:
    """Pair name -> pool labels for every pair quoted by two or more pools"""
    registry = PoolRegistry.from_config([pool.model_dump() for pool in config.pools])
    return {
        pools[0].pair_name: [pool.label for pool in pools]
        for pools in registry.cross_venue_pairs().values()
    }


def validate_single_config(
    config_path: Path,
    mode: Optional[str] = None,
    use_env: bool = False,
    verbose: bool = False,
) -> Dict[str, Any]:
    """
    Validate one file as the engine would load it.

    Args:
        config_path: YAML file
        mode: Check against this execution mode instead of the file's own
        use_env: Apply .env and FLASH_ARB_* overrides from this shell
        verbose: Include the normalized configuration in the result

    Returns:
        Dictionary with validation results
    """
    result = {
        "file": str(config_path),
        "valid": False,
        "mode": mode,
        "errors": [],
        "warnings": [],
        "pairs": {},
        "config": None,
    }

    try:
        config = load_engine_config(
            config_path,
            environ=os.environ if use_env else {},
            mode=mode,
            dotenv=use_env,
        )
        result["valid"] = True
        result["mode"] = config.execution.mode
        result["warnings"] = collect_warnings(config)
        result["pairs"] = watched_pairs(config)
        result["config"] = config.model_dump(mode="json") if verbose else None

    except ConfigurationError as e:
        result["errors"].append(str(e))

    return result


def find_config_files(directory: Path, pattern: str = "*.yaml") -> List[Path]:
    """Find configuration files in a directory"""
    if not directory.exists():
        return []

    config_files = [p for p in directory.rglob(pattern) if p.is_file()]
    if pattern == "*.yaml":
        config_files.extend(p for p in directory.rglob("*.yml") if p.is_file())

    return sorted(config_files)


def print_validation_results(results: List[Dict[str, Any]], verbose: bool = False):
    """Summary table followed by per-file details"""
    rows = [
        [
            "✓" if r["valid"] else "✗",
            r["file"],
            r["mode"] or "-",
            len(r["pairs"]),
            len(r["warnings"]),
        ]
        for r in results
    ]
    print()
    print(tabulate(rows, headers=["", "File", "Mode", "Pairs", "Warnings"], tablefmt="simple"))

    for result in results:
        if not (result["errors"] or result["warnings"] or verbose):
            continue
        print(f"\n{result['file']}")

        for error in result["errors"]:
            print("  Error:")
            for line in error.splitlines():
                print(f"    {line}")

        for warning in result["warnings"]:
            print(f"  Warning: {warning}")

        if verbose and result["valid"]:
            config = result["config"]
            print(f"  Engine: {config['name']} on chain {config['network']['chain_id']}")
            print(f"  Input range: {config['evaluator']['min_input']} - {config['evaluator']['max_input']}")
            print(f"  Min profit: {config['evaluator']['min_profit']}")
            for pair, labels in result["pairs"].items():
                print(f"  Pair {pair}: {', '.join(labels)}")


def main(argv=None) -> int:
    """Main CLI entry point"""
    parser = argparse.ArgumentParser(
        description="Validate flash arbitrage engine configuration files",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Validate a single configuration file
  python tools/validate_config.py configs/arbitrum_example.yaml

  # Check that a config is complete enough for live mode, using .env overrides
  python tools/validate_config.py --mode live --env configs/arbitrum_example.yaml

  # Validate all configurations in a directory, JSON output, non-zero exit on failure
  python tools/validate_config.py --directory configs/ --json --strict
        """,
    )

    parser.add_argument("config_files", nargs="*", help="Configuration file(s) to validate")
    parser.add_argument(
        "--directory", "-d", type=Path, help="Directory to search for configuration files"
    )
    parser.add_argument(
        "--pattern",
        "-p",
        default="*.yaml",
        help="File pattern to search for when using --directory (default: *.yaml)",
    )
    parser.add_argument("--mode", "-m", choices=MODES, help="Validate against this execution mode")
    parser.add_argument(
        "--env", action="store_true", help="Apply .env and FLASH_ARB_* environment overrides"
    )
    parser.add_argument(
        "--verbose", "-v", action="store_true", help="Show detailed configuration information"
    )
    parser.add_argument("--json", "-j", action="store_true", help="Output results in JSON format")
    parser.add_argument(
        "--strict",
        "-s",
        action="store_true",
        help="Exit with error code if any configuration is invalid",
    )

    args = parser.parse_args(argv)

    if args.config_files and args.directory:
        print("Error: Cannot specify both config files and directory")
        return 1
    elif args.config_files:
        config_paths = [Path(f) for f in args.config_files]
    elif args.directory:
        config_paths = find_config_files(args.directory, args.pattern)
        if not config_paths:
            print(f"No configuration files found in {args.directory} matching pattern '{args.pattern}'")
            return 1
    else:
        print("Error: Must specify either config files or directory")
        return 1

    results = [
        validate_single_config(p, mode=args.mode, use_env=args.env, verbose=args.verbose)
        for p in config_paths
    ]

    if args.json:
        print(json.dumps(results, indent=2))
    else:
        print_validation_results(results, verbose=args.verbose)

    invalid_count = sum(1 for r in results if not r["valid"])
    if args.strict and invalid_count:
        if not args.json:
            print(f"\nValidation failed: {invalid_count} invalid configuration(s) found")
        return 1

    if not args.json:
        print(f"\nValidation complete: {len(results) - invalid_count}/{len(results)} configurations valid")

    return 0


if __name__ == "__main__":
    sys.exit(main())
