"""
Configuration loading for the flash arbitrage engine.

Reads the YAML file, applies environment overrides (after loading .env via
python-dotenv), and validates the result against the pydantic schema. The
signing key is never read from the file.
"""

import os
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Union

import yaml
from dotenv import load_dotenv
from pydantic import ValidationError as PydanticValidationError

from .config_schema import EngineConfig, validate_engine_config
from .exceptions import ConfigurationError
from .utils import get_logger

logger = get_logger(__name__)

ENV_RPC_URL = "FLASH_ARB_RPC_URL"
ENV_EXECUTOR = "FLASH_ARB_EXECUTOR"
ENV_PRIVATE_RPC_URL = "FLASH_ARB_PRIVATE_RPC_URL"
ENV_ADAPTER_PREFIX = "FLASH_ARB_ADAPTER_"


def load_yaml_config(config_path: Union[str, Path]) -> Dict[str, Any]:
    """Load and parse YAML configuration file."""
    config_path = Path(config_path)

    if not config_path.exists():
        raise ConfigurationError(f"Configuration file not found: {config_path}")

    try:
        with open(config_path, "r") as f:
            config_dict = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in {config_path}: {e}")
    except OSError as e:
        raise ConfigurationError(f"Failed to load config {config_path}: {e}")

    if config_dict is None:
        raise ConfigurationError(f"Empty configuration file: {config_path}")
    if not isinstance(config_dict, dict):
        raise ConfigurationError(f"Configuration root must be a mapping: {config_path}")
    return config_dict


def apply_env_overrides(config_dict: Dict[str, Any], environ: Mapping[str, str]) -> Dict[str, Any]:
    """
    Overlay deployment-specific values from the environment.

    FLASH_ARB_RPC_URL replaces network.rpc_url, FLASH_ARB_EXECUTOR replaces
    execution.executor_address, FLASH_ARB_PRIVATE_RPC_URL sets
    execution.private_rpc_url, and FLASH_ARB_ADAPTER_<VENUE> sets the
    adapter for venue <venue> (lowercased).
    """
    rpc_url = environ.get(ENV_RPC_URL)
    if rpc_url:
        config_dict.setdefault("network", {})["rpc_url"] = rpc_url

    executor = environ.get(ENV_EXECUTOR)
    if executor:
        config_dict.setdefault("execution", {})["executor_address"] = executor

    private_rpc_url = environ.get(ENV_PRIVATE_RPC_URL)
    if private_rpc_url:
        config_dict.setdefault("execution", {})["private_rpc_url"] = private_rpc_url

    for key, value in environ.items():
        if key.startswith(ENV_ADAPTER_PREFIX) and value:
            venue = key[len(ENV_ADAPTER_PREFIX):].lower()
            execution = config_dict.setdefault("execution", {})
            execution.setdefault("adapters", {})[venue] = value

    return config_dict


def _format_pydantic_error(e: PydanticValidationError) -> str:
    lines = []
    for error in e.errors():
        location = ".".join(str(part) for part in error["loc"]) or "<root>"
        lines.append(f"  {location}: {error['msg']}")
    return "\n".join(lines)


def load_engine_config(
    config_path: Union[str, Path],
    environ: Optional[Mapping[str, str]] = None,
    mode: Optional[str] = None,
    dotenv: bool = True,
) -> EngineConfig:
    """
    Load, override and validate an engine configuration file.

    Args:
        config_path: YAML file
        environ: Environment mapping (defaults to os.environ)
        mode: Execution mode override from the command line
        dotenv: Load a .env file from the working directory first

    Raises:
        ConfigurationError: If the file cannot be loaded or fails validation
    """
    if dotenv:
        load_dotenv()
    environ = os.environ if environ is None else environ

    config_dict = apply_env_overrides(load_yaml_config(config_path), environ)
    if mode is not None:
        config_dict.setdefault("execution", {})["mode"] = mode

    try:
        config = validate_engine_config(config_dict)
    except PydanticValidationError as e:
        raise ConfigurationError(
            f"Configuration validation failed for {config_path}:\n{_format_pydantic_error(e)}",
            {"errors": e.errors()},
        ) from None

    logger.info(
        f"Loaded config '{config.name}': {len(config.pools)} pools, "
        f"mode={config.execution.mode}, chain={config.network.chain_id}"
    )
    return config
