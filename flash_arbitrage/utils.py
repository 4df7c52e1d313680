"""
Shared helpers for both packages: logging, timestamps, durable JSON state
and token unit conversions.
"""

import dataclasses
import json
import logging
import os
import tempfile
import time
from datetime import datetime, timezone
from decimal import ROUND_FLOOR, Decimal
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Union

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s:%(lineno)d | %(message)s"
LOG_DATE_FORMAT = "%H:%M:%S"


def get_current_timestamp() -> float:
    return time.time()


def timestamp_to_iso(timestamp: float) -> str:
    """Unix timestamp as an ISO 8601 UTC string."""
    return datetime.fromtimestamp(timestamp, tz=timezone.utc).isoformat()


def format_duration(seconds: float) -> str:
    if seconds < 60:
        return f"{seconds:.2f}s"
    if seconds < 3600:
        return f"{seconds / 60:.1f}m"
    return f"{seconds / 3600:.1f}h"


def _json_default_handler(obj: Any) -> Any:
    """Ledger and state files store amounts as strings and calldata as hex."""
    if isinstance(obj, Decimal):
        return str(obj)
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, (bytes, bytearray)):
        return "0x" + bytes(obj).hex()
    if dataclasses.is_dataclass(obj) and not isinstance(obj, type):
        return dataclasses.asdict(obj)
    if isinstance(obj, datetime):
        return obj.isoformat()
    raise TypeError(f"{type(obj).__name__} is not JSON serializable")


def safe_json_dump(data: Any, **kwargs) -> str:
    """json.dumps that understands Decimal, Enum, bytes and dataclasses."""
    options = {"ensure_ascii": False, "default": _json_default_handler}
    options.update(kwargs)
    return json.dumps(data, **options)


def ensure_path_exists(path: Union[str, Path], is_file: bool = False) -> Path:
    """
    Create the directory (or, with is_file, the parent directory) for `path`.

    Returns:
        Path object
    """
    path_obj = Path(path)
    directory = path_obj.parent if is_file else path_obj
    directory.mkdir(parents=True, exist_ok=True)
    return path_obj


def atomic_write_json(path: Union[str, Path], data: Dict[str, Any]) -> None:
    """
    Write a JSON document so readers never observe a half-written file.

    The payload goes to a temp file in the same directory, is fsynced,
    then renamed over the destination with os.replace.
    """
    state_path = ensure_path_exists(path, is_file=True)
    fd, temp_path = tempfile.mkstemp(
        dir=str(state_path.parent), prefix=f".{state_path.name}.", suffix=".tmp"
    )
    try:
        with os.fdopen(fd, "w") as f:
            f.write(safe_json_dump(data, indent=2))
            f.flush()
            os.fsync(f.fileno())
        os.replace(temp_path, state_path)
    except BaseException:
        if os.path.exists(temp_path):
            os.unlink(temp_path)
        raise


def basis_points_to_decimal(bps) -> Decimal:
    """100 bps = 0.01"""
    return Decimal(str(bps)) / Decimal("10000")


def from_raw(amount: int, decimals: int) -> Decimal:
    """Raw integer token amount to human units."""
    return Decimal(int(amount)) / (Decimal(10) ** decimals)


def to_raw(amount: Decimal, decimals: int) -> int:
    """Human units to a raw integer amount, floored."""
    return int((amount * (Decimal(10) ** decimals)).to_integral_value(rounding=ROUND_FLOOR))


def get_logger(name: str, level: Union[str, int] = logging.INFO) -> logging.Logger:
    """
    Module logger with one console handler in the engine's format.

    The level is only set the first time, so logging_config.setup() and
    tests can raise or lower it afterwards. Records still propagate to the
    root logger.
    """
    logger = logging.getLogger(name)

    if logger.level == logging.NOTSET:
        logger.setLevel(level)

    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT))
        logger.addHandler(handler)

    return logger
