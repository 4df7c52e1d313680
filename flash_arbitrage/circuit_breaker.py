"""
Consecutive-failure circuit breaker with durable state.

The state file is shared with the CLI: an operator reset rewrites it, and the
running engine adopts the newer reset on its next sync_from_disk().
"""

import json
import time
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Optional

from .execution_types import ExecutionOutcome, OutcomeStatus
from .utils import atomic_write_json, get_logger, timestamp_to_iso

logger = get_logger(__name__)


@dataclass
class CircuitState:
    consecutive_failures: int = 0
    paused: bool = False
    tripped_at: Optional[float] = None
    reset_at: Optional[float] = None
    trip_count: int = 0
    reset_by: Optional[str] = None


class CircuitBreaker:
    """
    Pauses execution after `threshold` consecutive counted failures.

    A Confirmed outcome resets the counter. Resuming needs either an explicit
    reset() or a successful simulation probe once the cooldown has elapsed.
    """

    def __init__(
        self,
        threshold: int = 5,
        cooldown_sec: float = 3600.0,
        state_path: Optional[str] = None,
        metrics=None,
    ):
        self.threshold = threshold
        self.cooldown_sec = cooldown_sec
        self.state_path = Path(state_path) if state_path else None
        self.metrics = metrics
        self.state = self._load() or CircuitState()

        if self.state.paused:
            logger.warning(
                f"Circuit breaker restored in PAUSED state "
                f"(tripped {timestamp_to_iso(self.state.tripped_at or 0)})"
            )
        self._publish()

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def _load(self) -> Optional[CircuitState]:
        if self.state_path is None or not self.state_path.exists():
            return None
        try:
            with open(self.state_path, "r") as f:
                data = json.load(f)
            return CircuitState(**{k: data[k] for k in CircuitState.__dataclass_fields__ if k in data})
        except (json.JSONDecodeError, TypeError, OSError) as e:
            logger.error(f"Failed to load circuit state from {self.state_path}: {e}")
            return None

    def save(self) -> None:
        if self.state_path is None:
            return
        atomic_write_json(self.state_path, asdict(self.state))

    def sync_from_disk(self) -> bool:
        """
        Adopt an operator reset written by another process.

        Returns:
            True if a newer reset was picked up
        """
        disk = self._load()
        if disk is None or disk.reset_at is None:
            return False
        if self.state.reset_at is not None and disk.reset_at <= self.state.reset_at:
            return False

        was_paused = self.state.paused
        self.state = disk
        self._publish()
        if was_paused and not disk.paused:
            logger.warning(f"Circuit breaker reset by {disk.reset_by or 'operator'} (from state file)")
        return True

    def _publish(self) -> None:
        if self.metrics:
            self.metrics.set_circuit_state(self.state.paused, self.state.consecutive_failures)

    # ------------------------------------------------------------------
    # State transitions
    # ------------------------------------------------------------------

    @property
    def is_active(self) -> bool:
        return not self.state.paused

    @property
    def is_paused(self) -> bool:
        return self.state.paused

    def record(self, outcome: ExecutionOutcome) -> bool:
        """
        Update the counter from one outcome.

        Returns:
            True if this outcome tripped the breaker
        """
        if outcome.status == OutcomeStatus.CONFIRMED:
            if self.state.consecutive_failures:
                logger.info(
                    f"Confirmed outcome resets failure counter "
                    f"({self.state.consecutive_failures} -> 0)"
                )
            self.state.consecutive_failures = 0
            self.save()
            self._publish()
            return False

        if not outcome.counts_toward_circuit:
            return False

        self.state.consecutive_failures += 1
        tripped = False
        if self.state.consecutive_failures >= self.threshold and not self.state.paused:
            self._trip(outcome)
            tripped = True

        self.save()
        self._publish()
        return tripped

    def _trip(self, outcome: ExecutionOutcome) -> None:
        self.state.paused = True
        self.state.tripped_at = time.time()
        self.state.trip_count += 1

        logger.critical("=" * 80)
        logger.critical(
            f"CIRCUIT BREAKER TRIPPED: {self.state.consecutive_failures} consecutive failures "
            f"(threshold {self.threshold}); last: {outcome.status.value} {outcome.reason}"
        )
        logger.critical(
            f"Execution paused. Resume with --reset-circuit or after a "
            f"{self.cooldown_sec:.0f}s cooldown and a passing simulation probe"
        )
        logger.critical("=" * 80)

        if self.metrics:
            self.metrics.record_circuit_trip()

    def reset(self, operator: str = "operator") -> None:
        """Explicit reset; clears the counter and unpauses."""
        self.state.paused = False
        self.state.consecutive_failures = 0
        self.state.reset_at = time.time()
        self.state.reset_by = operator
        self.save()
        self._publish()
        logger.warning(f"Circuit breaker reset by {operator}")

    def cooldown_elapsed(self, now: Optional[float] = None) -> bool:
        if not self.state.paused or self.state.tripped_at is None:
            return True
        now = time.time() if now is None else now
        return now - self.state.tripped_at >= self.cooldown_sec

    def try_probe_resume(self, probe_ok: bool, now: Optional[float] = None) -> bool:
        """
        Resume only if the cooldown elapsed and a simulation probe passed.

        Returns:
            True if the breaker is active afterwards
        """
        if not self.state.paused:
            return True
        if not self.cooldown_elapsed(now):
            return False
        if not probe_ok:
            logger.info("Circuit probe failed; staying paused")
            return False
        self.reset(operator="probe")
        return True
