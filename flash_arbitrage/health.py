"""
Health monitor: rolling error rate, P&L alert and heartbeat.
"""

import time
from collections import deque
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Deque, List, Optional, Tuple

from .utils import format_duration, get_logger

logger = get_logger(__name__)

MAX_ALERTS = 100


@dataclass(frozen=True)
class Alert:
    kind: str
    severity: str
    message: str
    timestamp: float = field(default_factory=time.time)


@dataclass(frozen=True)
class HealthStatus:
    uptime_sec: float
    error_rate: float
    liveness_alarm: bool
    circuit_paused: bool
    consecutive_failures: int
    total_net: Decimal
    healthy: bool

    def format_log(self) -> str:
        return (
            f"uptime={format_duration(self.uptime_sec)} error_rate={self.error_rate:.1%} "
            f"liveness={'ALARM' if self.liveness_alarm else 'ok'} "
            f"circuit={'PAUSED' if self.circuit_paused else 'active'}"
            f"({self.consecutive_failures}) net={self.total_net:.6f}"
        )


class HealthMonitor:
    """
    Args:
        error_window_sec: Rolling window for the error rate
        error_rate_threshold: Fraction of failed events that raises an alert
        pnl_alert_threshold: Alert when total net P&L falls below this
        monitor: Optional PriceMonitor (liveness flag)
        circuit_breaker: Optional CircuitBreaker
        ledger: Optional Ledger
    """

    def __init__(
        self,
        error_window_sec: float = 60.0,
        error_rate_threshold: float = 0.1,
        pnl_alert_threshold: Decimal = Decimal(0),
        monitor=None,
        circuit_breaker=None,
        ledger=None,
    ):
        self.error_window_sec = error_window_sec
        self.error_rate_threshold = error_rate_threshold
        self.pnl_alert_threshold = Decimal(pnl_alert_threshold)
        self.monitor = monitor
        self.circuit_breaker = circuit_breaker
        self.ledger = ledger

        self.started_at = time.time()
        self.alerts: Deque[Alert] = deque(maxlen=MAX_ALERTS)
        self._events: Deque[Tuple[float, bool]] = deque()
        self._error_alert_active = False
        self._pnl_alert_active = False
        self._circuit_alerted = False

    def alert(self, kind: str, severity: str, message: str) -> Alert:
        entry = Alert(kind=kind, severity=severity, message=message)
        self.alerts.append(entry)
        if severity == "critical":
            logger.critical(f"[{kind}] {message}")
        else:
            logger.warning(f"[{kind}] {message}")
        return entry

    def record_event(self, ok: bool, now: Optional[float] = None) -> None:
        """Count one operation (poll, submission) toward the error rate."""
        now = time.time() if now is None else now
        self._events.append((now, ok))
        self._check_error_rate(now)

    def error_rate(self, now: Optional[float] = None) -> float:
        now = time.time() if now is None else now
        while self._events and now - self._events[0][0] > self.error_window_sec:
            self._events.popleft()
        if not self._events:
            return 0.0
        errors = sum(1 for _, ok in self._events if not ok)
        return errors / len(self._events)

    def _check_error_rate(self, now: float) -> None:
        rate = self.error_rate(now)
        if rate > self.error_rate_threshold and not self._error_alert_active:
            self._error_alert_active = True
            self.alert(
                "error_rate",
                "warning",
                f"Error rate {rate:.1%} over {self.error_window_sec:.0f}s "
                f"exceeds {self.error_rate_threshold:.1%}",
            )
        elif rate <= self.error_rate_threshold:
            self._error_alert_active = False

    def check_pnl(self, total_net: Decimal) -> None:
        if total_net < self.pnl_alert_threshold and not self._pnl_alert_active:
            self._pnl_alert_active = True
            self.alert(
                "pnl",
                "critical",
                f"Net P&L {total_net:.6f} below alert threshold {self.pnl_alert_threshold}",
            )
        elif total_net >= self.pnl_alert_threshold:
            self._pnl_alert_active = False

    def _check_circuit(self) -> None:
        paused = bool(self.circuit_breaker and self.circuit_breaker.is_paused)
        if paused and not self._circuit_alerted:
            self._circuit_alerted = True
            self.alert("circuit", "critical", "Circuit breaker paused execution")
        elif not paused:
            self._circuit_alerted = False

    def heartbeat(self, now: Optional[float] = None) -> HealthStatus:
        now = time.time() if now is None else now
        total_net = self.ledger.summary().total_net if self.ledger else Decimal(0)
        self.check_pnl(total_net)
        self._check_circuit()

        liveness = bool(self.monitor and self.monitor.liveness_alarm)
        paused = bool(self.circuit_breaker and self.circuit_breaker.is_paused)
        failures = self.circuit_breaker.state.consecutive_failures if self.circuit_breaker else 0
        rate = self.error_rate(now)

        return HealthStatus(
            uptime_sec=now - self.started_at,
            error_rate=rate,
            liveness_alarm=liveness,
            circuit_paused=paused,
            consecutive_failures=failures,
            total_net=total_net,
            healthy=not liveness and not paused and rate <= self.error_rate_threshold,
        )

    def recent_alerts(self, limit: int = 10) -> List[Alert]:
        return list(self.alerts)[-limit:]
