"""
Relayer health aggregation.
"""

import time
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Deque, Dict, Optional

import structlog


logger = structlog.get_logger(__name__)

POLL_DURATION_WINDOW = 100


class HealthStatus(Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"


_SEVERITY = {
    HealthStatus.HEALTHY: 0,
    HealthStatus.DEGRADED: 1,
    HealthStatus.UNHEALTHY: 2,
}


def worst_of(*statuses: HealthStatus) -> HealthStatus:
    return max(statuses, key=_SEVERITY.__getitem__, default=HealthStatus.HEALTHY)


@dataclass
class CheckResult:
    status: HealthStatus
    message: str

    def to_dict(self) -> Dict[str, str]:
        return {"status": self.status.value, "message": self.message}


@dataclass
class HealthConfig:
    max_poll_age: float = 120.0  # seconds
    max_consecutive_failures: int = 5


@dataclass
class HealthCheckResult:
    status: HealthStatus
    timestamp: datetime
    uptime: float
    checks: Dict[str, CheckResult]
    stats: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "timestamp": self.timestamp.isoformat(),
            "uptime": self.uptime,
            "checks": {name: check.to_dict() for name, check in self.checks.items()},
            "stats": self.stats,
        }


class HealthMonitor:
    """
    Tracks relayer liveness and aggregates sub-checks into one status.

    The overall status is the worst of the service, indexer, wallet and
    last-poll checks.
    """

    def __init__(
        self,
        config: Optional[HealthConfig] = None,
        clock: Callable[[], float] = time.time
    ):
        self.config = config or HealthConfig()
        self._clock = clock
        self.logger = logger.bind(service="health_monitor")
        self.reset()

    def reset(self) -> None:
        self._start_time = self._clock()
        self._last_poll_time: Optional[float] = None
        self._poll_durations: Deque[float] = deque(maxlen=POLL_DURATION_WINDOW)
        self._polls_count = 0
        self._consecutive_failures = 0
        self._service_running = False
        self._indexer_connected = False
        self._wallet_connected = False

        self._total_proven = 0
        self._total_finalized = 0
        self._total_failed = 0
        self._pending_withdrawals = 0

    # State updates

    def service_started(self) -> None:
        self._service_running = True
        self._start_time = self._clock()
        self.logger.debug("Service start recorded")

    def service_stopped(self) -> None:
        self._service_running = False
        self.logger.debug("Service stop recorded")

    def set_indexer_connected(self, connected: bool) -> None:
        self._indexer_connected = connected

    def set_wallet_connected(self, connected: bool) -> None:
        self._wallet_connected = connected

    def poll_started(self) -> float:
        return self._clock()

    def poll_completed(self, started_at: float, success: bool) -> None:
        now = self._clock()
        self._last_poll_time = now
        self._poll_durations.append(now - started_at)
        self._polls_count += 1

        if success:
            self._consecutive_failures = 0
        else:
            self._consecutive_failures += 1

        self.logger.debug(
            "Poll completed",
            duration=round(now - started_at, 3),
            success=success,
            consecutive_failures=self._consecutive_failures
        )

    def record_proven(self) -> None:
        self._total_proven += 1

    def record_finalized(self) -> None:
        self._total_finalized += 1

    def record_failed(self) -> None:
        self._total_failed += 1

    def update_pending_count(self, count: int) -> None:
        self._pending_withdrawals = count

    # Queries

    @property
    def uptime(self) -> float:
        return self._clock() - self._start_time

    @property
    def average_poll_duration(self) -> Optional[float]:
        if not self._poll_durations:
            return None
        return sum(self._poll_durations) / len(self._poll_durations)

    def check(self) -> HealthCheckResult:
        now = self._clock()
        checks = {
            "service": self._check_service(),
            "indexer": self._check_indexer(),
            "wallet": self._check_wallet(),
            "last_poll": self._check_last_poll(now),
        }

        return HealthCheckResult(
            status=worst_of(*(c.status for c in checks.values())),
            timestamp=datetime.fromtimestamp(now, tz=timezone.utc),
            uptime=now - self._start_time,
            checks=checks,
            stats={
                "total_proven": self._total_proven,
                "total_finalized": self._total_finalized,
                "total_failed": self._total_failed,
                "pending_withdrawals": self._pending_withdrawals,
                "last_poll_time": (
                    datetime.fromtimestamp(self._last_poll_time, tz=timezone.utc).isoformat()
                    if self._last_poll_time is not None else None
                ),
                "polls_count": self._polls_count,
                "average_poll_duration": self.average_poll_duration,
                "consecutive_failures": self._consecutive_failures,
            },
        )

    def status_line(self) -> str:
        health = self.check()
        stats = health.stats
        return " | ".join([
            f"Status: {health.status.value.upper()}",
            f"Uptime: {_format_uptime(health.uptime)}",
            f"Polls: {stats['polls_count']}",
            f"Proven: {stats['total_proven']}",
            f"Finalized: {stats['total_finalized']}",
            f"Failed: {stats['total_failed']}",
            f"Pending: {stats['pending_withdrawals']}",
        ])

    def _check_service(self) -> CheckResult:
        if not self._service_running:
            return CheckResult(HealthStatus.UNHEALTHY, "Service is not running")
        if self._consecutive_failures >= self.config.max_consecutive_failures:
            return CheckResult(
                HealthStatus.UNHEALTHY,
                f"{self._consecutive_failures} consecutive failures"
            )
        if self._consecutive_failures > 0:
            return CheckResult(
                HealthStatus.DEGRADED,
                f"{self._consecutive_failures} recent failure(s)"
            )
        return CheckResult(HealthStatus.HEALTHY, "Service running normally")

    def _check_indexer(self) -> CheckResult:
        if not self._indexer_connected:
            return CheckResult(HealthStatus.DEGRADED, "Indexer not connected")
        return CheckResult(HealthStatus.HEALTHY, "Indexer connected")

    def _check_wallet(self) -> CheckResult:
        if not self._wallet_connected:
            return CheckResult(HealthStatus.UNHEALTHY, "Wallet not connected")
        return CheckResult(HealthStatus.HEALTHY, "Wallet connected")

    def _check_last_poll(self, now: float) -> CheckResult:
        if self._last_poll_time is None:
            return CheckResult(HealthStatus.HEALTHY, "No polls yet")

        age = now - self._last_poll_time
        message = f"Last poll {round(age)}s ago"
        if age > self.config.max_poll_age * 2:
            return CheckResult(HealthStatus.UNHEALTHY, message)
        if age > self.config.max_poll_age:
            return CheckResult(HealthStatus.DEGRADED, message)
        return CheckResult(HealthStatus.HEALTHY, message)


def _format_uptime(seconds: float) -> str:
    seconds = int(seconds)
    hours, remainder = divmod(seconds, 3600)
    minutes, secs = divmod(remainder, 60)
    if hours:
        return f"{hours}h {minutes}m"
    if minutes:
        return f"{minutes}m {secs}s"
    return f"{secs}s"
