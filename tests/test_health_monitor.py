"""
Test relayer health aggregation.
"""

import pytest

from bridge_indexer.relayer.health_monitor import (
    HealthConfig,
    HealthMonitor,
    HealthStatus,
    worst_of,
)


class Clock:
    def __init__(self, now: float = 10_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def monitor(clock):
    health = HealthMonitor(HealthConfig(max_poll_age=60.0, max_consecutive_failures=3), clock=clock)
    health.service_started()
    health.set_indexer_connected(True)
    health.set_wallet_connected(True)
    return health


def test_worst_of():
    assert worst_of() == HealthStatus.HEALTHY
    assert worst_of(HealthStatus.HEALTHY, HealthStatus.DEGRADED) == HealthStatus.DEGRADED
    assert worst_of(HealthStatus.UNHEALTHY, HealthStatus.DEGRADED) == HealthStatus.UNHEALTHY


def test_all_checks_healthy(monitor):
    result = monitor.check()

    assert result.status == HealthStatus.HEALTHY
    assert set(result.checks) == {"service", "indexer", "wallet", "last_poll"}
    assert result.checks["last_poll"].message == "No polls yet"


def test_disconnected_indexer_degrades(monitor):
    """Running, wallet connected, indexer down: DEGRADED, not UNHEALTHY."""
    monitor.set_indexer_connected(False)

    result = monitor.check()

    assert result.status == HealthStatus.DEGRADED
    assert result.checks["indexer"].status == HealthStatus.DEGRADED
    assert result.checks["wallet"].status == HealthStatus.HEALTHY


def test_unhealthy_when_stopped_or_wallet_missing(monitor):
    monitor.set_wallet_connected(False)
    assert monitor.check().status == HealthStatus.UNHEALTHY

    monitor.set_wallet_connected(True)
    monitor.service_stopped()
    result = monitor.check()
    assert result.status == HealthStatus.UNHEALTHY
    assert result.checks["service"].message == "Service is not running"


def test_consecutive_failures(monitor, clock):
    started = monitor.poll_started()
    monitor.poll_completed(started, success=False)
    assert monitor.check().checks["service"].status == HealthStatus.DEGRADED

    for _ in range(2):
        monitor.poll_completed(monitor.poll_started(), success=False)
    assert monitor.check().checks["service"].status == HealthStatus.UNHEALTHY

    monitor.poll_completed(monitor.poll_started(), success=True)
    assert monitor.check().status == HealthStatus.HEALTHY
    assert monitor.check().stats["consecutive_failures"] == 0


def test_last_poll_age(monitor, clock):
    monitor.poll_completed(monitor.poll_started(), success=True)

    clock.now += 60
    assert monitor.check().checks["last_poll"].status == HealthStatus.HEALTHY

    clock.now += 1
    assert monitor.check().checks["last_poll"].status == HealthStatus.DEGRADED

    clock.now += 60
    assert monitor.check().checks["last_poll"].status == HealthStatus.UNHEALTHY


def test_stats_and_status_line(monitor, clock):
    started = monitor.poll_started()
    clock.now += 2
    monitor.poll_completed(started, success=True)
    started = monitor.poll_started()
    clock.now += 4
    monitor.poll_completed(started, success=True)
    monitor.record_proven()
    monitor.record_proven()
    monitor.record_finalized()
    monitor.record_failed()
    monitor.update_pending_count(5)
    clock.now += 3_600 + 120 - 6

    stats = monitor.check().stats
    assert stats["polls_count"] == 2
    assert stats["average_poll_duration"] == 3.0
    assert stats["total_proven"] == 2
    assert stats["pending_withdrawals"] == 5

    assert monitor.status_line() == (
        "Status: UNHEALTHY | Uptime: 1h 2m | Polls: 2 | Proven: 2 | "
        "Finalized: 1 | Failed: 1 | Pending: 5"
    )


def test_reset(monitor):
    monitor.record_proven()
    monitor.reset()

    result = monitor.check()
    assert result.stats["total_proven"] == 0
    assert result.status == HealthStatus.UNHEALTHY
