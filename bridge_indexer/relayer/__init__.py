"""
Withdrawal relayer built on top of the indexer.
"""

from .health_monitor import HealthCheckResult, HealthConfig, HealthMonitor, HealthStatus
from .retry_handler import RetryConfig, RetryHandler, RetryOperation
from .service import RelayerService
from .state_manager import StateManager
from .types import (
    ProcessingResult,
    RelayerEvent,
    RelayerEventType,
    RelayerStats,
    TrackedWithdrawal,
)
from .withdrawal_monitor import WithdrawalMonitor
from .withdrawal_processor import WithdrawalProcessor, WithdrawalSubmitter, load_submitter

__all__ = [
    "HealthCheckResult",
    "HealthConfig",
    "HealthMonitor",
    "HealthStatus",
    "RetryConfig",
    "RetryHandler",
    "RetryOperation",
    "RelayerService",
    "StateManager",
    "ProcessingResult",
    "RelayerEvent",
    "RelayerEventType",
    "RelayerStats",
    "TrackedWithdrawal",
    "WithdrawalMonitor",
    "WithdrawalProcessor",
    "WithdrawalSubmitter",
    "load_submitter",
]
