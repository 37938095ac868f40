"""
Per-withdrawal retry bookkeeping with exponential backoff.
"""

import random
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, List, Optional, Tuple

import structlog


logger = structlog.get_logger(__name__)


class RetryOperation(Enum):
    PROVE = "prove"
    FINALIZE = "finalize"


@dataclass
class RetryConfig:
    max_retries: int = 3
    initial_delay: float = 1.0  # seconds
    max_delay: float = 60.0  # seconds
    backoff_multiplier: float = 2.0
    jitter: float = 0.1  # fraction of the capped delay


@dataclass
class RetryState:
    attempts: int
    last_attempt: float
    next_retry_at: float
    last_error: Optional[str] = None


class RetryHandler:
    """
    Tracks failed prove/finalize attempts per transaction hash.

    After the n-th failure the next attempt is allowed at
    ``now + min(max_delay, initial_delay * multiplier**n)`` plus or minus
    ``jitter`` of that delay. Once ``max_retries`` failures are recorded the
    entry is exhausted and stays so until ``clear`` is called. A success
    removes the entry.
    """

    def __init__(
        self,
        config: Optional[RetryConfig] = None,
        clock: Callable[[], float] = time.time,
        rng: Callable[[float, float], float] = random.uniform
    ):
        self.config = config or RetryConfig()
        self._clock = clock
        self._rng = rng
        self._states: Dict[Tuple[RetryOperation, str], RetryState] = {}
        self.logger = logger.bind(service="retry_handler")

    def calculate_delay(self, attempts: int) -> float:
        capped = min(
            self.config.initial_delay * (self.config.backoff_multiplier ** attempts),
            self.config.max_delay
        )
        spread = capped * self.config.jitter
        return max(0.0, capped + self._rng(-spread, spread))

    def record_failure(self, operation: RetryOperation, tx_hash: str, error: str) -> RetryState:
        key = (operation, tx_hash)
        existing = self._states.get(key)
        attempts = (existing.attempts if existing else 0) + 1
        now = self._clock()
        delay = self.calculate_delay(attempts)

        state = RetryState(
            attempts=attempts,
            last_attempt=now,
            next_retry_at=now + delay,
            last_error=error,
        )
        self._states[key] = state

        if attempts >= self.config.max_retries:
            self.logger.warning(
                "Retries exhausted",
                operation=operation.value,
                tx_hash=tx_hash,
                attempts=attempts,
                error=error
            )
        else:
            self.logger.debug(
                "Recorded failure",
                operation=operation.value,
                tx_hash=tx_hash,
                attempts=attempts,
                next_retry_in=round(delay, 3)
            )
        return state

    def record_success(self, operation: RetryOperation, tx_hash: str) -> None:
        self._states.pop((operation, tx_hash), None)

    def can_retry(self, operation: RetryOperation, tx_hash: str) -> bool:
        state = self._states.get((operation, tx_hash))
        if state is None:
            return True
        if state.attempts >= self.config.max_retries:
            return False
        return self._clock() >= state.next_retry_at

    def is_exhausted(self, operation: RetryOperation, tx_hash: str) -> bool:
        state = self._states.get((operation, tx_hash))
        return state is not None and state.attempts >= self.config.max_retries

    def get_state(self, operation: RetryOperation, tx_hash: str) -> Optional[RetryState]:
        return self._states.get((operation, tx_hash))

    def get_exhausted(self, operation: RetryOperation) -> List[str]:
        return [
            tx_hash
            for (op, tx_hash), state in self._states.items()
            if op == operation and state.attempts >= self.config.max_retries
        ]

    def get_stats(self) -> Dict[str, int]:
        stats = {}
        for operation in RetryOperation:
            states = [s for (op, _), s in self._states.items() if op == operation]
            exhausted = sum(1 for s in states if s.attempts >= self.config.max_retries)
            stats[f"pending_{operation.value}_retries"] = len(states) - exhausted
            stats[f"exhausted_{operation.value}s"] = exhausted
        return stats

    def clear(self, operation: Optional[RetryOperation] = None, tx_hash: Optional[str] = None) -> None:
        """Forget retry state, optionally only for one operation and/or hash."""
        if operation is None and tx_hash is None:
            self._states.clear()
            return
        for key in list(self._states):
            op, key_hash = key
            if (operation is None or op == operation) and (tx_hash is None or key_hash == tx_hash):
                del self._states[key]

    # Per-operation shortcuts

    def record_prove_failure(self, tx_hash: str, error: str) -> RetryState:
        return self.record_failure(RetryOperation.PROVE, tx_hash, error)

    def record_prove_success(self, tx_hash: str) -> None:
        self.record_success(RetryOperation.PROVE, tx_hash)

    def can_retry_prove(self, tx_hash: str) -> bool:
        return self.can_retry(RetryOperation.PROVE, tx_hash)

    def is_prove_exhausted(self, tx_hash: str) -> bool:
        return self.is_exhausted(RetryOperation.PROVE, tx_hash)

    def record_finalize_failure(self, tx_hash: str, error: str) -> RetryState:
        return self.record_failure(RetryOperation.FINALIZE, tx_hash, error)

    def record_finalize_success(self, tx_hash: str) -> None:
        self.record_success(RetryOperation.FINALIZE, tx_hash)

    def can_retry_finalize(self, tx_hash: str) -> bool:
        return self.can_retry(RetryOperation.FINALIZE, tx_hash)

    def is_finalize_exhausted(self, tx_hash: str) -> bool:
        return self.is_exhausted(RetryOperation.FINALIZE, tx_hash)
