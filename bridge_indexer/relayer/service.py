"""
Withdrawal relayer: polls the indexer and submits proofs and
finalizations for withdrawals that became eligible.
"""

import asyncio
import time
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

import structlog

from bridge_indexer.core.config import Settings
from bridge_indexer.indexer.service import IndexerService

from .health_monitor import HealthCheckResult, HealthConfig, HealthMonitor
from .retry_handler import RetryConfig, RetryHandler
from .state_manager import StateManager
from .types import (
    ProcessingResult,
    RelayerEvent,
    RelayerEventType,
    RelayerStats,
    TrackedWithdrawal,
)
from .withdrawal_monitor import WithdrawalMonitor
from .withdrawal_processor import WithdrawalProcessor, WithdrawalSubmitter


logger = structlog.get_logger(__name__)

RelayerEventListener = Callable[[RelayerEvent], None]


class RelayerService:
    """
    Automatic prove/finalize relayer.

    Each poll syncs the indexer, then proves withdrawals past the proof
    maturity delay and finalizes those past the challenge period. Failed
    submissions back off per withdrawal via ``RetryHandler``; withdrawals this
    relayer already handled are remembered in a JSON state file.

    Usage:
        relayer = RelayerService(settings, indexer, submitter)
        await relayer.start()
        ...
        await relayer.stop()
    """

    def __init__(
        self,
        settings: Settings,
        indexer: IndexerService,
        submitter: Optional[WithdrawalSubmitter] = None,
        clock: Callable[[], float] = time.time
    ):
        self.settings = settings
        self.indexer = indexer
        self.submitter = submitter
        self._clock = clock
        self.logger = logger.bind(service="relayer")

        self.monitor = WithdrawalMonitor(indexer, filter_by_user=settings.relayer_filter_user)
        self.processor = WithdrawalProcessor(
            submitter,
            max_concurrent=settings.relayer_max_concurrent,
            tx_delay=settings.relayer_tx_delay,
            clock=clock,
        )
        self.state = StateManager(settings.relayer_state_file)
        self.retry_handler = RetryHandler(
            RetryConfig(
                max_retries=settings.retry_max_retries,
                initial_delay=settings.retry_initial_delay,
                max_delay=settings.retry_max_delay,
                backoff_multiplier=settings.retry_backoff_multiplier,
                jitter=settings.retry_jitter,
            ),
            clock=clock,
        )
        self.health = HealthMonitor(
            HealthConfig(
                max_poll_age=settings.health_max_poll_age,
                max_consecutive_failures=settings.health_max_consecutive_failures,
            ),
            clock=clock,
        )

        self._running = False
        self._task: Optional[asyncio.Task] = None
        self._stop_event = asyncio.Event()
        self._start_time: Optional[float] = None
        self._last_poll_time: Optional[float] = None
        self._listeners: List[RelayerEventListener] = []

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        if self._running:
            self.logger.warning("Relayer already running")
            return

        self.logger.info("Starting relayer")
        self._running = True
        self._start_time = self._clock()
        self.state.load()

        self.health.service_started()
        await self._refresh_connections()
        self._emit(RelayerEventType.STARTED)

        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self._poll_loop(), name="relayer-poll")
        self.logger.info("Relayer started", poll_interval=self.settings.relayer_poll_interval)

    async def stop(self) -> None:
        if not self._running:
            return

        self.logger.info("Stopping relayer")
        self._running = False
        self._stop_event.set()
        if self._task is not None:
            try:
                await asyncio.wait_for(self._task, timeout=self.settings.indexer_stop_timeout)
            except asyncio.TimeoutError:
                self.logger.warning("Relayer poll did not finish in time, cancelled")
            self._task = None

        self._flush_state()
        self.health.service_stopped()
        if self.submitter is not None:
            await self.submitter.close()
        self._emit(RelayerEventType.STOPPED)
        self.logger.info("Relayer stopped")

    async def _poll_loop(self) -> None:
        while not self._stop_event.is_set():
            await self.poll()
            try:
                await asyncio.wait_for(
                    self._stop_event.wait(),
                    timeout=self.settings.relayer_poll_interval
                )
            except asyncio.TimeoutError:
                continue

    async def poll(self) -> bool:
        """One relayer cycle. Returns False if the cycle failed."""
        started_at = self.health.poll_started()
        self._emit(RelayerEventType.POLL)
        success = True

        try:
            await self.monitor.sync()
            await self._refresh_connections()

            if self.settings.relayer_auto_prove:
                await self.process_proofs()
            if self.settings.relayer_auto_finalize:
                await self.process_finalizations()

            stats = self.monitor.get_stats()
            self.health.update_pending_count(stats["total"])
            self.logger.debug(
                "Poll complete",
                pending=stats["total"],
                ready_to_prove=stats["ready_to_prove"],
                ready_to_finalize=stats["ready_to_finalize"]
            )
        except Exception as e:
            success = False
            self.logger.error("Relayer poll failed", error=str(e))
            self._emit(RelayerEventType.ERROR, error=str(e))

        self._last_poll_time = self._clock()
        self.health.poll_completed(started_at, success)
        self._flush_state()
        return success

    async def process_proofs(self) -> List[ProcessingResult]:
        ready = await self.monitor.get_ready_to_prove()
        if not ready:
            self.logger.debug("No withdrawals ready to prove")
            return []

        self.logger.info("Processing withdrawals ready to prove", count=len(ready))
        results = []
        for withdrawal in ready:
            key = withdrawal.key
            if (
                self.processor.is_processing(key)
                or self.processor.has_proof_been_processed(key)
                or self.state.has_been_proven(key)
            ):
                continue

            if not self.retry_handler.can_retry_prove(key):
                if self.retry_handler.is_prove_exhausted(key):
                    self.logger.warning("Prove retries exhausted, skipping", tx_hash=key)
                continue

            self._emit(RelayerEventType.WITHDRAWAL_DETECTED, tx_hash=key)
            self._emit(RelayerEventType.WITHDRAWAL_PROVING, tx_hash=key)

            result = await self.processor.prove_withdrawal(withdrawal)
            if result.success:
                self.state.mark_proven(key)
                self.health.record_proven()
                self.retry_handler.record_prove_success(key)
                self._emit(
                    RelayerEventType.WITHDRAWAL_PROVED,
                    initiated_tx_hash=key,
                    prove_tx_hash=result.tx_hash
                )
            else:
                self._record_failure(key, "prove", result.error)
            results.append(result)
        return results

    async def process_finalizations(self) -> List[ProcessingResult]:
        ready = await self.monitor.get_ready_to_finalize()
        if not ready:
            self.logger.debug("No withdrawals ready to finalize")
            return []

        self.logger.info("Processing withdrawals ready to finalize", count=len(ready))
        results = []
        for withdrawal in ready:
            key = withdrawal.key
            if (
                self.processor.is_processing(key)
                or self.processor.has_finalization_been_processed(key)
                or self.state.has_been_finalized(key)
            ):
                continue

            if not self.retry_handler.can_retry_finalize(key):
                if self.retry_handler.is_finalize_exhausted(key):
                    self.logger.warning("Finalize retries exhausted, skipping", tx_hash=key)
                continue

            self._emit(RelayerEventType.WITHDRAWAL_FINALIZING, tx_hash=key)

            result = await self.processor.finalize_withdrawal(withdrawal)
            if result.success:
                self.state.mark_finalized(key)
                self.health.record_finalized()
                self.retry_handler.record_finalize_success(key)
                self._emit(
                    RelayerEventType.WITHDRAWAL_FINALIZED,
                    initiated_tx_hash=key,
                    finalize_tx_hash=result.tx_hash
                )
            else:
                self._record_failure(key, "finalize", result.error)
            results.append(result)
        return results

    def _record_failure(self, key: str, phase: str, error: Optional[str]) -> None:
        error = error or "Unknown error"
        if phase == "prove":
            self.retry_handler.record_prove_failure(key, error)
        else:
            self.retry_handler.record_finalize_failure(key, error)
        self.health.record_failed()
        self.state.increment_failed()
        self._emit(RelayerEventType.WITHDRAWAL_FAILED, tx_hash=key, phase=phase, error=error)

    async def prove_withdrawal(self, tx_hash: str) -> ProcessingResult:
        """Prove one withdrawal now, bypassing retry gating."""
        withdrawal = await self.monitor.get_withdrawal_status(tx_hash)
        if withdrawal is None:
            return ProcessingResult(False, _unknown_withdrawal(tx_hash), error="Withdrawal not found")

        result = await self.processor.prove_withdrawal(withdrawal)
        if result.success:
            self.state.mark_proven(withdrawal.key)
            self.health.record_proven()
            self._flush_state()
        return result

    async def finalize_withdrawal(self, tx_hash: str) -> ProcessingResult:
        """Finalize one withdrawal now, bypassing retry gating."""
        withdrawal = await self.monitor.get_withdrawal_status(tx_hash)
        if withdrawal is None:
            return ProcessingResult(False, _unknown_withdrawal(tx_hash), error="Withdrawal not found")

        result = await self.processor.finalize_withdrawal(withdrawal)
        if result.success:
            self.state.mark_finalized(withdrawal.key)
            self.health.record_finalized()
            self._flush_state()
        return result

    async def force_poll(self) -> bool:
        return await self.poll()

    async def get_pending_withdrawals(self) -> List[TrackedWithdrawal]:
        return await self.monitor.get_pending_withdrawals()

    def get_stats(self) -> RelayerStats:
        state_stats = self.state.get_stats()
        now = self._clock()
        return RelayerStats(
            total_processed=state_stats["total_proven"] + state_stats["total_finalized"],
            total_proven=state_stats["total_proven"],
            total_finalized=state_stats["total_finalized"],
            total_failed=state_stats["total_failed"],
            current_pending=self.monitor.get_stats()["total"],
            uptime_seconds=now - self._start_time if self._start_time is not None else 0.0,
            start_time=_as_datetime(self._start_time),
            last_poll_time=_as_datetime(self._last_poll_time),
        )

    def get_health(self) -> HealthCheckResult:
        return self.health.check()

    def get_health_status(self) -> str:
        return self.health.status_line()

    def get_retry_stats(self) -> Dict[str, int]:
        return self.retry_handler.get_stats()

    def get_processor_stats(self) -> Dict[str, int]:
        return self.processor.get_stats()

    # Events

    def on(self, listener: RelayerEventListener) -> Callable[[], None]:
        """Register a listener; returns a callable that removes it."""
        if listener not in self._listeners:
            self._listeners.append(listener)
        return lambda: self.off(listener)

    def off(self, listener: RelayerEventListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _emit(self, event_type: RelayerEventType, **data: Any) -> None:
        event = RelayerEvent(type=event_type, timestamp=datetime.now(timezone.utc), data=data)
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception as e:
                self.logger.error("Relayer event listener failed", relayer_event=event_type.value, error=str(e))

    async def _refresh_connections(self) -> None:
        self.health.set_indexer_connected(await self.indexer.is_connected())
        self.health.set_wallet_connected(
            self.submitter is not None and await self.submitter.is_connected()
        )

    def _flush_state(self) -> None:
        try:
            self.state.flush()
        except OSError as e:
            self.logger.error("Failed to save relayer state", error=str(e))


def _unknown_withdrawal(tx_hash: str) -> TrackedWithdrawal:
    return TrackedWithdrawal(
        withdrawal_hash=tx_hash,
        initiated_tx_hash=tx_hash,
        phase="initiated",
        can_prove=False,
        can_finalize=False,
    )


def _as_datetime(timestamp: Optional[float]) -> Optional[datetime]:
    if timestamp is None:
        return None
    return datetime.fromtimestamp(timestamp, tz=timezone.utc)
