"""
Prove/finalize submission for tracked withdrawals.

Submitting L1 transactions needs a wallet, so the relayer delegates the
actual calls to a pluggable ``WithdrawalSubmitter``.
"""

import asyncio
import importlib
import time
from abc import ABC, abstractmethod
from dataclasses import replace
from typing import Awaitable, Callable, Dict, List, Optional, Set

import structlog

from bridge_indexer.core.config import Settings
from bridge_indexer.core.exceptions import ConfigurationError, PluginError

from .types import ProcessingResult, TrackedWithdrawal


logger = structlog.get_logger(__name__)

WALLET_NOT_CONFIGURED = "Bridge not available - wallet not configured"


class WithdrawalSubmitter(ABC):
    """Sends prove and finalize transactions to L1."""

    @abstractmethod
    async def prove_withdrawal(self, initiated_tx_hash: str) -> str:
        """Submit the proof for the withdrawal started in ``initiated_tx_hash``; return the L1 tx hash."""

    @abstractmethod
    async def finalize_withdrawal(self, initiated_tx_hash: str) -> str:
        """Submit finalization; return the L1 tx hash."""

    async def is_connected(self) -> bool:
        return True

    async def close(self) -> None:
        pass


def load_submitter(path: Optional[str], settings: Settings) -> Optional[WithdrawalSubmitter]:
    """
    Build a submitter from a ``"package.module:factory"`` path.

    The factory is called with the settings and must return a
    ``WithdrawalSubmitter``. Returns None when no path is configured.
    """
    if not path:
        return None

    module_name, _, attr = path.partition(":")
    if not module_name or not attr:
        raise ConfigurationError(
            f"Invalid submitter path '{path}', expected 'module:factory'",
            details={"path": path}
        )

    try:
        module = importlib.import_module(module_name)
        factory = getattr(module, attr)
    except (ImportError, AttributeError) as e:
        raise PluginError(f"Cannot load submitter '{path}': {e}", details={"path": path}) from e

    submitter = factory(settings)
    if not isinstance(submitter, WithdrawalSubmitter):
        raise PluginError(
            f"Submitter factory '{path}' returned {type(submitter).__name__}",
            details={"path": path}
        )
    return submitter


class WithdrawalProcessor:
    """
    Submits proofs and finalizations with in-flight de-duplication and a
    concurrency cap. Submission failures are returned as unsuccessful
    results, never raised.
    """

    def __init__(
        self,
        submitter: Optional[WithdrawalSubmitter] = None,
        max_concurrent: int = 3,
        tx_delay: float = 1.0,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep
    ):
        self.submitter = submitter
        self.max_concurrent = max_concurrent
        self.tx_delay = tx_delay
        self._clock = clock
        self._sleep = sleep
        self.logger = logger.bind(service="withdrawal_processor")

        self._processing: Set[str] = set()
        self._processed_proofs: Set[str] = set()
        self._processed_finalizations: Set[str] = set()

    def is_processing(self, key: str) -> bool:
        return key in self._processing

    def has_proof_been_processed(self, key: str) -> bool:
        return key in self._processed_proofs

    def has_finalization_been_processed(self, key: str) -> bool:
        return key in self._processed_finalizations

    def can_process_more(self) -> bool:
        return len(self._processing) < self.max_concurrent

    async def prove_withdrawal(self, withdrawal: TrackedWithdrawal) -> ProcessingResult:
        return await self._submit(withdrawal, prove=True)

    async def finalize_withdrawal(self, withdrawal: TrackedWithdrawal) -> ProcessingResult:
        return await self._submit(withdrawal, prove=False)

    async def prove_withdrawals(self, withdrawals: List[TrackedWithdrawal]) -> List[ProcessingResult]:
        return await self._submit_batch(withdrawals, prove=True)

    async def finalize_withdrawals(self, withdrawals: List[TrackedWithdrawal]) -> List[ProcessingResult]:
        return await self._submit_batch(withdrawals, prove=False)

    async def _submit_batch(self, withdrawals: List[TrackedWithdrawal], prove: bool) -> List[ProcessingResult]:
        results = []
        for withdrawal in withdrawals:
            if not self.can_process_more():
                self.logger.debug("Concurrency limit reached, stopping batch")
                break
            result = await self._submit(withdrawal, prove)
            results.append(result)
            # Successful submissions are spaced tx_delay apart
            if result.success and self.tx_delay > 0:
                await self._sleep(self.tx_delay)
        return results

    async def _submit(self, withdrawal: TrackedWithdrawal, prove: bool) -> ProcessingResult:
        key = withdrawal.key
        action = "prove" if prove else "finalize"
        processed = self._processed_proofs if prove else self._processed_finalizations

        if key in self._processing:
            self.logger.debug("Withdrawal already being processed", tx_hash=key)
            return ProcessingResult(False, withdrawal, error="Already processing")
        if key in processed:
            self.logger.debug("Withdrawal already handled by relayer", tx_hash=key, action=action)
            return ProcessingResult(False, withdrawal, error="Already processed")
        if not self.can_process_more():
            self.logger.debug("Concurrency limit reached, skipping", tx_hash=key)
            return ProcessingResult(False, withdrawal, error="Concurrency limit reached")

        self.logger.info("Submitting withdrawal transaction", tx_hash=key, action=action)
        self._processing.add(key)
        try:
            if self.submitter is None:
                raise PluginError(WALLET_NOT_CONFIGURED)

            if prove:
                result_hash = await self.submitter.prove_withdrawal(key)
            else:
                result_hash = await self.submitter.finalize_withdrawal(key)

            processed.add(key)
            now = int(self._clock())
            if prove:
                updated = replace(
                    withdrawal, phase="proven", proven_tx_hash=result_hash,
                    proven_at=now, can_prove=False
                )
            else:
                updated = replace(
                    withdrawal, phase="finalized", finalized_tx_hash=result_hash,
                    finalized_at=now, can_finalize=False
                )

            self.logger.info(
                "Withdrawal transaction submitted",
                tx_hash=key,
                action=action,
                result_tx_hash=result_hash
            )
            return ProcessingResult(True, updated, tx_hash=result_hash)

        except Exception as e:
            message = e.message if isinstance(e, PluginError) else str(e)
            self.logger.error("Withdrawal submission failed", tx_hash=key, action=action, error=message)
            return ProcessingResult(False, withdrawal, error=message)
        finally:
            self._processing.discard(key)

    def get_stats(self) -> Dict[str, int]:
        return {
            "currently_processing": len(self._processing),
            "total_proofs_processed": len(self._processed_proofs),
            "total_finalizations_processed": len(self._processed_finalizations),
            "max_concurrent": self.max_concurrent,
        }
