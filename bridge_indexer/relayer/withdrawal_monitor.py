"""
Pending withdrawal discovery backed by the indexer.
"""

from dataclasses import replace
from typing import Dict, List, Optional

import structlog

from bridge_indexer.indexer.service import IndexerService

from .types import TrackedWithdrawal


logger = structlog.get_logger(__name__)


class WithdrawalMonitor:
    """
    Reads pending withdrawals from the indexer.

    The tracked set mirrors the latest pending snapshot: withdrawals that
    finalize drop out on the next read.
    """

    def __init__(self, indexer: IndexerService, filter_by_user: Optional[str] = None):
        self.indexer = indexer
        self.filter_by_user = filter_by_user.lower() if filter_by_user else None
        self.logger = logger.bind(service="withdrawal_monitor")
        self._tracked: Dict[str, TrackedWithdrawal] = {}

    async def get_pending_withdrawals(self) -> List[TrackedWithdrawal]:
        statuses = await self.indexer.withdrawals.get_all_pending_withdrawals(self.filter_by_user)
        tracked = [TrackedWithdrawal.from_status(status) for status in statuses]
        self._tracked = {withdrawal.key: withdrawal for withdrawal in tracked}

        self.logger.debug("Found pending withdrawals", count=len(tracked))
        return tracked

    async def get_ready_to_prove(self) -> List[TrackedWithdrawal]:
        return [
            w for w in await self.get_pending_withdrawals()
            if w.can_prove and w.phase == "initiated" and w.proven_at is None
        ]

    async def get_ready_to_finalize(self) -> List[TrackedWithdrawal]:
        return [
            w for w in await self.get_pending_withdrawals()
            if w.can_finalize and w.phase == "proven" and w.finalized_at is None
        ]

    async def get_withdrawal_status(self, tx_hash: str) -> Optional[TrackedWithdrawal]:
        status = await self.indexer.withdrawals.get_withdrawal_status(tx_hash)
        if status is None:
            return None
        tracked = TrackedWithdrawal.from_status(status)
        self._tracked[tracked.key] = tracked
        return tracked

    def get_tracked_withdrawals(self) -> List[TrackedWithdrawal]:
        return list(self._tracked.values())

    def update_tracked_withdrawal(self, key: str, **updates) -> None:
        existing = self._tracked.get(key)
        if existing is not None:
            self._tracked[key] = replace(existing, **updates)

    def is_tracked(self, key: str) -> bool:
        return key in self._tracked

    def get_stats(self) -> Dict[str, int]:
        withdrawals = self.get_tracked_withdrawals()
        return {
            "total": len(withdrawals),
            "initiated": sum(1 for w in withdrawals if w.phase == "initiated"),
            "proven": sum(1 for w in withdrawals if w.phase == "proven"),
            "finalized": sum(1 for w in withdrawals if w.phase == "finalized"),
            "ready_to_prove": sum(1 for w in withdrawals if w.can_prove and w.proven_at is None),
            "ready_to_finalize": sum(1 for w in withdrawals if w.can_finalize and w.finalized_at is None),
        }

    async def sync(self) -> Dict[str, int]:
        """Run one indexer pass; returns inserted event counts per chain."""
        counts = await self.indexer.sync_now()
        result = {chain.value: count for chain, count in counts.items()}
        self.logger.debug("Indexer synced", **result)
        return result

    def clear(self) -> None:
        self._tracked.clear()
