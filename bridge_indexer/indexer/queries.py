"""
Read-only queries over indexed events and bridge transactions.
"""

import time
from dataclasses import dataclass, replace
from typing import Any, Callable, Dict, List, Optional

from bridge_indexer.models import (
    ChainType,
    TransactionType,
    TransactionStatus,
    DEPOSIT_EVENT_TYPES,
    WITHDRAWAL_EVENT_TYPES,
)

from .storage import IndexerStorage
from .types import BridgeEvent, BridgeTransaction, PaginatedResult, QueryFilter


CHALLENGE_PERIOD_SECONDS = 12 * 60 * 60
PROOF_MATURITY_DELAY_SECONDS = 12


class TransactionQuery:
    """Queries over the raw event log."""

    def __init__(self, storage: IndexerStorage):
        self.storage = storage

    async def get_transactions(self, query: Optional[QueryFilter] = None) -> PaginatedResult[BridgeEvent]:
        return await self.storage.query_events(query or QueryFilter())

    async def get_transactions_by_user(
        self,
        user: str,
        limit: int = 50,
        offset: int = 0
    ) -> PaginatedResult[BridgeEvent]:
        return await self.get_transactions(QueryFilter(user=user, limit=limit, offset=offset))

    async def get_transactions_by_token(
        self,
        token: str,
        limit: int = 50,
        offset: int = 0
    ) -> PaginatedResult[BridgeEvent]:
        return await self.get_transactions(QueryFilter(token=token, limit=limit, offset=offset))

    async def get_transaction_by_hash(self, tx_hash: str) -> Optional[BridgeEvent]:
        """First bridge event emitted in a chain transaction."""
        events = await self.storage.get_events_by_tx_hash(tx_hash)
        return events[0] if events else None

    async def get_stats(self) -> Dict[str, Any]:
        by_type = await self.storage.count_events_by_type()
        return {
            "total_events": sum(by_type.values()),
            "l1_events": await self.storage.count_events(ChainType.L1),
            "l2_events": await self.storage.count_events(ChainType.L2),
            "deposit_events": sum(by_type.get(t.value, 0) for t in DEPOSIT_EVENT_TYPES),
            "withdrawal_events": sum(by_type.get(t.value, 0) for t in WITHDRAWAL_EVENT_TYPES),
            "events_by_type": by_type,
            "unique_users": await self.storage.count_unique_users(),
        }


class DepositWithdrawalQuery:
    """Queries over derived deposits and withdrawals."""

    def __init__(self, storage: IndexerStorage):
        self.storage = storage

    async def get_deposits(self, query: Optional[QueryFilter] = None) -> PaginatedResult[BridgeTransaction]:
        query = replace(query or QueryFilter(), transaction_type=TransactionType.DEPOSIT)
        return await self.storage.query_transactions(query)

    async def get_withdrawals(self, query: Optional[QueryFilter] = None) -> PaginatedResult[BridgeTransaction]:
        query = replace(query or QueryFilter(), transaction_type=TransactionType.WITHDRAWAL)
        return await self.storage.query_transactions(query)

    async def get_user_deposits(
        self,
        user: str,
        limit: int = 50,
        offset: int = 0
    ) -> PaginatedResult[BridgeTransaction]:
        return await self.get_deposits(QueryFilter(user=user, limit=limit, offset=offset))

    async def get_user_withdrawals(
        self,
        user: str,
        limit: int = 50,
        offset: int = 0
    ) -> PaginatedResult[BridgeTransaction]:
        return await self.get_withdrawals(QueryFilter(user=user, limit=limit, offset=offset))

    async def get_deposit_by_tx_hash(self, tx_hash: str) -> Optional[BridgeTransaction]:
        return await self.storage.get_transaction_by_tx_hash(tx_hash, TransactionType.DEPOSIT)

    async def get_withdrawal_by_tx_hash(self, tx_hash: str) -> Optional[BridgeTransaction]:
        return await self.storage.get_transaction_by_tx_hash(tx_hash, TransactionType.WITHDRAWAL)

    async def get_deposit_stats(self, user: Optional[str] = None) -> Dict[str, int]:
        counts = await self.storage.count_transactions_by_status(TransactionType.DEPOSIT, user)
        return {
            "total": sum(counts.values()),
            "pending": counts[TransactionStatus.INITIATED],
            "finalized": counts[TransactionStatus.FINALIZED],
        }

    async def get_withdrawal_stats(self, user: Optional[str] = None) -> Dict[str, int]:
        counts = await self.storage.count_transactions_by_status(TransactionType.WITHDRAWAL, user)
        return {
            "total": sum(counts.values()),
            "initiated": counts[TransactionStatus.INITIATED],
            "proven": counts[TransactionStatus.PROVEN],
            "ready_for_finalization": counts[TransactionStatus.READY_FOR_FINALIZATION],
            "finalized": counts[TransactionStatus.FINALIZED],
        }


@dataclass
class WithdrawalStatus:
    """Where a withdrawal is in the prove/finalize flow."""
    transaction_id: str
    phase: str
    status: TransactionStatus
    can_prove: bool
    can_finalize: bool
    user_address: Optional[str] = None
    initiated_tx_hash: Optional[str] = None
    initiated_at: Optional[int] = None
    proven_tx_hash: Optional[str] = None
    proven_at: Optional[int] = None
    finalized_tx_hash: Optional[str] = None
    finalized_at: Optional[int] = None
    estimated_ready_to_prove: Optional[int] = None
    estimated_ready_to_finalize: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "transaction_id": self.transaction_id,
            "phase": self.phase,
            "status": self.status.value,
            "can_prove": self.can_prove,
            "can_finalize": self.can_finalize,
            "user_address": self.user_address,
            "initiated_tx_hash": self.initiated_tx_hash,
            "initiated_at": self.initiated_at,
            "proven_tx_hash": self.proven_tx_hash,
            "proven_at": self.proven_at,
            "finalized_tx_hash": self.finalized_tx_hash,
            "finalized_at": self.finalized_at,
            "estimated_ready_to_prove": self.estimated_ready_to_prove,
            "estimated_ready_to_finalize": self.estimated_ready_to_finalize,
        }


class WithdrawalStatusQuery:
    """
    Withdrawal readiness.

    A withdrawal can be proven ``proof_maturity_delay`` seconds after it was
    initiated and finalized ``challenge_period`` seconds after it was proven.
    A READY_FOR_FINALIZATION status (set from L1 chain time) also counts as
    finalizable.
    """

    def __init__(
        self,
        storage: IndexerStorage,
        challenge_period: int = CHALLENGE_PERIOD_SECONDS,
        proof_maturity_delay: int = PROOF_MATURITY_DELAY_SECONDS,
        clock: Callable[[], float] = time.time
    ):
        self.storage = storage
        self.challenge_period = challenge_period
        self.proof_maturity_delay = proof_maturity_delay
        self._clock = clock

    async def get_withdrawal_status(self, tx_hash: str) -> Optional[WithdrawalStatus]:
        """Status by withdrawal hash or any of the withdrawal's transaction hashes."""
        tx = await self.storage.get_transaction_by_tx_hash(tx_hash, TransactionType.WITHDRAWAL)
        return self.status_for(tx) if tx else None

    async def get_all_pending_withdrawals(self, user: Optional[str] = None) -> List[WithdrawalStatus]:
        pending = await self.storage.list_transactions(
            TransactionType.WITHDRAWAL,
            [
                TransactionStatus.INITIATED,
                TransactionStatus.PROVEN,
                TransactionStatus.READY_FOR_FINALIZATION,
            ],
            user=user,
        )
        return [self.status_for(tx) for tx in pending]

    async def get_ready_to_prove(self, user: Optional[str] = None) -> List[WithdrawalStatus]:
        return [s for s in await self.get_all_pending_withdrawals(user) if s.can_prove]

    async def get_ready_to_finalize(self, user: Optional[str] = None) -> List[WithdrawalStatus]:
        return [s for s in await self.get_all_pending_withdrawals(user) if s.can_finalize]

    async def get_withdrawal_timeline(self, tx_hash: str) -> Dict[str, Any]:
        status = await self.get_withdrawal_status(tx_hash)
        if status is None:
            return {}

        timeline: Dict[str, Any] = {}
        if status.initiated_tx_hash:
            timeline["initiated"] = {"timestamp": status.initiated_at, "tx_hash": status.initiated_tx_hash}
        if status.proven_tx_hash:
            timeline["proven"] = {"timestamp": status.proven_at, "tx_hash": status.proven_tx_hash}
        if status.finalized_tx_hash:
            timeline["finalized"] = {"timestamp": status.finalized_at, "tx_hash": status.finalized_tx_hash}
        elif status.estimated_ready_to_finalize:
            timeline["estimated_completion"] = status.estimated_ready_to_finalize
        return timeline

    def status_for(self, tx: BridgeTransaction) -> WithdrawalStatus:
        now = int(self._clock())
        finalized = tx.status == TransactionStatus.FINALIZED
        proven = tx.proven_at is not None or tx.status.rank >= TransactionStatus.PROVEN.rank

        if finalized:
            phase = "finalized"
        elif proven:
            phase = "proven"
        else:
            phase = "initiated"

        ready_to_prove = (
            tx.initiated_at + self.proof_maturity_delay if tx.initiated_at is not None else None
        )
        ready_to_finalize = (
            tx.proven_at + self.challenge_period if tx.proven_at is not None else None
        )

        can_prove = (
            phase == "initiated"
            and ready_to_prove is not None
            and now >= ready_to_prove
        )
        can_finalize = phase == "proven" and (
            tx.status == TransactionStatus.READY_FOR_FINALIZATION
            or (ready_to_finalize is not None and now >= ready_to_finalize)
        )

        return WithdrawalStatus(
            transaction_id=tx.id,
            phase=phase,
            status=tx.status,
            can_prove=can_prove,
            can_finalize=can_finalize,
            user_address=tx.user_address,
            initiated_tx_hash=tx.initiated_tx_hash,
            initiated_at=tx.initiated_at,
            proven_tx_hash=tx.proven_tx_hash,
            proven_at=tx.proven_at,
            finalized_tx_hash=tx.finalized_tx_hash,
            finalized_at=tx.finalized_at,
            estimated_ready_to_prove=ready_to_prove,
            estimated_ready_to_finalize=ready_to_finalize,
        )
