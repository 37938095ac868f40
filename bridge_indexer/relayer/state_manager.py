"""
Persistent relayer state (which withdrawals this relayer already proved or
finalized) stored as a small JSON document.
"""

import json
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Set

import structlog


logger = structlog.get_logger(__name__)

STATE_VERSION = 1


def _empty_stats() -> Dict[str, int]:
    return {"total_proven": 0, "total_finalized": 0, "total_failed": 0}


class StateManager:
    """
    JSON-file state for the relayer.

    Writes are explicit: mutators mark the state dirty and ``flush`` (or
    ``save``) persists it. Saving writes a temp file and renames it over the
    target so a crash never leaves a half-written file.
    """

    def __init__(self, file_path: str):
        self.file_path = Path(file_path)
        self.logger = logger.bind(service="relayer_state", path=str(self.file_path))
        self._proven: Set[str] = set()
        self._finalized: Set[str] = set()
        self._stats = _empty_stats()
        self._dirty = False

    @property
    def is_dirty(self) -> bool:
        return self._dirty

    def load(self) -> None:
        """Load state from disk; a missing, unreadable or unknown-version file starts fresh."""
        if not self.file_path.exists():
            self.logger.info("No existing state file, starting fresh")
            return

        try:
            with open(self.file_path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            self.logger.error("Failed to load state, starting fresh", error=str(e))
            self.clear()
            return

        if not isinstance(data, dict) or data.get("version") != STATE_VERSION:
            self.logger.warning(
                "Unknown state version, starting fresh",
                version=data.get("version") if isinstance(data, dict) else None
            )
            self.clear()
            return

        self._proven = set(data.get("proven_withdrawals", []))
        self._finalized = set(data.get("finalized_withdrawals", []))
        self._stats = {**_empty_stats(), **data.get("stats", {})}
        self._dirty = False
        self.logger.info(
            "Loaded state from file",
            proven_count=len(self._proven),
            finalized_count=len(self._finalized)
        )

    def save(self) -> None:
        self.file_path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.file_path.with_name(self.file_path.name + ".tmp")
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(self.get_state(), f, indent=2)
        os.replace(tmp_path, self.file_path)
        self._dirty = False
        self.logger.debug("State saved")

    def flush(self) -> None:
        if self._dirty:
            self.save()

    def mark_proven(self, tx_hash: str) -> None:
        if tx_hash not in self._proven:
            self._proven.add(tx_hash)
            self._stats["total_proven"] += 1
            self._dirty = True

    def mark_finalized(self, tx_hash: str) -> None:
        if tx_hash not in self._finalized:
            self._finalized.add(tx_hash)
            self._stats["total_finalized"] += 1
            self._dirty = True

    def increment_failed(self) -> None:
        self._stats["total_failed"] += 1
        self._dirty = True

    def has_been_proven(self, tx_hash: str) -> bool:
        return tx_hash in self._proven

    def has_been_finalized(self, tx_hash: str) -> bool:
        return tx_hash in self._finalized

    def get_stats(self) -> Dict[str, int]:
        return dict(self._stats)

    def get_state(self) -> Dict[str, Any]:
        return {
            "version": STATE_VERSION,
            "proven_withdrawals": sorted(self._proven),
            "finalized_withdrawals": sorted(self._finalized),
            "stats": dict(self._stats),
            "last_updated": datetime.now(timezone.utc).isoformat(),
        }

    def proven_withdrawals(self) -> List[str]:
        return sorted(self._proven)

    def clear(self) -> None:
        self._proven.clear()
        self._finalized.clear()
        self._stats = _empty_stats()
        self._dirty = False
