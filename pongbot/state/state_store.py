"""
StateStore: durable record of reconciliation progress and pong outcomes.

Holds three pieces of state:
- last_block: watermark, highest block known to be fully reconciled
- sent: ping tx hash -> {"blockNumber": n} for confirmed pongs
- failed: ping tx hash -> {"blockNumber": n} for pings that exhausted both tiers

Durability:
    Every mutating call rewrites the whole snapshot (write to a temp file,
    fsync, os.replace) before returning, so a crash right after any call
    leaves the file consistent with that call. A failed write raises
    StorageWriteFailure and is fatal.

Thread Safety:
    All reads and writes go through a single threading.Lock. On the asyncio
    loop the calls are synchronous and never interleave anyway; the lock keeps
    the store correct if it is ever called from executor threads.
"""

from __future__ import annotations

import logging
import os
import threading
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional

from pongbot.core.errors import InvalidArgument, StorageReadFailure, StorageWriteFailure
from pongbot.core.json_utils import dumps, dumps_bytes, loads

TxRecord = Dict[str, int]


class StateStore:
    """
    File-backed PersistedState.

    Usage:
        store = StateStore("state/lastBlock.json", floor=7979028, logger=log)
        store.add_sent(ping_tx, block)
        store.set_last_block(head)
        store.clear_before(head)
    """

    def __init__(self, path: str | Path, floor: int, logger: Optional[logging.Logger] = None) -> None:
        """
        Load the snapshot at ``path`` (if any) and reconcile it with ``floor``.

        Args:
            path: Snapshot file location; parent dirs are created
            floor: Configured starting block. A persisted watermark below it
                is ignored; one at or above it wins
            logger: Logger for structured events
        """
        self.path = Path(path)
        self.tmp = self.path.with_name(self.path.name + ".tmp")
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.floor = int(floor)
        self.log = logger or logging.getLogger("pongbot")

        self._lock = threading.Lock()
        self._last_block: int = self.floor
        self._sent: Dict[str, TxRecord] = {}
        self._failed: Dict[str, TxRecord] = {}

        data = self._read()
        if data is not None:
            persisted = int(data.get("lastBlock", 0))
            if persisted >= self.floor:
                self._last_block = persisted
            self._sent = self._records(data.get("sentTransactions"))
            self._failed = self._records(data.get("failedTransactions"))
            self._log_event(
                "state_loaded",
                persisted_last_block=persisted,
                floor=self.floor,
                last_block=self._last_block,
                sent=len(self._sent),
                failed=len(self._failed),
            )
        else:
            self._log_event("state_initialized", last_block=self._last_block)

        with self._lock:
            self._save()

    def _log_event(self, event: str, level: int = logging.INFO, **kwargs: Any) -> None:
        self.log.log(level, dumps({"event": event, **kwargs}))

    @staticmethod
    def _records(raw: Any) -> Dict[str, TxRecord]:
        if not isinstance(raw, dict):
            return {}
        return {str(k): {"blockNumber": int(v["blockNumber"])} for k, v in raw.items()}

    # ========== Watermark ==========

    def get_last_block(self) -> int:
        with self._lock:
            return self._last_block

    def set_last_block(self, block_number: int) -> None:
        """Advance the watermark. Raises InvalidArgument on regression."""
        block_number = int(block_number)
        with self._lock:
            if block_number < self._last_block:
                raise InvalidArgument(
                    f"last block cannot move backwards: {block_number} < {self._last_block}"
                )
            if block_number == self._last_block:
                return
            self._last_block = block_number
            self._save()

    # ========== Outcomes ==========

    def add_sent(self, tx_id: str, block_number: int) -> None:
        with self._lock:
            self._sent[tx_id] = {"blockNumber": int(block_number)}
            self._save()

    def add_failed(self, tx_id: str, block_number: int) -> None:
        with self._lock:
            self._failed[tx_id] = {"blockNumber": int(block_number)}
            self._save()

    def get_sent(self) -> Mapping[str, TxRecord]:
        """Read-only view of confirmed pongs."""
        return MappingProxyType(self._sent)

    def get_failed(self) -> Mapping[str, TxRecord]:
        """Read-only view of permanently failed pings."""
        return MappingProxyType(self._failed)

    def is_sent(self, tx_id: str) -> bool:
        return tx_id in self._sent

    def clear_before(self, block_number: int) -> int:
        """
        Drop sent records strictly below ``block_number``.

        Safe because reconciliation never re-queries below the watermark.

        Returns:
            Number of records removed
        """
        with self._lock:
            stale = [k for k, v in self._sent.items() if v["blockNumber"] < block_number]
            for k in stale:
                del self._sent[k]
            if stale:
                self._save()
        if stale:
            self._log_event("sent_pruned", before=block_number, removed=len(stale), level=logging.DEBUG)
        return len(stale)

    # ========== Persistence ==========

    def snapshot(self) -> Dict[str, Any]:
        """External representation written to disk."""
        return {
            "lastBlock": self._last_block,
            "sentTransactions": {k: dict(v) for k, v in self._sent.items()},
            "failedTransactions": {k: dict(v) for k, v in self._failed.items()},
        }

    def _read(self) -> Optional[Dict[str, Any]]:
        if not self.path.exists():
            return None
        try:
            data = loads(self.path.read_bytes())
        except (OSError, ValueError) as exc:
            raise StorageReadFailure(f"cannot read state file {self.path}: {exc}") from exc
        if not isinstance(data, dict):
            raise StorageReadFailure(f"state file {self.path} does not hold an object")
        return data

    def _save(self) -> None:
        # caller holds self._lock
        payload = dumps_bytes(self.snapshot(), indent=True)
        try:
            with open(self.tmp, "wb") as fh:
                fh.write(payload)
                fh.flush()
                os.fsync(fh.fileno())
            os.replace(self.tmp, self.path)
        except OSError as exc:
            self._log_event("state_save_error", level=logging.CRITICAL, path=str(self.path), err=str(exc))
            raise StorageWriteFailure(f"cannot write state file {self.path}: {exc}") from exc
