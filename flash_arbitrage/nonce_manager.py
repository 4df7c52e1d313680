"""
Durable nonce journal backed by aiosqlite.

Every nonce the engine assigns gets a row before the transaction is
broadcast, so a restart can tell which nonces are in flight, which landed and
which were dropped, and never hands out a nonce that may still be mined.
"""

import time
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Set

import aiosqlite

from .exceptions import NonceError
from .utils import get_logger

logger = get_logger(__name__)


class NonceStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    DROPPED = "dropped"
    REPLACED = "replaced"
    REJECTED = "rejected"


class EntryKind(str, Enum):
    TRADE = "trade"
    REPLACEMENT = "replacement"
    CANCEL = "cancel"


class NonceJournal:
    """
    Args:
        db_path: SQLite file
        account: Sending address; rows are scoped to it
        pending_timeout_sec: Age after which an unmined pending entry is dropped on sync
    """

    def __init__(self, db_path: str, account: str, pending_timeout_sec: float = 300.0):
        self.db_path = db_path
        self.account = account.lower()
        self.pending_timeout_sec = pending_timeout_sec

        self._conn: Optional[aiosqlite.Connection] = None
        self._synced = False
        self._next_nonce: Optional[int] = None
        self._unresolved: Set[int] = set()

    async def initialize(self) -> None:
        if self._conn is not None:
            return
        Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        self._conn = await aiosqlite.connect(self.db_path)
        self._conn.row_factory = aiosqlite.Row
        await self._conn.execute("PRAGMA journal_mode=WAL")
        # Rows must survive a crash right after broadcast
        await self._conn.execute("PRAGMA synchronous=FULL")
        await self._conn.execute(
            """
            CREATE TABLE IF NOT EXISTS nonce_journal (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                account TEXT NOT NULL,
                nonce INTEGER NOT NULL,
                tx_hash TEXT NOT NULL,
                kind TEXT NOT NULL,
                status TEXT NOT NULL,
                submitted_at REAL NOT NULL,
                resolved_at REAL,
                reason TEXT
            )
        """
        )
        await self._conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_nonce_account ON nonce_journal(account, nonce)"
        )
        await self._conn.commit()
        logger.info(f"Nonce journal opened at {self.db_path}")

    async def close(self) -> None:
        if self._conn is not None:
            await self._conn.close()
            self._conn = None

    def _require_conn(self) -> aiosqlite.Connection:
        if self._conn is None:
            raise NonceError("Nonce journal not initialized")
        return self._conn

    # ------------------------------------------------------------------
    # Startup reconciliation
    # ------------------------------------------------------------------

    async def sync(self, chain_nonce: int, now: Optional[float] = None) -> int:
        """
        Reconcile pending rows with the chain's confirmed nonce.

        Args:
            chain_nonce: Transaction count at the `latest` block
            now: Clock override for tests

        Returns:
            The next nonce to use

        Raises:
            NonceError: If young pending entries still block submission
        """
        conn = self._require_conn()
        now = time.time() if now is None else now

        async with conn.execute(
            "SELECT id, nonce, kind, submitted_at FROM nonce_journal "
            "WHERE account = ? AND status = ? ORDER BY nonce, id",
            (self.account, NonceStatus.PENDING.value),
        ) as cursor:
            pending = [dict(row) for row in await cursor.fetchall()]

        cancels = {row["nonce"] for row in pending if row["kind"] == EntryKind.CANCEL.value}
        blocking: Set[int] = set()
        for row in pending:
            if row["nonce"] < chain_nonce:
                if row["nonce"] in cancels and row["kind"] != EntryKind.CANCEL.value:
                    status = NonceStatus.REPLACED
                else:
                    status = NonceStatus.CONFIRMED
                await self._set_status(row["id"], status, "resolved on sync", now)
            elif now - row["submitted_at"] > self.pending_timeout_sec:
                await self._set_status(row["id"], NonceStatus.DROPPED, "pending timeout", now)
                logger.warning(f"Nonce {row['nonce']} dropped after pending timeout")
            else:
                blocking.add(row["nonce"])
        await conn.commit()

        # A lagging node may report a count below nonces we saw mined
        async with conn.execute(
            "SELECT MAX(nonce) FROM nonce_journal WHERE account = ? AND status = ?",
            (self.account, NonceStatus.CONFIRMED.value),
        ) as cursor:
            (max_confirmed,) = await cursor.fetchone()
        floor = chain_nonce if max_confirmed is None else max(chain_nonce, max_confirmed + 1)

        self._unresolved = blocking
        self._next_nonce = max([floor] + [n + 1 for n in blocking])
        self._synced = True

        if blocking:
            logger.warning(f"Nonce journal: {len(blocking)} pending entries block submission: {sorted(blocking)}")
            raise NonceError(
                "Pending transactions unresolved",
                {"pending_nonces": sorted(blocking), "chain_nonce": chain_nonce},
            )
        logger.info(f"Nonce journal synced: next nonce {self._next_nonce}")
        return self._next_nonce

    # ------------------------------------------------------------------
    # Assignment
    # ------------------------------------------------------------------

    @property
    def synced(self) -> bool:
        return self._synced

    async def next_nonce(self) -> int:
        """
        Next nonce to assign; mark_pending() consumes it.

        Raises:
            NonceError: If not synced or a pending entry is unresolved
        """
        if not self._synced or self._next_nonce is None:
            raise NonceError("Nonce journal not synced with chain")
        if self._unresolved:
            raise NonceError(
                "Pending nonce unresolved", {"pending_nonces": sorted(self._unresolved)}
            )
        return self._next_nonce

    async def _insert(self, nonce: int, tx_hash: str, kind: EntryKind) -> None:
        conn = self._require_conn()
        await conn.execute(
            "INSERT INTO nonce_journal (account, nonce, tx_hash, kind, status, submitted_at) "
            "VALUES (?, ?, ?, ?, ?, ?)",
            (self.account, nonce, tx_hash, kind.value, NonceStatus.PENDING.value, time.time()),
        )

    async def _set_status(
        self, row_id: int, status: NonceStatus, reason: Optional[str], now: Optional[float] = None
    ) -> None:
        conn = self._require_conn()
        await conn.execute(
            "UPDATE nonce_journal SET status = ?, resolved_at = ?, reason = ? WHERE id = ?",
            (status.value, time.time() if now is None else now, reason, row_id),
        )

    async def _resolve(
        self,
        nonce: int,
        status: NonceStatus,
        tx_hash: Optional[str] = None,
        reason: Optional[str] = None,
    ) -> int:
        """Resolve pending rows at a nonce; with tx_hash only that row."""
        conn = self._require_conn()
        query = (
            "UPDATE nonce_journal SET status = ?, resolved_at = ?, reason = ? "
            "WHERE account = ? AND nonce = ? AND status = ?"
        )
        params: List[Any] = [
            status.value,
            time.time(),
            reason,
            self.account,
            nonce,
            NonceStatus.PENDING.value,
        ]
        if tx_hash is not None:
            query += " AND tx_hash = ?"
            params.append(tx_hash)
        cursor = await conn.execute(query, params)
        return cursor.rowcount

    async def mark_pending(self, nonce: int, tx_hash: str, kind: EntryKind = EntryKind.TRADE) -> None:
        """Journal a signed transaction; the commit completes before this returns."""
        await self._insert(nonce, tx_hash, kind)
        await self._require_conn().commit()
        self._unresolved.add(nonce)
        if self._next_nonce is None or nonce >= self._next_nonce:
            self._next_nonce = nonce + 1

    async def mark_confirmed(self, nonce: int, tx_hash: str) -> None:
        """The given hash was mined; every other pending row at the nonce was replaced."""
        await self._resolve(nonce, NonceStatus.CONFIRMED, tx_hash=tx_hash)
        await self._resolve(nonce, NonceStatus.REPLACED, reason=f"superseded by {tx_hash}")
        await self._require_conn().commit()
        self._unresolved.discard(nonce)

    async def mark_replaced(
        self, nonce: int, new_hash: str, kind: EntryKind = EntryKind.REPLACEMENT
    ) -> None:
        """
        Journal a same-nonce replacement.

        Earlier rows stay pending: either transaction may still be mined, and
        mark_confirmed() resolves whichever one lands.
        """
        await self._insert(nonce, new_hash, kind)
        await self._require_conn().commit()
        self._unresolved.add(nonce)

    async def _pending_count(self, nonce: int) -> int:
        async with self._require_conn().execute(
            "SELECT COUNT(*) FROM nonce_journal WHERE account = ? AND nonce = ? AND status = ?",
            (self.account, nonce, NonceStatus.PENDING.value),
        ) as cursor:
            (count,) = await cursor.fetchone()
        return count

    async def _release(self, nonce: int) -> None:
        """Free a nonce for reuse once no row at it is pending."""
        if await self._pending_count(nonce):
            return
        self._unresolved.discard(nonce)
        if self._next_nonce is None or nonce < self._next_nonce:
            self._next_nonce = nonce

    async def mark_dropped(self, nonce: int, reason: str = "dropped") -> None:
        """Nothing at this nonce was mined; the nonce is free for reuse."""
        await self._resolve(nonce, NonceStatus.DROPPED, reason=reason)
        await self._require_conn().commit()
        await self._release(nonce)

    async def mark_rejected(self, nonce: int, tx_hash: str, reason: str) -> None:
        """The node refused this broadcast; other hashes at the nonce stay pending."""
        await self._resolve(nonce, NonceStatus.REJECTED, tx_hash=tx_hash, reason=reason)
        await self._require_conn().commit()
        await self._release(nonce)

    async def entries(self, status: Optional[NonceStatus] = None) -> List[Dict[str, Any]]:
        conn = self._require_conn()
        query = "SELECT * FROM nonce_journal WHERE account = ?"
        params: List[Any] = [self.account]
        if status is not None:
            query += " AND status = ?"
            params.append(status.value)
        query += " ORDER BY nonce, id"
        async with conn.execute(query, params) as cursor:
            return [dict(row) for row in await cursor.fetchall()]
