"""
Durable queue of local deletions awaiting a successful sync round.

Entries are appended when a record is deleted and are only removed in bulk
once a round that carried them has committed locally. Re-sending an entry
the server has already merged is harmless: its ``deleted_at`` no longer
beats the stored tombstone.
"""
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from sqlalchemy import delete, func, insert, select
from sqlalchemy.engine import Connection

from sync_client.local_store import LocalStore, pending_deletions


@dataclass(frozen=True)
class PendingDeletion:
    seq: int
    table: str
    record: Dict[str, Any]
    deleted_at: int


class TombstoneQueue:
    """Append-only tombstone log stored next to the records it describes."""

    def __init__(self, store: LocalStore):
        self.store = store

    def add(self, table: str, record: Dict[str, Any], deleted_at: int, conn: Optional[Connection] = None) -> None:
        """Queue a deletion. Pass the deleting transaction's ``conn`` to make it atomic with the delete."""
        stmt = insert(pending_deletions).values(table_name=table, record=record, deleted_at=deleted_at)
        if conn is not None:
            conn.execute(stmt)
            return
        with self.store.transaction() as txn:
            txn.conn.execute(stmt)

    def all(self) -> List[PendingDeletion]:
        with self.store.transaction() as txn:
            rows = txn.conn.execute(select(pending_deletions).order_by(pending_deletions.c.seq)).all()
        return [
            PendingDeletion(seq=row.seq, table=row.table_name, record=dict(row.record), deleted_at=row.deleted_at)
            for row in rows
        ]

    def by_table(self, table: str) -> List[PendingDeletion]:
        return [entry for entry in self.all() if entry.table == table]

    def count(self) -> int:
        with self.store.transaction() as txn:
            return txn.conn.execute(select(func.count()).select_from(pending_deletions)).scalar_one()

    def clear(self, up_to_seq: Optional[int] = None, conn: Optional[Connection] = None) -> int:
        """Drop entries with ``seq <= up_to_seq`` (everything if None). Returns how many."""
        stmt = delete(pending_deletions)
        if up_to_seq is not None:
            stmt = stmt.where(pending_deletions.c.seq <= up_to_seq)
        if conn is not None:
            return conn.execute(stmt).rowcount
        with self.store.transaction() as txn:
            return txn.conn.execute(stmt).rowcount
