"""
Embedded per-device record store.

Each entity table holds JSON documents keyed by id on a local SQLite file
(or an in-memory database). Writers can register hooks that run inside the
writing transaction:

    creating(table, key, record, txn)   before a new record is inserted
    updating(table, key, record, txn)   before an existing record is overwritten
    deleting(table, key, record, txn)   before a record is removed; ``record``
                                        is the pre-deletion snapshot

``txn.conn`` is the open connection, so a hook's own writes commit or roll
back together with the mutation, and ``txn.on_complete(fn)`` defers work
until after the commit. Clearing a table fires no hooks.
"""
import logging
from contextlib import contextmanager
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional, Set, Tuple, Union

from pydantic import BaseModel
from sqlalchemy import (
    BigInteger,
    Column,
    Integer,
    JSON,
    MetaData,
    Table,
    Text,
    create_engine,
    delete,
    func,
    insert,
    select,
    update,
)
from sqlalchemy.engine import Connection

from sync_client.models import TABLES

logger = logging.getLogger(__name__)

HOOK_EVENTS = ("creating", "updating", "deleting")

Hook = Callable[[str, str, Dict[str, Any], "StoreTransaction"], None]
Record = Union[Dict[str, Any], BaseModel]

metadata = MetaData()

RECORD_TABLES: Dict[str, Table] = {
    name: Table(
        name,
        metadata,
        Column("id", Text, primary_key=True),
        Column("data", JSON, nullable=False),
    )
    for name in TABLES
}

pending_deletions = Table(
    "pending_deletions",
    metadata,
    Column("seq", Integer, primary_key=True, autoincrement=True),
    Column("table_name", Text, nullable=False),
    Column("record", JSON, nullable=False),
    Column("deleted_at", BigInteger, nullable=False),
)

device_meta = Table(
    "device_meta",
    metadata,
    Column("key", Text, primary_key=True),
    Column("value", Text, nullable=True),
)


class StoreTransaction:
    """Handle passed to hooks for the transaction they run in."""

    def __init__(self, conn: Connection):
        self.conn = conn
        self._on_complete: List[Callable[[], None]] = []

    def on_complete(self, callback: Callable[[], None]) -> None:
        self._on_complete.append(callback)


def _as_dict(record: Record) -> Dict[str, Any]:
    if isinstance(record, BaseModel):
        return record.model_dump(mode="json")
    return dict(record)


class LocalStore:
    """Keyed CRUD over the local entity tables, with mutation hooks."""

    def __init__(self, url: str = "sqlite://"):
        self.url = url
        self.engine = create_engine(url)
        metadata.create_all(self.engine)
        self._hooks: Dict[str, List[Hook]] = {event: [] for event in HOOK_EVENTS}
        self._current: Optional[StoreTransaction] = None

    # ------------------------------------------------------------------
    # Hooks and transactions
    # ------------------------------------------------------------------

    def hook(self, event: str, callback: Hook) -> Callable[[], None]:
        """Register a mutation hook; returns a function that removes it."""
        if event not in self._hooks:
            raise ValueError(f"Unknown hook event: {event}")
        self._hooks[event].append(callback)
        return lambda: self._hooks[event].remove(callback)

    def _fire(self, event: str, table: str, key: str, record: Dict[str, Any], txn: StoreTransaction) -> None:
        for callback in list(self._hooks[event]):
            callback(table, key, record, txn)

    @contextmanager
    def transaction(self) -> Iterator[StoreTransaction]:
        """One SQLite transaction; nested calls join the outer one."""
        if self._current is not None:
            yield self._current
            return

        with self.engine.begin() as conn:
            txn = StoreTransaction(conn)
            self._current = txn
            try:
                yield txn
            finally:
                self._current = None

        for callback in txn._on_complete:
            callback()

    def _table(self, name: str) -> Table:
        try:
            return RECORD_TABLES[name]
        except KeyError:
            raise ValueError(f"Unknown table: {name}") from None

    # ------------------------------------------------------------------
    # CRUD
    # ------------------------------------------------------------------

    def get(self, table: str, key: str) -> Optional[Dict[str, Any]]:
        tbl = self._table(table)
        with self.transaction() as txn:
            row = txn.conn.execute(select(tbl.c.data).where(tbl.c.id == key)).first()
        return dict(row.data) if row else None

    def list(self, table: str) -> List[Dict[str, Any]]:
        tbl = self._table(table)
        with self.transaction() as txn:
            rows = txn.conn.execute(select(tbl.c.data).order_by(tbl.c.id)).all()
        return [dict(row.data) for row in rows]

    def count(self, table: str) -> int:
        tbl = self._table(table)
        with self.transaction() as txn:
            return txn.conn.execute(select(func.count()).select_from(tbl)).scalar_one()

    def add(self, table: str, record: Record) -> str:
        """Insert a new record; fails if the id is already present."""
        data = _as_dict(record)
        key = data["id"]
        tbl = self._table(table)
        with self.transaction() as txn:
            if self._exists(txn.conn, tbl, key):
                raise ValueError(f"{table} record already exists: {key}")
            self._fire("creating", table, key, data, txn)
            txn.conn.execute(insert(tbl).values(id=key, data=data))
        return key

    def put(self, table: str, record: Record) -> str:
        """Insert or overwrite a record."""
        data = _as_dict(record)
        key = data["id"]
        tbl = self._table(table)
        with self.transaction() as txn:
            if self._exists(txn.conn, tbl, key):
                self._fire("updating", table, key, data, txn)
                txn.conn.execute(update(tbl).where(tbl.c.id == key).values(data=data))
            else:
                self._fire("creating", table, key, data, txn)
                txn.conn.execute(insert(tbl).values(id=key, data=data))
        return key

    def update(self, table: str, key: str, changes: Dict[str, Any]) -> bool:
        """Apply field changes to an existing record. Returns False if it is missing."""
        tbl = self._table(table)
        with self.transaction() as txn:
            row = txn.conn.execute(select(tbl.c.data).where(tbl.c.id == key)).first()
            if row is None:
                return False
            data = {**row.data, **changes, "id": key}
            self._fire("updating", table, key, data, txn)
            txn.conn.execute(update(tbl).where(tbl.c.id == key).values(data=data))
        return True

    def delete(self, table: str, key: str) -> bool:
        """Remove a record. Returns False if it did not exist."""
        tbl = self._table(table)
        with self.transaction() as txn:
            row = txn.conn.execute(select(tbl.c.data).where(tbl.c.id == key)).first()
            if row is None:
                return False
            self._fire("deleting", table, key, dict(row.data), txn)
            txn.conn.execute(delete(tbl).where(tbl.c.id == key))
        return True

    def bulk_add(self, table: str, records: Iterable[Record]) -> int:
        count = 0
        with self.transaction():
            for record in records:
                self.add(table, record)
                count += 1
        return count

    def clear(self, table: str) -> None:
        tbl = self._table(table)
        with self.transaction() as txn:
            txn.conn.execute(delete(tbl))

    def replace_all(
        self,
        rows_by_table: Dict[str, List[Dict[str, Any]]],
        preserve: Optional[Set[Tuple[str, str]]] = None,
    ) -> None:
        """Swap the given tables' contents for ``rows_by_table`` in one transaction.

        ``(table, id)`` pairs in ``preserve`` keep whatever the device has
        (including being absent); incoming rows for them are skipped.
        """
        preserve = preserve or set()
        with self.transaction() as txn:
            for table, records in rows_by_table.items():
                tbl = self._table(table)
                kept = {key for name, key in preserve if name == table}
                txn.conn.execute(delete(tbl).where(tbl.c.id.not_in(kept)))
                for record in records:
                    data = _as_dict(record)
                    if data["id"] in kept:
                        continue
                    self._fire("creating", table, data["id"], data, txn)
                    txn.conn.execute(insert(tbl).values(id=data["id"], data=data))

    @staticmethod
    def _exists(conn: Connection, tbl: Table, key: str) -> bool:
        return conn.execute(select(tbl.c.id).where(tbl.c.id == key)).first() is not None

    # ------------------------------------------------------------------
    # Device metadata (sync key, last sync time)
    # ------------------------------------------------------------------

    def get_meta(self, key: str) -> Optional[str]:
        with self.transaction() as txn:
            return txn.conn.execute(select(device_meta.c.value).where(device_meta.c.key == key)).scalar()

    def set_meta(self, key: str, value: str) -> None:
        with self.transaction() as txn:
            txn.conn.execute(delete(device_meta).where(device_meta.c.key == key))
            txn.conn.execute(insert(device_meta).values(key=key, value=value))

    def delete_meta(self, key: str) -> None:
        with self.transaction() as txn:
            txn.conn.execute(delete(device_meta).where(device_meta.c.key == key))

    def close(self) -> None:
        self.engine.dispose()
