"""
Sync Merge Service

Reconciles one tenant's stored rows with a batch pushed by a client.

Conflict policy is row-granular last-write-wins:
    - incoming row with no stored counterpart        -> stored
    - incoming.updated_at >  stored.updated_at       -> replaces the whole row
    - incoming.updated_at <= stored.updated_at       -> discarded (ties keep the stored row)

Tombstones (``deleted_at`` set) go through the same comparison, so a
deletion only sticks if it is newer than the live row it hides, and a row
flagged deleted is never resurrected by an older live copy. Replaying a
batch that has already been merged changes nothing.

Usage:
    result = merge_and_sync(handle, payload.rows_by_table())
    # result.data -> live rows per table, result.sync_timestamp -> epoch ms
"""
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from core.database import TenantHandle
from core.exceptions import StorageError
from models import SYNC_TABLES, SyncMeta

logger = logging.getLogger(__name__)

LAST_SYNC_KEY = "last_sync"


def now_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class MergeResult:
    """Outcome of one merge (or read-back) for a tenant."""
    data: Dict[str, List[Dict[str, Any]]]
    sync_timestamp: int
    applied: int = 0
    discarded: int = 0
    per_table: Dict[str, Tuple[int, int]] = field(default_factory=dict)

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = dict(self.data)
        payload["syncTimestamp"] = self.sync_timestamp
        return payload


def merge_table(session: Session, model, rows: Iterable[Dict[str, Any]]) -> Tuple[int, int]:
    """Apply last-write-wins to every incoming row of one table.

    Returns (applied, discarded).
    """
    columns = [column.name for column in model.__table__.columns]
    applied = 0
    discarded = 0

    for row in rows:
        existing = session.get(model, row["id"])
        if existing is None or row["updated_at"] > existing.updated_at:
            # Full-row upsert: columns absent from the incoming row become NULL
            session.merge(model(**{name: row.get(name) for name in columns}))
            # Later duplicates of this id in the batch must compare against it
            session.flush()
            applied += 1
        else:
            discarded += 1

    return applied, discarded


def read_live_rows(session: Session) -> Dict[str, List[Dict[str, Any]]]:
    """All rows with ``deleted_at IS NULL``, JSON columns already decoded."""
    data: Dict[str, List[Dict[str, Any]]] = {}
    for table, model in SYNC_TABLES.items():
        rows = (
            session.query(model)
            .filter(model.deleted_at.is_(None))
            .order_by(model.id)
            .all()
        )
        data[table] = [row.to_dict() for row in rows]
    return data


def get_last_sync_timestamp(session: Session) -> int:
    meta = session.get(SyncMeta, LAST_SYNC_KEY)
    return int(meta.value) if meta and meta.value else 0


def merge_and_sync(
    handle: TenantHandle,
    rows_by_table: Dict[str, List[Dict[str, Any]]],
    sync_timestamp: Optional[int] = None,
) -> MergeResult:
    """Merge a pushed batch into a tenant and return its authoritative state.

    The whole call runs under the tenant's lock and inside one transaction,
    so concurrent pushes for the same key cannot interleave their
    read-modify-write steps and a failure leaves no partial merge behind.
    """
    unknown = set(rows_by_table) - set(SYNC_TABLES)
    if unknown:
        logger.warning(f"Ignoring unknown sync tables for {handle.sync_key}: {sorted(unknown)}")

    with handle.lock, handle.session() as session:
        try:
            per_table: Dict[str, Tuple[int, int]] = {}
            for table, model in SYNC_TABLES.items():
                per_table[table] = merge_table(session, model, rows_by_table.get(table) or [])

            timestamp = sync_timestamp if sync_timestamp is not None else now_ms()
            session.merge(SyncMeta(key=LAST_SYNC_KEY, value=str(timestamp)))
            session.commit()

            data = read_live_rows(session)
        except SQLAlchemyError as e:
            session.rollback()
            logger.error(f"Merge failed for tenant {handle.sync_key}: {e}")
            raise StorageError("Failed to sync data") from e

    applied = sum(a for a, _ in per_table.values())
    discarded = sum(d for _, d in per_table.values())
    logger.info(
        f"Merged sync batch for {handle.sync_key}: {applied} applied, {discarded} discarded",
        extra={"extra_fields": {"sync_key": handle.sync_key, "applied": applied, "discarded": discarded}},
    )
    return MergeResult(
        data=data,
        sync_timestamp=timestamp,
        applied=applied,
        discarded=discarded,
        per_table=per_table,
    )


def read_back(handle: TenantHandle) -> MergeResult:
    """Live state plus the last recorded sync time, without merging anything."""
    with handle.session() as session:
        try:
            return MergeResult(
                data=read_live_rows(session),
                sync_timestamp=get_last_sync_timestamp(session),
            )
        except SQLAlchemyError as e:
            logger.error(f"Read-back failed for tenant {handle.sync_key}: {e}")
            raise StorageError("Failed to fetch sync data") from e
