"""
Change capture: turns local store mutations into sync work.

Creates and updates only schedule a round. Deletes first write a tombstone
holding the pre-deletion snapshot, inside the deleting transaction, so the
deletion can never be lost between the row disappearing and the next round.

While ``suppressed()`` is active (the orchestrator's bulk replace of local
tables) nothing is captured, which keeps a sync round from triggering the
next one.
"""
import logging
from contextlib import contextmanager
from typing import Any, Callable, Dict, Iterator, List, Optional, Set, Tuple

from sync_client.clock import MonotonicClock
from sync_client.local_store import LocalStore, StoreTransaction
from sync_client.tombstones import TombstoneQueue

logger = logging.getLogger(__name__)


class ChangeCapture:

    def __init__(
        self,
        store: LocalStore,
        tombstones: TombstoneQueue,
        on_change: Optional[Callable[[], None]] = None,
        clock: Optional[Callable[[], int]] = None,
    ):
        self.store = store
        self.tombstones = tombstones
        self.on_change = on_change
        self.clock = clock or MonotonicClock()
        self._suppress_depth = 0
        self._touched: Optional[Set[Tuple[str, str]]] = None
        self._unhooks: List[Callable[[], None]] = []

    def install(self) -> None:
        if self._unhooks:
            return
        self._unhooks = [
            self.store.hook("creating", self._on_write),
            self.store.hook("updating", self._on_write),
            self.store.hook("deleting", self._on_delete),
        ]

    def uninstall(self) -> None:
        for unhook in self._unhooks:
            unhook()
        self._unhooks = []

    @property
    def is_suppressed(self) -> bool:
        return self._suppress_depth > 0

    @contextmanager
    def suppressed(self) -> Iterator[None]:
        self._suppress_depth += 1
        try:
            yield
        finally:
            self._suppress_depth -= 1

    def begin_tracking(self) -> None:
        """Start recording which records change while a round is in flight."""
        self._touched = set()

    def touched(self) -> Set[Tuple[str, str]]:
        return set(self._touched or ())

    def end_tracking(self) -> Set[Tuple[str, str]]:
        touched = self.touched()
        self._touched = None
        return touched

    def _on_write(self, table: str, key: str, record: Dict[str, Any], txn: StoreTransaction) -> None:
        if self.is_suppressed:
            return
        self._track(table, key)
        txn.on_complete(self._notify)

    def _on_delete(self, table: str, key: str, record: Dict[str, Any], txn: StoreTransaction) -> None:
        if self.is_suppressed:
            return
        deleted_at = self.clock()
        self.tombstones.add(table, record, deleted_at, conn=txn.conn)
        logger.debug(f"Queued tombstone for {table}/{key} at {deleted_at}")
        self._track(table, key)
        txn.on_complete(self._notify)

    def _track(self, table: str, key: str) -> None:
        if self._touched is not None:
            self._touched.add((table, key))

    def _notify(self) -> None:
        if self.on_change is not None:
            self.on_change()
