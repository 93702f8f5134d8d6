"""
Tenant storage management.

Every sync key owns one isolated SQLite file under ``DATA_DIR``. The
:class:`TenantRegistry` validates keys, lazily opens and schema-initializes
those files, caches the open engines and closes them on shutdown.

The registry is an ordinary object (the app keeps one on ``app.state``), so
tests can build as many isolated registries as they like.
"""
import logging
import os
import re
import threading
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

from fastapi import Request
from sqlalchemy import create_engine, event, inspect, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker, Session

from core.exceptions import ValidationError

logger = logging.getLogger(__name__)

Base = declarative_base()

SYNC_KEY_PATTERN = re.compile(r"[a-f0-9-]{36}")


def validate_sync_key(sync_key: str) -> str:
    """Reject anything that is not a 36-char lowercase hex-with-dashes token.

    Runs before any path is built from the key, so a key can never name a
    file outside ``DATA_DIR``.
    """
    if not isinstance(sync_key, str) or not SYNC_KEY_PATTERN.fullmatch(sync_key):
        raise ValidationError("Invalid sync key format", field="sync_key")
    return sync_key


def new_sync_key() -> str:
    return str(uuid.uuid4())


@dataclass
class TenantHandle:
    """An open storage unit for one sync key."""

    sync_key: str
    path: Path
    engine: Engine
    session_factory: sessionmaker
    # Serializes merge calls for this tenant (read-modify-write per row)
    lock: threading.RLock = field(default_factory=threading.RLock)

    def session(self) -> Session:
        return self.session_factory()


def _apply_additive_migrations(engine: Engine) -> List[str]:
    """Add any model column missing from an existing tenant file.

    Only ever adds nullable columns, so running it on every open is safe and
    lets files written by older releases catch up. Returns the columns added.
    """
    inspector = inspect(engine)
    added: List[str] = []
    with engine.begin() as conn:
        for table in Base.metadata.sorted_tables:
            existing = {col["name"] for col in inspector.get_columns(table.name)}
            for column in table.columns:
                if column.name in existing:
                    continue
                col_type = column.type.compile(dialect=engine.dialect)
                conn.execute(text(f"ALTER TABLE {table.name} ADD COLUMN {column.name} {col_type}"))
                added.append(f"{table.name}.{column.name}")
    return added


class TenantRegistry:
    """Maps sync keys to schema-initialized SQLite storage units."""

    def __init__(self, data_dir: str, journal_mode: str = "WAL"):
        self.data_dir = Path(data_dir)
        self.journal_mode = journal_mode
        self._handles: Dict[str, TenantHandle] = {}
        self._lock = threading.Lock()

    def path_for(self, sync_key: str) -> Path:
        validate_sync_key(sync_key)
        return self.data_dir / f"{sync_key}.db"

    def exists(self, sync_key: str) -> bool:
        """Check whether a tenant was ever created. Never creates storage."""
        return self.path_for(sync_key).exists()

    def open(self, sync_key: str) -> TenantHandle:
        """Return the cached handle for a tenant, opening (and creating) it if needed."""
        path = self.path_for(sync_key)

        with self._lock:
            handle = self._handles.get(sync_key)
            if handle is not None:
                return handle

            self.data_dir.mkdir(parents=True, exist_ok=True)
            engine = create_engine(
                f"sqlite:///{path}",
                connect_args={"check_same_thread": False},
            )
            self._install_pragmas(engine)

            # Registers every tenant table on Base.metadata
            import models  # noqa: F401

            Base.metadata.create_all(engine)
            added = _apply_additive_migrations(engine)
            if added:
                logger.info(f"Upgraded tenant schema for {sync_key}: added {', '.join(added)}")

            handle = TenantHandle(
                sync_key=sync_key,
                path=path,
                engine=engine,
                session_factory=sessionmaker(
                    bind=engine,
                    autoflush=True,
                    expire_on_commit=False,
                ),
            )
            self._handles[sync_key] = handle
            logger.debug(f"Opened tenant storage {path}")
            return handle

    def create(self, sync_key: Optional[str] = None) -> str:
        """Initialize storage for a new tenant and return its key."""
        from models import SyncMeta
        from services.sync_merge import now_ms

        if sync_key is None:
            sync_key = new_sync_key()
        handle = self.open(sync_key)
        with handle.lock, handle.session() as session:
            session.merge(SyncMeta(key="created_at", value=str(now_ms())))
            session.commit()
        logger.info(f"Created tenant {sync_key}")
        return sync_key

    def close(self, sync_key: str) -> None:
        with self._lock:
            handle = self._handles.pop(sync_key, None)
        if handle is not None:
            handle.engine.dispose()

    def close_all(self) -> None:
        with self._lock:
            handles = list(self._handles.values())
            self._handles.clear()
        for handle in handles:
            handle.engine.dispose()
        if handles:
            logger.info(f"Closed {len(handles)} tenant storage unit(s)")

    def open_count(self) -> int:
        return len(self._handles)

    def check_storage(self) -> bool:
        """
        Check that the data directory is usable.

        Returns:
            True if tenant files can be created, False otherwise
        """
        try:
            self.data_dir.mkdir(parents=True, exist_ok=True)
            return os.access(self.data_dir, os.W_OK)
        except OSError as e:
            logger.error(f"Tenant storage check failed: {e}")
            return False

    def _install_pragmas(self, engine: Engine) -> None:
        journal_mode = self.journal_mode

        @event.listens_for(engine, "connect")
        def set_sqlite_pragma(dbapi_conn, connection_record):
            """Set connection-level settings."""
            cursor = dbapi_conn.cursor()
            cursor.execute(f"PRAGMA journal_mode={journal_mode}")
            cursor.execute("PRAGMA busy_timeout=5000")
            cursor.close()


def get_registry(request: Request) -> TenantRegistry:
    """Dependency for FastAPI to get the application's tenant registry."""
    return request.app.state.tenant_registry
