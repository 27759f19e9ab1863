"""
SQLite database for document records and share links.

This module owns the connection settings and schema. The registry and the
share ledger build their queries on top of ``Database.transaction``.
"""

import logging
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

from .errors import IntegrityError, StorageFailure

logger = logging.getLogger(__name__)

# Default database path
DEFAULT_DB_PATH = Path("data/pdf_share.db")

SCHEMA = """
CREATE TABLE IF NOT EXISTS documents (
    id TEXT PRIMARY KEY,
    storage_pointer TEXT NOT NULL UNIQUE,
    original_name TEXT NOT NULL,
    file_size INTEGER NOT NULL,
    page_count INTEGER NOT NULL CHECK (page_count > 0),
    title TEXT NOT NULL DEFAULT '',
    author TEXT NOT NULL DEFAULT '',
    subject TEXT NOT NULL DEFAULT '',
    creator TEXT NOT NULL DEFAULT '',
    producer TEXT NOT NULL DEFAULT '',
    creation_date TEXT NOT NULL,
    modification_date TEXT NOT NULL,
    is_encrypted INTEGER NOT NULL DEFAULT 0,
    provenance TEXT NOT NULL,
    source_ids TEXT NOT NULL DEFAULT '[]',
    owner_id TEXT,
    is_deleted INTEGER NOT NULL DEFAULT 0,
    deleted_at TEXT,
    created_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_documents_owner ON documents(owner_id, created_at DESC);

CREATE TRIGGER IF NOT EXISTS documents_page_count_immutable
BEFORE UPDATE OF page_count ON documents
WHEN NEW.page_count IS NOT OLD.page_count
BEGIN
    SELECT RAISE(ABORT, 'page_count is immutable');
END;

CREATE TABLE IF NOT EXISTS share_links (
    token TEXT PRIMARY KEY,
    document_id TEXT NOT NULL REFERENCES documents(id) ON DELETE CASCADE,
    owner_id TEXT,
    created_at TEXT NOT NULL,
    expires_at TEXT,
    max_downloads INTEGER CHECK (max_downloads IS NULL OR max_downloads > 0),
    download_count INTEGER NOT NULL DEFAULT 0 CHECK (download_count >= 0),
    is_active INTEGER NOT NULL DEFAULT 1,
    deactivated_at TEXT
);

CREATE INDEX IF NOT EXISTS idx_share_links_owner ON share_links(owner_id, created_at DESC);
CREATE INDEX IF NOT EXISTS idx_share_links_document ON share_links(document_id);

CREATE TRIGGER IF NOT EXISTS share_links_deactivation_is_final
BEFORE UPDATE OF is_active ON share_links
WHEN OLD.is_active = 0 AND NEW.is_active = 1
BEGIN
    SELECT RAISE(ABORT, 'share link deactivation is final');
END;
"""


def _ensure_db_dir(db_path: Path) -> None:
    """Ensure the database directory exists."""
    db_path.parent.mkdir(parents=True, exist_ok=True)


class Database:
    """
    SQLite database shared by the registry and the share ledger.

    Thread-safe: every transaction opens its own connection and SQLite
    serializes writers; WAL mode lets readers proceed alongside one writer.
    """

    def __init__(self, db_path: Path = DEFAULT_DB_PATH):
        self.db_path = Path(db_path)
        _ensure_db_dir(self.db_path)
        self._init_db()

    def _connect(self) -> sqlite3.Connection:
        # isolation_level=None: transactions are opened explicitly below.
        conn = sqlite3.connect(str(self.db_path), timeout=30.0, isolation_level=None)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys=ON")
        return conn

    def _init_db(self) -> None:
        """Initialize database schema."""
        conn = self._connect()
        try:
            conn.execute("PRAGMA journal_mode=WAL")
            conn.executescript(SCHEMA)
        finally:
            conn.close()

    @contextmanager
    def transaction(self, immediate: bool = False) -> Iterator[sqlite3.Connection]:
        """
        Run a block inside one transaction.

        Args:
            immediate: Take the write lock up front (``BEGIN IMMEDIATE``) so a
                read-check-write sequence cannot interleave with another writer

        Raises:
            IntegrityError: If a constraint or trigger rejects the write
                (immutable page count, final deactivation, duplicate pointer)
            StorageFailure: If SQLite itself fails (locked past the timeout,
                disk errors)
        """
        conn = self._connect()
        try:
            conn.execute("BEGIN IMMEDIATE" if immediate else "BEGIN")
            yield conn
            conn.execute("COMMIT")
        except sqlite3.IntegrityError as exc:
            if conn.in_transaction:
                conn.rollback()
            logger.error(f"Database constraint violated: {exc}")
            raise IntegrityError("document catalog rejected an inconsistent write") from exc
        except sqlite3.Error as exc:
            if conn.in_transaction:
                conn.rollback()
            logger.error(f"Database transaction failed: {exc}")
            raise StorageFailure("document catalog is unavailable") from exc
        except BaseException:
            if conn.in_transaction:
                conn.rollback()
            raise
        finally:
            conn.close()
