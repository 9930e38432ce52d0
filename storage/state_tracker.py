"""
Incremental processing state, persisted in SQLite.

One row per album directory records the content signature seen when it
was last processed and the outcome. Writes are best-effort: a failing
write is logged and never stops the batch.
"""

import sqlite3
import time
import logging
from pathlib import Path
from typing import Optional

from filesystem.file_ops import FileSystemOperations
from models.schemas import ProcessedDirectoryRecord, ProcessingStatus
from utils.exceptions import FilesystemError, StoreError

logger = logging.getLogger(__name__)


class StateTracker:
    """Tracks which album directories were processed and in what state."""

    def __init__(self, db_file: Path, fs_ops: Optional[FileSystemOperations] = None):
        self.db_file = db_file
        self.db_file.parent.mkdir(parents=True, exist_ok=True)
        self.fs_ops = fs_ops or FileSystemOperations()
        self._init_database()

    def _init_database(self):
        try:
            with sqlite3.connect(str(self.db_file)) as conn:
                conn.execute("""
                    CREATE TABLE IF NOT EXISTS processed_directories (
                        directory_path TEXT PRIMARY KEY,
                        content_signature TEXT NOT NULL,
                        status TEXT NOT NULL,
                        processed_at REAL NOT NULL
                    )
                """)
                conn.execute("""
                    CREATE INDEX IF NOT EXISTS idx_processed_at
                    ON processed_directories(processed_at)
                """)
                conn.commit()
                logger.debug(f"Initialized state database: {self.db_file}")

        except sqlite3.Error as e:
            raise StoreError("state", "initialization", str(e))

    @staticmethod
    def _key(directory: Path) -> str:
        return str(directory.absolute())

    def content_signature(self, directory: Path) -> str:
        return self.fs_ops.content_signature(directory)

    def get_record(self, directory: Path) -> Optional[ProcessedDirectoryRecord]:
        try:
            with sqlite3.connect(str(self.db_file)) as conn:
                row = conn.execute("""
                    SELECT directory_path, content_signature, status, processed_at
                    FROM processed_directories
                    WHERE directory_path = ?
                """, (self._key(directory),)).fetchone()
        except sqlite3.Error as e:
            logger.warning(f"Error reading state for {directory}: {e}")
            return None

        if not row:
            return None

        return ProcessedDirectoryRecord(
            path=row[0], content_signature=row[1], status=ProcessingStatus(row[2]), timestamp=row[3]
        )

    def needs_processing(self, directory: Path) -> bool:
        """
        Decide whether a directory has to be processed again.

        True when no record exists, the last run did not succeed, or the
        directory contents changed since.
        """
        record = self.get_record(directory)
        if record is None:
            return True

        if record.status != ProcessingStatus.SUCCESS:
            return True

        try:
            current = self.content_signature(directory)
        except FilesystemError as e:
            logger.warning(f"Cannot fingerprint {directory}, reprocessing: {e}")
            return True

        if current != record.content_signature:
            logger.debug(f"Directory changed since last run: {directory}")
            return True

        return False

    def record(
        self,
        directory: Path,
        status: ProcessingStatus,
        signature: Optional[str] = None
    ):
        """
        Upsert the processing outcome for a directory.

        Args:
            directory: Album directory (the key)
            status: Outcome to store
            signature: Content signature, computed from the directory if omitted
        """
        try:
            if signature is None:
                signature = self.content_signature(directory)

            with sqlite3.connect(str(self.db_file)) as conn:
                conn.execute("""
                    INSERT OR REPLACE INTO processed_directories
                    (directory_path, content_signature, status, processed_at)
                    VALUES (?, ?, ?, ?)
                """, (self._key(directory), signature, status.value, time.time()))
                conn.commit()

            logger.debug(f"Recorded state {status.value} for {directory}")

        except (FilesystemError, sqlite3.Error) as e:
            logger.warning(f"Error recording state for {directory}: {e}")

    def forget(self, directory: Path):
        try:
            with sqlite3.connect(str(self.db_file)) as conn:
                conn.execute(
                    "DELETE FROM processed_directories WHERE directory_path = ?",
                    (self._key(directory),)
                )
                conn.commit()
        except sqlite3.Error as e:
            logger.warning(f"Error removing state for {directory}: {e}")

    def cleanup_old_entries(self, max_age_days: int) -> int:
        """Remove records older than the given age. Returns rows removed."""
        cutoff = time.time() - max_age_days * 24 * 3600
        try:
            with sqlite3.connect(str(self.db_file)) as conn:
                cursor = conn.execute(
                    "DELETE FROM processed_directories WHERE processed_at < ?", (cutoff,)
                )
                conn.commit()
                removed = cursor.rowcount
        except sqlite3.Error as e:
            logger.warning(f"Error cleaning state database: {e}")
            return 0

        if removed:
            logger.info(f"Removed {removed} stale state records")
        return removed
