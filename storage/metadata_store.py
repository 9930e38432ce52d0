"""
SQLite store for organized album metadata and the move journal.

Album and track rows are informational and written best-effort. The move
journal is different: every directory relocation is recorded here before
the filesystem is touched, so journal writes raise on failure.
"""

import sqlite3
import time
import logging
from pathlib import Path
from typing import List, Optional

from models.schemas import (
    AlbumIdentity, IdentitySource, MoveOperation, MoveStatus, OrganizationPlan, TrackMetadata
)
from utils.exceptions import StoreError

logger = logging.getLogger(__name__)


class MetadataStore:
    """Albums, tracks, move operations and file renames."""

    def __init__(self, db_file: Path):
        self.db_file = db_file
        self.db_file.parent.mkdir(parents=True, exist_ok=True)
        self._init_database()

    def _connect(self) -> sqlite3.Connection:
        return sqlite3.connect(str(self.db_file), timeout=10)

    def _init_database(self):
        try:
            with self._connect() as conn:
                conn.executescript("""
                    CREATE TABLE IF NOT EXISTS albums (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        source_path TEXT NOT NULL,
                        organized_path TEXT UNIQUE NOT NULL,
                        album_artist TEXT,
                        album_title TEXT,
                        year TEXT,
                        label TEXT,
                        catalog_number TEXT,
                        is_compilation INTEGER DEFAULT 0,
                        is_remix INTEGER DEFAULT 0,
                        identity_source TEXT,
                        organization_mode TEXT,
                        quality_class TEXT,
                        track_count INTEGER,
                        total_size INTEGER,
                        avg_bitrate INTEGER,
                        processed_at REAL
                    );

                    CREATE TABLE IF NOT EXISTS tracks (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        album_id INTEGER NOT NULL REFERENCES albums(id) ON DELETE CASCADE,
                        file_name TEXT,
                        artist TEXT,
                        title TEXT,
                        track_number INTEGER,
                        disc_number INTEGER,
                        file_type TEXT,
                        bitrate INTEGER,
                        duration REAL,
                        size_bytes INTEGER
                    );

                    CREATE TABLE IF NOT EXISTS move_operations (
                        operation_id TEXT PRIMARY KEY,
                        source_path TEXT NOT NULL,
                        dest_path TEXT NOT NULL,
                        status TEXT NOT NULL,
                        created_at REAL NOT NULL,
                        updated_at REAL NOT NULL,
                        error_message TEXT
                    );

                    CREATE TABLE IF NOT EXISTS file_renames (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        operation_id TEXT,
                        old_path TEXT NOT NULL,
                        new_path TEXT NOT NULL,
                        renamed_at REAL NOT NULL
                    );

                    CREATE INDEX IF NOT EXISTS idx_albums_label ON albums(label COLLATE NOCASE);
                    CREATE INDEX IF NOT EXISTS idx_move_status ON move_operations(status);
                """)
                logger.debug(f"Initialized metadata database: {self.db_file}")

        except sqlite3.Error as e:
            raise StoreError("metadata", "initialization", str(e))

    # Albums

    def record_album(
        self,
        identity: AlbumIdentity,
        plan: OrganizationPlan,
        tracks: List[TrackMetadata]
    ) -> Optional[int]:
        """Store an organized album and its tracks. Returns the album id."""
        bitrates = [t.bitrate for t in tracks if t.bitrate]
        avg_bitrate = sum(bitrates) // len(bitrates) if bitrates else 0

        try:
            with self._connect() as conn:
                conn.execute(
                    "DELETE FROM tracks WHERE album_id IN (SELECT id FROM albums WHERE organized_path = ?)",
                    (str(plan.destination),)
                )
                conn.execute("DELETE FROM albums WHERE organized_path = ?", (str(plan.destination),))
                cursor = conn.execute("""
                    INSERT INTO albums
                    (source_path, organized_path, album_artist, album_title, year, label,
                     catalog_number, is_compilation, is_remix, identity_source,
                     organization_mode, quality_class, track_count, total_size, avg_bitrate, processed_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """, (
                    str(plan.source), str(plan.destination), identity.album_artist,
                    identity.album_title, identity.year, identity.label, identity.catalog_number,
                    int(identity.is_compilation), int(identity.is_remix), identity.source.value,
                    plan.mode.value, plan.quality.value, len(tracks),
                    sum(t.size_bytes for t in tracks), avg_bitrate, time.time()
                ))
                album_id = cursor.lastrowid

                conn.executemany("""
                    INSERT INTO tracks
                    (album_id, file_name, artist, title, track_number, disc_number,
                     file_type, bitrate, duration, size_bytes)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """, [
                    (album_id, t.path.name, t.artist, t.title, t.track_number, t.disc_number,
                     t.file_type, t.bitrate, t.duration, t.size_bytes)
                    for t in tracks
                ])
                conn.commit()
                return album_id

        except sqlite3.Error as e:
            logger.warning(f"Error recording album metadata for {plan.destination}: {e}")
            return None

    def album_identity(self, organized_path: Path) -> Optional[AlbumIdentity]:
        """Identity an album was organized under, looked up by its library path."""
        try:
            with self._connect() as conn:
                row = conn.execute("""
                    SELECT album_artist, album_title, year, label, catalog_number,
                           is_compilation, is_remix, identity_source
                    FROM albums WHERE organized_path = ?
                """, (str(organized_path),)).fetchone()
        except sqlite3.Error as e:
            logger.warning(f"Error reading album metadata for {organized_path}: {e}")
            return None

        if row is None:
            return None
        return AlbumIdentity(
            album_artist=row[0],
            album_title=row[1],
            year=row[2],
            label=row[3],
            catalog_number=row[4],
            is_compilation=bool(row[5]),
            is_remix=bool(row[6]),
            source=IdentitySource(row[7]),
        )

    def label_release_count(self, label: str) -> int:
        """Number of organized albums already stored for a label."""
        if not label:
            return 0
        try:
            with self._connect() as conn:
                row = conn.execute(
                    "SELECT COUNT(*) FROM albums WHERE label = ? COLLATE NOCASE", (label,)
                ).fetchone()
                return row[0] if row else 0
        except sqlite3.Error as e:
            logger.warning(f"Error counting releases for label {label}: {e}")
            return 0

    # Move journal

    def create_operation(self, operation: MoveOperation):
        """
        Journal a new move operation.

        Raises:
            StoreError: If the journal cannot be written
        """
        try:
            with self._connect() as conn:
                conn.execute("""
                    INSERT INTO move_operations
                    (operation_id, source_path, dest_path, status, created_at, updated_at, error_message)
                    VALUES (?, ?, ?, ?, ?, ?, ?)
                """, (
                    operation.operation_id, operation.source_path, operation.dest_path,
                    operation.status.value, operation.created_at, operation.updated_at,
                    operation.error_message
                ))
                conn.commit()
        except sqlite3.Error as e:
            raise StoreError("metadata", "journal insert", str(e))

    def update_operation(self, operation_id: str, status: MoveStatus, error_message: Optional[str] = None):
        """
        Move a journal entry to a new status.

        Raises:
            StoreError: If the journal cannot be written
        """
        try:
            with self._connect() as conn:
                cursor = conn.execute("""
                    UPDATE move_operations
                    SET status = ?, updated_at = ?, error_message = ?
                    WHERE operation_id = ?
                """, (status.value, time.time(), error_message, operation_id))
                conn.commit()
        except sqlite3.Error as e:
            raise StoreError("metadata", "journal update", str(e))

        if cursor.rowcount == 0:
            raise StoreError("metadata", "journal update", f"unknown operation {operation_id}")

    def get_operation(self, operation_id: str) -> Optional[MoveOperation]:
        try:
            with self._connect() as conn:
                row = conn.execute("""
                    SELECT operation_id, source_path, dest_path, status, created_at, updated_at, error_message
                    FROM move_operations WHERE operation_id = ?
                """, (operation_id,)).fetchone()
        except sqlite3.Error as e:
            logger.warning(f"Error reading journal entry {operation_id}: {e}")
            return None
        return self._row_to_operation(row) if row else None

    def incomplete_operations(self) -> List[MoveOperation]:
        """Journal entries left Planned or InProgress by an interrupted run."""
        try:
            with self._connect() as conn:
                rows = conn.execute("""
                    SELECT operation_id, source_path, dest_path, status, created_at, updated_at, error_message
                    FROM move_operations
                    WHERE status IN (?, ?)
                    ORDER BY created_at
                """, (MoveStatus.PLANNED.value, MoveStatus.IN_PROGRESS.value)).fetchall()
        except sqlite3.Error as e:
            raise StoreError("metadata", "journal scan", str(e))
        return [self._row_to_operation(row) for row in rows]

    @staticmethod
    def _row_to_operation(row) -> MoveOperation:
        return MoveOperation(
            operation_id=row[0], source_path=row[1], dest_path=row[2],
            status=MoveStatus(row[3]), created_at=row[4], updated_at=row[5],
            error_message=row[6]
        )

    def record_rename(self, operation_id: Optional[str], old_path: Path, new_path: Path):
        try:
            with self._connect() as conn:
                conn.execute("""
                    INSERT INTO file_renames (operation_id, old_path, new_path, renamed_at)
                    VALUES (?, ?, ?, ?)
                """, (operation_id, str(old_path), str(new_path), time.time()))
                conn.commit()
        except sqlite3.Error as e:
            logger.warning(f"Error recording rename {old_path} -> {new_path}: {e}")
