"""
SQLite store for duplicate detection: scanned albums, groups and members.

Both the scanned album set and the groups are rebuilt wholesale on each
pass, so the store never accumulates stale groups.
"""

import sqlite3
import time
import logging
from pathlib import Path
from typing import Dict, List, Optional

from models.schemas import (
    DuplicateCandidate, DuplicateGroup, DuplicateMember, QualityClass, ResolutionStatus
)
from utils.exceptions import StoreError

logger = logging.getLogger(__name__)

_CANDIDATE_COLUMNS = (
    "id, path, album_artist, album_title, normalized_artist, normalized_title, year, "
    "track_count, total_size_bytes, quality_class, avg_bitrate, format_mix, identity_hash"
)


class DuplicatesStore:
    """Persistence for the duplicate detector."""

    def __init__(self, db_file: Path):
        self.db_file = db_file
        self.db_file.parent.mkdir(parents=True, exist_ok=True)
        self._init_database()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self.db_file), timeout=10)
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    def _init_database(self):
        try:
            with self._connect() as conn:
                conn.executescript("""
                    CREATE TABLE IF NOT EXISTS albums (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        path TEXT UNIQUE NOT NULL,
                        album_artist TEXT,
                        album_title TEXT,
                        normalized_artist TEXT,
                        normalized_title TEXT,
                        year TEXT,
                        track_count INTEGER,
                        total_size_bytes INTEGER,
                        quality_class TEXT,
                        avg_bitrate INTEGER,
                        format_mix TEXT,
                        identity_hash TEXT NOT NULL,
                        scanned_at REAL
                    );

                    CREATE TABLE IF NOT EXISTS duplicate_groups (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        identity_hash TEXT NOT NULL,
                        member_count INTEGER,
                        reclaimable_bytes INTEGER,
                        resolution_status TEXT DEFAULT 'pending',
                        created_at REAL
                    );

                    CREATE TABLE IF NOT EXISTS group_members (
                        group_id INTEGER NOT NULL REFERENCES duplicate_groups(id) ON DELETE CASCADE,
                        album_id INTEGER NOT NULL REFERENCES albums(id) ON DELETE CASCADE,
                        quality_score INTEGER,
                        is_recommended_keeper INTEGER DEFAULT 0,
                        PRIMARY KEY (group_id, album_id)
                    );

                    CREATE INDEX IF NOT EXISTS idx_albums_hash ON albums(identity_hash);
                """)
        except sqlite3.Error as e:
            raise StoreError("duplicates", "initialization", str(e))

    def replace_candidates(self, candidates: List[DuplicateCandidate]) -> List[DuplicateCandidate]:
        """
        Replace the scanned album set. Returns the candidates with ids assigned.

        Raises:
            StoreError: If the scan cannot be stored
        """
        stored = []
        now = time.time()
        try:
            with self._connect() as conn:
                conn.execute("DELETE FROM group_members")
                conn.execute("DELETE FROM duplicate_groups")
                conn.execute("DELETE FROM albums")
                for candidate in candidates:
                    cursor = conn.execute("""
                        INSERT INTO albums
                        (path, album_artist, album_title, normalized_artist, normalized_title, year,
                         track_count, total_size_bytes, quality_class, avg_bitrate, format_mix,
                         identity_hash, scanned_at)
                        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """, (
                        candidate.path, candidate.album_artist, candidate.album_title,
                        candidate.normalized_artist, candidate.normalized_title, candidate.year,
                        candidate.track_count, candidate.total_size_bytes,
                        candidate.quality_class.value, candidate.avg_bitrate,
                        candidate.format_mix, candidate.identity_hash, now
                    ))
                    stored.append(candidate.model_copy(update={'id': cursor.lastrowid}))
                conn.commit()
        except sqlite3.Error as e:
            raise StoreError("duplicates", "store scan", str(e))

        return stored

    def candidates(self) -> List[DuplicateCandidate]:
        try:
            with self._connect() as conn:
                rows = conn.execute(f"SELECT {_CANDIDATE_COLUMNS} FROM albums ORDER BY path").fetchall()
        except sqlite3.Error as e:
            raise StoreError("duplicates", "load scan", str(e))
        return [self._row_to_candidate(row) for row in rows]

    @staticmethod
    def _row_to_candidate(row) -> DuplicateCandidate:
        return DuplicateCandidate(
            id=row[0], path=row[1], album_artist=row[2] or "", album_title=row[3] or "",
            normalized_artist=row[4] or "", normalized_title=row[5] or "", year=row[6],
            track_count=row[7] or 0, total_size_bytes=row[8] or 0,
            quality_class=QualityClass(row[9] or QualityClass.UNKNOWN.value),
            avg_bitrate=row[10] or 0, format_mix=row[11] or "", identity_hash=row[12]
        )

    def replace_groups(self, groups: List[DuplicateGroup]) -> List[DuplicateGroup]:
        """
        Clear all groups and store a fresh set. Returns groups with ids assigned.

        Raises:
            StoreError: If the groups cannot be stored
        """
        stored = []
        now = time.time()
        try:
            with self._connect() as conn:
                conn.execute("DELETE FROM group_members")
                conn.execute("DELETE FROM duplicate_groups")
                for group in groups:
                    cursor = conn.execute("""
                        INSERT INTO duplicate_groups
                        (identity_hash, member_count, reclaimable_bytes, resolution_status, created_at)
                        VALUES (?, ?, ?, ?, ?)
                    """, (
                        group.identity_hash, len(group.members), group.reclaimable_bytes,
                        group.status.value, now
                    ))
                    group_id = cursor.lastrowid
                    conn.executemany("""
                        INSERT INTO group_members (group_id, album_id, quality_score, is_recommended_keeper)
                        VALUES (?, ?, ?, ?)
                    """, [
                        (group_id, m.candidate.id, m.quality_score, int(m.keep))
                        for m in group.members
                    ])
                    stored.append(group.model_copy(update={'group_id': group_id}))
                conn.commit()
        except sqlite3.Error as e:
            raise StoreError("duplicates", "store groups", str(e))

        return stored

    def groups(self, status: Optional[ResolutionStatus] = None) -> List[DuplicateGroup]:
        """Load stored groups with members ranked by score, best first."""
        query = "SELECT id, identity_hash, resolution_status FROM duplicate_groups"
        params = ()
        if status is not None:
            query += " WHERE resolution_status = ?"
            params = (status.value,)
        query += " ORDER BY id"

        try:
            with self._connect() as conn:
                group_rows = conn.execute(query, params).fetchall()
                candidates: Dict[int, DuplicateCandidate] = {
                    row[0]: self._row_to_candidate(row)
                    for row in conn.execute(f"SELECT {_CANDIDATE_COLUMNS} FROM albums").fetchall()
                }
                groups = []
                for group_id, identity_hash, resolution in group_rows:
                    member_rows = conn.execute("""
                        SELECT album_id, quality_score, is_recommended_keeper
                        FROM group_members WHERE group_id = ?
                        ORDER BY is_recommended_keeper DESC, quality_score DESC, album_id
                    """, (group_id,)).fetchall()
                    members = [
                        DuplicateMember(candidate=candidates[album_id], quality_score=score, keep=bool(keep))
                        for album_id, score, keep in member_rows
                        if album_id in candidates
                    ]
                    groups.append(DuplicateGroup(
                        group_id=group_id, identity_hash=identity_hash,
                        members=members, status=ResolutionStatus(resolution)
                    ))
        except sqlite3.Error as e:
            raise StoreError("duplicates", "load groups", str(e))

        return groups

    def mark_resolved(self, group_id: int):
        try:
            with self._connect() as conn:
                conn.execute(
                    "UPDATE duplicate_groups SET resolution_status = ? WHERE id = ?",
                    (ResolutionStatus.RESOLVED.value, group_id)
                )
                conn.commit()
        except sqlite3.Error as e:
            logger.warning(f"Error marking duplicate group {group_id} resolved: {e}")
