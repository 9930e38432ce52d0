"""
Journaled, atomic relocation of album directories.

Every move is written to the journal as Planned and then InProgress before
the filesystem changes, and closed as Committed or RolledBack afterwards.
A same-filesystem move is a single rename. Across filesystems the album is
copied into a hidden sibling of the destination, verified, renamed into
place and only then removed from the source, so a failure at any point
before the final rename leaves the original untouched.
"""

import errno
import os
import re
import time
import uuid
import logging
from pathlib import Path
from typing import Callable, Dict, List, Optional

from filesystem.file_ops import FileSystemOperations, sanitize_path_segment
from models.schemas import MoveOperation, MoveStatus, RunMode, TrackMetadata
from storage.metadata_store import MetadataStore
from utils.exceptions import (
    DestinationConflictError, FilesystemError, MoveIOError, StoreError
)

logger = logging.getLogger(__name__)

# 'A1 - Track.flac', 'b2-artist-track.mp3'
VINYL_FILE_POSITION = re.compile(r'^\s*([A-Da-d])\s*-?\s*(\d{1,2})(?=[\s._-]|$)')
# 'A1 Track', 'B2. Track'
VINYL_TITLE_POSITION = re.compile(r'^\s*([A-D])(\d{1,2})\b[\s.:-]*')
VINYL_SIDE = re.compile(r'\bside\s+([AB])\b|\b([AB])-side\b', re.IGNORECASE)


def partial_copy_path(destination: Path, operation_id: str) -> Path:
    """Hidden sibling used while copying an album across filesystems."""
    return destination.parent / f".{destination.name}.partial-{operation_id[:12]}"


def vinyl_position(track: TrackMetadata) -> Optional[str]:
    """Side position of a vinyl rip ('A1', 'B2', or just 'A' for 'Side A'), if marked."""
    match = VINYL_FILE_POSITION.match(track.path.stem)
    if not match and track.title:
        match = VINYL_TITLE_POSITION.match(track.title)
    if match:
        return f"{match.group(1).upper()}{int(match.group(2))}"

    for text in (track.path.stem, track.title or ""):
        side = VINYL_SIDE.search(text)
        if side:
            return (side.group(1) or side.group(2)).upper()
    return None


def is_vinyl_release(tracks: List[TrackMetadata]) -> bool:
    """A release is treated as vinyl when at least a third of its tracks carry side positions."""
    marked = sum(1 for t in tracks if vinyl_position(t))
    return marked > 0 and marked * 3 >= len(tracks)


def _missing_dirs(directory: Path) -> List[Path]:
    """Directory and its ancestors that do not exist yet, deepest first."""
    missing = []
    for path in [directory, *directory.parents]:
        if path.exists():
            break
        missing.append(path)
    return missing


def _remove_empty_dirs(directories: List[Path]):
    for directory in directories:
        try:
            directory.rmdir()
        except OSError:
            return


class MoveExecutor:
    """Moves album directories and keeps the move journal."""

    def __init__(
        self,
        store: MetadataStore,
        run_mode: RunMode = RunMode.DRY_RUN,
        fs_ops: Optional[FileSystemOperations] = None
    ):
        self.store = store
        self.run_mode = run_mode
        self.fs_ops = fs_ops or FileSystemOperations()

    @property
    def dry_run(self) -> bool:
        return self.run_mode == RunMode.DRY_RUN

    def move_directory(
        self,
        source: Path,
        destination: Path,
        prune_root: Optional[Path] = None
    ) -> Optional[MoveOperation]:
        """
        Relocate an album directory.

        Args:
            source: Existing album directory
            destination: Target path, must not exist yet
            prune_root: After the move, parents of source left empty are
                removed up to, but not including, this directory

        Returns:
            The committed journal entry, or None in dry-run mode

        Raises:
            DestinationConflictError: If the destination already exists
            MoveIOError: If the move failed; the source is left as it was
        """
        if destination.exists():
            raise DestinationConflictError(str(source), str(destination))

        if self.dry_run:
            logger.info(f"[DRY RUN] Would move: {source} -> {destination}")
            return None

        now = time.time()
        operation = MoveOperation(
            operation_id=uuid.uuid4().hex,
            source_path=str(source),
            dest_path=str(destination),
            status=MoveStatus.PLANNED,
            created_at=now,
            updated_at=now,
        )

        try:
            self.store.create_operation(operation)
            self.store.update_operation(operation.operation_id, MoveStatus.IN_PROGRESS)
        except StoreError as e:
            raise MoveIOError(str(source), str(destination), f"move journal unavailable: {e}")

        created_parents = _missing_dirs(destination.parent)
        try:
            self._with_permission_retry(
                lambda: destination.parent.mkdir(parents=True, exist_ok=True),
                destination.parent.parent
            )
            self._relocate(source, destination, operation.operation_id)
        except (OSError, FilesystemError) as e:
            self._close_operation(operation.operation_id, MoveStatus.ROLLED_BACK, str(e))
            _remove_empty_dirs(created_parents)
            logger.error(f"Move failed and was rolled back: {source} -> {destination}: {e}")
            raise MoveIOError(str(source), str(destination), str(e))

        self._close_operation(operation.operation_id, MoveStatus.COMMITTED)
        logger.info(f"Moved: {source} -> {destination}")
        if prune_root is not None:
            self._prune_empty_parents(source.parent, prune_root)
        return operation.model_copy(update={'status': MoveStatus.COMMITTED, 'updated_at': time.time()})

    def _prune_empty_parents(self, directory: Path, stop_at: Path):
        while directory != stop_at and stop_at in directory.parents:
            try:
                directory.rmdir()
            except OSError:
                return
            logger.debug(f"Removed empty directory: {directory}")
            directory = directory.parent

    def _close_operation(self, operation_id: str, status: MoveStatus, error: Optional[str] = None):
        try:
            self.store.update_operation(operation_id, status, error)
        except StoreError as e:
            logger.warning(f"Could not close journal entry {operation_id} as {status.value}: {e}")

    def _with_permission_retry(self, action: Callable[[], object], *dirs: Path):
        """Run an action, relaxing owner write permission on dirs and retrying once."""
        try:
            return action()
        except PermissionError as e:
            logger.warning(f"Permission denied, retrying with relaxed permissions: {e}")
            for directory in dirs:
                self.fs_ops.relax_write_permissions(directory)
            return action()

    def _relocate(self, source: Path, destination: Path, operation_id: str):
        try:
            self._with_permission_retry(
                lambda: os.rename(str(source), str(destination)),
                source, source.parent, destination.parent
            )
            return
        except OSError as e:
            if e.errno != errno.EXDEV:
                raise

        logger.debug(f"Cross-filesystem move, copying: {source} -> {destination}")
        self._copy_across(source, destination, operation_id)

    def _copy_across(self, source: Path, destination: Path, operation_id: str):
        partial = partial_copy_path(destination, operation_id)

        try:
            self.fs_ops.copy_tree_verified(source, partial)
            os.rename(str(partial), str(destination))
        except (OSError, FilesystemError):
            self._discard_partial(partial)
            raise

        # The destination is complete from here on
        try:
            self._with_permission_retry(lambda: self.fs_ops.remove_tree(source), source, source.parent)
        except (OSError, FilesystemError) as e:
            logger.warning(f"Moved {source} but could not remove the original: {e}")

    def _discard_partial(self, partial: Path):
        try:
            self.fs_ops.remove_tree(partial)
        except FilesystemError as e:
            logger.error(f"Could not remove partial copy {partial}: {e}")

    def recover(self) -> Dict[str, int]:
        """
        Close journal entries left open by an interrupted run.

        Planned entries never touched the filesystem and are rolled back.
        InProgress entries are committed when the destination exists, and
        otherwise rolled back after removing any partial copy.

        Returns:
            Counts of entries committed and rolled back
        """
        counts = {'committed': 0, 'rolled_back': 0}
        try:
            pending = self.store.incomplete_operations()
        except StoreError as e:
            logger.warning(f"Cannot scan move journal for recovery: {e}")
            return counts

        for operation in pending:
            source = Path(operation.source_path)
            destination = Path(operation.dest_path)

            if operation.status == MoveStatus.IN_PROGRESS and destination.exists():
                if source.exists():
                    logger.warning(
                        f"Recovered move {operation.operation_id}: destination is complete but "
                        f"the original remains at {source}"
                    )
                self._close_operation(operation.operation_id, MoveStatus.COMMITTED)
                counts['committed'] += 1
                continue

            if not self.dry_run:
                self._discard_partial(partial_copy_path(destination, operation.operation_id))
            self._close_operation(
                operation.operation_id, MoveStatus.ROLLED_BACK, "interrupted, rolled back on recovery"
            )
            counts['rolled_back'] += 1

        if pending:
            logger.info(
                f"Journal recovery: {counts['committed']} committed, {counts['rolled_back']} rolled back"
            )
        return counts

    def rename_tracks(
        self,
        album_dir: Path,
        original_dir: Path,
        tracks: List[TrackMetadata],
        operation_id: Optional[str] = None
    ) -> List[TrackMetadata]:
        """
        Rename audio files to 'NN - Title.ext' after a move.

        Multi-disc albums get a 'D-NN - Title.ext' form and vinyl rips keep
        their side position ('A1 - Title.ext'). Tracks without a title, or
        without any position, keep their names. Failures are logged and
        never undo the directory move.

        Args:
            album_dir: Album directory after the move
            original_dir: Album directory the track paths were read from
            tracks: Track metadata read before the move
            operation_id: Journal entry the renames belong to

        Returns:
            The tracks with their paths inside album_dir, renamed or not
        """
        discs = {t.disc_number or 1 for t in tracks}
        multi_disc = len(discs) > 1
        vinyl = is_vinyl_release(tracks)
        relocated = []
        renamed = 0

        for track in tracks:
            try:
                current = album_dir / track.path.relative_to(original_dir)
            except ValueError:
                logger.warning(f"Track outside its album directory, not renamed: {track.path}")
                relocated.append(track)
                continue
            relocated.append(track.model_copy(update={'path': current}))

            title = track.title
            position = vinyl_position(track) if vinyl else None
            if position:
                title_position = VINYL_TITLE_POSITION.match(title or "")
                if title_position:
                    title = title[title_position.end():] or title
                prefix = position
            elif track.track_number:
                prefix = f"{track.track_number:02d}"
                if multi_disc:
                    prefix = f"{track.disc_number or 1}-{prefix}"
            else:
                continue

            if not title:
                continue

            new_name = f"{prefix} - {sanitize_path_segment(title)}{current.suffix.lower()}"
            target = current.with_name(new_name)

            if target == current:
                continue

            if self.dry_run:
                logger.info(f"[DRY RUN] Would rename: {current.name} -> {new_name}")
                continue

            if target.exists():
                logger.warning(f"Rename target exists, keeping original name: {target}")
                continue

            try:
                os.rename(str(current), str(target))
            except OSError as e:
                logger.warning(f"Moved but not renamed {current}: {e}")
                continue

            self.store.record_rename(operation_id, current, target)
            relocated[-1] = relocated[-1].model_copy(update={'path': target})
            renamed += 1

        if renamed:
            logger.info(f"Renamed {renamed} tracks in {album_dir}")
        return relocated
