"""
Album detection logic for identifying album directories under a source root.

An album directory is one that directly holds audio files. Disc subfolders
(CD1, Disc 2, ...) are folded into their parent album rather than reported
on their own.
"""

import re
from pathlib import Path
from typing import Iterable, List, Optional
import logging

logger = logging.getLogger(__name__)

DISC_DIR_PATTERN = re.compile(r"(?i)^\s*(?:cd|disc|disk)[\s._-]*([0-9ivx]+)\s*$")


class AlbumDetector:
    """Detects album directories in a music tree."""

    def __init__(
        self,
        audio_extensions: Iterable[str],
        ignored_dirs: Iterable[str],
        excluded_roots: Optional[Iterable[Path]] = None
    ):
        self.audio_extensions = {ext.lower() for ext in audio_extensions}
        self.ignored_dirs = {name.lower() for name in ignored_dirs}
        self.excluded_roots = [Path(p) for p in (excluded_roots or []) if p]
        self.disc_dir_pattern = DISC_DIR_PATTERN

    def discover_albums(self, root_dir: Path) -> List[Path]:
        """
        Discover all album directories below a root.

        Args:
            root_dir: Root directory to scan

        Returns:
            Sorted list of album directory paths
        """
        albums = []

        candidates = [root_dir] + sorted(root_dir.rglob("*"))
        for path in candidates:
            if self._is_excluded(path):
                continue
            if self._is_album_directory(path):
                albums.append(path)
                logger.debug(f"Found album: {path}")

        logger.info(f"Discovered {len(albums)} album directories under {root_dir}")
        return albums

    def _is_excluded(self, path: Path) -> bool:
        for root in self.excluded_roots:
            if path == root or root in path.parents:
                return True
        return False

    def _is_album_directory(self, path: Path) -> bool:
        if not path.is_dir() or path.is_symlink():
            return False

        name = path.name.lower()
        if name.startswith('@eadir') or name in self.ignored_dirs:
            return False

        # Hidden directories include in-flight move copies
        if path.name.startswith('.'):
            return False

        if self.disc_dir_pattern.match(path.name):
            return False

        return self._has_audio_files(path)

    def _is_audio_file(self, path: Path) -> bool:
        return path.is_file() and path.suffix.lower() in self.audio_extensions

    def _has_audio_files(self, path: Path) -> bool:
        """Check if directory has audio files, directly or in disc subdirs."""
        try:
            for entry in path.iterdir():
                if self._is_audio_file(entry):
                    return True

            for subdir in path.iterdir():
                if subdir.is_dir() and self.disc_dir_pattern.match(subdir.name):
                    if any(self._is_audio_file(f) for f in subdir.iterdir()):
                        return True

        except (PermissionError, OSError) as e:
            logger.warning(f"Cannot access directory {path}: {e}")
            return False

        return False

    def get_album_tracks(self, album_dir: Path) -> List[Path]:
        """
        Get all audio files in an album directory, disc subfolders included.

        Args:
            album_dir: Album directory path

        Returns:
            List of audio file paths, direct files first then disc by disc
        """
        tracks = []

        try:
            entries = sorted(album_dir.iterdir())
            tracks.extend(f for f in entries if self._is_audio_file(f))

            for subdir in entries:
                if subdir.is_dir() and self.disc_dir_pattern.match(subdir.name):
                    tracks.extend(f for f in sorted(subdir.iterdir()) if self._is_audio_file(f))

        except (PermissionError, OSError) as e:
            logger.error(f"Error accessing album directory {album_dir}: {e}")

        return tracks

    def disc_subdirs(self, album_dir: Path) -> List[str]:
        try:
            return sorted(
                d.name for d in album_dir.iterdir()
                if d.is_dir() and self.disc_dir_pattern.match(d.name)
            )
        except OSError:
            return []
