"""
Filesystem helpers used by the planner, the state tracker and the move executor.

Covers path segment sanitizing, directory content signatures and the
verified copy used when a directory move has to cross filesystems.
"""

import hashlib
import os
import shutil
import stat
import unicodedata
from pathlib import Path
from typing import Dict
import logging

from utils.exceptions import FilesystemError

logger = logging.getLogger(__name__)

INVALID_SEGMENT_CHARS = '\\/:*?"<>|'
MAX_SEGMENT_LENGTH = 120


def sanitize_unicode_text(text: str) -> str:
    """Replace characters that cannot be encoded as UTF-8 (lone surrogates)."""
    try:
        text.encode('utf-8')
        return text
    except UnicodeEncodeError:
        logger.debug("Found problematic Unicode characters, sanitizing...")
        return text.encode('utf-8', errors='replace').decode('utf-8')


def sanitize_path_segment(text: str, max_length: int = MAX_SEGMENT_LENGTH, fallback: str = "Unknown") -> str:
    """
    Make one path component safe for any common filesystem.

    Strips path separators and reserved characters, control characters and
    trailing dots, collapses whitespace and truncates overly long names.

    Args:
        text: Raw segment (artist, label, title ...)
        max_length: Maximum length of the resulting segment
        fallback: Value used when nothing printable is left

    Returns:
        Sanitized segment, never empty
    """
    if not text:
        return fallback

    text = unicodedata.normalize('NFC', sanitize_unicode_text(str(text)))

    for char in INVALID_SEGMENT_CHARS:
        text = text.replace(char, ' ')

    text = ''.join(char for char in text if ord(char) >= 32 and ord(char) != 127)
    text = ' '.join(text.split())
    text = text.strip(' .')

    if len(text) > max_length:
        text = text[:max_length].rstrip(' .')

    return text or fallback


class FileSystemOperations:
    """Directory-level filesystem operations with proper error handling."""

    def content_signature(self, directory: Path) -> str:
        """
        Fingerprint a directory's direct contents.

        The signature combines the directory mtime with a hash over every
        direct entry's name, size and mtime, so adding, removing, renaming
        or rewriting any file changes it.

        Raises:
            FilesystemError: If the directory cannot be read
        """
        try:
            dir_stat = directory.stat()
            lines = []
            for entry in os.scandir(directory):
                entry_stat = entry.stat(follow_symlinks=False)
                lines.append(f"{entry.name}|{entry_stat.st_size}|{entry_stat.st_mtime_ns}")
        except OSError as e:
            raise FilesystemError(str(directory), "signature", str(e))

        digest = hashlib.md5('\n'.join(sorted(lines)).encode('utf-8', errors='surrogateescape')).hexdigest()
        return f"{dir_stat.st_mtime_ns}:{digest}"

    def tree_manifest(self, root: Path) -> Dict[str, int]:
        """Map every file under root (relative path) to its size in bytes."""
        manifest = {}
        for dirpath, _dirnames, filenames in os.walk(root):
            for name in filenames:
                full = Path(dirpath) / name
                manifest[str(full.relative_to(root))] = full.stat().st_size
        return manifest

    def copy_tree_verified(self, source: Path, destination: Path):
        """
        Copy a directory tree and verify the copy against the source.

        The destination must not exist. Verification compares the relative
        file set and every file size.

        Raises:
            FilesystemError: If copying or verification fails
        """
        try:
            shutil.copytree(str(source), str(destination), symlinks=True, copy_function=shutil.copy2)
            source_manifest = self.tree_manifest(source)
            copy_manifest = self.tree_manifest(destination)
        except (OSError, shutil.Error) as e:
            raise FilesystemError(str(source), "copy", str(e))

        if source_manifest != copy_manifest:
            missing = len(set(source_manifest) - set(copy_manifest))
            raise FilesystemError(
                str(destination), "verify",
                f"copy differs from source ({len(copy_manifest)}/{len(source_manifest)} files, {missing} missing)"
            )

    def relax_write_permissions(self, path: Path):
        """Add owner write/execute permission to a directory, ignoring failures."""
        try:
            mode = path.stat().st_mode
            path.chmod(mode | stat.S_IWUSR | stat.S_IXUSR)
        except OSError as e:
            logger.debug(f"Cannot relax permissions on {path}: {e}")

    def remove_tree(self, path: Path):
        """
        Remove a directory tree if it exists.

        Raises:
            FilesystemError: If removal fails
        """
        if not path.exists() and not path.is_symlink():
            return
        try:
            shutil.rmtree(str(path))
        except OSError as e:
            raise FilesystemError(str(path), "remove", str(e))
