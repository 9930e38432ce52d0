"""
Custom exception hierarchy for the album organizer.

Errors fall into two families: fatal errors that stop the whole run
(configuration, missing dependencies, database lock contention) and
per-album errors that are caught at the album boundary so the batch
always finishes and reports counts.
"""


class MusicOrganizerError(Exception):
    """Base class for all application-specific errors."""
    pass


class ConfigurationError(MusicOrganizerError):
    """Raised when there are configuration-related issues."""
    pass


class DependencyMissingError(MusicOrganizerError):
    """Raised when a required runtime dependency is not installed."""

    def __init__(self, dependency: str, hint: str = None):
        self.dependency = dependency
        self.hint = hint

        message = f"Required dependency is missing: {dependency}"
        if hint:
            message += f" ({hint})"

        super().__init__(message)


class DatabaseLockedError(ConfigurationError):
    """Raised when another process already holds a state database."""

    def __init__(self, db_path: str):
        self.db_path = db_path
        super().__init__(f"Database is locked by another process: {db_path}")


class StoreError(MusicOrganizerError):
    """Raised when a persistent store operation fails."""

    def __init__(self, store_name: str, operation: str, reason: str = None):
        self.store_name = store_name
        self.operation = operation
        self.reason = reason

        message = f"Store error in {store_name} during {operation}"
        if reason:
            message += f": {reason}"

        super().__init__(message)


class FilesystemError(MusicOrganizerError):
    """Raised when filesystem operations fail."""

    def __init__(self, path: str, operation: str, reason: str = None):
        self.path = path
        self.operation = operation
        self.reason = reason

        message = f"Filesystem error during {operation} on {path}"
        if reason:
            message += f": {reason}"

        super().__init__(message)


class AlbumProcessingError(MusicOrganizerError):
    """Base class for errors scoped to a single album directory."""
    pass


class NoAudioFilesError(AlbumProcessingError):
    """Raised when an album directory holds no readable audio files."""

    def __init__(self, album_path: str):
        self.album_path = album_path
        super().__init__(f"No audio files found in: {album_path}")


class MetadataExtractionError(AlbumProcessingError):
    """Raised when metadata cannot be extracted from an audio file."""

    def __init__(self, file_path: str, reason: str = None):
        self.file_path = file_path
        self.reason = reason

        message = f"Failed to extract metadata from: {file_path}"
        if reason:
            message += f" - {reason}"

        super().__init__(message)


class MetadataExtractionTimeout(MetadataExtractionError):
    """Raised when reading an album's tags exceeds the configured timeout."""

    def __init__(self, album_path: str, timeout_seconds: float):
        self.timeout_seconds = timeout_seconds
        super().__init__(album_path, f"timed out after {timeout_seconds} seconds")


class EssentialMetadataMissingError(AlbumProcessingError):
    """Raised when an album identity lacks an artist or a title."""

    def __init__(self, album_path: str, missing: list = None, partial=None):
        self.album_path = album_path
        self.missing = missing or []
        self.partial = partial

        message = f"Essential metadata missing for: {album_path}"
        if self.missing:
            message += f" (missing: {', '.join(self.missing)})"

        super().__init__(message)


class DestinationConflictError(AlbumProcessingError):
    """Raised when the planned destination is already occupied."""

    def __init__(self, source_path: str, dest_path: str):
        self.source_path = source_path
        self.dest_path = dest_path
        super().__init__(f"Destination already exists for '{source_path}': {dest_path}")


class MoveIOError(AlbumProcessingError):
    """Raised when relocating an album directory fails and was rolled back."""

    def __init__(self, source_path: str, dest_path: str, reason: str = None):
        self.source_path = source_path
        self.dest_path = dest_path
        self.reason = reason

        message = f"Failed to move '{source_path}' to '{dest_path}'"
        if reason:
            message += f": {reason}"

        super().__init__(message)
