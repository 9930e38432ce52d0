"""
Per-track tag extraction built on mutagen.

The extractor reads every audio file of an album directory into
``TrackMetadata`` records. Reading the whole album is bounded by a timeout;
when it expires the caller treats the album as tag-less.
"""

from concurrent.futures import ThreadPoolExecutor, TimeoutError as FuturesTimeoutError
from pathlib import Path
from typing import Any, Callable, List, Optional
import logging

import mutagen
from mutagen import MutagenError

from filesystem.album_detector import AlbumDetector
from models.schemas import TrackMetadata
from utils.exceptions import (
    MetadataExtractionError, MetadataExtractionTimeout, NoAudioFilesError
)

logger = logging.getLogger(__name__)

TrackReader = Callable[[Path], TrackMetadata]

# Standard key -> tag names across ID3, Vorbis comments and MP4 atoms
TAG_MAPPING = {
    'title': ['TIT2', 'TITLE', '\xa9nam'],
    'artist': ['TPE1', 'ARTIST', '\xa9ART'],
    'album_artist': ['TPE2', 'ALBUMARTIST', 'ALBUM ARTIST', 'aART'],
    'album': ['TALB', 'ALBUM', '\xa9alb'],
    'year': ['TDRC', 'TYER', 'DATE', 'YEAR', 'ORIGINALDATE', '\xa9day'],
    'track_number': ['TRCK', 'TRACKNUMBER', 'trkn'],
    'disc_number': ['TPOS', 'DISCNUMBER', 'disk'],
    'label': ['TPUB', 'LABEL', 'ORGANIZATION', 'PUBLISHER', '----:com.apple.iTunes:LABEL'],
    'catalog_number': [
        'TXXX:CATALOGNUMBER', 'CATALOGNUMBER', 'CATALOG', 'LABELNO',
        '----:com.apple.iTunes:CATALOGNUMBER'
    ],
}

EXTENSION_FORMATS = {
    '.aif': 'AIFF',
    '.aiff': 'AIFF',
    '.alac': 'ALAC',
    '.oga': 'OGG',
}


def _tag_value(raw: Any) -> Any:
    """Reduce a mutagen tag value to a plain str or number tuple."""
    if isinstance(raw, list):
        if not raw:
            return None
        raw = raw[0]
    if isinstance(raw, tuple):
        return raw
    if isinstance(raw, bytes):
        return raw.decode('utf-8', errors='replace')
    if hasattr(raw, 'text'):
        # ID3 frames carry a list of text values
        text = raw.text
        if isinstance(text, list):
            return str(text[0]) if text else None
    return str(raw)


def detect_file_type(path: Path, audio_file: Any = None) -> str:
    """Format name for a file, looking at the MP4 codec to tell ALAC from AAC."""
    suffix = path.suffix.lower()

    if audio_file is not None and suffix in ('.m4a', '.mp4', '.alac'):
        codec = str(getattr(getattr(audio_file, 'info', None), 'codec', '') or '')
        if codec.lower() == 'alac':
            return 'ALAC'
        if codec:
            return 'AAC'

    return EXTENSION_FORMATS.get(suffix, suffix.lstrip('.').upper() or 'UNKNOWN')


def read_track_metadata(file_path: Path) -> TrackMetadata:
    """
    Read tags and stream info from one audio file with mutagen.

    Files mutagen does not recognize still yield a record with the format
    and size so the album can be classified.

    Raises:
        MetadataExtractionError: If the file cannot be read or parsed
    """
    try:
        size_bytes = file_path.stat().st_size
        audio_file = mutagen.File(str(file_path))
    except (MutagenError, OSError) as e:
        raise MetadataExtractionError(str(file_path), str(e))

    if audio_file is None:
        logger.debug(f"Format not recognized by mutagen: {file_path}")
        return TrackMetadata(path=file_path, file_type=detect_file_type(file_path), size_bytes=size_bytes)

    values = {}
    for standard_key, possible_keys in TAG_MAPPING.items():
        for key in possible_keys:
            try:
                if key not in audio_file:
                    continue
                value = _tag_value(audio_file[key])
            except (ValueError, KeyError, TypeError) as tag_error:
                logger.debug(f"Error reading tag {key} from {file_path}: {tag_error}")
                continue
            if value:
                values[standard_key] = value
                break

    info = getattr(audio_file, 'info', None)
    bitrate = int(getattr(info, 'bitrate', 0) or 0) // 1000
    duration = float(getattr(info, 'length', 0.0) or 0.0)

    return TrackMetadata(
        path=file_path,
        file_type=detect_file_type(file_path, audio_file),
        bitrate=bitrate,
        duration=duration,
        size_bytes=size_bytes,
        **values
    )


class MetadataExtractor:
    """Reads all track metadata of an album directory under a timeout."""

    def __init__(
        self,
        detector: AlbumDetector,
        timeout_seconds: float = 60.0,
        reader: Optional[TrackReader] = None
    ):
        self.detector = detector
        self.timeout_seconds = timeout_seconds
        self.reader = reader or read_track_metadata

    def extract_album(self, album_dir: Path) -> List[TrackMetadata]:
        """
        Extract metadata for every audio file of an album.

        Args:
            album_dir: Album directory

        Returns:
            One TrackMetadata per readable audio file, in disc/file order

        Raises:
            NoAudioFilesError: If the directory holds no audio files
            MetadataExtractionTimeout: If reading exceeds the timeout
            MetadataExtractionError: If no file could be read at all
        """
        files = self.detector.get_album_tracks(album_dir)
        if not files:
            raise NoAudioFilesError(str(album_dir))

        executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="tag-reader")
        future = executor.submit(self._read_all, album_dir, files)
        try:
            return future.result(timeout=self.timeout_seconds)
        except FuturesTimeoutError:
            future.cancel()
            logger.warning(f"Metadata extraction timed out after {self.timeout_seconds}s: {album_dir}")
            raise MetadataExtractionTimeout(str(album_dir), self.timeout_seconds)
        finally:
            executor.shutdown(wait=False)

    def _read_all(self, album_dir: Path, files: List[Path]) -> List[TrackMetadata]:
        # Untagged tracks in disc folders take their disc number from the folder order
        disc_numbers = {name: n for n, name in enumerate(self.detector.disc_subdirs(album_dir), 1)}

        tracks = []
        for file_path in files:
            try:
                track = self.reader(file_path)
            except MetadataExtractionError as e:
                logger.warning(str(e))
                continue
            if track.disc_number is None and file_path.parent != album_dir:
                disc = disc_numbers.get(file_path.parent.name)
                if disc is not None:
                    track = track.model_copy(update={'disc_number': disc})
            tracks.append(track)

        if not tracks:
            raise MetadataExtractionError(str(album_dir), "no readable audio files")

        logger.debug(f"Read metadata for {len(tracks)}/{len(files)} tracks in {album_dir}")
        return tracks
