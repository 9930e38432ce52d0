"""Audio quality classification from the set of formats in an album."""

from typing import Iterable

from models.schemas import QualityClass

LOSSLESS_FORMATS = frozenset({'FLAC', 'WAV', 'AIFF', 'ALAC'})
LOSSY_FORMATS = frozenset({'MP3', 'AAC', 'M4A', 'OGG'})

_FORMAT_ALIASES = {
    'AIF': 'AIFF',
    'OGA': 'OGG',
    'VORBIS': 'OGG',
}


def normalize_format(name: str) -> str:
    """'.flac', 'flac' and 'FLAC' all become 'FLAC'."""
    name = (name or '').strip().lstrip('.').upper()
    return _FORMAT_ALIASES.get(name, name)


def classify_quality(formats: Iterable[str]) -> QualityClass:
    """
    Classify an album by the formats of its audio files.

    Lossless and lossy files together make the album Mixed; an album with
    neither (or no files) is Unknown.
    """
    found = {normalize_format(f) for f in formats if f}

    has_lossless = bool(found & LOSSLESS_FORMATS)
    has_lossy = bool(found & LOSSY_FORMATS)

    if has_lossless and has_lossy:
        return QualityClass.MIXED
    if has_lossless:
        return QualityClass.LOSSLESS
    if has_lossy:
        return QualityClass.LOSSY
    return QualityClass.UNKNOWN
