"""
Album identity resolution from per-track tags.

The album artist is the unanimous AlbumArtist tag, else the unanimous
Artist tag, else "Various Artists". The title is the most frequent Album
tag and the year the earliest one found. Remix releases are recognized
from the album and track titles.
"""

import re
from collections import Counter
from pathlib import Path
from typing import List, Optional, Sequence, Tuple
import logging

from filesystem.file_ops import sanitize_path_segment
from models.schemas import AlbumIdentity, IdentitySource, TrackMetadata
from pipeline.aliases import AliasResolver, normalize_name
from utils.exceptions import EssentialMetadataMissingError

logger = logging.getLogger(__name__)

VARIOUS_ARTISTS = "Various Artists"

VA_PATTERN = re.compile(r'^(?:various(?:\s+artists?)?|va|v\.\s?a\.?|v/a|compilation)$', re.IGNORECASE)

REMIX_KEYWORDS = r'(?:remix(?:es|ed)?|rmx|rework|re-?edit|edit|dub|bootleg|refix|flip|mix)'
REMIX_PATTERN = re.compile(rf'\b{REMIX_KEYWORDS}\b', re.IGNORECASE)
NOT_REMIX_PATTERN = re.compile(r'\b(?:original|album|radio)\s+(?:mix|edit|version)\b', re.IGNORECASE)
REMIXER_PATTERN = re.compile(rf'[(\[]\s*([^()\[\]]+?)\s+{REMIX_KEYWORDS}\s*[)\]]', re.IGNORECASE)

YEAR_PATTERN = re.compile(r'^\s*(\d{4})')


def is_various_artists(name: Optional[str]) -> bool:
    return bool(name) and bool(VA_PATTERN.match(name.strip()))


def mark_compilation(identity: AlbumIdentity) -> AlbumIdentity:
    """Give a various-artists identity the canonical artist and the compilation flag."""
    if identity.is_compilation or is_various_artists(identity.album_artist):
        return identity.model_copy(update={'album_artist': VARIOUS_ARTISTS, 'is_compilation': True})
    return identity


def is_remix_title(title: Optional[str]) -> bool:
    if not title:
        return False
    return bool(REMIX_PATTERN.search(NOT_REMIX_PATTERN.sub('', title)))


def extract_remixer(title: Optional[str]) -> Optional[str]:
    """'Track (Someone Remix)' -> 'Someone'."""
    if not title:
        return None
    for match in REMIXER_PATTERN.finditer(title):
        name = match.group(1).strip()
        if name and not NOT_REMIX_PATTERN.search(match.group(0)):
            return name
    return None


def parse_year(value: Optional[str]) -> Optional[str]:
    if not value:
        return None
    match = YEAR_PATTERN.match(value)
    if not match or match.group(1) == '0000':
        return None
    return match.group(1)


def _unanimous(values: Sequence[str]) -> Optional[str]:
    """The shared value if every entry agrees (ignoring case and accents)."""
    if not values:
        return None
    keys = {normalize_name(v) for v in values}
    return values[0] if len(keys) == 1 else None


def _most_frequent(values: Sequence[str]) -> Optional[str]:
    """Most common value, ties going to the one seen first."""
    if not values:
        return None
    counts = Counter(values)
    first_seen = {}
    for index, value in enumerate(values):
        first_seen.setdefault(value, index)
    return max(counts, key=lambda v: (counts[v], -first_seen[v]))


def _first(values: Sequence[Optional[str]]) -> Optional[str]:
    for value in values:
        if value:
            return value
    return None


class IdentityResolver:
    """Derives an AlbumIdentity from the tags of an album's tracks."""

    def __init__(self, aliases: Optional[AliasResolver] = None):
        self.aliases = aliases or AliasResolver()

    def build(self, tracks: List[TrackMetadata]) -> AlbumIdentity:
        """
        Build the identity the tags alone support, possibly incomplete.

        Args:
            tracks: Non-empty list of track metadata
        """
        artist, is_compilation = self._resolve_artist(tracks)

        title = _most_frequent([t.album for t in tracks if t.album]) or ""

        years = sorted(y for y in (parse_year(t.year) for t in tracks) if y)
        is_remix, remixer = self._detect_remix(title, tracks)

        return AlbumIdentity(
            album_artist=artist,
            album_title=title,
            year=years[0] if years else None,
            label=_first([t.label for t in tracks]),
            catalog_number=_first([t.catalog_number for t in tracks]),
            is_compilation=is_compilation,
            is_remix=is_remix,
            remixer=remixer,
            source=IdentitySource.TAGS,
        )

    def resolve(self, tracks: List[TrackMetadata], album_dir: Path) -> AlbumIdentity:
        """
        Resolve a complete identity from tags.

        An album with an artist but no album tag takes its sanitized
        directory name as the title.

        Raises:
            EssentialMetadataMissingError: If artist or title cannot be derived;
                the tag-only identity is attached as ``partial``
        """
        identity = self.build(tracks)

        if identity.album_artist and not identity.album_title:
            fallback = sanitize_path_segment(album_dir.name, fallback="")
            if fallback:
                logger.warning(f"No album tag in {album_dir}, using directory name as title: '{fallback}'")
                identity = identity.model_copy(update={'album_title': fallback})

        missing = identity.missing_fields()
        if missing:
            raise EssentialMetadataMissingError(str(album_dir), missing, partial=identity)

        logger.debug(
            f"Resolved identity from tags: {identity.album_artist} - {identity.album_title} "
            f"({identity.year or 'no year'})"
        )
        return identity

    def _resolve_artist(self, tracks: List[TrackMetadata]) -> Tuple[str, bool]:
        album_artists = [self.aliases.resolve(t.album_artist) for t in tracks if t.album_artist]
        artists = [self.aliases.resolve(t.artist) for t in tracks if t.artist]

        artist = _unanimous(album_artists) or _unanimous(artists)
        if artist is None:
            if not album_artists and not artists:
                return "", False
            return VARIOUS_ARTISTS, True

        if is_various_artists(artist):
            return VARIOUS_ARTISTS, True

        return artist, False

    def _detect_remix(self, title: str, tracks: List[TrackMetadata]) -> Tuple[bool, Optional[str]]:
        track_titles = [t.title for t in tracks if t.title]
        remix_titles = [t for t in track_titles if is_remix_title(t)]

        is_remix = is_remix_title(title) or (
            bool(track_titles) and len(remix_titles) * 2 >= len(track_titles)
        )
        if not is_remix:
            return False, None

        remixers = [r for r in (extract_remixer(t) for t in [title] + remix_titles) if r]
        remixer = _most_frequent(remixers)
        if remixer:
            remixer = self.aliases.resolve(remixer)
        return True, remixer
