"""
Album identity reconstruction from directory names.

Used only when tags cannot produce an identity. An ordered list of
matchers is tried against the directory name and the first one that
fires wins. Values already known from tags take priority over parsed
ones. Confidence is a simple additive score over the fields recovered.
"""

import re
from typing import Dict, List, Optional
import logging

from models.schemas import AlbumIdentity, ReconstructionResult

logger = logging.getLogger(__name__)

BASE_CONFIDENCE = 50
ARTIST_WEIGHT = 30
TITLE_WEIGHT = 20
YEAR_WEIGHT = 10
DEFAULT_MIN_CONFIDENCE = 70

REJECTION_REASON = "insufficient reconstructed metadata"

_YEAR = r'(?:19|20)\d{2}'


def score_confidence(artist: Optional[str], title: Optional[str], year: Optional[str]) -> int:
    """Raw confidence for a set of recovered fields; may exceed 100."""
    confidence = BASE_CONFIDENCE
    if artist:
        confidence += ARTIST_WEIGHT
    if title:
        confidence += TITLE_WEIGHT
    if year:
        confidence += YEAR_WEIGHT
    return confidence


def label_from_catalog(catalog: Optional[str]) -> Optional[str]:
    """Leading letters of a catalog number, e.g. 'WARPCD123' -> 'WARPCD'."""
    if not catalog:
        return None
    match = re.match(r'^([A-Za-z]+)', catalog)
    return match.group(1).upper() if match else None


def _clean(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = ' '.join(value.split()).strip(' -_.')
    return value or None


class Matcher:
    """One directory-name convention."""

    name = "matcher"
    pattern: re.Pattern

    def match(self, directory_name: str) -> Optional[Dict[str, Optional[str]]]:
        found = self.pattern.match(directory_name)
        if not found:
            return None
        fields = {k: _clean(v) for k, v in found.groupdict().items()}
        return self.finish(fields)

    def finish(self, fields: Dict[str, Optional[str]]) -> Dict[str, Optional[str]]:
        return fields


class SceneReleaseMatcher(Matcher):
    """artist-title-catalog-year-group, lower case, underscores for spaces."""

    name = "scene"
    pattern = re.compile(
        rf'^(?P<artist>[a-z0-9_.&\']+)-(?P<title>[a-z0-9_.&\'()+-]+?)-(?P<catalog_number>[a-z0-9]+)'
        rf'-(?P<year>{_YEAR})-(?P<group>[a-z0-9]+)$',
        re.IGNORECASE
    )

    def match(self, directory_name: str) -> Optional[Dict[str, Optional[str]]]:
        if ' ' in directory_name:
            return None
        return super().match(directory_name)

    def finish(self, fields):
        fields.pop('group', None)
        for key in ('artist', 'title'):
            if fields.get(key):
                fields[key] = _clean(fields[key].replace('_', ' '))
        if fields.get('catalog_number'):
            fields['catalog_number'] = fields['catalog_number'].upper()
        return fields


class BracketedCatalogMatcher(Matcher):
    """[CATALOG] Artist - Title (Year)"""

    name = "bracketed_catalog"
    pattern = re.compile(
        rf'^\[(?P<catalog_number>[A-Za-z0-9][A-Za-z0-9 ._-]*)\]\s*(?P<artist>.+?)\s+-\s+(?P<title>.+?)'
        rf'(?:\s*\((?P<year>{_YEAR})\))?$'
    )

    def finish(self, fields):
        fields['label'] = label_from_catalog(fields.get('catalog_number'))
        return fields


class StandardMatcher(Matcher):
    """Artist - Title (Year) [Label]"""

    name = "standard"
    pattern = re.compile(
        rf'^(?P<artist>[^\[\]()]+?)\s+-\s+(?P<title>.+?)\s*\((?P<year>{_YEAR})\)'
        rf'(?:\s*\[(?P<label>[^\]]+)\])?$'
    )


class YearPrefixMatcher(Matcher):
    """(Year) Title, with trailing [format] tags ignored."""

    name = "year_prefix"
    pattern = re.compile(rf'^\((?P<year>{_YEAR})\)\s*(?P<title>.+?)(?:\s*\[[^\]]*\])*$')


class GenericSplitMatcher(Matcher):
    """Artist - Title, only when exactly one ' - ' separator exists."""

    name = "generic"
    pattern = re.compile(r'^(?P<artist>.+?)\s+-\s+(?P<title>.+)$')

    def match(self, directory_name: str) -> Optional[Dict[str, Optional[str]]]:
        if directory_name.count(' - ') != 1:
            return None
        return super().match(directory_name)


DEFAULT_MATCHERS = (
    SceneReleaseMatcher(),
    BracketedCatalogMatcher(),
    StandardMatcher(),
    YearPrefixMatcher(),
    GenericSplitMatcher(),
)


class ReconstructionEngine:
    """Infers an album identity from a directory name."""

    def __init__(self, min_confidence: int = DEFAULT_MIN_CONFIDENCE, matchers: Optional[List[Matcher]] = None):
        self.min_confidence = min_confidence
        self.matchers = list(matchers) if matchers is not None else list(DEFAULT_MATCHERS)

    def parse(self, directory_name: str):
        """Run the matchers in order. Returns (matcher name, fields) or (None, {})."""
        name = directory_name.strip()
        for matcher in self.matchers:
            fields = matcher.match(name)
            if fields:
                logger.debug(f"Matcher '{matcher.name}' fired for '{directory_name}': {fields}")
                return matcher.name, fields
        return None, {}

    def reconstruct(self, directory_name: str, known: Optional[AlbumIdentity] = None) -> ReconstructionResult:
        """
        Reconstruct an identity from a directory name.

        Args:
            directory_name: Album directory basename
            known: Identity fields already read from tags; these win over
                parsed values

        Returns:
            ReconstructionResult, accepted when the confidence reaches the
            threshold and an artist is known
        """
        matcher_name, fields = self.parse(directory_name)
        known = known or AlbumIdentity()

        artist = known.album_artist or fields.get('artist')
        title = known.album_title or fields.get('title')
        year = known.year or fields.get('year')
        label = known.label or fields.get('label')
        catalog = known.catalog_number or fields.get('catalog_number')

        confidence = score_confidence(artist, title, year)
        accepted = confidence >= self.min_confidence and bool(artist)

        if accepted and not title:
            title = directory_name.strip()

        result = ReconstructionResult(
            directory_name=directory_name,
            matcher=matcher_name,
            artist=artist,
            title=title,
            year=year,
            label=label,
            catalog_number=catalog,
            confidence=confidence,
            accepted=accepted,
            reason=None if accepted else REJECTION_REASON,
        )

        if accepted:
            logger.info(
                f"Reconstructed '{directory_name}' (confidence {result.display_confidence}/100): "
                f"{artist} - {title}"
            )
        else:
            logger.warning(
                f"Reconstruction rejected for '{directory_name}' (confidence {result.display_confidence}/100)"
            )
        return result
