"""
Pluggable metadata enrichment.

An enrichment lookup may supply a label, catalog number or year for an
album. It only ever fills gaps; values already known are kept. The
default lookup does nothing.
"""

from abc import ABC, abstractmethod
from typing import Optional, TypedDict
import logging

from models.schemas import AlbumIdentity

logger = logging.getLogger(__name__)


class EnrichmentData(TypedDict, total=False):
    label: Optional[str]
    catalog_number: Optional[str]
    year: Optional[str]


class EnrichmentLookup(ABC):
    """Source of optional release details for an album identity."""

    @abstractmethod
    def lookup(self, identity: AlbumIdentity) -> Optional[EnrichmentData]:
        """Return whatever is known about the release, or None."""


class NullEnrichment(EnrichmentLookup):
    def lookup(self, identity: AlbumIdentity) -> Optional[EnrichmentData]:
        return None


def apply_enrichment(identity: AlbumIdentity, lookup: EnrichmentLookup) -> AlbumIdentity:
    """
    Fill missing label, catalog number and year from a lookup.

    A failing lookup is logged and the identity is returned unchanged.
    """
    if identity.label and identity.catalog_number and identity.year:
        return identity

    try:
        data = lookup.lookup(identity)
    except Exception as e:
        logger.warning(
            f"Enrichment lookup failed for {identity.album_artist} - {identity.album_title}: {e}"
        )
        return identity

    if not data:
        return identity

    updates = {}
    for key in ('label', 'catalog_number', 'year'):
        value = data.get(key)
        if value and not getattr(identity, key):
            updates[key] = value

    if not updates:
        return identity

    logger.debug(f"Enriched {identity.album_artist} - {identity.album_title} with {sorted(updates)}")
    return AlbumIdentity.model_validate({**identity.model_dump(), **updates})
