"""Tests for the enrichment hook."""

from models.schemas import AlbumIdentity
from pipeline.enrichment import EnrichmentLookup, NullEnrichment, apply_enrichment


class StaticLookup(EnrichmentLookup):
    def __init__(self, data=None, error=None):
        self.data = data
        self.error = error
        self.calls = 0

    def lookup(self, identity):
        self.calls += 1
        if self.error:
            raise self.error
        return self.data


IDENTITY = AlbumIdentity(album_artist="Burial", album_title="Untrue", year="2007")


def test_fills_only_missing_fields():
    lookup = StaticLookup({'label': "Hyperdub", 'catalog_number': "HDBCD002", 'year': "1999"})

    enriched = apply_enrichment(IDENTITY, lookup)

    assert enriched.label == "Hyperdub"
    assert enriched.catalog_number == "HDBCD002"
    assert enriched.year == "2007"


def test_complete_identity_skips_lookup():
    complete = IDENTITY.model_copy(update={'label': "Hyperdub", 'catalog_number': "HDBCD002"})
    lookup = StaticLookup({'label': "Other"})

    assert apply_enrichment(complete, lookup) is complete
    assert lookup.calls == 0


def test_failing_lookup_keeps_identity():
    assert apply_enrichment(IDENTITY, StaticLookup(error=TimeoutError("slow"))) == IDENTITY


def test_null_enrichment_changes_nothing():
    assert apply_enrichment(IDENTITY, NullEnrichment()) == IDENTITY
