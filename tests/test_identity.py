"""Tests for album identity resolution from tags."""

from pathlib import Path

import pytest

from models.schemas import TrackMetadata
from pipeline.aliases import AliasResolver
from pipeline.identity import (
    VARIOUS_ARTISTS, IdentityResolver, extract_remixer, is_remix_title, parse_year
)
from utils.exceptions import EssentialMetadataMissingError

ALBUM_DIR = Path("/music/incoming/Some Album")


def track(n, **tags):
    return TrackMetadata(path=ALBUM_DIR / f"{n:02d}.flac", file_type="flac", track_number=n, **tags)


class TestArtistResolution:
    def test_unanimous_album_artist_is_used_verbatim(self):
        tracks = [track(n, album_artist="Moodymann", artist=f"Guest {n}", album="Silentintroduction")
                  for n in range(1, 4)]

        identity = IdentityResolver().resolve(tracks, ALBUM_DIR)

        assert identity.album_artist == "Moodymann"
        assert not identity.is_compilation

    def test_falls_back_to_unanimous_artist(self):
        tracks = [track(n, artist="Theo Parrish", album="First Floor") for n in range(1, 4)]

        identity = IdentityResolver().resolve(tracks, ALBUM_DIR)

        assert identity.album_artist == "Theo Parrish"

    def test_case_and_accent_variants_count_as_unanimous(self):
        tracks = [
            track(1, artist="Björk", album="Post"),
            track(2, artist="bjork", album="Post"),
        ]

        identity = IdentityResolver().resolve(tracks, ALBUM_DIR)

        assert identity.album_artist == "Björk"

    def test_distinct_artists_make_a_compilation(self):
        tracks = [
            track(1, artist="Artist A", album="Sampler"),
            track(2, artist="Artist B", album="Sampler"),
        ]

        identity = IdentityResolver().resolve(tracks, ALBUM_DIR)

        assert identity.album_artist == VARIOUS_ARTISTS
        assert identity.is_compilation

    @pytest.mark.parametrize("name", ["VA", "Various", "various artists", "V/A"])
    def test_various_artists_spellings(self, name):
        tracks = [track(n, album_artist=name, album="Sampler") for n in range(1, 3)]

        identity = IdentityResolver().resolve(tracks, ALBUM_DIR)

        assert identity.album_artist == VARIOUS_ARTISTS
        assert identity.is_compilation

    def test_aliases_are_resolved_before_comparing(self):
        aliases = AliasResolver([["Aphex Twin", "AFX", "Polygon Window"]])
        tracks = [
            track(1, artist="AFX", album="Analord"),
            track(2, artist="Polygon Window", album="Analord"),
        ]

        identity = IdentityResolver(aliases).resolve(tracks, ALBUM_DIR)

        assert identity.album_artist == "Aphex Twin"
        assert not identity.is_compilation


class TestTitleAndYear:
    def test_most_frequent_album_title_wins(self):
        tracks = [
            track(1, artist="X", album="Real Title"),
            track(2, artist="X", album="Real Title"),
            track(3, artist="X", album="Typo Title"),
        ]

        assert IdentityResolver().resolve(tracks, ALBUM_DIR).album_title == "Real Title"

    def test_earliest_year_is_used(self):
        tracks = [
            track(1, artist="X", album="A", year="2004-05-01"),
            track(2, artist="X", album="A", year="1998"),
            track(3, artist="X", album="A", year="0000"),
        ]

        assert IdentityResolver().resolve(tracks, ALBUM_DIR).year == "1998"

    def test_directory_name_used_when_album_tag_missing(self):
        tracks = [track(1, artist="X"), track(2, artist="X")]

        identity = IdentityResolver().resolve(tracks, Path("/music/Some: Album"))

        assert identity.album_title == "Some Album"

    def test_label_and_catalog_come_from_first_tagged_track(self):
        tracks = [
            track(1, artist="X", album="A"),
            track(2, artist="X", album="A", label="Warp", catalog_number="WARP123"),
        ]

        identity = IdentityResolver().resolve(tracks, ALBUM_DIR)

        assert identity.label == "Warp"
        assert identity.catalog_number == "WARP123"


class TestMissingMetadata:
    def test_no_artist_raises_with_partial_identity(self):
        tracks = [track(1, album="Untitled", year="2001"), track(2, album="Untitled")]

        with pytest.raises(EssentialMetadataMissingError) as exc_info:
            IdentityResolver().resolve(tracks, ALBUM_DIR)

        error = exc_info.value
        assert error.missing == ["album_artist"]
        assert error.partial.album_title == "Untitled"
        assert error.partial.year == "2001"

    def test_build_does_not_raise(self):
        identity = IdentityResolver().build([track(1)])

        assert not identity.is_complete
        assert identity.missing_fields() == ["album_artist", "album_title"]


class TestRemixDetection:
    def test_remix_album_title(self):
        tracks = [track(n, artist="X", album="Versions (Remixes)", title=f"Song {n}") for n in range(1, 3)]

        assert IdentityResolver().resolve(tracks, ALBUM_DIR).is_remix

    def test_majority_of_remixed_tracks(self):
        tracks = [
            track(1, artist="X", album="Singles", title="Song (Carl Craig Remix)"),
            track(2, artist="X", album="Singles", title="Other (Carl Craig Remix)"),
            track(3, artist="X", album="Singles", title="Original"),
        ]

        identity = IdentityResolver().resolve(tracks, ALBUM_DIR)

        assert identity.is_remix
        assert identity.remixer == "Carl Craig"

    def test_original_mix_is_not_a_remix(self):
        assert not is_remix_title("Song (Original Mix)")
        assert is_remix_title("Song (Dub)")

    def test_extract_remixer(self):
        assert extract_remixer("Track [Someone Rework]") == "Someone"
        assert extract_remixer("Track (Radio Edit)") is None


@pytest.mark.parametrize("value,expected", [
    ("2004", "2004"),
    ("2004-05-01", "2004"),
    ("0000", None),
    ("unknown", None),
    (None, None),
])
def test_parse_year(value, expected):
    assert parse_year(value) == expected
