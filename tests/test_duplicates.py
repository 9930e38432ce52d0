"""Tests for duplicate scoring, grouping, reporting and resolution."""

from pathlib import Path

import pytest

from conftest import AUDIO_EXTENSIONS, album_tags
from filesystem.album_detector import AlbumDetector
from filesystem.metadata_extractor import MetadataExtractor
from filesystem.move_executor import MoveExecutor
from models.schemas import (
    AlbumIdentity, DuplicateCandidate, OrganizationMode, OrganizationPlan, QualityClass,
    ResolutionStatus, RunMode, TrackMetadata
)
from pipeline.duplicates import (
    MB, DuplicateDetector, build_candidate, identity_hash, normalize_for_hash,
    quality_score, rank_members
)
from pipeline.identity import IdentityResolver
from storage.duplicates_store import DuplicatesStore
from storage.metadata_store import MetadataStore


def candidate(path, quality, size_mb=0, bitrate=0, formats="FLAC", hash_="h"):
    return DuplicateCandidate(
        path=path,
        album_artist="Artist",
        album_title="Album",
        normalized_artist="artist",
        normalized_title="album",
        track_count=10,
        total_size_bytes=size_mb * MB,
        quality_class=quality,
        avg_bitrate=bitrate,
        format_mix=formats,
        identity_hash=hash_,
    )


class TestQualityScore:
    def test_lossless_beats_high_bitrate_lossy(self):
        a = candidate("/lib/a", QualityClass.LOSSLESS, size_mb=600)
        b = candidate("/lib/b", QualityClass.LOSSY, size_mb=150, bitrate=320, formats="MP3")

        assert quality_score(a) == 1100
        assert quality_score(b) == 725

        members = rank_members([b, a])
        assert [m.candidate.path for m in members] == ["/lib/a", "/lib/b"]
        assert [m.keep for m in members] == [True, False]

    @pytest.mark.parametrize("bitrate,expected", [(320, 700), (256, 650), (192, 600), (128, 550), (96, 500)])
    def test_bitrate_bonus_applies_to_lossy(self, bitrate, expected):
        assert quality_score(candidate("/x", QualityClass.LOSSY, bitrate=bitrate, formats="MP3")) == expected

    def test_bitrate_ignored_for_lossless(self):
        assert quality_score(candidate("/x", QualityClass.LOSSLESS, bitrate=1411)) == 1000

    def test_mixed_formats_are_penalized(self):
        mixed = candidate("/x", QualityClass.MIXED, size_mb=250, formats="FLAC,MP3")

        assert quality_score(mixed) == 300 + 50 - 100

    def test_score_ties_go_to_smallest_path(self):
        members = rank_members([
            candidate("/lib/z", QualityClass.LOSSLESS),
            candidate("/lib/a", QualityClass.LOSSLESS),
        ])

        assert members[0].candidate.path == "/lib/a"
        assert sum(m.keep for m in members) == 1


class TestIdentityHash:
    def test_normalization_ignores_case_accents_and_punctuation(self):
        assert normalize_for_hash("Sigur Rós!") == "sigurros"
        assert identity_hash("Sigur Rós", "( )", "1999", 8) == identity_hash("sigur ros", "()", "1999", 8)

    def test_track_count_and_year_are_part_of_the_hash(self):
        base = identity_hash("A", "B", "2000", 10)

        assert base != identity_hash("A", "B", "2000", 11)
        assert base != identity_hash("A", "B", "2001", 10)
        assert identity_hash("A", "B", None, 10) == identity_hash("A", "B", None, 10)


def test_build_candidate_aggregates_tracks():
    tracks = [
        TrackMetadata(path=Path("/a/1.mp3"), file_type="mp3", bitrate=320, size_bytes=100),
        TrackMetadata(path=Path("/a/2.mp3"), file_type="mp3", bitrate=256, size_bytes=200),
    ]
    identity = AlbumIdentity(album_artist="Artist", album_title="Album", year="2000")

    result = build_candidate(Path("/a"), identity, tracks)

    assert result.track_count == 2
    assert result.total_size_bytes == 300
    assert result.avg_bitrate == 288
    assert result.quality_class == QualityClass.LOSSY
    assert result.format_mix == "MP3"


@pytest.fixture
def library(tmp_path, make_album):
    root = tmp_path / "library"
    tags = album_tags("Burial", "Untrue", "2007", count=2)
    make_album(root / "Lossless" / "Burial", "Untrue (2007)", tags, ext=".flac", size=4096)
    make_album(root / "Lossy" / "Burial", "Untrue (2007)", [dict(t, bitrate=320) for t in tags], ext=".mp3")
    make_album(root / "Lossless" / "Other", "Unique (2001)", album_tags("Other", "Unique", "2001", count=2))
    return root


@pytest.fixture
def detector_factory(tmp_path, reader):
    def _factory(run_mode=RunMode.DRY_RUN):
        album_detector = AlbumDetector(AUDIO_EXTENSIONS, [])
        return DuplicateDetector(
            store=DuplicatesStore(tmp_path / "state" / "dups.db"),
            detector=album_detector,
            extractor=MetadataExtractor(album_detector, reader=reader),
            resolver=IdentityResolver(),
            executor=MoveExecutor(MetadataStore(tmp_path / "state" / "meta.db"), run_mode),
        )
    return _factory


class TestDuplicateDetector:
    def test_scan_and_detect_groups_same_release(self, library, detector_factory):
        detector = detector_factory()

        candidates = detector.scan(library)
        groups = detector.detect(candidates)

        assert len(candidates) == 3
        assert len(groups) == 1
        group = groups[0]
        assert group.group_id is not None
        assert group.keeper.candidate.quality_class == QualityClass.LOSSLESS
        assert [m.candidate.quality_class for m in group.removable] == [QualityClass.LOSSY]

    def test_stored_groups_round_trip(self, library, detector_factory):
        detector = detector_factory()
        detector.detect(detector.scan(library))

        stored = detector.store.groups(ResolutionStatus.PENDING)

        assert len(stored) == 1
        assert stored[0].members[0].keep
        assert stored[0].recommended_keeper_id == stored[0].keeper.candidate.id

    def test_report_lists_keep_and_remove(self, library, detector_factory, tmp_path):
        detector = detector_factory()
        groups = detector.detect(detector.scan(library))

        report = detector.write_report(groups, tmp_path / "out" / "report.md").read_text()

        assert "# Duplicate Albums Report" in report
        assert "| KEEP |" in report
        assert "| REMOVE |" in report
        assert "Burial - Untrue (2007)" in report

    def test_dry_run_resolution_moves_nothing(self, library, detector_factory, tmp_path):
        detector = detector_factory(RunMode.DRY_RUN)
        groups = detector.detect(detector.scan(library))

        counts = detector.resolve(tmp_path / "backup", groups)

        assert counts == {'moved': 0, 'failed': 0, 'groups_resolved': 0}
        assert (library / "Lossy" / "Burial" / "Untrue (2007)").is_dir()
        assert not (tmp_path / "backup").exists()

    def test_live_resolution_relocates_non_keepers(self, library, detector_factory, tmp_path):
        detector = detector_factory(RunMode.LIVE)
        groups = detector.detect(detector.scan(library))

        counts = detector.resolve(tmp_path / "backup", groups)

        assert counts == {'moved': 1, 'failed': 0, 'groups_resolved': 1}
        assert not (library / "Lossy" / "Burial" / "Untrue (2007)").exists()
        assert (library / "Lossless" / "Burial" / "Untrue (2007)").is_dir()
        batches = list((tmp_path / "backup").iterdir())
        assert len(batches) == 1
        assert batches[0].name.startswith("duplicates_")
        assert (batches[0] / "Untrue (2007)").is_dir()
        assert detector.store.groups(ResolutionStatus.PENDING) == []

    def test_resolve_without_executor_fails(self, tmp_path):
        detector = DuplicateDetector(
            store=DuplicatesStore(tmp_path / "dups.db"),
            detector=AlbumDetector(AUDIO_EXTENSIONS, []),
            extractor=None,
            resolver=IdentityResolver(),
        )

        with pytest.raises(ValueError):
            detector.resolve(tmp_path / "backup", [])

    def test_resolution_removes_emptied_library_folders(self, library, detector_factory, tmp_path):
        detector = detector_factory(RunMode.LIVE)
        groups = detector.detect(detector.scan(library))

        detector.resolve(tmp_path / "backup", groups, library_root=library)

        assert not (library / "Lossy").exists()
        assert (library / "Lossless" / "Burial" / "Untrue (2007)").is_dir()


class TestUntaggedLibraryAlbums:
    def test_artist_folder_qualifies_the_album_folder(self, tmp_path, make_album, detector_factory):
        root = tmp_path / "library"
        make_album(root / "Lossless" / "Burial", "Untrue (2007)", [{}, {}])
        make_album(root / "Lossy" / "Burial", "Untrue (2007)", [{}, {}], ext=".mp3")

        detector = detector_factory()
        candidates = detector.scan(root)

        assert {(c.album_artist, c.album_title) for c in candidates} == {("Burial", "Untrue")}
        assert len(detector.detect(candidates)) == 1

    def test_recorded_identity_is_used_before_folder_names(self, tmp_path, make_album, reader):
        root = tmp_path / "library"
        album = make_album(root / "Lossless" / "Various Artists", "Summer Hits (2004)", [{}, {}])
        metadata_store = MetadataStore(tmp_path / "state" / "meta.db")
        identity = AlbumIdentity(
            album_artist="Various Artists", album_title="Summer Hits", year="2004", is_compilation=True
        )
        metadata_store.record_album(identity, OrganizationPlan(
            source=tmp_path / "incoming" / "VA - Summer Hits (2004)", destination=album,
            mode=OrganizationMode.COMPILATION, quality=QualityClass.LOSSLESS
        ), [])

        album_detector = AlbumDetector(AUDIO_EXTENSIONS, [])
        detector = DuplicateDetector(
            store=DuplicatesStore(tmp_path / "state" / "dups.db"),
            detector=album_detector,
            extractor=MetadataExtractor(album_detector, reader=reader),
            resolver=IdentityResolver(),
            metadata_store=metadata_store,
        )

        candidates = detector.scan(root)

        assert [(c.album_artist, c.album_title) for c in candidates] == [("Various Artists", "Summer Hits")]
