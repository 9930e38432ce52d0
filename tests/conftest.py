"""Shared fixtures: synthetic album directories and a tag reader that needs no real audio."""

from pathlib import Path
from typing import Dict

import pytest

from models.schemas import RunMode, TrackMetadata
from utils.config_loader import PlannerSettings, RunSettings

AUDIO_EXTENSIONS = ('.flac', '.mp3', '.m4a', '.wav', '.ogg')


class FakeTagReader:
    """
    Stands in for the mutagen reader.

    Tags are registered per file name; every file gets its format from the
    extension and its size from disk.
    """

    def __init__(self):
        self.tags: Dict[str, dict] = {}
        self.calls = 0

    def add(self, path: Path, **tags):
        self.tags[str(path)] = tags

    def __call__(self, path: Path) -> TrackMetadata:
        self.calls += 1
        tags = dict(self.tags.get(str(path), {}))
        tags.setdefault('size_bytes', path.stat().st_size)
        return TrackMetadata(path=path, file_type=path.suffix, **tags)


@pytest.fixture
def reader():
    return FakeTagReader()


@pytest.fixture
def make_album(reader):
    """
    Create an album directory with one small file per track.

    Each track dict may carry tags for the fake reader and an optional
    'ext' for the file extension.
    """

    def _make(parent: Path, name: str, tracks=None, ext='.flac', size=16):
        album_dir = parent / name
        album_dir.mkdir(parents=True, exist_ok=True)
        for index, tags in enumerate(tracks or [{}], 1):
            tags = dict(tags)
            suffix = tags.pop('ext', ext)
            path = album_dir / f"track{index:02d}{suffix}"
            path.write_bytes(b"\0" * size)
            reader.add(path, **tags)
        return album_dir

    return _make


def album_tags(artist, album, year=None, count=3, **extra):
    """Consistent tags for every track of an album."""
    return [
        dict(artist=artist, album_artist=artist, album=album, year=year,
             title=f"Track {n}", track_number=n, **extra)
        for n in range(1, count + 1)
    ]


@pytest.fixture
def settings_factory(tmp_path):
    def _settings(**kwargs):
        source = tmp_path / "incoming"
        source.mkdir(exist_ok=True)
        values = dict(
            source_root=source,
            destination_root=tmp_path / "library",
            holding_root=tmp_path / "unsorted",
            state_dir=tmp_path / "state",
            output_dir=tmp_path / "output",
            run_mode=RunMode.LIVE,
            audio_extensions=AUDIO_EXTENSIONS,
            ignored_dirs=('artwork',),
            planner=PlannerSettings(),
        )
        values.update(kwargs)
        return RunSettings(**values)

    return _settings
