"""Tests for the command line entry point and its exit codes."""

import logging
import os

import pytest

import main
from storage.locking import ProcessLock
from utils.config_loader import STATE_DB_NAME
from utils.exceptions import DependencyMissingError


@pytest.fixture(autouse=True)
def isolated(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    for name in list(os.environ):
        if name.startswith("ORDR_"):
            monkeypatch.delenv(name)

    root = logging.getLogger()
    saved_handlers, saved_level = list(root.handlers), root.level
    yield
    for handler in list(root.handlers):
        if handler not in saved_handlers:
            root.removeHandler(handler)
            handler.close()
    root.handlers[:] = saved_handlers
    root.setLevel(saved_level)


def make_source(tmp_path):
    album = tmp_path / "incoming" / "Burial - Untrue (2007)"
    album.mkdir(parents=True)
    (album / "01.mp3").write_bytes(b"\0" * 32)
    return tmp_path / "incoming"


def test_dry_run_exits_zero_and_moves_nothing(tmp_path):
    source = make_source(tmp_path)

    code = main.main(["-s", str(source), "-d", str(tmp_path / "lib"), "--state-dir", str(tmp_path / "state")])

    assert code == 0
    assert (source / "Burial - Untrue (2007)" / "01.mp3").exists()
    assert not (tmp_path / "lib").exists()
    assert (tmp_path / "state" / "processing_summary.json").exists()
    assert (tmp_path / "state" / "ordr.log").exists()


def test_live_run_organizes(tmp_path):
    source = make_source(tmp_path)

    code = main.main([
        "-s", str(source), "-d", str(tmp_path / "lib"),
        "--state-dir", str(tmp_path / "state"), "--move",
    ])

    assert code == 0
    assert (tmp_path / "lib" / "Lossy" / "Burial" / "Untrue (2007)" / "01.mp3").exists()


def test_missing_source_is_a_configuration_error(tmp_path):
    assert main.main(["-s", str(tmp_path / "nope"), "--state-dir", str(tmp_path / "state")]) == 1


def test_source_is_required(tmp_path):
    assert main.main(["--state-dir", str(tmp_path / "state")]) == 1


def test_locked_database_refuses_to_start(tmp_path):
    source = make_source(tmp_path)
    state = tmp_path / "state"

    with ProcessLock(state / STATE_DB_NAME):
        code = main.main(["-s", str(source), "--state-dir", str(state)])

    assert code == 1


def test_duplicates_mode_needs_existing_destination(tmp_path):
    code = main.main(["-d", str(tmp_path / "missing"), "--find-duplicates", "--state-dir", str(tmp_path / "s")])

    assert code == 1


def test_invalid_config_file(tmp_path):
    config = tmp_path / "config.yaml"
    config.write_text("organization:\n  strategy: genre\n", encoding="utf-8")
    source = make_source(tmp_path)

    assert main.main(["-s", str(source), "--config", str(config), "--state-dir", str(tmp_path / "s")]) == 1


def test_missing_dependency(tmp_path, monkeypatch):
    def missing():
        raise DependencyMissingError("mutagen", "pip install mutagen")
    monkeypatch.setattr(main, "check_dependencies", missing)

    assert main.main(["-s", str(tmp_path)]) == 1


def test_parse_arguments_defaults():
    args = main.parse_arguments(["-s", "/music"])

    assert not args.move
    assert args.incremental is None
    assert args.organization_mode is None
    assert not args.find_duplicates
