"""Tests for configuration loading and run settings."""

import os
from pathlib import Path

import pytest
import yaml

from models.schemas import OrganizationStrategy, RunMode
from utils.config_loader import (
    STATE_DB_NAME, build_settings, get_config_template, load_config, parse_alias_groups
)
from utils.exceptions import ConfigurationError


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in list(os.environ):
        if name.startswith("ORDR_"):
            monkeypatch.delenv(name)


def write_config(tmp_path, data) -> Path:
    path = tmp_path / "config.yaml"
    path.write_text(yaml.safe_dump(data), encoding="utf-8")
    return path


class TestLoadConfig:
    def test_defaults_without_file(self, tmp_path):
        config = load_config(tmp_path / "missing.yaml")

        assert config['processing']['dry_run'] is True
        assert config['processing']['workers'] == 1
        assert config['organization']['strategy'] == "artist"
        assert config['reconstruction']['min_confidence'] == 70
        assert '.flac' in config['filesystem']['audio_extensions']

    def test_file_values_are_merged_over_defaults(self, tmp_path):
        path = write_config(tmp_path, {'organization': {'strategy': 'hybrid'}})

        config = load_config(path)

        assert config['organization']['strategy'] == "hybrid"
        assert config['organization']['min_label_releases'] == 3

    def test_environment_overrides(self, tmp_path, monkeypatch):
        monkeypatch.setenv("ORDR_PROCESSING__WORKERS", "4")
        monkeypatch.setenv("ORDR_PROCESSING__DRY_RUN", "false")
        monkeypatch.setenv("ORDR_FILESYSTEM__IGNORED_DIRS", '["scans"]')

        config = load_config(None)

        assert config['processing']['workers'] == 4
        assert config['processing']['dry_run'] is False
        assert config['filesystem']['ignored_dirs'] == ["scans"]

    @pytest.mark.parametrize("data", [
        {'organization': {'strategy': 'genre'}},
        {'processing': {'workers': 0}},
        {'processing': {'extraction_timeout_seconds': -1}},
        {'processing': {'state_retention_days': -5}},
        {'reconstruction': {'min_confidence': 200}},
        {'filesystem': {'audio_extensions': []}},
        {'logging': {'level': 'LOUD'}},
    ])
    def test_invalid_values_raise(self, tmp_path, data):
        with pytest.raises(ConfigurationError):
            load_config(write_config(tmp_path, data))

    def test_invalid_yaml_raises(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("organization: [unclosed", encoding="utf-8")

        with pytest.raises(ConfigurationError):
            load_config(path)

    def test_template_is_valid_config(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(get_config_template(), encoding="utf-8")

        load_config(path)


class TestAliasGroups:
    def test_pipe_separated_string(self):
        assert parse_alias_groups("Aphex Twin,AFX|Moodymann,KDJ") == [["Aphex Twin", "AFX"], ["Moodymann", "KDJ"]]

    def test_list_forms(self):
        assert parse_alias_groups([["A", "B"], "C,D"]) == [["A", "B"], ["C", "D"]]

    def test_whitespace_is_preserved_for_validation(self):
        assert parse_alias_groups("A , B") == [["A ", " B"]]

    def test_invalid_entry_raises(self):
        with pytest.raises(ConfigurationError):
            parse_alias_groups([42])

    def test_empty(self):
        assert parse_alias_groups(None) == []


class TestBuildSettings:
    def test_defaults_derive_from_source(self, tmp_path):
        settings = build_settings(load_config(None), source=tmp_path / "in", state_dir=tmp_path / "state")

        assert settings.destination_root == (tmp_path / "in" / "sorted_music").resolve()
        assert settings.holding_root == (tmp_path / "in" / "unsorted").resolve()
        assert settings.output_dir == settings.state_dir
        assert settings.state_db == settings.state_dir / STATE_DB_NAME
        assert settings.run_mode == RunMode.DRY_RUN
        assert settings.is_dry_run

    def test_cli_overrides_win(self, tmp_path):
        settings = build_settings(
            load_config(None),
            source=tmp_path / "in",
            destination=tmp_path / "lib",
            state_dir=tmp_path / "state",
            move=True,
            workers=3,
            organization_mode="label",
            enable_electronic=True,
            incremental=True,
        )

        assert settings.destination_root == (tmp_path / "lib").resolve()
        assert settings.run_mode == RunMode.LIVE
        assert settings.workers == 3
        assert settings.incremental
        assert settings.planner.strategy == OrganizationStrategy.LABEL
        assert settings.planner.enable_electronic

    def test_duplicates_backup_sits_beside_the_library(self, tmp_path):
        settings = build_settings(load_config(None), source=tmp_path / "in", state_dir=tmp_path / "state")

        assert settings.duplicates_backup_root == (tmp_path / "in" / "duplicates_backup").resolve()
        assert build_settings(load_config(None), state_dir=tmp_path).duplicates_backup_root is None

    def test_state_retention_is_read_from_processing(self, tmp_path):
        config = load_config(write_config(tmp_path, {'processing': {'state_retention_days': 90}}))

        assert build_settings(config, state_dir=tmp_path).state_retention_days == 90
        assert build_settings(load_config(None), state_dir=tmp_path).state_retention_days == 0

    def test_none_overrides_are_ignored(self, tmp_path):
        config = load_config(None)
        config['processing']['workers'] = 2

        settings = build_settings(config, source=tmp_path, state_dir=tmp_path, workers=None)

        assert settings.workers == 2

    def test_extensions_are_normalized(self, tmp_path):
        config = load_config(None)
        config['filesystem']['audio_extensions'] = ["FLAC", ".Mp3"]

        settings = build_settings(config, state_dir=tmp_path)

        assert settings.audio_extensions == (".flac", ".mp3")

    def test_alias_groups_become_tuples(self, tmp_path):
        config = load_config(None)
        config['aliases']['groups'] = "A,B|C,D"

        settings = build_settings(config, state_dir=tmp_path)

        assert settings.alias_groups == (("A", "B"), ("C", "D"))

    def test_unknown_mode_raises(self, tmp_path):
        with pytest.raises(ConfigurationError):
            build_settings(load_config(None), state_dir=tmp_path, organization_mode="genre")

    def test_without_source_paths_stay_unset(self, tmp_path):
        settings = build_settings(load_config(None), state_dir=tmp_path)

        assert settings.source_root is None
        assert settings.destination_root is None
