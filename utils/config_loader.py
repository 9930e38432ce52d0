"""
Configuration management for the album organizer.

This module handles loading and validating configuration from YAML files
with sensible defaults and environment variable support, and turns the
resulting dictionary into the immutable settings object threaded through
every pipeline component.
"""

import json
import os
import yaml
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple

from models.schemas import OrganizationStrategy, RunMode
from utils.exceptions import ConfigurationError

ENV_PREFIX = "ORDR_"

STATE_DB_NAME = "ordr.fm.state.db"
METADATA_DB_NAME = "ordr.fm.metadata.db"
DUPLICATES_DB_NAME = "ordr.fm.duplicates.db"
DUPLICATES_BACKUP_DIR = "duplicates_backup"


@dataclass
class PathsConfig:
    source: str = ""
    destination: str = ""
    holding: str = ""
    state_dir: str = "~/.cache/ordr-fm"
    output_dir: str = ""


@dataclass
class OrganizationConfig:
    strategy: str = "artist"
    enable_electronic: bool = False
    min_label_releases: int = 3


@dataclass
class AliasConfig:
    groups: list = field(default_factory=list)
    strict_validation: bool = False


@dataclass
class ReconstructionConfig:
    enabled: bool = True
    min_confidence: int = 70


@dataclass
class DuplicatesConfig:
    backup_dir: str = ""
    report_file: str = "duplicates_report.md"


@dataclass
class ProcessingConfig:
    dry_run: bool = True
    incremental: bool = False
    workers: int = 1
    extraction_timeout_seconds: float = 60.0
    rename_tracks: bool = False
    state_retention_days: int = 0

@dataclass
class FilesystemConfig:
    audio_extensions: list = field(default_factory=lambda: [
        '.flac', '.mp3', '.m4a', '.wav', '.aiff', '.aif', '.ogg', '.aac', '.alac'
    ])
    ignored_dirs: list = field(default_factory=lambda: [
        'covers', 'artwork', 'scans', 'booklet', '@eadir'
    ])


@dataclass
class LoggingConfig:
    level: str = "INFO"
    file: str = "ordr.log"
    max_file_size: int = 10 * 1024 * 1024
    backup_count: int = 5


@dataclass
class MusicConfig:
    """Structured configuration class with defaults."""

    paths: PathsConfig = field(default_factory=PathsConfig)
    organization: OrganizationConfig = field(default_factory=OrganizationConfig)
    aliases: AliasConfig = field(default_factory=AliasConfig)
    reconstruction: ReconstructionConfig = field(default_factory=ReconstructionConfig)
    duplicates: DuplicatesConfig = field(default_factory=DuplicatesConfig)
    processing: ProcessingConfig = field(default_factory=ProcessingConfig)
    filesystem: FilesystemConfig = field(default_factory=FilesystemConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


@dataclass(frozen=True)
class PlannerSettings:
    """Settings consumed by the organization path planner."""

    strategy: OrganizationStrategy = OrganizationStrategy.ARTIST
    enable_electronic: bool = False
    min_label_releases: int = 3


@dataclass(frozen=True)
class RunSettings:
    """Immutable per-run settings, passed explicitly to every component."""

    source_root: Optional[Path]
    destination_root: Optional[Path]
    holding_root: Optional[Path]
    state_dir: Path
    output_dir: Path
    duplicates_backup: Optional[Path] = None
    duplicates_report: str = "duplicates_report.md"
    run_mode: RunMode = RunMode.DRY_RUN
    incremental: bool = False
    workers: int = 1
    extraction_timeout: float = 60.0
    rename_tracks: bool = False
    state_retention_days: int = 0
    reconstruction_enabled: bool = True
    min_confidence: int = 70
    audio_extensions: Tuple[str, ...] = ('.flac', '.mp3')
    ignored_dirs: Tuple[str, ...] = ()
    alias_groups: Tuple[Tuple[str, ...], ...] = ()
    strict_aliases: bool = False
    planner: PlannerSettings = field(default_factory=PlannerSettings)

    @property
    def is_dry_run(self) -> bool:
        return self.run_mode == RunMode.DRY_RUN

    @property
    def state_db(self) -> Path:
        return self.state_dir / STATE_DB_NAME

    @property
    def metadata_db(self) -> Path:
        return self.state_dir / METADATA_DB_NAME

    @property
    def duplicates_db(self) -> Path:
        return self.state_dir / DUPLICATES_DB_NAME

    @property
    def duplicates_backup_root(self) -> Optional[Path]:
        """Where resolved duplicates are relocated; next to the destination unless configured."""
        if self.duplicates_backup is not None:
            return self.duplicates_backup
        if self.destination_root is None:
            return None
        return self.destination_root.parent / DUPLICATES_BACKUP_DIR


def load_config(config_path: Optional[Path] = None) -> Dict[str, Any]:
    """
    Build the configuration dictionary for a run.

    Built-in defaults come first, then the YAML file if one exists at
    config_path, then ``ORDR_`` environment variables.

    Raises:
        ConfigurationError: If the file is unreadable or a value is invalid
    """
    config = asdict(MusicConfig())

    if config_path is not None and config_path.is_file():
        config = _merge_configs(config, _read_yaml(config_path))

    config = _apply_env_overrides(config, os.environ)
    _validate_config(config)
    return config


def _read_yaml(config_path: Path) -> Dict[str, Any]:
    try:
        with open(config_path, 'r', encoding='utf-8') as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in config file {config_path}: {e}")
    except OSError as e:
        raise ConfigurationError(f"Cannot read config file {config_path}: {e}")

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigurationError(f"Config file must contain a mapping: {config_path}")
    return data


def _merge_configs(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Section-wise merge; nested mappings merge, anything else replaces."""
    merged = dict(base)
    for key, value in override.items():
        current = merged.get(key)
        if isinstance(current, dict) and isinstance(value, dict):
            merged[key] = _merge_configs(current, value)
        else:
            merged[key] = value
    return merged


def _apply_env_overrides(config: Dict[str, Any], environ: Mapping[str, str]) -> Dict[str, Any]:
    """
    Apply ``ORDR_SECTION__KEY=value`` overrides.

    Examples:
        ORDR_PROCESSING__WORKERS=4
        ORDR_ORGANIZATION__STRATEGY=hybrid
        ORDR_ALIASES__GROUPS="Atom TM,Atom Heart|Moodymann,KDJ"
    """
    overrides: Dict[str, Any] = {}
    for name, raw in environ.items():
        if not name.startswith(ENV_PREFIX) or len(name) == len(ENV_PREFIX):
            continue
        keys = name[len(ENV_PREFIX):].lower().split('__')
        target = overrides
        for key in keys[:-1]:
            target = target.setdefault(key, {})
        target[keys[-1]] = _convert_env_value(raw)

    return _merge_configs(config, overrides)


def _convert_env_value(value: str) -> Any:
    """Booleans, numbers and JSON lists or mappings; anything else stays a string."""
    lowered = value.strip().lower()
    if lowered in ('true', 'yes', 'on'):
        return True
    if lowered in ('false', 'no', 'off'):
        return False

    for convert in (int, float):
        try:
            return convert(value)
        except ValueError:
            continue

    if value.lstrip().startswith(('[', '{')):
        try:
            return json.loads(value)
        except json.JSONDecodeError:
            return value

    return value


def _validate_config(config: Dict[str, Any]):
    """
    Validate configuration values.

    Raises:
        ConfigurationError: If configuration is invalid
    """
    organization = config.get('organization', {})

    strategy = organization.get('strategy', 'artist')
    valid_strategies = [s.value for s in OrganizationStrategy]
    if str(strategy).lower() not in valid_strategies:
        raise ConfigurationError(f"organization.strategy must be one of {valid_strategies}")

    min_label_releases = organization.get('min_label_releases', 3)
    if not isinstance(min_label_releases, int) or isinstance(min_label_releases, bool) or min_label_releases < 1:
        raise ConfigurationError("organization.min_label_releases must be a positive integer")

    processing = config.get('processing', {})

    workers = processing.get('workers', 1)
    if not isinstance(workers, int) or isinstance(workers, bool) or workers < 1:
        raise ConfigurationError("processing.workers must be a positive integer")

    timeout = processing.get('extraction_timeout_seconds', 60.0)
    if not isinstance(timeout, (int, float)) or isinstance(timeout, bool) or timeout <= 0:
        raise ConfigurationError("processing.extraction_timeout_seconds must be a positive number")

    retention = processing.get('state_retention_days', 0)
    if not isinstance(retention, int) or isinstance(retention, bool) or retention < 0:
        raise ConfigurationError("processing.state_retention_days must be a non-negative integer")

    reconstruction = config.get('reconstruction', {})

    min_confidence = reconstruction.get('min_confidence', 70)
    if not isinstance(min_confidence, int) or isinstance(min_confidence, bool) or not 0 <= min_confidence <= 110:
        raise ConfigurationError("reconstruction.min_confidence must be an integer between 0 and 110")

    filesystem = config.get('filesystem', {})

    audio_extensions = filesystem.get('audio_extensions', [])
    if not isinstance(audio_extensions, list) or not audio_extensions:
        raise ConfigurationError("filesystem.audio_extensions must be a non-empty list")

    ignored_dirs = filesystem.get('ignored_dirs', [])
    if not isinstance(ignored_dirs, list):
        raise ConfigurationError("filesystem.ignored_dirs must be a list")

    aliases = config.get('aliases', {})

    groups = aliases.get('groups', [])
    if not isinstance(groups, (list, str)):
        raise ConfigurationError("aliases.groups must be a list of name lists or a 'A,B|C,D' string")

    logging_config = config.get('logging', {})

    log_level = str(logging_config.get('level', 'INFO'))
    valid_levels = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']
    if log_level.upper() not in valid_levels:
        raise ConfigurationError(f"logging.level must be one of {valid_levels}")


def parse_alias_groups(value: Any) -> List[List[str]]:
    """
    Normalize configured alias groups into lists of names.

    Accepts a YAML list of lists, a list of comma-separated strings, or the
    single-string form ``"Primary,Alias|Primary2,Alias2"``. Names are kept
    exactly as written so the alias validator can report stray whitespace.
    """
    if not value:
        return []

    if isinstance(value, str):
        value = value.split('|')

    if not isinstance(value, list):
        raise ConfigurationError("aliases.groups must be a list")

    groups = []
    for entry in value:
        if isinstance(entry, str):
            groups.append(entry.split(',') if entry else [])
        elif isinstance(entry, list):
            groups.append([str(name) if name is not None else "" for name in entry])
        else:
            raise ConfigurationError(f"Invalid alias group entry: {entry!r}")

    return groups


def _optional_path(value: Any) -> Optional[Path]:
    if value in (None, ""):
        return None
    return Path(value).expanduser().resolve()


def build_settings(config: Dict[str, Any], **overrides) -> RunSettings:
    """
    Build immutable run settings from a loaded config and CLI overrides.

    Overrides whose value is None are ignored. Recognized keys: source,
    destination, holding, state_dir, output_dir, duplicates_backup, move,
    incremental, workers, organization_mode, enable_electronic, rename_tracks.

    Raises:
        ConfigurationError: If the combined values are invalid
    """
    overrides = {k: v for k, v in overrides.items() if v is not None}

    paths = config.get('paths', {})
    organization = config.get('organization', {})
    processing = config.get('processing', {})
    reconstruction = config.get('reconstruction', {})
    duplicates = config.get('duplicates', {})
    filesystem = config.get('filesystem', {})
    aliases = config.get('aliases', {})

    source_root = _optional_path(overrides.get('source', paths.get('source')))
    destination_root = _optional_path(overrides.get('destination', paths.get('destination')))
    holding_root = _optional_path(overrides.get('holding', paths.get('holding')))

    if source_root is not None:
        destination_root = destination_root or source_root / "sorted_music"
        holding_root = holding_root or source_root / "unsorted"

    state_dir = _optional_path(overrides.get('state_dir', paths.get('state_dir'))) or Path.cwd()
    output_dir = _optional_path(overrides.get('output_dir', paths.get('output_dir'))) or state_dir

    strategy_name = str(overrides.get('organization_mode', organization.get('strategy', 'artist'))).lower()
    try:
        strategy = OrganizationStrategy(strategy_name)
    except ValueError:
        raise ConfigurationError(f"Unknown organization mode: {strategy_name}")

    planner = PlannerSettings(
        strategy=strategy,
        enable_electronic=bool(overrides.get('enable_electronic', organization.get('enable_electronic', False))),
        min_label_releases=int(organization.get('min_label_releases', 3)),
    )

    if overrides.get('move'):
        run_mode = RunMode.LIVE
    else:
        run_mode = RunMode.DRY_RUN if processing.get('dry_run', True) else RunMode.LIVE

    workers = int(overrides.get('workers', processing.get('workers', 1)))
    if workers < 1:
        raise ConfigurationError("workers must be a positive integer")

    extensions = []
    for ext in filesystem.get('audio_extensions', []):
        ext = str(ext).lower()
        extensions.append(ext if ext.startswith('.') else f".{ext}")

    alias_groups = tuple(tuple(group) for group in parse_alias_groups(aliases.get('groups')))

    return RunSettings(
        source_root=source_root,
        destination_root=destination_root,
        holding_root=holding_root,
        state_dir=state_dir,
        output_dir=output_dir,
        duplicates_backup=_optional_path(overrides.get('duplicates_backup', duplicates.get('backup_dir'))),
        duplicates_report=duplicates.get('report_file', 'duplicates_report.md'),
        run_mode=run_mode,
        incremental=bool(overrides.get('incremental', processing.get('incremental', False))),
        workers=workers,
        extraction_timeout=float(processing.get('extraction_timeout_seconds', 60.0)),
        rename_tracks=bool(overrides.get('rename_tracks', processing.get('rename_tracks', False))),
        state_retention_days=int(processing.get('state_retention_days', 0)),
        reconstruction_enabled=bool(reconstruction.get('enabled', True)),
        min_confidence=int(reconstruction.get('min_confidence', 70)),
        audio_extensions=tuple(extensions),
        ignored_dirs=tuple(str(d).lower() for d in filesystem.get('ignored_dirs', [])),
        alias_groups=alias_groups,
        strict_aliases=bool(aliases.get('strict_validation', False)),
        planner=planner,
    )


def get_config_template() -> str:
    """
    Get a YAML template for the configuration file.

    Returns:
        YAML configuration template as string
    """
    return """# Configuration for the ordr-fm album organizer
paths:
  source: ""                  # Root holding unorganized album directories
  destination: ""             # Defaults to <source>/sorted_music
  holding: ""                 # Defaults to <source>/unsorted
  state_dir: "~/.cache/ordr-fm"
  output_dir: ""              # Reports and summaries, defaults to state_dir

organization:
  strategy: artist            # artist | label | series | hybrid
  enable_electronic: false    # label/series/remix layouts need this enabled
  min_label_releases: 3       # hybrid mode threshold

aliases:
  strict_validation: false
  groups:
    - ["Atom TM", "Atom Heart", "Uwe Schmidt", "Senor Coconut"]

reconstruction:
  enabled: true
  min_confidence: 70

duplicates:
  backup_dir: ""
  report_file: duplicates_report.md

processing:
  dry_run: true
  incremental: false
  workers: 1
  extraction_timeout_seconds: 60
  rename_tracks: false
  state_retention_days: 0     # drop state records older than this many days, 0 keeps them

filesystem:
  audio_extensions: [.flac, .mp3, .m4a, .wav, .aiff, .aif, .ogg, .aac, .alac]
  ignored_dirs: [covers, artwork, scans, booklet, "@eadir"]

logging:
  level: INFO
  file: ordr.log
"""
