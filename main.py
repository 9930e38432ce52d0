#!/usr/bin/env python3
"""
ordr-fm: a quality-aware album organizer

Turns a messy collection of release directories into a canonical tree
stratified by audio quality, reconstructs identities for untagged albums
from their directory names, and finds duplicate releases.
"""

import argparse
import importlib.util
import os
import signal
import sys
from contextlib import ExitStack
from pathlib import Path

from utils.exceptions import ConfigurationError, DependencyMissingError, MusicOrganizerError
from utils.logging_config import setup_logging

# Import name -> distribution name
REQUIRED_MODULES = {
    'mutagen': 'mutagen',
    'yaml': 'pyyaml',
    'pydantic': 'pydantic',
}


def parse_arguments(argv=None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        prog="ordr-fm",
        description="Organize album directories by identity and audio quality",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s -s ~/incoming -d ~/Music                  # Dry run: log what would move
  %(prog)s -s ~/incoming -d ~/Music --move           # Organize for real
  %(prog)s -s ~/incoming -d ~/Music --move --incremental
  %(prog)s -d ~/Music --find-duplicates              # Duplicate report only
  %(prog)s -d ~/Music --resolve-duplicates --move    # Relocate non-keepers to backup
        """
    )

    parser.add_argument(
        "--source", "-s",
        type=Path,
        help="Directory holding unorganized albums"
    )

    parser.add_argument(
        "--destination", "-d",
        type=Path,
        help="Root of the organized tree (default: <source>/sorted_music)"
    )

    parser.add_argument(
        "--holding", "--unsorted",
        dest="holding",
        type=Path,
        help="Holding area for albums without a trustworthy identity (default: <source>/unsorted)"
    )

    parser.add_argument(
        "--config",
        type=Path,
        help="Path to config file (default: ./config.yaml)"
    )

    parser.add_argument(
        "--move",
        action="store_true",
        help="Perform moves (default: dry run, only log intent)"
    )

    parser.add_argument(
        "--incremental",
        action="store_true",
        default=None,
        help="Skip album directories unchanged since the last successful run"
    )

    parser.add_argument(
        "--find-duplicates",
        action="store_true",
        help="Scan the destination tree for duplicate albums and write a report"
    )

    parser.add_argument(
        "--resolve-duplicates",
        action="store_true",
        help="Relocate non-keeper duplicates to the backup directory (implies --find-duplicates)"
    )

    parser.add_argument(
        "--duplicates-backup",
        type=Path,
        help="Backup root for resolved duplicates (default: <destination>/../duplicates_backup)"
    )

    parser.add_argument(
        "--organization-mode",
        choices=["artist", "label", "series", "hybrid"],
        help="Organization strategy (default from config: artist)"
    )

    parser.add_argument(
        "--enable-electronic",
        action="store_true",
        default=None,
        help="Enable label, series and remix layouts"
    )

    parser.add_argument(
        "--rename-tracks",
        action="store_true",
        default=None,
        help="Rename tracks to 'NN - Title' after moving"
    )

    parser.add_argument(
        "--workers",
        type=int,
        help="Number of worker threads, each with private databases (default: 1)"
    )

    parser.add_argument(
        "--state-dir",
        type=Path,
        help="Directory for the state, metadata and duplicates databases"
    )

    parser.add_argument(
        "--output-dir",
        type=Path,
        help="Directory for reports and the log file (default: state dir)"
    )

    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose logging"
    )

    return parser.parse_args(argv)


def check_dependencies():
    """
    Verify that required third-party libraries are importable.

    Raises:
        DependencyMissingError: If one is missing
    """
    for module, distribution in REQUIRED_MODULES.items():
        if importlib.util.find_spec(module) is None:
            raise DependencyMissingError(distribution, f"pip install {distribution}")


def validate_source_directory(path: Path) -> None:
    """Validate that the source directory exists and is readable."""
    if not path.exists():
        raise ConfigurationError(f"Source directory does not exist: {path}")

    if not path.is_dir():
        raise ConfigurationError(f"Source path is not a directory: {path}")

    if not os.access(path, os.R_OK):
        raise ConfigurationError(f"Cannot read source directory: {path}")


def main(argv=None) -> int:
    """Main entry point."""
    try:
        args = parse_arguments(argv)

        check_dependencies()

        from utils.config_loader import build_settings, load_config
        from pipeline.album_orchestrator import AlbumPipeline
        from storage.locking import ProcessLock

        config_path = args.config or Path.cwd() / "config.yaml"
        config = load_config(config_path)

        settings = build_settings(
            config,
            source=args.source,
            destination=args.destination,
            holding=args.holding,
            state_dir=args.state_dir,
            output_dir=args.output_dir,
            duplicates_backup=args.duplicates_backup,
            move=args.move or None,
            incremental=args.incremental,
            workers=args.workers,
            organization_mode=args.organization_mode,
            enable_electronic=args.enable_electronic,
            rename_tracks=args.rename_tracks,
        )

        duplicates_mode = args.find_duplicates or args.resolve_duplicates
        if not duplicates_mode:
            if settings.source_root is None:
                raise ConfigurationError("A source directory is required (--source)")
            validate_source_directory(settings.source_root)
        if settings.destination_root is None:
            raise ConfigurationError("A destination directory is required (--destination)")
        if duplicates_mode and not settings.destination_root.is_dir():
            raise ConfigurationError(f"Destination directory does not exist: {settings.destination_root}")

        logging_config = config.get('logging', {})
        log_level = "DEBUG" if args.verbose else logging_config.get('level', 'INFO')
        logger = setup_logging(
            log_level,
            settings.output_dir / logging_config.get('file', 'ordr.log'),
            max_file_size=logging_config.get('max_file_size', 10 * 1024 * 1024),
            backup_count=logging_config.get('backup_count', 5)
        )

        logger.info("Starting ordr-fm")
        logger.info(f"Source: {settings.source_root}")
        logger.info(f"Destination: {settings.destination_root}")
        logger.info(f"Holding area: {settings.holding_root}")
        logger.info(f"Mode: {'DRY RUN' if settings.is_dry_run else 'LIVE'}")
        if config_path.exists():
            logger.info(f"Config: {config_path}")

        with ExitStack() as stack:
            for db_path in (settings.state_db, settings.metadata_db, settings.duplicates_db):
                stack.enter_context(ProcessLock(db_path))

            pipeline = AlbumPipeline(settings)

            def handle_signal(signum, frame):
                logger.warning(f"Received signal {signum}, stopping after the current album")
                pipeline.request_stop()

            for signum in (signal.SIGINT, signal.SIGTERM):
                stack.callback(signal.signal, signum, signal.getsignal(signum))
                signal.signal(signum, handle_signal)

            if duplicates_mode:
                pipeline.find_duplicates(resolve=args.resolve_duplicates)
            else:
                pipeline.process_library(settings.source_root)

            if pipeline.stop_requested:
                print("\nOperation interrupted; the album in flight was completed.")
                return 130

        if settings.is_dry_run:
            print("\nDry run complete. Run with --move to perform the organization.")

        return 0

    except KeyboardInterrupt:
        print("\nOperation cancelled by user.")
        return 130
    except (DependencyMissingError, ConfigurationError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except MusicOrganizerError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2
    except Exception as e:
        try:
            error_msg = str(e)
        except (UnicodeDecodeError, UnicodeEncodeError):
            error_msg = repr(e).encode('utf-8', errors='replace').decode('utf-8')

        print(f"Unexpected error: {error_msg}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    sys.exit(main())
