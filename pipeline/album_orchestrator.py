"""
Album-level pipeline orchestrator.

Runs every album directory of a source tree through extraction, identity
resolution (with reconstruction as fallback), enrichment, quality
classification, path planning and the move, and keeps per-album failures
from stopping the batch. Also drives the separate duplicate pass.
"""

import json
import threading
import time
import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from pathlib import Path
from typing import List, Optional, Tuple

from filesystem.album_detector import AlbumDetector
from filesystem.file_ops import FileSystemOperations
from filesystem.metadata_extractor import MetadataExtractor, TrackReader
from filesystem.move_executor import MoveExecutor
from models.schemas import (
    AlbumIdentity, AlbumOutcome, AlbumProcessingResult, BatchSummary,
    DuplicateGroup, ProcessingStatus, TrackMetadata
)
from pipeline.aliases import AliasResolver
from pipeline.duplicates import DuplicateDetector
from pipeline.enrichment import EnrichmentLookup, NullEnrichment, apply_enrichment
from pipeline.identity import IdentityResolver, mark_compilation
from pipeline.path_planner import PathPlanner
from pipeline.quality import classify_quality
from pipeline.reconstruction import ReconstructionEngine
from storage.duplicates_store import DuplicatesStore
from storage.metadata_store import MetadataStore
from storage.state_tracker import StateTracker
from utils.config_loader import METADATA_DB_NAME, STATE_DB_NAME, RunSettings
from utils.exceptions import (
    ConfigurationError, DestinationConflictError,
    EssentialMetadataMissingError, FilesystemError, MetadataExtractionError,
    MoveIOError, MusicOrganizerError, NoAudioFilesError
)
from utils.logging_config import add_worker_log_file, log_processing_progress, remove_log_handler

logger = logging.getLogger(__name__)


class AlbumPipeline:
    """
    Album organization pipeline.

    One instance owns one set of state and metadata databases. In
    worker-pool mode every worker gets its own instance with private
    databases under ``<state_dir>/worker-<n>/``.
    """

    def __init__(
        self,
        settings: RunSettings,
        reader: Optional[TrackReader] = None,
        enrichment: Optional[EnrichmentLookup] = None,
        aliases: Optional[AliasResolver] = None,
        db_dir: Optional[Path] = None,
        stop_event: Optional[threading.Event] = None
    ):
        """Initialize the pipeline and its components from run settings."""
        self.settings = settings
        self.reader = reader
        self.db_dir = db_dir or settings.state_dir

        self.fs_ops = FileSystemOperations()

        self.album_detector = AlbumDetector(
            audio_extensions=settings.audio_extensions,
            ignored_dirs=settings.ignored_dirs,
            excluded_roots=[settings.destination_root, settings.holding_root, settings.duplicates_backup_root]
        )
        self.extractor = MetadataExtractor(
            self.album_detector,
            timeout_seconds=settings.extraction_timeout,
            reader=reader
        )

        self.aliases = aliases or AliasResolver.from_groups(
            settings.alias_groups, strict=settings.strict_aliases
        )
        self.resolver = IdentityResolver(self.aliases)
        self.reconstruction = ReconstructionEngine(settings.min_confidence)
        self.enrichment = enrichment or NullEnrichment()

        self.state = StateTracker(self.db_dir / STATE_DB_NAME, self.fs_ops)
        self.metadata_store = MetadataStore(self.db_dir / METADATA_DB_NAME)
        self.executor = MoveExecutor(self.metadata_store, settings.run_mode, self.fs_ops)

        if settings.destination_root is None:
            raise ConfigurationError("A destination directory is required")
        self.planner = PathPlanner(
            settings.destination_root,
            settings.planner,
            label_counts=self.metadata_store.label_release_count
        )

        self._stop_event = stop_event or threading.Event()
        self.summary = BatchSummary()
        self.results: List[AlbumProcessingResult] = []

    # Control

    def request_stop(self):
        """Finish the album in flight, then stop."""
        self._stop_event.set()

    @property
    def stop_requested(self) -> bool:
        return self._stop_event.is_set()

    # Library processing

    def process_library(self, source_root: Path) -> BatchSummary:
        """
        Organize every album directory under a source root.

        Args:
            source_root: Root directory holding unorganized albums

        Returns:
            Outcome counters for the batch
        """
        logger.info(f"Starting album processing: {source_root} ({self.settings.run_mode.value})")
        start_time = time.time()

        if not self.settings.is_dry_run:
            self.executor.recover()
            if self.settings.state_retention_days > 0:
                self.state.cleanup_old_entries(self.settings.state_retention_days)

        album_dirs = self.album_detector.discover_albums(source_root)
        if not album_dirs:
            logger.warning("No albums found")

        if self.settings.workers > 1 and len(album_dirs) > 1:
            self._process_with_workers(album_dirs)
        else:
            self._process_sequential(album_dirs)

        elapsed = time.time() - start_time
        logger.info(
            f"Album processing completed in {elapsed:.2f}s: {self.summary.processed} processed, "
            f"{self.summary.skipped} skipped, {self.summary.already_organized} already organized, "
            f"{self.summary.held} held, {self.summary.failed} failed"
        )
        self._write_summary(source_root, elapsed)
        return self.summary

    def _process_sequential(self, album_dirs: List[Path]):
        total = len(album_dirs)
        for index, album_dir in enumerate(album_dirs, 1):
            if self.stop_requested:
                logger.warning(f"Stop requested, {total - index + 1} albums left unprocessed")
                break
            self.process_album(album_dir)
            log_processing_progress(index, total, logger)

    def _process_with_workers(self, album_dirs: List[Path]):
        workers = min(self.settings.workers, len(album_dirs))
        partitions = [album_dirs[i::workers] for i in range(workers)]
        logger.info(f"Processing {len(album_dirs)} albums with {workers} workers")

        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="album-worker") as pool:
            futures = {
                pool.submit(self._run_worker, index, chunk): index
                for index, chunk in enumerate(partitions)
            }
            for future in as_completed(futures):
                index = futures[future]
                try:
                    worker_summary, worker_results = future.result()
                except MusicOrganizerError as e:
                    logger.error(f"Worker {index} failed to start: {e}")
                    failed = BatchSummary(failed=len(partitions[index]))
                    self.summary = self.summary.merge(failed)
                    continue
                self.summary = self.summary.merge(worker_summary)
                self.results.extend(worker_results)

    def _run_worker(self, index: int, album_dirs: List[Path]) -> Tuple[BatchSummary, List[AlbumProcessingResult]]:
        worker_dir = self.settings.state_dir / f"worker-{index}"
        handler = add_worker_log_file(worker_dir / "worker.log", threading.get_ident())
        try:
            worker = AlbumPipeline(
                self.settings,
                reader=self.reader,
                enrichment=self.enrichment,
                aliases=self.aliases,
                db_dir=worker_dir,
                stop_event=self._stop_event
            )
            if not self.settings.is_dry_run:
                worker.executor.recover()
            logger.info(f"Worker {index} processing {len(album_dirs)} albums")
            worker._process_sequential(album_dirs)
            return worker.summary, worker.results
        finally:
            remove_log_handler(handler)

    # Single album

    def process_album(self, album_dir: Path) -> AlbumProcessingResult:
        """
        Run one album directory through the pipeline.

        Never raises for album-level problems; the outcome is returned and
        counted instead.
        """
        start_time = time.time()
        signature = None

        try:
            if self.settings.incremental and not self.state.needs_processing(album_dir):
                logger.debug(f"Unchanged since last run, skipping: {album_dir}")
                return self._finish(album_dir, AlbumOutcome.SKIPPED, start_time, message="unchanged since last run")

            try:
                signature = self.fs_ops.content_signature(album_dir)
            except FilesystemError as e:
                logger.warning(str(e))

            tracks: Optional[List[TrackMetadata]] = None
            try:
                tracks = self.extractor.extract_album(album_dir)
            except NoAudioFilesError as e:
                logger.info(f"Skipping: {e}")
                self._record_state(album_dir, ProcessingStatus.SKIPPED, signature)
                return self._finish(album_dir, AlbumOutcome.SKIPPED, start_time, message=str(e))
            except MetadataExtractionError as e:
                logger.warning(f"{e}; falling back to directory name")

            identity, reason = self._resolve_identity(album_dir, tracks)
            if identity is None:
                return self._hold(album_dir, reason, signature, start_time)

            identity = apply_enrichment(identity, self.enrichment)

            if tracks:
                formats = [t.file_type for t in tracks]
            else:
                formats = [p.suffix for p in self.album_detector.get_album_tracks(album_dir)]
            quality = classify_quality(formats)

            plan = self.planner.plan(album_dir, identity, quality)
            if plan.already_organized:
                logger.info(f"Already organized: {album_dir} -> {plan.destination}")
                self._record_state(album_dir, ProcessingStatus.SUCCESS, signature)
                return self._finish(
                    album_dir, AlbumOutcome.ALREADY_ORGANIZED, start_time, identity=identity, plan=plan
                )

            operation = self.executor.move_directory(
                album_dir, plan.destination, prune_root=self.settings.source_root
            )

            if not self.settings.is_dry_run:
                if self.settings.rename_tracks and tracks:
                    tracks = self.executor.rename_tracks(
                        plan.destination, album_dir, tracks,
                        operation.operation_id if operation else None
                    )
                self.metadata_store.record_album(identity, plan, tracks or [])
                # The directory is gone; a new album arriving at the same path starts fresh
                self.state.forget(album_dir)

            logger.info(
                f"Organized [{plan.mode.value}/{quality.value}] {identity.album_artist} - "
                f"{identity.album_title} -> {plan.destination}"
            )
            return self._finish(album_dir, AlbumOutcome.PROCESSED, start_time, identity=identity, plan=plan)

        except DestinationConflictError as e:
            logger.info(str(e))
            self._record_state(album_dir, ProcessingStatus.SUCCESS, signature)
            return self._finish(album_dir, AlbumOutcome.ALREADY_ORGANIZED, start_time, message=str(e))
        except MusicOrganizerError as e:
            logger.error(f"Failed to process album {album_dir}: {e}")
            self._record_state(album_dir, ProcessingStatus.FAILED, signature)
            return self._finish(album_dir, AlbumOutcome.FAILED, start_time, message=str(e))
        except Exception as e:
            logger.exception(f"Unexpected error processing album {album_dir}: {e}")
            self._record_state(album_dir, ProcessingStatus.FAILED, signature)
            return self._finish(album_dir, AlbumOutcome.FAILED, start_time, message=str(e))

    def _resolve_identity(
        self,
        album_dir: Path,
        tracks: Optional[List[TrackMetadata]]
    ) -> Tuple[Optional[AlbumIdentity], Optional[str]]:
        """Identity from tags, else from the directory name. Returns (identity, hold reason)."""
        known = None
        if tracks:
            try:
                return self.resolver.resolve(tracks, album_dir), None
            except EssentialMetadataMissingError as e:
                logger.info(f"{e}; trying directory name reconstruction")
                known = e.partial

        if not self.settings.reconstruction_enabled:
            return None, "no usable tags and reconstruction is disabled"

        result = self.reconstruction.reconstruct(album_dir.name, known)
        if not result.accepted:
            return None, result.reason

        identity = result.to_identity()
        updates = {'album_artist': self.aliases.resolve(identity.album_artist)}
        if known is not None:
            updates.update(
                is_remix=known.is_remix, remixer=known.remixer, is_compilation=known.is_compilation
            )
        return mark_compilation(identity.model_copy(update=updates)), None

    def _hold(
        self,
        album_dir: Path,
        reason: Optional[str],
        signature: Optional[str],
        start_time: float
    ) -> AlbumProcessingResult:
        """Park an album without a trustworthy identity in the holding area."""
        holding_root = self.settings.holding_root
        message = reason or "no trustworthy identity"

        if holding_root is None:
            logger.warning(f"Holding (left in place): {album_dir}: {message}")
        else:
            target = holding_root / album_dir.name
            if target.exists():
                logger.warning(f"Holding area already has {target.name}, leaving {album_dir} untouched")
            else:
                try:
                    self.executor.move_directory(album_dir, target, prune_root=self.settings.source_root)
                except (MoveIOError, DestinationConflictError) as e:
                    logger.error(f"Could not move {album_dir} to holding area: {e}")
                    self._record_state(album_dir, ProcessingStatus.FAILED, signature)
                    return self._finish(album_dir, AlbumOutcome.FAILED, start_time, message=str(e))
                logger.warning(f"Held for review: {album_dir} -> {target} ({message})")

        self._record_state(album_dir, ProcessingStatus.HELD, signature)
        return self._finish(album_dir, AlbumOutcome.HELD, start_time, message=message)

    def _record_state(self, album_dir: Path, status: ProcessingStatus, signature: Optional[str]):
        if self.settings.is_dry_run:
            return
        self.state.record(album_dir, status, signature)

    def _finish(
        self,
        album_dir: Path,
        outcome: AlbumOutcome,
        start_time: float,
        identity: Optional[AlbumIdentity] = None,
        plan=None,
        message: Optional[str] = None
    ) -> AlbumProcessingResult:
        result = AlbumProcessingResult(
            album_path=album_dir,
            outcome=outcome,
            identity=identity,
            plan=plan,
            message=message,
            processing_time_seconds=time.time() - start_time
        )
        self.summary.record(outcome)
        self.results.append(result)
        return result

    def _write_summary(self, source_root: Path, elapsed: float):
        """Write processing_summary.json and print a short report."""
        summary = {
            'source': str(source_root),
            'destination': str(self.settings.destination_root),
            'run_mode': self.settings.run_mode.value,
            'counts': self.summary.model_dump(),
            'total_albums': self.summary.total,
            'total_processing_time': f"{elapsed:.1f}s",
            'albums': [
                {
                    'path': str(r.album_path),
                    'outcome': r.outcome.value,
                    'destination': str(r.plan.destination) if r.plan else None,
                    'mode': r.plan.mode.value if r.plan else None,
                    'source': r.identity.source.value if r.identity else None,
                    'message': r.message,
                }
                for r in sorted(self.results, key=lambda r: str(r.album_path))
            ],
        }

        try:
            self.settings.output_dir.mkdir(parents=True, exist_ok=True)
            summary_file = self.settings.output_dir / "processing_summary.json"
            with open(summary_file, 'w', encoding='utf-8') as f:
                json.dump(summary, f, indent=2, ensure_ascii=False)
            logger.info(f"Processing summary saved to: {summary_file}")
        except OSError as e:
            logger.warning(f"Could not write processing summary: {e}")

        print("\nALBUM PROCESSING SUMMARY")
        print(f"Mode: {'dry run' if self.settings.is_dry_run else 'live'}")
        print(f"Processed: {self.summary.processed}")
        print(f"Already organized: {self.summary.already_organized}")
        print(f"Skipped: {self.summary.skipped}")
        print(f"Held for review: {self.summary.held}")
        print(f"Failed: {self.summary.failed}")

    # Duplicates

    def find_duplicates(self, resolve: bool = False) -> List[DuplicateGroup]:
        """
        Scan the organized tree for duplicate albums and write a report.

        Args:
            resolve: Relocate non-keepers to the duplicates backup directory

        Returns:
            The duplicate groups found
        """
        destination_root = self.settings.destination_root
        if not destination_root.is_dir():
            raise FilesystemError(str(destination_root), "duplicate scan", "Directory does not exist")

        detector = DuplicateDetector(
            store=DuplicatesStore(self.settings.duplicates_db),
            detector=AlbumDetector(self.settings.audio_extensions, self.settings.ignored_dirs),
            extractor=self.extractor,
            resolver=self.resolver,
            reconstruction=self.reconstruction,
            executor=self.executor,
            metadata_store=self.metadata_store
        )

        candidates = detector.scan(destination_root)
        groups = detector.detect(candidates)
        detector.write_report(groups, self.settings.output_dir / self.settings.duplicates_report)

        if resolve and groups:
            detector.resolve(self.settings.duplicates_backup_root, groups, library_root=destination_root)

        print(f"\nDuplicate groups found: {len(groups)}")
        return groups
