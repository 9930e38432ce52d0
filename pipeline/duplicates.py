"""
Duplicate album detection and resolution.

Albums of the organized tree are fingerprinted by a normalized identity
hash (artist, title, year, track count). Albums sharing a hash form a
group; each member gets a quality score and the best one is recommended
as the keeper. Resolution is opt-in and relocates every other member to a
backup directory through the move executor. Nothing is ever deleted.
"""

import hashlib
from collections import defaultdict
from datetime import datetime
from pathlib import Path
from typing import Dict, Iterable, List, Optional
import logging

from filesystem.album_detector import AlbumDetector
from filesystem.metadata_extractor import MetadataExtractor
from filesystem.move_executor import MoveExecutor
from models.schemas import (
    AlbumIdentity, DuplicateCandidate, DuplicateGroup, DuplicateMember,
    QualityClass, ResolutionStatus, TrackMetadata
)
from pipeline.aliases import fold_diacritics
from pipeline.identity import IdentityResolver, mark_compilation
from pipeline.quality import classify_quality, normalize_format
from pipeline.reconstruction import ReconstructionEngine
from storage.duplicates_store import DuplicatesStore
from storage.metadata_store import MetadataStore
from utils.exceptions import (
    DestinationConflictError, EssentialMetadataMissingError,
    MetadataExtractionError, MoveIOError, NoAudioFilesError
)
from utils.logging_config import log_processing_progress

logger = logging.getLogger(__name__)

MB = 1024 * 1024

BASE_SCORES = {
    QualityClass.LOSSLESS: 1000,
    QualityClass.LOSSY: 500,
    QualityClass.MIXED: 300,
    QualityClass.UNKNOWN: 100,
}

# (minimum kbps, bonus), checked in order
BITRATE_BONUSES = ((320, 200), (256, 150), (192, 100), (128, 50))

# (size above MB, bonus), checked in order
SIZE_BONUSES = ((500, 100), (200, 50), (100, 25))

MIXED_FORMAT_PENALTY = 100


def normalize_for_hash(text: Optional[str]) -> str:
    """Casefold, strip diacritics and drop everything but letters and digits."""
    if not text:
        return ""
    return ''.join(c for c in fold_diacritics(text).casefold() if c.isalnum())


def identity_hash(artist: str, title: str, year: Optional[str], track_count: int) -> str:
    key = f"{normalize_for_hash(artist)}_{normalize_for_hash(title)}_{year or '0000'}_{track_count}"
    return hashlib.md5(key.encode('utf-8')).hexdigest()


def quality_score(candidate: DuplicateCandidate) -> int:
    """
    Score an album for keeper selection.

    Base score by quality class, a bitrate bonus for lossy albums, a size
    bonus, and a penalty when more than one format is present.
    """
    score = BASE_SCORES[candidate.quality_class]

    if candidate.quality_class == QualityClass.LOSSY:
        for min_kbps, bonus in BITRATE_BONUSES:
            if candidate.avg_bitrate >= min_kbps:
                score += bonus
                break

    size_mb = candidate.total_size_bytes // MB
    for min_mb, bonus in SIZE_BONUSES:
        if size_mb > min_mb:
            score += bonus
            break

    if len(candidate.formats) > 1:
        score -= MIXED_FORMAT_PENALTY

    return score


def build_candidate(path: Path, identity: AlbumIdentity, tracks: List[TrackMetadata]) -> DuplicateCandidate:
    """Aggregate an album's identity and track stats into a candidate."""
    formats = sorted({normalize_format(t.file_type) for t in tracks if t.file_type})
    bitrates = [t.bitrate for t in tracks if t.bitrate]

    return DuplicateCandidate(
        path=str(path),
        album_artist=identity.album_artist,
        album_title=identity.album_title,
        normalized_artist=normalize_for_hash(identity.album_artist),
        normalized_title=normalize_for_hash(identity.album_title),
        year=identity.year,
        track_count=len(tracks),
        total_size_bytes=sum(t.size_bytes for t in tracks),
        quality_class=classify_quality(formats),
        avg_bitrate=sum(bitrates) // len(bitrates) if bitrates else 0,
        format_mix=','.join(formats),
        identity_hash=identity_hash(identity.album_artist, identity.album_title, identity.year, len(tracks)),
    )


def rank_members(candidates: Iterable[DuplicateCandidate]) -> List[DuplicateMember]:
    """
    Score and order group members, best first.

    Ties on score go to the lexicographically smallest path. Exactly one
    member, the first, is flagged as keeper.
    """
    scored = sorted(
        ((quality_score(c), c) for c in candidates),
        key=lambda pair: (-pair[0], pair[1].path)
    )
    return [
        DuplicateMember(candidate=candidate, quality_score=score, keep=(index == 0))
        for index, (score, candidate) in enumerate(scored)
    ]


class DuplicateDetector:
    """Scans an organized tree, groups duplicates and resolves them."""

    def __init__(
        self,
        store: DuplicatesStore,
        detector: AlbumDetector,
        extractor: MetadataExtractor,
        resolver: IdentityResolver,
        reconstruction: Optional[ReconstructionEngine] = None,
        executor: Optional[MoveExecutor] = None,
        metadata_store: Optional[MetadataStore] = None
    ):
        self.store = store
        self.detector = detector
        self.extractor = extractor
        self.resolver = resolver
        self.reconstruction = reconstruction or ReconstructionEngine()
        self.executor = executor
        self.metadata_store = metadata_store

    def _identify(self, album_dir: Path, tracks: List[TrackMetadata]) -> Optional[AlbumIdentity]:
        """
        Tags first, then the identity recorded when the album was organized,
        then the folder name qualified by its artist folder, then the bare
        folder name.
        """
        try:
            return self.resolver.resolve(tracks, album_dir)
        except EssentialMetadataMissingError as e:
            partial = e.partial

        if self.metadata_store is not None:
            recorded = self.metadata_store.album_identity(album_dir)
            if recorded is not None and recorded.is_complete:
                return recorded

        # Organized folders are '<Artist>/<Title> (<Year>)'
        for name in (f"{album_dir.parent.name} - {album_dir.name}", album_dir.name):
            result = self.reconstruction.reconstruct(name, partial)
            if result.accepted:
                identity = result.to_identity()
                identity = identity.model_copy(
                    update={'album_artist': self.resolver.aliases.resolve(identity.album_artist)}
                )
                return mark_compilation(identity)
        return None

    def scan(self, root: Path) -> List[DuplicateCandidate]:
        """
        Fingerprint every album under root and store the scan.

        Albums without a resolvable identity are skipped.
        """
        album_dirs = self.detector.discover_albums(root)
        candidates = []

        for index, album_dir in enumerate(album_dirs, 1):
            try:
                tracks = self.extractor.extract_album(album_dir)
            except (NoAudioFilesError, MetadataExtractionError) as e:
                logger.warning(f"Skipping {album_dir} in duplicate scan: {e}")
                continue

            identity = self._identify(album_dir, tracks)
            if identity is None:
                logger.warning(f"Skipping {album_dir} in duplicate scan: no usable identity")
                continue

            candidates.append(build_candidate(album_dir, identity, tracks))
            log_processing_progress(index, len(album_dirs), logger, "Scanned {current}/{total} albums ({percentage:.1f}%)")

        stored = self.store.replace_candidates(candidates)
        logger.info(f"Duplicate scan stored {len(stored)} albums from {root}")
        return stored

    def detect(self, candidates: Optional[List[DuplicateCandidate]] = None) -> List[DuplicateGroup]:
        """
        Group candidates sharing an identity hash and rebuild stored groups.

        Args:
            candidates: Scanned albums; the stored scan is used if omitted
        """
        if candidates is None:
            candidates = self.store.candidates()

        by_hash: Dict[str, List[DuplicateCandidate]] = defaultdict(list)
        for candidate in candidates:
            by_hash[candidate.identity_hash].append(candidate)

        groups = [
            DuplicateGroup(identity_hash=h, members=rank_members(members))
            for h, members in sorted(by_hash.items(), key=lambda item: min(c.path for c in item[1]))
            if len(members) >= 2
        ]

        stored = self.store.replace_groups(groups)
        reclaimable = sum(g.reclaimable_bytes for g in stored)
        logger.info(f"Found {len(stored)} duplicate groups, {reclaimable // MB} MB reclaimable")
        return stored

    def render_report(self, groups: List[DuplicateGroup]) -> str:
        """Markdown report of ranked members with keep/remove recommendations."""
        reclaimable = sum(g.reclaimable_bytes for g in groups)
        lines = [
            "# Duplicate Albums Report",
            "",
            f"Generated: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}",
            "",
            f"- Duplicate groups: {len(groups)}",
            f"- Albums to remove: {sum(len(g.removable) for g in groups)}",
            f"- Reclaimable space: {reclaimable / MB:.1f} MB",
            "",
        ]

        for number, group in enumerate(groups, 1):
            keeper = group.keeper
            heading = f"{keeper.candidate.album_artist} - {keeper.candidate.album_title}" if keeper else group.identity_hash
            if keeper and keeper.candidate.year:
                heading += f" ({keeper.candidate.year})"

            lines.extend([
                f"## {number}. {heading}",
                "",
                f"Status: {group.status.value}",
                "",
                "| Path | Quality | Bitrate | Size (MB) | Score | Recommendation |",
                "|------|---------|---------|-----------|-------|----------------|",
            ])
            for member in group.members:
                c = member.candidate
                lines.append(
                    f"| {c.path} | {c.quality_class.value} | {c.avg_bitrate} kbps | "
                    f"{c.total_size_bytes / MB:.1f} | {member.quality_score} | "
                    f"{'KEEP' if member.keep else 'REMOVE'} |"
                )
            lines.append("")

        return '\n'.join(lines)

    def write_report(self, groups: List[DuplicateGroup], report_path: Path) -> Path:
        report_path.parent.mkdir(parents=True, exist_ok=True)
        report_path.write_text(self.render_report(groups), encoding='utf-8')
        logger.info(f"Duplicate report written to: {report_path}")
        return report_path

    def resolve(
        self,
        backup_root: Path,
        groups: Optional[List[DuplicateGroup]] = None,
        library_root: Optional[Path] = None
    ) -> Dict[str, int]:
        """
        Relocate every non-keeper of each pending group into a backup batch.

        In dry-run mode the executor only logs what it would move. A group
        is marked resolved once all its non-keepers are out of the tree.
        Artist and quality folders emptied by a move are removed up to
        library_root.

        Returns:
            Counts of moved and failed albums and of resolved groups
        """
        if self.executor is None:
            raise ValueError("Duplicate resolution needs a move executor")

        if groups is None:
            groups = self.store.groups(ResolutionStatus.PENDING)
        groups = [g for g in groups if g.status == ResolutionStatus.PENDING]

        batch_dir = backup_root / f"duplicates_{datetime.now().strftime('%Y%m%d_%H%M%S')}"
        counts = {'moved': 0, 'failed': 0, 'groups_resolved': 0}

        for group in groups:
            complete = True
            for member in group.removable:
                source = Path(member.candidate.path)
                if not source.exists():
                    logger.info(f"Duplicate already gone: {source}")
                    continue

                target = batch_dir / source.name
                if target.exists():
                    target = batch_dir / f"{source.name}_{member.candidate.id}"

                try:
                    self.executor.move_directory(source, target, prune_root=library_root)
                except (MoveIOError, DestinationConflictError) as e:
                    logger.error(f"Could not relocate duplicate {source}: {e}")
                    counts['failed'] += 1
                    complete = False
                    continue

                if not self.executor.dry_run:
                    counts['moved'] += 1

            if complete and not self.executor.dry_run and group.group_id is not None:
                self.store.mark_resolved(group.group_id)
                counts['groups_resolved'] += 1

        logger.info(
            f"Duplicate resolution: {counts['moved']} moved, {counts['failed']} failed, "
            f"{counts['groups_resolved']} groups resolved"
        )
        return counts
