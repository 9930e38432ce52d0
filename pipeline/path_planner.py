"""
Organization path planning.

Chooses an organization mode for an album and builds its destination:

    <root>/<Quality>/<mode path>/<Title> (<Year>) [<Catalog>]

where the mode path is one of

    Artist          <Artist>
    Label           Labels/<Label>/<Artist>
    Series          Series/<Series prefix>/<Artist>
    Compilation     Various Artists
    RemixSeparated  Remixes/<Remixer or Artist>

Every segment is sanitized on its own.
"""

import re
from pathlib import Path
from typing import Callable, Optional
import logging

from filesystem.file_ops import sanitize_path_segment
from models.schemas import (
    AlbumIdentity, OrganizationMode, OrganizationPlan, OrganizationStrategy,
    PlanStatus, QualityClass
)
from pipeline.identity import VARIOUS_ARTISTS, is_various_artists
from utils.config_loader import PlannerSettings
from utils.exceptions import EssentialMetadataMissingError

logger = logging.getLogger(__name__)

LabelCountLookup = Callable[[str], int]

SERIES_DIGITS = re.compile(r'\d{3,}')


def series_prefix(catalog_number: Optional[str]) -> Optional[str]:
    """
    Series name of a catalog number: the part before its trailing digit run.

    Only catalog numbers with a run of at least three digits form a
    series ('WARP123' -> 'WARP', 'HP7' -> None).
    """
    if not catalog_number or not SERIES_DIGITS.search(catalog_number):
        return None
    prefix = re.sub(r'[\s._-]*\d+[A-Za-z]?$', '', catalog_number.strip())
    prefix = prefix.strip(' ._-')
    return prefix or None


def album_folder_name(identity: AlbumIdentity) -> str:
    name = identity.album_title
    if identity.year:
        name = f"{name} ({identity.year})"
    if identity.catalog_number:
        name = f"{name} [{identity.catalog_number}]"
    return sanitize_path_segment(name)


class PathPlanner:
    """Maps an identity and quality class to a destination directory."""

    def __init__(
        self,
        destination_root: Path,
        settings: Optional[PlannerSettings] = None,
        label_counts: Optional[LabelCountLookup] = None
    ):
        self.destination_root = destination_root
        self.settings = settings or PlannerSettings()
        self.label_counts = label_counts or (lambda label: 0)

    def choose_mode(self, identity: AlbumIdentity) -> OrganizationMode:
        """Pick the organization mode for one album."""
        if identity.is_compilation or is_various_artists(identity.album_artist):
            return OrganizationMode.COMPILATION

        if not self.settings.enable_electronic:
            return OrganizationMode.ARTIST

        if identity.is_remix:
            return OrganizationMode.REMIX_SEPARATED

        strategy = self.settings.strategy

        if strategy == OrganizationStrategy.LABEL and identity.label:
            return OrganizationMode.LABEL

        if strategy == OrganizationStrategy.SERIES and series_prefix(identity.catalog_number):
            return OrganizationMode.SERIES

        if strategy == OrganizationStrategy.HYBRID and identity.label:
            projected = self.label_counts(identity.label) + 1
            if projected >= self.settings.min_label_releases:
                return OrganizationMode.LABEL
            logger.debug(
                f"Label '{identity.label}' has {projected} release(s), below "
                f"{self.settings.min_label_releases}; using artist layout"
            )

        return OrganizationMode.ARTIST

    def mode_path(self, identity: AlbumIdentity, mode: OrganizationMode) -> Path:
        artist = sanitize_path_segment(identity.album_artist)

        if mode == OrganizationMode.COMPILATION:
            return Path(VARIOUS_ARTISTS)
        if mode == OrganizationMode.LABEL:
            return Path("Labels") / sanitize_path_segment(identity.label) / artist
        if mode == OrganizationMode.SERIES:
            return Path("Series") / sanitize_path_segment(series_prefix(identity.catalog_number)) / artist
        if mode == OrganizationMode.REMIX_SEPARATED:
            return Path("Remixes") / sanitize_path_segment(identity.remixer or identity.album_artist)
        return Path(artist)

    def plan(self, source: Path, identity: AlbumIdentity, quality: QualityClass) -> OrganizationPlan:
        """
        Plan the destination of an album.

        A destination that already exists, or is the source itself, yields
        an AlreadyOrganized plan rather than an error.

        Raises:
            EssentialMetadataMissingError: If the identity lacks artist or title
        """
        missing = identity.missing_fields()
        if missing:
            raise EssentialMetadataMissingError(str(source), missing, partial=identity)

        mode = self.choose_mode(identity)
        destination = (
            self.destination_root / quality.value / self.mode_path(identity, mode) / album_folder_name(identity)
        )

        status = PlanStatus.PLANNED
        if destination.exists() or _same_path(source, destination):
            status = PlanStatus.ALREADY_ORGANIZED

        return OrganizationPlan(
            source=source, destination=destination, mode=mode, quality=quality, status=status
        )


def _same_path(a: Path, b: Path) -> bool:
    try:
        return a.resolve() == b.resolve()
    except OSError:
        return a == b
