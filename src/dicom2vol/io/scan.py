"""Directory scanning: find DICOM files and group them by series."""

from __future__ import annotations

import logging
from pathlib import Path

import pydicom
from pydicom.errors import InvalidDicomError

from dicom2vol.core.errors import ConfigurationError

logger = logging.getLogger(__name__)


def find_series(directory: Path) -> dict[str, list[Path]]:
    """Scan ``directory`` recursively and group readable files by Series Instance UID.

    Files that are not DICOM are ignored.  Paths within a series keep
    their sorted directory order, which is the order the reader sees them.
    """
    directory = Path(directory)
    if not directory.is_dir():
        raise FileNotFoundError(f"Path not found: {directory}")

    groups: dict[str, list[Path]] = {}
    for path in sorted(directory.rglob("*")):
        if not path.is_file():
            continue
        try:
            ds = pydicom.dcmread(str(path), stop_before_pixels=True)
        except (InvalidDicomError, OSError, EOFError):
            logger.debug(f"Skipping non-DICOM file {path}")
            continue
        uid = str(getattr(ds, "SeriesInstanceUID", "unknown"))
        groups.setdefault(uid, []).append(path)
    return groups


def match_series_uid(series_groups: dict[str, list[Path]], partial_uid: str) -> str:
    """Resolve a full or partial Series Instance UID to one scanned series.

    An exact UID wins; otherwise the first UID containing ``partial_uid``
    in scan order is used.
    """
    if partial_uid in series_groups:
        return partial_uid
    candidates = [uid for uid in series_groups if partial_uid in uid]
    if not candidates:
        listing = ", ".join(f"{uid} ({len(paths)} files)" for uid, paths in series_groups.items())
        raise ConfigurationError(f"No series matching '{partial_uid}'. Available: {listing}")
    if len(candidates) > 1:
        logger.warning(
            f"{len(candidates)} series match '{partial_uid}', using {candidates[0]}"
        )
    return candidates[0]


def select_best_series(series_groups: dict[str, list[Path]]) -> str:
    """Select the series with the most files."""
    return max(series_groups, key=lambda uid: len(series_groups[uid]))


def resolve_inputs(inputs: list[Path], series_uid: str | None = None) -> list[Path]:
    """Expand the command-line inputs into the file list for one series.

    A single directory is scanned and one series picked from it; explicit
    files are used as given, in the given order.
    """
    if len(inputs) == 1 and Path(inputs[0]).is_dir():
        groups = find_series(inputs[0])
        if not groups:
            raise ValueError(f"No valid DICOM files found in {inputs[0]}")
        uid = match_series_uid(groups, series_uid) if series_uid else select_best_series(groups)
        logger.info(f"Selected series {uid} with {len(groups[uid])} files")
        return groups[uid]

    paths = [Path(p) for p in inputs]
    for path in paths:
        if not path.exists():
            raise FileNotFoundError(f"Path not found: {path}")
    return paths
