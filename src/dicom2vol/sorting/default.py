"""Built-in slice sorters."""

from __future__ import annotations

import logging
from collections.abc import Sequence

import numpy as np

from dicom2vol.core.errors import Stage, StructureError
from dicom2vol.core.types import FrameRecord
from dicom2vol.sorting.base import SliceSorter, SortResult
from dicom2vol.sorting.registry import register_sorter

logger = logging.getLogger(__name__)

ORIENTATION_TOLERANCE = 1e-4
LOCATION_TOLERANCE = 1e-3  # mm


@register_sorter("default")
class SpatialSliceSorter(SliceSorter):
    """Sort by position along the slice normal, then by time, then input order."""

    description = "Position along the slice normal, then time, then input order."

    def sort(self, frames: Sequence[FrameRecord]) -> SortResult:
        if not frames:
            raise StructureError("No frames to sort", stage=Stage.SORT)

        has_geometry = [f.position is not None and f.orientation is not None for f in frames]
        if not any(has_geometry):
            logger.warning("No ImagePositionPatient/ImageOrientationPatient, keeping input order")
            return input_order(frames)
        if not all(has_geometry):
            bad = frames[has_geometry.index(False)]
            raise StructureError(
                "Frame lacks ImagePositionPatient or ImageOrientationPatient",
                stage=Stage.SORT,
                file_index=bad.file_index,
                frame_index=bad.frame_index,
            )

        reference = np.asarray(frames[0].orientation, dtype=np.float64)
        for f in frames:
            if not np.allclose(f.orientation, reference, atol=ORIENTATION_TOLERANCE):
                raise StructureError(
                    "Stack contains more than one image orientation",
                    stage=Stage.SORT,
                    file_index=f.file_index,
                    frame_index=f.frame_index,
                )

        normal = np.cross(reference[:3], reference[3:])
        locations = np.array([float(np.dot(f.position, normal)) for f in frames])
        location_ids = _cluster(locations, LOCATION_TOLERANCE)

        # rank distinct time values within each location
        time_ranks = np.zeros(len(frames), dtype=np.int64)
        times_by_location: dict[int, list[float | None]] = {}
        for f, loc in zip(frames, location_ids):
            times_by_location.setdefault(int(loc), [])
            if f.time not in times_by_location[int(loc)]:
                times_by_location[int(loc)].append(f.time)
        for loc, times in times_by_location.items():
            times.sort(key=_time_key)
        for i, (f, loc) in enumerate(zip(frames, location_ids)):
            time_ranks[i] = times_by_location[int(loc)].index(f.time)

        order = sorted(
            range(len(frames)),
            key=lambda i: (time_ranks[i], location_ids[i], frames[i].order),
        )

        first_times = times_by_location[int(location_ids[order[0]])]
        time_values = None
        if len(first_times) > 1 and all(t is not None for t in first_times):
            time_values = [float(t) for t in first_times]

        return SortResult(
            file_indices=np.array([frames[i].file_index for i in order], dtype=np.int64),
            frame_indices=np.array([frames[i].frame_index for i in order], dtype=np.int64),
            time_indices=time_ranks[order],
            locations=locations[order],
            time_values=time_values,
        )


@register_sorter("input-order")
class InputOrderSorter(SliceSorter):
    """Keep frames in the order they were given."""

    description = "No geometric sort: one slice per frame, in input order."

    def sort(self, frames: Sequence[FrameRecord]) -> SortResult:
        if not frames:
            raise StructureError("No frames to sort", stage=Stage.SORT)
        return input_order(frames)


def input_order(frames: Sequence[FrameRecord]) -> SortResult:
    ordered = sorted(frames, key=lambda f: f.order)
    return SortResult(
        file_indices=np.array([f.file_index for f in ordered], dtype=np.int64),
        frame_indices=np.array([f.frame_index for f in ordered], dtype=np.int64),
        time_indices=np.zeros(len(ordered), dtype=np.int64),
        spatial=False,
    )


def _cluster(values: np.ndarray, tolerance: float) -> np.ndarray:
    """Label values so that values within ``tolerance`` of a cluster start share a label."""
    order = np.argsort(values, kind="stable")
    labels = np.empty(len(values), dtype=np.int64)
    label = -1
    start = None
    for i in order:
        if start is None or values[i] - start > tolerance:
            label += 1
            start = values[i]
        labels[i] = label
    return labels


def _time_key(t: float | None) -> tuple[int, float]:
    return (0, 0.0) if t is None else (1, float(t))
