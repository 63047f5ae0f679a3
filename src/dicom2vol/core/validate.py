"""Structure validation: confirm that sorted frames form one volume."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass

import numpy as np

from dicom2vol.core.errors import StructureError
from dicom2vol.core.types import FileRecord, PackingDescriptor
from dicom2vol.sorting.base import SortResult
from dicom2vol.sorting.default import LOCATION_TOLERANCE

logger = logging.getLogger(__name__)


@dataclass
class VolumeLayout:
    """Validated (time, slice, vector) arrangement of the sorted frames."""

    file_indices: np.ndarray  # int [T, Z, V]
    frame_indices: np.ndarray  # int [T, Z, V]
    packing: PackingDescriptor
    slice_spacing: float | None = None  # None for one slice or unsorted input
    locations: np.ndarray | None = None  # float [Z]
    time_values: list[float] | None = None

    @property
    def time_dimension(self) -> int:
        return self.file_indices.shape[0]

    @property
    def slices(self) -> int:
        return self.file_indices.shape[1]

    @property
    def vector_dimension(self) -> int:
        return self.file_indices.shape[2]


def validate_structure(
    result: SortResult,
    files: Sequence[FileRecord],
    tolerance: float = 0.01,
) -> VolumeLayout:
    """Check the sorted frames and arrange them as [time, slice, vector].

    Raises StructureError when a (file, frame) pair repeats, when pixel
    modules disagree, when time steps hold different numbers of frames,
    or when slice spacing is not uniform within ``tolerance`` (relative).
    """
    if len(result) == 0:
        raise StructureError("No frames to assemble")

    seen: set[tuple[int, int]] = set()
    for file_idx, frame_idx in zip(result.file_indices, result.frame_indices):
        key = (int(file_idx), int(frame_idx))
        if key in seen:
            raise StructureError(
                "Frame referenced more than once", file_index=key[0], frame_index=key[1]
            )
        seen.add(key)

    packing = _common_packing(result, files)

    time_steps = np.unique(result.time_indices)
    counts = [int(np.sum(result.time_indices == t)) for t in time_steps]
    if len(set(counts)) > 1:
        raise StructureError(
            f"Time steps hold different numbers of frames: {counts}"
        )

    per_time_slices: list[list[list[int]]] = []
    per_time_locations: list[list[float]] = []
    for t in time_steps:
        entries = np.flatnonzero(result.time_indices == t)
        slices, locations = _group_slices(entries, result)
        per_time_slices.append(slices)
        per_time_locations.append(locations)

    shape = {(len(s), len(s[0])) for s in per_time_slices}
    vector_sizes = {len(group) for s in per_time_slices for group in s}
    if len(shape) > 1 or len(vector_sizes) > 1:
        raise StructureError(
            "Slices hold different numbers of frames; cannot form a regular volume"
        )

    locations = None
    spacing = None
    if result.spatial:
        reference = np.array(per_time_locations[0])
        for other in per_time_locations[1:]:
            if not np.allclose(reference, other, atol=LOCATION_TOLERANCE):
                raise StructureError("Time steps cover different slice positions")
        locations = reference
        if len(reference) > 1:
            spacing = _uniform_spacing(reference, tolerance)

    index = np.array(per_time_slices, dtype=np.int64)  # [T, Z, V] into the sort result
    layout = VolumeLayout(
        file_indices=result.file_indices[index],
        frame_indices=result.frame_indices[index],
        packing=packing,
        slice_spacing=spacing,
        locations=locations,
        time_values=result.time_values,
    )
    logger.debug(
        f"Validated layout: {layout.time_dimension} time step(s), "
        f"{layout.slices} slice(s), {layout.vector_dimension} vector component(s)"
    )
    return layout


def _common_packing(result: SortResult, files: Sequence[FileRecord]) -> PackingDescriptor:
    reference: PackingDescriptor | None = None
    for file_idx in dict.fromkeys(int(i) for i in result.file_indices):
        packing = files[file_idx].packing
        if packing is None:
            raise StructureError("File has no pixel description", file_index=file_idx)
        if reference is None:
            reference = packing
        elif packing.structure_key() != reference.structure_key():
            raise StructureError(
                "Rows, Columns, SamplesPerPixel, BitsAllocated, PixelRepresentation "
                "or PhotometricInterpretation "
                f"differ: {packing.structure_key()} vs {reference.structure_key()}",
                file_index=file_idx,
            )
    assert reference is not None
    return reference


def _group_slices(entries: np.ndarray, result: SortResult) -> tuple[list[list[int]], list[float]]:
    """Split one time step's entries into slices of vector components."""
    if not result.spatial or result.locations is None:
        return [[int(i)] for i in entries], []

    slices: list[list[int]] = []
    locations: list[float] = []
    for i in entries:
        loc = float(result.locations[i])
        if slices and abs(loc - locations[-1]) <= LOCATION_TOLERANCE:
            slices[-1].append(int(i))
        else:
            slices.append([int(i)])
            locations.append(loc)
    return slices, locations


def _uniform_spacing(locations: np.ndarray, tolerance: float) -> float:
    diffs = np.diff(locations)
    mean = float(diffs.mean())
    worst = float(np.max(np.abs(diffs - mean)))
    if worst > tolerance * abs(mean):
        raise StructureError(
            f"Slice spacing is not uniform: mean {mean:.4f} mm, "
            f"deviation {worst:.4f} mm exceeds tolerance {tolerance:g}"
        )
    return mean
