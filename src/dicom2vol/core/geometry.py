"""Patient-space geometry and memory row order."""

from __future__ import annotations

import logging

import numpy as np

from dicom2vol.core.types import FrameRecord, RowOrder, VolumeGeometry
from dicom2vol.core.validate import VolumeLayout

logger = logging.getLogger(__name__)

DEFAULT_ORIENTATION = (1.0, 0.0, 0.0, 0.0, 1.0, 0.0)


def needs_flip(row_order: RowOrder, native: RowOrder = RowOrder.TOP_DOWN) -> bool:
    """Whether rows must be reversed to honour ``row_order``."""
    if row_order == RowOrder.FILE_NATIVE or native == RowOrder.FILE_NATIVE:
        return False
    return row_order != native


def flip_rows(arr: np.ndarray, axis: int = -3) -> np.ndarray:
    """Reverse the row axis of ``[..., rows, columns, samples]`` data in a new buffer."""
    return np.ascontiguousarray(np.flip(arr, axis=axis))


def patient_matrix(
    orientation: tuple[float, ...],
    position: tuple[float, float, float],
    rows: int = 1,
    row_spacing: float = 1.0,
    flipped: bool = False,
) -> np.ndarray:
    """4x4 matrix from data coordinates (index times spacing) to patient coordinates.

    Columns are the row direction, the column direction, the slice normal
    and the position of the first voxel in memory.  When rows are flipped
    in memory the first voxel is the bottom-left one of the file, so the
    column direction is negated and the origin moves to the last row.
    The normal is not negated, so slices stay in ascending order and the
    flipped matrix is a reflection (determinant -1).
    """
    row_dir = np.asarray(orientation[:3], dtype=np.float64)
    col_dir = np.asarray(orientation[3:6], dtype=np.float64)
    normal = np.cross(row_dir, col_dir)
    origin = np.asarray(position, dtype=np.float64)

    if flipped:
        origin = origin + (rows - 1) * row_spacing * col_dir
        col_dir = -col_dir

    matrix = np.eye(4)
    matrix[:3, 0] = row_dir
    matrix[:3, 1] = col_dir
    matrix[:3, 2] = normal
    matrix[:3, 3] = origin
    return matrix


def build_geometry(
    layout: VolumeLayout,
    first: FrameRecord,
    row_order: RowOrder,
    native_row_order: RowOrder = RowOrder.TOP_DOWN,
    fallback_slice_spacing: float | None = None,
) -> VolumeGeometry:
    """Derive spacing, extents and the patient matrix for a validated layout."""
    packing = layout.packing

    if first.pixel_spacing is not None:
        row_spacing, col_spacing = first.pixel_spacing
    else:
        logger.warning("No pixel spacing found, using default 1.0mm")
        row_spacing, col_spacing = 1.0, 1.0

    if layout.slice_spacing is not None:
        slice_spacing = abs(layout.slice_spacing)
    elif fallback_slice_spacing:
        slice_spacing = float(fallback_slice_spacing)
    else:
        slice_spacing = 1.0

    time_spacing = 1.0
    if layout.time_values and len(layout.time_values) > 1:
        time_spacing = float(np.mean(np.diff(layout.time_values)))

    flipped = needs_flip(row_order, native_row_order)
    matrix = patient_matrix(
        first.orientation or DEFAULT_ORIENTATION,
        first.position or (0.0, 0.0, 0.0),
        rows=packing.rows,
        row_spacing=row_spacing,
        flipped=flipped,
    )

    return VolumeGeometry(
        dimensions=(packing.columns, packing.rows, layout.slices),
        spacing=(float(col_spacing), float(row_spacing), slice_spacing),
        patient_matrix=matrix,
        time_dimension=layout.time_dimension,
        time_spacing=time_spacing,
        vector_dimension=layout.vector_dimension,
        row_order=row_order,
        flipped=flipped,
    )
