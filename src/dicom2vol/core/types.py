"""Core data types for the dicom2vol reader."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING

import numpy as np

if TYPE_CHECKING:
    from dicom2vol.io.metadata import AttributeStore


class RowOrder(Enum):
    """Order of image rows in memory."""

    FILE_NATIVE = "native"
    TOP_DOWN = "top-down"
    BOTTOM_UP = "bottom-up"

    def __str__(self) -> str:
        return self.value

    @classmethod
    def parse(cls, value: RowOrder | str) -> RowOrder:
        if isinstance(value, RowOrder):
            return value
        key = value.strip().lower().replace("_", "-")
        for order in cls:
            if order.value == key or order.name.lower().replace("_", "-") == key:
                return order
        choices = ", ".join(o.value for o in cls)
        raise ValueError(f"Unknown row order '{value}'. Choose one of: {choices}")


class ReaderState(Enum):
    UNINITIALIZED = "uninitialized"
    METADATA_READY = "metadata-ready"
    DATA_READY = "data-ready"
    ERROR = "error"


@dataclass(frozen=True)
class PackingDescriptor:
    """How the samples of one file are laid out on disk."""

    rows: int
    columns: int
    samples_per_pixel: int = 1
    bits_allocated: int = 16
    bits_stored: int = 16
    pixel_representation: int = 0  # 0 unsigned, 1 two's complement
    planar_configuration: int = 0  # 0 packed (RGBRGB), 1 planar (RRGGBB)
    photometric_interpretation: str = "MONOCHROME2"

    @property
    def signed(self) -> bool:
        return self.pixel_representation == 1

    @property
    def output_bits(self) -> int:
        """Width of one decoded sample: 1 -> 8, 12 -> 16, otherwise unchanged."""
        if self.bits_allocated <= 8:
            return 8
        if self.bits_allocated <= 16:
            return 16
        return 32

    @property
    def dtype(self) -> np.dtype:
        kind = "i" if self.signed else "u"
        return np.dtype(f"{kind}{self.output_bits // 8}")

    @property
    def frame_samples(self) -> int:
        return self.rows * self.columns * self.samples_per_pixel

    def structure_key(self) -> tuple[int, int, int, int, int, str]:
        """Attributes that must agree across every slice of a volume.

        PlanarConfiguration and BitsStored may differ; the decoder
        resolves both per file.
        """
        return (
            self.rows,
            self.columns,
            self.samples_per_pixel,
            self.bits_allocated,
            self.pixel_representation,
            self.photometric_interpretation,
        )


@dataclass
class FileRecord:
    """One input file, identified by its index in the input list."""

    index: int
    path: Path
    number_of_frames: int
    pixel_offset: int | None = None  # byte offset of the PixelData value
    transfer_syntax: str = "1.2.840.10008.1.2.1"
    packing: PackingDescriptor | None = None
    readable: bool = True


@dataclass
class FrameRecord:
    """One decodable frame inside a file."""

    file_index: int
    frame_index: int
    order: int  # position in the overall input sequence
    position: tuple[float, float, float] | None = None
    orientation: tuple[float, ...] | None = None  # 6 direction cosines
    pixel_spacing: tuple[float, float] | None = None  # (row, column) spacing
    stack_id: str = ""
    time: float | None = None
    rescale_slope: float = 1.0
    rescale_intercept: float = 0.0

    @property
    def key(self) -> tuple[int, int]:
        return (self.file_index, self.frame_index)


@dataclass
class VolumeGeometry:
    """Spacing, extents and the patient-space placement of a volume."""

    dimensions: tuple[int, int, int]  # (columns, rows, slices)
    spacing: tuple[float, float, float]  # (x, y, z) in mm
    patient_matrix: np.ndarray  # float64 [4, 4], data coordinates -> patient
    time_dimension: int = 1
    time_spacing: float = 1.0
    vector_dimension: int = 1
    row_order: RowOrder = RowOrder.BOTTOM_UP
    flipped: bool = False

    @property
    def affine(self) -> np.ndarray:
        """Voxel index (i, j, k) to patient coordinates."""
        return self.patient_matrix @ np.diag([*self.spacing, 1.0])


@dataclass
class RescaleParameters:
    """Per-slice calibration and the single pair reported for the volume."""

    per_frame: dict[tuple[int, int], tuple[float, float]]  # (file, frame) -> (slope, intercept)
    slope: float = 1.0
    intercept: float = 0.0
    harmonized: bool = False  # buffer values were remapped to (slope, intercept)

    @property
    def uniform(self) -> bool:
        return len(set(self.per_frame.values())) <= 1

    @property
    def applied(self) -> bool:
        """Whether (slope, intercept) is valid for every voxel of the buffer."""
        return self.harmonized or self.uniform


@dataclass
class ReaderConfig:
    """Construction-time options for DicomVolumeReader."""

    desired_stack_id: str | None = None
    desired_time_index: int = -1  # -1 reads every time step
    sorting: bool = True
    sorter: str = "default"
    memory_row_order: RowOrder = RowOrder.BOTTOM_UP
    auto_rescale: bool = True
    rescale_target: tuple[float, float] | None = None  # (slope, intercept)
    auto_ybr_to_rgb: bool = True
    time_as_vector: bool = False
    spacing_tolerance: float = 0.01  # relative to the mean slice spacing
    skip_unreadable: bool = False
    workers: int = 1

    def __post_init__(self):
        self.memory_row_order = RowOrder.parse(self.memory_row_order)


@dataclass
class VolumeInfo:
    """Result of the metadata phase."""

    geometry: VolumeGeometry
    rescale: RescaleParameters
    scalar_type: np.dtype
    number_of_components: int
    samples_per_pixel: int
    photometric_interpretation: str  # source encoding, even after YBR->RGB
    ybr_to_rgb: bool
    stack_ids: list[str]
    time_steps: int  # time steps delivered by the data phase
    time_as_vector: bool
    file_index_array: np.ndarray  # int [slices, components]
    frame_index_array: np.ndarray  # int [slices, components]
    metadata: AttributeStore | None = None
    warnings: list[str] = field(default_factory=list)

    @property
    def dimensions(self) -> tuple[int, int, int]:
        return self.geometry.dimensions

    @property
    def shape(self) -> tuple[int, int, int, int, int]:
        """Buffer shape as (time, slices, rows, columns, components)."""
        columns, rows, slices = self.geometry.dimensions
        time = 1 if self.time_as_vector else self.time_steps
        return (time, slices, rows, columns, self.number_of_components)


@dataclass
class VolumeData:
    """Result of the data phase."""

    voxels: np.ndarray  # [T, Z, Y, X, C]
    info: VolumeInfo
    file_index_array: np.ndarray
    frame_index_array: np.ndarray
