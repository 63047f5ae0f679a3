"""Shared test fixtures: synthetic DICOM data."""

from __future__ import annotations

from pathlib import Path

import numpy as np
import pydicom
import pytest
from pydicom.dataset import Dataset, FileDataset
from pydicom.uid import ExplicitVRLittleEndian, RLELossless, generate_uid

MR_IMAGE_STORAGE = "1.2.840.10008.5.1.4.1.1.4"
ENHANCED_MR_IMAGE_STORAGE = "1.2.840.10008.5.1.4.1.1.4.1"


def _write_synthetic_dicom(
    path: Path,
    pixels: np.ndarray | None = None,
    *,
    rows: int = 4,
    cols: int = 4,
    position: tuple[float, float, float] | None = (0.0, 0.0, 0.0),
    orientation: tuple[float, ...] | None = (1, 0, 0, 0, 1, 0),
    pixel_spacing: tuple[float, float] | None = (1.0, 1.0),
    slice_thickness: float | None = 1.0,
    series_uid: str | None = None,
    instance_number: int = 1,
    slope: float | None = None,
    intercept: float | None = None,
    stack_id: str | None = None,
    trigger_time: float | None = None,
    bits_allocated: int = 16,
    bits_stored: int | None = None,
    pixel_representation: int = 0,
    photometric: str = "MONOCHROME2",
    samples_per_pixel: int = 1,
    planar_configuration: int | None = None,
    pixel_bytes: bytes | None = None,
    compress: bool = False,
) -> Path:
    """Write a single synthetic DICOM file.

    ``pixels`` is ``[rows, cols]`` or ``[rows, cols, samples]``; pass
    ``pixel_bytes`` instead for payloads numpy cannot express (1 or 12 bit).
    """
    file_meta = pydicom.Dataset()
    file_meta.MediaStorageSOPClassUID = MR_IMAGE_STORAGE
    file_meta.MediaStorageSOPInstanceUID = generate_uid()
    file_meta.TransferSyntaxUID = ExplicitVRLittleEndian

    ds = FileDataset(str(path), {}, file_meta=file_meta, preamble=b"\x00" * 128)

    ds.SOPClassUID = MR_IMAGE_STORAGE
    ds.SOPInstanceUID = file_meta.MediaStorageSOPInstanceUID
    ds.SeriesInstanceUID = series_uid or generate_uid()
    ds.StudyInstanceUID = generate_uid()
    ds.Modality = "MR"
    ds.InstanceNumber = instance_number
    if position is not None:
        ds.ImagePositionPatient = list(position)
    if orientation is not None:
        ds.ImageOrientationPatient = list(orientation)
    if pixel_spacing is not None:
        ds.PixelSpacing = list(pixel_spacing)
    if slice_thickness is not None:
        ds.SliceThickness = slice_thickness
    if slope is not None:
        ds.RescaleSlope = slope
    if intercept is not None:
        ds.RescaleIntercept = intercept
    if stack_id is not None:
        ds.StackID = stack_id
    if trigger_time is not None:
        ds.TriggerTime = trigger_time

    if pixels is not None:
        rows, cols = pixels.shape[:2]
        samples_per_pixel = pixels.shape[2] if pixels.ndim == 3 else 1
    ds.Rows = rows
    ds.Columns = cols
    ds.BitsAllocated = bits_allocated
    ds.BitsStored = bits_stored or bits_allocated
    ds.HighBit = ds.BitsStored - 1
    ds.PixelRepresentation = pixel_representation
    ds.SamplesPerPixel = samples_per_pixel
    ds.PhotometricInterpretation = photometric
    if samples_per_pixel > 1:
        ds.PlanarConfiguration = planar_configuration or 0

    if pixel_bytes is None:
        if pixels is None:
            pixels = np.zeros((rows, cols), dtype=np.uint16)
        if samples_per_pixel > 1 and planar_configuration == 1:
            pixel_bytes = np.ascontiguousarray(pixels.transpose(2, 0, 1)).tobytes()
        else:
            pixel_bytes = pixels.tobytes()
    ds.PixelData = pixel_bytes

    if compress:
        ds.compress(RLELossless)

    ds.save_as(str(path))
    return path


def _write_enhanced_dicom(
    path: Path,
    frames: list[dict],
    rows: int = 4,
    cols: int = 4,
    orientation: tuple[float, ...] = (1, 0, 0, 0, 1, 0),
) -> Path:
    """Write an enhanced multi-frame file; each frame dict holds
    ``pixels`` plus optional ``position``, ``stack_id``, ``temporal_index``,
    ``trigger_delay``, ``slope`` and ``intercept``."""
    file_meta = pydicom.Dataset()
    file_meta.MediaStorageSOPClassUID = ENHANCED_MR_IMAGE_STORAGE
    file_meta.MediaStorageSOPInstanceUID = generate_uid()
    file_meta.TransferSyntaxUID = ExplicitVRLittleEndian

    ds = FileDataset(str(path), {}, file_meta=file_meta, preamble=b"\x00" * 128)
    ds.SOPClassUID = ENHANCED_MR_IMAGE_STORAGE
    ds.SOPInstanceUID = file_meta.MediaStorageSOPInstanceUID
    ds.SeriesInstanceUID = generate_uid()
    ds.StudyInstanceUID = generate_uid()
    ds.Modality = "MR"
    ds.NumberOfFrames = len(frames)
    ds.Rows = rows
    ds.Columns = cols
    ds.BitsAllocated = 16
    ds.BitsStored = 16
    ds.HighBit = 15
    ds.PixelRepresentation = 0
    ds.SamplesPerPixel = 1
    ds.PhotometricInterpretation = "MONOCHROME2"

    shared = Dataset()
    plane_orientation = Dataset()
    plane_orientation.ImageOrientationPatient = list(orientation)
    shared.PlaneOrientationSequence = [plane_orientation]
    measures = Dataset()
    measures.PixelSpacing = [0.5, 0.5]
    measures.SliceThickness = 5.0
    shared.PixelMeasuresSequence = [measures]
    ds.SharedFunctionalGroupsSequence = [shared]

    per_frame = []
    for frame in frames:
        item = Dataset()
        if "position" in frame:
            plane_position = Dataset()
            plane_position.ImagePositionPatient = list(frame["position"])
            item.PlanePositionSequence = [plane_position]
        content = Dataset()
        if "stack_id" in frame:
            content.StackID = frame["stack_id"]
        if "temporal_index" in frame:
            content.TemporalPositionIndex = frame["temporal_index"]
        item.FrameContentSequence = [content]
        if "trigger_delay" in frame:
            cardiac = Dataset()
            cardiac.NominalCardiacTriggerDelayTime = frame["trigger_delay"]
            item.CardiacSynchronizationSequence = [cardiac]
        if "slope" in frame:
            transform = Dataset()
            transform.RescaleSlope = frame["slope"]
            transform.RescaleIntercept = frame.get("intercept", 0.0)
            item.PixelValueTransformationSequence = [transform]
        per_frame.append(item)
    ds.PerFrameFunctionalGroupsSequence = per_frame

    ds.PixelData = b"".join(
        np.asarray(frame["pixels"], dtype=np.uint16).tobytes() for frame in frames
    )
    ds.save_as(str(path))
    return path


@pytest.fixture
def write_dicom():
    """Factory fixture: ``write_dicom(path, pixels, **attributes)``."""
    return _write_synthetic_dicom


@pytest.fixture
def write_enhanced_dicom():
    """Factory fixture for enhanced multi-frame files."""
    return _write_enhanced_dicom


def constant_slice(value: int, rows: int = 4, cols: int = 4) -> np.ndarray:
    return np.full((rows, cols), value, dtype=np.uint16)


@pytest.fixture
def axial_files(tmp_path) -> list[Path]:
    """Three slices at z=20, 0, 10 (in that input order), pixel value = z."""
    series_uid = generate_uid()
    paths = []
    for i, z in enumerate((20.0, 0.0, 10.0)):
        paths.append(
            _write_synthetic_dicom(
                tmp_path / f"slice_{i}.dcm",
                constant_slice(int(z)),
                position=(0.0, 0.0, z),
                series_uid=series_uid,
                instance_number=i + 1,
            )
        )
    return paths


@pytest.fixture
def gradient_file(tmp_path) -> Path:
    """One 4x3 slice whose pixel value encodes (row, column) as 10*row + column."""
    pixels = (np.arange(4)[:, None] * 10 + np.arange(3)[None, :]).astype(np.uint16)
    return _write_synthetic_dicom(tmp_path / "gradient.dcm", pixels)


@pytest.fixture
def cine_files(tmp_path) -> list[Path]:
    """One position, trigger times 80, 0, 40 in input order, pixel value = time."""
    series_uid = generate_uid()
    paths = []
    for i, t in enumerate((80.0, 0.0, 40.0)):
        paths.append(
            _write_synthetic_dicom(
                tmp_path / f"phase_{i}.dcm",
                constant_slice(int(t)),
                position=(0.0, 0.0, 0.0),
                trigger_time=t,
                series_uid=series_uid,
            )
        )
    return paths


@pytest.fixture
def dicom_directory(tmp_path) -> Path:
    """Directory with a 6-slice series and a 2-slice series."""
    root = tmp_path / "study"
    root.mkdir()
    for uid, count in (("1.2.826.0.1.3680043.99.1", 6), ("1.2.826.0.1.3680043.99.2", 2)):
        for i in range(count):
            _write_synthetic_dicom(
                root / f"{uid[-1]}_{i:03d}.dcm",
                constant_slice(i * 100),
                position=(0.0, 0.0, float(i) * 2.5),
                series_uid=uid,
                instance_number=i + 1,
            )
    (root / "notes.txt").write_text("not a DICOM file")
    return root
