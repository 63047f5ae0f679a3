"""Unit tests for structure validation."""

from __future__ import annotations

from pathlib import Path

import numpy as np
import pytest

from dicom2vol.core.errors import Stage, StructureError
from dicom2vol.core.types import FileRecord, PackingDescriptor
from dicom2vol.core.validate import validate_structure
from dicom2vol.sorting.base import SortResult

PACKING = PackingDescriptor(rows=4, columns=4)


def _files(n, packing=PACKING):
    return [FileRecord(i, Path(f"f{i}.dcm"), 1, pixel_offset=0, packing=packing) for i in range(n)]


def _result(locations, times=None, files=None):
    n = len(locations)
    return SortResult(
        file_indices=np.array(files if files is not None else range(n), dtype=np.int64),
        frame_indices=np.zeros(n, dtype=np.int64),
        time_indices=np.array(times if times is not None else [0] * n, dtype=np.int64),
        locations=np.array(locations, dtype=np.float64),
    )


def test_regular_stack():
    layout = validate_structure(_result([0.0, 2.5, 5.0, 7.5]), _files(4))
    assert (layout.time_dimension, layout.slices, layout.vector_dimension) == (1, 4, 1)
    assert layout.slice_spacing == pytest.approx(2.5)
    assert layout.file_indices[0, :, 0].tolist() == [0, 1, 2, 3]


def test_single_slice_has_no_spacing():
    layout = validate_structure(_result([4.0]), _files(1))
    assert layout.slices == 1
    assert layout.slice_spacing is None


def test_duplicate_frame_rejected():
    result = _result([0.0, 1.0], files=[0, 0])
    with pytest.raises(StructureError) as exc:
        validate_structure(result, _files(1))
    assert exc.value.stage == Stage.VALIDATE
    assert (exc.value.file_index, exc.value.frame_index) == (0, 0)


def test_packing_mismatch_rejected():
    files = _files(2)
    files[1].packing = PackingDescriptor(rows=4, columns=8)
    with pytest.raises(StructureError, match="differ") as exc:
        validate_structure(_result([0.0, 1.0]), files)
    assert exc.value.file_index == 1


def test_bits_stored_may_differ():
    files = _files(2)
    files[1].packing = PackingDescriptor(rows=4, columns=4, bits_stored=12)
    layout = validate_structure(_result([0.0, 1.0]), files)
    assert layout.slices == 2


def test_non_uniform_spacing_rejected():
    with pytest.raises(StructureError, match="not uniform"):
        validate_structure(_result([0.0, 1.0, 3.0]), _files(3))


def test_spacing_within_tolerance_accepted():
    layout = validate_structure(_result([0.0, 1.0, 2.005]), _files(3))
    assert layout.slice_spacing == pytest.approx(1.0025)


def test_unequal_time_steps_rejected():
    result = _result([0.0, 1.0, 0.0], times=[0, 0, 1])
    with pytest.raises(StructureError, match="different numbers of frames"):
        validate_structure(result, _files(3))


def test_time_steps_with_different_positions_rejected():
    result = _result([0.0, 1.0, 0.0, 2.0], times=[0, 0, 1, 1])
    with pytest.raises(StructureError, match="different slice positions"):
        validate_structure(result, _files(4))


def test_time_series_layout():
    result = _result([0.0, 5.0, 0.0, 5.0], times=[0, 0, 1, 1])
    layout = validate_structure(result, _files(4))
    assert (layout.time_dimension, layout.slices, layout.vector_dimension) == (2, 2, 1)
    assert layout.file_indices[:, :, 0].tolist() == [[0, 1], [2, 3]]


def test_shared_location_becomes_vector():
    layout = validate_structure(_result([0.0, 0.0, 3.0, 3.0]), _files(4))
    assert (layout.slices, layout.vector_dimension) == (2, 2)
    assert layout.file_indices[0].tolist() == [[0, 1], [2, 3]]
    assert layout.slice_spacing == pytest.approx(3.0)


def test_irregular_vector_rejected():
    with pytest.raises(StructureError, match="regular volume"):
        validate_structure(_result([0.0, 0.0, 3.0]), _files(3))


def test_unsorted_input_is_one_slice_per_frame():
    result = SortResult(
        file_indices=np.array([2, 0, 1]),
        frame_indices=np.zeros(3, dtype=np.int64),
        time_indices=np.zeros(3, dtype=np.int64),
        spatial=False,
    )
    layout = validate_structure(result, _files(3))
    assert layout.file_indices[0, :, 0].tolist() == [2, 0, 1]
    assert layout.slice_spacing is None
    assert layout.locations is None


def test_photometric_mismatch_rejected():
    files = _files(2, PackingDescriptor(rows=4, columns=4, samples_per_pixel=3, bits_allocated=8,
                                        bits_stored=8, photometric_interpretation="YBR_FULL"))
    files[1].packing = PackingDescriptor(
        rows=4, columns=4, samples_per_pixel=3, bits_allocated=8, bits_stored=8,
        photometric_interpretation="RGB",
    )
    with pytest.raises(StructureError, match="PhotometricInterpretation") as exc:
        validate_structure(_result([0.0, 1.0]), files)
    assert exc.value.file_index == 1


def test_planar_configuration_may_differ():
    files = _files(2, PackingDescriptor(rows=4, columns=4, samples_per_pixel=3, bits_allocated=8,
                                        bits_stored=8, photometric_interpretation="RGB"))
    files[1].packing = PackingDescriptor(
        rows=4, columns=4, samples_per_pixel=3, bits_allocated=8, bits_stored=8,
        planar_configuration=1, photometric_interpretation="RGB",
    )
    assert validate_structure(_result([0.0, 1.0]), files).slices == 2
