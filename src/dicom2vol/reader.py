"""Volume assembly: the two-phase reader consumed by image pipelines.

``DicomVolumeReader.update_information()`` runs the metadata phase:
parse every file, pick a stack, sort and validate its frames, and derive
geometry and rescale parameters.  ``DicomVolumeReader.read()`` runs the
data phase: decode each file, normalize its frames and place them in a
``[time, slice, row, column, component]`` buffer.

The photometric interpretation recorded in the metadata always describes
the files.  When YBR data is converted to RGB in memory the attribute
still says YBR; check ``VolumeInfo.ybr_to_rgb`` instead.
"""

from __future__ import annotations

import dataclasses
import logging
import time
from collections.abc import Callable, Sequence
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import NoReturn

import numpy as np

from dicom2vol.core.errors import ConfigurationError, DecodeError, ReaderError
from dicom2vol.core.geometry import build_geometry, flip_rows
from dicom2vol.core.photometric import (
    harmonized_dtype,
    needs_ybr_to_rgb,
    plan_rescale,
    rescale_frames,
    ybr_to_rgb,
)
from dicom2vol.core.types import (
    FileRecord,
    FrameRecord,
    ReaderConfig,
    ReaderState,
    RowOrder,
    VolumeData,
    VolumeInfo,
)
from dicom2vol.core.validate import VolumeLayout, validate_structure
from dicom2vol.io.decoder import Codec, codec_for
from dicom2vol.io.metadata import AttributeStore
from dicom2vol.io.parser import parse_files
from dicom2vol.sorting.base import SliceSorter
from dicom2vol.sorting.registry import get_sorter

logger = logging.getLogger(__name__)

ErrorCallback = Callable[[ReaderError], None]
"""Receives every error once, before it is raised."""

TIME_KEYWORDS = (
    "TemporalPositionIndex",
    "TemporalPositionIdentifier",
    "TriggerTime",
    "NominalCardiacTriggerDelayTime",
)


class DicomVolumeReader:
    """Assemble DICOM files and frames into one N-dimensional volume."""

    def __init__(
        self,
        file_names: Sequence[str | Path] | None = None,
        config: ReaderConfig | None = None,
        *,
        sorter: SliceSorter | None = None,
        codec: Codec | None = None,
        on_error: ErrorCallback | None = None,
    ):
        self._file_names = [Path(p) for p in file_names or []]
        self.config = config or ReaderConfig()
        self._sorter = sorter
        self._codec = codec
        self.on_error = on_error

        self.metadata = AttributeStore()
        self.state = ReaderState.UNINITIALIZED
        self.error: ReaderError | None = None
        self.files: list[FileRecord] = []
        self.frames: list[FrameRecord] = []
        self._layout: VolumeLayout | None = None
        self._info: VolumeInfo | None = None

    # --- configuration ---

    @property
    def file_names(self) -> list[Path]:
        return list(self._file_names)

    @file_names.setter
    def file_names(self, names: Sequence[str | Path]) -> None:
        self._file_names = [Path(p) for p in names]
        self.invalidate()

    def configure(self, **changes) -> None:
        """Replace configuration fields and return to the uninitialized state."""
        known = {f.name for f in dataclasses.fields(ReaderConfig)}
        unknown = sorted(set(changes) - known)
        if unknown:
            raise ConfigurationError(f"Unknown reader option(s): {', '.join(unknown)}")
        self.config = dataclasses.replace(self.config, **changes)
        self.invalidate()

    def set_sorter(self, sorter: SliceSorter | None) -> None:
        self._sorter = sorter
        self.invalidate()

    def set_codec(self, codec: Codec | None) -> None:
        self._codec = codec
        self.invalidate()

    def invalidate(self) -> None:
        """Drop every cached sort, geometry and rescale result."""
        self.state = ReaderState.UNINITIALIZED
        self.error = None
        self.files = []
        self.frames = []
        self._layout = None
        self._info = None

    # --- metadata phase ---

    @property
    def info(self) -> VolumeInfo:
        return self.update_information()

    def update_information(self) -> VolumeInfo:
        if self.state in (ReaderState.METADATA_READY, ReaderState.DATA_READY):
            assert self._info is not None
            return self._info
        start = time.time()
        try:
            self._info = self._read_information()
        except ReaderError as e:
            self._fail(e)
        self.state = ReaderState.METADATA_READY
        logger.debug(f"Metadata phase took {time.time() - start:.3f}s")
        return self._info

    def _read_information(self) -> VolumeInfo:
        cfg = self.config
        if not self._file_names:
            raise ConfigurationError("No input files")
        if cfg.desired_time_index < -1:
            raise ConfigurationError(f"Invalid time index {cfg.desired_time_index}")
        if cfg.rescale_target is not None and cfg.rescale_target[0] == 0:
            raise ConfigurationError("Rescale target slope must be non-zero")

        self.files = parse_files(
            self._file_names, self.metadata, cfg.skip_unreadable, self._report
        )
        self.frames = self._collect_frames()

        stack_ids = list(dict.fromkeys(f.stack_id for f in self.frames if f.stack_id))
        stack = self._select_stack(stack_ids)
        frames = [f for f in self.frames if f.stack_id == stack]
        if stack:
            logger.info(f"Selected stack '{stack}' with {len(frames)} frame(s)")

        if not cfg.sorting:
            sorter = get_sorter("input-order")
        else:
            sorter = self._sorter or get_sorter(cfg.sorter)
        result = sorter.sort(frames)
        layout = validate_structure(result, self.files, cfg.spacing_tolerance)
        layout.time_values = self._trigger_times(layout) or layout.time_values
        self._layout = layout

        warnings = []
        if cfg.sorting and not result.spatial:
            warnings.append("Slices kept in input order: no spatial attributes")

        if cfg.desired_time_index >= layout.time_dimension:
            raise ConfigurationError(
                f"Time index {cfg.desired_time_index} out of range "
                f"(series has {layout.time_dimension} time step(s))"
            )
        steps = (
            [cfg.desired_time_index]
            if cfg.desired_time_index >= 0
            else list(range(layout.time_dimension))
        )
        file_array, frame_array = self._index_arrays(layout, steps)

        by_key = {f.key: f for f in frames}
        first = by_key[(int(layout.file_indices[0, 0, 0]), int(layout.frame_indices[0, 0, 0]))]
        native = self._codec.native_row_order if self._codec else RowOrder.TOP_DOWN
        geometry = build_geometry(
            layout,
            first,
            cfg.memory_row_order,
            native_row_order=native,
            fallback_slice_spacing=self._fallback_slice_spacing(first),
        )

        selected = zip(
            layout.file_indices[steps].ravel(), layout.frame_indices[steps].ravel()
        )
        pairs = []
        for file_idx, frame_idx in selected:
            frame = by_key[(int(file_idx), int(frame_idx))]
            pairs.append((frame.key, (frame.rescale_slope, frame.rescale_intercept)))
        rescale = plan_rescale(pairs, cfg.auto_rescale, cfg.rescale_target)

        packing = layout.packing
        widest = max(
            self.files[int(i)].packing.bits_stored for i in np.unique(layout.file_indices)
        )
        scalar_type = harmonized_dtype(packing, rescale, widest)
        ybr = needs_ybr_to_rgb(packing, cfg.auto_ybr_to_rgb) and scalar_type == np.uint8

        components = packing.samples_per_pixel * layout.vector_dimension
        if cfg.time_as_vector:
            components *= len(steps)

        info = VolumeInfo(
            geometry=geometry,
            rescale=rescale,
            scalar_type=np.dtype(scalar_type),
            number_of_components=components,
            samples_per_pixel=packing.samples_per_pixel,
            photometric_interpretation=packing.photometric_interpretation,
            ybr_to_rgb=ybr,
            stack_ids=stack_ids,
            time_steps=len(steps),
            time_as_vector=cfg.time_as_vector,
            file_index_array=file_array,
            frame_index_array=frame_array,
            metadata=self.metadata,
            warnings=warnings,
        )
        columns, rows, slices = geometry.dimensions
        logger.info(
            f"Volume {columns}x{rows}x{slices}, {layout.time_dimension} time step(s), "
            f"{components} component(s), {info.scalar_type}, row order {geometry.row_order}"
        )
        return info

    def _collect_frames(self) -> list[FrameRecord]:
        frames: list[FrameRecord] = []
        order = 0
        for record in self.files:
            for frame_idx in range(record.number_of_frames):
                frames.append(self._frame_record(record.index, frame_idx, order))
                order += 1
        return frames

    def _frame_record(self, file_idx: int, frame_idx: int, order: int) -> FrameRecord:
        store = self.metadata
        position = store.get_floats(file_idx, "ImagePositionPatient", frame_idx)
        orientation = store.get_floats(file_idx, "ImageOrientationPatient", frame_idx)
        spacing = store.get_floats(file_idx, "PixelSpacing", frame_idx)
        if spacing is None:
            spacing = store.get_floats(file_idx, "ImagerPixelSpacing", frame_idx)

        frame_time = None
        for keyword in TIME_KEYWORDS:
            frame_time = store.get_float(file_idx, keyword, frame_idx)
            if frame_time is not None:
                break
        if frame_time is None:
            frame_time = _parse_tm(store.get(file_idx, "AcquisitionTime", frame_idx))

        return FrameRecord(
            file_index=file_idx,
            frame_index=frame_idx,
            order=order,
            position=position if position and len(position) == 3 else None,
            orientation=orientation if orientation and len(orientation) == 6 else None,
            pixel_spacing=spacing[:2] if spacing and len(spacing) >= 2 else None,
            stack_id=str(store.get(file_idx, "StackID", frame_idx, "")).strip(),
            time=frame_time,
            rescale_slope=store.get_float(file_idx, "RescaleSlope", frame_idx, 1.0),
            rescale_intercept=store.get_float(file_idx, "RescaleIntercept", frame_idx, 0.0),
        )

    def _select_stack(self, stack_ids: list[str]) -> str:
        desired = self.config.desired_stack_id
        if desired:
            if desired not in stack_ids:
                available = ", ".join(stack_ids) or "(none)"
                raise ConfigurationError(
                    f"Stack '{desired}' not found. Available: {available}"
                )
            return desired
        return self.frames[0].stack_id if self.frames else ""

    def _index_arrays(
        self, layout: VolumeLayout, steps: list[int]
    ) -> tuple[np.ndarray, np.ndarray]:
        """Flatten [time, slice, vector] into [slice, component] arrays."""
        files = layout.file_indices[steps]
        frames = layout.frame_indices[steps]
        t, z, v = files.shape
        if self.config.time_as_vector:
            return (
                files.transpose(1, 0, 2).reshape(z, t * v),
                frames.transpose(1, 0, 2).reshape(z, t * v),
            )
        return files.reshape(t * z, v), frames.reshape(t * z, v)

    def _fallback_slice_spacing(self, first: FrameRecord) -> float | None:
        for keyword in ("SpacingBetweenSlices", "SliceThickness"):
            value = self.metadata.get_float(first.file_index, keyword, first.frame_index)
            if value:
                return value
        return None

    def _trigger_times(self, layout: VolumeLayout) -> list[float] | None:
        """Trigger times of the time steps in ms, when every step has a distinct one.

        Enhanced files order their phases by TemporalPositionIndex, whose
        values are ranks; the trigger delay gives the physical spacing.
        """
        if layout.time_dimension < 2:
            return None
        times = []
        for t in range(layout.time_dimension):
            file_idx = int(layout.file_indices[t, 0, 0])
            frame_idx = int(layout.frame_indices[t, 0, 0])
            value = None
            for keyword in ("TriggerTime", "NominalCardiacTriggerDelayTime"):
                value = self.metadata.get_float(file_idx, keyword, frame_idx)
                if value is not None:
                    break
            if value is None:
                return None
            times.append(value)
        if len(set(times)) < len(times):
            return None
        return times

    # --- data phase ---

    def read(self) -> VolumeData:
        """Run the data phase and return the assembled buffer."""
        info = self.update_information()
        start = time.time()
        try:
            voxels = self._read_data(info)
        except ReaderError as e:
            self._fail(e)
        self.state = ReaderState.DATA_READY
        logger.debug(f"Data phase took {time.time() - start:.3f}s")
        return VolumeData(
            voxels=voxels,
            info=info,
            file_index_array=info.file_index_array,
            frame_index_array=info.frame_index_array,
        )

    def _read_data(self, info: VolumeInfo) -> np.ndarray:
        voxels = np.empty(info.shape, dtype=info.scalar_type)
        spp = info.samples_per_pixel
        time_as_vector = info.time_as_vector
        groups = info.file_index_array.shape[1]
        slices = info.geometry.dimensions[2]

        # file -> [(frame, (time, slice, first component))]
        targets: dict[int, list[tuple[int, tuple[int, int, int]]]] = {}
        for row in range(info.file_index_array.shape[0]):
            for col in range(groups):
                file_idx = int(info.file_index_array[row, col])
                frame_idx = int(info.frame_index_array[row, col])
                if time_as_vector:
                    dest = (0, row, col * spp)
                else:
                    dest = (row // slices, row % slices, col * spp)
                targets.setdefault(file_idx, []).append((frame_idx, dest))

        def decode_file(file_idx: int) -> None:
            record = self.files[file_idx]
            try:
                self._decode_into(voxels, info, record, targets[file_idx])
            except DecodeError:
                raise
            except Exception as e:
                raise DecodeError(
                    f"Decoding failed: {e}",
                    file_index=file_idx,
                    frame_index=targets[file_idx][0][0],
                    path=str(record.path),
                ) from e

        failures: list[DecodeError] = []
        workers = max(int(self.config.workers), 1)
        if workers > 1 and len(targets) > 1:
            with ThreadPoolExecutor(max_workers=workers) as pool:
                futures = [pool.submit(decode_file, idx) for idx in targets]
                for future in futures:
                    error = future.exception()
                    if error is not None:
                        failures.append(error)
        else:
            for file_idx in targets:
                try:
                    decode_file(file_idx)
                except DecodeError as e:
                    failures.append(e)

        if failures:
            for extra in failures[1:]:
                self._report(extra)
            raise failures[0]
        return voxels

    def _decode_into(
        self,
        voxels: np.ndarray,
        info: VolumeInfo,
        record: FileRecord,
        items: list[tuple[int, tuple[int, int, int]]],
    ) -> None:
        """Decode one file and write each of its frames to its own slot."""
        codec = self._codec or codec_for(record)
        frame_ids = [frame for frame, _ in items]
        try:
            arr = codec.decode(record, frame_ids)
        except DecodeError as e:
            if e.file_index is None:
                e.file_index = record.index
            if e.frame_index is None:
                e.frame_index = frame_ids[0]
            raise

        _, _, rows, columns, _ = voxels.shape
        spp = info.samples_per_pixel
        if arr.shape != (len(frame_ids), rows, columns, spp):
            raise DecodeError(
                f"Decoded shape {arr.shape} does not match "
                f"{(len(frame_ids), rows, columns, spp)}",
                file_index=record.index,
                frame_index=frame_ids[0],
                path=str(record.path),
            )

        rescale = info.rescale
        for (frame_idx, (t, z, c)), pixels in zip(items, arr):
            slope, intercept = rescale.per_frame[(record.index, frame_idx)]
            pixels = rescale_frames(pixels, slope, intercept, rescale, info.scalar_type)
            if info.ybr_to_rgb:
                pixels = ybr_to_rgb(pixels)
            if info.geometry.flipped:
                pixels = flip_rows(pixels)
            voxels[t, z, :, :, c : c + spp] = pixels
        logger.debug(f"Decoded {len(items)} frame(s) from {record.path.name}")

    # --- error channel ---

    def _report(self, error: ReaderError) -> None:
        logger.debug(f"Reporting error: {error}")
        if self.on_error is not None:
            self.on_error(error)

    def _fail(self, error: ReaderError) -> NoReturn:
        self.state = ReaderState.ERROR
        self.error = error
        self._report(error)
        raise error


def _parse_tm(value) -> float | None:
    """Seconds since midnight from a DICOM TM string such as ``134501.25``."""
    if value is None:
        return None
    text = str(value).strip().replace(":", "")
    if len(text) < 2 or not text[:2].isdigit():
        return None
    try:
        hours = int(text[0:2])
        minutes = int(text[2:4]) if len(text) >= 4 else 0
        seconds = float(text[4:]) if len(text) > 4 else 0.0
    except ValueError:
        return None
    return hours * 3600 + minutes * 60 + seconds
