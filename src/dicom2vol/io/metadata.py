"""Attribute store: (file index, frame index, keyword) -> value."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import pydicom

_MISSING = object()


class AttributeStore:
    """Read-only view over the datasets parsed for one metadata phase.

    Files are addressed by their index in the input list.  Frame-level
    lookups search the Per-Frame Functional Groups of enhanced multi-frame
    files first, then the Shared Functional Groups, then the top-level
    dataset, so callers can ask for ``ImagePositionPatient`` or ``StackID``
    without caring where the attribute was stored.
    """

    def __init__(self) -> None:
        self._datasets: list[pydicom.Dataset | None] = []
        self._paths: list[Path] = []

    def __len__(self) -> int:
        return len(self._datasets)

    def add(self, path: Path, ds: pydicom.Dataset | None) -> int:
        """Append a dataset (None for an unreadable file); returns its index."""
        self._datasets.append(ds)
        self._paths.append(Path(path))
        return len(self._datasets) - 1

    def clear(self) -> None:
        self._datasets.clear()
        self._paths.clear()

    def path(self, file_index: int) -> Path:
        return self._paths[file_index]

    def dataset(self, file_index: int) -> pydicom.Dataset | None:
        return self._datasets[file_index]

    def number_of_frames(self, file_index: int) -> int:
        ds = self._datasets[file_index]
        if ds is None:
            return 0
        value = ds.get("NumberOfFrames", None)
        try:
            return max(int(value), 1) if value is not None else 1
        except (TypeError, ValueError):
            return 1

    def get(
        self,
        file_index: int,
        keyword: str,
        frame_index: int | None = None,
        default: Any = None,
    ) -> Any:
        ds = self._datasets[file_index]
        if ds is None:
            return default

        if frame_index is not None:
            per_frame = ds.get("PerFrameFunctionalGroupsSequence", None)
            if per_frame is not None and frame_index < len(per_frame):
                value = _search_functional_group(per_frame[frame_index], keyword)
                if value is not _MISSING:
                    return value
            shared = ds.get("SharedFunctionalGroupsSequence", None)
            if shared:
                value = _search_functional_group(shared[0], keyword)
                if value is not _MISSING:
                    return value

        if keyword in ds:
            value = ds[keyword].value
            return default if value is None or value == "" else value
        return default

    def get_floats(
        self,
        file_index: int,
        keyword: str,
        frame_index: int | None = None,
    ) -> tuple[float, ...] | None:
        """Return a multi-valued numeric attribute as floats, or None."""
        value = self.get(file_index, keyword, frame_index)
        if value is None:
            return None
        if isinstance(value, (str, bytes)):
            return None
        try:
            return tuple(float(v) for v in value)
        except TypeError:
            return (float(value),)

    def get_float(
        self,
        file_index: int,
        keyword: str,
        frame_index: int | None = None,
        default: float | None = None,
    ) -> float | None:
        value = self.get(file_index, keyword, frame_index)
        if value is None:
            return default
        try:
            return float(value)
        except (TypeError, ValueError):
            return default


def _search_functional_group(group: pydicom.Dataset, keyword: str) -> Any:
    """Look for ``keyword`` inside the single-item macros of a functional group."""
    for elem in group:
        if elem.VR != "SQ" or not elem.value:
            continue
        item = elem.value[0]
        if keyword in item:
            value = item[keyword].value
            if value is not None and value != "":
                return value
    return _MISSING
