"""Abstract base class for slice sorters."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Sequence
from dataclasses import dataclass

import numpy as np

from dicom2vol.core.types import FrameRecord


@dataclass
class SortResult:
    """Frames in slice order, grouped into time steps.

    Entries are ordered by time step, then by location, then by input
    order; frames sharing a location and a time step become vector
    components.
    """

    file_indices: np.ndarray  # int [N]
    frame_indices: np.ndarray  # int [N]
    time_indices: np.ndarray  # int [N], 0 when there is no time dimension
    locations: np.ndarray | None = None  # float [N] along the slice normal
    time_values: list[float] | None = None  # one per time step, when known
    spatial: bool = True  # False when ordered by input sequence only

    def __len__(self) -> int:
        return len(self.file_indices)


class SliceSorter(ABC):
    """Orders (file, frame) pairs into slices."""

    name: str = ""
    description: str = ""

    @abstractmethod
    def sort(self, frames: Sequence[FrameRecord]) -> SortResult:
        """Sort the frames of one stack."""
        ...
