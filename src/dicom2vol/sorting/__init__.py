"""Slice sorting strategies."""

from dicom2vol.sorting.base import SliceSorter, SortResult
from dicom2vol.sorting.registry import get_sorter, list_sorters, register_sorter

__all__ = ["SliceSorter", "SortResult", "get_sorter", "list_sorters", "register_sorter"]
