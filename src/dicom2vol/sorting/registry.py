"""Sorter registry with decorator-based registration."""

from __future__ import annotations

from typing import Type

from dicom2vol.core.errors import ConfigurationError
from dicom2vol.sorting.base import SliceSorter

_registry: dict[str, Type[SliceSorter]] = {}


def register_sorter(name: str):
    """Decorator to register a slice sorter."""

    def decorator(cls: Type[SliceSorter]):
        cls.name = name
        _registry[name] = cls
        return cls

    return decorator


def get_sorter(name: str) -> SliceSorter:
    """Get an instance of a registered sorter by name."""
    _ensure_sorters_loaded()
    if name not in _registry:
        available = ", ".join(_registry.keys())
        raise ConfigurationError(f"Unknown sorter '{name}'. Available: {available}")
    return _registry[name]()


def list_sorters() -> list[dict[str, str]]:
    """List all registered sorters with their descriptions."""
    _ensure_sorters_loaded()
    return [
        {"name": name, "description": cls.description}
        for name, cls in _registry.items()
    ]


def _ensure_sorters_loaded():
    """Import sorter modules to trigger registration."""
    import dicom2vol.sorting.default  # noqa: F401
