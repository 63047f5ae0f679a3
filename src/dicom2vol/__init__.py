"""dicom2vol: assemble DICOM files and frames into N-dimensional volumes."""

__version__ = "0.1.0"

from dicom2vol.core.errors import (  # noqa: E402
    ConfigurationError,
    DecodeError,
    ParseError,
    ReaderError,
    Stage,
    StructureError,
)
from dicom2vol.core.types import ReaderConfig, RowOrder  # noqa: E402
from dicom2vol.reader import DicomVolumeReader  # noqa: E402

__all__ = [
    "__version__",
    "ConfigurationError",
    "DecodeError",
    "DicomVolumeReader",
    "ParseError",
    "ReaderConfig",
    "ReaderError",
    "RowOrder",
    "Stage",
    "StructureError",
]
