"""Byte-stream parser: fill the attribute store and locate pixel payloads."""

from __future__ import annotations

import logging
from pathlib import Path

import pydicom
from pydicom.errors import InvalidDicomError
from pydicom.tag import Tag
from pydicom.uid import ExplicitVRLittleEndian, UID

from dicom2vol.core.errors import ParseError
from dicom2vol.core.types import FileRecord, PackingDescriptor
from dicom2vol.io.metadata import AttributeStore

logger = logging.getLogger(__name__)

PIXEL_DATA = Tag(0x7FE0, 0x0010)

# Values larger than this are left on disk until they are needed.
DEFER_SIZE = "4 KB"


def parse_file(path: Path) -> tuple[pydicom.Dataset, int | None]:
    """Read the header of ``path`` and return the dataset and pixel offset.

    The pixel payload is not loaded; its byte offset is taken from the raw
    PixelData element so the native codec can seek straight to it.
    """
    path = Path(path)
    try:
        ds = pydicom.dcmread(str(path), defer_size=DEFER_SIZE)
    except InvalidDicomError as e:
        raise ParseError(f"Not a DICOM file: {e}", path=str(path)) from e
    except (OSError, EOFError) as e:
        raise ParseError(f"Cannot read file: {e}", path=str(path)) from e
    except Exception as e:
        raise ParseError(f"Malformed DICOM file: {e}", path=str(path)) from e

    elem = ds.get_item(PIXEL_DATA, keep_deferred=True)
    if elem is None:
        raise ParseError("File has no PixelData", path=str(path))
    offset = getattr(elem, "value_tell", None)
    return ds, offset


def read_packing(ds: pydicom.Dataset) -> PackingDescriptor:
    """Extract the pixel module attributes that drive decoding."""
    try:
        rows = int(ds.Rows)
        columns = int(ds.Columns)
    except (AttributeError, TypeError, ValueError) as e:
        raise ParseError(f"Missing or invalid image dimensions: {e}") from e
    try:
        bits_allocated = int(getattr(ds, "BitsAllocated", 16))
        samples_per_pixel = int(getattr(ds, "SamplesPerPixel", 1))
        bits_stored = int(getattr(ds, "BitsStored", bits_allocated))
        pixel_representation = int(getattr(ds, "PixelRepresentation", 0))
        planar_configuration = int(getattr(ds, "PlanarConfiguration", 0) or 0)
    except (TypeError, ValueError) as e:
        raise ParseError(f"Invalid pixel module attribute: {e}") from e
    return PackingDescriptor(
        rows=rows,
        columns=columns,
        samples_per_pixel=samples_per_pixel,
        bits_allocated=bits_allocated,
        bits_stored=bits_stored,
        pixel_representation=pixel_representation,
        planar_configuration=planar_configuration,
        photometric_interpretation=str(
            getattr(ds, "PhotometricInterpretation", "MONOCHROME2")
        ).strip(),
    )


def transfer_syntax_of(ds: pydicom.Dataset) -> UID:
    file_meta = getattr(ds, "file_meta", None)
    uid = getattr(file_meta, "TransferSyntaxUID", None) if file_meta else None
    return UID(uid) if uid else ExplicitVRLittleEndian


def parse_files(
    paths: list[Path],
    store: AttributeStore,
    skip_unreadable: bool = False,
    on_error=None,
) -> list[FileRecord]:
    """Parse every file into ``store`` and return one FileRecord per input.

    With ``skip_unreadable`` a parse failure is reported through
    ``on_error`` and the file is kept as a record with no frames, so file
    indices still line up with the input list.
    """
    store.clear()
    records: list[FileRecord] = []
    for index, path in enumerate(paths):
        path = Path(path)
        try:
            ds, offset = parse_file(path)
            packing = read_packing(ds)
        except ParseError as e:
            e.file_index = index
            e.path = str(path)
            if not skip_unreadable:
                raise
            if on_error is not None:
                on_error(e)
            logger.warning(f"Skipping unreadable file {path}: {e.message}")
            store.add(path, None)
            records.append(FileRecord(index=index, path=path, number_of_frames=0, readable=False))
            continue

        store.add(path, ds)
        records.append(
            FileRecord(
                index=index,
                path=path,
                number_of_frames=store.number_of_frames(index),
                pixel_offset=offset,
                transfer_syntax=str(transfer_syntax_of(ds)),
                packing=packing,
            )
        )
        logger.debug(
            f"Parsed {path.name}: {packing.rows}x{packing.columns}, "
            f"{records[-1].number_of_frames} frame(s), offset {offset}"
        )
    return records
