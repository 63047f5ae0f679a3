"""Pixel decoding: direct reads of native payloads, delegation for the rest.

A codec turns one file's pixel payload into an array shaped
``[frames, rows, columns, samples]`` whose dtype is the file's
``PackingDescriptor.dtype``.  Three packing families are handled by the
native codec:

- byte-aligned samples (8, 16 and 32 bits) are copied directly;
- 1-bit samples are unpacked to one byte per sample (values 0 and 1);
- 12-bit samples, stored as two samples in three bytes, are unpacked to
  16-bit words and kept right-justified, so each output word equals the
  raw 12-bit value with the upper four bits clear.

Compressed or deflated transfer syntaxes are handed to pydicom's pixel
decoders.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Sequence

import numpy as np
from pydicom.pixels import pixel_array
from pydicom.pixels.utils import expand_ybr422
from pydicom.uid import UID

from dicom2vol.core.errors import DecodeError
from dicom2vol.core.types import FileRecord, PackingDescriptor, RowOrder

logger = logging.getLogger(__name__)


class Codec(ABC):
    """Decodes the pixel payload of one file."""

    name: str = ""
    native_row_order: RowOrder = RowOrder.TOP_DOWN

    @abstractmethod
    def decode(self, record: FileRecord, frames: Sequence[int]) -> np.ndarray:
        """Return the requested frames as ``[len(frames), rows, columns, samples]``.

        Raises DecodeError for any failure, attributed to ``record.index``.
        """
        ...

    def can_decode(self, record: FileRecord) -> bool:
        return True


class NativeCodec(Codec):
    """Reads uncompressed payloads straight from the file at the stored offset."""

    name = "native"

    def can_decode(self, record: FileRecord) -> bool:
        ts = UID(record.transfer_syntax)
        return not (ts.is_encapsulated or ts.is_deflated)

    def decode(self, record: FileRecord, frames: Sequence[int]) -> np.ndarray:
        packing = record.packing
        if packing is None or record.pixel_offset is None:
            raise DecodeError(
                "No pixel payload offset", file_index=record.index, path=str(record.path)
            )

        ybr422 = packing.photometric_interpretation == "YBR_FULL_422"
        # 4:2:2 stores two luma samples and one pair of chroma samples per two pixels
        stored_per_frame = packing.rows * packing.columns * 2 if ybr422 else packing.frame_samples
        count = stored_per_frame * record.number_of_frames
        nbytes = -(-count * packing.bits_allocated // 8)

        try:
            with open(record.path, "rb") as f:
                f.seek(record.pixel_offset)
                raw = f.read(nbytes)
        except OSError as e:
            raise DecodeError(
                f"Cannot read pixel data: {e}", file_index=record.index, path=str(record.path)
            ) from e
        if len(raw) < nbytes:
            raise DecodeError(
                f"Pixel data truncated: expected {nbytes} bytes, found {len(raw)}",
                file_index=record.index,
                path=str(record.path),
            )

        little_endian = UID(record.transfer_syntax).is_little_endian
        if ybr422:
            raw = expand_ybr422(raw, packing.bits_allocated)
            count = packing.frame_samples * record.number_of_frames

        try:
            samples = unpack_bits(raw, packing.bits_allocated, count, little_endian)
        except ValueError as e:
            raise DecodeError(str(e), file_index=record.index, path=str(record.path)) from e
        samples = apply_bits_stored(samples, packing)

        arr = _reshape_frames(samples, packing, record.number_of_frames)
        logger.debug(f"Native decode of {record.path.name}: {arr.shape} {arr.dtype}")
        return arr[list(frames)]


class PydicomCodec(Codec):
    """Delegates decoding to pydicom's registered pixel data decoders."""

    name = "pydicom"

    def decode(self, record: FileRecord, frames: Sequence[int]) -> np.ndarray:
        packing = record.packing
        try:
            arr = pixel_array(str(record.path), raw=True)
        except Exception as e:
            raise DecodeError(
                f"Delegated decode failed: {e}", file_index=record.index, path=str(record.path)
            ) from e

        if record.number_of_frames == 1:
            arr = arr[np.newaxis, ...]
        if arr.ndim == 3:
            arr = arr[..., np.newaxis]
        if packing is not None:
            arr = arr.astype(packing.dtype, copy=False)
        logger.debug(f"Delegated decode of {record.path.name}: {arr.shape} {arr.dtype}")
        return arr[list(frames)]


_native = NativeCodec()
_delegated = PydicomCodec()


def codec_for(record: FileRecord) -> Codec:
    """Pick the direct reader when the payload is uncompressed."""
    if _native.can_decode(record):
        return _native
    return _delegated


def unpack_bits(raw: bytes, bits: int, count: int, little_endian: bool = True) -> np.ndarray:
    """Unpack ``count`` samples of ``bits`` width from ``raw``.

    1-bit samples are read least significant bit first and returned as
    uint8.  12-bit samples are read in pairs from three bytes ``a, b, c``
    as ``a | (b & 0x0F) << 8`` and ``b >> 4 | c << 4`` and returned as
    uint16.  Wider samples are returned as unsigned integers of their own
    width in native byte order.
    """
    data = np.frombuffer(raw, dtype=np.uint8)

    if bits == 1:
        return np.unpackbits(data, bitorder="little")[:count]

    if bits == 8:
        return data[:count].copy()

    if bits == 12:
        pairs = (count + 1) // 2
        needed = pairs * 3
        if data.size < needed:
            data = np.concatenate([data, np.zeros(needed - data.size, dtype=np.uint8)])
        triples = data[:needed].reshape(pairs, 3).astype(np.uint16)
        out = np.empty(pairs * 2, dtype=np.uint16)
        out[0::2] = triples[:, 0] | ((triples[:, 1] & 0x0F) << 8)
        out[1::2] = (triples[:, 1] >> 4) | (triples[:, 2] << 4)
        return out[:count]

    if bits in (16, 32):
        order = "<" if little_endian else ">"
        words = np.frombuffer(raw, dtype=np.dtype(f"{order}u{bits // 8}"), count=count)
        return words.astype(f"=u{bits // 8}")

    raise ValueError(f"Unsupported BitsAllocated: {bits}")


def apply_bits_stored(samples: np.ndarray, packing: PackingDescriptor) -> np.ndarray:
    """Mask or sign-extend unsigned container words to BitsStored."""
    width = packing.output_bits
    unsigned = samples.astype(f"u{width // 8}", copy=False)
    stored = min(packing.bits_stored, width)
    if packing.bits_allocated == 1:
        return unsigned.astype(packing.dtype, copy=False)

    if not packing.signed:
        if stored < width:
            unsigned = unsigned & np.array((1 << stored) - 1, dtype=unsigned.dtype)
        return unsigned

    shift = width - stored
    if shift:
        unsigned = unsigned << np.array(shift, dtype=unsigned.dtype)
    signed = unsigned.view(packing.dtype)
    if shift:
        signed = signed >> np.array(shift, dtype=signed.dtype)
    return signed


def _reshape_frames(samples: np.ndarray, packing: PackingDescriptor, n_frames: int) -> np.ndarray:
    spp = packing.samples_per_pixel
    if spp > 1 and packing.planar_configuration == 1:
        arr = samples.reshape(n_frames, spp, packing.rows, packing.columns)
        return np.ascontiguousarray(np.moveaxis(arr, 1, -1))
    return samples.reshape(n_frames, packing.rows, packing.columns, spp)
