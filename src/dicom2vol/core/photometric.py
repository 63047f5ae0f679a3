"""Photometric normalization: rescale harmonization and YBR to RGB."""

from __future__ import annotations

import logging
import math
from collections.abc import Iterable

import numpy as np
from pydicom.pixels import convert_color_space

from dicom2vol.core.errors import ConfigurationError, Stage
from dicom2vol.core.types import PackingDescriptor, RescaleParameters

logger = logging.getLogger(__name__)

YBR_INTERPRETATIONS = ("YBR_FULL", "YBR_FULL_422")


def plan_rescale(
    pairs: Iterable[tuple[tuple[int, int], tuple[float, float]]],
    auto_rescale: bool = True,
    target: tuple[float, float] | None = None,
) -> RescaleParameters:
    """Choose the (slope, intercept) reported for the volume.

    ``pairs`` maps each (file, frame) in slice order to its own slope and
    intercept.  When the slices disagree and ``auto_rescale`` is on, every
    slice will be remapped to ``target`` or, without one, to the first
    slice's pair.
    """
    per_frame = dict(pairs)
    first = next(iter(per_frame.values()), (1.0, 0.0))
    params = RescaleParameters(per_frame=per_frame, slope=first[0], intercept=first[1])

    if params.uniform and (target is None or target == first):
        return params

    if not auto_rescale:
        logger.info("Slices have different rescale parameters; auto-rescale is off")
        return params

    slope, intercept = target if target is not None else first
    if slope == 0:
        file_idx, frame_idx = (None, None) if target is not None else next(iter(per_frame))
        raise ConfigurationError(
            "Rescale target slope must be non-zero",
            stage=Stage.NORMALIZE,
            file_index=file_idx,
            frame_index=frame_idx,
        )
    params.slope = float(slope)
    params.intercept = float(intercept)
    params.harmonized = True
    logger.info(f"Harmonizing rescale to slope={params.slope:g}, intercept={params.intercept:g}")
    return params


def harmonized_dtype(
    packing: PackingDescriptor,
    params: RescaleParameters,
    bits_stored: int | None = None,
) -> np.dtype:
    """Smallest integer type holding every remapped stored value.

    ``bits_stored`` is the widest BitsStored of any file in the volume;
    it defaults to the one in ``packing``.
    """
    dtype = packing.dtype
    if not params.harmonized:
        return dtype

    bits = min(bits_stored or packing.bits_stored, packing.output_bits)
    if packing.signed:
        lo, hi = -(1 << (bits - 1)), (1 << (bits - 1)) - 1
    else:
        lo, hi = 0, (1 << bits) - 1

    values = []
    for slope, intercept in set(params.per_frame.values()):
        for v in (lo, hi):
            values.append((v * slope + intercept - params.intercept) / params.slope)
    low = math.floor(min(values))
    high = math.ceil(max(values))
    for bound in (low, high):
        dtype = np.promote_types(dtype, np.min_scalar_type(bound))
    return dtype


def rescale_frames(
    arr: np.ndarray,
    slope: float,
    intercept: float,
    params: RescaleParameters,
    out_dtype: np.dtype,
) -> np.ndarray:
    """Remap stored values from (slope, intercept) to the harmonized pair.

    ``v' = (v * slope + intercept - target_intercept) / target_slope``,
    rounded to the nearest integer.  The rounding makes this lossy.
    """
    if not params.harmonized or (slope, intercept) == (params.slope, params.intercept):
        return arr.astype(out_dtype, copy=False)
    remapped = (arr.astype(np.float64) * slope + intercept - params.intercept) / params.slope
    return np.rint(remapped).astype(out_dtype)


def needs_ybr_to_rgb(packing: PackingDescriptor, enabled: bool) -> bool:
    if not enabled or packing.samples_per_pixel != 3:
        return False
    if packing.photometric_interpretation not in YBR_INTERPRETATIONS:
        return False
    if packing.bits_allocated != 8:
        logger.warning(
            f"YBR to RGB conversion needs 8-bit samples, "
            f"found {packing.bits_allocated}; leaving YBR values"
        )
        return False
    return True


def ybr_to_rgb(arr: np.ndarray) -> np.ndarray:
    """Convert ``[..., rows, columns, 3]`` YBR_FULL samples to RGB.

    4:2:2 payloads are expanded by the decoder, so both YBR_FULL and
    YBR_FULL_422 arrive here as full-resolution YBR_FULL.
    """
    return convert_color_space(arr, "YBR_FULL", "RGB")
