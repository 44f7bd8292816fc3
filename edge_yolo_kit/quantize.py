"""
Per-tensor affine quantization.

    q     = clamp(round(value / scale) + zero_point, -128, 127)
    value = (q - zero_point) * scale

`round` is half-away-from-zero (C `roundf`), not NumPy's half-to-even.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional, Tuple, Union

import numpy as np

from .errors import QuantizationConventionError

INT8_MIN = -128
INT8_MAX = 127


class InputConvention(str, Enum):
    """How a 0..255 pixel byte becomes the real value fed to the input quantizer."""

    UNIT_RANGE = "unit"  # v / 255 -> [0, 1]
    RAW_BYTE = "raw"  # v as-is -> [0, 255]


def _check_scale(scale: float) -> float:
    scale = float(scale)
    if not np.isfinite(scale) or scale <= 0:
        raise ValueError(f"Invalid quantization scale: {scale} (must be > 0)")
    return scale


def round_half_away(values: np.ndarray) -> np.ndarray:
    v = np.asarray(values, dtype=np.float64)
    return np.sign(v) * np.floor(np.abs(v) + 0.5)


def quantize(values, scale: float, zero_point: int) -> np.ndarray:
    """Quantize real values to int8 with the tensor's (scale, zero_point)."""

    scale = _check_scale(scale)
    q = round_half_away(np.asarray(values, dtype=np.float64) / scale) + int(zero_point)
    return np.clip(q, INT8_MIN, INT8_MAX).astype(np.int8)


def dequantize(q, scale: float, zero_point: int) -> np.ndarray:
    return (np.asarray(q).astype(np.float64) - int(zero_point)) * float(scale)


def representable_range(scale: float, zero_point: int) -> Tuple[float, float]:
    """Real interval covered by int8 under (scale, zero_point)."""

    scale = _check_scale(scale)
    return (INT8_MIN - int(zero_point)) * scale, (INT8_MAX - int(zero_point)) * scale


def resolve_input_convention(
    scale: float,
    zero_point: int,
    declared: Union[InputConvention, str] = "auto",
) -> InputConvention:
    """
    Decide the pixel convention for an input tensor.

    An explicit declaration wins. With "auto" the tensor's representable range
    decides: an upper bound close to 1.0 means the model was calibrated on
    [0, 1] inputs, close to 255 means raw bytes. Anything else is refused
    rather than guessed.
    """

    if declared != "auto":
        return InputConvention(declared)

    lo, hi = representable_range(scale, zero_point)
    if 0.5 <= hi <= 2.0 and -0.1 <= lo <= 0.05:
        return InputConvention.UNIT_RANGE
    if 127.0 <= hi <= 512.0 and -2.0 <= lo <= 1.0:
        return InputConvention.RAW_BYTE
    raise QuantizationConventionError(
        f"Cannot infer pixel convention from scale={scale} zero_point={zero_point} "
        f"(representable range [{lo:.4f}, {hi:.4f}]). Declare input_convention explicitly."
    )


def quantize_pixels(
    pixels: np.ndarray,
    scale: float,
    zero_point: int,
    convention: Union[InputConvention, str] = InputConvention.UNIT_RANGE,
) -> np.ndarray:
    p = np.asarray(pixels, dtype=np.float64)
    if InputConvention(convention) is InputConvention.UNIT_RANGE:
        p = p / 255.0
    return quantize(p, scale, zero_point)


class PixelQuantizer:
    """
    Byte -> int8 lookup table for one input tensor.

    The table is built once from the tensor's fixed (scale, zero_point) and
    convention, so every frame is quantized identically.
    """

    def __init__(self, scale: float, zero_point: int, convention: Union[InputConvention, str]):
        self.scale = _check_scale(scale)
        self.zero_point = int(zero_point)
        self.convention = InputConvention(convention)
        self.table = quantize_pixels(np.arange(256), self.scale, self.zero_point, self.convention)

    def __call__(self, pixels: np.ndarray, out: Optional[np.ndarray] = None) -> np.ndarray:
        p = np.asarray(pixels)
        if p.dtype != np.uint8:
            raise TypeError(f"Expected uint8 pixels, got {p.dtype}")
        if out is None:
            return self.table[p]
        if out.size != p.size:
            raise ValueError(f"out has {out.size} elements, pixels have {p.size}")
        out[...] = self.table[p].reshape(out.shape)
        return out
