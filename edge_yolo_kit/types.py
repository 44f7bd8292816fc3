from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Tuple, Union

import numpy as np


@dataclass
class Detection:
    """
    One decoded box in top-left/width/height form.

    Coordinates live in whatever pixel space produced them: the decoder emits
    normalized-input space, `NormalizedImage.to_source` maps back to the
    captured image.
    """

    x: float
    y: float
    w: float
    h: float
    score: float
    class_id: int

    def as_xyxy(self) -> Tuple[float, float, float, float]:
        return self.x, self.y, self.x + self.w, self.y + self.h

    def as_xywh(self) -> Tuple[float, float, float, float]:
        return self.x, self.y, self.w, self.h

    def to_dict(self) -> Dict[str, Any]:
        return {
            "x": float(self.x),
            "y": float(self.y),
            "w": float(self.w),
            "h": float(self.h),
            "score": float(self.score),
            "class_id": int(self.class_id),
        }


@dataclass(frozen=True)
class CompressedFrame:
    """JPEG bytes plus the dimensions the source declared for them."""

    data: bytes
    width: int
    height: int


@dataclass(frozen=True)
class PackedFrame:
    """
    16-bit packed pixels (5/6/5 bits for R/G/B, red in the high bits).

    `pixels` is a (height, width) uint16 array.
    """

    pixels: np.ndarray
    width: int
    height: int


RawFrame = Union[CompressedFrame, PackedFrame]


class ResizePolicy(str, Enum):
    LETTERBOX = "letterbox"
    DISTORT = "distort"
    CROP = "crop"


@dataclass
class NormalizedImage:
    """
    Fixed S x S x 3 RGB canvas handed to the quantizer.

    scale_x/scale_y map source pixels to canvas pixels; offset_x/offset_y are
    the canvas position of source pixel (0, 0) (positive for letterbox padding,
    negative for a center crop).
    """

    pixels: np.ndarray
    size: int
    policy: ResizePolicy
    scale_x: float
    scale_y: float
    offset_x: float
    offset_y: float
    source_size: Tuple[int, int]  # (width, height)

    @property
    def pad(self) -> Tuple[float, float]:
        return self.offset_x, self.offset_y

    def to_source(self, det: Detection) -> Detection:
        src_w, src_h = self.source_size
        x1 = (det.x - self.offset_x) / self.scale_x
        y1 = (det.y - self.offset_y) / self.scale_y
        x2 = (det.x + det.w - self.offset_x) / self.scale_x
        y2 = (det.y + det.h - self.offset_y) / self.scale_y

        x1 = float(np.clip(x1, 0, src_w - 1))
        x2 = float(np.clip(x2, 0, src_w - 1))
        y1 = float(np.clip(y1, 0, src_h - 1))
        y2 = float(np.clip(y2, 0, src_h - 1))
        return Detection(x=x1, y=y1, w=x2 - x1, h=y2 - y1, score=det.score, class_id=det.class_id)


@dataclass(frozen=True)
class TensorSpec:
    """
    Static description of an engine tensor, fixed at model-load time.

    Quantization is per-tensor affine: real = (q - zero_point) * scale.
    """

    name: str
    dtype: np.dtype
    shape: Tuple[int, ...]
    scale: float
    zero_point: int

    @property
    def element_count(self) -> int:
        return int(np.prod(self.shape)) if self.shape else 0

    @property
    def nbytes(self) -> int:
        return self.element_count * np.dtype(self.dtype).itemsize

    def describe(self) -> str:
        dims = "x".join(str(d) for d in self.shape) or "?"
        return (
            f"{self.name}: type={np.dtype(self.dtype).name} dims={dims} "
            f"quant scale={self.scale:.10f} zero_point={self.zero_point}"
        )


@dataclass
class QuantizedTensor:
    spec: TensorSpec
    data: np.ndarray

    @property
    def shape(self) -> Tuple[int, ...]:
        return tuple(int(d) for d in self.data.shape)

    @property
    def scale(self) -> float:
        return self.spec.scale

    @property
    def zero_point(self) -> int:
        return self.spec.zero_point

    def dequantize(self) -> np.ndarray:
        return (self.data.astype(np.float64) - self.spec.zero_point) * self.spec.scale
