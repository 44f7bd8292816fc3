from __future__ import annotations

import logging
import math
import warnings
from dataclasses import dataclass
from typing import List, Optional, Tuple

import numpy as np

from .errors import GridAssumptionViolated, ShapeMismatch
from .quantize import dequantize
from .types import Detection, QuantizedTensor

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DflDecodeConfig:
    """
    Decoding settings for an anchor-free head with distribution regression.

    Each cell carries 4 * reg_max box logits (left, top, right, bottom; reg_max
    bins each) followed by one logit per class.
    """

    input_size: int = 192
    reg_max: int = 16
    conf_threshold: float = 0.30
    max_detections: int = 20
    # Optional sanity check on the class count; None accepts C - 4 * reg_max.
    num_classes: Optional[int] = None

    def __post_init__(self) -> None:
        if self.input_size <= 0:
            raise ValueError("input_size must be > 0")
        if self.reg_max <= 0:
            raise ValueError("reg_max must be > 0")
        if not (0.0 <= self.conf_threshold <= 1.0):
            raise ValueError("conf_threshold must be within [0, 1]")
        if self.max_detections < 0:
            raise ValueError("max_detections must be >= 0")
        if self.num_classes is not None and self.num_classes <= 0:
            raise ValueError("num_classes must be > 0 when set")


@dataclass(frozen=True)
class GridGeometry:
    cells: int
    grid: int
    stride: float

    @property
    def exact(self) -> bool:
        return self.grid * self.grid == self.cells


def sigmoid(x):
    """
    Logistic function without overflow for any finite input.

    Strictly inside (0, 1) for |x| < 36; beyond that float64 rounds to the
    nearest bound.
    """

    x = np.asarray(x, dtype=np.float64)
    e = np.exp(-np.abs(x))
    return np.where(x >= 0, 1.0 / (1.0 + e), e / (1.0 + e))


def softmax(logits: np.ndarray, axis: int = -1) -> np.ndarray:
    z = np.asarray(logits, dtype=np.float64)
    z = z - np.max(z, axis=axis, keepdims=True)
    e = np.exp(z)
    return e / np.sum(e, axis=axis, keepdims=True)


def dfl_expectation(logits: np.ndarray) -> np.ndarray:
    """
    Probability-weighted bin index: sum_k k * softmax(logits)_k over the last axis.

    Always within [0, R - 1].
    """

    probs = softmax(logits, axis=-1)
    bins = np.arange(probs.shape[-1], dtype=np.float64)
    return np.sum(probs * bins, axis=-1)


def grid_geometry(cells: int, input_size: int) -> GridGeometry:
    if cells <= 0:
        raise ShapeMismatch(f"Output tensor has no cells (N={cells})")
    grid = int(round(math.sqrt(cells)))
    return GridGeometry(cells=cells, grid=grid, stride=float(input_size) / grid)


def cell_center(index: int, geometry: GridGeometry) -> Tuple[float, float]:
    gx = index % geometry.grid
    gy = index // geometry.grid
    return (gx + 0.5) * geometry.stride, (gy + 0.5) * geometry.stride


def split_output(data: np.ndarray, reg_max: int) -> Tuple[np.ndarray, int, int]:
    """
    Squeeze a raw head output to (N, C) and validate the channel layout.

    Returns (cells_by_channels, N, K).
    """

    p = np.asarray(data)
    if p.ndim == 3:
        if p.shape[0] != 1:
            raise ShapeMismatch(f"Batch > 1 is not supported (got shape {p.shape}).")
        p = p[0]
    if p.ndim != 2:
        raise ShapeMismatch(f"Expected output shape [1, N, C] or [N, C], got {p.shape}")

    n, c = p.shape
    reg_ch = 4 * reg_max
    if c <= reg_ch:
        raise ShapeMismatch(f"Output has C={c} channels, needs more than 4 * reg_max = {reg_ch}")
    return p, int(n), int(c - reg_ch)


class DflDecoder:
    """
    Stateless per-frame decoder for the raw [cells][channels] head output.

    Emits at most `max_detections` boxes whose best class score meets the
    threshold, in cell-scan order. Overlapping boxes are returned as-is; no
    suppression is applied here.
    """

    def __init__(self, cfg: DflDecodeConfig):
        self.cfg = cfg

    def decode(self, tensor: QuantizedTensor) -> List[Detection]:
        return self.decode_array(tensor.data, tensor.scale, tensor.zero_point)

    def decode_array(self, data: np.ndarray, scale: float, zero_point: int) -> List[Detection]:
        cfg = self.cfg
        p, n, k = split_output(data, cfg.reg_max)
        if cfg.num_classes is not None and k != cfg.num_classes:
            raise ShapeMismatch(f"Output carries {k} class channels, expected {cfg.num_classes}")

        geometry = self._geometry(n)
        values = dequantize(p, scale, zero_point)

        boxes, scores, class_ids = self._decode(values, geometry)
        keep = np.flatnonzero(scores >= cfg.conf_threshold)[: cfg.max_detections]

        return [
            Detection(
                x=float(boxes[i, 0]),
                y=float(boxes[i, 1]),
                w=float(boxes[i, 2]),
                h=float(boxes[i, 3]),
                score=float(scores[i]),
                class_id=int(class_ids[i]),
            )
            for i in keep
        ]

    # ------------------------------------------------------------------ #
    # Internal helpers
    # ------------------------------------------------------------------ #
    def _geometry(self, cells: int) -> GridGeometry:
        geometry = grid_geometry(cells, self.cfg.input_size)
        logger.debug(
            "Decode: N=%d grid=%d stride=%.3f reg_max=%d",
            cells,
            geometry.grid,
            geometry.stride,
            self.cfg.reg_max,
        )
        if not geometry.exact:
            msg = f"N={cells} is not a perfect square; decoding with grid={geometry.grid}"
            logger.warning(msg)
            warnings.warn(msg, GridAssumptionViolated, stacklevel=3)
        return geometry

    def _decode(self, values: np.ndarray, geometry: GridGeometry) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        """
        Vectorized decode of every cell into xywh boxes, best score and best class.
        """

        r = self.cfg.reg_max
        n = values.shape[0]
        reg = values[:, : 4 * r].reshape(n, 4, r)
        dist = dfl_expectation(reg)  # (N, 4): left, top, right, bottom in stride units

        class_scores = sigmoid(values[:, 4 * r :])
        class_ids = np.argmax(class_scores, axis=1)
        scores = class_scores[np.arange(n), class_ids]

        idx = np.arange(n)
        cx = (idx % geometry.grid + 0.5) * geometry.stride
        cy = (idx // geometry.grid + 0.5) * geometry.stride

        s = geometry.stride
        left, top, right, bottom = dist[:, 0], dist[:, 1], dist[:, 2], dist[:, 3]
        boxes = np.stack(
            [cx - left * s, cy - top * s, (left + right) * s, (top + bottom) * s],
            axis=1,
        )
        return boxes, scores, class_ids


def decode_detections(tensor: QuantizedTensor, cfg: DflDecodeConfig) -> List[Detection]:
    return DflDecoder(cfg).decode(tensor)
