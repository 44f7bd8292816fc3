from __future__ import annotations

from typing import Optional

import numpy as np


def rgb565_to_rgb888(packed: np.ndarray, out: Optional[np.ndarray] = None) -> np.ndarray:
    """
    Expand 16-bit 5/6/5 pixels to 8 bits per channel.

    Each channel is shifted into the high bits and its own top bits are
    replicated into the low bits, so full-scale values stay full-scale
    (0x1F -> 0xFF, 0x3F -> 0xFF).

    Args:
        packed: (H, W) uint16 array, red in bits 15..11, blue in bits 4..0.
        out: optional preallocated (H, W, 3) uint8 buffer.
    """

    p = np.asarray(packed)
    if p.dtype != np.uint16:
        raise TypeError(f"Expected uint16 packed pixels, got {p.dtype}")
    if p.ndim != 2:
        raise ValueError(f"Expected packed shape (H, W), got {p.shape}")

    r5 = (p >> 11) & 0x1F
    g6 = (p >> 5) & 0x3F
    b5 = p & 0x1F

    if out is None:
        out = np.empty(p.shape + (3,), dtype=np.uint8)
    elif out.shape != p.shape + (3,) or out.dtype != np.uint8:
        raise ValueError(f"out must be uint8 {p.shape + (3,)}, got {out.dtype} {out.shape}")

    out[..., 0] = (r5 << 3) | (r5 >> 2)
    out[..., 1] = (g6 << 2) | (g6 >> 4)
    out[..., 2] = (b5 << 3) | (b5 >> 2)
    return out


def pack_rgb888_to_rgb565(rgb: np.ndarray) -> np.ndarray:
    """
    Truncate RGB888 to 5/6/5 bits and pack into uint16 (red high).
    """

    a = np.asarray(rgb)
    if a.ndim != 3 or a.shape[2] != 3:
        raise ValueError(f"Expected image shape (H, W, 3), got {a.shape}")
    a = a.astype(np.uint16)
    r5 = a[..., 0] >> 3
    g6 = a[..., 1] >> 2
    b5 = a[..., 2] >> 3
    return ((r5 << 11) | (g6 << 5) | b5).astype(np.uint16)


def rgb_to_grayscale(rgb: np.ndarray) -> np.ndarray:
    """ITU-R BT.601 luma in integer arithmetic: (77R + 150G + 29B) >> 8."""

    a = np.asarray(rgb)
    if a.ndim != 3 or a.shape[2] != 3:
        raise ValueError(f"Expected image shape (H, W, 3), got {a.shape}")
    a = a.astype(np.uint32)
    gray = (77 * a[..., 0] + 150 * a[..., 1] + 29 * a[..., 2]) >> 8
    return gray.astype(np.uint8)


def improve_contrast(rgb: np.ndarray) -> np.ndarray:
    """
    Light contrast stretch around mid-gray, in place.

    v' = (v - 128) * 11 / 10 + 128 with C-style truncation toward zero, clamped
    to [0, 255].
    """

    if rgb.dtype != np.uint8:
        raise TypeError(f"Expected uint8 pixels, got {rgb.dtype}")
    v = rgb.astype(np.int32) - 128
    # np.fix truncates toward zero like integer division on negatives in C
    stretched = np.fix(v * 11 / 10).astype(np.int32) + 128
    np.clip(stretched, 0, 255, out=stretched)
    rgb[...] = stretched.astype(np.uint8)
    return rgb
