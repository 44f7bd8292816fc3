from __future__ import annotations

from typing import Tuple

import numpy as np

from .errors import DecodeFailure


def _cv2():
    try:
        import cv2  # type: ignore
    except Exception as e:  # pragma: no cover
        raise ImportError("OpenCV is required for image coding. Install with `pip install opencv-python`.") from e
    return cv2


def decode_jpeg(data: bytes) -> Tuple[np.ndarray, int, int]:
    """
    Decode compressed bytes into an RGB888 array.

    Returns:
        rgb: (H, W, 3) uint8, channel order R, G, B
        width, height
    """

    cv2 = _cv2()
    if not data:
        raise DecodeFailure("Empty compressed frame")
    buf = np.frombuffer(data, dtype=np.uint8)
    bgr = cv2.imdecode(buf, cv2.IMREAD_COLOR)
    if bgr is None:
        raise DecodeFailure(f"Could not decode compressed frame ({len(data)} bytes)")
    rgb = cv2.cvtColor(bgr, cv2.COLOR_BGR2RGB)
    h, w = rgb.shape[:2]
    return rgb, int(w), int(h)


def _imencode(ext: str, rgb: np.ndarray, params=()) -> bytes:
    cv2 = _cv2()
    try:
        bgr = cv2.cvtColor(np.ascontiguousarray(rgb), cv2.COLOR_RGB2BGR)
        ok, buf = cv2.imencode(ext, bgr, list(params))
    except cv2.error as exc:
        raise ValueError(f"{ext} encoding failed: {exc}") from exc
    if not ok:
        raise ValueError(f"{ext} encoding failed")
    return buf.tobytes()


def encode_jpeg(rgb: np.ndarray, quality: int = 90) -> bytes:
    cv2 = _cv2()
    return _imencode(".jpg", rgb, [int(cv2.IMWRITE_JPEG_QUALITY), int(quality)])


def encode_png(rgb: np.ndarray) -> bytes:
    return _imencode(".png", rgb)


def encode_ppm(rgb: np.ndarray) -> bytes:
    """Binary PPM (P6), the format the audit captures are kept in."""

    a = np.asarray(rgb)
    if a.ndim != 3 or a.shape[2] != 3 or a.dtype != np.uint8:
        raise ValueError(f"Expected uint8 image shape (H, W, 3), got {a.dtype} {a.shape}")
    h, w = a.shape[:2]
    header = f"P6\n{w} {h}\n255\n".encode("ascii")
    return header + np.ascontiguousarray(a).tobytes()


def encode_pgm(gray: np.ndarray) -> bytes:
    """Binary PGM (P5) for single-channel images."""

    a = np.asarray(gray)
    if a.ndim != 2 or a.dtype != np.uint8:
        raise ValueError(f"Expected uint8 image shape (H, W), got {a.dtype} {a.shape}")
    h, w = a.shape
    header = f"P5\n{w} {h}\n255\n".encode("ascii")
    return header + np.ascontiguousarray(a).tobytes()
