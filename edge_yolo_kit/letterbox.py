from __future__ import annotations

import math
from typing import Optional, Tuple, Union

import numpy as np

from .codec import decode_jpeg
from .errors import DecodeFailure
from .pixels import rgb565_to_rgb888
from .types import CompressedFrame, NormalizedImage, PackedFrame, RawFrame, ResizePolicy


def _round_half_up(value: float) -> int:
    # Matches `(int)(x + 0.5f)` for the non-negative sizes handled here.
    return int(math.floor(value + 0.5))


def _check_rgb(image: np.ndarray) -> np.ndarray:
    if image is None or not hasattr(image, "shape"):
        raise TypeError("image must be a NumPy array (RGB).")
    if image.ndim != 3 or image.shape[2] != 3:
        raise ValueError(f"Expected image shape (H, W, 3), got {getattr(image, 'shape', None)}")
    if image.dtype != np.uint8:
        raise TypeError(f"Expected uint8 pixels, got {image.dtype}")
    h, w = image.shape[:2]
    if w <= 0 or h <= 0:
        raise ValueError(f"Image has no pixels: {image.shape}")
    return image


def _canvas(size: int, out: Optional[np.ndarray]) -> np.ndarray:
    if size <= 0:
        raise ValueError(f"Target size must be > 0, got {size}")
    if out is None:
        return np.empty((size, size, 3), dtype=np.uint8)
    if out.shape != (size, size, 3) or out.dtype != np.uint8:
        raise ValueError(f"out must be uint8 ({size}, {size}, 3), got {out.dtype} {out.shape}")
    return out


def letterbox(
    image: np.ndarray,
    size: int = 192,
    pad_value: int = 0,
    out: Optional[np.ndarray] = None,
) -> NormalizedImage:
    """
    Aspect-preserving nearest-neighbour resize centered on a padded square canvas.

    scale = min(S / w, S / h); the scaled image is round(w * scale) x
    round(h * scale) and sits at (pad_x, pad_y) = ((S - new_w) // 2,
    (S - new_h) // 2). Everything outside it is `pad_value`.
    """

    img = _check_rgb(image)
    h, w = img.shape[:2]
    canvas = _canvas(size, out)

    scale = min(size / w, size / h)
    new_w = min(size, max(1, _round_half_up(w * scale)))
    new_h = min(size, max(1, _round_half_up(h * scale)))
    pad_x = (size - new_w) // 2
    pad_y = (size - new_h) // 2

    # Source index = trunc(dst / scale), clamped against rounding overshoot.
    xs = np.minimum((np.arange(new_w) / scale).astype(np.intp), w - 1)
    ys = np.minimum((np.arange(new_h) / scale).astype(np.intp), h - 1)

    canvas[...] = pad_value
    canvas[pad_y : pad_y + new_h, pad_x : pad_x + new_w] = img[ys[:, None], xs[None, :]]

    return NormalizedImage(
        pixels=canvas,
        size=size,
        policy=ResizePolicy.LETTERBOX,
        scale_x=scale,
        scale_y=scale,
        offset_x=float(pad_x),
        offset_y=float(pad_y),
        source_size=(w, h),
    )


def distort_resize(image: np.ndarray, size: int = 192, out: Optional[np.ndarray] = None) -> NormalizedImage:
    """
    Fill the square canvas by mapping each axis independently (aspect ratio is discarded).

    src_index = floor(dst_index * src_dim / S), in integer arithmetic.
    """

    img = _check_rgb(image)
    h, w = img.shape[:2]
    canvas = _canvas(size, out)

    xs = np.minimum(np.arange(size, dtype=np.int64) * w // size, w - 1)
    ys = np.minimum(np.arange(size, dtype=np.int64) * h // size, h - 1)
    canvas[...] = img[ys[:, None], xs[None, :]]

    return NormalizedImage(
        pixels=canvas,
        size=size,
        policy=ResizePolicy.DISTORT,
        scale_x=size / w,
        scale_y=size / h,
        offset_x=0.0,
        offset_y=0.0,
        source_size=(w, h),
    )


def aspect_crop_resize(image: np.ndarray, size: int = 192, out: Optional[np.ndarray] = None) -> NormalizedImage:
    """
    Scale so the short side equals `size`, then keep the centered S x S window.
    """

    img = _check_rgb(image)
    h, w = img.shape[:2]
    canvas = _canvas(size, out)

    scale = size / min(w, h)
    scaled_w = max(size, _round_half_up(w * scale))
    scaled_h = max(size, _round_half_up(h * scale))
    x0 = (scaled_w - size) // 2
    y0 = (scaled_h - size) // 2

    xs = np.minimum(((np.arange(size) + x0) / scale).astype(np.intp), w - 1)
    ys = np.minimum(((np.arange(size) + y0) / scale).astype(np.intp), h - 1)
    canvas[...] = img[ys[:, None], xs[None, :]]

    return NormalizedImage(
        pixels=canvas,
        size=size,
        policy=ResizePolicy.CROP,
        scale_x=scale,
        scale_y=scale,
        offset_x=float(-x0),
        offset_y=float(-y0),
        source_size=(w, h),
    )


def center_crop(image: np.ndarray, crop_w: int, crop_h: int) -> np.ndarray:
    img = _check_rgb(image)
    h, w = img.shape[:2]
    if crop_w <= 0 or crop_h <= 0 or crop_w > w or crop_h > h:
        raise ValueError(f"Invalid crop size {crop_w}x{crop_h} for image {w}x{h}")
    x0 = (w - crop_w) // 2
    y0 = (h - crop_h) // 2
    return img[y0 : y0 + crop_h, x0 : x0 + crop_w].copy()


def normalize_rgb(
    image: np.ndarray,
    size: int,
    policy: Union[ResizePolicy, str] = ResizePolicy.LETTERBOX,
    *,
    pad_value: int = 0,
    out: Optional[np.ndarray] = None,
) -> NormalizedImage:
    policy = ResizePolicy(policy)
    if policy is ResizePolicy.LETTERBOX:
        return letterbox(image, size, pad_value=pad_value, out=out)
    if policy is ResizePolicy.DISTORT:
        return distort_resize(image, size, out=out)
    return aspect_crop_resize(image, size, out=out)


def frame_dimensions(frame: RawFrame) -> Tuple[int, int]:
    """(width, height) the frame declares; used to size the decode buffer before decoding."""

    if isinstance(frame, PackedFrame):
        h, w = np.asarray(frame.pixels).shape[:2]
        return int(w), int(h)
    return int(frame.width), int(frame.height)


def frame_to_rgb(frame: RawFrame, out: Optional[np.ndarray] = None) -> np.ndarray:
    """
    Turn a RawFrame into an RGB888 array (decoding or bit-expanding as needed).

    A compressed frame whose decoded size differs from its declared size is
    treated as malformed.
    """

    if isinstance(frame, CompressedFrame):
        rgb, w, h = decode_jpeg(frame.data)
        if frame.width > 0 and frame.height > 0 and (w, h) != (frame.width, frame.height):
            raise DecodeFailure(f"Decoded {w}x{h}, frame declared {frame.width}x{frame.height}")
        if out is None:
            return rgb
        if out.shape != rgb.shape:
            raise DecodeFailure(f"Decode buffer {out.shape} does not fit decoded image {rgb.shape}")
        np.copyto(out, rgb)
        return out

    if isinstance(frame, PackedFrame):
        pixels = np.asarray(frame.pixels)
        if pixels.shape != (frame.height, frame.width):
            raise DecodeFailure(
                f"Packed buffer shape {pixels.shape} does not match declared {frame.width}x{frame.height}"
            )
        return rgb565_to_rgb888(pixels, out=out)

    raise TypeError(f"Unsupported frame type: {type(frame).__name__}")


def normalize_frame(
    frame: RawFrame,
    size: int,
    policy: Union[ResizePolicy, str] = ResizePolicy.LETTERBOX,
    *,
    pad_value: int = 0,
    scratch: Optional[np.ndarray] = None,
    out: Optional[np.ndarray] = None,
) -> NormalizedImage:
    rgb = frame_to_rgb(frame, out=scratch)
    return normalize_rgb(rgb, size, policy, pad_value=pad_value, out=out)
