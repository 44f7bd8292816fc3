from __future__ import annotations

import colorsys
from typing import Dict, Iterable, Optional, Tuple

import numpy as np

from .types import Detection

_GOLDEN = 0.618033988749895


def class_color(class_id: int) -> Tuple[int, int, int]:
    """RGB color for a class id; neighbouring ids get well separated hues."""

    hue = (int(class_id) * _GOLDEN) % 1.0
    r, g, b = colorsys.hsv_to_rgb(hue, 0.85, 1.0)
    return int(r * 255), int(g * 255), int(b * 255)


def detection_label(det: Detection, class_names: Optional[Dict[int, str]] = None, show_score: bool = True) -> str:
    name = class_names.get(det.class_id, str(det.class_id)) if class_names else str(det.class_id)
    return f"{name} {det.score:.2f}" if show_score else name


def _pixel_box(det: Detection, width: int, height: int) -> Tuple[int, int, int, int]:
    x1, y1, x2, y2 = det.as_xyxy()
    xs = np.clip(np.round([x1, x2]), 0, width - 1).astype(int)
    ys = np.clip(np.round([y1, y2]), 0, height - 1).astype(int)
    return int(xs[0]), int(ys[0]), int(xs[1]), int(ys[1])


def draw_detections(
    image_rgb: np.ndarray,
    detections: Iterable[Detection],
    *,
    class_names: Optional[Dict[int, str]] = None,
    show_score: bool = True,
    box_thickness: int = 1,
    font_scale: float = 0.4,
    font_thickness: int = 1,
) -> np.ndarray:
    """
    Return a copy of `image_rgb` with one rectangle and a filled label tag per box.

    Detections must be in the image's own pixel space (use
    `NormalizedImage.to_source` for source frames). Boxes are clipped to the
    image; a tag sits above its box when there is room, else inside it.
    """

    try:
        import cv2  # type: ignore
    except Exception as e:  # pragma: no cover
        raise ImportError("OpenCV is required for draw_detections(). Install with `pip install opencv-python`.") from e

    img = np.asarray(image_rgb)
    if img.ndim != 3 or img.shape[2] != 3 or img.dtype != np.uint8:
        raise ValueError(f"Expected uint8 image shape (H, W, 3), got {img.dtype} {img.shape}")

    canvas = np.ascontiguousarray(img).copy()
    h, w = canvas.shape[:2]
    font = cv2.FONT_HERSHEY_SIMPLEX

    for det in detections:
        x1, y1, x2, y2 = _pixel_box(det, w, h)
        color = class_color(det.class_id)
        cv2.rectangle(canvas, (x1, y1), (x2, y2), color, thickness=box_thickness)

        text = detection_label(det, class_names, show_score)
        (tw, th), baseline = cv2.getTextSize(text, font, font_scale, font_thickness)
        tag_h = th + baseline
        top = y1 - tag_h if y1 >= tag_h else y1
        cv2.rectangle(canvas, (x1, top), (min(x1 + tw, w - 1), min(top + tag_h, h - 1)), color, thickness=-1)
        cv2.putText(canvas, text, (x1, min(top + th, h - 1)), font, font_scale, (0, 0, 0), font_thickness, cv2.LINE_AA)

    return canvas
