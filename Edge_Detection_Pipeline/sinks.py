"""
Result sinks: where per-frame audit artifacts and the run summary end up.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from edge_yolo_kit.codec import encode_jpeg, encode_png, encode_ppm
from edge_yolo_kit.errors import SinkFailure
from edge_yolo_kit.runtime import FrameResult
from edge_yolo_kit.types import CompressedFrame, RawFrame
from edge_yolo_kit.visualize import draw_detections

logger = logging.getLogger(__name__)


class ResultSink:
    def write_artifact(self, identifier: str, data: bytes) -> None:
        raise NotImplementedError

    def close(self) -> None:
        pass


class NullSink(ResultSink):
    """Accepts and drops everything."""

    def __init__(self) -> None:
        self.count = 0

    def write_artifact(self, identifier: str, data: bytes) -> None:
        self.count += 1


class DirectorySink(ResultSink):
    """One file per artifact, named by its identifier, under `out_dir`."""

    def __init__(self, out_dir: Path):
        self.out_dir = Path(out_dir)
        try:
            self.out_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise SinkFailure(f"Cannot create output directory {self.out_dir}: {exc}") from exc
        self.written: List[Path] = []

    def write_artifact(self, identifier: str, data: bytes) -> None:
        if not identifier or "/" in identifier or "\\" in identifier or identifier in (".", ".."):
            raise SinkFailure(f"Invalid artifact identifier: {identifier!r}")
        path = self.out_dir / identifier
        try:
            path.write_bytes(data)
        except OSError as exc:
            raise SinkFailure(f"Failed to write {path}: {exc}") from exc
        self.written.append(path)


@dataclass(frozen=True)
class ArtifactOptions:
    save_jpeg: bool = False
    save_canvas: bool = False
    save_annotated: bool = False
    save_detections: bool = True

    @property
    def any(self) -> bool:
        return self.save_jpeg or self.save_canvas or self.save_annotated or self.save_detections


def frame_stem(seq: int) -> str:
    return f"frame_{seq:06d}"


def detections_payload(result: FrameResult, class_names: Optional[Dict[int, str]] = None) -> Dict[str, Any]:
    image = result.image
    dets = []
    for det, src in zip(result.detections, result.source_detections):
        item = det.to_dict()
        if class_names:
            item["label"] = class_names.get(det.class_id, str(det.class_id))
        item["source"] = src.to_dict()
        dets.append(item)
    return {
        "frame": int(result.seq),
        "invoke_us": int(result.invoke_us),
        "input_size": int(image.size),
        "resize_policy": image.policy.value,
        "scale": [float(image.scale_x), float(image.scale_y)],
        "offset": [float(image.offset_x), float(image.offset_y)],
        "source_size": [int(image.source_size[0]), int(image.source_size[1])],
        "detections": dets,
    }


def _encoded(name: str, encode: Callable[[], bytes]) -> bytes:
    try:
        return encode()
    except ValueError as exc:
        raise SinkFailure(f"{name}: could not encode artifact: {exc}") from exc


def write_frame_artifacts(
    sink: ResultSink,
    result: FrameResult,
    frame: RawFrame,
    *,
    options: ArtifactOptions,
    class_names: Optional[Dict[int, str]] = None,
) -> List[str]:
    """
    Write the per-frame artifacts selected in `options`; returns the identifiers written.

    Raises SinkFailure on the first artifact that cannot be encoded or that
    the sink refuses.
    """

    stem = frame_stem(result.seq)
    written: List[str] = []

    if options.save_jpeg:
        if isinstance(frame, CompressedFrame):
            data = bytes(frame.data)
        elif result.source_rgb is not None:
            data = _encoded(f"{stem}.jpg", lambda: encode_jpeg(result.source_rgb))
        else:
            data = b""
        if data:
            sink.write_artifact(f"{stem}.jpg", data)
            written.append(f"{stem}.jpg")

    if options.save_canvas:
        name = f"{stem}_rgb{result.image.size}.ppm"
        sink.write_artifact(name, _encoded(name, lambda: encode_ppm(result.image.pixels)))
        written.append(name)

    if options.save_annotated:
        base = result.source_rgb if result.source_rgb is not None else result.image.pixels
        dets = result.source_detections if result.source_rgb is not None else result.detections
        name = f"{stem}_annotated.png"
        data = _encoded(name, lambda: encode_png(draw_detections(base, dets, class_names=class_names)))
        sink.write_artifact(name, data)
        written.append(name)

    if options.save_detections:
        name = f"{stem}_detections.json"
        payload = detections_payload(result, class_names)
        sink.write_artifact(name, json.dumps(payload, indent=2, sort_keys=True).encode("utf-8"))
        written.append(name)

    return written


def write_run_summary(sink: ResultSink, summary: Dict[str, Any], *, now: Optional[datetime] = None) -> str:
    dt = now or datetime.now()
    payload = dict(summary)
    payload.setdefault("finished_iso", dt.isoformat(timespec="seconds"))
    name = "run_summary.json"
    sink.write_artifact(name, json.dumps(payload, indent=2, sort_keys=True).encode("utf-8"))
    return name
