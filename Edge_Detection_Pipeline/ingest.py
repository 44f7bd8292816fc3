from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable, FrozenSet, Iterable, Iterator, List, Optional

from edge_yolo_kit.errors import CaptureFailure
from edge_yolo_kit.pixels import pack_rgb888_to_rgb565
from edge_yolo_kit.types import CompressedFrame, PackedFrame, RawFrame

logger = logging.getLogger(__name__)

JPEG_SUFFIXES = (".jpg", ".jpeg")


class SourceCapability(str, Enum):
    COMPRESSED = "compressed"  # delivers CompressedFrame
    PACKED = "packed"  # delivers PackedFrame (16-bit 5/6/5)
    FINITE = "finite"  # can run out of frames
    RELEASE = "release"  # frames must be handed back via release()


class ImageSource:
    """
    Where frames come from.

    `capture()` never blocks indefinitely: it returns a frame, or None when
    nothing is available right now. Retry and backoff are the caller's job.
    Ask `supports(...)` before relying on optional behaviour.
    """

    capabilities: FrozenSet[SourceCapability] = frozenset()

    def supports(self, capability: SourceCapability) -> bool:
        return capability in self.capabilities

    def capture(self) -> Optional[RawFrame]:
        raise NotImplementedError

    @property
    def exhausted(self) -> bool:
        return False

    def release(self, frame: RawFrame) -> None:
        raise NotImplementedError(f"{type(self).__name__} does not hand out releasable frames")

    def describe(self) -> str:
        return type(self).__name__

    def close(self) -> None:
        pass

    def __enter__(self) -> "ImageSource":
        return self

    def __exit__(self, *exc) -> None:
        self.close()


def list_jpeg_files(root: Path) -> List[Path]:
    """Every .jpg/.jpeg under `root` (recursive), in sorted path order."""

    found: List[Path] = []
    for dirpath, dirnames, filenames in os.walk(root):
        dirnames.sort()
        for name in sorted(filenames):
            if name.lower().endswith(JPEG_SUFFIXES):
                found.append(Path(dirpath) / name)
    return sorted(found)


class DirectorySource(ImageSource):
    """Batch mode: every JPEG below a directory, one per capture."""

    capabilities = frozenset({SourceCapability.COMPRESSED, SourceCapability.FINITE})

    def __init__(self, root: Path):
        self.root = Path(root)
        if not self.root.is_dir():
            raise FileNotFoundError(f"Image directory not found: {self.root}")
        self.files = list_jpeg_files(self.root)
        self._next = 0
        self.last_path: Optional[Path] = None
        logger.info("Found %d JPEG files under %s", len(self.files), self.root)

    def __len__(self) -> int:
        return len(self.files)

    @property
    def exhausted(self) -> bool:
        return self._next >= len(self.files)

    def capture(self) -> Optional[RawFrame]:
        if self.exhausted:
            return None
        path = self.files[self._next]
        self._next += 1
        self.last_path = path
        try:
            data = path.read_bytes()
        except OSError as exc:
            raise CaptureFailure(f"Could not read {path}: {exc}") from exc
        # Dimensions are only known after decoding.
        return CompressedFrame(data=data, width=0, height=0)

    def describe(self) -> str:
        return f"directory {self.root} ({len(self.files)} files)"


class SequenceSource(ImageSource):
    """Frames from any iterable; useful for tests and for replaying captures."""

    def __init__(
        self,
        frames: Iterable[Optional[RawFrame]],
        *,
        packed: bool = False,
        release_fn: Optional[Callable[[RawFrame], None]] = None,
    ):
        self._it: Iterator[Optional[RawFrame]] = iter(frames)
        self._done = False
        self._release_fn = release_fn
        caps = {SourceCapability.FINITE, SourceCapability.PACKED if packed else SourceCapability.COMPRESSED}
        if release_fn is not None:
            caps.add(SourceCapability.RELEASE)
        self.capabilities = frozenset(caps)

    @property
    def exhausted(self) -> bool:
        return self._done

    def capture(self) -> Optional[RawFrame]:
        if self._done:
            return None
        try:
            return next(self._it)
        except StopIteration:
            self._done = True
            return None

    def release(self, frame: RawFrame) -> None:
        if self._release_fn is None:
            return super().release(frame)
        self._release_fn(frame)


@dataclass(frozen=True)
class CaptureInfo:
    fps: Optional[float]
    width: Optional[int]
    height: Optional[int]
    frame_count: Optional[int] = None


def _cv2():
    try:
        import cv2  # type: ignore
    except Exception as e:  # pragma: no cover
        raise ImportError("OpenCV is required for video capture. Install with `pip install opencv-python`.") from e
    return cv2


def open_capture(*, video: Optional[str] = None, webcam: Optional[int] = None, rtsp: Optional[str] = None):
    """OpenCV capture for exactly one of a video file, a webcam index or an RTSP URL."""

    targets = {"video": video, "webcam": webcam, "rtsp": rtsp}
    chosen = [name for name, value in targets.items() if value is not None]
    if len(chosen) != 1:
        raise ValueError(f"Exactly one of video/webcam/rtsp must be provided, got {chosen or 'none'}.")

    cv2 = _cv2()
    target = int(webcam) if webcam is not None else (video if video is not None else rtsp)
    cap = cv2.VideoCapture(target)
    if not cap.isOpened():
        raise CaptureFailure(f"Failed to open {chosen[0]} source {target!r}.")
    return cap


def _positive(value) -> Optional[float]:
    return float(value) if value and value > 0 else None


def get_capture_info(cap) -> CaptureInfo:
    cv2 = _cv2()
    width = _positive(cap.get(cv2.CAP_PROP_FRAME_WIDTH))
    height = _positive(cap.get(cv2.CAP_PROP_FRAME_HEIGHT))
    count = _positive(cap.get(cv2.CAP_PROP_FRAME_COUNT))
    return CaptureInfo(
        fps=_positive(cap.get(cv2.CAP_PROP_FPS)),
        width=int(width) if width else None,
        height=int(height) if height else None,
        frame_count=int(count) if count else None,
    )


class VideoCaptureSource(ImageSource):
    """
    Live mode: an OpenCV capture (video file, webcam or RTSP stream).

    With `packed=True` (default) frames are delivered the way a 16-bit camera
    sensor delivers them, as RGB565; otherwise each frame is re-encoded as JPEG.
    """

    def __init__(
        self,
        *,
        video: Optional[str] = None,
        webcam: Optional[int] = None,
        rtsp: Optional[str] = None,
        packed: bool = True,
        jpeg_quality: int = 90,
    ):
        self._cv2 = _cv2()
        self.cap = open_capture(video=video, webcam=webcam, rtsp=rtsp)
        self.info = get_capture_info(self.cap)
        self.packed = packed
        self.jpeg_quality = int(jpeg_quality)
        self._finite = video is not None
        self._done = False
        self._label = video or rtsp or f"webcam {webcam}"

        caps = {SourceCapability.PACKED if packed else SourceCapability.COMPRESSED}
        if self._finite:
            caps.add(SourceCapability.FINITE)
        self.capabilities = frozenset(caps)

    @property
    def exhausted(self) -> bool:
        return self._done

    def capture(self) -> Optional[RawFrame]:
        if self._done:
            return None
        ok, frame_bgr = self.cap.read()
        if not ok or frame_bgr is None:
            if self._finite:
                self._done = True
            return None

        cv2 = self._cv2
        h, w = frame_bgr.shape[:2]
        if self.packed:
            rgb = cv2.cvtColor(frame_bgr, cv2.COLOR_BGR2RGB)
            return PackedFrame(pixels=pack_rgb888_to_rgb565(rgb), width=int(w), height=int(h))

        ok, buf = cv2.imencode(".jpg", frame_bgr, [int(cv2.IMWRITE_JPEG_QUALITY), self.jpeg_quality])
        if not ok:
            raise CaptureFailure("JPEG encoding of captured frame failed")
        return CompressedFrame(data=buf.tobytes(), width=int(w), height=int(h))

    def describe(self) -> str:
        return f"capture {self._label} fps={self.info.fps} size={self.info.width}x{self.info.height}"

    def close(self) -> None:
        self.cap.release()
