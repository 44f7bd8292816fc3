from __future__ import annotations

import logging
import time
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional

from edge_yolo_kit.errors import (
    AllocationFailure,
    CaptureFailure,
    DecodeFailure,
    InvokeFailure,
    ShapeMismatch,
    SinkFailure,
)
from edge_yolo_kit.runtime import DetectorPipeline, FrameResult
from edge_yolo_kit.types import RawFrame

from .ingest import ImageSource, SourceCapability
from .sinks import ArtifactOptions, NullSink, ResultSink, write_frame_artifacts

logger = logging.getLogger(__name__)

# Failures that cost one frame, never the loop.
FRAME_ERRORS = (CaptureFailure, DecodeFailure, InvokeFailure, AllocationFailure, ShapeMismatch)


@dataclass(frozen=True)
class LoopConfig:
    """
    Pacing of the frame loop (seconds).

    - capture_retry_s: wait after the source had no frame
    - failure_pause_s: wait after a frame was dropped on error
    - frame_interval_s: wait after every handled frame (0 = run flat out)
    - max_frames: stop after this many captured frames (0 = no limit)
    """

    capture_retry_s: float = 0.05
    failure_pause_s: float = 0.3
    frame_interval_s: float = 0.0
    max_frames: int = 0

    def __post_init__(self) -> None:
        if self.capture_retry_s < 0 or self.failure_pause_s < 0 or self.frame_interval_s < 0:
            raise ValueError("loop pauses must be >= 0")
        if self.max_frames < 0:
            raise ValueError("max_frames must be >= 0")


@dataclass
class LoopStats:
    captured: int = 0
    processed: int = 0
    skipped: int = 0
    capture_misses: int = 0
    detections: int = 0
    artifacts: int = 0
    sink_failures: int = 0
    invoke_us_total: int = 0
    errors: Counter = field(default_factory=Counter)

    @property
    def mean_invoke_us(self) -> float:
        return self.invoke_us_total / self.processed if self.processed else 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "captured": self.captured,
            "processed": self.processed,
            "skipped": self.skipped,
            "capture_misses": self.capture_misses,
            "detections": self.detections,
            "artifacts": self.artifacts,
            "sink_failures": self.sink_failures,
            "mean_invoke_us": round(self.mean_invoke_us, 1),
            "errors": dict(sorted(self.errors.items())),
        }


class PipelineLoop:
    """
    Single synchronous worker: capture -> pipeline -> sink, one frame at a time.

    Per-frame failures are logged, the frame is dropped and the loop pauses
    before carrying on. An unrecoverable ShapeMismatch, or anything outside
    the per-frame error set, propagates.
    """

    def __init__(
        self,
        pipeline: DetectorPipeline,
        source: ImageSource,
        sink: Optional[ResultSink] = None,
        *,
        cfg: LoopConfig = LoopConfig(),
        artifacts: ArtifactOptions = ArtifactOptions(),
        class_names: Optional[Dict[int, str]] = None,
        sleep_fn: Callable[[float], None] = time.sleep,
        on_frame: Optional[Callable[[Optional[FrameResult]], None]] = None,
    ):
        self.pipeline = pipeline
        self.source = source
        self.sink = sink or NullSink()
        self.cfg = cfg
        self.artifacts = artifacts
        self.class_names = class_names
        self.stats = LoopStats()
        self._sleep = sleep_fn
        self._on_frame = on_frame
        self._seq = 0
        self._stopped = False

    def stop(self) -> None:
        self._stopped = True

    @property
    def done(self) -> bool:
        if self._stopped:
            return True
        if self.cfg.max_frames and self.stats.captured >= self.cfg.max_frames:
            return True
        return self.source.supports(SourceCapability.FINITE) and self.source.exhausted

    def _pause(self, seconds: float) -> None:
        if seconds > 0:
            self._sleep(seconds)

    def step(self) -> Optional[FrameResult]:
        """One loop iteration. Returns the frame's result, or None if no frame was produced."""

        try:
            frame = self.source.capture()
        except CaptureFailure as exc:
            logger.warning("Capture failed: %s", exc)
            self.stats.errors[type(exc).__name__] += 1
            self._pause(self.cfg.failure_pause_s)
            return None

        if frame is None:
            if not (self.source.supports(SourceCapability.FINITE) and self.source.exhausted):
                self.stats.capture_misses += 1
                self._pause(self.cfg.capture_retry_s)
            return None

        seq = self._seq
        self._seq += 1
        self.stats.captured += 1
        try:
            result = self._handle(frame, seq)
        finally:
            if self.source.supports(SourceCapability.RELEASE):
                self.source.release(frame)

        if self._on_frame is not None:
            self._on_frame(result)
        self._pause(self.cfg.frame_interval_s)
        return result

    def _handle(self, frame: RawFrame, seq: int) -> Optional[FrameResult]:
        try:
            result = self.pipeline.process(frame, seq)
        except ShapeMismatch as exc:
            if not exc.recoverable:
                raise
            return self._skip(seq, exc)
        except FRAME_ERRORS as exc:
            return self._skip(seq, exc)

        self.stats.processed += 1
        self.stats.detections += len(result.detections)
        self.stats.invoke_us_total += result.invoke_us

        if self.artifacts.any:
            try:
                written = write_frame_artifacts(
                    self.sink,
                    result,
                    frame,
                    options=self.artifacts,
                    class_names=self.class_names,
                )
                self.stats.artifacts += len(written)
            except SinkFailure as exc:
                logger.warning("Frame %06d: sink refused artifact: %s", seq, exc)
                self.stats.sink_failures += 1
        return result

    def _skip(self, seq: int, exc: Exception) -> None:
        logger.error("Frame %06d: %s: %s (frame skipped)", seq, type(exc).__name__, exc)
        self.stats.skipped += 1
        self.stats.errors[type(exc).__name__] += 1
        self._pause(self.cfg.failure_pause_s)
        return None

    def run(self) -> LoopStats:
        logger.info("Loop started on %s", self.source.describe())
        while not self.done:
            self.step()
        logger.info(
            "Loop finished: captured=%d processed=%d skipped=%d detections=%d",
            self.stats.captured,
            self.stats.processed,
            self.stats.skipped,
            self.stats.detections,
        )
        return self.stats
