"""
Application layer built on top of `edge_yolo_kit`.

The detector itself (normalize, quantize, invoke, decode) stays in
`edge_yolo_kit/`; this package holds what a deployment needs around it:

- detector profile and run config
- image sources (JPEG directory, video/webcam/RTSP capture)
- result sinks (audit artifacts, run summary)
- the frame loop and the command-line runner
"""

from __future__ import annotations

from .config import DetectorProfile, load_detector_profile, read_model_name_from_config, resolve_model_path
from .ingest import DirectorySource, ImageSource, SequenceSource, SourceCapability, VideoCaptureSource
from .logs import setup_logging
from .loop import LoopConfig, LoopStats, PipelineLoop
from .sinks import ArtifactOptions, DirectorySink, NullSink, ResultSink, write_frame_artifacts, write_run_summary

__all__ = [
    "DetectorProfile",
    "load_detector_profile",
    "read_model_name_from_config",
    "resolve_model_path",
    "DirectorySource",
    "ImageSource",
    "SequenceSource",
    "SourceCapability",
    "VideoCaptureSource",
    "setup_logging",
    "LoopConfig",
    "LoopStats",
    "PipelineLoop",
    "ArtifactOptions",
    "DirectorySink",
    "NullSink",
    "ResultSink",
    "write_frame_artifacts",
    "write_run_summary",
]
