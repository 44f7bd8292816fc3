"""
Failure taxonomy shared by the kit and the frame loop.

Per-frame failures (capture, decode, invoke, recoverable shape mismatch) are
caught by the loop and the frame is skipped. Initialization failures
(model load, arena allocation, unrecoverable shape mismatch, unresolved input
convention) propagate and abort startup.
"""

from __future__ import annotations


class EdgeDetectionError(Exception):
    """Base class for every error raised by edge_yolo_kit."""


class CaptureFailure(EdgeDetectionError):
    """The image source could not deliver a frame."""


class DecodeFailure(EdgeDetectionError):
    """A compressed frame could not be decoded into RGB pixels."""


class AllocationFailure(EdgeDetectionError):
    """A buffer, the model blob or the tensor arena did not fit its memory domain."""


class ShapeMismatch(EdgeDetectionError):
    """
    Tensor rank or dimensions disagree with what the pipeline expects.

    `recoverable=True` means the current frame can be dropped and the loop can
    carry on (e.g. an output tensor that changed shape for one frame).
    """

    def __init__(self, message: str, *, recoverable: bool = True):
        super().__init__(message)
        self.recoverable = recoverable


class InvokeFailure(EdgeDetectionError):
    """The inference engine reported a non-success status."""


class ModelLoadFailure(EdgeDetectionError):
    """The engine could not parse the model blob."""


class QuantizationConventionError(EdgeDetectionError):
    """The input tensor's scale/zero-point do not match a known pixel convention."""


class SinkFailure(EdgeDetectionError):
    """The result sink refused an artifact."""


class GridAssumptionViolated(RuntimeWarning):
    """Cell count is not a perfect square; decoding uses the rounded grid."""
