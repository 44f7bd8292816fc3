"""
Numeric core of an int8 on-device object detector.

Image normalization (letterbox / distort / crop), per-tensor affine
quantization, an inference-engine contract, and decoding of an anchor-free
head with distribution regression. NumPy throughout; OpenCV for image
coding and drawing, inference runtimes only in `backends`.
"""

from .types import (
    CompressedFrame,
    Detection,
    NormalizedImage,
    PackedFrame,
    QuantizedTensor,
    RawFrame,
    ResizePolicy,
    TensorSpec,
)
from .errors import (
    AllocationFailure,
    CaptureFailure,
    DecodeFailure,
    EdgeDetectionError,
    GridAssumptionViolated,
    InvokeFailure,
    ModelLoadFailure,
    QuantizationConventionError,
    ShapeMismatch,
    SinkFailure,
)
from .letterbox import distort_resize, letterbox, aspect_crop_resize, normalize_frame
from .pixels import rgb565_to_rgb888
from .quantize import InputConvention, PixelQuantizer, dequantize, quantize, resolve_input_convention
from .postprocess import DflDecodeConfig, DflDecoder, decode_detections
from .engine import InferenceEngine
from .memory import MemoryBudget, MemoryDomain, MemoryPlanner
from .diagnostics import DiagnosticsConfig
from .runtime import DetectorPipeline, FrameResult, load_engine, load_pipeline, find_project_root, resolve_path
from .metadata import load_class_names
from .visualize import draw_detections

__all__ = [
    "CompressedFrame",
    "Detection",
    "NormalizedImage",
    "PackedFrame",
    "QuantizedTensor",
    "RawFrame",
    "ResizePolicy",
    "TensorSpec",
    "AllocationFailure",
    "CaptureFailure",
    "DecodeFailure",
    "EdgeDetectionError",
    "GridAssumptionViolated",
    "InvokeFailure",
    "ModelLoadFailure",
    "QuantizationConventionError",
    "ShapeMismatch",
    "SinkFailure",
    "letterbox",
    "distort_resize",
    "aspect_crop_resize",
    "normalize_frame",
    "rgb565_to_rgb888",
    "InputConvention",
    "PixelQuantizer",
    "quantize",
    "dequantize",
    "resolve_input_convention",
    "DflDecodeConfig",
    "DflDecoder",
    "decode_detections",
    "InferenceEngine",
    "MemoryBudget",
    "MemoryDomain",
    "MemoryPlanner",
    "DiagnosticsConfig",
    "DetectorPipeline",
    "FrameResult",
    "load_engine",
    "load_pipeline",
    "find_project_root",
    "resolve_path",
    "load_class_names",
    "draw_detections",
]
