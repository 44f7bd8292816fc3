from __future__ import annotations

import logging
import time
from contextlib import ExitStack
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Sequence, Tuple, Union

import numpy as np

from .diagnostics import DiagnosticsConfig, FrameDiagnostics, log_tensor_specs
from .engine import InferenceEngine
from .errors import AllocationFailure, ModelLoadFailure, ShapeMismatch
from .letterbox import frame_dimensions, frame_to_rgb, normalize_rgb
from .memory import MemoryDomain, MemoryPlanner
from .postprocess import DflDecodeConfig, DflDecoder
from .quantize import InputConvention, PixelQuantizer, resolve_input_convention
from .types import Detection, NormalizedImage, RawFrame, ResizePolicy

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]

DEFAULT_ARENA_BYTES = 2 * 1024 * 1024


def find_project_root(
    start: Optional[PathLike] = None,
    markers: Sequence[str] = ("pyproject.toml", ".git", "Models"),
) -> Path:
    """
    Best-effort project root discovery.

    Used to resolve relative model paths such as `Models/detector.tflite`.
    """

    p = Path(start) if start is not None else Path.cwd()
    p = p.resolve()

    # If a file is provided, start from its directory.
    if p.is_file():
        p = p.parent

    for parent in (p, *p.parents):
        for m in markers:
            if (parent / m).exists():
                return parent
    return p


def resolve_path(path: PathLike, root: Optional[PathLike] = "auto") -> Path:
    """
    Resolve `path` to an absolute Path.

    - Absolute paths are returned as-is.
    - Relative paths are resolved against `root`, or the project root when
      `root` is "auto"/None.
    """

    p = Path(path)
    if p.is_absolute():
        return p

    if root == "auto" or root is None:
        base = find_project_root()
    else:
        base = Path(root).resolve()

    return (base / p).resolve()


@dataclass
class FrameResult:
    """Everything one frame produced. Nothing here is carried into the next frame."""

    seq: int
    image: NormalizedImage
    detections: List[Detection]  # normalized-input coordinates
    source_detections: List[Detection]  # source-image coordinates
    invoke_us: int
    source_rgb: Optional[np.ndarray] = field(default=None, repr=False)


class DetectorPipeline:
    """
    One frame in, detections out: normalize -> quantize -> invoke -> decode.

    The engine must already be loaded and allocated. Its tensors are checked
    once here; a model the decoder cannot handle is refused before the first
    frame.
    """

    def __init__(
        self,
        engine: InferenceEngine,
        *,
        decode_cfg: DflDecodeConfig = DflDecodeConfig(),
        resize_policy: Union[ResizePolicy, str] = ResizePolicy.LETTERBOX,
        pad_value: int = 0,
        input_convention: Union[InputConvention, str] = "auto",
        planner: Optional[MemoryPlanner] = None,
        diagnostics: DiagnosticsConfig = DiagnosticsConfig(),
    ):
        if not engine.allocated:
            raise RuntimeError("Engine tensors must be allocated before building a pipeline.")
        self.engine = engine
        self.decode_cfg = decode_cfg
        self.resize_policy = ResizePolicy(resize_policy)
        self.pad_value = int(pad_value)
        if not 0 <= self.pad_value <= 255:
            raise ValueError(f"pad_value must be in 0..255, got {pad_value}")
        self.planner = planner or MemoryPlanner()
        self.diagnostics = diagnostics

        inp = engine.input_tensor(0)
        out = engine.output_tensor(0)
        if diagnostics.tensors:
            log_tensor_specs("INPUT", [inp.spec])
            log_tensor_specs("OUTPUT", [out.spec])

        self.input_size = self._check_input(inp.spec.shape, inp.spec.dtype)
        self._check_output(out.spec.shape, out.spec.dtype, recoverable=False)

        self.convention = resolve_input_convention(inp.scale, inp.zero_point, input_convention)
        self.quantizer = PixelQuantizer(inp.scale, inp.zero_point, self.convention)
        self.decoder = DflDecoder(decode_cfg)
        self._diag = FrameDiagnostics(
            diagnostics,
            reg_max=decode_cfg.reg_max,
            conf_threshold=decode_cfg.conf_threshold,
        )
        logger.info(
            "Pipeline ready: input=%dx%d policy=%s convention=%s backend=%s",
            self.input_size,
            self.input_size,
            self.resize_policy.value,
            self.convention.value,
            engine.backend_name,
        )

    # ------------------------------------------------------------------ #
    # Validation
    # ------------------------------------------------------------------ #
    def _check_input(self, shape: Tuple[int, ...], dtype) -> int:
        if np.dtype(dtype) != np.int8:
            raise ShapeMismatch(f"Input tensor must be int8, got {np.dtype(dtype).name}", recoverable=False)
        if len(shape) != 4 or shape[0] != 1 or shape[3] != 3 or shape[1] != shape[2]:
            raise ShapeMismatch(f"Input tensor must be [1, S, S, 3], got {list(shape)}", recoverable=False)
        size = int(shape[1])
        if size != self.decode_cfg.input_size:
            raise ShapeMismatch(
                f"Input tensor is {size}x{size}, decoder configured for {self.decode_cfg.input_size}",
                recoverable=False,
            )
        return size

    def _check_output(self, shape: Tuple[int, ...], dtype, *, recoverable: bool) -> None:
        if np.dtype(dtype) != np.int8:
            raise ShapeMismatch(f"Output tensor must be int8, got {np.dtype(dtype).name}", recoverable=recoverable)
        if len(shape) not in (2, 3) or (len(shape) == 3 and shape[0] != 1):
            raise ShapeMismatch(f"Output tensor must be [1, N, C] or [N, C], got {list(shape)}", recoverable=recoverable)
        channels = int(shape[-1])
        if channels <= 4 * self.decode_cfg.reg_max:
            raise ShapeMismatch(
                f"Output has C={channels} channels, needs more than {4 * self.decode_cfg.reg_max}",
                recoverable=recoverable,
            )
        classes = channels - 4 * self.decode_cfg.reg_max
        if self.decode_cfg.num_classes is not None and classes != self.decode_cfg.num_classes:
            raise ShapeMismatch(
                f"Output carries {classes} classes, decoder configured for {self.decode_cfg.num_classes}",
                recoverable=recoverable,
            )

    # ------------------------------------------------------------------ #
    # Per frame
    # ------------------------------------------------------------------ #
    def process(self, frame: RawFrame, seq: int = 0) -> FrameResult:
        """
        Run one frame through the pipeline.

        Raises the per-frame errors (DecodeFailure, AllocationFailure,
        InvokeFailure, recoverable ShapeMismatch) for the caller to skip on.
        """

        size = self.input_size
        src_w, src_h = frame_dimensions(frame)
        with ExitStack() as stack:
            scratch = None
            if src_w > 0 and src_h > 0:
                scratch = stack.enter_context(
                    self.planner.lease(f"decode-{seq}", (src_h, src_w, 3), domain=MemoryDomain.BULK)
                )
            canvas = stack.enter_context(self.planner.lease(f"canvas-{seq}", (size, size, 3)))

            rgb = frame_to_rgb(frame, out=scratch)
            image = normalize_rgb(rgb, size, self.resize_policy, pad_value=self.pad_value, out=canvas)

            inp = self.engine.input_tensor(0)
            self.quantizer(image.pixels, out=inp.data)
            self._diag.before_invoke(seq, image.pixels, inp)

            t0 = time.perf_counter()
            self.engine.invoke()
            invoke_us = int((time.perf_counter() - t0) * 1e6)
            logger.info("Frame %06d: Invoke()=ok time=%d us", seq, invoke_us)

            out = self.engine.output_tensor(0)
            self._check_output(out.shape, out.data.dtype, recoverable=True)
            self._diag.after_invoke(seq, out)

            detections = self.decoder.decode(out)
            logger.info(
                "Frame %06d: Detections=%d (threshold=%.2f)",
                seq,
                len(detections),
                self.decode_cfg.conf_threshold,
            )
            self._diag.after_decode(seq, out, detections)

            return FrameResult(
                seq=seq,
                image=image,
                detections=detections,
                source_detections=[image.to_source(d) for d in detections],
                invoke_us=invoke_us,
                source_rgb=rgb,
            )

    __call__ = process


def infer_backend(model_path: PathLike) -> str:
    suffix = Path(model_path).suffix.lower()
    if suffix == ".tflite":
        return "tflite"
    if suffix == ".onnx":
        return "onnxruntime"
    raise ValueError(f"Could not infer backend from extension '{suffix}'. Pass backend=... explicitly.")


def create_engine(
    backend: str,
    *,
    onnx_providers: Optional[Sequence[str]] = None,
    tflite_threads: Optional[int] = None,
) -> InferenceEngine:
    chosen = backend.lower()
    if chosen == "tflite":
        from .backends.tflite_backend import TFLiteEngine, TFLiteEngineConfig

        return TFLiteEngine(TFLiteEngineConfig(num_threads=tflite_threads))
    if chosen == "onnxruntime":
        from .backends.onnxruntime_backend import OnnxRuntimeBackendConfig, OnnxRuntimeEngine

        return OnnxRuntimeEngine(OnnxRuntimeBackendConfig(providers=onnx_providers))
    raise ValueError(f"Unsupported backend: {backend!r}")


def load_engine(
    model_path: PathLike,
    *,
    backend: Optional[str] = None,
    root: Optional[PathLike] = "auto",
    planner: Optional[MemoryPlanner] = None,
    arena_bytes: int = DEFAULT_ARENA_BYTES,
    engine: Optional[InferenceEngine] = None,
    onnx_providers: Optional[Sequence[str]] = None,
    tflite_threads: Optional[int] = None,
) -> InferenceEngine:
    """
    Read a model from disk into bulk memory, load it and allocate its tensors.

    Any failure here is an initialization failure and propagates.
    """

    resolved = resolve_path(model_path, root=root)
    if not resolved.is_file():
        raise ModelLoadFailure(f"Model not found: {resolved}")

    planner = planner or MemoryPlanner()
    model_bytes = resolved.read_bytes()
    logger.info("Model: %s (%d bytes)", resolved, len(model_bytes))
    planner.reserve("model", len(model_bytes), MemoryDomain.BULK)
    planner.reserve("arena", arena_bytes, MemoryDomain.BULK)

    if engine is None:
        engine = create_engine(
            backend or infer_backend(resolved),
            onnx_providers=onnx_providers,
            tflite_threads=tflite_threads,
        )
    engine.load(model_bytes)
    engine.allocate_tensors()

    needed = sum(engine.input_tensor(i).spec.nbytes for i in range(engine.input_count))
    needed += sum(engine.output_tensor(i).spec.nbytes for i in range(engine.output_count))
    if needed > arena_bytes:
        raise AllocationFailure(f"Tensors need {needed} bytes, arena is {arena_bytes} bytes")

    logger.info("Model initialized successfully")
    planner.log_usage("after model init")
    return engine


def load_pipeline(
    model_path: PathLike,
    *,
    backend: Optional[str] = None,
    root: Optional[PathLike] = "auto",
    decode_cfg: DflDecodeConfig = DflDecodeConfig(),
    resize_policy: Union[ResizePolicy, str] = ResizePolicy.LETTERBOX,
    pad_value: int = 0,
    input_convention: Union[InputConvention, str] = "auto",
    planner: Optional[MemoryPlanner] = None,
    arena_bytes: int = DEFAULT_ARENA_BYTES,
    diagnostics: DiagnosticsConfig = DiagnosticsConfig(),
    onnx_providers: Optional[Sequence[str]] = None,
    tflite_threads: Optional[int] = None,
) -> DetectorPipeline:
    """
    Create a ready-to-run pipeline for a model on disk.

        pipe = load_pipeline("Models/detector.tflite")
        result = pipe.process(frame)

    Relative model paths resolve against the project root by default.
    """

    planner = planner or MemoryPlanner()
    engine = load_engine(
        model_path,
        backend=backend,
        root=root,
        planner=planner,
        arena_bytes=arena_bytes,
        onnx_providers=onnx_providers,
        tflite_threads=tflite_threads,
    )
    return DetectorPipeline(
        engine,
        decode_cfg=decode_cfg,
        resize_policy=resize_policy,
        pad_value=pad_value,
        input_convention=input_convention,
        planner=planner,
        diagnostics=diagnostics,
    )
