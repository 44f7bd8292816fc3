from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple

import numpy as np

from ..engine import InferenceEngine
from ..types import TensorSpec


@dataclass(frozen=True)
class TFLiteEngineConfig:
    """
    Configuration for the TensorFlow Lite interpreter.

    - num_threads: interpreter thread count (None lets the runtime decide)
    - delegate_paths: optional delegate libraries tried in order (first one that loads wins)
    """

    num_threads: Optional[int] = None
    delegate_paths: Sequence[str] = ()


def _spec_from_detail(detail: Dict[str, Any]) -> TensorSpec:
    scale, zero_point = detail.get("quantization", (0.0, 0))
    return TensorSpec(
        name=str(detail.get("name", "")),
        dtype=np.dtype(detail["dtype"]),
        shape=tuple(int(d) for d in detail["shape"]),
        scale=float(scale),
        zero_point=int(zero_point),
    )


class TFLiteEngine(InferenceEngine):
    """
    `tflite_runtime` interpreter behind the InferenceEngine contract.

    The model is handed over as bytes (`model_content`), the interpreter owns
    the tensor arena, and quantization parameters come from the tensor details.
    """

    backend_name = "tflite"

    def __init__(self, cfg: TFLiteEngineConfig = TFLiteEngineConfig()):
        super().__init__()
        self.cfg = cfg
        self._interp = None
        self._input_details: List[Dict[str, Any]] = []
        self._output_details: List[Dict[str, Any]] = []

    @staticmethod
    def _interpreter_module():
        try:
            from tflite_runtime import interpreter as tflite  # type: ignore
        except Exception as e:  # pragma: no cover
            raise ImportError(
                "tflite-runtime is required for the TFLite backend. Install it with `pip install tflite-runtime`."
            ) from e
        return tflite

    def _load_delegates(self, tflite) -> list:
        delegates = []
        for lib in self.cfg.delegate_paths:
            try:
                delegates.append(tflite.load_delegate(lib))
                break
            except (ValueError, OSError):
                continue
        if self.cfg.delegate_paths and not delegates:
            raise RuntimeError(f"Could not load any delegate. Tried: {list(self.cfg.delegate_paths)}")
        return delegates

    def _load(self, model_bytes: bytes) -> None:
        tflite = self._interpreter_module()
        kwargs: Dict[str, Any] = {"model_content": model_bytes}
        if self.cfg.num_threads is not None:
            kwargs["num_threads"] = int(self.cfg.num_threads)
        delegates = self._load_delegates(tflite)
        if delegates:
            kwargs["experimental_delegates"] = delegates
        self._interp = tflite.Interpreter(**kwargs)

    def _allocate(self) -> Tuple[Sequence[TensorSpec], Sequence[TensorSpec]]:
        self._interp.allocate_tensors()
        self._input_details = list(self._interp.get_input_details())
        self._output_details = list(self._interp.get_output_details())
        return (
            [_spec_from_detail(d) for d in self._input_details],
            [_spec_from_detail(d) for d in self._output_details],
        )

    def _run(self, inputs: Sequence[np.ndarray]) -> Sequence[np.ndarray]:
        for detail, buf in zip(self._input_details, inputs):
            self._interp.set_tensor(detail["index"], buf)
        self._interp.invoke()
        return [self._interp.get_tensor(d["index"]) for d in self._output_details]

    def close(self) -> None:
        self._interp = None
