from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np

from ..errors import ModelLoadFailure
from ..engine import InferenceEngine
from ..types import TensorSpec


# ONNX has no per-tensor quantization attribute on graph I/O, so the exporter
# stores the affine parameters in the model's custom metadata.
QUANT_METADATA_KEYS = ("input_scale", "input_zero_point", "output_scale", "output_zero_point")

_ORT_DTYPES = {
    "tensor(int8)": np.int8,
    "tensor(uint8)": np.uint8,
    "tensor(float)": np.float32,
    "tensor(float16)": np.float16,
}


@dataclass(frozen=True)
class OnnxRuntimeBackendConfig:
    """
    Configuration for ONNX Runtime inference.

    - providers: ORT execution providers (e.g., ["CPUExecutionProvider"])
    - input_name/output_name: override auto-selected I/O names if needed
    """

    providers: Optional[Sequence[str]] = None
    input_name: Optional[str] = None
    output_name: Optional[str] = None


def _static_shape(shape) -> Tuple[int, ...]:
    dims = []
    for d in shape:
        if isinstance(d, int) and d > 0:
            dims.append(d)
        else:
            # Symbolic batch dims are pinned to 1; anything else is not supported.
            if dims:
                raise ValueError(f"Dynamic dimension {d!r} in {list(shape)} is not supported")
            dims.append(1)
    return tuple(dims)


class OnnxRuntimeEngine(InferenceEngine):
    """
    ONNX Runtime session behind the InferenceEngine contract.

    Expects a quantized graph with int8 NHWC input and one int8 head output.
    """

    backend_name = "onnxruntime"

    def __init__(self, cfg: OnnxRuntimeBackendConfig = OnnxRuntimeBackendConfig()):
        super().__init__()
        try:
            import onnxruntime as ort  # type: ignore
        except Exception as e:  # pragma: no cover
            raise ImportError(
                "onnxruntime is required for the ONNX backend. Install it with `pip install onnxruntime`."
            ) from e

        self._ort = ort
        self.cfg = cfg
        self.session = None
        self.input_name: Optional[str] = None
        self.output_name: Optional[str] = None
        self._quant: Dict[str, str] = {}

    @property
    def providers_in_use(self) -> Sequence[str]:
        # ORT returns providers in priority order for this session.
        return tuple(self.session.get_providers()) if self.session is not None else ()

    @property
    def available_providers(self) -> Sequence[str]:
        return tuple(self._ort.get_available_providers())

    def _load(self, model_bytes: bytes) -> None:
        sess_opts = self._ort.SessionOptions()
        providers = list(self.cfg.providers) if self.cfg.providers is not None else None
        self.session = self._ort.InferenceSession(model_bytes, sess_options=sess_opts, providers=providers)

        meta = self.session.get_modelmeta().custom_metadata_map or {}
        missing = [k for k in QUANT_METADATA_KEYS if k not in meta]
        if missing:
            raise ModelLoadFailure(f"onnxruntime: model metadata is missing quantization keys {missing}")
        self._quant = dict(meta)

        self.input_name = self.cfg.input_name or self.session.get_inputs()[0].name
        # If output_name not provided, pick first output.
        self.output_name = self.cfg.output_name or self.session.get_outputs()[0].name

    def _spec(self, node, prefix: str) -> TensorSpec:
        dtype = _ORT_DTYPES.get(node.type)
        if dtype is None:
            raise ValueError(f"Unsupported tensor type {node.type} for {node.name!r}")
        return TensorSpec(
            name=node.name,
            dtype=np.dtype(dtype),
            shape=_static_shape(node.shape),
            scale=float(self._quant[f"{prefix}_scale"]),
            zero_point=int(self._quant[f"{prefix}_zero_point"]),
        )

    def _allocate(self) -> Tuple[Sequence[TensorSpec], Sequence[TensorSpec]]:
        inputs = {n.name: n for n in self.session.get_inputs()}
        outputs = {n.name: n for n in self.session.get_outputs()}
        if self.input_name not in inputs:
            raise ValueError(f"Input {self.input_name!r} not in model inputs {list(inputs)}")
        if self.output_name not in outputs:
            raise ValueError(f"Output {self.output_name!r} not in model outputs {list(outputs)}")
        return [self._spec(inputs[self.input_name], "input")], [self._spec(outputs[self.output_name], "output")]

    def _run(self, inputs: Sequence[np.ndarray]) -> List[np.ndarray]:
        outputs = self.session.run([self.output_name], {self.input_name: inputs[0]})
        return [outputs[0]]

    def close(self) -> None:
        self.session = None
