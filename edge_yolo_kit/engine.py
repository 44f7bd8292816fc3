from __future__ import annotations

import logging
from typing import List, Sequence, Tuple

import numpy as np

from .errors import AllocationFailure, InvokeFailure, ModelLoadFailure, ShapeMismatch
from .types import QuantizedTensor, TensorSpec

logger = logging.getLogger(__name__)


class InferenceEngine:
    """
    Narrow contract around an inference runtime: load, allocate, invoke, read tensors.

    The base class owns the lifecycle (load once, allocate exactly once, invoke
    only after allocation) and the tensor buffers. Input and output buffers are
    allocated once in `allocate_tensors` and reused for every invoke.

    Subclasses implement `_load`, `_allocate` and `_run`.
    """

    backend_name = "base"

    def __init__(self) -> None:
        self._loaded = False
        self._allocated = False
        self._input_specs: List[TensorSpec] = []
        self._output_specs: List[TensorSpec] = []
        self._inputs: List[np.ndarray] = []
        self._outputs: List[np.ndarray] = []
        self.invoke_count = 0

    # ------------------------------------------------------------------ #
    # Public contract
    # ------------------------------------------------------------------ #
    @property
    def loaded(self) -> bool:
        return self._loaded

    @property
    def allocated(self) -> bool:
        return self._allocated

    def load(self, model_bytes: bytes) -> None:
        if self._loaded:
            raise RuntimeError("Model already loaded; create a new engine for another model.")
        if not model_bytes:
            raise ModelLoadFailure("Model blob is empty")
        try:
            self._load(bytes(model_bytes))
        except ModelLoadFailure:
            raise
        except Exception as exc:
            raise ModelLoadFailure(f"{self.backend_name}: failed to load model: {exc}") from exc
        self._loaded = True
        logger.info("%s: model loaded (%d bytes)", self.backend_name, len(model_bytes))

    def allocate_tensors(self) -> None:
        if not self._loaded:
            raise RuntimeError("allocate_tensors() called before load().")
        if self._allocated:
            raise RuntimeError("allocate_tensors() must be called exactly once.")
        try:
            inputs, outputs = self._allocate()
        except AllocationFailure:
            raise
        except Exception as exc:
            raise AllocationFailure(f"{self.backend_name}: AllocateTensors failed: {exc}") from exc

        if not inputs:
            raise AllocationFailure(f"{self.backend_name}: model has no inputs.")
        if not outputs:
            raise AllocationFailure(f"{self.backend_name}: model has no outputs.")

        self._input_specs = list(inputs)
        self._output_specs = list(outputs)
        self._inputs = [np.zeros(s.shape, dtype=s.dtype) for s in self._input_specs]
        self._outputs = [np.zeros(s.shape, dtype=s.dtype) for s in self._output_specs]
        self._allocated = True
        logger.debug(
            "%s: tensors allocated (%d inputs, %d outputs)",
            self.backend_name,
            len(self._input_specs),
            len(self._output_specs),
        )

    def input_tensor(self, index: int = 0) -> QuantizedTensor:
        self._require_allocated("input_tensor")
        return QuantizedTensor(spec=self._input_specs[index], data=self._inputs[index])

    def output_tensor(self, index: int = 0) -> QuantizedTensor:
        self._require_allocated("output_tensor")
        return QuantizedTensor(spec=self._output_specs[index], data=self._outputs[index])

    @property
    def input_count(self) -> int:
        return len(self._input_specs)

    @property
    def output_count(self) -> int:
        return len(self._output_specs)

    def invoke(self) -> None:
        """Run the network once on the current input buffers (blocking)."""

        self._require_allocated("invoke")
        try:
            results = self._run(self._inputs)
        except InvokeFailure:
            raise
        except Exception as exc:
            raise InvokeFailure(f"{self.backend_name}: Invoke failed: {exc}") from exc

        if len(results) != len(self._outputs):
            raise InvokeFailure(
                f"{self.backend_name}: expected {len(self._outputs)} outputs, got {len(results)}"
            )
        results = [np.asarray(res) for res in results]
        for i, (buf, res) in enumerate(zip(self._outputs, results)):
            if res.shape != buf.shape:
                # The allocated buffers keep their shape; only this frame is lost.
                raise ShapeMismatch(
                    f"{self.backend_name}: output {i} came back as {list(res.shape)}, "
                    f"allocated {list(buf.shape)}",
                    recoverable=True,
                )
        for buf, res in zip(self._outputs, results):
            np.copyto(buf, res, casting="unsafe")
        self.invoke_count += 1

    def close(self) -> None:
        pass

    # ------------------------------------------------------------------ #
    # Backend hooks
    # ------------------------------------------------------------------ #
    def _load(self, model_bytes: bytes) -> None:
        raise NotImplementedError

    def _allocate(self) -> Tuple[Sequence[TensorSpec], Sequence[TensorSpec]]:
        raise NotImplementedError

    def _run(self, inputs: Sequence[np.ndarray]) -> Sequence[np.ndarray]:
        raise NotImplementedError

    def _require_allocated(self, what: str) -> None:
        if not self._allocated:
            raise RuntimeError(f"{what}() called before allocate_tensors().")

    def __enter__(self) -> "InferenceEngine":
        return self

    def __exit__(self, *exc) -> None:
        self.close()
