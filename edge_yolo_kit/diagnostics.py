from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np

from .postprocess import sigmoid, split_output
from .types import Detection, QuantizedTensor, TensorSpec

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DiagnosticsConfig:
    """
    Per-frame debug logging knobs. Everything is off by default except the
    one-time tensor summary.

    - output_samples: number of leading output values to log (0 disables)
    - top_k: classes to probe at the best cell (0 disables)
    - dump_limit: max detections printed per frame
    """

    tensors: bool = True
    input_stats: bool = False
    output_stats: bool = False
    output_samples: int = 0
    class_scan: bool = False
    top_k: int = 0
    detections: bool = False
    dump_limit: int = 10

    def __post_init__(self) -> None:
        if self.output_samples < 0:
            raise ValueError("output_samples must be >= 0")
        if self.top_k < 0:
            raise ValueError("top_k must be >= 0")
        if self.dump_limit < 0:
            raise ValueError("dump_limit must be >= 0")

    @classmethod
    def verbose(cls) -> "DiagnosticsConfig":
        return cls(
            tensors=True,
            input_stats=True,
            output_stats=True,
            output_samples=16,
            class_scan=True,
            top_k=5,
            detections=True,
        )


@dataclass(frozen=True)
class BestScore:
    score: float
    cell: int
    class_id: int


def rgb_stats(pixels: np.ndarray) -> Dict[str, float]:
    a = np.asarray(pixels)
    return {"n": int(a.size), "min": int(a.min()), "max": int(a.max()), "mean": float(a.mean())}


def int8_stats(tensor: QuantizedTensor) -> Dict[str, float]:
    q = np.asarray(tensor.data)
    mean_i8 = float(q.astype(np.float64).mean())
    return {
        "n": int(q.size),
        "min": int(q.min()),
        "max": int(q.max()),
        "mean_i8": mean_i8,
        "mean_deq": (mean_i8 - tensor.zero_point) * tensor.scale,
    }


def dequant_stats(tensor: QuantizedTensor) -> Dict[str, float]:
    v = tensor.dequantize()
    return {"n": int(v.size), "min": float(v.min()), "max": float(v.max()), "mean": float(v.mean())}


def output_samples(tensor: QuantizedTensor, count: int) -> List[Tuple[int, float]]:
    flat = np.asarray(tensor.data).reshape(-1)[:count]
    return [(int(q), (int(q) - tensor.zero_point) * tensor.scale) for q in flat]


def class_scores(tensor: QuantizedTensor, reg_max: int) -> np.ndarray:
    """(N, K) sigmoid class probabilities of a raw head output."""

    p, _, _ = split_output(tensor.data, reg_max)
    logits = (p[:, 4 * reg_max :].astype(np.float64) - tensor.zero_point) * tensor.scale
    return sigmoid(logits)


def best_cell_class(tensor: QuantizedTensor, reg_max: int) -> BestScore:
    """Highest class probability over every cell; first occurrence wins ties."""

    scores = class_scores(tensor, reg_max)
    if scores.size == 0:
        return BestScore(score=0.0, cell=-1, class_id=-1)
    flat = int(np.argmax(scores))
    cell, cls = divmod(flat, scores.shape[1])
    return BestScore(score=float(scores[cell, cls]), cell=cell, class_id=cls)


def topk_classes_at_cell(tensor: QuantizedTensor, reg_max: int, cell: int, k: int) -> List[Tuple[int, float]]:
    scores = class_scores(tensor, reg_max)[cell]
    order = np.argsort(-scores, kind="stable")[:k]
    return [(int(c), float(scores[c])) for c in order]


def log_tensor_specs(kind: str, specs: Sequence[TensorSpec]) -> None:
    for spec in specs:
        logger.info("%s %s (%d bytes)", kind, spec.describe(), spec.nbytes)


class FrameDiagnostics:
    """Emits the per-frame debug lines selected by a DiagnosticsConfig."""

    def __init__(self, cfg: DiagnosticsConfig, *, reg_max: int, conf_threshold: float):
        self.cfg = cfg
        self.reg_max = reg_max
        self.conf_threshold = conf_threshold

    def before_invoke(self, seq: int, canvas: np.ndarray, input_tensor: QuantizedTensor) -> None:
        if not self.cfg.input_stats:
            return
        s = rgb_stats(canvas)
        logger.info("Frame %06d: RGB888 stats n=%d min=%d max=%d mean=%.2f", seq, s["n"], s["min"], s["max"], s["mean"])
        q = int8_stats(input_tensor)
        logger.info(
            "Frame %06d: INT8 stats n=%d min=%d max=%d mean_i8=%.2f mean_deq=%.6f",
            seq,
            q["n"],
            q["min"],
            q["max"],
            q["mean_i8"],
            q["mean_deq"],
        )

    def after_invoke(self, seq: int, output: QuantizedTensor) -> Optional[BestScore]:
        cfg = self.cfg
        if cfg.output_stats:
            s = dequant_stats(output)
            logger.info("Output dequant stats: n=%d min=%.6f max=%.6f mean=%.6f", s["n"], s["min"], s["max"], s["mean"])
        if cfg.output_samples:
            text = "".join(f" [{i}]={q}({v:.4f})" for i, (q, v) in enumerate(output_samples(output, cfg.output_samples)))
            logger.info("Output samples:%s", text)

        best = None
        if cfg.class_scan:
            best = best_cell_class(output, self.reg_max)
            logger.info(
                "Best cell/class: cell=%d cls=%d p=%.6f (threshold=%.2f)",
                best.cell,
                best.class_id,
                best.score,
                self.conf_threshold,
            )
            if cfg.top_k and best.cell >= 0:
                top = topk_classes_at_cell(output, self.reg_max, best.cell, cfg.top_k)
                text = "".join(f" #{i + 1} cls={c} p={p:.6f}" for i, (c, p) in enumerate(top))
                logger.info("Top-%d classes at best cell %d:%s", cfg.top_k, best.cell, text)
        return best

    def after_decode(self, seq: int, output: QuantizedTensor, detections: Sequence[Detection]) -> None:
        if not self.cfg.detections:
            return
        if detections:
            lim = min(len(detections), self.cfg.dump_limit)
            for i, d in enumerate(detections[:lim]):
                logger.info(
                    "Box[%d]: cls=%d score=%.6f  x=%.1f y=%.1f w=%.1f h=%.1f",
                    i,
                    d.class_id,
                    d.score,
                    d.x,
                    d.y,
                    d.w,
                    d.h,
                )
            if len(detections) > lim:
                logger.info("Box dump truncated: printed %d / %d", lim, len(detections))
            return

        best = best_cell_class(output, self.reg_max)
        logger.warning(
            "No detections. Best p=%.6f at cell=%d cls=%d (threshold=%.2f).",
            best.score,
            best.cell,
            best.class_id,
            self.conf_threshold,
        )
