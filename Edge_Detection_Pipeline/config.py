from __future__ import annotations

import json
import re
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Dict, Optional

from edge_yolo_kit.diagnostics import DiagnosticsConfig
from edge_yolo_kit.memory import MemoryBudget
from edge_yolo_kit.postprocess import DflDecodeConfig
from edge_yolo_kit.types import ResizePolicy

DEFAULT_INPUT_SIZE = 192
DEFAULT_REG_MAX = 16
DEFAULT_CONF_THRESHOLD = 0.30
DEFAULT_MAX_DETECTIONS = 20
DEFAULT_ARENA_BYTES = 2 * 1024 * 1024

_CONVENTIONS = ("auto", "unit", "raw")
_MODEL_DEFINE = re.compile(r'^#define\s+MODEL\s+"([^"]+)"')


@dataclass(frozen=True)
class DetectorProfile:
    schema_version: int = 1
    input_size: int = DEFAULT_INPUT_SIZE
    reg_max: int = DEFAULT_REG_MAX
    num_classes: Optional[int] = None
    conf_threshold: float = DEFAULT_CONF_THRESHOLD
    max_detections: int = DEFAULT_MAX_DETECTIONS
    resize_policy: str = ResizePolicy.LETTERBOX.value
    input_convention: str = "auto"
    pad_value: int = 0
    arena_bytes: int = DEFAULT_ARENA_BYTES
    memory: MemoryBudget = field(default_factory=MemoryBudget)
    diagnostics: DiagnosticsConfig = field(default_factory=DiagnosticsConfig)
    labels: Optional[str] = None
    notes: Optional[str] = None

    def __post_init__(self) -> None:
        if self.schema_version != 1:
            raise ValueError("detector profile schema_version must be 1")
        if self.input_size < 32:
            raise ValueError("input_size must be >= 32")
        if self.reg_max <= 0:
            raise ValueError("reg_max must be > 0")
        if self.num_classes is not None and self.num_classes <= 0:
            raise ValueError("num_classes must be > 0")
        if not (0.0 <= self.conf_threshold <= 1.0):
            raise ValueError("conf_threshold must be within [0, 1]")
        if self.max_detections < 0:
            raise ValueError("max_detections must be >= 0")
        if self.resize_policy not in {p.value for p in ResizePolicy}:
            raise ValueError(f"resize_policy must be one of {[p.value for p in ResizePolicy]}")
        if self.input_convention not in _CONVENTIONS:
            raise ValueError(f"input_convention must be one of {list(_CONVENTIONS)}")
        if not (0 <= self.pad_value <= 255):
            raise ValueError("pad_value must be within [0, 255]")
        if self.arena_bytes <= 0:
            raise ValueError("arena_bytes must be > 0")

    def decode_config(self) -> DflDecodeConfig:
        return DflDecodeConfig(
            input_size=self.input_size,
            reg_max=self.reg_max,
            conf_threshold=self.conf_threshold,
            max_detections=self.max_detections,
            num_classes=self.num_classes,
        )


def _require_number(payload: Dict[str, Any], key: str) -> float:
    if key not in payload:
        raise ValueError(f"Missing required key: {key}")
    value = payload[key]
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"{key} must be a number")
    return float(value)


def _require_int(payload: Dict[str, Any], key: str) -> int:
    if key not in payload:
        raise ValueError(f"Missing required key: {key}")
    value = payload[key]
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"{key} must be an integer")
    return int(value)


def _optional_str(payload: Dict[str, Any], key: str) -> Optional[str]:
    value = payload.get(key)
    if value is not None and not isinstance(value, str):
        raise ValueError(f"{key} must be a string if provided")
    return value


def _load_json_object(path: Path, what: str) -> Dict[str, Any]:
    if not path.exists():
        raise FileNotFoundError(f"{what} not found: {path}")
    raw = path.read_text(encoding="utf-8")
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ValueError(f"Invalid {what} JSON: {path}") from exc
    if not isinstance(payload, dict):
        raise ValueError(f"{what} must be a JSON object")
    return payload


def _parse_memory(block: Any) -> MemoryBudget:
    if not isinstance(block, dict):
        raise ValueError("memory must be an object")
    allowed = {"fast_bytes", "bulk_bytes", "large_threshold"}
    unknown = sorted(set(block.keys()) - allowed)
    if unknown:
        raise ValueError(f"Unknown memory keys: {unknown}")
    kwargs = {k: _require_int(block, k) for k in allowed if k in block}
    return MemoryBudget(**kwargs)


def _parse_diagnostics(block: Any) -> DiagnosticsConfig:
    if not isinstance(block, dict):
        raise ValueError("diagnostics must be an object")
    bool_keys = {"tensors", "input_stats", "output_stats", "class_scan", "detections"}
    int_keys = {"output_samples", "top_k", "dump_limit"}
    unknown = sorted(set(block.keys()) - bool_keys - int_keys)
    if unknown:
        raise ValueError(f"Unknown diagnostics keys: {unknown}")
    kwargs: Dict[str, Any] = {}
    for key, value in block.items():
        if key in bool_keys:
            if not isinstance(value, bool):
                raise ValueError(f"diagnostics.{key} must be a boolean")
            kwargs[key] = value
        else:
            kwargs[key] = _require_int(block, key)
    return DiagnosticsConfig(**kwargs)


def load_detector_profile(path: Path) -> DetectorProfile:
    payload = _load_json_object(path, "Detector profile")

    allowed = {
        "schema_version",
        "input_size",
        "reg_max",
        "num_classes",
        "conf_threshold",
        "max_detections",
        "resize_policy",
        "input_convention",
        "pad_value",
        "arena_bytes",
        "memory",
        "diagnostics",
        "labels",
        "notes",
    }
    unknown = sorted(set(payload.keys()) - allowed)
    if unknown:
        raise ValueError(f"Unknown detector profile keys: {unknown}")

    kwargs: Dict[str, Any] = {"schema_version": _require_int(payload, "schema_version")}
    for key in ("input_size", "reg_max", "max_detections", "pad_value", "arena_bytes"):
        if key in payload:
            kwargs[key] = _require_int(payload, key)
    if payload.get("num_classes") is not None:
        kwargs["num_classes"] = _require_int(payload, "num_classes")
    if "conf_threshold" in payload:
        kwargs["conf_threshold"] = _require_number(payload, "conf_threshold")
    for key in ("resize_policy", "input_convention", "labels", "notes"):
        value = _optional_str(payload, key)
        if value is not None:
            kwargs[key] = value
    if "memory" in payload:
        kwargs["memory"] = _parse_memory(payload["memory"])
    if "diagnostics" in payload:
        kwargs["diagnostics"] = _parse_diagnostics(payload["diagnostics"])

    profile = DetectorProfile(**kwargs)
    if profile.labels is not None and not Path(profile.labels).is_absolute():
        # Relative label paths are relative to the profile file.
        profile = replace(profile, labels=str((path.parent / profile.labels).resolve()))
    return profile


def read_model_name_from_config(path: Path) -> str:
    """
    Model file name from a firmware-style header line:

        #define MODEL "detector_int8.tflite"

    The first matching line wins.
    """

    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")
    with path.open("r", encoding="utf-8") as f:
        for line in f:
            m = _MODEL_DEFINE.match(line.strip())
            if m:
                return m.group(1)
    raise ValueError(f"MODEL not found in config: {path}")


def resolve_model_path(config_path: Path, model_dir: Path) -> Path:
    return model_dir / read_model_name_from_config(config_path)
