"""
JSON run config: option values applied on top of the parsed command line.

Keys are the runner's argparse dests (`max_frames`, `save_canvas`, ...).
The expected type of each key comes from its argparse action, and an option
that was typed on the command line always wins over the file.
"""

from __future__ import annotations

import argparse
import json
from pathlib import Path
from typing import Any, Callable, Dict, Sequence, Set

SOURCE_KEYS = ("images", "video", "webcam", "rtsp")

# May be written as a JSON list; stored comma-joined like the CLI form.
LIST_KEYS = ("onnx_providers",)


def load_run_config(path: Path) -> Dict[str, Any]:
    if not path.is_file():
        raise FileNotFoundError(f"Run config not found: {path}")
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise ValueError(f"Invalid run config JSON: {path} (line {exc.lineno}: {exc.msg})") from exc
    if not isinstance(payload, dict):
        raise ValueError("Run config must be a JSON object")
    return payload


def collect_cli_dests(parser: argparse.ArgumentParser, argv: Sequence[str]) -> Set[str]:
    """Dests of the options present in `argv`, as `--opt value` or `--opt=value`."""

    given: Set[str] = set()
    for arg in argv:
        if not arg.startswith("-"):
            continue
        action = parser._option_string_actions.get(arg.split("=", 1)[0])
        if action is not None:
            given.add(action.dest)
    return given


def _as_str(key: str, value: Any) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"{key} must be a non-empty string")
    return value


def _as_int(key: str, value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"{key} must be an integer")
    if isinstance(value, float) and not value.is_integer():
        raise ValueError(f"{key} must be an integer")
    return int(value)


def _as_float(key: str, value: Any) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"{key} must be a number")
    return float(value)


def _as_bool(key: str, value: Any) -> bool:
    if not isinstance(value, bool):
        raise ValueError(f"{key} must be a boolean")
    return value


def _as_joined_list(key: str, value: Any) -> str:
    if isinstance(value, str):
        return _as_str(key, value)
    if isinstance(value, list) and value and all(isinstance(v, str) and v.strip() for v in value):
        return ",".join(v.strip() for v in value)
    raise ValueError(f"{key} must be a non-empty string or list of strings")


def _coercer(action: argparse.Action) -> Callable[[str, Any], Any]:
    if action.dest in LIST_KEYS:
        return _as_joined_list
    if isinstance(action, (argparse._StoreTrueAction, argparse._StoreFalseAction)):
        return _as_bool
    if action.type is int:
        return _as_int
    if action.type is float:
        return _as_float
    return _as_str


def _source_values(source: Any) -> Dict[str, Any]:
    if not isinstance(source, dict):
        raise ValueError("run config 'source' must be an object")
    unknown = sorted(set(source) - set(SOURCE_KEYS))
    if unknown:
        raise ValueError(f"Unknown run config source keys: {unknown}")
    return dict(source)


def apply_run_config(
    *,
    args: argparse.Namespace,
    payload: Dict[str, Any],
    cli_dests: Set[str],
    parser: argparse.ArgumentParser,
) -> None:
    """
    Copy run-config values onto parsed args. Options given on the command line win.

    The frame source may be set top-level or inside a `source` block (not
    both), and at most one of images/video/webcam/rtsp may be set.
    """

    if "config" in payload:
        raise ValueError("run config must not include the 'config' key")

    values = {k: v for k, v in payload.items() if k != "source"}
    if payload.get("source") is not None:
        if any(k in values for k in SOURCE_KEYS):
            raise ValueError("Use either 'source' block or top-level images/video/webcam/rtsp keys, not both.")
        values.update(_source_values(payload["source"]))

    chosen = [k for k in SOURCE_KEYS if values.get(k) not in (None, "")]
    if len(chosen) > 1:
        raise ValueError(f"run config must set only one frame source, got {chosen}")

    actions = {a.dest: a for a in parser._actions if a.dest not in ("help", "config")}
    unknown = sorted(set(values) - set(actions))
    if unknown:
        raise ValueError(f"Unknown run config keys: {unknown}")

    for key, value in values.items():
        if key in cli_dests or value is None or (key in SOURCE_KEYS and value == ""):
            continue
        action = actions[key]
        coerced = _coercer(action)(key, value)
        if action.choices is not None and coerced not in action.choices:
            raise ValueError(f"{key} must be one of {list(action.choices)}")
        setattr(args, key, coerced)
