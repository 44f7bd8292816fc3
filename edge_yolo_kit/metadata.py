from __future__ import annotations

import re
from pathlib import Path
from typing import Dict, List, Union

_NAME_ENTRY = re.compile(r"^(\d+)\s*:\s*(.*)$")


def _unquote(text: str) -> str:
    return text.strip().strip("'\"")


def load_class_names(labels_path: Union[str, Path]) -> Dict[int, str]:
    """
    Class id -> name for a detector.

    Accepts a dataset file with a `names:` block

        names:
          0: person
          1: helmet

    or a label file with one name per line, where the line's position
    (blank lines and `#` comments skipped) is the class id. No YAML parser
    is needed for either.
    """

    entries: List[str] = []
    for raw in Path(labels_path).read_text(encoding="utf-8").splitlines():
        line = raw.strip()
        if line and not line.startswith("#"):
            entries.append(line)

    if "names:" not in entries:
        return {i: _unquote(line) for i, line in enumerate(entries)}

    names: Dict[int, str] = {}
    for line in entries[entries.index("names:") + 1 :]:
        m = _NAME_ENTRY.match(line)
        if m is not None:
            names[int(m.group(1))] = _unquote(m.group(2))
        elif line.endswith(":"):
            break  # next block
    return names
