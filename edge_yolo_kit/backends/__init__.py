"""
Optional inference backends for edge_yolo_kit.

Backends are kept in a separate module so the numeric core (normalize,
quantize, decode) stays lightweight and can be used without installing an
inference runtime.
"""

from __future__ import annotations

__all__ = []
