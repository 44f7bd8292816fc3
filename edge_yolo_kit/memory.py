from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterator, Optional, Tuple

import numpy as np

from .errors import AllocationFailure

logger = logging.getLogger(__name__)


class MemoryDomain(str, Enum):
    FAST = "fast"  # small control-flow state
    BULK = "bulk"  # model blob, tensor arena, decode scratch, canvases


@dataclass(frozen=True)
class MemoryBudget:
    """
    Capacity of each memory domain in bytes.

    Requests of at least `large_threshold` bytes are placed in BULK so large
    buffers never fragment the small FAST domain.
    """

    fast_bytes: int = 320 * 1024
    bulk_bytes: int = 16 * 1024 * 1024
    large_threshold: int = 16 * 1024

    def __post_init__(self) -> None:
        if self.fast_bytes < 0 or self.bulk_bytes < 0:
            raise ValueError("memory capacities must be >= 0")
        if self.large_threshold <= 0:
            raise ValueError("large_threshold must be > 0")

    def capacity(self, domain: MemoryDomain) -> int:
        return self.fast_bytes if domain is MemoryDomain.FAST else self.bulk_bytes


class MemoryPlanner:
    """
    Book-keeping for the two memory domains.

    `reserve` is for buffers that live as long as the process (model, arena);
    `lease` hands out a single-frame buffer and gives its bytes back on exit.
    """

    def __init__(self, budget: MemoryBudget = MemoryBudget()):
        self.budget = budget
        self._blocks: Dict[str, Tuple[MemoryDomain, int]] = {}

    def domain_for(self, nbytes: int) -> MemoryDomain:
        return MemoryDomain.BULK if nbytes >= self.budget.large_threshold else MemoryDomain.FAST

    def used(self, domain: MemoryDomain) -> int:
        return sum(size for d, size in self._blocks.values() if d is domain)

    def free(self, domain: MemoryDomain) -> int:
        return self.budget.capacity(domain) - self.used(domain)

    def reserve(self, name: str, nbytes: int, domain: Optional[MemoryDomain] = None) -> MemoryDomain:
        if name in self._blocks:
            raise ValueError(f"Memory block {name!r} is already reserved")
        nbytes = int(nbytes)
        if nbytes < 0:
            raise ValueError(f"Cannot reserve {nbytes} bytes")
        target = domain or self.domain_for(nbytes)
        available = self.free(target)
        if nbytes > available:
            raise AllocationFailure(
                f"Failed to allocate {nbytes} bytes for {name!r} in {target.value} memory "
                f"({available} bytes free)"
            )
        self._blocks[name] = (target, nbytes)
        return target

    def release(self, name: str) -> None:
        self._blocks.pop(name, None)

    @contextmanager
    def lease(
        self,
        name: str,
        shape: Tuple[int, ...],
        dtype=np.uint8,
        domain: Optional[MemoryDomain] = None,
    ) -> Iterator[np.ndarray]:
        nbytes = int(np.prod(shape)) * np.dtype(dtype).itemsize
        self.reserve(name, nbytes, domain)
        try:
            yield np.zeros(shape, dtype=dtype)
        finally:
            self.release(name)

    def usage(self) -> Dict[str, int]:
        return {
            "fast_used": self.used(MemoryDomain.FAST),
            "fast_free": self.free(MemoryDomain.FAST),
            "bulk_used": self.used(MemoryDomain.BULK),
            "bulk_free": self.free(MemoryDomain.BULK),
        }

    def log_usage(self, where: str) -> None:
        logger.info(
            "[MEM] %s: free fast=%d bytes, free bulk=%d bytes",
            where,
            self.free(MemoryDomain.FAST),
            self.free(MemoryDomain.BULK),
        )
