"""
Reusable tensor buffers for the inference brain.

Buffers are pooled by shape and dtype so that repeated decision steps with
the same batch size do not allocate new memory.
"""

import logging
from collections import defaultdict
from typing import Dict, List, Optional, Tuple

import numpy as np

from .errors import AllocationExhausted

logger = logging.getLogger(__name__)

_BufferKey = Tuple[Tuple[int, ...], str]


class TensorCachingAllocator:
    """
    Caching allocator for numpy tensor buffers.

    Features:
    - Reuses freed buffers of matching shape and dtype
    - Optional hard memory budget with eviction of free buffers
    - Generation counter that invalidates outstanding TensorProxies on reset
    """

    def __init__(self, max_bytes: Optional[int] = None):
        """
        Initialize allocator.

        Args:
            max_bytes: Hard memory budget in bytes (None for unlimited)
        """
        self.max_bytes = max_bytes
        self.generation = 0

        self._free: Dict[_BufferKey, List[np.ndarray]] = defaultdict(list)
        self._in_use: Dict[int, np.ndarray] = {}
        self._allocated_bytes = 0

        # Cache statistics
        self.hits = 0
        self.misses = 0

    @staticmethod
    def _key(shape: Tuple[int, ...], dtype: np.dtype) -> _BufferKey:
        return tuple(int(d) for d in shape), np.dtype(dtype).str

    @property
    def allocated_bytes(self) -> int:
        """Bytes owned by the allocator (in use and free)"""
        return self._allocated_bytes

    def allocate(self, shape, dtype=np.float32) -> np.ndarray:
        """
        Get a zero-filled buffer of the given shape.

        Args:
            shape: Buffer shape
            dtype: Buffer dtype

        Returns:
            Buffer owned by the allocator

        Raises:
            AllocationExhausted: If the memory budget cannot accommodate the buffer
        """
        key = self._key(shape, dtype)
        free_list = self._free.get(key)

        if free_list:
            buffer = free_list.pop()
            buffer.fill(0)
            self.hits += 1
        else:
            nbytes = int(np.prod(key[0], dtype=np.int64)) * np.dtype(dtype).itemsize
            self._ensure_capacity(nbytes)
            buffer = np.zeros(key[0], dtype=dtype)
            self._allocated_bytes += buffer.nbytes
            self.misses += 1

        self._in_use[id(buffer)] = buffer
        return buffer

    def _ensure_capacity(self, nbytes: int):
        """Evict free buffers until `nbytes` fit into the budget"""
        if self.max_bytes is None:
            return

        if self._allocated_bytes + nbytes > self.max_bytes:
            for key in list(self._free.keys()):
                for buffer in self._free.pop(key):
                    self._allocated_bytes -= buffer.nbytes
                if self._allocated_bytes + nbytes <= self.max_bytes:
                    break

        if self._allocated_bytes + nbytes > self.max_bytes:
            logger.error(
                f"Tensor allocator exhausted: requested {nbytes} bytes, "
                f"{self._allocated_bytes}/{self.max_bytes} in use"
            )
            raise AllocationExhausted(nbytes, self._allocated_bytes, self.max_bytes)

    def release(self, buffer: np.ndarray):
        """Return a buffer to the free pool"""
        if self._in_use.pop(id(buffer), None) is None:
            return
        self._free[self._key(buffer.shape, buffer.dtype)].append(buffer)

    def reset(self, keep_buffers: bool = True):
        """
        Release all buffers.

        Args:
            keep_buffers: If True, keep the memory in the free pool for reuse;
                otherwise drop every buffer
        """
        if keep_buffers:
            for buffer in self._in_use.values():
                self._free[self._key(buffer.shape, buffer.dtype)].append(buffer)
        else:
            self._free.clear()
            self._allocated_bytes = 0

        self._in_use.clear()
        self.generation += 1

    def stats(self) -> Dict[str, int]:
        """Get allocator statistics"""
        return {
            'allocated_bytes': self._allocated_bytes,
            'in_use': len(self._in_use),
            'free': sum(len(buffers) for buffers in self._free.values()),
            'hits': self.hits,
            'misses': self.misses,
            'generation': self.generation,
        }
