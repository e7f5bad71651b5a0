"""Bounded output buffer used to replay a session's recent output."""

from __future__ import annotations

import threading
from collections import deque

DEFAULT_MAX_BUFFER_SIZE = 100_000


class OutputBuffer:
    """Thread-safe chunk buffer with a cap on total characters.

    Chunks are stored exactly as they were read from the PTY, so joining them
    back together never splits an escape sequence. When the cap is exceeded
    the oldest chunks are evicted whole; the newest chunk is always kept,
    even when it alone is larger than ``max_size``.
    """

    def __init__(self, max_size: int = DEFAULT_MAX_BUFFER_SIZE) -> None:
        if max_size <= 0:
            raise ValueError("max_size must be positive")
        self.max_size = max_size
        self._chunks: deque[str] = deque()
        self._size: int = 0
        self._total_chunks: int = 0  # Total chunks ever appended
        self._lock = threading.Lock()

    def append(self, chunk: str) -> None:
        """Append a chunk, evicting the oldest ones while over the cap."""
        if not chunk:
            return
        with self._lock:
            self._chunks.append(chunk)
            self._size += len(chunk)
            self._total_chunks += 1
            while self._size > self.max_size and len(self._chunks) > 1:
                removed = self._chunks.popleft()
                self._size -= len(removed)

    def replay(self) -> str:
        """All retained chunks concatenated in arrival order."""
        with self._lock:
            return "".join(self._chunks)

    def chunks(self) -> list[str]:
        with self._lock:
            return list(self._chunks)

    @property
    def size(self) -> int:
        """Number of characters currently retained."""
        with self._lock:
            return self._size

    @property
    def chunk_count(self) -> int:
        with self._lock:
            return len(self._chunks)

    @property
    def total_chunks(self) -> int:
        """Total number of chunks ever appended."""
        with self._lock:
            return self._total_chunks

    @property
    def is_empty(self) -> bool:
        with self._lock:
            return self._size == 0

    def clear(self) -> None:
        """Clear the buffer."""
        with self._lock:
            self._chunks.clear()
            self._size = 0
            self._total_chunks = 0

    def __len__(self) -> int:
        return self.chunk_count
