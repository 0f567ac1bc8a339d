"""
Bounded ring buffers for diagnostics and pane data.

Uses collections.deque with maxlen for automatic oldest-removal when the
buffer is full:
- RingBuffer: generic fixed-capacity buffer (key history, error history)
- LineBuffer: text variant used by the logs pane to keep recent lines
"""

from collections import deque
from collections.abc import Iterator
from typing import Generic, TypeVar

T = TypeVar("T")


class RingBuffer(Generic[T]):
    """
    Fixed-size ring buffer.

    Never grows beyond its capacity regardless of input volume; the oldest
    item is discarded when a new one arrives at capacity.

    Example:
        history = RingBuffer[str](maxlen=3)
        for key in "abcd":
            history.append(key)
        history.get_items()  # ["b", "c", "d"]
    """

    def __init__(self, maxlen: int = 50) -> None:
        """
        Initialize buffer with maximum item count.

        Args:
            maxlen: Maximum number of items to store (default 50)

        Raises:
            ValueError: If maxlen is less than 1
        """
        if maxlen < 1:
            raise ValueError(f"maxlen must be at least 1, got {maxlen}")
        self._buffer: deque[T] = deque(maxlen=maxlen)

    @property
    def capacity(self) -> int:
        """Maximum number of items the buffer holds."""
        return self._buffer.maxlen or 0

    def append(self, item: T) -> None:
        """Add an item, evicting the oldest one when full."""
        self._buffer.append(item)

    def get_items(self, n: int | None = None) -> list[T]:
        """
        Get last n items (or all if n is None).

        Args:
            n: Number of items to return, or None for all items

        Returns:
            List of items, newest last
        """
        items = list(self._buffer)
        if n is not None:
            return items[-n:] if n > 0 else []
        return items

    def __len__(self) -> int:
        return len(self._buffer)

    def __iter__(self) -> Iterator[T]:
        return iter(self._buffer)

    def clear(self) -> None:
        """Remove all items."""
        self._buffer.clear()


class LineBuffer(RingBuffer[str]):
    """
    Ring buffer of text lines.

    Strips trailing newlines on append for consistent storage.
    """

    def append(self, item: str) -> None:
        super().append(item.rstrip("\n"))

    def get_text(self, n: int | None = None) -> str:
        """
        Get lines as newline-joined string.

        Args:
            n: Number of lines to return, or None for all lines
        """
        return "\n".join(self.get_items(n))
