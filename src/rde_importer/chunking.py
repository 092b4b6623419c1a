"""
Chunking of command lists for concurrent commit.

`chunk_commands` splits a list into ceil(N/K) consecutive chunks of at
most K items, in order. `ChunkSequence` is the lazy form the import
workers share: iterating it yields the same chunks, and it can be iterated
again from the start (a stage retried after a crash sees the same chunks).
"""

from typing import Generic, Iterator, Sequence, TypeVar

T = TypeVar("T")


def _effective_size(size: int) -> int:
    # A non-positive chunk size degrades to one item per chunk
    return size if size > 0 else 1


def chunk_commands(items: Sequence[T], size: int) -> list[list[T]]:
    """
    Split items into consecutive chunks of at most `size` items.

    Args:
        items: Commands to split
        size: Maximum chunk size; values <= 0 are treated as 1

    Returns:
        List of chunks; concatenating them gives back `items`
    """
    size = _effective_size(size)
    return [list(items[i:i + size]) for i in range(0, len(items), size)]


class ChunkSequence(Generic[T]):
    """Restartable, lazily sliced view of items as chunks."""

    def __init__(self, items: Sequence[T], size: int) -> None:
        self._items = items
        self._size = _effective_size(size)

    @property
    def chunk_size(self) -> int:
        return self._size

    def __len__(self) -> int:
        return -(-len(self._items) // self._size)

    def __iter__(self) -> Iterator[list[T]]:
        for start in range(0, len(self._items), self._size):
            yield list(self._items[start:start + self._size])
