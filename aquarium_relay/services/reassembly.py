"""
Indexed slot reassembly shared by the server's binary upload sessions and the
display's legacy Base64 fragment path.
"""
from typing import Generic, List, Optional, Set, TypeVar

from ..core.errors import ChunkIndexError, MissingChunksError

T = TypeVar("T")


class ChunkSlots(Generic[T]):
    """
    Fixed number of slots filled by explicit index, in any order.
    
    Redelivering an index overwrites its slot without counting it twice, so
    count == total only when every distinct index has arrived.
    """

    def __init__(self, total: int):
        if total < 1:
            raise ValueError("total must be at least 1")
        self.total = total
        self.slots: List[Optional[T]] = [None] * total
        self.filled: Set[int] = set()

    def __len__(self) -> int:
        return self.total

    @property
    def count(self) -> int:
        return len(self.filled)

    def put(self, index: int, value: T) -> bool:
        """Store value at index; returns False if the slot was already filled"""
        if not 0 <= index < self.total:
            raise ChunkIndexError(f"Chunk index {index} out of range (0-{self.total - 1})")
        is_new = index not in self.filled
        self.slots[index] = value
        self.filled.add(index)
        return is_new

    def missing(self) -> List[int]:
        return [i for i in range(self.total) if i not in self.filled]

    def is_complete(self) -> bool:
        return self.count == self.total

    def ordered(self) -> List[T]:
        """All values in index order; raises MissingChunksError on any gap"""
        missing = self.missing()
        if missing:
            raise MissingChunksError(missing)
        return list(self.slots)
