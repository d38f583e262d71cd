"""Half-open ranges of block numbers."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class BlockRange:
    """Blocks from ``start`` up to but not including ``end``.

    The default value is the empty range ``[0, 0)``.
    """

    start: int = 0
    end: int = 0

    def __post_init__(self) -> None:
        if self.end < self.start:
            raise ValueError(
                f"invalid block range: end {self.end} < start {self.start}"
            )

    @classmethod
    def single(cls, block: int) -> BlockRange:
        """Return a range holding only ``block``."""
        return cls(block, block + 1)

    def is_empty(self) -> bool:
        """Return True if the range holds no blocks."""
        return self.start == self.end

    def contains(self, block: int) -> bool:
        """Return True if ``block`` lies in the range."""
        return self.start <= block < self.end

    def overlaps(self, other: BlockRange) -> bool:
        """Return True if the two ranges share any block."""
        return self.contains(other.start) or other.contains(self.start)

    def starts_before(self, other: BlockRange) -> bool:
        """Return True if this range starts at a lower block than ``other``.

        The start of an empty range counts as infinite.
        """
        return not self.is_empty() and (
            other.is_empty() or self.start < other.start
        )

    def contains_range(self, sub_range: BlockRange) -> bool:
        """Return True if every block of ``sub_range`` is in this range.

        ``sub_range`` must not be empty.
        """
        if sub_range.is_empty():
            raise ValueError("sub range must not be empty")
        return self.contains(sub_range.start) and self.contains(sub_range.end - 1)