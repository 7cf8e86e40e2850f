from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class IndexRange:
    """A contiguous half-open range of parameter indices.

    Attributes:
        start: The first index of the range.
        end:   One past the last index of the range.
    """

    start: int
    end: int

    def __post_init__(self) -> None:
        """Check that the range is not reversed."""
        if self.start < 0 or self.end < self.start:
            msg = f"invalid index range: [{self.start}, {self.end})"
            raise ValueError(msg)

    def __len__(self) -> int:
        return self.end - self.start

    def as_slice(self) -> slice:
        """Return the range as a slice object."""
        return slice(self.start, self.end)


def split_index_range(size: int, number_of_parts: int) -> list[IndexRange]:
    """Split the range `[0, size)` into contiguous, non-overlapping parts.

    The parts differ in length by at most one. Fewer parts are returned if
    `size` is smaller than `number_of_parts`, so that no part is empty.

    Args:
        size:            The length of the range to split.
        number_of_parts: The requested number of parts.

    Returns:
        The ranges, in increasing order.
    """
    if number_of_parts < 1:
        msg = "the number of parts must be at least one"
        raise ValueError(msg)
    number_of_parts = min(number_of_parts, size)
    if number_of_parts == 0:
        return []
    base, extra = divmod(size, number_of_parts)
    ranges = []
    start = 0
    for part in range(number_of_parts):
        end = start + base + (1 if part < extra else 0)
        ranges.append(IndexRange(start, end))
        start = end
    return ranges
