"""
Rating Distribution Histogram

Fixed-arity accumulator of rating counts, one slot per rating category.
Slots are ordered from the best rating to the worst and must match the
order in which the page parser reports partial counts.
"""

from dataclasses import dataclass, field
from typing import Iterable

# Selector of each rating category on a ratings page, best rating first
CATEGORIES = (
    ".stars.stars-5",
    ".stars.stars-4",
    ".stars.stars-3",
    ".stars.stars-2",
    ".stars.stars-1",
    ".stars.trash",
)

ARITY = len(CATEGORIES)


def validate_counts(values) -> list:
    """
    Check a count vector against the histogram schema.

    Args:
        values: Candidate vector

    Returns:
        list: The counts as a new list

    Raises:
        ValueError: On wrong arity, non-integer or negative values.
                    Booleans are rejected even though they are ints.
    """
    if isinstance(values, (str, bytes, dict)):
        raise ValueError(f"expected a sequence of {ARITY} counts, got {type(values).__name__}")
    try:
        counts = list(values)
    except TypeError:
        raise ValueError(f"expected a sequence of {ARITY} counts, got {type(values).__name__}")
    if len(counts) != ARITY:
        raise ValueError(f"expected {ARITY} counts, got {len(counts)}")
    for c in counts:
        if isinstance(c, bool) or not isinstance(c, int):
            raise ValueError(f"count must be an integer, got {c!r}")
        if c < 0:
            raise ValueError(f"count must be non-negative, got {c}")
    return counts


@dataclass
class Histogram:
    """
    Rating distribution accumulated over one traversal.

    Attributes:
        counts: Number of ratings per category, ordered as CATEGORIES
    """
    counts: list = field(default_factory=lambda: [0] * ARITY)
    _frozen: bool = field(default=False, compare=False, repr=False)

    def __post_init__(self):
        self.counts = validate_counts(self.counts)

    @classmethod
    def from_counts(cls, values: Iterable[int]) -> "Histogram":
        return cls(list(values))

    @property
    def frozen(self) -> bool:
        return self._frozen

    def merge(self, partial) -> "Histogram":
        """
        Add one page's partial counts element-wise.

        Args:
            partial: Histogram or sequence of ARITY non-negative integers

        Returns:
            Histogram: self, for chaining

        Raises:
            RuntimeError: If the histogram has been frozen
            ValueError: If the partial vector breaks the schema
        """
        if self._frozen:
            raise RuntimeError("cannot merge into a frozen histogram")
        if isinstance(partial, Histogram):
            partial = partial.counts
        partial = validate_counts(partial)
        for i, c in enumerate(partial):
            self.counts[i] += c
        return self

    def freeze(self) -> "Histogram":
        self._frozen = True
        return self

    def snapshot(self) -> tuple:
        return tuple(self.counts)

    @property
    def total(self) -> int:
        return sum(self.counts)

    @property
    def peak(self) -> int:
        return max(self.counts)

    def as_dict(self) -> dict:
        return dict(zip(CATEGORIES, self.counts))
