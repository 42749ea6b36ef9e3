"""Exact running aggregates over a dynamic multiset of numbers.

``AggregateStat`` keeps count, total, min, max and average for every value
added to it.  All raw values are retained so that a value can be removed
again later and the extrema recomputed from what is left.  Chat, character
and global stats all build on it.

Model usage maps (model name -> {"count", "tokens"}) are handled by the
helper functions at the bottom of this module.
"""

from __future__ import annotations

import logging
import math
from typing import Any, Iterable

from stats_errors import AccumulatorConsistencyError

logger = logging.getLogger(__name__)

ModelUsage = dict[str, dict[str, int]]


def _is_number(value: Any) -> bool:
    """Return True for real numbers that are not NaN."""
    if value is None or isinstance(value, bool):
        return False
    if not isinstance(value, (int, float)):
        return False
    return not math.isnan(value)


class AggregateStat:
    """Count, total, min, max and average over a multiset of numbers.

    Empty sentinels: ``min`` is None, ``max`` is 0 and ``avg`` is 0.
    ``None`` and NaN are ignored by every mutating method, so optional
    per-message facts can be fed in without checking first.
    """

    def __init__(self, values: Iterable[float] | None = None) -> None:
        self.count = 0
        self.total: float = 0
        self.min: float | None = None
        self.max: float = 0
        self.avg: float = 0
        self.values: list[float] = []
        for value in values or ():
            self.add(value)

    def __repr__(self) -> str:
        return (
            f"AggregateStat(count={self.count}, total={self.total}, "
            f"min={self.min}, max={self.max}, avg={self.avg})"
        )

    def reset(self) -> None:
        self.count = 0
        self.total = 0
        self.min = None
        self.max = 0
        self.avg = 0
        self.values = []

    def add(self, value: float | None) -> None:
        """Add a single value.

        To add all values of another ``AggregateStat``, use ``merge``.
        """
        if not _is_number(value):
            return
        self.count += 1
        self.total += value
        self.avg = self.total / self.count
        self.values.append(value)
        if self.count == 1:
            self.min = value
            self.max = value
        else:
            self.min = min(math.inf if self.min is None else self.min, value)
            self.max = max(self.max, value)

    def remove(self, value: float | None, strict: bool = False) -> None:
        """Remove one occurrence of *value*.

        A value that was never added is reported and otherwise ignored,
        unless *strict* is set, in which case ``AccumulatorConsistencyError``
        is raised.  Either way the aggregate is left unchanged.
        """
        if not _is_number(value):
            return
        try:
            self.values.remove(value)
        except ValueError:
            message = f"Tried to remove aggregation value {value} that does not exist"
            if strict:
                raise AccumulatorConsistencyError(message) from None
            logger.warning("%s. Roll-back and roll-up are out of step.", message)
            return

        self.count -= 1
        if self.count == 0:
            self.total = 0
            self.avg = 0
        else:
            self.total -= value
            self.avg = self.total / self.count

        if value == self.min:
            self.min = min(self.values) if self.values else None
        if value == self.max:
            self.max = max(self.values) if self.values else 0

    def merge(self, other: AggregateStat) -> None:
        """Add every value of *other* as a single value."""
        for value in list(other.values):
            self.add(value)

    def unmerge(self, other: AggregateStat, strict: bool = False) -> None:
        """Remove every value of *other*, one occurrence per value."""
        for value in list(other.values):
            self.remove(value, strict=strict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "count": self.count,
            "total": self.total,
            "min": self.min,
            "max": self.max,
            "avg": self.avg,
            "values": list(self.values),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> AggregateStat:
        """Rebuild from ``to_dict`` output; derived fields come from the values."""
        if not data:
            return cls()
        return cls(data.get("values") or [])


# ---------------------------------------------------------------------------
# Model usage helpers
# ---------------------------------------------------------------------------

def add_model_usage(
    usage: ModelUsage,
    model: str | None,
    tokens: int | None = None,
    count: int | None = 1,
) -> None:
    """Record *count* generations and *tokens* tokens for *model*."""
    if not model:
        return
    entry = usage.setdefault(model, {"count": 0, "tokens": 0})
    entry["count"] += count if count is not None else 1
    entry["tokens"] += tokens or 0


def remove_model_usage(
    usage: ModelUsage,
    model: str | None,
    tokens: int | None = None,
    count: int | None = 1,
) -> None:
    """Take usage back out; the model entry is dropped once its count is spent."""
    if not model or model not in usage:
        return
    entry = usage[model]
    entry["count"] -= count if count is not None else 1
    entry["tokens"] -= tokens or 0
    if entry["count"] <= 0:
        del usage[model]


def merge_model_usage(target: ModelUsage, source: ModelUsage) -> None:
    for model, data in source.items():
        add_model_usage(target, model, data.get("tokens"), data.get("count"))


def unmerge_model_usage(target: ModelUsage, source: ModelUsage) -> None:
    for model, data in source.items():
        remove_model_usage(target, model, data.get("tokens"), data.get("count"))
