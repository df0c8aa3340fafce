"""Metric kinds for the aggregator.

Each metric accumulates the values recorded for one path between two
flushes and renders the value that ends up on the wire:

    MetricSum      running total           "8"
    MetricAverage  running total / count   "3.333333"
    MetricActive   last boolean written    "1" / "0"

Metrics are plain state holders. Locking and storage belong to the
aggregator.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Protocol


class MetricTypeError(TypeError):
    """Raised when a metric is updated with a value of the wrong type."""


class Metric(Protocol):
    """Interface shared by every metric kind."""

    def update(self, value: Any) -> None:
        """Fold a new value into the metric."""

    def clear(self) -> None:
        """Reset the metric to its zero value."""

    def calculate(self) -> str:
        """Return the value to send, rendered as a string."""

    def merge(self, newer: Metric) -> None:
        """Fold a metric recorded later for the same path into this one."""


def _check_int(metric: Metric, value: Any) -> int:
    # bool is an int subclass but never a valid counter value
    if isinstance(value, bool) or not isinstance(value, int):
        raise MetricTypeError(
            f"{type(metric).__name__} expects an int, got {type(value).__name__}"
        )
    return value


def _check_same_kind(metric: Metric, other: Metric) -> None:
    if type(other) is not type(metric):
        raise MetricTypeError(
            f"Cannot merge {type(other).__name__} into {type(metric).__name__}"
        )


@dataclass
class MetricSum:
    """A value that grows with every update.

    Sending 5, 10 and 15 for the same path results in 30.
    """

    total: int = 0

    def update(self, value: Any) -> None:
        self.total += _check_int(self, value)

    def clear(self) -> None:
        self.total = 0

    def calculate(self) -> str:
        return str(self.total)

    def merge(self, newer: Metric) -> None:
        _check_same_kind(self, newer)
        self.total += newer.total


@dataclass
class MetricAverage:
    """The mean of every value recorded since the last flush.

    Rendered with six decimals, except a zero total which is sent as "0".
    """

    total: int = 0
    count: int = 0

    def update(self, value: Any) -> None:
        self.total += _check_int(self, value)
        self.count += 1

    def clear(self) -> None:
        self.total = 0
        self.count = 0

    def calculate(self) -> str:
        if self.total == 0 or self.count == 0:
            return "0"
        return f"{self.total / self.count:.6f}"

    def merge(self, newer: Metric) -> None:
        _check_same_kind(self, newer)
        self.total += newer.total
        self.count += newer.count


@dataclass
class MetricActive:
    """A boolean status, sent as 1 (active) or 0 (inactive).

    The last value written wins.
    """

    state: bool = False

    def update(self, value: Any) -> None:
        if not isinstance(value, bool):
            raise MetricTypeError(
                f"MetricActive expects a bool, got {type(value).__name__}"
            )
        self.state = value

    def clear(self) -> None:
        self.state = False

    def calculate(self) -> str:
        return "1" if self.state else "0"

    def merge(self, newer: Metric) -> None:
        _check_same_kind(self, newer)
        self.state = newer.state
