"""Error taxonomy for the reconciliation engine."""
from __future__ import annotations

from dataclasses import dataclass


class ReconcilerError(Exception):
    """Base class for engine errors."""


class DataUnavailable(ReconcilerError):
    """Every configured source for a read was exhausted."""


class OutOfRangeValue(ReconcilerError):
    """A price or rate fell outside its configured sanity band."""

    def __init__(self, name: str, value: object, low: object, high: object) -> None:
        super().__init__(f"{name}={value} outside [{low}, {high}]")
        self.name = name
        self.value = value
        self.low = low
        self.high = high


@dataclass(frozen=True)
class ComputationAnomaly:
    """A NaN/Infinity intermediate that was clamped to zero."""

    where: str
    detail: str = ""

    def __str__(self) -> str:
        return f"{self.where}: {self.detail}" if self.detail else self.where
