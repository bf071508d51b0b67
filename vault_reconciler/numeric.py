"""Safe decimal arithmetic: NaN/Infinity never leave this module."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal, DivisionByZero, InvalidOperation, Overflow
from functools import total_ordering
from typing import Any

logger = logging.getLogger(__name__)

ZERO = Decimal(0)
ONE = Decimal(1)

_ARITH_ERRORS = (DivisionByZero, InvalidOperation, Overflow, ValueError, TypeError)


def to_decimal(raw: Any) -> Decimal:
    """Convert a raw JSON/chain value to Decimal without float rounding noise.

    Floats go through ``repr`` so ``0.1`` becomes ``Decimal("0.1")``.
    """
    if isinstance(raw, Decimal):
        return raw
    if isinstance(raw, bool):
        return Decimal(int(raw))
    if isinstance(raw, int):
        return Decimal(raw)
    if isinstance(raw, float):
        return Decimal(repr(raw))
    return Decimal(str(raw).strip())


@total_ordering
@dataclass(frozen=True)
class SafeDecimal:
    """Decimal value that clamps non-finite results to zero.

    Any operation that would produce NaN, Infinity or raise a decimal
    arithmetic error instead yields zero with ``anomalous=True``. The flag
    propagates through further arithmetic so callers can tell a legitimate
    zero from a clamped one.
    """

    value: Decimal = ZERO
    anomalous: bool = False
    label: str = ""

    @classmethod
    def of(cls, raw: Any, label: str = "") -> SafeDecimal:
        if isinstance(raw, SafeDecimal):
            return raw
        try:
            value = to_decimal(raw)
        except _ARITH_ERRORS:
            return cls._clamped(label, f"unparseable value {raw!r}")
        if not value.is_finite():
            return cls._clamped(label, f"non-finite value {raw!r}")
        return cls(value, False, label)

    @classmethod
    def _clamped(cls, label: str, reason: str) -> SafeDecimal:
        logger.warning("Computation anomaly%s: %s, clamped to 0", f" in {label}" if label else "", reason)
        return cls(ZERO, True, label)

    def _combine(self, other: Any, op, symbol: str) -> SafeDecimal:
        rhs = SafeDecimal.of(other, self.label)
        label = self.label or rhs.label
        try:
            result = op(self.value, rhs.value)
        except _ARITH_ERRORS as e:
            return SafeDecimal._clamped(label, f"{self.value} {symbol} {rhs.value} ({type(e).__name__})")
        if not result.is_finite():
            return SafeDecimal._clamped(label, f"{self.value} {symbol} {rhs.value} is not finite")
        return SafeDecimal(result, self.anomalous or rhs.anomalous, label)

    def __add__(self, other: Any) -> SafeDecimal:
        return self._combine(other, lambda a, b: a + b, "+")

    __radd__ = __add__

    def __sub__(self, other: Any) -> SafeDecimal:
        return self._combine(other, lambda a, b: a - b, "-")

    def __mul__(self, other: Any) -> SafeDecimal:
        return self._combine(other, lambda a, b: a * b, "*")

    __rmul__ = __mul__

    def __truediv__(self, other: Any) -> SafeDecimal:
        return self._combine(other, lambda a, b: a / b, "/")

    def __pow__(self, exponent: int) -> SafeDecimal:
        return self._combine(exponent, lambda a, b: a ** b, "**")

    def __neg__(self) -> SafeDecimal:
        return SafeDecimal(-self.value, self.anomalous, self.label)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, SafeDecimal):
            return self.value == other.value
        if isinstance(other, (int, Decimal)):
            return self.value == other
        return NotImplemented

    def __lt__(self, other: Any) -> bool:
        return self.value < SafeDecimal.of(other).value

    def __hash__(self) -> int:
        return hash(self.value)

    def __float__(self) -> float:
        return float(self.value)

    def is_zero(self) -> bool:
        return self.value == ZERO

    def with_label(self, label: str) -> SafeDecimal:
        return SafeDecimal(self.value, self.anomalous, label)


def safe_ratio(numerator: Any, denominator: Any, label: str = "") -> SafeDecimal:
    """``numerator / denominator`` where a zero denominator is an expected zero.

    Unlike plain division through :class:`SafeDecimal`, a zero denominator
    is not flagged as an anomaly (e.g. a pool with no shares).
    """
    den = SafeDecimal.of(denominator, label)
    if den.is_zero():
        return SafeDecimal(ZERO, den.anomalous, label)
    return SafeDecimal.of(numerator, label) / den


def scale_down(raw: int, decimals: int) -> Decimal:
    """Convert an integer token amount to whole units."""
    return Decimal(raw).scaleb(-decimals)
