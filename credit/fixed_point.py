"""
fixed_point.py - Integer fixed-point arithmetic bounded to uint256

All values are non-negative Python ints interpreted as unsigned 256-bit
quantities. Every product is checked against MAX_UINT256 before it is
divided, so an intermediate that would overflow on a 256-bit machine
raises MathError instead of silently succeeding on Python's big ints.

Scales:
    WAD = 1e18   (prices, token-agnostic ratios)
    RAY = 1e27   (cumulative interest indexes, borrow rates)
    PERCENTAGE_FACTOR = 1e4 (basis points)

wad_*/ray_*/percent_* round half-up like the reference fixed-point library;
mul_div floors and is what settlement uses.
"""

from __future__ import annotations

from .core import (
    MathError, WAD, HALF_WAD, RAY, HALF_RAY, WAD_RAY_RATIO,
    PERCENTAGE_FACTOR, HALF_PERCENT, MAX_UINT256,
)


def _require_uint(*values: int) -> None:
    for value in values:
        if value < 0 or value > MAX_UINT256:
            raise MathError(f"Value out of uint256 range: {value}")


def checked_add(a: int, b: int) -> int:
    """a + b, raising on uint256 overflow."""
    _require_uint(a, b)
    result = a + b
    if result > MAX_UINT256:
        raise MathError("AdditionOverflow")
    return result


def checked_mul(a: int, b: int) -> int:
    """a * b, raising on uint256 overflow."""
    _require_uint(a, b)
    result = a * b
    if result > MAX_UINT256:
        raise MathError("MultiplicationOverflow")
    return result


def mul_div(a: int, b: int, denominator: int) -> int:
    """floor(a * b / denominator) with an overflow-checked product."""
    if denominator == 0:
        raise MathError("DivisionByZero")
    return checked_mul(a, b) // denominator


# ============================================================================
# WAD / RAY
# ============================================================================

def wad_mul(a: int, b: int) -> int:
    if a == 0 or b == 0:
        return 0
    return checked_add(checked_mul(a, b), HALF_WAD) // WAD


def wad_div(a: int, b: int) -> int:
    if b == 0:
        raise MathError("DivisionByZero")
    return checked_add(checked_mul(a, WAD), b // 2) // b


def ray_mul(a: int, b: int) -> int:
    if a == 0 or b == 0:
        return 0
    return checked_add(checked_mul(a, b), HALF_RAY) // RAY


def ray_div(a: int, b: int) -> int:
    if b == 0:
        raise MathError("DivisionByZero")
    return checked_add(checked_mul(a, RAY), b // 2) // b


def ray_to_wad(a: int) -> int:
    return checked_add(a, WAD_RAY_RATIO // 2) // WAD_RAY_RATIO


def wad_to_ray(a: int) -> int:
    return checked_mul(a, WAD_RAY_RATIO)


# ============================================================================
# PERCENTAGES
# ============================================================================

def percent_mul(value: int, percentage: int) -> int:
    """value * percentage / 10000, rounded half-up."""
    if value == 0 or percentage == 0:
        return 0
    return checked_add(checked_mul(value, percentage), HALF_PERCENT) // PERCENTAGE_FACTOR


def percent_div(value: int, percentage: int) -> int:
    """value * 10000 / percentage, rounded half-up."""
    if percentage == 0:
        raise MathError("DivisionByZero")
    return checked_add(checked_mul(value, PERCENTAGE_FACTOR), percentage // 2) // percentage


# ============================================================================
# INTEREST INDEX
# ============================================================================

def calc_linear_cumulative_index(
    cumulative_index: int,
    borrow_rate: int,
    elapsed_units: int,
    units_per_year: int,
) -> int:
    """
    Grow a RAY cumulative index linearly:

        index * (1 + rate * elapsed / units_per_year)

    borrow_rate is an annual RAY rate. elapsed_units must not be negative.
    """
    if elapsed_units < 0:
        raise MathError(f"Negative elapsed time: {elapsed_units}")
    if units_per_year <= 0:
        raise MathError("DivisionByZero")
    linear_accumulated = checked_add(RAY, mul_div(borrow_rate, elapsed_units, units_per_year))
    return ray_mul(cumulative_index, linear_accumulated)
