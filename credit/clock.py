"""
clock.py - Logical ordering clock

Operations are grouped into ordering units (the analogue of blocks). The
position ledger records the unit in which an account was opened and refuses
to settle it within that same unit.
"""


class SequenceClock:
    """Monotonic counter of ordering units. Time can only move forward."""

    def __init__(self, start: int = 0):
        if start < 0:
            raise ValueError(f"Clock cannot start below zero: {start}")
        self._unit = start

    @property
    def current_unit(self) -> int:
        return self._unit

    def advance(self, units: int = 1) -> int:
        """
        Move the clock forward by a number of units.

        Raises:
            ValueError: If units is not positive
        """
        if units <= 0:
            raise ValueError(f"Clock can only advance by a positive amount, got {units}")
        self._unit += units
        return self._unit

    def set_unit(self, unit: int) -> None:
        """
        Jump to an absolute unit.

        Raises:
            ValueError: If unit is before the current one
        """
        if unit < self._unit:
            raise ValueError(f"Cannot move clock backwards: {unit} < {self._unit}")
        self._unit = unit

    def __repr__(self):
        return f"SequenceClock(unit={self._unit})"
