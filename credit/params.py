"""
params.py - Validated configuration for the credit core

Configuration is held in frozen dataclasses validated on construction, so
an invalid combination can never be installed. Changing parameters means
building a new instance.
"""

from __future__ import annotations
from dataclasses import dataclass

from .core import (
    ParameterError, PERCENTAGE_FACTOR, LEVERAGE_DECIMALS,
    DEFAULT_FEE_INTEREST, DEFAULT_FEE_LIQUIDATION, DEFAULT_LIQUIDATION_DISCOUNT,
    DEFAULT_CHI_THRESHOLD, DEFAULT_HF_CHECK_INTERVAL, MAX_UINT256,
)
from .settlement import calculate_min_health_factor


@dataclass(frozen=True, slots=True)
class CreditParams:
    """
    Limits and fees of a position ledger.

    Attributes:
        min_amount: Smallest deposit accepted by open (underlying units)
        max_amount: Largest deposit accepted by open
        max_leverage_factor: Largest leverage, LEVERAGE_DECIMALS = 1x
        fee_interest: Share of accrued interest taken as fee on close/repay, bps
        fee_liquidation: Share of discounted funds taken as fee on liquidation, bps
        liquidation_discount: Share of total value credited on liquidation, bps
    """
    min_amount: int
    max_amount: int
    max_leverage_factor: int
    fee_interest: int = DEFAULT_FEE_INTEREST
    fee_liquidation: int = DEFAULT_FEE_LIQUIDATION
    liquidation_discount: int = DEFAULT_LIQUIDATION_DISCOUNT

    def __post_init__(self):
        if self.min_amount < 0 or self.max_amount > MAX_UINT256:
            raise ParameterError("IncorrectLimits: amounts out of range")
        if self.min_amount > self.max_amount:
            raise ParameterError(
                f"IncorrectLimits: min_amount {self.min_amount} > max_amount {self.max_amount}"
            )
        if self.max_leverage_factor <= 0:
            raise ParameterError(f"IncorrectLeverage: {self.max_leverage_factor}")
        for name in ("fee_interest", "fee_liquidation", "liquidation_discount"):
            value = getattr(self, name)
            if value < 0 or value > PERCENTAGE_FACTOR:
                raise ParameterError(f"IncorrectFees: {name}={value} outside [0, {PERCENTAGE_FACTOR}]")
        if self.fee_liquidation >= self.liquidation_discount:
            raise ParameterError(
                "IncorrectFees: fee_liquidation must be below liquidation_discount"
            )
        if self.min_health_factor <= PERCENTAGE_FACTOR:
            raise ParameterError(
                f"IncorrectLiquidationThreshold: max leverage {self.max_leverage_factor} "
                f"gives min health factor {self.min_health_factor} <= {PERCENTAGE_FACTOR}"
            )

    @property
    def underlying_liquidation_threshold(self) -> int:
        """Liquidation threshold of the underlying token, bps."""
        return self.liquidation_discount - self.fee_liquidation

    @property
    def min_health_factor(self) -> int:
        """Health factor of an account opened at max leverage, bps."""
        return calculate_min_health_factor(
            self.underlying_liquidation_threshold, self.max_leverage_factor
        )

    @property
    def max_borrowed_amount(self) -> int:
        """Upper bound on an account's principal."""
        return self.max_amount * self.max_leverage_factor // LEVERAGE_DECIMALS


@dataclass(frozen=True, slots=True)
class FastCheckParams:
    """
    Fast collateral check settings.

    After an adapter trade whose threshold-weighted output is at least
    chi_threshold bps of its input, the full health-factor recomputation may be
    skipped, at most hf_check_interval times in a row.
    """
    chi_threshold: int = DEFAULT_CHI_THRESHOLD
    hf_check_interval: int = DEFAULT_HF_CHECK_INTERVAL

    def __post_init__(self):
        if self.chi_threshold <= 0 or self.chi_threshold > PERCENTAGE_FACTOR:
            raise ParameterError(
                f"IncorrectFastCheck: chi_threshold {self.chi_threshold} outside (0, {PERCENTAGE_FACTOR}]"
            )
        if self.hf_check_interval < 0:
            raise ParameterError(f"IncorrectFastCheck: hf_check_interval {self.hf_check_interval} < 0")
