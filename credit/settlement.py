"""
settlement.py - Interest and settlement math for credit accounts

This module holds the arithmetic of the position ledger as pure functions
with explicit inputs, so every formula can be tested without a ledger.

ARCHITECTURE (Pure Function Pattern):
=====================================

1. FROZEN DATACLASS (explicit output):
   - ClosePayments: everything a close / repay / liquidation has to move

2. PURE CALCULATION FUNCTIONS (calculate_*):
   - Take all inputs as parameters, no hidden state
   - Integer floor arithmetic, every product overflow-checked (uint256)

Key Formulas:
    debt            = borrowed * index_now / index_at_open
    new index       = i_open * i_now * (ba + delta) / (ba * i_now + delta * i_open)
    total_funds     = total_value * liquidation_discount / 10000     (liquidation)
                    = total_value                                    (close / repay)
    fee             = total_funds * fee_liquidation / 10000          (liquidation)
                    = (debt - borrowed) * fee_interest / 10000       (close / repay)
    amount_to_pool  = debt + fee, or total_funds - dust if that is not enough
    remaining_funds = max(0, total_funds - amount_to_pool - dust)
    health factor   = threshold_weighted_value * 10000 / debt
    min HF          = threshold * (max_leverage + 100) / max_leverage
"""

from __future__ import annotations
from dataclasses import dataclass

from .core import (
    MathError, ParameterError, PERCENTAGE_FACTOR, LEVERAGE_DECIMALS, DUST_RETENTION,
)
from .fixed_point import checked_add, checked_mul, mul_div


@dataclass(frozen=True, slots=True)
class ClosePayments:
    """
    Result of settling a credit account against a given total value.

    Attributes:
        borrowed_amount: Principal being returned to the pool's books
        borrowed_amount_with_interest: Principal plus accrued interest (debt)
        total_funds: Value the settlement works with (discounted on liquidation)
        fee: Protocol fee included in amount_to_pool
        amount_to_pool: Underlying paid to the pool
        remaining_funds: Underlying paid to the owner (close) or borrower (liquidation)
        profit: amount_to_pool above the debt
        loss: debt not covered by amount_to_pool
    """
    borrowed_amount: int
    borrowed_amount_with_interest: int
    total_funds: int
    fee: int
    amount_to_pool: int
    remaining_funds: int
    profit: int
    loss: int


def calculate_borrowed_amount(amount: int, leverage_factor: int) -> int:
    """Principal borrowed for a deposit at leverage_factor (100 = 1x)."""
    return mul_div(amount, leverage_factor, LEVERAGE_DECIMALS)


def calculate_borrowed_amount_with_interest(
    borrowed_amount: int,
    cumulative_index_at_open: int,
    cumulative_index_now: int,
) -> int:
    """
    Debt of an account: principal grown by the pool index since open.

    Raises:
        MathError: If the opening index is zero
        ParameterError: If the index went backwards
    """
    if cumulative_index_now < cumulative_index_at_open:
        raise ParameterError(
            f"Cumulative index regressed: {cumulative_index_now} < {cumulative_index_at_open}"
        )
    return mul_div(borrowed_amount, cumulative_index_now, cumulative_index_at_open)


def calculate_new_cumulative_index(
    borrowed_amount: int,
    delta: int,
    cumulative_index_now: int,
    cumulative_index_at_open: int,
) -> int:
    """
    Opening index after borrowing delta more, chosen so that the interest
    accrued so far on borrowed_amount is carried over exactly:

        new_ci = ci_open * ci_now * (ba + delta) / (ba * ci_now + delta * ci_open)
    """
    numerator_left = checked_mul(cumulative_index_at_open, cumulative_index_now)
    denominator = checked_add(
        checked_mul(borrowed_amount, cumulative_index_now),
        checked_mul(delta, cumulative_index_at_open),
    )
    return mul_div(numerator_left, checked_add(borrowed_amount, delta), denominator)


def calculate_close_payments(
    total_value: int,
    is_liquidated: bool,
    borrowed_amount: int,
    cumulative_index_at_open: int,
    cumulative_index_now: int,
    fee_interest: int,
    fee_liquidation: int,
    liquidation_discount: int,
    dust: int = DUST_RETENTION,
) -> ClosePayments:
    """
    Split total_value between the pool and the account holder.

    When the funds cannot cover debt plus fee, the pool takes everything but
    the dust and the shortfall is reported as loss.

    Args:
        total_value: Value of the account in underlying units
        is_liquidated: Apply the liquidation discount and liquidation fee
        borrowed_amount: Outstanding principal
        cumulative_index_at_open: Account's opening index (RAY)
        cumulative_index_now: Pool's current index (RAY)
        fee_interest: bps of accrued interest taken as fee (close / repay)
        fee_liquidation: bps of discounted funds taken as fee (liquidation)
        liquidation_discount: bps of total value credited on liquidation
        dust: Minimal unit retained on each payout

    Returns:
        ClosePayments
    """
    if dust < 0:
        raise ParameterError(f"Dust retention cannot be negative: {dust}")
    debt = calculate_borrowed_amount_with_interest(
        borrowed_amount, cumulative_index_at_open, cumulative_index_now
    )

    if is_liquidated:
        total_funds = mul_div(total_value, liquidation_discount, PERCENTAGE_FACTOR)
        fee = mul_div(total_funds, fee_liquidation, PERCENTAGE_FACTOR)
    else:
        total_funds = total_value
        fee = mul_div(debt - borrowed_amount, fee_interest, PERCENTAGE_FACTOR)

    debt_plus_fee = checked_add(debt, fee)
    if total_funds >= debt_plus_fee:
        amount_to_pool = debt_plus_fee
    else:
        amount_to_pool = max(0, total_funds - dust)

    remaining_funds = max(0, total_funds - amount_to_pool - dust)
    profit = max(0, amount_to_pool - debt)
    loss = max(0, debt - amount_to_pool)

    return ClosePayments(
        borrowed_amount=borrowed_amount,
        borrowed_amount_with_interest=debt,
        total_funds=total_funds,
        fee=fee,
        amount_to_pool=amount_to_pool,
        remaining_funds=remaining_funds,
        profit=profit,
        loss=loss,
    )


def calculate_health_factor(threshold_weighted_value: int, debt: int) -> int:
    """threshold_weighted_value / debt in bps. 10000 is the liquidation boundary."""
    if debt == 0:
        raise MathError("DivisionByZero: account has no debt")
    return mul_div(threshold_weighted_value, PERCENTAGE_FACTOR, debt)


def calculate_min_health_factor(underlying_threshold: int, max_leverage_factor: int) -> int:
    """Health factor of a fresh account opened at max_leverage_factor."""
    if max_leverage_factor <= 0:
        raise ParameterError(f"IncorrectLeverage: {max_leverage_factor}")
    return mul_div(underlying_threshold, max_leverage_factor + LEVERAGE_DECIMALS, max_leverage_factor)


def calculate_max_possible_drop(percentage: int, times: int) -> int:
    """
    Compound a per-step ratio (bps) over `times` steps, in bps.

    Bounds how far collateral can fall through a run of fast-checked trades
    before a full health-factor check is forced.
    """
    if times < 0:
        raise ParameterError(f"times cannot be negative: {times}")
    if times == 0:
        return PERCENTAGE_FACTOR
    value = checked_mul(PERCENTAGE_FACTOR, percentage)
    for _ in range(times - 1):
        value = mul_div(value, percentage, PERCENTAGE_FACTOR)
    return value // PERCENTAGE_FACTOR
