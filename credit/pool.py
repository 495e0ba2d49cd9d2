"""
pool.py - Reference lending pool with a linear cumulative interest index

The pool's own rate curve and liquidity accounting are outside the credit
core; this in-memory pool exists so the position ledger can be driven
end to end. It keeps its underlying liquidity in a wallet of the token
ledger and grows a RAY cumulative index linearly between rate changes:

    index(t) = index(t0) * (1 + rate * (t - t0) / units_per_year)

The index never decreases as long as the rate is non-negative.
"""

import logging
from typing import Optional

from .core import (
    ExecuteResult, OriginType, OrderingClock, TransactionOrigin,
    ParameterError, TransferError, RAY, SECONDS_PER_YEAR,
)
from .fixed_point import calc_linear_cumulative_index
from .ledger import TokenLedger

logger = logging.getLogger(__name__)


class LinearIndexPool:
    """
    Lending pool for a single underlying token.

    Attributes:
        address: Wallet holding the pool's liquidity
        underlying_token: Symbol of the lent token
        total_borrowed: Principal currently lent out
        expected_liquidity: Liquidity plus outstanding principal, adjusted by profit and loss
        total_profit / total_loss: Cumulative results reported on repay
    """

    def __init__(
        self,
        book: TokenLedger,
        underlying_token: str,
        clock: OrderingClock,
        address: str = "pool",
        borrow_rate: int = 0,
        units_per_year: int = SECONDS_PER_YEAR,
    ):
        if borrow_rate < 0:
            raise ParameterError(f"Borrow rate cannot be negative: {borrow_rate}")
        if units_per_year <= 0:
            raise ParameterError("units_per_year must be positive")
        self.book = book
        self.underlying_token = underlying_token
        self.clock = clock
        self.address = book.ensure_wallet(address)
        self.units_per_year = units_per_year
        self._borrow_rate = borrow_rate
        self._cumulative_index_ray = RAY
        self._last_update_unit = clock.current_unit
        self.total_borrowed = 0
        self.expected_liquidity = 0
        self.total_profit = 0
        self.total_loss = 0

    # ========================================================================
    # INDEX
    # ========================================================================

    @property
    def borrow_rate(self) -> int:
        """Annual borrow rate, RAY."""
        return self._borrow_rate

    def current_cumulative_index(self) -> int:
        return calc_linear_cumulative_index(
            self._cumulative_index_ray,
            self._borrow_rate,
            self.clock.current_unit - self._last_update_unit,
            self.units_per_year,
        )

    def _update_index(self) -> None:
        self._cumulative_index_ray = self.current_cumulative_index()
        self._last_update_unit = self.clock.current_unit

    def set_borrow_rate(self, borrow_rate: int) -> None:
        """Change the rate from now on; interest up to now is locked into the index."""
        if borrow_rate < 0:
            raise ParameterError(f"Borrow rate cannot be negative: {borrow_rate}")
        self._update_index()
        self._borrow_rate = borrow_rate
        logger.info("Pool %s borrow rate set to %d", self.address, borrow_rate)

    # ========================================================================
    # LIQUIDITY
    # ========================================================================

    @property
    def available_liquidity(self) -> int:
        return self.book.get_balance(self.address, self.underlying_token)

    def add_liquidity(self, provider: str, amount: int) -> None:
        if amount <= 0:
            raise ParameterError(f"Liquidity amount must be positive: {amount}")
        result = self.book.transfer(
            provider, self.address, self.underlying_token, amount,
            origin=TransactionOrigin(OriginType.USER_ACTION, provider, "ADD_LIQUIDITY"),
        )
        if result != ExecuteResult.APPLIED:
            raise TransferError(f"Liquidity transfer from {provider} rejected")
        self.expected_liquidity += amount

    def lend(self, amount: int, recipient: str) -> None:
        """
        Send amount of the underlying to recipient and book it as borrowed.

        Raises:
            ParameterError: If amount is not positive or exceeds available liquidity
            TransferError: If the token ledger rejects the transfer
        """
        if amount <= 0:
            raise ParameterError(f"Lend amount must be positive: {amount}")
        if amount > self.available_liquidity:
            raise ParameterError(
                f"NotEnoughLiquidity: requested {amount}, available {self.available_liquidity}"
            )
        self._update_index()
        result = self.book.transfer(
            self.address, recipient, self.underlying_token, amount,
            origin=TransactionOrigin(OriginType.POOL, self.address, "LEND"),
        )
        if result != ExecuteResult.APPLIED:
            raise TransferError(f"Pool transfer to {recipient} rejected")
        self.total_borrowed += amount
        logger.debug("Pool lent %d %s to %s", amount, self.underlying_token, recipient)

    def repay(self, borrowed_amount: int, profit: int, loss: int) -> None:
        """
        Book a repayment. The funds are expected to be in the pool wallet already.

        Raises:
            ParameterError: If the principal exceeds what is outstanding or both
                            profit and loss are reported
        """
        if borrowed_amount > self.total_borrowed:
            raise ParameterError(
                f"Repaid principal {borrowed_amount} exceeds outstanding {self.total_borrowed}"
            )
        if profit > 0 and loss > 0:
            raise ParameterError("Repayment cannot report both profit and loss")
        self._update_index()
        self.total_borrowed -= borrowed_amount
        self.expected_liquidity = max(0, self.expected_liquidity + profit - loss)
        self.total_profit += profit
        self.total_loss += loss
        if loss:
            logger.warning("Pool %s booked loss %d on repayment of %d", self.address, loss, borrowed_amount)

    def __repr__(self):
        return (
            f"LinearIndexPool({self.underlying_token}, borrowed={self.total_borrowed}, "
            f"rate={self._borrow_rate})"
        )
