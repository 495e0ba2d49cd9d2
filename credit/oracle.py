"""
oracle.py - Price oracle infrastructure for collateral valuation

Classes:
- PriceOracle: Protocol (defined in core) with convert() and get_price()
- StaticPriceOracle: in-memory feeds, one WAD price per token

Every feed is quoted in a common quote currency, per ONE WHOLE token
(10 ** decimals smallest units). Conversions between two tokens go through
that common quote and floor the result.

The oracle is an untrusted boundary: a missing, zero or stale feed raises
ExternalCallError rather than producing a value.
"""

from typing import Dict, Optional, Tuple

from .core import ExternalCallError, OrderingClock, WAD
from .fixed_point import checked_mul, mul_div


class StaticPriceOracle:
    """
    Oracle with explicitly set prices.

    When a clock and max_staleness are given, a feed that has not been
    updated within max_staleness ordering units is rejected.
    """

    def __init__(
        self,
        quote_currency: str = "USD",
        clock: Optional[OrderingClock] = None,
        max_staleness: Optional[int] = None,
    ):
        """
        Args:
            quote_currency: Name of the common quote (informational)
            clock: Ordering clock used to stamp and age feeds
            max_staleness: Maximum age of a feed in units (None = never stale)
        """
        if max_staleness is not None and max_staleness < 0:
            raise ValueError("max_staleness cannot be negative")
        self.quote_currency = quote_currency
        self.clock = clock
        self.max_staleness = max_staleness
        # token -> (price WAD per whole token, decimals, unit of last update)
        self._feeds: Dict[str, Tuple[int, int, int]] = {}

    def _now(self) -> int:
        return self.clock.current_unit if self.clock is not None else 0

    def add_price_feed(self, token: str, price: int, decimals: int = 18) -> None:
        """Register or replace a token feed."""
        if price < 0:
            raise ValueError(f"Price cannot be negative: {price}")
        if decimals < 0:
            raise ValueError(f"Decimals cannot be negative: {decimals}")
        self._feeds[token] = (price, decimals, self._now())

    def update_price(self, token: str, price: int) -> None:
        """Update the price of an existing feed."""
        if token not in self._feeds:
            raise KeyError(f"No price feed for {token}")
        if price < 0:
            raise ValueError(f"Price cannot be negative: {price}")
        _, decimals, _ = self._feeds[token]
        self._feeds[token] = (price, decimals, self._now())

    def update_prices(self, prices: Dict[str, int]) -> None:
        for token, price in prices.items():
            self.update_price(token, price)

    def has_feed(self, token: str) -> bool:
        return token in self._feeds

    def _get_feed(self, token: str) -> Tuple[int, int]:
        feed = self._feeds.get(token)
        if feed is None:
            raise ExternalCallError(f"PriceFeedDoesNotExist: {token}")
        price, decimals, updated_at = feed
        if price == 0:
            raise ExternalCallError(f"ZeroPrice: {token}")
        if self.max_staleness is not None and self._now() - updated_at > self.max_staleness:
            raise ExternalCallError(f"StalePrice: {token} last updated at {updated_at}")
        return price, decimals

    def get_price(self, token: str, quote_token: str) -> int:
        """
        WAD-scaled smallest units of quote_token per smallest unit of token.
        """
        if token == quote_token:
            return WAD
        price_from, decimals_from = self._get_feed(token)
        price_to, decimals_to = self._get_feed(quote_token)
        return mul_div(
            checked_mul(price_from, WAD),
            10 ** decimals_to,
            checked_mul(price_to, 10 ** decimals_from),
        )

    def convert(self, amount: int, token_from: str, token_to: str) -> int:
        """Value of amount of token_from expressed in token_to (floored)."""
        if token_from == token_to:
            return amount
        if amount == 0:
            return 0
        price_from, decimals_from = self._get_feed(token_from)
        price_to, decimals_to = self._get_feed(token_to)
        return mul_div(
            checked_mul(amount, price_from),
            10 ** decimals_to,
            checked_mul(price_to, 10 ** decimals_from),
        )

    def __repr__(self):
        return f"StaticPriceOracle({len(self._feeds)} feeds, quote={self.quote_currency})"
