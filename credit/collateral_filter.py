"""
collateral_filter.py - Token allow-lists, enabled-token masks and valuation

The CollateralFilter decides what a credit account may hold and how much
that is worth:

    - Token registry: each allowed token gets a liquidation threshold (bps)
      and a bit index 0..255 assigned once and never reused. Bit 0 is the
      underlying token, registered at construction.
    - Adapter registry: external contract -> adapter, strictly 1:1.
    - Enabled-tokens mask per account slot: which allowed tokens the account
      currently holds. Valuation only walks the set bits.
    - Valuation: total value and threshold-weighted value in underlying
      units through the price oracle; health factor = twv * 10000 / debt.
    - Fast check: after an adapter trade that kept most of its collateral
      value, the full health-factor recomputation may be skipped a bounded
      number of times in a row.

The mask is shared state with the PositionLedger: only the connected
ledger may initialise masks or enable tokens directly, only registered
adapters may report trades.
"""

from __future__ import annotations
import logging
from typing import Dict, List, Optional, Sequence, Set, Tuple, TYPE_CHECKING

from .core import (
    Address, AuthorizationError, CollateralError, ParameterError, SolvencyError,
    PriceOracle, TokenView, MAX_ALLOWED_TOKENS, PERCENTAGE_FACTOR, ZERO_ADDRESS,
    DEFAULT_LIQUIDATION_DISCOUNT, DEFAULT_FEE_LIQUIDATION,
)
from .fixed_point import checked_add, checked_mul, mul_div
from .params import FastCheckParams
from .settlement import calculate_health_factor, calculate_max_possible_drop

if TYPE_CHECKING:
    from .position_ledger import PositionLedger

logger = logging.getLogger(__name__)


class CollateralFilter:
    """
    Registry of allowed collateral and adapters, plus per-account masks.

    Args:
        book: Token view used to read account balances
        oracle: Price oracle used for every conversion to the underlying
        underlying_token: Token lent by the pool, always at bit 0
        configurator: Address allowed to change registries and parameters
        underlying_liquidation_threshold: Initial threshold of the underlying, bps
        fast_check: Fast check settings
    """

    def __init__(
        self,
        book: TokenView,
        oracle: PriceOracle,
        underlying_token: str,
        configurator: Address,
        underlying_liquidation_threshold: int = DEFAULT_LIQUIDATION_DISCOUNT - DEFAULT_FEE_LIQUIDATION,
        fast_check: Optional[FastCheckParams] = None,
    ):
        if not underlying_token:
            raise ParameterError("Underlying token cannot be empty")
        if not configurator:
            raise ParameterError("Configurator cannot be empty")
        if underlying_liquidation_threshold <= 0 or underlying_liquidation_threshold > PERCENTAGE_FACTOR:
            raise ParameterError(
                f"IncorrectLiquidationThreshold: {underlying_liquidation_threshold}"
            )
        self.book = book
        self.oracle = oracle
        self.underlying_token = underlying_token
        self.configurator = configurator
        self.fast_check = fast_check or FastCheckParams()
        self.position_ledger: Optional[PositionLedger] = None

        # Token registry: list index == bit index
        self._allowed_tokens: List[str] = []
        self._token_masks: Dict[str, int] = {}
        self._liquidation_thresholds: Dict[str, int] = {}
        self._forbidden_token_mask = 0

        # Adapter registry
        self._allowed_contracts: List[Address] = []
        self._contract_to_adapter: Dict[Address, Address] = {}
        self._allowed_adapters: Set[Address] = set()

        # Account transfers
        self._allowed_plugins: Set[Address] = set()
        self._transfers_allowed: Set[Tuple[Address, Address]] = set()

        # Per-slot state
        self._enabled_tokens: Dict[Address, int] = {}
        self._fast_check_counter: Dict[Address, int] = {}

        self._register_token(underlying_token, underlying_liquidation_threshold)

    # ========================================================================
    # ACCESS CHECKS
    # ========================================================================

    def _require_configurator(self, caller: Address) -> None:
        if caller != self.configurator:
            raise AuthorizationError(f"CallerNotConfigurator: {caller}")

    def _require_position_ledger(self, caller: Address) -> None:
        if self.position_ledger is None or caller != self.position_ledger.address:
            raise AuthorizationError(f"CallerNotCreditManager: {caller}")

    def _require_adapter(self, caller: Address) -> None:
        self.revert_if_adapter_not_allowed(caller)

    # ========================================================================
    # TOKEN REGISTRY
    # ========================================================================

    def _register_token(self, token: str, liquidation_threshold: int) -> None:
        if len(self._allowed_tokens) >= MAX_ALLOWED_TOKENS:
            raise CollateralError(f"TooManyTokens: registry holds {MAX_ALLOWED_TOKENS} tokens")
        self._token_masks[token] = 1 << len(self._allowed_tokens)
        self._allowed_tokens.append(token)
        self._liquidation_thresholds[token] = liquidation_threshold

    def allow_token(self, caller: Address, token: str, liquidation_threshold: int) -> None:
        """
        Allow a token as collateral, or update its threshold if already known.

        Raises:
            AuthorizationError: If caller is not the configurator
            ParameterError: If the threshold is outside (0, underlying threshold]
                            or token is the underlying
            CollateralError: If a new token would exceed the 256-token registry
            ExternalCallError: If the oracle cannot price the token
        """
        self._require_configurator(caller)
        if not token:
            raise ParameterError("Token cannot be empty")
        if token == self.underlying_token:
            raise ParameterError(
                "Underlying token threshold follows the ledger parameters"
            )
        if liquidation_threshold <= 0 or liquidation_threshold > self.underlying_liquidation_threshold:
            raise ParameterError(
                f"IncorrectLiquidationThreshold: {liquidation_threshold} outside "
                f"(0, {self.underlying_liquidation_threshold}]"
            )
        # price must be available before the token can count as collateral
        self.oracle.get_price(token, self.underlying_token)

        if token in self._token_masks:
            self._liquidation_thresholds[token] = liquidation_threshold
            self._forbidden_token_mask &= ~self._token_masks[token]
        else:
            self._register_token(token, liquidation_threshold)
        logger.info("Token %s allowed with liquidation threshold %d", token, liquidation_threshold)

    def forbid_token(self, caller: Address, token: str) -> None:
        """
        Exclude a registered token from valuation and from enabling. Its bit
        stays assigned and is reused if the token is allowed again.
        """
        self._require_configurator(caller)
        if token == self.underlying_token:
            raise ParameterError("Underlying token cannot be forbidden")
        if token not in self._token_masks:
            raise CollateralError(f"TokenIsNotAllowed: {token}")
        self._forbidden_token_mask |= self._token_masks[token]
        logger.info("Token %s forbidden", token)

    def is_token_allowed(self, token: str) -> bool:
        mask = self._token_masks.get(token)
        return mask is not None and not (mask & self._forbidden_token_mask)

    def revert_if_token_not_allowed(self, token: str) -> None:
        if not self.is_token_allowed(token):
            raise CollateralError(f"TokenIsNotAllowed: {token}")

    def allowed_tokens_count(self) -> int:
        return len(self._allowed_tokens)

    @property
    def allowed_tokens(self) -> Tuple[str, ...]:
        return tuple(self._allowed_tokens)

    def token_mask(self, token: str) -> int:
        if token not in self._token_masks:
            raise CollateralError(f"TokenIsNotAllowed: {token}")
        return self._token_masks[token]

    def liquidation_threshold(self, token: str) -> int:
        if token not in self._liquidation_thresholds:
            raise CollateralError(f"TokenIsNotAllowed: {token}")
        return self._liquidation_thresholds[token]

    @property
    def liquidation_thresholds(self) -> Dict[str, int]:
        return dict(self._liquidation_thresholds)

    @property
    def underlying_liquidation_threshold(self) -> int:
        return self._liquidation_thresholds[self.underlying_token]

    @property
    def forbidden_token_mask(self) -> int:
        return self._forbidden_token_mask

    def update_underlying_token_liquidation_threshold(self, caller: Address) -> None:
        """
        Re-derive the underlying threshold from the connected ledger's
        parameters (liquidation_discount - fee_liquidation).

        Raises:
            CollateralError: If some token's threshold exceeds the new value
        """
        self._require_position_ledger(caller)
        new_threshold = self.position_ledger.params.underlying_liquidation_threshold
        for token, threshold in self._liquidation_thresholds.items():
            if token != self.underlying_token and threshold > new_threshold:
                raise CollateralError(
                    f"SomeLiquidationThresholdMoreThanNewOne: {token} has {threshold} > {new_threshold}"
                )
        self._liquidation_thresholds[self.underlying_token] = new_threshold
        logger.info("Underlying liquidation threshold set to %d", new_threshold)

    # ========================================================================
    # ADAPTER REGISTRY
    # ========================================================================

    def allow_contract(self, caller: Address, target_contract: Address, adapter: Address) -> None:
        """
        Map an external contract to the adapter that may act on it.

        Re-registering a contract replaces its adapter. An adapter can serve
        only one contract.
        """
        self._require_configurator(caller)
        if target_contract == ZERO_ADDRESS or adapter == ZERO_ADDRESS:
            raise ParameterError("ZeroAddressIsNotAllowed")
        current = self._contract_to_adapter.get(target_contract)
        if adapter in self._allowed_adapters and current != adapter:
            raise CollateralError(f"AdapterUsedTwice: {adapter}")
        if current is not None:
            self._allowed_adapters.discard(current)
        else:
            self._allowed_contracts.append(target_contract)
        self._contract_to_adapter[target_contract] = adapter
        self._allowed_adapters.add(adapter)
        logger.info("Contract %s allowed through adapter %s", target_contract, adapter)

    def forbid_contract(self, caller: Address, target_contract: Address) -> None:
        self._require_configurator(caller)
        if target_contract not in self._contract_to_adapter:
            raise CollateralError(f"ContractIsNotInAllowedList: {target_contract}")
        adapter = self._contract_to_adapter.pop(target_contract)
        self._allowed_adapters.discard(adapter)
        self._allowed_contracts.remove(target_contract)
        logger.info("Contract %s forbidden", target_contract)

    def contract_to_adapter(self, target_contract: Address) -> Optional[Address]:
        return self._contract_to_adapter.get(target_contract)

    @property
    def allowed_contracts(self) -> Tuple[Address, ...]:
        return tuple(self._allowed_contracts)

    def allowed_contracts_count(self) -> int:
        return len(self._allowed_contracts)

    def is_adapter_allowed(self, adapter: Address) -> bool:
        return adapter in self._allowed_adapters

    def revert_if_adapter_not_allowed(self, adapter: Address) -> None:
        if adapter not in self._allowed_adapters:
            raise AuthorizationError(f"AdapterIsNotAllowed: {adapter}")

    def revert_if_contract_not_allowed(self, target_contract: Address) -> None:
        if target_contract not in self._contract_to_adapter:
            raise CollateralError(f"ContractIsNotAllowed: {target_contract}")

    # ========================================================================
    # CONNECTION
    # ========================================================================

    def connect_position_ledger(self, caller: Address, position_ledger: PositionLedger) -> None:
        """Bind the ledger that owns the accounts whose masks live here."""
        self._require_configurator(caller)
        if self.position_ledger is not None and self.position_ledger is not position_ledger:
            raise ParameterError("CollateralFilter is already connected to another ledger")
        if position_ledger.underlying_token != self.underlying_token:
            raise ParameterError("Position ledger underlying token does not match")
        previous = self.position_ledger
        self.position_ledger = position_ledger
        try:
            self.update_underlying_token_liquidation_threshold(position_ledger.address)
        except CollateralError:
            self.position_ledger = previous
            raise

    # ========================================================================
    # ENABLED TOKENS
    # ========================================================================

    def init_enabled_tokens(self, caller: Address, slot: Address) -> None:
        """Start a fresh account with only the underlying enabled."""
        self._require_position_ledger(caller)
        self._enabled_tokens[slot] = 1
        self._fast_check_counter[slot] = 1

    def check_and_enable_token(self, caller: Address, slot: Address, token: str) -> None:
        self._require_position_ledger(caller)
        self._check_and_enable_token(slot, token)

    def _check_and_enable_token(self, slot: Address, token: str) -> None:
        self.revert_if_token_not_allowed(token)
        self._enabled_tokens[slot] = self._enabled_tokens.get(slot, 0) | self._token_masks[token]

    def enabled_tokens(self, slot: Address) -> int:
        return self._enabled_tokens.get(slot, 0)

    def fast_check_counter(self, slot: Address) -> int:
        return self._fast_check_counter.get(slot, 0)

    def _iter_enabled(self, slot: Address):
        """Yield (bit, token) for every enabled, non-forbidden token of a slot."""
        mask = self._enabled_tokens.get(slot, 0) & ~self._forbidden_token_mask
        bit = 0
        while mask:
            if mask & 1:
                yield bit, self._allowed_tokens[bit]
            mask >>= 1
            bit += 1

    def enabled_token_list(self, slot: Address) -> List[str]:
        return [token for _, token in self._iter_enabled(slot)]

    # ========================================================================
    # VALUATION
    # ========================================================================

    def calc_total_value(self, slot: Address) -> int:
        """Sum of enabled balances converted to the underlying."""
        total = 0
        for _, token in self._iter_enabled(slot):
            balance = self.book.get_balance(slot, token)
            if balance > 0:
                total = checked_add(total, self.oracle.convert(balance, token, self.underlying_token))
        return total

    def calc_threshold_weighted_value(self, slot: Address, extra_underlying: int = 0) -> int:
        """
        Sum of enabled balances converted to the underlying, each weighted by
        its threshold. extra_underlying values the account as if it held that
        much more of the underlying.
        """
        total = 0
        for _, token in self._iter_enabled(slot):
            balance = self.book.get_balance(slot, token)
            if token == self.underlying_token:
                balance = checked_add(balance, extra_underlying)
            if balance > 0:
                value = self.oracle.convert(balance, token, self.underlying_token)
                total = checked_add(total, mul_div(value, self._liquidation_thresholds[token], PERCENTAGE_FACTOR))
        return total

    def get_credit_account_token_by_id(self, slot: Address, token_id: int) -> Tuple[str, int, int, int]:
        """
        Returns:
            (token, balance, value in underlying, threshold-weighted value)
        """
        if token_id < 0 or token_id >= len(self._allowed_tokens):
            raise ParameterError(f"Token id out of range: {token_id}")
        token = self._allowed_tokens[token_id]
        balance = self.book.get_balance(slot, token)
        tv = self.oracle.convert(balance, token, self.underlying_token) if balance else 0
        twv = mul_div(tv, self._liquidation_thresholds[token], PERCENTAGE_FACTOR)
        return token, balance, tv, twv

    def calc_credit_account_accrued_interest(self, slot: Address) -> int:
        """Borrowed amount plus interest of the account held in slot."""
        if self.position_ledger is None:
            raise AuthorizationError("CollateralFilter is not connected to a position ledger")
        return self.position_ledger.calc_debt(slot)

    def calc_credit_account_health_factor(self, slot: Address) -> int:
        """
        Threshold-weighted value over debt, bps. 0 when nothing is enabled.
        """
        if self._enabled_tokens.get(slot, 0) == 0:
            return 0
        return calculate_health_factor(
            self.calc_threshold_weighted_value(slot),
            self.calc_credit_account_accrued_interest(slot),
        )

    # ========================================================================
    # TRADE CHECKS
    # ========================================================================

    def _weighted(self, amount: int, token: str) -> int:
        value = self.oracle.convert(amount, token, self.underlying_token)
        return mul_div(value, self._liquidation_thresholds[token], PERCENTAGE_FACTOR)

    def check_collateral_change(
        self,
        caller: Address,
        slot: Address,
        token_in: str,
        token_out: str,
        amount_in: int,
        amount_out: int,
    ) -> None:
        """
        Called by an adapter after a trade. Enables token_out, then either
        takes the fast path or runs a full health-factor check.

        Raises:
            AuthorizationError: If caller is not an allowed adapter
            CollateralError: If token_out is not allowed
            SolvencyError: If a full check finds HF below 10000
        """
        self._require_adapter(caller)
        mask, counter = self.enabled_tokens(slot), self.fast_check_counter(slot)
        try:
            self._check_and_enable_token(slot, token_out)
            self._check_collateral(
                slot,
                self._weighted(amount_in, token_in),
                self._weighted(amount_out, token_out),
            )
        except Exception:
            self._enabled_tokens[slot], self._fast_check_counter[slot] = mask, counter
            raise

    def check_multi_token_collateral(
        self,
        caller: Address,
        slot: Address,
        amounts_in: Sequence[int],
        amounts_out: Sequence[int],
        tokens_in: Sequence[str],
        tokens_out: Sequence[str],
    ) -> None:
        """Like check_collateral_change for trades with several legs on each side."""
        self._require_adapter(caller)
        if len(amounts_in) != len(tokens_in) or len(amounts_out) != len(tokens_out):
            raise ParameterError("IncorrectArrayLength")
        mask, counter = self.enabled_tokens(slot), self.fast_check_counter(slot)
        try:
            for token in tokens_out:
                self._check_and_enable_token(slot, token)
            collateral_in = sum(self._weighted(a, t) for a, t in zip(amounts_in, tokens_in))
            collateral_out = sum(self._weighted(a, t) for a, t in zip(amounts_out, tokens_out))
            self._check_collateral(slot, collateral_in, collateral_out)
        except Exception:
            self._enabled_tokens[slot], self._fast_check_counter[slot] = mask, counter
            raise

    def _check_collateral(self, slot: Address, collateral_in: int, collateral_out: int) -> None:
        counter = self._fast_check_counter.get(slot, 0)
        kept_value = (
            checked_mul(collateral_out, PERCENTAGE_FACTOR)
            > checked_mul(collateral_in, self.fast_check.chi_threshold)
        )
        if kept_value and counter <= self.fast_check.hf_check_interval:
            self._fast_check_counter[slot] = counter + 1
            return
        health_factor = self.calc_credit_account_health_factor(slot)
        if health_factor < PERCENTAGE_FACTOR:
            raise SolvencyError(f"OperationLowHealthFactor: {health_factor}")
        self._fast_check_counter[slot] = 1

    def set_fast_check_parameters(self, caller: Address, chi_threshold: int, hf_check_interval: int) -> None:
        self._require_configurator(caller)
        self.fast_check = FastCheckParams(chi_threshold, hf_check_interval)
        logger.info("Fast check parameters set: chi=%d interval=%d", chi_threshold, hf_check_interval)

    @staticmethod
    def calc_max_possible_drop(percentage: int, times: int) -> int:
        return calculate_max_possible_drop(percentage, times)

    # ========================================================================
    # ACCOUNT TRANSFERS
    # ========================================================================

    def allow_plugin(self, caller: Address, plugin: Address, state: bool) -> None:
        """Plugins may receive account transfers without a per-owner approval."""
        self._require_configurator(caller)
        if state:
            self._allowed_plugins.add(plugin)
        else:
            self._allowed_plugins.discard(plugin)

    def approve_account_transfers(self, caller: Address, from_owner: Address, allowed: bool) -> None:
        """caller agrees (or stops agreeing) to receive an account from from_owner."""
        if allowed:
            self._transfers_allowed.add((from_owner, caller))
        else:
            self._transfers_allowed.discard((from_owner, caller))

    def is_transfer_allowed(self, from_owner: Address, to_owner: Address) -> bool:
        return to_owner in self._allowed_plugins or (from_owner, to_owner) in self._transfers_allowed

    def revert_if_account_transfer_not_allowed(self, from_owner: Address, to_owner: Address) -> None:
        if not self.is_transfer_allowed(from_owner, to_owner):
            raise AuthorizationError(f"AccountTransferNotAllowed: {from_owner} -> {to_owner}")

    # ========================================================================
    # ROLLBACK SUPPORT
    # ========================================================================

    def _snapshot(self) -> Tuple[Dict[Address, int], Dict[Address, int]]:
        return dict(self._enabled_tokens), dict(self._fast_check_counter)

    def _restore(self, snapshot: Tuple[Dict[Address, int], Dict[Address, int]]) -> None:
        self._enabled_tokens, self._fast_check_counter = dict(snapshot[0]), dict(snapshot[1])
