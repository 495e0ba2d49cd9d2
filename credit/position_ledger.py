"""
position_ledger.py - Credit account lifecycle and settlement

The PositionLedger owns every open credit account: who owns it, which slot
holds its funds, how much was borrowed and at which pool index. It opens
accounts, adds collateral, borrows more, and settles accounts through
close, repay or liquidation.

Per account:

    CLOSED --open--> OPEN --add_collateral / increase_borrowed_amount / adapter trades--> OPEN
    OPEN --close / repay / liquidate--> CLOSED

Every public operation is all-or-nothing: token movements run inside
TokenLedger.atomic() and the ledger's own records, the collateral filter's
masks and the event log are restored if any step raises. Calls to the pool
that change its books come last, after every check has passed. The single
deliberate exception is force-mode liquidation, where a token that refuses
to move does not stop the liquidation.

Operations on an account cannot settle it in the ordering unit it was
opened in.
"""

from __future__ import annotations
from contextlib import contextmanager
from dataclasses import dataclass, replace
import logging
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple

from .core import (
    Address, AccountAllocator, ExecuteResult, ExternalContract, OrderingClock,
    OriginType, PoolService, SwapHint, SwapOrder, TransactionOrigin,
    AuthorizationError, CollateralError, ExternalCallError, ParameterError,
    SolvencyError, StateError, TransferError,
    DUST_RETENTION, MAX_UINT256, PERCENTAGE_FACTOR, ZERO_ADDRESS,
)
from .collateral_filter import CollateralFilter
from .fixed_point import checked_add
from .ledger import TokenLedger
from .params import CreditParams
from .settlement import (
    ClosePayments,
    calculate_borrowed_amount,
    calculate_borrowed_amount_with_interest,
    calculate_close_payments,
    calculate_health_factor,
    calculate_new_cumulative_index,
)

logger = logging.getLogger(__name__)


# Event names
EVENT_OPEN = "OpenCreditAccount"
EVENT_ADD_COLLATERAL = "AddCollateral"
EVENT_INCREASE_BORROWED = "IncreaseBorrowedAmount"
EVENT_CLOSE = "CloseCreditAccount"
EVENT_REPAY = "RepayCreditAccount"
EVENT_LIQUIDATE = "LiquidateCreditAccount"
EVENT_TRANSFER = "TransferAccount"
EVENT_EXECUTE_ORDER = "ExecuteOrder"
EVENT_NEW_PARAMETERS = "NewParameters"


# ============================================================================
# RECORDS
# ============================================================================

@dataclass(frozen=True, slots=True)
class CreditAccount:
    """
    Persisted state of one open credit account.

    The enabled-tokens mask is held by the CollateralFilter under the slot.

    Attributes:
        owner: Address the account belongs to
        slot: Wallet holding the account's funds
        borrowed_amount: Outstanding principal
        cumulative_index_at_open: Pool index snapshot (RAY) debt grows from
        since_unit: Ordering unit in which the account was opened
    """
    owner: Address
    slot: Address
    borrowed_amount: int
    cumulative_index_at_open: int
    since_unit: int

    def __post_init__(self):
        if self.borrowed_amount <= 0:
            raise ValueError("Open account must have positive borrowed_amount")
        if self.cumulative_index_at_open <= 0:
            raise ValueError("cumulative_index_at_open must be positive")


@dataclass(frozen=True, slots=True)
class CreditEvent:
    """Immutable audit record of one state transition."""
    event_type: str
    ordering_unit: int
    data: Tuple[Tuple[str, Any], ...]

    @property
    def fields(self) -> Dict[str, Any]:
        return dict(self.data)

    def __repr__(self) -> str:
        args = ", ".join(f"{k}={v!r}" for k, v in self.data)
        return f"{self.event_type}@{self.ordering_unit}({args})"


# ============================================================================
# POSITION LEDGER
# ============================================================================

class PositionLedger:
    """
    Credit manager for one underlying token.

    Args:
        book: Token ledger holding all balances
        pool: Lending pool of the underlying
        collateral_filter: Registry and valuation of account collateral
        allocator: Source of account slots
        clock: Ordering clock for the same-unit guard
        params: Limits and fees
        configurator: Address allowed to change parameters
        address: This ledger's own identity (used as caller toward the filter)
        dust: Minimal unit retained on every payout from a slot

    Raises:
        ParameterError: If pool and filter disagree on the underlying token
    """

    def __init__(
        self,
        book: TokenLedger,
        pool: PoolService,
        collateral_filter: CollateralFilter,
        allocator: AccountAllocator,
        clock: OrderingClock,
        params: CreditParams,
        configurator: Address,
        address: Address = "credit_manager",
        dust: int = DUST_RETENTION,
    ):
        if pool.underlying_token != collateral_filter.underlying_token:
            raise ParameterError(
                f"Pool underlying {pool.underlying_token} differs from filter underlying "
                f"{collateral_filter.underlying_token}"
            )
        if dust < 0:
            raise ParameterError(f"Dust retention cannot be negative: {dust}")
        self.book = book
        self.pool = pool
        self.collateral_filter = collateral_filter
        self.allocator = allocator
        self.clock = clock
        self.params = params
        self.configurator = configurator
        self.address = book.ensure_wallet(address)
        self.dust = dust
        self.underlying_token = pool.underlying_token

        self._accounts: Dict[Address, CreditAccount] = {}
        self._slot_owner: Dict[Address, Address] = {}
        self.events: List[CreditEvent] = []

        collateral_filter.connect_position_ledger(configurator, self)

    # ========================================================================
    # READ-ONLY VIEWS
    # ========================================================================

    @property
    def min_health_factor(self) -> int:
        return self.params.min_health_factor

    def has_opened_credit_account(self, owner: Address) -> bool:
        return owner in self._accounts

    def get_account(self, owner: Address) -> CreditAccount:
        """
        Raises:
            StateError: If owner has no open account
        """
        account = self._accounts.get(owner)
        if account is None:
            raise StateError(f"NoOpenAccount: {owner}")
        return account

    def get_credit_account_or_raise(self, owner: Address) -> Address:
        """Slot of owner's open account."""
        return self.get_account(owner).slot

    @property
    def credit_accounts(self) -> Dict[Address, CreditAccount]:
        return dict(self._accounts)

    def owner_of(self, slot: Address) -> Address:
        owner = self._slot_owner.get(slot)
        if owner is None:
            raise StateError(f"NoOpenAccount: slot {slot}")
        return owner

    def _current_index(self, account: Optional[CreditAccount] = None) -> int:
        index = self.pool.current_cumulative_index()
        if index <= 0:
            raise ExternalCallError(f"Pool returned non-positive cumulative index: {index}")
        if account is not None and index < account.cumulative_index_at_open:
            raise ExternalCallError(
                f"Pool index {index} below account opening index {account.cumulative_index_at_open}"
            )
        return index

    def calc_debt(self, slot: Address) -> int:
        """Borrowed amount plus accrued interest of the account in slot."""
        account = self._accounts[self.owner_of(slot)]
        return calculate_borrowed_amount_with_interest(
            account.borrowed_amount,
            account.cumulative_index_at_open,
            self._current_index(account),
        )

    def calc_close_payments(self, owner: Address, total_value: int, is_liquidated: bool) -> ClosePayments:
        account = self.get_account(owner)
        return calculate_close_payments(
            total_value=total_value,
            is_liquidated=is_liquidated,
            borrowed_amount=account.borrowed_amount,
            cumulative_index_at_open=account.cumulative_index_at_open,
            cumulative_index_now=self._current_index(account),
            fee_interest=self.params.fee_interest,
            fee_liquidation=self.params.fee_liquidation,
            liquidation_discount=self.params.liquidation_discount,
            dust=self.dust,
        )

    def calc_repay_amount(self, borrower: Address, is_liquidated: bool = False) -> int:
        """
        Underlying a repayer (or liquidator) has to bring.

        Repay: amount_to_pool. Liquidation: amount_to_pool + remaining_funds,
        since the liquidator also pays the borrower's remainder.
        """
        slot = self.get_credit_account_or_raise(borrower)
        total_value = self.collateral_filter.calc_total_value(slot)
        payments = self.calc_close_payments(borrower, total_value, is_liquidated)
        if is_liquidated:
            return payments.amount_to_pool + payments.remaining_funds
        return payments.amount_to_pool

    def events_of(self, event_type: str) -> List[CreditEvent]:
        return [e for e in self.events if e.event_type == event_type]

    # ========================================================================
    # INTERNAL HELPERS
    # ========================================================================

    def _require_configurator(self, caller: Address) -> None:
        if caller != self.configurator:
            raise AuthorizationError(f"CallerNotConfigurator: {caller}")

    @staticmethod
    def _require_address(address: Address) -> None:
        if address is None or address == ZERO_ADDRESS:
            raise StateError("ZeroAddressIsNotAllowed")

    def _require_not_same_unit(self, account: CreditAccount) -> None:
        if self.clock.current_unit == account.since_unit:
            raise StateError(
                f"SameUnitOperation: account of {account.owner} opened in unit {account.since_unit}"
            )

    def _require_adapter_for(self, caller: Address, target: Address) -> None:
        if self.collateral_filter.contract_to_adapter(target) != caller:
            raise AuthorizationError(f"AdapterIsNotAllowed: {caller} for {target}")

    def _store(self, account: CreditAccount) -> None:
        self._accounts[account.owner] = account
        self._slot_owner[account.slot] = account.owner

    def _remove(self, account: CreditAccount) -> None:
        del self._accounts[account.owner]
        del self._slot_owner[account.slot]

    def _emit(self, event_type: str, **data: Any) -> None:
        event = CreditEvent(event_type, self.clock.current_unit, tuple(data.items()))
        self.events.append(event)
        logger.info("%r", event)

    def _transfer(self, source: Address, dest: Address, token: str, amount: int, event_type: str) -> None:
        """Move tokens or raise TransferError. Zero amounts are a no-op."""
        if amount <= 0:
            return
        result = self.book.transfer(
            source, dest, token, amount,
            origin=TransactionOrigin(OriginType.CREDIT_MANAGER, self.address, event_type),
        )
        if result != ExecuteResult.APPLIED:
            raise TransferError(f"TransferFailed: {amount} {token} {source} -> {dest}")

    def _provide_allowance(self, slot: Address, spender: Address, token: str) -> None:
        if self.book.allowance(slot, spender, token) < MAX_UINT256 // 2:
            self.book.approve(slot, spender, token, MAX_UINT256)

    @contextmanager
    def atomic(self) -> Iterator[PositionLedger]:
        """
        All-or-nothing scope over the token ledger, this ledger's records and
        the collateral filter's masks. Adapters wrap their multi-step
        interactions in it.
        """
        accounts = dict(self._accounts)
        slot_owner = dict(self._slot_owner)
        events_length = len(self.events)
        filter_state = self.collateral_filter._snapshot()
        try:
            with self.book.atomic():
                yield self
        except BaseException:
            self._accounts = accounts
            self._slot_owner = slot_owner
            del self.events[events_length:]
            self.collateral_filter._restore(filter_state)
            raise

    # ========================================================================
    # OPEN / ADD / INCREASE
    # ========================================================================

    def open_credit_account(
        self,
        caller: Address,
        amount: int,
        on_behalf_of: Address,
        leverage_factor: int,
        referral_code: int = 0,
    ) -> Address:
        """
        Open an account for on_behalf_of, funded with caller's amount plus
        amount * leverage_factor / 100 borrowed from the pool.

        Returns:
            The slot holding the account's funds

        Raises:
            ParameterError: amount outside [min_amount, max_amount], leverage outside
                            (0, max_leverage_factor], or nothing to borrow
            StateError: on_behalf_of is empty or already has an open account
            TransferError: caller's deposit could not be moved
        """
        params = self.params
        if amount < params.min_amount or amount > params.max_amount:
            raise ParameterError(
                f"IncorrectAmount: {amount} outside [{params.min_amount}, {params.max_amount}]"
            )
        if leverage_factor <= 0 or leverage_factor > params.max_leverage_factor:
            raise ParameterError(
                f"IncorrectLeverageFactor: {leverage_factor} outside (0, {params.max_leverage_factor}]"
            )
        self._require_address(on_behalf_of)
        if self.has_opened_credit_account(on_behalf_of):
            raise StateError(f"HasAlreadyOpenAccount: {on_behalf_of}")
        borrowed_amount = calculate_borrowed_amount(amount, leverage_factor)
        if borrowed_amount == 0:
            raise ParameterError("IncorrectAmount: borrowed amount rounds to zero")
        cumulative_index = self._current_index()

        slot = self.allocator.acquire(on_behalf_of)
        try:
            with self.atomic():
                self.book.ensure_wallet(slot)
                self.book.ensure_wallet(on_behalf_of)
                self.collateral_filter.init_enabled_tokens(self.address, slot)
                self._transfer(caller, slot, self.underlying_token, amount, EVENT_OPEN)
                self._store(CreditAccount(
                    owner=on_behalf_of,
                    slot=slot,
                    borrowed_amount=borrowed_amount,
                    cumulative_index_at_open=cumulative_index,
                    since_unit=self.clock.current_unit,
                ))
                self._emit(
                    EVENT_OPEN,
                    sender=caller, on_behalf_of=on_behalf_of, slot=slot,
                    amount=amount, borrowed_amount=borrowed_amount,
                    referral_code=referral_code,
                )
                self.pool.lend(borrowed_amount, slot)
        except Exception:
            self.allocator.release(slot)
            raise
        return slot

    def add_collateral(self, caller: Address, on_behalf_of: Address, token: str, amount: int) -> None:
        """
        Move amount of an allowed token from caller into on_behalf_of's account.

        Raises:
            StateError: on_behalf_of has no open account
            ParameterError: amount is not positive
            CollateralError: token is not allowed
            TransferError: the deposit could not be moved
        """
        slot = self.get_credit_account_or_raise(on_behalf_of)
        if amount <= 0:
            raise ParameterError(f"IncorrectAmount: {amount}")
        with self.atomic():
            self.collateral_filter.check_and_enable_token(self.address, slot, token)
            self._transfer(caller, slot, token, amount, EVENT_ADD_COLLATERAL)
            self._emit(EVENT_ADD_COLLATERAL, on_behalf_of=on_behalf_of, token=token, amount=amount)

    def increase_borrowed_amount(self, caller: Address, amount: int) -> None:
        """
        Borrow amount more into caller's account.

        The opening index is recomputed so the interest accrued so far is
        preserved exactly. The health factor after borrowing must stay at or
        above min_health_factor.

        Raises:
            StateError: caller has no open account
            ParameterError: amount not positive or principal would exceed
                            max_amount * max_leverage_factor / 100
            SolvencyError: resulting health factor below min_health_factor
        """
        account = self.get_account(caller)
        if amount <= 0:
            raise ParameterError(f"IncorrectAmount: {amount}")
        new_borrowed = account.borrowed_amount + amount
        if new_borrowed > self.params.max_borrowed_amount:
            raise ParameterError(
                f"IncorrectAmount: borrowed {new_borrowed} exceeds {self.params.max_borrowed_amount}"
            )
        index_now = self._current_index(account)
        new_index = calculate_new_cumulative_index(
            account.borrowed_amount, amount, index_now, account.cumulative_index_at_open
        )
        updated = replace(account, borrowed_amount=new_borrowed, cumulative_index_at_open=new_index)

        with self.atomic():
            self._store(updated)
            weighted_value = self.collateral_filter.calc_threshold_weighted_value(
                account.slot, extra_underlying=amount
            )
            debt = calculate_borrowed_amount_with_interest(new_borrowed, new_index, index_now)
            health_factor = calculate_health_factor(weighted_value, debt)
            if health_factor < self.min_health_factor:
                raise SolvencyError(
                    f"IncorrectAmount: health factor {health_factor} below {self.min_health_factor}"
                )
            self._emit(EVENT_INCREASE_BORROWED, borrower=caller, amount=amount)
            self.pool.lend(amount, account.slot)

    # ========================================================================
    # SETTLEMENT
    # ========================================================================

    def close_credit_account(
        self,
        caller: Address,
        to: Address,
        swap_hints: Optional[Sequence[SwapHint]] = None,
    ) -> ClosePayments:
        """
        Close caller's account: sell every enabled non-underlying token for the
        underlying, repay the pool and send what remains to `to`.

        swap_hints pairs, in bit order, with the enabled non-underlying tokens.

        Raises:
            StateError: no open account, same ordering unit as open, empty `to`,
                        or the account cannot close without loss ("CantCloseWithLoss")
            ParameterError: number of hints does not match the enabled tokens
            CollateralError: a hint routes through a contract that is not allowed
            ExternalCallError: a swap delivered less than its minimum
        """
        account = self.get_account(caller)
        self._require_not_same_unit(account)
        self._require_address(to)
        hints = list(swap_hints or ())
        tokens_to_convert = [
            token for token in self.collateral_filter.enabled_token_list(account.slot)
            if token != self.underlying_token
        ]
        if len(hints) != len(tokens_to_convert):
            raise ParameterError(
                f"IncorrectPathLength: {len(hints)} hints for {len(tokens_to_convert)} tokens"
            )

        with self.atomic():
            self.book.ensure_wallet(to)
            for token, hint in zip(tokens_to_convert, hints):
                self._convert_to_underlying(account.slot, token, hint)
            _, _, total_value, _ = self.collateral_filter.get_credit_account_token_by_id(account.slot, 0)
            payments = self.calc_close_payments(caller, total_value, is_liquidated=False)
            if payments.loss > 0:
                raise StateError(
                    f"CantCloseWithLoss: total value {total_value}, debt "
                    f"{payments.borrowed_amount_with_interest}"
                )
            self._transfer(account.slot, self.pool.address, self.underlying_token,
                           payments.amount_to_pool, EVENT_CLOSE)
            self._transfer(account.slot, to, self.underlying_token,
                           payments.remaining_funds, EVENT_CLOSE)
            self._remove(account)
            self._emit(EVENT_CLOSE, owner=caller, to=to, remaining_funds=payments.remaining_funds)
            self.pool.repay(payments.borrowed_amount, payments.profit, payments.loss)
        self.allocator.release(account.slot)
        return payments

    def _convert_to_underlying(self, slot: Address, token: str, hint: SwapHint) -> None:
        amount_in = self.book.get_balance(slot, token) - self.dust
        if amount_in <= 0:
            return
        target = hint.contract
        self.collateral_filter.revert_if_contract_not_allowed(target.address)
        before = self.book.get_balance(slot, self.underlying_token)
        self._provide_allowance(slot, target.address, token)
        target.execute(slot, SwapOrder(token, self.underlying_token, amount_in, hint.amount_out_min))
        received = self.book.get_balance(slot, self.underlying_token) - before
        if received < hint.amount_out_min:
            raise ExternalCallError(
                f"SlippageExceeded: {token} sold for {received} < {hint.amount_out_min}"
            )

    def repay_credit_account(self, caller: Address, to: Address) -> ClosePayments:
        """
        Repay caller's account from caller's own wallet and send every enabled
        token (less dust) to `to`.

        Raises:
            StateError: no open account, same ordering unit as open, empty `to`,
                        or collateral worth less than the debt ("CantCloseWithLoss")
            TransferError: the repayment or a token payout could not be moved
        """
        account = self.get_account(caller)
        self._require_not_same_unit(account)
        self._require_address(to)
        total_value = self.collateral_filter.calc_total_value(account.slot)
        payments = self.calc_close_payments(caller, total_value, is_liquidated=False)
        if payments.loss > 0:
            raise StateError(
                f"CantCloseWithLoss: total value {total_value}, debt "
                f"{payments.borrowed_amount_with_interest}"
            )

        with self.atomic():
            self.book.ensure_wallet(to)
            self._transfer(caller, self.pool.address, self.underlying_token,
                           payments.amount_to_pool, EVENT_REPAY)
            self._transfer_all_tokens_of(account.slot, to, caller, force=False, event_type=EVENT_REPAY)
            self._remove(account)
            self._emit(EVENT_REPAY, owner=caller, to=to, amount_to_pool=payments.amount_to_pool)
            self.pool.repay(payments.borrowed_amount, payments.profit, payments.loss)
        self.allocator.release(account.slot)
        return payments

    def liquidate_credit_account(
        self,
        caller: Address,
        borrower: Address,
        to: Address,
        force: bool = False,
    ) -> ClosePayments:
        """
        Liquidate borrower's account when its health factor is below 10000.

        The caller pays amount_to_pool to the pool and remaining_funds to the
        borrower, and receives every enabled token (less dust) at `to`.

        With force=True a token that refuses to move to `to` is sent to the
        caller instead; if it refuses that too, it stays in the slot and the
        caller is paid its value in the underlying from the slot.

        Raises:
            StateError: no open account, same ordering unit as open, or empty `to`
            SolvencyError: health factor is 10000 or more
            TransferError: a payment or (without force) a token payout failed
        """
        account = self.get_account(borrower)
        self._require_not_same_unit(account)
        self._require_address(to)
        health_factor = self.collateral_filter.calc_credit_account_health_factor(account.slot)
        if health_factor >= PERCENTAGE_FACTOR:
            raise SolvencyError(f"CantLiquidateWithSuchHealthFactor: {health_factor}")
        total_value = self.collateral_filter.calc_total_value(account.slot)
        payments = self.calc_close_payments(borrower, total_value, is_liquidated=True)

        with self.atomic():
            self.book.ensure_wallet(to)
            self._transfer(caller, self.pool.address, self.underlying_token,
                           payments.amount_to_pool, EVENT_LIQUIDATE)
            self._transfer(caller, borrower, self.underlying_token,
                           payments.remaining_funds, EVENT_LIQUIDATE)
            self._transfer_all_tokens_of(account.slot, to, caller, force=force, event_type=EVENT_LIQUIDATE)
            self._remove(account)
            self._emit(
                EVENT_LIQUIDATE,
                owner=borrower, liquidator=caller, to=to,
                remaining_funds=payments.remaining_funds,
            )
            self.pool.repay(payments.borrowed_amount, payments.profit, payments.loss)
        self.allocator.release(account.slot)
        return payments

    def _transfer_all_tokens_of(
        self,
        slot: Address,
        to: Address,
        caller: Address,
        force: bool,
        event_type: str,
    ) -> None:
        """
        Send every enabled token of slot (balance less dust) to `to`.

        Non-underlying tokens go first so that, in force mode, the underlying
        is still in the slot to compensate the caller for tokens that could
        not be moved at all.
        """
        compensation = 0
        for token in self.collateral_filter.enabled_token_list(slot):
            if token == self.underlying_token:
                continue
            amount = self.book.get_balance(slot, token) - self.dust
            if amount <= 0:
                continue
            try:
                self._transfer(slot, to, token, amount, event_type)
            except TransferError:
                if not force:
                    raise
                logger.warning("Force mode: %s refused transfer to %s, trying caller %s", token, to, caller)
                try:
                    self._transfer(slot, caller, token, amount, event_type)
                except TransferError:
                    value = self.collateral_filter.oracle.convert(amount, token, self.underlying_token)
                    logger.warning("Force mode: %s left in %s, caller compensated %d", token, slot, value)
                    compensation = checked_add(compensation, value)

        underlying_amount = self.book.get_balance(slot, self.underlying_token) - self.dust
        if compensation and underlying_amount > 0:
            paid = min(compensation, underlying_amount)
            self._transfer(slot, caller, self.underlying_token, paid, event_type)
            underlying_amount -= paid
        if underlying_amount > 0:
            self._transfer(slot, to, self.underlying_token, underlying_amount, event_type)

    # ========================================================================
    # ADAPTER PASS-THROUGHS
    # ========================================================================

    def execute_order(
        self,
        caller: Address,
        borrower: Address,
        target: ExternalContract,
        order: Any,
    ) -> Any:
        """
        Have borrower's slot execute an order on target. Only the adapter
        registered for target may call this.

        Raises:
            StateError: borrower has no open account
            AuthorizationError: caller is not target's adapter
        """
        slot = self.get_credit_account_or_raise(borrower)
        self._require_adapter_for(caller, target.address)
        with self.atomic():
            result = target.execute(slot, order)
            self._emit(EVENT_EXECUTE_ORDER, borrower=borrower, target=target.address)
        return result

    def provide_allowance(
        self,
        caller: Address,
        borrower: Address,
        target: ExternalContract,
        token: str,
    ) -> None:
        """Let target spend token from borrower's slot. Only target's adapter may call this."""
        slot = self.get_credit_account_or_raise(borrower)
        self._require_adapter_for(caller, target.address)
        self.collateral_filter.revert_if_token_not_allowed(token)
        self._provide_allowance(slot, target.address, token)

    # ========================================================================
    # OWNERSHIP AND PARAMETERS
    # ========================================================================

    def transfer_account_ownership(self, caller: Address, new_owner: Address) -> None:
        """
        Hand caller's account to new_owner.

        Raises:
            StateError: caller has no account, new_owner is empty or already has one
            AuthorizationError: new_owner has not approved transfers from caller
        """
        account = self.get_account(caller)
        self._require_address(new_owner)
        if self.has_opened_credit_account(new_owner):
            raise StateError(f"IncorrectAccountTransfer: {new_owner} already has an account")
        self.collateral_filter.revert_if_account_transfer_not_allowed(caller, new_owner)
        self._remove(account)
        self._store(replace(account, owner=new_owner))
        self._emit(EVENT_TRANSFER, owner=caller, new_owner=new_owner)

    def set_params(
        self,
        caller: Address,
        min_amount: int,
        max_amount: int,
        max_leverage_factor: int,
        fee_interest: int,
        fee_liquidation: int,
        liquidation_discount: int,
    ) -> None:
        """
        Replace limits and fees. The underlying liquidation threshold follows.

        Raises:
            AuthorizationError: caller is not the configurator
            ParameterError: the combination is invalid
            CollateralError: an allowed token's threshold exceeds the new
                             underlying threshold
        """
        self._require_configurator(caller)
        new_params = CreditParams(
            min_amount=min_amount,
            max_amount=max_amount,
            max_leverage_factor=max_leverage_factor,
            fee_interest=fee_interest,
            fee_liquidation=fee_liquidation,
            liquidation_discount=liquidation_discount,
        )
        old_params = self.params
        self.params = new_params
        try:
            self.collateral_filter.update_underlying_token_liquidation_threshold(self.address)
        except CollateralError:
            self.params = old_params
            raise
        self._emit(
            EVENT_NEW_PARAMETERS,
            min_amount=min_amount, max_amount=max_amount,
            max_leverage_factor=max_leverage_factor, fee_interest=fee_interest,
            fee_liquidation=fee_liquidation, liquidation_discount=liquidation_discount,
        )
