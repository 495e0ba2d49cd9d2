"""
ledger.py - Double-Entry Token Ledger

The TokenLedger holds every integer token balance in the system: user
wallets, credit account slots, the lending pool and external contracts.
It is the only module that mutates balances, so every movement is
validated and logged in one place.

Key responsibilities:
    - Implements the TokenView protocol for read-only access
    - Executes transactions atomically (all moves succeed or none do)
    - Enforces per-token transfer rules and non-negative balances
    - Tracks allowances for spenders acting on behalf of a wallet
    - Provides atomic() so callers can group several transactions and
      roll all of them back if a later step raises
"""

from __future__ import annotations
from collections import defaultdict
from contextlib import contextmanager
from dataclasses import replace
from typing import Dict, List, Set, Optional, Tuple, Any, Iterator
import copy
import logging

from .core import (
    Move, Transaction, Token, PendingTransaction, TransactionOrigin, build_transaction,
    ExecuteResult, OriginType, OrderingClock,
    Positions, TokenState, BalanceMap,
    SYSTEM_WALLET, MAX_UINT256,
    TokenLedgerError, InsufficientFunds, TransferRuleViolation,
    TokenNotRegistered, WalletNotRegistered,
    _freeze_state,
)

logger = logging.getLogger(__name__)


class TokenLedger:
    """
    Double-entry token ledger with validation and audit trail.

    Every applied transaction is recorded in transaction_log with a
    monotonic sequence number and the ordering unit it executed in.
    Rejected transactions leave no trace in balances.

    Thread Safety:
        Not thread-safe. Each operation is expected to run to completion
        before the next one starts.

    Example:
        book = TokenLedger("main", clock)
        book.register_token(erc20("DAI", "Dai Stablecoin"))
        book.register_wallet("alice")
        book.mint("alice", "DAI", 1000 * WAD)
        book.transfer("alice", "bob", "DAI", 10 * WAD)
    """

    def __init__(self, name: str, clock: Optional[OrderingClock] = None, test_mode: bool = False):
        """
        Create a token ledger.

        Args:
            name: Ledger identifier
            clock: Ordering clock stamped on every transaction (unit 0 if omitted)
            test_mode: Allow set_balance() calls
        """
        self.name = name
        self.clock = clock
        self.balances: Dict[str, Dict[str, int]] = {}
        self.tokens: Dict[str, Token] = {}
        self.registered_wallets: Set[str] = set()
        self.allowances: Dict[Tuple[str, str, str], int] = {}
        self.transaction_log: List[Transaction] = []
        self._test_mode = test_mode
        self._next_sequence: int = 0
        # token -> {wallet -> quantity}, only non-zero entries
        self._positions_by_token: Dict[str, Dict[str, int]] = defaultdict(dict)

        self.registered_wallets.add(SYSTEM_WALLET)
        self.balances[SYSTEM_WALLET] = defaultdict(int)

    # ========================================================================
    # TokenView PROTOCOL IMPLEMENTATION (read-only methods)
    # ========================================================================

    @property
    def current_unit(self) -> int:
        """Current ordering unit, taken from the clock."""
        return self.clock.current_unit if self.clock is not None else 0

    def get_balance(self, wallet_id: str, token_symbol: str) -> int:
        """
        Get the balance of a token in a wallet.

        Raises:
            WalletNotRegistered: If wallet is not registered
            TokenNotRegistered: If token is not registered
        """
        if wallet_id not in self.registered_wallets:
            raise WalletNotRegistered(f"Wallet {wallet_id} not registered")
        if token_symbol not in self.tokens:
            raise TokenNotRegistered(f"Token {token_symbol} not registered")
        return self.balances[wallet_id].get(token_symbol, 0)

    def get_token_state(self, token_symbol: str) -> TokenState:
        """Get a deep copy of a token's state."""
        return copy.deepcopy(self.get_token(token_symbol).state)

    def get_positions(self, token_symbol: str) -> Positions:
        """All non-zero positions for a token across wallets."""
        return dict(self._positions_by_token.get(token_symbol, {}))

    def list_wallets(self) -> Set[str]:
        return self.registered_wallets.copy()

    def list_tokens(self) -> List[str]:
        return sorted(self.tokens.keys())

    def get_token(self, symbol: str) -> Token:
        if symbol not in self.tokens:
            raise TokenNotRegistered(f"Token {symbol} not registered")
        return self.tokens[symbol]

    def get_wallet_balances(self, wallet_id: str) -> BalanceMap:
        if wallet_id not in self.registered_wallets:
            raise WalletNotRegistered(f"Wallet {wallet_id} not registered")
        return {sym: qty for sym, qty in self.balances[wallet_id].items() if qty}

    def is_registered(self, wallet_id: str) -> bool:
        return wallet_id in self.registered_wallets

    def total_supply(self, token_symbol: str) -> int:
        """
        Total supply of a token across all non-system wallets.

        Equals the amount minted minus the amount burned; the system wallet
        carries the negative counterpart of issuance.
        """
        if token_symbol not in self.tokens:
            raise TokenNotRegistered(f"Token {token_symbol} not registered")
        return sum(
            self.balances[w].get(token_symbol, 0)
            for w in sorted(self.registered_wallets) if w != SYSTEM_WALLET
        )

    def verify_double_entry(self, expected_supplies: Optional[Dict[str, int]] = None) -> Dict[str, Any]:
        """
        Verify that every token nets to zero across all wallets (including the
        system wallet) and, optionally, that circulating supplies match.

        Returns:
            Dict with 'valid', 'supplies' and 'discrepancies'.
        """
        supplies = {}
        discrepancies = []
        for token_symbol in self.tokens:
            net = sum(self.balances[w].get(token_symbol, 0) for w in self.registered_wallets)
            if net != 0:
                discrepancies.append({'token': token_symbol, 'error': 'non-zero net', 'net': net})
            supply = self.total_supply(token_symbol)
            supplies[token_symbol] = supply
            if expected_supplies and token_symbol in expected_supplies:
                if supply != expected_supplies[token_symbol]:
                    discrepancies.append({
                        'token': token_symbol,
                        'expected': expected_supplies[token_symbol],
                        'actual': supply,
                    })
        return {
            'valid': not discrepancies,
            'supplies': supplies,
            'discrepancies': discrepancies,
        }

    def allowance(self, owner: str, spender: str, token_symbol: str) -> int:
        return self.allowances.get((owner, spender, token_symbol), 0)

    # ========================================================================
    # REGISTRATION (Mutating)
    # ========================================================================

    def register_wallet(self, wallet_id: str) -> str:
        """
        Register a new wallet.

        Raises:
            ValueError: If wallet is already registered or the id is empty
        """
        if not wallet_id or not wallet_id.strip():
            raise ValueError("Wallet id cannot be empty")
        if wallet_id in self.registered_wallets:
            raise ValueError(f"Wallet {wallet_id} already registered")
        self.registered_wallets.add(wallet_id)
        self.balances[wallet_id] = defaultdict(int)
        return wallet_id

    def ensure_wallet(self, wallet_id: str) -> str:
        """Register a wallet unless it already exists."""
        if wallet_id not in self.registered_wallets:
            self.register_wallet(wallet_id)
        return wallet_id

    def register_token(self, token: Token) -> None:
        """
        Register a new token.

        Raises:
            ValueError: If the symbol is already registered
        """
        if token.symbol in self.tokens:
            raise ValueError(f"Token {token.symbol} already registered")
        self.tokens[token.symbol] = token
        rule_str = f", rule={token.transfer_rule.__name__}" if token.transfer_rule else ""
        logger.debug("Registered token %s (%s) decimals=%d%s", token.symbol, token.name, token.decimals, rule_str)

    def update_token_state(self, token_symbol: str, state_updates: TokenState) -> None:
        """Merge state_updates into a token's state."""
        old_token = self.get_token(token_symbol)
        new_state = {**old_token.state, **state_updates}
        self.tokens[token_symbol] = replace(old_token, _frozen_state=_freeze_state(new_state))

    def set_balance(self, wallet_id: str, token_symbol: str, quantity: int) -> None:
        """
        Overwrite a wallet balance directly. Test mode only.

        Raises:
            TokenLedgerError: If called when test_mode is False
        """
        if not self._test_mode:
            raise TokenLedgerError(
                "set_balance() is disabled in production mode. "
                "Use mint() or execute() to modify balances."
            )
        if wallet_id not in self.registered_wallets:
            raise WalletNotRegistered(f"Wallet {wallet_id} not registered")
        if token_symbol not in self.tokens:
            raise TokenNotRegistered(f"Token {token_symbol} not registered")
        self.balances[wallet_id][token_symbol] = quantity
        self._update_position_index(wallet_id, token_symbol, quantity)

    def approve(self, owner: str, spender: str, token_symbol: str, amount: int) -> None:
        """Set the amount spender may move out of owner's wallet."""
        if owner not in self.registered_wallets:
            raise WalletNotRegistered(f"Wallet {owner} not registered")
        self.get_token(token_symbol)
        if amount < 0 or amount > MAX_UINT256:
            raise ValueError(f"Allowance out of range: {amount}")
        self.allowances[(owner, spender, token_symbol)] = amount

    # ========================================================================
    # TRANSACTION EXECUTION (Mutating)
    # ========================================================================

    def _generate_exec_id(self, sequence: int) -> str:
        return f"exec:{self.name}:{sequence:012d}:{self.current_unit}"

    def execute(self, pending: PendingTransaction) -> ExecuteResult:
        """
        Execute a PendingTransaction atomically.

        All moves are validated against the current balances (in order, so a
        later move may spend what an earlier one delivered) before anything
        is applied.

        Returns:
            ExecuteResult.APPLIED if successful
            ExecuteResult.REJECTED if validation failed (nothing changed)
        """
        if pending.is_empty():
            return ExecuteResult.APPLIED

        valid, reason = self._validate_pending(pending)
        if not valid:
            logger.debug("REJECTED %r: %s", pending, reason)
            return ExecuteResult.REJECTED

        sequence = self._next_sequence
        self._next_sequence += 1

        tx = Transaction(
            moves=pending.moves,
            origin=pending.origin,
            ordering_unit=self.current_unit,
            exec_id=self._generate_exec_id(sequence),
            ledger_name=self.name,
            sequence_number=sequence,
        )
        self._execute_moves(tx.moves)
        self.transaction_log.append(tx)
        logger.debug("APPLIED %s (%d moves, %s)", tx.exec_id, len(tx.moves), tx.origin)
        return ExecuteResult.APPLIED

    def _validate_pending(self, pending: PendingTransaction) -> Tuple[bool, str]:
        """
        Validate a pending transaction against registration, transfer rules
        and non-negative balances.

        Returns:
            (True, "") or (False, reason)
        """
        for move in pending.moves:
            if move.token_symbol not in self.tokens:
                return False, f"token not registered: {move.token_symbol}"
            if not self.is_registered(move.source):
                return False, f"wallet not registered: {move.source}"
            if not self.is_registered(move.dest):
                return False, f"wallet not registered: {move.dest}"

            token = self.tokens[move.token_symbol]
            if token.transfer_rule:
                try:
                    token.transfer_rule(self, move)
                except TransferRuleViolation as e:
                    return False, str(e)

        # Replay balances move by move; SYSTEM_WALLET may go negative (issuance).
        running: Dict[Tuple[str, str], int] = {}
        for move in pending.moves:
            key_src = (move.source, move.token_symbol)
            key_dst = (move.dest, move.token_symbol)
            src = running.get(key_src, self.balances[move.source][move.token_symbol]) - move.quantity
            if move.source != SYSTEM_WALLET and src < 0:
                return False, f"{move.source} {move.token_symbol}: {src} < 0"
            running[key_src] = src
            dst = running.get(key_dst, self.balances[move.dest][move.token_symbol]) + move.quantity
            if dst > MAX_UINT256:
                return False, f"{move.dest} {move.token_symbol}: balance overflow"
            running[key_dst] = dst

        return True, ""

    def _update_position_index(self, wallet_id: str, token_symbol: str, quantity: int) -> None:
        if quantity != 0:
            self._positions_by_token[token_symbol][wallet_id] = quantity
        else:
            self._positions_by_token[token_symbol].pop(wallet_id, None)

    def _execute_moves(self, moves) -> None:
        for move in moves:
            new_src_balance = self.balances[move.source][move.token_symbol] - move.quantity
            self.balances[move.source][move.token_symbol] = new_src_balance
            self._update_position_index(move.source, move.token_symbol, new_src_balance)
            new_dst_balance = self.balances[move.dest][move.token_symbol] + move.quantity
            self.balances[move.dest][move.token_symbol] = new_dst_balance
            self._update_position_index(move.dest, move.token_symbol, new_dst_balance)

    # ========================================================================
    # CONVENIENCE OPERATIONS
    # ========================================================================

    def transfer(
        self,
        source: str,
        dest: str,
        token_symbol: str,
        amount: int,
        origin: Optional[TransactionOrigin] = None,
        contract_id: Optional[str] = None,
    ) -> ExecuteResult:
        """Move amount of token_symbol from source to dest as one transaction."""
        if origin is None:
            origin = TransactionOrigin(OriginType.USER_ACTION, source)
        move = Move(amount, token_symbol, source, dest, contract_id or origin.source_id)
        return self.execute(build_transaction(self, [move], origin))

    def transfer_from(
        self,
        spender: str,
        source: str,
        dest: str,
        token_symbol: str,
        amount: int,
    ) -> ExecuteResult:
        """
        Move tokens out of source on the authority of spender's allowance.

        The allowance is consumed only if the transfer is applied. An
        allowance of MAX_UINT256 is treated as unlimited.
        """
        current = self.allowance(source, spender, token_symbol)
        if current < amount:
            logger.debug("REJECTED transfer_from: %s allowance %d < %d", spender, current, amount)
            return ExecuteResult.REJECTED
        result = self.transfer(
            source, dest, token_symbol, amount,
            origin=TransactionOrigin(OriginType.CONTRACT, spender),
        )
        if result == ExecuteResult.APPLIED and current != MAX_UINT256:
            self.allowances[(source, spender, token_symbol)] = current - amount
        return result

    def mint(self, wallet_id: str, token_symbol: str, amount: int) -> ExecuteResult:
        """Issue new tokens into a wallet from SYSTEM_WALLET."""
        return self.transfer(
            SYSTEM_WALLET, wallet_id, token_symbol, amount,
            origin=TransactionOrigin(OriginType.SYSTEM, SYSTEM_WALLET, "MINT"),
        )

    # ========================================================================
    # ATOMIC GROUPS
    # ========================================================================

    def _snapshot(self) -> Tuple[Any, ...]:
        return (
            {w: dict(b) for w, b in self.balances.items()},
            dict(self.tokens),
            set(self.registered_wallets),
            dict(self.allowances),
            len(self.transaction_log),
            self._next_sequence,
        )

    def _restore(self, snapshot: Tuple[Any, ...]) -> None:
        balances, tokens, wallets, allowances, log_length, sequence = snapshot
        self.balances = {w: defaultdict(int, b) for w, b in balances.items()}
        self.tokens = tokens
        self.registered_wallets = wallets
        self.allowances = allowances
        del self.transaction_log[log_length:]
        self._next_sequence = sequence
        self._positions_by_token = defaultdict(dict)
        for wallet, held in self.balances.items():
            for token_symbol, quantity in held.items():
                self._update_position_index(wallet, token_symbol, quantity)

    @contextmanager
    def atomic(self) -> Iterator[TokenLedger]:
        """
        Group several transactions into one all-or-nothing unit.

        If the body raises, balances, allowances, token state, wallet
        registrations and the transaction log are restored to what they were
        on entry and the exception propagates. Nesting is allowed.
        """
        snapshot = self._snapshot()
        try:
            yield self
        except BaseException:
            self._restore(snapshot)
            logger.debug("Rolled back %s to sequence %d", self.name, snapshot[5])
            raise

    def clone(self) -> TokenLedger:
        """Deep copy of this ledger (the clock is shared, not copied)."""
        cloned = TokenLedger(self.name, self.clock, self._test_mode)
        cloned._restore(self._snapshot())
        cloned.transaction_log = list(self.transaction_log)
        return cloned
