"""
Core types, constants and protocols for the credit account system.

This module provides the foundational pieces shared by every other module:
1. Constants: fixed-point scales, percentage factor, leverage decimals, limits
2. Exceptions: CreditError taxonomy and token-ledger error types
3. Protocols: read-only token view and the external collaborators
   (pool, price oracle, account allocator, ordering clock, external contracts)
4. Immutable data structures: Move, PendingTransaction, Transaction, Token
5. Orders: SwapOrder and SwapHint used when converting collateral

Amounts are plain integers in the token's smallest unit. Percentages are
basis points out of PERCENTAGE_FACTOR. Fractional values use WAD (1e18) or
RAY (1e27) fixed point.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum
from typing import (
    Dict, List, Set, Optional, Callable, Any, Protocol,
    Tuple, FrozenSet, runtime_checkable,
)


# ============================================================================
# CONSTANTS
# ============================================================================

# Reserved wallet for token issuance. Exempt from balance validation.
SYSTEM_WALLET = "system"

# Empty identity, the equivalent of an unset address.
ZERO_ADDRESS = ""

WAD = 10 ** 18
HALF_WAD = WAD // 2
RAY = 10 ** 27
HALF_RAY = RAY // 2
WAD_RAY_RATIO = 10 ** 9

PERCENTAGE_FACTOR = 10_000
HALF_PERCENT = PERCENTAGE_FACTOR // 2

# leverage_factor = 100 means 1x borrowed per 1x deposited
LEVERAGE_DECIMALS = 100

MAX_UINT256 = 2 ** 256 - 1

# Width of the enabled-tokens mask
MAX_ALLOWED_TOKENS = 256

# Minimal unit left behind on every payout from a credit account
DUST_RETENTION = 1

SECONDS_PER_YEAR = 365 * 24 * 3600

DEFAULT_FEE_INTEREST = 1000        # 10% of accrued interest
DEFAULT_FEE_LIQUIDATION = 200      # 2% of discounted funds
DEFAULT_LIQUIDATION_DISCOUNT = 9500

DEFAULT_CHI_THRESHOLD = 9800       # realized trade price within 98% of oracle
DEFAULT_HF_CHECK_INTERVAL = 4


# ============================================================================
# TYPE ALIASES
# ============================================================================

# Wallets, slots, contracts and adapters are all identified by a string address.
Address = str

# Mapping from wallet ID to quantity held by that wallet for a specific token.
Positions = Dict[str, int]

# Mapping from token symbol to quantity held in a single wallet.
BalanceMap = Dict[str, int]

# Free-form token state (pause flags, issuer data, ...).
TokenState = Dict[str, Any]


# ============================================================================
# EXCEPTIONS
# ============================================================================

class CreditError(Exception):
    """Base exception for all credit account errors."""
    pass


class ParameterError(CreditError):
    """Raised for bad bounds, lengths, fees or leverage, before any mutation."""
    pass


class MathError(ParameterError):
    """Raised when fixed-point arithmetic overflows uint256 or divides by zero."""
    pass


class StateError(CreditError):
    """Raised for missing or already-open accounts, same-unit operations and refused closes."""
    pass


class AuthorizationError(CreditError):
    """Raised when the caller is not the configurator, owner, adapter or connected ledger."""
    pass


class CollateralError(CreditError):
    """Raised when a token or contract is not allowed, or the token registry is full."""
    pass


class SolvencyError(CreditError):
    """Raised when a health factor is below what an operation requires."""
    pass


class TransferError(CreditError):
    """Raised when a token movement is rejected outside force-mode liquidation."""
    pass


class ExternalCallError(CreditError):
    """Raised when a collaborator returns an unusable result (zero or stale price, index regression)."""
    pass


class TokenLedgerError(Exception):
    """Base exception for token ledger errors."""
    pass


class InsufficientFunds(TokenLedgerError):
    """Raised when a move would take a wallet balance below zero."""
    pass


class TransferRuleViolation(TokenLedgerError):
    """Raised when a move violates the token's transfer rule."""
    pass


class TokenNotRegistered(TokenLedgerError):
    """Raised when operating on a token that is not registered with the ledger."""
    pass


class WalletNotRegistered(TokenLedgerError):
    """Raised when operating on a wallet that is not registered with the ledger."""
    pass


# ============================================================================
# PROTOCOLS
# ============================================================================

@runtime_checkable
class OrderingClock(Protocol):
    """
    Source of logical ordering units (the equivalent of block numbers).

    Two operations observed in the same unit are considered to happen
    in the same atomic batch.
    """

    @property
    def current_unit(self) -> int:
        ...


@runtime_checkable
class TokenView(Protocol):
    """
    Read-only interface to token ledger state.

    Transfer rules and valuation code receive a TokenView so they can query
    balances without being able to modify them.
    """

    @property
    def current_unit(self) -> int:
        """Return the current ordering unit."""
        ...

    def get_balance(self, wallet_id: str, token_symbol: str) -> int:
        """Return the balance of a token in a wallet."""
        ...

    def get_token_state(self, token_symbol: str) -> TokenState:
        """Return a copy of the token's state."""
        ...

    def get_positions(self, token_symbol: str) -> Positions:
        """Return all non-zero positions for a token across all wallets."""
        ...

    def list_wallets(self) -> Set[str]:
        """Return the set of registered wallet IDs."""
        ...

    def get_token(self, symbol: str) -> 'Token':
        """Return the Token object for a given symbol."""
        ...


@runtime_checkable
class PoolService(Protocol):
    """
    Lending pool as seen by the position ledger.

    lend() moves underlying from the pool into a credit account slot.
    repay() is called after the pool has already received its payment and
    only books the principal, profit and loss.
    """

    address: Address
    underlying_token: str

    def lend(self, amount: int, recipient: Address) -> None:
        ...

    def repay(self, borrowed_amount: int, profit: int, loss: int) -> None:
        ...

    def current_cumulative_index(self) -> int:
        ...

    @property
    def borrow_rate(self) -> int:
        ...


@runtime_checkable
class PriceOracle(Protocol):
    """Converts amounts between any two priced tokens."""

    def convert(self, amount: int, token_from: str, token_to: str) -> int:
        ...

    def get_price(self, token: str, quote_token: str) -> int:
        ...


@runtime_checkable
class AccountAllocator(Protocol):
    """Supplies and recycles the slots that hold credit account funds."""

    def acquire(self, owner_hint: Address) -> Address:
        ...

    def release(self, slot: Address) -> None:
        ...


@runtime_checkable
class ExternalContract(Protocol):
    """
    A third-party contract (exchange, vault, ...) that a credit account can
    interact with. Orders are executed with the slot as the acting wallet.
    """

    address: Address

    def execute(self, account: Address, order: Any) -> Any:
        ...


# ============================================================================
# ENUMS
# ============================================================================

class ExecuteResult(Enum):
    """
    Outcome of a transaction execution attempt.

    APPLIED: Transaction was validated and applied to the ledger.
    REJECTED: Transaction failed validation (insufficient funds, transfer
              rule violation, unknown wallet or token). Nothing changed.
    """
    APPLIED = "applied"
    REJECTED = "rejected"


class OriginType(Enum):
    """Classification of where a token transaction originated."""
    USER_ACTION = "user_action"           # Deposit or payment made by a wallet owner
    CREDIT_MANAGER = "credit_manager"     # Movement ordered by the position ledger
    POOL = "pool"                         # Lending pool liquidity movement
    CONTRACT = "contract"                 # External contract (exchange, vault)
    SYSTEM = "system"                     # Issuance and initial setup


# ============================================================================
# TRANSACTION ORIGIN
# ============================================================================

@dataclass(frozen=True, slots=True)
class TransactionOrigin:
    """
    Immutable record of a transaction's origin for audit purposes.

    Attributes:
        origin_type: Classification of the origin source
        source_id: Identifier of the specific source (wallet, contract, ledger)
        event_type: Specific event within the source (e.g. "OPEN", "LIQUIDATE")
    """
    origin_type: OriginType
    source_id: str
    event_type: Optional[str] = None

    def __repr__(self) -> str:
        parts = [f"{self.origin_type.value}:{self.source_id}"]
        if self.event_type:
            parts.append(f"event={self.event_type}")
        return f"Origin({', '.join(parts)})"


# ============================================================================
# CORE DATA STRUCTURES
# ============================================================================

@dataclass(frozen=True, slots=True)
class Move:
    """
    A single transfer of a token between two wallets.

    Attributes:
        quantity: Amount in the token's smallest unit (positive integer).
        token_symbol: Symbol of the token being transferred.
        source: Wallet debited.
        dest: Wallet credited.
        contract_id: Identifier of whoever generated this move.
    """
    quantity: int
    token_symbol: str
    source: str
    dest: str
    contract_id: str

    def __post_init__(self):
        if not self.source or not self.source.strip():
            raise ValueError("Move source cannot be empty")
        if not self.dest or not self.dest.strip():
            raise ValueError("Move dest cannot be empty")
        if not self.token_symbol or not self.token_symbol.strip():
            raise ValueError("Move token_symbol cannot be empty")
        if not self.contract_id or not self.contract_id.strip():
            raise ValueError("Move contract_id cannot be empty")
        if isinstance(self.quantity, bool) or not isinstance(self.quantity, int):
            raise ValueError(f"Move quantity must be int, got {type(self.quantity)}")
        if self.quantity <= 0:
            raise ValueError(f"Move quantity must be positive, got {self.quantity}")
        if self.quantity > MAX_UINT256:
            raise ValueError("Move quantity exceeds uint256")
        if self.source == self.dest:
            raise ValueError("Source and dest must be different")

    def __repr__(self) -> str:
        return f"Move({self.quantity} {self.token_symbol}: {self.source}→{self.dest})"


@dataclass(frozen=True, slots=True)
class PendingTransaction:
    """
    A set of moves before execution - represents INTENT.

    Attributes:
        moves: Tuple of token transfers, applied in order
        origin: Who/what created this transaction and why
        ordering_unit: Ordering unit in which the transaction was built
    """
    moves: Tuple[Move, ...]
    origin: TransactionOrigin
    ordering_unit: int = 0

    def is_empty(self) -> bool:
        """Return True if this pending transaction has no moves."""
        return not self.moves

    def __repr__(self) -> str:
        return f"PendingTransaction({len(self.moves)} moves, {self.origin})"


def build_transaction(
    view: TokenView,
    moves: List[Move],
    origin: Optional[TransactionOrigin] = None,
) -> PendingTransaction:
    """
    Build a PendingTransaction from moves.

    Args:
        view: Read-only token view (provides current_unit)
        moves: Moves to include, in execution order
        origin: Transaction origin (defaults to a CONTRACT origin)
    """
    if origin is None:
        origin = TransactionOrigin(
            origin_type=OriginType.CONTRACT,
            source_id="contract",
        )
    return PendingTransaction(
        moves=tuple(moves),
        origin=origin,
        ordering_unit=view.current_unit,
    )


@dataclass(frozen=True, slots=True)
class Transaction:
    """
    An executed, immutable record of balance changes - represents FACT.

    Attributes:
        moves: Tuple of token transfers
        origin: Who/what created this transaction and why
        ordering_unit: Ordering unit in which it executed
        exec_id: Unique execution identifier (ledger + sequence)
        ledger_name: Name of the ledger that executed this
        sequence_number: Monotonic sequence within the ledger
        contract_ids: Set of contract IDs from moves (auto-populated)
    """
    moves: Tuple[Move, ...]
    origin: TransactionOrigin
    ordering_unit: int
    exec_id: str
    ledger_name: str
    sequence_number: int
    contract_ids: FrozenSet[str] = None

    def __post_init__(self):
        if not self.moves:
            raise ValueError("Transaction must have moves")
        if self.contract_ids is None:
            object.__setattr__(
                self, 'contract_ids',
                frozenset(m.contract_id for m in self.moves)
            )

    def __repr__(self) -> str:
        moves = ", ".join(repr(m) for m in self.moves)
        return f"Transaction({self.exec_id}, {self.origin}, [{moves}])"


# Transfer rules validate moves and raise TransferRuleViolation if invalid.
TransferRule = Callable[[TokenView, Move], None]


def _freeze_state(state: Optional[TokenState]) -> Tuple[Tuple[str, Any], ...]:
    """Convert a state dict to a sorted tuple of (key, value) pairs."""
    if not state:
        return ()
    return tuple(sorted(state.items()))


def _thaw_state(frozen_state: Tuple[Tuple[str, Any], ...]) -> TokenState:
    """Convert a frozen state back to a dict."""
    return dict(frozen_state)


@dataclass(frozen=True, slots=True)
class Token:
    """
    Definition of a fungible token held in the ledger.

    Attributes:
        symbol: Short identifier (e.g. "DAI", "WETH").
        name: Human-readable name.
        decimals: Number of decimals of the smallest unit (metadata for pricing).
        transfer_rule: Optional function to validate moves of this token.
        _frozen_state: Internal frozen state (tuple of key-value pairs).
    """
    symbol: str
    name: str
    decimals: int = 18
    transfer_rule: Optional[TransferRule] = None
    _frozen_state: Tuple[Tuple[str, Any], ...] = field(default_factory=tuple)

    def __post_init__(self):
        if not self.symbol or not self.symbol.strip():
            raise ValueError("Token symbol cannot be empty")
        if self.decimals < 0 or self.decimals > 36:
            raise ValueError(f"Token decimals out of range: {self.decimals}")

    @property
    def state(self) -> TokenState:
        """Return the token's state as a new dict."""
        return _thaw_state(self._frozen_state)

    @property
    def unit(self) -> int:
        """One whole token in smallest units."""
        return 10 ** self.decimals


def erc20(
    symbol: str,
    name: str,
    decimals: int = 18,
    transfer_rule: Optional[TransferRule] = None,
    state: Optional[TokenState] = None,
) -> Token:
    """Create a standard fungible token."""
    return Token(
        symbol=symbol,
        name=name,
        decimals=decimals,
        transfer_rule=transfer_rule,
        _frozen_state=_freeze_state(state),
    )


def pausable_transfer_rule(view: TokenView, move: Move) -> None:
    """
    Reject every move while the token state has 'transfers_paused' set.

    Models a token whose issuer can freeze it; a frozen token must not be
    able to block a liquidation that runs in force mode.
    """
    state = view.get_token_state(move.token_symbol)
    if state.get('transfers_paused'):
        raise TransferRuleViolation(f"{move.token_symbol} transfers are paused")


# ============================================================================
# ORDERS
# ============================================================================

@dataclass(frozen=True, slots=True)
class SwapOrder:
    """
    Request to an exchange contract: sell amount_in of token_in for token_out.

    The exchange must deliver at least amount_out_min of token_out to the
    acting account or refuse the order.
    """
    token_in: str
    token_out: str
    amount_in: int
    amount_out_min: int = 0

    def __post_init__(self):
        if self.amount_in <= 0:
            raise ValueError("SwapOrder amount_in must be positive")
        if self.amount_out_min < 0:
            raise ValueError("SwapOrder amount_out_min cannot be negative")
        if self.token_in == self.token_out:
            raise ValueError("SwapOrder tokens must differ")


@dataclass(frozen=True, slots=True)
class SwapHint:
    """
    How to convert one enabled non-underlying token into the underlying
    when a credit account is closed: which external contract to route the
    sale through and the minimum acceptable output.
    """
    contract: ExternalContract
    amount_out_min: int = 0
