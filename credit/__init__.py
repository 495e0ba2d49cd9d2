"""
credit - Leveraged Credit Account Core

Integer-exact credit accounts on top of a double-entry token ledger:
accounts borrow the underlying from a lending pool, hold allowed collateral,
trade through registered adapters and are settled by close, repay or
liquidation.

Usage:
    from credit import (
        TokenLedger, SequenceClock, StaticPriceOracle, LinearIndexPool,
        SlotAllocator, CollateralFilter, PositionLedger, CreditParams,
        erc20, WAD,
    )

    clock = SequenceClock()
    book = TokenLedger("main", clock)
    book.register_token(erc20("DAI", "Dai Stablecoin"))
    book.register_wallet("alice")
    book.register_wallet("lp")
    book.mint("alice", "DAI", 1_000 * WAD)
    book.mint("lp", "DAI", 1_000_000 * WAD)

    oracle = StaticPriceOracle()
    oracle.add_price_feed("DAI", WAD)
    pool = LinearIndexPool(book, "DAI", clock)
    pool.add_liquidity("lp", 1_000_000 * WAD)

    collateral = CollateralFilter(book, oracle, "DAI", configurator="admin")
    manager = PositionLedger(
        book, pool, collateral, SlotAllocator(book), clock,
        CreditParams(min_amount=WAD, max_amount=10_000 * WAD, max_leverage_factor=400),
        configurator="admin",
    )

    slot = manager.open_credit_account("alice", 100 * WAD, "alice", 300)
    clock.advance()
    manager.repay_credit_account("alice", "alice")
"""

# Core types
from .core import (
    Address,
    OrderingClock,
    TokenView,
    PoolService,
    PriceOracle,
    AccountAllocator,
    ExternalContract,
    Move,
    Transaction,
    PendingTransaction,
    TransactionOrigin,
    OriginType,
    ExecuteResult,
    build_transaction,
    Token,
    erc20,
    pausable_transfer_rule,
    SwapOrder,
    SwapHint,
    # Errors
    CreditError,
    ParameterError,
    MathError,
    StateError,
    AuthorizationError,
    CollateralError,
    SolvencyError,
    TransferError,
    ExternalCallError,
    TokenLedgerError,
    InsufficientFunds,
    TransferRuleViolation,
    TokenNotRegistered,
    WalletNotRegistered,
    # Constants
    SYSTEM_WALLET,
    ZERO_ADDRESS,
    WAD,
    RAY,
    PERCENTAGE_FACTOR,
    LEVERAGE_DECIMALS,
    MAX_UINT256,
    MAX_ALLOWED_TOKENS,
    DUST_RETENTION,
    SECONDS_PER_YEAR,
)

# Fixed-point arithmetic
from .fixed_point import (
    checked_add,
    checked_mul,
    mul_div,
    wad_mul,
    wad_div,
    ray_mul,
    ray_div,
    ray_to_wad,
    wad_to_ray,
    percent_mul,
    percent_div,
    calc_linear_cumulative_index,
)

# Token ledger
from .ledger import TokenLedger

# Configuration
from .params import CreditParams, FastCheckParams

# Settlement math
from .settlement import (
    ClosePayments,
    calculate_borrowed_amount,
    calculate_borrowed_amount_with_interest,
    calculate_new_cumulative_index,
    calculate_close_payments,
    calculate_health_factor,
    calculate_min_health_factor,
    calculate_max_possible_drop,
)

# Collaborators
from .clock import SequenceClock
from .oracle import StaticPriceOracle
from .pool import LinearIndexPool
from .allocator import SlotAllocator

# Credit core
from .collateral_filter import CollateralFilter
from .position_ledger import PositionLedger, CreditAccount, CreditEvent

__all__ = [
    # Core
    'Address', 'OrderingClock', 'TokenView', 'PoolService', 'PriceOracle',
    'AccountAllocator', 'ExternalContract',
    'Move', 'Transaction', 'PendingTransaction', 'TransactionOrigin', 'OriginType',
    'ExecuteResult', 'build_transaction', 'Token', 'erc20', 'pausable_transfer_rule',
    'SwapOrder', 'SwapHint',
    # Errors
    'CreditError', 'ParameterError', 'MathError', 'StateError', 'AuthorizationError',
    'CollateralError', 'SolvencyError', 'TransferError', 'ExternalCallError',
    'TokenLedgerError', 'InsufficientFunds', 'TransferRuleViolation',
    'TokenNotRegistered', 'WalletNotRegistered',
    # Constants
    'SYSTEM_WALLET', 'ZERO_ADDRESS', 'WAD', 'RAY', 'PERCENTAGE_FACTOR',
    'LEVERAGE_DECIMALS', 'MAX_UINT256', 'MAX_ALLOWED_TOKENS', 'DUST_RETENTION',
    'SECONDS_PER_YEAR',
    # Fixed point
    'checked_add', 'checked_mul', 'mul_div', 'wad_mul', 'wad_div', 'ray_mul', 'ray_div',
    'ray_to_wad', 'wad_to_ray', 'percent_mul', 'percent_div', 'calc_linear_cumulative_index',
    # Ledger and config
    'TokenLedger', 'CreditParams', 'FastCheckParams',
    # Settlement
    'ClosePayments', 'calculate_borrowed_amount', 'calculate_borrowed_amount_with_interest',
    'calculate_new_cumulative_index', 'calculate_close_payments', 'calculate_health_factor',
    'calculate_min_health_factor', 'calculate_max_possible_drop',
    # Collaborators
    'SequenceClock', 'StaticPriceOracle', 'LinearIndexPool', 'SlotAllocator',
    # Credit core
    'CollateralFilter', 'PositionLedger', 'CreditAccount', 'CreditEvent',
]
