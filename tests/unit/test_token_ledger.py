"""
test_token_ledger.py - Unit tests for TokenLedger operations

Tests:
- Wallet and token registration
- Minting, transfers and rejection rules
- Allowances and transfer_from
- Atomic groups and rollback
- Double-entry verification
"""

import pytest

from credit import (
    TokenLedger, Move, ExecuteResult, TransactionOrigin, OriginType,
    build_transaction, erc20, pausable_transfer_rule,
    TokenLedgerError, TokenNotRegistered, WalletNotRegistered,
    SYSTEM_WALLET, MAX_UINT256, WAD,
)


class TestRegistration:
    """Tests for wallet and token registration."""

    def test_system_wallet_preregistered(self, empty_book):
        assert empty_book.is_registered(SYSTEM_WALLET)

    def test_register_wallet(self, empty_book):
        empty_book.register_wallet("alice")
        assert "alice" in empty_book.list_wallets()

    def test_duplicate_wallet_rejected(self, empty_book):
        empty_book.register_wallet("alice")
        with pytest.raises(ValueError):
            empty_book.register_wallet("alice")

    def test_empty_wallet_rejected(self, empty_book):
        with pytest.raises(ValueError):
            empty_book.register_wallet("  ")

    def test_ensure_wallet_is_idempotent(self, empty_book):
        empty_book.ensure_wallet("alice")
        empty_book.ensure_wallet("alice")
        assert empty_book.is_registered("alice")

    def test_duplicate_token_rejected(self, funded_book):
        with pytest.raises(ValueError):
            funded_book.register_token(erc20("DAI", "Dai again"))

    def test_unknown_token(self, empty_book):
        with pytest.raises(TokenNotRegistered):
            empty_book.get_token("XYZ")

    def test_unknown_wallet_balance(self, funded_book):
        with pytest.raises(WalletNotRegistered):
            funded_book.get_balance("nobody", "DAI")


class TestTransfers:
    """Tests for transfer, mint and validation."""

    def test_mint(self, funded_book):
        assert funded_book.get_balance("alice", "DAI") == 1000 * WAD
        assert funded_book.total_supply("DAI") == 1000 * WAD

    def test_transfer(self, funded_book):
        result = funded_book.transfer("alice", "bob", "DAI", 10 * WAD)
        assert result == ExecuteResult.APPLIED
        assert funded_book.get_balance("bob", "DAI") == 10 * WAD
        assert funded_book.get_balance("alice", "DAI") == 990 * WAD

    def test_overdraft_rejected(self, funded_book):
        result = funded_book.transfer("bob", "alice", "DAI", 1)
        assert result == ExecuteResult.REJECTED
        assert funded_book.get_balance("bob", "DAI") == 0

    def test_unregistered_destination_rejected(self, funded_book):
        assert funded_book.transfer("alice", "nobody", "DAI", 1) == ExecuteResult.REJECTED

    def test_transaction_log(self, funded_book):
        funded_book.transfer("alice", "bob", "DAI", 1)
        tx = funded_book.transaction_log[-1]
        assert tx.moves[0].dest == "bob"
        assert tx.sequence_number == len(funded_book.transaction_log) - 1

    def test_multi_move_validated_in_order(self, funded_book):
        """A later move may spend what an earlier move in the same transaction delivered."""
        pending = build_transaction(funded_book, [
            Move(5, "DAI", "alice", "bob", "chain"),
            Move(5, "DAI", "bob", SYSTEM_WALLET, "chain"),
        ])
        assert funded_book.execute(pending) == ExecuteResult.APPLIED
        assert funded_book.get_balance("bob", "DAI") == 0

    def test_paused_token_rejected(self, funded_book):
        funded_book.register_token(erc20("PAUS", "Pausable", transfer_rule=pausable_transfer_rule))
        funded_book.mint("alice", "PAUS", 10)
        funded_book.update_token_state("PAUS", {"transfers_paused": True})
        assert funded_book.transfer("alice", "bob", "PAUS", 1) == ExecuteResult.REJECTED
        funded_book.update_token_state("PAUS", {"transfers_paused": False})
        assert funded_book.transfer("alice", "bob", "PAUS", 1) == ExecuteResult.APPLIED

    def test_origin_recorded(self, funded_book):
        origin = TransactionOrigin(OriginType.CREDIT_MANAGER, "cm", "OpenCreditAccount")
        funded_book.transfer("alice", "bob", "DAI", 1, origin=origin)
        assert funded_book.transaction_log[-1].origin == origin

    def test_transaction_repr_is_one_line(self, funded_book):
        funded_book.transfer("alice", "bob", "DAI", 1)
        tx = funded_book.transaction_log[-1]
        text = repr(tx)
        assert "\n" not in text
        assert tx.exec_id in text
        assert "alice→bob" in text

    def test_move_validation(self):
        with pytest.raises(ValueError):
            Move(0, "DAI", "alice", "bob", "x")
        with pytest.raises(ValueError):
            Move(1, "DAI", "alice", "alice", "x")


class TestAllowances:
    """Tests for approve and transfer_from."""

    def test_transfer_from_consumes_allowance(self, funded_book):
        funded_book.approve("alice", "bob", "DAI", 10)
        assert funded_book.transfer_from("bob", "alice", "bob", "DAI", 4) == ExecuteResult.APPLIED
        assert funded_book.allowance("alice", "bob", "DAI") == 6

    def test_transfer_from_without_allowance(self, funded_book):
        assert funded_book.transfer_from("bob", "alice", "bob", "DAI", 1) == ExecuteResult.REJECTED

    def test_unlimited_allowance_not_consumed(self, funded_book):
        funded_book.approve("alice", "bob", "DAI", MAX_UINT256)
        funded_book.transfer_from("bob", "alice", "bob", "DAI", 4)
        assert funded_book.allowance("alice", "bob", "DAI") == MAX_UINT256

    def test_rejected_transfer_keeps_allowance(self, funded_book):
        funded_book.approve("bob", "alice", "DAI", 10)
        assert funded_book.transfer_from("alice", "bob", "alice", "DAI", 5) == ExecuteResult.REJECTED
        assert funded_book.allowance("bob", "alice", "DAI") == 10


class TestAtomicGroups:
    """Tests for atomic() rollback."""

    def test_rollback_on_exception(self, funded_book):
        log_length = len(funded_book.transaction_log)
        with pytest.raises(RuntimeError):
            with funded_book.atomic():
                funded_book.transfer("alice", "bob", "DAI", 10 * WAD)
                funded_book.register_wallet("carol")
                funded_book.approve("alice", "bob", "DAI", 5)
                raise RuntimeError("abort")
        assert funded_book.get_balance("bob", "DAI") == 0
        assert not funded_book.is_registered("carol")
        assert funded_book.allowance("alice", "bob", "DAI") == 0
        assert len(funded_book.transaction_log) == log_length
        assert funded_book.get_positions("DAI") == {"alice": 1000 * WAD, SYSTEM_WALLET: -1000 * WAD}

    def test_commit_without_exception(self, funded_book):
        with funded_book.atomic():
            funded_book.transfer("alice", "bob", "DAI", 10 * WAD)
        assert funded_book.get_balance("bob", "DAI") == 10 * WAD

    def test_nested_inner_rollback(self, funded_book):
        with funded_book.atomic():
            funded_book.transfer("alice", "bob", "DAI", 1)
            with pytest.raises(RuntimeError):
                with funded_book.atomic():
                    funded_book.transfer("alice", "bob", "DAI", 2)
                    raise RuntimeError("inner")
        assert funded_book.get_balance("bob", "DAI") == 1

    def test_clone_is_independent(self, funded_book):
        copy = funded_book.clone()
        copy.transfer("alice", "bob", "DAI", 1)
        assert funded_book.get_balance("bob", "DAI") == 0


class TestDoubleEntry:

    def test_balances_net_to_zero(self, funded_book):
        funded_book.transfer("alice", "bob", "DAI", 3)
        report = funded_book.verify_double_entry()
        assert report["valid"]
        assert report["supplies"]["DAI"] == 1000 * WAD

    def test_expected_supply_mismatch(self, funded_book):
        report = funded_book.verify_double_entry({"DAI": 1})
        assert not report["valid"]

    def test_set_balance_requires_test_mode(self, clock):
        book = TokenLedger("prod", clock)
        book.register_token(erc20("DAI", "Dai"))
        book.register_wallet("alice")
        with pytest.raises(TokenLedgerError):
            book.set_balance("alice", "DAI", 1)
