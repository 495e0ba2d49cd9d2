"""
test_close_repay.py - Unit tests for closing and repaying credit accounts

Tests:
- close_credit_account: payouts, interest fee, swap hints, slippage, loss refusal
- repay_credit_account: repayment from the owner's wallet, token payout
- Same-unit and address guards
"""

import pytest

from credit import (
    SwapHint, ParameterError, StateError, CollateralError, ExternalCallError, TransferError,
    WAD, SECONDS_PER_YEAR,
)

from tests.mocks import FixedRateExchange


def _slot(system, owner="alice"):
    return system.manager.get_credit_account_or_raise(owner)


class TestClose:
    """Tests for close_credit_account."""

    def test_close_without_interest(self, opened):
        slot = _slot(opened)
        opened.clock.advance()
        payments = opened.manager.close_credit_account("alice", "alice")
        assert payments.amount_to_pool == 300 * WAD
        assert payments.remaining_funds == 100 * WAD - 1
        assert opened.balance("alice") == 10_000 * WAD - 1
        assert opened.balance(opened.pool.address) == 1_000_000 * WAD
        assert opened.balance(slot) == 1
        assert opened.pool.total_borrowed == 0
        assert not opened.manager.has_opened_credit_account("alice")
        assert opened.allocator.tail == slot

    def test_close_to_other_address(self, opened):
        opened.clock.advance()
        opened.manager.close_credit_account("alice", "bob")
        assert opened.balance("bob") == 10_100 * WAD - 1

    def test_close_to_new_wallet(self, opened):
        opened.clock.advance()
        opened.manager.close_credit_account("alice", "cold_wallet")
        assert opened.balance("cold_wallet") == 100 * WAD - 1

    def test_close_with_interest(self, system_with_interest):
        system = system_with_interest
        system.manager.open_credit_account("alice", 100 * WAD, "alice", 300)
        system.clock.advance(SECONDS_PER_YEAR)
        payments = system.manager.close_credit_account("alice", "alice")
        assert payments.borrowed_amount_with_interest == 330 * WAD
        assert payments.amount_to_pool == 333 * WAD
        assert system.balance("alice") == 9967 * WAD - 1
        assert system.pool.total_profit == 3 * WAD

    def test_close_event(self, opened):
        opened.clock.advance()
        opened.manager.close_credit_account("alice", "bob")
        event = opened.manager.events_of("CloseCreditAccount")[-1]
        assert event.fields == {"owner": "alice", "to": "bob", "remaining_funds": 100 * WAD - 1}
        assert event.ordering_unit == 1

    def test_same_unit(self, opened):
        with pytest.raises(StateError, match="SameUnitOperation"):
            opened.manager.close_credit_account("alice", "alice")

    def test_no_account(self, system):
        with pytest.raises(StateError, match="NoOpenAccount"):
            system.manager.close_credit_account("alice", "alice")

    def test_zero_address(self, opened):
        opened.clock.advance()
        with pytest.raises(StateError, match="ZeroAddressIsNotAllowed"):
            opened.manager.close_credit_account("alice", "")

    def test_cannot_close_with_loss(self, system_with_interest):
        system = system_with_interest
        slot = system.manager.open_credit_account("alice", 100 * WAD, "alice", 300)
        system.clock.advance(4 * SECONDS_PER_YEAR)
        with pytest.raises(StateError, match="CantCloseWithLoss"):
            system.manager.close_credit_account("alice", "alice")
        assert system.manager.has_opened_credit_account("alice")
        assert system.balance(slot) == 400 * WAD

    def test_close_covering_debt_exactly(self, opened):
        """Funds of debt + dust settle the pool in full and leave the owner nothing."""
        slot = _slot(opened)
        opened.adapter.swap("alice", "DAI", "WETH", 100 * WAD)
        # 0.05 WETH less dust sells for exactly 1 wei at this price
        opened.set_price("WETH", 21)
        opened.clock.advance()
        payments = opened.manager.close_credit_account("alice", "alice", [SwapHint(opened.exchange)])
        assert payments.total_funds == 300 * WAD + 1
        assert payments.amount_to_pool == 300 * WAD
        assert payments.remaining_funds == 0
        assert payments.loss == 0
        assert not opened.manager.has_opened_credit_account("alice")
        assert opened.balance("alice") == 9900 * WAD
        assert opened.balance(slot) == 1
        assert opened.pool.total_loss == 0


class TestCloseWithSwaps:
    """Closing an account that holds non-underlying collateral."""

    def test_swap_hints_convert_collateral(self, opened):
        opened.adapter.swap("alice", "DAI", "WETH", 200 * WAD)
        slot = _slot(opened)
        opened.clock.advance()
        payments = opened.manager.close_credit_account("alice", "alice", [SwapHint(opened.exchange)])
        assert payments.total_funds == 400 * WAD - 2000
        assert opened.balance("alice") == 10_000 * WAD - 2001
        assert opened.balance(slot, "WETH") == 1

    def test_hint_count_mismatch(self, opened):
        opened.adapter.swap("alice", "DAI", "WETH", 200 * WAD)
        opened.clock.advance()
        with pytest.raises(ParameterError, match="IncorrectPathLength"):
            opened.manager.close_credit_account("alice", "alice", [])

    def test_slippage_exceeded(self, opened):
        opened.adapter.swap("alice", "DAI", "WETH", 200 * WAD)
        slot = _slot(opened)
        opened.clock.advance()
        opened.exchange.slippage = 100
        opened.exchange.enforce_min = False
        with pytest.raises(ExternalCallError, match="SlippageExceeded"):
            opened.manager.close_credit_account(
                "alice", "alice", [SwapHint(opened.exchange, amount_out_min=199 * WAD)]
            )
        assert opened.balance(slot, "WETH") == WAD // 10
        assert opened.balance(slot) == 200 * WAD
        assert opened.manager.has_opened_credit_account("alice")

    def test_contract_not_allowed(self, opened):
        opened.adapter.swap("alice", "DAI", "WETH", 200 * WAD)
        rogue = FixedRateExchange(opened.book, opened.oracle, address="rogue")
        opened.clock.advance()
        with pytest.raises(CollateralError):
            opened.manager.close_credit_account("alice", "alice", [SwapHint(rogue)])


class TestRepay:
    """Tests for repay_credit_account."""

    def test_repay(self, opened):
        slot = _slot(opened)
        opened.clock.advance()
        payments = opened.manager.repay_credit_account("alice", "alice")
        assert payments.amount_to_pool == 300 * WAD
        assert opened.balance("alice") == 10_000 * WAD - 1
        assert opened.balance(slot) == 1
        assert opened.pool.total_borrowed == 0
        assert opened.manager.events_of("RepayCreditAccount")[-1].fields["amount_to_pool"] == 300 * WAD

    def test_repay_sends_all_tokens(self, opened):
        opened.adapter.swap("alice", "DAI", "WETH", 200 * WAD)
        opened.clock.advance()
        opened.manager.repay_credit_account("alice", "carol")
        assert opened.balance("carol") == 200 * WAD - 1
        assert opened.balance("carol", "WETH") == WAD // 10 - 1
        assert opened.balance("alice") == 9600 * WAD

    def test_repay_without_funds(self, system):
        slot = system.manager.open_credit_account("alice", 100 * WAD, "carol", 300)
        system.clock.advance()
        with pytest.raises(TransferError):
            system.manager.repay_credit_account("carol", "carol")
        assert system.manager.has_opened_credit_account("carol")
        assert system.balance(slot) == 400 * WAD

    def test_cannot_repay_underwater_account(self, opened):
        """Collateral worth less than the debt must go through liquidation."""
        slot = _slot(opened)
        opened.adapter.swap("alice", "DAI", "WETH", 400 * WAD)
        opened.set_price("WETH", 1000 * WAD)
        opened.clock.advance()
        assert opened.collateral.calc_credit_account_health_factor(slot) < 10_000
        with pytest.raises(StateError, match="CantCloseWithLoss"):
            opened.manager.repay_credit_account("alice", "alice")
        assert opened.manager.has_opened_credit_account("alice")
        assert opened.balance("alice") == 9900 * WAD
        assert opened.balance(slot, "WETH") == WAD // 5
        assert opened.pool.total_loss == 0
        assert opened.pool.total_borrowed == 300 * WAD
        assert opened.manager.events_of("RepayCreditAccount") == []

    def test_paused_token_blocks_repay(self, opened):
        opened.adapter.swap("alice", "DAI", "WETH", 200 * WAD)
        opened.book.update_token_state("WETH", {"transfers_paused": True})
        opened.clock.advance()
        with pytest.raises(TransferError):
            opened.manager.repay_credit_account("alice", "alice")
        assert opened.balance("alice") == 9900 * WAD
        assert opened.manager.has_opened_credit_account("alice")

    def test_same_unit(self, opened):
        with pytest.raises(StateError, match="SameUnitOperation"):
            opened.manager.repay_credit_account("alice", "alice")

    def test_zero_address(self, opened):
        opened.clock.advance()
        with pytest.raises(StateError, match="ZeroAddressIsNotAllowed"):
            opened.manager.repay_credit_account("alice", "")
