"""
test_position_ledger.py - Unit tests for opening and growing credit accounts

Tests:
- Construction checks
- open_credit_account: limits, leverage, duplicates, funding failures
- add_collateral
- increase_borrowed_amount: limits, health factor, interest preservation
- Read-only views
"""

import pytest

from credit import (
    PositionLedger, LinearIndexPool, SlotAllocator, erc20,
    ParameterError, StateError, CollateralError, SolvencyError, TransferError,
    WAD, RAY, SECONDS_PER_YEAR,
)

from tests.mocks import build_system, ADMIN


class TestConstruction:

    def test_mismatched_underlying(self, system):
        system.book.register_token(erc20("GHO", "Gho"))
        other_pool = LinearIndexPool(system.book, "GHO", system.clock, address="gho_pool")
        with pytest.raises(ParameterError):
            PositionLedger(
                system.book, other_pool, system.collateral, SlotAllocator(system.book),
                system.clock, system.manager.params, ADMIN,
            )

    def test_min_health_factor(self, system):
        assert system.manager.min_health_factor == 11625

    def test_filter_connected(self, system):
        assert system.collateral.position_ledger is system.manager


class TestOpenCreditAccount:
    """Tests for open_credit_account."""

    def test_open(self, system):
        slot = system.manager.open_credit_account("alice", 100 * WAD, "alice", 300, referral_code=7)
        account = system.manager.get_account("alice")
        assert slot == "slot-0001"
        assert account.slot == slot
        assert account.borrowed_amount == 300 * WAD
        assert account.cumulative_index_at_open == RAY
        assert account.since_unit == 0
        assert system.balance(slot) == 400 * WAD
        assert system.balance("alice") == 9900 * WAD
        assert system.pool.total_borrowed == 300 * WAD
        assert system.collateral.calc_credit_account_health_factor(slot) == 12400

    def test_open_emits_event(self, system):
        system.manager.open_credit_account("alice", 100 * WAD, "alice", 300, referral_code=7)
        event = system.manager.events_of("OpenCreditAccount")[-1]
        assert event.fields["borrowed_amount"] == 300 * WAD
        assert event.fields["referral_code"] == 7

    def test_open_on_behalf_of(self, system):
        slot = system.manager.open_credit_account("alice", 100 * WAD, "carol", 100)
        assert system.manager.owner_of(slot) == "carol"
        assert not system.manager.has_opened_credit_account("alice")
        assert system.balance("alice") == 9900 * WAD

    @pytest.mark.parametrize("amount", [WAD - 1, 10_000 * WAD + 1])
    def test_amount_out_of_range(self, system, amount):
        with pytest.raises(ParameterError, match="IncorrectAmount"):
            system.manager.open_credit_account("alice", amount, "alice", 300)

    @pytest.mark.parametrize("leverage", [0, 401])
    def test_leverage_out_of_range(self, system, leverage):
        with pytest.raises(ParameterError, match="IncorrectLeverageFactor"):
            system.manager.open_credit_account("alice", 100 * WAD, "alice", leverage)

    def test_zero_address(self, system):
        with pytest.raises(StateError, match="ZeroAddressIsNotAllowed"):
            system.manager.open_credit_account("alice", 100 * WAD, "", 300)

    def test_already_open(self, opened):
        with pytest.raises(StateError, match="HasAlreadyOpenAccount"):
            opened.manager.open_credit_account("bob", 100 * WAD, "alice", 300)

    def test_unfunded_caller_releases_slot(self, system):
        system.book.register_wallet("pauper")
        with pytest.raises(TransferError):
            system.manager.open_credit_account("pauper", 100 * WAD, "pauper", 300)
        assert not system.manager.has_opened_credit_account("pauper")
        assert system.allocator.free_slots == ["slot-0001"]
        assert system.manager.events == []

    def test_not_enough_liquidity(self):
        system = build_system(liquidity=100 * WAD)
        with pytest.raises(ParameterError, match="NotEnoughLiquidity"):
            system.manager.open_credit_account("alice", 100 * WAD, "alice", 300)
        assert system.balance("alice") == 10_000 * WAD
        assert system.manager.credit_accounts == {}

    def test_slot_recycled(self, opened):
        slot = opened.manager.get_credit_account_or_raise("alice")
        opened.clock.advance()
        opened.manager.repay_credit_account("alice", "alice")
        assert opened.manager.open_credit_account("bob", 100 * WAD, "bob", 100) == slot
        assert opened.collateral.enabled_tokens(slot) == 1


class TestAddCollateral:
    """Tests for add_collateral."""

    def test_add_weth(self, opened):
        opened.fund("alice", "WETH", WAD)
        opened.manager.add_collateral("alice", "alice", "WETH", WAD)
        slot = opened.manager.get_credit_account_or_raise("alice")
        assert opened.balance(slot, "WETH") == WAD
        assert opened.collateral.enabled_tokens(slot) == 0b11

    def test_third_party_adds_for_owner(self, opened):
        opened.manager.add_collateral("bob", "alice", "DAI", 50 * WAD)
        assert opened.balance("bob") == 9950 * WAD
        assert opened.collateral.calc_total_value(opened.manager.get_credit_account_or_raise("alice")) == 450 * WAD

    def test_no_account(self, system):
        with pytest.raises(StateError, match="NoOpenAccount"):
            system.manager.add_collateral("alice", "alice", "DAI", WAD)

    def test_non_positive_amount(self, opened):
        with pytest.raises(ParameterError):
            opened.manager.add_collateral("alice", "alice", "DAI", 0)

    def test_token_not_allowed(self, opened):
        opened.fund("alice", "USDC", 10 ** 6)
        with pytest.raises(CollateralError):
            opened.manager.add_collateral("alice", "alice", "USDC", 10 ** 6)

    def test_failed_transfer_restores_mask(self, opened):
        slot = opened.manager.get_credit_account_or_raise("alice")
        with pytest.raises(TransferError):
            opened.manager.add_collateral("alice", "alice", "WETH", WAD)
        assert opened.collateral.enabled_tokens(slot) == 1
        assert opened.manager.events_of("AddCollateral") == []


class TestIncreaseBorrowedAmount:
    """Tests for increase_borrowed_amount."""

    def test_increase(self, opened):
        opened.manager.increase_borrowed_amount("alice", 100 * WAD)
        slot = opened.manager.get_credit_account_or_raise("alice")
        assert opened.manager.get_account("alice").borrowed_amount == 400 * WAD
        assert opened.balance(slot) == 500 * WAD
        assert opened.pool.total_borrowed == 400 * WAD
        assert opened.collateral.calc_credit_account_health_factor(slot) == 11625

    def test_below_min_health_factor(self, opened):
        slot = opened.manager.get_credit_account_or_raise("alice")
        with pytest.raises(SolvencyError):
            opened.manager.increase_borrowed_amount("alice", 101 * WAD)
        assert opened.manager.get_account("alice").borrowed_amount == 300 * WAD
        assert opened.balance(slot) == 400 * WAD
        assert opened.pool.total_borrowed == 300 * WAD

    def test_above_max_borrowed(self, opened):
        with pytest.raises(ParameterError, match="IncorrectAmount"):
            opened.manager.increase_borrowed_amount("alice", 39_701 * WAD)

    def test_non_positive(self, opened):
        with pytest.raises(ParameterError):
            opened.manager.increase_borrowed_amount("alice", 0)

    def test_no_account(self, system):
        with pytest.raises(StateError):
            system.manager.increase_borrowed_amount("alice", WAD)

    def test_accrued_interest_preserved(self, system_with_interest):
        system = system_with_interest
        system.manager.open_credit_account("alice", 100 * WAD, "alice", 300)
        system.manager.add_collateral("alice", "alice", "DAI", 200 * WAD)
        system.clock.advance(SECONDS_PER_YEAR)
        slot = system.manager.get_credit_account_or_raise("alice")
        assert system.manager.calc_debt(slot) == 330 * WAD
        system.manager.increase_borrowed_amount("alice", 100 * WAD)
        assert system.manager.calc_debt(slot) == 430 * WAD
        assert system.manager.get_account("alice").cumulative_index_at_open > RAY


class TestViews:

    def test_get_account_missing(self, system):
        with pytest.raises(StateError, match="NoOpenAccount"):
            system.manager.get_account("alice")

    def test_owner_of_unknown_slot(self, system):
        with pytest.raises(StateError):
            system.manager.owner_of("slot-0001")

    def test_credit_accounts_is_a_copy(self, opened):
        accounts = opened.manager.credit_accounts
        accounts.clear()
        assert opened.manager.has_opened_credit_account("alice")

    def test_calc_repay_amount(self, opened):
        assert opened.manager.calc_repay_amount("alice") == 300 * WAD

    def test_calc_repay_amount_with_interest(self, system_with_interest):
        system = system_with_interest
        system.manager.open_credit_account("alice", 100 * WAD, "alice", 300)
        system.clock.advance(SECONDS_PER_YEAR)
        assert system.manager.calc_repay_amount("alice") == 333 * WAD
