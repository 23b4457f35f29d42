"""
Collaborator tests: collateral token, outcome-token ledger, config.
"""

import pytest
from pydantic import ValidationError

from fpmm.config import MarketMakerConfig, parse_fee
from fpmm.errors import (
    InsufficientBalance, InsufficientAllowance, NotApproved,
    UnknownCondition, InvalidAmount,
)
from fpmm.fixed_point import ONE
from fpmm.ledger import (
    CollateralToken, ConditionalTokens, get_condition_id,
)


# ---------------------------------------------------------------------------
# Collateral
# ---------------------------------------------------------------------------

class TestCollateral:

    def test_deposit_and_withdraw(self):
        weth = CollateralToken()
        weth.deposit("alice", 10)
        weth.withdraw("alice", 4)
        assert weth.balance_of("alice") == 6
        assert weth.total_supply == 6
        with pytest.raises(InsufficientBalance):
            weth.withdraw("alice", 7)

    def test_transfer_conserves(self):
        weth = CollateralToken()
        weth.deposit("alice", 10)
        weth.transfer("alice", "bob", 3)
        assert weth.balance_of("alice") == 7
        assert weth.balance_of("bob") == 3
        assert weth.total_supply == 10
        with pytest.raises(InsufficientBalance):
            weth.transfer("bob", "alice", 4)

    def test_transfer_from_spends_allowance(self):
        weth = CollateralToken()
        weth.deposit("alice", 10)
        weth.approve("alice", "amm", 6)
        weth.transfer_from("amm", "alice", "amm", 4)
        assert weth.allowance("alice", "amm") == 2
        assert weth.balance_of("amm") == 4
        with pytest.raises(InsufficientAllowance):
            weth.transfer_from("amm", "alice", "amm", 3)

    def test_negative_amount_rejected(self):
        weth = CollateralToken()
        with pytest.raises(InvalidAmount):
            weth.deposit("alice", -1)

    def test_snapshot_restore(self):
        weth = CollateralToken()
        weth.deposit("alice", 10)
        saved = weth.snapshot()
        weth.transfer("alice", "bob", 10)
        weth.restore(saved)
        assert weth.balance_of("alice") == 10
        assert weth.balance_of("bob") == 0


# ---------------------------------------------------------------------------
# Outcome tokens
# ---------------------------------------------------------------------------

def ledger_with_condition(slots=3):
    ct = ConditionalTokens()
    weth = CollateralToken()
    condition_id = ct.prepare_condition("oracle", "q1", slots)
    return ct, weth, condition_id


class TestConditions:

    def test_prepare(self):
        ct, _, condition_id = ledger_with_condition(3)
        assert condition_id == get_condition_id("oracle", "q1", 3)
        assert ct.get_outcome_slot_count(condition_id) == 3

    def test_prepare_twice(self):
        ct, _, _ = ledger_with_condition(3)
        with pytest.raises(ValueError):
            ct.prepare_condition("oracle", "q1", 3)

    @pytest.mark.parametrize("slots", [0, 1, 257])
    def test_slot_count_bounds(self, slots):
        with pytest.raises(ValueError):
            ConditionalTokens().prepare_condition("oracle", "q", slots)

    def test_unknown_condition(self):
        with pytest.raises(UnknownCondition):
            ConditionalTokens().get_outcome_slot_count("0xnope")

    def test_position_ids_single_condition(self):
        ct, weth, condition_id = ledger_with_condition(4)
        ids = ct.position_ids(weth.address, [condition_id])
        assert len(ids) == 4
        assert len(set(ids)) == 4
        assert ids == ct.position_ids(weth.address, [condition_id])

    def test_position_ids_depend_on_collateral(self):
        ct, weth, condition_id = ledger_with_condition(2)
        other = CollateralToken("DAI")
        assert (set(ct.position_ids(weth.address, [condition_id]))
                .isdisjoint(ct.position_ids(other.address, [condition_id])))

    def test_position_ids_across_conditions(self):
        ct, weth, c1 = ledger_with_condition(2)
        c2 = ct.prepare_condition("oracle", "q2", 3)
        ids = ct.position_ids(weth.address, [c1, c2])
        assert len(set(ids)) == 6
        # order of conditions changes the flat order, not the set
        assert set(ids) == set(ct.position_ids(weth.address, [c2, c1]))


class TestSplitMerge:

    def test_split_mints_every_position(self):
        ct, weth, condition_id = ledger_with_condition(3)
        weth.deposit("alice", 5 * ONE)
        ct.split_through_all("alice", weth, [condition_id], 2 * ONE)
        for pid in ct.position_ids(weth.address, [condition_id]):
            assert ct.balance_of("alice", pid) == 2 * ONE
            assert ct.total_supply(pid) == 2 * ONE
        assert weth.balance_of("alice") == 3 * ONE
        assert weth.balance_of(ct.address) == 2 * ONE

    def test_merge_returns_collateral(self):
        ct, weth, condition_id = ledger_with_condition(3)
        weth.deposit("alice", 5 * ONE)
        ct.split_through_all("alice", weth, [condition_id], 2 * ONE)
        ct.merge_through_all("alice", weth, [condition_id], ONE)
        assert weth.balance_of("alice") == 4 * ONE
        assert weth.balance_of(ct.address) == ONE

    def test_merge_needs_every_position(self):
        ct, weth, condition_id = ledger_with_condition(2)
        weth.deposit("alice", ONE)
        ct.split_through_all("alice", weth, [condition_id], ONE)
        pid = ct.position_ids(weth.address, [condition_id])[0]
        ct.safe_transfer_from("alice", "alice", "bob", pid, 1)
        with pytest.raises(InsufficientBalance):
            ct.merge_through_all("alice", weth, [condition_id], ONE)
        assert weth.balance_of("alice") == 0

    def test_split_without_collateral(self):
        ct, weth, condition_id = ledger_with_condition(2)
        with pytest.raises(InsufficientBalance):
            ct.split_through_all("alice", weth, [condition_id], 1)


class TestTransfers:

    def setup_method(self):
        self.ct, self.weth, condition_id = ledger_with_condition(2)
        self.weth.deposit("alice", ONE)
        self.ct.split_through_all("alice", self.weth, [condition_id], ONE)
        self.ids = self.ct.position_ids(self.weth.address, [condition_id])

    def test_operator_needs_approval(self):
        with pytest.raises(NotApproved):
            self.ct.safe_transfer_from("amm", "alice", "amm", self.ids[0], 1)
        self.ct.set_approval_for_all("alice", "amm", True)
        self.ct.safe_transfer_from("amm", "alice", "amm", self.ids[0], 1)
        assert self.ct.balance_of("amm", self.ids[0]) == 1

    def test_revoke_approval(self):
        self.ct.set_approval_for_all("alice", "amm", True)
        self.ct.set_approval_for_all("alice", "amm", False)
        assert not self.ct.is_approved_for_all("alice", "amm")

    def test_batch_is_all_or_nothing(self):
        with pytest.raises(InsufficientBalance):
            self.ct.safe_batch_transfer_from(
                "alice", "alice", "bob", self.ids, [ONE, ONE + 1])
        assert self.ct.balance_of_batch(["alice", "alice"], self.ids) == [ONE, ONE]

    def test_batch_counts_repeated_ids(self):
        with pytest.raises(InsufficientBalance):
            self.ct.safe_batch_transfer_from(
                "alice", "alice", "bob", [self.ids[0], self.ids[0]],
                [ONE, 1])

    def test_snapshot_restore(self):
        saved = self.ct.snapshot()
        self.ct.safe_transfer_from("alice", "alice", "bob", self.ids[1], ONE)
        self.ct.restore(saved)
        assert self.ct.balance_of("alice", self.ids[1]) == ONE
        assert self.ct.balance_of("bob", self.ids[1]) == 0


# ---------------------------------------------------------------------------
# Config
# ---------------------------------------------------------------------------

class TestConfig:

    def test_percent_fee(self):
        assert parse_fee("0.3%") == 3 * 10 ** 15
        config = MarketMakerConfig(condition_ids=["c"], fee="1%")
        assert config.fee == 10 ** 16

    def test_fee_range(self):
        MarketMakerConfig(condition_ids=["c"], fee=ONE - 1)
        with pytest.raises(ValidationError):
            MarketMakerConfig(condition_ids=["c"], fee=ONE)
        with pytest.raises(ValidationError):
            MarketMakerConfig(condition_ids=["c"], fee=-1)

    def test_conditions_required(self):
        with pytest.raises(ValidationError):
            MarketMakerConfig(condition_ids=[], fee=0)
        with pytest.raises(ValidationError):
            MarketMakerConfig(condition_ids=["c", "c"], fee=0)

    def test_default_fee_from_environment(self, monkeypatch):
        monkeypatch.setenv("FPMM_DEFAULT_FEE", "0.3%")
        assert MarketMakerConfig(condition_ids=["c"]).fee == 3 * 10 ** 15
        monkeypatch.setenv("FPMM_DEFAULT_FEE", "2000")
        assert MarketMakerConfig(condition_ids=["c"]).fee == 2000
        monkeypatch.delenv("FPMM_DEFAULT_FEE")
        assert MarketMakerConfig(condition_ids=["c"]).fee == 0

    def test_bad_default_fee_fails_on_build(self, monkeypatch):
        monkeypatch.setenv("FPMM_DEFAULT_FEE", "lots")
        with pytest.raises(ValidationError):
            MarketMakerConfig(condition_ids=["c"])
        # an explicit fee does not read the environment
        assert MarketMakerConfig(condition_ids=["c"], fee=5).fee == 5

    def test_frozen(self):
        config = MarketMakerConfig(condition_ids=["c"], fee=0)
        with pytest.raises(ValidationError):
            config.fee = 1
