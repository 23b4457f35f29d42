"""Market creation, with and without initial funding."""

import pytest

from fpmm.errors import InsufficientBalance, InvalidDistribution
from fpmm.factory import MarketMakerFactory
from fpmm.fixed_point import ONE
from fpmm.ledger import CollateralToken, ConditionalTokens
from fpmm.models import reset_counters


FEE = 3 * 10 ** 15


def ledgers(outcomes=4):
    reset_counters()
    ct = ConditionalTokens()
    weth = CollateralToken()
    condition_id = ct.prepare_condition("oracle", "question-1", outcomes)
    return ct, weth, condition_id


class TestFactory:

    def test_create_and_fund(self):
        ct, weth, condition_id = ledgers()
        weth.deposit("creator", 10 * ONE)
        factory = MarketMakerFactory()

        fpmm = factory.create_market("creator", ct, weth, [condition_id],
                                     fee=FEE, initial_funds=10 * ONE,
                                     distribution_hint=[1, 2, 1, 1])

        assert factory.get(fpmm.address) is fpmm
        assert fpmm.pool_balances() == [5 * ONE, 10 * ONE, 5 * ONE, 5 * ONE]
        assert fpmm.balance_of("creator") == 10 * ONE
        assert weth.balance_of("creator") == 0
        assert weth.allowance("creator", fpmm.address) == 0
        fpmm.check_invariants()

    def test_create_without_funds(self):
        ct, weth, condition_id = ledgers(2)
        factory = MarketMakerFactory()
        fpmm = factory.create_market("creator", ct, weth, [condition_id])
        assert fpmm.total_supply == 0
        assert fpmm.pool_balances() == [0, 0]
        assert factory.get(fpmm.address) is fpmm

    def test_failed_funding_creates_nothing(self):
        ct, weth, condition_id = ledgers()
        weth.deposit("creator", ONE)
        factory = MarketMakerFactory()

        with pytest.raises(InsufficientBalance):
            factory.create_market("creator", ct, weth, [condition_id],
                                  initial_funds=10 * ONE)
        assert factory.markets == {}
        assert weth.balance_of("creator") == ONE
        assert weth.allowance("creator", "fpmm-1") == 0

    def test_bad_hint_creates_nothing(self):
        ct, weth, condition_id = ledgers()
        weth.deposit("creator", ONE)
        factory = MarketMakerFactory()
        with pytest.raises(InvalidDistribution):
            factory.create_market("creator", ct, weth, [condition_id],
                                  initial_funds=ONE,
                                  distribution_hint=[1, 1])
        assert factory.markets == {}
        assert weth.balance_of("creator") == ONE

    def test_markets_get_distinct_addresses(self):
        ct, weth, condition_id = ledgers()
        factory = MarketMakerFactory()
        a = factory.create_market("creator", ct, weth, [condition_id])
        b = factory.create_market("creator", ct, weth, [condition_id])
        assert a.address != b.address
        assert len(factory.markets) == 2

    def test_unknown_market(self):
        with pytest.raises(ValueError):
            MarketMakerFactory().get("fpmm-404")
