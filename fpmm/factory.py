"""
Market creation. Creates a market maker and optionally funds it in the
same step, so a market never exists half-created: if the initial funding
fails, the market is not registered and no collateral moves.
"""

import logging

from fpmm.ledger import CollateralToken, ConditionalTokens
from fpmm.market_maker import FixedProductMarketMaker


logger = logging.getLogger(__name__)


class MarketMakerFactory:

    def __init__(self):
        self.markets: dict[str, FixedProductMarketMaker] = {}

    def create_market(self, creator: str,
                      conditional_tokens: ConditionalTokens,
                      collateral: CollateralToken,
                      condition_ids: list[str],
                      fee: int | str | None = None,
                      initial_funds: int = 0,
                      distribution_hint=()) -> FixedProductMarketMaker:
        """
        Create a market maker. If initial_funds > 0, fund it from
        creator's collateral with distribution_hint. Calling this is the
        creator's authorization for that transfer.
        """
        fpmm = FixedProductMarketMaker(conditional_tokens, collateral,
                                       condition_ids, fee=fee)
        if fpmm.address in self.markets:
            raise ValueError(f"market {fpmm.address} already exists")

        if initial_funds > 0:
            with collateral.lock:
                collateral.approve(creator, fpmm.address, initial_funds)
                try:
                    fpmm.add_funding(creator, initial_funds,
                                     distribution_hint)
                finally:
                    collateral.approve(creator, fpmm.address, 0)

        self.markets[fpmm.address] = fpmm
        logger.info("market created %s by %s: %d outcomes, fee %s, "
                    "initial funds %s", fpmm.address, creator,
                    fpmm.outcome_count, fpmm.fee, initial_funds)
        return fpmm

    def get(self, address: str) -> FixedProductMarketMaker:
        fpmm = self.markets.get(address)
        if fpmm is None:
            raise ValueError(f"market {address} not found")
        return fpmm
