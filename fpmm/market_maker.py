"""
Fixed-product market maker. Trade execution, liquidity management, fees.

The market maker owns two ledgers (fpmm.models): the pool (its own
holdings of every outcome token) and the liquidity shares. It talks to
the collateral token and the outcome-token ledger (fpmm.ledger) for all
custody changes, and to fpmm.pricing for every number it commits.

Every trade is between a trader and the pool:
  buy:  collateral in -> fee to fee pool -> rest split into every
        outcome -> bought outcome tokens out
  sell: sold outcome tokens in -> gross amount merged out of every
        outcome back to collateral -> fee to fee pool -> rest out

Funding:
  add:    collateral in -> split into every outcome -> shares minted ->
          tokens above the pool's ratio sent back
  remove: shares burnt (funder's unpaid fees settled first) -> pro-rata
          slice of every outcome pool out

Atomicity and ordering: every mutating call holds the collateral lock,
the outcome-ledger lock and the engine lock for its whole duration, and
runs inside _atomic(), which snapshots all three and restores them if
anything raises. A failed call leaves no trace. Quotes are computed
inside the same critical section, against one consistent view of the
pool.

Invariant (checked after every mutating call):
  pool.balances[i] == outcome ledger balance of this engine for position i
Outcome tokens sent to the engine address from outside are booked into
the pool at the start of the next call. Read-outs and quotes already see
them.
"""

import copy
import logging
import threading
from contextlib import contextmanager
from decimal import Decimal

from fpmm import fixed_point as fp
from fpmm import pricing
from fpmm.config import MarketMakerConfig
from fpmm.errors import (
    MarketMakerError, SlippageExceeded, InsufficientShares, InvalidAmount,
    PoolLedgerMismatch,
)
from fpmm.ledger import CollateralToken, ConditionalTokens
from fpmm.models import (
    PoolLedger, ShareLedger, Trade, FundingAdded, FundingRemoved,
    FeesWithdrawn, next_id, release_ids,
)


logger = logging.getLogger(__name__)


class FixedProductMarketMaker:

    def __init__(self, conditional_tokens: ConditionalTokens,
                 collateral: CollateralToken, condition_ids: list[str],
                 fee: int | str | None = None, address: str | None = None):
        if fee is None:
            self.config = MarketMakerConfig(condition_ids=condition_ids)
        else:
            self.config = MarketMakerConfig(condition_ids=condition_ids,
                                            fee=fee)
        self.conditional_tokens = conditional_tokens
        self.collateral = collateral
        self.address = address or f"fpmm-{next_id('market')}"
        self.position_ids = conditional_tokens.position_ids(
            collateral.address, self.condition_ids)

        self.pool = PoolLedger.zero(len(self.position_ids))
        self.shares = ShareLedger()
        self.events: list = []
        self._lock = threading.RLock()

    @property
    def fee(self) -> int:
        return self.config.fee

    @property
    def condition_ids(self) -> list[str]:
        return self.config.condition_ids

    @property
    def outcome_count(self) -> int:
        return len(self.position_ids)

    # ------------------------------------------------------------------
    # Read-only
    # ------------------------------------------------------------------

    def pool_balances(self) -> list[int]:
        """
        Current pool, as the outcome ledger records it for this engine.
        Tokens donated since the last operation are included, but not
        booked until the next mutating call.
        """
        with self.conditional_tokens.lock, self._lock:
            recorded = self._ledger_balances()
            return [max(held, booked)
                    for held, booked in zip(recorded, self.pool.balances)]

    def calc_buy_amount(self, investment: int, outcome_index: int) -> int:
        tokens = pricing.calc_buy_amount(
            self.pool_balances(), self.fee, investment, outcome_index)
        logger.debug("quote buy: %s collateral -> %s of outcome %d",
                     investment, tokens, outcome_index)
        return tokens

    def calc_sell_amount(self, return_amount: int, outcome_index: int) -> int:
        tokens = pricing.calc_sell_amount(
            self.pool_balances(), self.fee, return_amount, outcome_index)
        logger.debug("quote sell: %s of outcome %d -> %s collateral",
                     tokens, outcome_index, return_amount)
        return tokens

    def prices(self) -> list[Decimal]:
        return pricing.marginal_prices(self.pool_balances())

    @property
    def total_supply(self) -> int:
        return self.shares.total_supply

    def balance_of(self, holder: str) -> int:
        return self.shares.balance_of(holder)

    def collected_fees(self) -> int:
        return self.shares.collected_fees()

    def fees_withdrawable_by(self, holder: str) -> int:
        return self.shares.fees_withdrawable_by(holder)

    # ------------------------------------------------------------------
    # Trading
    # ------------------------------------------------------------------

    def buy(self, buyer: str, investment: int, outcome_index: int,
            min_outcome_tokens_out: int) -> Trade:
        """
        Buy outcome tokens with `investment` collateral (fee included).

        The buyer must have approved this engine for `investment`.
        Raises SlippageExceeded if the quote is below the bound.
        """
        with self._atomic("buy"):
            tokens = self.calc_buy_amount(investment, outcome_index)
            if tokens < min_outcome_tokens_out:
                raise SlippageExceeded(
                    f"minimum buy amount not reached: quote {tokens} "
                    f"< {min_outcome_tokens_out}")

            self.collateral.transfer_from(
                self.address, buyer, self.address, investment)
            fee_amount = pricing.buy_fee(investment, self.fee)
            self.shares.add_fees(fee_amount)

            invested = fp.sub(investment, fee_amount)
            self._split(invested)
            self._send(buyer, self._one_hot(outcome_index, tokens))

            trade = Trade.new(kind="buy", account=buyer,
                              outcome_index=outcome_index,
                              collateral_amount=investment,
                              fee_amount=fee_amount, outcome_tokens=tokens)
            self.events.append(trade)

        logger.info("buy %s: %s invested in outcome %d, %s tokens out "
                    "(fee %s)", self.address, investment, outcome_index,
                    tokens, fee_amount)
        return trade

    def sell(self, seller: str, return_amount: int, outcome_index: int,
             max_outcome_tokens_in: int) -> Trade:
        """
        Sell outcome tokens for exactly `return_amount` collateral.

        The seller must have approved this engine on the outcome ledger.
        Raises SlippageExceeded if the tokens required exceed the bound.
        """
        with self._atomic("sell"):
            tokens = self.calc_sell_amount(return_amount, outcome_index)
            if tokens > max_outcome_tokens_in:
                raise SlippageExceeded(
                    f"maximum sell amount exceeded: quote {tokens} "
                    f"> {max_outcome_tokens_in}")

            self._receive(seller, self._one_hot(outcome_index, tokens))

            gross = pricing.return_amount_plus_fees(return_amount, self.fee)
            fee_amount = fp.sub(gross, return_amount)
            self.shares.add_fees(fee_amount)
            self._merge(gross)
            self.collateral.transfer(self.address, seller, return_amount)

            trade = Trade.new(kind="sell", account=seller,
                              outcome_index=outcome_index,
                              collateral_amount=return_amount,
                              fee_amount=fee_amount, outcome_tokens=tokens)
            self.events.append(trade)

        logger.info("sell %s: %s tokens of outcome %d in, %s returned "
                    "(fee %s)", self.address, tokens, outcome_index,
                    return_amount, fee_amount)
        return trade

    # ------------------------------------------------------------------
    # Liquidity
    # ------------------------------------------------------------------

    def add_funding(self, funder: str, amount: int,
                    distribution_hint=()) -> FundingAdded:
        """
        Add `amount` collateral of liquidity.

        distribution_hint only applies to the first funding (pool empty of
        shares); it sets the initial pool ratio. Afterwards it must be
        empty and the current ratio is kept, with the excess sent back.
        """
        with self._atomic("add_funding"):
            plan = pricing.plan_funding(
                self.pool.snapshot(), self.shares.total_supply,
                amount, distribution_hint)

            self.collateral.transfer_from(
                self.address, funder, self.address, amount)
            self._split(amount)
            self.shares.mint(funder, plan.shares)
            self._send(funder, list(plan.send_back))

            event = FundingAdded.new(funder, plan)
            self.events.append(event)

        logger.info("funding added %s: %s by %s, %s shares minted, "
                    "sent back %s", self.address, amount, funder,
                    plan.shares, list(plan.send_back))
        return event

    def remove_funding(self, holder: str, shares_to_burn: int) -> FundingRemoved:
        """
        Burn shares for a pro-rata slice of every outcome pool.

        Any fees the holder has not withdrawn yet are paid out first, in
        collateral.
        """
        with self._atomic("remove_funding"):
            if shares_to_burn <= 0:
                raise InvalidAmount(
                    f"shares to burn must be positive, got {shares_to_burn}")
            held = self.shares.balance_of(holder)
            if held < shares_to_burn:
                raise InsufficientShares(
                    f"{holder}: can't burn {shares_to_burn} shares, "
                    f"only holds {held}")

            amounts = pricing.plan_defunding(
                self.pool.snapshot(), self.shares.total_supply,
                shares_to_burn)
            fees_paid = self.shares.burn(holder, shares_to_burn)
            self._pay_fees(holder, fees_paid)
            self._send(holder, amounts)

            event = FundingRemoved.new(holder, amounts, fees_paid,
                                       shares_to_burn)
            self.events.append(event)

        logger.info("funding removed %s: %s shares burnt by %s, returned %s, "
                    "fees paid %s", self.address, shares_to_burn, holder,
                    amounts, fees_paid)
        return event

    # ------------------------------------------------------------------
    # Fees and share transfers
    # ------------------------------------------------------------------

    def withdraw_fees(self, holder: str) -> int:
        """Pay out holder's share of collected fees. Returns amount paid."""
        with self._atomic("withdraw_fees"):
            owed = self.shares.settle_fees(holder)
            self._pay_fees(holder, owed)
        if owed:
            logger.info("fees withdrawn %s: %s to %s", self.address, owed,
                        holder)
        return owed

    def transfer_shares(self, src: str, dst: str, amount: int) -> None:
        """Move liquidity shares. src's unpaid fees are settled first."""
        with self._atomic("transfer_shares"):
            owed = self.shares.move(src, dst, amount)
            self._pay_fees(src, owed)
        logger.info("shares moved %s: %s from %s to %s", self.address,
                    amount, src, dst)

    # ------------------------------------------------------------------
    # Invariants
    # ------------------------------------------------------------------

    def check_invariants(self) -> None:
        """
        Raise if the engine's books disagree with the collaborators.

        - pool balance i == outcome ledger balance of position i
        - share balances sum to total supply
        - collateral held by the engine covers collected fees
        """
        with self.collateral.lock, self.conditional_tokens.lock, self._lock:
            recorded = self._ledger_balances()
            if recorded != self.pool.balances:
                raise PoolLedgerMismatch(
                    f"pool {self.pool.balances} != ledger {recorded}")
            if sum(self.shares.balances.values()) != self.shares.total_supply:
                raise MarketMakerError(
                    f"share balances sum to "
                    f"{sum(self.shares.balances.values())}, total supply "
                    f"is {self.shares.total_supply}")
            held = self.collateral.balance_of(self.address)
            if held < self.shares.collected_fees():
                raise MarketMakerError(
                    f"collateral {held} does not cover collected fees "
                    f"{self.shares.collected_fees()}")

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @contextmanager
    def _atomic(self, operation: str):
        with self.collateral.lock, self.conditional_tokens.lock, self._lock:
            saved_collateral = self.collateral.snapshot()
            saved_positions = self.conditional_tokens.snapshot()
            saved_books = copy.deepcopy((self.pool, self.shares))
            saved_events = len(self.events)
            try:
                self._absorb_donations()
                yield
                self.check_invariants()
            except Exception as e:
                self.collateral.restore(saved_collateral)
                self.conditional_tokens.restore(saved_positions)
                self.pool, self.shares = saved_books
                release_ids({event.ID_KIND: event.id
                             for event in self.events[saved_events:]})
                del self.events[saved_events:]
                logger.warning("%s %s rolled back: %s", operation,
                               self.address, e)
                raise

    def _absorb_donations(self) -> None:
        recorded = self._ledger_balances()
        for i, (held, booked) in enumerate(zip(recorded, self.pool.balances)):
            if held < booked:
                raise PoolLedgerMismatch(
                    f"outcome {i}: pool books {booked}, ledger holds {held}")
        extra = [held - booked
                 for held, booked in zip(recorded, self.pool.balances)]
        if any(extra):
            logger.warning("absorbing %s outcome tokens sent to %s",
                           extra, self.address)
            self.pool.credit(extra)

    def _ledger_balances(self) -> list[int]:
        return self.conditional_tokens.balance_of_batch(
            [self.address] * self.outcome_count, self.position_ids)

    def _one_hot(self, outcome_index: int, amount: int) -> list[int]:
        amounts = [0] * self.outcome_count
        amounts[outcome_index] = amount
        return amounts

    def _split(self, amount: int) -> None:
        self.conditional_tokens.split_through_all(
            self.address, self.collateral, self.condition_ids, amount)
        self.pool.credit([amount] * self.outcome_count)

    def _merge(self, amount: int) -> None:
        self.conditional_tokens.merge_through_all(
            self.address, self.collateral, self.condition_ids, amount)
        self.pool.debit([amount] * self.outcome_count)

    def _send(self, to: str, amounts: list[int]) -> None:
        if not any(amounts):
            return
        self.conditional_tokens.safe_batch_transfer_from(
            self.address, self.address, to, self.position_ids, amounts)
        self.pool.debit(amounts)

    def _receive(self, src: str, amounts: list[int]) -> None:
        if not any(amounts):
            return
        self.conditional_tokens.safe_batch_transfer_from(
            self.address, src, self.address, self.position_ids, amounts)
        self.pool.credit(amounts)

    def _pay_fees(self, holder: str, amount: int) -> None:
        if amount <= 0:
            return
        self.collateral.transfer(self.address, holder, amount)
        self.events.append(FeesWithdrawn.new(holder, amount))
