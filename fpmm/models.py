"""
Data models for the fixed-product market maker.

Two ledgers are owned by each market maker:
- PoolLedger: the engine's own holdings of every outcome token. This is
  the invariant-bearing state that prices are computed from.
- ShareLedger: liquidity shares per provider, plus the fee pool
  bookkeeping that decides how much collected collateral fee each
  provider may withdraw.

Everything else here is a record: funding plans produced by the pure
planners in fpmm.pricing, and the event log (trades, funding changes,
fee withdrawals).

All amounts are ints scaled by fixed_point.ONE.
"""

import threading
from collections import defaultdict
from dataclasses import dataclass, field
from typing import ClassVar
from datetime import datetime, timezone

from fpmm import fixed_point as fp
from fpmm.errors import InsufficientShares, InvalidAmount


# ---------------------------------------------------------------------------
# Sequential IDs
# ---------------------------------------------------------------------------

_counters: dict[str, int] = defaultdict(int)
_counters_lock = threading.Lock()


def next_id(kind: str) -> int:
    """Sequential ID. Kinds: trade, funding, fees, market."""
    with _counters_lock:
        _counters[kind] += 1
        return _counters[kind]


def release_ids(ids: dict[str, int]) -> None:
    """
    Hand back the last id of each kind, if it is still the most recent one
    issued. Used when the operation that took it is rolled back; an id
    another caller has already moved past stays burnt.
    """
    with _counters_lock:
        for kind, last in ids.items():
            if _counters[kind] == last:
                _counters[kind] = last - 1


def reset_counters() -> None:
    """Reset all counters. For testing."""
    with _counters_lock:
        _counters.clear()


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


# ---------------------------------------------------------------------------
# Pool ledger
# ---------------------------------------------------------------------------

@dataclass
class PoolLedger:
    """
    Quantity of each outcome token held by the engine, by outcome index.

    Invariant: balances[i] equals what the outcome-token ledger records
    as owned by the engine for position i. The market maker checks this
    after every operation.
    """
    balances: list[int]

    @staticmethod
    def zero(n: int) -> "PoolLedger":
        return PoolLedger(balances=[0] * n)

    def __len__(self) -> int:
        return len(self.balances)

    def snapshot(self) -> list[int]:
        return list(self.balances)

    def credit(self, amounts: list[int]) -> None:
        self.balances = [fp.add(b, a) for b, a in zip(self.balances, amounts)]

    def debit(self, amounts: list[int]) -> None:
        self.balances = [fp.sub(b, a) for b, a in zip(self.balances, amounts)]

    @property
    def is_funded(self) -> bool:
        return all(b > 0 for b in self.balances)

    @property
    def is_empty(self) -> bool:
        return all(b == 0 for b in self.balances)

    def product(self) -> int:
        # Unbounded on purpose: only used to compare invariants.
        result = 1
        for b in self.balances:
            result *= b
        return result


# ---------------------------------------------------------------------------
# Liquidity shares + fee pool
# ---------------------------------------------------------------------------

@dataclass
class ShareLedger:
    """
    Fungible liquidity shares and the fee pool attached to them.

    Fees use a weight scheme so a holder's claim is fixed at collection
    time:

      fee_pool_weight       total fees ever credited, plus the weight
                            attached to shares when they were minted
      withdrawn_fees[h]     part of the weight already counted as h's
      claim(h)              fee_pool_weight * balance(h) / total_supply
                            - withdrawn_fees[h]

    Minting new shares adds matching weight to both sides, so a new
    holder's claim starts at zero. Shares leaving a holder (burn or move)
    first settle that holder's claim; the caller pays out the returned
    amount in collateral.
    """
    balances: dict[str, int] = field(default_factory=dict)
    total_supply: int = 0
    fee_pool_weight: int = 0
    withdrawn_fees: dict[str, int] = field(default_factory=dict)
    total_withdrawn_fees: int = 0

    def balance_of(self, holder: str) -> int:
        return self.balances.get(holder, 0)

    def collected_fees(self) -> int:
        return fp.sub(self.fee_pool_weight, self.total_withdrawn_fees)

    def fees_withdrawable_by(self, holder: str) -> int:
        if self.total_supply == 0:
            return 0
        raw = fp.mul_div(self.fee_pool_weight, self.balance_of(holder),
                         self.total_supply)
        withdrawn = self.withdrawn_fees.get(holder, 0)
        return raw - withdrawn if raw > withdrawn else 0

    def add_fees(self, amount: int) -> None:
        self.fee_pool_weight = fp.add(self.fee_pool_weight, amount)

    def settle_fees(self, holder: str) -> int:
        """Mark holder's claim as withdrawn. Returns collateral owed."""
        owed = self.fees_withdrawable_by(holder)
        if owed > 0:
            self.withdrawn_fees[holder] = self.withdrawn_fees.get(holder, 0) + owed
            self.total_withdrawn_fees = fp.add(self.total_withdrawn_fees, owed)
        return owed

    def mint(self, holder: str, amount: int) -> None:
        if amount <= 0:
            raise InvalidAmount(f"mint amount must be positive, got {amount}")
        if self.total_supply == 0:
            weight = amount
        else:
            weight = fp.mul_div(self.fee_pool_weight, amount, self.total_supply)
        self.fee_pool_weight = fp.add(self.fee_pool_weight, weight)
        self._add_withdrawn(holder, weight)
        self.balances[holder] = fp.add(self.balance_of(holder), amount)
        self.total_supply = fp.add(self.total_supply, amount)

    def burn(self, holder: str, amount: int) -> int:
        """Burn shares. Returns the fees settled for holder beforehand."""
        self._require_balance(holder, amount)
        owed = self.settle_fees(holder)
        weight = fp.mul_div(self.fee_pool_weight, amount, self.total_supply)
        self._sub_withdrawn(holder, weight)
        self.fee_pool_weight = fp.sub(self.fee_pool_weight, weight)
        self._sub_balance(holder, amount)
        self.total_supply = fp.sub(self.total_supply, amount)
        return owed

    def move(self, src: str, dst: str, amount: int) -> int:
        """Transfer shares. Returns the fees settled for src beforehand."""
        self._require_balance(src, amount)
        owed = self.settle_fees(src)
        weight = fp.mul_div(self.fee_pool_weight, amount, self.total_supply)
        self._sub_withdrawn(src, weight)
        self._add_withdrawn(dst, weight)
        self._sub_balance(src, amount)
        self.balances[dst] = fp.add(self.balance_of(dst), amount)
        return owed

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _require_balance(self, holder: str, amount: int) -> None:
        if amount <= 0:
            raise InvalidAmount(f"share amount must be positive, got {amount}")
        held = self.balance_of(holder)
        if held < amount:
            raise InsufficientShares(
                f"{holder}: need {amount} shares, have {held}")

    def _sub_balance(self, holder: str, amount: int) -> None:
        remaining = fp.sub(self.balance_of(holder), amount)
        if remaining:
            self.balances[holder] = remaining
        else:
            self.balances.pop(holder, None)

    def _add_withdrawn(self, holder: str, weight: int) -> None:
        self.withdrawn_fees[holder] = self.withdrawn_fees.get(holder, 0) + weight
        self.total_withdrawn_fees = fp.add(self.total_withdrawn_fees, weight)

    def _sub_withdrawn(self, holder: str, weight: int) -> None:
        self.withdrawn_fees[holder] = fp.sub(
            self.withdrawn_fees.get(holder, 0), weight)
        self.total_withdrawn_fees = fp.sub(self.total_withdrawn_fees, weight)


# ---------------------------------------------------------------------------
# Plans (pure planner output)
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class FundingPlan:
    """
    What an add_funding call does, computed before anything moves.

    retained[i]   outcome-i tokens that stay in the pool
    send_back[i]  outcome-i tokens returned to the funder
                  (retained[i] + send_back[i] == amount)
    shares        liquidity shares minted to the funder
    """
    amount: int
    retained: tuple[int, ...]
    send_back: tuple[int, ...]
    shares: int


# ---------------------------------------------------------------------------
# Event records
# ---------------------------------------------------------------------------

@dataclass
class Trade:
    """
    A buy or sell against the pool.

    buy:  collateral_amount is the investment (fee included),
          outcome_tokens is what the buyer received.
    sell: collateral_amount is what the seller received (fee excluded),
          outcome_tokens is what the seller gave up.
    """
    ID_KIND: ClassVar[str] = "trade"

    id: int
    kind: str               # "buy" or "sell"
    account: str
    outcome_index: int
    collateral_amount: int
    fee_amount: int
    outcome_tokens: int
    created_at: str = field(default_factory=_now)

    @staticmethod
    def new(kind: str, account: str, outcome_index: int,
            collateral_amount: int, fee_amount: int,
            outcome_tokens: int) -> "Trade":
        return Trade(
            id=next_id(Trade.ID_KIND),
            kind=kind,
            account=account,
            outcome_index=outcome_index,
            collateral_amount=collateral_amount,
            fee_amount=fee_amount,
            outcome_tokens=outcome_tokens,
        )


@dataclass
class FundingAdded:
    ID_KIND: ClassVar[str] = "funding"

    id: int
    funder: str
    amounts_added: list[int]        # retained in pool, per outcome
    amounts_sent_back: list[int]
    shares_minted: int
    created_at: str = field(default_factory=_now)

    @staticmethod
    def new(funder: str, plan: FundingPlan) -> "FundingAdded":
        return FundingAdded(
            id=next_id(FundingAdded.ID_KIND),
            funder=funder,
            amounts_added=list(plan.retained),
            amounts_sent_back=list(plan.send_back),
            shares_minted=plan.shares,
        )


@dataclass
class FundingRemoved:
    ID_KIND: ClassVar[str] = "funding"

    id: int
    funder: str
    amounts_removed: list[int]
    collateral_removed_from_fee_pool: int
    shares_burnt: int
    created_at: str = field(default_factory=_now)

    @staticmethod
    def new(funder: str, amounts_removed: list[int], fees_paid: int,
            shares_burnt: int) -> "FundingRemoved":
        return FundingRemoved(
            id=next_id(FundingRemoved.ID_KIND),
            funder=funder,
            amounts_removed=amounts_removed,
            collateral_removed_from_fee_pool=fees_paid,
            shares_burnt=shares_burnt,
        )


@dataclass
class FeesWithdrawn:
    ID_KIND: ClassVar[str] = "fees"

    id: int
    account: str
    amount: int
    created_at: str = field(default_factory=_now)

    @staticmethod
    def new(account: str, amount: int) -> "FeesWithdrawn":
        return FeesWithdrawn(id=next_id(FeesWithdrawn.ID_KIND),
                             account=account,
                             amount=amount)
