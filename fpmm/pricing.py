"""
Fixed-product pricing. Pure math, no state.

All functions take the current pool balances (list of ints, one per
outcome, scaled by ONE) and return ints. The caller (market maker)
handles custody, transfers and the event log.

Invariant: across a trade, the product of all pool balances never
decreases. The fee is removed before the invariant is applied and never
re-enters the product.

Buying outcome k with collateral x (fee f):
    a = x - ceil(x * f)
    every pool j != k grows by a (a units of every outcome are minted)
    B_k' = B_k * prod_{j != k} B_j / (B_j + a)
    buyer receives B_k + a - B_k'

Selling outcome k for collateral r:
    g = ceil(r / (1 - f))        gross removed from every pool
    B_k' = B_k * prod_{j != k} B_j / (B_j - g)
    seller gives up g + B_k' - B_k

Rounding: every step rounds in the pool's favor (ending balances up,
fees up, refunds and payouts down).
"""

from decimal import Decimal, localcontext

from fpmm import fixed_point as fp
from fpmm.fixed_point import ONE
from fpmm.errors import (
    InvalidAmount, InvalidOutcome, InsufficientLiquidity,
    ExcessiveReturnAmount, InvalidDistribution, UnexpectedDistribution,
    InsufficientShares,
)
from fpmm.models import FundingPlan


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------

def _require_outcome(pool_balances: list[int], outcome_index: int) -> None:
    if not 0 <= outcome_index < len(pool_balances):
        raise InvalidOutcome(
            f"outcome index {outcome_index} not in [0, {len(pool_balances)})")


def _require_funded(pool_balances: list[int]) -> None:
    if any(b == 0 for b in pool_balances):
        raise InsufficientLiquidity("must have non-zero balances")


def _hint_weights(hint: list) -> list[int]:
    weights = []
    for w in hint:
        try:
            integral = int(w) == w
        except (TypeError, ValueError, OverflowError):
            integral = False
        if not integral or w < 0:
            raise InvalidDistribution(
                f"hint weights must be non-negative integers: {hint}")
        weights.append(int(w))
    return weights


def _ending_balance(pool_balances: list[int], outcome_index: int,
                    delta: int, sign: int) -> int:
    """
    Balance of the traded outcome that keeps the product invariant, once
    every other pool has moved by sign * delta. Applied one factor at a
    time, multiply then divide, rounding up.
    """
    ending = fp.mul(pool_balances[outcome_index], ONE)
    for i, balance in enumerate(pool_balances):
        if i == outcome_index:
            continue
        moved = fp.add(balance, delta) if sign > 0 else fp.sub(balance, delta)
        ending = fp.mul_div_up(ending, balance, moved)
    if ending == 0:
        raise InsufficientLiquidity("must have non-zero balances")
    return fp.ceildiv(ending, ONE)


# ---------------------------------------------------------------------------
# Fees
# ---------------------------------------------------------------------------

def buy_fee(investment: int, fee: int) -> int:
    """Fee taken off the top of an investment."""
    return fp.mul_div_up(investment, fee, ONE)


def return_amount_plus_fees(return_amount: int, fee: int) -> int:
    """Gross collateral removed from the pool to pay out return_amount."""
    return fp.mul_div_up(return_amount, ONE, fp.sub(ONE, fee))


# ---------------------------------------------------------------------------
# Quotes
# ---------------------------------------------------------------------------

def calc_buy_amount(pool_balances: list[int], fee: int,
                    investment: int, outcome_index: int) -> int:
    """Outcome tokens delivered for `investment` collateral (fee included)."""
    if investment <= 0:
        raise InvalidAmount(f"investment must be positive, got {investment}")
    _require_outcome(pool_balances, outcome_index)
    _require_funded(pool_balances)

    investment_minus_fees = fp.sub(investment, buy_fee(investment, fee))
    buy_pool = pool_balances[outcome_index]
    ending = _ending_balance(pool_balances, outcome_index,
                             investment_minus_fees, sign=1)
    return fp.sub(fp.add(buy_pool, investment_minus_fees), ending)


def calc_sell_amount(pool_balances: list[int], fee: int,
                     return_amount: int, outcome_index: int) -> int:
    """Outcome tokens the seller must give up to receive `return_amount`."""
    if return_amount <= 0:
        raise InvalidAmount(
            f"return amount must be positive, got {return_amount}")
    _require_outcome(pool_balances, outcome_index)
    _require_funded(pool_balances)

    gross = return_amount_plus_fees(return_amount, fee)
    for i, balance in enumerate(pool_balances):
        if i != outcome_index and balance <= gross:
            raise ExcessiveReturnAmount(
                f"return {return_amount} (gross {gross}) would drain "
                f"outcome {i} pool of {balance}")
    sell_pool = pool_balances[outcome_index]
    ending = _ending_balance(pool_balances, outcome_index, gross, sign=-1)
    return fp.sub(fp.add(gross, ending), sell_pool)


# ---------------------------------------------------------------------------
# Liquidity
# ---------------------------------------------------------------------------

def plan_funding(pool_balances: list[int], total_shares: int, amount: int,
                 distribution_hint=()) -> FundingPlan:
    """
    Split `amount` collateral into every outcome and decide how much of
    each stays in the pool.

    First funding: pools end up proportional to distribution_hint (the
    most-weighted outcome keeps the full amount). No hint means equal
    pools. Shares minted = amount.

    Later funding: pools keep their current ratio. The largest pool
    grows by exactly `amount`, the others proportionally less, and the
    excess goes back to the funder. Shares minted are proportional to
    the largest pool's growth.
    """
    if amount <= 0:
        raise InvalidAmount(f"funding must be positive, got {amount}")
    hint = list(distribution_hint or ())
    n = len(pool_balances)

    if total_shares > 0:
        if hint:
            raise UnexpectedDistribution(
                "cannot use distribution hint after initial funding")
        pool_weight = max(pool_balances)
        if pool_weight == 0:
            raise InsufficientLiquidity("shares outstanding but pool is empty")
        retained = [fp.mul_div_up(amount, b, pool_weight) for b in pool_balances]
        shares = fp.mul_div(amount, total_shares, pool_weight)
        if shares == 0:
            raise InvalidAmount(f"funding {amount} too small to mint shares")
    else:
        if hint:
            if len(hint) != n:
                raise InvalidDistribution(
                    f"hint length {len(hint)} != {n} outcomes")
            hint = _hint_weights(hint)
            max_hint = max(hint)
            if max_hint == 0:
                raise InvalidDistribution("hint weights are all zero")
            retained = [fp.mul_div_up(amount, w, max_hint) for w in hint]
            if any(r == 0 for r in retained):
                raise InvalidDistribution("must hint a valid distribution")
        else:
            retained = [amount] * n
        shares = amount

    send_back = [fp.sub(amount, r) for r in retained]
    return FundingPlan(amount=amount, retained=tuple(retained),
                       send_back=tuple(send_back), shares=shares)


def plan_defunding(pool_balances: list[int], total_shares: int,
                   shares: int) -> list[int]:
    """Outcome tokens returned for burning `shares`: floor(B_i * s / T)."""
    if shares <= 0:
        raise InvalidAmount(f"shares to burn must be positive, got {shares}")
    if shares > total_shares:
        raise InsufficientShares(
            f"cannot burn {shares} of {total_shares} total shares")
    return [fp.mul_div(b, shares, total_shares) for b in pool_balances]


# ---------------------------------------------------------------------------
# Read-outs
# ---------------------------------------------------------------------------

def pool_product(pool_balances: list[int]) -> int:
    result = 1
    for b in pool_balances:
        result *= b
    return result


def marginal_prices(pool_balances: list[int]) -> list[Decimal]:
    """
    Implied probability of each outcome.

    p_i = prod_{j != i} B_j / sum_k prod_{j != k} B_j

    Scarcer pools price higher. Always sums to 1 (up to Decimal precision).
    """
    _require_funded(pool_balances)
    others = []
    for i in range(len(pool_balances)):
        product = 1
        for j, b in enumerate(pool_balances):
            if j != i:
                product *= b
        others.append(product)
    total = sum(others)
    with localcontext() as ctx:
        ctx.prec = 40
        return [Decimal(o) / Decimal(total) for o in others]
