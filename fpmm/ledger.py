"""
External collaborators: the collateral asset and the outcome-token ledger.

These are in-memory reference implementations of the interfaces the
market maker consumes. They know nothing about pricing or liquidity.
They just know who holds how much of what:

- CollateralToken: a WETH-style fungible asset. deposit/withdraw,
  approve/allowance, transfer/transfer_from. Exact conservation, no
  transfer fees, no rebasing.
- ConditionalTokens: the position ledger. Conditions are prepared with
  an outcome slot count; every (collateral, combination of outcome
  slots) pair has a position id. Splitting k collateral yields k of
  every atomic position; merging reverses it.

Invariant (ConditionalTokens): for every collateral, the amount it holds
in custody equals the supply of each of that collateral's atomic
positions for a fully-split condition set.

Both expose a re-entrant lock and snapshot()/restore() so a caller can
make a multi-step operation across them atomic.

Accounts are plain strings (addresses). The "sender"/"operator" argument
stands in for the caller's identity.
"""

import copy
import hashlib
import itertools
import threading
from collections import defaultdict

from fpmm.errors import (
    InsufficientBalance, InsufficientAllowance, NotApproved,
    UnknownCondition, InvalidAmount,
)


MAX_OUTCOME_SLOTS = 256


def _digest(*parts) -> str:
    h = hashlib.sha256()
    for part in parts:
        h.update(str(part).encode())
        h.update(b"\x00")
    return "0x" + h.hexdigest()


def _require_amount(amount: int) -> None:
    if not isinstance(amount, int) or amount < 0:
        raise InvalidAmount(f"amount must be a non-negative int, got {amount!r}")


# ---------------------------------------------------------------------------
# Id derivation
# ---------------------------------------------------------------------------

def get_condition_id(oracle: str, question_id: str,
                     outcome_slot_count: int) -> str:
    return _digest("condition", oracle, question_id, outcome_slot_count)


def get_collection_id(parts: list[tuple[str, int]]) -> str:
    """
    Collection of outcomes: one (condition_id, index_set) per condition.
    index_set is a bitmask of outcome slots. Order of parts is irrelevant.
    """
    return _digest("collection", *sorted(parts))


def get_position_id(collateral_address: str, collection_id: str) -> str:
    return _digest("position", collateral_address, collection_id)


# ---------------------------------------------------------------------------
# Collateral
# ---------------------------------------------------------------------------

class CollateralToken:

    def __init__(self, name: str = "WETH", address: str | None = None,
                 lock=None):
        self.name = name
        self.address = address or _digest("collateral", name)
        self.lock = lock or threading.RLock()
        self.balances: dict[str, int] = defaultdict(int)
        self.allowances: dict[tuple[str, str], int] = defaultdict(int)
        self.total_supply = 0

    def balance_of(self, account: str) -> int:
        return self.balances.get(account, 0)

    def allowance(self, owner: str, spender: str) -> int:
        return self.allowances.get((owner, spender), 0)

    def deposit(self, account: str, amount: int) -> None:
        """Wrap native value into collateral. The only way collateral enters."""
        _require_amount(amount)
        with self.lock:
            self.balances[account] += amount
            self.total_supply += amount

    def withdraw(self, account: str, amount: int) -> None:
        _require_amount(amount)
        with self.lock:
            self._debit(account, amount)
            self.total_supply -= amount

    def approve(self, owner: str, spender: str, amount: int) -> None:
        _require_amount(amount)
        with self.lock:
            self.allowances[(owner, spender)] = amount

    def transfer(self, sender: str, to: str, amount: int) -> None:
        _require_amount(amount)
        with self.lock:
            self._debit(sender, amount)
            self.balances[to] += amount

    def transfer_from(self, spender: str, owner: str, to: str,
                      amount: int) -> None:
        """Move owner's collateral using spender's allowance."""
        _require_amount(amount)
        with self.lock:
            allowed = self.allowance(owner, spender)
            if spender != owner and allowed < amount:
                raise InsufficientAllowance(
                    f"{spender} may spend {allowed} of {owner}'s "
                    f"{self.name}, needs {amount}")
            self._debit(owner, amount)
            if spender != owner:
                self.allowances[(owner, spender)] = allowed - amount
            self.balances[to] += amount

    def snapshot(self) -> dict:
        with self.lock:
            return copy.deepcopy({
                "balances": self.balances,
                "allowances": self.allowances,
                "total_supply": self.total_supply,
            })

    def restore(self, state: dict) -> None:
        with self.lock:
            self.balances = state["balances"]
            self.allowances = state["allowances"]
            self.total_supply = state["total_supply"]

    def _debit(self, account: str, amount: int) -> None:
        have = self.balance_of(account)
        if have < amount:
            raise InsufficientBalance(
                f"{account}: need {amount} {self.name}, have {have}")
        self.balances[account] = have - amount


# ---------------------------------------------------------------------------
# Outcome tokens
# ---------------------------------------------------------------------------

class ConditionalTokens:

    def __init__(self, address: str = "conditional-tokens", lock=None):
        self.address = address
        self.lock = lock or threading.RLock()
        self.conditions: dict[str, int] = {}    # condition_id -> slot count
        self.balances: dict[tuple[str, str], int] = defaultdict(int)
        self.approvals: set[tuple[str, str]] = set()

    # ------------------------------------------------------------------
    # Conditions and positions
    # ------------------------------------------------------------------

    def prepare_condition(self, oracle: str, question_id: str,
                          outcome_slot_count: int) -> str:
        if not 2 <= outcome_slot_count <= MAX_OUTCOME_SLOTS:
            raise ValueError(
                f"outcome slot count must be in [2, {MAX_OUTCOME_SLOTS}], "
                f"got {outcome_slot_count}")
        condition_id = get_condition_id(oracle, question_id,
                                        outcome_slot_count)
        with self.lock:
            if condition_id in self.conditions:
                raise ValueError(f"condition {condition_id} already prepared")
            self.conditions[condition_id] = outcome_slot_count
        return condition_id

    def get_outcome_slot_count(self, condition_id: str) -> int:
        count = self.conditions.get(condition_id)
        if count is None:
            raise UnknownCondition(f"condition {condition_id} not prepared")
        return count

    def position_ids(self, collateral_address: str,
                     condition_ids: list[str]) -> list[str]:
        """
        Atomic positions across all conditions, one flat list.

        With conditions of n1, n2, ... slots there are n1 * n2 * ...
        positions. The last condition varies fastest.
        """
        slot_ranges = [range(self.get_outcome_slot_count(c))
                       for c in condition_ids]
        ids = []
        for combo in itertools.product(*slot_ranges):
            parts = [(c, 1 << slot) for c, slot in zip(condition_ids, combo)]
            ids.append(get_position_id(collateral_address,
                                       get_collection_id(parts)))
        return ids

    # ------------------------------------------------------------------
    # Split / merge
    # ------------------------------------------------------------------

    def split_through_all(self, sender: str, collateral: CollateralToken,
                          condition_ids: list[str], amount: int) -> None:
        """Lock `amount` of sender's collateral, mint `amount` of every position."""
        _require_amount(amount)
        ids = self.position_ids(collateral.address, condition_ids)
        with collateral.lock, self.lock:
            collateral.transfer(sender, self.address, amount)
            for position_id in ids:
                self.balances[(sender, position_id)] += amount

    def merge_through_all(self, sender: str, collateral: CollateralToken,
                          condition_ids: list[str], amount: int) -> None:
        """Burn `amount` of every position, release `amount` collateral."""
        _require_amount(amount)
        ids = self.position_ids(collateral.address, condition_ids)
        with collateral.lock, self.lock:
            for position_id in ids:
                self._require_balance(sender, position_id, amount)
            for position_id in ids:
                self.balances[(sender, position_id)] -= amount
            collateral.transfer(self.address, sender, amount)

    # ------------------------------------------------------------------
    # Balances and transfers
    # ------------------------------------------------------------------

    def balance_of(self, holder: str, position_id: str) -> int:
        return self.balances.get((holder, position_id), 0)

    def balance_of_batch(self, holders: list[str],
                         position_ids: list[str]) -> list[int]:
        if len(holders) != len(position_ids):
            raise ValueError("holders and position ids length mismatch")
        return [self.balance_of(h, p) for h, p in zip(holders, position_ids)]

    def total_supply(self, position_id: str) -> int:
        return sum(v for (_, p), v in self.balances.items() if p == position_id)

    def set_approval_for_all(self, owner: str, operator: str,
                             approved: bool) -> None:
        with self.lock:
            if approved:
                self.approvals.add((owner, operator))
            else:
                self.approvals.discard((owner, operator))

    def is_approved_for_all(self, owner: str, operator: str) -> bool:
        return (owner, operator) in self.approvals

    def safe_transfer_from(self, operator: str, src: str, dst: str,
                           position_id: str, amount: int) -> None:
        self.safe_batch_transfer_from(operator, src, dst,
                                      [position_id], [amount])

    def safe_batch_transfer_from(self, operator: str, src: str, dst: str,
                                 position_ids: list[str],
                                 amounts: list[int]) -> None:
        if len(position_ids) != len(amounts):
            raise ValueError("position ids and amounts length mismatch")
        for amount in amounts:
            _require_amount(amount)
        with self.lock:
            if operator != src and not self.is_approved_for_all(src, operator):
                raise NotApproved(
                    f"{operator} is not approved to move {src}'s positions")
            needed: dict[str, int] = defaultdict(int)
            for position_id, amount in zip(position_ids, amounts):
                needed[position_id] += amount
            for position_id, amount in needed.items():
                self._require_balance(src, position_id, amount)
            for position_id, amount in zip(position_ids, amounts):
                self.balances[(src, position_id)] -= amount
                self.balances[(dst, position_id)] += amount

    # ------------------------------------------------------------------
    # Atomicity support
    # ------------------------------------------------------------------

    def snapshot(self) -> dict:
        with self.lock:
            return copy.deepcopy({
                "conditions": self.conditions,
                "balances": self.balances,
                "approvals": self.approvals,
            })

    def restore(self, state: dict) -> None:
        with self.lock:
            self.conditions = state["conditions"]
            self.balances = state["balances"]
            self.approvals = state["approvals"]

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _require_balance(self, holder: str, position_id: str,
                         amount: int) -> None:
        have = self.balance_of(holder, position_id)
        if have < amount:
            raise InsufficientBalance(
                f"{holder}: need {amount} of position {position_id[:10]}, "
                f"have {have}")
