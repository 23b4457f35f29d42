"""
Error taxonomy. Every engine failure is one of these, raised synchronously
to the caller of the failing operation. Nothing is retried internally and
nothing is committed on error.

MarketMakerError subclasses ValueError so callers that only care about
"bad request" can catch ValueError, as with the ledger errors below.
"""


class MarketMakerError(ValueError):
    pass


class InvalidAmount(MarketMakerError):
    """Zero or negative quantity where a positive one is required."""


class InvalidOutcome(MarketMakerError):
    """Outcome index outside [0, N)."""


class InsufficientLiquidity(MarketMakerError):
    """Operation needs a funded pool and at least one outcome pool is empty."""


class SlippageExceeded(MarketMakerError):
    """Quote moved past the caller's bound. Re-quote and retry."""


class InvalidDistribution(MarketMakerError):
    pass


class UnexpectedDistribution(MarketMakerError):
    pass


class InsufficientShares(MarketMakerError):
    pass


class ArithmeticOverflow(MarketMakerError):
    """Fixed-point result outside [0, MAX_UINT] or division by zero."""


class ExcessiveReturnAmount(MarketMakerError):
    """Requested sell return would drain an outcome pool."""


class PoolLedgerMismatch(MarketMakerError):
    """Engine pool holds more than the outcome-token ledger says it owns."""


# ---------------------------------------------------------------------------
# Collaborator (ledger) errors
# ---------------------------------------------------------------------------

class LedgerError(ValueError):
    pass


class InsufficientBalance(LedgerError):
    pass


class InsufficientAllowance(LedgerError):
    pass


class NotApproved(LedgerError):
    pass


class UnknownCondition(LedgerError):
    pass
