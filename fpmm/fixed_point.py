"""
Checked fixed-point integer arithmetic. One unit = ONE = 10**18.

Every money-like quantity in the engine is a non-negative int bounded by
MAX_UINT. Python ints never wrap, so the bound is enforced explicitly:
any intermediate outside [0, MAX_UINT] raises ArithmeticOverflow instead of
being carried along silently.

Division comes in two flavours, mul_div (floor) and mul_div_up (ceiling).
Callers pick whichever rounds in the pool's favor at that step.
"""

from decimal import Decimal, InvalidOperation, localcontext

from fpmm.errors import ArithmeticOverflow, InvalidAmount


DECIMALS = 18
ONE = 10 ** DECIMALS
MAX_UINT = 2 ** 256 - 1

_QUANTUM = Decimal(1).scaleb(-DECIMALS)
# digits for a MAX_UINT amount plus 18 decimals
_PRECISION = 100


def checked(value: int) -> int:
    if value < 0 or value > MAX_UINT:
        raise ArithmeticOverflow(f"value {value} outside [0, 2**256 - 1]")
    return value


def add(a: int, b: int) -> int:
    return checked(a + b)


def sub(a: int, b: int) -> int:
    if b > a:
        raise ArithmeticOverflow(f"underflow: {a} - {b}")
    return a - b


def mul(a: int, b: int) -> int:
    return checked(a * b)


def div(a: int, d: int) -> int:
    if d == 0:
        raise ArithmeticOverflow("division by zero")
    return checked(a) // d


def ceildiv(a: int, d: int) -> int:
    """Ceiling of a / d for non-negative a."""
    if d == 0:
        raise ArithmeticOverflow("division by zero")
    checked(a)
    return -(-a // d)


def mul_div(a: int, b: int, d: int) -> int:
    """floor(a * b / d), multiply first."""
    return div(mul(a, b), d)


def mul_div_up(a: int, b: int, d: int) -> int:
    """ceil(a * b / d), multiply first."""
    return ceildiv(mul(a, b), d)


# ---------------------------------------------------------------------------
# Human-readable conversion
# ---------------------------------------------------------------------------

def to_units(amount) -> int:
    """
    "1.5" -> 1_500_000_000_000_000_000.

    Accepts Decimal, str or int (ints are whole units, not raw units).
    More than 18 decimals would need truncation, so it is rejected.
    """
    try:
        d = Decimal(amount) if not isinstance(amount, Decimal) else amount
    except (InvalidOperation, TypeError, ValueError):
        raise InvalidAmount(f"not a number: {amount!r}")
    if not d.is_finite() or d < 0:
        raise InvalidAmount(f"amount must be finite and non-negative: {amount}")
    with localcontext() as ctx:
        ctx.prec = _PRECISION
        scaled = d.scaleb(DECIMALS)
        if scaled != scaled.to_integral_value():
            raise InvalidAmount(
                f"amount {amount} exceeds precision (max {DECIMALS} dp)")
    return checked(int(scaled))


def from_units(units: int) -> Decimal:
    with localcontext() as ctx:
        ctx.prec = _PRECISION
        return Decimal(units).scaleb(-DECIMALS).quantize(_QUANTUM)
