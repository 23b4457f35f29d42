"""
Construction-time configuration for a market maker.

Immutable once the engine exists. Fee is a fixed-point fraction of ONE
(3 * 10**15 == 0.3%); a percent string such as "0.3%" is accepted too.

Process defaults come from the environment:
    FPMM_DEFAULT_FEE   fee used when none is given, scaled units or "0.3%"
                       (default 0)
"""

import os
from decimal import Decimal, InvalidOperation

from pydantic import BaseModel, ConfigDict, Field, field_validator

from fpmm.fixed_point import ONE, to_units


def default_fee() -> str:
    """Read on every config build, then validated like an explicit fee."""
    return os.environ.get("FPMM_DEFAULT_FEE", "0")


def parse_fee(value) -> int:
    """3000000000000000 -> 3000000000000000, "0.3%" -> 3000000000000000."""
    if isinstance(value, str) and value.strip().endswith("%"):
        try:
            percent = Decimal(value.strip()[:-1])
        except InvalidOperation:
            raise ValueError(f"not a percentage: {value!r}")
        return to_units(percent / 100)
    return value


class MarketMakerConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    condition_ids: list[str]
    fee: int = Field(default_factory=default_fee, validate_default=True)

    @field_validator("fee", mode="before")
    @classmethod
    def _parse_fee(cls, v):
        return parse_fee(v)

    @field_validator("fee")
    @classmethod
    def _fee_in_range(cls, v: int) -> int:
        if not 0 <= v < ONE:
            raise ValueError(f"fee must be in [0, {ONE}), got {v}")
        return v

    @field_validator("condition_ids")
    @classmethod
    def _conditions_present(cls, v: list[str]) -> list[str]:
        if not v:
            raise ValueError("at least one condition id is required")
        if any(not c for c in v):
            raise ValueError("condition ids must be non-empty")
        if len(set(v)) != len(v):
            raise ValueError("condition ids must be distinct")
        return v
