"""
Platform fee computation.

The fee is computed once at checkout, stored on the BookingTransaction and
never re-derived. Percentage fees round half up to the smallest currency
unit; fixed fees are capped at the gross amount.

Usage:
    from marketplace.services.fees import FeeRule, compute_platform_fee

    compute_platform_fee(10000, FeeRule.percentage("0.15"))  # 1500
    compute_platform_fee(500, FeeRule.fixed(700))            # 500
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal

from django.conf import settings

from marketplace.state_machines import FeeType


@dataclass(frozen=True)
class FeeRule:
    """
    A platform fee model.

    Attributes:
        fee_type: PERCENTAGE or FIXED
        value: Rate as a fraction (0.15) for percentage rules, or an amount
            in the smallest currency unit for fixed rules
    """

    fee_type: str
    value: Decimal

    def __post_init__(self) -> None:
        if self.fee_type == FeeType.PERCENTAGE:
            if not Decimal("0") <= self.value <= Decimal("1"):
                raise ValueError("percentage rate must be between 0 and 1")
        elif self.fee_type == FeeType.FIXED:
            if self.value < 0 or self.value != self.value.to_integral_value():
                raise ValueError("fixed fee must be a non-negative whole amount")
        else:
            raise ValueError(f"Unknown fee type: {self.fee_type}")

    @classmethod
    def percentage(cls, rate: Decimal | str | int) -> FeeRule:
        return cls(FeeType.PERCENTAGE, Decimal(str(rate)))

    @classmethod
    def fixed(cls, amount_cents: int) -> FeeRule:
        return cls(FeeType.FIXED, Decimal(amount_cents))

    @classmethod
    def default(cls) -> FeeRule:
        """Percentage rule from PLATFORM_FEE_PERCENT (15 = 15%)."""
        percent = Decimal(str(getattr(settings, "PLATFORM_FEE_PERCENT", 15)))
        return cls.percentage(percent / Decimal("100"))

    @property
    def rate(self) -> Decimal | None:
        """The rate snapshot stored on the transaction (None for fixed fees)."""
        return self.value if self.fee_type == FeeType.PERCENTAGE else None


def compute_platform_fee(gross_amount_cents: int, rule: FeeRule) -> int:
    """
    Compute the platform fee for a gross amount.

    Returns:
        Fee in the smallest currency unit, never more than the gross amount
    """
    if gross_amount_cents <= 0:
        raise ValueError("gross_amount_cents must be positive")

    if rule.fee_type == FeeType.PERCENTAGE:
        fee = (Decimal(gross_amount_cents) * rule.value).quantize(
            Decimal("1"), rounding=ROUND_HALF_UP
        )
    else:
        fee = rule.value

    return min(int(fee), gross_amount_cents)
