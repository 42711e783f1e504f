"""
Platform fee calculation.

Free-plan tenants pay a percentage of every charge to the platform, capped at
``PLATFORM_FEE_CAP``; tenants on paid plans pay nothing. When the merchant has
a Paystack subaccount the fee is collected with a split payment: the platform
keeps a fixed charge (in minor units) and the rest settles to the subaccount.
A fixed charge is used because a capped fee is not a constant percentage.
"""

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

from ...config import DEFAULT_FREE_PLAN_FEE_PERCENT, PLATFORM_FEE_CAP
from ...models import Tenant

CENTS = Decimal("0.01")
FEE_CAP = PLATFORM_FEE_CAP


def to_decimal(value) -> Decimal:
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def quantize(value: Decimal) -> Decimal:
    return value.quantize(CENTS, rounding=ROUND_HALF_UP)


def to_minor_units(amount) -> int:
    """Major currency units (naira) to minor units (kobo)."""
    return int((to_decimal(amount) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def from_minor_units(amount_minor) -> Decimal:
    return quantize(to_decimal(amount_minor) / 100)


@dataclass(frozen=True)
class FeeBreakdown:
    platform_fee: Decimal
    merchant_amount: Decimal


@dataclass(frozen=True)
class SplitInstruction:
    subaccount: str
    charge_amount: int  # Minor units kept by the platform


def compute_fee(amount, fee_percent, cap=FEE_CAP) -> FeeBreakdown:
    amount = to_decimal(amount)
    fee_percent = to_decimal(fee_percent or 0)

    platform_fee = quantize(amount * fee_percent / 100)
    if cap is not None:
        platform_fee = min(platform_fee, to_decimal(cap))

    return FeeBreakdown(
        platform_fee=quantize(platform_fee), merchant_amount=quantize(amount - platform_fee)
    )


def fee_percent_for_tenant(tenant: Tenant) -> Decimal:
    if not tenant.is_shared_database:
        return Decimal("0")
    if tenant.transaction_fee_percentage is not None:
        return to_decimal(tenant.transaction_fee_percentage)
    return DEFAULT_FREE_PLAN_FEE_PERCENT


def build_split_instruction(
    fees: FeeBreakdown, subaccount_code: Optional[str]
) -> Optional[SplitInstruction]:
    if not subaccount_code or fees.platform_fee <= 0:
        return None
    return SplitInstruction(
        subaccount=subaccount_code, charge_amount=to_minor_units(fees.platform_fee)
    )
