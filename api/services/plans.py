"""
Plan tiers, price tables and billing-period arithmetic.

Prices are whole IQD (the smallest local unit in use). Each tenant class has
its own table; the order of a table defines upgrade eligibility.

  clinic:   basic 10,000 → premium 20,000 → enterprise 30,000
  supplier: basic 20,000 → premium 40,000 → enterprise 60,000
"""

import re
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

from dateutil.relativedelta import relativedelta

from api.config import settings

TENANT_CLINIC = "clinic"
TENANT_SUPPLIER = "supplier"
TENANT_KINDS = (TENANT_CLINIC, TENANT_SUPPLIER)

PLAN_TIERS = ("basic", "premium", "enterprise")
PAYMENT_METHODS = ("qi_card", "zain_cash", "bank_transfer", "other")

# Ordered (tier, price) pairs per tenant class
PRICE_TABLES: dict[str, tuple[tuple[str, int], ...]] = {
    TENANT_CLINIC: (("basic", 10_000), ("premium", 20_000), ("enterprise", 30_000)),
    TENANT_SUPPLIER: (("basic", 20_000), ("premium", 40_000), ("enterprise", 60_000)),
}


def price_table(tenant_kind: str) -> dict[str, int]:
    if tenant_kind not in PRICE_TABLES:
        raise ValueError(f"Unknown tenant kind: {tenant_kind}")
    return dict(PRICE_TABLES[tenant_kind])


def plan_price(tenant_kind: str, plan: str) -> int:
    table = price_table(tenant_kind)
    if plan not in table:
        raise ValueError(f"Unknown plan tier: {plan}")
    return table[plan]


def tier_rank(tenant_kind: str, plan: Optional[str]) -> int:
    """Position of plan in the tenant's tier order, -1 when absent or unknown."""
    tiers = [tier for tier, _ in PRICE_TABLES[tenant_kind]]
    return tiers.index(plan) if plan in tiers else -1


def can_upgrade(tenant_kind: str, current_plan: Optional[str], target_plan: str) -> bool:
    """An upgrade is offered only to a tier strictly later than the current one."""
    if current_plan is None:
        return False
    current = tier_rank(tenant_kind, current_plan)
    return current >= 0 and tier_rank(tenant_kind, target_plan) > current


def upgrade_price(tenant_kind: str, current_plan: Optional[str], target_plan: str) -> int:
    """
    Amount to charge when moving from current_plan to target_plan.

    No current plan (or one not in the table) means full target price.
    Performs no ordering check: a downgrade or same tier clamps to zero.
    """
    table = price_table(tenant_kind)
    target = plan_price(tenant_kind, target_plan)
    if not current_plan or current_plan not in table:
        return target
    return max(0, target - table[current_plan])


def infer_plan_from_amount(amount_iqd: int, tenant_kind: str = TENANT_CLINIC) -> str:
    """Highest tier whose price the amount reaches; basic below every threshold."""
    inferred = PLAN_TIERS[0]
    for tier, price in PRICE_TABLES[tenant_kind]:
        if amount_iqd >= price:
            inferred = tier
    return inferred


def parse_display_price(price: str) -> int:
    """'10,000 د.ع' → 10000. Strips every non-digit character."""
    digits = re.sub(r"[^\d]", "", price or "")
    if not digits:
        raise ValueError(f"No amount found in price {price!r}")
    return int(digits)


def to_reference_currency(amount_iqd: int, rate: Optional[int] = None) -> Decimal:
    """Convert IQD to USD with the configured fixed rate, rounded to cents."""
    divisor = Decimal(str(rate or settings.IQD_PER_USD))
    return (Decimal(amount_iqd) / divisor).quantize(
        Decimal("0.01"), rounding=ROUND_HALF_UP
    )


def billing_period(start: datetime, months: Optional[int] = None) -> tuple[datetime, datetime]:
    """
    Calendar-month period starting at start.

    Month arithmetic clamps to the last day of shorter months:
    2025-01-31 → 2025-02-28, 2025-12-15 → 2026-01-15.
    """
    span = months if months is not None else settings.SUBSCRIPTION_PERIOD_MONTHS
    return start, start + relativedelta(months=span)


def period_lapsed(period_end: Optional[datetime], now: datetime) -> bool:
    """Whether period_end is before now. A missing end never lapses; naive values are UTC."""
    if period_end is None:
        return False
    if period_end.tzinfo is None:
        period_end = period_end.replace(tzinfo=timezone.utc)
    return period_end < now
