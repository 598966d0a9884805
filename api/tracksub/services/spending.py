"""Spend totals over a user's active subscriptions."""
from collections import defaultdict
from collections.abc import Iterable
from decimal import ROUND_HALF_UP, Decimal

from tracksub.models.subscription import Subscription
from tracksub.schemas.subscription import SpendingSummary
from tracksub.services.errors import InvalidCycle

_CENT = Decimal("0.01")


def monthly_equivalent(amount: Decimal, cycle: str) -> Decimal:
    if cycle == "monthly":
        return Decimal(amount)
    if cycle == "yearly":
        return Decimal(amount) / 12
    raise InvalidCycle(cycle)


def spending_summary(subscriptions: Iterable[Subscription]) -> SpendingSummary:
    monthly = Decimal(0)
    by_category: dict[str, Decimal] = defaultdict(Decimal)
    count = 0

    for sub in subscriptions:
        if sub.status != "active":
            continue
        share = monthly_equivalent(sub.amount, sub.billing_cycle)
        monthly += share
        by_category[sub.category or "Other"] += share
        count += 1

    return SpendingSummary(
        active_count=count,
        monthly_total=monthly.quantize(_CENT, rounding=ROUND_HALF_UP),
        yearly_total=(monthly * 12).quantize(_CENT, rounding=ROUND_HALF_UP),
        by_category={
            k: v.quantize(_CENT, rounding=ROUND_HALF_UP)
            for k, v in sorted(by_category.items(), key=lambda kv: -kv[1])
        },
    )
