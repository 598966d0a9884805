"""
Subscription candidate detection.

Turns imported bank transactions into proposed subscriptions for the user to
review.  The grouping rule is a pluggable strategy; the default groups by
normalized description and proposes one candidate per merchant.
"""
import re
from collections import defaultdict
from collections.abc import Sequence
from datetime import date
from decimal import Decimal
from statistics import median
from typing import Protocol

from tracksub.models.financial import ImportedTransaction
from tracksub.schemas.financial import Candidate
from tracksub.services.recurrence import roll_forward, to_utc_date

# Median gap (days) that reads as a yearly charge; anything else is monthly
YEARLY_GAP_RANGE: tuple[int, int] = (350, 380)


# ─── Helpers ─────────────────────────────────────────────────────────────────

def normalize_name(name: str) -> str:
    """Lowercase, strip trailing store/reference numbers and punctuation."""
    name = name.lower().strip()
    name = re.sub(r"\s*#\s*\d+\s*$", "", name)           # trailing #123
    name = re.sub(r"\s+\d{4,}\s*$", "", name)             # trailing long numbers
    name = re.sub(r"[^\w\s]", " ", name)                   # punctuation → space
    name = re.sub(r"\s+", " ", name).strip()
    return name


def _display_name(description: str) -> str:
    cleaned = re.sub(r"\s*#\s*\d+\s*$", "", description.strip())
    cleaned = re.sub(r"\s+\d{4,}\s*$", "", cleaned)
    return cleaned or "Subscription"


def _guess_cycle(dates: list[date]) -> str:
    if len(dates) < 2:
        return "monthly"
    gaps = [(dates[i + 1] - dates[i]).days for i in range(len(dates) - 1)]
    lo, hi = YEARLY_GAP_RANGE
    return "yearly" if lo <= median(gaps) <= hi else "monthly"


# ─── Strategy ────────────────────────────────────────────────────────────────

class CandidateStrategy(Protocol):
    def propose(
        self, transactions: Sequence[ImportedTransaction], today: date
    ) -> list[Candidate]:
        ...


class DescriptionGroupingStrategy:
    """One candidate per normalized description, built from its latest charge."""

    def propose(
        self, transactions: Sequence[ImportedTransaction], today: date
    ) -> list[Candidate]:
        groups: dict[str, list[ImportedTransaction]] = defaultdict(list)

        for txn in transactions:
            # Only money leaving the account can be a subscription charge
            if txn.amount is None or Decimal(txn.amount) <= 0:
                continue
            raw_name = txn.description or ""
            if not raw_name.strip():
                continue
            groups[normalize_name(raw_name)].append(txn)

        candidates: list[Candidate] = []
        for txns in groups.values():
            ordered = sorted(txns, key=lambda t: (to_utc_date(t.transacted_at), t.transaction_id))
            latest = ordered[-1]
            dates = [to_utc_date(t.transacted_at) for t in ordered]
            cycle = _guess_cycle(dates)

            candidates.append(Candidate(
                transaction_id=latest.transaction_id,
                suggested_name=_display_name(latest.description),
                suggested_billing_cycle=cycle,
                suggested_next_payment_date=roll_forward(dates[-1], cycle, today),
                amount=Decimal(latest.amount).quantize(Decimal("0.01")),
                currency=latest.currency,
                description=latest.description,
                transacted_at=latest.transacted_at,
                occurrences=len(ordered),
                transaction_ids=[t.transaction_id for t in ordered],
            ))

        # Most frequent first, newest first within the same frequency
        candidates.sort(key=lambda c: c.transacted_at, reverse=True)
        candidates.sort(key=lambda c: -c.occurrences)
        return candidates
