"""
quotation.py — Totals, variance and the review workflow.

Nothing here is cached. Totals are recomputed from the current items
every time they are asked for, so removing a line or accepting a match
can never leave a stale grand total behind.
"""

from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Optional

from smartrate.schemas import TenderItem

logger = logging.getLogger(__name__)


def quoted_rate(item: TenderItem) -> Optional[float]:
    return item.matched_rate.rate if item.matched_rate is not None else None


def line_total(item: TenderItem) -> float:
    """quantity × matched rate; an unmatched line contributes 0."""
    return item.quantity * (quoted_rate(item) or 0.0)


def grand_total(items: Iterable[TenderItem]) -> float:
    return sum(line_total(i) for i in items)


def variance(item: TenderItem) -> Optional[float]:
    """
    Percentage difference of the quoted rate over the estimate.

    Negative means we quote below the tender's estimate. None when either
    side is missing.
    """
    quoted = quoted_rate(item)
    estimated = item.estimated_rate
    if not quoted or not estimated:
        return None
    return (quoted - estimated) / estimated * 100


def accept_match(item: TenderItem) -> TenderItem:
    """
    Confirm a suggested match: review → matched.

    Idempotent on matched. pending and no-match items are left alone;
    there is nothing to accept.
    """
    if item.status == "review" and item.matched_rate is not None:
        item.status = "matched"
        logger.info("Accepted match for '%s' → '%s'", item.name, item.matched_rate.name)
    return item


def remove_item(items: Iterable[TenderItem], item_id: str) -> List[TenderItem]:
    return [i for i in items if i.id != item_id]


class Quotation:
    """The current tender list being priced."""

    def __init__(self, items: Optional[Iterable[TenderItem]] = None):
        self.items: List[TenderItem] = list(items or [])

    def __len__(self) -> int:
        return len(self.items)

    def get(self, item_id: str) -> Optional[TenderItem]:
        return next((i for i in self.items if i.id == item_id), None)

    def accept(self, item_id: str) -> Optional[TenderItem]:
        item = self.get(item_id)
        if item is None:
            return None
        return accept_match(item)

    def remove(self, item_id: str) -> bool:
        before = len(self.items)
        self.items = remove_item(self.items, item_id)
        return len(self.items) < before

    def accept_all(self) -> int:
        """Accept every item in review. Returns how many became matched."""
        changed = 0
        for item in self.items:
            if item.status != "review":
                continue
            accept_match(item)
            if item.status == "matched":
                changed += 1
        return changed

    @property
    def grand_total(self) -> float:
        return grand_total(self.items)

    def summary(self) -> Dict[str, float]:
        counts = {"matched": 0, "review": 0, "no-match": 0, "pending": 0}
        for item in self.items:
            counts[item.status] += 1
        return {
            **counts,
            "total": len(self.items),
            "grand_total": self.grand_total,
        }
