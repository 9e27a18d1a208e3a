"""
matching.py — Match tender items against the catalog.

Per item, in order:

  1. Exact name match (case-insensitive). If several catalog entries
     share the name, the cheapest wins; on equal rates the one that
     comes first in catalog order wins. Same scope text (trimmed,
     case-folded) → "matched", different scope → "review".
  2. No exact name: ask the model for the closest catalog id. Anything
     it finds is "review"; a semantic match is never trusted blindly.
  3. Otherwise "no-match".

Items are matched one at a time and each model call is awaited before
the next item starts. That keeps runs reproducible and keeps a local
CPU-bound model from being asked to do twenty things at once.

Matched entries are copied onto the tender item. Editing or deleting a
rate afterwards does not change a quotation that has already been built.
"""

from __future__ import annotations

import logging
import uuid
from typing import Awaitable, Callable, List, Optional, Sequence

from smartrate.extraction import find_best_match
from smartrate.schemas import CatalogSummaryItem, RateEntry, TenderItem, TenderItemDraft

logger = logging.getLogger(__name__)

Matcher = Callable[[str, str, Sequence[CatalogSummaryItem]], Awaitable[Optional[str]]]


def scopes_match(requested: str, offered: str) -> bool:
    return (requested or "").strip().casefold() == (offered or "").strip().casefold()


def find_exact_match(name: str, entries: Sequence[RateEntry]) -> Optional[RateEntry]:
    """Cheapest entry whose name equals `name` ignoring case, or None."""
    key = name.lower()
    best: Optional[RateEntry] = None
    for entry in entries:
        if entry.name.lower() != key:
            continue
        # Strict < keeps the first of equal rates.
        if best is None or entry.rate < best.rate:
            best = entry
    return best


async def match_item(
    item: TenderItem,
    entries: Sequence[RateEntry],
    matcher: Matcher = find_best_match,
) -> TenderItem:
    """Resolve one pending item in place and return it."""
    exact = find_exact_match(item.name, entries)
    if exact is not None:
        item.matched_rate = exact.model_copy(deep=True)
        item.status = "matched" if scopes_match(item.requested_scope, exact.scope_of_work) else "review"
        logger.debug("'%s' → exact '%s' [%s]", item.name, exact.name, item.status)
        return item

    summary = [CatalogSummaryItem(id=e.id, name=e.name) for e in entries]
    try:
        matched_id = await matcher(item.name, item.requested_scope, summary)
    except Exception as exc:
        # The stock matcher never raises; a custom one might.
        logger.error("Matcher failed for '%s': %s", item.name, exc)
        matched_id = None

    candidate = next((e for e in entries if e.id == matched_id), None) if matched_id else None
    if candidate is not None:
        item.matched_rate = candidate.model_copy(deep=True)
        item.status = "review"
        logger.debug("'%s' → semantic '%s' [review]", item.name, candidate.name)
    else:
        item.matched_rate = None
        item.status = "no-match"
        logger.debug("'%s' → no match", item.name)
    return item


async def match_tender_items(
    drafts: Sequence[TenderItemDraft],
    entries: Sequence[RateEntry],
    matcher: Matcher = find_best_match,
) -> List[TenderItem]:
    """
    Turn extracted drafts into matched tender items, sequentially.

    `entries` is a snapshot of the catalog taken by the caller; this
    function never touches the store.
    """
    items = [
        TenderItem(id=uuid.uuid4().hex, status="pending", **d.model_dump())
        for d in drafts
    ]

    for item in items:
        await match_item(item, entries, matcher)

    logger.info(
        "Matched %d tender items: %d matched, %d review, %d no-match",
        len(items),
        sum(1 for i in items if i.status == "matched"),
        sum(1 for i in items if i.status == "review"),
        sum(1 for i in items if i.status == "no-match"),
    )
    return items
