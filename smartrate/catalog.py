"""
catalog.py — The Schedule of Rates store.

A plain ordered list, newest first. Estimators scroll from the top, so
prepend-on-add is what they expect to see after saving an entry or
importing a batch. Nothing here talks to disk; storage.py loads and
saves the list around the store.

Benchmarks: when the same item name appears more than once (different
suppliers, different years) the cheapest one is highlighted in the
catalog view. That flag is display-only. Matching picks its own
cheapest entry and never looks at benchmark_ids().
"""

from __future__ import annotations

import logging
import time
import uuid
from typing import Dict, Iterable, Iterator, List, Optional, Set

from smartrate.schemas import CatalogSummaryItem, RateEntry, RateEntryDraft

logger = logging.getLogger(__name__)


class CatalogStore:
    """
    In-memory catalog of RateEntry records.

    Usage:
        store = CatalogStore()
        entry = store.add(RateEntryDraft(name="PCC M15", unit="cum",
                                         rate=5200, scopeOfWork="..."))
        store.search("pcc")
    """

    def __init__(self, entries: Optional[Iterable[RateEntry]] = None):
        self._entries: List[RateEntry] = list(entries or [])
        self._last_timestamp = max((e.timestamp for e in self._entries), default=0)

    # ── Read side ────────────────────────────────────────────────────

    @property
    def entries(self) -> List[RateEntry]:
        return list(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[RateEntry]:
        return iter(list(self._entries))

    def get(self, entry_id: str) -> Optional[RateEntry]:
        for entry in self._entries:
            if entry.id == entry_id:
                return entry
        return None

    def search(self, query: str = "") -> List[RateEntry]:
        """Case-insensitive substring match on name or source."""
        needle = (query or "").lower()
        if not needle:
            return self.entries
        return [
            e for e in self._entries
            if needle in e.name.lower() or needle in e.source.lower()
        ]

    def summary(self) -> List[CatalogSummaryItem]:
        """(id, name) pairs in catalog order, for semantic matching."""
        return [CatalogSummaryItem(id=e.id, name=e.name) for e in self._entries]

    def benchmark_ids(self) -> Set[str]:
        """
        IDs of entries holding the lowest rate among same-named entries.

        Names compare case-insensitively. A name with a single entry has
        nothing to be benchmarked against, so it is never flagged. Ties
        on the minimum flag every tied entry.
        """
        groups: Dict[str, List[RateEntry]] = {}
        for entry in self._entries:
            groups.setdefault(entry.name.lower(), []).append(entry)

        flagged: Set[str] = set()
        for members in groups.values():
            if len(members) < 2:
                continue
            lowest = min(m.rate for m in members)
            flagged.update(m.id for m in members if m.rate == lowest)
        return flagged

    def is_benchmark(self, entry: RateEntry) -> bool:
        """True when entry holds the minimum rate of its name group."""
        key = entry.name.lower()
        rates = [e.rate for e in self._entries if e.name.lower() == key]
        return len(rates) > 1 and entry.rate == min(rates)

    # ── Write side ───────────────────────────────────────────────────

    def add(self, draft: RateEntryDraft) -> RateEntry:
        entry = self._materialize(draft)
        self._entries.insert(0, entry)
        logger.info("Added rate '%s' (%s) at %.2f", entry.name, entry.id, entry.rate)
        return entry

    def bulk_add(self, drafts: Iterable[RateEntryDraft]) -> List[RateEntry]:
        """Prepend a batch as one block, keeping the batch's own order."""
        batch = [self._materialize(d) for d in drafts]
        self._entries[:0] = batch
        logger.info("Bulk-added %d rates (catalog now %d)", len(batch), len(self._entries))
        return batch

    def update(self, entry_id: str, draft: RateEntryDraft) -> Optional[RateEntry]:
        """Replace everything except id and timestamp. Unknown id: no-op."""
        for idx, entry in enumerate(self._entries):
            if entry.id == entry_id:
                updated = RateEntry(
                    id=entry.id,
                    timestamp=entry.timestamp,
                    **draft.model_dump(),
                )
                self._entries[idx] = updated
                logger.info("Updated rate %s", entry_id)
                return updated
        logger.debug("Update skipped, no rate with id %s", entry_id)
        return None

    def remove(self, entry_id: str) -> bool:
        before = len(self._entries)
        self._entries = [e for e in self._entries if e.id != entry_id]
        removed = len(self._entries) < before
        if removed:
            logger.info("Removed rate %s", entry_id)
        return removed

    def replace_all(self, entries: Iterable[RateEntry]) -> None:
        """Swap in a whole catalog (restore from backup)."""
        self._entries = list(entries)
        self._last_timestamp = max(
            [self._last_timestamp] + [e.timestamp for e in self._entries]
        )
        logger.info("Catalog replaced, %d entries", len(self._entries))

    def _materialize(self, draft: RateEntryDraft) -> RateEntry:
        return RateEntry(
            id=uuid.uuid4().hex,
            timestamp=self._next_timestamp(),
            **draft.model_dump(),
        )

    def _next_timestamp(self) -> int:
        # Wall clock can step backwards (NTP); creation order must not.
        now = int(time.time() * 1000)
        self._last_timestamp = max(now, self._last_timestamp)
        return self._last_timestamp
