"""
main.py — Session orchestration and the command-line entry point.

QuotationSession is what both the CLI and the HTTP API drive. It owns
exactly two collections: the catalog (persisted) and the current
quotation (thrown away with the session). Matching and pricing get the
catalog handed to them as a snapshot; they never reach back into the
session.

Typical CLI use:
    smartrate import-rates rates_2026.txt --dry-run
    smartrate import-rates rates_2026.txt
    smartrate list --search pump
    smartrate quote tender_17.txt --csv quote.csv
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import Callable, List, Optional

from smartrate import extraction
from smartrate.catalog import CatalogStore
from smartrate.config import config
from smartrate.export import (
    catalog_to_csv,
    catalog_to_json,
    dated_filename,
    format_number,
    quotation_to_csv,
    quotation_to_json,
)
from smartrate.matching import Matcher, match_tender_items
from smartrate.quotation import Quotation, line_total, variance
from smartrate.schemas import RateEntry, RateEntryDraft, TenderItem
from smartrate.storage import (
    KeyValueStore,
    load_catalog,
    restore_catalog,
    restore_prompt,
    save_catalog,
)

logger = logging.getLogger("smartrate")


class CatalogEmptyError(RuntimeError):
    """A tender cannot be priced against an empty catalog."""


class QuotationSession:
    """
    One user's working session: a catalog and the quotation in progress.

    Usage:
        session = QuotationSession.open("data/store.json")
        await session.process_tender(text)
        print(session.quotation.grand_total)
    """

    def __init__(
        self,
        catalog: Optional[CatalogStore] = None,
        store: Optional[KeyValueStore] = None,
        matcher: Optional[Matcher] = None,
    ):
        self.catalog = catalog if catalog is not None else CatalogStore()
        self.quotation = Quotation()
        self._store = store
        self._matcher = matcher

    @classmethod
    def open(cls, store_path: Optional[str] = None, **kwargs) -> "QuotationSession":
        store = KeyValueStore(store_path)
        return cls(catalog=load_catalog(store), store=store, **kwargs)

    def save(self) -> None:
        if self._store is not None:
            save_catalog(self._store, self.catalog)

    # ── Catalog actions ─────────────────────────────────────────────

    def add_rate(self, draft: RateEntryDraft) -> RateEntry:
        entry = self.catalog.add(draft)
        self.save()
        return entry

    def update_rate(self, entry_id: str, draft: RateEntryDraft) -> Optional[RateEntry]:
        entry = self.catalog.update(entry_id, draft)
        if entry is not None:
            self.save()
        return entry

    def remove_rate(self, entry_id: str) -> bool:
        removed = self.catalog.remove(entry_id)
        if removed:
            self.save()
        return removed

    async def preview_rates(self, text: str) -> List[RateEntryDraft]:
        """Extract rate entries from text without touching the catalog."""
        drafts = await extraction.extract_rate_entries(text)
        if not drafts:
            logger.warning("No rate entries found in the supplied text.")
        return drafts

    def add_rates(self, drafts: List[RateEntryDraft]) -> List[RateEntry]:
        """Add reviewed drafts as one batch."""
        if not drafts:
            return []
        added = self.catalog.bulk_add(drafts)
        self.save()
        return added

    async def import_rates(
        self,
        text: str,
        confirm: Optional[Callable[[List[RateEntryDraft]], bool]] = None,
    ) -> List[RateEntry]:
        """
        Extract rate entries from text and add them as one batch.

        confirm() sees the extracted drafts first and returns True to add
        them; without it the batch goes straight in.
        """
        drafts = await self.preview_rates(text)
        if not drafts:
            return []
        if confirm is not None and not confirm(drafts):
            logger.info("Import of %d rates cancelled by user.", len(drafts))
            return []
        return self.add_rates(drafts)

    def restore(self, backup_text: str, confirm: Callable[[int], bool]) -> bool:
        restored = restore_catalog(self.catalog, backup_text, confirm)
        if restored:
            self.save()
        return restored

    # ── Tender actions ──────────────────────────────────────────────

    async def process_tender(self, text: str) -> Quotation:
        """
        Extract tender items and match every one against the catalog.

        Replaces the current quotation. Raises CatalogEmptyError before
        any model call when there is nothing to match against.
        """
        if len(self.catalog) == 0:
            raise CatalogEmptyError(
                "Catalog is empty. Add or import rates before processing a tender."
            )
        if not text or not text.strip():
            self.quotation = Quotation()
            return self.quotation

        drafts = await extraction.extract_tender_items(text)
        matcher = self._matcher or extraction.find_best_match
        items = await match_tender_items(drafts, self.catalog.entries, matcher)
        self.quotation = Quotation(items)
        return self.quotation

    def accept(self, item_id: str) -> Optional[TenderItem]:
        return self.quotation.accept(item_id)

    def remove_item(self, item_id: str) -> bool:
        return self.quotation.remove(item_id)


# ── CLI ───────────────────────────────────────────────────────────────────

def _print_catalog(entries: List[RateEntry], benchmarks: set) -> None:
    if not entries:
        print("No rates found.")
        return
    for e in entries:
        flag = " *lowest*" if e.id in benchmarks else ""
        print(f"{e.id[:8]}  {e.name} | {format_number(e.rate)} / {e.unit}{flag}")
        if e.scope_of_work:
            print(f"          {e.scope_of_work}")
        if e.source:
            print(f"          source: {e.source}")


def _print_drafts(drafts: List[RateEntryDraft]) -> None:
    for i, d in enumerate(drafts, 1):
        print(f"{i:3}. {d.name} | {format_number(d.rate)} / {d.unit}")
        if d.scope_of_work:
            print(f"     {d.scope_of_work}")


def _print_quotation(quotation: Quotation) -> None:
    for item in quotation.items:
        match = item.matched_rate
        matched = f"{match.name} @ {format_number(match.rate)}" if match else "-"
        line = (
            f"[{item.status.upper():8}] {item.name} x {format_number(item.quantity)}"
            f" → {matched} = {line_total(item):,.2f}"
        )
        diff = variance(item)
        if diff is not None:
            line += f" ({abs(diff):.2f}% {'lower' if diff <= 0 else 'higher'})"
        print(line)
    s = quotation.summary()
    print(f"\nGrand total: {config.export.currency_symbol}{s['grand_total']:,.2f}")
    print(f"{s['matched']} Matches / {s['total']} Total Items")


def _write(path: str, content: str) -> None:
    Path(path).parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8", newline="") as f:
        f.write(content)
    logger.info("Written: %s", path)


def _find_id(session: QuotationSession, prefix: str) -> str:
    """Resolve a full id from the short prefix shown by `list`."""
    hits = [e.id for e in session.catalog if e.id.startswith(prefix)]
    if len(hits) != 1:
        raise ValueError(f"'{prefix}' matches {len(hits)} rates, need exactly one")
    return hits[0]


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="smartrate",
        description="SmartRate — Schedule of Rates catalog and tender quotation builder",
    )
    parser.add_argument("--store", default=None, help="Catalog store file")
    parser.add_argument("--verbose", "-v", action="store_true", help="Verbose logging")
    sub = parser.add_subparsers(dest="command", required=True)

    add = sub.add_parser("add", help="Add one rate")
    add.add_argument("--name", required=True)
    add.add_argument("--unit", required=True)
    add.add_argument("--rate", required=True, type=float)
    add.add_argument("--scope", required=True)
    add.add_argument("--source", default="")

    edit = sub.add_parser("edit", help="Edit a rate")
    edit.add_argument("id")
    edit.add_argument("--name")
    edit.add_argument("--unit")
    edit.add_argument("--rate", type=float)
    edit.add_argument("--scope")
    edit.add_argument("--source")

    delete = sub.add_parser("delete", help="Delete a rate")
    delete.add_argument("id")

    lst = sub.add_parser("list", help="List rates")
    lst.add_argument("--search", "-s", default="")

    imp = sub.add_parser("import-rates", help="Extract rates from a text file")
    imp.add_argument("file")
    imp.add_argument("--dry-run", action="store_true",
                     help="Show what would be added, change nothing")
    imp.add_argument("--yes", "-y", action="store_true", help="Do not ask")

    quote = sub.add_parser("quote", help="Price a tender text file")
    quote.add_argument("file")
    quote.add_argument("--csv", default=None, help="Write quotation CSV here")
    quote.add_argument("--json", default=None, help="Write quotation JSON here")
    quote.add_argument("--accept-all", action="store_true",
                       help="Accept every suggested match before exporting")

    exp = sub.add_parser("export-csv", help="Export the catalog as CSV")
    exp.add_argument("output", nargs="?", default=None)

    bak = sub.add_parser("backup", help="Write a JSON backup of the catalog")
    bak.add_argument("output", nargs="?", default=None)

    res = sub.add_parser("restore", help="Replace the catalog from a JSON backup")
    res.add_argument("file")
    res.add_argument("--yes", "-y", action="store_true", help="Do not ask")

    return parser


def run(args: argparse.Namespace) -> int:
    session = QuotationSession.open(args.store)

    if args.command == "add":
        entry = session.add_rate(RateEntryDraft(
            name=args.name, unit=args.unit, rate=args.rate,
            scope_of_work=args.scope, source=args.source,
        ))
        print(entry.id)

    elif args.command == "edit":
        entry_id = _find_id(session, args.id)
        current = session.catalog.get(entry_id).to_draft().model_dump()
        changes = {
            "name": args.name, "unit": args.unit, "rate": args.rate,
            "scope_of_work": args.scope, "source": args.source,
        }
        current.update({k: v for k, v in changes.items() if v is not None})
        session.update_rate(entry_id, RateEntryDraft(**current))

    elif args.command == "delete":
        session.remove_rate(_find_id(session, args.id))

    elif args.command == "list":
        _print_catalog(session.catalog.search(args.search), session.catalog.benchmark_ids())

    elif args.command == "import-rates":
        text = Path(args.file).read_text(encoding="utf-8")

        def confirm(drafts: List[RateEntryDraft]) -> bool:
            _print_drafts(drafts)
            if args.dry_run:
                return False
            if args.yes:
                return True
            return input(f"Add {len(drafts)} rates? [y/N] ").strip().lower() == "y"

        added = asyncio.run(session.import_rates(text, confirm))
        if not args.dry_run:
            print(f"Imported {len(added)} rates.")

    elif args.command == "quote":
        text = Path(args.file).read_text(encoding="utf-8")
        quotation = asyncio.run(session.process_tender(text))
        if args.accept_all:
            quotation.accept_all()
        _print_quotation(quotation)
        if args.csv:
            _write(args.csv, quotation_to_csv(quotation.items))
        if args.json:
            _write(args.json, quotation_to_json(quotation.items))

    elif args.command == "export-csv":
        out = args.output or dated_filename(config.export.catalog_csv_prefix, "csv")
        _write(out, catalog_to_csv(session.catalog))

    elif args.command == "backup":
        out = args.output or dated_filename(config.export.backup_prefix, "json")
        _write(out, catalog_to_json(session.catalog))

    elif args.command == "restore":
        text = Path(args.file).read_text(encoding="utf-8")

        def confirm(count: int) -> bool:
            if args.yes:
                return True
            return input(restore_prompt(count) + " [y/N] ").strip().lower() == "y"

        if session.restore(text, confirm):
            print(f"Restored {len(session.catalog)} rates.")

    return 0


def main(argv: Optional[List[str]] = None):
    """CLI entry point."""
    args = build_parser().parse_args(argv)

    level = logging.DEBUG if args.verbose else getattr(logging, config.log_level.upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(asctime)s | %(levelname)-7s | %(name)s | %(message)s",
        datefmt="%H:%M:%S",
    )

    try:
        sys.exit(run(args))
    except FileNotFoundError as exc:
        logger.error("File not found: %s", exc)
        sys.exit(1)
    except ValueError as exc:
        logger.error("Invalid input: %s", exc)
        sys.exit(1)
    except RuntimeError as exc:
        logger.error("Runtime error: %s", exc)
        sys.exit(1)


if __name__ == "__main__":
    main()
