"""
export.py — CSV and JSON output for the catalog and quotations.

The CSVs are opened in Excel by almost everyone who receives them, which
dictates the format: every cell quoted, CRLF line endings, and a UTF-8
byte-order mark up front. Without the BOM Excel reads the file as
cp1252 and the rupee sign in the headers turns into mojibake.

These functions only format. They return strings; callers decide where
the bytes go. Write them with newline="" so CRLF survives on Windows.
"""

from __future__ import annotations

import csv
import io
import json
from datetime import date, datetime, timezone
from typing import Any, Iterable, List, Optional, Sequence

from smartrate.config import config
from smartrate.quotation import line_total, variance
from smartrate.schemas import RateEntry, TenderItem

BOM = "\ufeff"
NOT_AVAILABLE = "N/A"


def catalog_headers() -> List[str]:
    cur = config.export.currency_symbol
    return ["Item Name", "Unit", f"Rate ({cur})", "Scope of Work",
            "Source Reference", "Date Added"]


def quotation_headers(include_variance: bool = True) -> List[str]:
    cur = config.export.currency_symbol
    headers = [
        "Tender Item",
        "Quantity",
        "Requested Scope",
        f"Estimated Rate ({cur})",
        f"Quoted Rate ({cur})",
        "Unit",
    ]
    if include_variance:
        headers.append("Percentage Diff (%)")
    headers += [
        f"Total Quoted ({cur})",
        "Matched Database Item",
        "Source",
        "Status",
    ]
    return headers


def catalog_to_csv(entries: Iterable[RateEntry]) -> str:
    rows = [
        [e.name, e.unit, format_number(e.rate), e.scope_of_work, e.source,
         timestamp_to_date(e.timestamp)]
        for e in entries
    ]
    return _to_csv(catalog_headers(), rows)


def quotation_to_csv(items: Iterable[TenderItem], include_variance: bool = True) -> str:
    rows = []
    for item in items:
        match = item.matched_rate
        row = [
            item.name,
            format_number(item.quantity),
            item.requested_scope,
            _or_na(item.estimated_rate),
            _or_na(match.rate if match else None),
            match.unit if match and match.unit else NOT_AVAILABLE,
        ]
        if include_variance:
            diff = variance(item)
            row.append(f"{diff:.2f}%" if diff is not None else NOT_AVAILABLE)
        row += [
            f"{line_total(item):.2f}",
            match.name if match else NOT_AVAILABLE,
            match.source if match else "",
            item.status.upper(),
        ]
        rows.append(row)
    return _to_csv(quotation_headers(include_variance), rows)


def catalog_to_json(entries: Iterable[RateEntry]) -> str:
    """Backup format: the raw entry array, pretty-printed."""
    return json.dumps(
        [e.model_dump(by_alias=True) for e in entries],
        indent=2,
        ensure_ascii=False,
    )


def quotation_to_json(items: Iterable[TenderItem]) -> str:
    payload = []
    for item in items:
        record = item.model_dump(by_alias=True)
        record["lineTotal"] = round(line_total(item), 2)
        record["variance"] = variance(item)
        payload.append(record)
    return json.dumps(payload, indent=2, ensure_ascii=False)


def dated_filename(prefix: str, ext: str, today: Optional[date] = None) -> str:
    """e.g. SmartRate_Database_2026-10-17.csv"""
    today = today or date.today()
    return f"{prefix}_{today.isoformat()}.{ext.lstrip('.')}"


def format_number(value: float) -> str:
    """12.0 → '12', 12.5 → '12.5'."""
    if float(value).is_integer():
        return str(int(value))
    return str(value)


def timestamp_to_date(ts_ms: int) -> str:
    return datetime.fromtimestamp(ts_ms / 1000, tz=timezone.utc).date().isoformat()


def _or_na(value: Optional[float]) -> str:
    if not value:
        return NOT_AVAILABLE
    return format_number(value)


def _to_csv(headers: Sequence[str], rows: Sequence[Sequence[Any]]) -> str:
    buf = io.StringIO()
    writer = csv.writer(buf, quoting=csv.QUOTE_ALL, lineterminator="\r\n")
    writer.writerow(headers)
    writer.writerows(rows)
    return BOM + buf.getvalue()
