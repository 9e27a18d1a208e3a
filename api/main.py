from fastapi import Depends, FastAPI, File, HTTPException, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response
from pydantic import BaseModel
from typing import List, Optional
import os

from smartrate.config import config
from smartrate.export import (
    catalog_to_csv, catalog_to_json, dated_filename, quotation_to_csv,
)
from smartrate.main import CatalogEmptyError, QuotationSession
from smartrate.quotation import line_total, variance
from smartrate.schemas import RateEntryDraft, TenderItem
from smartrate.storage import RestoreError, parse_backup, restore_prompt

app = FastAPI(title="SmartRate")
app.add_middleware(CORSMiddleware,
    allow_origins=os.getenv("SMARTRATE_CORS_ORIGINS", "http://localhost:5173").split(","),
    allow_methods=["*"], allow_headers=["*"])

_session: Optional[QuotationSession] = None


def get_session() -> QuotationSession:
    global _session
    if _session is None:
        _session = QuotationSession.open(config.storage.store_path)
    return _session


class TextIn(BaseModel):
    text: str


def _item_out(item: TenderItem) -> dict:
    out = item.model_dump(by_alias=True)
    out["lineTotal"] = round(line_total(item), 2)
    out["variance"] = variance(item)
    return out


def _quotation_out(session: QuotationSession) -> dict:
    return {
        "items": [_item_out(i) for i in session.quotation.items],
        "summary": session.quotation.summary(),
    }


def _csv(content: str, filename: str) -> Response:
    return Response(
        content=content.encode("utf-8"),
        media_type="text/csv; charset=utf-8",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


# ── Catalog ──────────────────────────────────────────────

@app.get("/rates")
def list_rates(q: str = "", session: QuotationSession = Depends(get_session)):
    benchmarks = session.catalog.benchmark_ids()
    return [
        {**e.model_dump(by_alias=True), "benchmark": e.id in benchmarks}
        for e in session.catalog.search(q)
    ]

@app.post("/rates", status_code=201)
def add_rate(draft: RateEntryDraft, session: QuotationSession = Depends(get_session)):
    return session.add_rate(draft).model_dump(by_alias=True)

@app.put("/rates/{rate_id}")
def update_rate(rate_id: str, draft: RateEntryDraft, session: QuotationSession = Depends(get_session)):
    entry = session.update_rate(rate_id, draft)
    if entry is None:
        raise HTTPException(status_code=404, detail="Rate not found")
    return entry.model_dump(by_alias=True)

@app.delete("/rates/{rate_id}")
def delete_rate(rate_id: str, session: QuotationSession = Depends(get_session)):
    session.remove_rate(rate_id)
    return {"deleted": rate_id}

@app.post("/rates/import")
async def import_rates(body: TextIn, confirm: bool = False, session: QuotationSession = Depends(get_session)):
    drafts = await session.preview_rates(body.text)
    if not confirm:
        return {"added": False, "count": len(drafts),
                "preview": [d.model_dump(by_alias=True) for d in drafts]}
    added = session.add_rates(drafts)
    return {"added": True, "count": len(added),
            "rates": [e.model_dump(by_alias=True) for e in added]}

@app.post("/rates/bulk", status_code=201)
def add_rates(drafts: List[RateEntryDraft], session: QuotationSession = Depends(get_session)):
    return [e.model_dump(by_alias=True) for e in session.add_rates(drafts)]

@app.get("/rates/export.csv")
def export_rates(session: QuotationSession = Depends(get_session)):
    return _csv(catalog_to_csv(session.catalog),
                dated_filename(config.export.catalog_csv_prefix, "csv"))

@app.get("/rates/backup")
def backup_rates(session: QuotationSession = Depends(get_session)):
    filename = dated_filename(config.export.backup_prefix, "json")
    return Response(
        content=catalog_to_json(session.catalog).encode("utf-8"),
        media_type="application/json",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )

@app.post("/rates/restore")
async def restore_rates(
    file: UploadFile = File(...),
    confirm: bool = False,
    session: QuotationSession = Depends(get_session),
):
    text = (await file.read()).decode("utf-8-sig", errors="replace")
    try:
        count = len(parse_backup(text))
        if not confirm:
            return {"restored": False, "count": count, "message": restore_prompt(count)}
        session.restore(text, lambda n: True)
    except RestoreError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"restored": True, "count": count}


# ── Tender ───────────────────────────────────────────────

@app.post("/tender/process")
async def process_tender(body: TextIn, session: QuotationSession = Depends(get_session)):
    try:
        await session.process_tender(body.text)
    except CatalogEmptyError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return _quotation_out(session)

@app.get("/tender")
def get_tender(session: QuotationSession = Depends(get_session)):
    return _quotation_out(session)

@app.post("/tender/items/{item_id}/accept")
def accept_item(item_id: str, session: QuotationSession = Depends(get_session)):
    item = session.accept(item_id)
    if item is None:
        raise HTTPException(status_code=404, detail="Tender item not found")
    return _item_out(item)

@app.delete("/tender/items/{item_id}")
def delete_item(item_id: str, session: QuotationSession = Depends(get_session)):
    session.remove_item(item_id)
    return _quotation_out(session)

@app.get("/tender/export.csv")
def export_tender(variance_column: bool = True, session: QuotationSession = Depends(get_session)):
    return _csv(quotation_to_csv(session.quotation.items, include_variance=variance_column),
                dated_filename(config.export.quotation_csv_prefix, "csv"))
