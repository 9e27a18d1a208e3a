"""
schemas.py — Pydantic v2 models for catalog and tender records.

JSON field names are camelCase (scopeOfWork, requestedScope, ...) because
backup files written by the first browser version of SmartRate use them
and estimators still restore those files. Python code uses snake_case
attributes; aliases bridge the two. Always dump with by_alias=True when
the output leaves the process.

Drafts are what the user (or the model) hands us before the store
assigns an id and timestamp. All input validation happens on the draft,
so the store itself never has to second-guess a record.
"""

from __future__ import annotations

import math
from typing import Any, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

MatchStatus = Literal["pending", "matched", "review", "no-match"]


class RateEntryDraft(BaseModel):
    """A Schedule of Rates record without identity."""
    model_config = ConfigDict(populate_by_name=True)

    name: str
    unit: str
    rate: float
    scope_of_work: str = Field(..., alias="scopeOfWork")
    source: str = Field(default="")

    @field_validator("name")
    @classmethod
    def name_must_not_be_empty(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("name cannot be empty or whitespace")
        return v.strip()

    @field_validator("unit", "scope_of_work", "source", mode="before")
    @classmethod
    def none_to_empty(cls, v: Any) -> Any:
        return "" if v is None else v

    @field_validator("rate")
    @classmethod
    def rate_must_be_finite_non_negative(cls, v: float) -> float:
        if not math.isfinite(v) or v < 0:
            raise ValueError(f"rate must be a finite non-negative number, got {v}")
        return v


class RateEntry(RateEntryDraft):
    """A catalog record. id and timestamp are assigned by the store."""
    id: str
    timestamp: int

    def to_draft(self) -> RateEntryDraft:
        return RateEntryDraft.model_validate(
            self.model_dump(exclude={"id", "timestamp"})
        )


class CatalogSummaryItem(BaseModel):
    """The (id, name) pair sent to the model for semantic matching."""
    id: str
    name: str


class TenderItemDraft(BaseModel):
    """A tender line as it comes out of extraction."""
    model_config = ConfigDict(populate_by_name=True)

    name: str
    quantity: float = Field(default=1.0)
    requested_scope: str = Field(default="", alias="requestedScope")
    estimated_rate: Optional[float] = Field(default=None, alias="estimatedRate")

    @field_validator("name")
    @classmethod
    def name_must_not_be_empty(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("tender item name cannot be empty")
        return v.strip()

    @field_validator("quantity", mode="before")
    @classmethod
    def default_quantity(cls, v: Any) -> float:
        # Models leave quantity out, or write 0 / "two", far more often
        # than they get it wrong in a way we could detect. One unit is
        # the safest reading.
        qty = _to_float(v)
        if qty is None or qty <= 0:
            return 1.0
        return qty

    @field_validator("requested_scope", mode="before")
    @classmethod
    def scope_none_to_empty(cls, v: Any) -> Any:
        return "" if v is None else v

    @field_validator("estimated_rate", mode="before")
    @classmethod
    def drop_unusable_estimate(cls, v: Any) -> Optional[float]:
        est = _to_float(v)
        if est is None or est <= 0:
            return None
        return est


class TenderItem(TenderItemDraft):
    """A tender line being quoted. matched_rate is a snapshot, not a link."""
    id: str
    matched_rate: Optional[RateEntry] = Field(default=None, alias="matchedRate")
    status: MatchStatus = Field(default="pending")


class CatalogBackup(BaseModel):
    """Wrapper used to validate a whole restored array in one pass."""
    entries: List[RateEntry] = Field(default_factory=list)


def _to_float(v: Any) -> Optional[float]:
    if v is None or isinstance(v, bool):
        return None
    try:
        f = float(v)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(f):
        return None
    return f
