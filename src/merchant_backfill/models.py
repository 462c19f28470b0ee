"""
models.py — Pydantic models for the merchant branch-count backfill.

  MerchantUpdateRecord — one parsed input line (what the file says)
  MerchantStoreRow     — the stored state of a merchant row (what the DB says)
  ApplyOutcome         — result of one conditional write against the store
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

INT32_MIN = -(2**31)
INT32_MAX = 2**31 - 1
INT64_MIN = -(2**63)
INT64_MAX = 2**63 - 1


class MerchantUpdateRecord(BaseModel):
    """A single (retailer_id, branch_count) pair read from the input file."""

    model_config = ConfigDict(frozen=True)

    retailer_id: int = Field(ge=INT64_MIN, le=INT64_MAX)
    branch_count: int = Field(ge=INT32_MIN, le=INT32_MAX)
    line_number: int | None = None


class MerchantStoreRow(BaseModel):
    """Matches the merchant table row. Only branch_count is ever written."""

    retailer_id: int
    branch_count: int | None = None
    expire_at: datetime | None = None

    @classmethod
    def from_db_row(cls, row: dict[str, Any]) -> "MerchantStoreRow":
        return cls(**row)

    @property
    def has_branch_count(self) -> bool:
        return self.branch_count is not None


class ApplyOutcome(str, Enum):
    UPDATED = "updated"
    ALREADY_SET = "already_set"
    NOT_FOUND = "not_found"
    DRY_RUN = "dry_run"
