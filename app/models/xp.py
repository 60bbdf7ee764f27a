from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

from app.core.xp_config import ActivityType, XpSource


class AwardOptions(BaseModel):
    model_config = ConfigDict(frozen=True)

    is_decayable: bool = True
    decay_days: Optional[int] = Field(default=None, gt=0)
    bypass_daily_cap: bool = False
    metadata: Dict[str, Any] = Field(default_factory=dict)


class XpProfile(BaseModel):
    id: str
    user_id: str
    total_xp: int = 0
    last_xp_milestone: int = 0


class XpTransactionCreate(BaseModel):
    user_id: str
    amount: int
    reason: str = Field(..., min_length=1)
    source: XpSource
    source_id: Optional[str] = None
    is_decayable: bool = True
    decay_date: Optional[datetime] = None
    reverses_transaction_id: Optional[UUID] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("reason")
    @classmethod
    def _normalize_reason(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError("reason cannot be empty")
        return normalized


class XpTransaction(XpTransactionCreate):
    id: UUID
    created_at: datetime
    total_before: Optional[int] = None
    total_after: Optional[int] = None


class AwardReceipt(BaseModel):
    """Result of the atomic ledger append + running total increment."""

    transaction_id: UUID
    total_before: int
    total_after: int


class DailyActivityCounter(BaseModel):
    user_id: str
    activity_type: ActivityType
    current_daily: int = Field(default=0, ge=0)
    daily_cap: int = Field(..., gt=0)
    reset_at: datetime
    recent_activities: List[int] = Field(default_factory=list)
    diminishing_factor: int = Field(default=100, ge=20, le=100)


class XpHistoryPage(BaseModel):
    transactions: List[XpTransaction]
    total: int
    page: int
    limit: int
    total_pages: int


class DecayRunResult(BaseModel):
    processed: int = 0
    skipped: int = 0
    failed: int = 0
    xp_removed: int = 0
    failed_ids: List[UUID] = Field(default_factory=list)
