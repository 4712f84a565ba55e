"""Domain DTOs for the review pipeline."""

from __future__ import annotations

import uuid
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class PipelineState(str, Enum):
    NOT_FETCHED = "not_fetched"
    FETCHING = "fetching"
    FETCHED = "fetched"
    FETCH_FAILED = "fetch_failed"
    MAPPED = "mapped"
    PUBLISHED = "published"
    SUMMARY_READY = "summary_ready"


class ProductQuery(BaseModel):
    """Fallback hints used when the GTIN alone finds nothing upstream."""

    name: Optional[str] = None
    brand: Optional[str] = None

    def is_empty(self) -> bool:
        return not ((self.name or "").strip() or (self.brand or "").strip())


class RawSnapshotDTO(BaseModel):
    """Last raw provider payload for a GTIN."""

    gtin: str
    raw_response: Dict[str, Any] = Field(default_factory=dict)
    last_fetched_at: datetime
    query: Optional[str] = None
    fetch_duration_ms: Optional[int] = None
    from_cache: bool = False


class CanonicalReviewDTO(BaseModel):
    """Provider-agnostic review ready for persistence."""

    product_id: Optional[uuid.UUID] = None
    gtin: str
    external_id: str = Field(..., min_length=1, max_length=256, description="Deduplication key")
    rating: float = Field(..., ge=0.0, le=5.0)
    title: str = ""
    comment: str = ""
    reviewer_name: Optional[str] = None
    source: str
    is_verified_purchase: bool = False
    helpful_count: Optional[int] = None
    created_at: datetime


class PublishResult(BaseModel):
    """Outcome of one publish run. ``updated`` counts rows touched, not rows changed."""

    inserted: int = 0
    updated: int = 0
    state: PipelineState = PipelineState.NOT_FETCHED

    @property
    def touched(self) -> int:
        return self.inserted + self.updated


class ReviewStats(BaseModel):
    product_id: Optional[uuid.UUID]
    average_rating: float
    review_count: int
    total_helpful_votes: int
    latest_review_at: Optional[datetime] = None


class RefreshReport(BaseModel):
    gtins: int = 0
    affected: int = 0
    inserted: int = 0
    updated: int = 0
    failed: int = 0
    failed_gtins: List[str] = Field(default_factory=list)
