from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ReviewSummaryEntry(_CamelModel):
    rating: float
    title: str = ""
    comment: str
    reviewer_name: str | None = None
    date: datetime | None = None
    is_verified_purchase: bool = False
    helpful_count: int | None = None


class ReviewSummary(_CamelModel):
    gtin: str
    product_title: str | None = None
    product_description: str | None = None
    average_rating: float
    review_count: int
    source: str
    source_url: str | None = None
    reviews: list[ReviewSummaryEntry] = Field(default_factory=list)


class NotFoundMessage(BaseModel):
    message: str


class ErrorMessage(BaseModel):
    error: str
