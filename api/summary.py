"""Read-side review summary, with on-demand refresh when nothing is stored yet."""

from __future__ import annotations

import logging
from typing import Callable, Optional, Sequence

from sqlalchemy.orm import Session

from ingestion.connectors.base import ConfigurationError, ConnectorError
from ingestion.db.models import Product, ProductReview, RawProviderSnapshot
from ingestion.models.domain import PipelineState, ProductQuery
from ingestion.repositories.reviews import (
    as_utc,
    get_product_by_gtin,
    get_snapshot,
    list_recent_reviews,
    review_aggregate,
)
from ingestion.settings import Settings, get_settings
from publish.publisher import ReviewPublisher

from .models import ReviewSummary, ReviewSummaryEntry

PublisherFactory = Callable[[], ReviewPublisher]


class SummaryService:
    def __init__(
        self,
        session: Session,
        *,
        settings: Optional[Settings] = None,
        publisher_factory: Optional[PublisherFactory] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._session = session
        self._settings = settings or get_settings()
        self._publisher_factory = publisher_factory
        self._logger = logger or logging.getLogger(__name__)

    def get_summary(self, gtin: str, fallback: Optional[ProductQuery] = None) -> ReviewSummary | None:
        product = get_product_by_gtin(self._session, gtin)
        if product is None:
            self._logger.info("summary.product_not_found", extra={"gtin": gtin})
            return None

        count, average = review_aggregate(self._session, product.id)
        if count == 0 and fallback is not None and not fallback.is_empty():
            if self._refresh(gtin, fallback):
                count, average = review_aggregate(self._session, product.id)
        if count == 0:
            self._logger.info("summary.empty", extra={"gtin": gtin, "product_id": str(product.id)})
            return None

        rows = list_recent_reviews(self._session, product.id, int(self._settings.summary_sample_size))
        summary = self._build(gtin, product, fallback, count, average, rows, get_snapshot(self._session, gtin))
        self._logger.info(
            "summary.ready",
            extra={"gtin": gtin, "review_count": count, "state": PipelineState.SUMMARY_READY.value},
        )
        return summary

    def _refresh(self, gtin: str, fallback: ProductQuery) -> bool:
        if self._publisher_factory is None:
            return False
        try:
            result = self._publisher_factory().publish_reviews_for_gtin(gtin, fallback)
        except ConfigurationError:
            raise
        except ConnectorError as exc:
            self._logger.warning("summary.refresh_failed", extra={"gtin": gtin, "error": str(exc)})
            return False
        self._logger.info(
            "summary.refreshed",
            extra={"gtin": gtin, "inserted": result.inserted, "updated": result.updated, "state": result.state.value},
        )
        return result.touched > 0

    def _build(
        self,
        gtin: str,
        product: Product,
        fallback: Optional[ProductQuery],
        count: int,
        average: float,
        rows: Sequence[ProductReview],
        snapshot: Optional[RawProviderSnapshot],
    ) -> ReviewSummary:
        sources = {row.source for row in rows}
        return ReviewSummary(
            gtin=gtin,
            product_title=product.name or (fallback.name if fallback else None),
            product_description=product.short_description or product.description,
            average_rating=round(average, 2),
            review_count=count,
            source=sources.pop() if len(sources) == 1 else self._settings.review_source_tag,
            source_url=self._source_url(snapshot),
            reviews=[
                ReviewSummaryEntry(
                    rating=row.rating,
                    title=row.title or "",
                    comment=row.comment or row.title or "Verified review",
                    reviewer_name=row.reviewer_name or ("Verified purchaser" if row.is_verified_purchase else None),
                    date=as_utc(row.created_at),
                    is_verified_purchase=row.is_verified_purchase,
                    helpful_count=row.helpful_count,
                )
                for row in rows
            ],
        )

    def _source_url(self, snapshot: Optional[RawProviderSnapshot]) -> Optional[str]:
        if snapshot is None or not isinstance(snapshot.raw_response, dict):
            return None
        product_results = snapshot.raw_response.get("product_results")
        if isinstance(product_results, dict) and isinstance(product_results.get("link"), str):
            return product_results["link"]
        metadata = snapshot.raw_response.get("search_metadata")
        if isinstance(metadata, dict):
            url = metadata.get(f"{self._settings.serpapi_engine}_url")
            if isinstance(url, str):
                return url
        return None
