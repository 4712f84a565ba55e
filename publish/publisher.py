"""Publishes provider reviews for a GTIN into the canonical review table."""

from __future__ import annotations

import logging
import time
import uuid
from typing import Callable, Optional

from sqlalchemy.orm import Session

from ingestion.connectors.base import BaseConnector, TransientError, build_queries, extract_review_entries
from ingestion.connectors.serpapi import SerpApiConnector
from ingestion.db.session import session_scope
from ingestion.models.domain import PipelineState, ProductQuery, PublishResult
from ingestion.repositories.reviews import get_product_by_gtin, upsert_review
from ingestion.services.mapper import map_to_reviews
from ingestion.services.snapshot_cache import FetchedPayload, RawResponseCache
from ingestion.settings import Settings, get_settings
from ingestion.utils.retry import with_backoff


class ReviewPublisher:
    """Resolve a GTIN, obtain its raw snapshot, map it and upsert the reviews.

    ``updated`` in the result counts every upsert hit on an existing row
    (rows touched), whether or not any value changed.
    """

    def __init__(
        self,
        session: Session,
        connector: BaseConnector,
        *,
        settings: Optional[Settings] = None,
        cache: Optional[RawResponseCache] = None,
        logger: Optional[logging.Logger] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._session = session
        self._connector = connector
        self._settings = settings or get_settings()
        self._logger = logger or logging.getLogger(__name__)
        self._sleep = sleep
        self._cache = cache or RawResponseCache(
            session,
            freshness_window=self._settings.snapshot_freshness_window,
            stale_on_error=self._settings.snapshot_stale_on_error,
            logger=self._logger,
        )

    def _fetch_with_fallback(self, gtin: str, fallback: Optional[ProductQuery]) -> FetchedPayload:
        last: Optional[FetchedPayload] = None
        for query in build_queries(gtin, fallback):
            payload = with_backoff(
                lambda: self._connector.fetch_reviews(query),
                int(self._settings.serpapi_max_attempts),
                int(self._settings.serpapi_backoff_base_ms),
                sleep=self._sleep,
            )
            last = FetchedPayload(payload, query)
            if extract_review_entries(payload):
                return last
            self._logger.info("publish.query_empty", extra={"gtin": gtin, "query": query})
        assert last is not None
        return last

    def publish_reviews_for_gtin(self, gtin: str, fallback: Optional[ProductQuery] = None) -> PublishResult:
        trace_id = str(uuid.uuid4())
        product = get_product_by_gtin(self._session, gtin)
        if product is None:
            self._logger.warning("publish.product_not_found", extra={"trace_id": trace_id, "gtin": gtin})
            return PublishResult(state=PipelineState.NOT_FETCHED)

        product_id = product.id
        self._logger.info(
            "publish.start",
            extra={"trace_id": trace_id, "gtin": gtin, "product_id": str(product_id), "state": PipelineState.FETCHING.value},
        )
        try:
            snapshot = self._cache.get_or_fetch(
                gtin,
                lambda: self._fetch_with_fallback(gtin, fallback),
                # A cached GTIN-only miss must not hide the name/brand queries.
                refetch_empty=fallback is not None and not fallback.is_empty(),
            )
        except TransientError as exc:
            self._logger.warning(
                "publish.fetch_failed",
                extra={"trace_id": trace_id, "gtin": gtin, "error": str(exc)},
            )
            return PublishResult(state=PipelineState.FETCH_FAILED)

        reviews = map_to_reviews(
            snapshot.raw_response,
            product_id,
            gtin,
            source=self._settings.review_source_tag,
            logger=self._logger,
        )
        if not reviews:
            self._logger.info("publish.nothing_to_publish", extra={"trace_id": trace_id, "gtin": gtin})
            return PublishResult(state=PipelineState.MAPPED)

        inserted = updated = 0
        for review in reviews:
            if upsert_review(self._session, review):
                inserted += 1
            else:
                updated += 1

        self._logger.info(
            "publish.completed",
            extra={
                "trace_id": trace_id,
                "gtin": gtin,
                "product_id": str(product_id),
                "from_cache": snapshot.from_cache,
                "inserted": inserted,
                "updated": updated,
            },
        )
        return PublishResult(inserted=inserted, updated=updated, state=PipelineState.PUBLISHED)


def publish_reviews_for_gtin(
    gtin: str,
    *,
    fallback: Optional[ProductQuery] = None,
    connector: Optional[BaseConnector] = None,
    settings: Optional[Settings] = None,
) -> PublishResult:
    """Publish one GTIN in its own transaction."""
    cfg = settings or get_settings()
    connector = connector or SerpApiConnector.from_settings(cfg)
    with session_scope(cfg) as session:
        return ReviewPublisher(session, connector, settings=cfg).publish_reviews_for_gtin(gtin, fallback)
