"""Celery tasks and core logic for batch review refresh."""

from __future__ import annotations

import time
import uuid
from typing import Callable, Optional

from celery import shared_task
from sqlalchemy.exc import SQLAlchemyError

from ingestion.connectors.base import BaseConnector, ConfigurationError, ConnectorError
from ingestion.connectors.serpapi import SerpApiConnector
from ingestion.db.models import JobStage
from ingestion.db.session import init_db, session_scope
from ingestion.models.domain import ProductQuery, RefreshReport
from ingestion.repositories.reviews import JobRunRecorder, list_refreshable_gtins
from ingestion.settings import Settings, get_settings
from ingestion.utils.logging import get_logger
from publish.publisher import ReviewPublisher, publish_reviews_for_gtin


def refresh_all_core(
    *,
    connector: Optional[BaseConnector] = None,
    settings: Optional[Settings] = None,
    limit: Optional[int] = None,
    delay_ms: Optional[int] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> RefreshReport:
    """Publish every cataloged GTIN one after another; failures are per GTIN."""
    cfg = settings or get_settings()
    connector = connector or SerpApiConnector.from_settings(cfg)
    limit = int(limit if limit is not None else cfg.refresh_batch_limit)
    delay_ms = int(delay_ms if delay_ms is not None else cfg.refresh_inter_item_delay_ms)
    init_db(cfg)

    trace_id = str(uuid.uuid4())
    logger = get_logger(__name__)
    report = RefreshReport()

    with session_scope(cfg) as audit_session, JobRunRecorder(
        audit_session, stage=JobStage.REFRESH, task_name="refresh_all_reviews", trace_id=trace_id
    ):
        gtins = list_refreshable_gtins(audit_session, limit)
        report.gtins = len(gtins)
        # Release the read transaction; each GTIN writes through its own session.
        audit_session.commit()
        logger.info("refresh.start", extra={"trace_id": trace_id, "gtins": len(gtins), "delay_ms": delay_ms})

        for index, gtin in enumerate(gtins):
            if index and delay_ms:
                sleep(delay_ms / 1000.0)
            try:
                with session_scope(cfg) as session:
                    result = ReviewPublisher(session, connector, settings=cfg, logger=logger, sleep=sleep).publish_reviews_for_gtin(gtin)
            except ConfigurationError:
                raise
            except (ConnectorError, SQLAlchemyError) as exc:
                report.failed += 1
                report.failed_gtins.append(gtin)
                logger.warning("refresh.gtin_failed", extra={"trace_id": trace_id, "gtin": gtin, "error": str(exc)})
                continue
            report.inserted += result.inserted
            report.updated += result.updated
            report.affected += result.touched

        logger.info("refresh.completed", extra={"trace_id": trace_id, **report.model_dump()})
    return report


def publish_gtin_core(gtin: str, *, name: Optional[str] = None, brand: Optional[str] = None) -> dict:
    fallback = ProductQuery(name=name, brand=brand)
    result = publish_reviews_for_gtin(gtin, fallback=None if fallback.is_empty() else fallback)
    return {"inserted": result.inserted, "updated": result.updated, "state": result.state.value}


@shared_task(name="ingestion.tasks.refresh.refresh_all_reviews")
def refresh_all_reviews(limit: Optional[int] = None) -> dict:  # pragma: no cover - wrapper
    return refresh_all_core(limit=limit).model_dump()


@shared_task(name="ingestion.tasks.refresh.publish_reviews_for_gtin")
def publish_reviews_for_gtin_task(gtin: str, name: Optional[str] = None, brand: Optional[str] = None) -> dict:  # pragma: no cover - wrapper
    return publish_gtin_core(gtin, name=name, brand=brand)
