"""Repositories for catalog lookups, raw snapshots, canonical reviews and job runs."""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ingestion.db.models import JobRun, JobStage, JobStatus, Product, ProductReview, RawProviderSnapshot
from ingestion.models.domain import CanonicalReviewDTO, ReviewStats


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite hands back naive datetimes; everything stored is UTC."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


def get_product_by_gtin(session: Session, gtin: str) -> Product | None:
    stmt = select(Product).where(Product.gtin == gtin).limit(1)
    return session.execute(stmt).scalars().first()


def list_refreshable_gtins(session: Session, limit: int) -> List[str]:
    stmt = (
        select(Product.gtin)
        .where(
            Product.is_active.is_(True),
            Product.is_archived.is_(False),
            Product.gtin.is_not(None),
        )
        .order_by(Product.updated_at.desc())
        .limit(limit)
    )
    gtins: List[str] = []
    for (gtin,) in session.execute(stmt):
        value = str(gtin).strip()
        if value and value not in gtins:
            gtins.append(value)
    return gtins


def get_snapshot(session: Session, gtin: str) -> RawProviderSnapshot | None:
    return session.get(RawProviderSnapshot, gtin)


def save_snapshot(
    session: Session,
    gtin: str,
    raw_response: Dict[str, Any],
    *,
    fetched_at: datetime,
    query: str | None = None,
    fetch_duration_ms: int | None = None,
) -> RawProviderSnapshot:
    """Insert or replace the snapshot row for ``gtin``."""
    snapshot = session.get(RawProviderSnapshot, gtin)
    if snapshot is None:
        snapshot = RawProviderSnapshot(gtin=gtin)
        session.add(snapshot)
    snapshot.raw_response = raw_response
    snapshot.last_fetched_at = fetched_at
    snapshot.query = query[:512] if query else None
    snapshot.fetch_duration_ms = fetch_duration_ms
    session.flush()
    return snapshot


def _apply_review(entity: ProductReview, review: CanonicalReviewDTO, now: datetime) -> None:
    entity.gtin = review.gtin
    entity.rating = review.rating
    entity.title = review.title
    entity.comment = review.comment
    entity.reviewer_name = review.reviewer_name
    entity.source = review.source
    entity.is_verified_purchase = review.is_verified_purchase
    entity.helpful_count = review.helpful_count
    entity.is_approved = True
    entity.created_at = review.created_at
    entity.updated_at = now


def _upsert_once(session: Session, review: CanonicalReviewDTO, now: datetime) -> bool:
    stmt = select(ProductReview).where(
        ProductReview.product_id == review.product_id,
        ProductReview.external_id == review.external_id,
    )
    existing = session.execute(stmt).scalars().first()
    if existing is not None:
        _apply_review(existing, review, now)
        session.flush()
        return False
    entity = ProductReview(product_id=review.product_id, external_id=review.external_id, inserted_at=now)
    _apply_review(entity, review, now)
    session.add(entity)
    session.flush()
    return True


def upsert_review(session: Session, review: CanonicalReviewDTO, *, now: datetime | None = None) -> bool:
    """Upsert by (product_id, external_id) inside a savepoint. Returns True when inserted."""
    now = now or datetime.now(timezone.utc)
    last_error: IntegrityError | None = None
    # A concurrent insert of the same key loses the race once; the retry then updates.
    for _ in range(2):
        try:
            with session.begin_nested():
                return _upsert_once(session, review, now)
        except IntegrityError as exc:
            last_error = exc
    assert last_error is not None
    raise last_error


def review_aggregate(session: Session, product_id: uuid.UUID) -> tuple[int, float]:
    stmt = select(func.count(ProductReview.id), func.avg(ProductReview.rating)).where(
        ProductReview.product_id == product_id,
        ProductReview.is_approved.is_(True),
    )
    count, average = session.execute(stmt).one()
    return int(count or 0), float(average or 0.0)


def list_recent_reviews(session: Session, product_id: uuid.UUID, limit: int) -> Sequence[ProductReview]:
    stmt = (
        select(ProductReview)
        .where(ProductReview.product_id == product_id, ProductReview.is_approved.is_(True))
        .order_by(ProductReview.created_at.desc(), ProductReview.inserted_at.desc())
        .limit(limit)
    )
    return session.execute(stmt).scalars().all()


def count_reviews(session: Session, product_id: uuid.UUID | None = None) -> int:
    stmt = select(func.count(ProductReview.id))
    if product_id is not None:
        stmt = stmt.where(ProductReview.product_id == product_id)
    return int(session.execute(stmt).scalar_one())


def review_stats(session: Session) -> List[ReviewStats]:
    stmt = (
        select(
            ProductReview.product_id,
            func.avg(ProductReview.rating),
            func.count(ProductReview.id),
            func.coalesce(func.sum(ProductReview.helpful_count), 0),
            func.max(ProductReview.created_at),
        )
        .group_by(ProductReview.product_id)
        .order_by(func.count(ProductReview.id).desc())
    )
    stats: List[ReviewStats] = []
    for product_id, average, count, helpful, latest in session.execute(stmt):
        stats.append(
            ReviewStats(
                product_id=product_id,
                average_rating=round(float(average or 0.0), 2) if count else 0.0,
                review_count=int(count),
                total_helpful_votes=int(helpful or 0),
                latest_review_at=as_utc(latest),
            )
        )
    return stats


def delete_stale_unapproved_reviews(
    session: Session,
    older_than_days: int,
    *,
    now: datetime | None = None,
) -> int:
    """Delete anonymous, unapproved reviews created before the cutoff."""
    cutoff = (now or datetime.now(timezone.utc)) - timedelta(days=older_than_days)
    stmt = delete(ProductReview).where(
        ProductReview.user_id.is_(None),
        ProductReview.is_approved.is_(False),
        ProductReview.created_at < cutoff,
    )
    result = session.execute(stmt, execution_options={"synchronize_session": False})
    return int(result.rowcount or 0)


class JobRunRecorder:
    """Context manager to record job run lifecycle."""

    def __init__(
        self,
        session: Session,
        *,
        stage: JobStage,
        task_name: str,
        gtin: str | None = None,
        trace_id: str | None = None,
    ) -> None:
        self._session = session
        self._job = JobRun(
            stage=stage,
            status=JobStatus.RUNNING,
            gtin=gtin,
            task_name=task_name,
            trace_id=trace_id,
            started_at=datetime.now(timezone.utc),
        )

    def __enter__(self) -> JobRun:
        self._session.add(self._job)
        # Durable RUNNING record even if later work fails.
        self._session.commit()
        return self._job

    def __exit__(self, exc_type, exc, tb) -> None:  # noqa: ANN001
        if exc is None:
            self._job.status = JobStatus.SUCCEEDED
        else:
            self._session.rollback()
            self._job.status = JobStatus.FAILED
            self._job.error_message = str(exc)[:512]
        self._job.finished_at = datetime.now(timezone.utc)
        self._session.add(self._job)
        self._session.commit()
