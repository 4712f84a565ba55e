"""HTTP routes for per-GTIN review summaries."""

from __future__ import annotations

import logging
import re
from typing import Annotated, Callable

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from ingestion.connectors.base import BaseConnector
from ingestion.connectors.serpapi import SerpApiConnector
from ingestion.db.session import session_dependency
from ingestion.models.domain import ProductQuery
from ingestion.settings import Settings, get_settings
from publish.publisher import ReviewPublisher

from .summary import SummaryService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/reviews", tags=["reviews"])

ConnectorFactory = Callable[[], BaseConnector]

SessionDep = Annotated[Session, Depends(session_dependency)]
SettingsDep = Annotated[Settings, Depends(get_settings)]

_NON_DIGIT = re.compile(r"\D+")

# Hints longer than the provider query columns are cut, not rejected.
NAME_HINT_MAX = 256
BRAND_HINT_MAX = 128


def get_connector_factory(settings: SettingsDep) -> ConnectorFactory:
    # Built lazily so stored summaries are served even without provider credentials.
    return lambda: SerpApiConnector.from_settings(settings)


def get_summary_service(
    session: SessionDep,
    settings: SettingsDep,
    connector_factory: Annotated[ConnectorFactory, Depends(get_connector_factory)],
) -> SummaryService:
    return SummaryService(
        session,
        settings=settings,
        publisher_factory=lambda: ReviewPublisher(session, connector_factory(), settings=settings),
    )


def normalize_gtin(value: str) -> str:
    return _NON_DIGIT.sub("", value or "")


@router.get("/{gtin}")
def get_review_summary_route(
    gtin: str,
    service: Annotated[SummaryService, Depends(get_summary_service)],
    session: SessionDep,
    settings: SettingsDep,
    q: str | None = None,
    brand: str | None = None,
) -> JSONResponse:
    normalized = normalize_gtin(gtin)
    if not normalized:
        return JSONResponse(status_code=404, content={"message": f"No reviews found for GTIN {gtin}"})

    fallback = ProductQuery(
        name=q[:NAME_HINT_MAX] if q else None,
        brand=brand[:BRAND_HINT_MAX] if brand else None,
    )
    try:
        summary = service.get_summary(normalized, None if fallback.is_empty() else fallback)
    except Exception:
        session.rollback()
        logger.exception("reviews.summary_failed", extra={"gtin": normalized})
        return JSONResponse(status_code=500, content={"error": "Failed to load reviews"})

    if summary is None:
        return JSONResponse(status_code=404, content={"message": f"No reviews found for GTIN {normalized}"})

    return JSONResponse(
        status_code=200,
        content=summary.model_dump(mode="json", by_alias=True),
        headers={"Cache-Control": settings.cache_control_header},
    )
