"""Raw provider response cache keyed by GTIN."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from time import perf_counter
from typing import Any, Callable, Dict, Optional, Union

from sqlalchemy.orm import Session

from ingestion.connectors.base import ConfigurationError, ConnectorError, extract_review_entries
from ingestion.db.models import RawProviderSnapshot
from ingestion.models.domain import RawSnapshotDTO
from ingestion.repositories.reviews import as_utc, get_snapshot, save_snapshot


@dataclass(frozen=True)
class FetchedPayload:
    payload: Dict[str, Any]
    query: Optional[str] = None


FetchFn = Callable[[], Union[Dict[str, Any], FetchedPayload]]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _to_dto(row: RawProviderSnapshot, *, from_cache: bool) -> RawSnapshotDTO:
    return RawSnapshotDTO(
        gtin=row.gtin,
        raw_response=dict(row.raw_response or {}),
        last_fetched_at=as_utc(row.last_fetched_at),
        query=row.query,
        fetch_duration_ms=row.fetch_duration_ms,
        from_cache=from_cache,
    )


class RawResponseCache:
    """Serves the stored snapshot while fresh, otherwise fetches and replaces it.

    With ``refetch_empty`` a fresh snapshot holding no reviews counts as a miss.
    Fetch failures propagate unless ``stale_on_error`` is set and a snapshot
    exists; configuration errors always propagate.
    """

    def __init__(
        self,
        session: Session,
        *,
        freshness_window: timedelta,
        clock: Callable[[], datetime] = _utcnow,
        stale_on_error: bool = False,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._session = session
        self._window = freshness_window
        self._clock = clock
        self._stale_on_error = stale_on_error
        self._logger = logger or logging.getLogger(__name__)

    def is_fresh(self, row: RawProviderSnapshot, now: datetime) -> bool:
        fetched_at = as_utc(row.last_fetched_at)
        return fetched_at is not None and now - fetched_at < self._window

    def get_or_fetch(self, gtin: str, fetch_fn: FetchFn, *, refetch_empty: bool = False) -> RawSnapshotDTO:
        now = self._clock()
        cached = get_snapshot(self._session, gtin)
        if (
            cached is not None
            and self.is_fresh(cached, now)
            and not (refetch_empty and not extract_review_entries(cached.raw_response))
        ):
            self._logger.info(
                "snapshot.cache_hit",
                extra={"gtin": gtin, "last_fetched_at": as_utc(cached.last_fetched_at).isoformat()},
            )
            return _to_dto(cached, from_cache=True)

        self._logger.info("snapshot.fetch", extra={"gtin": gtin, "stale": cached is not None})
        started = perf_counter()
        try:
            result = fetch_fn()
        except ConfigurationError:
            raise
        except ConnectorError as exc:
            if self._stale_on_error and cached is not None:
                self._logger.warning("snapshot.stale_fallback", extra={"gtin": gtin, "error": str(exc)})
                return _to_dto(cached, from_cache=True)
            raise
        duration_ms = int((perf_counter() - started) * 1000)

        if isinstance(result, FetchedPayload):
            payload, query = result.payload, result.query
        else:
            payload, query = result, None
        row = save_snapshot(
            self._session,
            gtin,
            dict(payload or {}),
            fetched_at=now,
            query=query,
            fetch_duration_ms=duration_ms,
        )
        self._logger.info(
            "snapshot.stored",
            extra={"gtin": gtin, "query": query, "fetch_duration_ms": duration_ms},
        )
        return _to_dto(row, from_cache=False)
