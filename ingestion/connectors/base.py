"""Connector abstraction, error taxonomy, and payload helpers."""

from __future__ import annotations

import time
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Optional

from ingestion.models.domain import ProductQuery


class ConnectorError(Exception):
    """Base connector error."""


class TransientError(ConnectorError):
    """Retryable error (timeouts, rate limits, 5xx)."""


class PermanentError(ConnectorError):
    """Non-retryable error (4xx, malformed query or payload)."""


class ConfigurationError(ConnectorError):
    """Missing credentials or settings; the pipeline cannot run at all."""


RawPayload = Dict[str, Any]

_REVIEW_LIST_PATHS = (
    ("reviews_results",),
    ("product_results", "reviews"),
    ("reviews",),
)


def extract_review_entries(payload: Optional[RawPayload]) -> List[Any]:
    """Return the provider's review list, wherever this engine put it."""
    if not isinstance(payload, dict):
        return []
    for path in _REVIEW_LIST_PATHS:
        node: Any = payload
        for key in path:
            node = node.get(key) if isinstance(node, dict) else None
        if isinstance(node, list):
            return node
    return []


def build_queries(gtin: str, fallback: Optional[ProductQuery] = None) -> List[str]:
    """GTIN first, then brand + name, then name alone; blanks and repeats dropped."""
    candidates = [gtin]
    if fallback is not None:
        name = (fallback.name or "").strip()
        brand = (fallback.brand or "").strip()
        if name and brand and brand.lower() not in name.lower():
            candidates.append(f"{brand} {name}")
        if name:
            candidates.append(name)
        elif brand:
            candidates.append(brand)
    queries: List[str] = []
    for query in candidates:
        query = (query or "").strip()
        if query and query not in queries:
            queries.append(query)
    return queries


class BaseConnector(ABC):
    """Review provider interface; retries are layered on top, not inside."""

    source: str

    def fetch_reviews(self, query: str) -> RawPayload:
        """Single provider call. Raises TransientError or PermanentError."""
        query = query.strip()
        if not query:
            raise PermanentError("Provider query must not be blank.")
        return self._fetch_raw(query)

    def fetch(
        self,
        query: str,
        *,
        max_attempts: int = 3,
        base_delay_ms: int = 500,
        sleep: Callable[[float], None] = time.sleep,
    ) -> RawPayload:
        from ingestion.utils.retry import with_backoff

        return with_backoff(
            lambda: self.fetch_reviews(query),
            max_attempts,
            base_delay_ms,
            sleep=sleep,
        )

    @abstractmethod
    def _fetch_raw(self, query: str) -> RawPayload:
        """Return the raw provider payload for one query."""
