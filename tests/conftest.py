from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import Any, Dict, List

import pytest

ROOT = Path(__file__).resolve().parents[1]

if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from ingestion.settings import get_settings, reset_settings_cache  # noqa: E402

GTIN = "0123456789012"


@pytest.fixture(autouse=True)
def _restore_root_logging():
    # configure_logging replaces root handlers; keep pytest's capture intact.
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


def serpapi_payload() -> Dict[str, Any]:
    return {
        "search_metadata": {"id": "meta-1", "status": "Success"},
        "product_results": {"title": "Antminer S19 Pro", "link": "https://www.amazon.com/dp/B08XYZ"},
        "reviews_results": [
            {
                "title": "Great miner",
                "snippet": "Works very well",
                "date": "2024-10-01",
                "rating": 4.7,
                "source": "Verified Purchase",
                "link": "https://amazon.com/review/R123?ref=abc",
                "helpful_count": 12,
            },
            {
                "title": "",
                "snippet": "ok",
                "date": "2024-05-10",
                "rating": 6,
                "source": "User",
                "link": "invalid-url",
                "helpful_count": None,
            },
        ],
    }


class FakeProvider:
    """Records queries; answers from a per-query map or a default payload."""

    def __init__(self, payload: Dict[str, Any] | None = None, by_query: Dict[str, Any] | None = None) -> None:
        self.payload = payload if payload is not None else serpapi_payload()
        self.by_query = by_query or {}
        self.calls: List[str] = []

    def __call__(self, query: str) -> Dict[str, Any]:
        self.calls.append(query)
        result = self.by_query.get(query, self.payload)
        if isinstance(result, Exception):
            raise result
        return result


@pytest.fixture()
def review_env(monkeypatch, tmp_path: Path):
    monkeypatch.setenv("POSTGRES_DSN", f"sqlite:///{tmp_path / 'reviews.db'}")
    monkeypatch.setenv("SERPAPI_API_KEY", "test-key")
    monkeypatch.setenv("SERPAPI_BACKOFF_BASE_MS", "0")
    monkeypatch.setenv("REFRESH_INTER_ITEM_DELAY_MS", "0")
    reset_settings_cache()

    from ingestion.db.session import init_db

    init_db()
    yield get_settings()
    reset_settings_cache()


@pytest.fixture()
def seed_product(review_env):
    from ingestion.db.models import Product
    from ingestion.db.session import session_scope

    def _seed(gtin: str | None = GTIN, slug: str | None = None, name: str = "Antminer S19 Pro", **fields: Any):
        with session_scope() as session:
            product = Product(
                gtin=gtin,
                slug=slug or f"product-{gtin}",
                name=name,
                **fields,
            )
            session.add(product)
            session.flush()
            return product.id

    return _seed


@pytest.fixture()
def raw_payload() -> Dict[str, Any]:
    return serpapi_payload()


@pytest.fixture()
def make_provider():
    return FakeProvider
