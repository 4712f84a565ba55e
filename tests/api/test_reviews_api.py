from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from ingestion.connectors.base import PermanentError
from ingestion.connectors.serpapi import SerpApiConnector
from ingestion.db.session import session_scope
from ingestion.repositories.reviews import count_reviews
from ingestion.settings import get_settings, reset_settings_cache
from ingestion.tasks.refresh import refresh_all_core
from publish.publisher import publish_reviews_for_gtin

GTIN = "0123456789012"
CACHE_CONTROL = "public, s-maxage=3600, stale-while-revalidate=86400"


@pytest.fixture()
def client(review_env):
    from api.main import app

    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def _use_provider(provider) -> None:
    from api.main import app
    from api.routes import get_connector_factory

    app.dependency_overrides[get_connector_factory] = lambda: (
        lambda: SerpApiConnector(get_settings(), provider=provider)
    )


def test_summary_returns_stored_reviews(client, review_env, seed_product, make_provider):
    seed_product(description="ASIC miner", short_description="110 TH/s SHA-256 miner")
    publish_reviews_for_gtin(GTIN, connector=SerpApiConnector(review_env, provider=make_provider()), settings=review_env)
    untouched = make_provider()
    _use_provider(untouched)

    resp = client.get(f"/reviews/{GTIN}")

    assert resp.status_code == 200
    assert resp.headers["cache-control"] == CACHE_CONTROL
    body = resp.json()
    assert body["gtin"] == GTIN
    assert body["productTitle"] == "Antminer S19 Pro"
    assert body["productDescription"] == "110 TH/s SHA-256 miner"
    assert body["reviewCount"] == 2
    assert body["averageRating"] == pytest.approx(4.85)
    assert body["source"] == "amazon-serpapi"
    assert body["sourceUrl"] == "https://www.amazon.com/dp/B08XYZ"
    first = body["reviews"][0]
    assert first["title"] == "Great miner"
    assert first["isVerifiedPurchase"] is True
    assert first["helpfulCount"] == 12
    assert first["reviewerName"] == "Verified purchaser"
    assert untouched.calls == []


def test_gtin_is_normalized_to_digits(client, review_env, seed_product, make_provider):
    seed_product()
    publish_reviews_for_gtin(GTIN, connector=SerpApiConnector(review_env, provider=make_provider()), settings=review_env)

    resp = client.get("/reviews/0123-4567-89012")

    assert resp.status_code == 200
    assert resp.json()["gtin"] == GTIN


def test_unknown_gtin_returns_404(client):
    resp = client.get("/reviews/9999999999999")

    assert resp.status_code == 404
    assert resp.json() == {"message": "No reviews found for GTIN 9999999999999"}


def test_product_without_reviews_and_no_hints_returns_404(client, seed_product, make_provider):
    seed_product()
    provider = make_provider()
    _use_provider(provider)

    resp = client.get(f"/reviews/{GTIN}")

    assert resp.status_code == 404
    assert provider.calls == []


def test_hints_trigger_on_demand_refresh(client, seed_product, make_provider):
    seed_product()
    provider = make_provider()
    _use_provider(provider)

    resp = client.get(f"/reviews/{GTIN}", params={"q": "S19 Pro", "brand": "Bitmain"})

    assert resp.status_code == 200
    assert resp.json()["reviewCount"] == 2
    assert provider.calls == [GTIN]
    with session_scope() as session:
        assert count_reviews(session) == 2


def test_hints_search_by_name_after_refresh_cached_an_empty_gtin_result(
    client, review_env, seed_product, make_provider, raw_payload
):
    seed_product()
    refresh_all_core(
        connector=SerpApiConnector(review_env, provider=make_provider(payload={"reviews_results": []})),
        settings=review_env,
    )
    provider = make_provider(payload={"reviews_results": []}, by_query={"Bitmain S19 Pro": raw_payload})
    _use_provider(provider)

    resp = client.get(f"/reviews/{GTIN}", params={"q": "S19 Pro", "brand": "Bitmain"})

    assert resp.status_code == 200
    assert resp.json()["reviewCount"] == 2
    assert "Bitmain S19 Pro" in provider.calls


def test_overlong_hints_are_truncated_not_rejected(client, make_provider):
    provider = make_provider(payload={"reviews_results": []})
    _use_provider(provider)

    resp = client.get("/reviews/9999999999999", params={"q": "x" * 300, "brand": "b" * 200})

    assert resp.status_code == 404
    assert resp.json() == {"message": "No reviews found for GTIN 9999999999999"}


def test_truncated_hints_still_reach_the_provider(client, seed_product, make_provider):
    seed_product()
    provider = make_provider(payload={"reviews_results": []})
    _use_provider(provider)

    resp = client.get(f"/reviews/{GTIN}", params={"q": "x" * 300})

    assert resp.status_code == 404
    assert provider.calls == [GTIN, "x" * 256]


def test_provider_rejection_during_refresh_returns_404(client, seed_product, make_provider):
    seed_product()
    provider = make_provider(by_query={GTIN: PermanentError("bad request")})
    _use_provider(provider)

    resp = client.get(f"/reviews/{GTIN}", params={"q": "S19 Pro"})

    assert resp.status_code == 404


def test_missing_provider_key_during_refresh_returns_500(client, seed_product, monkeypatch):
    seed_product()
    monkeypatch.delenv("SERPAPI_API_KEY")
    reset_settings_cache()

    resp = client.get(f"/reviews/{GTIN}", params={"q": "S19 Pro"})

    assert resp.status_code == 500
    assert resp.json() == {"error": "Failed to load reviews"}


def test_store_failure_returns_generic_500(client):
    from api.main import app
    from api.routes import get_summary_service

    class _Broken:
        def get_summary(self, gtin, fallback=None):
            raise RuntimeError("connection to db-primary:5432 refused")

    app.dependency_overrides[get_summary_service] = lambda: _Broken()

    resp = client.get(f"/reviews/{GTIN}")

    assert resp.status_code == 500
    assert resp.json() == {"error": "Failed to load reviews"}
    assert "db-primary" not in resp.text


def test_healthcheck(client):
    resp = client.get("/healthz")

    assert resp.status_code == 200
    assert resp.json() == {"status": "ok"}
