from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path

import pytest
from alembic import command
from alembic.config import Config
from sqlalchemy import create_engine, inspect
from sqlalchemy.orm import sessionmaker

from ingestion.db.models import JobRun, JobStage, JobStatus, Product, ProductReview, RawProviderSnapshot

ROOT = Path(__file__).resolve().parents[2]


@pytest.fixture()
def sqlite_url(tmp_path: Path) -> str:
    return f"sqlite:///{tmp_path / 'reviews.db'}"


def _alembic_config(db_url: str) -> Config:
    cfg = Config(str(ROOT / "alembic.ini"))
    cfg.set_main_option("script_location", str(ROOT / "ingestion" / "db" / "migrations"))
    cfg.set_main_option("sqlalchemy.url", db_url)
    cfg.attributes["configure_logger"] = False
    return cfg


def test_migrations_create_expected_tables(sqlite_url: str) -> None:
    command.upgrade(_alembic_config(sqlite_url), "head")
    inspector = inspect(create_engine(sqlite_url, future=True))

    tables = set(inspector.get_table_names())
    assert {"products", "serpapi_snapshots", "product_reviews", "job_runs"}.issubset(tables)

    review_columns = {column["name"] for column in inspector.get_columns("product_reviews")}
    assert {"product_id", "external_id", "rating", "is_verified_purchase", "helpful_count", "is_approved"}.issubset(
        review_columns
    )

    unique_sets = {tuple(item["column_names"]) for item in inspector.get_unique_constraints("product_reviews")}
    assert ("product_id", "external_id") in unique_sets

    snapshot_columns = {column["name"] for column in inspector.get_columns("serpapi_snapshots")}
    assert {"gtin", "raw_response", "last_fetched_at"}.issubset(snapshot_columns)


def test_downgrade_removes_tables(sqlite_url: str) -> None:
    cfg = _alembic_config(sqlite_url)
    command.upgrade(cfg, "head")
    command.downgrade(cfg, "base")

    tables = set(inspect(create_engine(sqlite_url, future=True)).get_table_names())
    assert "product_reviews" not in tables
    assert "products" not in tables


def test_models_roundtrip_on_migrated_schema(sqlite_url: str) -> None:
    command.upgrade(_alembic_config(sqlite_url), "head")
    SessionLocal = sessionmaker(bind=create_engine(sqlite_url, future=True), expire_on_commit=False, future=True)
    now = datetime.now(timezone.utc)

    with SessionLocal() as session:
        product = Product(gtin="0123456789012", slug="antminer-s19-pro", name="Antminer S19 Pro")
        session.add(product)
        session.flush()
        review = ProductReview(
            product_id=product.id,
            gtin=product.gtin,
            external_id="amazon.com/review/R1",
            rating=4.5,
            source="amazon-serpapi",
            created_at=now,
        )
        snapshot = RawProviderSnapshot(gtin=product.gtin, raw_response={"reviews_results": []}, last_fetched_at=now)
        job = JobRun(stage=JobStage.REFRESH, status=JobStatus.RUNNING, task_name="refresh_all_reviews")
        session.add_all([review, snapshot, job])
        session.commit()
        session.refresh(review)
        session.refresh(job)

    assert review.is_approved is True
    assert review.is_verified_purchase is False
    assert job.status == JobStatus.RUNNING
    assert job.created_at is not None
