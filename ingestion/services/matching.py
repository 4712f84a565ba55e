"""Slug resolution: exact case-insensitive match, then a bounded similarity scorer."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Iterable, Optional

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from ingestion.db.models import Product

MAX_SLUG_LENGTH = 200
_NON_ALNUM = re.compile(r"[^a-z0-9]")


@dataclass(frozen=True)
class SlugMatch:
    slug: str
    score: float


def _normalize(slug: str) -> str:
    return _NON_ALNUM.sub("", slug.lower()[:MAX_SLUG_LENGTH])


def score_slug(query: str, candidate: str) -> float:
    """Share of query characters found in the candidate, over the longer length."""
    q, c = _normalize(query), _normalize(candidate)
    if not q or not c:
        return 0.0
    available = set(c)
    hits = sum(1 for ch in q if ch in available)
    return hits / max(len(q), len(c))


def best_match(slug: str, candidates: Iterable[str], *, threshold: float = 0.5) -> Optional[SlugMatch]:
    best: Optional[SlugMatch] = None
    for candidate in candidates:
        score = score_slug(slug, candidate)
        if score <= threshold:
            continue
        if best is None or score > best.score:
            best = SlugMatch(candidate, score)
    return best


def _active_products():
    return select(Product.slug).where(Product.is_active.is_(True), Product.is_archived.is_(False))


def find_best_matching_slug(
    session: Session,
    slug: str,
    *,
    threshold: float = 0.5,
    max_candidates: int = 5000,
) -> Optional[SlugMatch]:
    slug = (slug or "").strip()
    if not slug:
        return None
    exact = session.execute(
        _active_products().where(func.lower(Product.slug) == slug.lower()).limit(1)
    ).scalar_one_or_none()
    if exact is not None:
        return SlugMatch(exact, 1.0)

    candidates = session.execute(_active_products().order_by(Product.slug).limit(max_candidates)).scalars()
    return best_match(slug, candidates, threshold=threshold)
