"""Maps raw provider review records onto CanonicalReviewDTO.

Provider payloads are untrusted: every field is extracted defensively and a
record that cannot be mapped is skipped without failing the batch.
"""

from __future__ import annotations

import hashlib
import logging
import math
import re
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Mapping, Optional
from urllib.parse import parse_qsl, urlencode, urlsplit

from ingestion.connectors.base import extract_review_entries
from ingestion.models.domain import CanonicalReviewDTO

DEFAULT_SOURCE = "amazon-serpapi"
TITLE_MAX = 120
COMMENT_MAX = 2000
EXTERNAL_ID_MAX = 256

_VERIFIED_RE = re.compile(r"verified\s*purchase", re.IGNORECASE)
_NUMBER_RE = re.compile(r"-?\d+(?:\.\d+)?")
_COUNT_RE = re.compile(r"\d{1,9}")
_MONTH_FIRST_RE = re.compile(r"([A-Za-z]{3,9})\.?\s+(\d{1,2}),?\s+(\d{4})")
_DAY_FIRST_RE = re.compile(r"(\d{1,2})\s+([A-Za-z]{3,9})\.?,?\s+(\d{4})")
_RELATIVE_RE = re.compile(r"\b(\d{1,6}|an?)\s+(minute|hour|day|week|month|year)s?\s+ago\b", re.IGNORECASE)
_RELATIVE_UNITS = {
    "minute": timedelta(minutes=1),
    "hour": timedelta(hours=1),
    "day": timedelta(days=1),
    "week": timedelta(weeks=1),
    "month": timedelta(days=30),
    "year": timedelta(days=365),
}
_IDENTITY_PARAMS = frozenset({"reviewid", "review_id", "id"})

logger = logging.getLogger(__name__)


class MappingError(ValueError):
    """A single provider record could not be mapped."""


def clamp_rating(value: Any) -> float:
    """Parse a provider rating and clamp it to [0, 5] (one decimal)."""
    number: Optional[float] = None
    if isinstance(value, bool):
        number = None
    elif isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        match = _NUMBER_RE.search(value)
        number = float(match.group(0)) if match else None
    if number is None or not math.isfinite(number):
        return 0.0
    return round(min(5.0, max(0.0, number)), 1)


def is_verified_purchase(source_label: Any) -> bool:
    return isinstance(source_label, str) and bool(_VERIFIED_RE.search(source_label))


def parse_helpful_count(value: Any) -> Optional[int]:
    """Integer vote count, or None when absent or not numeric (0 stays 0)."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value if value >= 0 else None
    if isinstance(value, float):
        return int(value) if value.is_integer() and value >= 0 else None
    if isinstance(value, str):
        text = value.strip().replace(",", "")
        return int(text) if _COUNT_RE.fullmatch(text) else None
    return None


def _link_identity(link: Any) -> Optional[str]:
    if not isinstance(link, str) or not link.strip():
        return None
    try:
        parts = urlsplit(link.strip())
        host = parts.hostname
    except ValueError:
        return None
    if parts.scheme.lower() not in ("http", "https") or not host:
        return None
    if host.startswith("www."):
        host = host[4:]
    identity = host + parts.path.rstrip("/")
    kept = sorted((k, v) for k, v in parse_qsl(parts.query) if k.lower() in _IDENTITY_PARAMS)
    if kept:
        identity += "?" + urlencode(kept)
    return identity[:EXTERNAL_ID_MAX]


def extract_external_id(link: Any, *, title: str = "", date: Any = "", reviewer: Optional[str] = "") -> str:
    """Stable review identity from its permalink; hash of title/date/reviewer when the link is unusable."""
    identity = _link_identity(link)
    if identity:
        return identity
    seed = "|".join([title or "", str(date or ""), reviewer or ""])
    return "sha256:" + hashlib.sha256(seed.encode("utf-8")).hexdigest()


def parse_review_date(value: Any, now: datetime) -> datetime:
    """Best-effort provider date; relative dates are approximate, unknown dates fall back to ``now``."""
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if not isinstance(value, str) or not value.strip():
        return now
    text = value.strip()
    try:
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    except ValueError:
        pass

    for regex, order in ((_MONTH_FIRST_RE, "mdy"), (_DAY_FIRST_RE, "dmy")):
        match = regex.search(text)
        if not match:
            continue
        if order == "mdy":
            month, day, year = match.groups()
        else:
            day, month, year = match.groups()
        for fmt in ("%B %d %Y", "%b %d %Y"):
            try:
                return datetime.strptime(f"{month} {day} {year}", fmt).replace(tzinfo=timezone.utc)
            except ValueError:
                continue

    match = _RELATIVE_RE.search(text)
    if match:
        amount, unit = match.groups()
        count = 1 if amount.lower() in ("a", "an") else int(amount)
        try:
            return now - count * _RELATIVE_UNITS[unit.lower()]
        except OverflowError:
            return now
    return now


def _text(entry: Mapping[str, Any], *keys: str) -> str:
    for key in keys:
        value = entry.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return ""


def _reviewer_name(entry: Mapping[str, Any]) -> Optional[str]:
    name = _text(entry, "reviewer_name", "author")
    if name:
        return name[:255]
    for key in ("user", "profile"):
        nested = entry.get(key)
        if isinstance(nested, dict):
            name = _text(nested, "name")
            if name:
                return name[:255]
    return None


def map_entry(
    entry: Any,
    product_id: Optional[uuid.UUID],
    gtin: str,
    *,
    source: str,
    now: datetime,
) -> CanonicalReviewDTO:
    if not isinstance(entry, dict):
        raise MappingError(f"review entry is {type(entry).__name__}, not an object")

    title = _text(entry, "title")[:TITLE_MAX]
    comment = _text(entry, "snippet", "body", "text", "content")[:COMMENT_MAX]
    if not title and not comment:
        raise MappingError("review entry has neither title nor text")

    reviewer = _reviewer_name(entry)
    helpful_raw = entry.get("helpful_count", entry.get("helpful_votes"))
    try:
        return CanonicalReviewDTO(
            product_id=product_id,
            gtin=gtin,
            external_id=extract_external_id(entry.get("link"), title=title, date=entry.get("date"), reviewer=reviewer),
            rating=clamp_rating(entry.get("rating")),
            title=title,
            comment=comment,
            reviewer_name=reviewer,
            source=source,
            is_verified_purchase=is_verified_purchase(entry.get("source")),
            helpful_count=parse_helpful_count(helpful_raw),
            created_at=parse_review_date(entry.get("date"), now),
        )
    except (ValueError, OverflowError, TypeError) as exc:
        raise MappingError(str(exc)) from exc


def map_to_reviews(
    raw_payload: Optional[Dict[str, Any]],
    product_id: Optional[uuid.UUID],
    gtin: str,
    *,
    source: str = DEFAULT_SOURCE,
    now: Optional[datetime] = None,
    logger: logging.Logger = logger,
) -> List[CanonicalReviewDTO]:
    now = now or datetime.now(timezone.utc)
    mapped: List[CanonicalReviewDTO] = []
    skipped = 0
    for index, entry in enumerate(extract_review_entries(raw_payload)):
        try:
            mapped.append(map_entry(entry, product_id, gtin, source=source, now=now))
        except MappingError as exc:
            skipped += 1
            logger.warning("mapper.record_skipped", extra={"gtin": gtin, "index": index, "reason": str(exc)})
    logger.info(
        "mapper.mapped",
        extra={"gtin": gtin, "product_id": str(product_id) if product_id else None, "count": len(mapped), "skipped": skipped},
    )
    return mapped
