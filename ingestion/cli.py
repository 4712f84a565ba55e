"""Review maintenance commands.

Usage:
  reviews-admin refresh-all [--limit N] [--delay-ms N]
  reviews-admin publish 0123456789012 [--name "S19 Pro"] [--brand Bitmain]
  reviews-admin stats
  reviews-admin clean [--days 90]
  reviews-admin probe "Antminer S19"
  reviews-admin match-slug antminer-s19-pro

Reads configuration from .env via pydantic settings. Prints JSON on stdout.
Exit codes: 0 ok, 1 configuration error, 2 store error, 3 provider error.
"""

from __future__ import annotations

import argparse
import json
import sys
from typing import Any, List

from sqlalchemy.exc import SQLAlchemyError

from ingestion.connectors.base import ConfigurationError, ConnectorError, extract_review_entries
from ingestion.connectors.serpapi import SerpApiConnector
from ingestion.db.session import init_db, session_scope
from ingestion.models.domain import ProductQuery
from ingestion.repositories.reviews import delete_stale_unapproved_reviews, review_stats
from ingestion.services.matching import find_best_matching_slug
from ingestion.settings import get_settings
from ingestion.tasks.refresh import refresh_all_core
from ingestion.utils.logging import configure_logging, get_logger
from publish.publisher import publish_reviews_for_gtin

EXIT_OK = 0
EXIT_CONFIG = 1
EXIT_STORE = 2
EXIT_PROVIDER = 3

logger = get_logger(__name__)


def _emit(payload: Any) -> None:
    print(json.dumps(payload, ensure_ascii=False, indent=2, default=str))


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="reviews-admin", description="Review pipeline maintenance")
    sub = parser.add_subparsers(dest="command", required=True)

    refresh = sub.add_parser("refresh-all", help="Publish reviews for every cataloged GTIN")
    refresh.add_argument("--limit", type=int, default=None, help="Max GTINs (default: REFRESH_BATCH_LIMIT)")
    refresh.add_argument("--delay-ms", type=int, default=None, help="Pause between GTINs")

    publish = sub.add_parser("publish", help="Publish reviews for one GTIN")
    publish.add_argument("gtin")
    publish.add_argument("--name", default=None, help="Fallback product name")
    publish.add_argument("--brand", default=None, help="Fallback brand")

    sub.add_parser("stats", help="Per-product rating/count/helpful totals")

    clean = sub.add_parser("clean", help="Delete old unapproved anonymous reviews")
    clean.add_argument("--days", type=int, default=None, help="Age threshold (default: CLEAN_MAX_AGE_DAYS)")

    probe = sub.add_parser("probe", help="Single provider call; prints the review count")
    probe.add_argument("query")

    match = sub.add_parser("match-slug", help="Resolve a product slug (exact, then fuzzy)")
    match.add_argument("slug")
    match.add_argument("--threshold", type=float, default=0.5)
    return parser


def _run(args: argparse.Namespace) -> int:
    cfg = get_settings()
    configure_logging(cfg.log_level, json_enabled=cfg.log_json)

    if args.command == "refresh-all":
        connector = SerpApiConnector.from_settings(cfg)
        report = refresh_all_core(connector=connector, settings=cfg, limit=args.limit, delay_ms=args.delay_ms)
        _emit(report.model_dump())
        return EXIT_OK

    if args.command == "publish":
        connector = SerpApiConnector.from_settings(cfg)
        init_db(cfg)
        result = publish_reviews_for_gtin(
            args.gtin.strip(),
            fallback=ProductQuery(name=args.name, brand=args.brand),
            connector=connector,
            settings=cfg,
        )
        _emit({"gtin": args.gtin, "inserted": result.inserted, "updated": result.updated, "state": result.state.value})
        return EXIT_OK

    if args.command == "probe":
        connector = SerpApiConnector.from_settings(cfg)
        payload = connector.fetch(
            args.query,
            max_attempts=int(cfg.serpapi_max_attempts),
            base_delay_ms=int(cfg.serpapi_backoff_base_ms),
        )
        _emit({"query": args.query, "reviews": len(extract_review_entries(payload))})
        return EXIT_OK

    init_db(cfg)
    with session_scope(cfg) as session:
        if args.command == "stats":
            _emit({"stats": [item.model_dump() for item in review_stats(session)]})
        elif args.command == "clean":
            days = args.days if args.days is not None else int(cfg.clean_max_age_days)
            deleted = delete_stale_unapproved_reviews(session, days)
            logger.info("clean.completed", extra={"days": days, "deleted": deleted})
            _emit({"days": days, "deleted": deleted})
        elif args.command == "match-slug":
            match = find_best_matching_slug(session, args.slug, threshold=args.threshold)
            _emit({"slug": args.slug, "match": match.slug if match else None, "score": match.score if match else 0.0})
    return EXIT_OK


def main(argv: List[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)
    try:
        return _run(args)
    except ConfigurationError as exc:
        print(f"Configuration error: {exc}", file=sys.stderr)
        return EXIT_CONFIG
    except SQLAlchemyError as exc:
        logger.error("cli.store_error", extra={"command": args.command, "error": str(exc)})
        print("Store error; see logs for details.", file=sys.stderr)
        return EXIT_STORE
    except ConnectorError as exc:
        print(f"Provider error: {exc}", file=sys.stderr)
        return EXIT_PROVIDER


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
