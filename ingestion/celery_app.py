"""Celery application bootstrap."""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import Any, Dict

from celery import Celery, signals
from celery.schedules import schedule as celery_schedule

from .settings import Settings, get_settings
from .utils.logging import configure_logging

_CELERY_APP: Celery | None = None

REFRESH_TASK_NAME = "ingestion.tasks.refresh.refresh_all_reviews"


def create_celery_app(settings: Settings | None = None) -> Celery:
    """Build a Celery instance from settings."""
    config = settings or get_settings()
    configure_logging(config.log_level, json_enabled=config.log_json)

    app = Celery("reviews", broker=config.redis_url, backend=config.redis_url)
    app.conf.update(
        task_default_queue="reviews.default",
        task_default_exchange="reviews",
        task_default_routing_key="reviews.default",
        # Refresh is sequential by design; one worker process is enough.
        worker_concurrency=1,
        beat_schedule=_build_beat_schedule(config),
        timezone="UTC",
        enable_utc=True,
        worker_send_task_events=True,
        task_send_sent_event=True,
    )

    app.autodiscover_tasks(["ingestion.tasks"])
    _install_signal_handlers()
    return app


def get_celery_app() -> Celery:
    """Return the singleton Celery instance."""
    global _CELERY_APP
    if _CELERY_APP is None:
        _CELERY_APP = create_celery_app()
    return _CELERY_APP


def _build_beat_schedule(settings: Settings) -> Dict[str, Dict[str, Any]]:
    if not settings.refresh_interval_minutes:
        return {}
    return {
        "refresh.reviews.all": {
            "task": REFRESH_TASK_NAME,
            "schedule": celery_schedule(timedelta(minutes=int(settings.refresh_interval_minutes))),
            "options": {"queue": "reviews.refresh"},
        }
    }


def _install_signal_handlers() -> None:
    logger = logging.getLogger("ingestion.worker")

    @signals.worker_shutdown.connect(weak=False)  # type: ignore[attr-defined]
    def _on_worker_shutdown(sender=None, **kwargs):  # noqa: ANN001
        logger.info("worker.shutdown", extra={"sender": str(sender)})
