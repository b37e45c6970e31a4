from celery import Celery
from celery.schedules import crontab

from .config import get_settings
from .logging import configure_logging
from .sources import Source

settings = get_settings()
configure_logging(settings.LOG_LEVEL)

celery_app = Celery(
    "wikihub",
    broker=settings.CELERY_BROKER_URL or settings.REDIS_URL,
    backend=settings.REDIS_URL,
)


def _incremental_sync_schedule() -> dict:
    # Stagger sources so two upstreams are never hit in the same minute
    schedule = {}
    for minute, source in enumerate(Source):
        schedule[f"incremental-sync-{source.value}"] = {
            "task": "wikihub.services.sync.sync_source",
            "schedule": crontab(hour=2, minute=minute * 10),
            "kwargs": {"source": source.value, "full_sync": False},
        }
    return schedule


celery_app.conf.update(
    task_routes={
        "wikihub.services.sync.sync_source": {"queue": "ingestion"},
        "wikihub.services.embeddings.embed_articles": {"queue": "embeddings"},
        "wikihub.services.notifications.send_edit_notification": {"queue": "notifications"},
        "wikihub.services.cross_links.detect_pending_links": {"queue": "maintenance"},
        "wikihub.services.rate_limit.cleanup_rate_limit_counters": {"queue": "maintenance"},
        "wikihub.services.blob_store.prune_backups_task": {"queue": "maintenance"},
    },
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    timezone="UTC",
    enable_utc=True,
    imports=(
        "wikihub.services.sync",
        "wikihub.services.embeddings",
        "wikihub.services.notifications",
        "wikihub.services.cross_links",
        "wikihub.services.rate_limit",
        "wikihub.services.blob_store",
    ),
    beat_schedule={
        **_incremental_sync_schedule(),
        "embed-unembedded-articles": {
            "task": "wikihub.services.embeddings.embed_articles",
            "schedule": crontab(hour=4, minute=0),
        },
        "detect-cross-links": {
            "task": "wikihub.services.cross_links.detect_pending_links",
            "schedule": crontab(hour=5, minute=0),
        },
        "cleanup-rate-limit-counters": {
            "task": "wikihub.services.rate_limit.cleanup_rate_limit_counters",
            "schedule": crontab(minute="*/5"),
        },
        "prune-backups": {
            "task": "wikihub.services.blob_store.prune_backups_task",
            "schedule": crontab(hour=6, minute=30),
        },
    },
)
