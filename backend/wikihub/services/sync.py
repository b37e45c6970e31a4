"""
Per-source sync runs.

A run walks the upstream listing in key order, fetches each page, and hands
it to the content store, which only writes when the upstream hash changed.
Progress (``SyncRun.checkpoint``) is committed with every page so an
interrupted run resumes right after the last page it finished.
"""
from __future__ import annotations

import logging
import uuid
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

import redis
from sqlalchemy.orm import Session

from ..core.celery_app import celery_app
from ..core.config import get_settings
from ..core.db import SessionLocal
from ..core.errors import EncodingError, FetchFailedError, SyncAlreadyRunningError, SyncLockLostError
from ..core.sources import Source, parse_source
from ..models.sync_run import SyncRun, SyncStatus
from .caching import ArticleCache, get_article_cache, get_redis_client
from .content import CREATED, DIVERGED, UNCHANGED, UPDATED, content_mutation, upsert_synced_article
from .upstream import PageRef, UpstreamClient, get_client

logger = logging.getLogger(__name__)

STRATEGY_FULL = "full"
STRATEGY_INCREMENTAL = "incremental"
STRATEGY_CHANGES = "changes"  # incremental run over the upstream change feed

_COUNTERS = {
    CREATED: "pages_created",
    UPDATED: "pages_updated",
    UNCHANGED: "pages_unchanged",
    DIVERGED: "pages_diverged",
}


class SyncLock:
    """
    Per-source mutual exclusion: Redis ``SET NX EX`` with an owner token.

    The TTL is a lease, not a run budget: the holder calls ``renew`` after
    every page, so only a dead worker lets it lapse.
    """

    def __init__(self, client: redis.Redis, source: Source, ttl: int) -> None:
        self.client = client
        self.key = lock_key(source)
        self.ttl = ttl
        self.token = uuid.uuid4().hex

    def acquire(self) -> bool:
        return bool(self.client.set(self.key, self.token, nx=True, ex=self.ttl))

    def renew(self) -> bool:
        """Push the expiry out again; False when the key is no longer ours."""
        try:
            with self.client.pipeline() as pipe:
                pipe.watch(self.key)
                if pipe.get(self.key) != self.token:
                    return False
                pipe.multi()
                pipe.expire(self.key, self.ttl)
                pipe.execute()
                return True
        except redis.WatchError:
            return False
        except redis.RedisError:
            logger.warning("Could not renew %s", self.key)
            return False

    def release(self) -> None:
        try:
            if self.client.get(self.key) == self.token:
                self.client.delete(self.key)
        except redis.RedisError:
            # TTL expiry frees it eventually
            logger.warning("Could not release %s", self.key)


def lock_key(source: Source) -> str:
    return f"sync-lock:{source.value}"


def is_sync_running(source: Source, redis_client: Optional[redis.Redis] = None) -> bool:
    client = redis_client or get_redis_client()
    return bool(client.exists(lock_key(source)))


def _latest_run(db: Session, source: Source) -> Optional[SyncRun]:
    return (
        db.query(SyncRun)
        .filter(SyncRun.source == source, SyncRun.status != SyncStatus.RUNNING)
        .order_by(SyncRun.id.desc())
        .first()
    )


def _last_completed(db: Session, source: Source) -> Optional[SyncRun]:
    return (
        db.query(SyncRun)
        .filter(SyncRun.source == source, SyncRun.status == SyncStatus.COMPLETED)
        .order_by(SyncRun.id.desc())
        .first()
    )


def latest_checkpoint(db: Session, source: Source) -> Optional[str]:
    """Where the next incremental run picks up; None when the last run finished its listing."""
    run = _latest_run(db, source)
    return run.checkpoint if run is not None else None


def list_runs(db: Session, source: Optional[Source] = None, limit: int = 20) -> List[SyncRun]:
    query = db.query(SyncRun)
    if source is not None:
        query = query.filter(SyncRun.source == source)
    return query.order_by(SyncRun.id.desc()).limit(limit).all()


def _interrupt_stale_runs(db: Session, source: Source) -> None:
    # Caller holds the lock, so any "running" row is left over from a dead worker
    stale = (
        db.query(SyncRun)
        .filter(SyncRun.source == source, SyncRun.status == SyncStatus.RUNNING)
        .all()
    )
    for run in stale:
        run.status = SyncStatus.INTERRUPTED
        run.completed_at = datetime.utcnow()
        run.error_message = run.error_message or "Worker stopped before the run finished"
    if stale:
        db.commit()
        logger.info(
            "Marked %d stale sync runs interrupted",
            len(stale),
            extra={"source": source.value, "step": "sync"},
        )


def _record_failure(run: SyncRun, ref: PageRef, exc: Exception) -> None:
    run.pages_failed += 1
    # Reassign so the JSON column is flagged dirty
    run.errors = list(run.errors or []) + [
        {"key": ref.key, "code": getattr(exc, "code", "error"), "message": str(exc)[:500]}
    ]


def _sync_page(
    db: Session,
    client: UpstreamClient,
    cache: ArticleCache,
    run: SyncRun,
    ref: PageRef,
    full_sync: bool,
) -> None:
    try:
        page = client.fetch_page(ref)
    except (FetchFailedError, EncodingError) as exc:
        logger.warning(
            "Skipping %s: %s",
            ref.key,
            exc,
            extra={"source": run.source.value, "run_id": run.id, "step": "sync"},
        )
        _record_failure(run, ref, exc)
        run.pages_processed += 1
        run.checkpoint = ref.key
        db.commit()
        return

    with content_mutation(db, cache=cache) as mutation:
        outcome = upsert_synced_article(db, mutation, run.source, page, full_sync=full_sync)
        counter = _COUNTERS[outcome]
        setattr(run, counter, getattr(run, counter) + 1)
        run.pages_processed += 1
        run.checkpoint = ref.key


def run_sync(
    db: Session,
    source: Source,
    full_sync: bool = False,
    resume_from: Optional[str] = None,
    limit: Optional[int] = None,
    client: Optional[UpstreamClient] = None,
    cache: Optional[ArticleCache] = None,
    redis_client: Optional[redis.Redis] = None,
) -> SyncRun:
    """
    Run one sync for ``source`` and return the finished SyncRun.

    - ``resume_from``: listing key to continue after. Defaults to the last
      run's checkpoint for incremental runs; full runs start at the top.
    - ``limit``: stop after this many pages, keeping the checkpoint.

    Raises SyncAlreadyRunningError if another run holds the source lock.
    Fatal errors (listing unreachable, storage failure) mark the run failed
    and propagate; the checkpoint stays at the last completed page.
    """
    settings = get_settings()
    lock = SyncLock(redis_client or get_redis_client(), source, settings.SYNC_LOCK_TTL_SECONDS)
    if not lock.acquire():
        raise SyncAlreadyRunningError(f"A sync for {source.value} is already running")

    owns_client = client is None
    client = client or get_client(source)
    cache = cache or get_article_cache()
    log_extra: Dict[str, Any] = {"source": source.value, "step": "sync"}

    try:
        _interrupt_stale_runs(db, source)

        since = None
        strategy = STRATEGY_FULL if full_sync else STRATEGY_INCREMENTAL
        if not full_sync and resume_from is None:
            previous = _latest_run(db, source)
            if previous is not None and previous.checkpoint:
                resume_from = previous.checkpoint
                if previous.strategy == STRATEGY_CHANGES:
                    since = previous.changes_since
            else:
                completed = _last_completed(db, source)
                if completed is not None:
                    since = completed.started_at
            if since is not None:
                strategy = STRATEGY_CHANGES

        run = SyncRun(
            source=source,
            strategy=strategy,
            resume_from=resume_from,
            checkpoint=resume_from,
            changes_since=since,
            page_limit=limit,
            errors=[],
            status=SyncStatus.RUNNING,
        )
        db.add(run)
        db.commit()
        log_extra["run_id"] = run.id
        logger.info(
            "Starting %s sync after %r",
            strategy,
            resume_from,
            extra=log_extra,
        )

        try:
            refs: Iterable[PageRef]
            changed = client.list_changes(since) if since is not None else None
            if changed is not None:
                refs = [ref for ref in changed if not resume_from or ref.key > resume_from]
            else:
                if strategy == STRATEGY_CHANGES:
                    run.strategy = STRATEGY_INCREMENTAL
                refs = client.list_pages(start_after=resume_from)

            exhausted = True
            for ref in refs:
                if limit is not None and run.pages_processed >= limit:
                    exhausted = False
                    break
                _sync_page(db, client, cache, run, ref, full_sync)
                if not lock.renew():
                    raise SyncLockLostError(f"Lost the {source.value} sync lock after {ref.key!r}")
                if run.pages_processed % settings.SYNC_PROGRESS_INTERVAL == 0:
                    logger.info(
                        "Sync progress: %d pages (%d created, %d updated)",
                        run.pages_processed,
                        run.pages_created,
                        run.pages_updated,
                        extra=log_extra,
                    )

            if exhausted:
                run.checkpoint = None
            run.status = SyncStatus.COMPLETED
            run.completed_at = datetime.utcnow()
            db.commit()
        except Exception as exc:
            db.rollback()
            # Lock loss means another worker owns the source now
            run.status = SyncStatus.INTERRUPTED if isinstance(exc, SyncLockLostError) else SyncStatus.FAILED
            run.error_message = str(exc)[:2000]
            run.completed_at = datetime.utcnow()
            db.commit()
            logger.exception("Sync run failed", extra=log_extra)
            raise

        logger.info(
            "Sync finished: %d processed, %d created, %d updated, %d unchanged, %d diverged, %d failed",
            run.pages_processed,
            run.pages_created,
            run.pages_updated,
            run.pages_unchanged,
            run.pages_diverged,
            run.pages_failed,
            extra=log_extra,
        )
        return run
    finally:
        lock.release()
        if owns_client:
            client.close()


@celery_app.task(name="wikihub.services.sync.sync_source")
def sync_source(
    source: str,
    full_sync: bool = False,
    resume_from: Optional[str] = None,
    limit: Optional[int] = None,
) -> Dict[str, Any]:
    db: Session = SessionLocal()
    try:
        run = run_sync(
            db,
            parse_source(source),
            full_sync=full_sync,
            resume_from=resume_from,
            limit=limit,
        )
        return {
            "run_id": run.id,
            "status": run.status.value,
            "pages_processed": run.pages_processed,
            "checkpoint": run.checkpoint,
        }
    except SyncAlreadyRunningError:
        logger.info("Sync already running; skipping", extra={"source": source, "step": "sync"})
        return {"status": "skipped"}
    except SyncLockLostError:
        # Already recorded on the run row
        return {"status": "interrupted"}
    finally:
        db.close()


def enqueue_sync(
    source: Source,
    full_sync: bool = False,
    resume_from: Optional[str] = None,
    limit: Optional[int] = None,
    redis_client: Optional[redis.Redis] = None,
) -> str:
    """Queue a sync; refused while a run for the same source holds the lock."""
    if is_sync_running(source, redis_client):
        raise SyncAlreadyRunningError(f"A sync for {source.value} is already running")
    result = celery_app.send_task(
        "wikihub.services.sync.sync_source",
        kwargs={
            "source": source.value,
            "full_sync": full_sync,
            "resume_from": resume_from,
            "limit": limit,
        },
    )
    logger.info("Queued sync", extra={"source": source.value, "step": "sync"})
    return result.id
