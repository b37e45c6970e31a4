"""
Blob storage for rendered HTML, raw wikitext and database backups.

Article content is written under content-addressed keys
(``{source}/{slug}/{sha256}.html``), so a key once written never changes
meaning: old revisions stay readable and a failed transaction can delete
the keys it created without touching anything another writer depends on.
"""
from __future__ import annotations

import logging
import os
import re
import tempfile
from abc import ABC, abstractmethod
from datetime import datetime
from functools import lru_cache
from pathlib import Path
from typing import List

from ..core.celery_app import celery_app
from ..core.config import get_settings
from ..core.errors import StorageError
from ..core.sources import Source

logger = logging.getLogger(__name__)

_UNSAFE_KEY_CHARS = re.compile(r"[^a-zA-Z0-9_-]")
BACKUP_PREFIX = "backups"


class BlobStoreError(Exception):
    """Raised by BlobStore implementations for any I/O failure."""


def sanitize_slug(slug: str) -> str:
    return _UNSAFE_KEY_CHARS.sub("_", slug).lower()


def html_key(source: Source, slug: str, content_hash: str) -> str:
    return f"{source.value}/{sanitize_slug(slug)}/{content_hash}.html"


def raw_key(source: Source, slug: str, content_hash: str) -> str:
    return f"{source.value}/{sanitize_slug(slug)}/{content_hash}.raw.txt"


class BlobStore(ABC):
    """
    Minimal key/value byte store.

    Keys are "/"-separated relative paths. ``put`` must be atomic with
    respect to readers: a concurrent ``get`` sees the old bytes or the new
    bytes, never a partial write.
    """

    @abstractmethod
    def put(self, key: str, data: bytes) -> None:
        ...

    @abstractmethod
    def get(self, key: str) -> bytes:
        """Return the stored bytes. Raises KeyError when the key is absent."""

    @abstractmethod
    def delete(self, key: str) -> None:
        """Remove the key. Missing keys are ignored."""

    @abstractmethod
    def exists(self, key: str) -> bool:
        ...

    @abstractmethod
    def list(self, prefix: str) -> List[str]:
        """All keys under ``prefix``, sorted."""

    def get_text(self, key: str) -> str:
        return self.get(key).decode("utf-8")

    def put_text(self, key: str, text: str) -> None:
        self.put(key, text.encode("utf-8"))


class FilesystemBlobStore(BlobStore):
    def __init__(self, root: str | os.PathLike) -> None:
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)

    def _path(self, key: str) -> Path:
        if not key or key.startswith("/") or ".." in key.split("/"):
            raise BlobStoreError(f"Invalid blob key: {key!r}")
        return self.root / key

    def put(self, key: str, data: bytes) -> None:
        path = self._path(key)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp = tempfile.mkstemp(dir=path.parent, prefix=".tmp-")
            try:
                with os.fdopen(fd, "wb") as fh:
                    fh.write(data)
                os.replace(tmp, path)
            except BaseException:
                if os.path.exists(tmp):
                    os.unlink(tmp)
                raise
        except OSError as exc:
            raise BlobStoreError(f"Failed to write {key}: {exc}") from exc

    def get(self, key: str) -> bytes:
        path = self._path(key)
        try:
            return path.read_bytes()
        except FileNotFoundError:
            raise KeyError(key) from None
        except OSError as exc:
            raise BlobStoreError(f"Failed to read {key}: {exc}") from exc

    def delete(self, key: str) -> None:
        try:
            self._path(key).unlink()
        except FileNotFoundError:
            pass
        except OSError as exc:
            raise BlobStoreError(f"Failed to delete {key}: {exc}") from exc

    def exists(self, key: str) -> bool:
        return self._path(key).is_file()

    def list(self, prefix: str) -> List[str]:
        base = self.root / prefix if prefix else self.root
        if not base.is_dir():
            return []
        keys = []
        for path in base.rglob("*"):
            if path.is_file() and not path.name.startswith(".tmp-"):
                keys.append(path.relative_to(self.root).as_posix())
        return sorted(keys)


@lru_cache(maxsize=1)
def get_blob_store() -> BlobStore:
    settings = get_settings()
    return FilesystemBlobStore(settings.BLOB_STORE_ROOT)


def put_required(store: BlobStore, key: str, data: bytes) -> None:
    """Write a blob or raise StorageError; used on transactional write paths."""
    try:
        store.put(key, data)
    except BlobStoreError as exc:
        raise StorageError(str(exc)) from exc


# --- backups ---------------------------------------------------------------


def backup_name(now: datetime | None = None) -> str:
    ts = (now or datetime.utcnow()).strftime("%Y%m%dT%H%M%SZ")
    return f"wikihub-{ts}.sql.gz"


def put_backup(store: BlobStore, name: str, data: bytes) -> str:
    """Store a database dump under ``backups/``; use ``backup_name`` so names sort by time."""
    if "/" in name:
        raise BlobStoreError(f"Invalid backup name: {name!r}")
    key = f"{BACKUP_PREFIX}/{name}"
    put_required(store, key, data)
    logger.info("Stored backup %s", name, extra={"step": "backup"})
    return key


def list_backups(store: BlobStore) -> List[str]:
    # Timestamped names sort chronologically
    return store.list(BACKUP_PREFIX)


def prune_backups(store: BlobStore, keep: int) -> List[str]:
    """Delete all but the newest ``keep`` backups; returns the deleted keys."""
    backups = list_backups(store)
    doomed = backups[:-keep] if keep > 0 else backups
    for key in doomed:
        store.delete(key)
    if doomed:
        logger.info(
            "Pruned %d old backups",
            len(doomed),
            extra={"step": "backup"},
        )
    return doomed


@celery_app.task(name="wikihub.services.blob_store.prune_backups_task")
def prune_backups_task() -> int:
    settings = get_settings()
    try:
        return len(prune_backups(get_blob_store(), settings.BACKUP_KEEP))
    except BlobStoreError:
        logger.exception("Error pruning backups", extra={"step": "backup"})
        raise
