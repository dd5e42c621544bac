"""
Dependency wiring for the FastAPI app.
"""

from __future__ import annotations

import logging
import os
import tempfile
import threading

from petfeed.config import get_settings
from petfeed.storage import BlobStore, InMemoryBlobStore, LocalBlobStore, S3BlobStore
from petfeed.store import JsonFilePostStore, PostStore, SqlPostStore

logger = logging.getLogger(__name__)

_post_store: PostStore | None = None
_blob_store: BlobStore | None = None
# Sync dependencies run on the threadpool, so first requests can race here.
_lock = threading.Lock()


def _build_post_store() -> PostStore:
    settings = get_settings()
    if settings.use_in_memory_backends:
        path = os.path.join(tempfile.mkdtemp(prefix="petfeed-"), "posts.json")
        logger.info("Using throwaway flat-file post store at %s", path)
        return JsonFilePostStore(path)
    if settings.database_url:
        logger.info("Using SQL post store")
        return SqlPostStore(settings.database_url, pool_recycle=1800)
    path = settings.resolved_posts_file
    logger.info("Using flat-file post store at %s", path)
    return JsonFilePostStore(path)


def _build_blob_store() -> BlobStore:
    settings = get_settings()
    if settings.use_in_memory_backends:
        return InMemoryBlobStore()
    if settings.s3_bucket:
        logger.info("Storing images in bucket %s", settings.s3_bucket)
        return S3BlobStore(
            bucket=settings.s3_bucket,
            region=settings.s3_region or "",
            endpoint=settings.s3_endpoint or "",
            access_key_id=settings.aws_access_key_id or "",
            secret_access_key=settings.aws_secret_access_key or "",
            public_base_url=settings.s3_public_base_url or "",
        )
    logger.info("Storing images in %s", settings.uploads_dir)
    return LocalBlobStore(settings.uploads_dir)


def get_post_store() -> PostStore:
    """
    Return a singleton post store so every request shares the flat-file
    store's one writer thread.
    """
    global _post_store
    if _post_store:
        return _post_store
    with _lock:
        if _post_store is None:
            _post_store = _build_post_store()
    return _post_store


def get_blob_store() -> BlobStore:
    global _blob_store
    if _blob_store:
        return _blob_store
    with _lock:
        if _blob_store is None:
            _blob_store = _build_blob_store()
    return _blob_store


def reset_clients() -> None:
    """Drop cached clients so the next request rebuilds them from settings."""
    global _post_store, _blob_store
    with _lock:
        if isinstance(_post_store, JsonFilePostStore):
            _post_store.close()
        _post_store = None
        _blob_store = None
