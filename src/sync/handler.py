from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from common.config import Settings, load_settings
from common.logging_utils import configure_logging
from common.remote import HttpRemoteCollection, RemoteCollection
from state.s3_store import S3KeyValueStorage
from state.storage import JsonFileStorage, KeyValueStorage, MemoryStorage
from state.store import QuoteStore

from .engine import SyncEngine, format_sync_notification


logger = logging.getLogger(__name__)


def build_storage(settings: Settings) -> KeyValueStorage:
    if settings.storage_backend == "s3":
        if not settings.state_bucket or not settings.fernet_key:
            raise RuntimeError("Missing required configuration: state bucket and Fernet key for s3 storage")
        return S3KeyValueStorage(
            bucket=settings.state_bucket,
            key=settings.state_key,
            fernet_key=settings.fernet_key,
        )
    if settings.storage_backend == "memory":
        return MemoryStorage()
    return JsonFileStorage(settings.storage_path)


def build_remote(settings: Settings) -> Optional[RemoteCollection]:
    if not settings.remote_url:
        return None
    return HttpRemoteCollection(settings.remote_url, timeout=settings.http_timeout)


def build_engine(settings: Settings, *, store: Optional[QuoteStore] = None) -> Optional[SyncEngine]:
    """Wire store, remote and engine from settings; None when no remote is configured."""
    remote = build_remote(settings)
    if remote is None:
        return None
    if store is None:
        store = QuoteStore(build_storage(settings))
    return SyncEngine(store, remote, push=settings.sync_push)


def run_once(settings: Optional[Settings] = None) -> Dict[str, Any]:
    """
    Run a single sync cycle against the configured remote collection.

    - Resolves configuration from the environment unless `settings` is given.
    - Loads the quote store from the configured storage backend.
    - Fetches, merges (remote wins), persists, and optionally pushes back.

    Returns the cycle report as a dict plus "size" (quotes in the store) and
    "message" (user-facing summary). Without a remote URL nothing is synced.
    """
    settings = settings or load_settings()
    configure_logging(settings.log_level)

    store = QuoteStore(build_storage(settings))
    engine = build_engine(settings, store=store)
    if engine is None:
        logger.info("No remote collection configured; sync skipped")
        return {"ok": True, "size": len(store), "note": "No remote URL configured; sync skipped"}

    try:
        report = engine.sync()
    finally:
        close = getattr(engine.remote, "close", None)
        if callable(close):
            close()

    out = report.as_dict()
    out["size"] = len(store)
    out["message"] = format_sync_notification(report)
    return out


def lambda_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """AWS Lambda entry for scheduled synchronization.

    Environment: see `common.config` (QUOTES_* variables).
    """
    return run_once()
