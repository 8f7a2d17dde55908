from __future__ import annotations

import enum
import logging
import threading
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Set

from common.errors import TransportError
from common.remote import RemoteCollection
from state.models import Quote, QuoteKey, quote_key
from state.store import QuoteStore


logger = logging.getLogger(__name__)


class SyncPhase(str, enum.Enum):
    IDLE = "idle"
    FETCHING = "fetching"
    MERGING = "merging"
    PERSISTING = "persisting"
    PUSHING = "pushing"


@dataclass(frozen=True)
class MergeResult:
    quotes: List[Quote]
    conflicts: int
    added_from_remote: int
    local_only: int


@dataclass(frozen=True)
class SyncReport:
    """Summary of one sync cycle.

    Attributes
    - conflicts: local quotes overwritten by a differing remote version
    - added_from_remote: remote quotes that were missing locally
    - local_only: local quotes absent remotely (pushed when push is enabled)
    - pushed: the merged collection replaced the remote snapshot
    - skipped: another cycle was in flight; nothing was done
    - fetch_error / storage_error / push_error: recovered failures, if any
    """

    conflicts: int = 0
    added_from_remote: int = 0
    local_only: int = 0
    pushed: bool = False
    skipped: bool = False
    fetch_error: Optional[str] = None
    storage_error: Optional[str] = None
    push_error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return not (self.skipped or self.fetch_error or self.storage_error or self.push_error)

    def as_dict(self) -> Dict[str, object]:
        return {
            "ok": self.ok,
            "conflicts": self.conflicts,
            "added_from_remote": self.added_from_remote,
            "local_only": self.local_only,
            "pushed": self.pushed,
            "skipped": self.skipped,
            "fetch_error": self.fetch_error,
            "storage_error": self.storage_error,
            "push_error": self.push_error,
        }


def merge_quotes(local: Sequence[Quote], remote: Sequence[Quote]) -> MergeResult:
    """Merge a remote snapshot into the local collection, remote version winning.

    Local order is kept; quotes only present remotely are appended in remote
    order. Repeated identities within `remote` are ignored after the first.
    """
    merged: List[Quote] = list(local)
    index: Dict[QuoteKey, int] = {}
    for i, q in enumerate(merged):
        index.setdefault(quote_key(q), i)

    seen_remote: Set[QuoteKey] = set()
    conflicts = added = 0
    for r in remote:
        k = quote_key(r)
        if k in seen_remote:
            continue
        seen_remote.add(k)

        i = index.get(k)
        if i is None:
            index[k] = len(merged)
            merged.append(r)
            added += 1
        elif merged[i] != r:
            merged[i] = r
            conflicts += 1

    local_only = sum(1 for q in local if quote_key(q) not in seen_remote)
    return MergeResult(quotes=merged, conflicts=conflicts, added_from_remote=added, local_only=local_only)


class SyncEngine:
    """
    Reconciles a `QuoteStore` with a `RemoteCollection`.

    One cycle: fetch the remote snapshot, merge (remote wins on conflicts),
    replace + persist the store in one step, then optionally push the merged
    collection back. Recoverable failures end the cycle early and are
    reported in the returned `SyncReport`; they are never raised.

    Only one cycle runs at a time. A cycle started while another is in flight
    returns a report with `skipped=True` without touching anything.
    """

    def __init__(self, store: QuoteStore, remote: RemoteCollection, *, push: bool = True) -> None:
        self._store = store
        self._remote = remote
        self._push = push
        self._guard = threading.Lock()
        self._phase = SyncPhase.IDLE
        self.last_report: Optional[SyncReport] = None

    @property
    def phase(self) -> SyncPhase:
        return self._phase

    @property
    def store(self) -> QuoteStore:
        return self._store

    @property
    def remote(self) -> RemoteCollection:
        return self._remote

    @property
    def in_progress(self) -> bool:
        return self._guard.locked()

    def sync(self) -> SyncReport:
        if not self._guard.acquire(blocking=False):
            logger.info("Sync already in progress; skipping this trigger")
            return SyncReport(skipped=True)
        try:
            report = self._run_cycle()
        finally:
            self._phase = SyncPhase.IDLE
            self._guard.release()
        self.last_report = report
        return report

    def _run_cycle(self) -> SyncReport:
        self._phase = SyncPhase.FETCHING
        try:
            remote = self._remote.fetch()
        except TransportError as exc:
            logger.warning("Fetching remote quotes failed; store left unchanged: %s", exc)
            return SyncReport(fetch_error=str(exc))

        self._phase = SyncPhase.MERGING
        result = merge_quotes(list(self._store), remote)

        self._phase = SyncPhase.PERSISTING
        storage_error: Optional[str] = None
        if not self._store.replace_all(result.quotes):
            storage_error = str(self._store.last_storage_error or "storage write failed")

        pushed = False
        push_error: Optional[str] = None
        if self._push:
            self._phase = SyncPhase.PUSHING
            try:
                self._remote.push(result.quotes)
                pushed = True
            except TransportError as exc:
                logger.warning("Pushing merged quotes failed: %s", exc)
                push_error = str(exc)

        report = SyncReport(
            conflicts=result.conflicts,
            added_from_remote=result.added_from_remote,
            local_only=result.local_only,
            pushed=pushed,
            storage_error=storage_error,
            push_error=push_error,
        )
        logger.info(
            "Sync finished: %d conflict(s), %d added from remote, %d local-only, pushed=%s",
            report.conflicts,
            report.added_from_remote,
            report.local_only,
            report.pushed,
        )
        return report


def format_sync_notification(report: SyncReport) -> str:
    """One-line, user-facing summary of a sync cycle."""
    if report.skipped:
        return "Sync already in progress."
    if report.fetch_error:
        return f"Sync failed: could not reach the server ({report.fetch_error}). No changes made."

    parts: List[str] = []
    if report.added_from_remote:
        parts.append(f"{report.added_from_remote} new from server")
    if report.conflicts:
        noun = "conflict" if report.conflicts == 1 else "conflicts"
        parts.append(f"{report.conflicts} {noun} resolved (server version kept)")
    if report.local_only:
        parts.append(f"{report.local_only} local-only")
    msg = "Quotes synced with server"
    msg += f": {', '.join(parts)}." if parts else ": already up to date."

    if report.storage_error:
        msg += " Warning: changes could not be saved locally."
    if report.push_error:
        msg += " Warning: server was not updated."
    return msg


__all__ = [
    "MergeResult",
    "SyncEngine",
    "SyncPhase",
    "SyncReport",
    "format_sync_notification",
    "merge_quotes",
]
