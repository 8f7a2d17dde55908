"""
Synchronization between the local quote store and a remote collection.

Modules:
- engine: merge policy (remote wins) and the guarded sync cycle
- scheduler: periodic, stoppable sync triggering
- handler: environment-configured one-shot entry point
"""

from .engine import SyncEngine, SyncReport, format_sync_notification, merge_quotes

__all__ = [
    "SyncEngine",
    "SyncReport",
    "format_sync_notification",
    "merge_quotes",
]
