"""Core reconciliation logic package.

``SyncConnector`` lives in ``core.connector``; it depends on the database
package, which itself imports ``core.interfaces``.
"""

from .interfaces import RecordStore, MutationQueue
from .resolver import resolve_conflict, remote_is_newer, apply_snapshot
from .sync_engine import SyncEngine, SyncResult, SyncError, SyncEngineError

__all__ = [
    "RecordStore",
    "MutationQueue",
    "resolve_conflict",
    "remote_is_newer",
    "apply_snapshot",
    "SyncEngine",
    "SyncResult",
    "SyncError",
    "SyncEngineError"
]
