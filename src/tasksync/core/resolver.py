"""Last-write-wins conflict resolution."""

from typing import Optional

from ..database.models import Task, SyncState
from ..transport.wire import TaskSnapshot
from ..utils.timestamps import parse_timestamp


def remote_is_newer(local: Task, remote: TaskSnapshot) -> bool:
    """True only when both timestamps parse and the remote one is strictly later."""
    local_ts = parse_timestamp(local.updated_at)
    remote_ts = parse_timestamp(remote.updated_at)
    if local_ts is None or remote_ts is None:
        return False
    return remote_ts > local_ts


def apply_snapshot(local: Optional[Task], remote: TaskSnapshot, task_id: str) -> Task:
    """Overlay a remote snapshot on the local task.

    The local id and creation time are kept; fields the remote omits keep
    their local values. ``updated_at`` never drops below ``created_at``.
    """
    remote_created = parse_timestamp(remote.created_at)
    remote_updated = parse_timestamp(remote.updated_at)

    if local is not None:
        created_at = local.created_at
        base = local
    else:
        created_at = remote_created or remote_updated
        base = None

    updated_at = remote_updated or (base.updated_at if base else None) or created_at
    if created_at is None:
        raise ValueError("snapshot without timestamps cannot create a task")
    updated_at = max(updated_at, created_at)

    def pick(field, default):
        value = getattr(remote, field)
        if value is not None:
            return value
        return getattr(base, field) if base is not None else default

    return Task(
        id=task_id,
        title=pick("title", ""),
        description=pick("description", None),
        completed=pick("completed", False),
        is_deleted=pick("is_deleted", False),
        created_at=created_at,
        updated_at=updated_at,
        sync_status=base.sync_status if base else SyncState.PENDING,
        server_id=base.server_id if base else None,
        last_synced_at=base.last_synced_at if base else None,
    )


def resolve_conflict(local: Task, remote: TaskSnapshot) -> Task:
    """Pick the winner between a local task and the remote's version.

    Pure: no I/O and no side effects. Ties and missing or unparseable
    timestamps keep the local version.
    """
    if remote_is_newer(local, remote):
        return apply_snapshot(local, remote, local.id)
    return local
