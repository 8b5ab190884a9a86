"""SQL-backed record store and mutation queue."""

import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional
from contextlib import contextmanager

from sqlalchemy.exc import SQLAlchemyError

from .database import DatabaseManager, get_db_manager
from .operations import get_task_repository, get_queue_repository
from .models import Task, QueueItem, SyncState, Operation
from ..core.interfaces import RecordStore, MutationQueue
from ..transport.wire import validate_payload
from ..utils.logging import get_logger
from ..utils.timestamps import utcnow


logger = get_logger("database.service")


class StorageError(Exception):
    """Raised when the local database fails."""
    pass


class SqlService:
    """Shared transaction handling for the SQL implementations."""

    def __init__(self, db_manager: Optional[DatabaseManager] = None):
        self.db_manager = db_manager or get_db_manager()

    @contextmanager
    def transaction(self):
        """Transactional scope that surfaces SQLAlchemy failures as StorageError."""
        try:
            with self.db_manager.session_scope() as session:
                yield session
        except SQLAlchemyError as e:
            raise StorageError(f"Database operation failed: {e}") from e


class SqlRecordStore(SqlService, RecordStore):
    """Record store over the ``tasks`` table."""

    async def get(self, task_id: str) -> Optional[Task]:
        with self.transaction() as session:
            row = get_task_repository(session).get_by_id(task_id)
            return Task.model_validate(row) if row else None

    async def upsert(self, task: Task) -> Task:
        with self.transaction() as session:
            row = get_task_repository(session).upsert(task)
            return Task.model_validate(row)

    async def mark_sync_state(
        self,
        task_id: str,
        state: SyncState,
        server_id: Optional[str] = None,
        synced_at: Optional[datetime] = None
    ) -> bool:
        with self.transaction() as session:
            updated = get_task_repository(session).update_sync_state(
                task_id, state, server_id=server_id, synced_at=synced_at
            )

        if not updated:
            logger.warning("Sync state update for unknown task", task_id=task_id, state=state.value)
        return updated

    async def list_tasks(self, include_deleted: bool = False) -> List[Task]:
        with self.transaction() as session:
            rows = get_task_repository(session).get_all(include_deleted=include_deleted)
            return [Task.model_validate(row) for row in rows]

    async def tasks_needing_sync(self) -> List[Task]:
        """Tasks still pending or stuck in error."""
        with self.transaction() as session:
            rows = get_task_repository(session).get_by_status([SyncState.PENDING, SyncState.ERROR])
            return [Task.model_validate(row) for row in rows]

    async def last_synced_at(self) -> Optional[datetime]:
        with self.transaction() as session:
            return get_task_repository(session).last_synced_at()

    async def count_by_state(self, state: SyncState) -> int:
        with self.transaction() as session:
            return get_task_repository(session).count_by_status(state)


class SqlMutationQueue(SqlService, MutationQueue):
    """Durable FIFO queue over the ``sync_queue`` table."""

    async def enqueue(
        self,
        task_id: str,
        operation: Operation,
        payload: Dict[str, Any]
    ) -> str:
        """Validate the payload for its operation and append it.

        Raises:
            PayloadValidationError: if the payload does not fit the operation
            StorageError: if the row cannot be written
        """
        data = validate_payload(operation, payload)
        item_id = str(uuid.uuid4())

        with self.transaction() as session:
            add_queue_item(session, item_id, task_id, operation, data)

        return item_id

    async def all(self) -> List[QueueItem]:
        with self.transaction() as session:
            rows = get_queue_repository(session).get_all()
            return [QueueItem.model_validate(row) for row in rows]

    async def get(self, item_id: str) -> Optional[QueueItem]:
        with self.transaction() as session:
            row = get_queue_repository(session).get_by_id(item_id)
            return QueueItem.model_validate(row) if row else None

    async def remove(self, item_id: str) -> None:
        with self.transaction() as session:
            removed = get_queue_repository(session).delete(item_id)

        if removed:
            logger.debug("Queue item removed", queue_id=item_id)

    async def record_failure(self, item_id: str, error_message: str) -> int:
        """Increment the retry count; an item that is already gone reports 0."""
        with self.transaction() as session:
            retry_count = get_queue_repository(session).increment_retry(item_id, error_message)

        if retry_count is None:
            logger.warning("Failure recorded for unknown queue item", queue_id=item_id)
            return 0
        return retry_count

    async def count(self) -> int:
        with self.transaction() as session:
            return get_queue_repository(session).count()


def add_queue_item(
    session,
    item_id: str,
    task_id: str,
    operation: Operation,
    data: Dict[str, Any],
    created_at: Optional[datetime] = None
):
    """Append a validated payload inside an existing transaction."""
    return get_queue_repository(session).add(
        item_id=item_id,
        task_id=task_id,
        operation=Operation(operation),
        data=data,
        created_at=created_at or utcnow()
    )
