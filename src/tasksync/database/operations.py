"""Database operations and repository classes."""

from datetime import datetime
from typing import List, Optional, Dict, Any, Iterable
from sqlalchemy.orm import Session
from sqlalchemy import desc, func

from .models import TaskModel, SyncQueueModel, Task, SyncState, Operation
from ..utils.logging import get_logger
from ..utils.timestamps import to_storage


logger = get_logger("database.operations")


class TaskRepository:
    """Repository for task rows."""

    def __init__(self, session: Session):
        self.session = session

    def get_by_id(self, task_id: str) -> Optional[TaskModel]:
        """Get task by ID, including soft-deleted rows."""
        return self.session.query(TaskModel).filter(TaskModel.id == task_id).first()

    def get_all(self, include_deleted: bool = False) -> List[TaskModel]:
        """Get all tasks, newest first."""
        query = self.session.query(TaskModel)
        if not include_deleted:
            query = query.filter(TaskModel.is_deleted.is_(False))
        return query.order_by(desc(TaskModel.created_at)).all()

    def get_by_status(self, statuses: Iterable[SyncState]) -> List[TaskModel]:
        """Get tasks in any of the given sync states."""
        values = [s.value for s in statuses]
        return self.session.query(TaskModel).filter(
            TaskModel.sync_status.in_(values)
        ).order_by(TaskModel.updated_at).all()

    def upsert(self, task: Task) -> TaskModel:
        """Insert the task or overwrite every column of the existing row."""
        row = self.get_by_id(task.id)
        created = row is None
        if created:
            row = TaskModel(id=task.id)
            self.session.add(row)

        row.title = task.title
        row.description = task.description
        row.completed = task.completed
        row.is_deleted = task.is_deleted
        row.created_at = to_storage(task.created_at)
        row.updated_at = to_storage(task.updated_at)
        row.sync_status = task.sync_status.value
        row.server_id = task.server_id
        row.last_synced_at = to_storage(task.last_synced_at)

        self.session.flush()

        logger.debug(
            "Task upserted",
            task_id=task.id,
            created=created,
            sync_status=task.sync_status.value
        )

        return row

    def update_sync_state(
        self,
        task_id: str,
        state: SyncState,
        server_id: Optional[str] = None,
        synced_at: Optional[datetime] = None
    ) -> bool:
        """Update sync bookkeeping columns; a None server_id keeps the stored one."""
        row = self.get_by_id(task_id)
        if not row:
            return False

        row.sync_status = state.value
        if server_id is not None:
            row.server_id = server_id
        if synced_at is not None:
            row.last_synced_at = to_storage(synced_at)

        self.session.flush()
        return True

    def count_by_status(self, state: SyncState) -> int:
        return self.session.query(TaskModel).filter(TaskModel.sync_status == state.value).count()

    def last_synced_at(self) -> Optional[datetime]:
        """Most recent successful sync across all tasks."""
        return self.session.query(func.max(TaskModel.last_synced_at)).scalar()


class SyncQueueRepository:
    """Repository for the mutation queue table."""

    def __init__(self, session: Session):
        self.session = session

    def add(
        self,
        item_id: str,
        task_id: str,
        operation: Operation,
        data: Dict[str, Any],
        created_at: datetime
    ) -> SyncQueueModel:
        """Append a queue row."""
        row = SyncQueueModel(
            id=item_id,
            task_id=task_id,
            operation=operation.value,
            data=data,
            created_at=to_storage(created_at),
            retry_count=0
        )

        self.session.add(row)
        self.session.flush()

        logger.debug(
            "Queue item added",
            queue_id=item_id,
            task_id=task_id,
            operation=operation.value
        )

        return row

    def get_by_id(self, item_id: str) -> Optional[SyncQueueModel]:
        return self.session.query(SyncQueueModel).filter(SyncQueueModel.id == item_id).first()

    def get_all(self) -> List[SyncQueueModel]:
        """All rows, oldest first."""
        return self.session.query(SyncQueueModel).order_by(
            SyncQueueModel.created_at, SyncQueueModel.seq
        ).all()

    def delete(self, item_id: str) -> bool:
        """Delete a row. Returns False when it did not exist."""
        deleted = self.session.query(SyncQueueModel).filter(SyncQueueModel.id == item_id).delete()
        return deleted > 0

    def increment_retry(self, item_id: str, error_message: str) -> Optional[int]:
        """Bump retry_count and store the message. None when the row is gone."""
        row = self.get_by_id(item_id)
        if not row:
            return None

        row.retry_count = (row.retry_count or 0) + 1
        row.error_message = error_message
        self.session.flush()

        return row.retry_count

    def count(self) -> int:
        return self.session.query(SyncQueueModel).count()


# Repository factory functions

def get_task_repository(session: Session) -> TaskRepository:
    """Get task repository instance."""
    return TaskRepository(session)


def get_queue_repository(session: Session) -> SyncQueueRepository:
    """Get sync queue repository instance."""
    return SyncQueueRepository(session)
