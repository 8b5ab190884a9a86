"""Task CRUD service that records every mutation in the sync queue."""

import uuid
from typing import List, Optional

from .database import DatabaseManager
from .models import Task, TaskCreate, TaskUpdate, SyncState, Operation, new_task
from .operations import get_task_repository
from .service import StorageError, add_queue_item, SqlService
from ..transport.wire import validate_payload
from ..utils.logging import get_logger, log_execution_time
from ..utils.timestamps import utcnow


logger = get_logger("database.tasks")


class TaskExistsError(StorageError):
    """Raised when creating a task whose id is already taken."""
    pass


def _fields_payload(task: Task) -> dict:
    return {
        "title": task.title,
        "description": task.description,
        "completed": task.completed,
        "created_at": task.created_at,
        "updated_at": task.updated_at,
    }


class TaskService(SqlService):
    """Local task CRUD.

    Each write stores the task and enqueues the matching mutation in the
    same transaction, so a task never changes without a queued record of it.
    """

    def __init__(self, db_manager: Optional[DatabaseManager] = None):
        super().__init__(db_manager)

    @log_execution_time
    def create_task(self, data: TaskCreate) -> Task:
        """Create a pending task and enqueue its ``create`` mutation."""
        task = new_task(data, data.id or str(uuid.uuid4()))
        payload = validate_payload(Operation.CREATE, _fields_payload(task))

        with self.transaction() as session:
            if get_task_repository(session).get_by_id(task.id):
                raise TaskExistsError(f"Task already exists: {task.id}")
            row = get_task_repository(session).upsert(task)
            add_queue_item(session, str(uuid.uuid4()), task.id, Operation.CREATE, payload, task.updated_at)
            created = Task.model_validate(row)

        logger.info("Task created", task_id=created.id)
        return created

    @log_execution_time
    def update_task(self, task_id: str, updates: TaskUpdate) -> Optional[Task]:
        """Apply field updates and enqueue an ``update`` mutation.

        Returns None when the task does not exist or is deleted.
        """
        with self.transaction() as session:
            repo = get_task_repository(session)
            row = repo.get_by_id(task_id)
            if not row or row.is_deleted:
                return None

            current = Task.model_validate(row)
            changes = updates.model_dump(exclude_unset=True, exclude_none=True)
            task = current.model_copy(update={
                **changes,
                "updated_at": max(utcnow(), current.created_at),
                "sync_status": SyncState.PENDING,
            })

            payload = validate_payload(Operation.UPDATE, _fields_payload(task))
            row = repo.upsert(task)
            add_queue_item(session, str(uuid.uuid4()), task.id, Operation.UPDATE, payload, task.updated_at)
            updated = Task.model_validate(row)

        logger.info("Task updated", task_id=task_id, fields=sorted(changes))
        return updated

    @log_execution_time
    def delete_task(self, task_id: str) -> bool:
        """Soft-delete a task and enqueue a ``delete`` mutation."""
        with self.transaction() as session:
            repo = get_task_repository(session)
            row = repo.get_by_id(task_id)
            if not row or row.is_deleted:
                return False

            current = Task.model_validate(row)
            task = current.model_copy(update={
                "is_deleted": True,
                "updated_at": max(utcnow(), current.created_at),
                "sync_status": SyncState.PENDING,
            })

            payload = validate_payload(Operation.DELETE, {"updated_at": task.updated_at})
            repo.upsert(task)
            add_queue_item(session, str(uuid.uuid4()), task.id, Operation.DELETE, payload, task.updated_at)

        logger.info("Task deleted", task_id=task_id)
        return True

    def get_task(self, task_id: str) -> Optional[Task]:
        """Get a live (not deleted) task."""
        with self.transaction() as session:
            row = get_task_repository(session).get_by_id(task_id)
            if not row or row.is_deleted:
                return None
            return Task.model_validate(row)

    def get_all_tasks(self) -> List[Task]:
        with self.transaction() as session:
            rows = get_task_repository(session).get_all()
            return [Task.model_validate(row) for row in rows]

    def get_tasks_needing_sync(self) -> List[Task]:
        with self.transaction() as session:
            rows = get_task_repository(session).get_by_status([SyncState.PENDING, SyncState.ERROR])
            return [Task.model_validate(row) for row in rows]
