"""Database package for the sync client."""

from .database import (
    DatabaseManager,
    get_db_manager,
    init_database,
    close_database
)

from .models import (
    TaskModel,
    SyncQueueModel,
    Task,
    QueueItem,
    TaskCreate,
    TaskUpdate,
    SyncState,
    Operation
)

from .operations import (
    TaskRepository,
    SyncQueueRepository,
    get_task_repository,
    get_queue_repository
)

from .service import (
    StorageError,
    SqlRecordStore,
    SqlMutationQueue
)

from .tasks import TaskService, TaskExistsError

__all__ = [
    # Database management
    "DatabaseManager",
    "get_db_manager",
    "init_database",
    "close_database",

    # Models
    "TaskModel",
    "SyncQueueModel",
    "Task",
    "QueueItem",
    "TaskCreate",
    "TaskUpdate",
    "SyncState",
    "Operation",

    # Repositories
    "TaskRepository",
    "SyncQueueRepository",
    "get_task_repository",
    "get_queue_repository",

    # Services
    "StorageError",
    "SqlRecordStore",
    "SqlMutationQueue",
    "TaskService",
    "TaskExistsError"
]
