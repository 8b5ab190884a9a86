"""Storage interfaces consumed by the sync engine."""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, List, Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from ..database.models import Task, QueueItem, SyncState, Operation


class RecordStore(ABC):
    """Authoritative local copies of tasks."""

    @abstractmethod
    async def get(self, task_id: str) -> Optional["Task"]:
        """Return the task with this id, or None."""
        pass

    @abstractmethod
    async def upsert(self, task: "Task") -> "Task":
        """Insert or fully overwrite a task."""
        pass

    @abstractmethod
    async def mark_sync_state(
        self,
        task_id: str,
        state: "SyncState",
        server_id: Optional[str] = None,
        synced_at: Optional[datetime] = None
    ) -> bool:
        """Update sync bookkeeping. Returns False for an unknown task."""
        pass


class MutationQueue(ABC):
    """Ordered, durable log of pending mutations."""

    @abstractmethod
    async def enqueue(
        self,
        task_id: str,
        operation: "Operation",
        payload: Dict[str, Any]
    ) -> str:
        """Append a mutation and return its id."""
        pass

    @abstractmethod
    async def all(self) -> List["QueueItem"]:
        """Every queued item, oldest first."""
        pass

    @abstractmethod
    async def remove(self, item_id: str) -> None:
        """Remove an item; unknown ids are ignored."""
        pass

    @abstractmethod
    async def record_failure(self, item_id: str, error_message: str) -> int:
        """Increment the retry count and return the new value."""
        pass

    @abstractmethod
    async def count(self) -> int:
        pass
