"""Remote application logic for batch sync requests."""

import uuid
from typing import Any, Dict, List, Optional

from ..database.database import DatabaseManager
from ..database.models import Task, TaskModel, SyncState
from ..database.operations import get_task_repository
from ..transport.wire import (
    BatchItem,
    CreateItem,
    UpdateItem,
    DeleteItem,
    Disposition,
    DispositionStatus,
    PayloadValidationError,
    parse_batch_item,
    task_snapshot,
)
from ..utils.logging import get_logger
from ..utils.timestamps import ensure_utc, utcnow


class BatchApplier:
    """Applies client mutations to the remote task table, one item at a time.

    Each item runs in its own transaction; a failing item becomes an
    ``error`` disposition and does not affect the rest of the batch.
    """

    def __init__(self, db_manager: DatabaseManager):
        self.db_manager = db_manager
        self.logger = get_logger(self.__class__.__name__)

    def apply_batch(self, items: List[Dict[str, Any]]) -> List[Disposition]:
        """Apply raw request items in order and return one disposition each."""
        dispositions = [self.apply_item(raw) for raw in items]

        self.logger.info(
            "Batch applied",
            items=len(items),
            succeeded=sum(1 for d in dispositions if d.status == DispositionStatus.SUCCESS),
            conflicts=sum(1 for d in dispositions if d.status == DispositionStatus.CONFLICT),
            errors=sum(1 for d in dispositions if d.status == DispositionStatus.ERROR)
        )

        return dispositions

    def apply_item(self, raw: Dict[str, Any]) -> Disposition:
        client_id = str(raw.get("id", "")) if isinstance(raw, dict) else ""

        try:
            item = parse_batch_item(raw)
        except PayloadValidationError as e:
            self.logger.warning("Rejected batch item", client_id=client_id, error=str(e))
            return Disposition(client_id=client_id, status=DispositionStatus.ERROR, error=str(e))

        try:
            with self.db_manager.session_scope() as session:
                return self._apply(session, item)
        except Exception as e:
            self.logger.error(
                "Failed to apply batch item",
                client_id=item.id,
                task_id=item.task_id,
                operation=item.operation,
                error=str(e)
            )
            return Disposition(client_id=item.id, status=DispositionStatus.ERROR, error=str(e))

    def _apply(self, session, item: BatchItem) -> Disposition:
        repo = get_task_repository(session)
        existing = repo.get_by_id(item.task_id)

        if isinstance(item, CreateItem):
            if existing is not None:
                return self._conflict(item, existing)
            return self._success(item, self._write(repo, item, None))

        if isinstance(item, UpdateItem):
            if existing is None:
                return self._success(item, self._write(repo, item, None))
            if ensure_utc(existing.updated_at) > item.data.updated_at:
                return self._conflict(item, existing)
            return self._success(item, self._write(repo, item, existing))

        if isinstance(item, DeleteItem):
            if existing is None:
                return Disposition(client_id=item.id, status=DispositionStatus.SUCCESS)
            current = Task.model_validate(existing)
            deleted = current.model_copy(update={
                "is_deleted": True,
                "updated_at": max(current.updated_at, item.data.updated_at),
                "last_synced_at": utcnow(),
            })
            return self._success(item, repo.upsert(deleted))

        raise ValueError(f"Unsupported operation: {item.operation}")

    def _write(self, repo, item: BatchItem, existing: Optional[TaskModel]) -> TaskModel:
        data = item.data
        created_at = ensure_utc(existing.created_at) if existing is not None else data.created_at
        task = Task(
            id=item.task_id,
            title=data.title,
            description=data.description,
            completed=data.completed,
            is_deleted=existing.is_deleted if existing is not None else False,
            created_at=created_at,
            updated_at=max(data.updated_at, created_at),
            sync_status=SyncState.SYNCED,
            server_id=existing.server_id if existing is not None else str(uuid.uuid4()),
            last_synced_at=utcnow(),
        )
        return repo.upsert(task)

    def _success(self, item: BatchItem, row: TaskModel) -> Disposition:
        return Disposition(
            client_id=item.id,
            server_id=row.server_id,
            status=DispositionStatus.SUCCESS,
            resolved_data=task_snapshot(row)
        )

    def _conflict(self, item: BatchItem, existing: TaskModel) -> Disposition:
        self.logger.info("Conflict detected", client_id=item.id, task_id=item.task_id, operation=item.operation)
        return Disposition(
            client_id=item.id,
            server_id=existing.server_id,
            status=DispositionStatus.CONFLICT,
            resolved_data=task_snapshot(existing)
        )
