"""Shared fixtures for tasksync tests."""

import uuid
from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional, Sequence

import pytest

from tasksync.config.schema import SyncConfig
from tasksync.database import DatabaseManager, SqlRecordStore, SqlMutationQueue, Task, SyncState, Operation
from tasksync.transport.base import BaseBatchTransport, TransportError
from tasksync.transport.wire import BatchSyncResponse, Disposition, DispositionStatus


BASE_TIME = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


class FakeTransport(BaseBatchTransport):
    """Scripted transport: a responder decides the dispositions for each batch."""

    def __init__(self, responder: Optional[Callable] = None, online: bool = True):
        super().__init__()
        self.online = online
        self.responder = responder or succeed_all
        self.sent: List[List] = []

    async def check_connectivity(self) -> bool:
        return self.online

    async def send(self, batch: Sequence) -> BatchSyncResponse:
        self.sent.append(list(batch))
        wire_items, rejected = self.prepare_batch(batch)
        sendable = [item for item in batch if item.id in {w.id for w in wire_items}]
        response = self.responder(sendable)
        if isinstance(response, Exception):
            raise response
        response.processed_items.extend(rejected)
        return response


def succeed_all(batch) -> BatchSyncResponse:
    return BatchSyncResponse(processed_items=[
        Disposition(client_id=item.id, server_id=f"srv-{item.task_id}", status=DispositionStatus.SUCCESS)
        for item in batch
    ])


def reject_all(batch) -> BatchSyncResponse:
    return BatchSyncResponse(processed_items=[
        Disposition(client_id=item.id, status=DispositionStatus.ERROR, error="validation failed")
        for item in batch
    ])


def fail_transport(batch):
    return TransportError("connection reset")


def make_task(task_id: Optional[str] = None, title: str = "Write report", minutes: int = 0, **kwargs) -> Task:
    """Pending task whose timestamps are offset from BASE_TIME."""
    created_at = kwargs.pop("created_at", BASE_TIME)
    return Task(
        id=task_id or str(uuid.uuid4()),
        title=title,
        created_at=created_at,
        updated_at=kwargs.pop("updated_at", created_at + timedelta(minutes=minutes)),
        sync_status=kwargs.pop("sync_status", SyncState.PENDING),
        **kwargs
    )


def fields_payload(task: Task) -> dict:
    return {
        "title": task.title,
        "description": task.description,
        "completed": task.completed,
        "created_at": task.created_at,
        "updated_at": task.updated_at,
    }


@pytest.fixture
def db_manager():
    """In-memory database with all tables."""
    manager = DatabaseManager("sqlite:///:memory:")
    manager.create_tables()
    yield manager
    manager.close()


@pytest.fixture
def store(db_manager):
    return SqlRecordStore(db_manager)


@pytest.fixture
def queue(db_manager):
    return SqlMutationQueue(db_manager)


@pytest.fixture
def sync_config():
    return SyncConfig(batch_size=10, max_retries=3, transport_retry_delay=0)


@pytest.fixture
def seed(store, queue):
    """Store a task and enqueue one mutation for it; returns (task, queue item id)."""

    async def _seed(task: Optional[Task] = None, operation: Operation = Operation.CREATE):
        task = task or make_task()
        await store.upsert(task)
        if operation == Operation.DELETE:
            payload = {"updated_at": task.updated_at}
        else:
            payload = fields_payload(task)
        item_id = await queue.enqueue(task.id, operation, payload)
        return task, item_id

    return _seed
