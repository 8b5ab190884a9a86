"""Tests for local task CRUD and the mutations it enqueues."""

from unittest.mock import patch

import pytest
from pydantic import ValidationError

from tasksync.database import TaskService, TaskCreate, TaskUpdate, TaskExistsError, Operation, SyncState

from conftest import BASE_TIME


@pytest.fixture
def service(db_manager):
    return TaskService(db_manager)


class TestTaskService:

    @pytest.mark.asyncio
    async def test_create_enqueues_create(self, service, queue):
        task = service.create_task(TaskCreate(title="Call plumber", description="before noon"))

        assert task.sync_status == SyncState.PENDING
        assert task.created_at == task.updated_at
        assert task.server_id is None

        [item] = await queue.all()
        assert item.task_id == task.id
        assert item.operation == Operation.CREATE
        assert item.data["title"] == "Call plumber"
        assert item.data["description"] == "before noon"

    def test_create_with_existing_id(self, service):
        service.create_task(TaskCreate(id="fixed", title="one"))
        with pytest.raises(TaskExistsError):
            service.create_task(TaskCreate(id="fixed", title="two"))

    def test_title_is_required(self):
        with pytest.raises(ValidationError):
            TaskCreate(title="")

    @pytest.mark.asyncio
    async def test_update_enqueues_full_snapshot(self, service, queue):
        task = service.create_task(TaskCreate(title="Draft"))

        updated = service.update_task(task.id, TaskUpdate(completed=True))

        assert updated.completed is True
        assert updated.title == "Draft"
        assert updated.updated_at >= task.updated_at

        items = await queue.all()
        assert [i.operation for i in items] == [Operation.CREATE, Operation.UPDATE]
        assert items[1].data["completed"] is True
        assert items[1].data["title"] == "Draft"

    @pytest.mark.asyncio
    async def test_update_resets_synced_task_to_pending(self, service, store):
        task = service.create_task(TaskCreate(title="Draft"))
        await store.mark_sync_state(task.id, SyncState.SYNCED, server_id="srv-1", synced_at=BASE_TIME)

        updated = service.update_task(task.id, TaskUpdate(title="Final"))

        assert updated.sync_status == SyncState.PENDING
        assert updated.server_id == "srv-1"

    def test_update_missing_task(self, service):
        assert service.update_task("missing", TaskUpdate(title="x")) is None

    @pytest.mark.asyncio
    async def test_delete_is_soft_and_enqueued(self, service, store, queue):
        task = service.create_task(TaskCreate(title="Old"))

        assert service.delete_task(task.id) is True

        assert service.get_task(task.id) is None
        assert (await store.get(task.id)).is_deleted is True
        assert [t.id for t in service.get_all_tasks()] == []

        items = await queue.all()
        assert items[-1].operation == Operation.DELETE
        assert set(items[-1].data) == {"updated_at"}

    def test_deleted_task_cannot_be_updated_or_deleted_again(self, service):
        task = service.create_task(TaskCreate(title="Old"))
        service.delete_task(task.id)

        assert service.update_task(task.id, TaskUpdate(title="New")) is None
        assert service.delete_task(task.id) is False

    @pytest.mark.asyncio
    async def test_tasks_needing_sync(self, service, store):
        pending = service.create_task(TaskCreate(title="pending"))
        synced = service.create_task(TaskCreate(title="synced"))
        failed = service.create_task(TaskCreate(title="failed"))
        await store.mark_sync_state(synced.id, SyncState.SYNCED, synced_at=BASE_TIME)
        await store.mark_sync_state(failed.id, SyncState.ERROR)

        ids = {t.id for t in service.get_tasks_needing_sync()}

        assert ids == {pending.id, failed.id}

    @pytest.mark.asyncio
    async def test_write_and_enqueue_are_atomic(self, service, store, queue):
        with patch("tasksync.database.tasks.add_queue_item", side_effect=RuntimeError("queue write failed")):
            with pytest.raises(RuntimeError):
                service.create_task(TaskCreate(id="t1", title="lost"))

        assert await store.get("t1") is None
        assert await queue.count() == 0
