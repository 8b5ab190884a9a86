"""Tests for the sync engine: pass outcomes, dispositions and retry policy."""

import random
from datetime import timedelta
from unittest.mock import AsyncMock

import pytest

from tasksync.config.schema import SyncConfig
from tasksync.core import SyncEngine, SyncEngineError, SyncResult
from tasksync.database import Operation, SyncState, StorageError
from tasksync.transport.wire import BatchSyncResponse, Disposition, DispositionStatus, TaskSnapshot

from conftest import (
    BASE_TIME,
    FakeTransport,
    fail_transport,
    make_task,
    reject_all,
    succeed_all,
)


def engine_for(store, queue, transport, **config):
    config.setdefault("max_retries", 3)
    config.setdefault("transport_retry_delay", 0)
    return SyncEngine(store, queue, transport, SyncConfig(**config))


class TestPassOutcomes:

    @pytest.mark.asyncio
    async def test_empty_queue(self, store, queue):
        transport = FakeTransport()
        result = await engine_for(store, queue, transport).sync()

        assert result.to_dict() == {"success": True, "synced_items": 0, "failed_items": 0, "errors": []}
        assert transport.sent == []

    @pytest.mark.asyncio
    async def test_remote_unreachable(self, store, queue, seed):
        await seed()
        await seed()
        transport = FakeTransport(online=False)

        result = await engine_for(store, queue, transport).sync()

        assert result.success is False
        assert len(result.errors) == 1
        assert result.errors[0].task_id == ""
        assert result.errors[0].operation == "sync"
        assert result.failed_items == 0
        assert await queue.count() == 2
        assert all(item.retry_count == 0 for item in await queue.all())
        assert transport.sent == []

    @pytest.mark.asyncio
    async def test_create_success_records_server_id(self, store, queue, seed):
        task, _ = await seed(make_task("t1"))

        result = await engine_for(store, queue, FakeTransport()).sync()

        assert result.success is True
        assert result.synced_items == 1
        assert await queue.count() == 0

        synced = await store.get("t1")
        assert synced.sync_status == SyncState.SYNCED
        assert synced.server_id == "srv-t1"
        assert synced.last_synced_at is not None

    @pytest.mark.asyncio
    async def test_success_with_newer_snapshot_is_applied(self, store, queue, seed):
        await seed(make_task("t1", title="local", minutes=1))

        def responder(batch):
            return BatchSyncResponse(processed_items=[Disposition(
                client_id=batch[0].id,
                server_id="srv-9",
                status=DispositionStatus.SUCCESS,
                resolved_data=TaskSnapshot(title="normalized by server", updated_at=BASE_TIME + timedelta(minutes=2))
            )])

        await engine_for(store, queue, FakeTransport(responder)).sync()

        task = await store.get("t1")
        assert task.title == "normalized by server"
        assert task.sync_status == SyncState.SYNCED
        assert task.server_id == "srv-9"

    @pytest.mark.asyncio
    async def test_batches_are_sent_in_enqueue_order(self, store, queue, seed):
        ids = [(await seed())[1] for _ in range(7)]
        transport = FakeTransport()

        result = await engine_for(store, queue, transport, batch_size=3).sync()

        assert [len(batch) for batch in transport.sent] == [3, 3, 1]
        assert [item.id for batch in transport.sent for item in batch] == ids
        assert result.synced_items == 7


class TestConflicts:

    @pytest.mark.asyncio
    async def test_remote_newer_wins(self, store, queue, seed):
        await seed(make_task("t1", title="local edit", minutes=5), Operation.UPDATE)
        remote = TaskSnapshot(
            id="t1",
            title="remote edit",
            description="from another device",
            completed=True,
            is_deleted=False,
            created_at=BASE_TIME,
            updated_at=BASE_TIME + timedelta(minutes=10)
        )

        def responder(batch):
            return BatchSyncResponse(processed_items=[Disposition(
                client_id=batch[0].id, server_id="srv-1", status=DispositionStatus.CONFLICT, resolved_data=remote
            )])

        result = await engine_for(store, queue, FakeTransport(responder)).sync()

        assert result.success is True
        assert result.synced_items == 1
        assert await queue.count() == 0

        task = await store.get("t1")
        assert task.title == "remote edit"
        assert task.description == "from another device"
        assert task.completed is True
        assert task.updated_at == BASE_TIME + timedelta(minutes=10)
        assert task.sync_status == SyncState.SYNCED

    @pytest.mark.asyncio
    async def test_local_newer_is_kept(self, store, queue, seed):
        await seed(make_task("t1", title="local edit", minutes=10), Operation.UPDATE)

        def responder(batch):
            return BatchSyncResponse(processed_items=[Disposition(
                client_id=batch[0].id,
                status=DispositionStatus.CONFLICT,
                resolved_data=TaskSnapshot(title="stale", updated_at=BASE_TIME + timedelta(minutes=1))
            )])

        await engine_for(store, queue, FakeTransport(responder)).sync()

        task = await store.get("t1")
        assert task.title == "local edit"
        assert task.sync_status == SyncState.SYNCED
        assert await queue.count() == 0

    @pytest.mark.asyncio
    async def test_conflict_without_snapshot_is_an_error(self, store, queue, seed):
        await seed(make_task("t1"))

        def responder(batch):
            return BatchSyncResponse(processed_items=[
                Disposition(client_id=batch[0].id, status=DispositionStatus.CONFLICT)
            ])

        result = await engine_for(store, queue, FakeTransport(responder)).sync()

        assert result.success is False
        assert result.failed_items == 1
        assert (await queue.all())[0].retry_count == 1


class TestFailures:

    @pytest.mark.asyncio
    async def test_item_rejection_is_scoped_to_item(self, store, queue, seed):
        _, good = await seed(make_task("t1"))
        _, bad = await seed(make_task("t2"))

        def responder(batch):
            return BatchSyncResponse(processed_items=[
                Disposition(client_id=good, status=DispositionStatus.SUCCESS),
                Disposition(client_id=bad, status=DispositionStatus.ERROR, error="title too long"),
            ])

        result = await engine_for(store, queue, FakeTransport(responder)).sync()

        assert result.success is False
        assert (result.synced_items, result.failed_items) == (1, 1)
        assert result.errors[0].task_id == "t2"
        assert result.errors[0].operation == "create"
        assert result.errors[0].error == "title too long"

        remaining = await queue.all()
        assert [i.id for i in remaining] == [bad]
        assert remaining[0].error_message == "title too long"
        assert (await store.get("t2")).sync_status == SyncState.PENDING

    @pytest.mark.asyncio
    async def test_whole_batch_failure_equals_per_item_failure(self, store, queue, seed, db_manager):
        for _ in range(4):
            await seed()
        transport_result = await engine_for(store, queue, FakeTransport(fail_transport)).sync()
        after_transport = [(i.task_id, i.retry_count) for i in await queue.all()]

        for item in await queue.all():
            await queue.remove(item.id)
        for _ in range(4):
            await seed()
        rejected_result = await engine_for(store, queue, FakeTransport(reject_all)).sync()
        after_rejection = [(i.task_id, i.retry_count) for i in await queue.all()]

        assert transport_result.failed_items == rejected_result.failed_items == 4
        assert len(transport_result.errors) == len(rejected_result.errors) == 4
        assert [rc for _, rc in after_transport] == [rc for _, rc in after_rejection] == [1, 1, 1, 1]

    @pytest.mark.asyncio
    async def test_retry_ceiling(self, store, queue, seed):
        await seed(make_task("t1"))
        engine = engine_for(store, queue, FakeTransport(reject_all), max_retries=3)

        for _ in range(2):
            await engine.sync()
        assert (await queue.all())[0].retry_count == 2
        assert (await store.get("t1")).sync_status == SyncState.PENDING

        result = await engine.sync()

        assert result.failed_items == 1
        assert await queue.count() == 0
        assert (await store.get("t1")).sync_status == SyncState.ERROR

    @pytest.mark.asyncio
    async def test_later_success_clears_permanent_failure(self, store, queue, seed):
        task = make_task("t1")
        _, failing = await seed(task, Operation.CREATE)
        _, passing = await seed(task.model_copy(update={"title": "edited", "updated_at": BASE_TIME + timedelta(minutes=1)}), Operation.UPDATE)
        for _ in range(2):
            await queue.record_failure(failing, "earlier pass")

        def first_fails(batch):
            return BatchSyncResponse(processed_items=[
                Disposition(client_id=failing, status=DispositionStatus.ERROR, error="still broken"),
                Disposition(client_id=passing, status=DispositionStatus.SUCCESS, server_id="srv-1"),
            ])

        result = await engine_for(store, queue, FakeTransport(first_fails), max_retries=3).sync()

        assert (result.synced_items, result.failed_items) == (1, 1)
        assert await queue.count() == 0
        stored = await store.get("t1")
        assert stored.sync_status == SyncState.SYNCED
        assert stored.server_id == "srv-1"

    @pytest.mark.asyncio
    async def test_later_permanent_failure_marks_error(self, store, queue, seed):
        task = make_task("t1")
        _, passing = await seed(task, Operation.CREATE)
        _, failing = await seed(task.model_copy(update={"title": "edited", "updated_at": BASE_TIME + timedelta(minutes=1)}), Operation.UPDATE)
        for _ in range(2):
            await queue.record_failure(failing, "earlier pass")

        def second_fails(batch):
            return BatchSyncResponse(processed_items=[
                Disposition(client_id=passing, status=DispositionStatus.SUCCESS, server_id="srv-1"),
                Disposition(client_id=failing, status=DispositionStatus.ERROR, error="still broken"),
            ])

        result = await engine_for(store, queue, FakeTransport(second_fails), max_retries=3).sync()

        assert (result.synced_items, result.failed_items) == (1, 1)
        assert await queue.count() == 0
        assert (await store.get("t1")).sync_status == SyncState.ERROR

    @pytest.mark.asyncio
    async def test_missing_disposition_takes_error_path(self, store, queue, seed):
        _, answered = await seed()
        _, ignored = await seed()

        def responder(batch):
            return BatchSyncResponse(processed_items=[
                Disposition(client_id=answered, status=DispositionStatus.SUCCESS),
                Disposition(client_id="not-submitted", status=DispositionStatus.SUCCESS),
            ])

        result = await engine_for(store, queue, FakeTransport(responder)).sync()

        assert (result.synced_items, result.failed_items) == (1, 1)
        assert result.errors[0].error == "no disposition returned"
        assert [i.id for i in await queue.all()] == [ignored]

    @pytest.mark.asyncio
    async def test_duplicate_dispositions_use_the_first(self, store, queue, seed):
        _, item_id = await seed(make_task("t1"))

        def responder(batch):
            return BatchSyncResponse(processed_items=[
                Disposition(client_id=item_id, status=DispositionStatus.SUCCESS, server_id="first"),
                Disposition(client_id=item_id, status=DispositionStatus.ERROR, error="second"),
            ])

        result = await engine_for(store, queue, FakeTransport(responder)).sync()

        assert (result.synced_items, result.failed_items) == (1, 0)
        assert (await store.get("t1")).server_id == "first"

    @pytest.mark.asyncio
    async def test_storage_faults_propagate(self, store, queue, seed):
        await seed()
        queue.all = AsyncMock(side_effect=StorageError("disk full"))

        with pytest.raises(StorageError):
            await engine_for(store, queue, FakeTransport()).sync()


class TestProperties:

    @pytest.mark.asyncio
    async def test_correlation_by_id_not_position(self, store, queue, seed, db_manager):
        tasks = [make_task(f"t{n}", title=f"task {n}") for n in range(6)]
        for task in tasks:
            await seed(task)

        def shuffled(batch):
            response = succeed_all(batch)
            for n, d in enumerate(response.processed_items):
                if n % 2:
                    d.status = DispositionStatus.ERROR
                    d.error = "odd one out"
            random.Random(7).shuffle(response.processed_items)
            return response

        result = await engine_for(store, queue, FakeTransport(shuffled)).sync()

        states = {t.id: (await store.get(t.id)).sync_status for t in tasks}
        assert states == {
            "t0": SyncState.SYNCED, "t1": SyncState.PENDING,
            "t2": SyncState.SYNCED, "t3": SyncState.PENDING,
            "t4": SyncState.SYNCED, "t5": SyncState.PENDING,
        }
        assert sorted(i.task_id for i in await queue.all()) == ["t1", "t3", "t5"]
        assert result.synced_items == 3

    @pytest.mark.asyncio
    async def test_no_item_is_both_queued_and_synced(self, store, queue, seed):
        task = make_task("t1")
        await seed(task, Operation.CREATE)
        _, update_id = await seed(task.model_copy(update={"title": "edited", "updated_at": BASE_TIME + timedelta(minutes=1)}), Operation.UPDATE)

        def create_only(batch):
            return BatchSyncResponse(processed_items=[
                Disposition(
                    client_id=item.id,
                    status=DispositionStatus.SUCCESS if item.operation == Operation.CREATE else DispositionStatus.ERROR,
                    error=None if item.operation == Operation.CREATE else "try later"
                )
                for item in batch
            ])

        await engine_for(store, queue, FakeTransport(create_only)).sync()

        assert [i.id for i in await queue.all()] == [update_id]
        assert (await store.get("t1")).sync_status == SyncState.PENDING

    @pytest.mark.asyncio
    async def test_invalid_stored_payload_is_failed_locally(self, store, queue, seed, db_manager):
        from tasksync.database.models import SyncQueueModel

        _, item_id = await seed(make_task("t1"))
        with db_manager.session_scope() as session:
            row = session.query(SyncQueueModel).filter(SyncQueueModel.id == item_id).one()
            row.data = {"title": "corrupted"}

        transport = FakeTransport()
        result = await engine_for(store, queue, transport).sync()

        assert result.failed_items == 1
        assert "invalid batch item" in result.errors[0].error
        assert (await queue.get(item_id)).retry_count == 1


class TestEngineContract:

    def test_rejects_bad_config(self, store, queue):
        config = SyncConfig.model_construct(batch_size=0, max_retries=5)
        with pytest.raises(SyncEngineError):
            SyncEngine(store, queue, FakeTransport(), config)

    @pytest.mark.asyncio
    async def test_rejects_overlapping_passes(self, store, queue):
        engine = engine_for(store, queue, FakeTransport())
        engine._running = True

        with pytest.raises(SyncEngineError):
            await engine.sync()

    def test_result_counts(self):
        result = SyncResult(success=False, synced_items=3, failed_items=2)
        assert result.processed_items == 5
