"""Tests for the in-process task queue."""

import asyncio

import pytest

from services.tasks.TaskQueue import TASK_FAILURE_MESSAGE, TaskQueue
from shared.models.errors import EmbeddingFailedError, UnsupportedFormatError
from shared.models.task import TaskStatus


@pytest.fixture
async def queue(helper_config):
    task_queue = TaskQueue(helper_config, max_attempts=3, retry_delay=0)
    task_queue.start(workers=2)
    yield task_queue
    await task_queue.stop()


@pytest.mark.asyncio
async def test_successful_job_stores_result(queue):
    async def job():
        return 42

    task_id = queue.submit("answer", job)
    info = await queue.wait(task_id, timeout=5)

    assert info.status == TaskStatus.SUCCEEDED
    assert info.result == 42
    assert info.attempts == 1
    assert info.is_finished


@pytest.mark.asyncio
async def test_transient_failure_is_retried(queue):
    calls = []

    async def flaky():
        calls.append(1)
        if len(calls) < 3:
            raise EmbeddingFailedError("rate limited")
        return "done"

    info = await queue.wait(queue.submit("flaky", flaky), timeout=5)

    assert info.status == TaskStatus.SUCCEEDED
    assert info.attempts == 3
    assert info.last_error == EmbeddingFailedError.user_message
    assert queue.dead_letters() == []


@pytest.mark.asyncio
async def test_exhausted_retries_are_dead_lettered(queue):
    async def broken():
        raise RuntimeError("disk on fire")

    info = await queue.wait(queue.submit("broken", broken), timeout=5)

    assert info.status == TaskStatus.DEAD
    assert info.attempts == 3
    assert info.last_error == TASK_FAILURE_MESSAGE
    assert [t.task_id for t in queue.dead_letters()] == [info.task_id]


@pytest.mark.asyncio
async def test_non_retryable_error_goes_straight_to_dead_letters(queue):
    async def unsupported():
        raise UnsupportedFormatError("image/png")

    info = await queue.wait(queue.submit("unsupported", unsupported), timeout=5)

    assert info.status == TaskStatus.DEAD
    assert info.attempts == 1


@pytest.mark.asyncio
async def test_list_tasks_by_status(queue):
    async def ok():
        return None

    async def bad():
        raise UnsupportedFormatError()

    ok_id = queue.submit("ok", ok)
    bad_id = queue.submit("bad", bad)
    await asyncio.gather(queue.wait(ok_id, timeout=5), queue.wait(bad_id, timeout=5))

    assert [t.task_id for t in queue.list_tasks(TaskStatus.SUCCEEDED)] == [ok_id]
    assert [t.task_id for t in queue.list_tasks(TaskStatus.DEAD)] == [bad_id]
    assert len(queue.list_tasks()) == 2
    assert queue.get_task("missing") is None


@pytest.mark.asyncio
async def test_stop_cancels_workers(helper_config):
    task_queue = TaskQueue(helper_config)
    task_queue.start(workers=1)
    assert task_queue.is_running

    await task_queue.stop()

    assert not task_queue.is_running


@pytest.mark.asyncio
async def test_internal_error_text_stays_out_of_task_info(queue):
    async def unreachable():
        raise EmbeddingFailedError("Request to http://embed.internal:11434/api/embed failed with status 500")

    info = await queue.wait(queue.submit("embed", unreachable), timeout=5)

    assert info.status == TaskStatus.DEAD
    assert info.last_error == "Embedding the document failed."


@pytest.mark.asyncio
async def test_active_task_is_tracked_until_finished(helper_config):
    task_queue = TaskQueue(helper_config, retry_delay=0)

    async def job():
        return "done"

    task_id = task_queue.submit("ingest:doc-a", job, key="doc-a")
    unkeyed_id = task_queue.submit("other", job)
    assert task_queue.active_task("doc-a") == task_id
    assert task_queue.active_task("doc-b") is None

    task_queue.start(workers=1)
    try:
        await task_queue.wait(task_id, timeout=5)
        await task_queue.wait(unkeyed_id, timeout=5)
    finally:
        await task_queue.stop()

    assert task_queue.active_task("doc-a") is None


@pytest.mark.asyncio
async def test_old_finished_tasks_are_dropped(helper_config):
    task_queue = TaskQueue(helper_config, max_attempts=1, retry_delay=0, retention=2)
    task_queue.start(workers=1)

    async def ok():
        return None

    async def bad():
        raise UnsupportedFormatError()

    try:
        dead_id = task_queue.submit("bad", bad)
        await task_queue.wait(dead_id, timeout=5)
        finished = []
        for i in range(3):
            finished.append(task_queue.submit(f"ok-{i}", ok))
            await task_queue.wait(finished[-1], timeout=5)
    finally:
        await task_queue.stop()

    assert {t.task_id for t in task_queue.list_tasks()} == set(finished[1:])
    assert task_queue.get_task(dead_id) is None
    assert task_queue.dead_letters() == []
    with pytest.raises(KeyError):
        await task_queue.wait(finished[0], timeout=1)
