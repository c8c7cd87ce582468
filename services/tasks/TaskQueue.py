"""In-process task queue with retries and a dead-letter list.

Jobs are zero-argument coroutine functions. Workers pick them up in submission order; a job
that raises is retried with exponential back-off until TASK_MAX_ATTEMPTS runs were made.
Errors listed in NON_RETRYABLE_ERRORS go straight to the dead-letter list. Nothing survives
a process restart. Finished tasks are kept for inspection up to TASK_RETENTION entries,
the oldest are dropped first.
"""

import asyncio
import uuid
from collections import deque
from collections.abc import Awaitable, Callable
from typing import Any

from shared.helper.HelperConfig import HelperConfig
from shared.models.document import utc_now
from shared.models.errors import NON_RETRYABLE_ERRORS, DocIntelError
from shared.models.task import TaskInfo, TaskStatus

Job = Callable[[], Awaitable[Any]]
TASK_FAILURE_MESSAGE = "Task failed unexpectedly."


class TaskQueue:
    """Runs submitted jobs on a fixed number of asyncio workers."""

    def __init__(self, helper_config: HelperConfig, max_attempts: int | None = None, retry_delay: float | None = None, retention: int | None = None) -> None:
        self.logging = helper_config.get_logger()
        settings = helper_config.get_pipeline_settings()
        self._default_workers = settings.task_workers
        self._max_attempts = max(1, max_attempts if max_attempts is not None else settings.task_max_attempts)
        self._retry_delay = retry_delay if retry_delay is not None else settings.task_retry_delay
        self._retention = max(1, retention if retention is not None else settings.task_retention)

        self._queue: asyncio.Queue[str] = asyncio.Queue()
        self._tasks: dict[str, TaskInfo] = {}
        self._jobs: dict[str, Job] = {}
        self._done: dict[str, asyncio.Event] = {}
        self._dead_letters: list[str] = []
        self._finished: deque[str] = deque()
        # dedup key (e.g. a doc id) -> id of its queued, running or retrying task
        self._active: dict[str, str] = {}
        self._workers: list[asyncio.Task] = []
        self._pending_retries: set[asyncio.Task] = set()

    ##########################################
    ############### LIFECYCLE ################
    ##########################################

    def start(self, workers: int | None = None) -> None:
        """Start the workers. Must be called from a running event loop."""
        if self._workers:
            return
        count = max(1, workers or self._default_workers)
        self._workers = [asyncio.create_task(self._worker(i)) for i in range(count)]
        self.logging.info("Task queue started with %d worker(s).", count)

    async def stop(self) -> None:
        """Cancel the workers and any scheduled retries. Unfinished tasks stay as they are."""
        pending = self._workers + list(self._pending_retries)
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)
        self._workers = []
        self._pending_retries.clear()
        self.logging.info("Task queue stopped.")

    @property
    def is_running(self) -> bool:
        return bool(self._workers)

    ##########################################
    ################ SUBMIT ##################
    ##########################################

    def submit(self, name: str, job: Job, key: str | None = None) -> str:
        """Queue a job.

        Args:
            name (str): Human readable task name, e.g. "ingest:<docId>".
            job (Job): Coroutine function without arguments.
            key (str | None): Marks the task as the live run for this key until it finished,
                see active_task().

        Returns:
            str: The task id.
        """
        task_id = str(uuid.uuid4())
        self._tasks[task_id] = TaskInfo(task_id=task_id, name=name, max_attempts=self._max_attempts)
        self._jobs[task_id] = job
        self._done[task_id] = asyncio.Event()
        if key is not None:
            self._active[key] = task_id
        self._queue.put_nowait(task_id)
        self.logging.debug("Task %s (%s) queued.", task_id, name)
        return task_id

    async def wait(self, task_id: str, timeout: float | None = None) -> TaskInfo:
        """Wait until a task succeeded or was dead-lettered.

        Raises:
            KeyError: If the task id is unknown.
            asyncio.TimeoutError: If timeout elapses first.
        """
        event = self._done[task_id]
        await asyncio.wait_for(event.wait(), timeout=timeout)
        return self._tasks[task_id]

    ##########################################
    ################ GETTER ##################
    ##########################################

    def get_task(self, task_id: str) -> TaskInfo | None:
        return self._tasks.get(task_id)

    def list_tasks(self, status: TaskStatus | None = None) -> list[TaskInfo]:
        tasks = [t for t in self._tasks.values() if status is None or t.status == status]
        return sorted(tasks, key=lambda t: t.created_at, reverse=True)

    def dead_letters(self) -> list[TaskInfo]:
        return [self._tasks[task_id] for task_id in self._dead_letters]

    def active_task(self, key: str) -> str | None:
        """Id of the unfinished task submitted under key, None when there is none."""
        return self._active.get(key)

    ##########################################
    ################ WORKERS #################
    ##########################################

    def _update(self, task_id: str, **changes: Any) -> TaskInfo:
        info = self._tasks[task_id].model_copy(update={**changes, "updated_at": utc_now()})
        self._tasks[task_id] = info
        return info

    async def _worker(self, index: int) -> None:
        while True:
            task_id = await self._queue.get()
            try:
                await self._run(task_id)
            finally:
                self._queue.task_done()

    async def _run(self, task_id: str) -> None:
        info = self._update(task_id, status=TaskStatus.RUNNING, attempts=self._tasks[task_id].attempts + 1)
        try:
            result = await self._jobs[task_id]()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            # task info is served by the API, the full error only goes to the log
            message = e.user_message if isinstance(e, DocIntelError) else TASK_FAILURE_MESSAGE
            if isinstance(e, NON_RETRYABLE_ERRORS) or info.attempts >= info.max_attempts:
                self._dead_letters.append(task_id)
                self._finish(task_id, status=TaskStatus.DEAD, last_error=message)
                self.logging.error(
                    "Task %s (%s) dead-lettered after %d attempt(s): %s: %s",
                    task_id, info.name, info.attempts, type(e).__name__, e,
                )
                return

            delay = self._retry_delay * (2 ** (info.attempts - 1))
            self._update(task_id, status=TaskStatus.RETRYING, last_error=message)
            self.logging.warning(
                "Task %s (%s) failed on attempt %d/%d, retrying in %.1fs: %s",
                task_id, info.name, info.attempts, info.max_attempts, delay, e,
            )
            retry = asyncio.create_task(self._requeue_later(task_id, delay))
            self._pending_retries.add(retry)
            retry.add_done_callback(self._pending_retries.discard)
            return

        self._finish(task_id, status=TaskStatus.SUCCEEDED, result=result)
        self.logging.debug("Task %s (%s) succeeded.", task_id, info.name)

    def _finish(self, task_id: str, **changes: Any) -> None:
        self._update(task_id, **changes)
        self._jobs.pop(task_id, None)
        for key in [k for k, active_id in self._active.items() if active_id == task_id]:
            del self._active[key]
        self._done[task_id].set()

        self._finished.append(task_id)
        while len(self._finished) > self._retention:
            expired = self._finished.popleft()
            self._tasks.pop(expired, None)
            self._done.pop(expired, None)
            if expired in self._dead_letters:
                self._dead_letters.remove(expired)

    async def _requeue_later(self, task_id: str, delay: float) -> None:
        if delay > 0:
            await asyncio.sleep(delay)
        self._queue.put_nowait(task_id)
