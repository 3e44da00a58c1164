import asyncio
import logging
import uuid
from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)

Handler = Callable[[uuid.UUID], Awaitable[None]]


class BackgroundTaskQueue:
    """In-process job queue drained by a fixed pool of worker tasks.

    Items are ``(handler_name, job_id)`` pairs. Handlers own their database
    session and record their own failures; anything that still escapes is
    logged so the worker keeps running.
    """

    def __init__(self) -> None:
        self._queue: asyncio.Queue[tuple[str, uuid.UUID]] = asyncio.Queue()
        self._handlers: dict[str, Handler] = {}
        self._workers: list[asyncio.Task] = []

    def register(self, name: str, handler: Handler) -> None:
        self._handlers[name] = handler

    def enqueue(self, name: str, job_id: uuid.UUID) -> None:
        if name not in self._handlers:
            raise KeyError(f"No handler registered for {name!r}")
        self._queue.put_nowait((name, job_id))
        logger.debug("Enqueued %s %s", name, job_id)

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    async def _worker(self, index: int) -> None:
        while True:
            name, job_id = await self._queue.get()
            try:
                logger.info("Worker %d running %s %s", index, name, job_id)
                await self._handlers[name](job_id)
            except Exception:
                logger.exception("Background job %s %s failed", name, job_id)
            finally:
                self._queue.task_done()

    def start(self, workers: int) -> None:
        for index in range(max(workers, 1)):
            self._workers.append(asyncio.create_task(self._worker(index)))
        logger.info("Started %d background workers", len(self._workers))

    async def join(self) -> None:
        await self._queue.join()

    async def stop(self) -> None:
        for task in self._workers:
            task.cancel()
        await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers.clear()


task_queue = BackgroundTaskQueue()


async def _run_import(job_id: uuid.UUID) -> None:
    from helpdesk.services import import_service

    await import_service.run_import_job(job_id)


async def _run_export(job_id: uuid.UUID) -> None:
    from helpdesk.services import export_service

    await export_service.run_export_job(job_id)


task_queue.register("import_job", _run_import)
task_queue.register("export_job", _run_export)


async def requeue_pending_jobs(session_factory) -> int:
    """Put jobs left ``queued`` by a previous process back on the queue."""
    from helpdesk.services import export_service, import_service

    async with session_factory() as db:
        import_ids = await import_service.queued_job_ids(db)
        export_ids = await export_service.queued_job_ids(db)
    for job_id in import_ids:
        task_queue.enqueue("import_job", job_id)
    for job_id in export_ids:
        task_queue.enqueue("export_job", job_id)
    if import_ids or export_ids:
        logger.info("Re-enqueued %d import and %d export jobs", len(import_ids), len(export_ids))
    return len(import_ids) + len(export_ids)
