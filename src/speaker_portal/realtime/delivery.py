"""Background delivery queue for fire-and-forget live pushes and emails."""

import asyncio
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Set

import structlog

from ..domain.errors import DeliveryWarning
from ..metrics import LIVE_DELIVERY_FAILURES

logger = structlog.get_logger()


@dataclass
class DeliveryJob:
    """One queued delivery with its ordering key."""

    key: str
    task: Callable[..., Awaitable[Any]]
    args: tuple = ()
    kwargs: dict = field(default_factory=dict)
    timed: bool = True


class DeliveryQueue:
    """Runs delivery jobs in the background, in submission order per key.

    ``submit`` never blocks and never raises on behalf of a job: failures and
    timeouts are logged as delivery warnings and the job is dropped. Each key
    gets its own drain task, which exits once its queue is empty.
    """

    def __init__(self, job_timeout: float = 5.0) -> None:
        self.job_timeout = job_timeout
        self._queues: Dict[str, asyncio.Queue] = {}
        self._tasks: Set[asyncio.Task] = set()
        self._closed = False
        logger.info("delivery_queue_initialized", job_timeout=job_timeout)

    def submit(
        self,
        key: str,
        task: Callable[..., Awaitable[Any]],
        *args: Any,
        timed: bool = True,
        **kwargs: Any,
    ) -> None:
        """Queue a job for ``key``. Must be called from a running event loop.

        Untimed jobs run to completion and must bound their own work.
        """
        if self._closed:
            logger.warning("delivery_queue_closed", key=key)
            return

        job = DeliveryJob(key=key, task=task, args=args, kwargs=kwargs, timed=timed)
        queue = self._queues.get(key)
        if queue is None:
            queue = asyncio.Queue()
            self._queues[key] = queue
            drain = asyncio.create_task(self._drain(key, queue))
            self._tasks.add(drain)
            drain.add_done_callback(self._tasks.discard)
        queue.put_nowait(job)

    async def _drain(self, key: str, queue: asyncio.Queue) -> None:
        try:
            while not queue.empty():
                job: DeliveryJob = queue.get_nowait()
                try:
                    if job.timed:
                        await asyncio.wait_for(
                            job.task(*job.args, **job.kwargs), timeout=self.job_timeout
                        )
                    else:
                        await job.task(*job.args, **job.kwargs)
                except asyncio.TimeoutError:
                    self._warn(DeliveryWarning("delivery timed out", target=key))
                except asyncio.CancelledError:
                    raise
                except Exception as e:
                    self._warn(DeliveryWarning(str(e) or type(e).__name__, target=key))
                finally:
                    queue.task_done()
        finally:
            # No await between the emptiness check and this cleanup, so a
            # concurrent submit either landed in this queue or starts a new one.
            if self._queues.get(key) is queue:
                del self._queues[key]

    @staticmethod
    def _warn(warning: DeliveryWarning) -> None:
        LIVE_DELIVERY_FAILURES.inc()
        logger.warning("delivery_warning", target=warning.target, error=warning.message)

    def pending(self) -> int:
        return sum(q.qsize() for q in self._queues.values())

    async def wait_idle(self) -> None:
        """Wait until every queued job has run, including jobs queued meanwhile."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def cleanup(self) -> None:
        """Cancel outstanding deliveries."""
        self._closed = True
        tasks = list(self._tasks)
        for task in tasks:
            if not task.done():
                task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._queues.clear()
        self._tasks.clear()
        logger.info("delivery_queue_cleaned_up")
