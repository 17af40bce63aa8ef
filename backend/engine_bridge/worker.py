import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional

from .transport import EngineTerminatedError

logger = logging.getLogger(__name__)

Unit = Callable[[], Awaitable[Any]]


class CommandQueue:
    """Single-worker queue: one engine conversation at a time.

    Each unit starts only after the previous one has produced its result or
    raised. Strength changes and searches share the queue so they never
    interleave on the engine's stdin.
    """

    def __init__(self) -> None:
        self._jobs: Optional[asyncio.Queue] = None
        self._worker: Optional[asyncio.Task] = None
        self.closed = False

    @property
    def pending(self) -> int:
        return self._jobs.qsize() if self._jobs is not None else 0

    def _ensure_worker(self) -> None:
        if self._worker is None:
            self._jobs = asyncio.Queue()
            self._worker = asyncio.create_task(self._run())

    async def _run(self) -> None:
        """Background worker to process queued units."""
        while True:
            job = await self._jobs.get()
            if job is None:
                self._jobs.task_done()
                break
            unit, future = job
            try:
                if future.done():
                    continue
                result = await unit()
            except Exception as exc:
                logger.error("Engine unit failed: %s", exc)
                if not future.done():
                    future.set_exception(exc)
            else:
                if not future.done():
                    future.set_result(result)
            finally:
                self._jobs.task_done()

    async def submit(self, unit: Unit) -> Any:
        """Enqueue ``unit`` and wait for its result."""
        if self.closed:
            raise EngineTerminatedError("Engine command queue is closed.")
        self._ensure_worker()
        future = asyncio.get_running_loop().create_future()
        self._jobs.put_nowait((unit, future))
        return await future

    def close(self) -> None:
        """Reject queued units that have not started and stop the worker."""
        if self.closed:
            return
        self.closed = True
        if self._jobs is None:
            return
        while not self._jobs.empty():
            job = self._jobs.get_nowait()
            self._jobs.task_done()
            if job is None:
                continue
            _, future = job
            if not future.done():
                future.set_exception(EngineTerminatedError("Engine is shutting down."))
        self._jobs.put_nowait(None)

    async def wait_closed(self) -> None:
        if self._worker is not None:
            await self._worker
