import asyncio
import logging
from typing import Any, Awaitable, Callable

from smartsafe.services.store import SafeStore

logger = logging.getLogger(__name__)

Job = Callable[[], Awaitable[Any]]


class BackgroundDispatcher:
    """
    Fire-and-forget side effects. Jobs run one at a time in submission order on
    a single worker task; a failing job is logged and dropped, never retried.
    """

    def __init__(self, maxsize: int = 1000):
        self._queue: asyncio.Queue[tuple[str, Job]] = asyncio.Queue(maxsize=maxsize)
        self._worker: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._worker is not None and not self._worker.done()

    def start(self) -> None:
        if not self.running:
            self._worker = asyncio.create_task(self._run(), name="background-dispatcher")

    async def stop(self) -> None:
        if self._worker is None:
            return
        await self._queue.join()
        self._worker.cancel()
        try:
            await self._worker
        except asyncio.CancelledError:
            pass
        self._worker = None

    def submit(self, name: str, job: Job) -> bool:
        try:
            self._queue.put_nowait((name, job))
        except asyncio.QueueFull:
            logger.error("Dispatcher queue full, dropping %s", name)
            return False
        self.start()
        return True

    async def join(self) -> None:
        await self._queue.join()

    async def _run(self) -> None:
        while True:
            name, job = await self._queue.get()
            try:
                await job()
            except Exception:
                logger.exception("Background job %s failed", name)
            finally:
                self._queue.task_done()


class EventEmitter:
    def __init__(self, store: SafeStore, dispatcher: BackgroundDispatcher):
        self.store = store
        self.dispatcher = dispatcher

    def emit(
        self,
        type: str,
        user_id: str | None = None,
        user_name: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        async def _write():
            await self.store.append_event(type, user_id=user_id, user_name=user_name, metadata=metadata)

        self.dispatcher.submit(f"event:{type}", _write)
