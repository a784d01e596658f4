"""
Per-identity side-effect queue.

Fire-and-forget work (alert broadcasts, grid update pushes) is submitted under
an identity key. Work for one identity runs strictly in submission order on a
single worker task; different identities run concurrently. Submitting never
blocks, failures are logged and never reach the submitter, and a worker
retires as soon as its queue is empty.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Dict

logger = logging.getLogger(__name__)

SideEffect = Callable[[], Awaitable[object]]


class SideEffectQueue:

    def __init__(self):
        self._queues: Dict[str, asyncio.Queue] = {}
        self._workers: Dict[str, asyncio.Task] = {}
        self._closed = False

    @property
    def pending_identities(self) -> int:
        return len(self._workers)

    def submit(self, identity: str, effect: SideEffect, label: str = "side effect") -> bool:
        """Queue effect() for identity. Returns False if the queue is shut down."""
        if self._closed:
            logger.warning(f"Side-effect queue closed; dropping {label} for {identity}")
            return False

        queue = self._queues.get(identity)
        if queue is None:
            queue = asyncio.Queue()
            self._queues[identity] = queue
        queue.put_nowait((effect, label))

        if identity not in self._workers:
            self._workers[identity] = asyncio.create_task(self._run(identity, queue))
        return True

    async def _run(self, identity: str, queue: asyncio.Queue) -> None:
        while True:
            try:
                effect, label = queue.get_nowait()
            except asyncio.QueueEmpty:
                # no await between the empty check and retiring, so submit() cannot interleave
                self._queues.pop(identity, None)
                self._workers.pop(identity, None)
                return

            try:
                await effect()
            except Exception as e:
                logger.error(f"{label} failed for {identity}: {e}", exc_info=True)
            finally:
                queue.task_done()

    async def drain(self) -> None:
        """Wait until every queued effect has run."""
        while self._workers:
            await asyncio.gather(*list(self._workers.values()), return_exceptions=True)

    async def shutdown(self) -> None:
        self._closed = True
        await self.drain()
