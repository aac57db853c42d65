from typing import Dict, Any, List, Optional, Tuple
import asyncio

import structlog

from meeting_agent.domain.collaborators.interfaces import StateStore
from meeting_agent.domain.models.errors import classify_error

logger = structlog.get_logger(__name__)


class BackgroundPersister:
    """Fire-and-forget state saves through a bounded queue.

    Save failures never reach the caller of submit(); they are kept per
    session until the owner drains them with drain_failures().
    """

    def __init__(self, store: StateStore, max_queue_size: int = 1000, save_timeout: float = 5.0):
        self.store = store
        self.max_queue_size = max_queue_size
        self.save_timeout = save_timeout
        self._queue: Optional[asyncio.Queue] = None
        self._worker: Optional[asyncio.Task] = None
        self._failures: Dict[str, List[str]] = {}
        self.saved_count = 0

    @property
    def is_running(self) -> bool:
        return self._worker is not None and not self._worker.done()

    def start(self):
        """Start the worker on the running event loop"""

        if self._queue is None:
            self._queue = asyncio.Queue(maxsize=self.max_queue_size)
        if not self.is_running:
            self._worker = asyncio.create_task(self._run())
            logger.debug("Persistence worker started")

    def submit(self, session_id: str, payload: Dict[str, Any]) -> bool:
        """Queue a snapshot for saving; returns False when it could not be queued"""

        self.start()
        try:
            self._queue.put_nowait((session_id, payload))
            return True
        except asyncio.QueueFull:
            self._record_failure(session_id, "Persistence queue is full, state not saved")
            return False

    async def _run(self):
        while True:
            session_id, payload = await self._queue.get()
            try:
                await asyncio.wait_for(self.store.save_state(session_id, payload), timeout=self.save_timeout)
                self.saved_count += 1
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self._record_failure(
                    session_id,
                    f"Failed to persist workflow state: {str(e) or type(e).__name__}",
                    error_kind=classify_error(e).value
                )
            finally:
                self._queue.task_done()

    def _record_failure(self, session_id: str, message: str, error_kind: Optional[str] = None):
        logger.error("State persistence failed", session_id=session_id, error=message, error_kind=error_kind)
        self._failures.setdefault(session_id, []).append(message)

    def drain_failures(self, session_id: str) -> List[str]:
        return self._failures.pop(session_id, [])

    def pending_failures(self) -> List[Tuple[str, int]]:
        return [(session_id, len(messages)) for session_id, messages in self._failures.items()]

    async def flush(self):
        """Wait until every queued save has been attempted"""

        if self._queue is not None and self.is_running:
            await self._queue.join()

    async def stop(self):
        await self.flush()
        if self._worker is not None:
            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass
            self._worker = None
            logger.debug("Persistence worker stopped")
