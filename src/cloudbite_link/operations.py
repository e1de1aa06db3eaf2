"""
Single-flight registry for expensive operations (discovery scan, reconnect cycle, initialization)

Each named operation is Idle, InProgress(task) or Settled(result | error | cancelled).
A caller asking for an operation that is already in progress joins the running task
instead of starting a duplicate.
"""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional

logger = logging.getLogger(__name__)


class OperationPhase(Enum):
    IDLE = "idle"
    IN_PROGRESS = "in_progress"
    SETTLED = "settled"


@dataclass(frozen=True)
class OperationState:
    phase: OperationPhase
    task: Optional[asyncio.Task] = None
    result: Any = None
    error: Optional[BaseException] = None
    cancelled: bool = False


IDLE = OperationState(OperationPhase.IDLE)


class OperationRegistry:
    """Tracks one in-flight task per operation name"""

    def __init__(self):
        self._operations: Dict[str, OperationState] = {}

    def get(self, name: str) -> OperationState:
        return self._operations.get(name, IDLE)

    def is_running(self, name: str) -> bool:
        state = self.get(name)
        return state.phase is OperationPhase.IN_PROGRESS and not state.task.done()

    def start(self, name: str, factory: Callable[[], Awaitable[Any]]) -> asyncio.Task:
        """Return the in-flight task for name, creating it from factory when idle or settled"""
        state = self.get(name)
        if state.phase is OperationPhase.IN_PROGRESS and not state.task.done():
            logger.debug(f"Joining in-flight operation '{name}'")
            return state.task

        task = asyncio.ensure_future(factory())
        self._operations[name] = OperationState(OperationPhase.IN_PROGRESS, task=task)
        task.add_done_callback(lambda t: self._settle(name, t))
        return task

    async def run(self, name: str, factory: Callable[[], Awaitable[Any]]) -> Any:
        """
        Start or join the operation and wait for its result.
        Cancelling one waiter does not cancel the shared task.
        """
        task = self.start(name, factory)
        return await asyncio.shield(task)

    async def join(self, name: str) -> Any:
        """Wait for the in-flight operation; returns None when nothing is running"""
        state = self.get(name)
        if state.phase is not OperationPhase.IN_PROGRESS:
            return None
        return await asyncio.shield(state.task)

    def cancel(self, name: str) -> bool:
        """
        Cancel the in-flight task for name. Returns True if something was cancelled.
        The operation settles at once, so the next start() creates a fresh task
        instead of joining the one being torn down.
        """
        state = self.get(name)
        if state.phase is OperationPhase.IN_PROGRESS and not state.task.done():
            state.task.cancel()
            self._operations[name] = OperationState(OperationPhase.SETTLED, cancelled=True)
            return True
        return False

    def cancel_all(self) -> None:
        for name in list(self._operations):
            self.cancel(name)

    def _settle(self, name: str, task: asyncio.Task) -> None:
        current = self._operations.get(name)
        if current is None or current.task is not task:
            return

        if task.cancelled():
            settled = OperationState(OperationPhase.SETTLED, cancelled=True)
        elif task.exception() is not None:
            settled = OperationState(OperationPhase.SETTLED, error=task.exception())
        else:
            settled = OperationState(OperationPhase.SETTLED, result=task.result())

        self._operations[name] = settled
