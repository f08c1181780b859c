# storage.py
from collections import deque
from typing import List, Optional

from errors import EmptyQueue
from models import Task


class TaskQueue:
    """FIFO of pending tasks. No priority, no dedup."""

    def __init__(self):
        self._tasks = deque()

    def enqueue(self, task: Task) -> None:
        self._tasks.append(task)

    def dequeue_front(self) -> Task:
        if not self._tasks:
            raise EmptyQueue("dequeue_front() on an empty task queue")
        return self._tasks.popleft()

    def size(self) -> int:
        return len(self._tasks)

    def pending_labels(self) -> List[str]:
        return [t.event for t in self._tasks]

    def __len__(self):
        return len(self._tasks)


class WorkerRegistry:
    """Holds the identity of the single registered worker connection, if any."""

    def __init__(self):
        self._worker_id: Optional[str] = None
        self._ever_registered = False

    @property
    def worker_id(self) -> Optional[str]:
        return self._worker_id

    @property
    def present(self) -> bool:
        return self._worker_id is not None

    @property
    def ever_registered(self) -> bool:
        return self._ever_registered

    def register(self, worker_id: str) -> Optional[str]:
        """Set the worker; returns the superseded id (last registration wins)."""
        previous = self._worker_id
        self._worker_id = worker_id
        self._ever_registered = True
        return previous

    def unregister(self, worker_id: str) -> bool:
        # Only the registered worker's own disconnect clears the handle.
        if worker_id is None or worker_id != self._worker_id:
            return False
        self._worker_id = None
        return True
