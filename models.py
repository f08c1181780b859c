# models.py
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, List, Optional, Tuple

ATTACHMENT_ROLES = ("datasheet", "confirmation")


class Status(str, Enum):
    OFFLINE = "offline"   # no worker registered
    IDLE = "idle"         # worker registered, nothing in flight
    BUSY = "busy"         # worker registered, one task in flight


class ConnectionRole(str, Enum):
    UNCLASSIFIED = "unclassified"
    WORKER = "worker"
    OBSERVER = "observer"


@dataclass(frozen=True)
class Attachment:
    role: str
    name: str
    data: bytes


@dataclass(frozen=True)
class Task:
    task_id: str
    event: str
    prices: Tuple[Any, ...] = ()
    deadlines: Tuple[Any, ...] = ()
    attachments: Tuple[Attachment, ...] = ()

    def attachments_for(self, role: str) -> List[Attachment]:
        return [a for a in self.attachments if a.role == role]


@dataclass(frozen=True)
class Outcome:
    event: str
    success: bool
    error: Optional[str] = None

    def display(self) -> str:
        if self.success:
            return self.event
        if self.error:
            return f"{self.event} (failed: {self.error})"
        return f"{self.event} (failed)"

    def to_dict(self) -> dict:
        return {
            "event": self.event,
            "success": self.success,
            "error": self.error,
            "display": self.display(),
        }


@dataclass
class SystemState:
    """Snapshot of the coordinator as observers see it.

    ``pending_count`` and ``pending_events`` are projections of the task
    queue taken at snapshot time; they are never stored independently.
    """
    status: Status = Status.OFFLINE
    pending_events: List[str] = field(default_factory=list)
    history: List[Outcome] = field(default_factory=list)

    @property
    def pending_count(self) -> int:
        return len(self.pending_events)

    def to_dict(self) -> dict:
        return {
            "status": self.status.value,
            "pending_count": self.pending_count,
            "pending_events": list(self.pending_events),
            "history": [o.to_dict() for o in self.history],
        }


class TaskIdGenerator:
    """Millisecond timestamps, bumped when two tasks land in the same tick."""

    def __init__(self, clock=time.time):
        self._clock = clock
        self._last = 0
        self._lock = threading.Lock()

    def next_id(self) -> str:
        with self._lock:
            now = int(self._clock() * 1000)
            self._last = now if now > self._last else self._last + 1
            return str(self._last)
