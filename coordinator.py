# coordinator.py
import logging
import threading
from typing import Optional

import protocol
from broadcaster import Broadcaster
from models import Outcome, Status, SystemState, Task
from storage import TaskQueue, WorkerRegistry

logger = logging.getLogger(__name__)


class Coordinator:
    """Single-worker dispatch state machine.

    offline -> idle on worker registration, idle -> busy on dispatch,
    busy -> idle on completion, any -> offline when the registered worker
    disconnects. Every mutation runs under one lock. Outbound messages are
    handed to the transport without blocking, so the lock is never held
    across I/O.
    """

    def __init__(self, transport, broadcaster: Optional[Broadcaster] = None):
        self.transport = transport
        self.broadcaster = broadcaster or Broadcaster(transport)
        self.queue = TaskQueue()
        self.workers = WorkerRegistry()
        self._status = Status.OFFLINE
        self._history = []
        self._lock = threading.Lock()

    # ---------------- Read-only views ----------------
    @property
    def status(self) -> Status:
        return self._status

    @property
    def worker_id(self) -> Optional[str]:
        return self.workers.worker_id

    @property
    def ever_registered(self) -> bool:
        return self.workers.ever_registered

    def snapshot(self) -> SystemState:
        with self._lock:
            return self._snapshot()

    def _snapshot(self) -> SystemState:
        return SystemState(
            status=self._status,
            pending_events=self.queue.pending_labels(),
            history=list(self._history),
        )

    def sync_connection(self, connection_id, message=None):
        """Send the current state to one connection only."""
        with self._lock:
            payload = protocol.state_payload(self._snapshot(), message)
            self.transport.send(connection_id, protocol.STATE_SYNC, payload)

    # ---------------- Worker presence ----------------
    def register_worker(self, worker_id: str):
        with self._lock:
            previous = self.workers.register(worker_id)
            if previous is not None and previous != worker_id:
                logger.warning("Worker %s superseded by %s", previous, worker_id)
            self._transition(Status.IDLE, f"(worker={worker_id})")
            self._publish("Worker online and connected to the relay.")
            self._dispatch_next()

    def unregister_worker(self, worker_id: str) -> bool:
        with self._lock:
            if not self.workers.unregister(worker_id):
                return False
            if self._status is Status.BUSY:
                logger.warning("Worker %s lost with a task in flight; the task is dropped", worker_id)
            self._transition(Status.OFFLINE, f"(worker={worker_id} disconnected)")
            self._publish("ALERT: the worker disconnected from the relay!")
            return True

    # ---------------- Queue ----------------
    def enqueue(self, task: Task):
        with self._lock:
            self.queue.enqueue(task)
            logger.info("Task %s (%s) queued, %d pending", task.task_id, task.event, self.queue.size())
            self._publish(f"Event {task.event} added to the queue.")
            if self._status is Status.IDLE:
                self._dispatch_next()

    def dispatch_next(self) -> bool:
        with self._lock:
            return self._dispatch_next()

    def _dispatch_next(self) -> bool:
        if self._status is not Status.IDLE or not self.queue.size():
            return False
        task = self.queue.dequeue_front()
        self._transition(Status.BUSY, f"(task={task.task_id}, event={task.event})")
        self._publish(f"Sending event {task.event} to the worker...")
        self.transport.send(self.workers.worker_id, protocol.TASK_ASSIGNMENT, protocol.encode_task(task))
        return True

    def complete_current(self, event: str, success: bool, error: Optional[str] = None) -> bool:
        with self._lock:
            if self._status is not Status.BUSY:
                logger.warning("Completion for %s ignored while %s", event, self._status.value)
                return False
            outcome = Outcome(event=event, success=bool(success), error=None if success else error)
            self._history.append(outcome)
            self._transition(Status.IDLE, f"(event={event}, success={outcome.success})")
            if outcome.success:
                self._publish(f"Event {event} completed by the worker.")
            else:
                self._publish(f"Worker error on event {event}: {error}")
            self._dispatch_next()
            return True

    # ---------------- Side-channel relays ----------------
    def relay_challenge_image(self, data) -> bool:
        with self._lock:
            if not self._worker_present("challenge image"):
                return False
            self.broadcaster.relay(protocol.FORWARDED_CHALLENGE_IMAGE, data)
            return True

    def relay_challenge_response(self, data) -> bool:
        with self._lock:
            if not self._worker_present("challenge response"):
                return False
            self.transport.send(self.workers.worker_id, protocol.FORWARDED_CHALLENGE_RESPONSE, data)
            self._publish("Sending challenge response to the worker...")
            return True

    def relay_command(self, data) -> bool:
        with self._lock:
            if not self._worker_present("direct command"):
                return False
            self.transport.send(self.workers.worker_id, protocol.FORWARDED_COMMAND, data)
            return True

    # ---------------- Internals ----------------
    def _worker_present(self, what) -> bool:
        if self.workers.present:
            return True
        logger.info("No worker registered; %s dropped", what)
        return False

    def _publish(self, message=None):
        self.broadcaster.publish(self._snapshot(), message)

    def _transition(self, new_status: Status, extra=""):
        old = self._status
        self._status = new_status
        logger.info("Relay: %s → %s %s", old.value, new_status.value, extra)
