# ingestion.py
import json
import logging
from typing import Dict, List, Optional, Tuple

from errors import MalformedTaskPayload, NoWorkerRegistered
from models import ATTACHMENT_ROLES, Attachment, Task, TaskIdGenerator

logger = logging.getLogger(__name__)


def parse_entries(raw: Optional[str], field_name: str) -> tuple:
    """Decode a JSON list form field. Absent or blank means no entries."""
    if raw is None or not raw.strip():
        return ()
    try:
        value = json.loads(raw)
    except ValueError as e:
        raise MalformedTaskPayload(f"'{field_name}' is not valid JSON: {e}") from None
    if not isinstance(value, list):
        raise MalformedTaskPayload(f"'{field_name}' must be a JSON list")
    return tuple(value)


class Ingestor:
    """Admission gate and Task construction in front of the coordinator.

    Rejections are raised to the caller and never reach the coordinator.
    Acceptance returns as soon as the task is queued; it does not wait for
    the worker to finish it.
    """

    def __init__(self, coordinator, admission_policy="ever-registered", ids=None):
        self.coordinator = coordinator
        self.admission_policy = admission_policy
        self.ids = ids or TaskIdGenerator()

    def check_admission(self):
        if self.admission_policy == "live-worker":
            admitted = self.coordinator.worker_id is not None
        else:
            admitted = self.coordinator.ever_registered
        if not admitted:
            raise NoWorkerRegistered()

    def build_task(self, event, prices=None, deadlines=None,
                   files: Optional[Dict[str, List[Tuple[str, bytes]]]] = None) -> Task:
        if not isinstance(event, str) or not event.strip():
            raise MalformedTaskPayload("'event' is required")
        files = files or {}
        unknown = set(files) - set(ATTACHMENT_ROLES)
        if unknown:
            raise MalformedTaskPayload(f"Unknown attachment role(s): {', '.join(sorted(unknown))}")
        attachments = tuple(
            Attachment(role=role, name=name, data=bytes(data))
            for role in ATTACHMENT_ROLES
            for name, data in files.get(role, [])
        )
        return Task(
            task_id=self.ids.next_id(),
            event=event,
            prices=parse_entries(prices, "prices"),
            deadlines=parse_entries(deadlines, "deadlines"),
            attachments=attachments,
        )

    def submit(self, event, prices=None, deadlines=None, files=None) -> Task:
        try:
            self.check_admission()
            task = self.build_task(event, prices, deadlines, files)
        except (NoWorkerRegistered, MalformedTaskPayload) as e:
            logger.info("Ingestion rejected: %s", e)
            raise
        self.coordinator.enqueue(task)
        return task
