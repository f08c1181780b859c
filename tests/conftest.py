"""Shared test fixtures."""

import pytest

from coordinator import Coordinator
from models import Attachment, Task, TaskIdGenerator


class RecordingTransport:
    """Stands in for the connection pool; keeps every outbound message."""

    def __init__(self):
        self.sent = []

    def send(self, connection_id, event, data=None):
        self.sent.append((connection_id, event, data))
        return True

    def send_group(self, group, event, data=None):
        self.sent.append((group, event, data))
        return 1

    def to(self, target, event=None):
        return [d for t, e, d in self.sent if t == target and (event is None or e == event)]

    def events(self):
        return [(t, e) for t, e, _ in self.sent]

    def clear(self):
        self.sent.clear()


@pytest.fixture()
def transport():
    return RecordingTransport()


@pytest.fixture()
def coordinator(transport):
    return Coordinator(transport)


@pytest.fixture()
def make_task():
    ids = TaskIdGenerator()

    def _make(event, prices=(), deadlines=(), attachments=()):
        return Task(
            task_id=ids.next_id(),
            event=event,
            prices=tuple(prices),
            deadlines=tuple(deadlines),
            attachments=tuple(attachments),
        )

    return _make


@pytest.fixture()
def sample_attachment():
    return Attachment(role="datasheet", name="spec.pdf", data=b"%PDF-1.4 fake")
