import allure
import pytest

import protocol
from coordinator import Coordinator
from models import ConnectionRole, Status, Task
from router import Connection, ConnectionPool, ConnectionRouter

pytestmark = [
    allure.epic("Relay Core"),
    allure.feature("Connection Routing"),
]


def _drain(connection):
    messages = []
    while not connection.outbox.empty():
        messages.append(connection.outbox.get_nowait())
    return messages


@pytest.fixture()
def pool():
    return ConnectionPool()


@pytest.fixture()
def router(pool):
    return ConnectionRouter(Coordinator(pool), pool)


def _connect(router, name):
    return router.open(Connection(connection_id=name))


def test_new_connection_is_unclassified_and_gets_no_broadcasts(router) -> None:
    lurker = _connect(router, "lurker")
    worker = _connect(router, "worker")

    router.handle(worker, {"event": protocol.IDENTIFY_WORKER})

    assert lurker.role is ConnectionRole.UNCLASSIFIED
    assert _drain(lurker) == []


def test_observer_gets_immediate_sync_and_later_broadcasts(router) -> None:
    observer = _connect(router, "obs")
    router.handle(observer, {"event": protocol.IDENTIFY_OBSERVER})

    first = _drain(observer)
    assert [m["event"] for m in first] == [protocol.STATE_SYNC]
    assert first[0]["data"]["state"]["status"] == "offline"
    assert first[0]["data"]["message"] == "Synchronized with the coordinator."

    worker = _connect(router, "worker")
    router.handle(worker, {"event": protocol.IDENTIFY_WORKER})

    later = _drain(observer)
    assert later[-1]["data"]["state"]["status"] == "idle"
    assert router.pool.members(protocol.OBSERVER_GROUP) == [observer]


def test_worker_receives_assignment_and_reports_completion(router) -> None:
    worker = _connect(router, "worker")
    router.handle(worker, {"event": protocol.IDENTIFY_WORKER})
    router.coordinator.enqueue(Task(task_id="1", event="E1"))
    assignment = [m for m in _drain(worker) if m["event"] == protocol.TASK_ASSIGNMENT]
    assert assignment[0]["data"]["event"] == "E1"

    router.handle(worker, {"event": protocol.TASK_COMPLETED, "data": {"event": "E1", "success": True}})

    state = router.coordinator.snapshot()
    assert state.status is Status.IDLE
    assert [o.display() for o in state.history] == ["E1"]


def test_worker_does_not_get_observer_broadcasts(router) -> None:
    worker = _connect(router, "worker")
    router.handle(worker, {"event": protocol.IDENTIFY_WORKER})

    assert _drain(worker) == []
    assert worker.role is ConnectionRole.WORKER


def test_direct_command_without_worker_produces_no_outbound_message(router) -> None:
    observer = _connect(router, "obs")
    router.handle(observer, {"event": protocol.IDENTIFY_OBSERVER})
    _drain(observer)

    assert router.handle(observer, {"event": protocol.DIRECT_COMMAND, "data": {"action": "start"}})

    assert _drain(observer) == []


def test_observer_command_and_challenge_round_trip(router) -> None:
    observer = _connect(router, "obs")
    worker = _connect(router, "worker")
    router.handle(observer, {"event": protocol.IDENTIFY_OBSERVER})
    router.handle(worker, {"event": protocol.IDENTIFY_WORKER})
    _drain(observer)

    router.handle(worker, {"event": protocol.CHALLENGE_IMAGE, "data": {"image": "b64"}})
    router.handle(observer, {"event": protocol.CHALLENGE_RESPONSE, "data": {"x": 5, "y": 7}})
    router.handle(observer, {"event": protocol.DIRECT_COMMAND, "data": {"action": "extract"}})

    to_observer = _drain(observer)
    assert to_observer[0] == protocol.envelope(protocol.FORWARDED_CHALLENGE_IMAGE, {"image": "b64"})
    assert to_observer[1]["data"]["message"] == "Sending challenge response to the worker..."
    assert _drain(worker) == [
        protocol.envelope(protocol.FORWARDED_CHALLENGE_RESPONSE, {"x": 5, "y": 7}),
        protocol.envelope(protocol.FORWARDED_COMMAND, {"action": "extract"}),
    ]


def test_worker_disconnect_forces_offline(router) -> None:
    observer = _connect(router, "obs")
    worker = _connect(router, "worker")
    router.handle(observer, {"event": protocol.IDENTIFY_OBSERVER})
    router.handle(worker, {"event": protocol.IDENTIFY_WORKER})
    _drain(observer)

    router.close(worker.id)

    assert router.coordinator.status is Status.OFFLINE
    assert router.coordinator.worker_id is None
    assert _drain(observer)[-1]["data"]["state"]["status"] == "offline"
    assert len(router.pool) == 1


def test_observer_disconnect_is_silent(router) -> None:
    observer = _connect(router, "obs")
    other = _connect(router, "other")
    router.handle(observer, {"event": protocol.IDENTIFY_OBSERVER})
    router.handle(other, {"event": protocol.IDENTIFY_OBSERVER})
    _drain(other)

    router.close(observer.id)

    assert _drain(other) == []
    assert router.pool.members(protocol.OBSERVER_GROUP) == [other]


@pytest.mark.parametrize(
    "frame",
    [
        "not json",
        "[1, 2, 3]",
        '{"data": {}}',
        '{"event": "launch-missiles"}',
    ],
)
def test_malformed_frames_are_ignored(router, frame) -> None:
    connection = _connect(router, "c")
    assert router.handle_text(connection, frame) is False
    assert router.coordinator.status is Status.OFFLINE


def test_malformed_completion_is_ignored(router) -> None:
    worker = _connect(router, "worker")
    router.handle(worker, {"event": protocol.IDENTIFY_WORKER})
    router.handle(worker, {"event": protocol.TASK_COMPLETED, "data": "done"})

    assert router.coordinator.snapshot().history == []


def test_send_to_missing_connection_is_dropped(pool) -> None:
    assert pool.send(None, protocol.FORWARDED_COMMAND, {}) is False
    assert pool.send("ghost", protocol.FORWARDED_COMMAND, {}) is False


def test_full_outbox_marks_connection_dead() -> None:
    connection = Connection(connection_id="slow", outbox_limit=2)
    for i in range(3):
        connection.push({"event": "state-sync", "data": i})

    assert connection.closed
    assert _drain(connection) == [None]

    connection.push({"event": "state-sync", "data": 4})
    assert _drain(connection) == []


def test_closed_connection_drops_pushes(pool) -> None:
    connection = Connection(connection_id="gone")
    pool.add(connection)
    connection.close()

    assert pool.send("gone", protocol.FORWARDED_COMMAND, {}) is True
    assert _drain(connection) == []
