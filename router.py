# router.py
import asyncio
import json
import logging
import threading
import uuid
from contextlib import suppress
from typing import Dict, Optional

from fastapi import WebSocket, WebSocketDisconnect

import protocol
from models import ConnectionRole

logger = logging.getLogger(__name__)

# broadcast groups are derived from the connection's role tag
GROUP_ROLES = {protocol.OBSERVER_GROUP: ConnectionRole.OBSERVER}
OUTBOX_LIMIT = 1000


class Connection:
    """One transport connection and its outbound buffer.

    ``push`` never blocks: it schedules the message onto ``outbox`` on the
    connection's event loop, and a single sender task drains it in order.
    A connection whose outbox fills up is treated as dead and gets nothing
    more.
    """

    def __init__(self, connection_id=None, loop: Optional[asyncio.AbstractEventLoop] = None,
                 outbox_limit=OUTBOX_LIMIT):
        self.id = connection_id or uuid.uuid4().hex
        self.role = ConnectionRole.UNCLASSIFIED
        self.outbox: asyncio.Queue = asyncio.Queue(maxsize=outbox_limit)
        self.loop = loop
        self.closed = False

    def push(self, message: dict):
        if self.closed:
            return
        if self.loop is None:
            self._offer(message)
        elif not self.loop.is_closed():
            self.loop.call_soon_threadsafe(self._offer, message)

    def _offer(self, message):
        if self.closed:
            return
        try:
            self.outbox.put_nowait(message)
        except asyncio.QueueFull:
            logger.warning("Outbox of %s is full, dropping the connection", self.id)
            self.close()
            # wake the sender so it can shut the socket
            while not self.outbox.empty():
                self.outbox.get_nowait()
            self.outbox.put_nowait(None)

    def close(self):
        self.closed = True

    def __repr__(self):
        return f"Connection({self.id[:8]}, {self.role.value})"


class ConnectionPool:
    """Live connections; the coordinator's outbound transport."""

    def __init__(self):
        self._connections: Dict[str, Connection] = {}
        self._lock = threading.Lock()

    def add(self, connection: Connection):
        with self._lock:
            self._connections[connection.id] = connection

    def remove(self, connection_id) -> Optional[Connection]:
        with self._lock:
            return self._connections.pop(connection_id, None)

    def get(self, connection_id) -> Optional[Connection]:
        with self._lock:
            return self._connections.get(connection_id)

    def members(self, group):
        role = GROUP_ROLES.get(group)
        with self._lock:
            return [c for c in self._connections.values() if role is not None and c.role is role]

    def __len__(self):
        with self._lock:
            return len(self._connections)

    def send(self, connection_id, event, data=None) -> bool:
        connection = self.get(connection_id) if connection_id else None
        if connection is None:
            logger.info("Dropping %s: connection %s is gone", event, connection_id)
            return False
        connection.push(protocol.envelope(event, data))
        return True

    def send_group(self, group, event, data=None) -> int:
        members = self.members(group)
        message = protocol.envelope(event, data)
        for connection in members:
            connection.push(message)
        return len(members)


class ConnectionRouter:
    """Classifies connections and routes their inbound events to the coordinator."""

    def __init__(self, coordinator, pool: ConnectionPool):
        self.coordinator = coordinator
        self.pool = pool
        self._handlers = {
            protocol.IDENTIFY_WORKER: self._on_identify_worker,
            protocol.IDENTIFY_OBSERVER: self._on_identify_observer,
            protocol.TASK_COMPLETED: self._on_task_completed,
            protocol.CHALLENGE_IMAGE: lambda c, data: self.coordinator.relay_challenge_image(data),
            protocol.CHALLENGE_RESPONSE: lambda c, data: self.coordinator.relay_challenge_response(data),
            protocol.DIRECT_COMMAND: lambda c, data: self.coordinator.relay_command(data),
        }

    # ---------------- Lifecycle ----------------
    def open(self, connection: Connection) -> Connection:
        self.pool.add(connection)
        logger.debug("Connection %s opened", connection.id)
        return connection

    def close(self, connection_id):
        self.pool.remove(connection_id)
        if self.coordinator.unregister_worker(connection_id):
            logger.warning("Lost connection with the worker %s", connection_id)
        else:
            logger.debug("Connection %s closed", connection_id)

    # ---------------- Inbound ----------------
    def handle(self, connection: Connection, message) -> bool:
        if not isinstance(message, dict) or not isinstance(message.get("event"), str):
            logger.warning("Ignoring malformed message from %s: %r", connection.id, message)
            return False
        handler = self._handlers.get(message["event"])
        if handler is None:
            logger.warning("Ignoring unknown event %r from %s", message["event"], connection.id)
            return False
        handler(connection, message.get("data"))
        return True

    def handle_text(self, connection: Connection, text: str) -> bool:
        try:
            message = json.loads(text)
        except ValueError:
            logger.warning("Ignoring non-JSON frame from %s", connection.id)
            return False
        return self.handle(connection, message)

    def _on_identify_worker(self, connection, data):
        connection.role = ConnectionRole.WORKER
        logger.info("Worker connected to the relay: %s", connection.id)
        self.coordinator.register_worker(connection.id)

    def _on_identify_observer(self, connection, data):
        connection.role = ConnectionRole.OBSERVER
        self.coordinator.sync_connection(connection.id, "Synchronized with the coordinator.")

    def _on_task_completed(self, connection, data):
        if not isinstance(data, dict) or not isinstance(data.get("event"), str):
            logger.warning("Ignoring malformed task-completed from %s: %r", connection.id, data)
            return
        error = data.get("error")
        self.coordinator.complete_current(
            data["event"],
            bool(data.get("success")),
            None if error is None else str(error),
        )

    # ---------------- WebSocket transport ----------------
    async def serve(self, websocket: WebSocket):
        await websocket.accept()
        connection = self.open(Connection(loop=asyncio.get_running_loop()))
        sender = asyncio.create_task(self._pump(connection, websocket))
        try:
            while True:
                frame = await websocket.receive()
                if frame["type"] == "websocket.disconnect":
                    raise WebSocketDisconnect(frame.get("code", 1000))
                text = frame.get("text")
                if text is None:
                    logger.warning("Ignoring binary frame from %s", connection.id)
                    continue
                self.handle_text(connection, text)
        except WebSocketDisconnect:
            pass
        finally:
            connection.close()
            self.close(connection.id)
            sender.cancel()
            with suppress(asyncio.CancelledError):
                await sender

    async def _pump(self, connection: Connection, websocket: WebSocket):
        try:
            while True:
                message = await connection.outbox.get()
                if message is None:
                    await websocket.close(code=1013)
                    return
                await websocket.send_json(message)
        except (WebSocketDisconnect, RuntimeError) as e:
            logger.debug("Send to %s failed: %s", connection.id, e)
        finally:
            connection.close()
