# protocol.py
"""Event names and JSON encodings for the relay's WebSocket channel.

Every frame is a JSON object ``{"event": <name>, "data": <payload>}``.
Binary attachment bytes travel base64 encoded.
"""
import base64
from typing import Any, Optional

from models import ATTACHMENT_ROLES, SystemState, Task

# inbound (worker / observer -> relay)
IDENTIFY_WORKER = "self-identify-as-worker"
IDENTIFY_OBSERVER = "self-identify-as-observer"
TASK_COMPLETED = "task-completed"
CHALLENGE_IMAGE = "challenge-image"
CHALLENGE_RESPONSE = "challenge-response"
DIRECT_COMMAND = "direct-command"

INBOUND_EVENTS = (
    IDENTIFY_WORKER,
    IDENTIFY_OBSERVER,
    TASK_COMPLETED,
    CHALLENGE_IMAGE,
    CHALLENGE_RESPONSE,
    DIRECT_COMMAND,
)

# outbound (relay -> worker / observers)
STATE_SYNC = "state-sync"
TASK_ASSIGNMENT = "task-assignment"
FORWARDED_CHALLENGE_IMAGE = "forwarded-challenge-image"
FORWARDED_CHALLENGE_RESPONSE = "forwarded-challenge-response"
FORWARDED_COMMAND = "forwarded-command"

OBSERVER_GROUP = "observers"


def envelope(event: str, data: Any = None) -> dict:
    return {"event": event, "data": data}


def state_payload(state: SystemState, message: Optional[str] = None) -> dict:
    return {"state": state.to_dict(), "message": message}


def encode_task(task: Task) -> dict:
    attachments = {role: [] for role in ATTACHMENT_ROLES}
    for a in task.attachments:
        attachments.setdefault(a.role, []).append({
            "name": a.name,
            "data_base64": base64.b64encode(a.data).decode("ascii"),
        })
    return {
        "task_id": task.task_id,
        "event": task.event,
        "prices": list(task.prices),
        "deadlines": list(task.deadlines),
        "attachments": attachments,
    }
