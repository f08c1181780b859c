# broadcaster.py
import protocol
from models import SystemState


class Broadcaster:
    """Fans state snapshots out to every observer connection.

    Holds no state. Delivery is fire-and-forget through the transport's
    group primitive.
    """

    def __init__(self, transport, group=protocol.OBSERVER_GROUP):
        self.transport = transport
        self.group = group

    def publish(self, state: SystemState, message=None):
        self.transport.send_group(self.group, protocol.STATE_SYNC, protocol.state_payload(state, message))

    def relay(self, event, data):
        self.transport.send_group(self.group, event, data)
