# errors.py


class RelayError(Exception):
    """Base class for relay errors."""


class EmptyQueue(RelayError):
    """Dequeue on an empty task queue. Indicates a coordinator bug."""


class NoWorkerRegistered(RelayError):
    def __init__(self, message="The worker is not connected to the relay."):
        super().__init__(message)


class MalformedTaskPayload(RelayError):
    pass
