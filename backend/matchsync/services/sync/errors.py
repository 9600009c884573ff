class TransportError(Exception):
    """Base class for failures scoped to a single transport."""

    def __init__(self, message: str, kind: str = ''):
        super().__init__(message)
        self.kind = kind


class TransportUnavailable(TransportError):
    """The transport medium does not exist in this runtime."""


class ConnectFailed(TransportError):
    """A connect or reconnect attempt was rejected."""


class SendFailed(TransportError):
    """Pushing a message over a live transport raised."""
