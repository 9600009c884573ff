"""Transport interface shared by the session and broadcast channels."""

import json
import logging
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Optional

CONNECTING = 'connecting'
CONNECTED = 'connected'
CLOSED = 'closed'
TERMINATED = 'terminated'

SESSION = 'session'
BROADCAST = 'broadcast'

MessageHandler = Callable[[Dict[str, Any]], None]
StateHandler = Callable[[str, Optional[Exception]], None]


class Transport(ABC):
    """One channel from the coordinator to the displays.

    Implementations must never let a failure on this channel reach the other
    one: send() raises SendFailed and the coordinator contains it.
    """

    kind: str = ''

    def __init__(self, logger=None):
        self.connection_state = CLOSED
        self.logger = logger or logging.getLogger('matchsync')
        self._message_handlers: List[MessageHandler] = []
        self._state_handlers: List[StateHandler] = []

    @property
    def is_connected(self) -> bool:
        return self.connection_state == CONNECTED

    @property
    def connection_id(self) -> Optional[str]:
        return None

    @abstractmethod
    def connect(self) -> None:
        """Start connecting. May complete later through on_state_change."""

    @abstractmethod
    def send(self, message: str) -> None:
        """Push a serialized snapshot. Raises SendFailed."""

    @abstractmethod
    def close(self) -> None:
        """Stop using the channel."""

    def on_message(self, handler: MessageHandler) -> None:
        self._message_handlers.append(handler)

    def on_state_change(self, handler: StateHandler) -> None:
        self._state_handlers.append(handler)

    def clear_handlers(self) -> None:
        self._message_handlers = []
        self._state_handlers = []

    def _set_state(self, state: str, error: Optional[Exception] = None) -> None:
        self.connection_state = state
        for handler in list(self._state_handlers):
            handler(state, error)

    def deliver(self, message) -> None:
        """Hand an inbound display message to the registered handlers."""
        if isinstance(message, (str, bytes)):
            try:
                message = json.loads(message)
            except ValueError:
                self.logger.warning(f"[sync-message-invalid] kind={self.kind} undecodable message dropped")
                return
        if not isinstance(message, dict):
            self.logger.warning(f"[sync-message-invalid] kind={self.kind} expected an object, got {type(message).__name__}")
            return
        for handler in list(self._message_handlers):
            handler(message)
