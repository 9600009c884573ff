import time
import uuid
from typing import Optional

from .errors import ConnectFailed, SendFailed, TransportUnavailable
from .hub import session_room
from .transports import CLOSED, CONNECTED, CONNECTING, SESSION, TERMINATED, Transport


class SocketIOSessionTransport(Transport):
    """Session-oriented channel: one Socket.IO room per operator session.

    A fresh connect() mints a session id and waits for a display to attach
    with it. connect() with a persisted id is a reconnect: it succeeds at once
    when displays are still attached and otherwise waits up to
    reconnect_timeout for one to come back. The id may predate this process,
    so the hub is not required to know it yet; binding registers it.
    Each display attach reports CONNECTED again so a newly attached display
    gets a full snapshot.
    """

    kind = SESSION

    def __init__(self, hub, reconnect_id: Optional[str] = None, reconnect_timeout: float = 5.0,
                 spawn=None, sleep=None, logger=None):
        super().__init__(logger=logger or (hub.logger if hub is not None else None))
        if hub is None:
            raise TransportUnavailable('session transport is not supported here', kind=SESSION)
        self.hub = hub
        self.reconnect_id = reconnect_id
        self.reconnect_timeout = float(reconnect_timeout)
        self._spawn = spawn
        self._sleep = sleep or time.sleep
        self._session_id: Optional[str] = None

    @property
    def connection_id(self) -> Optional[str]:
        return self._session_id

    @property
    def room(self) -> str:
        return session_room(self._session_id)

    def connect(self) -> None:
        if self.connection_state in (CONNECTING, CONNECTED):
            return
        if self.reconnect_id:
            self._session_id = self.reconnect_id
        else:
            self._session_id = uuid.uuid4().hex
        self.connection_state = CONNECTING
        self.hub.bind_session(self)
        self.logger.info(f"[sync-connect] kind=session session={self._session_id} reconnect={bool(self.reconnect_id)}")
        if self.hub.member_count(self._session_id) > 0:
            self._set_state(CONNECTED)
            return
        if self.reconnect_id:
            self._wait_for_display()

    def _wait_for_display(self) -> None:
        session_id = self._session_id

        def _expire():
            self._sleep(self.reconnect_timeout)
            if self.connection_state == CONNECTING and self._session_id == session_id:
                self._fail(ConnectFailed(f'no display re-attached to {session_id}', kind=SESSION))

        if self._spawn is None:
            _expire()
        else:
            self._spawn(_expire)

    def _fail(self, error: Exception) -> None:
        self.hub.forget_session(self._session_id, self)
        self.logger.warning(f"[sync-connect-failed] kind=session session={self._session_id} error={error}")
        self._set_state(CLOSED, error)

    def display_attached(self, sid: str) -> None:
        if self.connection_state in (CLOSED, TERMINATED):
            return
        self._set_state(CONNECTED)

    def peer_closed(self) -> None:
        if self.connection_state in (CLOSED, TERMINATED):
            return
        self.hub.forget_session(self._session_id, self)
        self._set_state(CLOSED)

    def send(self, message: str) -> None:
        if self.connection_state != CONNECTED:
            raise SendFailed(f'session is {self.connection_state}', kind=SESSION)
        try:
            self.hub.emit('snapshot', message, self.room)
        except Exception as exc:
            raise SendFailed(str(exc), kind=SESSION) from exc

    def close(self) -> None:
        if self.connection_state in (CLOSED, TERMINATED):
            return
        self.hub.forget_session(self._session_id, self)
        self._set_state(CLOSED)

    def detach(self) -> None:
        """Let go of the session without telling anyone; displays stay attached."""
        self.clear_handlers()
        self.hub.unbind_session(self._session_id, self)
        self.connection_state = CLOSED

    def terminate(self) -> None:
        if self.connection_state == TERMINATED:
            return
        if self._session_id:
            self.hub.end_session(self._session_id)
        self._set_state(TERMINATED)
