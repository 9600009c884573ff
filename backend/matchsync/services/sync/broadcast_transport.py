from .errors import SendFailed, TransportUnavailable
from .hub import court_room
from .transports import BROADCAST, CLOSED, CONNECTED, Transport


class SocketIOBroadcastTransport(Transport):
    """Connectionless fan-out to every display that joined the court room.

    There is no handshake and no acknowledgement: the channel counts as
    connected for as long as it is open, whether or not anyone listens.
    """

    kind = BROADCAST

    def __init__(self, hub, court_id: str, enabled: bool = True, logger=None):
        super().__init__(logger=logger or (hub.logger if hub is not None else None))
        self.hub = hub
        self.court_id = str(court_id)
        self.enabled = enabled

    @property
    def connection_id(self):
        return court_room(self.court_id)

    def connect(self) -> None:
        if self.hub is None or not self.enabled:
            raise TransportUnavailable('broadcast transport is not available', kind=BROADCAST)
        self.hub.register_broadcast(self.court_id, self)
        self._set_state(CONNECTED)

    def send(self, message: str) -> None:
        if self.connection_state != CONNECTED:
            raise SendFailed('broadcast channel is closed', kind=BROADCAST)
        try:
            self.hub.emit('snapshot', message, court_room(self.court_id))
        except Exception as exc:
            raise SendFailed(str(exc), kind=BROADCAST) from exc

    def close(self) -> None:
        if self.connection_state == CLOSED:
            return
        if self.hub is not None:
            self.hub.unregister_broadcast(self.court_id, self)
        self._set_state(CLOSED)
