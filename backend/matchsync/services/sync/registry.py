from typing import Dict

from .broadcast_transport import SocketIOBroadcastTransport
from .coordinator import SyncCoordinator
from .errors import TransportUnavailable
from .session_transport import SocketIOSessionTransport
from .storage import SqlStore


class CourtRegistry:
    """One coordinator per court, created on first use.

    Creating a coordinator is its startup: the broadcast channel is attached
    and the single reconnect attempt with the persisted session id is made.
    """

    def __init__(self, app, hub, socketio, storage=None):
        self.app = app
        self.hub = hub
        self.socketio = socketio
        self.storage = storage if storage is not None else SqlStore(app)
        self._coordinators: Dict[str, SyncCoordinator] = {}

    def _background(self) -> bool:
        config = self.app.config
        return not config.get('TESTING') or bool(config.get('ENABLE_TIMER_IN_TESTS'))

    def _session_factory(self, reconnect_id=None):
        config = self.app.config
        if not config.get('SESSION_TRANSPORT_ENABLED', True):
            raise TransportUnavailable('session transport disabled by configuration', kind='session')
        spawn = self.socketio.start_background_task if self._background() else None
        return SocketIOSessionTransport(
            self.hub,
            reconnect_id=reconnect_id,
            reconnect_timeout=float(config.get('SESSION_RECONNECT_TIMEOUT_SEC', 5)),
            spawn=spawn,
            sleep=self.socketio.sleep,
            logger=self.app.logger,
        )

    def get(self, court_id) -> SyncCoordinator:
        court_id = str(court_id)
        coordinator = self._coordinators.get(court_id)
        if coordinator is not None:
            return coordinator
        config = self.app.config
        background = self._background()
        coordinator = SyncCoordinator(
            court_id,
            broadcast=SocketIOBroadcastTransport(
                self.hub,
                court_id,
                enabled=bool(config.get('BROADCAST_TRANSPORT_ENABLED', True)),
                logger=self.app.logger,
            ),
            session_factory=self._session_factory,
            storage=self.storage,
            default_match_time=int(config.get('DEFAULT_MATCH_TIME_SEC', 180)),
            tick_interval=float(config.get('TICK_INTERVAL_SEC', 1.0)),
            timer_push_window=float(config.get('TIMER_PUSH_WINDOW_SEC', 1.0)),
            spawn=self.socketio.start_background_task if background else None,
            sleep=self.socketio.sleep,
            heartbeat_ticks=int(config.get('TIMER_HEARTBEAT_SEC', 0)),
            logger=self.app.logger,
        )
        self._coordinators[court_id] = coordinator
        coordinator.open()
        return coordinator

    def find(self, court_id):
        return self._coordinators.get(str(court_id))

    def discard(self, court_id) -> None:
        coordinator = self._coordinators.pop(str(court_id), None)
        if coordinator is not None:
            coordinator.shutdown()

    def shutdown_all(self) -> None:
        for court_id in list(self._coordinators):
            self.discard(court_id)
