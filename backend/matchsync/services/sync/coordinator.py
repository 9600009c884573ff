import logging
import time
from typing import Any, Dict, Optional

from matchsync.services.match.state import (
    DEFAULT_MATCH_TIME_SEC,
    TIMER_MODES,
    VIEW_MODES,
    VIEW_SCOREBOARD,
    MatchState,
    normalize_slot,
)
from .dispatch import SerialDispatcher
from .errors import ConnectFailed, TransportUnavailable
from .scheduler import TickScheduler
from .snapshot import Snapshot
from .storage import SESSION_KEY_SUFFIX
from .throttle import TimerPushThrottle
from .transports import CLOSED, CONNECTED, CONNECTING, TERMINATED

REQUEST_SNAPSHOT = 'request_snapshot'


class SyncCoordinator:
    """Single writer for one court's bout and its display channels.

    Every public operation is a non-blocking submission to a serial dispatch
    queue. After each externally visible mutation the coordinator builds an
    immutable Snapshot and pushes it over every connected transport. Clock
    driven pushes are coalesced; everything else goes out immediately.
    Transport failures are logged and recorded, never raised, and never undo
    a mutation.
    """

    def __init__(self, court_id, broadcast=None, session_factory=None, storage=None,
                 dispatcher: Optional[SerialDispatcher] = None,
                 default_match_time: int = DEFAULT_MATCH_TIME_SEC,
                 tick_interval: float = 1.0, timer_push_window: float = 1.0,
                 spawn=None, sleep=None, clock=None, heartbeat_ticks: int = 0, logger=None):
        self.court_id = str(court_id)
        self.logger = logger or logging.getLogger('matchsync')
        self.default_match_time = int(default_match_time)
        self._dispatcher = dispatcher or SerialDispatcher(logger=self.logger)
        self._broadcast = broadcast
        self._session_factory = session_factory
        self._session = None
        self._session_epoch = 0
        self._storage = storage
        self._spawn = spawn
        self._sleep = sleep or time.sleep
        self._scheduler = TickScheduler(
            self._on_tick,
            interval=tick_interval,
            spawn=spawn,
            sleep=sleep,
            heartbeat_ticks=heartbeat_ticks,
            name=self.court_id,
            logger=self.logger,
        )
        self._throttle = TimerPushThrottle(timer_push_window, clock=clock)
        self._flush_token = 0
        self._state: Optional[MatchState] = None
        self._snapshot: Optional[Snapshot] = None
        self.errors: Dict[str, str] = {}
        self.last_error: Optional[str] = None

    @property
    def session_key(self) -> str:
        return f"{self.court_id}{SESSION_KEY_SUFFIX}"

    @property
    def scheduler(self) -> TickScheduler:
        return self._scheduler

    @property
    def has_match(self) -> bool:
        return self._snapshot is not None

    # ---------------------------------------------------------
    # Lifecycle
    # ---------------------------------------------------------

    def open(self) -> None:
        """Attach the broadcast channel and make the one startup reconnect attempt."""
        self._dispatcher.submit(self._open)

    def shutdown(self) -> None:
        """Operator went away: stop the clock, let go of both channels.

        The session is detached rather than terminated and its persisted id is
        kept, so the next coordinator for this court can reconnect to it.
        """
        self._dispatcher.submit(self._shutdown)

    def start_sync(self) -> Dict[str, Any]:
        self._dispatcher.submit(self._start_session)
        return self.sync_status()

    def stop_sync(self) -> Dict[str, Any]:
        self._dispatcher.submit(self._stop_session)
        return self.sync_status()

    def sync_status(self) -> Dict[str, Any]:
        session = self._session
        broadcast = self._broadcast
        return {
            'court_id': self.court_id,
            'session': {
                'state': session.connection_state,
                'session_id': session.connection_id,
            } if session is not None else None,
            'broadcast': broadcast.connection_state if broadcast is not None else None,
            'errors': dict(self.errors),
            'last_error': self.last_error,
        }

    # ---------------------------------------------------------
    # Match operations
    # ---------------------------------------------------------

    def initialize_match(self, match_record, tournament_name, court_name, resolved_players,
                         round_name='', default_match_time_seconds=None, group_matches=None,
                         initial_view_mode=None, team_match_results=None) -> None:
        view_mode = initial_view_mode or VIEW_SCOREBOARD
        if view_mode not in VIEW_MODES:
            raise ValueError(f'unknown view mode: {view_mode!r}')
        if default_match_time_seconds is None:
            default_match_time_seconds = self.default_match_time
        self._dispatcher.submit(
            self._initialize,
            match_record,
            dict(
                tournament_name=tournament_name,
                court_name=court_name,
                round_name=round_name,
                time_remaining=int(default_match_time_seconds),
                view_mode=view_mode,
                group_matches=group_matches,
                team_match_results=team_match_results,
            ),
            resolved_players,
        )

    def set_score(self, slot, value) -> None:
        slot, value = normalize_slot(slot), int(value)
        self._dispatcher.submit(self._mutate, 'score', lambda s: s.set_score(slot, value))

    def set_penalty(self, slot, value) -> None:
        slot, value = normalize_slot(slot), int(value)
        self._dispatcher.submit(self._mutate, 'penalty', lambda s: s.set_penalty(slot, value))

    def reset_match(self) -> None:
        self._dispatcher.submit(self._mutate, 'reset', lambda s: s.reset_match())

    def start_timer(self) -> None:
        self._dispatcher.submit(self._mutate, 'timer-start', self._start_clock)

    def stop_timer(self) -> None:
        self._dispatcher.submit(self._mutate, 'timer-stop', lambda s: s.stop_timer())

    def set_time_remaining(self, seconds) -> None:
        seconds = int(seconds)
        self._dispatcher.submit(self._mutate, 'time', lambda s: s.set_time_remaining(seconds), True)

    def set_timer_mode(self, mode) -> None:
        if mode not in TIMER_MODES:
            raise ValueError(f'unknown timer mode: {mode!r}')
        self._dispatcher.submit(self._mutate, 'timer-mode', lambda s: s.set_timer_mode(mode))

    def set_public(self, is_public) -> None:
        is_public = bool(is_public)
        self._dispatcher.submit(self._mutate, 'visibility', lambda s: s.set_public(is_public))

    def toggle_public(self) -> None:
        self._dispatcher.submit(self._mutate, 'visibility', lambda s: s.toggle_public())

    def set_view_mode(self, mode) -> None:
        if mode not in VIEW_MODES:
            raise ValueError(f'unknown view mode: {mode!r}')
        self._dispatcher.submit(self._mutate, 'view-mode', lambda s: s.set_view_mode(mode))

    def tick(self) -> None:
        """Advance the running clock by one tick, as the scheduler would."""
        self._dispatcher.submit(self._handle_tick, self._scheduler.generation)

    def settle(self, timeout: float = 2.0) -> bool:
        """Wait until every operation submitted so far has been applied."""
        return self._dispatcher.flush(timeout)

    def get_snapshot(self) -> Optional[Snapshot]:
        return self._snapshot

    def get_match_result(self) -> Optional[Dict[str, Any]]:
        snapshot = self._snapshot
        state = self._state
        if snapshot is None or state is None:
            return None
        result = state.result()
        return {
            'match_id': snapshot.match_id,
            'players': {
                'playerA': {'score': snapshot.player_a.score, 'hansoku': snapshot.player_a.hansoku},
                'playerB': {'score': snapshot.player_b.score, 'hansoku': snapshot.player_b.hansoku},
            },
            'winner': result.winner,
            'is_finished': result.is_finished,
            'reason': result.reason,
        }

    # ---------------------------------------------------------
    # Dispatched work (always runs on the serial queue)
    # ---------------------------------------------------------

    def _open(self) -> None:
        self._attach_broadcast()
        self._resume_session()

    def _shutdown(self) -> None:
        self._scheduler.stop()
        self._flush_token += 1
        session, self._session = self._session, None
        self._session_epoch += 1
        if session is not None:
            detach = getattr(session, 'detach', None)
            if detach is not None:
                detach()
            else:
                session.clear_handlers()
                session.close()
        if self._broadcast is not None:
            self._broadcast.clear_handlers()
            self._broadcast.close()
        self.logger.info(f"[sync-shutdown] court={self.court_id}")

    def _initialize(self, match_record, options, resolved_players) -> None:
        self._scheduler.stop()
        self._throttle.reset()
        self._flush_token += 1
        self._state = MatchState.from_record(match_record, resolved_players, **options)
        self.logger.info(f"[match-init] court={self.court_id} match={self._state.match_id}")
        self._publish(timer_only=False)

    def _mutate(self, label, action, timer_only=False) -> None:
        state = self._state
        if state is None:
            self.logger.warning(f"[match-missing] court={self.court_id} action={label} ignored")
            return
        action(state)
        self._sync_clock()
        self._publish(timer_only=timer_only)

    def _start_clock(self, state: MatchState) -> None:
        if not state.start_timer():
            self.logger.info(f"[timer-refused] court={self.court_id} match already finished")

    def _sync_clock(self) -> None:
        if self._state is not None and self._state.is_running:
            self._scheduler.start()
        else:
            self._scheduler.stop()

    def _on_tick(self, generation: int) -> None:
        # Called from the scheduler's background task
        self._dispatcher.submit(self._handle_tick, generation)

    def _handle_tick(self, generation: int) -> None:
        state = self._state
        if state is None or not self._scheduler.is_current(generation):
            self.logger.info(f"[timer-abort] court={self.court_id} stale tick generation={generation}")
            return
        state.tick()
        if state.is_running:
            self._publish(timer_only=True)
            return
        self._scheduler.stop()
        self._publish(timer_only=False)

    # ---- pushing ----

    def _publish(self, timer_only: bool) -> None:
        if self._state is None:
            return
        snapshot = Snapshot.from_state(self._state)
        self._snapshot = snapshot
        if timer_only and not self._throttle.allow():
            if self._throttle.suppress():
                self._schedule_flush()
            return
        self._throttle.mark_pushed()
        self._flush_token += 1
        self._push_all(snapshot)

    def _schedule_flush(self) -> None:
        if self._spawn is None:
            return
        token = self._flush_token
        delay = self._throttle.remaining()

        def _runner():
            self._sleep(delay)
            self._dispatcher.submit(self._flush_pending, token)

        self._spawn(_runner)

    def _flush_pending(self, token: int) -> None:
        if token != self._flush_token or not self._throttle.pending or self._snapshot is None:
            return
        self._throttle.mark_pushed()
        self._flush_token += 1
        self._push_all(self._snapshot)

    def _push_all(self, snapshot: Snapshot) -> None:
        message = snapshot.to_json()
        for transport in (self._session, self._broadcast):
            if transport is not None and transport.is_connected:
                self._send(transport, message)

    def _push_to(self, transport) -> None:
        if self._snapshot is None:
            self.logger.info(f"[sync-push-skip] court={self.court_id} kind={transport.kind} no match yet")
            return
        self._send(transport, self._snapshot.to_json())

    def _send(self, transport, message: str) -> bool:
        try:
            transport.send(message)
        except Exception as exc:
            self.errors[transport.kind] = str(exc)
            self.logger.warning(f"[sync-send-failed] court={self.court_id} kind={transport.kind} error={exc}")
            return False
        self.errors.pop(transport.kind, None)
        return True

    # ---- inbound ----

    def _handle_message(self, transport, epoch, message: Dict[str, Any]) -> None:
        if epoch is not None and epoch != self._session_epoch:
            self.logger.info(f"[sync-stale] court={self.court_id} message from a superseded session dropped")
            return
        if transport is not self._session and transport is not self._broadcast:
            return
        if message.get('type') == REQUEST_SNAPSHOT:
            self.logger.info(f"[sync-request-snapshot] court={self.court_id} kind={transport.kind}")
            self._push_to(transport)
            return
        self.logger.debug(f"[sync-message-ignored] court={self.court_id} kind={transport.kind} type={message.get('type')}")

    # ---- broadcast channel ----

    def _attach_broadcast(self) -> None:
        transport = self._broadcast
        if transport is None:
            return
        transport.on_message(lambda message: self._dispatcher.submit(self._handle_message, transport, None, message))
        try:
            transport.connect()
        except TransportUnavailable as exc:
            self.errors[transport.kind] = str(exc)
            self.logger.warning(f"[sync-unavailable] court={self.court_id} kind={transport.kind} error={exc}")
            return
        if self._snapshot is not None:
            self._push_to(transport)

    # ---- session channel ----

    def _resume_session(self) -> None:
        session_id = self._read_session_id()
        if not session_id:
            self.logger.info(f"[sync-resume] court={self.court_id} no persisted session")
            return
        self.logger.info(f"[sync-resume] court={self.court_id} session={session_id}")
        self._open_session(session_id)

    def _start_session(self) -> None:
        session = self._session
        if session is not None and session.connection_state in (CONNECTING, CONNECTED):
            self.logger.info(f"[sync-start-skip] court={self.court_id} session already {session.connection_state}")
            return
        self._open_session(None)

    def _open_session(self, reconnect_id: Optional[str]) -> None:
        if self._session_factory is None:
            self._session_unsupported(reconnect_id, 'no session transport configured')
            return
        try:
            transport = self._session_factory(reconnect_id)
        except TransportUnavailable as exc:
            self._session_unsupported(reconnect_id, str(exc))
            return
        self._session_epoch += 1
        epoch = self._session_epoch
        self._session = transport
        transport.on_state_change(
            lambda state, error=None: self._dispatcher.submit(self._handle_session_state, epoch, state, error)
        )
        transport.on_message(
            lambda message: self._dispatcher.submit(self._handle_message, transport, epoch, message)
        )
        try:
            transport.connect()
        except ConnectFailed as exc:
            self.logger.warning(f"[sync-connect-failed] court={self.court_id} error={exc}")
            self._clear_session(exc)

    def _session_unsupported(self, reconnect_id, reason: str) -> None:
        self.last_error = 'unsupported'
        self.logger.warning(f"[sync-unavailable] court={self.court_id} kind=session reason={reason}")
        if reconnect_id:
            self._forget_session_id()

    def _handle_session_state(self, epoch: int, state: str, error=None) -> None:
        if epoch != self._session_epoch or self._session is None:
            self.logger.info(f"[sync-stale] court={self.court_id} state={state} from a superseded session dropped")
            return
        transport = self._session
        if state == CONNECTED:
            self.last_error = None
            self._store_session_id(transport.connection_id)
            self.logger.info(f"[sync-connected] court={self.court_id} session={transport.connection_id}")
            self._push_to(transport)
        elif state in (CLOSED, TERMINATED):
            self._clear_session(error)

    def _stop_session(self) -> None:
        session, self._session = self._session, None
        self._session_epoch += 1
        self._forget_session_id()
        if session is None:
            return
        session.clear_handlers()
        terminate = getattr(session, 'terminate', None)
        try:
            if terminate is not None:
                terminate()
            else:
                session.close()
        except Exception as exc:
            self.logger.warning(f"[sync-stop-failed] court={self.court_id} error={exc}")
        self.logger.info(f"[sync-stop] court={self.court_id} session={session.connection_id}")

    def _clear_session(self, error=None) -> None:
        session, self._session = self._session, None
        self._session_epoch += 1
        self._forget_session_id()
        if error is not None:
            self.last_error = str(error)
        self.logger.info(
            f"[sync-disconnected] court={self.court_id} session={session.connection_id if session else None}"
        )

    # ---- persisted session id ----

    def _read_session_id(self) -> Optional[str]:
        if self._storage is None:
            return None
        try:
            return self._storage.get(self.session_key)
        except Exception as exc:
            self.logger.warning(f"[sync-storage-failed] court={self.court_id} op=get error={exc}")
            return None

    def _store_session_id(self, session_id: Optional[str]) -> None:
        if self._storage is None or not session_id:
            return
        try:
            self._storage.set(self.session_key, session_id)
        except Exception as exc:
            self.logger.warning(f"[sync-storage-failed] court={self.court_id} op=set error={exc}")

    def _forget_session_id(self) -> None:
        if self._storage is None:
            return
        try:
            self._storage.delete(self.session_key)
        except Exception as exc:
            self.logger.warning(f"[sync-storage-failed] court={self.court_id} op=delete error={exc}")
