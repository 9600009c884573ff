import logging
import time
from typing import Any, Dict, Optional, Set


def session_room(session_id: str) -> str:
    return f"session:{session_id}"


def court_room(court_id: str) -> str:
    return f"court:{court_id}"


class DisplayHub:
    """Bookkeeping for display sockets on the /display namespace.

    Socket.IO handlers do the room joins; the hub records which socket is
    attached to which session or court, routes inbound display messages to
    the transport bound there, and closes a session once its last display
    has been gone for the grace period.

    Sessions outlive the process through their persisted id: resolve_session
    maps an id this hub has never seen to its stored key, so a display coming
    back after a restart can attach before the court's coordinator exists.
    """

    def __init__(self, socketio, namespace: str = '/display', close_grace_sec: float = 2.0,
                 spawn=None, sleep=None, logger=None, resolve_session=None):
        self.socketio = socketio
        self.namespace = namespace
        self.close_grace_sec = float(close_grace_sec)
        self.logger = logger or logging.getLogger('matchsync')
        self._resolve_session = resolve_session
        self._spawn = spawn
        self._sleep = sleep or time.sleep
        self._sid_to_ctx: Dict[str, Dict[str, Any]] = {}
        self._members: Dict[str, Set[str]] = {}
        self._sessions: Dict[str, Any] = {}
        self._known_sessions: Set[str] = set()
        self._broadcasts: Dict[str, Any] = {}
        self._close_deadline: Dict[str, float] = {}

    # ---- outbound ----

    def emit(self, event: str, payload, room: str) -> None:
        self.socketio.emit(event, payload, to=room, namespace=self.namespace)

    # ---- session bookkeeping ----

    def bind_session(self, transport) -> None:
        session_id = transport.connection_id
        self._sessions[session_id] = transport
        self._known_sessions.add(session_id)
        self._members.setdefault(session_id, set())
        self._close_deadline.pop(session_id, None)

    def unbind_session(self, session_id: str, transport=None) -> None:
        if transport is not None and self._sessions.get(session_id) is not transport:
            return
        self._sessions.pop(session_id, None)

    def forget_session(self, session_id: str, transport=None) -> None:
        """Drop every trace of a session; later attaches with its id are refused."""
        bound = self._sessions.get(session_id)
        if transport is not None and bound is not None and bound is not transport:
            return
        for sid in self._members.pop(session_id, set()):
            ctx = self._sid_to_ctx.get(sid)
            if ctx and ctx.get('session_id') == session_id:
                ctx.pop('session_id', None)
        self._sessions.pop(session_id, None)
        self._known_sessions.discard(session_id)
        self._close_deadline.pop(session_id, None)

    def end_session(self, session_id: str) -> None:
        """Forget a session entirely and tell its displays it is over."""
        self.emit('session_terminated', {'session_id': session_id}, session_room(session_id))
        try:
            self.socketio.close_room(session_room(session_id), namespace=self.namespace)
        except Exception as exc:
            self.logger.warning(f"[hub-close-room-failed] session={session_id} error={exc}")
        self.forget_session(session_id)

    def knows_session(self, session_id: str) -> bool:
        return session_id in self._known_sessions

    def member_count(self, session_id: str) -> int:
        return len(self._members.get(session_id, ()))

    def _is_persisted(self, session_id: str) -> bool:
        if self._resolve_session is None:
            return False
        try:
            return bool(self._resolve_session(session_id))
        except Exception as exc:
            self.logger.warning(f"[hub-resolve-failed] session={session_id} error={exc}")
            return False

    def attach(self, sid: str, session_id: str) -> bool:
        if session_id not in self._known_sessions:
            if not self._is_persisted(session_id):
                return False
            self.logger.info(f"[hub-adopt] session={session_id} known from storage")
            self._known_sessions.add(session_id)
        ctx = self._sid_to_ctx.setdefault(sid, {})
        ctx['session_id'] = session_id
        self._members.setdefault(session_id, set()).add(sid)
        self._close_deadline.pop(session_id, None)
        self.logger.info(f"[hub-attach] session={session_id} sid={sid} displays={self.member_count(session_id)}")
        transport = self._sessions.get(session_id)
        if transport is not None:
            transport.display_attached(sid)
        return True

    # ---- court rooms ----

    def register_broadcast(self, court_id: str, transport) -> None:
        self._broadcasts[str(court_id)] = transport

    def unregister_broadcast(self, court_id: str, transport=None) -> None:
        if transport is not None and self._broadcasts.get(str(court_id)) is not transport:
            return
        self._broadcasts.pop(str(court_id), None)

    def join_court(self, sid: str, court_id: str) -> None:
        self._sid_to_ctx.setdefault(sid, {})['court_id'] = str(court_id)

    def leave_court(self, sid: str) -> Optional[str]:
        ctx = self._sid_to_ctx.get(sid) or {}
        return ctx.pop('court_id', None)

    # ---- inbound ----

    def route_message(self, sid: str, message, court_id: Optional[str] = None) -> bool:
        """Deliver a display message to the transport it arrived on."""
        ctx = self._sid_to_ctx.get(sid) or {}
        session_id = ctx.get('session_id')
        if session_id and session_id in self._sessions:
            self._sessions[session_id].deliver(message)
            return True
        court = str(court_id) if court_id is not None else ctx.get('court_id')
        if court and court in self._broadcasts:
            self._broadcasts[court].deliver(message)
            return True
        return False

    def disconnect(self, sid: str) -> None:
        ctx = self._sid_to_ctx.pop(sid, None)
        if not ctx:
            return
        session_id = ctx.get('session_id')
        if not session_id:
            return
        members = self._members.get(session_id)
        if members is not None:
            members.discard(sid)
        if self.member_count(session_id) == 0:
            self._schedule_close_if_empty(session_id)

    def _schedule_close_if_empty(self, session_id: str) -> None:
        if self.close_grace_sec <= 0 or self._spawn is None:
            self._close_if_empty(session_id, None)
            return
        deadline = time.time() + self.close_grace_sec
        self._close_deadline[session_id] = deadline

        def _runner(sid_: str, deadline_: float):
            sleep_for = max(0.0, deadline_ - time.time())
            if sleep_for:
                self._sleep(sleep_for)
            self._close_if_empty(sid_, deadline_)

        self._spawn(_runner, session_id, deadline)

    def _close_if_empty(self, session_id: str, deadline: Optional[float]) -> None:
        if self.member_count(session_id) > 0:
            return
        if deadline is not None and self._close_deadline.get(session_id) != deadline:
            return
        self._close_deadline.pop(session_id, None)
        transport = self._sessions.get(session_id)
        self.logger.info(f"[hub-session-empty] session={session_id} bound={transport is not None}")
        self.forget_session(session_id)
        if transport is not None:
            transport.peer_closed()
