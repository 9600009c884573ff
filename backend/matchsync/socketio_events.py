from flask import current_app, request
from flask_socketio import emit, join_room, leave_room

from matchsync import socketio
from matchsync.services.sync.hub import court_room, session_room


def _hub():
    return current_app.extensions['display_hub']


def _get_sid() -> str:
    # request.sid exists in Socket.IO context
    return request.sid  # type: ignore


def handle_connect(auth=None):
    emit('connected', {'message': f'Connected to {_hub().namespace}'})


def handle_disconnect(reason=None):
    _hub().disconnect(_get_sid())


def handle_attach_session(data):
    session_id = (data or {}).get('session_id')
    if not session_id:
        emit('error', {'message': 'session_id is required'})
        return
    room = session_room(session_id)
    join_room(room)
    if not _hub().attach(_get_sid(), session_id):
        leave_room(room)
        emit('error', {'message': 'Unknown or ended session', 'session_id': session_id})
        return
    emit('attached', {'room': room, 'session_id': session_id})


def handle_join_court(data):
    court_id = (data or {}).get('court_id')
    if court_id is None or str(court_id) == '':
        emit('error', {'message': 'court_id is required'})
        return
    hub = _hub()
    previous = hub.leave_court(_get_sid())
    if previous:
        leave_room(court_room(previous))
    room = court_room(court_id)
    join_room(room)
    hub.join_court(_get_sid(), court_id)
    emit('joined', {'room': room})


def handle_leave_court(data=None):
    court_id = _hub().leave_court(_get_sid())
    if court_id:
        leave_room(court_room(court_id))
    emit('left', {'court_id': court_id})


def handle_request_snapshot(data=None):
    court_id = (data or {}).get('court_id')
    if not _hub().route_message(_get_sid(), {'type': 'request_snapshot'}, court_id=court_id):
        emit('error', {'message': 'Not attached to a session or court'})


def handle_message(data):
    if not _hub().route_message(_get_sid(), data):
        emit('error', {'message': 'Not attached to a session or court'})


def handle_ping(data):
    emit('pong', data or {})


def register_socketio_handlers(namespace: str = '/display') -> None:
    """Register the display-facing Socket.IO event handlers on namespace."""
    socketio.on_event('connect', handle_connect, namespace=namespace)
    socketio.on_event('disconnect', handle_disconnect, namespace=namespace)
    socketio.on_event('attach_session', handle_attach_session, namespace=namespace)
    socketio.on_event('join_court', handle_join_court, namespace=namespace)
    socketio.on_event('leave_court', handle_leave_court, namespace=namespace)
    socketio.on_event('request_snapshot', handle_request_snapshot, namespace=namespace)
    socketio.on_event('message', handle_message, namespace=namespace)
    socketio.on_event('ping', handle_ping, namespace=namespace)
