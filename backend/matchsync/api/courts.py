from flask import Blueprint, current_app, jsonify, request

from matchsync.services.match.display_names import generate_display_names

courts = Blueprint('courts', __name__)
display_names = Blueprint('display_names', __name__)


def _registry():
    return current_app.extensions['court_registry']


def _snapshot_response(coordinator, status=200):
    # A tick may be draining the court queue; answer with the state after our change
    if not coordinator.settle():
        current_app.logger.warning(f"[api-settle-timeout] court={coordinator.court_id}")
    snapshot = coordinator.get_snapshot()
    if snapshot is None:
        return jsonify({'error': 'No match initialized on this court'}), 404
    return jsonify(snapshot.to_dict()), status


def _int_field(data, key):
    """Return (value, error_response); values are range-clamped later, only type is checked here."""
    raw = data.get(key)
    if raw is None or isinstance(raw, bool):
        return None, (jsonify({'error': f'{key} is required and must be an integer'}), 400)
    try:
        return int(raw), None
    except (TypeError, ValueError):
        return None, (jsonify({'error': f'{key} must be an integer'}), 400)


def _require_match(court_id):
    coordinator = _registry().get(court_id)
    if not coordinator.has_match:
        return coordinator, (jsonify({'error': 'No match initialized on this court'}), 404)
    return coordinator, None


@courts.route('/<string:court_id>/match', methods=['POST'])
def initialize_match(court_id):
    data = request.get_json(silent=True) or {}
    match_record = data.get('match') or {}
    if not match_record.get('match_id'):
        return jsonify({'error': 'match.match_id is required'}), 400
    coordinator = _registry().get(court_id)
    try:
        coordinator.initialize_match(
            match_record,
            data.get('tournament_name', ''),
            data.get('court_name', ''),
            data.get('resolved_players') or {},
            round_name=data.get('round_name', ''),
            default_match_time_seconds=data.get('default_match_time_seconds'),
            group_matches=data.get('group_matches'),
            initial_view_mode=data.get('initial_view_mode'),
            team_match_results=data.get('team_match_results'),
        )
    except (TypeError, ValueError) as exc:
        return jsonify({'error': str(exc)}), 400
    return _snapshot_response(coordinator, 201)


@courts.route('/<string:court_id>/snapshot', methods=['GET'])
def get_snapshot(court_id):
    coordinator = _registry().find(court_id)
    if coordinator is None:
        return jsonify({'error': 'No match initialized on this court'}), 404
    return _snapshot_response(coordinator)


@courts.route('/<string:court_id>/result', methods=['GET'])
def get_result(court_id):
    coordinator, error = _require_match(court_id)
    if error:
        return error
    return jsonify(coordinator.get_match_result())


@courts.route('/<string:court_id>/score', methods=['POST'])
def set_score(court_id):
    data = request.get_json(silent=True) or {}
    coordinator, error = _require_match(court_id)
    if error:
        return error
    value, error = _int_field(data, 'value')
    if error:
        return error
    try:
        coordinator.set_score(data.get('slot'), value)
    except ValueError as exc:
        return jsonify({'error': str(exc)}), 400
    return _snapshot_response(coordinator)


@courts.route('/<string:court_id>/penalty', methods=['POST'])
def set_penalty(court_id):
    data = request.get_json(silent=True) or {}
    coordinator, error = _require_match(court_id)
    if error:
        return error
    value, error = _int_field(data, 'value')
    if error:
        return error
    try:
        coordinator.set_penalty(data.get('slot'), value)
    except ValueError as exc:
        return jsonify({'error': str(exc)}), 400
    return _snapshot_response(coordinator)


@courts.route('/<string:court_id>/reset', methods=['POST'])
def reset_match(court_id):
    coordinator, error = _require_match(court_id)
    if error:
        return error
    coordinator.reset_match()
    return _snapshot_response(coordinator)


@courts.route('/<string:court_id>/timer/start', methods=['POST'])
def start_timer(court_id):
    coordinator, error = _require_match(court_id)
    if error:
        return error
    coordinator.start_timer()
    return _snapshot_response(coordinator)


@courts.route('/<string:court_id>/timer/stop', methods=['POST'])
def stop_timer(court_id):
    coordinator, error = _require_match(court_id)
    if error:
        return error
    coordinator.stop_timer()
    return _snapshot_response(coordinator)


@courts.route('/<string:court_id>/timer/time', methods=['POST'])
def set_time(court_id):
    data = request.get_json(silent=True) or {}
    coordinator, error = _require_match(court_id)
    if error:
        return error
    seconds, error = _int_field(data, 'seconds')
    if error:
        return error
    coordinator.set_time_remaining(seconds)
    return _snapshot_response(coordinator)


@courts.route('/<string:court_id>/timer/mode', methods=['POST'])
def set_timer_mode(court_id):
    data = request.get_json(silent=True) or {}
    coordinator, error = _require_match(court_id)
    if error:
        return error
    try:
        coordinator.set_timer_mode(data.get('mode'))
    except ValueError as exc:
        return jsonify({'error': str(exc)}), 400
    return _snapshot_response(coordinator)


@courts.route('/<string:court_id>/visibility', methods=['POST'])
def set_visibility(court_id):
    data = request.get_json(silent=True) or {}
    coordinator, error = _require_match(court_id)
    if error:
        return error
    if 'is_public' in data:
        coordinator.set_public(bool(data['is_public']))
    else:
        coordinator.toggle_public()
    return _snapshot_response(coordinator)


@courts.route('/<string:court_id>/view-mode', methods=['POST'])
def set_view_mode(court_id):
    data = request.get_json(silent=True) or {}
    coordinator, error = _require_match(court_id)
    if error:
        return error
    try:
        coordinator.set_view_mode(data.get('view_mode'))
    except ValueError as exc:
        return jsonify({'error': str(exc)}), 400
    return _snapshot_response(coordinator)


@courts.route('/<string:court_id>/sync', methods=['GET'])
def sync_status(court_id):
    return jsonify(_registry().get(court_id).sync_status())


@courts.route('/<string:court_id>/sync/start', methods=['POST'])
def start_sync(court_id):
    status = _registry().get(court_id).start_sync()
    if status.get('last_error') == 'unsupported':
        return jsonify(dict(status, message='Session displays are not supported; broadcast only')), 200
    return jsonify(status), 202


@courts.route('/<string:court_id>/sync/stop', methods=['POST'])
def stop_sync(court_id):
    return jsonify(_registry().get(court_id).stop_sync())


@courts.route('/<string:court_id>/reload', methods=['POST'])
def reload_court(court_id):
    """Drop the operator side of a court and start it again.

    Match state is not carried over; the new coordinator makes the startup
    reconnect attempt with the persisted session id.
    """
    registry = _registry()
    registry.discard(court_id)
    return jsonify(registry.get(court_id).sync_status())


@display_names.route('', methods=['POST'])
def resolve_display_names():
    data = request.get_json(silent=True) or {}
    players = data.get('players')
    if not isinstance(players, list):
        return jsonify({'error': 'players must be a list'}), 400
    if any(not isinstance(p, dict) or not p.get('last_name') for p in players):
        return jsonify({'error': 'every player needs a last_name'}), 400
    return jsonify({'players': generate_display_names(players)})
