import os
import sys
import pytest

# Ensure the backend root (containing the `matchsync` package) is on sys.path
CURRENT_DIR = os.path.dirname(__file__)
BACKEND_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, '..'))
if BACKEND_ROOT not in sys.path:
    sys.path.insert(0, BACKEND_ROOT)

from matchsync import create_app, db, socketio


class TestConfig:
    TESTING = True
    SECRET_KEY = os.environ.get('SECRET_KEY', 'test-secret')
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    CORS_ORIGINS = []
    DISPLAY_NAMESPACE = '/display'
    DEFAULT_MATCH_TIME_SEC = 180
    TIMER_PUSH_WINDOW_SEC = 0
    SESSION_TRANSPORT_ENABLED = True
    BROADCAST_TRANSPORT_ENABLED = True
    SESSION_RECONNECT_TIMEOUT_SEC = 0
    DISPLAY_CLOSE_GRACE_SEC = 0


MATCH_BODY = {
    'match': {
        'match_id': 'm-1',
        'players': {
            'playerA': {'score': 0, 'hansoku': 0},
            'playerB': {'score': 0, 'hansoku': 0},
        },
    },
    'tournament_name': 'Spring Open',
    'court_name': 'Court A',
    'round_name': 'Final',
    'resolved_players': {
        'playerA': {'display_name': 'Sato T', 'team_name': 'Red Team'},
        'playerB': {'display_name': 'Suzuki', 'team_name': 'White Team'},
    },
}


@pytest.fixture()
def flask_app():
    application = create_app(TestConfig)
    with application.app_context():
        db.create_all()
        yield application
        application.extensions['court_registry'].shutdown_all()
        db.session.remove()
        db.drop_all()


@pytest.fixture()
def client(flask_app):
    return flask_app.test_client()


@pytest.fixture()
def match_body():
    import copy
    return copy.deepcopy(MATCH_BODY)


@pytest.fixture()
def display_client(flask_app):
    test_client = socketio.test_client(
        flask_app,
        flask_test_client=flask_app.test_client(),
        namespace='/display'
    )
    yield test_client
    try:
        test_client.disconnect(namespace='/display')
    except Exception:
        pass
