import os


def _origins(raw):
    return [o.strip() for o in raw.split(',') if o.strip()]


class Config:
    SECRET_KEY = os.environ.get('SECRET_KEY') or 'you-will-never-guess'
    SQLALCHEMY_DATABASE_URI = os.environ.get('DATABASE_URL') or 'sqlite:///matchsync.db'
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    CORS_ORIGINS = _origins(os.environ.get(
        'CORS_ORIGINS',
        'http://localhost:5173,http://127.0.0.1:5173,http://localhost:3000,http://127.0.0.1:3000',
    ))
    DISPLAY_NAMESPACE = os.environ.get('DISPLAY_NAMESPACE', '/display')
    # Bout clock (seconds)
    DEFAULT_MATCH_TIME_SEC = int(os.environ.get('DEFAULT_MATCH_TIME_SEC', '180'))
    TICK_INTERVAL_SEC = float(os.environ.get('TICK_INTERVAL_SEC', '1.0'))
    # At most one clock-only push per window (sec). 0 disables coalescing.
    TIMER_PUSH_WINDOW_SEC = float(os.environ.get('TIMER_PUSH_WINDOW_SEC', '1.0'))
    # Display sessions
    SESSION_TRANSPORT_ENABLED = os.environ.get('SESSION_TRANSPORT_ENABLED', '1') == '1'
    BROADCAST_TRANSPORT_ENABLED = os.environ.get('BROADCAST_TRANSPORT_ENABLED', '1') == '1'
    SESSION_RECONNECT_TIMEOUT_SEC = float(os.environ.get('SESSION_RECONNECT_TIMEOUT_SEC', '5'))
    DISPLAY_CLOSE_GRACE_SEC = float(os.environ.get('DISPLAY_CLOSE_GRACE_SEC', '2.0'))
    # Optional: heartbeat log every N clock ticks. 0 disables.
    TIMER_HEARTBEAT_SEC = int(os.environ.get('TIMER_HEARTBEAT_SEC', '0'))
