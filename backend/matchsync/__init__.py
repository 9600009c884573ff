from flask import Flask
from flask_sqlalchemy import SQLAlchemy
from flask_cors import CORS
from flask_migrate import Migrate
from flask_socketio import SocketIO
import click
from config import Config

db = SQLAlchemy()
migrate = Migrate()
socketio = SocketIO(async_mode=None)


def create_app(config_class=Config):
    flask_app = Flask(__name__)
    flask_app.config.from_object(config_class)

    allowed_origins = flask_app.config.get('CORS_ORIGINS') or []

    db.init_app(flask_app)
    migrate.init_app(flask_app, db)
    CORS(flask_app, origins=allowed_origins)

    # Initialize Socket.IO after app is created
    socketio.init_app(flask_app, cors_allowed_origins=allowed_origins)

    hub = init_sync_services(flask_app)

    from matchsync.api.courts import courts, display_names
    flask_app.register_blueprint(courts, url_prefix='/api/courts')
    flask_app.register_blueprint(display_names, url_prefix='/api/display-names')

    # Register Socket.IO event handlers for the display namespace
    from matchsync.socketio_events import register_socketio_handlers
    register_socketio_handlers(hub.namespace)

    # Ensure the model is known to create_all / migrations
    from matchsync import models  # noqa: F401

    @click.command('sync-reset')
    def sync_reset_command():
        """Forgets every persisted display session id."""
        from matchsync.models import SyncSetting
        from matchsync.services.sync.storage import SESSION_KEY_SUFFIX
        with flask_app.app_context():
            removed = SyncSetting.query.filter(SyncSetting.key.like(f'%{SESSION_KEY_SUFFIX}')).delete(synchronize_session=False)
            db.session.commit()
            click.echo(f'Removed {removed} persisted session id(s).')

    flask_app.cli.add_command(sync_reset_command)

    return flask_app


def init_sync_services(flask_app):
    """Build the display hub and court registry for flask_app.

    Both start empty; persisted session ids are picked up from the
    sync_setting table as displays and courts come back.
    """
    from matchsync.services.sync.hub import DisplayHub
    from matchsync.services.sync.registry import CourtRegistry
    from matchsync.services.sync.storage import SqlStore

    storage = SqlStore(flask_app)
    background = not flask_app.config.get('TESTING') or flask_app.config.get('ENABLE_TIMER_IN_TESTS')
    hub = DisplayHub(
        socketio,
        namespace=flask_app.config.get('DISPLAY_NAMESPACE', '/display'),
        close_grace_sec=float(flask_app.config.get('DISPLAY_CLOSE_GRACE_SEC', 2.0)),
        spawn=socketio.start_background_task if background else None,
        sleep=socketio.sleep,
        logger=flask_app.logger,
        resolve_session=storage.key_for,
    )
    flask_app.extensions['display_hub'] = hub
    flask_app.extensions['court_registry'] = CourtRegistry(flask_app, hub, socketio, storage=storage)
    return hub
