from flask import Flask
from flask_sqlalchemy import SQLAlchemy
from flask_cors import CORS
from flask_migrate import Migrate
from flask_socketio import SocketIO
from config import Config

db = SQLAlchemy()
migrate = Migrate()
socketio = SocketIO(async_mode=None)


def _parse_origins(value):
    if not value or value == '*':
        return '*'
    return [o.strip() for o in value.split(',') if o.strip()]


def create_app(config_class=Config, vault_client=None, identity_client=None):
    """Build the app and its services.

    ``vault_client`` and ``identity_client`` default to clients built from
    config; tests pass fakes. Services are stored on ``app.extensions`` and
    reached through ``farmeow.context``.
    """
    flask_app = Flask(__name__)
    flask_app.config.from_object(config_class)
    flask_app.logger.setLevel(flask_app.config.get('LOG_LEVEL', 'INFO'))

    origins = _parse_origins(flask_app.config.get('CORS_ORIGINS', '*'))
    db.init_app(flask_app)
    migrate.init_app(flask_app, db)
    CORS(flask_app, origins=origins)
    socketio.init_app(flask_app, cors_allowed_origins=origins)

    from farmeow.services.identity import NeynarClient
    from farmeow.services.vault import VaultClient
    from farmeow.services.rounds import RoundController

    if vault_client is None:
        vault_client = VaultClient.from_config(flask_app.config)
        if vault_client is None:
            flask_app.logger.warning("[startup] BASE_RPC_URL/VAULT_ADDRESS not set; contract calls will fail")
    if identity_client is None:
        identity_client = NeynarClient.from_config(flask_app.config)
    flask_app.extensions['vault'] = vault_client
    flask_app.extensions['identity'] = identity_client
    flask_app.extensions['round_controller'] = RoundController(
        flask_app,
        vault_client,
        prize_pool_size=int(flask_app.config.get('PRIZE_POOL_SIZE', 20)),
    )

    from farmeow.main import main
    flask_app.register_blueprint(main)

    from farmeow.api.game import game
    flask_app.register_blueprint(game)

    from farmeow.api.auth import auth
    flask_app.register_blueprint(auth)

    from farmeow.errors import register_error_handlers
    register_error_handlers(flask_app)

    # Bind Socket.IO handlers to the initialized socketio instance
    from farmeow.socketio_events import register_socketio_handlers
    register_socketio_handlers(testing=flask_app.config.get('TESTING', False))

    from farmeow.commands import register_commands
    register_commands(flask_app)

    return flask_app
