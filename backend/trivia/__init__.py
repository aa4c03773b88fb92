from flask import Flask, jsonify
from flask_sqlalchemy import SQLAlchemy
from flask_cors import CORS
from flask_socketio import SocketIO
from flask_login import LoginManager
from sqlalchemy.exc import SQLAlchemyError
import click
from config import Config

from trivia.errors import StoreUnavailable
from trivia.utils.logging_config import configure_logging

db = SQLAlchemy()
login_manager = LoginManager()
allowed_origins = [
    "http://localhost:5173",
    "http://127.0.0.1:5173",
    "http://localhost:5174",
    "http://127.0.0.1:5174",
]
socketio = SocketIO(cors_allowed_origins=allowed_origins, async_mode=None)

# The store module imports the models, which need ``db`` defined above
from trivia.store import SharedStore  # noqa: E402

store = SharedStore(db)


def bootstrap_store(flask_app):
    """Create the tables and the master game state. Failure here is fatal."""
    from trivia.services.games.controllers import sessions

    with flask_app.app_context():
        import trivia.models  # noqa: F401
        try:
            db.create_all()
        except SQLAlchemyError as exc:
            flask_app.logger.critical(f"[bootstrap-failed] cannot reach the store: {exc}")
            raise StoreUnavailable('Shared store could not be initialized') from exc
        state = sessions().machine.bootstrap()
        flask_app.logger.info(f"[bootstrap] game status={state.status.value} question={state.question_index}")
        return state


def create_app(config_class=Config):
    flask_app = Flask(__name__)
    flask_app.config.from_object(config_class)
    configure_logging(flask_app)

    db.init_app(flask_app)
    store.init_app(flask_app)
    login_manager.init_app(flask_app)
    CORS(flask_app, supports_credentials=True, origins=allowed_origins)

    # Initialize Socket.IO after app is created
    socketio.init_app(flask_app, cors_allowed_origins=allowed_origins)

    from trivia.services.games.controllers import init_sessions
    init_sessions(flask_app, store)

    # Import and register blueprints here
    from trivia.main import main
    flask_app.register_blueprint(main)

    from trivia.api.games import games
    flask_app.register_blueprint(games, url_prefix='/api')

    from trivia.socketio_events import register_socketio_handlers, register_store_broadcasts
    register_socketio_handlers()
    register_store_broadcasts(flask_app)

    # Flask-Login user loader
    from trivia.models import Participant

    @login_manager.user_loader
    def load_participant(user_id):
        return Participant.from_id(user_id)

    @login_manager.unauthorized_handler
    def unauthorized():
        return jsonify({'error': 'Enter an auth code first'}), 401

    if flask_app.config.get('BOOTSTRAP_ON_START'):
        bootstrap_store(flask_app)

    @click.command('init-db')
    def init_db_command():
        """Creates the tables and the lobby game state."""
        state = bootstrap_store(flask_app)
        click.echo(f'Store ready, game is in {state.status.value}.')

    @click.command('game-reset')
    def game_reset_command():
        """Returns the game to the lobby and deletes all teams and submissions."""
        from trivia.services.games.controllers import sessions

        with flask_app.app_context():
            sessions().machine.reset()
        click.echo('Game has been reset to the lobby!')

    flask_app.cli.add_command(init_db_command)
    flask_app.cli.add_command(game_reset_command)

    return flask_app
