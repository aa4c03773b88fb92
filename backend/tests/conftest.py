import os
import sys
import pytest
from flask import g

# Ensure the backend root (containing the `trivia` package) is on sys.path
CURRENT_DIR = os.path.dirname(__file__)
BACKEND_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, '..'))
if BACKEND_ROOT not in sys.path:
    sys.path.insert(0, BACKEND_ROOT)

from trivia import create_app, db, socketio
from trivia.services.games.controllers import sessions

T0 = 1_700_000_000_000


class TestConfig:
    TESTING = True
    SECRET_KEY = os.environ.get('SECRET_KEY', 'test-secret')
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    BOOTSTRAP_ON_START = False
    LOG_LEVEL = 'DEBUG'
    HOST_AUTH_CODE = 'HOST-TEST'
    TEAM_AUTH_CODE = 'TEAM-TEST'
    MIN_AUTH_CODE_LENGTH = 5
    QUESTION_DURATION_SEC = 60
    TOTAL_QUESTIONS = 3
    MIN_TEAM_NAME_LENGTH = 3
    MIN_ANSWER_LENGTH = 2
    LEDGER_ENFORCES_DEADLINE = False


class FakeClock:
    """Epoch-millisecond clock that only moves when a test moves it."""

    def __init__(self, start=T0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, ms):
        self.now += ms
        return self.now


def _config(clock, **overrides):
    return type('ScenarioConfig', (TestConfig,), {'GAME_CLOCK': clock, **overrides})


@pytest.fixture()
def clock():
    return FakeClock()


@pytest.fixture()
def app_factory(clock):
    """Build an app with config overrides; its context stays pushed until teardown."""
    contexts = []

    def _build(**overrides):
        application = create_app(_config(clock, **overrides))

        # The pushed app context is reused by every test request, so its `g`
        # would carry Flask-Login's cached user from one client to the next.
        @application.before_request
        def _forget_cached_user():
            g.pop('_login_user', None)

        ctx = application.app_context()
        ctx.push()
        import trivia.models  # noqa: F401
        db.create_all()
        contexts.append(ctx)
        return application

    yield _build
    for ctx in reversed(contexts):
        sessions().close()
        db.session.remove()
        db.drop_all()
        ctx.pop()


@pytest.fixture()
def flask_app(app_factory):
    return app_factory()


@pytest.fixture()
def registry(flask_app):
    return sessions()


@pytest.fixture()
def file_app(tmp_path, clock):
    """App on a file-backed SQLite database so several threads can share it."""
    application = create_app(_config(
        clock,
        SQLALCHEMY_DATABASE_URI=f"sqlite:///{tmp_path / 'trivia.db'}",
        SQLALCHEMY_ENGINE_OPTIONS={'connect_args': {'check_same_thread': False, 'timeout': 15}},
    ))
    with application.app_context():
        import trivia.models  # noqa: F401
        db.create_all()
        sessions().machine.bootstrap()
    yield application
    with application.app_context():
        db.session.remove()
        db.drop_all()
        db.engine.dispose()


@pytest.fixture()
def client(flask_app):
    return flask_app.test_client()


def _login(application, code):
    test_client = application.test_client()
    res = test_client.post('/api/session', json={'auth_code': code})
    assert res.status_code == 200
    return test_client


@pytest.fixture()
def host_client(flask_app):
    return _login(flask_app, TestConfig.HOST_AUTH_CODE)


@pytest.fixture()
def team_login(flask_app):
    def _team():
        return _login(flask_app, TestConfig.TEAM_AUTH_CODE)
    return _team


@pytest.fixture()
def sio_client(flask_app):
    test_client = socketio.test_client(
        flask_app,
        flask_test_client=flask_app.test_client(),
        namespace='/ws'
    )
    yield test_client
    if test_client.is_connected('/ws'):
        test_client.disconnect(namespace='/ws')
