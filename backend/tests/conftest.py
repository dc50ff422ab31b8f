import logging
import os
import sys
import pytest
from flask import g

# Ensure the backend root (containing the `app` package) is on sys.path
CURRENT_DIR = os.path.dirname(__file__)
BACKEND_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, '..'))
if BACKEND_ROOT not in sys.path:
    sys.path.insert(0, BACKEND_ROOT)

from app import create_app, db, socketio

NAMESPACE = '/ws'


class TestConfig:
    TESTING = True
    SECRET_KEY = os.environ.get('SECRET_KEY', 'test-secret')
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    WTF_CSRF_ENABLED = False
    SOCKETIO_NAMESPACE = NAMESPACE
    MIN_PLAYERS = 2
    QUESTIONS_PER_GAME = 10
    STALE_SESSION_HOURS = 24
    SESSION_SWEEP_INTERVAL_SEC = 0
    REALTIME_REQUIRE_TOKEN = False
    SOCKET_TOKEN_MAX_AGE_SEC = 300
    ROOM_CODE_LENGTH = 8
    CHAT_HISTORY_LIMIT = 50


class RecordingBroadcaster:
    """Stands in for the Socket.IO-backed broadcaster in unit tests."""

    def __init__(self):
        self.events = []
        self.subscriptions = set()

    def subscribe(self, sid, room_id):
        self.subscriptions.add((sid, room_id))

    def unsubscribe(self, sid, room_id):
        self.subscriptions.discard((sid, room_id))

    def publish(self, room_id, event, payload):
        self.events.append(('room', room_id, None, event, payload))

    def publish_except(self, room_id, exclude_sid, event, payload):
        self.events.append(('room_except', room_id, exclude_sid, event, payload))

    def send(self, sid, event, payload):
        self.events.append(('direct', None, sid, event, payload))

    def named(self, event):
        return [e for e in self.events if e[3] == event]


@pytest.fixture()
def flask_app():
    application = create_app(TestConfig)

    @application.before_request
    def _forget_cached_login():
        # Test requests share this fixture's app context, and with it flask.g
        g.pop('_login_user', None)

    with application.app_context():
        # Ensure models are imported so tables are created
        import app.models  # noqa: F401
        db.create_all()
        yield application
        db.session.remove()
        db.drop_all()


@pytest.fixture()
def client(flask_app):
    return flask_app.test_client()


@pytest.fixture()
def coordinator(flask_app):
    from app.coordinator import get_coordinator
    return get_coordinator()


@pytest.fixture()
def recorder():
    return RecordingBroadcaster()


@pytest.fixture()
def logger():
    return logging.getLogger('icebreaker-tests')


@pytest.fixture()
def seed_questions(flask_app):
    from app.models import BalanceQuestion

    def _seed(count=3):
        for i in range(count):
            db.session.add(BalanceQuestion(question=f'Question {i}', option_a=f'A{i}', option_b=f'B{i}'))
        db.session.commit()
    return _seed


@pytest.fixture()
def make_room(flask_app):
    """Create active rooms with fixed ids for tests that skip the HTTP flow."""
    from app.models import Room

    def _make(*room_ids, created_by=1):
        for room_id in room_ids:
            db.session.add(Room(id=room_id, room_code=f'ROOM{room_id:04d}', room_name=f'Room {room_id}',
                                created_by=created_by))
        db.session.commit()
    return _make


@pytest.fixture()
def sio_factory(flask_app):
    """Connects Socket.IO test clients, optionally authenticated as a user."""
    clients = []

    def _connect(user_id=None, display_name=None, flask_test_client=None):
        test_client = socketio.test_client(
            flask_app,
            flask_test_client=flask_test_client or flask_app.test_client(),
            namespace=NAMESPACE,
        )
        clients.append(test_client)
        if user_id is not None:
            test_client.emit('authenticate', {'user_id': user_id, 'display_name': display_name}, namespace=NAMESPACE)
        test_client.get_received(NAMESPACE)
        return test_client

    yield _connect
    for test_client in clients:
        try:
            if test_client.is_connected(NAMESPACE):
                test_client.disconnect(namespace=NAMESPACE)
        except Exception:
            pass


@pytest.fixture()
def received():
    """Drain a test client's queue, optionally keeping one event's payloads."""
    def _received(test_client, name=None):
        events = test_client.get_received(NAMESPACE)
        if name is None:
            return events
        return [e['args'][0] for e in events if e['name'] == name]
    return _received
