import os
import sys
import pytest

# Ensure the backend root (containing the `farmeow` package) is on sys.path
CURRENT_DIR = os.path.dirname(__file__)
BACKEND_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, '..'))
if BACKEND_ROOT not in sys.path:
    sys.path.insert(0, BACKEND_ROOT)
if CURRENT_DIR not in sys.path:
    sys.path.insert(0, CURRENT_DIR)

from farmeow import create_app, db, socketio
from farmeow.services.identity import NeynarClient
from fakes import FakeSession, FakeVault, TestConfig


@pytest.fixture()
def vault():
    return FakeVault()


@pytest.fixture()
def neynar_session():
    return FakeSession()


@pytest.fixture()
def identity(neynar_session):
    return NeynarClient(
        api_key='test-key',
        client_id='client-123',
        client_secret='client-secret',
        session=neynar_session,
    )


@pytest.fixture()
def flask_app(vault, identity):
    application = create_app(TestConfig, vault_client=vault, identity_client=identity)
    with application.app_context():
        # Ensure models are imported so tables are created
        import farmeow.models  # noqa: F401
        db.create_all()
        yield application
        db.session.remove()
        db.drop_all()


@pytest.fixture()
def client(flask_app):
    return flask_app.test_client()


@pytest.fixture()
def controller(flask_app):
    return flask_app.extensions['round_controller']


@pytest.fixture()
def sio_client(flask_app):
    test_client = socketio.test_client(
        flask_app,
        flask_test_client=flask_app.test_client(),
        namespace='/ws'
    )
    yield test_client
    try:
        test_client.disconnect(namespace='/ws')
    except Exception:
        pass
