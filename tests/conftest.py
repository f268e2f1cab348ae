import os

os.environ['DATABASE_URL'] = 'sqlite:///:memory:'
os.environ['ENABLE_BACKGROUND_JOBS'] = '0'
os.environ['API_SHARED_KEY'] = 'test-shared-key'
os.environ.setdefault('SECRET_KEY', 'test-secret')

import pytest

from app import app as flask_app
from models import db, Reader


class ReaderClient:
    """Test client that authenticates every request as one reader."""

    def __init__(self, client, reader_id):
        self.client = client
        self.reader_id = reader_id
        self.headers = {'X-API-Key': 'test-shared-key', 'X-User-Id': str(reader_id)}

    def _open(self, method, url, **kwargs):
        return self.client.open(url, method=method, headers=self.headers, **kwargs)

    def get(self, url, **kwargs):
        return self._open('GET', url, **kwargs)

    def post(self, url, **kwargs):
        return self._open('POST', url, **kwargs)

    def put(self, url, **kwargs):
        return self._open('PUT', url, **kwargs)

    def patch(self, url, **kwargs):
        return self._open('PATCH', url, **kwargs)

    def delete(self, url, **kwargs):
        return self._open('DELETE', url, **kwargs)


def _create_reader(username):
    with flask_app.app_context():
        reader = Reader(username=username)
        db.session.add(reader)
        db.session.commit()
        return reader.id


@pytest.fixture
def app():
    flask_app.config['TESTING'] = True
    with flask_app.app_context():
        db.drop_all()
        db.create_all()
    yield flask_app
    with flask_app.app_context():
        db.session.remove()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def alice(client):
    return ReaderClient(client, _create_reader('alice'))


@pytest.fixture
def bob(client):
    return ReaderClient(client, _create_reader('bob'))


@pytest.fixture
def outline_id(alice):
    resp = alice.post('/outlines', json={'name': 'Reading plan'})
    assert resp.status_code == 201
    return resp.get_json()['id']
