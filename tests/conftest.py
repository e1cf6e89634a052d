import io
from datetime import datetime, timedelta, timezone

import pytest
from werkzeug.security import generate_password_hash

from app import create_app
from models import db, User
import streaks

T0 = datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc)
PNG_BYTES = b'\x89PNG\r\n\x1a\n' + b'\x00' * 256


class Clock:
    def __init__(self, now):
        self.now = now

    def advance(self, days=0, hours=0):
        self.now = self.now + timedelta(days=days, hours=hours)
        return self.now


@pytest.fixture
def app(tmp_path):
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite://',
        'SQLALCHEMY_ENGINE_OPTIONS': {},
        'RATELIMIT_ENABLED': False,
        'UPLOAD_FOLDER': str(tmp_path / 'uploads'),
        'USE_CLOUDINARY': False,
    })
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def clock(monkeypatch):
    clock = Clock(T0)
    monkeypatch.setattr(streaks, 'utcnow', lambda: clock.now)
    return clock


@pytest.fixture
def make_user(app):
    def _make_user(username, password='secret123'):
        user = User(username=username, password_hash=generate_password_hash(password))
        db.session.add(user)
        db.session.commit()
        return user
    return _make_user


@pytest.fixture
def api(client):
    """Small helpers around the JSON endpoints."""
    class Api:
        def register(self, username, password='secret123'):
            return client.post('/register', json={'username': username, 'password': password})

        def create_challenge(self, username, title='Run', duration=5, start='2024-03-01'):
            resp = client.post('/create-challenge', json={
                'title': title, 'duration': duration, 'startDate': start, 'username': username,
            })
            assert resp.status_code == 201, resp.get_json()
            return resp.get_json()['challenge']

        def confirm(self, username, challenge_id):
            return client.post('/confirm', json={'username': username, 'challengeId': challenge_id})

        def invite_and_accept(self, challenge_id, inviter, invitee):
            resp = client.post('/send-invite', json={
                'challengeId': challenge_id, 'invitedBy': inviter, 'invitedUser': invitee,
            })
            assert resp.status_code == 201, resp.get_json()
            resp = client.post('/accept-invite', json={'username': invitee, 'challengeId': challenge_id})
            assert resp.status_code == 200, resp.get_json()

        def challenge(self, challenge_id):
            return client.get(f'/challenges/{challenge_id}').get_json()

        def upload(self, challenge_id, username, data=PNG_BYTES, filename='progress.png', day='1'):
            form = {'challengeId': str(challenge_id), 'username': username, 'day': day}
            if data is not None:
                form['image'] = (io.BytesIO(data), filename)
            return client.post('/upload-challenge-image', data=form, content_type='multipart/form-data')

    return Api()
