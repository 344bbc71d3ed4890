import uuid

from fastapi.testclient import TestClient

from spillmate.auth import create_session_token
from spillmate.main import app

client = TestClient(app)


def test_session_creates_profile_on_first_visit():
    uid = uuid.uuid4().hex
    token = create_session_token(uid, f'{uid}@example.com')
    r = client.get('/api/session', headers={'Authorization': f'Bearer {token}'})
    assert r.status_code == 200
    data = r.json()
    assert data['user_id'] == uid
    assert data['profile']['role'] == 'free_user'
    # the profile is now visible through the regular lookup
    assert client.get('/api/profile', params={'user_id': uid}).status_code == 200


def test_session_follows_identity_email():
    uid = uuid.uuid4().hex
    client.get('/api/session', headers={'Authorization': f"Bearer {create_session_token(uid, 'old@example.com')}"})
    r = client.get('/api/session', headers={'Authorization': f"Bearer {create_session_token(uid, 'new@example.com')}"})
    assert r.json()['profile']['email'] == 'new@example.com'


def test_missing_token():
    r = client.get('/api/session')
    assert r.status_code == 401
    assert r.json()['detail'] == 'Missing token'


def test_expired_token():
    token = create_session_token('someone', 'someone@example.com', minutes=-5)
    r = client.get('/api/session', headers={'Authorization': f'Bearer {token}'})
    assert r.status_code == 401
    assert r.json()['detail'] == 'Invalid token'


def test_garbage_token():
    r = client.get('/api/session', headers={'Authorization': 'Bearer not-a-jwt'})
    assert r.status_code == 401
