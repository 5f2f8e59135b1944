"""Tests for the session API blueprint."""
import pytest

from behavioral_auth import create_app
from behavioral_auth.services.profile_store import InMemoryProfileStore

DESKTOP_UA = ('Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 '
              '(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36')
TUESDAY_MORNING = {'time_of_day': 10, 'day_of_week': 2, 'session_duration': 60000}


@pytest.fixture
def app():
    app = create_app('testing', profile_store=InMemoryProfileStore())
    yield app
    app.extensions['auth_service'].shutdown()


@pytest.fixture
def client(app):
    return app.test_client()


def _keystrokes(count=10):
    events = []
    t = 0
    for i in range(count):
        key = 'abcde'[i % 5]
        dwell = 90 if i % 2 else 115
        events.append({'modality': 'keystroke', 'kind': 'keydown', 'timestamp': t, 'key': key})
        events.append({'modality': 'keystroke', 'kind': 'keyup', 'timestamp': t + dwell, 'key': key})
        t += dwell + 70
    return events


def _begin(client, user_id='alice'):
    response = client.post('/api/sessions', json={'user_id': user_id, 'context': TUESDAY_MORNING},
                           headers={'User-Agent': DESKTOP_UA})
    assert response.status_code == 201
    return response.get_json()


class TestSessionFlow:
    """Test begin, submit and authenticate over HTTP."""

    def test_health(self, client):
        assert client.get('/health').get_json() == {'status': 'ok'}

    def test_begin_uses_user_agent(self, client):
        data = _begin(client)
        assert data['session_id']
        assert sorted(data['modalities']) == ['keystroke', 'pointer']
        assert data['duration_ms'] == 2400.0
        assert data['risk_score'] == 0.0

    def test_full_attempt(self, client):
        session_id = _begin(client)['session_id']

        response = client.post(f'/api/sessions/{session_id}/events', json={'events': _keystrokes()})
        assert response.status_code == 202
        assert response.get_json() == {'accepted': 20, 'rejected': 0}

        response = client.post(f'/api/sessions/{session_id}/authenticate')
        assert response.status_code == 200
        decision = response.get_json()
        assert decision['success'] is False
        assert decision['enrolled_modalities'] == ['keystroke']
        assert decision['excluded_modalities'] == {'pointer': 'insufficient_samples'}
        assert decision['session_id'] == session_id

        response = client.post(f'/api/sessions/{session_id}/authenticate')
        assert response.status_code == 404

    def test_unsupported_modality_events_are_rejected(self, client):
        session_id = _begin(client)['session_id']
        events = [{'modality': 'touch', 'kind': 'touchstart', 'timestamp': 0, 'x': 1, 'y': 1, 'touch_id': 0}]
        response = client.post(f'/api/sessions/{session_id}/events', json={'events': events})
        assert response.get_json() == {'accepted': 0, 'rejected': 1}

    def test_cancel(self, client):
        session_id = _begin(client)['session_id']
        response = client.delete(f'/api/sessions/{session_id}')
        assert response.status_code == 200
        assert response.get_json()['status'] == 'cancelled'
        assert client.post(f'/api/sessions/{session_id}/authenticate').status_code == 404

    def test_recommendations(self, client):
        response = client.post('/api/recommendations', json={
            'user_id': 'alice',
            'context': dict(TUESDAY_MORNING, network_stability=0.5)
        })
        assert response.status_code == 200
        data = response.get_json()
        assert 'Unstable network connection' in data['risk_factors']
        assert data['recommended_duration_ms'] > 0


class TestValidation:
    """Test request validation errors."""

    def test_missing_user_id(self, client):
        response = client.post('/api/sessions', json={})
        assert response.status_code == 400
        assert response.get_json()['details'][0]['field'] == 'user_id'

    def test_unknown_session(self, client):
        response = client.post('/api/sessions/nope/events', json={'events': []})
        assert response.status_code == 404

    def test_kind_must_match_modality(self, client):
        session_id = _begin(client)['session_id']
        events = [{'modality': 'keystroke', 'kind': 'touchstart', 'timestamp': 0, 'key': 'a'}]
        response = client.post(f'/api/sessions/{session_id}/events', json={'events': events})
        assert response.status_code == 400

    def test_keystroke_requires_key(self, client):
        session_id = _begin(client)['session_id']
        events = [{'modality': 'keystroke', 'kind': 'keydown', 'timestamp': 0}]
        response = client.post(f'/api/sessions/{session_id}/events', json={'events': events})
        assert response.status_code == 400

    def test_batch_limit(self, client):
        session_id = _begin(client)['session_id']
        events = [{'modality': 'pointer', 'kind': 'move', 'timestamp': i, 'x': i, 'y': 0} for i in range(1001)]
        response = client.post(f'/api/sessions/{session_id}/events', json={'events': events})
        assert response.status_code == 400
