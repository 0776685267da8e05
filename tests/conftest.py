import pytest
import requests

from clearly import create_app, db
from clearly.models import User, UserRole


class FakeAIService:
    """Stands in for the OpenAI-backed capability"""

    model = 'fake-model'

    def __init__(self):
        self.transcript = 'Patient reports a mild headache for three days and no fever.'
        self.error = None
        self.transcribed = []

    def transcribe(self, audio_path):
        self.transcribed.append(audio_path)
        if self.error:
            raise self.error
        return self.transcript

    def generate_notes(self, transcript, prompt_spec):
        if self.error:
            raise self.error
        return {'text': f'{prompt_spec.note_type.upper()}: {transcript}'}


class FakeResponse:
    def __init__(self, status_code=200, body=None):
        self.status_code = status_code
        self._body = body

    def json(self):
        if self._body is None:
            raise ValueError('No JSON body')
        return self._body

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f'{self.status_code} Error', response=self)


class FakeWorker:
    """Records submissions to the external worker and answers from a script"""

    def __init__(self, responses=None):
        self.responses = list(responses or [])
        self.calls = []

    def __call__(self, url, json=None, timeout=None, **kwargs):
        self.calls.append({'url': url, 'json': json, 'timeout': timeout})
        if not self.responses:
            return FakeResponse(200, {'accepted': True})
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


@pytest.fixture
def app(tmp_path):
    app = create_app('testing', overrides={
        'SQLALCHEMY_DATABASE_URI': f"sqlite:///{tmp_path / 'clearly.db'}",
        'UPLOAD_FOLDER': str(tmp_path / 'uploads'),
        'CHUNK_FOLDER': str(tmp_path / 'chunks'),
    })
    app.extensions['ai_service'] = FakeAIService()

    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def fake_ai(app):
    return app.extensions['ai_service']


@pytest.fixture
def async_worker(app, monkeypatch):
    """Configure an external worker endpoint and capture what is sent to it"""
    worker = FakeWorker()
    app.config['WORKER_WEBHOOK_URL'] = 'http://worker.test/hooks/notes'
    monkeypatch.setattr('clearly.services.dispatcher.requests.post', worker)
    return worker


@pytest.fixture
def make_user(app):
    def _make_user(email, password='Secret@123', role=UserRole.USER):
        user = User(email=email, password=password, role=role)
        db.session.add(user)
        db.session.commit()
        return user
    return _make_user


@pytest.fixture
def auth_headers(client, make_user):
    """Log a freshly created user in and return bearer headers"""
    def _auth_headers(email, role=UserRole.USER):
        make_user(email, password='Secret@123', role=role)
        response = client.post('/api/auth/login', json={'email': email, 'password': 'Secret@123'})
        assert response.status_code == 200
        return {'Authorization': f"Bearer {response.get_json()['access_token']}"}
    return _auth_headers
