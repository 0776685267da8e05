import os

import pytest
import requests

from clearly import db
from clearly.models import File, FileStatus, NoteResult, Task, TaskStatus
from clearly.services import ProcessingDispatcher, UploadFinalizer, UploadMetadata
from clearly.services.ai_service import TranscriptionError
from clearly.services.dispatcher import backoff_delay
from tests.conftest import FakeResponse


def _uploaded_file(app, name, data, mime_type):
    path = os.path.join(app.config['UPLOAD_FOLDER'], f'1700000000000_{name}')
    with open(path, 'wb') as f:
        f.write(data)
    file, _ = UploadFinalizer().commit_upload(path, UploadMetadata(name, len(data), mime_type))
    return file.id


def test_sync_text_file_is_processed(app):
    file_id = _uploaded_file(app, 'visit.txt', b'Patient reports improved sleep this week.', 'text/plain')

    result = ProcessingDispatcher().dispatch(file_id, note_type='summary')

    file = db.session.get(File, file_id)
    assert result.status == 'processed'
    assert result.notes == {'text': 'SUMMARY: Patient reports improved sleep this week.'}
    assert file.status == FileStatus.PROCESSED
    assert file.transcription == 'Patient reports improved sleep this week.'
    assert file.task.status == TaskStatus.COMPLETED
    assert file.task.processed_at is not None
    assert file.note.note_type == 'summary'
    assert file.note.model == 'fake-model'


def test_sync_audio_file_is_transcribed_first(app, fake_ai):
    file_id = _uploaded_file(app, 'visit.mp3', b'ID3...', 'audio/mpeg')

    result = ProcessingDispatcher().dispatch(file_id)

    assert result.status == 'processed'
    assert len(fake_ai.transcribed) == 1
    assert db.session.get(File, file_id).note.note_type == app.config['DEFAULT_NOTE_TYPE']


def test_sync_failure_marks_file_failed_without_note(app, fake_ai):
    fake_ai.error = TranscriptionError('Transcription too short')
    file_id = _uploaded_file(app, 'visit.wav', b'RIFF', 'audio/wav')

    result = ProcessingDispatcher().dispatch(file_id)

    file = db.session.get(File, file_id)
    assert result.status == 'failed'
    assert file.status == FileStatus.FAILED
    assert file.task.status == TaskStatus.FAILED
    assert file.task.error_message == 'Transcription too short'
    assert NoteResult.query.filter_by(file_id=file_id).count() == 0


def test_dispatch_is_not_repeated_for_the_same_file(app, fake_ai):
    file_id = _uploaded_file(app, 'visit.mp3', b'ID3', 'audio/mpeg')

    ProcessingDispatcher().dispatch(file_id)
    second = ProcessingDispatcher().dispatch(file_id)

    assert second.status == 'processed'
    assert len(fake_ai.transcribed) == 1
    assert NoteResult.query.filter_by(file_id=file_id).count() == 1


def test_async_dispatch_sends_file_to_worker(app, async_worker):
    file_id = _uploaded_file(app, 'visit.m4a', b'....', 'audio/mp4')

    result = ProcessingDispatcher().dispatch(file_id)

    file = db.session.get(File, file_id)
    assert result.status == 'sent_to_worker'
    assert result.task_status == 'sent_to_make'
    assert file.status == FileStatus.SENT_TO_WORKER
    assert file.task.attempts == 1

    payload = async_worker.calls[0]['json']
    assert async_worker.calls[0]['url'] == 'http://worker.test/hooks/notes'
    assert payload['fileId'] == file_id
    assert payload['fileUrl'].endswith(f'/api/uploads/files/{file.filename}')
    assert payload['callbackUrl'].endswith('/api/processing/webhook')


def test_async_dispatch_retries_transient_failures(app, async_worker):
    async_worker.responses = [
        requests.ConnectionError('connection refused'),
        FakeResponse(503),
        FakeResponse(202, {'accepted': True}),
    ]
    delays = []
    file_id = _uploaded_file(app, 'visit.m4a', b'....', 'audio/mp4')

    result = ProcessingDispatcher(sleep=delays.append).dispatch(file_id)

    assert result.status == 'sent_to_worker'
    assert len(async_worker.calls) == 3
    assert len(delays) == 2
    assert db.session.get(Task, db.session.get(File, file_id).task.id).attempts == 3


def test_async_dispatch_fails_after_bounded_attempts(app, async_worker):
    app.config['DISPATCH_MAX_ATTEMPTS'] = 2
    async_worker.responses = [FakeResponse(500), FakeResponse(502), FakeResponse(200)]
    file_id = _uploaded_file(app, 'visit.m4a', b'....', 'audio/mp4')

    result = ProcessingDispatcher(sleep=lambda _: None).dispatch(file_id)

    file = db.session.get(File, file_id)
    assert result.status == 'failed'
    assert len(async_worker.calls) == 2
    assert file.status == FileStatus.FAILED
    assert 'Could not reach processing worker' in file.task.error_message


def test_async_dispatch_does_not_retry_client_errors(app, async_worker):
    async_worker.responses = [FakeResponse(400), FakeResponse(200)]
    file_id = _uploaded_file(app, 'visit.m4a', b'....', 'audio/mp4')

    result = ProcessingDispatcher(sleep=lambda _: None).dispatch(file_id)

    assert result.status == 'failed'
    assert len(async_worker.calls) == 1


def test_worker_answering_inline_completes_the_file(app, async_worker):
    async_worker.responses = [FakeResponse(200, {
        'soap_note_text': 'S: headache',
        'patient_summary_text': 'You have a headache.',
    })]
    file_id = _uploaded_file(app, 'visit.m4a', b'....', 'audio/mp4')

    result = ProcessingDispatcher().dispatch(file_id)

    file = db.session.get(File, file_id)
    assert result.status == 'processed'
    assert result.notes == {'soapNote': 'S: headache', 'patientSummary': 'You have a headache.'}
    assert file.note.note_type == 'both'


@pytest.mark.parametrize('attempt, expected', [(1, 2), (2, 4), (3, 8), (6, 30)])
def test_backoff_delay_is_exponential_and_capped(attempt, expected):
    assert backoff_delay(attempt, 2, 30) == expected
