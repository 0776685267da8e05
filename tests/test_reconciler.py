import os

import pytest

from clearly import db
from clearly.errors import InvalidCallbackState, UnknownFile
from clearly.models import File, FileStatus, NoteResult, TaskStatus
from clearly.schemas import Failure, Success
from clearly.services import CompletionReconciler, ProcessingDispatcher, UploadFinalizer, UploadMetadata


def _file_with_worker(app):
    path = os.path.join(app.config['UPLOAD_FOLDER'], '1700000000000_visit.m4a')
    with open(path, 'wb') as f:
        f.write(b'....')
    file, _ = UploadFinalizer().commit_upload(path, UploadMetadata('visit.m4a', 4, 'audio/mp4'))
    ProcessingDispatcher().dispatch(file.id)
    return file.id


def test_success_callback_completes_file(app, async_worker):
    file_id = _file_with_worker(app)

    result = CompletionReconciler().apply_callback(file_id, Success({'soap': 'S: cough'}, 'soap'))

    file = db.session.get(File, file_id)
    assert result.applied is True
    assert result.status == 'processed'
    assert file.status == FileStatus.PROCESSED
    assert file.task.status == TaskStatus.COMPLETED
    assert file.note.content == {'soap': 'S: cough'}


def test_duplicate_success_callback_is_a_noop(app, async_worker):
    file_id = _file_with_worker(app)
    reconciler = CompletionReconciler()

    reconciler.apply_callback(file_id, Success('first note', 'soap'))
    second = reconciler.apply_callback(file_id, Success('second note', 'soap'))

    assert second.duplicate is True
    assert second.applied is False
    assert NoteResult.query.filter_by(file_id=file_id).count() == 1
    assert NoteResult.query.filter_by(file_id=file_id).one().content == 'first note'


def test_failure_after_success_does_not_change_outcome(app, async_worker):
    file_id = _file_with_worker(app)
    reconciler = CompletionReconciler()

    reconciler.apply_callback(file_id, Success('note', 'soap'))
    late = reconciler.apply_callback(file_id, Failure('worker timed out'))

    file = db.session.get(File, file_id)
    assert late.duplicate is True
    assert file.status == FileStatus.PROCESSED
    assert file.task.error_message is None


def test_failure_callback_records_message(app, async_worker):
    file_id = _file_with_worker(app)

    result = CompletionReconciler().apply_callback(file_id, Failure('transcription failed'))

    file = db.session.get(File, file_id)
    assert result.status == 'failed'
    assert file.task.status == TaskStatus.FAILED
    assert file.task.error_message == 'transcription failed'
    assert file.note is None


def test_unknown_file_is_rejected(app):
    with pytest.raises(UnknownFile):
        CompletionReconciler().apply_callback(4040, Success('note'))


def test_callback_before_dispatch_is_rejected(app):
    path = os.path.join(app.config['UPLOAD_FOLDER'], '1700000000000_early.txt')
    with open(path, 'wb') as f:
        f.write(b'some text here')
    file, _ = UploadFinalizer().commit_upload(path, UploadMetadata('early.txt', 14, 'text/plain'))

    with pytest.raises(InvalidCallbackState):
        CompletionReconciler().apply_callback(file.id, Success('note'))

    assert db.session.get(File, file.id).status == FileStatus.UPLOADED
