import logging
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional

import requests
from flask import current_app

from clearly import db
from clearly.errors import ExternalDispatchFailure, UnsupportedMediaType
from clearly.models import File, FileStatus, NoteResult, Task
from clearly.schemas import parse_inline_result
from clearly.services.ai_service import get_ai_service
from clearly.services.prompts import get_prompt_spec
from clearly.services.transitions import advance, commit_transition

logger = logging.getLogger(__name__)

RETRYABLE_STATUS_CODES = {408, 429, 500, 502, 503, 504}


@dataclass
class DispatchResult:
    file_id: int
    status: str
    task_status: Optional[str] = None
    notes: Any = None
    error: Optional[str] = None

    def to_dict(self):
        payload = {'id': self.file_id, 'status': self.status, 'taskStatus': self.task_status}
        if self.error:
            payload['errorMessage'] = self.error
        return payload


def backoff_delay(attempt, base, cap):
    return min(base * (2 ** (attempt - 1)), cap)


class ProcessingDispatcher:
    """Hands an uploaded file to the in-process AI capability or, when a
    worker endpoint is configured, to the external worker."""

    def __init__(self, config=None, ai_service=None, reconciler=None, sleep=time.sleep):
        self.config = config or current_app.config
        self._ai_service = ai_service
        self._reconciler = reconciler
        self.sleep = sleep

    @property
    def is_async(self):
        return bool(self.config.get('WORKER_WEBHOOK_URL'))

    @property
    def ai_service(self):
        if self._ai_service is None:
            self._ai_service = get_ai_service()
        return self._ai_service

    @property
    def reconciler(self):
        if self._reconciler is None:
            from clearly.services.reconciler import CompletionReconciler
            self._reconciler = CompletionReconciler()
        return self._reconciler

    def dispatch(self, file_id, note_type=None):
        if not advance(file_id, {FileStatus.UPLOADED}, FileStatus.PROCESSING):
            db.session.rollback()
            logger.warning('File %s was already dispatched; skipping', file_id)
            return self._current(file_id)
        commit_transition(file_id)

        if self.is_async:
            return self._delegate(file_id)
        return self._process_inline(file_id, note_type or self.config['DEFAULT_NOTE_TYPE'])

    def _process_inline(self, file_id, note_type):
        file = db.session.get(File, file_id)
        try:
            prompt_spec = get_prompt_spec(note_type)
            transcript = self._read_transcript(file)
            content = self.ai_service.generate_notes(transcript, prompt_spec)

            db.session.add(NoteResult(
                file_id=file_id,
                owner_id=file.owner_id,
                content=content,
                note_type=prompt_spec.note_type,
                prompt_used=prompt_spec.system_prompt,
                model=getattr(self.ai_service, 'model', None),
            ))
            db.session.flush()
            won = advance(
                file_id, {FileStatus.PROCESSING}, FileStatus.PROCESSED,
                file_changes={'transcription': transcript},
                task_changes={'processed_at': datetime.utcnow(), 'error_message': None},
            )
            if not won:
                db.session.rollback()
                logger.warning('File %s left processing while notes were generated', file_id)
                return self._current(file_id)
            commit_transition(file_id)
        except Exception as e:
            db.session.rollback()
            logger.error('Processing failed for file %s: %s', file_id, e)
            return self._fail(file_id, str(e) or e.__class__.__name__)

        logger.info('File %s processed in-process', file_id)
        return DispatchResult(file_id, FileStatus.PROCESSED.value, 'completed', notes=content)

    def _read_transcript(self, file):
        if file.is_audio:
            return self.ai_service.transcribe(file.storage_path)
        if file.is_text:
            with open(file.storage_path, 'r', encoding='utf-8', errors='replace') as f:
                return f.read()
        raise UnsupportedMediaType(f'Cannot process files of type {file.mime_type}')

    def _delegate(self, file_id):
        file = db.session.get(File, file_id)
        url = self.config['WORKER_WEBHOOK_URL']
        backend_url = self.config['BACKEND_URL'].rstrip('/')
        payload = {
            'fileId': file.id,
            'fileUrl': f'{backend_url}/api/uploads/files/{file.filename}',
            'originalName': file.original_name,
            'fileSize': file.size_bytes,
            'fileType': file.mime_type,
            'callbackUrl': f'{backend_url}/api/processing/webhook',
            'timestamp': datetime.utcnow().isoformat() + 'Z',
        }
        max_attempts = max(1, int(self.config['DISPATCH_MAX_ATTEMPTS']))

        response = None
        last_error = None
        for attempt in range(1, max_attempts + 1):
            Task.query.filter_by(file_id=file_id).update({'attempts': attempt}, synchronize_session=False)
            db.session.commit()
            try:
                response = requests.post(url, json=payload, timeout=self.config['WORKER_TIMEOUT_SECONDS'])
                response.raise_for_status()
                break
            except requests.RequestException as e:
                response = None
                last_error = e
                status = getattr(e.response, 'status_code', None)
                logger.warning('Dispatch of file %s to worker failed (attempt %d/%d): %s',
                               file_id, attempt, max_attempts, e)
                if status is not None and status not in RETRYABLE_STATUS_CODES:
                    break
                if attempt < max_attempts:
                    self.sleep(backoff_delay(
                        attempt,
                        self.config['DISPATCH_BACKOFF_SECONDS'],
                        self.config['DISPATCH_BACKOFF_MAX_SECONDS'],
                    ))

        if response is None:
            error = ExternalDispatchFailure(f'Could not reach processing worker: {last_error}')
            return self._fail(file_id, error.message)

        if not advance(file_id, {FileStatus.PROCESSING}, FileStatus.SENT_TO_WORKER):
            db.session.rollback()
            return self._current(file_id)
        commit_transition(file_id)
        logger.info('File %s sent to worker', file_id)

        try:
            body = response.json()
        except ValueError:
            body = None
        inline = parse_inline_result(body, self.config['DEFAULT_NOTE_TYPE'])
        if inline is not None:
            logger.info('Worker returned notes inline for file %s', file_id)
            self.reconciler.apply_callback(file_id, inline)
            result = self._current(file_id)
            result.notes = inline.note_content
            return result
        return DispatchResult(file_id, FileStatus.SENT_TO_WORKER.value, 'sent_to_make')

    def _fail(self, file_id, message):
        expected = {FileStatus.UPLOADED, FileStatus.PROCESSING}
        if advance(file_id, expected, FileStatus.FAILED, task_changes={'error_message': message}):
            commit_transition(file_id)
        else:
            db.session.rollback()
        return self._current(file_id)

    def _current(self, file_id):
        file = db.session.get(File, file_id)
        task = file.task
        return DispatchResult(
            file_id,
            file.status.value,
            task.status.value if task else None,
            notes=file.note.content if file.note is not None else None,
            error=task.error_message if task else None,
        )
