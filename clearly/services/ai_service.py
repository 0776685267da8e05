import logging
import os
import time
from collections import Counter

import requests
from flask import current_app

logger = logging.getLogger(__name__)

RETRYABLE_STATUS_CODES = {429, 500, 502, 503, 504}


class AIServiceError(Exception):
    pass


class TranscriptionError(AIServiceError):
    pass


def validate_transcription(text):
    """Reject transcripts that are empty or dominated by one repeated word,
    the usual symptom of a corrupted or silent recording."""
    text = (text or '').strip()
    if len(text) < 10:
        raise TranscriptionError(
            f'Transcription too short ({len(text)} characters); the audio may be empty or corrupted'
        )
    words = text.lower().split()
    if len(words) >= 20:
        word, count = Counter(words).most_common(1)[0]
        if count / len(words) > 0.5:
            raise TranscriptionError(
                f"Transcription corruption detected: '{word}' repeated {count} times"
            )
    return text


class AIService:
    """Client for an OpenAI-compatible completion and transcription API"""

    def __init__(self, api_key, base_url, model, whisper_model,
                 timeout=300, max_retries=3, backoff_seconds=2):
        self.api_key = api_key
        self.base_url = base_url.rstrip('/')
        self.model = model
        self.whisper_model = whisper_model
        self.timeout = timeout
        self.max_retries = max_retries
        self.backoff_seconds = backoff_seconds

    @classmethod
    def from_config(cls, config):
        return cls(
            api_key=config['OPENAI_API_KEY'],
            base_url=config['OPENAI_BASE_URL'],
            model=config['OPENAI_MODEL'],
            whisper_model=config['WHISPER_MODEL'],
            timeout=config['OPENAI_TIMEOUT_SECONDS'],
        )

    @property
    def headers(self):
        return {'Authorization': f'Bearer {self.api_key}'}

    def _post(self, path, operation, **kwargs):
        url = f'{self.base_url}{path}'
        for attempt in range(1, self.max_retries + 1):
            try:
                response = requests.post(url, headers=self.headers, timeout=self.timeout, **kwargs)
                if response.status_code in RETRYABLE_STATUS_CODES and attempt < self.max_retries:
                    raise requests.HTTPError(f'{response.status_code} from {operation}', response=response)
                response.raise_for_status()
                return response
            except requests.RequestException as e:
                status = getattr(e.response, 'status_code', None)
                if status is not None and status not in RETRYABLE_STATUS_CODES:
                    raise AIServiceError(f'{operation} failed: {e}')
                if attempt >= self.max_retries:
                    raise AIServiceError(f'{operation} failed after {attempt} attempts: {e}')
                wait_time = self.backoff_seconds * (2 ** (attempt - 1))
                logger.warning('%s attempt %d/%d failed: %s; retrying in %ss',
                               operation, attempt, self.max_retries, e, wait_time)
                time.sleep(wait_time)

    def transcribe(self, audio_path):
        """Transcribe an audio file to plain text"""
        if not os.path.exists(audio_path):
            raise TranscriptionError(f'Audio file not found: {audio_path}')
        logger.info('Transcribing %s with %s', os.path.basename(audio_path), self.whisper_model)
        with open(audio_path, 'rb') as f:
            response = self._post(
                '/audio/transcriptions',
                'Transcription',
                files={'file': (os.path.basename(audio_path), f)},
                data={'model': self.whisper_model, 'response_format': 'text', 'language': 'en'},
            )
        return validate_transcription(response.text)

    def generate_notes(self, transcript, prompt_spec):
        """Generate a note from a transcript. Returns the note content dict."""
        if not transcript or len(transcript.strip()) < 10:
            raise AIServiceError('Transcript is too short to generate notes')
        response = self._post(
            '/chat/completions',
            'Note generation',
            json={
                'model': self.model,
                'temperature': 0.2,
                'messages': [
                    {'role': 'system', 'content': prompt_spec.system_prompt},
                    {'role': 'user', 'content': prompt_spec.render(transcript)},
                ],
            },
        )
        try:
            text = response.json()['choices'][0]['message']['content']
        except (ValueError, KeyError, IndexError, TypeError):
            raise AIServiceError('Note generation returned an unexpected response')
        if not text or not text.strip():
            raise AIServiceError('Note generation returned an empty note')
        return {'text': text.strip()}


def get_ai_service():
    """The configured AI capability; tests register a fake under extensions."""
    service = current_app.extensions.get('ai_service')
    if service is None:
        service = AIService.from_config(current_app.config)
    return service
