"""Error taxonomy for the ingestion pipeline.

Each error carries the HTTP status the routes answer with, so a route only
needs ``return jsonify(e.to_dict()), e.status_code``.
"""


class PipelineError(Exception):
    status_code = 500
    error = 'Pipeline error'

    def __init__(self, message=None, **details):
        super().__init__(message or self.error)
        self.message = message or self.error
        self.details = details

    def to_dict(self):
        payload = {'error': self.error, 'message': self.message}
        payload.update(self.details)
        return payload


class StorageFailure(PipelineError):
    status_code = 507
    error = 'Storage failure'


class InvalidUploadId(PipelineError):
    status_code = 400
    error = 'Invalid upload id'


class IncompleteUpload(PipelineError):
    status_code = 400
    error = 'Incomplete upload'

    def __init__(self, message=None, missing=None, unexpected=None):
        super().__init__(message, missing=sorted(missing or []), unexpected=sorted(unexpected or []))
        self.missing = sorted(missing or [])
        self.unexpected = sorted(unexpected or [])


class AlreadyFinalized(PipelineError):
    status_code = 409
    error = 'Upload already finalized'


class UnsupportedMediaType(PipelineError):
    status_code = 415
    error = 'Unsupported media type'


class ExternalDispatchFailure(PipelineError):
    status_code = 502
    error = 'External dispatch failed'


class UnknownFile(PipelineError):
    status_code = 404
    error = 'File not found'


class InvalidCallbackState(PipelineError):
    status_code = 409
    error = 'Invalid callback state'


class InvalidCallback(PipelineError):
    status_code = 400
    error = 'Invalid callback payload'


class InvalidSignature(PipelineError):
    status_code = 401
    error = 'Invalid signature'
