import logging
import mimetypes
import os
from dataclasses import dataclass
from typing import Optional

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from clearly import db
from clearly.errors import StorageFailure, UnsupportedMediaType
from clearly.models import File, Task
from clearly.storage import get_artifact_storage, safe_remove

logger = logging.getLogger(__name__)

EXTENSION_MIME_TYPES = {
    'mp3': 'audio/mpeg',
    'm4a': 'audio/mp4',
    'wav': 'audio/wav',
    'mp4': 'audio/mp4',
    'webm': 'audio/webm',
    'ogg': 'audio/ogg',
    'txt': 'text/plain',
}


def file_extension(filename):
    if not filename or '.' not in filename:
        return ''
    return filename.rsplit('.', 1)[1].lower()


def allowed_file(filename, allowed_extensions=None):
    """Check if the file extension is allowed"""
    allowed = allowed_extensions or current_app.config['ALLOWED_EXTENSIONS']
    return file_extension(filename) in allowed


def guess_mime_type(filename, declared=None):
    ext = file_extension(filename)
    if ext in EXTENSION_MIME_TYPES:
        return EXTENSION_MIME_TYPES[ext]
    guessed, _ = mimetypes.guess_type(filename or '')
    return guessed or declared or 'application/octet-stream'


def require_allowed_file(filename):
    if not filename or not allowed_file(filename):
        allowed = ', '.join(sorted(f'.{ext}' for ext in current_app.config['ALLOWED_EXTENSIONS']))
        raise UnsupportedMediaType(f'Invalid file type. Allowed types: {allowed}')


@dataclass
class UploadMetadata:
    original_name: str
    size_bytes: int
    mime_type: Optional[str] = None


class UploadFinalizer:
    """Common landing point for single-shot and reassembled uploads"""

    def store_upload(self, file_storage):
        """Persist a single-request upload. Returns (artifact path, metadata)."""
        require_allowed_file(file_storage.filename)
        path, size = get_artifact_storage().save_stream(file_storage.stream, file_storage.filename)
        metadata = UploadMetadata(
            original_name=file_storage.filename,
            size_bytes=size,
            mime_type=guess_mime_type(file_storage.filename, file_storage.mimetype),
        )
        return path, metadata

    def commit_upload(self, artifact_path, metadata, owner_id=None):
        """Record the artifact as a File with its pending Task.

        Both rows are written in one transaction; if either insert fails,
        neither row survives and the artifact is removed.
        """
        mime_type = metadata.mime_type or guess_mime_type(metadata.original_name)
        try:
            file = File(
                filename=os.path.basename(artifact_path),
                original_name=metadata.original_name,
                size_bytes=metadata.size_bytes,
                storage_path=artifact_path,
                mime_type=mime_type,
                owner_id=owner_id,
            )
            db.session.add(file)
            db.session.flush()

            task = Task(
                file_id=file.id,
                owner_id=owner_id,
                max_attempts=current_app.config['DISPATCH_MAX_ATTEMPTS'],
            )
            db.session.add(task)
            db.session.commit()
        except SQLAlchemyError as e:
            db.session.rollback()
            safe_remove(artifact_path)
            logger.error('Failed to record upload %s: %s', metadata.original_name, e)
            raise StorageFailure('Failed to save file to database')

        logger.info('Recorded file %s (%s, %d bytes, owner=%s)',
                    file.id, metadata.original_name, metadata.size_bytes, owner_id)
        return file, task
