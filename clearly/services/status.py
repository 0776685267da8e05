import logging
from dataclasses import dataclass
from typing import Optional

from clearly import cache, db
from clearly.errors import UnknownFile
from clearly.models import File

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Requester:
    user_id: Optional[int] = None
    is_admin: bool = False
    client_key: Optional[str] = None

    @property
    def is_anonymous(self):
        return self.user_id is None


ANONYMOUS = Requester()


def can_view(owner_id, requester):
    """Anonymous requesters see ownerless files, users see their own, admins see all"""
    if requester is None or requester.is_anonymous:
        return owner_id is None
    if requester.is_admin:
        return True
    return owner_id == requester.user_id


def _cache_key(file_id):
    return f'file_status:{file_id}'


def invalidate_status(file_id):
    cache.delete(_cache_key(file_id))


def build_status_view(file):
    task = file.task
    view = {
        'id': file.id,
        'filename': file.filename,
        'originalName': file.original_name,
        'fileSize': file.size_bytes,
        'fileType': file.mime_type,
        'status': file.status.value,
        'taskStatus': task.status.value if task else None,
        'errorMessage': task.error_message if task else None,
        'attempts': task.attempts if task else 0,
        'createdAt': file.created_at.isoformat() if file.created_at else None,
        'updatedAt': file.updated_at.isoformat() if file.updated_at else None,
        'processedAt': task.processed_at.isoformat() if task and task.processed_at else None,
    }
    if file.note is not None:
        view['notes'] = file.note.content
        view['noteType'] = file.note.note_type
    return view


def get_status(file_id, requester):
    """Snapshot of a file's processing state.

    Terminal snapshots never change, so they are served from the cache; the
    rows stay the only authority and the cache can be dropped at any time.
    """
    # A file the requester may not see is reported exactly like a missing one
    cached = cache.get(_cache_key(file_id))
    if cached is not None:
        if not can_view(cached['ownerId'], requester):
            raise UnknownFile(f'File {file_id} not found')
        return dict(cached['view'])

    file = db.session.get(File, file_id)
    if file is None or not can_view(file.owner_id, requester):
        if file is not None:
            logger.info('Status query for file %s denied', file_id)
        raise UnknownFile(f'File {file_id} not found')

    view = build_status_view(file)
    if file.is_terminal:
        cache.set(_cache_key(file_id), {'ownerId': file.owner_id, 'view': view})
    return view
