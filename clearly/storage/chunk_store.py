"""Staging area for chunked uploads.

Layout::

    <root>/<namespace>/<upload_id>/chunk_<index>
    <root>/<namespace>/<upload_id>/session.json

A session lives only on disk; :meth:`ChunkStore.get_session` rebuilds it by
listing the directory. ``namespace`` partitions uploads per requester so two
clients that happen to pick the same ``upload_id`` never share chunks.
"""
import hashlib
import json
import logging
import os
import re
import shutil
import time
import uuid
from dataclasses import dataclass, field
from typing import Optional

from clearly.errors import InvalidUploadId, StorageFailure

logger = logging.getLogger(__name__)

UPLOAD_ID_PATTERN = re.compile(r'^[A-Za-z0-9_-]{1,128}$')
CHUNK_PREFIX = 'chunk_'
SESSION_FILE = 'session.json'
CLAIM_MARKER = '.finalizing-'


def namespace_for(user_id=None, client_key=None):
    """Staging partition for a requester"""
    if user_id is not None:
        return f'user-{int(user_id)}'
    digest = hashlib.sha256((client_key or 'unknown').encode('utf-8')).hexdigest()
    return f'anon-{digest[:32]}'


def validate_upload_id(upload_id):
    if not upload_id or not UPLOAD_ID_PATTERN.match(upload_id):
        raise InvalidUploadId(
            'Upload id must be 1-128 characters of letters, digits, "-" or "_"'
        )
    return upload_id


def chunk_indices(directory):
    """Indices of the chunk files in ``directory``, ascending"""
    indices = []
    for name in os.listdir(directory):
        if not name.startswith(CHUNK_PREFIX):
            continue
        suffix = name[len(CHUNK_PREFIX):]
        if suffix.isdigit():
            indices.append(int(suffix))
    return sorted(indices)


def chunk_path(directory, index):
    return os.path.join(directory, f'{CHUNK_PREFIX}{index}')


def safe_remove(path):
    """Best-effort removal of a file or directory. Failures are logged only."""
    try:
        if os.path.isdir(path):
            shutil.rmtree(path)
        elif os.path.exists(path):
            os.remove(path)
    except OSError as e:
        logger.warning('Could not clean up %s: %s', path, e)


def _atomic_write(directory, name, data):
    tmp_path = os.path.join(directory, f'.{name}.{uuid.uuid4().hex}.part')
    try:
        with open(tmp_path, 'wb') as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, os.path.join(directory, name))
    except OSError:
        safe_remove(tmp_path)
        raise


@dataclass
class UploadSession:
    upload_id: str
    namespace: str
    received_indices: set = field(default_factory=set)
    expected_total_chunks: Optional[int] = None
    original_filename: Optional[str] = None
    declared_size: Optional[int] = None
    created_at: Optional[float] = None

    @property
    def missing_indices(self):
        if self.expected_total_chunks is None:
            return []
        return sorted(set(range(self.expected_total_chunks)) - self.received_indices)

    def to_dict(self):
        return {
            'uploadId': self.upload_id,
            'receivedChunks': sorted(self.received_indices),
            'totalChunks': self.expected_total_chunks,
            'missingChunks': self.missing_indices,
            'fileName': self.original_filename,
            'fileSize': self.declared_size,
        }


class ChunkStore:
    def __init__(self, root):
        self.root = root

    def session_dir(self, namespace, upload_id):
        validate_upload_id(upload_id)
        return os.path.join(self.root, namespace, upload_id)

    def put_chunk(self, namespace, upload_id, index, data,
                  total_chunks=None, filename=None, declared_size=None):
        """Store one chunk. Re-sending an index replaces the earlier bytes."""
        if index is None or int(index) < 0:
            raise ValueError('Chunk index must be a non-negative integer')
        directory = self.session_dir(namespace, upload_id)
        try:
            os.makedirs(directory, exist_ok=True)
            _atomic_write(directory, f'{CHUNK_PREFIX}{int(index)}', data)
            self._merge_metadata(directory, {
                'totalChunks': total_chunks,
                'fileName': filename,
                'fileSize': declared_size,
            })
        except OSError as e:
            logger.error('Failed to stage chunk %s of upload %s: %s', index, upload_id, e)
            raise StorageFailure(f'Could not store chunk {index}: {e.strerror or e}')
        logger.debug('Staged chunk %s (%d bytes) for upload %s', index, len(data), upload_id)

    def list_chunks(self, namespace, upload_id):
        directory = self.session_dir(namespace, upload_id)
        if not os.path.isdir(directory):
            return []
        return chunk_indices(directory)

    def read_chunk(self, namespace, upload_id, index):
        directory = self.session_dir(namespace, upload_id)
        try:
            with open(chunk_path(directory, index), 'rb') as f:
                return f.read()
        except OSError as e:
            raise StorageFailure(f'Could not read chunk {index}: {e.strerror or e}')

    def get_session(self, namespace, upload_id):
        directory = self.session_dir(namespace, upload_id)
        if not os.path.isdir(directory):
            return None
        metadata = self._read_metadata(directory)
        return UploadSession(
            upload_id=upload_id,
            namespace=namespace,
            received_indices=set(chunk_indices(directory)),
            expected_total_chunks=metadata.get('totalChunks'),
            original_filename=metadata.get('fileName'),
            declared_size=metadata.get('fileSize'),
            created_at=metadata.get('createdAt'),
        )

    def purge(self, namespace, upload_id):
        directory = self.session_dir(namespace, upload_id)
        if os.path.isdir(directory):
            safe_remove(directory)
            return True
        return False

    def claim(self, namespace, upload_id):
        """Atomically take ownership of a staged session for reassembly.

        Returns the claim directory, or None when there is nothing to claim
        (already finalized by someone else, or never started).
        """
        directory = self.session_dir(namespace, upload_id)
        claim_dir = f'{directory}{CLAIM_MARKER}{uuid.uuid4().hex}'
        try:
            os.rename(directory, claim_dir)
        except FileNotFoundError:
            return None
        except OSError as e:
            raise StorageFailure(f'Could not claim upload {upload_id}: {e.strerror or e}')
        return claim_dir

    def release(self, claim_dir, namespace, upload_id):
        """Give a claimed session back so the client can resume it"""
        directory = self.session_dir(namespace, upload_id)
        try:
            os.rename(claim_dir, directory)
            return True
        except OSError as e:
            # A new session with the same id was started meanwhile.
            logger.warning('Could not restore claimed upload %s: %s', upload_id, e)
            safe_remove(claim_dir)
            return False

    def sweep_stale(self, max_age_seconds, claim_timeout_seconds=3600):
        """Drop sessions idle for longer than ``max_age_seconds`` and restore
        finalize claims abandoned by a crashed worker."""
        removed, restored = 0, 0
        if not os.path.isdir(self.root):
            return removed, restored
        now = time.time()
        for namespace in os.listdir(self.root):
            ns_dir = os.path.join(self.root, namespace)
            if not os.path.isdir(ns_dir):
                continue
            for name in os.listdir(ns_dir):
                path = os.path.join(ns_dir, name)
                try:
                    age = now - os.path.getmtime(path)
                except OSError:
                    continue
                if CLAIM_MARKER in name:
                    if age < claim_timeout_seconds:
                        continue
                    upload_id = name.split(CLAIM_MARKER, 1)[0]
                    if self.release(path, namespace, upload_id):
                        logger.info('Restored interrupted finalize for upload %s', upload_id)
                        restored += 1
                elif age > max_age_seconds:
                    logger.info('Removing stale upload session %s/%s', namespace, name)
                    safe_remove(path)
                    removed += 1
        return removed, restored

    def _read_metadata(self, directory):
        path = os.path.join(directory, SESSION_FILE)
        try:
            with open(path, 'r', encoding='utf-8') as f:
                return json.load(f)
        except FileNotFoundError:
            return {}
        except (OSError, ValueError) as e:
            logger.warning('Unreadable session metadata %s: %s', path, e)
            return {}

    def _merge_metadata(self, directory, values):
        metadata = self._read_metadata(directory)
        changed = not metadata
        metadata.setdefault('createdAt', time.time())
        for key, value in values.items():
            if value is not None and metadata.get(key) != value:
                metadata[key] = value
                changed = True
        if changed:
            _atomic_write(directory, SESSION_FILE, json.dumps(metadata).encode('utf-8'))
