import logging
import os
import secrets
import time
import uuid

from werkzeug.utils import secure_filename

from clearly.errors import AlreadyFinalized, IncompleteUpload, StorageFailure
from clearly.storage.chunk_store import chunk_indices, chunk_path, safe_remove

logger = logging.getLogger(__name__)

INCOMING_DIR = '.incoming'
COPY_BUFFER_SIZE = 1024 * 1024


def storage_filename(original_filename):
    """Collision-resistant storage name that keeps the original extension"""
    ext = os.path.splitext(secure_filename(original_filename or ''))[1].lower()
    return f'{int(time.time() * 1000)}_{secrets.token_hex(8)}{ext}'


class ArtifactStorage:
    """Durable storage root. Artifacts only appear here via atomic rename."""

    def __init__(self, root):
        self.root = root
        self.incoming = os.path.join(root, INCOMING_DIR)

    def temp_path(self):
        os.makedirs(self.incoming, exist_ok=True)
        return os.path.join(self.incoming, f'{uuid.uuid4().hex}.part')

    def publish(self, temp_path, original_filename):
        """Move a fully written temp file into the storage root"""
        final_path = os.path.join(self.root, storage_filename(original_filename))
        os.replace(temp_path, final_path)
        return final_path

    def save_stream(self, stream, original_filename):
        """Write an incoming stream to durable storage. Returns (path, size)."""
        tmp_path = self.temp_path()
        size = 0
        try:
            with open(tmp_path, 'wb') as f:
                while True:
                    block = stream.read(COPY_BUFFER_SIZE)
                    if not block:
                        break
                    f.write(block)
                    size += len(block)
                f.flush()
                os.fsync(f.fileno())
            return self.publish(tmp_path, original_filename), size
        except OSError as e:
            safe_remove(tmp_path)
            logger.error('Failed to store upload %s: %s', original_filename, e)
            raise StorageFailure(f'Could not store file: {e.strerror or e}')


class Reassembler:
    def __init__(self, chunk_store, storage):
        self.chunk_store = chunk_store
        self.storage = storage

    def finalize(self, namespace, upload_id, expected_total_chunks, original_filename, record=None):
        """Concatenate a complete chunk set into one artifact.

        Returns ``(artifact_path, size)``. Staged chunks are purged on success
        and kept on failure so the client can re-send only what is missing.

        ``record(artifact_path, size)`` runs while the chunks are still held
        by the claim. If it raises, the artifact is removed and the chunks
        are given back, so the same finalize can simply be retried.
        """
        directory = self.chunk_store.session_dir(namespace, upload_id)
        try:
            present = chunk_indices(directory)
        except FileNotFoundError:
            # Never started, or another request claimed it first
            raise AlreadyFinalized(f'No staged chunks for upload {upload_id}')
        if expected_total_chunks is None or int(expected_total_chunks) < 1:
            raise IncompleteUpload('totalChunks must be a positive integer')
        expected_total_chunks = int(expected_total_chunks)
        self._check_complete(present, expected_total_chunks, upload_id)

        claim_dir = self.chunk_store.claim(namespace, upload_id)
        if claim_dir is None:
            raise AlreadyFinalized(f'Upload {upload_id} is already being finalized')

        try:
            # Re-check on the claimed copy; a concurrent abandon may have raced us.
            indices = chunk_indices(claim_dir)
            self._check_complete(indices, expected_total_chunks, upload_id)
            artifact_path, size = self._concatenate(claim_dir, indices, original_filename)
        except (IncompleteUpload, StorageFailure):
            self.chunk_store.release(claim_dir, namespace, upload_id)
            raise
        except OSError as e:
            self.chunk_store.release(claim_dir, namespace, upload_id)
            raise StorageFailure(f'Could not reassemble upload {upload_id}: {e.strerror or e}')

        if record is not None:
            try:
                record(artifact_path, size)
            except Exception:
                logger.warning('Recording upload %s failed; chunks kept for retry', upload_id)
                safe_remove(artifact_path)
                self.chunk_store.release(claim_dir, namespace, upload_id)
                raise

        safe_remove(claim_dir)
        logger.info('Reassembled upload %s from %d chunks (%d bytes)',
                    upload_id, expected_total_chunks, size)
        return artifact_path, size

    def _check_complete(self, indices, expected_total_chunks, upload_id):
        present = set(indices)
        expected = set(range(expected_total_chunks))
        missing = expected - present
        unexpected = present - expected
        if missing or unexpected:
            logger.info('Upload %s incomplete: missing=%s unexpected=%s',
                        upload_id, sorted(missing), sorted(unexpected))
            raise IncompleteUpload(
                f'Upload {upload_id} does not have exactly {expected_total_chunks} chunks',
                missing=missing,
                unexpected=unexpected,
            )

    def _concatenate(self, directory, indices, original_filename):
        tmp_path = self.storage.temp_path()
        size = 0
        try:
            with open(tmp_path, 'wb') as out:
                for index in sorted(indices):
                    with open(chunk_path(directory, index), 'rb') as part:
                        while True:
                            block = part.read(COPY_BUFFER_SIZE)
                            if not block:
                                break
                            out.write(block)
                            size += len(block)
                out.flush()
                os.fsync(out.fileno())
            return self.storage.publish(tmp_path, original_filename), size
        except OSError:
            safe_remove(tmp_path)
            raise
