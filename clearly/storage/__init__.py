# Storage package
from flask import current_app

from .chunk_store import ChunkStore, UploadSession, namespace_for, validate_upload_id, safe_remove
from .reassembler import ArtifactStorage, Reassembler, storage_filename


def get_chunk_store():
    return ChunkStore(current_app.config['CHUNK_FOLDER'])


def get_artifact_storage():
    return ArtifactStorage(current_app.config['UPLOAD_FOLDER'])


def get_reassembler():
    return Reassembler(get_chunk_store(), get_artifact_storage())
