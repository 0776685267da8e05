import os
import time

import pytest

from clearly.errors import InvalidUploadId
from clearly.storage import ChunkStore, namespace_for


@pytest.fixture
def store(tmp_path):
    return ChunkStore(str(tmp_path / 'chunks'))


def test_put_chunk_is_idempotent_per_index(store):
    store.put_chunk('user-1', 'upload-1', 0, b'first')
    store.put_chunk('user-1', 'upload-1', 0, b'second')

    assert store.list_chunks('user-1', 'upload-1') == [0]
    assert store.read_chunk('user-1', 'upload-1', 0) == b'second'


def test_list_chunks_is_numeric_order(store):
    for index in (10, 2, 0, 1):
        store.put_chunk('user-1', 'upload-1', index, b'x')

    assert store.list_chunks('user-1', 'upload-1') == [0, 1, 2, 10]


def test_list_chunks_for_unknown_session_is_empty(store):
    assert store.list_chunks('user-1', 'never-started') == []
    assert store.get_session('user-1', 'never-started') is None


def test_negative_index_rejected(store):
    with pytest.raises(ValueError):
        store.put_chunk('user-1', 'upload-1', -1, b'x')


@pytest.mark.parametrize('upload_id', ['', '../escape', 'a/b', 'x' * 129, 'dot.dot'])
def test_upload_id_must_be_path_safe(store, upload_id):
    with pytest.raises(InvalidUploadId):
        store.put_chunk('user-1', upload_id, 0, b'x')


def test_session_reports_metadata_and_missing_indices(store):
    store.put_chunk('user-1', 'upload-1', 0, b'a', total_chunks=3, filename='visit.m4a', declared_size=3)
    store.put_chunk('user-1', 'upload-1', 2, b'c')

    session = store.get_session('user-1', 'upload-1')

    assert session.received_indices == {0, 2}
    assert session.expected_total_chunks == 3
    assert session.original_filename == 'visit.m4a'
    assert session.missing_indices == [1]
    assert session.to_dict()['receivedChunks'] == [0, 2]


def test_namespaces_are_isolated(store):
    store.put_chunk(namespace_for(user_id=1), 'shared', 0, b'one')
    store.put_chunk(namespace_for(user_id=2), 'shared', 1, b'two')

    assert store.list_chunks(namespace_for(user_id=1), 'shared') == [0]
    assert store.list_chunks(namespace_for(user_id=2), 'shared') == [1]


def test_anonymous_namespace_depends_on_client_key():
    assert namespace_for(client_key='10.0.0.1') == namespace_for(client_key='10.0.0.1')
    assert namespace_for(client_key='10.0.0.1') != namespace_for(client_key='10.0.0.2')
    assert namespace_for(user_id=7) == 'user-7'


def test_purge_removes_session(store):
    store.put_chunk('user-1', 'upload-1', 0, b'a')

    assert store.purge('user-1', 'upload-1') is True
    assert store.purge('user-1', 'upload-1') is False
    assert store.get_session('user-1', 'upload-1') is None


def test_claim_is_exclusive(store):
    store.put_chunk('user-1', 'upload-1', 0, b'a')

    claim_dir = store.claim('user-1', 'upload-1')

    assert claim_dir is not None
    assert store.claim('user-1', 'upload-1') is None
    assert store.release(claim_dir, 'user-1', 'upload-1') is True
    assert store.list_chunks('user-1', 'upload-1') == [0]


def test_sweep_stale_removes_old_sessions_and_restores_claims(store):
    store.put_chunk('user-1', 'old', 0, b'a')
    store.put_chunk('user-1', 'fresh', 0, b'b')
    store.put_chunk('user-1', 'crashed', 0, b'c')
    claim_dir = store.claim('user-1', 'crashed')

    long_ago = time.time() - 7200
    os.utime(store.session_dir('user-1', 'old'), (long_ago, long_ago))
    os.utime(claim_dir, (long_ago, long_ago))

    removed, restored = store.sweep_stale(max_age_seconds=3600, claim_timeout_seconds=3600)

    assert (removed, restored) == (1, 1)
    assert store.get_session('user-1', 'old') is None
    assert store.list_chunks('user-1', 'fresh') == [0]
    assert store.list_chunks('user-1', 'crashed') == [0]
