import os

import pytest

from clearly import cache, db
from clearly.errors import UnknownFile
from clearly.models import File, UserRole
from clearly.services import (
    ANONYMOUS, ProcessingDispatcher, Requester, UploadFinalizer, UploadMetadata, can_view, get_status
)


def _text_file(app, owner_id=None):
    path = os.path.join(app.config['UPLOAD_FOLDER'], f'1700000000000_{owner_id}.txt')
    with open(path, 'wb') as f:
        f.write(b'Follow-up visit, blood pressure stable.')
    file, _ = UploadFinalizer().commit_upload(path, UploadMetadata('visit.txt', 39, 'text/plain'), owner_id)
    return file.id


def test_can_view_rules():
    owner = Requester(user_id=1)
    other = Requester(user_id=2)
    admin = Requester(user_id=3, is_admin=True)

    assert can_view(None, ANONYMOUS)
    assert not can_view(1, ANONYMOUS)
    assert can_view(1, owner)
    assert not can_view(1, other)
    assert can_view(1, admin)
    assert can_view(None, admin)


def test_status_of_unknown_file(app):
    with pytest.raises(UnknownFile):
        get_status(999, ANONYMOUS)


def test_status_hidden_from_other_users(app, make_user):
    owner = make_user('owner@example.com')
    file_id = _text_file(app, owner.id)

    with pytest.raises(UnknownFile):
        get_status(file_id, Requester(user_id=owner.id + 100))
    with pytest.raises(UnknownFile):
        get_status(file_id, ANONYMOUS)

    assert get_status(file_id, Requester(user_id=owner.id))['status'] == 'uploaded'


def test_admin_sees_any_file(app, make_user):
    owner = make_user('owner@example.com')
    admin = make_user('admin@example.com', role=UserRole.ADMIN)
    file_id = _text_file(app, owner.id)

    view = get_status(file_id, Requester(user_id=admin.id, is_admin=True))

    assert view['id'] == file_id


def test_terminal_status_is_cached_and_rows_stay_authoritative(app):
    file_id = _text_file(app)
    assert get_status(file_id, ANONYMOUS)['status'] == 'uploaded'
    assert cache.get(f'file_status:{file_id}') is None

    ProcessingDispatcher().dispatch(file_id)
    view = get_status(file_id, ANONYMOUS)

    assert view['status'] == 'processed'
    assert view['notes']['text'].startswith('SOAP:')
    assert cache.get(f'file_status:{file_id}')['view']['status'] == 'processed'

    cache.clear()
    assert get_status(file_id, ANONYMOUS) == view


def test_cached_status_still_checks_ownership(app, make_user):
    owner = make_user('owner@example.com')
    file_id = _text_file(app, owner.id)
    ProcessingDispatcher().dispatch(file_id)
    get_status(file_id, Requester(user_id=owner.id))

    with pytest.raises(UnknownFile):
        get_status(file_id, ANONYMOUS)

    assert db.session.get(File, file_id).owner_id == owner.id


def test_hidden_file_is_indistinguishable_from_missing(app, make_user):
    owner = make_user('owner@example.com')
    file_id = _text_file(app, owner.id)

    with pytest.raises(UnknownFile) as hidden:
        get_status(file_id, ANONYMOUS)
    with pytest.raises(UnknownFile) as missing:
        get_status(file_id + 1000, ANONYMOUS)

    assert hidden.value.status_code == missing.value.status_code == 404
    assert hidden.value.to_dict()['error'] == missing.value.to_dict()['error']
