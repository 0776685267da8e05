import logging

from flask import Blueprint, current_app, jsonify, request, send_from_directory

from clearly import db
from clearly.errors import PipelineError
from clearly.services import ProcessingDispatcher, UploadFinalizer, UploadMetadata, get_status, guess_mime_type
from clearly.services.finalizer import require_allowed_file
from clearly.services.prompts import PROMPTS
from clearly.storage import get_chunk_store, get_reassembler, namespace_for
from clearly.utils import optional_requester

logger = logging.getLogger(__name__)

upload_bp = Blueprint('upload', __name__)


def _parse_int(value, name, minimum=0, required=True):
    if value is None or value == '':
        if required:
            raise ValueError(f'{name} is required')
        return None
    try:
        parsed = int(value)
    except (TypeError, ValueError):
        raise ValueError(f'{name} must be an integer')
    if parsed < minimum:
        raise ValueError(f'{name} must be at least {minimum}')
    return parsed


def _note_type_from(data):
    note_type = data.get('noteType')
    if note_type and note_type not in PROMPTS:
        raise ValueError(f"noteType must be one of: {', '.join(sorted(PROMPTS))}")
    return note_type


def _dispatch_response(result, message):
    response = {
        'success': True,
        'fileId': result.file_id,
        'status': result.status,
        'file': result.to_dict(),
        'message': message,
    }
    if result.notes is not None:
        response['notes'] = result.notes
    status_code = 202 if result.status == 'sent_to_worker' else 200
    return jsonify(response), status_code


@upload_bp.route('', methods=['PUT', 'POST'])
@optional_requester
def upload_file(requester):
    """Single-request upload, followed by dispatch"""
    try:
        file_storage = request.files.get('file')
        if not file_storage or not file_storage.filename:
            return jsonify({'error': 'No file uploaded'}), 400
        note_type = _note_type_from(request.form)

        finalizer = UploadFinalizer()
        artifact_path, metadata = finalizer.store_upload(file_storage)
        file, _ = finalizer.commit_upload(artifact_path, metadata, requester.user_id)
        logger.info('%s upload of %s stored as file %s',
                    'Anonymous' if requester.is_anonymous else f'User {requester.user_id}',
                    metadata.original_name, file.id)

        result = ProcessingDispatcher().dispatch(file.id, note_type=note_type)
        return _dispatch_response(result, 'File uploaded successfully and sent for processing')

    except ValueError as e:
        return jsonify({'error': 'Invalid request', 'message': str(e)}), 400
    except PipelineError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception as e:
        db.session.rollback()
        logger.exception('Upload failed')
        return jsonify({'error': 'Upload failed', 'message': str(e)}), 500


@upload_bp.route('/chunks', methods=['POST'])
@optional_requester
def upload_chunk(requester):
    """Stage one chunk of a multi-part upload"""
    try:
        chunk = request.files.get('chunk')
        if chunk is None:
            return jsonify({'error': 'Missing chunk file'}), 400

        upload_id = request.form.get('fileId')
        file_name = request.form.get('fileName')
        if not upload_id or not file_name:
            return jsonify({'error': 'Missing required chunk metadata',
                            'message': 'fileId and fileName are required'}), 400
        chunk_index = _parse_int(request.form.get('chunkIndex'), 'chunkIndex')
        total_chunks = _parse_int(request.form.get('totalChunks'), 'totalChunks', minimum=1, required=False)
        file_size = _parse_int(request.form.get('fileSize'), 'fileSize', required=False)
        if total_chunks is not None and chunk_index >= total_chunks:
            return jsonify({'error': 'Invalid chunk index',
                            'message': f'chunkIndex must be below totalChunks ({total_chunks})'}), 400
        require_allowed_file(file_name)

        data = chunk.read()
        get_chunk_store().put_chunk(
            namespace_for(requester.user_id, requester.client_key),
            upload_id,
            chunk_index,
            data,
            total_chunks=total_chunks,
            filename=file_name,
            declared_size=file_size,
        )
        return jsonify({
            'success': True,
            'chunkIndex': chunk_index,
            'chunkSize': len(data),
            'accepted': True,
        }), 200

    except ValueError as e:
        return jsonify({'error': 'Invalid request', 'message': str(e)}), 400
    except PipelineError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception as e:
        logger.exception('Chunk upload failed')
        return jsonify({'error': 'Chunk upload failed', 'message': str(e)}), 500


@upload_bp.route('/chunks/<upload_id>', methods=['GET'])
@optional_requester
def chunk_session(upload_id, requester):
    """Which chunks have arrived, so a client can resume"""
    try:
        session = get_chunk_store().get_session(
            namespace_for(requester.user_id, requester.client_key), upload_id
        )
        if session is None:
            return jsonify({'error': 'Upload session not found'}), 404
        return jsonify(session.to_dict()), 200
    except PipelineError as e:
        return jsonify(e.to_dict()), e.status_code


@upload_bp.route('/chunks/<upload_id>', methods=['DELETE'])
@optional_requester
def abandon_chunk_session(upload_id, requester):
    """Drop a staged upload the client no longer wants"""
    try:
        purged = get_chunk_store().purge(
            namespace_for(requester.user_id, requester.client_key), upload_id
        )
        if not purged:
            return jsonify({'error': 'Upload session not found'}), 404
        return jsonify({'message': 'Upload session abandoned'}), 200
    except PipelineError as e:
        return jsonify(e.to_dict()), e.status_code


@upload_bp.route('/finalize', methods=['POST'])
@optional_requester
def finalize_upload(requester):
    """Reassemble a chunked upload, record it and dispatch it"""
    try:
        data = request.form.to_dict() or request.get_json(silent=True) or {}
        if not data:
            return jsonify({'error': 'Request body is empty'}), 400

        action = data.get('action')
        if action != 'finalize':
            return jsonify({'error': 'Invalid action', 'received': action, 'expected': 'finalize'}), 400

        upload_id = data.get('fileId')
        file_name = data.get('fileName')
        if not upload_id or not file_name:
            return jsonify({'error': 'Missing required parameters',
                            'message': 'fileId and fileName are required'}), 400
        require_allowed_file(file_name)
        note_type = _note_type_from(data)
        declared_size = _parse_int(data.get('fileSize'), 'fileSize', required=False)

        namespace = namespace_for(requester.user_id, requester.client_key)
        total_chunks = _parse_int(data.get('totalChunks'), 'totalChunks', minimum=1, required=False)
        if total_chunks is None:
            # Fall back to the count declared alongside the chunks
            session = get_chunk_store().get_session(namespace, upload_id)
            total_chunks = session.expected_total_chunks if session else None

        recorded = {}

        def record(artifact_path, size):
            if declared_size is not None and declared_size != size:
                logger.warning('Upload %s declared %d bytes but reassembled %d', upload_id, declared_size, size)
            metadata = UploadMetadata(original_name=file_name, size_bytes=size,
                                      mime_type=guess_mime_type(file_name))
            recorded['file'], _ = UploadFinalizer().commit_upload(artifact_path, metadata, requester.user_id)

        # The chunks stay claimed until the File/Task rows are committed
        get_reassembler().finalize(namespace, upload_id, total_chunks, file_name, record=record)
        file = recorded['file']

        result = ProcessingDispatcher().dispatch(file.id, note_type=note_type)
        return _dispatch_response(result, 'Chunked upload finalized successfully and sent for processing')

    except ValueError as e:
        return jsonify({'error': 'Invalid request', 'message': str(e)}), 400
    except PipelineError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception as e:
        db.session.rollback()
        logger.exception('Finalize chunked upload failed')
        return jsonify({'error': 'Finalization failed', 'message': str(e)}), 500


@upload_bp.route('/status/<int:file_id>', methods=['GET'])
@optional_requester
def upload_status(file_id, requester):
    """Current processing state of a file"""
    try:
        view = get_status(file_id, requester)
        return jsonify({
            'status': view['status'],
            'taskStatus': view['taskStatus'],
            'errorMessage': view['errorMessage'],
            'createdAt': view['createdAt'],
            'file': view,
        }), 200
    except PipelineError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        logger.exception('Get upload status failed')
        return jsonify({'error': 'Internal server error'}), 500


@upload_bp.route('/files/<path:filename>', methods=['GET'])
def download_artifact(filename):
    """Raw artifact for the external worker. Names are unguessable tokens."""
    if filename.startswith('.') or '/' in filename:
        return jsonify({'error': 'File not found'}), 404
    return send_from_directory(current_app.config['UPLOAD_FOLDER'], filename)
