import logging

from flask import Blueprint, current_app, jsonify, request
from flask_jwt_extended import jwt_required

from clearly import db
from clearly.errors import PipelineError
from clearly.models import Task, TaskStatus
from clearly.schemas import decode_callback
from clearly.services import CompletionReconciler
from clearly.utils import SIGNATURE_HEADER, admin_required, verify_signature

logger = logging.getLogger(__name__)

processing_bp = Blueprint('processing', __name__)


@processing_bp.route('/webhook', methods=['POST'])
def processing_webhook():
    """Completion callback from the external processing worker"""
    try:
        secret = current_app.config.get('WORKER_WEBHOOK_SECRET')
        if secret:
            verify_signature(request.get_data(), request.headers.get(SIGNATURE_HEADER), secret)

        file_id, outcome = decode_callback(request.get_json(silent=True))
        result = CompletionReconciler().apply_callback(file_id, outcome)

        message = 'Callback already applied' if result.duplicate else 'Webhook processed successfully'
        return jsonify({'success': True, 'message': message, **result.to_dict()}), 200

    except PipelineError as e:
        logger.warning('Webhook rejected: %s', e.message)
        return jsonify(e.to_dict()), e.status_code
    except Exception as e:
        db.session.rollback()
        logger.exception('Webhook processing failed')
        return jsonify({'error': 'Internal server error', 'message': str(e)}), 500


@processing_bp.route('/webhook', methods=['GET'])
def webhook_info():
    """Describe the callback format the worker is expected to send"""
    return jsonify({
        'message': 'Processing webhook endpoint',
        'method': 'POST',
        'signatureHeader': SIGNATURE_HEADER if current_app.config.get('WORKER_WEBHOOK_SECRET') else None,
        'expectedFormat': {
            'success': {
                'fileId': 'number',
                'status': 'success',
                'notes': 'object or string',
                'noteType': 'string (optional)',
            },
            'error': {
                'fileId': 'number',
                'status': 'error',
                'error': 'string (optional)',
            },
        },
    }), 200


@processing_bp.route('/tasks', methods=['GET'])
@jwt_required()
@admin_required
def list_tasks():
    """List processing tasks, optionally filtered by status"""
    try:
        status = request.args.get('status')
        limit = min(request.args.get('limit', 50, type=int), 200)

        query = Task.query
        if status:
            try:
                query = query.filter(Task.status == TaskStatus(status))
            except ValueError:
                valid = ', '.join(s.value for s in TaskStatus)
                return jsonify({'error': f'Invalid status. Use one of: {valid}'}), 400

        tasks = query.order_by(Task.created_at.desc()).limit(limit).all()
        return jsonify({'tasks': [task.to_dict() for task in tasks], 'count': len(tasks)}), 200

    except Exception as e:
        logger.exception('Listing tasks failed')
        return jsonify({'error': 'Internal server error', 'message': str(e)}), 500
