from functools import wraps
from flask import jsonify, request
from flask_jwt_extended import get_jwt_identity, verify_jwt_in_request

from clearly.models import User, UserRole
from clearly.services.status import Requester


def client_key():
    """Best identifier we have for an anonymous client"""
    return (
        request.headers.get('X-Client-Id')
        or request.headers.get('CF-Connecting-IP')
        or request.remote_addr
    )


def resolve_requester():
    """Requester for the current request; anonymous when no valid token is sent"""
    email = get_jwt_identity()
    user = User.query.filter_by(email=email).first() if email else None
    if not user:
        return Requester(client_key=client_key())
    return Requester(user_id=user.id, is_admin=user.role == UserRole.ADMIN, client_key=client_key())


def optional_requester(fn):
    """
    Decorator that accepts anonymous and authenticated callers alike and
    passes the resolved ``requester`` to the view.

    Usage:
        @upload_bp.route('/status/<int:file_id>')
        @optional_requester
        def upload_status(file_id, requester):
            ...
    """
    @wraps(fn)
    def wrapper(*args, **kwargs):
        verify_jwt_in_request(optional=True)
        kwargs['requester'] = resolve_requester()
        return fn(*args, **kwargs)

    return wrapper


def admin_required(fn):
    """
    Decorator to require admin role for accessing protected endpoints.
    This decorator should be used after @jwt_required() decorator.
    """
    @wraps(fn)
    def wrapper(*args, **kwargs):
        email = get_jwt_identity()
        user = User.query.filter_by(email=email).first()

        if not user:
            return jsonify({'error': 'User not found'}), 404

        if user.role != UserRole.ADMIN:
            return jsonify({'error': 'Admin access required'}), 403

        return fn(*args, **kwargs)

    return wrapper
