from functools import wraps
from flask import request, jsonify
from flask_login import (
    LoginManager,
    login_user,
    logout_user,
    current_user,
    login_required
)
import logging
from datetime import datetime

from database.models import db, User
from modules.utils import record_audit_log, ValidationError

logger = logging.getLogger(__name__)

login_manager = LoginManager()


@login_manager.user_loader
def load_user(user_id):
    """Load the session user."""
    try:
        return db.session.get(User, int(user_id))
    except (TypeError, ValueError):
        return None


@login_manager.unauthorized_handler
def unauthorized():
    return jsonify({'success': False, 'message': 'Authentication required'}), 401


ROLE_PERMISSIONS = {
    'user': {'view', 'create', 'edit', 'report', 'assistant', 'documents'},
    'admin': {'view', 'create', 'edit', 'report', 'assistant', 'documents', 'delete', 'users'},
    'superuser': {'view', 'create', 'edit', 'report', 'assistant', 'documents', 'delete', 'users',
                  'manage_superusers'},
}


def role_allows(role, permission):
    return permission in ROLE_PERMISSIONS.get(role, set())


def check_permission(permission, user=None):
    """Check the user (default: current user) against the role policy."""
    user = user if user is not None else current_user
    if not user or not user.is_authenticated or not user.is_active:
        return False
    return role_allows(user.role, permission)


def is_admin(user=None):
    return check_permission('users', user)


def is_superuser(user=None):
    return check_permission('manage_superusers', user)


def permission_required(permission):
    """Decorator enforcing one policy action."""
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            if not current_user.is_authenticated:
                return unauthorized()

            if not check_permission(permission):
                return jsonify({'success': False, 'message': 'You do not have permission to perform this action'}), 403

            return f(*args, **kwargs)
        return decorated_function
    return decorator


def admin_required(f):
    return permission_required('users')(f)


def superuser_required(f):
    return permission_required('manage_superusers')(f)


def authenticate(username, password):
    """Return the active user matching the credentials, or None."""
    if not username or not password:
        return None
    user = User.query.filter_by(username=username).first()
    if user and user.is_active and user.check_password(password):
        return user
    return None


def register_auth_routes(app):

    @app.route('/api/login', methods=['POST'])
    def login():
        data = request.get_json(silent=True) or {}
        username = data.get('username')
        password = data.get('password')
        if not username or not password:
            raise ValidationError('Username and password are required')

        user = User.query.filter_by(username=username).first()
        if not user or not user.check_password(password):
            return jsonify({'success': False, 'message': 'Invalid username or password'}), 401

        if not user.is_active:
            return jsonify({'success': False, 'message': 'Account is disabled'}), 403

        login_user(user, remember=bool(data.get('remember')))
        user.last_login = datetime.utcnow()
        db.session.commit()
        record_audit_log('login', 'users', user.user_id)
        logger.info(f"User {user.username} logged in")

        return jsonify({'success': True, 'data': user.to_dict()})

    @app.route('/api/logout', methods=['POST'])
    @login_required
    def logout():
        record_audit_log('logout', 'users', current_user.user_id)
        logout_user()
        return jsonify({'success': True, 'message': 'Logged out'})

    @app.route('/api/user')
    @login_required
    def get_session_user():
        return jsonify({'success': True, 'data': current_user.to_dict()})

    return app
