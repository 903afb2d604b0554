"""
User accounts and assistant conversations
"""

import logging

from flask import jsonify, request
from flask_login import login_required, current_user

from database.models import db, User, UserConversation, AIMessage, USER_ROLES
from modules.auth import permission_required, is_admin, is_superuser, admin_required, superuser_required
from modules.utils import (
    record_audit_log, ValidationError, PermissionDeniedError, NotFoundError, ConflictError,
    require_fields, parse_bool
)

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 8


def _check_password(password, confirm_password):
    if not isinstance(password, str) or len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(f'Password must be at least {MIN_PASSWORD_LENGTH} characters')
    if confirm_password is not None and password != confirm_password:
        raise ValidationError('Passwords do not match')


def _check_role(role):
    if role not in USER_ROLES:
        raise ValidationError(f"role must be one of: {', '.join(USER_ROLES)}")
    return role


def _text(data, field):
    value = data.get(field)
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f'{field} must be a non-empty string')
    return value.strip()


def _check_unique(username=None, email=None, exclude_id=None):
    if username:
        existing = User.query.filter_by(username=username).first()
        if existing and existing.user_id != exclude_id:
            raise ConflictError('Username already exists')
    if email:
        existing = User.query.filter_by(email=email).first()
        if existing and existing.user_id != exclude_id:
            raise ConflictError('Email already exists')


class UserManager:
    """Account rules for the three roles."""

    @staticmethod
    def get_user(user_id):
        user = db.session.get(User, user_id)
        if not user:
            raise NotFoundError('User not found')
        return user

    @staticmethod
    def get_visible_user(actor, user_id):
        if actor.user_id != user_id and not is_admin(actor):
            raise PermissionDeniedError('You can only view your own account')
        return UserManager.get_user(user_id)

    @staticmethod
    def list_users():
        return User.query.order_by(User.username).all()

    @staticmethod
    def create_user(actor, data):
        require_fields(data, ['username', 'email', 'password'])
        role = _check_role(data.get('role') or 'user')
        if role == 'superuser' and not is_superuser(actor):
            raise PermissionDeniedError('Only a superuser can create another superuser')

        username = _text(data, 'username')
        email = _text(data, 'email')
        is_active = parse_bool(data.get('is_active', True), 'is_active')
        _check_password(data.get('password'), data.get('confirm_password'))
        _check_unique(username, email)

        user = User(
            username=username,
            email=email,
            role=role,
            first_name=data.get('first_name'),
            last_name=data.get('last_name'),
            is_active=is_active
        )
        user.set_password(data['password'])
        db.session.add(user)
        db.session.commit()
        record_audit_log('create', 'users', user.user_id, None, user.to_dict())
        return user

    @staticmethod
    def update_user(actor, user_id, data):
        user = UserManager.get_user(user_id)
        editing_self = actor.user_id == user.user_id
        if not editing_self and not is_admin(actor):
            raise PermissionDeniedError('You can only edit your own account')
        if user.role == 'superuser' and not editing_self and not is_superuser(actor):
            raise PermissionDeniedError('Only a superuser can edit another superuser')

        old_data = user.to_dict()

        if 'role' in data and data['role'] != user.role:
            new_role = _check_role(data['role'])
            if not is_admin(actor):
                raise PermissionDeniedError('Only administrators can change roles')
            if 'superuser' in (new_role, user.role) and not is_superuser(actor):
                raise PermissionDeniedError('Only a superuser can grant or remove superuser access')
            if UserManager.is_last_superuser(user):
                raise ConflictError('Cannot demote the last superuser')
            user.role = new_role

        is_active = parse_bool(data['is_active'], 'is_active') if 'is_active' in data else user.is_active
        if is_active != bool(user.is_active):
            if not is_admin(actor):
                raise PermissionDeniedError('Only administrators can enable or disable accounts')
            if user.role == 'superuser' and not is_superuser(actor):
                raise PermissionDeniedError('Only a superuser can disable a superuser')
            if not is_active and UserManager.is_last_superuser(user):
                raise ConflictError('Cannot disable the last superuser')
            user.is_active = is_active

        names = {field: _text(data, field) for field in ('username', 'email') if field in data}
        _check_unique(names.get('username'), names.get('email'), exclude_id=user.user_id)
        for field, value in names.items():
            setattr(user, field, value)
        for field in ('first_name', 'last_name'):
            if field in data:
                setattr(user, field, data[field])

        db.session.commit()
        record_audit_log('update', 'users', user.user_id, old_data, user.to_dict())
        return user

    @staticmethod
    def change_password(actor, user_id, data):
        user = UserManager.get_user(user_id)
        editing_self = actor.user_id == user.user_id
        if not editing_self and not is_admin(actor):
            raise PermissionDeniedError('You can only change your own password')
        if user.role == 'superuser' and not editing_self and not is_superuser(actor):
            raise PermissionDeniedError('Only a superuser can reset a superuser password')

        if editing_self:
            if not user.check_password(data.get('current_password') or ''):
                raise ValidationError('Current password is incorrect')

        _check_password(data.get('new_password'), data.get('confirm_password'))
        user.set_password(data['new_password'])
        db.session.commit()
        record_audit_log('password_change', 'users', user.user_id)

    @staticmethod
    def superuser_count():
        """Active superusers only; a disabled one cannot sign in."""
        return User.query.filter_by(role='superuser', is_active=True).count()

    @staticmethod
    def is_last_superuser(user):
        return user.role == 'superuser' and user.is_active and UserManager.superuser_count() <= 1

    @staticmethod
    def delete_user(actor, user_id):
        user = UserManager.get_user(user_id)
        if UserManager.is_last_superuser(user):
            raise ConflictError('Cannot delete the last superuser')

        old_data = user.to_dict()
        AIMessage.query.filter_by(user_id=user.user_id).delete(synchronize_session=False)
        db.session.delete(user)
        db.session.commit()
        record_audit_log('delete', 'users', user_id, old_data, None)
        logger.info(f"User {old_data['username']} deleted")

    # ======================= Conversations =======================

    @staticmethod
    def list_conversations(actor, user_id):
        if actor.user_id != user_id and not is_admin(actor):
            raise PermissionDeniedError('You can only view your own conversations')
        UserManager.get_user(user_id)
        return UserConversation.query.filter_by(user_id=user_id)\
            .order_by(UserConversation.updated_at.desc()).all()

    @staticmethod
    def create_conversation(actor, user_id, data):
        if actor.user_id != user_id:
            raise PermissionDeniedError('You can only create conversations for yourself')
        conversation = UserConversation(user_id=user_id, title=data.get('title') or 'New Conversation')
        db.session.add(conversation)
        db.session.commit()
        return conversation

    @staticmethod
    def delete_conversation(actor, conversation_id):
        conversation = db.session.get(UserConversation, conversation_id)
        if not conversation:
            raise NotFoundError('Conversation not found')
        if conversation.user_id != actor.user_id and not is_admin(actor):
            raise PermissionDeniedError('You can only delete your own conversations')

        AIMessage.query.filter_by(conversation_id=str(conversation_id)).delete(synchronize_session=False)
        db.session.delete(conversation)
        db.session.commit()


def register_user_routes(app):

    @app.route('/api/users')
    @login_required
    @admin_required
    def get_users():
        return jsonify({'success': True, 'data': [u.to_dict() for u in UserManager.list_users()]})

    @app.route('/api/users/<int:user_id>')
    @login_required
    def get_user(user_id):
        user = UserManager.get_visible_user(current_user, user_id)
        return jsonify({'success': True, 'data': user.to_dict()})

    @app.route('/api/users', methods=['POST'])
    @login_required
    @admin_required
    def create_user():
        user = UserManager.create_user(current_user, request.get_json(silent=True) or {})
        return jsonify({'success': True, 'data': user.to_dict(), 'message': 'User created'}), 201

    @app.route('/api/users/<int:user_id>', methods=['PUT', 'PATCH'])
    @login_required
    def update_user(user_id):
        user = UserManager.update_user(current_user, user_id, request.get_json(silent=True) or {})
        return jsonify({'success': True, 'data': user.to_dict()})

    @app.route('/api/users/<int:user_id>/password', methods=['POST', 'PUT'])
    @login_required
    def change_password(user_id):
        UserManager.change_password(current_user, user_id, request.get_json(silent=True) or {})
        return jsonify({'success': True, 'message': 'Password updated'})

    @app.route('/api/users/<int:user_id>', methods=['DELETE'])
    @login_required
    @superuser_required
    def delete_user(user_id):
        UserManager.delete_user(current_user, user_id)
        return jsonify({'success': True, 'message': 'User deleted'})

    @app.route('/api/users/<int:user_id>/conversations')
    @login_required
    @permission_required('assistant')
    def get_conversations(user_id):
        conversations = UserManager.list_conversations(current_user, user_id)
        return jsonify({'success': True, 'data': [c.to_dict() for c in conversations]})

    @app.route('/api/users/<int:user_id>/conversations', methods=['POST'])
    @login_required
    @permission_required('assistant')
    def create_conversation(user_id):
        conversation = UserManager.create_conversation(current_user, user_id, request.get_json(silent=True) or {})
        return jsonify({'success': True, 'data': conversation.to_dict()}), 201

    @app.route('/api/conversations/<int:conversation_id>', methods=['DELETE'])
    @login_required
    @permission_required('assistant')
    def delete_conversation(conversation_id):
        UserManager.delete_conversation(current_user, conversation_id)
        return jsonify({'success': True, 'message': 'Conversation deleted'})

    return app
