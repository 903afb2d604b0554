"""
Tests for login, the role policy and account management.
"""

import pytest

from conftest import PASSWORD, create_user, login
from config import TestingConfig
from database.models import db, User, AIMessage, UserConversation
from modules.auth import role_allows, check_permission, authenticate
from modules.users import UserManager
from modules.utils import ConflictError, PermissionDeniedError, ValidationError


class TestRolePolicy:

    @pytest.mark.parametrize('role,permission,allowed', [
        ('user', 'view', True),
        ('user', 'create', True),
        ('user', 'delete', False),
        ('user', 'users', False),
        ('admin', 'delete', True),
        ('admin', 'users', True),
        ('admin', 'manage_superusers', False),
        ('superuser', 'manage_superusers', True),
        ('guest', 'view', False),
    ])
    def test_role_allows(self, role, permission, allowed):
        assert role_allows(role, permission) is allowed

    def test_disabled_users_have_no_permissions(self, app, user_id):
        with app.app_context():
            user = db.session.get(User, user_id)
            assert check_permission('view', user) is True

            user.is_active = False
            assert check_permission('view', user) is False

    def test_authenticate(self, app, user_id):
        with app.app_context():
            assert authenticate('bob', PASSWORD).user_id == user_id
            assert authenticate('bob', 'wrong-password') is None
            assert authenticate('nobody', PASSWORD) is None
            assert authenticate('', '') is None


class TestLoginRoutes:

    def test_login_and_session_user(self, client, user_id):
        response = client.post('/api/login', json={'username': 'bob', 'password': PASSWORD})

        assert response.status_code == 200
        assert response.get_json()['data']['role'] == 'user'
        assert client.get('/api/user').get_json()['data']['username'] == 'bob'

    def test_bad_credentials(self, client, user_id):
        response = client.post('/api/login', json={'username': 'bob', 'password': 'nope'})

        assert response.status_code == 401
        assert response.get_json()['success'] is False

    def test_missing_fields(self, client):
        assert client.post('/api/login', json={'username': 'bob'}).status_code == 400

    def test_disabled_account(self, app, client):
        create_user(app, 'carol', is_active=False)

        response = client.post('/api/login', json={'username': 'carol', 'password': PASSWORD})

        assert response.status_code == 403

    def test_logout_ends_session(self, user_client):
        assert user_client.post('/api/logout').status_code == 200
        assert user_client.get('/api/user').status_code == 401

    def test_health_is_public(self, client):
        assert client.get('/api/health').get_json()['success'] is True


class TestUserManagement:

    def test_admin_creates_user(self, admin_client):
        response = admin_client.post('/api/users', json={
            'username': 'dave', 'email': 'dave@example.com',
            'password': 'longenough', 'confirm_password': 'longenough'
        })

        assert response.status_code == 201
        assert response.get_json()['data']['role'] == 'user'

    def test_admin_cannot_create_superuser(self, admin_client):
        response = admin_client.post('/api/users', json={
            'username': 'eve', 'email': 'eve@example.com', 'password': 'longenough', 'role': 'superuser'
        })

        assert response.status_code == 403

    def test_superuser_creates_superuser(self, superuser_client):
        response = superuser_client.post('/api/users', json={
            'username': 'eve', 'email': 'eve@example.com', 'password': 'longenough', 'role': 'superuser'
        })

        assert response.status_code == 201

    def test_duplicate_username_or_email(self, admin_client):
        response = admin_client.post('/api/users', json={
            'username': 'alice', 'email': 'other@example.com', 'password': 'longenough'
        })
        assert response.status_code == 409

        response = admin_client.post('/api/users', json={
            'username': 'alice2', 'email': 'alice@example.com', 'password': 'longenough'
        })
        assert response.status_code == 409

    def test_password_rules(self, app, admin_id):
        with app.app_context():
            actor = db.session.get(User, admin_id)
            with pytest.raises(ValidationError):
                UserManager.create_user(actor, {'username': 'x', 'email': 'x@example.com', 'password': 'short'})
            with pytest.raises(ValidationError):
                UserManager.create_user(actor, {'username': 'x', 'email': 'x@example.com',
                                                'password': 'longenough', 'confirm_password': 'different'})

    def test_users_cannot_list_accounts(self, user_client):
        assert user_client.get('/api/users').status_code == 403

    def test_user_sees_only_self(self, user_client, user_id, admin_id):
        assert user_client.get(f'/api/users/{user_id}').status_code == 200
        assert user_client.get(f'/api/users/{admin_id}').status_code == 403

    def test_user_cannot_promote_self(self, user_client, user_id):
        response = user_client.put(f'/api/users/{user_id}', json={'role': 'admin'})

        assert response.status_code == 403

    def test_admin_cannot_touch_superuser(self, admin_client, superuser_id):
        response = admin_client.put(f'/api/users/{superuser_id}', json={'first_name': 'Root'})

        assert response.status_code == 403

    def test_admin_disables_user(self, app, admin_client, user_id):
        response = admin_client.put(f'/api/users/{user_id}', json={'is_active': False})

        assert response.status_code == 200
        with app.app_context():
            assert db.session.get(User, user_id).is_active is False

    def test_last_superuser_cannot_be_demoted_or_deleted(self, app, superuser_id):
        with app.app_context():
            actor = db.session.get(User, superuser_id)
            with pytest.raises(ConflictError):
                UserManager.update_user(actor, superuser_id, {'role': 'admin'})
            with pytest.raises(ConflictError):
                UserManager.delete_user(actor, superuser_id)

    def test_last_superuser_cannot_disable_self(self, app, superuser_client, superuser_id):
        response = superuser_client.put(f'/api/users/{superuser_id}', json={'is_active': False})

        assert response.status_code == 409
        with app.app_context():
            assert db.session.get(User, superuser_id).is_active is True

    def test_disabled_superuser_does_not_count(self, app, superuser_id):
        other_id = create_user(app, 'root2', role='superuser')
        with app.app_context():
            actor = db.session.get(User, superuser_id)
            UserManager.update_user(actor, other_id, {'is_active': False})

            with pytest.raises(ConflictError):
                UserManager.update_user(actor, superuser_id, {'is_active': False})
            UserManager.delete_user(actor, other_id)
            assert db.session.get(User, other_id) is None

    def test_admin_disables_user_with_string_flag(self, app, admin_client, user_id):
        response = admin_client.put(f'/api/users/{user_id}', json={'is_active': 'false'})

        assert response.status_code == 200
        with app.app_context():
            assert db.session.get(User, user_id).is_active is False

    @pytest.mark.parametrize('payload', [
        {'username': 'dave', 'email': 'dave@example.com', 'password': 'longenough', 'is_active': 'maybe'},
        {'username': 123, 'email': 'dave@example.com', 'password': 'longenough'},
        {'username': 'dave', 'email': ['dave@example.com'], 'password': 'longenough'},
        {'username': 'dave', 'email': 'dave@example.com', 'password': 12345678},
    ])
    def test_create_rejects_malformed_fields(self, admin_client, payload):
        assert admin_client.post('/api/users', json=payload).status_code == 400

    def test_update_rejects_non_string_username(self, user_client, user_id):
        response = user_client.put(f'/api/users/{user_id}', json={'username': 42})

        assert response.status_code == 400

    def test_second_superuser_can_be_demoted(self, app, superuser_id):
        other_id = create_user(app, 'root2', role='superuser')
        with app.app_context():
            actor = db.session.get(User, superuser_id)
            user = UserManager.update_user(actor, other_id, {'role': 'admin'})

            assert user.role == 'admin'

    def test_only_superuser_deletes_users(self, admin_client, superuser_client, user_id):
        assert admin_client.delete(f'/api/users/{user_id}').status_code == 403
        assert superuser_client.delete(f'/api/users/{user_id}').status_code == 200

    def test_delete_removes_assistant_messages(self, app, superuser_id, user_id):
        with app.app_context():
            db.session.add(AIMessage(user_id=user_id, conversation_id='default', role='user', content='hi'))
            db.session.commit()

            UserManager.delete_user(db.session.get(User, superuser_id), user_id)

            assert AIMessage.query.count() == 0

    def test_change_own_password_requires_current(self, app, user_client, user_id):
        response = user_client.post(f'/api/users/{user_id}/password', json={
            'current_password': 'wrong', 'new_password': 'newpassword1'
        })
        assert response.status_code == 400

        response = user_client.post(f'/api/users/{user_id}/password', json={
            'current_password': PASSWORD, 'new_password': 'newpassword1', 'confirm_password': 'newpassword1'
        })
        assert response.status_code == 200
        with app.app_context():
            assert authenticate('bob', 'newpassword1') is not None

    def test_admin_resets_password_without_current(self, app, admin_client, user_id):
        response = admin_client.post(f'/api/users/{user_id}/password', json={'new_password': 'resetpass1'})

        assert response.status_code == 200
        with app.app_context():
            assert authenticate('bob', 'resetpass1') is not None

    def test_bootstrap_superuser_exists(self, app, superuser_id):
        with app.app_context():
            user = db.session.get(User, superuser_id)
            assert user.role == 'superuser'
            assert user.check_password(TestingConfig.DEFAULT_SUPERUSER_PASSWORD)


class TestConversations:

    def test_create_list_and_delete(self, app, user_client, user_id):
        response = user_client.post(f'/api/users/{user_id}/conversations', json={'title': 'Cash flow'})
        assert response.status_code == 201
        conversation_id = response.get_json()['data']['conversation_id']

        with app.app_context():
            db.session.add(AIMessage(user_id=user_id, conversation_id=str(conversation_id),
                                     role='user', content='hello'))
            db.session.commit()

        listed = user_client.get(f'/api/users/{user_id}/conversations').get_json()['data']
        assert [c['title'] for c in listed] == ['Cash flow']

        assert user_client.delete(f'/api/conversations/{conversation_id}').status_code == 200
        with app.app_context():
            assert UserConversation.query.count() == 0
            assert AIMessage.query.count() == 0

    def test_cannot_create_for_someone_else(self, user_client, admin_id):
        response = user_client.post(f'/api/users/{admin_id}/conversations', json={})

        assert response.status_code == 403

    def test_other_users_conversations_are_private(self, app, user_client, admin_id):
        with app.app_context():
            actor = db.session.get(User, admin_id)
            conversation = UserManager.create_conversation(actor, admin_id, {})
            conversation_id = conversation.conversation_id

        assert user_client.get(f'/api/users/{admin_id}/conversations').status_code == 403
        assert user_client.delete(f'/api/conversations/{conversation_id}').status_code == 403

    def test_permission_denied_error(self, app, user_id, admin_id):
        with app.app_context():
            actor = db.session.get(User, user_id)
            with pytest.raises(PermissionDeniedError):
                UserManager.list_conversations(actor, admin_id)
