"""
User management.
Handles registration, password authentication and the user-facing progress views.
"""

import hmac
import os
import secrets
from werkzeug.security import generate_password_hash, check_password_hash
from models.groups import ADMIN_GROUP, GROUP_CODES, get_group_progress
from utils.logger import hunt_logger

MIN_USERNAME_LENGTH = 3
MIN_PASSWORD_LENGTH = 4


def get_admin_code():
    """Registration code required to join the admin group"""
    return os.getenv('ADMIN_CODE', 'CYBERADMIN')


def is_admin(user):
    return bool(user) and user['group_code'] == ADMIN_GROUP


def validate_registration(username, password, group_code, admin_code=None):
    """Return an error message for invalid registration input, or None"""
    if not isinstance(username, str) or len(username.strip()) < MIN_USERNAME_LENGTH:
        return f'Username must be at least {MIN_USERNAME_LENGTH} characters'
    if not isinstance(password, str) or len(password) < MIN_PASSWORD_LENGTH:
        return f'Password must be at least {MIN_PASSWORD_LENGTH} characters'
    if group_code not in GROUP_CODES and group_code != ADMIN_GROUP:
        return 'Please select a valid group'
    if group_code == ADMIN_GROUP:
        if not isinstance(admin_code, str) or not hmac.compare_digest(admin_code, get_admin_code()):
            return 'Invalid admin authentication code'
    return None


def register_user(storage, username, password, group_code, admin_code=None):
    """
    Create a user with default progress.
    Raises ValueError with a user-facing message on invalid input or a taken username.
    """
    error = validate_registration(username, password, group_code, admin_code)
    if error:
        raise ValueError(error)

    username = username.strip()
    if storage.get_user_by_username(username):
        raise ValueError('Username already exists')

    user = storage.create_user(username, generate_password_hash(password), group_code)
    hunt_logger.info(f"Registered user {username} in group {group_code}")
    return user


def authenticate_user(storage, username, password):
    """Return the user for valid credentials, None otherwise"""
    if not isinstance(username, str) or not isinstance(password, str):
        return None
    user = storage.get_user_by_username(username.strip())
    if not user or not user['password_hash']:
        return None
    if not check_password_hash(user['password_hash'], password):
        return None
    return user


def get_or_create_sso_admin(storage, email, name=None):
    """Admin user for an SSO login; SSO admins get an unusable random password"""
    user = storage.get_user_by_email(email)
    if user:
        if user['group_code'] != ADMIN_GROUP:
            user = storage.update_user(user['id'], group_code=ADMIN_GROUP)
        return user

    username = name or email.split('@')[0]
    if storage.get_user_by_username(username):
        username = email
    user = storage.create_user(username, generate_password_hash(secrets.token_urlsafe(32)),
                               ADMIN_GROUP, email=email)
    hunt_logger.info(f"Created SSO admin user {username}")
    return user


def sanitize_user(user):
    """Current-user view, no password hash"""
    return {
        'id': user['id'],
        'username': user['username'],
        'groupCode': user['group_code'],
        'isAdmin': is_admin(user),
        'progress': user['progress'],
        'currentChallenge': user['current_challenge'],
        'completedChallenges': user['completed_challenges'],
        'completedQuiz': user['completed_quiz'],
        'lastQuizQuestion': user['last_quiz_question'],
    }


def serialize_user_admin(user):
    """Admin view of a user: everything except the password hash"""
    data = sanitize_user(user)
    data.update({
        'email': user['email'],
        'startedAt': user['started_at'],
        'createdAt': user['created_at'],
        'updatedAt': user['updated_at'],
    })
    return data


def get_user_progress(storage, user):
    """Progress snapshot polled by the dashboard"""
    return {
        'progress': user['progress'],
        'currentChallenge': user['current_challenge'],
        'completedChallenges': user['completed_challenges'],
        'completedQuiz': user['completed_quiz'],
        'lastQuizQuestion': user['last_quiz_question'],
        'groupProgress': get_group_progress(storage, user['group_code']),
    }


def delete_user(storage, user_id):
    deleted = storage.delete_user(user_id)
    if deleted:
        hunt_logger.info(f"Deleted user {user_id}")
    return deleted
