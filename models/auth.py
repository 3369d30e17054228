"""
Authentication module.
Resolves the session user, guards user and admin routes, and optionally
signs administrators in via OAuth/SSO.
"""

import os
from functools import wraps
from flask import current_app, g, jsonify, session
from authlib.integrations.flask_client import OAuth
from models.storage import create_storage
from models.users import is_admin
from utils.logger import hunt_logger


def init_oauth(app):
    """Initialize OAuth client"""
    oauth = OAuth(app)

    # Check if OAuth is configured
    client_id = os.getenv('OAUTH_CLIENT_ID')
    client_secret = os.getenv('OAUTH_CLIENT_SECRET')

    if not client_id or not client_secret:
        hunt_logger.info("OAuth not configured; admin SSO disabled, admin code registration only")
        return oauth, None

    # Configure OAuth client (Google by default, but configurable)
    oauth_client = oauth.register(
        name='oauth_provider',
        client_id=client_id,
        client_secret=client_secret,
        server_metadata_url=os.getenv('OAUTH_DISCOVERY_URL', 'https://accounts.google.com/.well-known/openid-configuration'),
        client_kwargs={
            'scope': 'openid email profile'
        }
    )

    return oauth, oauth_client


def get_admin_emails():
    """Get list of admin emails from environment variable"""
    admin_emails_str = os.getenv('ADMIN_EMAILS', '')
    if not admin_emails_str:
        return []
    return [email.strip().lower() for email in admin_emails_str.split(',') if email.strip()]


def is_admin_email(email):
    """Check if email is in the admin whitelist"""
    if not email:
        return False
    return email.lower() in get_admin_emails()


def get_storage():
    """Storage bound to the current app, created on first use"""
    storage = current_app.config.get('STORAGE')
    if storage is None:
        storage = create_storage()
        current_app.config['STORAGE'] = storage
    return storage


def login_user(user):
    session.clear()
    session['user_id'] = user['id']
    session['username'] = user['username']


def logout_user():
    session.clear()


def get_current_user():
    """User for this request's session, or None. A deleted user ends the session."""
    if 'current_user' in g:
        return g.current_user

    user = None
    user_id = session.get('user_id')
    if user_id is not None:
        user = get_storage().get_user(user_id)
        if not user:
            session.clear()
    g.current_user = user
    return user


def require_login(f):
    """Decorator to require an authenticated user"""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if not get_current_user():
            return jsonify({'error': 'Authentication required'}), 401
        return f(*args, **kwargs)

    return decorated_function


def require_admin(f):
    """Decorator to require an authenticated member of the admin group"""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        user = get_current_user()
        if not user:
            return jsonify({'error': 'Authentication required'}), 401
        if not is_admin(user):
            hunt_logger.warning(f"Non-admin {user['username']} tried to reach an admin route")
            return jsonify({'error': 'Admin access required'}), 403
        return f(*args, **kwargs)

    return decorated_function


def log_admin_action(user, action, details=None):
    """Log admin actions for audit trail"""
    username = user['username'] if user else 'anonymous'
    hunt_logger.info(f"ADMIN AUDIT - {username}: {action}" + (f" ({details})" if details else ""))
