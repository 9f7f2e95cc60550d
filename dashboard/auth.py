"""
Session Authentication Helpers for the JobHub Dashboard

The login layer in front of the dashboard stores the signed-in user in the
Flask session as {'uid', 'email', 'name', 'role'}. These helpers read it and
guard the JSON API.
"""

import functools
from typing import Optional

from flask import session, jsonify


def get_current_user() -> Optional[dict]:
    """Get the current logged-in user from session."""
    return session.get('user')


def get_current_user_id() -> Optional[str]:
    """Get the current user's ID, or None if not logged in."""
    user = get_current_user()
    if not user:
        return None
    return user.get('uid')


def is_authenticated() -> bool:
    """Check if a user is currently authenticated."""
    return get_current_user_id() is not None


def login_user(uid: str, email: str = None, name: str = '', role: str = 'user') -> None:
    """Store a user in the session."""
    session['user'] = {
        'uid': uid,
        'email': email,
        'name': name,
        'role': role,
    }


def logout_user():
    """Log out the current user by clearing the session."""
    session.pop('user', None)


def requires_api_auth(f):
    """
    Decorator to require authentication for a JSON API route.
    Returns 401 if not authenticated.
    """
    @functools.wraps(f)
    def decorated_function(*args, **kwargs):
        if not is_authenticated():
            return jsonify({'error': 'Not authenticated'}), 401
        return f(*args, **kwargs)
    return decorated_function
