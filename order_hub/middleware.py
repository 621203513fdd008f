"""Middleware for the current-user context."""
from functools import wraps
from flask import session, g, current_app
from order_hub.database import get_session
from order_hub.models import AppUser
from order_hub.exceptions import UnauthorizedError


def load_user():
    """
    Load current user into g (Flask's per-request global).

    Called before each request. Sets g.user if the session carries the id of
    an active user; authentication itself happens upstream.
    """
    g.user = None

    try:
        user_id = session.get('user_id')
        if user_id:
            db_session = get_session()
            if not db_session:
                return

            user = db_session.query(AppUser).filter_by(id=user_id, active=True).first()
            if user:
                g.user = user
                g.user_id = user.id
    except Exception as e:
        # Avoid crashing the whole app if context loading fails
        current_app.logger.error(f"Error in load_user: {e}")


def require_login(f):
    """Decorator: Require user to be logged in (401 otherwise)."""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if g.get('user') is None:
            raise UnauthorizedError('Authentication required.', status_code=401)
        return f(*args, **kwargs)
    return decorated_function


def require_admin(f):
    """
    Decorator: Require an admin user (403 otherwise).

    Implies require_login.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if g.get('user') is None:
            raise UnauthorizedError('Authentication required.', status_code=401)
        if not g.user.is_admin():
            raise UnauthorizedError('Admin access required.')
        return f(*args, **kwargs)
    return decorated_function
