"""Request owner resolution. Identity is taken from the request as given."""

from functools import wraps

from flask import g, request, session

ANONYMOUS_OWNER = "anonymous"


def current_owner() -> str:
    """Owner id from the session, else the X-User-Id header, else anonymous."""
    return (
        session.get('username')
        or request.headers.get('X-User-Id', '').strip()
        or ANONYMOUS_OWNER
    )


def owner_required(f):
    """Decorator that stores the request's owner id on ``g.owner_id``."""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        g.owner_id = current_owner()
        return f(*args, **kwargs)
    return decorated_function
