"""
Identity middleware: ``Authorization: Bearer <jwt>`` → ``g.current_user``.

Resolution never fails a request by itself; endpoints wrapped in
``login_required`` answer 401 when no user was resolved.
"""

import functools

from flask import g, request

from certflow.services.jwt_service import user_from_token
from certflow.utils.errors import E, api_error

PUBLIC_PATHS = ("/api/v1/health",)


def _bearer_token():
    scheme, _, token = request.headers.get("Authorization", "").partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def init_identity_middleware(app):

    @app.before_request
    def _resolve_identity():
        g.current_user = None
        if not request.path.startswith("/api/") or request.path.startswith(PUBLIC_PATHS):
            return
        token = _bearer_token()
        if token:
            g.current_user = user_from_token(token)


def login_required(fn):
    """401 unless the request carries a token for an existing user."""

    @functools.wraps(fn)
    def wrapper(*args, **kwargs):
        if g.get("current_user") is None:
            return api_error(E.UNAUTHENTICATED, "Authentication required")
        return fn(*args, **kwargs)

    return wrapper
