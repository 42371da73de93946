"""
Bearer token handling for API callers.

Login lives upstream; this module only signs short-lived HS256 access tokens
for a known User and turns a presented token back into that User. Claims:

    sub   user id (string)
    role  account role at issue time, informational only
    type  always "access"
    iat / exp / jti

Authorisation never trusts ``role``: services re-read the user row and the
project's ownership columns on every call.
"""

import logging
import uuid
from datetime import datetime, timedelta, timezone

import jwt
from flask import current_app

from certflow.models import db
from certflow.models.auth import User

logger = logging.getLogger(__name__)

ALGORITHM = "HS256"
TOKEN_TYPE = "access"


def _signing_key():
    return current_app.config.get("JWT_SECRET_KEY") or current_app.config["SECRET_KEY"]


def generate_access_token(user, *, expires_in=None) -> str:
    issued = datetime.now(timezone.utc)
    ttl = expires_in if expires_in is not None else current_app.config.get("JWT_ACCESS_EXPIRES", 900)
    claims = {
        "sub": str(user.id),
        "role": user.role.value,
        "type": TOKEN_TYPE,
        "iat": issued,
        "exp": issued + timedelta(seconds=ttl),
        "jti": uuid.uuid4().hex,
    }
    return jwt.encode(claims, _signing_key(), algorithm=ALGORITHM)


def decode_access_token(token: str) -> dict:
    """Verified claims of ``token``; raises ``jwt.InvalidTokenError`` subclasses."""
    claims = jwt.decode(token, _signing_key(), algorithms=[ALGORITHM], options={"require": ["sub", "exp"]})
    if claims.get("type") != TOKEN_TYPE:
        raise jwt.InvalidTokenError(f"unexpected token type {claims.get('type')!r}")
    return claims


def user_from_token(token: str):
    """The User a token was issued for, or None when it is unusable."""
    try:
        user_id = int(decode_access_token(token)["sub"])
    except jwt.ExpiredSignatureError:
        logger.info("Rejected expired access token")
        return None
    except (jwt.InvalidTokenError, KeyError, ValueError):
        logger.info("Rejected malformed access token")
        return None
    user = db.session.get(User, user_id)
    if user is None:
        logger.warning("Access token for unknown user id=%s", user_id, extra={"user_id": user_id})
    return user
