"""
Custom route decorators for access control.

- bearer_required: verifies the HS256 access token in the Authorization
  header and loads the active user it names into g.user.
"""

import logging
from functools import wraps

from flask import current_app, g, request
from jose import JWTError, jwt

from tabletap.errors import Unauthenticated
from tabletap.extensions import db

logger = logging.getLogger(__name__)


def _user_from_token(token):
    from tabletap.models.user import User

    try:
        claims = jwt.decode(
            token,
            current_app.config["AUTH_JWT_SECRET"],
            algorithms=["HS256"],
            audience=current_app.config.get("AUTH_JWT_AUDIENCE"),
        )
    except JWTError as e:
        logger.warning(f"Rejected bearer token: {e}")
        return None

    user_id = claims.get("sub")
    user = db.session.get(User, user_id) if user_id else None
    if user is None or not user.is_active:
        logger.warning(f"Bearer token names unknown or inactive user {user_id}")
        return None
    return user


def bearer_required(f):
    """Require a valid bearer token; sets g.user."""

    @wraps(f)
    def decorated(*args, **kwargs):
        header = request.headers.get("Authorization")
        if not header:
            raise Unauthenticated("Missing Authorization header")

        scheme, _, token = header.partition(" ")
        user = None
        if scheme.lower() == "bearer" and token.strip():
            user = _user_from_token(token.strip())
        if user is None:
            raise Unauthenticated("Failed to authenticate user")

        g.user = user
        return f(*args, **kwargs)

    return decorated
