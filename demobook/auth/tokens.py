import hashlib
import logging
from typing import Optional

from flask import current_app
from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer

from demobook import db
from demobook.models.user import User


log = logging.getLogger(__name__)

MAGIC_LINK = "magic-link"
PASSWORD_RESET = "password-reset"


def _serializer() -> URLSafeTimedSerializer:
    return URLSafeTimedSerializer(current_app.config["SECRET_KEY"])


def _fingerprint(user) -> str:
    # Changes on every sign-in and password change, which spends outstanding tokens
    last_login = user.last_login_at.isoformat() if user.last_login_at else ""
    raw = f"{user.password_hash or ''}|{last_login}"
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()[:16]


def make_token(user, purpose: str) -> str:
    return _serializer().dumps(
        {"uid": user.id, "email": user.email, "fp": _fingerprint(user)},
        salt=purpose,
    )


def load_token(token: str, purpose: str, max_age: Optional[int] = None) -> Optional[dict]:
    """Decoded payload, or None if the token is expired or tampered with."""
    if max_age is None:
        max_age = current_app.config["MAGIC_LINK_MAX_AGE"]
    try:
        return _serializer().loads(token, salt=purpose, max_age=max_age)
    except SignatureExpired:
        log.warning("Expired %s token", purpose)
        return None
    except BadSignature:
        log.warning("Invalid %s token signature", purpose)
        return None


def user_for_token(token: str, purpose: str) -> Optional[User]:
    """The user a still-unused token was issued to, or None."""
    payload = load_token(token, purpose)
    if not payload:
        return None
    user = db.session.get(User, payload.get("uid"))
    if user is None or user.email != payload.get("email"):
        return None
    if payload.get("fp") != _fingerprint(user):
        log.warning("Reused %s token for user %s", purpose, user.id)
        return None
    return user
