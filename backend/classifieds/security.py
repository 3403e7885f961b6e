from __future__ import annotations

import datetime as dt

import bcrypt
import jwt

from classifieds.config import jwt_secret, jwt_ttl_minutes


ALGORITHM = "HS256"


def hash_password(password: str) -> str:
    # bcrypt stores algorithm + cost + salt in the resulting hash string.
    password_bytes = password.encode("utf-8")
    salt = bcrypt.gensalt(rounds=12)
    return bcrypt.hashpw(password_bytes, salt).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    try:
        return bcrypt.checkpw(
            password.encode("utf-8"),
            password_hash.encode("utf-8"),
        )
    except ValueError:
        # Invalid hash format (or a password bcrypt refuses to process).
        return False


def create_access_token(*, user_id: int, username: str, email: str, now: dt.datetime | None = None) -> str:
    now = now or dt.datetime.now(dt.timezone.utc)
    exp = now + dt.timedelta(minutes=jwt_ttl_minutes())
    payload = {
        "sub": str(user_id),
        "id": int(user_id),
        "username": username,
        "email": email,
        "iat": int(now.timestamp()),
        "exp": int(exp.timestamp()),
    }
    return jwt.encode(payload, jwt_secret(), algorithm=ALGORITHM)


def decode_access_token(token: str) -> dict:
    """
    Raises `jwt.InvalidTokenError` (or a subclass such as `ExpiredSignatureError`).
    """
    return jwt.decode(token, jwt_secret(), algorithms=[ALGORITHM], options={"require": ["exp", "sub"]})
