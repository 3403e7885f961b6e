from __future__ import annotations

import logging
from dataclasses import dataclass

import jwt
from sqlalchemy import or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from classifieds.errors import (
    AccountNotFoundError,
    ConflictError,
    InvalidCredentialsError,
    InvalidTokenError,
    MissingTokenError,
    NotFoundError,
    ValidationError,
)
from classifieds.models import User
from classifieds.security import create_access_token, decode_access_token, hash_password, verify_password


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Identity:
    id: int
    username: str
    email: str


def _clean(v: str | None) -> str:
    return (v or "").strip()


def _norm_email(v: str | None) -> str:
    return _clean(v).lower()


def _validate_email(email: str) -> None:
    if "@" not in email or email.startswith("@") or email.endswith("@"):
        raise ValidationError("Invalid email")


def verify_token(token: str | None) -> Identity:
    """
    Validate a bearer token and return the identity it was issued for.
    """
    token = _clean(token)
    if not token:
        raise MissingTokenError()
    try:
        payload = decode_access_token(token)
        return Identity(
            id=int(payload["sub"]),
            username=str(payload.get("username") or ""),
            email=str(payload.get("email") or ""),
        )
    except (jwt.InvalidTokenError, KeyError, TypeError, ValueError):
        raise InvalidTokenError()


class CredentialStore:
    """
    Registration, login and password management backed by the users table.
    """

    def __init__(self, db: Session) -> None:
        self.db = db

    def _find_other(self, *, user_id: int | None, username: str = "", email: str = "") -> User | None:
        conds = []
        if username:
            conds.append(User.username == username)
        if email:
            conds.append(User.email == email)
        if not conds:
            return None
        stmt = select(User).where(or_(*conds))
        if user_id is not None:
            stmt = stmt.where(User.id != int(user_id))
        return self.db.execute(stmt.limit(1)).scalars().first()

    def _flush_unique(self) -> None:
        try:
            self.db.flush()
        except IntegrityError:
            # Concurrent requests can still violate the unique constraints after the pre-check.
            self.db.rollback()
            raise ConflictError()

    def register(
        self,
        *,
        username: str,
        email: str,
        password: str,
        first_name: str = "",
        last_name: str = "",
        phone: str = "",
    ) -> int:
        username = _clean(username)
        email = _norm_email(email)
        if not username or not email or not password:
            raise ValidationError("Username, email and password are required")
        _validate_email(email)

        if self._find_other(user_id=None, username=username, email=email):
            raise ConflictError()

        user = User(
            username=username,
            email=email,
            password_hash=hash_password(password),
            first_name=_clean(first_name),
            last_name=_clean(last_name),
            phone=_clean(phone),
        )
        self.db.add(user)
        self._flush_unique()
        logger.info("Registered user id=%s username=%s", user.id, user.username)
        return user.id

    def _by_login(self, login: str) -> User | None:
        return self.db.execute(
            select(User).where((User.username == login) | (User.email == login.lower())).order_by(User.id)
        ).scalars().first()

    def authenticate(self, login: str, password: str) -> str:
        login = _clean(login)
        if not login or not password:
            raise ValidationError("Login and password are required")
        user = self._by_login(login)
        if not user:
            raise AccountNotFoundError()
        if not verify_password(password, user.password_hash):
            logger.info("Rejected login for user id=%s (bad password)", user.id)
            raise InvalidCredentialsError()
        return create_access_token(user_id=user.id, username=user.username, email=user.email)

    def reset_password(self, email: str, new_password: str) -> None:
        email = _norm_email(email)
        if not email or not new_password:
            raise ValidationError("Email and new password are required")
        user = self.db.execute(select(User).where(User.email == email)).scalar_one_or_none()
        if not user:
            raise AccountNotFoundError("No user with this email")
        user.password_hash = hash_password(new_password)
        self.db.add(user)
        logger.warning("Password reset without verification for user id=%s", user.id)

    def get_user(self, user_id: int) -> User:
        user = self.db.get(User, int(user_id))
        if not user:
            raise NotFoundError("User not found")
        return user

    def update_profile(
        self,
        user_id: int,
        *,
        username: str | None = None,
        email: str | None = None,
        password: str | None = None,
        new_password: str | None = None,
    ) -> User:
        user = self.get_user(user_id)

        username = _clean(username) or None
        email = _norm_email(email) or None
        if email:
            _validate_email(email)
        if username or email:
            if self._find_other(user_id=user.id, username=username or "", email=email or ""):
                raise ConflictError()
            if username:
                user.username = username
            if email:
                user.email = email
            self.db.add(user)
            self._flush_unique()

        if password or new_password:
            if not (password and new_password):
                raise ValidationError("Provide both the current and the new password")
            if not verify_password(password, user.password_hash):
                raise InvalidCredentialsError("Current password is incorrect")
            user.password_hash = hash_password(new_password)
            self.db.add(user)
        return user
