from __future__ import annotations

import logging

from argon2.exceptions import HashingError
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlmodel import Session, select

from stash_adduser.models import UserCreate, UserORM, UserRead
from stash_adduser.security import hash_password, verify_password
from stash_adduser.services.errors import (
    AuthenticationException,
    AuthorizationException,
    NotFoundException,
    PasswordSetException,
    StoreUnwritableException,
    UserExistsException,
)

logger = logging.getLogger(__name__)


def load_usernames(session: Session) -> set[str]:
    """Read only the username column; nothing else in the store is touched."""
    return set(session.exec(select(UserORM.username)).all())


def create_user(session: Session, payload: UserCreate) -> UserRead:
    user = UserORM(username=payload.username, is_admin=payload.is_admin)
    session.add(user)
    try:
        session.commit()
    except IntegrityError as exc:
        session.rollback()
        raise UserExistsException(payload.username) from exc
    except SQLAlchemyError as exc:
        session.rollback()
        raise StoreUnwritableException(f"Unable to write user '{payload.username}': {exc}") from exc
    session.refresh(user)
    logger.debug("Inserted user id=%s username=%s", user.id, user.username)
    return UserRead.from_orm_user(user)


def set_password(session: Session, *, user_id: int, password: str) -> UserRead:
    user = session.get(UserORM, user_id)
    if user is None:
        raise NotFoundException(f"User id {user_id} not found")
    try:
        user.password_hash = hash_password(password)
        session.add(user)
        session.commit()
    except HashingError as exc:
        raise PasswordSetException(user_id, f"hashing failed: {exc}") from exc
    except SQLAlchemyError as exc:
        session.rollback()
        raise PasswordSetException(user_id, str(exc)) from exc
    session.refresh(user)
    return UserRead.from_orm_user(user)


def get_user(session: Session, *, user_id: int) -> UserRead:
    user = session.get(UserORM, user_id)
    if user is None:
        raise NotFoundException(f"User id {user_id} not found")
    return UserRead.from_orm_user(user)


def list_users(session: Session) -> list[UserRead]:
    users = session.exec(select(UserORM).order_by(UserORM.id)).all()
    return [UserRead.from_orm_user(user) for user in users]


def authenticate_admin(session: Session, *, username: str, password: str) -> UserRead:
    user = session.exec(select(UserORM).where(UserORM.username == username)).one_or_none()
    if user is None or not verify_password(password, user.password_hash):
        raise AuthenticationException("Invalid username or password")
    if not user.is_admin:
        raise AuthorizationException(f"User '{username}' is not an administrator")
    return UserRead.from_orm_user(user)
