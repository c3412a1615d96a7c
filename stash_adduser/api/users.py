from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Response, status

from stash_adduser.api.deps import get_storage, require_admin
from stash_adduser.models import PasswordUpdate, SessionRead, UserCreate, UserRead
from stash_adduser.storage import Storage

logger = logging.getLogger(__name__)

router = APIRouter(tags=["users"])


@router.get("/session", response_model=SessionRead)
def get_session_info(admin: UserRead = Depends(require_admin)) -> SessionRead:
    return SessionRead(username=admin.username, is_admin=admin.is_admin)


@router.post("/users", response_model=UserRead, status_code=status.HTTP_201_CREATED)
def create_user(
    payload: UserCreate,
    admin: UserRead = Depends(require_admin),
    storage: Storage = Depends(get_storage),
) -> UserRead:
    user = storage.create_username(payload.username, is_admin=payload.is_admin)
    logger.info("Admin '%s' created user '%s' (id %s)", admin.username, user.username, user.id)
    return user


@router.get("/users", response_model=list[UserRead])
def list_users(
    admin: UserRead = Depends(require_admin),
    storage: Storage = Depends(get_storage),
) -> list[UserRead]:
    return storage.list_users()


@router.put("/users/{user_id}/password", status_code=status.HTTP_204_NO_CONTENT)
def set_password(
    user_id: int,
    payload: PasswordUpdate,
    admin: UserRead = Depends(require_admin),
    storage: Storage = Depends(get_storage),
) -> Response:
    storage.get_user(user_id)
    storage.set_password(user_id, payload.password)
    logger.info("Admin '%s' set the password of user id %s", admin.username, user_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
