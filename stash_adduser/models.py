from datetime import datetime, timezone
from typing import Optional

from sqlmodel import Field, SQLModel


class UserBase(SQLModel):
    username: str


class UserORM(UserBase, table=True):
    __tablename__ = "user"
    id: Optional[int] = Field(default=None, primary_key=True)
    username: str = Field(index=True, unique=True, nullable=False)
    password_hash: Optional[str] = Field(default=None)
    is_admin: bool = Field(default=False, nullable=False)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc), nullable=False)


class UserCreate(UserBase):
    username: str = Field(min_length=1)
    is_admin: bool = False


class UserRead(UserBase):
    id: int
    is_admin: bool
    password_set: bool
    created_at: datetime

    @classmethod
    def from_orm_user(cls, user: UserORM) -> "UserRead":
        return cls(
            id=user.id,
            username=user.username,
            is_admin=user.is_admin,
            password_set=user.password_hash is not None,
            created_at=user.created_at,
        )


class PasswordUpdate(SQLModel):
    password: str = Field(min_length=1)


class SessionRead(SQLModel):
    username: str
    is_admin: bool
