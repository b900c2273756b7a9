"""Domain Entities - Auth"""
from pydantic import BaseModel, ConfigDict, Field
from uuid import UUID, uuid4
from typing import Optional

from domain.enums import UserRole


class User(BaseModel):
    """User Entity - the resolved caller"""
    user_id: UUID = Field(default_factory=uuid4)
    username: str
    email: Optional[str] = None
    full_name: Optional[str] = None
    role: UserRole = UserRole.STAFF
    disabled: bool = False

    model_config = ConfigDict(from_attributes=True)


class UserInDB(User):
    """User with hashed password for DB storage"""
    hashed_password: str
