from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field

from permissions import Role


# User Management Schemas
class UserCreate(BaseModel):
    email: EmailStr
    name: str = Field(..., min_length=1, max_length=200)
    password: str = Field(..., min_length=8)
    role: Role = Role.USER
    permissions: List[str] = Field(default_factory=list)
    is_active: bool = True


class UserUpdate(BaseModel):
    email: Optional[EmailStr] = None
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    role: Optional[Role] = None
    permissions: Optional[List[str]] = None
    is_active: Optional[bool] = None


class UserResponse(BaseModel):
    # credential and token columns are never exposed
    id: int
    email: EmailStr
    name: Optional[str] = None
    role: str
    permissions: List[str] = []
    is_active: bool
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    model_config = ConfigDict(from_attributes=True)


class UserList(BaseModel):
    users: List[UserResponse]
    total: int


class PasswordChange(BaseModel):
    current_password: Optional[str] = None
    new_password: str = Field(..., min_length=8)
    admin_override: bool = False


class Invite(BaseModel):
    email: EmailStr
    role: Role = Role.USER
    permissions: List[str] = Field(default_factory=list)


class InviteAccept(BaseModel):
    token: str
    name: str = Field(..., min_length=1, max_length=200)
    password: str = Field(..., min_length=8)


class ResetRequest(BaseModel):
    email: EmailStr


class ResetVerify(BaseModel):
    token: str
    password: str = Field(..., min_length=8)


class Message(BaseModel):
    message: str
