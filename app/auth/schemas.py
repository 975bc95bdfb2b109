from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field, model_validator

from app.auth.temp_code import is_temp_code


class LoginRequest(BaseModel):
    """Username may be a regular username or a temporary code (lumtempcode-...)."""

    username: str = Field(..., min_length=1, max_length=255)
    password: str = Field(..., min_length=1)


class UserInfo(BaseModel):
    id: UUID
    username: str
    name: str
    role: str
    organization_id: Optional[UUID] = None


class LoginResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user: UserInfo
    issued_at: datetime


class TempLoginResponse(BaseModel):
    """Returned when a temporary code is used to log in; the ward must choose permanent credentials next."""

    requires_credential_setup: bool = True
    user_id: UUID
    name: str
    organization_id: Optional[UUID] = None
    message: str = "Temporary credentials accepted. Please choose a username and password."


class TempLoginComplete(BaseModel):
    temp_code: str
    temp_password: str
    new_username: str = Field(..., min_length=3, max_length=100, pattern=r"^[A-Za-z0-9_.\-]+$")
    new_password: str = Field(..., min_length=8)
    confirm_password: str = Field(..., min_length=8)

    @model_validator(mode="after")
    def validate_passwords(self) -> "TempLoginComplete":
        if self.new_password != self.confirm_password:
            raise ValueError("new_password and confirm_password do not match")
        if is_temp_code(self.new_username):
            raise ValueError("Username cannot start with the temporary code prefix")
        return self


class CurrentUser(BaseModel):
    id: UUID
    organization_id: Optional[UUID] = None
    role: str
