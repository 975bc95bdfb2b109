from datetime import datetime
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, EmailStr, Field

from app.core.enums import EducationLevel, TokenStatus


class RegistrationTokenCreate(BaseModel):
    """Org admin issues a token; student hints are optional and only pre-fill the registration form."""

    student_name: Optional[str] = Field(None, max_length=255)
    student_email: Optional[EmailStr] = None
    education_level: Optional[EducationLevel] = None
    max_uses: Optional[int] = Field(None, ge=1, le=1000, description="Defaults to REGISTRATION_TOKEN_MAX_USES")
    expires_in_days: Optional[int] = Field(None, ge=1, le=90, description="Defaults to REGISTRATION_TOKEN_EXPIRY_DAYS")


class RegistrationTokenBulkCreate(BaseModel):
    tokens: List[RegistrationTokenCreate] = Field(..., min_length=1, max_length=500)
    default_max_uses: Optional[int] = Field(None, ge=1, le=1000)
    default_expires_in_days: Optional[int] = Field(None, ge=1, le=90)


class RegistrationTokenRevoke(BaseModel):
    reason: Optional[str] = Field(None, max_length=2000)


class RegistrationTokenResponse(BaseModel):
    id: UUID
    token: str
    organization_id: UUID
    generated_by_user_id: Optional[UUID] = None
    # Effective status: ACTIVE tokens past expires_at are reported as EXPIRED
    status: TokenStatus
    max_uses: int
    current_uses: int
    student_name: Optional[str] = None
    student_email: Optional[str] = None
    education_level: Optional[str] = None
    expires_at: datetime
    used_at: Optional[datetime] = None
    revoked_at: Optional[datetime] = None
    revoke_reason: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True


class RegistrationTokenStatistics(BaseModel):
    total_tokens: int = 0
    active_tokens: int = 0
    used_tokens: int = 0
    expired_tokens: int = 0
    revoked_tokens: int = 0


class RegistrationTokenListResponse(BaseModel):
    tokens: List[RegistrationTokenResponse]
    statistics: RegistrationTokenStatistics


class RegistrationTokenBulkFailure(BaseModel):
    index: int
    error: str


class RegistrationTokenBulkResponse(BaseModel):
    created_tokens: List[RegistrationTokenResponse]
    total_requested: int
    successfully_created: int
    failed_to_create: int
    errors: List[RegistrationTokenBulkFailure] = Field(default_factory=list)


class StudentHints(BaseModel):
    student_name: Optional[str] = None
    student_email: Optional[str] = None
    education_level: Optional[str] = None


class TokenValidation(BaseModel):
    """Read-only check of a token; nothing is consumed."""

    valid: bool
    organization_id: Optional[UUID] = None
    organization_name: Optional[str] = None
    expires_at: Optional[datetime] = None
    remaining_uses: Optional[int] = None
    hints: Optional[StudentHints] = None
    error_code: Optional[str] = None
    errors: List[str] = Field(default_factory=list)


class TokenRedemption(BaseModel):
    ok: bool
    token_id: Optional[UUID] = None
    organization_id: Optional[UUID] = None
    status: Optional[TokenStatus] = None
    current_uses: Optional[int] = None
    max_uses: Optional[int] = None
    hints: Optional[StudentHints] = None
    error_code: Optional[str] = None
    message: Optional[str] = None
