from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import UUID

from pydantic import BaseModel


class CredentialErrorCode(str, Enum):
    INVALID_FORMAT = "INVALID_FORMAT"
    NOT_FOUND = "NOT_FOUND"
    ALREADY_USED = "ALREADY_USED"
    EXPIRED = "EXPIRED"
    BAD_PASSWORD = "BAD_PASSWORD"


@dataclass(frozen=True)
class IssuedCredential:
    """Plaintext bundle handed to the caller exactly once, for delivery to the guardian."""

    temp_code: str
    temp_password: str
    expires_at: datetime

    def __repr__(self) -> str:
        return f"IssuedCredential(temp_code={self.temp_code!r}, expires_at={self.expires_at!r})"


@dataclass(frozen=True)
class CredentialValidation:
    is_valid: bool
    user_id: Optional[UUID] = None
    error: Optional[str] = None
    # Precise reason; the public message may merge NOT_FOUND and BAD_PASSWORD
    error_code: Optional[CredentialErrorCode] = None


class TempCredentialResetResponse(BaseModel):
    user_id: UUID
    temp_code: str
    expires_at: datetime
    superseded: int
    notification_sent: bool
    guardian_email: Optional[str] = None
