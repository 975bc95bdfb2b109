import re
from datetime import date, datetime
from typing import Any, Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, EmailStr, Field, field_validator

from app.core.enums import EnrollmentStatus, Gender, GuardianRelation

PHONE_PATTERN = re.compile(r"^[\+]?[(]?[0-9]{1,4}[)]?[-\s\.]?[(]?[0-9]{1,4}[)]?[-\s\.]?[0-9]{1,9}$")
ACADEMIC_YEAR_PATTERN = r"^\d{4}-\d{4}$"


def _blank_to_none(value: Any) -> Any:
    if isinstance(value, str) and not value.strip():
        return None
    return value


def _sanitize(value: Any) -> Any:
    """Strip surrounding whitespace and angle brackets from free text."""
    if isinstance(value, str):
        return value.strip().replace("<", "").replace(">", "")
    return value


def _match_enum(value: Any, enum_cls) -> Any:
    """Case-insensitive lookup by value; returns the canonical spelling."""
    if isinstance(value, str):
        wanted = value.strip().lower()
        for member in enum_cls:
            if member.value.lower() == wanted:
                return member
    return value


def _check_phone(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    if not PHONE_PATTERN.match(value):
        raise ValueError("invalid phone format")
    return value


class StudentInfo(BaseModel):
    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: str = Field(..., min_length=1, max_length=100)
    date_of_birth: str = Field(..., description="YYYY-MM-DD")
    gender: Gender
    email: Optional[EmailStr] = None
    phone: Optional[str] = Field(None, max_length=50)
    address: Optional[str] = Field(None, max_length=500)

    @field_validator("first_name", "last_name", "address", mode="before")
    @classmethod
    def sanitize_text(cls, v: Any) -> Any:
        return _sanitize(v)

    @field_validator("email", "phone", "address", mode="before")
    @classmethod
    def blank_optional(cls, v: Any) -> Any:
        return _blank_to_none(v)

    @field_validator("date_of_birth", mode="before")
    @classmethod
    def validate_date_of_birth(cls, v: Any) -> Any:
        if isinstance(v, (date, datetime)):
            return v.strftime("%Y-%m-%d")
        if not isinstance(v, str) or not re.match(r"^\d{4}-\d{2}-\d{2}$", v.strip()):
            raise ValueError("date of birth must be YYYY-MM-DD")
        # rejects impossible dates such as 2015-02-30
        datetime.strptime(v.strip(), "%Y-%m-%d")
        return v.strip()

    @field_validator("gender", mode="before")
    @classmethod
    def normalize_gender(cls, v: Any) -> Any:
        return _match_enum(v, Gender)

    @field_validator("phone")
    @classmethod
    def validate_phone(cls, v: Optional[str]) -> Optional[str]:
        return _check_phone(v)


class GuardianInfo(BaseModel):
    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: str = Field(..., min_length=1, max_length=100)
    email: EmailStr
    phone: Optional[str] = Field(None, max_length=50)
    relation: GuardianRelation
    age: Optional[int] = Field(None, ge=1, le=149)

    @field_validator("first_name", "last_name", mode="before")
    @classmethod
    def sanitize_text(cls, v: Any) -> Any:
        return _sanitize(v)

    @field_validator("phone", "age", mode="before")
    @classmethod
    def blank_optional(cls, v: Any) -> Any:
        return _blank_to_none(v)

    @field_validator("email", mode="before")
    @classmethod
    def strip_email(cls, v: Any) -> Any:
        return v.strip() if isinstance(v, str) else v

    @field_validator("relation", mode="before")
    @classmethod
    def normalize_relation(cls, v: Any) -> Any:
        return _match_enum(v, GuardianRelation)

    @field_validator("phone")
    @classmethod
    def validate_phone(cls, v: Optional[str]) -> Optional[str]:
        return _check_phone(v)


class EnrollmentInfo(BaseModel):
    grade_level: str = Field(..., min_length=1, max_length=50)
    academic_year: str = Field(..., pattern=ACADEMIC_YEAR_PATTERN)

    @field_validator("grade_level", "academic_year", mode="before")
    @classmethod
    def strip_text(cls, v: Any) -> Any:
        if isinstance(v, (int, float)) and not isinstance(v, bool):
            # spreadsheets hand grade "5" back as a number
            return str(int(v))
        return _sanitize(v)


class EnrollmentItem(BaseModel):
    """One ward to enroll: student, primary guardian and enrollment details."""

    student: StudentInfo
    guardian: GuardianInfo
    enrollment: EnrollmentInfo


class EnrollmentResult(BaseModel):
    success: bool
    message: str
    enrollment_id: Optional[UUID] = None
    user_id: Optional[UUID] = None
    guardian_id: Optional[UUID] = None
    temp_code: Optional[str] = None
    expires_at: Optional[datetime] = None
    # Delivery outcome is separate from success: the enrollment stands even if email failed
    notification_sent: bool = False
    errors: List[str] = Field(default_factory=list)
    error_code: Optional[str] = None


class BulkEnrollmentRequest(BaseModel):
    """Items are validated one by one so a bad row fails alone instead of rejecting the whole batch."""

    items: List[Dict[str, Any]] = Field(..., min_length=1, max_length=500)


class BulkItemResult(BaseModel):
    index: int
    label: str
    success: bool
    message: str
    enrollment_id: Optional[UUID] = None
    errors: List[str] = Field(default_factory=list)


class BulkEnrollmentResult(BaseModel):
    total_processed: int
    successful: int
    failed: int
    results: List[BulkItemResult]


class ValidRow(BaseModel):
    row: int
    label: str
    item: EnrollmentItem


class RowValidationError(BaseModel):
    row: int
    label: str
    errors: List[str]


class BulkValidationResult(BaseModel):
    """Dry run of a spreadsheet upload: which rows would enroll and why the others would not."""

    total_rows: int
    valid_count: int
    error_count: int
    valid_rows: List[ValidRow] = Field(default_factory=list)
    errors: List[RowValidationError] = Field(default_factory=list)


class GuardianResponse(BaseModel):
    id: UUID
    student_id: UUID
    first_name: str
    last_name: str
    email: str
    phone: Optional[str] = None
    relation: str
    age: Optional[int] = None
    created_at: datetime

    class Config:
        from_attributes = True


class EnrollmentResponse(BaseModel):
    id: UUID
    organization_id: UUID
    student_id: UUID
    student_name: str
    student_email: Optional[str] = None
    student_phone: Optional[str] = None
    status: str
    academic_year: str
    grade_level: str
    created_by: Optional[UUID] = None
    created_at: datetime
    updated_at: datetime
    guardians: List[GuardianResponse] = Field(default_factory=list)


class EnrollmentStatusUpdate(BaseModel):
    status: EnrollmentStatus
    remarks: Optional[str] = Field(None, max_length=2000)


class EnrollmentStats(BaseModel):
    total: int
    by_status: Dict[str, int]
    by_grade_level: Dict[str, int]
