"""
Validation of raw enrollment input (JSON bodies, spreadsheet rows) with one readable message per bad field.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from pydantic import ValidationError as PydanticValidationError

from .schemas import EnrollmentItem

FIELD_MESSAGES: Dict[Tuple[str, ...], str] = {
    ("student",): "Student details are required",
    ("student", "first_name"): "Student first name is required",
    ("student", "last_name"): "Student last name is required",
    ("student", "date_of_birth"): "Student date of birth must be in YYYY-MM-DD format",
    ("student", "gender"): "Student gender must be Male, Female, or Other",
    ("student", "email"): "Student email format is invalid",
    ("student", "phone"): "Student phone format is invalid",
    ("student", "address"): "Student address is too long",
    ("guardian",): "Guardian details are required",
    ("guardian", "first_name"): "Guardian first name is required",
    ("guardian", "last_name"): "Guardian last name is required",
    ("guardian", "email"): "Guardian email is required and must be valid",
    ("guardian", "phone"): "Guardian phone format is invalid",
    ("guardian", "relation"): (
        "Guardian relation is required and must be one of "
        "Parent, Mother, Father, Guardian, Aunt, Uncle, Grandparent, Sibling, Other"
    ),
    ("guardian", "age"): "Guardian age must be a valid number",
    ("enrollment",): "Enrollment details are required",
    ("enrollment", "grade_level"): "Grade level is required",
    ("enrollment", "academic_year"): "Academic year must be in YYYY-YYYY format (e.g., 2024-2025)",
}


@dataclass
class ValidationResult:
    is_valid: bool
    errors: List[str] = field(default_factory=list)
    item: Optional[EnrollmentItem] = field(default=None, repr=False)


def _message_for(error: Dict[str, Any]) -> str:
    loc = tuple(str(part) for part in error.get("loc", ()))
    # Nested locations like ("guardian", "email", "[key]") fall back to their field
    for size in range(len(loc), 0, -1):
        message = FIELD_MESSAGES.get(loc[:size])
        if message:
            return message
    return f"{'.'.join(loc) or 'item'}: {error.get('msg', 'invalid value')}"


def validate_bulk_enrollment(data: Any) -> ValidationResult:
    """Validate one enrollment item (dict or EnrollmentItem). Never raises for bad input."""
    if isinstance(data, EnrollmentItem):
        return ValidationResult(is_valid=True, item=data)
    if not isinstance(data, dict):
        return ValidationResult(is_valid=False, errors=["Enrollment item must be an object"])

    try:
        item = EnrollmentItem.model_validate(data)
    except PydanticValidationError as e:
        errors: List[str] = []
        for error in e.errors():
            message = _message_for(error)
            if message not in errors:
                errors.append(message)
        return ValidationResult(is_valid=False, errors=errors)
    return ValidationResult(is_valid=True, item=item)
