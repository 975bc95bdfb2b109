"""
Student enrollment: creates the ward user, enrollment, primary guardian and temporary credential
in one transaction, then emails the credentials to the guardian.

Steps 1-5 share one unit of work on the session (flush per step, single commit). Any failure rolls
all of them back, so no partial ward, enrollment or guardian rows survive. The email goes out after
commit; its outcome is reported separately and never undoes the enrollment.
"""

import logging
import secrets
from datetime import datetime
from typing import Any, Dict, List, Optional, Union
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.v1.registration_tokens import service as token_service
from app.api.v1.temp_credentials import service as temp_credential_service
from app.auth.models import User
from app.auth.security import unusable_password_hash
from app.core import audit_service
from app.core.clock import utcnow
from app.core.enums import EnrollmentStatus, UserRole
from app.core.exceptions import NotFoundError, ServiceError, StateConflictError, TransactionFailure, ValidationError
from app.core.models import Guardian, Organization, StudentEnrollment
from app.notifications import GuardianCredentialsEmail, Notifier

from . import guardians
from .schemas import (
    EnrollmentItem,
    EnrollmentResponse,
    EnrollmentResult,
    EnrollmentStats,
    EnrollmentStatusUpdate,
    GuardianInfo,
    GuardianResponse,
)
from .validator import validate_bulk_enrollment

logger = logging.getLogger(__name__)

ENROLLMENT_CREATE_FAILED = "Failed to create enrollment"
ORGANIZATION_NOT_FOUND = "ORGANIZATION_NOT_FOUND"

# Filter name -> column. Only these are accepted; names are never interpolated into SQL.
ENROLLMENT_FILTERS = {
    "status": StudentEnrollment.status,
    "academic_year": StudentEnrollment.academic_year,
    "grade_level": StudentEnrollment.grade_level,
}


def _failure(message: str, errors: Optional[List[str]] = None, error_code: Optional[str] = None) -> EnrollmentResult:
    return EnrollmentResult(
        success=False,
        message=message,
        errors=errors if errors is not None else [message],
        error_code=error_code,
    )


async def _get_available_organization(db: AsyncSession, organization_id: UUID) -> Organization:
    org = (await db.execute(
        select(Organization).where(
            Organization.id == organization_id,
            Organization.deleted_at.is_(None),
        )
    )).scalar_one_or_none()
    if not org or not org.is_available:
        raise NotFoundError("Organization not found")
    return org


def _ward_username() -> str:
    # Placeholder until the ward picks a real username on first login
    return f"ward_{secrets.token_hex(8)}"


async def create_single_enrollment(
    db: AsyncSession,
    organization_id: UUID,
    actor_id: Optional[UUID],
    item: Union[EnrollmentItem, Dict[str, Any]],
    notifier: Notifier,
    *,
    now: Optional[datetime] = None,
    registration_token: Optional[str] = None,
) -> EnrollmentResult:
    """
    Enroll one ward. Returns a result instead of raising for anything caused by the input or by
    current state; only a dropped database connection propagates.

    When registration_token is given, one use of it is consumed inside the same transaction,
    so a failed enrollment leaves the token untouched.
    """
    validation = validate_bulk_enrollment(item)
    if not validation.is_valid:
        return _failure("Validation failed", validation.errors)
    data = validation.item

    now = now or utcnow()
    student_name = f"{data.student.first_name} {data.student.last_name}"
    logger.info("Creating enrollment for %s in organization %s", student_name, organization_id)

    try:
        # 1. Organization must exist and accept enrollments
        org = await _get_available_organization(db, organization_id)
        organization_name = org.name

        if registration_token:
            await token_service.consume_registration_token(
                db,
                registration_token,
                now=now,
                organization_id=organization_id,
                performed_by=actor_id,
            )

        # 2. Ward user with a throwaway username and a password nobody knows
        ward = User(
            organization_id=organization_id,
            username=_ward_username(),
            first_name=data.student.first_name,
            last_name=data.student.last_name,
            email=str(data.student.email).lower() if data.student.email else None,
            phone=data.student.phone,
            date_of_birth=datetime.strptime(data.student.date_of_birth, "%Y-%m-%d").date(),
            gender=data.student.gender.value,
            address=data.student.address,
            password_hash=unusable_password_hash(),
            role=UserRole.ORG_WARD.value,
            is_org_ward=True,
            is_active=True,
            credentials_set=False,
            created_by=actor_id,
            created_at=now,
        )
        db.add(ward)
        await db.flush()

        # 3. Enrollment starts PENDING
        enrollment = StudentEnrollment(
            organization_id=organization_id,
            student_id=ward.id,
            status=EnrollmentStatus.PENDING.value,
            academic_year=data.enrollment.academic_year,
            grade_level=data.enrollment.grade_level,
            created_by=actor_id,
            created_at=now,
            updated_at=now,
        )
        db.add(enrollment)
        await db.flush()

        # 4. Primary guardian
        guardian = await guardians.create_guardian(db, ward.id, data.guardian, now=now)

        # 5. Temporary credential
        issued = await temp_credential_service.issue_temp_credential(db, ward.id, now=now)

        await audit_service.log_audit(
            db,
            organization_id,
            "student_enrollment",
            enrollment.id,
            "enrollment_created",
            to_status=EnrollmentStatus.PENDING.value,
            performed_by=actor_id,
            remarks="via registration token" if registration_token else None,
        )

        ward_id, enrollment_id, guardian_id = ward.id, enrollment.id, guardian.id
        guardian_name, guardian_email = guardian.full_name, guardian.email
        await db.commit()
    except token_service.TokenError as e:
        await db.rollback()
        logger.warning("Enrollment for %s refused: registration token %s", student_name, e.code.value)
        return _failure(e.message, error_code=e.code.value)
    except NotFoundError as e:
        await db.rollback()
        logger.warning("Enrollment for %s failed: %s", student_name, e.message)
        return _failure(e.message, error_code=ORGANIZATION_NOT_FOUND)
    except ServiceError as e:
        await db.rollback()
        logger.warning("Enrollment for %s failed: %s", student_name, e.message)
        return _failure(e.message)
    except IntegrityError as e:
        await db.rollback()
        logger.warning("Enrollment for %s violated a constraint: %s", student_name, e.orig)
        return _failure("Enrollment conflicts with existing data")
    except DBAPIError as e:
        await db.rollback()
        if e.connection_invalidated:
            raise
        logger.exception("Database error while enrolling %s", student_name)
        return _failure(TransactionFailure(ENROLLMENT_CREATE_FAILED).message)
    except Exception:
        await db.rollback()
        logger.exception("Unexpected error while enrolling %s", student_name)
        return _failure(TransactionFailure(ENROLLMENT_CREATE_FAILED).message)

    logger.info("Enrollment %s created for ward %s", enrollment_id, ward_id)

    # 6. Outside the transaction: best-effort email to the guardian
    notification_sent = False
    try:
        notification_sent = await notifier.send_guardian_credentials(
            GuardianCredentialsEmail(
                guardian_name=guardian_name,
                guardian_email=guardian_email,
                student_name=student_name,
                temp_code=issued.temp_code,
                temp_password=issued.temp_password,
                organization_name=organization_name,
                expiry_date=issued.expires_at,
            )
        )
    except Exception:
        logger.exception("Credentials email for enrollment %s could not be sent", enrollment_id)
    if not notification_sent:
        logger.warning("Guardian %s was not notified for enrollment %s", guardian_email, enrollment_id)

    return EnrollmentResult(
        success=True,
        message="Student enrollment created successfully",
        enrollment_id=enrollment_id,
        user_id=ward_id,
        guardian_id=guardian_id,
        temp_code=issued.temp_code,
        expires_at=issued.expires_at,
        notification_sent=notification_sent,
    )


async def enroll_with_registration_token(
    db: AsyncSession,
    token_string: str,
    item: Union[EnrollmentItem, Dict[str, Any]],
    notifier: Notifier,
    *,
    now: Optional[datetime] = None,
) -> EnrollmentResult:
    """Self-service enrollment: the token decides the organization and is consumed with the enrollment."""
    token = await token_service.get_token_by_string(db, (token_string or "").strip())
    if not token:
        code = token_service.TokenErrorCode.NOT_FOUND
        return _failure(token_service.TOKEN_ERROR_MESSAGES[code], error_code=code.value)
    return await create_single_enrollment(
        db,
        token.organization_id,
        token.generated_by_user_id,
        item,
        notifier,
        now=now,
        registration_token=token.token,
    )


# ----- Admin operations -----

def _to_response(enrollment: StudentEnrollment, student: User, guardian_rows: List[Guardian]) -> EnrollmentResponse:
    return EnrollmentResponse(
        id=enrollment.id,
        organization_id=enrollment.organization_id,
        student_id=enrollment.student_id,
        student_name=student.full_name,
        student_email=student.email,
        student_phone=student.phone,
        status=enrollment.status,
        academic_year=enrollment.academic_year,
        grade_level=enrollment.grade_level,
        created_by=enrollment.created_by,
        created_at=enrollment.created_at,
        updated_at=enrollment.updated_at,
        guardians=[GuardianResponse.model_validate(g) for g in guardian_rows],
    )


async def _get_enrollment(db: AsyncSession, organization_id: UUID, enrollment_id: UUID) -> StudentEnrollment:
    enrollment = (await db.execute(
        select(StudentEnrollment).where(
            StudentEnrollment.id == enrollment_id,
            StudentEnrollment.organization_id == organization_id,
            StudentEnrollment.deleted_at.is_(None),
        )
    )).scalar_one_or_none()
    if not enrollment:
        raise NotFoundError("Enrollment not found")
    return enrollment


async def list_enrollments(
    db: AsyncSession,
    organization_id: UUID,
    filters: Optional[Dict[str, Optional[str]]] = None,
) -> List[EnrollmentResponse]:
    """Enrollments of the organization, newest first. Soft-deleted rows are excluded."""
    stmt = (
        select(StudentEnrollment, User)
        .join(User, User.id == StudentEnrollment.student_id)
        .where(
            StudentEnrollment.organization_id == organization_id,
            StudentEnrollment.deleted_at.is_(None),
        )
    )
    for name, value in (filters or {}).items():
        if value is None:
            continue
        column = ENROLLMENT_FILTERS.get(name)
        if column is None:
            raise ValidationError(f"Unsupported filter: {name}", [f"Unsupported filter: {name}"])
        stmt = stmt.where(column == value)
    stmt = stmt.order_by(StudentEnrollment.created_at.desc())

    rows = (await db.execute(stmt)).all()
    if not rows:
        return []

    student_ids = [enrollment.student_id for enrollment, _ in rows]
    guardian_result = await db.execute(
        select(Guardian)
        .where(Guardian.student_id.in_(student_ids))
        .order_by(Guardian.created_at.asc(), Guardian.id.asc())
    )
    by_student: Dict[UUID, List[Guardian]] = {}
    for g in guardian_result.scalars().all():
        by_student.setdefault(g.student_id, []).append(g)

    return [_to_response(enrollment, student, by_student.get(student.id, [])) for enrollment, student in rows]


async def get_enrollment(db: AsyncSession, organization_id: UUID, enrollment_id: UUID) -> EnrollmentResponse:
    enrollment = await _get_enrollment(db, organization_id, enrollment_id)
    student = await db.get(User, enrollment.student_id)
    guardian_rows = await guardians.list_guardians(db, enrollment.student_id)
    return _to_response(enrollment, student, guardian_rows)


async def update_enrollment_status(
    db: AsyncSession,
    organization_id: UUID,
    enrollment_id: UUID,
    payload: EnrollmentStatusUpdate,
    actor_id: UUID,
    actor_role: Optional[str] = None,
) -> EnrollmentResponse:
    enrollment = await _get_enrollment(db, organization_id, enrollment_id)
    from_status = enrollment.status
    to_status = payload.status.value
    enrollment.status = to_status
    enrollment.updated_at = utcnow()
    await audit_service.log_audit(
        db,
        organization_id,
        "student_enrollment",
        enrollment.id,
        "enrollment_status_changed",
        from_status=from_status,
        to_status=to_status,
        performed_by=actor_id,
        performed_by_role=actor_role,
        remarks=payload.remarks,
    )
    await db.commit()
    logger.info("Enrollment %s status %s -> %s by %s", enrollment.id, from_status, to_status, actor_id)
    return await get_enrollment(db, organization_id, enrollment.id)


async def delete_enrollment(
    db: AsyncSession,
    organization_id: UUID,
    enrollment_id: UUID,
    actor_id: UUID,
    actor_role: Optional[str] = None,
) -> None:
    """Soft delete: the row stays for audit, but disappears from listings."""
    enrollment = await _get_enrollment(db, organization_id, enrollment_id)
    enrollment.deleted_at = utcnow()
    await audit_service.log_audit(
        db,
        organization_id,
        "student_enrollment",
        enrollment.id,
        "enrollment_deleted",
        from_status=enrollment.status,
        performed_by=actor_id,
        performed_by_role=actor_role,
    )
    await db.commit()
    logger.info("Enrollment %s deleted by %s", enrollment.id, actor_id)


async def get_enrollment_stats(db: AsyncSession, organization_id: UUID) -> EnrollmentStats:
    base = (
        StudentEnrollment.organization_id == organization_id,
        StudentEnrollment.deleted_at.is_(None),
    )
    status_rows = (await db.execute(
        select(StudentEnrollment.status, func.count())
        .where(*base)
        .group_by(StudentEnrollment.status)
    )).all()
    grade_rows = (await db.execute(
        select(StudentEnrollment.grade_level, func.count())
        .where(*base)
        .group_by(StudentEnrollment.grade_level)
    )).all()
    by_status = {status_value: count for status_value, count in status_rows}
    return EnrollmentStats(
        total=sum(by_status.values()),
        by_status=by_status,
        by_grade_level={grade: count for grade, count in grade_rows},
    )


async def add_guardian(
    db: AsyncSession,
    organization_id: UUID,
    enrollment_id: UUID,
    data: GuardianInfo,
    actor_id: UUID,
) -> GuardianResponse:
    """Attach another guardian to the enrolled ward."""
    enrollment = await _get_enrollment(db, organization_id, enrollment_id)
    try:
        guardian = await guardians.create_guardian(db, enrollment.student_id, data)
        await audit_service.log_audit(
            db,
            organization_id,
            "guardian",
            guardian.id,
            "guardian_added",
            performed_by=actor_id,
            remarks=f"student {enrollment.student_id}",
        )
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise StateConflictError("A guardian with this email already exists for this student")
    await db.refresh(guardian)
    return GuardianResponse.model_validate(guardian)
