"""
Temporary credentials: one-time code + password pairs that let a newly enrolled ward sign in once
and choose a permanent username and password.

Only the bcrypt hash of the password is stored. A credential is valid while it is unused and
now <= expires_at; using it flips is_used exactly once.
"""

import logging
from datetime import datetime
from typing import Optional, Tuple
from uuid import UUID

from fastapi import status
from sqlalchemy import delete, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.v1.enrollments import guardians
from app.auth.models import User
from app.auth.security import hash_password, verify_password
from app.auth.temp_code import generate_expiry, generate_temp_code, generate_temp_password, is_valid_temp_code
from app.core import audit_service
from app.core.clock import utcnow
from app.core.config import settings
from app.core.enums import UserRole
from app.core.exceptions import NotFoundError, ServiceError, StateConflictError
from app.core.logging_config import mask_code
from app.core.models import Organization, TemporaryCredential
from app.notifications import GuardianCredentialsEmail, Notifier

from .schemas import CredentialErrorCode, CredentialValidation, IssuedCredential, TempCredentialResetResponse

logger = logging.getLogger(__name__)

INVALID_CREDENTIALS_MESSAGE = "Invalid temporary credentials"

CREDENTIAL_ERROR_MESSAGES = {
    CredentialErrorCode.INVALID_FORMAT: "Invalid temporary code format",
    # NOT_FOUND and BAD_PASSWORD share one message so callers cannot tell which codes exist
    CredentialErrorCode.NOT_FOUND: INVALID_CREDENTIALS_MESSAGE,
    CredentialErrorCode.BAD_PASSWORD: INVALID_CREDENTIALS_MESSAGE,
    CredentialErrorCode.ALREADY_USED: "These credentials have already been used. Please contact your administrator.",
    CredentialErrorCode.EXPIRED: "These credentials have expired. Please contact your administrator.",
}


def _fail(code: CredentialErrorCode, user_id: Optional[UUID] = None) -> CredentialValidation:
    return CredentialValidation(
        is_valid=False,
        user_id=user_id,
        error=CREDENTIAL_ERROR_MESSAGES[code],
        error_code=code,
    )


async def _get_by_code(db: AsyncSession, code: str) -> Optional[TemporaryCredential]:
    return (await db.execute(
        select(TemporaryCredential)
        .where(TemporaryCredential.temp_code == code)
        .execution_options(populate_existing=True)
    )).scalar_one_or_none()


async def issue_temp_credential(
    db: AsyncSession,
    user_id: UUID,
    *,
    now: Optional[datetime] = None,
    ttl_days: Optional[int] = None,
) -> IssuedCredential:
    """
    Generate and store a new credential for the user. Flushes only; the caller commits
    so issuance joins the surrounding transaction.
    """
    now = now or utcnow()
    temp_code = generate_temp_code()
    temp_password = generate_temp_password()
    expires_at = generate_expiry(ttl_days if ttl_days is not None else settings.temp_credential_expiry_days, now)

    credential = TemporaryCredential(
        user_id=user_id,
        temp_code=temp_code,
        password_hash=hash_password(temp_password),
        expires_at=expires_at,
        is_used=False,
        created_at=now,
    )
    db.add(credential)
    await db.flush()
    logger.info("Temporary credential %s issued for user %s (expires %s)", mask_code(temp_code), user_id, expires_at)
    return IssuedCredential(temp_code=temp_code, temp_password=temp_password, expires_at=expires_at)


async def validate_temp_credential(
    db: AsyncSession,
    code: str,
    password: Optional[str] = None,
    *,
    now: Optional[datetime] = None,
) -> CredentialValidation:
    """
    Check a code (and password, when given) without consuming it.

    Order of checks: format, existence, used, expired, password.
    """
    if not is_valid_temp_code(code):
        return _fail(CredentialErrorCode.INVALID_FORMAT)

    now = now or utcnow()
    credential = await _get_by_code(db, code.strip().lower())
    if not credential:
        return _fail(CredentialErrorCode.NOT_FOUND)
    if credential.is_used:
        return _fail(CredentialErrorCode.ALREADY_USED, credential.user_id)
    if credential.is_expired(now):
        return _fail(CredentialErrorCode.EXPIRED, credential.user_id)
    if password and not verify_password(password, credential.password_hash):
        return _fail(CredentialErrorCode.BAD_PASSWORD, credential.user_id)

    return CredentialValidation(is_valid=True, user_id=credential.user_id)


async def _mark_used(db: AsyncSession, code: str) -> bool:
    """Flip is_used false -> true. Returns False when someone else already did."""
    result = await db.execute(
        update(TemporaryCredential)
        .where(
            TemporaryCredential.temp_code == code.strip().lower(),
            TemporaryCredential.is_used.is_(False),
        )
        .values(is_used=True)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


async def invalidate_temp_credential(db: AsyncSession, code: str) -> bool:
    """Mark the credential used. Idempotent: a second call returns False and changes nothing."""
    flipped = await _mark_used(db, code)
    await db.commit()
    if flipped:
        logger.info("Temporary credential %s invalidated", mask_code(code))
    return flipped


async def cleanup_expired_credentials(db: AsyncSession, *, now: Optional[datetime] = None) -> int:
    """Delete credentials that are expired or already used."""
    now = now or utcnow()
    result = await db.execute(
        delete(TemporaryCredential)
        .where(
            or_(
                TemporaryCredential.expires_at < now,
                TemporaryCredential.is_used.is_(True),
            )
        )
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    count = result.rowcount or 0
    logger.info("Removed %s expired or used temporary credential(s)", count)
    return count


async def get_active_credential_for_user(
    db: AsyncSession,
    user_id: UUID,
    *,
    now: Optional[datetime] = None,
) -> Optional[TemporaryCredential]:
    """Newest unused, unexpired credential for the user, if any."""
    now = now or utcnow()
    return (await db.execute(
        select(TemporaryCredential)
        .where(
            TemporaryCredential.user_id == user_id,
            TemporaryCredential.is_used.is_(False),
            TemporaryCredential.expires_at >= now,
        )
        .order_by(TemporaryCredential.created_at.desc())
        .limit(1)
    )).scalar_one_or_none()


async def _supersede_unused(db: AsyncSession, user_id: UUID) -> int:
    result = await db.execute(
        update(TemporaryCredential)
        .where(
            TemporaryCredential.user_id == user_id,
            TemporaryCredential.is_used.is_(False),
        )
        .values(is_used=True)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount or 0


async def reset_temp_credential(
    db: AsyncSession,
    organization_id: UUID,
    user_id: UUID,
    actor_id: UUID,
    notifier: Notifier,
    *,
    now: Optional[datetime] = None,
) -> TempCredentialResetResponse:
    """
    Admin re-issues credentials for a ward who lost or let them lapse.

    Older unused credentials are marked used so only the new one works. The primary
    guardian is emailed after commit; a delivery failure does not undo the reset.
    """
    now = now or utcnow()
    ward = (await db.execute(
        select(User).where(
            User.id == user_id,
            User.organization_id == organization_id,
            User.role == UserRole.ORG_WARD.value,
        )
    )).scalar_one_or_none()
    if not ward:
        raise NotFoundError("Ward not found")
    if ward.credentials_set:
        raise StateConflictError("Ward has already set permanent credentials")

    org = (await db.execute(
        select(Organization).where(Organization.id == organization_id)
    )).scalar_one_or_none()
    if not org:
        raise NotFoundError("Organization not found")

    primary = await guardians.get_primary_guardian(db, ward.id)

    superseded = await _supersede_unused(db, ward.id)
    issued = await issue_temp_credential(db, ward.id, now=now)
    await audit_service.log_audit(
        db,
        organization_id,
        "temporary_credential",
        ward.id,
        "temp_credential_reset",
        performed_by=actor_id,
        remarks=f"superseded {superseded} unused credential(s)",
    )
    await db.commit()
    logger.info("Temporary credentials reset for ward %s by %s (superseded=%s)", ward.id, actor_id, superseded)

    notification_sent = False
    if primary:
        try:
            notification_sent = await notifier.send_guardian_credentials(
                GuardianCredentialsEmail(
                    guardian_name=primary.full_name,
                    guardian_email=primary.email,
                    student_name=ward.full_name,
                    temp_code=issued.temp_code,
                    temp_password=issued.temp_password,
                    organization_name=org.name,
                    expiry_date=issued.expires_at,
                )
            )
        except Exception:
            logger.exception("Credential reset email for ward %s failed", ward.id)
    else:
        logger.warning("Ward %s has no guardian; reset credentials were not emailed", ward.id)

    return TempCredentialResetResponse(
        user_id=ward.id,
        temp_code=issued.temp_code,
        expires_at=issued.expires_at,
        superseded=superseded,
        notification_sent=notification_sent,
        guardian_email=primary.email if primary else None,
    )


async def authenticate_temp_login(
    db: AsyncSession,
    code: str,
    password: str,
    *,
    now: Optional[datetime] = None,
) -> Tuple[User, CredentialValidation]:
    """Validate code + password and load the ward. Raises ServiceError with the public message on failure."""
    validation = await validate_temp_credential(db, code, password, now=now)
    if not validation.is_valid:
        logger.warning("Temporary login refused for %s: %s", mask_code(code), validation.error_code.value)
        raise ServiceError(validation.error, status.HTTP_401_UNAUTHORIZED)

    user = (await db.execute(select(User).where(User.id == validation.user_id))).scalar_one_or_none()
    if not user or not user.is_active:
        raise ServiceError(INVALID_CREDENTIALS_MESSAGE, status.HTTP_401_UNAUTHORIZED)
    return user, validation


async def complete_temp_login(
    db: AsyncSession,
    code: str,
    temp_password: str,
    new_username: str,
    new_password: str,
    *,
    now: Optional[datetime] = None,
) -> User:
    """
    Ward chooses permanent credentials. Sets username and password and consumes the
    temporary code in one transaction.
    """
    user, _ = await authenticate_temp_login(db, code, temp_password, now=now)

    username = new_username.strip()
    taken = (await db.execute(
        select(User.id).where(User.username == username, User.id != user.id)
    )).scalar_one_or_none()
    if taken:
        raise StateConflictError("Username is already taken")

    if not await _mark_used(db, code):
        await db.rollback()
        raise StateConflictError(CREDENTIAL_ERROR_MESSAGES[CredentialErrorCode.ALREADY_USED])

    user.username = username
    user.password_hash = hash_password(new_password)
    user.credentials_set = True
    try:
        await db.flush()
        if user.organization_id is not None:
            await audit_service.log_audit(
                db,
                user.organization_id,
                "user",
                user.id,
                "ward_credentials_set",
                performed_by=user.id,
                performed_by_role=user.role,
            )
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise StateConflictError("Username is already taken")

    await db.refresh(user)
    logger.info("Ward %s completed first login with %s", user.id, mask_code(code))
    return user
