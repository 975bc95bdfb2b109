"""
Registration tokens: organization-issued, usage-capped, time-bounded codes for self-service ward registration.

State machine (forward only):
    ACTIVE -> ACTIVE   redemption that leaves uses remaining (current_uses + 1 < max_uses)
    ACTIVE -> USED     redemption that takes the last use
    ACTIVE -> EXPIRED  lazily, whenever expires_at is in the past
    ACTIVE -> REVOKED  admin action
USED, EXPIRED and REVOKED are terminal.

Redemption reads the row FOR UPDATE and writes with an UPDATE guarded by the version that was read,
so two concurrent redemptions can never both take the last use.
"""

import logging
from datetime import datetime, timedelta
from enum import Enum
from typing import List, Optional
from uuid import UUID

from fastapi import status
from sqlalchemy import select, update
from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.temp_code import generate_registration_token
from app.core import audit_service
from app.core.clock import utcnow
from app.core.config import settings
from app.core.enums import TokenStatus
from app.core.exceptions import NotFoundError, ServiceError, StateConflictError
from app.core.models import Organization, RegistrationToken

from .schemas import (
    RegistrationTokenBulkCreate,
    RegistrationTokenBulkFailure,
    RegistrationTokenBulkResponse,
    RegistrationTokenCreate,
    RegistrationTokenListResponse,
    RegistrationTokenResponse,
    RegistrationTokenStatistics,
    StudentHints,
    TokenRedemption,
    TokenValidation,
)

logger = logging.getLogger(__name__)

MAX_REDEEM_ATTEMPTS = 3
MAX_TOKEN_GENERATION_ATTEMPTS = 5


class TokenErrorCode(str, Enum):
    NOT_FOUND = "NOT_FOUND"
    ALREADY_USED = "ALREADY_USED"
    EXPIRED = "EXPIRED"
    REVOKED = "REVOKED"
    BUSY = "BUSY"


TOKEN_ERROR_MESSAGES = {
    TokenErrorCode.NOT_FOUND: "Registration token not found",
    TokenErrorCode.ALREADY_USED: "This registration token has already been used",
    TokenErrorCode.EXPIRED: "This registration token has expired",
    TokenErrorCode.REVOKED: "This registration token has been revoked",
    TokenErrorCode.BUSY: "Registration token is being redeemed by another request; please retry",
}


class TokenError(ServiceError):
    """Redemption refused. The token row was not modified."""

    def __init__(self, code: TokenErrorCode) -> None:
        status_code = status.HTTP_404_NOT_FOUND if code == TokenErrorCode.NOT_FOUND else status.HTTP_409_CONFLICT
        super().__init__(TOKEN_ERROR_MESSAGES[code], status_code)
        self.code = code


_TERMINAL_ERRORS = {
    TokenStatus.USED.value: TokenErrorCode.ALREADY_USED,
    TokenStatus.EXPIRED.value: TokenErrorCode.EXPIRED,
    TokenStatus.REVOKED.value: TokenErrorCode.REVOKED,
}


def effective_status(token: RegistrationToken, now: Optional[datetime] = None) -> TokenStatus:
    """Stored status, except ACTIVE past expires_at reads as EXPIRED."""
    now = now or utcnow()
    if token.status == TokenStatus.ACTIVE.value and token.expires_at < now:
        return TokenStatus.EXPIRED
    return TokenStatus(token.status)


def _hints(token: RegistrationToken) -> StudentHints:
    return StudentHints(
        student_name=token.student_name,
        student_email=token.student_email,
        education_level=token.education_level,
    )


def _token_to_response(token: RegistrationToken, now: Optional[datetime] = None) -> RegistrationTokenResponse:
    return RegistrationTokenResponse(
        id=token.id,
        token=token.token,
        organization_id=token.organization_id,
        generated_by_user_id=token.generated_by_user_id,
        status=effective_status(token, now),
        max_uses=token.max_uses,
        current_uses=token.current_uses,
        student_name=token.student_name,
        student_email=token.student_email,
        education_level=token.education_level,
        expires_at=token.expires_at,
        used_at=token.used_at,
        revoked_at=token.revoked_at,
        revoke_reason=token.revoke_reason,
        created_at=token.created_at,
    )


async def _get_organization(db: AsyncSession, organization_id: UUID) -> Optional[Organization]:
    return (await db.execute(
        select(Organization).where(
            Organization.id == organization_id,
            Organization.deleted_at.is_(None),
        )
    )).scalar_one_or_none()


async def get_token_by_string(
    db: AsyncSession,
    token_string: str,
    for_update: bool = False,
) -> Optional[RegistrationToken]:
    # Bulk UPDATEs skip the identity map, so always re-read the row
    stmt = (
        select(RegistrationToken)
        .where(RegistrationToken.token == token_string)
        .execution_options(populate_existing=True)
    )
    if for_update:
        stmt = stmt.with_for_update()
    return (await db.execute(stmt)).scalar_one_or_none()


async def get_registration_token(
    db: AsyncSession,
    organization_id: UUID,
    token_id: UUID,
) -> Optional[RegistrationToken]:
    return (await db.execute(
        select(RegistrationToken).where(
            RegistrationToken.id == token_id,
            RegistrationToken.organization_id == organization_id,
        ).execution_options(populate_existing=True)
    )).scalar_one_or_none()


# ----- Issuing -----

def _build_token(
    organization_id: UUID,
    actor_id: Optional[UUID],
    payload: RegistrationTokenCreate,
    now: datetime,
    default_max_uses: Optional[int] = None,
    default_expires_in_days: Optional[int] = None,
) -> RegistrationToken:
    max_uses = payload.max_uses or default_max_uses or settings.registration_token_max_uses
    days = payload.expires_in_days or default_expires_in_days or settings.registration_token_expiry_days
    return RegistrationToken(
        token=generate_registration_token(),
        generated_by_user_id=actor_id,
        organization_id=organization_id,
        status=TokenStatus.ACTIVE.value,
        max_uses=max_uses,
        current_uses=0,
        student_name=payload.student_name.strip() if payload.student_name else None,
        student_email=str(payload.student_email).lower() if payload.student_email else None,
        education_level=payload.education_level.value if payload.education_level else None,
        expires_at=now + timedelta(days=days),
        version=0,
        created_at=now,
        updated_at=now,
    )


async def create_registration_token(
    db: AsyncSession,
    organization_id: UUID,
    actor_id: UUID,
    payload: RegistrationTokenCreate,
    *,
    now: Optional[datetime] = None,
) -> RegistrationTokenResponse:
    """Issue one ACTIVE token for the organization."""
    now = now or utcnow()
    org = await _get_organization(db, organization_id)
    if not org:
        raise NotFoundError("Organization not found")

    for attempt in range(MAX_TOKEN_GENERATION_ATTEMPTS):
        token = _build_token(organization_id, actor_id, payload, now)
        db.add(token)
        try:
            await db.flush()
        except IntegrityError:
            # token string collision
            await db.rollback()
            if attempt == MAX_TOKEN_GENERATION_ATTEMPTS - 1:
                raise ServiceError("Could not generate a unique registration token")
            continue
        await audit_service.log_audit(
            db,
            organization_id,
            "registration_token",
            token.id,
            "registration_token_created",
            to_status=TokenStatus.ACTIVE.value,
            performed_by=actor_id,
        )
        await db.commit()
        await db.refresh(token)
        logger.info(
            "Registration token %s created for organization %s (max_uses=%s, expires_at=%s)",
            token.id, organization_id, token.max_uses, token.expires_at,
        )
        return _token_to_response(token, now)
    raise ServiceError("Could not generate a unique registration token")


async def bulk_create_registration_tokens(
    db: AsyncSession,
    organization_id: UUID,
    actor_id: UUID,
    payload: RegistrationTokenBulkCreate,
    *,
    now: Optional[datetime] = None,
) -> RegistrationTokenBulkResponse:
    """Create many tokens in one transaction; per-item failures are reported, not raised."""
    now = now or utcnow()
    org = await _get_organization(db, organization_id)
    if not org:
        raise NotFoundError("Organization not found")

    created: List[RegistrationToken] = []
    errors: List[RegistrationTokenBulkFailure] = []
    seen_emails: set = set()
    for index, item in enumerate(payload.tokens):
        email = str(item.student_email).lower() if item.student_email else None
        if email and email in seen_emails:
            errors.append(RegistrationTokenBulkFailure(index=index, error=f"Duplicate student email in request: {email}"))
            continue
        if email:
            seen_emails.add(email)
        token = _build_token(
            organization_id,
            actor_id,
            item,
            now,
            default_max_uses=payload.default_max_uses,
            default_expires_in_days=payload.default_expires_in_days,
        )
        db.add(token)
        created.append(token)

    try:
        await db.flush()
        for token in created:
            await audit_service.log_audit(
                db,
                organization_id,
                "registration_token",
                token.id,
                "registration_token_created",
                to_status=TokenStatus.ACTIVE.value,
                performed_by=actor_id,
            )
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise ServiceError("Could not generate unique registration tokens; please retry", status.HTTP_409_CONFLICT)

    logger.info(
        "Bulk registration tokens for organization %s: %s created, %s failed",
        organization_id, len(created), len(errors),
    )
    return RegistrationTokenBulkResponse(
        created_tokens=[_token_to_response(t, now) for t in created],
        total_requested=len(payload.tokens),
        successfully_created=len(created),
        failed_to_create=len(errors),
        errors=errors,
    )


# ----- Reading -----

async def list_registration_tokens(
    db: AsyncSession,
    organization_id: UUID,
    status_filter: Optional[TokenStatus] = None,
    *,
    now: Optional[datetime] = None,
) -> RegistrationTokenListResponse:
    """List tokens for the organization. Filtering and statistics use the effective (lazy-expiry) status."""
    now = now or utcnow()
    result = await db.execute(
        select(RegistrationToken)
        .where(RegistrationToken.organization_id == organization_id)
        .order_by(RegistrationToken.created_at.desc())
        .execution_options(populate_existing=True)
    )
    rows = result.scalars().all()

    stats = RegistrationTokenStatistics(total_tokens=len(rows))
    tokens: List[RegistrationTokenResponse] = []
    for row in rows:
        current = effective_status(row, now)
        if current == TokenStatus.ACTIVE:
            stats.active_tokens += 1
        elif current == TokenStatus.USED:
            stats.used_tokens += 1
        elif current == TokenStatus.EXPIRED:
            stats.expired_tokens += 1
        else:
            stats.revoked_tokens += 1
        if status_filter is None or current == status_filter:
            tokens.append(_token_to_response(row, now))
    return RegistrationTokenListResponse(tokens=tokens, statistics=stats)


async def get_registration_token_response(
    db: AsyncSession,
    organization_id: UUID,
    token_id: UUID,
    *,
    now: Optional[datetime] = None,
) -> RegistrationTokenResponse:
    token = await get_registration_token(db, organization_id, token_id)
    if not token:
        raise NotFoundError("Registration token not found")
    return _token_to_response(token, now)


async def validate_registration_token(
    db: AsyncSession,
    token_string: str,
    *,
    now: Optional[datetime] = None,
) -> TokenValidation:
    """Peek at a token for the registration form. Never consumes a use."""
    now = now or utcnow()
    token = await get_token_by_string(db, (token_string or "").strip())
    if not token:
        code = TokenErrorCode.NOT_FOUND
        return TokenValidation(valid=False, error_code=code.value, errors=[TOKEN_ERROR_MESSAGES[code]])

    current = effective_status(token, now)
    if current != TokenStatus.ACTIVE:
        code = _TERMINAL_ERRORS[current.value]
        return TokenValidation(valid=False, error_code=code.value, errors=[TOKEN_ERROR_MESSAGES[code]])

    org = await _get_organization(db, token.organization_id)
    if not org or not org.is_available:
        code = TokenErrorCode.NOT_FOUND
        return TokenValidation(valid=False, error_code=code.value, errors=["Organization not found"])

    return TokenValidation(
        valid=True,
        organization_id=token.organization_id,
        organization_name=org.name,
        expires_at=token.expires_at,
        remaining_uses=token.max_uses - token.current_uses,
        hints=_hints(token),
    )


# ----- Redemption -----

async def consume_registration_token(
    db: AsyncSession,
    token_string: str,
    *,
    now: Optional[datetime] = None,
    organization_id: Optional[UUID] = None,
    performed_by: Optional[UUID] = None,
) -> TokenRedemption:
    """
    Take one use of the token inside the caller's transaction. Flushes; does not commit.

    Raises TokenError (no state change) if the token is missing, belongs to another
    organization, or is in a terminal state.
    """
    now = now or utcnow()
    token_string = (token_string or "").strip()
    for _ in range(MAX_REDEEM_ATTEMPTS):
        token = await get_token_by_string(db, token_string, for_update=True)
        if not token or (organization_id is not None and token.organization_id != organization_id):
            raise TokenError(TokenErrorCode.NOT_FOUND)

        current = effective_status(token, now)
        if current != TokenStatus.ACTIVE:
            raise TokenError(_TERMINAL_ERRORS[current.value])
        if token.current_uses >= token.max_uses:
            raise TokenError(TokenErrorCode.ALREADY_USED)

        read_version = token.version
        new_uses = token.current_uses + 1
        values = {"current_uses": new_uses, "version": read_version + 1, "updated_at": now}
        exhausted = new_uses >= token.max_uses
        if exhausted:
            values["status"] = TokenStatus.USED.value
            values["used_at"] = now

        result = await db.execute(
            update(RegistrationToken)
            .where(
                RegistrationToken.id == token.id,
                RegistrationToken.version == read_version,
                RegistrationToken.status == TokenStatus.ACTIVE.value,
                RegistrationToken.current_uses < RegistrationToken.max_uses,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            # Another redemption got there first; re-read and judge the new state
            logger.info("Registration token %s changed during redemption; retrying", token.id)
            continue

        await db.refresh(token)
        to_status = TokenStatus.USED.value if exhausted else TokenStatus.ACTIVE.value
        await audit_service.log_audit(
            db,
            token.organization_id,
            "registration_token",
            token.id,
            "registration_token_redeemed",
            from_status=TokenStatus.ACTIVE.value,
            to_status=to_status,
            performed_by=performed_by,
            remarks=f"use {new_uses} of {token.max_uses}",
        )
        await db.flush()
        logger.info("Registration token %s redeemed (%s/%s, status=%s)", token.id, new_uses, token.max_uses, to_status)
        return TokenRedemption(
            ok=True,
            token_id=token.id,
            organization_id=token.organization_id,
            status=TokenStatus(to_status),
            current_uses=new_uses,
            max_uses=token.max_uses,
            hints=_hints(token),
        )
    raise TokenError(TokenErrorCode.BUSY)


async def redeem_registration_token(
    db: AsyncSession,
    token_string: str,
    *,
    now: Optional[datetime] = None,
) -> TokenRedemption:
    """Consume one use and commit. Refusals come back as ok=False with a state-specific message."""
    try:
        redemption = await consume_registration_token(db, token_string, now=now)
        await db.commit()
        return redemption
    except TokenError as e:
        await db.rollback()
        logger.warning("Registration token redemption refused: %s", e.code.value)
        return TokenRedemption(ok=False, error_code=e.code.value, message=e.message)
    except DBAPIError as e:
        await db.rollback()
        if e.connection_invalidated:
            raise
        logger.warning("Registration token redemption hit a database conflict: %s", e.orig)
        code = TokenErrorCode.BUSY
        return TokenRedemption(ok=False, error_code=code.value, message=TOKEN_ERROR_MESSAGES[code])


# ----- Admin transitions -----

async def revoke_registration_token(
    db: AsyncSession,
    organization_id: UUID,
    token_id: UUID,
    actor_id: UUID,
    reason: Optional[str] = None,
    *,
    now: Optional[datetime] = None,
) -> RegistrationTokenResponse:
    """ACTIVE -> REVOKED. Irreversible; terminal tokens cannot be revoked."""
    now = now or utcnow()
    token = (await db.execute(
        select(RegistrationToken)
        .where(
            RegistrationToken.id == token_id,
            RegistrationToken.organization_id == organization_id,
        )
        .with_for_update()
        .execution_options(populate_existing=True)
    )).scalar_one_or_none()
    if not token:
        raise NotFoundError("Registration token not found")

    current = effective_status(token, now)
    if current != TokenStatus.ACTIVE:
        raise StateConflictError(
            f"Only ACTIVE tokens can be revoked (current: {current.value})"
        )

    result = await db.execute(
        update(RegistrationToken)
        .where(
            RegistrationToken.id == token.id,
            RegistrationToken.version == token.version,
            RegistrationToken.status == TokenStatus.ACTIVE.value,
        )
        .values(
            status=TokenStatus.REVOKED.value,
            revoked_at=now,
            revoke_reason=reason,
            version=token.version + 1,
            updated_at=now,
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        await db.rollback()
        raise StateConflictError("Registration token changed while revoking; please retry")

    await audit_service.log_audit(
        db,
        organization_id,
        "registration_token",
        token.id,
        "registration_token_revoked",
        from_status=TokenStatus.ACTIVE.value,
        to_status=TokenStatus.REVOKED.value,
        performed_by=actor_id,
        remarks=reason,
    )
    await db.commit()
    await db.refresh(token)
    logger.info("Registration token %s revoked by %s", token.id, actor_id)
    return _token_to_response(token, now)


async def expire_stale_tokens(db: AsyncSession, *, now: Optional[datetime] = None) -> int:
    """Rewrite ACTIVE tokens past expires_at to EXPIRED. Maintenance only; reads already apply lazy expiry."""
    now = now or utcnow()
    result = await db.execute(
        update(RegistrationToken)
        .where(
            RegistrationToken.status == TokenStatus.ACTIVE.value,
            RegistrationToken.expires_at < now,
        )
        .values(
            status=TokenStatus.EXPIRED.value,
            version=RegistrationToken.version + 1,
            updated_at=now,
        )
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    count = result.rowcount or 0
    logger.info("Expired %s stale registration token(s)", count)
    return count
