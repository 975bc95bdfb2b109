from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.v1.enrollments import service as enrollment_service
from app.api.v1.enrollments.schemas import EnrollmentItem, EnrollmentResult
from app.auth.rbac import get_admin_organization_id, require_org_admin
from app.auth.schemas import CurrentUser
from app.core.enums import TokenStatus
from app.core.exceptions import ServiceError
from app.db.session import get_db
from app.notifications import Notifier, get_notifier

from .schemas import (
    RegistrationTokenBulkCreate,
    RegistrationTokenBulkResponse,
    RegistrationTokenCreate,
    RegistrationTokenListResponse,
    RegistrationTokenResponse,
    RegistrationTokenRevoke,
    TokenValidation,
)
from . import service

router = APIRouter(prefix="/api/v1/registration-tokens", tags=["registration-tokens"])


# ----- Admin -----

@router.post(
    "",
    response_model=RegistrationTokenResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_registration_token(
    payload: RegistrationTokenCreate,
    db: AsyncSession = Depends(get_db),
    organization_id: UUID = Depends(get_admin_organization_id),
    current_user: CurrentUser = Depends(require_org_admin),
) -> RegistrationTokenResponse:
    """Issue a registration token for self-service ward registration."""
    try:
        return await service.create_registration_token(db, organization_id, current_user.id, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.post(
    "/bulk",
    response_model=RegistrationTokenBulkResponse,
    status_code=status.HTTP_201_CREATED,
)
async def bulk_create_registration_tokens(
    payload: RegistrationTokenBulkCreate,
    db: AsyncSession = Depends(get_db),
    organization_id: UUID = Depends(get_admin_organization_id),
    current_user: CurrentUser = Depends(require_org_admin),
) -> RegistrationTokenBulkResponse:
    try:
        return await service.bulk_create_registration_tokens(db, organization_id, current_user.id, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.get(
    "",
    response_model=RegistrationTokenListResponse,
)
async def list_registration_tokens(
    status_filter: Optional[TokenStatus] = Query(None, alias="status", description="ACTIVE, USED, EXPIRED, REVOKED"),
    db: AsyncSession = Depends(get_db),
    organization_id: UUID = Depends(get_admin_organization_id),
) -> RegistrationTokenListResponse:
    """List the organization's tokens with statistics. Expired tokens are reported as EXPIRED even before cleanup."""
    return await service.list_registration_tokens(db, organization_id, status_filter)


@router.get(
    "/validate/{token}",
    response_model=TokenValidation,
)
async def validate_registration_token(
    token: str,
    db: AsyncSession = Depends(get_db),
) -> TokenValidation:
    """Public. Check a token before showing the registration form; does not consume it."""
    return await service.validate_registration_token(db, token)


@router.post(
    "/redeem/{token}/enroll",
    response_model=EnrollmentResult,
)
async def enroll_with_registration_token(
    token: str,
    payload: EnrollmentItem,
    db: AsyncSession = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
) -> EnrollmentResult:
    """Public. Redeem a token and enroll the ward in the token's organization in one transaction."""
    result = await enrollment_service.enroll_with_registration_token(db, token, payload, notifier)
    if not result.success:
        code = status.HTTP_400_BAD_REQUEST
        if result.error_code in (service.TokenErrorCode.NOT_FOUND.value, enrollment_service.ORGANIZATION_NOT_FOUND):
            code = status.HTTP_404_NOT_FOUND
        elif result.error_code:
            code = status.HTTP_409_CONFLICT
        raise HTTPException(status_code=code, detail=result.message)
    return result


@router.get(
    "/{token_id}",
    response_model=RegistrationTokenResponse,
)
async def get_registration_token(
    token_id: UUID,
    db: AsyncSession = Depends(get_db),
    organization_id: UUID = Depends(get_admin_organization_id),
) -> RegistrationTokenResponse:
    try:
        return await service.get_registration_token_response(db, organization_id, token_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.post(
    "/{token_id}/revoke",
    response_model=RegistrationTokenResponse,
)
async def revoke_registration_token(
    token_id: UUID,
    payload: RegistrationTokenRevoke,
    db: AsyncSession = Depends(get_db),
    organization_id: UUID = Depends(get_admin_organization_id),
    current_user: CurrentUser = Depends(require_org_admin),
) -> RegistrationTokenResponse:
    """Revoke an ACTIVE token. Irreversible."""
    try:
        return await service.revoke_registration_token(
            db,
            organization_id,
            token_id,
            current_user.id,
            payload.reason,
        )
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
