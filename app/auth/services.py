import logging
from typing import Union

from fastapi import status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.v1.temp_credentials import service as temp_credential_service
from app.auth.models import User
from app.auth.schemas import (
    LoginRequest,
    LoginResponse,
    TempLoginComplete,
    TempLoginResponse,
    UserInfo,
)
from app.auth.security import create_access_token, verify_password
from app.auth.temp_code import is_temp_code
from app.core.clock import utcnow
from app.core.exceptions import ServiceError
from app.core.logging_config import mask_code

logger = logging.getLogger(__name__)


def _issue_login(user: User) -> LoginResponse:
    access_token = create_access_token(
        subject={
            "sub": str(user.id),
            "user_id": str(user.id),
            "organization_id": str(user.organization_id) if user.organization_id else None,
            "role": user.role,
        }
    )
    return LoginResponse(
        access_token=access_token,
        user=UserInfo(
            id=user.id,
            username=user.username,
            name=user.full_name,
            role=user.role,
            organization_id=user.organization_id,
        ),
        issued_at=utcnow(),
    )


async def login_user(
    db: AsyncSession, payload: LoginRequest
) -> Union[LoginResponse, TempLoginResponse]:
    """
    Username/password login. A username carrying the temp-code prefix is checked against
    temporary credentials instead; success there only unlocks credential setup.
    """
    username = payload.username.strip()
    if is_temp_code(username):
        user, _ = await temp_credential_service.authenticate_temp_login(db, username, payload.password)
        logger.info("Temporary code %s accepted for user %s", mask_code(username), user.id)
        return TempLoginResponse(
            user_id=user.id,
            name=user.full_name,
            organization_id=user.organization_id,
        )

    user = (await db.execute(select(User).where(User.username == username))).scalar_one_or_none()
    if not user or not verify_password(payload.password, user.password_hash):
        raise ServiceError("Invalid username or password", status.HTTP_401_UNAUTHORIZED)
    if not user.is_active:
        raise ServiceError("User account is inactive", status.HTTP_403_FORBIDDEN)
    if not user.credentials_set:
        raise ServiceError(
            "Please sign in with your temporary credentials to finish setting up your account",
            status.HTTP_403_FORBIDDEN,
        )
    return _issue_login(user)


async def complete_temp_login(db: AsyncSession, payload: TempLoginComplete) -> LoginResponse:
    """Set permanent credentials from a temp-code login and sign the ward in."""
    user = await temp_credential_service.complete_temp_login(
        db,
        payload.temp_code.strip(),
        payload.temp_password,
        payload.new_username,
        payload.new_password,
    )
    return _issue_login(user)
