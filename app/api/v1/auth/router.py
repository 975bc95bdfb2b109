from typing import Union

from fastapi import APIRouter, Depends, HTTPException
from fastapi import status as http_status
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.schemas import LoginRequest, LoginResponse, TempLoginComplete, TempLoginResponse
from app.auth.services import ServiceError, complete_temp_login, login_user
from app.db.session import get_db

router = APIRouter(prefix="/api/v1/auth", tags=["auth"])


@router.post(
    "/login",
    response_model=Union[LoginResponse, TempLoginResponse],
    status_code=http_status.HTTP_200_OK,
)
async def login(
    payload: LoginRequest,
    db: AsyncSession = Depends(get_db),
) -> Union[LoginResponse, TempLoginResponse]:
    """Sign in. Temporary codes (lumtempcode-...) return requires_credential_setup instead of a token."""
    try:
        return await login_user(db, payload)
    except ServiceError as e:
        if e.status_code == http_status.HTTP_500_INTERNAL_SERVER_ERROR:
            raise HTTPException(status_code=e.status_code, detail="Internal server error")
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.post(
    "/temp-login/complete",
    response_model=LoginResponse,
    status_code=http_status.HTTP_200_OK,
)
async def temp_login_complete(
    payload: TempLoginComplete,
    db: AsyncSession = Depends(get_db),
) -> LoginResponse:
    """Ward chooses a permanent username and password; the temporary code stops working."""
    try:
        return await complete_temp_login(db, payload)
    except ServiceError as e:
        if e.status_code == http_status.HTTP_500_INTERNAL_SERVER_ERROR:
            raise HTTPException(status_code=e.status_code, detail="Internal server error")
        raise HTTPException(status_code=e.status_code, detail=e.message)
