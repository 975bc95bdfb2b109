from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.rbac import get_admin_organization_id, require_org_admin
from app.auth.schemas import CurrentUser
from app.core.exceptions import ServiceError
from app.db.session import get_db
from app.notifications import Notifier, get_notifier

from .schemas import TempCredentialResetResponse
from . import service

router = APIRouter(prefix="/api/v1/temp-credentials", tags=["temp-credentials"])


@router.post(
    "/users/{user_id}/reset",
    response_model=TempCredentialResetResponse,
)
async def reset_temp_credential(
    user_id: UUID,
    db: AsyncSession = Depends(get_db),
    organization_id: UUID = Depends(get_admin_organization_id),
    current_user: CurrentUser = Depends(require_org_admin),
    notifier: Notifier = Depends(get_notifier),
) -> TempCredentialResetResponse:
    """Issue fresh temporary credentials for a ward and email them to the primary guardian. Older codes stop working."""
    try:
        return await service.reset_temp_credential(db, organization_id, user_id, current_user.id, notifier)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
