from typing import Optional
from uuid import UUID

from fastapi import Depends, HTTPException, Query, status

from app.auth.dependencies import get_current_user
from app.auth.schemas import CurrentUser
from app.core.enums import ADMIN_ROLES, UserRole


async def require_org_admin(
    current_user: CurrentUser = Depends(get_current_user),
) -> CurrentUser:
    """Require ORG_ADMIN or PLATFORM_ADMIN role. Used for enrollment, token and credential administration."""
    if current_user.role not in ADMIN_ROLES:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Only organization administrators can perform this action",
        )
    return current_user


async def get_admin_organization_id(
    organization_id: Optional[UUID] = Query(
        None, description="Target organization. Required for platform admins; ignored for org admins."
    ),
    current_user: CurrentUser = Depends(require_org_admin),
) -> UUID:
    """
    Organization the admin is acting on.

    Org admins are pinned to their own organization. Platform admins must name one explicitly.
    """
    if current_user.role == UserRole.PLATFORM_ADMIN.value:
        if organization_id is None:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="organization_id is required for platform administrators",
            )
        return organization_id
    if current_user.organization_id is None:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="User is not attached to an organization",
        )
    return current_user.organization_id
