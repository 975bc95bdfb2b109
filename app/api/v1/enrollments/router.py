from typing import Any, Dict, List, Optional, Tuple
from uuid import UUID

from fastapi import APIRouter, Depends, File, HTTPException, Query, Response, UploadFile, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.rbac import get_admin_organization_id, require_org_admin
from app.auth.schemas import CurrentUser
from app.core.enums import EnrollmentStatus
from app.core.exceptions import ServiceError
from app.db.session import get_db
from app.notifications import Notifier, get_notifier

from .schemas import (
    BulkEnrollmentRequest,
    BulkEnrollmentResult,
    BulkValidationResult,
    EnrollmentItem,
    EnrollmentResponse,
    EnrollmentResult,
    EnrollmentStats,
    EnrollmentStatusUpdate,
    GuardianInfo,
    GuardianResponse,
)
from . import bulk, service, spreadsheet

router = APIRouter(prefix="/api/v1/enrollments", tags=["enrollments"])


# ----- Create -----

@router.post(
    "/single",
    response_model=EnrollmentResult,
    status_code=status.HTTP_201_CREATED,
)
async def create_single_enrollment(
    payload: EnrollmentItem,
    db: AsyncSession = Depends(get_db),
    organization_id: UUID = Depends(get_admin_organization_id),
    current_user: CurrentUser = Depends(require_org_admin),
    notifier: Notifier = Depends(get_notifier),
) -> EnrollmentResult:
    """Enroll one ward: creates the student user, enrollment, guardian and temporary credentials, then emails the guardian."""
    result = await service.create_single_enrollment(db, organization_id, current_user.id, payload, notifier)
    if not result.success:
        if result.error_code == service.ORGANIZATION_NOT_FOUND:
            code = status.HTTP_404_NOT_FOUND
        else:
            code = status.HTTP_400_BAD_REQUEST
        raise HTTPException(status_code=code, detail=result.message)
    return result


@router.post(
    "/bulk",
    response_model=BulkEnrollmentResult,
)
async def create_bulk_enrollment(
    payload: BulkEnrollmentRequest,
    db: AsyncSession = Depends(get_db),
    organization_id: UUID = Depends(get_admin_organization_id),
    current_user: CurrentUser = Depends(require_org_admin),
    notifier: Notifier = Depends(get_notifier),
) -> BulkEnrollmentResult:
    """Enroll many wards. Each item succeeds or fails on its own; the response lists every outcome in input order."""
    return await bulk.process_bulk_enrollment(db, organization_id, current_user.id, payload.items, notifier)


@router.get(
    "/bulk-excel/template",
    dependencies=[Depends(require_org_admin)],
)
async def download_enrollment_template() -> Response:
    """Download the Excel template for bulk enrollment. Fill the Enrollments sheet and upload via POST /bulk-excel."""
    return Response(
        content=spreadsheet.build_enrollment_template(),
        media_type=spreadsheet.XLSX_MEDIA_TYPE,
        headers={"Content-Disposition": "attachment; filename=enrollment_template.xlsx"},
    )


async def _read_enrollment_upload(file: UploadFile) -> List[Tuple[int, Dict[str, Any]]]:
    if not file.filename or not file.filename.lower().endswith(".xlsx"):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="File must be an Excel file (.xlsx)")
    try:
        parsed = spreadsheet.parse_enrollment_workbook(await file.read())
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    if not parsed:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Excel file has no data rows")
    return parsed


@router.post(
    "/bulk-excel/validate",
    response_model=BulkValidationResult,
    dependencies=[Depends(get_admin_organization_id), Depends(require_org_admin)],
)
async def validate_bulk_enrollment_excel(
    file: UploadFile = File(..., description="Excel file from GET /bulk-excel/template"),
) -> BulkValidationResult:
    """Check an Excel upload row by row without enrolling anyone."""
    return spreadsheet.validate_enrollment_rows(await _read_enrollment_upload(file))


@router.post(
    "/bulk-excel",
)
async def create_bulk_enrollment_excel(
    file: UploadFile = File(..., description="Excel file from GET /bulk-excel/template"),
    db: AsyncSession = Depends(get_db),
    organization_id: UUID = Depends(get_admin_organization_id),
    current_user: CurrentUser = Depends(require_org_admin),
    notifier: Notifier = Depends(get_notifier),
) -> Response:
    """
    Bulk enroll from Excel. Valid rows are enrolled; the response is an Excel report with
    the outcome of every row.
    """
    parsed = await _read_enrollment_upload(file)
    row_numbers = [row_num for row_num, _ in parsed]
    result = await bulk.process_bulk_enrollment(
        db, organization_id, current_user.id, [item for _, item in parsed], notifier
    )
    return Response(
        content=spreadsheet.build_bulk_report_workbook(result, row_numbers),
        media_type=spreadsheet.XLSX_MEDIA_TYPE,
        headers={
            "Content-Disposition": "attachment; filename=enrollment_results.xlsx",
            "X-Enrollments-Successful": str(result.successful),
            "X-Enrollments-Failed": str(result.failed),
        },
    )


# ----- Read -----

@router.get(
    "",
    response_model=List[EnrollmentResponse],
)
async def list_enrollments(
    status_filter: Optional[EnrollmentStatus] = Query(None, alias="status"),
    academic_year: Optional[str] = Query(None, pattern=r"^\d{4}-\d{4}$"),
    grade_level: Optional[str] = Query(None, max_length=50),
    db: AsyncSession = Depends(get_db),
    organization_id: UUID = Depends(get_admin_organization_id),
) -> List[EnrollmentResponse]:
    """List enrollments for the organization, newest first. Deleted enrollments are not shown."""
    try:
        return await service.list_enrollments(
            db,
            organization_id,
            {
                "status": status_filter.value if status_filter else None,
                "academic_year": academic_year,
                "grade_level": grade_level,
            },
        )
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.get(
    "/stats",
    response_model=EnrollmentStats,
)
async def get_enrollment_stats(
    db: AsyncSession = Depends(get_db),
    organization_id: UUID = Depends(get_admin_organization_id),
) -> EnrollmentStats:
    return await service.get_enrollment_stats(db, organization_id)


@router.get(
    "/{enrollment_id}",
    response_model=EnrollmentResponse,
)
async def get_enrollment(
    enrollment_id: UUID,
    db: AsyncSession = Depends(get_db),
    organization_id: UUID = Depends(get_admin_organization_id),
) -> EnrollmentResponse:
    try:
        return await service.get_enrollment(db, organization_id, enrollment_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


# ----- Update -----

@router.put(
    "/{enrollment_id}/status",
    response_model=EnrollmentResponse,
)
async def update_enrollment_status(
    enrollment_id: UUID,
    payload: EnrollmentStatusUpdate,
    db: AsyncSession = Depends(get_db),
    organization_id: UUID = Depends(get_admin_organization_id),
    current_user: CurrentUser = Depends(require_org_admin),
) -> EnrollmentResponse:
    try:
        return await service.update_enrollment_status(
            db,
            organization_id,
            enrollment_id,
            payload,
            actor_id=current_user.id,
            actor_role=current_user.role,
        )
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.delete(
    "/{enrollment_id}",
    status_code=status.HTTP_204_NO_CONTENT,
)
async def delete_enrollment(
    enrollment_id: UUID,
    db: AsyncSession = Depends(get_db),
    organization_id: UUID = Depends(get_admin_organization_id),
    current_user: CurrentUser = Depends(require_org_admin),
) -> Response:
    try:
        await service.delete_enrollment(
            db,
            organization_id,
            enrollment_id,
            actor_id=current_user.id,
            actor_role=current_user.role,
        )
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post(
    "/{enrollment_id}/guardians",
    response_model=GuardianResponse,
    status_code=status.HTTP_201_CREATED,
)
async def add_guardian(
    enrollment_id: UUID,
    payload: GuardianInfo,
    db: AsyncSession = Depends(get_db),
    organization_id: UUID = Depends(get_admin_organization_id),
    current_user: CurrentUser = Depends(require_org_admin),
) -> GuardianResponse:
    """Add another guardian to the enrolled ward. Each guardian email may appear once per ward."""
    try:
        return await service.add_guardian(db, organization_id, enrollment_id, payload, current_user.id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
