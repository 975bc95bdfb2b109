import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Union
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from app.notifications import Notifier

from . import service
from .schemas import BulkEnrollmentResult, BulkItemResult, EnrollmentItem

logger = logging.getLogger(__name__)


def item_label(item: Union[EnrollmentItem, Dict[str, Any]], index: int) -> str:
    """'First Last' of the student when both names are present, else 'Row N' (1-based)."""
    first = last = None
    if isinstance(item, EnrollmentItem):
        first, last = item.student.first_name, item.student.last_name
    elif isinstance(item, dict) and isinstance(item.get("student"), dict):
        first = item["student"].get("first_name")
        last = item["student"].get("last_name")
    if isinstance(first, str) and isinstance(last, str) and first.strip() and last.strip():
        return f"{first.strip()} {last.strip()}"
    return f"Row {index + 1}"


async def process_bulk_enrollment(
    db: AsyncSession,
    organization_id: UUID,
    actor_id: Optional[UUID],
    items: Sequence[Union[EnrollmentItem, Dict[str, Any]]],
    notifier: Notifier,
    *,
    now: Optional[datetime] = None,
) -> BulkEnrollmentResult:
    """
    Enroll items one by one, in input order. Each item commits or rolls back on its own,
    so a bad row never undoes the rows before it.
    """
    logger.info("Processing bulk enrollment of %s item(s) for organization %s", len(items), organization_id)
    results: List[BulkItemResult] = []
    successful = 0

    for index, item in enumerate(items):
        label = item_label(item, index)
        try:
            outcome = await service.create_single_enrollment(
                db, organization_id, actor_id, item, notifier, now=now
            )
        except Exception:
            await db.rollback()
            logger.exception("Bulk enrollment item %s (%s) failed", index, label)
            message = service.ENROLLMENT_CREATE_FAILED
            results.append(BulkItemResult(index=index, label=label, success=False, message=message, errors=[message]))
            continue

        if outcome.success:
            successful += 1
            results.append(BulkItemResult(
                index=index,
                label=label,
                success=True,
                message="Enrollment created successfully",
                enrollment_id=outcome.enrollment_id,
            ))
        else:
            results.append(BulkItemResult(
                index=index,
                label=label,
                success=False,
                message=outcome.message,
                errors=outcome.errors,
            ))

    failed = len(results) - successful
    logger.info("Bulk enrollment complete: %s successful, %s failed", successful, failed)
    return BulkEnrollmentResult(
        total_processed=len(results),
        successful=successful,
        failed=failed,
        results=results,
    )
