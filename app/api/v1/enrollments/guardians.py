"""Guardian records for wards. The earliest-created guardian is the primary contact."""

import logging
from datetime import datetime
from typing import List, Optional
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.clock import utcnow
from app.core.exceptions import StateConflictError
from app.core.models import Guardian

from .schemas import GuardianInfo

logger = logging.getLogger(__name__)


async def guardian_email_exists(db: AsyncSession, student_id: UUID, email: str) -> bool:
    found = (await db.execute(
        select(Guardian.id).where(
            Guardian.student_id == student_id,
            func.lower(Guardian.email) == email.lower(),
        )
    )).first()
    return found is not None


async def create_guardian(
    db: AsyncSession,
    student_id: UUID,
    data: GuardianInfo,
    *,
    now: Optional[datetime] = None,
) -> Guardian:
    """Add a guardian to the ward. Flushes; caller commits. Same email twice for one ward is a conflict."""
    email = str(data.email).lower()
    if await guardian_email_exists(db, student_id, email):
        raise StateConflictError("A guardian with this email already exists for this student")

    now = now or utcnow()
    guardian = Guardian(
        student_id=student_id,
        first_name=data.first_name,
        last_name=data.last_name,
        email=email,
        phone=data.phone,
        relation=data.relation.value,
        age=data.age,
        created_at=now,
        updated_at=now,
    )
    db.add(guardian)
    await db.flush()
    logger.info("Guardian %s (%s) added for student %s", guardian.id, guardian.relation, student_id)
    return guardian


async def list_guardians(db: AsyncSession, student_id: UUID) -> List[Guardian]:
    result = await db.execute(
        select(Guardian)
        .where(Guardian.student_id == student_id)
        .order_by(Guardian.created_at.asc(), Guardian.id.asc())
    )
    return list(result.scalars().all())


async def get_primary_guardian(db: AsyncSession, student_id: UUID) -> Optional[Guardian]:
    return (await db.execute(
        select(Guardian)
        .where(Guardian.student_id == student_id)
        .order_by(Guardian.created_at.asc(), Guardian.id.asc())
        .limit(1)
    )).scalar_one_or_none()
