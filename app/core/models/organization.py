import uuid
from datetime import datetime

from sqlalchemy import Column, DateTime, String
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from app.core.clock import utcnow
from app.core.enums import OrganizationStatus
from app.db.session import Base


class Organization(Base):
    """
    Organization (tenant) owning wards, enrollments and registration tokens.

    Soft-deleted via deleted_at; a deleted or inactive organization cannot receive new enrollments.
    """

    __tablename__ = "organizations"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name = Column(String(255), nullable=False)
    contact_email = Column(String(255), nullable=True)
    status = Column(String(20), nullable=False, default=OrganizationStatus.ACTIVE.value)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    deleted_at = Column(DateTime, nullable=True)

    users = relationship("User", back_populates="organization")

    @property
    def is_available(self) -> bool:
        return self.deleted_at is None and self.status == OrganizationStatus.ACTIVE.value
