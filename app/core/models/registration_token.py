"""
Organization-issued registration token for self-service ward registration.
STATUS moves forward only: ACTIVE -> USED | EXPIRED | REVOKED.
An ACTIVE row whose expires_at has passed is read as EXPIRED before anything rewrites it.
"""

import uuid

from sqlalchemy import CheckConstraint, Column, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from app.core.clock import utcnow
from app.core.enums import TokenStatus
from app.db.session import Base


class RegistrationToken(Base):
    __tablename__ = "registration_tokens"
    __table_args__ = (
        CheckConstraint("current_uses <= max_uses", name="ck_registration_tokens_uses"),
        CheckConstraint("max_uses >= 1", name="ck_registration_tokens_max_uses"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    token = Column(String(128), nullable=False, unique=True, index=True)
    generated_by_user_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    organization_id = Column(
        UUID(as_uuid=True), ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True
    )
    status = Column(String(20), nullable=False, default=TokenStatus.ACTIVE.value)
    max_uses = Column(Integer, nullable=False, default=1)
    current_uses = Column(Integer, nullable=False, default=0)
    student_name = Column(String(255), nullable=True)
    student_email = Column(String(255), nullable=True)
    education_level = Column(String(50), nullable=True)
    expires_at = Column(DateTime, nullable=False)
    used_at = Column(DateTime, nullable=True)
    revoked_at = Column(DateTime, nullable=True)
    revoke_reason = Column(Text, nullable=True)
    # Bumped on every write; redemption updates are conditional on the version that was read
    version = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    organization = relationship("Organization", foreign_keys=[organization_id])
