"""
Temporary login credential for an org ward's first sign-in.
Only the password hash is stored. Rows are flipped to is_used once, never updated otherwise.
"""

import uuid

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Index, String, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from app.core.clock import utcnow
from app.db.session import Base


class TemporaryCredential(Base):
    __tablename__ = "temporary_credentials"
    __table_args__ = (
        Index("ix_temporary_credentials_user_created", "user_id", "created_at"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    # lumtempcode-<uuid4>; globally unique
    temp_code = Column(String(64), nullable=False, unique=True, index=True)
    password_hash = Column(Text, nullable=False)
    expires_at = Column(DateTime, nullable=False)
    is_used = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    user = relationship("User", foreign_keys=[user_id])

    def is_expired(self, now) -> bool:
        return now > self.expires_at
