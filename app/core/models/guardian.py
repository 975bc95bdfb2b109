import uuid

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from app.core.clock import utcnow
from app.db.session import Base


class Guardian(Base):
    """Guardian of a ward. The earliest-created guardian is the primary contact."""

    __tablename__ = "guardians"
    __table_args__ = (
        # A guardian email appears once per student
        UniqueConstraint("student_id", "email", name="uq_guardian_student_email"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    student_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    first_name = Column(String(100), nullable=False)
    last_name = Column(String(100), nullable=False)
    email = Column(String(255), nullable=False)
    phone = Column(String(50), nullable=True)
    relation = Column(String(50), nullable=False)
    age = Column(Integer, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    student = relationship("User", foreign_keys=[student_id])

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()
