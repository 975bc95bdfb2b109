from app.core.models.organization import Organization
from app.core.models.student_enrollment import StudentEnrollment
from app.core.models.guardian import Guardian
from app.core.models.temporary_credential import TemporaryCredential
from app.core.models.registration_token import RegistrationToken
from app.core.models.audit_log import AuditLog

__all__ = [
    "Organization",
    "StudentEnrollment",
    "Guardian",
    "TemporaryCredential",
    "RegistrationToken",
    "AuditLog",
]
