from dataclasses import dataclass
from datetime import datetime
from typing import Protocol


@dataclass(frozen=True)
class GuardianCredentialsEmail:
    guardian_name: str
    guardian_email: str
    student_name: str
    temp_code: str
    temp_password: str
    organization_name: str
    expiry_date: datetime

    def __repr__(self) -> str:
        # keep the plaintext password out of tracebacks and log lines
        return (
            f"GuardianCredentialsEmail(guardian_email={self.guardian_email!r}, "
            f"student_name={self.student_name!r}, organization_name={self.organization_name!r})"
        )


class Notifier(Protocol):
    """Best-effort delivery. Returns False on failure instead of raising."""

    async def send_guardian_credentials(self, message: GuardianCredentialsEmail) -> bool:
        ...
