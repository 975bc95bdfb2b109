from typing import List, Optional

from fastapi import status


class ServiceError(Exception):
    """Base exception for service layer errors."""

    def __init__(self, message: str, status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class ValidationError(ServiceError):
    """Malformed or missing input; carries one message per failed field."""

    def __init__(self, message: str, errors: Optional[List[str]] = None) -> None:
        super().__init__(message, status.HTTP_400_BAD_REQUEST)
        self.errors = errors or []


class NotFoundError(ServiceError):
    def __init__(self, message: str) -> None:
        super().__init__(message, status.HTTP_404_NOT_FOUND)


class StateConflictError(ServiceError):
    """Entity exists but its current state forbids the operation (used, expired, revoked, duplicate)."""

    def __init__(self, message: str) -> None:
        super().__init__(message, status.HTTP_409_CONFLICT)


class TransactionFailure(ServiceError):
    """Unexpected failure inside an atomic block. Nothing was persisted."""

    def __init__(self, message: str = "Operation failed; no changes were saved") -> None:
        super().__init__(message, status.HTTP_500_INTERNAL_SERVER_ERROR)


class DeliveryFailure(ServiceError):
    """Notification could not be delivered. Never invalidates committed data."""

    def __init__(self, message: str) -> None:
        super().__init__(message, status.HTTP_502_BAD_GATEWAY)
