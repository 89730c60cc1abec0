from typing import Any, Dict

from fastapi import status


class ServiceError(Exception):
    """Base exception for service layer errors."""

    code = "service_error"

    def __init__(self, message: str, status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR, **context: Any) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.context = context

    @property
    def detail(self) -> Dict[str, Any]:
        """Body for HTTPException.detail: which constraint failed, on which entity."""
        return {"code": self.code, "message": self.message, **self.context}


class NotFoundError(ServiceError):
    """Id does not resolve, or resolves outside the caller's tenant."""

    code = "not_found"

    def __init__(self, message: str, **context: Any) -> None:
        super().__init__(message, status.HTTP_404_NOT_FOUND, **context)


class ValidationFailedError(ServiceError):
    code = "validation_error"

    def __init__(self, message: str, **context: Any) -> None:
        super().__init__(message, status.HTTP_400_BAD_REQUEST, **context)


class ConflictError(ServiceError):
    """Uniqueness violation (section name, roll number), whether pre-checked or raised by the store."""

    code = "conflict"

    def __init__(self, message: str, **context: Any) -> None:
        super().__init__(message, status.HTTP_409_CONFLICT, **context)


class BlockedError(ServiceError):
    """Precondition failed: students are still enrolled in what the caller wants to rename or remove."""

    code = "blocked"

    def __init__(self, message: str, *, entity: str, name: str, count: int, **context: Any) -> None:
        super().__init__(message, status.HTTP_409_CONFLICT, entity=entity, name=name, count=count, **context)
        self.entity = entity
        self.name = name
        self.count = count


class DuplicateActionRequiresOverride(ServiceError):
    """Same (student, academic year, action type) already recorded. Resubmit with force_override."""

    code = "requires_override"

    def __init__(self, message: str, **context: Any) -> None:
        super().__init__(message, status.HTTP_409_CONFLICT, requires_override=True, **context)


class AuthorizationDeniedError(ServiceError):
    code = "authorization_denied"

    def __init__(self, message: str = "Access denied for this resource", **context: Any) -> None:
        super().__init__(message, status.HTTP_403_FORBIDDEN, **context)
