"""
Service error taxonomy.

Services raise these instead of ``HTTPException`` so they stay usable outside
a request; ``team_access.main`` renders them with ``status_code``.
"""
import functools
from typing import Any, Awaitable, Callable, TypeVar

from fastapi import status

from team_access.utils import get_logger


log = get_logger(__name__)

T = TypeVar("T")


class ServiceError(Exception):
    """Base exception for all classified service failures."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message: str = "Internal server error occurred"

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class NotFoundError(ServiceError):
    status_code = status.HTTP_404_NOT_FOUND
    default_message = "Resource not found"


class ConflictError(ServiceError):
    status_code = status.HTTP_409_CONFLICT
    default_message = "Resource already exists"


class BadRequestError(ServiceError):
    """Validation or precondition failure."""
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Bad request"


class UnauthorizedError(ServiceError):
    status_code = status.HTTP_401_UNAUTHORIZED
    default_message = "Unauthorized access"


class ForbiddenError(ServiceError):
    """Actor/target guard violation or missing capability."""
    status_code = status.HTTP_403_FORBIDDEN
    default_message = "Access forbidden"


class InvariantViolationError(ServiceError):
    """Attempt to remove a protected (system or default) record."""
    status_code = status.HTTP_409_CONFLICT
    default_message = "Operation violates a protected record invariant"


class ServiceUnavailableError(ServiceError):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    default_message = "Auth service is currently unavailable"


class InternalError(ServiceError):
    pass


def service_boundary(failure_message: str) -> Callable[[Callable[..., Awaitable[T]]], Callable[..., Awaitable[T]]]:
    """
    Decorate an async service method so unclassified failures surface as
    ``InternalError(failure_message)``.

    Classified ``ServiceError`` subclasses pass through untouched. The
    original exception is logged with its traceback and chained, never
    exposed in the message.
    """
    def decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        @functools.wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> T:
            try:
                return await func(*args, **kwargs)
            except ServiceError:
                raise
            except Exception as exc:
                session = getattr(args[0], "db", None) if args else None
                if session is not None:
                    await session.rollback()
                log.error(
                    "%s in %s (args=%r, kwargs=%r)",
                    failure_message, func.__qualname__, args[1:], kwargs,
                    exc_info=True,
                )
                raise InternalError(failure_message) from exc
        return wrapper
    return decorator
