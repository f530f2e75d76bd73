from __future__ import annotations

import functools
import logging
from collections.abc import Awaitable, Callable
from typing import ParamSpec, TypeVar

from sqlalchemy.exc import SQLAlchemyError

logger = logging.getLogger(__name__)

P = ParamSpec("P")
T = TypeVar("T")


class DomainError(Exception):
    """Base class for errors reported to the caller as-is."""


class ValidationError(DomainError):
    """Malformed input, rejected before any state change."""


class InvalidSelectionError(DomainError):
    """Ballot names a movie that is not part of the session."""


class SessionEndedError(DomainError):
    """Ballot cast on a finished or expired session."""


class DuplicateMemberError(DomainError):
    pass


class MemberNotFoundError(DomainError):
    pass


class ConflictError(DomainError):
    """Group already has a vote in progress."""


class NotFoundError(DomainError):
    pass


class StorageError(DomainError):
    """The database failed underneath an operation."""


def storage_boundary(fn: Callable[P, Awaitable[T]]) -> Callable[P, Awaitable[T]]:
    @functools.wraps(fn)
    async def wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
        try:
            return await fn(*args, **kwargs)
        except SQLAlchemyError as exc:
            logger.exception("storage failure in %s", fn.__name__)
            raise StorageError(f"Storage failure during {fn.__name__}") from exc

    return wrapper
