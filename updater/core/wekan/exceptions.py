"""Wekan-specific exceptions and pymongo error translation."""
from __future__ import annotations

import functools
from typing import Callable, TypeVar

from pymongo.errors import ConnectionFailure, OperationFailure, PyMongoError

from ..exceptions import RejectedError, TransportError

F = TypeVar("F", bound=Callable)


class WekanUnavailableError(TransportError):
    """MongoDB behind Wekan unreachable or timing out."""
    pass


class WekanOperationError(RejectedError):
    """MongoDB refused a single operation."""
    pass


def mongo_errors(func: F) -> F:
    """Translate pymongo exceptions raised by ``func`` into the updater taxonomy."""

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except ConnectionFailure as exc:
            raise WekanUnavailableError(f"{func.__qualname__}: {exc}") from exc
        except OperationFailure as exc:
            raise WekanOperationError(f"{func.__qualname__}: {exc}") from exc
        except PyMongoError as exc:
            raise WekanUnavailableError(f"{func.__qualname__}: {exc}") from exc

    return wrapper  # type: ignore[return-value]
