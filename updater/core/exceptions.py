"""Error taxonomy shared by reconcilers and collaborators.

Entity-level errors (``NotFoundError`` for a board or label, ``ConflictError``,
``RejectedError``) are caught by the reconcilers, logged and reported; the
run continues with the next entity. Everything else propagates out of the
current stage and halts the section.
"""
from __future__ import annotations

from typing import Iterable


class UpdaterError(Exception):
    """Base exception for all updater operations."""
    pass


class NotFoundError(UpdaterError):
    """A client, board, label or user cannot be resolved."""
    pass


class ClientNotFoundError(NotFoundError):
    """Client does not exist in realm."""
    pass


class BoardNotFoundError(NotFoundError):
    """Board slug does not exist in Wekan."""
    pass


class UserNotFoundError(NotFoundError):
    """User lookup failed - username does not exist."""
    pass


class ConflictError(UpdaterError):
    """The object to create already exists."""
    pass


class UserAlreadyExistsError(ConflictError):
    """User creation failed - username already exists."""
    pass


class DuplicateEmailError(UserAlreadyExistsError):
    """User creation failed - another account uses the same e-mail."""
    pass


class DuplicateRoleError(ConflictError):
    """Role creation failed - role already exists on client."""
    pass


class DuplicateUserError(ConflictError):
    """Wekan user insertion failed - username or e-mail already taken."""
    pass


class TransportError(UpdaterError):
    """External system unreachable or failing for infrastructure reasons."""
    pass


class RejectedError(UpdaterError):
    """A single call was rejected by the external system (4xx)."""
    pass


class InsufficientPermissionsError(UpdaterError):
    """Connected account lacks required privileges."""
    pass


class TooManyChangesError(UpdaterError):
    """Computed diff exceeds the configured change budget."""

    def __init__(self, changes: int, accepted: int):
        self.changes = changes
        self.accepted = accepted
        super().__init__(
            f"{changes} user creations/deactivations computed, "
            f"at most {accepted} accepted; check the desired state file"
        )


class ReconcileCancelled(UpdaterError):
    """Cancellation was requested; mutations already applied are kept."""
    pass


class _ProblemListError(UpdaterError):
    """Carries every problem found while validating an input document."""

    title = "invalid document"

    def __init__(self, problems: Iterable[str]):
        self.problems = list(problems)
        lines = "\n".join(f"  - {problem}" for problem in self.problems)
        super().__init__(f"{self.title} ({len(self.problems)} problem(s)):\n{lines}")


class ConfigError(_ProblemListError):
    """Configuration file is malformed."""

    title = "invalid configuration"


class DesiredStateError(_ProblemListError):
    """Desired-state file is malformed."""

    title = "invalid desired state"


# Errors a reconciler logs and reports before moving on to the next entity.
ENTITY_ERRORS = (NotFoundError, ConflictError, RejectedError)
