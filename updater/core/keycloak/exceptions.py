"""Keycloak-specific exceptions for error handling."""
from __future__ import annotations

from ..exceptions import ConflictError, NotFoundError, RejectedError, TransportError


class KeycloakAPIError(RejectedError):
    """HTTP error from Keycloak Admin API.

    Attributes:
        status_code: HTTP status code
        message: Error message from response
        endpoint: API endpoint that failed
    """

    def __init__(self, status_code: int, message: str, endpoint: str):
        self.status_code = status_code
        self.message = message
        self.endpoint = endpoint
        super().__init__(f"[{status_code}] {endpoint}: {message}")


class KeycloakNotFoundError(KeycloakAPIError, NotFoundError):
    """404 from Keycloak Admin API."""
    pass


class KeycloakConflictError(KeycloakAPIError, ConflictError):
    """409 from Keycloak Admin API."""
    pass


class KeycloakUnavailableError(TransportError):
    """Keycloak unreachable, timing out or answering 5xx."""

    def __init__(self, message: str, endpoint: str, status_code: int | None = None):
        self.status_code = status_code
        self.endpoint = endpoint
        super().__init__(f"{endpoint}: {message}")
