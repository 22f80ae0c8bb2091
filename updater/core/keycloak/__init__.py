"""Keycloak Admin API client library.

Architecture:
- client.py: HTTP client with authentication and auto-refresh
- users.py: user listing, creation, update, enable/disable
- roles.py: client roles and user role mappings
- realm.py: realm settings and client configuration
- directory.py: realm-bound facade consumed by the reconcilers
- exceptions.py: HTTP status -> error taxonomy mapping

Usage:
    from updater.core.keycloak import KeycloakClient, KeycloakDirectory

    client = KeycloakClient("http://keycloak:8080/auth")
    client.authenticate_admin("admin", "password", "master")
    directory = KeycloakDirectory(client, "master")
"""
from .client import KeycloakClient, REQUEST_TIMEOUT
from .directory import KeycloakDirectory
from .exceptions import (
    KeycloakAPIError,
    KeycloakConflictError,
    KeycloakNotFoundError,
    KeycloakUnavailableError,
)
from .realm import RealmService
from .roles import RoleService
from .users import UserService

__all__ = [
    "KeycloakClient",
    "REQUEST_TIMEOUT",
    "KeycloakDirectory",
    "KeycloakAPIError",
    "KeycloakConflictError",
    "KeycloakNotFoundError",
    "KeycloakUnavailableError",
    "RealmService",
    "RoleService",
    "UserService",
]
