"""Keycloak client-role management operations."""
from __future__ import annotations
from typing import Iterable, List

from ..models import DirectoryRole
from .client import KeycloakClient
from .exceptions import KeycloakConflictError
from ..exceptions import DuplicateRoleError


class RoleService:
    """Service for managing Keycloak client roles.

    ``client_uuid`` is the internal identifier returned by
    ``RealmService.resolve_client_id``, not the human readable clientId.
    """

    def __init__(self, client: KeycloakClient):
        """Initialize role service.

        Args:
            client: Authenticated Keycloak client
        """
        self.client = client

    def list_client_roles(self, realm: str, client_uuid: str, client_name: str) -> List[DirectoryRole]:
        resp = self.client.get(f"/admin/realms/{realm}/clients/{client_uuid}/roles")
        return [DirectoryRole(client_name, rep["name"], rep.get("id")) for rep in resp.json()]

    def list_user_roles(self, realm: str, user_id: str, client_uuid: str, client_name: str) -> List[DirectoryRole]:
        resp = self.client.get(f"/admin/realms/{realm}/users/{user_id}/role-mappings/clients/{client_uuid}")
        return [DirectoryRole(client_name, rep["name"], rep.get("id")) for rep in resp.json() or []]

    def create_role(self, realm: str, client_uuid: str, client_name: str, role_name: str) -> None:
        """Create a client role.

        Raises:
            DuplicateRoleError: role already exists on the client
        """
        try:
            self.client.post(f"/admin/realms/{realm}/clients/{client_uuid}/roles", json={"name": role_name})
        except KeycloakConflictError as exc:
            raise DuplicateRoleError(f"Role '{role_name}' already exists on client '{client_name}'") from exc

    def grant_roles(self, realm: str, user_id: str, client_uuid: str, roles: Iterable[DirectoryRole]) -> None:
        payload = [{"id": role.id, "name": role.name} for role in roles]
        self.client.post(f"/admin/realms/{realm}/users/{user_id}/role-mappings/clients/{client_uuid}", json=payload)

    def revoke_roles(self, realm: str, user_id: str, client_uuid: str, roles: Iterable[DirectoryRole]) -> None:
        payload = [{"id": role.id, "name": role.name} for role in roles]
        self.client.delete(f"/admin/realms/{realm}/users/{user_id}/role-mappings/clients/{client_uuid}", json=payload)

    def list_composites(self, realm: str, client_uuid: str, client_name: str, role_name: str) -> List[DirectoryRole]:
        """Roles of the same client contained in composite ``role_name``."""
        resp = self.client.get(
            f"/admin/realms/{realm}/clients/{client_uuid}/roles/{role_name}/composites/clients/{client_uuid}"
        )
        return [DirectoryRole(client_name, rep["name"], rep.get("id")) for rep in resp.json() or []]

    def add_composites(self, realm: str, client_uuid: str, role_name: str, roles: Iterable[DirectoryRole]) -> None:
        """Add ``roles`` to ``role_name``; Keycloak turns it into a composite role."""
        payload = [{"id": role.id, "name": role.name} for role in roles]
        self.client.post(f"/admin/realms/{realm}/clients/{client_uuid}/roles/{role_name}/composites", json=payload)

    def remove_composites(self, realm: str, client_uuid: str, role_name: str, roles: Iterable[DirectoryRole]) -> None:
        payload = [{"id": role.id, "name": role.name} for role in roles]
        self.client.delete(f"/admin/realms/{realm}/clients/{client_uuid}/roles/{role_name}/composites", json=payload)
