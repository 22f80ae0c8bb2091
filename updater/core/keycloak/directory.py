"""Identity-directory collaborator bound to one managed realm.

This is the only Keycloak surface the reconcilers use. Client names are the
human readable clientIds; internal UUIDs and role identifiers are resolved
and cached here.
"""
from __future__ import annotations
import logging
from typing import Any, Dict, Iterable, List

from ..exceptions import DuplicateRoleError, NotFoundError
from ..models import Change, DirectoryRole, DirectoryUser, DirectoryUserRecord
from .client import KeycloakClient
from .realm import RealmService
from .roles import RoleService
from .users import UserService

logger = logging.getLogger(__name__)


class KeycloakDirectory:
    """Keycloak operations scoped to ``realm``.

    Usage:
        client = KeycloakClient("http://keycloak:8080/auth")
        client.authenticate_admin("admin", "password", "master")
        directory = KeycloakDirectory(client, "master")
        directory.list_users()
    """

    def __init__(self, client: KeycloakClient, realm: str):
        self.client = client
        self.realm = realm
        self.users = UserService(client)
        self.roles = RoleService(client)
        self.realms = RealmService(client)
        self._client_ids: Dict[str, str] = {}
        self._client_roles: Dict[str, Dict[str, DirectoryRole]] = {}

    # Users

    def list_users(self) -> List[DirectoryUser]:
        return self.users.list_users(self.realm)

    def create_user(self, record: DirectoryUserRecord) -> str:
        return self.users.create_user(self.realm, record)

    def update_user(self, user_id: str, fields: Dict[str, Any]) -> None:
        self.users.update_user(self.realm, user_id, fields)

    def set_enabled(self, user_id: str, enabled: bool) -> Change:
        return self.users.set_enabled(self.realm, user_id, enabled)

    # Clients

    def resolve_client_id(self, client_name: str) -> str:
        if client_name not in self._client_ids:
            self._client_ids[client_name] = self.realms.resolve_client_id(self.realm, client_name)
        return self._client_ids[client_name]

    def configure_client(self, representation: Dict[str, Any]) -> str:
        result = self.realms.save_client(self.realm, representation)
        self._client_ids.pop(representation["clientId"], None)
        return result

    def update_realm(self, settings: Dict[str, Any]) -> None:
        self.realms.update_realm(self.realm, settings)

    # Roles

    def _roles_by_name(self, client_name: str) -> Dict[str, DirectoryRole]:
        if client_name not in self._client_roles:
            uuid = self.resolve_client_id(client_name)
            roles = self.roles.list_client_roles(self.realm, uuid, client_name)
            self._client_roles[client_name] = {role.name: role for role in roles}
        return self._client_roles[client_name]

    def _role(self, client_name: str, role_name: str) -> DirectoryRole:
        role = self._roles_by_name(client_name).get(role_name)
        if role is None:
            raise NotFoundError(f"Role '{role_name}' not found on client '{client_name}'")
        return role

    def list_client_roles(self, client_name: str) -> List[DirectoryRole]:
        return list(self._roles_by_name(client_name).values())

    def list_user_roles(self, user_id: str, client_name: str) -> List[DirectoryRole]:
        uuid = self.resolve_client_id(client_name)
        return self.roles.list_user_roles(self.realm, user_id, uuid, client_name)

    def create_role(self, client_name: str, role_name: str) -> None:
        """Define a new role on a client.

        Raises:
            DuplicateRoleError: role already defined
            ClientNotFoundError: client cannot be resolved
        """
        uuid = self.resolve_client_id(client_name)
        if role_name in self._roles_by_name(client_name):
            raise DuplicateRoleError(f"Role '{role_name}' already exists on client '{client_name}'")
        try:
            self.roles.create_role(self.realm, uuid, client_name, role_name)
        finally:
            self._client_roles.pop(client_name, None)

    def grant_role(self, user_id: str, client_name: str, role_name: str) -> None:
        uuid = self.resolve_client_id(client_name)
        self.roles.grant_roles(self.realm, user_id, uuid, [self._role(client_name, role_name)])

    def revoke_role(self, user_id: str, client_name: str, role_name: str) -> None:
        uuid = self.resolve_client_id(client_name)
        self.roles.revoke_roles(self.realm, user_id, uuid, [self._role(client_name, role_name)])

    # Composite roles

    def list_composites(self, client_name: str, role_name: str) -> List[DirectoryRole]:
        uuid = self.resolve_client_id(client_name)
        self._role(client_name, role_name)
        return self.roles.list_composites(self.realm, uuid, client_name, role_name)

    def add_composites(self, client_name: str, role_name: str, children: Iterable[str]) -> None:
        """Make ``children`` (roles of the same client) part of composite ``role_name``.

        Raises:
            NotFoundError: the composite or one of the children is not defined
        """
        uuid = self.resolve_client_id(client_name)
        self._role(client_name, role_name)
        roles = [self._role(client_name, child) for child in children]
        self.roles.add_composites(self.realm, uuid, role_name, roles)

    def remove_composites(self, client_name: str, role_name: str, children: Iterable[str]) -> None:
        uuid = self.resolve_client_id(client_name)
        roles = [self._role(client_name, child) for child in children]
        self.roles.remove_composites(self.realm, uuid, role_name, roles)
