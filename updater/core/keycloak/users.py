"""Keycloak user management operations."""
from __future__ import annotations
import logging
from typing import Any, Dict, List, Optional

from ..models import Change, DirectoryUser, DirectoryUserRecord
from .client import KeycloakClient
from .exceptions import KeycloakConflictError
from ..exceptions import DuplicateEmailError, UserAlreadyExistsError

logger = logging.getLogger(__name__)

MAX_USERS = 100000


class UserService:
    """Service for managing Keycloak users."""

    def __init__(self, client: KeycloakClient):
        """Initialize user service.

        Args:
            client: Authenticated Keycloak client
        """
        self.client = client

    def list_users(self, realm: str) -> List[DirectoryUser]:
        """Return every user of the realm."""
        resp = self.client.get(f"/admin/realms/{realm}/users", params={"max": MAX_USERS})
        return [DirectoryUser.from_representation(rep) for rep in resp.json()]

    def get_user_by_username(self, realm: str, username: str) -> Optional[DirectoryUser]:
        """Return the user that exactly matches the username.

        Args:
            realm: Realm name
            username: Username to search for

        Returns:
            User or None if not found
        """
        resp = self.client.get(
            f"/admin/realms/{realm}/users", params={"username": username, "exact": "true"}
        )
        for rep in resp.json():
            if rep.get("username") == username:
                return DirectoryUser.from_representation(rep)
        return None

    def create_user(self, realm: str, record: DirectoryUserRecord) -> str:
        """Create an enabled user and return its Keycloak identifier.

        Raises:
            DuplicateEmailError: another account already uses the e-mail
            UserAlreadyExistsError: the username is already taken
        """
        try:
            resp = self.client.post(f"/admin/realms/{realm}/users", json=record.to_representation())
        except KeycloakConflictError as exc:
            if "email" in exc.message.lower():
                raise DuplicateEmailError(
                    f"User '{record.username}': e-mail '{record.email}' already in use"
                ) from exc
            raise UserAlreadyExistsError(f"User '{record.username}' already exists") from exc

        location = resp.headers.get("Location", "")
        user_id = location.rstrip("/").rsplit("/", 1)[-1] if location else ""
        if not user_id:
            created = self.get_user_by_username(realm, record.username)
            user_id = created.id if created else ""
        return user_id

    def get_user(self, realm: str, user_id: str) -> Dict[str, Any]:
        return self.client.get(f"/admin/realms/{realm}/users/{user_id}").json()

    def update_user(self, realm: str, user_id: str, fields: Dict[str, Any]) -> None:
        """Merge ``fields`` into the current representation and write it back whole."""
        user = self.get_user(realm, user_id)
        user.update(fields)
        self.client.put(f"/admin/realms/{realm}/users/{user_id}", json=user)

    def set_enabled(self, realm: str, user_id: str, enabled: bool) -> Change:
        """Set the enabled flag, reporting whether anything changed."""
        user = self.get_user(realm, user_id)
        if bool(user.get("enabled")) == enabled:
            return Change.UNCHANGED
        user["enabled"] = enabled
        self.client.put(f"/admin/realms/{realm}/users/{user_id}", json=user)
        return Change.CHANGED
