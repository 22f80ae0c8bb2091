"""Keycloak realm and client management operations."""
from __future__ import annotations
import logging
from typing import Any, Dict, Optional

from .client import KeycloakClient
from ..exceptions import ClientNotFoundError

logger = logging.getLogger(__name__)


class RealmService:
    """Service for managing a Keycloak realm and its clients."""

    def __init__(self, client: KeycloakClient):
        """Initialize realm service.

        Args:
            client: Authenticated Keycloak client
        """
        self.client = client

    def get_client(self, realm: str, client_id: str) -> Optional[dict]:
        """Return the client representation matching client_id, if it exists.

        Args:
            realm: Realm name
            client_id: Client ID to find

        Returns:
            Client representation or None if not found
        """
        resp = self.client.get(f"/admin/realms/{realm}/clients", params={"clientId": client_id})
        for rep in resp.json() or []:
            if rep.get("clientId") == client_id:
                return rep
        return None

    def resolve_client_id(self, realm: str, client_id: str) -> str:
        """Resolve the internal UUID of a client.

        Raises:
            ClientNotFoundError: no such clientId in realm
        """
        rep = self.get_client(realm, client_id)
        if not rep or not rep.get("id"):
            raise ClientNotFoundError(f"Client '{client_id}' not found in realm '{realm}'")
        return rep["id"]

    def save_client(self, realm: str, representation: Dict[str, Any]) -> str:
        """Create the client when missing, otherwise update it in place.

        Returns:
            "created" or "updated"
        """
        client_id = representation["clientId"]
        existing = self.get_client(realm, client_id)
        if existing is None:
            self.client.post(f"/admin/realms/{realm}/clients", json=representation)
            logger.info(f"[init] Client '{client_id}' created")
            return "created"
        payload = dict(representation, id=existing["id"])
        self.client.put(f"/admin/realms/{realm}/clients/{existing['id']}", json=payload)
        logger.info(f"[init] Client '{client_id}' updated")
        return "updated"

    def update_realm(self, realm: str, settings: Dict[str, Any]) -> None:
        """Apply a partial realm representation."""
        payload = dict(settings, realm=realm)
        self.client.put(f"/admin/realms/{realm}", json=payload)
        logger.info(f"[init] Realm '{realm}' settings updated ({', '.join(sorted(settings))})")
