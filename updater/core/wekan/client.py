"""Low-level access to the MongoDB database backing Wekan."""
from __future__ import annotations

import secrets
from datetime import datetime, timezone
from typing import Optional

from pymongo import MongoClient
from pymongo.collection import Collection

from .exceptions import mongo_errors

# Meteor random id alphabet (no ambiguous characters)
_ID_ALPHABET = "23456789ABCDEFGHJKLMNPQRSTWXYZabcdefghijkmnopqrstuvwxyz"
SERVER_SELECTION_TIMEOUT_MS = 5000


def new_id(length: int = 17) -> str:
    """Generate a Meteor-style document identifier."""
    return "".join(secrets.choice(_ID_ALPHABET) for _ in range(length))


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class WekanClient:
    """Holds the MongoDB connection and exposes Wekan collections.

    Usage:
        client = WekanClient("mongodb://localhost:27017", "wekan")
        client.ping()
        client.collection("boards").find_one({"slug": "templates"})
    """

    def __init__(
        self,
        url: str,
        database: str,
        *,
        mongo_client: Optional[MongoClient] = None,
        timeout_ms: int = SERVER_SELECTION_TIMEOUT_MS,
    ):
        self._mongo = mongo_client or MongoClient(
            url, appname="keycloak-updater", serverSelectionTimeoutMS=timeout_ms
        )
        self.database_name = database
        self.db = self._mongo[database]

    def collection(self, name: str) -> Collection:
        return self.db[name]

    @mongo_errors
    def ping(self) -> None:
        """Fail early with WekanUnavailableError when MongoDB is unreachable."""
        self._mongo.admin.command("ping")

    def close(self) -> None:
        self._mongo.close()
