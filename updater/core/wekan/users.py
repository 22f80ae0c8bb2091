"""Wekan user management operations."""
from __future__ import annotations
import logging
from typing import List

from pymongo.errors import DuplicateKeyError

from ..exceptions import DuplicateUserError, InsufficientPermissionsError, UserNotFoundError
from ..models import BoardUser, BoardUserRecord, Change, OAUTH2
from .client import WekanClient, new_id, utcnow
from .exceptions import mongo_errors

logger = logging.getLogger(__name__)


def user_from_document(doc: dict) -> BoardUser:
    profile = doc.get("profile") or {}
    return BoardUser(
        id=doc["_id"],
        username=doc.get("username", ""),
        emails=tuple(e.get("address", "") for e in doc.get("emails") or []),
        fullname=profile.get("fullname", ""),
        initials=profile.get("initials", ""),
        authentication_method=doc.get("authenticationMethod", "password"),
        login_disabled=bool(doc.get("loginDisabled", False)),
        is_admin=bool(doc.get("isAdmin", False)),
    )


class UserService:
    """Service for managing Wekan users."""

    def __init__(self, client: WekanClient):
        self.client = client
        self.users = client.collection("users")

    @mongo_errors
    def list_users(self) -> List[BoardUser]:
        return [user_from_document(doc) for doc in self.users.find({})]

    @mongo_errors
    def insert_user(self, record: BoardUserRecord) -> str:
        """Insert an oauth2 account and return its identifier.

        Raises:
            DuplicateUserError: username or e-mail already used by another account
        """
        existing = self.users.find_one(
            {"$or": [{"username": record.username}, {"emails.address": record.email}]}
        )
        if existing is not None:
            raise DuplicateUserError(
                f"User '{record.username}' conflicts with existing account '{existing.get('username')}'"
            )
        now = utcnow()
        user_id = new_id()
        document = {
            "_id": user_id,
            "username": record.username,
            "emails": [{"address": record.email, "verified": True}],
            "createdAt": now,
            "modifiedAt": now,
            "isAdmin": False,
            "loginDisabled": False,
            "authenticationMethod": OAUTH2,
            "profile": {
                "fullname": record.fullname,
                "initials": record.initials,
                "boardView": "board-view-swimlanes",
            },
        }
        try:
            self.users.insert_one(document)
        except DuplicateKeyError as exc:
            raise DuplicateUserError(f"User '{record.username}' already exists") from exc
        return user_id

    @mongo_errors
    def set_login_disabled(self, user_id: str, disabled: bool) -> Change:
        result = self.users.update_one(
            {"_id": user_id, "loginDisabled": {"$ne": disabled}},
            {"$set": {"loginDisabled": disabled, "modifiedAt": utcnow()}},
        )
        return Change.CHANGED if result.modified_count else Change.UNCHANGED

    @mongo_errors
    def admin_id(self, admin_username: str) -> str:
        doc = self.users.find_one({"username": admin_username}, {"_id": 1})
        if doc is None:
            raise UserNotFoundError(f"Wekan admin '{admin_username}' not found")
        return doc["_id"]

    @mongo_errors
    def assert_privileged(self, admin_username: str) -> None:
        """Raise unless the configured admin account exists and is a Wekan admin."""
        doc = self.users.find_one({"username": admin_username}, {"isAdmin": 1})
        if doc is None:
            raise UserNotFoundError(f"Wekan admin '{admin_username}' not found")
        if not doc.get("isAdmin"):
            raise InsufficientPermissionsError(f"Wekan user '{admin_username}' is not an administrator")
