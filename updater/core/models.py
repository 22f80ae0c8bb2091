"""Domain records exchanged between reconcilers and collaborators.

Desired-state records are built once per run and never mutated. Records
read from Keycloak or Wekan are snapshots: reconcilers re-read them after
mutating instead of patching them in place.
"""
from __future__ import annotations

import enum
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Dict, FrozenSet, Mapping, Optional, Tuple

WEKAN_SCOPE = "wekan"
ACCOUNT_CLIENT = "account"
OAUTH2 = "oauth2"


class Change(enum.Enum):
    """Outcome of an ensure-style mutation."""
    CHANGED = "changed"
    UNCHANGED = "unchanged"

    @property
    def changed(self) -> bool:
        return self is Change.CHANGED


def _frozen_mapping(value: Mapping) -> Mapping:
    return MappingProxyType(dict(value))


# ─────────────────────────────────────────────────────────────────────────────
# Desired state
# ─────────────────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class DesiredUser:
    """One person as declared in the desired state.

    ``username`` is the lower-cased e-mail address and is unique within a
    desired-state mapping.
    """
    username: str
    lastname: str = ""
    firstname: str = ""
    scopes: FrozenSet[str] = frozenset()
    roles: Mapping[str, FrozenSet[str]] = field(default_factory=dict)
    boards: FrozenSet[str] = frozenset()
    taskforces: FrozenSet[str] = frozenset()
    attributes: Mapping[str, Tuple[str, ...]] = field(default_factory=dict)

    def __post_init__(self):
        object.__setattr__(self, "scopes", frozenset(self.scopes))
        object.__setattr__(self, "boards", frozenset(b for b in self.boards if b))
        object.__setattr__(self, "taskforces", frozenset(t for t in self.taskforces if t))
        object.__setattr__(
            self, "roles", _frozen_mapping({k: frozenset(v) for k, v in self.roles.items()})
        )
        object.__setattr__(
            self, "attributes", _frozen_mapping({k: tuple(v) for k, v in self.attributes.items()})
        )

    @property
    def email(self) -> str:
        return self.username

    def roles_for(self, client: str) -> FrozenSet[str]:
        return self.roles.get(client, frozenset())

    def has_scope(self, scope: str) -> bool:
        return scope in self.scopes

    @property
    def initials(self) -> str:
        return (self.firstname[:1] + self.lastname[:1]).upper()

    @property
    def fullname(self) -> str:
        return f"{self.lastname.upper()} {self.firstname}".strip()


# ─────────────────────────────────────────────────────────────────────────────
# Keycloak
# ─────────────────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class DirectoryRole:
    client: str
    name: str
    id: Optional[str] = None


@dataclass(frozen=True)
class DirectoryUser:
    """Keycloak user; ``id`` is assigned by Keycloak and never changes."""
    id: str
    username: str
    email: str = ""
    firstname: str = ""
    lastname: str = ""
    enabled: bool = True
    attributes: Mapping[str, Tuple[str, ...]] = field(default_factory=dict)

    @classmethod
    def from_representation(cls, rep: dict) -> "DirectoryUser":
        attributes = rep.get("attributes") or {}
        return cls(
            id=rep["id"],
            username=rep.get("username", ""),
            email=rep.get("email") or "",
            firstname=rep.get("firstName") or "",
            lastname=rep.get("lastName") or "",
            enabled=bool(rep.get("enabled", True)),
            attributes=_frozen_mapping({k: tuple(v) for k, v in attributes.items()}),
        )


@dataclass(frozen=True)
class DirectoryUserRecord:
    """Payload used to create a Keycloak user."""
    username: str
    email: str
    firstname: str
    lastname: str
    attributes: Mapping[str, Tuple[str, ...]] = field(default_factory=dict)

    @classmethod
    def from_desired(cls, user: DesiredUser) -> "DirectoryUserRecord":
        return cls(
            username=user.username,
            email=user.email,
            firstname=user.firstname,
            lastname=user.lastname,
            attributes=user.attributes,
        )

    def to_representation(self) -> dict:
        return {
            "username": self.username,
            "email": self.email,
            "firstName": self.firstname,
            "lastName": self.lastname,
            "attributes": {k: list(v) for k, v in self.attributes.items()},
            "enabled": True,
            "emailVerified": True,
        }


# ─────────────────────────────────────────────────────────────────────────────
# Wekan
# ─────────────────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class BoardUser:
    """Wekan account."""
    id: str
    username: str
    emails: Tuple[str, ...] = ()
    fullname: str = ""
    initials: str = ""
    authentication_method: str = OAUTH2
    login_disabled: bool = False
    is_admin: bool = False


@dataclass(frozen=True)
class BoardUserRecord:
    """Payload used to insert a Wekan account."""
    username: str
    email: str
    fullname: str
    initials: str

    @classmethod
    def from_desired(cls, user: DesiredUser) -> "BoardUserRecord":
        return cls(
            username=user.username,
            email=user.email,
            fullname=user.fullname,
            initials=user.initials,
        )


@dataclass(frozen=True)
class BoardMember:
    board_id: str
    user_id: str
    active: bool = True
    admin: bool = False


@dataclass(frozen=True)
class BoardLabel:
    id: str
    name: str
    color: str = ""


@dataclass(frozen=True)
class Board:
    id: str
    slug: str
    title: str = ""
    members: Tuple[BoardMember, ...] = ()
    labels: Tuple[BoardLabel, ...] = ()

    def member(self, user_id: str) -> Optional[BoardMember]:
        return next((m for m in self.members if m.user_id == user_id), None)

    def is_active_member(self, user_id: str) -> bool:
        member = self.member(user_id)
        return member is not None and member.active

    def label_named(self, name: str) -> Optional[BoardLabel]:
        return next((label for label in self.labels if label.name == name), None)

    def labels_by_id(self) -> Dict[str, BoardLabel]:
        return {label.id: label for label in self.labels}


@dataclass(frozen=True)
class Card:
    id: str
    board_id: str
    title: str = ""
    label_ids: Tuple[str, ...] = ()
    members: Tuple[str, ...] = ()


@dataclass(frozen=True)
class AutomationRule:
    """When label ``label_id`` is added to a card, add ``username`` as member."""
    id: str
    board_id: str
    label_id: str
    username: str
    trigger_id: Optional[str] = None
    action_id: Optional[str] = None

    @property
    def key(self) -> Tuple[str, str, str]:
        return (self.board_id, self.label_id, self.username)
