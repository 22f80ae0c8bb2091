"""Desired-state loading and derived views.

The desired state is a read-only mapping ``username -> DesiredUser``, plus
optional composite role definitions for the managed client. Every helper
here returns a new mapping; none of them mutates its input.
"""
from __future__ import annotations

import logging
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, FrozenSet, Iterable, List, Mapping, Tuple, Union

import yaml

from .exceptions import DesiredStateError
from .models import DesiredUser, WEKAN_SCOPE

logger = logging.getLogger(__name__)

Users = Mapping[str, DesiredUser]
CompositeRoles = Mapping[str, FrozenSet[str]]
BoardsMembers = Dict[str, Dict[str, DesiredUser]]


def normalize_username(value: str) -> str:
    return value.strip().lower()


def freeze(users: Mapping[str, DesiredUser]) -> Users:
    return MappingProxyType(dict(users))


# ─────────────────────────────────────────────────────────────────────────────
# Loading
# ─────────────────────────────────────────────────────────────────────────────

def _string_list(value: Any, where: str, problems: List[str]) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value.strip()]
    if isinstance(value, list) and all(isinstance(item, str) for item in value):
        return [item.strip() for item in value]
    problems.append(f"{where}: expected a list of strings, got {value!r}")
    return []


def _parse_user(username: str, raw: Any, problems: List[str]) -> DesiredUser | None:
    where = f"users.{username}"
    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        problems.append(f"{where}: expected a mapping, got {type(raw).__name__}")
        return None

    names = {}
    for key in ("lastname", "firstname"):
        value = raw.get(key, "")
        if not isinstance(value, str):
            problems.append(f"{where}.{key}: expected a string, got {value!r}")
            value = ""
        names[key] = value.strip()

    roles: Dict[str, List[str]] = {}
    raw_roles = raw.get("roles") or {}
    if isinstance(raw_roles, dict):
        for client, client_roles in raw_roles.items():
            roles[str(client)] = _string_list(client_roles, f"{where}.roles.{client}", problems)
    else:
        problems.append(f"{where}.roles: expected a mapping client -> roles, got {raw_roles!r}")

    attributes: Dict[str, List[str]] = {}
    raw_attributes = raw.get("attributes") or {}
    if isinstance(raw_attributes, dict):
        for key, value in raw_attributes.items():
            if isinstance(value, (int, float)) and not isinstance(value, bool):
                value = str(value)
            attributes[str(key)] = _string_list(value, f"{where}.attributes.{key}", problems)
    else:
        problems.append(f"{where}.attributes: expected a mapping, got {raw_attributes!r}")

    unknown = set(raw) - {"lastname", "firstname", "scopes", "roles", "boards", "taskforces", "attributes"}
    for key in sorted(unknown):
        problems.append(f"{where}.{key}: unknown field")

    return DesiredUser(
        username=username,
        lastname=names["lastname"],
        firstname=names["firstname"],
        scopes=frozenset(_string_list(raw.get("scopes"), f"{where}.scopes", problems)),
        roles=roles,
        boards=frozenset(_string_list(raw.get("boards"), f"{where}.boards", problems)),
        taskforces=frozenset(_string_list(raw.get("taskforces"), f"{where}.taskforces", problems)),
        attributes=attributes,
    )


def parse_desired_state(document: Any) -> Users:
    """Build the desired-state mapping from a parsed YAML document.

    Raises:
        DesiredStateError: listing every malformed entry found
    """
    problems: List[str] = []
    if not isinstance(document, dict) or not isinstance(document.get("users"), dict):
        raise DesiredStateError(["top level: expected a mapping with a 'users' mapping"])

    users: Dict[str, DesiredUser] = {}
    origins: Dict[str, str] = {}
    for raw_key, raw_user in document["users"].items():
        if not isinstance(raw_key, str) or not raw_key.strip():
            problems.append(f"users: invalid username {raw_key!r}")
            continue
        username = normalize_username(raw_key)
        if username in origins:
            problems.append(
                f"users.{raw_key}: duplicates '{origins[username]}' once normalized to '{username}'"
            )
            continue
        origins[username] = raw_key
        user = _parse_user(username, raw_user, problems)
        if user is not None:
            users[username] = user

    if problems:
        raise DesiredStateError(problems)
    return freeze(users)


def parse_composite_roles(document: Any) -> CompositeRoles:
    """Read the optional ``composite_roles`` section: composite name -> child role names.

    Raises:
        DesiredStateError: listing every malformed entry found
    """
    raw = document.get("composite_roles") if isinstance(document, dict) else None
    if raw is None:
        return MappingProxyType({})
    if not isinstance(raw, dict):
        raise DesiredStateError([f"composite_roles: expected a mapping, got {type(raw).__name__}"])

    problems: List[str] = []
    composites: Dict[str, FrozenSet[str]] = {}
    for raw_name, raw_children in raw.items():
        if not isinstance(raw_name, str) or not raw_name.strip():
            problems.append(f"composite_roles: invalid role name {raw_name!r}")
            continue
        name = raw_name.strip()
        children = frozenset(
            child for child in _string_list(raw_children, f"composite_roles.{name}", problems) if child
        )
        if name in children:
            problems.append(f"composite_roles.{name}: a role cannot contain itself")
            continue
        composites[name] = children

    if problems:
        raise DesiredStateError(problems)
    return MappingProxyType(composites)


def _read_document(path: Path) -> Any:
    logger.debug(f"[stock] Reading desired state from {path}")
    try:
        with path.open("r", encoding="utf-8") as handle:
            return yaml.safe_load(handle)
    except yaml.YAMLError as exc:
        raise DesiredStateError([f"{path}: invalid YAML ({exc})"]) from exc


def load_stock(path: Union[str, Path]) -> Tuple[Users, CompositeRoles]:
    """Read users and composite role definitions from one desired-state file."""
    path = Path(path)
    document = _read_document(path)
    users = parse_desired_state(document)
    composites = parse_composite_roles(document)
    logger.info(
        f"[stock] {len(users)} user(s), {len(composites)} composite role(s) declared in {path.name}"
    )
    return users, composites


# ─────────────────────────────────────────────────────────────────────────────
# Derived views
# ─────────────────────────────────────────────────────────────────────────────

def select_scope(users: Users, scope: str = WEKAN_SCOPE) -> Users:
    """Keep only users tagged with ``scope``."""
    return freeze({name: user for name, user in users.items() if user.has_scope(scope)})


def with_admin(users: Users, admin_username: str, scope: str = WEKAN_SCOPE) -> Users:
    """Return a copy of ``users`` that also declares the administrator account.

    The administrator is never part of the source file but must never be
    disabled. An explicit entry in ``users`` is kept and tagged with ``scope``.
    """
    augmented = dict(users)
    existing = augmented.get(admin_username)
    if existing is None:
        augmented[admin_username] = DesiredUser(username=admin_username, scopes=frozenset({scope}))
    elif not existing.has_scope(scope):
        augmented[admin_username] = DesiredUser(
            username=existing.username,
            lastname=existing.lastname,
            firstname=existing.firstname,
            scopes=existing.scopes | {scope},
            roles=existing.roles,
            boards=existing.boards,
            taskforces=existing.taskforces,
            attributes=existing.attributes,
        )
    return freeze(augmented)


def infer_board_members(users: Users, known_board_slugs: Iterable[str] = ()) -> BoardsMembers:
    """Group users by the boards they declare.

    Boards present in ``known_board_slugs`` but declared by nobody are kept
    with an empty member set so their current members can be deactivated.
    """
    boards: BoardsMembers = {}
    for username, user in users.items():
        for slug in sorted(user.boards):
            boards.setdefault(slug, {})[username] = user
    for slug in known_board_slugs:
        boards.setdefault(slug, {})
    return boards
