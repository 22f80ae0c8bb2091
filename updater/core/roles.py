"""Client role reconciliation for Keycloak users."""
from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Iterable, List, Optional

from scripts import audit

from .desired_state import CompositeRoles, Users
from .exceptions import ENTITY_ERRORS, ClientNotFoundError, DuplicateRoleError, UpdaterError
from .intersect import intersect
from .models import ACCOUNT_CLIENT
from .pipeline import RunReport, check_cancelled
from .users import directory_field_changes

logger = logging.getLogger(__name__)


@dataclass
class RoleDiff:
    grant: List[str] = field(default_factory=list)
    revoke: List[str] = field(default_factory=list)

    @property
    def empty(self) -> bool:
        return not self.grant and not self.revoke


def reconcile_user_roles(current: Iterable[str], desired: Iterable[str]) -> RoleDiff:
    """Roles to grant (desired only) and to revoke (current only)."""
    _, only_current, only_desired = intersect(current, desired)
    return RoleDiff(grant=list(only_desired), revoke=list(only_current))


def create_missing_roles(
    directory, client: str, users: Users, composite_roles: Optional[CompositeRoles] = None
) -> List[UpdaterError]:
    """Define on ``client`` every role named in the desired state but absent.

    Composite role names and their children count as named roles.

    Returns:
        Errors raised by role creation (DuplicateRoleError, ClientNotFoundError);
        the caller decides what to do with them.
    """
    wanted = {role for user in users.values() for role in user.roles_for(client)}
    for name, children in (composite_roles or {}).items():
        wanted.add(name)
        wanted.update(children)
    try:
        existing = {role.name for role in directory.list_client_roles(client)}
    except ClientNotFoundError as exc:
        return [exc]

    errors: List[UpdaterError] = []
    for name in sorted(wanted):
        if name in existing:
            continue
        try:
            directory.create_role(client, name)
        except (DuplicateRoleError, ClientNotFoundError) as exc:
            errors.append(exc)
            continue
        logger.info(f"[roles] Created role '{client}/{name}'")
        audit.safe_log_event("role_create", client, details={"role": name})
    return errors


def manage_composite_roles(
    directory,
    client: str,
    composite_roles: CompositeRoles,
    report: RunReport,
    *,
    cancel: Optional[threading.Event] = None,
) -> None:
    """Make each declared composite contain exactly its declared children.

    Children are added before extra ones are removed. Composites absent from
    ``composite_roles`` are left untouched.
    """
    for name in sorted(composite_roles):
        check_cancelled(cancel)
        try:
            current = [role.name for role in directory.list_composites(client, name)]
        except ENTITY_ERRORS as exc:
            logger.warning(f"[roles] Cannot read composite '{client}/{name}': {exc}")
            report.add("keycloak", f"composite {client}/{name}", exc)
            continue
        _, extra, missing = intersect(current, sorted(composite_roles[name]))
        _apply_composites(directory.add_composites, "role_composite_add", client, name, missing, report)
        _apply_composites(directory.remove_composites, "role_composite_remove", client, name, extra, report)


def _apply_composites(operation, event: str, client: str, name: str, children: List[str], report: RunReport) -> None:
    if not children:
        return
    verb = "add" if event == "role_composite_add" else "remove"
    try:
        operation(client, name, children)
    except ENTITY_ERRORS as exc:
        logger.warning(f"[roles] Failed to {verb} {children} in composite '{client}/{name}': {exc}")
        report.add("keycloak", f"{verb} composites of {client}/{name}", exc)
        return
    logger.info(f"[roles] Composite '{client}/{name}': {verb} {children}")
    audit.safe_log_event(event, name, details={"client": client, "roles": children})


def manage_roles(
    directory,
    client: str,
    users: Users,
    report: RunReport,
    *,
    cancel: Optional[threading.Event] = None,
) -> None:
    """Converge names, attributes and roles of every declared Keycloak user.

    Per user: the field update runs first and its failure skips that user's
    role changes. Grants are applied before revokes, each attempted
    independently.
    Every ``account`` client role is revoked regardless of desired state.

    Raises:
        ClientNotFoundError: ``client`` or the ``account`` client is missing
    """
    directory.resolve_client_id(client)
    directory.resolve_client_id(ACCOUNT_CLIENT)

    for account in directory.list_users():
        desired = users.get(account.username)
        if desired is None:
            continue
        check_cancelled(cancel)

        changes = directory_field_changes(account, desired)
        if changes:
            try:
                directory.update_user(account.id, changes)
            except ENTITY_ERRORS as exc:
                logger.error(f"[roles] Update of '{account.username}' failed, roles left untouched: {exc}")
                report.add("keycloak", f"update user {account.username}", exc)
                continue
            logger.info(f"[users] Updated '{account.username}': {sorted(changes)}")
            audit.safe_log_event("user_update", account.username, details={"fields": sorted(changes)})

        try:
            current = [role.name for role in directory.list_user_roles(account.id, client)]
        except ENTITY_ERRORS as exc:
            report.add("keycloak", f"list roles of {account.username}", exc)
            continue
        diff = reconcile_user_roles(current, sorted(desired.roles_for(client)))

        for name in diff.grant:
            _apply(directory.grant_role, "role_grant", account, client, name, report)
        for name in diff.revoke:
            _apply(directory.revoke_role, "role_revoke", account, client, name, report)

        _revoke_account_management(directory, account, report)


def _apply(operation, event: str, account, client: str, role: str, report: RunReport) -> None:
    verb = "grant" if event == "role_grant" else "revoke"
    try:
        operation(account.id, client, role)
    except ENTITY_ERRORS as exc:
        logger.warning(f"[roles] Failed to {verb} '{client}/{role}' for '{account.username}': {exc}")
        report.add("keycloak", f"{verb} {client}/{role} for {account.username}", exc)
        return
    logger.info(f"[roles] {verb.capitalize()} '{client}/{role}' for '{account.username}'")
    audit.safe_log_event(event, account.username, details={"client": client, "role": role})


def _revoke_account_management(directory, account, report: RunReport) -> None:
    try:
        roles = directory.list_user_roles(account.id, ACCOUNT_CLIENT)
    except ENTITY_ERRORS as exc:
        report.add("keycloak", f"list {ACCOUNT_CLIENT} roles of {account.username}", exc)
        return
    for role in roles:
        _apply(directory.revoke_role, "role_revoke", account, ACCOUNT_CLIENT, role.name, report)
