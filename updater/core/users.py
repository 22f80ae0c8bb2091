"""User lifecycle reconciliation: create, enable, disable.

The same diff drives both systems. Accounts are never deleted: a user
removed from the desired state is only disabled, so the identifier and
history of the account survive.
"""
from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

from scripts import audit

from .desired_state import Users, with_admin
from .exceptions import ENTITY_ERRORS, ConflictError, TooManyChangesError
from .intersect import intersect
from .models import (
    BoardUser,
    BoardUserRecord,
    DesiredUser,
    DirectoryUser,
    DirectoryUserRecord,
    OAUTH2,
)
from .pipeline import RunReport, check_cancelled

logger = logging.getLogger(__name__)

SERVICE_ACCOUNT_PREFIX = "service-account-"


@dataclass
class UserDiff:
    """Usernames to create, enable and disable."""
    to_create: List[str] = field(default_factory=list)
    to_enable: List[str] = field(default_factory=list)
    to_disable: List[str] = field(default_factory=list)

    @property
    def changes(self) -> int:
        """Creations and deactivations; enabling an existing account does not count."""
        return len(self.to_create) + len(self.to_disable)


def reconcile_users(current: Mapping[str, bool], desired: Iterable[str]) -> UserDiff:
    """Compute the lifecycle diff.

    Args:
        current: username -> enabled flag, as observed in the target system
        desired: usernames declared in the desired state

    Returns:
        UserDiff; ``to_disable`` only lists accounts that are still enabled,
        so a converged system yields nothing to create or disable.
    """
    both, only_current, only_desired = intersect(current.keys(), desired)
    return UserDiff(
        to_create=list(only_desired),
        to_enable=list(both),
        to_disable=[username for username in only_current if current[username]],
    )


def directory_field_changes(current: DirectoryUser, desired: DesiredUser) -> Dict[str, Any]:
    """Representation fields of ``current`` that differ from ``desired``."""
    changes: Dict[str, Any] = {}
    if current.firstname != desired.firstname:
        changes["firstName"] = desired.firstname
    if current.lastname != desired.lastname:
        changes["lastName"] = desired.lastname
    if dict(current.attributes) != dict(desired.attributes):
        changes["attributes"] = {k: list(v) for k, v in desired.attributes.items()}
    return changes


def _is_protected(username: str, protected: Sequence[str]) -> bool:
    return username in protected or username.startswith(SERVICE_ACCOUNT_PREFIX)


# ─────────────────────────────────────────────────────────────────────────────
# Identity directory
# ─────────────────────────────────────────────────────────────────────────────

def _log_directory_collision(
    desired: DesiredUser, accounts: List[DirectoryUser], error: Exception
) -> None:
    existing = next(
        (a for a in accounts if a.email.lower() == desired.email and a.username != desired.username),
        None,
    )
    if existing is None:
        logger.warning(
            f"[users] Cannot create '{desired.username}': {error}. "
            f"Fix: find the account using e-mail '{desired.email}' in the realm and rename it "
            f"to '{desired.username}', or change the e-mail in the desired state."
        )
        return
    diffs = directory_field_changes(existing, desired)
    if existing.username != desired.username:
        diffs["username"] = desired.username
    logger.warning(
        f"[users] Cannot create '{desired.username}': account {existing.id} "
        f"('{existing.username}') already uses e-mail '{desired.email}'. "
        f"Differences: {diffs or 'none'}. "
        f"Fix: rename '{existing.username}' to '{desired.username}' in Keycloak, "
        f"then re-run; nothing was merged automatically."
    )


def manage_directory_users(
    directory,
    client: str,
    users: Users,
    report: RunReport,
    *,
    protected_usernames: Sequence[str] = (),
    max_changes: Optional[int] = None,
    cancel: Optional[threading.Event] = None,
) -> UserDiff:
    """Create, enable then disable Keycloak users.

    Disabled users also lose every role of ``client``.

    Raises:
        ClientNotFoundError: ``client`` does not exist in the realm
        TooManyChangesError: diff larger than ``max_changes``; nothing applied
    """
    directory.resolve_client_id(client)
    accounts = directory.list_users()
    managed = {a.username: a for a in accounts if not _is_protected(a.username, protected_usernames)}
    diff = reconcile_users({name: a.enabled for name, a in managed.items()}, users.keys())
    logger.info(
        f"[users] keycloak: {len(diff.to_create)} to create, "
        f"{len(diff.to_enable)} to enable, {len(diff.to_disable)} to disable"
    )
    if max_changes is not None and diff.changes > max_changes:
        raise TooManyChangesError(diff.changes, max_changes)

    for username in diff.to_create:
        check_cancelled(cancel)
        desired = users[username]
        try:
            user_id = directory.create_user(DirectoryUserRecord.from_desired(desired))
        except ConflictError as exc:
            _log_directory_collision(desired, accounts, exc)
            report.add("keycloak", f"create user {username}", exc)
            continue
        except ENTITY_ERRORS as exc:
            logger.error(f"[users] Failed to create '{username}': {exc}")
            report.add("keycloak", f"create user {username}", exc)
            continue
        logger.info(f"[users] Created '{username}' ({user_id})")
        audit.safe_log_event("user_create", username, details={"user_id": user_id})

    for username in diff.to_enable:
        check_cancelled(cancel)
        account = managed[username]
        try:
            change = directory.set_enabled(account.id, True)
        except ENTITY_ERRORS as exc:
            logger.error(f"[users] Failed to enable '{username}': {exc}")
            report.add("keycloak", f"enable user {username}", exc)
            continue
        if change.changed:
            logger.info(f"[users] Enabled '{username}'")
            audit.safe_log_event("user_enable", username, details={"user_id": account.id})

    for username in diff.to_disable:
        check_cancelled(cancel)
        account = managed[username]
        try:
            change = directory.set_enabled(account.id, False)
        except ENTITY_ERRORS as exc:
            logger.error(f"[users] Failed to disable '{username}': {exc}")
            report.add("keycloak", f"disable user {username}", exc)
            continue
        if change.changed:
            logger.info(f"[users] Disabled '{username}'")
            audit.safe_log_event("user_disable", username, details={"user_id": account.id})
        _revoke_all_client_roles(directory, account, client, report)

    return diff


def _revoke_all_client_roles(directory, account: DirectoryUser, client: str, report: RunReport) -> None:
    try:
        roles = directory.list_user_roles(account.id, client)
    except ENTITY_ERRORS as exc:
        report.add("keycloak", f"list roles of {account.username}", exc)
        return
    for role in roles:
        try:
            directory.revoke_role(account.id, client, role.name)
        except ENTITY_ERRORS as exc:
            logger.warning(f"[roles] Failed to revoke '{role.name}' from '{account.username}': {exc}")
            report.add("keycloak", f"revoke {client}/{role.name} from {account.username}", exc)
            continue
        logger.info(f"[roles] Revoked '{client}/{role.name}' from disabled user '{account.username}'")
        audit.safe_log_event(
            "role_revoke", account.username, details={"client": client, "role": role.name}
        )


# ─────────────────────────────────────────────────────────────────────────────
# Board system
# ─────────────────────────────────────────────────────────────────────────────

def is_genuine(user: BoardUser, admin_username: str) -> bool:
    """Accounts authenticated through oauth2, plus the administrator."""
    return user.authentication_method == OAUTH2 or user.username == admin_username


def manage_board_users(
    boards,
    users: Users,
    report: RunReport,
    *,
    cancel: Optional[threading.Event] = None,
) -> UserDiff:
    """Create, enable then disable Wekan accounts.

    ``users`` must already be restricted to the wekan scope. Native accounts
    (password login) never enter the diff.
    """
    desired_users = with_admin(users, boards.admin_username)
    accounts = boards.list_users()
    genuine = {a.username: a for a in accounts if is_genuine(a, boards.admin_username)}
    diff = reconcile_users(
        {name: not a.login_disabled for name, a in genuine.items()}, desired_users.keys()
    )
    logger.info(
        f"[users] wekan: {len(diff.to_create)} to create, "
        f"{len(diff.to_enable)} to enable, {len(diff.to_disable)} to disable"
    )

    for username in diff.to_create:
        check_cancelled(cancel)
        desired = desired_users[username]
        try:
            user_id = boards.insert_user(BoardUserRecord.from_desired(desired))
        except ConflictError as exc:
            clash = next((a for a in accounts if desired.email in a.emails), None)
            where = f"account {clash.id} ('{clash.username}', {clash.authentication_method})" if clash else "an account"
            logger.warning(
                f"[users] Cannot create wekan user '{username}': {where} already uses this "
                f"username or e-mail. Fix: switch that account to oauth2 with username "
                f"'{username}', or remove the duplicate, then re-run."
            )
            report.add("wekan", f"create user {username}", exc)
            continue
        except ENTITY_ERRORS as exc:
            logger.error(f"[users] Failed to create wekan user '{username}': {exc}")
            report.add("wekan", f"create user {username}", exc)
            continue
        logger.info(f"[users] Created wekan user '{username}' ({user_id})")
        audit.safe_log_event("board_user_create", username, system="wekan", details={"user_id": user_id})

    for username in diff.to_enable:
        check_cancelled(cancel)
        account = genuine[username]
        try:
            change = boards.enable_user(account.id)
        except ENTITY_ERRORS as exc:
            report.add("wekan", f"enable user {username}", exc)
            continue
        if change.changed:
            logger.info(f"[users] Enabled wekan user '{username}'")
            audit.safe_log_event("board_user_enable", username, system="wekan")

    for username in diff.to_disable:
        check_cancelled(cancel)
        account = genuine[username]
        try:
            change = boards.disable_user(account.id)
        except ENTITY_ERRORS as exc:
            report.add("wekan", f"disable user {username}", exc)
            continue
        if change.changed:
            logger.info(f"[users] Disabled wekan user '{username}'")
            audit.safe_log_event("board_user_disable", username, system="wekan")

    return diff
