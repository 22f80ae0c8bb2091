"""Section runners: the Keycloak pipeline, then the Wekan pipeline.

Errors escaping a stage halt that section and are appended to the run
report. The Wekan section runs even when the Keycloak section failed.
"""
from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

from scripts import audit

from .board_members import check_native_users, manage_board_members
from .desired_state import CompositeRoles, Users, select_scope
from .exceptions import ClientNotFoundError, UpdaterError
from .pipeline import Pipeline, RunReport, Stage, check_cancelled
from .roles import create_missing_roles, manage_composite_roles, manage_roles
from .taskforces import add_missing_rules_and_card_membership, remove_extra_rules_and_card_membership
from .users import manage_board_users, manage_directory_users

logger = logging.getLogger(__name__)

KEYCLOAK = "keycloak"
WEKAN = "wekan"


@dataclass
class KeycloakContext:
    directory: Any
    users: Users
    client: str
    report: RunReport
    realm_settings: Dict[str, Any] = field(default_factory=dict)
    clients: Sequence[Dict[str, Any]] = ()
    composite_roles: CompositeRoles = field(default_factory=dict)
    protected_usernames: Sequence[str] = ()
    max_changes: Optional[int] = None
    cancel: Optional[threading.Event] = None


@dataclass
class WekanContext:
    boards: Any
    users: Users
    report: RunReport
    cancel: Optional[threading.Event] = None


# ─────────────────────────────────────────────────────────────────────────────
# Keycloak stages
# ─────────────────────────────────────────────────────────────────────────────

def _configure_realm(ctx: KeycloakContext) -> None:
    if not ctx.realm_settings:
        logger.info("[init] No realm settings declared")
        return
    check_cancelled(ctx.cancel)
    ctx.directory.update_realm(dict(ctx.realm_settings))
    audit.safe_log_event("realm_configure", ctx.directory.realm, details={"keys": sorted(ctx.realm_settings)})


def _configure_clients(ctx: KeycloakContext) -> None:
    for representation in ctx.clients:
        check_cancelled(ctx.cancel)
        result = ctx.directory.configure_client(dict(representation))
        audit.safe_log_event(
            "client_configure", representation["clientId"], details={"result": result}
        )


def _create_missing_roles(ctx: KeycloakContext) -> None:
    for error in create_missing_roles(ctx.directory, ctx.client, ctx.users, ctx.composite_roles):
        if isinstance(error, ClientNotFoundError):
            raise error
        logger.warning(f"[roles] {error}")
        ctx.report.add(KEYCLOAK, "create role", error)
    manage_composite_roles(ctx.directory, ctx.client, ctx.composite_roles, ctx.report, cancel=ctx.cancel)


def _manage_directory_users(ctx: KeycloakContext) -> None:
    manage_directory_users(
        ctx.directory,
        ctx.client,
        ctx.users,
        ctx.report,
        protected_usernames=ctx.protected_usernames,
        max_changes=ctx.max_changes,
        cancel=ctx.cancel,
    )


def _manage_roles(ctx: KeycloakContext) -> None:
    manage_roles(ctx.directory, ctx.client, ctx.users, ctx.report, cancel=ctx.cancel)


def keycloak_pipeline() -> Pipeline[KeycloakContext]:
    return Pipeline(KEYCLOAK, [
        Stage("configure_realm", _configure_realm),
        Stage("configure_clients", _configure_clients),
        Stage("create_missing_roles", _create_missing_roles),
        Stage("manage_users", _manage_directory_users),
        Stage("manage_roles", _manage_roles),
    ])


# ─────────────────────────────────────────────────────────────────────────────
# Wekan stages
# ─────────────────────────────────────────────────────────────────────────────

def _check_native_users(ctx: WekanContext) -> None:
    check_native_users(ctx.boards)


def _manage_board_users(ctx: WekanContext) -> None:
    ctx.boards.assert_privileged()
    manage_board_users(ctx.boards, ctx.users, ctx.report, cancel=ctx.cancel)


def _manage_board_members(ctx: WekanContext) -> None:
    manage_board_members(ctx.boards, ctx.users, ctx.report, cancel=ctx.cancel)


def _add_missing(ctx: WekanContext) -> None:
    add_missing_rules_and_card_membership(ctx.boards, ctx.users, ctx.report, cancel=ctx.cancel)


def _remove_extra(ctx: WekanContext) -> None:
    remove_extra_rules_and_card_membership(ctx.boards, ctx.users, ctx.report, cancel=ctx.cancel)


def wekan_pipeline() -> Pipeline[WekanContext]:
    return Pipeline(WEKAN, [
        Stage("check_native_users", _check_native_users),
        Stage("manage_users", _manage_board_users),
        Stage("manage_board_members", _manage_board_members),
        Stage("add_missing_rules_and_card_membership", _add_missing),
        Stage("remove_extra_rules_and_card_membership", _remove_extra),
    ])


# ─────────────────────────────────────────────────────────────────────────────
# Sections
# ─────────────────────────────────────────────────────────────────────────────

def _run_section(pipeline: Pipeline, context, report: RunReport, stop_after: Optional[str]) -> bool:
    try:
        if stop_after:
            pipeline.stop_after(context, stop_after)
        else:
            pipeline.run(context)
    except UpdaterError as exc:
        logger.error(f"[{pipeline.name}] Section halted: {exc}")
        report.add(pipeline.name, "section", exc)
        return False
    return True


def update_keycloak(context: KeycloakContext, stop_after: Optional[str] = None) -> bool:
    logger.info(f"[keycloak] Reconciling {len(context.users)} declared user(s)")
    return _run_section(keycloak_pipeline(), context, context.report, stop_after)


def update_wekan(context: WekanContext, stop_after: Optional[str] = None) -> bool:
    """Run the Wekan section on the wekan-scoped users of ``context.users``."""
    scoped = WekanContext(
        boards=context.boards,
        users=select_scope(context.users),
        report=context.report,
        cancel=context.cancel,
    )
    logger.info(f"[wekan] Reconciling {len(scoped.users)} user(s) in wekan scope")
    return _run_section(wekan_pipeline(), scoped, context.report, stop_after)


def stage_names() -> Dict[str, List[str]]:
    return {KEYCLOAK: keycloak_pipeline().stage_names, WEKAN: wekan_pipeline().stage_names}


def resolve_stage(name: str) -> Tuple[str, str]:
    """Map ``section.stage`` or an unambiguous ``stage`` to (section, stage).

    Raises:
        ValueError: unknown or ambiguous stage name
    """
    names = stage_names()
    if "." in name:
        section, stage = name.split(".", 1)
        if stage in names.get(section, []):
            return section, stage
        raise ValueError(f"Unknown stage '{name}' (known: {names})")
    sections = [section for section, stages in names.items() if name in stages]
    if not sections:
        raise ValueError(f"Unknown stage '{name}' (known: {names})")
    if len(sections) > 1:
        raise ValueError(
            f"Stage '{name}' is ambiguous, use {' or '.join(f'{s}.{name}' for s in sections)}"
        )
    return sections[0], name


def update_all(
    keycloak: Optional[KeycloakContext],
    wekan: Optional[WekanContext],
    *,
    stop_after: Optional[str] = None,
) -> RunReport:
    """Run both sections in order and return the shared report.

    With ``stop_after`` in the Keycloak pipeline the Wekan section is
    skipped; with a Wekan stage the Keycloak section runs in full.

    Raises:
        ValueError: unknown or ambiguous ``stop_after`` stage, or a stage
            whose section has no context
    """
    keycloak_stop = wekan_stop = None
    if stop_after:
        section, stage = resolve_stage(stop_after)
        if section == KEYCLOAK:
            keycloak_stop = stage
        else:
            wekan_stop = stage
        if {KEYCLOAK: keycloak, WEKAN: wekan}[section] is None:
            raise ValueError(f"Stage '{stop_after}' belongs to the {section} section, which is not run")

    report = (keycloak or wekan).report
    if keycloak is not None:
        update_keycloak(keycloak, keycloak_stop)
    if wekan is not None and not keycloak_stop:
        update_wekan(wekan, wekan_stop)
    return report
