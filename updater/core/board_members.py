"""Wekan board membership reconciliation and native-account inventory."""
from __future__ import annotations

import logging
import threading
from typing import Dict, List, Mapping, Optional, Tuple

from scripts import audit

from .desired_state import Users, infer_board_members, with_admin
from .exceptions import ENTITY_ERRORS
from .intersect import intersect
from .models import Board, BoardUser, DesiredUser
from .pipeline import RunReport, check_cancelled
from .users import is_genuine

logger = logging.getLogger(__name__)

TEMPLATES_SLUG = "templates"


def check_native_users(boards) -> List[Tuple[BoardUser, List[str]]]:
    """Inventory enabled accounts not managed by this tool.

    Read-only: native accounts are reported with the boards they are active
    on and never modified.
    """
    logger.info("[boards] Inventory of native accounts")
    inventory = []
    for user in boards.list_users():
        if user.login_disabled or is_genuine(user, boards.admin_username):
            continue
        slugs = [
            board.slug
            for board in boards.select_boards_for_member(user.id)
            if board.is_active_member(user.id) and board.slug != TEMPLATES_SLUG
        ]
        logger.info(f"[boards] Native account '{user.username}' active on {slugs}")
        inventory.append((user, slugs))
    return inventory


def manage_board_members(
    boards,
    users: Users,
    report: RunReport,
    *,
    cancel: Optional[threading.Event] = None,
) -> None:
    """Converge membership of every declared or domain board.

    The administrator is an active member and board admin of every board.
    A declared board missing from Wekan is reported and skipped.
    """
    desired_users = with_admin(users, boards.admin_username)
    domain_boards = {board.slug: board for board in boards.list_domain_boards()}
    members_by_board = infer_board_members(desired_users, known_board_slugs=domain_boards)
    admin_id = boards.admin_id()
    genuine = {u.username: u for u in boards.list_users() if is_genuine(u, boards.admin_username)}

    for slug in sorted(members_by_board):
        check_cancelled(cancel)
        try:
            board = domain_boards.get(slug) or boards.get_board(slug)
        except ENTITY_ERRORS as exc:
            logger.error(f"[boards] Board '{slug}' skipped: {exc}")
            report.add("wekan", f"board {slug}", exc)
            continue
        set_members(boards, board, members_by_board[slug], genuine, admin_id, report)


def set_members(
    boards,
    board: Board,
    members: Mapping[str, DesiredUser],
    genuine: Dict[str, BoardUser],
    admin_id: str,
    report: RunReport,
) -> None:
    genuine_ids = {u.id: u.username for u in genuine.values()}
    current_ids = [m.user_id for m in board.members if m.user_id in genuine_ids]

    desired_ids = [admin_id]
    for username in sorted(members):
        account = genuine.get(username)
        if account is None:
            logger.warning(f"[boards] '{username}' has no wekan account, not added to '{board.slug}'")
            continue
        desired_ids.append(account.id)

    both, only_current, only_desired = intersect(current_ids, desired_ids)

    for user_id in both + only_desired:
        _ensure(boards.ensure_active_member, "board_join", board, user_id, genuine_ids, report)
    for user_id in only_current:
        _ensure(boards.ensure_inactive_member, "board_leave", board, user_id, genuine_ids, report)
    _ensure(boards.ensure_board_admin, "board_admin", board, admin_id, genuine_ids, report)


def _ensure(operation, event: str, board: Board, user_id: str, names: Dict[str, str], report: RunReport) -> None:
    username = names.get(user_id, user_id)
    try:
        change = operation(board.id, user_id)
    except ENTITY_ERRORS as exc:
        logger.error(f"[boards] {event} failed for '{username}' on '{board.slug}': {exc}")
        report.add("wekan", f"{event} {username} on {board.slug}", exc)
        return
    if change.changed:
        logger.info(f"[boards] {event}: '{username}' on '{board.slug}'")
        audit.safe_log_event(event, username, system="wekan", details={"board": board.slug})
