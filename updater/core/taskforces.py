"""Taskforce automation rules and the card membership they imply.

A taskforce is a board label. A user declaring taskforce ``T`` who is an
active member of board ``B`` gets a rule "when label T is added to a card of
B, add this user", and becomes member of every card of B already carrying T.

Each stage reads a fresh ``TaskforceSnapshot``, plans its mutations with a
pure function, then applies them one by one.
"""
from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set, Tuple, Union

from scripts import audit

from .desired_state import Users
from .exceptions import ENTITY_ERRORS, NotFoundError
from .models import AutomationRule, Board, BoardUser, Card
from .pipeline import RunReport, check_cancelled
from .users import is_genuine

logger = logging.getLogger(__name__)

Assignment = Tuple[str, str, str]  # (board_id, label_id, username)


@dataclass
class TaskforceSnapshot:
    boards: Dict[str, Board] = field(default_factory=dict)
    rules: Dict[str, List[AutomationRule]] = field(default_factory=dict)
    cards: Dict[Tuple[str, str], List[Card]] = field(default_factory=dict)
    users: Dict[str, BoardUser] = field(default_factory=dict)

    def cards_with_label(self, board_id: str, label_id: str) -> List[Card]:
        return self.cards.get((board_id, label_id), [])

    def all_rules(self) -> List[AutomationRule]:
        return [rule for board_id in sorted(self.rules) for rule in self.rules[board_id]]


def read_snapshot(boards, users: Users) -> TaskforceSnapshot:
    """Read boards, rules, labelled cards and accounts from Wekan."""
    snapshot = TaskforceSnapshot()
    for board in boards.list_domain_boards():
        snapshot.boards[board.id] = board
    known_slugs = {board.slug for board in snapshot.boards.values()}
    for slug in sorted({slug for user in users.values() for slug in user.boards} - known_slugs):
        try:
            board = boards.get_board(slug)
        except NotFoundError:
            logger.debug(f"[taskforces] Board '{slug}' not found, ignored")
            continue
        snapshot.boards[board.id] = board

    taskforce_names = {name for user in users.values() for name in user.taskforces}
    for board in snapshot.boards.values():
        rules = boards.list_rules(board.id)
        snapshot.rules[board.id] = rules
        wanted_labels = {rule.label_id for rule in rules}
        wanted_labels |= {label.id for label in board.labels if label.name in taskforce_names}
        for label_id in sorted(wanted_labels):
            snapshot.cards[(board.id, label_id)] = boards.list_cards_with_label(board.id, label_id)

    snapshot.users = {
        user.username: user for user in boards.list_users() if is_genuine(user, boards.admin_username)
    }
    return snapshot


def desired_assignments(snapshot: TaskforceSnapshot, users: Users) -> Set[Assignment]:
    """(board, label, username) implied by the desired state.

    Only boards where the user is currently an active member count; a
    taskforce with no matching label on a board is skipped.
    """
    assignments: Set[Assignment] = set()
    for username, user in users.items():
        account = snapshot.users.get(username)
        if account is None or not user.taskforces:
            continue
        for board in snapshot.boards.values():
            if not board.is_active_member(account.id):
                continue
            for name in user.taskforces:
                label = board.label_named(name)
                if label is not None:
                    assignments.add((board.id, label.id, username))
    return assignments


# ─────────────────────────────────────────────────────────────────────────────
# Mutations
# ─────────────────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class CreateRule:
    board_id: str
    label_id: str
    username: str

    def apply(self, boards) -> bool:
        boards.create_rule(self.board_id, self.label_id, self.username)
        return True


@dataclass(frozen=True)
class DeleteRule:
    rule: AutomationRule

    @property
    def username(self) -> str:
        return self.rule.username

    @property
    def board_id(self) -> str:
        return self.rule.board_id

    def apply(self, boards) -> bool:
        boards.delete_rule(self.rule)
        return True


@dataclass(frozen=True)
class AddCardMember:
    board_id: str
    card_id: str
    user_id: str
    username: str

    def apply(self, boards) -> bool:
        return boards.add_card_member(self.card_id, self.user_id).changed


@dataclass(frozen=True)
class RemoveCardMember:
    board_id: str
    card_id: str
    user_id: str
    username: str

    def apply(self, boards) -> bool:
        return boards.remove_card_member(self.card_id, self.user_id).changed


Mutation = Union[CreateRule, DeleteRule, AddCardMember, RemoveCardMember]

_EVENTS = {
    CreateRule: "rule_create",
    DeleteRule: "rule_delete",
    AddCardMember: "card_member_add",
    RemoveCardMember: "card_member_remove",
}


def plan_missing_rules_and_card_membership(snapshot: TaskforceSnapshot, users: Users) -> List[Mutation]:
    existing = {rule.key for rule in snapshot.all_rules()}
    mutations: List[Mutation] = []
    seen_cards: Set[Tuple[str, str]] = set()
    for board_id, label_id, username in sorted(desired_assignments(snapshot, users)):
        if (board_id, label_id, username) not in existing:
            mutations.append(CreateRule(board_id, label_id, username))
        user_id = snapshot.users[username].id
        for card in snapshot.cards_with_label(board_id, label_id):
            if user_id in card.members or (card.id, user_id) in seen_cards:
                continue
            seen_cards.add((card.id, user_id))
            mutations.append(AddCardMember(board_id, card.id, user_id, username))
    return mutations


def plan_extra_rules_and_card_membership(snapshot: TaskforceSnapshot, users: Users) -> List[Mutation]:
    desired = desired_assignments(snapshot, users)
    mutations: List[Mutation] = []
    seen_cards: Set[Tuple[str, str]] = set()
    for rule in snapshot.all_rules():
        if rule.key in desired:
            continue
        mutations.append(DeleteRule(rule))
        account = snapshot.users.get(rule.username)
        if account is None:
            continue
        justified = {label_id for board_id, label_id, name in desired
                     if board_id == rule.board_id and name == rule.username}
        for card in snapshot.cards_with_label(rule.board_id, rule.label_id):
            if account.id not in card.members or (card.id, account.id) in seen_cards:
                continue
            if justified.intersection(card.label_ids):
                continue
            seen_cards.add((card.id, account.id))
            mutations.append(RemoveCardMember(rule.board_id, card.id, account.id, rule.username))
    return mutations


def apply_mutations(
    boards,
    snapshot: TaskforceSnapshot,
    mutations: List[Mutation],
    report: RunReport,
    cancel: Optional[threading.Event] = None,
) -> int:
    """Apply mutations in order; entity failures are reported and skipped.

    Returns:
        Number of mutations that changed something
    """
    applied = 0
    for mutation in mutations:
        check_cancelled(cancel)
        event = _EVENTS[type(mutation)]
        board = snapshot.boards.get(mutation.board_id)
        slug = board.slug if board else mutation.board_id
        try:
            changed = mutation.apply(boards)
        except ENTITY_ERRORS as exc:
            logger.error(f"[taskforces] {event} failed for '{mutation.username}' on '{slug}': {exc}")
            report.add("wekan", f"{event} {mutation.username} on {slug}", exc)
            continue
        if not changed:
            continue
        applied += 1
        logger.info(f"[taskforces] {event}: '{mutation.username}' on '{slug}'")
        audit.safe_log_event(event, mutation.username, system="wekan", details={"board": slug})
    return applied


# ─────────────────────────────────────────────────────────────────────────────
# Stages
# ─────────────────────────────────────────────────────────────────────────────

def add_missing_rules_and_card_membership(
    boards, users: Users, report: RunReport, *, cancel: Optional[threading.Event] = None
) -> List[Mutation]:
    snapshot = read_snapshot(boards, users)
    mutations = plan_missing_rules_and_card_membership(snapshot, users)
    logger.info(f"[taskforces] {len(mutations)} rule/card addition(s) planned")
    apply_mutations(boards, snapshot, mutations, report, cancel)
    return mutations


def remove_extra_rules_and_card_membership(
    boards, users: Users, report: RunReport, *, cancel: Optional[threading.Event] = None
) -> List[Mutation]:
    snapshot = read_snapshot(boards, users)
    mutations = plan_extra_rules_and_card_membership(snapshot, users)
    logger.info(f"[taskforces] {len(mutations)} rule/card removal(s) planned")
    apply_mutations(boards, snapshot, mutations, report, cancel)
    return mutations
