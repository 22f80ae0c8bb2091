"""Board-system collaborator bound to one Wekan instance and its admin account."""
from __future__ import annotations
import logging
from typing import List, Optional

from ..models import AutomationRule, Board, BoardUser, BoardUserRecord, Card, Change
from .boards import BoardService
from .client import WekanClient
from .rules import RuleService
from .users import UserService

logger = logging.getLogger(__name__)

DEFAULT_SLUG_DOMAIN_REGEXP = ".*"


class Wekan:
    """Wekan operations used by the reconcilers.

    Usage:
        wekan = Wekan(WekanClient(url, "wekan"), "signaux.faibles", "^tableau-.*")
        wekan.assert_privileged()
        boards = wekan.list_domain_boards()
    """

    def __init__(
        self,
        client: WekanClient,
        admin_username: str,
        slug_domain_regexp: str = DEFAULT_SLUG_DOMAIN_REGEXP,
    ):
        self.client = client
        self.admin_username = admin_username
        self.slug_domain_regexp = slug_domain_regexp or DEFAULT_SLUG_DOMAIN_REGEXP
        self.users = UserService(client)
        self.boards = BoardService(client)
        self.rules = RuleService(client)
        self._admin_id: Optional[str] = None

    # Users

    def admin_id(self) -> str:
        if self._admin_id is None:
            self._admin_id = self.users.admin_id(self.admin_username)
        return self._admin_id

    def assert_privileged(self) -> None:
        self.users.assert_privileged(self.admin_username)

    def close(self) -> None:
        self.client.close()

    def list_users(self) -> List[BoardUser]:
        return self.users.list_users()

    def insert_user(self, record: BoardUserRecord) -> str:
        return self.users.insert_user(record)

    def enable_user(self, user_id: str) -> Change:
        return self.users.set_login_disabled(user_id, False)

    def disable_user(self, user_id: str) -> Change:
        return self.users.set_login_disabled(user_id, True)

    # Boards

    def get_board(self, slug: str) -> Board:
        return self.boards.get_board(slug)

    def list_domain_boards(self) -> List[Board]:
        return self.boards.list_domain_boards(self.slug_domain_regexp)

    def select_boards_for_member(self, user_id: str) -> List[Board]:
        return self.boards.select_boards_for_member(user_id)

    def ensure_active_member(self, board_id: str, user_id: str) -> Change:
        return self.boards.ensure_active_member(board_id, user_id)

    def ensure_inactive_member(self, board_id: str, user_id: str) -> Change:
        return self.boards.ensure_inactive_member(board_id, user_id)

    def ensure_board_admin(self, board_id: str, user_id: str) -> Change:
        return self.boards.ensure_board_admin(board_id, user_id)

    # Rules and cards

    def list_rules(self, board_id: str) -> List[AutomationRule]:
        return self.rules.list_rules(board_id)

    def create_rule(self, board_id: str, label_id: str, username: str) -> AutomationRule:
        return self.rules.create_rule(board_id, label_id, username)

    def delete_rule(self, rule: AutomationRule) -> None:
        self.rules.delete_rule(rule)

    def list_cards_with_label(self, board_id: str, label_id: str) -> List[Card]:
        return self.boards.list_cards_with_label(board_id, label_id)

    def add_card_member(self, card_id: str, user_id: str) -> Change:
        return self.boards.add_card_member(card_id, user_id)

    def remove_card_member(self, card_id: str, user_id: str) -> Change:
        return self.boards.remove_card_member(card_id, user_id)
