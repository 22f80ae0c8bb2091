"""Wekan boards, board membership and cards."""
from __future__ import annotations
import logging
from typing import List

from ..exceptions import BoardNotFoundError
from ..models import Board, BoardLabel, BoardMember, Card, Change
from .client import WekanClient, utcnow
from .exceptions import mongo_errors

logger = logging.getLogger(__name__)


def board_from_document(doc: dict) -> Board:
    members = tuple(
        BoardMember(
            board_id=doc["_id"],
            user_id=member["userId"],
            active=bool(member.get("isActive", False)),
            admin=bool(member.get("isAdmin", False)),
        )
        for member in doc.get("members") or []
    )
    labels = tuple(
        BoardLabel(id=label["_id"], name=label.get("name") or "", color=label.get("color") or "")
        for label in doc.get("labels") or []
    )
    return Board(id=doc["_id"], slug=doc.get("slug", ""), title=doc.get("title", ""), members=members, labels=labels)


def card_from_document(doc: dict) -> Card:
    return Card(
        id=doc["_id"],
        board_id=doc.get("boardId", ""),
        title=doc.get("title", ""),
        label_ids=tuple(doc.get("labelIds") or []),
        members=tuple(doc.get("members") or []),
    )


def _new_member(user_id: str, admin: bool = False) -> dict:
    return {
        "userId": user_id,
        "isAdmin": admin,
        "isActive": True,
        "isNoComments": False,
        "isCommentOnly": False,
        "isWorker": False,
    }


class BoardService:
    """Service for Wekan boards and cards."""

    def __init__(self, client: WekanClient):
        self.client = client
        self.boards = client.collection("boards")
        self.cards = client.collection("cards")

    @mongo_errors
    def get_board(self, slug: str) -> Board:
        """Return the non-archived board with this slug.

        Raises:
            BoardNotFoundError: no such board
        """
        doc = self.boards.find_one({"slug": slug, "archived": {"$ne": True}})
        if doc is None:
            raise BoardNotFoundError(f"Board '{slug}' not found")
        return board_from_document(doc)

    @mongo_errors
    def get_board_by_id(self, board_id: str) -> Board:
        doc = self.boards.find_one({"_id": board_id})
        if doc is None:
            raise BoardNotFoundError(f"Board id '{board_id}' not found")
        return board_from_document(doc)

    @mongo_errors
    def list_domain_boards(self, slug_regexp: str) -> List[Board]:
        """Boards managed by this tool: slug matches ``slug_regexp``, not archived, not templates."""
        query = {"slug": {"$regex": slug_regexp}, "type": "board", "archived": {"$ne": True}}
        return [board_from_document(doc) for doc in self.boards.find(query)]

    @mongo_errors
    def select_boards_for_member(self, user_id: str) -> List[Board]:
        return [board_from_document(doc) for doc in self.boards.find({"members.userId": user_id})]

    # ─────────────────────────────────────────────────────────────────────
    # Membership
    # ─────────────────────────────────────────────────────────────────────

    @mongo_errors
    def ensure_active_member(self, board_id: str, user_id: str) -> Change:
        board = self.get_board_by_id(board_id)
        member = board.member(user_id)
        if member is not None and member.active:
            return Change.UNCHANGED
        if member is not None:
            self.boards.update_one(
                {"_id": board_id, "members.userId": user_id},
                {"$set": {"members.$.isActive": True, "modifiedAt": utcnow()}},
            )
        else:
            self.boards.update_one(
                {"_id": board_id},
                {"$push": {"members": _new_member(user_id)}, "$set": {"modifiedAt": utcnow()}},
            )
        return Change.CHANGED

    @mongo_errors
    def ensure_inactive_member(self, board_id: str, user_id: str) -> Change:
        """Deactivate a membership; the membership entry itself is kept."""
        result = self.boards.update_one(
            {"_id": board_id, "members": {"$elemMatch": {"userId": user_id, "isActive": True}}},
            {"$set": {"members.$.isActive": False, "modifiedAt": utcnow()}},
        )
        return Change.CHANGED if result.modified_count else Change.UNCHANGED

    @mongo_errors
    def ensure_board_admin(self, board_id: str, user_id: str) -> Change:
        board = self.get_board_by_id(board_id)
        member = board.member(user_id)
        if member is not None and member.admin and member.active:
            return Change.UNCHANGED
        if member is None:
            self.boards.update_one(
                {"_id": board_id},
                {"$push": {"members": _new_member(user_id, admin=True)}, "$set": {"modifiedAt": utcnow()}},
            )
        else:
            self.boards.update_one(
                {"_id": board_id, "members.userId": user_id},
                {"$set": {"members.$.isAdmin": True, "members.$.isActive": True, "modifiedAt": utcnow()}},
            )
        return Change.CHANGED

    # ─────────────────────────────────────────────────────────────────────
    # Cards
    # ─────────────────────────────────────────────────────────────────────

    @mongo_errors
    def list_cards_with_label(self, board_id: str, label_id: str) -> List[Card]:
        query = {"boardId": board_id, "labelIds": label_id, "archived": {"$ne": True}}
        return [card_from_document(doc) for doc in self.cards.find(query)]

    @mongo_errors
    def add_card_member(self, card_id: str, user_id: str) -> Change:
        result = self.cards.update_one(
            {"_id": card_id, "members": {"$ne": user_id}},
            {"$push": {"members": user_id}, "$set": {"modifiedAt": utcnow()}},
        )
        return Change.CHANGED if result.modified_count else Change.UNCHANGED

    @mongo_errors
    def remove_card_member(self, card_id: str, user_id: str) -> Change:
        result = self.cards.update_one(
            {"_id": card_id, "members": user_id},
            {"$pull": {"members": user_id}, "$set": {"modifiedAt": utcnow()}},
        )
        return Change.CHANGED if result.modified_count else Change.UNCHANGED
