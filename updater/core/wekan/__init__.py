"""Wekan access through its MongoDB database.

Architecture:
- client.py: MongoDB connection, Meteor-style ids
- users.py: accounts (insert, enable/disable, admin checks)
- boards.py: boards, board membership, cards
- rules.py: "label added -> add member" automation rules
- board_system.py: facade consumed by the reconcilers
- exceptions.py: pymongo -> error taxonomy translation
"""
from .board_system import Wekan
from .boards import BoardService
from .client import WekanClient, new_id
from .exceptions import WekanOperationError, WekanUnavailableError
from .rules import RuleService
from .users import UserService

__all__ = [
    "Wekan",
    "WekanClient",
    "new_id",
    "BoardService",
    "RuleService",
    "UserService",
    "WekanOperationError",
    "WekanUnavailableError",
]
