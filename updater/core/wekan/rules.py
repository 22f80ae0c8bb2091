"""Wekan automation rules of the form "label added -> add member".

A Wekan rule is stored as three documents: the rule itself, its trigger
(``activityType: addedLabel``) and its action (``actionType: addMember``).
Rules of any other shape are left untouched and never listed.
"""
from __future__ import annotations
import logging
from typing import List

from ..models import AutomationRule
from .client import WekanClient, new_id, utcnow
from .exceptions import mongo_errors

logger = logging.getLogger(__name__)

TRIGGER_ADDED_LABEL = "addedLabel"
ACTION_ADD_MEMBER = "addMember"


class RuleService:
    """Service for taskforce automation rules."""

    def __init__(self, client: WekanClient):
        self.client = client
        self.rules = client.collection("rules")
        self.triggers = client.collection("triggers")
        self.actions = client.collection("actions")

    @mongo_errors
    def list_rules(self, board_id: str) -> List[AutomationRule]:
        rule_docs = list(self.rules.find({"boardId": board_id}))
        if not rule_docs:
            return []
        triggers = {
            doc["_id"]: doc
            for doc in self.triggers.find({"_id": {"$in": [r.get("triggerId") for r in rule_docs]}})
        }
        actions = {
            doc["_id"]: doc
            for doc in self.actions.find({"_id": {"$in": [r.get("actionId") for r in rule_docs]}})
        }

        rules = []
        for doc in rule_docs:
            trigger = triggers.get(doc.get("triggerId"))
            action = actions.get(doc.get("actionId"))
            if not trigger or not action:
                continue
            if trigger.get("activityType") != TRIGGER_ADDED_LABEL or action.get("actionType") != ACTION_ADD_MEMBER:
                continue
            rules.append(
                AutomationRule(
                    id=doc["_id"],
                    board_id=board_id,
                    label_id=trigger.get("labelId", ""),
                    username=action.get("username", ""),
                    trigger_id=trigger["_id"],
                    action_id=action["_id"],
                )
            )
        return rules

    @mongo_errors
    def create_rule(self, board_id: str, label_id: str, username: str, title: str = "") -> AutomationRule:
        now = utcnow()
        trigger_id, action_id, rule_id = new_id(), new_id(), new_id()
        self.triggers.insert_one({
            "_id": trigger_id,
            "activityType": TRIGGER_ADDED_LABEL,
            "boardId": board_id,
            "labelId": label_id,
            "userId": "*",
            "desc": title,
            "createdAt": now,
            "modifiedAt": now,
        })
        self.actions.insert_one({
            "_id": action_id,
            "actionType": ACTION_ADD_MEMBER,
            "boardId": board_id,
            "username": username,
            "desc": title,
            "createdAt": now,
            "modifiedAt": now,
        })
        self.rules.insert_one({
            "_id": rule_id,
            "title": title or f"taskforce {username}",
            "boardId": board_id,
            "triggerId": trigger_id,
            "actionId": action_id,
            "createdAt": now,
            "modifiedAt": now,
        })
        return AutomationRule(rule_id, board_id, label_id, username, trigger_id, action_id)

    @mongo_errors
    def delete_rule(self, rule: AutomationRule) -> None:
        self.rules.delete_one({"_id": rule.id})
        if rule.trigger_id:
            self.triggers.delete_one({"_id": rule.trigger_id})
        if rule.action_id:
            self.actions.delete_one({"_id": rule.action_id})
