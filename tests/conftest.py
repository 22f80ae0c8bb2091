"""Pytest shared fixtures: in-memory Keycloak and Wekan collaborators."""
import itertools
import pathlib
import sys
from typing import Dict, List, Optional, Set, Tuple

# Add project root to Python path
ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

import pytest

from scripts import audit
from updater.core.exceptions import (
    BoardNotFoundError,
    ClientNotFoundError,
    DuplicateEmailError,
    DuplicateRoleError,
    DuplicateUserError,
    InsufficientPermissionsError,
    NotFoundError,
    UserAlreadyExistsError,
    UserNotFoundError,
)
from updater.core.models import (
    AutomationRule,
    Board,
    BoardLabel,
    BoardMember,
    BoardUser,
    Card,
    Change,
    DirectoryRole,
    DirectoryUser,
    OAUTH2,
)
from updater.core.pipeline import RunReport


# ─────────────────────────────────────────────────────────────────────────────
# Audit isolation
# ─────────────────────────────────────────────────────────────────────────────
@pytest.fixture(autouse=True)
def _isolated_audit_log(monkeypatch, tmp_path):
    """Never write audit events outside the test directory."""
    audit_dir = tmp_path / "audit"
    monkeypatch.setattr(audit, "AUDIT_LOG_DIR", audit_dir)
    monkeypatch.setattr(audit, "AUDIT_LOG_FILE", audit_dir / "updater-events.jsonl")
    monkeypatch.setenv("AUDIT_LOG_SIGNING_KEY", "test-signing-key-for-audit-trail")
    yield audit_dir


# ─────────────────────────────────────────────────────────────────────────────
# Keycloak
# ─────────────────────────────────────────────────────────────────────────────
class FakeDirectory:
    """In-memory stand-in for KeycloakDirectory.

    ``failures`` maps (operation, subject) to the exception raised, where
    subject is the username for user operations and the role name for role
    operations.
    """

    def __init__(self, clients=("signauxfaibles", "account"), realm="test"):
        self.realm = realm
        self.clients = set(clients)
        self.users: Dict[str, dict] = {}
        self.client_roles: Dict[str, Set[str]] = {c: set() for c in clients}
        self.user_roles: Dict[Tuple[str, str], Set[str]] = {}
        self.composites: Dict[Tuple[str, str], Set[str]] = {}
        self.failures: Dict[Tuple[str, str], Exception] = {}
        self.calls: List[Tuple] = []
        self.realm_settings: Dict = {}
        self.configured_clients: List[dict] = []
        self._ids = itertools.count(1)

    # helpers
    def add_user(self, username, enabled=True, firstname="", lastname="", email=None, attributes=None, roles=None,
                 client="signauxfaibles"):
        user_id = f"kc-{next(self._ids)}"
        self.users[user_id] = {
            "id": user_id,
            "username": username,
            "email": email if email is not None else username,
            "firstname": firstname,
            "lastname": lastname,
            "enabled": enabled,
            "attributes": {k: tuple(v) for k, v in (attributes or {}).items()},
        }
        if roles:
            self.client_roles.setdefault(client, set()).update(roles)
            self.user_roles[(user_id, client)] = set(roles)
        return user_id

    def by_username(self, username) -> dict:
        return next(u for u in self.users.values() if u["username"] == username)

    def roles_of(self, username, client="signauxfaibles") -> Set[str]:
        return set(self.user_roles.get((self.by_username(username)["id"], client), set()))

    def _fail(self, operation, subject):
        error = self.failures.get((operation, subject))
        if error is not None:
            raise error

    def _require_client(self, client):
        if client not in self.clients:
            raise ClientNotFoundError(f"Client '{client}' not found")

    # collaborator contract
    def list_users(self):
        return [
            DirectoryUser(
                id=u["id"], username=u["username"], email=u["email"], firstname=u["firstname"],
                lastname=u["lastname"], enabled=u["enabled"], attributes=u["attributes"],
            )
            for u in self.users.values()
        ]

    def create_user(self, record):
        self._fail("create_user", record.username)
        for user in self.users.values():
            if user["username"] == record.username:
                raise UserAlreadyExistsError(f"User '{record.username}' already exists")
            if user["email"] == record.email:
                raise DuplicateEmailError(f"User with email '{record.email}' already exists")
        self.calls.append(("create_user", record.username))
        return self.add_user(
            record.username, firstname=record.firstname, lastname=record.lastname,
            email=record.email, attributes=record.attributes,
        )

    def update_user(self, user_id, fields):
        self._fail("update_user", self.users[user_id]["username"])
        self.calls.append(("update_user", self.users[user_id]["username"], dict(fields)))
        user = self.users[user_id]
        user["firstname"] = fields.get("firstName", user["firstname"])
        user["lastname"] = fields.get("lastName", user["lastname"])
        if "attributes" in fields:
            user["attributes"] = {k: tuple(v) for k, v in fields["attributes"].items()}

    def set_enabled(self, user_id, enabled):
        self._fail("set_enabled", self.users[user_id]["username"])
        if self.users[user_id]["enabled"] == enabled:
            return Change.UNCHANGED
        self.users[user_id]["enabled"] = enabled
        self.calls.append(("set_enabled", self.users[user_id]["username"], enabled))
        return Change.CHANGED

    def resolve_client_id(self, client):
        self._require_client(client)
        return f"uuid-{client}"

    def configure_client(self, representation):
        self.configured_clients.append(representation)
        created = representation["clientId"] not in self.clients
        self.clients.add(representation["clientId"])
        self.client_roles.setdefault(representation["clientId"], set())
        return "created" if created else "updated"

    def update_realm(self, settings):
        self.realm_settings.update(settings)

    def list_client_roles(self, client):
        self._require_client(client)
        return [DirectoryRole(client, name, f"role-{name}") for name in sorted(self.client_roles[client])]

    def list_user_roles(self, user_id, client):
        self._require_client(client)
        return [DirectoryRole(client, name) for name in sorted(self.user_roles.get((user_id, client), set()))]

    def create_role(self, client, name):
        self._require_client(client)
        if name in self.client_roles[client]:
            raise DuplicateRoleError(f"Role '{name}' already exists on client '{client}'")
        self.calls.append(("create_role", client, name))
        self.client_roles[client].add(name)

    def grant_role(self, user_id, client, name):
        self._require_client(client)
        self._fail("grant_role", name)
        if name not in self.client_roles[client]:
            raise NotFoundError(f"Role '{name}' not found on client '{client}'")
        self.calls.append(("grant_role", self.users[user_id]["username"], client, name))
        self.user_roles.setdefault((user_id, client), set()).add(name)

    def revoke_role(self, user_id, client, name):
        self._require_client(client)
        self._fail("revoke_role", name)
        self.calls.append(("revoke_role", self.users[user_id]["username"], client, name))
        self.user_roles.get((user_id, client), set()).discard(name)

    def _composite(self, client, name):
        self._require_client(client)
        if name not in self.client_roles[client]:
            raise NotFoundError(f"Role '{name}' not found on client '{client}'")
        return self.composites.setdefault((client, name), set())

    def list_composites(self, client, name):
        return [DirectoryRole(client, child) for child in sorted(self._composite(client, name))]

    def add_composites(self, client, name, children):
        self._fail("add_composites", name)
        composite = self._composite(client, name)
        missing = [c for c in children if c not in self.client_roles[client]]
        if missing:
            raise NotFoundError(f"Role '{missing[0]}' not found on client '{client}'")
        self.calls.append(("add_composites", client, name, sorted(children)))
        composite.update(children)

    def remove_composites(self, client, name, children):
        self._fail("remove_composites", name)
        composite = self._composite(client, name)
        self.calls.append(("remove_composites", client, name, sorted(children)))
        composite.difference_update(children)


# ─────────────────────────────────────────────────────────────────────────────
# Wekan
# ─────────────────────────────────────────────────────────────────────────────
class FakeBoards:
    """In-memory stand-in for the Wekan board-system facade."""

    def __init__(self, admin_username="admin"):
        self.admin_username = admin_username
        self.users: Dict[str, dict] = {}
        self.boards: Dict[str, dict] = {}
        self.cards: Dict[str, dict] = {}
        self.rules: Dict[str, AutomationRule] = {}
        self.failures: Dict[Tuple[str, str], Exception] = {}
        self.calls: List[Tuple] = []
        self.closed = False
        self._ids = itertools.count(1)
        self.add_user(admin_username, method="password", is_admin=True)

    # helpers
    def _next(self, prefix):
        return f"{prefix}-{next(self._ids)}"

    def add_user(self, username, method=OAUTH2, disabled=False, is_admin=False, email=None):
        user_id = self._next("u")
        self.users[user_id] = {
            "id": user_id, "username": username, "emails": (email or username,),
            "method": method, "disabled": disabled, "is_admin": is_admin,
        }
        return user_id

    def add_board(self, slug, labels=(), members=()):
        board_id = self._next("b")
        self.boards[board_id] = {
            "id": board_id,
            "slug": slug,
            "labels": {self._next("l"): name for name in labels},
            "members": {},
        }
        for username in members:
            self.boards[board_id]["members"][self.user_id(username)] = {"active": True, "admin": False}
        return board_id

    def add_card(self, board_id, labels=(), members=()):
        card_id = self._next("c")
        self.cards[card_id] = {
            "id": card_id, "board_id": board_id,
            "label_ids": [self.label_id(board_id, name) for name in labels],
            "members": [self.user_id(username) for username in members],
        }
        return card_id

    def add_rule(self, board_id, label, username):
        rule = AutomationRule(self._next("r"), board_id, self.label_id(board_id, label), username)
        self.rules[rule.id] = rule
        return rule

    def user_id(self, username):
        return next(u["id"] for u in self.users.values() if u["username"] == username)

    def label_id(self, board_id, name):
        return next(i for i, n in self.boards[board_id]["labels"].items() if n == name)

    def board_id(self, slug):
        return next(b["id"] for b in self.boards.values() if b["slug"] == slug)

    def membership(self, slug, username) -> Optional[dict]:
        return self.boards[self.board_id(slug)]["members"].get(self.user_id(username))

    def card_members(self, card_id) -> List[str]:
        names = {u["id"]: u["username"] for u in self.users.values()}
        return sorted(names[i] for i in self.cards[card_id]["members"])

    def rule_keys(self) -> Set[Tuple[str, str, str]]:
        return {
            (self.boards[r.board_id]["slug"], self.boards[r.board_id]["labels"][r.label_id], r.username)
            for r in self.rules.values()
        }

    def _fail(self, operation, subject):
        error = self.failures.get((operation, subject))
        if error is not None:
            raise error

    def _board(self, data) -> Board:
        return Board(
            id=data["id"],
            slug=data["slug"],
            title=data["slug"],
            members=tuple(
                BoardMember(data["id"], user_id, m["active"], m["admin"]) for user_id, m in data["members"].items()
            ),
            labels=tuple(BoardLabel(label_id, name) for label_id, name in data["labels"].items()),
        )

    def _user(self, data) -> BoardUser:
        return BoardUser(
            id=data["id"], username=data["username"], emails=data["emails"],
            authentication_method=data["method"], login_disabled=data["disabled"], is_admin=data["is_admin"],
        )

    # collaborator contract
    def admin_id(self):
        return self.user_id(self.admin_username)

    def assert_privileged(self):
        admin = next((u for u in self.users.values() if u["username"] == self.admin_username), None)
        if admin is None:
            raise UserNotFoundError(self.admin_username)
        if not admin["is_admin"]:
            raise InsufficientPermissionsError(self.admin_username)

    def close(self):
        self.closed = True

    def list_users(self):
        return [self._user(u) for u in self.users.values()]

    def insert_user(self, record):
        self._fail("insert_user", record.username)
        for user in self.users.values():
            if user["username"] == record.username or record.email in user["emails"]:
                raise DuplicateUserError(f"User '{record.username}' conflicts with '{user['username']}'")
        self.calls.append(("insert_user", record.username))
        return self.add_user(record.username, email=record.email)

    def enable_user(self, user_id):
        return self._set_disabled(user_id, False)

    def disable_user(self, user_id):
        return self._set_disabled(user_id, True)

    def _set_disabled(self, user_id, disabled):
        if self.users[user_id]["disabled"] == disabled:
            return Change.UNCHANGED
        self.users[user_id]["disabled"] = disabled
        self.calls.append(("disable_user" if disabled else "enable_user", self.users[user_id]["username"]))
        return Change.CHANGED

    def get_board(self, slug):
        data = next((b for b in self.boards.values() if b["slug"] == slug), None)
        if data is None:
            raise BoardNotFoundError(f"Board '{slug}' not found")
        return self._board(data)

    def list_domain_boards(self):
        return [self._board(b) for b in self.boards.values() if b["slug"] != "templates"]

    def select_boards_for_member(self, user_id):
        return [self._board(b) for b in self.boards.values() if user_id in b["members"]]

    def ensure_active_member(self, board_id, user_id):
        self._fail("ensure_active_member", self.users[user_id]["username"])
        member = self.boards[board_id]["members"].get(user_id)
        if member is not None and member["active"]:
            return Change.UNCHANGED
        if member is None:
            self.boards[board_id]["members"][user_id] = {"active": True, "admin": False}
        else:
            member["active"] = True
        self.calls.append(("activate", self.boards[board_id]["slug"], self.users[user_id]["username"]))
        return Change.CHANGED

    def ensure_inactive_member(self, board_id, user_id):
        member = self.boards[board_id]["members"].get(user_id)
        if member is None or not member["active"]:
            return Change.UNCHANGED
        member["active"] = False
        self.calls.append(("deactivate", self.boards[board_id]["slug"], self.users[user_id]["username"]))
        return Change.CHANGED

    def ensure_board_admin(self, board_id, user_id):
        member = self.boards[board_id]["members"].setdefault(user_id, {"active": False, "admin": False})
        if member["active"] and member["admin"]:
            return Change.UNCHANGED
        member.update(active=True, admin=True)
        self.calls.append(("board_admin", self.boards[board_id]["slug"], self.users[user_id]["username"]))
        return Change.CHANGED

    def list_rules(self, board_id):
        return [r for r in self.rules.values() if r.board_id == board_id]

    def create_rule(self, board_id, label_id, username):
        self._fail("create_rule", username)
        rule = AutomationRule(self._next("r"), board_id, label_id, username)
        self.rules[rule.id] = rule
        self.calls.append(("create_rule", self.boards[board_id]["slug"], username))
        return rule

    def delete_rule(self, rule):
        self.rules.pop(rule.id, None)
        self.calls.append(("delete_rule", self.boards[rule.board_id]["slug"], rule.username))

    def list_cards_with_label(self, board_id, label_id):
        return [
            Card(c["id"], c["board_id"], label_ids=tuple(c["label_ids"]), members=tuple(c["members"]))
            for c in self.cards.values()
            if c["board_id"] == board_id and label_id in c["label_ids"]
        ]

    def add_card_member(self, card_id, user_id):
        if user_id in self.cards[card_id]["members"]:
            return Change.UNCHANGED
        self.cards[card_id]["members"].append(user_id)
        return Change.CHANGED

    def remove_card_member(self, card_id, user_id):
        if user_id not in self.cards[card_id]["members"]:
            return Change.UNCHANGED
        self.cards[card_id]["members"].remove(user_id)
        return Change.CHANGED


# ─────────────────────────────────────────────────────────────────────────────
# Fixtures
# ─────────────────────────────────────────────────────────────────────────────
@pytest.fixture()
def directory():
    return FakeDirectory()


@pytest.fixture()
def boards():
    return FakeBoards()


@pytest.fixture()
def report():
    return RunReport()
