import pytest

from updater.core.desired_state import freeze
from updater.core.exceptions import ClientNotFoundError, DuplicateRoleError, RejectedError
from updater.core.models import DesiredUser
from updater.core.roles import create_missing_roles, manage_composite_roles, manage_roles, reconcile_user_roles

CLIENT = "signauxfaibles"


def desired(username, roles=(), **kwargs):
    return DesiredUser(username, roles={CLIENT: frozenset(roles)}, **kwargs)


def users_of(*users):
    return freeze({user.username: user for user in users})


def test_reconcile_user_roles_diff():
    diff = reconcile_user_roles(["bfc", "dgefp"], ["bfc", "urssaf"])
    assert diff.grant == ["urssaf"]
    assert diff.revoke == ["dgefp"]


def test_reconcile_user_roles_equal_sets_is_empty():
    diff = reconcile_user_roles(["bfc", "urssaf"], ["urssaf", "bfc"])
    assert diff.empty


def test_create_missing_roles_only_creates_absent(directory):
    directory.client_roles[CLIENT] = {"bfc"}
    users = users_of(desired("a@x.fr", ["bfc", "urssaf"]), desired("b@x.fr", ["dgefp"]))

    errors = create_missing_roles(directory, CLIENT, users)

    assert errors == []
    assert directory.client_roles[CLIENT] == {"bfc", "urssaf", "dgefp"}
    assert ("create_role", CLIENT, "bfc") not in directory.calls


def test_create_missing_roles_returns_client_not_found(directory):
    users = users_of(desired("a@x.fr", ["bfc"]))
    errors = create_missing_roles(directory, "missing-client", users)
    assert len(errors) == 1
    assert isinstance(errors[0], ClientNotFoundError)


def test_create_missing_roles_returns_duplicates(directory, monkeypatch):
    users = users_of(desired("a@x.fr", ["bfc"]))

    def duplicate(client, name):
        raise DuplicateRoleError(f"Role '{name}' already exists")

    monkeypatch.setattr(directory, "create_role", duplicate)
    errors = create_missing_roles(directory, CLIENT, users)
    assert [type(e) for e in errors] == [DuplicateRoleError]


def test_manage_roles_grants_and_revokes(directory, report):
    directory.client_roles[CLIENT] = {"bfc", "urssaf", "dgefp"}
    directory.add_user("a@x.fr", roles={"bfc", "dgefp"})
    users = users_of(desired("a@x.fr", ["bfc", "urssaf"]))

    manage_roles(directory, CLIENT, users, report)

    assert directory.roles_of("a@x.fr") == {"bfc", "urssaf"}
    assert report.ok


def test_manage_roles_second_run_is_noop(directory, report):
    directory.client_roles[CLIENT] = {"bfc", "urssaf"}
    directory.add_user("a@x.fr", firstname="Alice", lastname="Martin", roles={"bfc"})
    users = users_of(desired("a@x.fr", ["bfc", "urssaf"], firstname="Alice", lastname="Martin"))

    manage_roles(directory, CLIENT, users, report)
    directory.calls.clear()
    manage_roles(directory, CLIENT, users, report)

    assert directory.calls == []


def test_manage_roles_updates_fields_before_roles(directory, report):
    directory.client_roles[CLIENT] = {"bfc"}
    directory.add_user("a@x.fr", firstname="alice")
    users = users_of(desired("a@x.fr", ["bfc"], firstname="Alice", lastname="Martin",
                             attributes={"niveau": ("A",)}))

    manage_roles(directory, CLIENT, users, report)

    assert directory.calls[0] == (
        "update_user", "a@x.fr",
        {"firstName": "Alice", "lastName": "Martin", "attributes": {"niveau": ["A"]}},
    )
    assert directory.calls[1] == ("grant_role", "a@x.fr", CLIENT, "bfc")


def test_manage_roles_skips_roles_when_update_fails(directory, report):
    directory.client_roles[CLIENT] = {"bfc"}
    directory.add_user("a@x.fr")
    directory.add_user("b@x.fr")
    directory.failures[("update_user", "a@x.fr")] = RejectedError("400 bad attribute")
    users = users_of(
        desired("a@x.fr", ["bfc"], firstname="Alice"),
        desired("b@x.fr", ["bfc"]),
    )

    manage_roles(directory, CLIENT, users, report)

    assert directory.roles_of("a@x.fr") == set()
    assert directory.roles_of("b@x.fr") == {"bfc"}
    assert [e.entity for e in report.errors] == ["update user a@x.fr"]


def test_manage_roles_continues_after_failed_grant(directory, report):
    directory.client_roles[CLIENT] = {"bfc", "urssaf"}
    directory.add_user("a@x.fr")
    directory.failures[("grant_role", "bfc")] = RejectedError("403")
    users = users_of(desired("a@x.fr", ["bfc", "urssaf"]))

    manage_roles(directory, CLIENT, users, report)

    assert directory.roles_of("a@x.fr") == {"urssaf"}
    assert len(report.errors) == 1


def test_manage_roles_always_revokes_account_client(directory, report):
    directory.add_user("a@x.fr", roles={"manage-account", "view-profile"}, client="account")
    users = users_of(desired("a@x.fr"))

    manage_roles(directory, CLIENT, users, report)

    assert directory.roles_of("a@x.fr", client="account") == set()


def test_manage_roles_ignores_undeclared_users(directory, report):
    directory.client_roles[CLIENT] = {"bfc"}
    directory.add_user("stranger@x.fr", roles={"bfc"})

    manage_roles(directory, CLIENT, users_of(), report)

    assert directory.roles_of("stranger@x.fr") == {"bfc"}


def test_manage_roles_missing_client_is_foundational(directory, report):
    directory.add_user("a@x.fr")
    with pytest.raises(ClientNotFoundError):
        manage_roles(directory, "nope", users_of(desired("a@x.fr")), report)


def test_manage_roles_grants_before_revoking(directory, report):
    directory.client_roles[CLIENT] = {"old", "new"}
    directory.add_user("a@x.fr", roles={"old"})

    manage_roles(directory, CLIENT, users_of(desired("a@x.fr", ["new"])), report)

    role_calls = [call for call in directory.calls if call[0] in ("grant_role", "revoke_role")]
    assert role_calls == [
        ("grant_role", "a@x.fr", CLIENT, "new"),
        ("revoke_role", "a@x.fr", CLIENT, "old"),
    ]


# ─────────────────────────────────────────────────────────────────────────────
# Composite roles
# ─────────────────────────────────────────────────────────────────────────────

COMPOSITES = {"dreets": frozenset({"bfc", "urssaf"})}


def test_create_missing_roles_includes_composites_and_children(directory):
    users = users_of(desired("a@x.fr", ["dreets"]))

    errors = create_missing_roles(directory, CLIENT, users, COMPOSITES)

    assert errors == []
    assert directory.client_roles[CLIENT] == {"dreets", "bfc", "urssaf"}


def test_manage_composite_roles_adds_missing_children(directory, report):
    directory.client_roles[CLIENT] = {"dreets", "bfc", "urssaf"}

    manage_composite_roles(directory, CLIENT, COMPOSITES, report)

    assert report.ok
    assert directory.composites[(CLIENT, "dreets")] == {"bfc", "urssaf"}
    assert ("add_composites", CLIENT, "dreets", ["bfc", "urssaf"]) in directory.calls


def test_manage_composite_roles_removes_extra_children(directory, report):
    directory.client_roles[CLIENT] = {"dreets", "bfc", "urssaf", "dgefp"}
    directory.composites[(CLIENT, "dreets")] = {"bfc", "dgefp"}

    manage_composite_roles(directory, CLIENT, COMPOSITES, report)

    assert directory.composites[(CLIENT, "dreets")] == {"bfc", "urssaf"}
    composite_calls = [call for call in directory.calls if call[0].endswith("_composites")]
    assert composite_calls == [
        ("add_composites", CLIENT, "dreets", ["urssaf"]),
        ("remove_composites", CLIENT, "dreets", ["dgefp"]),
    ]


def test_manage_composite_roles_second_run_is_noop(directory, report):
    directory.client_roles[CLIENT] = {"dreets", "bfc", "urssaf"}
    manage_composite_roles(directory, CLIENT, COMPOSITES, report)
    directory.calls.clear()

    manage_composite_roles(directory, CLIENT, COMPOSITES, report)

    assert directory.calls == []


def test_manage_composite_roles_leaves_undeclared_composites(directory, report):
    directory.client_roles[CLIENT] = {"dreets", "national", "bfc", "urssaf"}
    directory.composites[(CLIENT, "national")] = {"bfc"}

    manage_composite_roles(directory, CLIENT, COMPOSITES, report)

    assert directory.composites[(CLIENT, "national")] == {"bfc"}


def test_manage_composite_roles_reports_each_failure(directory, report):
    directory.client_roles[CLIENT] = {"dreets", "national", "bfc", "urssaf"}
    directory.failures[("add_composites", "dreets")] = RejectedError("forbidden")
    composites = dict(COMPOSITES, national=frozenset({"bfc"}))

    manage_composite_roles(directory, CLIENT, composites, report)

    assert [error.entity for error in report.errors] == [f"add composites of {CLIENT}/dreets"]
    assert directory.composites[(CLIENT, "national")] == {"bfc"}


def test_manage_composite_roles_unknown_composite_is_reported(directory, report):
    directory.client_roles[CLIENT] = {"bfc"}

    manage_composite_roles(directory, CLIENT, COMPOSITES, report)

    assert [error.entity for error in report.errors] == [f"composite {CLIENT}/dreets"]
