from updater.core.desired_state import freeze
from updater.core.exceptions import RejectedError
from updater.core.models import DesiredUser
from updater.core.taskforces import (
    AddCardMember,
    CreateRule,
    DeleteRule,
    RemoveCardMember,
    add_missing_rules_and_card_membership,
    desired_assignments,
    plan_missing_rules_and_card_membership,
    read_snapshot,
    remove_extra_rules_and_card_membership,
)


def member(username, boards=("tableau-b",), taskforces=("T",)):
    return DesiredUser(
        username,
        scopes=frozenset({"wekan"}),
        boards=frozenset(boards),
        taskforces=frozenset(taskforces),
    )


def users_of(*users):
    return freeze({user.username: user for user in users})


def setup_board(boards, labels=("T",), members=("u@x.fr",)):
    for username in members:
        boards.add_user(username)
    return boards.add_board("tableau-b", labels=labels, members=list(members))


def test_add_creates_rule_and_card_membership(boards, report):
    board_id = setup_board(boards)
    card_id = boards.add_card(board_id, labels=["T"])

    add_missing_rules_and_card_membership(boards, users_of(member("u@x.fr")), report)

    assert boards.rule_keys() == {("tableau-b", "T", "u@x.fr")}
    assert boards.card_members(card_id) == ["u@x.fr"]
    assert report.ok


def test_add_is_idempotent(boards, report):
    board_id = setup_board(boards)
    boards.add_card(board_id, labels=["T"])
    users = users_of(member("u@x.fr"))

    add_missing_rules_and_card_membership(boards, users, report)
    mutations = add_missing_rules_and_card_membership(boards, users, report)

    assert mutations == []
    assert len(boards.rules) == 1


def test_remove_after_taskforce_dropped(boards, report):
    board_id = setup_board(boards)
    card_id = boards.add_card(board_id, labels=["T"])
    add_missing_rules_and_card_membership(boards, users_of(member("u@x.fr")), report)

    remove_extra_rules_and_card_membership(boards, users_of(member("u@x.fr", taskforces=())), report)

    assert boards.rules == {}
    assert boards.card_members(card_id) == []


def test_remove_when_user_leaves_board(boards, report):
    board_id = setup_board(boards)
    card_id = boards.add_card(board_id, labels=["T"])
    add_missing_rules_and_card_membership(boards, users_of(member("u@x.fr")), report)
    boards.boards[board_id]["members"][boards.user_id("u@x.fr")]["active"] = False

    remove_extra_rules_and_card_membership(boards, users_of(member("u@x.fr", boards=())), report)

    assert boards.rules == {}
    assert boards.card_members(card_id) == []


def test_remove_when_user_leaves_wekan_scope(boards, report):
    board_id = setup_board(boards)
    card_id = boards.add_card(board_id, labels=["T"])
    add_missing_rules_and_card_membership(boards, users_of(member("u@x.fr")), report)

    remove_extra_rules_and_card_membership(boards, users_of(), report)

    assert boards.rules == {}
    assert boards.card_members(card_id) == []


def test_unknown_label_is_skipped(boards, report):
    setup_board(boards, labels=("Other",))
    mutations = add_missing_rules_and_card_membership(boards, users_of(member("u@x.fr")), report)
    assert mutations == []
    assert report.ok


def test_inactive_member_gets_no_rule(boards, report):
    board_id = setup_board(boards)
    boards.boards[board_id]["members"][boards.user_id("u@x.fr")]["active"] = False

    add_missing_rules_and_card_membership(boards, users_of(member("u@x.fr")), report)

    assert boards.rules == {}


def test_card_membership_kept_when_another_taskforce_justifies_it(boards, report):
    board_id = setup_board(boards, labels=("T", "U"))
    card_id = boards.add_card(board_id, labels=["T", "U"])
    add_missing_rules_and_card_membership(boards, users_of(member("u@x.fr", taskforces=("T", "U"))), report)

    remove_extra_rules_and_card_membership(boards, users_of(member("u@x.fr", taskforces=("U",))), report)

    assert boards.rule_keys() == {("tableau-b", "U", "u@x.fr")}
    assert boards.card_members(card_id) == ["u@x.fr"]


def test_plan_adds_each_card_once(boards):
    board_id = setup_board(boards, labels=("T", "U"))
    boards.add_card(board_id, labels=["T", "U"])
    users = users_of(member("u@x.fr", taskforces=("T", "U")))

    mutations = plan_missing_rules_and_card_membership(read_snapshot(boards, users), users)

    assert [type(m) for m in mutations].count(CreateRule) == 2
    assert [type(m) for m in mutations].count(AddCardMember) == 1


def test_desired_assignments_ignore_out_of_scope_users(boards):
    setup_board(boards)
    users = users_of(member("u@x.fr"))
    snapshot = read_snapshot(boards, users)
    assert desired_assignments(snapshot, users) == {
        (boards.board_id("tableau-b"), boards.label_id(boards.board_id("tableau-b"), "T"), "u@x.fr")
    }
    assert desired_assignments(snapshot, users_of()) == set()


def test_failed_mutation_is_reported_and_next_attempted(boards, report):
    board_id = setup_board(boards, members=("u@x.fr", "v@x.fr"))
    boards.failures[("create_rule", "u@x.fr")] = RejectedError("rule rejected")

    add_missing_rules_and_card_membership(boards, users_of(member("u@x.fr"), member("v@x.fr")), report)

    assert boards.rule_keys() == {("tableau-b", "T", "v@x.fr")}
    assert len(report.errors) == 1


def test_remove_plans_delete_then_card_removal(boards, report):
    board_id = setup_board(boards)
    boards.add_card(board_id, labels=["T"], members=["u@x.fr"])
    boards.add_rule(board_id, "T", "u@x.fr")

    mutations = remove_extra_rules_and_card_membership(boards, users_of(), report)

    assert [type(m) for m in mutations] == [DeleteRule, RemoveCardMember]
