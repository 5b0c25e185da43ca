import itertools

from conftest import make_rule, make_ticket
from automation.resolver import ConflictResolver


def assign_rule(rule_id, agent, minutes):
    return make_rule(rule_id, [("company", "equals", "Acme")], [("reassign", agent)], minutes=minutes)


def test_earliest_rule_wins_each_attribute():
    r1 = assign_rule("r1", "Support Team", 0)
    r2 = assign_rule("r2", "Admin User", 5)

    plan = ConflictResolver().resolve(make_ticket(), [r2, r1])

    assert [(p.rule.id, p.action.target_value) for p in plan.mutations] == [("r1", "Support Team")]
    assert [(s.rule.id, s.superseded_by) for s in plan.superseded] == [("r2", "r1")]
    assert plan.field_updates() == {"assignee": "Support Team"}


def test_resolution_is_independent_of_input_order():
    rules = [
        assign_rule("r1", "Support Team", 0),
        assign_rule("r2", "Admin User", 5),
        make_rule("r3", [("company", "equals", "Acme")], [("update_priority", "High"), ("reassign", "Unassigned")], minutes=10),
    ]
    ticket = make_ticket()
    outcomes = set()
    for ordering in itertools.permutations(rules):
        plan = ConflictResolver().resolve(ticket, list(ordering))
        outcomes.add((
            tuple((p.rule.id, p.action.attribute) for p in plan.mutations),
            tuple((s.rule.id, s.superseded_by) for s in plan.superseded),
        ))
    assert outcomes == {(
        (("r1", "assignee"), ("r3", "priority")),
        (("r2", "r1"), ("r3", "r1")),
    )}


def test_first_action_within_a_rule_wins():
    rule = make_rule(
        "double-status",
        [("company", "equals", "Acme")],
        [("update_status", "On Tech"), ("update_status", "On Product")]
    )
    plan = ConflictResolver().resolve(make_ticket(), [rule])
    assert plan.field_updates() == {"status": "On Tech"}
    assert plan.superseded[0].superseded_by == "double-status"


def test_notifications_never_conflict():
    r1 = make_rule("n1", [("company", "equals", "Acme")], [("send_notification", "Support Team")])
    r2 = make_rule("n2", [("company", "equals", "Acme")], [("send_notification", "Support Team")], minutes=1)

    plan = ConflictResolver().resolve(make_ticket(), [r2, r1])

    assert [p.rule.id for p in plan.notifications] == ["n1", "n2"]
    assert not plan.superseded
    assert not plan.mutations


def test_holding_rule_keeps_its_attribute():
    r1 = assign_rule("r1", "Support Team", 0)
    r2 = assign_rule("r2", "Admin User", 5)
    # r1 already got its way on an earlier cycle
    ticket = make_ticket(assignee="Support Team")

    plan = ConflictResolver().resolve(ticket, [r2], holding_rules=[r1])

    assert not plan.mutations
    assert [(s.rule.id, s.superseded_by) for s in plan.superseded] == [("r2", "r1")]
    assert [r.id for r in plan.matched_rules] == ["r2"]


def test_later_holding_rule_does_not_block_earlier_rule():
    r1 = assign_rule("r1", "Support Team", 0)
    r2 = assign_rule("r2", "Admin User", 5)

    plan = ConflictResolver().resolve(make_ticket(), [r1], holding_rules=[r2])

    assert plan.field_updates() == {"assignee": "Support Team"}
    assert not plan.superseded
