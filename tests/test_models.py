import pytest
from pydantic import ValidationError

from conftest import make_rule, make_ticket
from automation.models import ActionType, RuleAction, RuleCondition, Ticket


def test_condition_rejects_operator_not_allowed_for_field():
    with pytest.raises(ValidationError):
        RuleCondition(field="status", operator="greater_than", value="Open")
    with pytest.raises(ValidationError):
        RuleCondition(field="age_days", operator="not_equals", value=3)


def test_numeric_condition_values():
    assert RuleCondition(field="age_days", operator="greater_than", value="7").value == 7
    assert RuleCondition(field="time_since_update_hours", operator="less_than", value=1.5).value == 1.5
    with pytest.raises(ValidationError):
        RuleCondition(field="age_days", operator="greater_than", value=True)
    with pytest.raises(ValidationError):
        RuleCondition(field="age_days", operator="greater_than", value=-1)
    with pytest.raises(ValidationError):
        RuleCondition(field="age_days", operator="greater_than", value="a week")


def test_categorical_condition_requires_text():
    with pytest.raises(ValidationError):
        RuleCondition(field="assignee", operator="equals", value="   ")
    assert RuleCondition(field="assignee", operator="equals", value=" Support Team ").value == "Support Team"


def test_action_attribute_keys():
    assert RuleAction(type="reassign", target_value="Admin User").attribute == "assignee"
    assert RuleAction(type="update_priority", target_value="High").attribute == "priority"
    assert RuleAction(type="update_status", target_value="Closed").attribute == "status"
    notify = RuleAction(type=ActionType.SEND_NOTIFICATION, target_value="Support Team")
    assert notify.attribute == "notification"
    assert not notify.is_mutation


def test_action_requires_target():
    with pytest.raises(ValidationError):
        RuleAction(type="reassign", target_value="")


def test_rule_requires_conditions_and_actions():
    with pytest.raises(ValidationError):
        make_rule("empty-conditions", [], [("update_status", "Escalated")])
    with pytest.raises(ValidationError):
        make_rule("empty-actions", [("status", "equals", "On Tech")], [])


def test_rule_id_format():
    with pytest.raises(ValidationError):
        make_rule("Bad Id", [("status", "equals", "On Tech")], [("update_status", "Escalated")])


def test_rule_is_frozen():
    rule = make_rule("frozen", [("status", "equals", "On Tech")], [("update_status", "Escalated")])
    with pytest.raises(ValidationError):
        rule.name = "changed"


def test_ticket_blank_values_become_sentinels():
    ticket = make_ticket(assignee="  ", status=None)
    assert ticket.assignee is None
    assert ticket.attribute("assignee") == "Unassigned"
    assert ticket.attribute("status") == "Unknown"


def test_ticket_id_is_coerced_to_string():
    ticket = Ticket(id=42, created_at="2024-01-01T00:00:00", updated_at="2024-01-01T00:00:00")
    assert ticket.id == "42"
    assert ticket.created_at.tzinfo is not None
