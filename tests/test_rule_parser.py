import pytest

from conftest import make_rule
from automation.parser import RuleParser
from exceptions import RuleValidationError

RULE_YAML = """
id: escalate-stale-urgent
name: Escalate stale urgent tickets
description: Urgent tickets without an update for a day are escalated.
created_at: 2024-01-01T00:00:00Z
trigger_conditions:
  - field: priority
    operator: equals
    value: Urgent
  - field: time_since_update_hours
    operator: greater_than
    value: 24
actions:
  - type: update_status
    target_value: Escalated
  - type: send_notification
    target_value: Support Team
"""


@pytest.fixture
def parser(domain):
    return RuleParser(domain)


def test_parse_yaml_file(parser, tmp_path):
    path = tmp_path / "rule.yaml"
    path.write_text(RULE_YAML)

    rule = parser.parse_yaml_file(str(path))

    assert rule.id == "escalate-stale-urgent"
    assert [c.field.value for c in rule.trigger_conditions] == ["priority", "time_since_update_hours"]
    assert [a.type.value for a in rule.actions] == ["update_status", "send_notification"]
    assert rule.created_at.year == 2024


def test_yaml_round_trip_preserves_order(parser, tmp_path):
    rule = make_rule(
        "ordered",
        [("type", "equals", "Billing"), ("age_days", "greater_than", 3), ("priority", "less_than", "High")],
        [("reassign", "Support Team"), ("update_priority", "Medium"), ("send_notification", "Admin User")]
    )
    path = tmp_path / "ordered.yaml"
    parser.save_rule_to_file(rule, str(path))

    reloaded = parser.parse_yaml_file(str(path))

    assert reloaded.trigger_conditions == rule.trigger_conditions
    assert reloaded.actions == rule.actions
    assert reloaded.created_at == rule.created_at


def test_legacy_keys_are_accepted(parser):
    rule = parser.parse_dict({
        "id": "legacy",
        "name": "Legacy",
        "enabled": False,
        "conditions": [{"field": "status", "operator": "equals", "value": "On Tech"}],
        "actions": [{"type": "update_status", "target_value": "On Product"}],
    })
    assert rule.is_active is False


@pytest.mark.parametrize("data, message", [
    ({"name": "No id"}, "'id' is required"),
    ({"id": "x", "name": "X", "actions": [{"type": "reassign", "target_value": "Admin User"}]}, "trigger_conditions"),
    ({"id": "x", "name": "X", "trigger_conditions": [{"field": "mood", "operator": "equals", "value": "bad"}],
      "actions": [{"type": "reassign", "target_value": "Admin User"}]}, "Invalid field"),
    ({"id": "x", "name": "X", "trigger_conditions": [{"field": "status", "operator": "equals", "value": "On Tech"}],
      "actions": [{"type": "close", "target_value": "now"}]}, "Invalid action type"),
])
def test_invalid_definitions(parser, data, message):
    with pytest.raises(RuleValidationError) as exc_info:
        parser.parse_dict(data)
    assert message in exc_info.value.message


def test_invalid_yaml_syntax(parser, tmp_path):
    path = tmp_path / "broken.yaml"
    path.write_text("id: [unclosed\n")
    with pytest.raises(RuleValidationError):
        parser.parse_yaml_file(str(path))


def test_validate_rule_errors_and_warnings(parser):
    rule = make_rule(
        "check",
        [("priority", "equals", "Critical"), ("status", "equals", "Snoozed")],
        [("reassign", "Nobody"), ("reassign", "Admin User")],
        description=""
    )

    result = parser.validate_rule(rule)

    assert not result.valid
    assert any("Nobody" in e for e in result.errors)
    assert any("Critical" in e for e in result.errors)
    assert any("Snoozed" in w for w in result.warnings)
    assert any("more than once" in w for w in result.warnings)
    assert any("no description" in w for w in result.warnings)


def test_notification_only_rule_is_valid_with_warning(parser):
    rule = make_rule("notify", [("priority", "equals", "Urgent")], [("send_notification", "Support Team")])
    result = parser.validate_rule(rule)
    assert result.valid
    assert any("only sends notifications" in w for w in result.warnings)


def test_parse_multiple_files_skips_bad_files(parser, tmp_path):
    (tmp_path / "a.yaml").write_text(RULE_YAML)
    (tmp_path / "b.yml").write_text("id: b\n")
    rules = parser.parse_multiple_files(str(tmp_path))
    assert [r.id for r in rules] == ["escalate-stale-urgent"]


@pytest.mark.parametrize("raw, expected", [("false", False), ("no", False), (0, False), ("true", True), (True, True)])
def test_quoted_is_active_is_parsed_as_boolean(parser, raw, expected):
    rule = parser.parse_dict({
        "id": "quoted",
        "name": "Quoted",
        "is_active": raw,
        "trigger_conditions": [{"field": "status", "operator": "equals", "value": "On Tech"}],
        "actions": [{"type": "update_status", "target_value": "On Product"}],
    })
    assert rule.is_active is expected


@pytest.mark.parametrize("field, value", [("is_active", "sometimes"), ("version", "two")])
def test_unparseable_flags_are_rejected(parser, field, value):
    data = {
        "id": "bad-flag",
        "name": "Bad flag",
        "trigger_conditions": [{"field": "status", "operator": "equals", "value": "On Tech"}],
        "actions": [{"type": "update_status", "target_value": "On Product"}],
        field: value,
    }
    with pytest.raises(RuleValidationError) as exc_info:
        parser.parse_dict(data)
    assert field in exc_info.value.message
