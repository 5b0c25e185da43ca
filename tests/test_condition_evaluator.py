import pytest
from datetime import timedelta

from conftest import NOW, make_ticket
from automation.evaluator import ConditionEvaluator, whole_days_between, whole_hours_between
from automation.models import ConditionField, ConditionOperator, PriorityScale, RuleCondition
from exceptions import ConditionEvaluationError


@pytest.fixture
def evaluator():
    return ConditionEvaluator()


def cond(field, operator, value):
    return RuleCondition(field=field, operator=operator, value=value)


def test_categorical_equals_and_not_equals(evaluator):
    ticket = make_ticket(status="On Tech")
    assert evaluator.evaluate(cond("status", "equals", "On Tech"), ticket, NOW)
    assert not evaluator.evaluate(cond("status", "not_equals", "On Tech"), ticket, NOW)
    assert evaluator.evaluate(cond("company", "not_equals", "Globex"), ticket, NOW)


def test_missing_values_compare_as_sentinels(evaluator):
    ticket = make_ticket(assignee=None, company="", type=None)
    assert evaluator.evaluate(cond("assignee", "equals", "Unassigned"), ticket, NOW)
    assert evaluator.evaluate(cond("company", "equals", "Unknown Company"), ticket, NOW)
    assert evaluator.evaluate(cond("type", "equals", "Unknown Type"), ticket, NOW)


def test_priority_uses_ordinal_ranks(evaluator):
    ticket = make_ticket(priority="High")
    assert evaluator.evaluate(cond("priority", "greater_than", "Medium"), ticket, NOW)
    assert evaluator.evaluate(cond("priority", "less_than", "Urgent"), ticket, NOW)
    assert not evaluator.evaluate(cond("priority", "greater_than", "High"), ticket, NOW)
    assert evaluator.evaluate(cond("priority", "equals", "High"), ticket, NOW)


def test_unrankable_ticket_priority_raises_and_check_fails_closed(evaluator):
    ticket = make_ticket(priority="Critical")
    condition = cond("priority", "greater_than", "Low")

    with pytest.raises(ConditionEvaluationError):
        evaluator.evaluate(condition, ticket, NOW)
    assert evaluator.check(condition, ticket, NOW) is False


def test_custom_priority_scale():
    evaluator = ConditionEvaluator(PriorityScale(["P4", "P3", "P2", "P1"]))
    ticket = make_ticket(priority="P1")
    assert evaluator.evaluate(cond("priority", "greater_than", "P3"), ticket, NOW)


def test_time_since_update_is_floored_hours(evaluator):
    ticket = make_ticket(hours_since_update=24.9)
    assert not evaluator.evaluate(cond("time_since_update_hours", "greater_than", 24), ticket, NOW)
    assert evaluator.evaluate(cond("time_since_update_hours", "equals", 24), ticket, NOW)


def test_age_days_is_floored(evaluator):
    ticket = make_ticket(age_days=2.9)
    assert evaluator.evaluate(cond("age_days", "equals", 2), ticket, NOW)
    assert evaluator.evaluate(cond("age_days", "less_than", 3), ticket, NOW)


def test_future_timestamps_clamp_to_zero():
    assert whole_hours_between(NOW + timedelta(hours=5), NOW) == 0
    assert whole_days_between(NOW + timedelta(days=1), NOW) == 0
    assert whole_hours_between(NOW - timedelta(minutes=150), NOW) == 2


def test_naive_now_is_treated_as_utc(evaluator):
    ticket = make_ticket(hours_since_update=30)
    naive_now = NOW.replace(tzinfo=None)
    assert evaluator.evaluate(cond("time_since_update_hours", "greater_than", 24), ticket, naive_now)


def test_type_mismatched_value_raises(evaluator):
    # Bypass construction-time validation to reach the evaluator's own guard
    condition = RuleCondition.model_construct(
        field=ConditionField.AGE_DAYS,
        operator=ConditionOperator.GREATER_THAN,
        value="soon"
    )
    with pytest.raises(ConditionEvaluationError):
        evaluator.evaluate(condition, make_ticket(), NOW)


def test_disallowed_operator_raises(evaluator):
    condition = RuleCondition.model_construct(
        field=ConditionField.STATUS,
        operator=ConditionOperator.GREATER_THAN,
        value="Open"
    )
    with pytest.raises(ConditionEvaluationError):
        evaluator.evaluate(condition, make_ticket(), NOW)
    assert evaluator.check(condition, make_ticket(), NOW) is False


def test_evaluation_is_deterministic(evaluator):
    ticket = make_ticket(hours_since_update=30)
    condition = cond("time_since_update_hours", "greater_than", 24)
    results = {evaluator.evaluate(condition, ticket, NOW) for _ in range(5)}
    assert results == {True}
