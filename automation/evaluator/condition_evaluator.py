"""
Condition Evaluator

Evaluates a single rule condition against a ticket snapshot at a given instant.
"""

import logging
from datetime import datetime, timedelta
from typing import Optional

from automation.models import (
    RuleCondition,
    Ticket,
    ConditionField,
    ConditionOperator,
    FieldKind,
    FIELD_KINDS,
    PriorityScale,
    allowed_operators,
    ensure_utc
)
from exceptions import ConditionEvaluationError


logger = logging.getLogger("DeskPilotEvaluator")

DEFAULT_PRIORITY_SCALE = PriorityScale(["Low", "Medium", "High", "Urgent"])


def whole_days_between(start: datetime, end: datetime) -> int:
    """Whole days elapsed from start to end, floored and clamped at 0."""
    return max(0, (end - start) // timedelta(days=1))


def whole_hours_between(start: datetime, end: datetime) -> int:
    """Whole hours elapsed from start to end, floored and clamped at 0."""
    return max(0, (end - start) // timedelta(hours=1))


class ConditionEvaluator:
    """
    Pure evaluation of one condition against one ticket.

    The evaluator holds no mutable state; the same (condition, ticket, now)
    always yields the same answer.
    """

    def __init__(self, priority_scale: Optional[PriorityScale] = None):
        """
        Initialize the condition evaluator.

        Args:
            priority_scale: Read-only ordinal ranks used for priority comparisons
        """
        self.priority_scale = priority_scale or DEFAULT_PRIORITY_SCALE

    def evaluate(self, condition: RuleCondition, ticket: Ticket, now: datetime) -> bool:
        """
        Evaluate a condition.

        Args:
            condition: Condition to evaluate
            ticket: Ticket snapshot
            now: Evaluation instant

        Returns:
            True if the condition holds

        Raises:
            ConditionEvaluationError: On unknown field, disallowed operator,
                type-mismatched value or an unrankable priority
        """
        field = condition.field
        operator = condition.operator

        if not isinstance(field, ConditionField):
            raise self._error(f"Unknown field: {field!r}", condition, ticket)

        if not isinstance(operator, ConditionOperator) or operator not in allowed_operators(field):
            raise self._error(
                f"Operator {operator!r} is not allowed for field '{field.value}'",
                condition,
                ticket
            )

        kind = FIELD_KINDS[field]

        if kind == FieldKind.CATEGORICAL:
            return self._compare_categorical(condition, ticket)

        if kind == FieldKind.ORDINAL:
            return self._compare_priority(condition, ticket)

        return self._compare_elapsed(condition, ticket, now)

    def check(self, condition: RuleCondition, ticket: Ticket, now: datetime) -> bool:
        """
        Fail-closed evaluation: errors are logged and count as False.
        """
        try:
            return self.evaluate(condition, ticket, now)
        except ConditionEvaluationError as e:
            logger.warning(
                "Condition %s %s %r failed on ticket %s: %s",
                getattr(condition.field, "value", condition.field),
                getattr(condition.operator, "value", condition.operator),
                condition.value,
                ticket.id,
                e.message
            )
            return False

    def _compare_categorical(self, condition: RuleCondition, ticket: Ticket) -> bool:
        expected = condition.value
        if not isinstance(expected, str):
            raise self._error(
                f"Field '{condition.field.value}' expects a string value, got {expected!r}",
                condition,
                ticket
            )

        actual = ticket.attribute(condition.field.value)
        if condition.operator == ConditionOperator.EQUALS:
            return actual == expected
        return actual != expected

    def _compare_priority(self, condition: RuleCondition, ticket: Ticket) -> bool:
        expected = condition.value
        if not isinstance(expected, str):
            raise self._error(f"Priority expects a string value, got {expected!r}", condition, ticket)

        actual = ticket.attribute("priority")
        if condition.operator == ConditionOperator.EQUALS:
            return actual == expected

        try:
            actual_rank = self.priority_scale.rank(actual)
        except KeyError:
            raise self._error(f"Ticket priority {actual!r} has no rank", condition, ticket)
        try:
            expected_rank = self.priority_scale.rank(expected)
        except KeyError:
            raise self._error(f"Condition priority {expected!r} has no rank", condition, ticket)

        if condition.operator == ConditionOperator.GREATER_THAN:
            return actual_rank > expected_rank
        return actual_rank < expected_rank

    def _compare_elapsed(self, condition: RuleCondition, ticket: Ticket, now: datetime) -> bool:
        expected = condition.value
        if isinstance(expected, bool) or not isinstance(expected, (int, float)):
            raise self._error(
                f"Field '{condition.field.value}' expects a number, got {expected!r}",
                condition,
                ticket
            )

        now = ensure_utc(now)
        if condition.field == ConditionField.AGE_DAYS:
            actual = whole_days_between(ticket.created_at, now)
        else:
            actual = whole_hours_between(ticket.updated_at, now)

        if condition.operator == ConditionOperator.EQUALS:
            return actual == expected
        if condition.operator == ConditionOperator.GREATER_THAN:
            return actual > expected
        return actual < expected

    @staticmethod
    def _error(message: str, condition: RuleCondition, ticket: Ticket) -> ConditionEvaluationError:
        return ConditionEvaluationError(
            message,
            component="ConditionEvaluator",
            context={
                "ticket_id": ticket.id,
                "field": str(getattr(condition.field, "value", condition.field)),
                "operator": str(getattr(condition.operator, "value", condition.operator)),
                "value": condition.value
            }
        )
