"""
Automation Models Package

Exports all model classes for the ticket automation engine.
"""

from .clock import utc_now, ensure_utc
from .rule import (
    Rule,
    RuleCondition,
    RuleAction,
    ConditionField,
    ConditionOperator,
    FieldKind,
    ActionType,
    FIELD_KINDS,
    ACTION_ATTRIBUTES,
    NOTIFICATION_KEY,
    allowed_operators,
    ValidationResult
)
from .ticket import (
    Ticket,
    TicketDomain,
    PriorityScale,
    MISSING_VALUE_SENTINELS,
    MUTABLE_ATTRIBUTES
)
from .execution import (
    ExecutionOutcome,
    ExecutionRecord,
    CycleState,
    CycleReport,
    PlannedAction,
    SupersededAction,
    ResolutionPlan
)

__all__ = [
    "utc_now",
    "ensure_utc",
    "Rule",
    "RuleCondition",
    "RuleAction",
    "ConditionField",
    "ConditionOperator",
    "FieldKind",
    "ActionType",
    "FIELD_KINDS",
    "ACTION_ATTRIBUTES",
    "NOTIFICATION_KEY",
    "allowed_operators",
    "ValidationResult",
    "Ticket",
    "TicketDomain",
    "PriorityScale",
    "MISSING_VALUE_SENTINELS",
    "MUTABLE_ATTRIBUTES",
    "ExecutionOutcome",
    "ExecutionRecord",
    "CycleState",
    "CycleReport",
    "PlannedAction",
    "SupersededAction",
    "ResolutionPlan"
]
