"""
Automation Package

Ticket automation rule engine for DeskPilot.
"""

from .models import (
    Rule,
    RuleCondition,
    RuleAction,
    ConditionField,
    ConditionOperator,
    ActionType,
    Ticket,
    TicketDomain,
    ExecutionOutcome,
    ExecutionRecord,
    CycleReport
)
from .parser import RuleParser
from .evaluator import ConditionEvaluator, RuleMatcher
from .resolver import ConflictResolver
from .actions import RuleActionExecutor
from .audit import AuditLog
from .repository import SQLiteRuleRepository, TicketStore, InMemoryTicketStore, SQLiteTicketStore
from .scheduler import Scheduler

__all__ = [
    "Rule",
    "RuleCondition",
    "RuleAction",
    "ConditionField",
    "ConditionOperator",
    "ActionType",
    "Ticket",
    "TicketDomain",
    "ExecutionOutcome",
    "ExecutionRecord",
    "CycleReport",
    "RuleParser",
    "ConditionEvaluator",
    "RuleMatcher",
    "ConflictResolver",
    "RuleActionExecutor",
    "AuditLog",
    "SQLiteRuleRepository",
    "TicketStore",
    "InMemoryTicketStore",
    "SQLiteTicketStore",
    "Scheduler"
]
