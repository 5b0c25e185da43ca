"""
Automation Evaluator Package

Exports the condition evaluator and rule matcher.
"""

from .condition_evaluator import ConditionEvaluator, whole_days_between, whole_hours_between
from .rule_matcher import RuleMatcher, order_by_creation

__all__ = [
    "ConditionEvaluator",
    "RuleMatcher",
    "order_by_creation",
    "whole_days_between",
    "whole_hours_between"
]
