"""
Automation Actions Package

Exports the action executor.
"""

from .action_executor import RuleActionExecutor, NotificationDispatcher, DEFAULT_MESSAGE_TEMPLATE

__all__ = ["RuleActionExecutor", "NotificationDispatcher", "DEFAULT_MESSAGE_TEMPLATE"]
